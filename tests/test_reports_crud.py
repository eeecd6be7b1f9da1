"""
Tests: Report CRUD, general edit, listing and export.

General edits are version-checked (compare-and-swap) and never touch
the workflow-managed lists; export needs the import_export flag.
"""

import csv
import io
import json

import pytest

from solarops.models import db as _db
from solarops.models.auth import Branch
from solarops.models.report import Report


def _create(client, headers, report_type="Maintenance", content=None, **extra):
    body = {"type": report_type, "content": content if content is not None else {}}
    body.update(extra)
    return client.post("/api/v1/reports", json=body, headers=headers)


class TestCreate:
    @pytest.mark.parametrize("report_type", ["Inquiry", "Maintenance", "Sales"])
    def test_non_project_types(self, client, auth, owner, report_type):
        res = _create(client, auth(owner), report_type, {"customers": [{"name": "Client"}]})
        assert res.status_code == 201
        body = res.get_json()
        assert body["type"] == report_type
        assert body["projectWorkflowStatus"] is None
        assert body["ownerUserId"] == owner.id
        assert body["employeeId"] == "emp001"
        assert body["branchId"] == owner.branch_id
        assert body["version"] == 1

    def test_unknown_type(self, client, auth, owner):
        res = _create(client, auth(owner), "Warranty")
        assert res.status_code == 400

    def test_team_only_for_projects(self, client, auth, owner, team):
        res = _create(client, auth(owner), "Sales", teamId=team.id)
        assert res.status_code == 400

    def test_missing_team(self, client, auth, owner):
        res = _create(client, auth(owner), "Project", teamId=4242)
        assert res.status_code == 404

    def test_unknown_branch(self, client, auth, owner):
        res = _create(client, auth(owner), "Project", branchId=99999)
        assert res.status_code == 404
        assert Report.query.count() == 0

    def test_non_integer_branch(self, client, auth, owner):
        res = _create(client, auth(owner), "Sales", branchId="abc")
        assert res.status_code == 400
        assert res.get_json()["details"] == {"branchId": "integer"}

    def test_explicit_branch(self, client, auth, owner):
        other = Branch(name="Jeddah")
        _db.session.add(other)
        _db.session.commit()
        res = _create(client, auth(owner), "Sales", branchId=str(other.id))
        assert res.status_code == 201
        assert res.get_json()["branchId"] == other.id

    def test_client_cannot_seed_workflow_history(self, client, auth, owner):
        content = {"updates": [{"id": "concreteWorks", "completed": True}], "systemSize": "10kW"}
        body = _create(client, auth(owner), "Project", content).get_json()
        assert body["content"]["updates"] == []
        assert body["content"]["systemSize"] == "10kW"

    def test_allowed_report_types_whitelist(self, client, auth, owner):
        owner.allowed_report_types = json.dumps(["Maintenance"])
        _db.session.commit()
        assert _create(client, auth(owner), "Maintenance").status_code == 201
        res = _create(client, auth(owner), "Sales")
        assert res.status_code == 403
        assert res.get_json()["required"] == "createSalesReport"

    def test_requires_caller(self, client):
        assert _create(client, {}, "Sales").status_code == 401

    def test_inactive_caller(self, client, auth, owner):
        owner.is_active = False
        _db.session.commit()
        assert _create(client, auth(owner), "Sales").status_code == 401


class TestListAndGet:
    def test_visibility(self, client, auth, owner, outsider, admin, team, team_lead):
        _create(client, auth(owner), "Sales")
        _create(client, auth(owner), "Project", teamId=team.id)
        _create(client, auth(outsider), "Inquiry")

        mine = client.get("/api/v1/reports", headers=auth(owner)).get_json()
        assert mine["total"] == 2

        lead_view = client.get("/api/v1/reports", headers=auth(team_lead)).get_json()
        assert [r["type"] for r in lead_view["items"]] == ["Project"]

        everything = client.get("/api/v1/reports", headers=auth(admin)).get_json()
        assert everything["total"] == 3

    def test_filters_and_pagination(self, client, auth, owner):
        for _ in range(3):
            _create(client, auth(owner), "Sales")
        _create(client, auth(owner), "Inquiry")
        res = client.get("/api/v1/reports?type=Sales&limit=2", headers=auth(owner)).get_json()
        assert res["total"] == 3
        assert len(res["items"]) == 2

    def test_get_missing(self, client, auth, owner):
        assert client.get("/api/v1/reports/nope", headers=auth(owner)).status_code == 404

    def test_corrupted_content_is_served_empty(self, client, auth, owner):
        rid = _create(client, auth(owner), "Project").get_json()["id"]
        report = _db.session.get(Report, rid)
        report.details = "{definitely not json"
        _db.session.commit()
        res = client.get(f"/api/v1/reports/{rid}", headers=auth(owner))
        assert res.status_code == 200
        assert res.get_json()["content"]["updates"] == []


class TestGeneralEdit:
    def test_owner_edits_content_and_log_grows(self, client, auth, owner):
        rid = _create(client, auth(owner), "Sales", {"customers": []}).get_json()["id"]
        res = client.put(
            f"/api/v1/reports/{rid}",
            json={"version": 1, "content": {"customers": [{"name": "New"}], "notes": "x"}},
            headers=auth(owner),
        )
        assert res.status_code == 200, res.get_json()
        body = res.get_json()
        assert body["content"]["customers"] == [{"name": "New"}]
        assert body["version"] == 2
        assert body["modifications"][0]["userId"] == owner.id
        assert body["modifications"][0]["fields"] == ["content"]

    def test_stale_version_conflicts(self, client, auth, owner):
        rid = _create(client, auth(owner), "Sales").get_json()["id"]
        first = client.put(f"/api/v1/reports/{rid}", json={"version": 1, "content": {"a": 1}}, headers=auth(owner))
        assert first.status_code == 200
        second = client.put(f"/api/v1/reports/{rid}", json={"version": 1, "content": {"a": 2}}, headers=auth(owner))
        assert second.status_code == 409
        assert json.loads(_db.session.get(Report, rid).details)["a"] == 1

    def test_workflow_lists_are_preserved(self, client, auth, owner, admin, team, team_lead):
        rid = _create(client, auth(owner), "Project", teamId=team.id).get_json()["id"]
        client.post(f"/api/v1/reports/{rid}/accept-team", headers=auth(team_lead))
        client.post(f"/api/v1/reports/{rid}/stages/concreteWorks/confirm", json={}, headers=auth(team_lead))
        client.post(f"/api/v1/reports/{rid}/admin-notes", json={"content": "keep"}, headers=auth(admin))

        res = client.put(
            f"/api/v1/reports/{rid}",
            json={"content": {"updates": [], "adminNotes": [], "exceptions": [], "systemSize": "8kW"}},
            headers=auth(owner),
        )
        assert res.status_code == 200
        content = res.get_json()["content"]
        assert [u["id"] for u in content["updates"]] == ["concreteWorks"]
        assert content["adminNotes"][0]["content"] == "keep"
        assert content["systemSize"] == "8kW"

    def test_only_admin_sets_status_and_evaluation(self, client, auth, owner, admin):
        rid = _create(client, auth(owner), "Sales").get_json()["id"]
        denied = client.put(f"/api/v1/reports/{rid}", json={"status": "Approved"}, headers=auth(owner))
        assert denied.status_code == 403

        res = client.put(
            f"/api/v1/reports/{rid}",
            json={"status": "NeedsModification", "evaluation": {"score": 3}},
            headers=auth(admin),
        )
        assert res.status_code == 200
        body = res.get_json()
        assert body["status"] == "NeedsModification"
        assert body["evaluation"] == {"score": 3}

    def test_invalid_status(self, client, auth, owner, admin):
        rid = _create(client, auth(owner), "Sales").get_json()["id"]
        res = client.put(f"/api/v1/reports/{rid}", json={"status": "Done"}, headers=auth(admin))
        assert res.status_code == 400

    def test_empty_edit(self, client, auth, owner):
        rid = _create(client, auth(owner), "Sales").get_json()["id"]
        assert client.put(f"/api/v1/reports/{rid}", json={}, headers=auth(owner)).status_code == 400

    def test_outsider_cannot_edit(self, client, auth, owner, outsider):
        rid = _create(client, auth(owner), "Sales").get_json()["id"]
        res = client.put(f"/api/v1/reports/{rid}", json={"content": {}}, headers=auth(outsider))
        assert res.status_code == 403


class TestDelete:
    def test_owner_deletes(self, client, auth, owner):
        rid = _create(client, auth(owner), "Sales").get_json()["id"]
        res = client.delete(f"/api/v1/reports/{rid}", headers=auth(owner))
        assert res.status_code == 200
        assert _db.session.get(Report, rid) is None

    def test_outsider_cannot_delete(self, client, auth, owner, outsider):
        rid = _create(client, auth(owner), "Sales").get_json()["id"]
        assert client.delete(f"/api/v1/reports/{rid}", headers=auth(outsider)).status_code == 403


class TestExport:
    def test_requires_import_export_flag(self, client, auth, owner):
        res = client.get("/api/v1/reports/export", headers=auth(owner))
        assert res.status_code == 403
        assert res.get_json()["required"] == "import_export"

    def test_flag_grants_export_regardless_of_role(self, client, auth, owner, outsider):
        _create(client, auth(owner), "Sales")
        _create(client, auth(owner), "Project")
        outsider.has_import_export_permission = True
        _db.session.commit()

        res = client.get("/api/v1/reports/export", headers=auth(outsider))
        assert res.status_code == 200
        assert res.mimetype == "text/csv"
        rows = list(csv.DictReader(io.StringIO(res.get_data(as_text=True))))
        assert len(rows) == 2
        assert {r["type"] for r in rows} == {"Sales", "Project"}
        assert all(r["employeeId"] == "emp001" for r in rows)

    def test_admin_exports(self, client, auth, admin):
        assert client.get("/api/v1/reports/export", headers=auth(admin)).status_code == 200
