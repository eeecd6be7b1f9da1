"""
Tests: Purchases & Instant Expenses API.

Covers the purchase_management gate (401 anonymous, 403 without the flag,
flag holders and administrators admitted), invoice create/list/get/hide
with the audit log, scan uploads through the document store, employee
visibility, and custody sheets with their running totals.
"""

import io

import pytest

from solarops.models import db as _db
from solarops.models.auth import User
from solarops.models.purchase import InstantExpenseLine, PurchaseAttachment, PurchaseInvoice

INVOICES = "/api/v1/purchase-invoices"
SHEETS = "/api/v1/instant-expenses/sheets"


def make_user(username, role="employee", **kw):
    user = User(username=username, full_name=username.title(), role=role, **kw)
    _db.session.add(user)
    _db.session.commit()
    return user


@pytest.fixture()
def buyer(branch):
    return make_user("emp200", branch_id=branch.id, has_purchase_management_permission=True)


@pytest.fixture()
def second_buyer(branch):
    return make_user("emp201", branch_id=branch.id, has_purchase_management_permission=True)


@pytest.fixture()
def accountant(branch):
    return make_user("mgr200", role="manager", branch_id=branch.id, has_purchase_management_permission=True)


def _invoice(client, headers, **fields):
    body = {"invoiceNumber": "INV-1001", "vendor": "Sun Panels Co", "amount": 150.5}
    body.update(fields)
    res = client.post(INVOICES, json=body, headers=headers)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


def _sheet(client, headers, amount=1000):
    res = client.post(SHEETS, json={"custodyNumber": "C-7", "custodyAmount": amount}, headers=headers)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


# ═════════════════════════════════════════════════════════════════════════════
# Permission flag
# ═════════════════════════════════════════════════════════════════════════════


class TestPurchaseGate:
    @pytest.mark.parametrize("method,url", [
        ("get", INVOICES),
        ("post", INVOICES),
        ("get", SHEETS),
        ("post", SHEETS),
    ])
    def test_anonymous_is_unauthorized(self, client, method, url):
        res = getattr(client, method)(url, json={})
        assert res.status_code == 401

    @pytest.mark.parametrize("method,url", [
        ("get", INVOICES),
        ("post", INVOICES),
        ("get", SHEETS),
        ("post", SHEETS),
    ])
    def test_missing_flag_is_forbidden(self, client, auth, outsider, method, url):
        res = getattr(client, method)(url, json={"invoiceNumber": "X"}, headers=auth(outsider))
        assert res.status_code == 403
        assert res.get_json()["required"] == "purchase_management"
        assert PurchaseInvoice.query.count() == 0

    def test_flag_holder_is_admitted(self, client, auth, buyer):
        assert client.get(INVOICES, headers=auth(buyer)).status_code == 200
        assert client.get(SHEETS, headers=auth(buyer)).status_code == 200

    def test_admin_holds_the_flag_implicitly(self, client, auth, admin):
        assert admin.has_purchase_management_permission is False
        assert client.get(INVOICES, headers=auth(admin)).status_code == 200
        _invoice(client, auth(admin))
        _sheet(client, auth(admin))

    def test_other_flags_do_not_grant_purchases(self, client, auth, outsider):
        outsider.has_package_management_permission = True
        outsider.has_import_export_permission = True
        _db.session.commit()
        assert client.get(INVOICES, headers=auth(outsider)).status_code == 403

    def test_revoked_flag_takes_effect_immediately(self, client, auth, buyer):
        inv = _invoice(client, auth(buyer))
        buyer.has_purchase_management_permission = False
        _db.session.commit()
        res = client.get(f"{INVOICES}/{inv['id']}", headers=auth(buyer))
        assert res.status_code == 403


# ═════════════════════════════════════════════════════════════════════════════
# Purchase invoices
# ═════════════════════════════════════════════════════════════════════════════


class TestPurchaseInvoices:
    def test_create_records_caller_and_log(self, client, auth, buyer):
        inv = _invoice(client, auth(buyer), invoiceDate="2024-03-05", transferFee="2.25")
        assert inv["id"].startswith("PUR-")
        assert inv["employeeId"] == "emp200"
        assert inv["amount"] == 150.5
        assert inv["transferFee"] == 2.25
        assert inv["invoiceDate"] == "2024-03-05"
        assert inv["reviewStatus"] == "NEEDS_REVIEW"
        assert inv["hidden"] is False

        detail = client.get(f"{INVOICES}/{inv['id']}", headers=auth(buyer)).get_json()
        assert [entry["action"] for entry in detail["logs"]] == ["created"]
        assert detail["attachments"] == []

    def test_invoice_number_required(self, client, auth, buyer):
        res = client.post(INVOICES, json={"amount": 10}, headers=auth(buyer))
        assert res.status_code == 400
        assert res.get_json()["details"] == {"invoiceNumber": "required"}

    @pytest.mark.parametrize("field,value,kind", [
        ("amount", "ten", "number"),
        ("amount", "NaN", "number"),
        ("transferFee", [], "number"),
        ("invoiceDate", "05/03/2024", "date"),
    ])
    def test_bad_fields_rejected(self, client, auth, buyer, field, value, kind):
        res = client.post(INVOICES, json={"invoiceNumber": "A1", field: value}, headers=auth(buyer))
        assert res.status_code == 400
        assert res.get_json()["details"] == {field: kind}
        assert PurchaseInvoice.query.count() == 0

    def test_admin_records_on_behalf_of_employee(self, client, auth, admin, buyer):
        inv = _invoice(client, auth(admin), employeeId="emp200")
        assert inv["userId"] == buyer.id

    def test_employee_id_ignored_for_non_admin(self, client, auth, buyer, second_buyer):
        inv = _invoice(client, auth(buyer), employeeId="emp201")
        assert inv["userId"] == buyer.id

    def test_list_newest_invoice_date_first(self, client, auth, buyer):
        _invoice(client, auth(buyer), invoiceNumber="OLD", invoiceDate="2024-01-01")
        _invoice(client, auth(buyer), invoiceNumber="NEW", invoiceDate="2024-06-01")
        body = client.get(INVOICES, headers=auth(buyer)).get_json()
        assert [i["invoiceNumber"] for i in body["items"]] == ["NEW", "OLD"]
        assert body["total"] == 2

    def test_employee_sees_only_own(self, client, auth, buyer, second_buyer, accountant):
        mine = _invoice(client, auth(buyer))
        _invoice(client, auth(second_buyer), invoiceNumber="INV-2")

        listed = client.get(INVOICES, headers=auth(buyer)).get_json()["items"]
        assert [i["id"] for i in listed] == [mine["id"]]
        assert client.get(f"{INVOICES}/{mine['id']}", headers=auth(second_buyer)).status_code == 404
        assert client.get(INVOICES, headers=auth(accountant)).get_json()["total"] == 2

    def test_unknown_invoice(self, client, auth, buyer):
        assert client.get(f"{INVOICES}/PUR-NOPE", headers=auth(buyer)).status_code == 404

    def test_hide_logs_reason_once(self, client, auth, buyer):
        inv = _invoice(client, auth(buyer))
        url = f"{INVOICES}/{inv['id']}/hide"
        res = client.post(url, json={"reason": "duplicate"}, headers=auth(buyer))
        assert res.status_code == 200
        assert res.get_json()["hidden"] is True
        assert res.get_json()["hideReason"] == "duplicate"
        assert res.get_json()["hiddenAt"] is not None

        again = client.post(url, json={"reason": "other"}, headers=auth(buyer)).get_json()
        assert again["hideReason"] == "duplicate"
        detail = client.get(f"{INVOICES}/{inv['id']}", headers=auth(buyer)).get_json()
        assert [entry["action"] for entry in detail["logs"]].count("hidden") == 1
        # Hidden invoices stay listed, flagged.
        listed = client.get(INVOICES, headers=auth(buyer)).get_json()["items"]
        assert listed[0]["hidden"] is True


class TestPurchaseAttachments:
    def _upload(self, client, headers, invoice_id, names, kind=None):
        data = {"attachments": [(io.BytesIO(b"scan"), name) for name in names]}
        if kind:
            data["type"] = kind
        return client.post(
            f"{INVOICES}/{invoice_id}/attachments",
            data=data, headers=headers, content_type="multipart/form-data",
        )

    def test_upload_stores_and_logs(self, client, auth, buyer, store_session):
        inv = _invoice(client, auth(buyer))
        res = self._upload(client, auth(buyer), inv["id"], ["a.jpg", "b.pdf"], kind="payment_proof")
        assert res.status_code == 201
        stored = res.get_json()["attachments"]
        assert [a["fileName"] for a in stored] == ["a.jpg", "b.pdf"]
        assert all(a["type"] == "payment_proof" for a in stored)
        assert len(store_session.calls) == 2
        assert f"/purchases/{inv['id']}/" in store_session.calls[0]["url"]

        detail = client.get(f"{INVOICES}/{inv['id']}", headers=auth(buyer)).get_json()
        assert len(detail["attachments"]) == 2
        assert detail["logs"][0]["action"] == "attachments_uploaded"

    def test_default_type_is_invoice_scan(self, client, auth, buyer):
        inv = _invoice(client, auth(buyer))
        res = self._upload(client, auth(buyer), inv["id"], ["a.jpg"])
        assert res.get_json()["attachments"][0]["type"] == "invoice_scan"

    def test_no_files(self, client, auth, buyer):
        inv = _invoice(client, auth(buyer))
        res = self._upload(client, auth(buyer), inv["id"], [])
        assert res.status_code == 400

    def test_unknown_type(self, client, auth, buyer, store_session):
        inv = _invoice(client, auth(buyer))
        res = self._upload(client, auth(buyer), inv["id"], ["a.jpg"], kind="selfie")
        assert res.status_code == 400
        assert store_session.calls == []

    def test_failed_upload_records_nothing(self, client, auth, buyer, store_session):
        inv = _invoice(client, auth(buyer))
        store_session.fail_on.add("bad.jpg")
        res = self._upload(client, auth(buyer), inv["id"], ["good.jpg", "bad.jpg"])
        assert res.status_code == 503
        assert PurchaseAttachment.query.count() == 0

    def test_forbidden_before_upload(self, client, auth, buyer, outsider, store_session):
        inv = _invoice(client, auth(buyer))
        res = self._upload(client, auth(outsider), inv["id"], ["a.jpg"])
        assert res.status_code == 403
        assert store_session.calls == []


# ═════════════════════════════════════════════════════════════════════════════
# Instant expenses
# ═════════════════════════════════════════════════════════════════════════════


class TestExpenseSheets:
    def _line(self, client, headers, sheet_id, **fields):
        body = {"reason": "fuel", "amount": 100}
        body.update(fields)
        return client.post(f"{SHEETS}/{sheet_id}/lines", json=body, headers=headers)

    def test_new_sheet_is_open_and_empty(self, client, auth, buyer):
        sheet = _sheet(client, auth(buyer))
        assert sheet["id"].startswith("CUST-")
        assert sheet["status"] == "OPEN"
        assert sheet["totalSpent"] == 0
        assert sheet["lineCount"] == 0
        assert sheet["remaining"] == 1000

    def test_totals_include_bank_fees(self, client, auth, buyer):
        sheet = _sheet(client, auth(buyer))
        assert self._line(client, auth(buyer), sheet["id"], amount=100, bankFees=2.5).status_code == 201
        assert self._line(client, auth(buyer), sheet["id"], amount="49.5").status_code == 201

        listed = client.get(SHEETS, headers=auth(buyer)).get_json()["items"]
        assert listed[0]["totalSpent"] == pytest.approx(152.0)
        assert listed[0]["lineCount"] == 2
        assert listed[0]["remaining"] == pytest.approx(848.0)

    def test_lines_latest_date_first(self, client, auth, buyer):
        sheet = _sheet(client, auth(buyer))
        self._line(client, auth(buyer), sheet["id"], date="2024-01-02", company="A")
        self._line(client, auth(buyer), sheet["id"], date="2024-02-02", company="B")
        detail = client.get(f"{SHEETS}/{sheet['id']}", headers=auth(buyer)).get_json()
        assert [line["company"] for line in detail["lines"]] == ["B", "A"]
        assert detail["sheet"]["lineCount"] == 2

    def test_reason_required(self, client, auth, buyer):
        sheet = _sheet(client, auth(buyer))
        res = self._line(client, auth(buyer), sheet["id"], reason="  ")
        assert res.status_code == 400
        assert res.get_json()["details"] == {"reason": "required"}
        assert InstantExpenseLine.query.count() == 0

    def test_delete_line(self, client, auth, buyer):
        sheet = _sheet(client, auth(buyer))
        line = self._line(client, auth(buyer), sheet["id"]).get_json()
        res = client.delete(f"{SHEETS}/{sheet['id']}/lines/{line['id']}", headers=auth(buyer))
        assert res.status_code == 200
        assert client.get(f"{SHEETS}/{sheet['id']}", headers=auth(buyer)).get_json()["lines"] == []

    def test_delete_line_from_another_sheet(self, client, auth, buyer):
        first = _sheet(client, auth(buyer))
        second = _sheet(client, auth(buyer))
        line = self._line(client, auth(buyer), first["id"]).get_json()
        res = client.delete(f"{SHEETS}/{second['id']}/lines/{line['id']}", headers=auth(buyer))
        assert res.status_code == 404
        assert InstantExpenseLine.query.count() == 1

    def test_closed_sheet_rejects_line_changes(self, client, auth, buyer):
        sheet = _sheet(client, auth(buyer))
        line = self._line(client, auth(buyer), sheet["id"]).get_json()
        closed = client.post(f"{SHEETS}/{sheet['id']}/close", headers=auth(buyer))
        assert closed.status_code == 200
        assert closed.get_json()["status"] == "CLOSED"

        res = self._line(client, auth(buyer), sheet["id"])
        assert res.status_code == 409
        assert res.get_json()["actual_state"] == "CLOSED"
        res = client.delete(f"{SHEETS}/{sheet['id']}/lines/{line['id']}", headers=auth(buyer))
        assert res.status_code == 409
        assert InstantExpenseLine.query.count() == 1

    def test_close_twice_is_harmless(self, client, auth, buyer):
        sheet = _sheet(client, auth(buyer))
        client.post(f"{SHEETS}/{sheet['id']}/close", headers=auth(buyer))
        res = client.post(f"{SHEETS}/{sheet['id']}/close", headers=auth(buyer))
        assert res.status_code == 200

    def test_employee_sees_only_own_sheets(self, client, auth, buyer, second_buyer, admin):
        mine = _sheet(client, auth(buyer))
        _sheet(client, auth(second_buyer))
        listed = client.get(SHEETS, headers=auth(buyer)).get_json()["items"]
        assert [s["id"] for s in listed] == [mine["id"]]
        assert client.get(f"{SHEETS}/{mine['id']}", headers=auth(second_buyer)).status_code == 404
        assert self._line(client, auth(second_buyer), mine["id"]).status_code == 404
        assert len(client.get(SHEETS, headers=auth(admin)).get_json()["items"]) == 2

    def test_bad_custody_amount(self, client, auth, buyer):
        res = client.post(SHEETS, json={"custodyAmount": "lots"}, headers=auth(buyer))
        assert res.status_code == 400
        assert res.get_json()["details"] == {"custodyAmount": "number"}
