"""
Tests: Report Content Model — typed payloads for the ``details`` column.

Covers the per-type shape, tolerant decoding of legacy and corrupted
rows, and preservation of keys the payload classes do not model.
"""

import json
import logging

import pytest

from solarops.core.exceptions import ValidationError
from solarops.services.report_content import (
    AdminNote,
    Attachment,
    InquiryContent,
    MaintenanceContent,
    ProjectContent,
    StageRecord,
    content_from_dict,
    dumps_content,
    empty_content,
    loads_content,
    loads_json,
)


def _project_doc():
    return {
        "customers": [{"name": "Al Noor Farm", "phone": "0500000000"}],
        "updates": [
            {
                "id": "concreteWorks",
                "label": "Concrete works",
                "completed": True,
                "timestamp": "2025-03-01T08:00:00+00:00",
                "comment": "poured",
                "files": [{"id": "f1", "url": "https://cdn/x/a.jpg", "fileName": "a.jpg", "uploadedBy": 7}],
            },
        ],
        "exceptions": [],
        "adminNotes": [
            {"id": "n1", "authorId": 1, "authorName": "Admin", "content": "check cables",
             "timestamp": "2025-03-02T09:00:00+00:00", "replies": [], "readBy": [7]},
        ],
        "systemSize": "12kW",
    }


class TestShapes:
    def test_project_payload_always_has_updates(self):
        content = empty_content("Project")
        assert isinstance(content, ProjectContent)
        assert content.to_dict()["updates"] == []

    def test_inquiry_payload_has_no_updates_key(self):
        content = empty_content("Inquiry")
        assert isinstance(content, InquiryContent)
        assert "updates" not in content.to_dict()

    def test_unknown_type_is_rejected(self):
        with pytest.raises(ValidationError):
            empty_content("Warranty")

    def test_typed_records_are_parsed(self):
        content = content_from_dict("Project", _project_doc())
        stage = content.find_stage("concreteWorks")
        assert isinstance(stage, StageRecord)
        assert stage.files[0] == Attachment(id="f1", url="https://cdn/x/a.jpg", file_name="a.jpg", uploaded_by=7)
        assert isinstance(content.find_note("n1"), AdminNote)
        assert content.find_note("n1").read_by == [7]

    def test_unknown_keys_survive_a_round_trip(self):
        doc = _project_doc()
        restored = json.loads(dumps_content(content_from_dict("Project", doc)))
        assert restored["systemSize"] == "12kW"
        assert restored["updates"][0]["comment"] == "poured"


class TestTolerantDecoding:
    def test_serialise_then_deserialise_is_equal(self):
        content = content_from_dict("Project", _project_doc())
        assert loads_content("Project", dumps_content(content)) == content

    def test_corrupted_text_yields_empty_payload(self, caplog):
        with caplog.at_level(logging.WARNING):
            content = loads_content("Project", "{not json", report_id="r1")
        assert content == ProjectContent()
        assert any("Malformed report content" in r.message for r in caplog.records)

    def test_non_object_json_yields_empty_payload(self):
        assert loads_content("Maintenance", "[1, 2, 3]") == MaintenanceContent()

    def test_empty_and_null_columns(self):
        assert loads_content("Project", None) == ProjectContent()
        assert loads_content("Project", "") == ProjectContent()

    def test_double_encoded_list_field_is_decoded(self):
        doc = _project_doc()
        doc["updates"] = json.dumps(doc["updates"])
        content = loads_content("Project", json.dumps(doc))
        assert content.find_stage("concreteWorks").completed is True

    def test_malformed_list_field_defaults_to_empty(self):
        doc = _project_doc()
        doc["exceptions"] = "{broken"
        doc["adminNotes"] = {"not": "a list"}
        content = loads_content("Project", json.dumps(doc))
        assert content.exceptions == []
        assert content.admin_notes == []
        assert len(content.updates) == 1

    def test_legacy_string_attachments(self):
        doc = {"updates": [{"id": "secondPayment", "files": ["https://cdn/r/receipt.pdf?token=1"]}]}
        stage = loads_content("Project", json.dumps(doc)).find_stage("secondPayment")
        assert stage.files[0].url == "https://cdn/r/receipt.pdf?token=1"
        assert stage.files[0].file_name == "receipt.pdf"

    def test_records_without_id_are_dropped(self):
        doc = {"updates": [{"label": "orphan"}, {"id": "concreteWorks"}]}
        content = loads_content("Project", json.dumps(doc))
        assert [s.id for s in content.updates] == ["concreteWorks"]

    def test_maintenance_image_lists(self):
        doc = {"beforeImages": ["a.jpg"], "afterImages": "nope"}
        content = loads_content("Maintenance", json.dumps(doc))
        assert content.before_images == ["a.jpg"]
        assert content.after_images == []


class TestLoadsJson:
    def test_default_on_garbage(self):
        assert loads_json("{{", []) == []

    def test_default_on_type_mismatch(self):
        assert loads_json('{"a": 1}', []) == []

    def test_value_when_valid(self):
        assert loads_json('[{"userId": 1}]', []) == [{"userId": 1}]
