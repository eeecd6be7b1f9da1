"""
Report & Project Workflow Blueprint.

Endpoints:
    POST   /api/v1/reports                                  create (JSON)
    GET    /api/v1/reports                                  list visible reports
    GET    /api/v1/reports/export                           CSV (import_export flag)
    GET    /api/v1/reports/<id>                             caller-filtered view
    PUT    /api/v1/reports/<id>                             general edit (version CAS)
    DELETE /api/v1/reports/<id>

    POST   /api/v1/reports/<id>/assign-team                 { "teamId": 3 }
    POST   /api/v1/reports/<id>/accept-team
    POST   /api/v1/reports/<id>/stages/<stageId>/confirm    comment + files
    POST   /api/v1/reports/<id>/attachments                 stageId + files
    POST   /api/v1/reports/<id>/exceptions                  comment + files
    POST   /api/v1/reports/<id>/admin-notes                 { "content": "..." }
    POST   /api/v1/reports/<id>/admin-notes/<noteId>/replies
    POST   /api/v1/reports/<id>/admin-notes/<noteId>/read

Evidence may arrive as multipart/form-data (``files`` parts, text fields
alongside) or as JSON with ``files: [{url, fileName}]`` referencing
objects already in the document store.

Layer contract:
    - Blueprint: parse input, call service, serialise for the caller.
    - NO db.session calls and NO role checks here.
"""

import logging

from flask import Blueprint, Response, g, jsonify, request

from solarops.blueprints import pagination_args, register_error_handlers
from solarops.integrations.document_store import UploadedFile
from solarops.services import project_workflow_service as workflow
from solarops.services import report_service
from solarops.services.access_guard import resolve_caller

logger = logging.getLogger(__name__)

report_bp = register_error_handlers(Blueprint("report_bp", __name__, url_prefix="/api/v1"))


# ── Helpers ──────────────────────────────────────────────────────────────────


def _caller():
    return resolve_caller(getattr(g, "caller_id", None))


def _evidence_request():
    """Return (fields, uploads, file_refs) for multipart or JSON bodies."""
    if request.mimetype == "multipart/form-data":
        uploads = [
            UploadedFile(
                filename=f.filename or "file",
                content=f.read(),
                content_type=f.mimetype or "application/octet-stream",
            )
            for f in request.files.getlist("files")
            if f and f.filename
        ]
        return request.form.to_dict(), uploads, []
    data = request.get_json(silent=True) or {}
    return data, [], data.get("files") or []


def _report_response(report, status=200):
    return jsonify(report_service.serialize_report(report, _caller())), status


# ── CRUD ─────────────────────────────────────────────────────────────────────


@report_bp.route("/reports", methods=["POST"])
def create_report():
    """Create a report of any type for the calling employee."""
    owner = _caller()
    data = request.get_json(silent=True) or {}
    report = report_service.create_report(
        owner,
        data.get("type") or "",
        branch_id=data.get("branchId"),
        content=data.get("content"),
        team_id=data.get("teamId"),
    )
    return jsonify(report_service.serialize_report(report, owner)), 201


@report_bp.route("/reports", methods=["GET"])
def list_reports():
    viewer = _caller()
    limit, offset = pagination_args()
    filters = {
        "type": request.args.get("type"),
        "status": request.args.get("status"),
        "projectWorkflowStatus": request.args.get("projectWorkflowStatus"),
        "ownerUserId": request.args.get("ownerUserId", type=int),
    }
    items, total = report_service.list_reports(viewer, filters, limit=limit, offset=offset)
    return jsonify({"items": items, "total": total, "limit": limit, "offset": offset})


@report_bp.route("/reports/export", methods=["GET"])
def export_reports():
    content = report_service.export_reports_csv(_caller(), {"type": request.args.get("type")})
    return Response(
        content,
        mimetype="text/csv",
        headers={"Content-Disposition": "attachment; filename=reports.csv"},
    )


@report_bp.route("/reports/<report_id>", methods=["GET"])
def get_report(report_id):
    return jsonify(report_service.get_report(report_id, _caller()))


@report_bp.route("/reports/<report_id>", methods=["PUT"])
def update_report(report_id):
    data = request.get_json(silent=True) or {}
    report = report_service.update_report(report_id, _caller(), data)
    return _report_response(report)


@report_bp.route("/reports/<report_id>", methods=["DELETE"])
def delete_report(report_id):
    report_service.delete_report(report_id, _caller())
    return jsonify({"deleted": True, "id": report_id})


# ── Workflow ─────────────────────────────────────────────────────────────────


@report_bp.route("/reports/<report_id>/assign-team", methods=["POST"])
def assign_team(report_id):
    data = request.get_json(silent=True) or {}
    report = workflow.assign_team(report_id, data.get("teamId"), g.caller_id)
    return _report_response(report)


@report_bp.route("/reports/<report_id>/accept-team", methods=["POST"])
def accept_team(report_id):
    report = workflow.accept_team(report_id, g.caller_id)
    return _report_response(report)


@report_bp.route("/reports/<report_id>/stages/<stage_id>/confirm", methods=["POST"])
def confirm_stage(report_id, stage_id):
    """Unified stage confirmation; the stage key selects the transition."""
    fields, uploads, refs = _evidence_request()
    report = workflow.confirm_stage(
        report_id, stage_id, g.caller_id,
        comment=fields.get("comment"), uploads=uploads, file_refs=refs,
    )
    return _report_response(report)


@report_bp.route("/reports/<report_id>/attachments", methods=["POST"])
def attach_files(report_id):
    fields, uploads, refs = _evidence_request()
    report = workflow.attach_files(
        report_id, g.caller_id, uploads=uploads, file_refs=refs, stage_id=fields.get("stageId"),
    )
    return _report_response(report)


@report_bp.route("/reports/<report_id>/exceptions", methods=["POST"])
def add_exception(report_id):
    fields, uploads, refs = _evidence_request()
    report = workflow.add_exception(
        report_id, g.caller_id, comment=fields.get("comment"), uploads=uploads, file_refs=refs,
    )
    return _report_response(report, 201)


# ── Admin notes ──────────────────────────────────────────────────────────────


@report_bp.route("/reports/<report_id>/admin-notes", methods=["POST"])
def add_admin_note(report_id):
    data = request.get_json(silent=True) or {}
    report = workflow.add_admin_note(report_id, g.caller_id, data.get("content"))
    return _report_response(report, 201)


@report_bp.route("/reports/<report_id>/admin-notes/<note_id>/replies", methods=["POST"])
def reply_to_note(report_id, note_id):
    data = request.get_json(silent=True) or {}
    report = workflow.reply_to_note(report_id, note_id, g.caller_id, data.get("content"))
    return _report_response(report, 201)


@report_bp.route("/reports/<report_id>/admin-notes/<note_id>/read", methods=["POST"])
def mark_note_read(report_id, note_id):
    report = workflow.mark_note_read(report_id, note_id, g.caller_id)
    return _report_response(report)
