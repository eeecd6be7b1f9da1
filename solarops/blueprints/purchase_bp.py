"""
Solar Operations Backend
Purchases & Instant Expenses Blueprint.

Both sub-APIs require the purchase_management permission flag.

Endpoints:
    GET    /api/v1/purchase-invoices
    POST   /api/v1/purchase-invoices
    GET    /api/v1/purchase-invoices/<id>                   with attachments + logs
    POST   /api/v1/purchase-invoices/<id>/hide              { "reason": "..." }
    POST   /api/v1/purchase-invoices/<id>/attachments       multipart: attachments[], type

    GET    /api/v1/instant-expenses/sheets
    POST   /api/v1/instant-expenses/sheets
    GET    /api/v1/instant-expenses/sheets/<id>             { sheet, lines }
    POST   /api/v1/instant-expenses/sheets/<id>/lines
    DELETE /api/v1/instant-expenses/sheets/<id>/lines/<lineId>
    POST   /api/v1/instant-expenses/sheets/<id>/close
"""

import logging

from flask import Blueprint, g, jsonify, request

from solarops.blueprints import pagination_args, register_error_handlers
from solarops.integrations.document_store import UploadedFile
from solarops.services import expense_service, purchase_service
from solarops.services.access_guard import resolve_caller

logger = logging.getLogger(__name__)

purchase_bp = register_error_handlers(Blueprint("purchase_bp", __name__, url_prefix="/api/v1"))


def _caller():
    return resolve_caller(getattr(g, "caller_id", None))


# ── Purchase invoices ────────────────────────────────────────────────────────


@purchase_bp.route("/purchase-invoices", methods=["GET"])
def list_purchase_invoices():
    caller = _caller()
    limit, offset = pagination_args()
    items, total = purchase_service.list_invoices(caller, limit=limit, offset=offset)
    return jsonify({"items": items, "total": total, "limit": limit, "offset": offset})


@purchase_bp.route("/purchase-invoices", methods=["POST"])
def create_purchase_invoice():
    data = request.get_json(silent=True) or {}
    invoice = purchase_service.create_invoice(_caller(), data)
    return jsonify(invoice.to_dict()), 201


@purchase_bp.route("/purchase-invoices/<invoice_id>", methods=["GET"])
def get_purchase_invoice(invoice_id):
    invoice = purchase_service.get_invoice(_caller(), invoice_id)
    return jsonify(invoice.to_dict(include_children=True))


@purchase_bp.route("/purchase-invoices/<invoice_id>/hide", methods=["POST"])
def hide_purchase_invoice(invoice_id):
    data = request.get_json(silent=True) or {}
    invoice = purchase_service.hide_invoice(_caller(), invoice_id, data.get("reason"))
    return jsonify(invoice.to_dict())


@purchase_bp.route("/purchase-invoices/<invoice_id>/attachments", methods=["POST"])
def upload_purchase_attachments(invoice_id):
    uploads = [
        UploadedFile(
            filename=f.filename,
            content=f.read(),
            content_type=f.mimetype or "application/octet-stream",
        )
        for f in request.files.getlist("attachments")
        if f and f.filename
    ]
    rows = purchase_service.add_attachments(
        _caller(), invoice_id, uploads, attachment_type=request.form.get("type"),
    )
    return jsonify({"attachments": [a.to_dict() for a in rows]}), 201


# ── Instant expenses ─────────────────────────────────────────────────────────


@purchase_bp.route("/instant-expenses/sheets", methods=["GET"])
def list_expense_sheets():
    return jsonify({"items": expense_service.list_sheets(_caller())})


@purchase_bp.route("/instant-expenses/sheets", methods=["POST"])
def create_expense_sheet():
    data = request.get_json(silent=True) or {}
    sheet = expense_service.create_sheet(_caller(), data)
    return jsonify(expense_service.sheet_summary(sheet)), 201


@purchase_bp.route("/instant-expenses/sheets/<sheet_id>", methods=["GET"])
def get_expense_sheet(sheet_id):
    return jsonify(expense_service.get_sheet(_caller(), sheet_id))


@purchase_bp.route("/instant-expenses/sheets/<sheet_id>/lines", methods=["POST"])
def add_expense_line(sheet_id):
    data = request.get_json(silent=True) or {}
    line = expense_service.add_line(_caller(), sheet_id, data)
    return jsonify(line.to_dict()), 201


@purchase_bp.route("/instant-expenses/sheets/<sheet_id>/lines/<line_id>", methods=["DELETE"])
def delete_expense_line(sheet_id, line_id):
    expense_service.delete_line(_caller(), sheet_id, line_id)
    return jsonify({"deleted": True, "id": line_id})


@purchase_bp.route("/instant-expenses/sheets/<sheet_id>/close", methods=["POST"])
def close_expense_sheet(sheet_id):
    sheet = expense_service.close_sheet(_caller(), sheet_id)
    return jsonify(expense_service.sheet_summary(sheet))
