"""
Purchase invoices — business logic behind the purchase sub-API.

Every entry point requires the ``purchase_management`` permission flag
(administrators hold it implicitly).  Plain employees with the flag see and
touch only the invoices recorded under their own account; other roles see
every invoice.

Each state change appends a PurchaseLog row in the same transaction.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import func, select

from solarops.core.exceptions import NotFoundError, ValidationError
from solarops.integrations.document_store import document_store, log_orphans
from solarops.models import db
from solarops.models.auth import ROLE_EMPLOYEE, User
from solarops.models.purchase import (
    ATTACHMENT_TYPES,
    PURCHASE_ACTION_ATTACHMENTS,
    PURCHASE_ACTION_CREATED,
    PURCHASE_ACTION_HIDDEN,
    PurchaseAttachment,
    PurchaseInvoice,
    PurchaseLog,
)
from solarops.services import access_guard
from solarops.services.directory import lookup_user

logger = logging.getLogger(__name__)

CAPABILITY = "purchase_management"


# ── Field parsing (shared with expense_service) ──────────────────────────────


def parse_amount(value, field: str, default_zero: bool = False) -> Decimal | None:
    if value is None or value == "":
        if default_zero:
            return Decimal("0")
        return None
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"{field} must be a number", details={field: "number"})
    if not amount.is_finite():
        raise ValidationError(f"{field} must be a number", details={field: "number"})
    return amount.quantize(Decimal("0.01"))


def parse_date(value, field: str) -> date | None:
    if value is None or value == "":
        return None
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        raise ValidationError(f"{field} must be an ISO date (YYYY-MM-DD)", details={field: "date"})


def sees_only_own(user: User) -> bool:
    return user.role == ROLE_EMPLOYEE and not user.is_admin


def _text(data: dict, key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _log(invoice_id: str, action: str, actor: User, comment: str = "") -> None:
    db.session.add(PurchaseLog(purchase_id=invoice_id, action=action, comment=comment, actor_id=actor.id))


def _load_visible(caller: User, invoice_id: str) -> PurchaseInvoice:
    invoice = db.session.get(PurchaseInvoice, invoice_id)
    if invoice is None or (sees_only_own(caller) and invoice.user_id != caller.id):
        raise NotFoundError(resource="PurchaseInvoice", resource_id=invoice_id)
    return invoice


# ── Queries ──────────────────────────────────────────────────────────────────


def list_invoices(caller: User, limit: int = 100, offset: int = 0):
    """Invoices visible to ``caller``, latest invoice date first.

    Returns:
        (serialised invoices, total count)
    """
    access_guard.require_capability(caller, CAPABILITY)
    q = select(PurchaseInvoice)
    if sees_only_own(caller):
        q = q.where(PurchaseInvoice.user_id == caller.id)
    total = db.session.execute(select(func.count()).select_from(q.subquery())).scalar_one()
    rows = db.session.execute(
        q.order_by(PurchaseInvoice.invoice_date.desc(), PurchaseInvoice.created_at.desc())
        .offset(offset).limit(limit)
    ).scalars().all()
    return [inv.to_dict() for inv in rows], total


def get_invoice(caller: User, invoice_id: str) -> PurchaseInvoice:
    access_guard.require_capability(caller, CAPABILITY)
    return _load_visible(caller, invoice_id)


# ── Mutations ────────────────────────────────────────────────────────────────


def create_invoice(caller: User, data: dict) -> PurchaseInvoice:
    """Record a purchase invoice.

    ``invoiceNumber`` is required.  Administrators may record it on behalf
    of another employee via ``employeeId``; everyone else records their own.
    """
    access_guard.require_capability(caller, CAPABILITY)
    invoice_number = _text(data, "invoiceNumber")
    if not invoice_number:
        raise ValidationError("invoiceNumber is required", details={"invoiceNumber": "required"})

    employee = caller
    if caller.is_admin and data.get("employeeId") not in (None, ""):
        employee = lookup_user(data["employeeId"])

    invoice = PurchaseInvoice(
        invoice_number=invoice_number,
        vendor=_text(data, "vendor"),
        payee=_text(data, "payee"),
        buyer_name=_text(data, "buyerName"),
        custody_number=_text(data, "custodyNumber"),
        description=_text(data, "description"),
        invoice_date=parse_date(data.get("invoiceDate"), "invoiceDate") or date.today(),
        amount=parse_amount(data.get("amount"), "amount", default_zero=True),
        transfer_fee=parse_amount(data.get("transferFee"), "transferFee"),
        notes=_text(data, "notes"),
        user_id=employee.id,
    )
    db.session.add(invoice)
    try:
        db.session.flush()
        _log(invoice.id, PURCHASE_ACTION_CREATED, caller)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info(
        "Purchase invoice %s recorded for user %s", invoice.id, employee.id,
        extra={"user_id": caller.id, "event_type": "purchase_created"},
    )
    return invoice


def hide_invoice(caller: User, invoice_id: str, reason: str | None) -> PurchaseInvoice:
    """Hide an invoice from review; hiding twice keeps the first reason."""
    access_guard.require_capability(caller, CAPABILITY)
    invoice = _load_visible(caller, invoice_id)
    if invoice.hidden:
        return invoice
    reason = (reason or "").strip()
    invoice.hidden = True
    invoice.hide_reason = reason or None
    invoice.hidden_at = datetime.now(timezone.utc)
    _log(invoice.id, PURCHASE_ACTION_HIDDEN, caller, reason)
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info(
        "Purchase invoice %s hidden", invoice.id,
        extra={"user_id": caller.id, "event_type": "purchase_hidden"},
    )
    return invoice


def add_attachments(caller: User, invoice_id: str, uploads, attachment_type: str | None = None):
    """Store scans for an invoice and record them.

    Raises:
        ValidationError: no files, or an unknown attachment type.
        StoreUnavailableError: an upload failed; nothing is recorded.
    """
    access_guard.require_capability(caller, CAPABILITY)
    invoice = _load_visible(caller, invoice_id)
    uploads = list(uploads or [])
    if not uploads:
        raise ValidationError("No files uploaded", details={"attachments": "required"})
    attachment_type = attachment_type or "invoice_scan"
    if attachment_type not in ATTACHMENT_TYPES:
        raise ValidationError(
            f"Unknown attachment type '{attachment_type}'",
            details={"type": sorted(ATTACHMENT_TYPES)},
        )

    stored = document_store.upload_many(uploads, folder_hint=f"purchases/{invoice.id}")
    rows = [
        PurchaseAttachment(
            purchase_id=invoice.id, type=attachment_type, url=s.url,
            file_name=s.file_name, uploaded_by=caller.id,
        )
        for s in stored
    ]
    try:
        db.session.add_all(rows)
        _log(invoice.id, PURCHASE_ACTION_ATTACHMENTS, caller, f"{len(rows)} file(s)")
        db.session.commit()
    except Exception as exc:
        db.session.rollback()
        log_orphans(stored, reason=f"purchase attachment not recorded ({exc.__class__.__name__})")
        raise
    logger.info(
        "Stored %d attachment(s) for purchase invoice %s", len(rows), invoice.id,
        extra={"user_id": caller.id, "event_type": "purchase_attachments"},
    )
    return rows
