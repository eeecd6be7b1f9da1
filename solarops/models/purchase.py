"""
Solar Operations Backend
Accounting domain models — purchase invoices and instant-expense custody sheets.

Models:
    - PurchaseInvoice: supplier invoice recorded by an employee, hideable
    - PurchaseAttachment: scan / payment proof stored in the document store
    - PurchaseLog: append-only audit trail of invoice actions
    - InstantExpenseSheet: cash custody handed to an employee (OPEN | CLOSED)
    - InstantExpenseLine: one expense spent from a custody sheet

Both sub-APIs are gated by the purchase_management permission flag.
"""

import uuid
from datetime import date, datetime, timezone

from solarops.models import db


# ── Constants ────────────────────────────────────────────────────────────────

REVIEW_NEEDS_REVIEW = "NEEDS_REVIEW"

ATTACHMENT_TYPES = {"invoice_scan", "payment_proof", "other"}

PURCHASE_ACTION_CREATED = "created"
PURCHASE_ACTION_HIDDEN = "hidden"
PURCHASE_ACTION_ATTACHMENTS = "attachments_uploaded"

SHEET_OPEN = "OPEN"
SHEET_CLOSED = "CLOSED"


def _utcnow():
    return datetime.now(timezone.utc)


def _prefixed_id(prefix, length=12):
    return f"{prefix}-{uuid.uuid4().hex[:length].upper()}"


def _money(value):
    return float(value) if value is not None else None


def _iso(value):
    if value is None:
        return None
    if isinstance(value, datetime) and value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


# ═══════════════════════════════════════════════════════════════
# 1. PURCHASE INVOICES
# ═══════════════════════════════════════════════════════════════
class PurchaseInvoice(db.Model):
    __tablename__ = "purchase_invoices"

    id = db.Column(db.String(32), primary_key=True, default=lambda: _prefixed_id("PUR"))
    invoice_number = db.Column(db.String(64), nullable=False)
    vendor = db.Column(db.String(255))
    payee = db.Column(db.String(255))
    buyer_name = db.Column(db.String(255))
    custody_number = db.Column(db.String(64))
    description = db.Column(db.Text)
    invoice_date = db.Column(db.Date, nullable=False, default=date.today, index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    transfer_fee = db.Column(db.Numeric(12, 2), nullable=True)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    notes = db.Column(db.Text)
    review_status = db.Column(db.String(32), nullable=False, default=REVIEW_NEEDS_REVIEW)
    hidden = db.Column(db.Boolean, nullable=False, default=False)
    hide_reason = db.Column(db.Text)
    hidden_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    last_modified = db.Column(
        db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    employee = db.relationship("User")
    attachments = db.relationship(
        "PurchaseAttachment", back_populates="invoice", lazy="dynamic", cascade="all, delete-orphan"
    )
    logs = db.relationship(
        "PurchaseLog", back_populates="invoice", lazy="dynamic", cascade="all, delete-orphan"
    )

    def to_dict(self, include_children=False):
        employee = self.employee
        result = {
            "id": self.id,
            "invoiceNumber": self.invoice_number,
            "vendor": self.vendor,
            "payee": self.payee,
            "buyerName": self.buyer_name,
            "custodyNumber": self.custody_number,
            "description": self.description or "",
            "invoiceDate": self.invoice_date.isoformat() if self.invoice_date else None,
            "amount": _money(self.amount) or 0.0,
            "transferFee": _money(self.transfer_fee),
            "userId": self.user_id,
            "employeeId": employee.username if employee else None,
            "employeeName": (employee.full_name or employee.username) if employee else None,
            "notes": self.notes,
            "reviewStatus": self.review_status,
            "hidden": bool(self.hidden),
            "hideReason": self.hide_reason,
            "hiddenAt": _iso(self.hidden_at),
            "createdAt": _iso(self.created_at),
            "lastModified": _iso(self.last_modified),
        }
        if include_children:
            result["attachments"] = [
                a.to_dict() for a in self.attachments.order_by(
                    PurchaseAttachment.upload_date.desc(), PurchaseAttachment.id.desc()
                )
            ]
            result["logs"] = [
                entry.to_dict() for entry in self.logs.order_by(PurchaseLog.date.desc(), PurchaseLog.id.desc())
            ]
        return result


class PurchaseAttachment(db.Model):
    __tablename__ = "purchase_attachments"

    id = db.Column(db.Integer, primary_key=True)
    purchase_id = db.Column(
        db.String(32), db.ForeignKey("purchase_invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    type = db.Column(db.String(32), nullable=False, default="invoice_scan")
    url = db.Column(db.String(1024), nullable=False)
    file_name = db.Column(db.String(255))
    uploaded_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), index=True)
    upload_date = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    invoice = db.relationship("PurchaseInvoice", back_populates="attachments")

    def to_dict(self):
        return {
            "id": str(self.id),
            "url": self.url,
            "fileName": self.file_name,
            "type": self.type,
            "uploadedBy": self.uploaded_by,
            "uploadDate": _iso(self.upload_date),
        }


class PurchaseLog(db.Model):
    __tablename__ = "purchase_logs"

    id = db.Column(db.Integer, primary_key=True)
    purchase_id = db.Column(
        db.String(32), db.ForeignKey("purchase_invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    action = db.Column(db.String(64), nullable=False)
    comment = db.Column(db.Text)
    actor_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), index=True)
    date = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    invoice = db.relationship("PurchaseInvoice", back_populates="logs")

    def to_dict(self):
        return {
            "id": str(self.id),
            "action": self.action,
            "comment": self.comment or "",
            "actorId": self.actor_id,
            "date": _iso(self.date),
        }


# ═══════════════════════════════════════════════════════════════
# 2. INSTANT EXPENSES (custody sheets)
# ═══════════════════════════════════════════════════════════════
class InstantExpenseSheet(db.Model):
    __tablename__ = "instant_expense_sheets"

    id = db.Column(db.String(32), primary_key=True, default=lambda: _prefixed_id("CUST"))
    custody_number = db.Column(db.String(128))
    custody_amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True
    )
    status = db.Column(db.String(16), nullable=False, default=SHEET_OPEN)
    notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    last_modified = db.Column(
        db.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    lines = db.relationship(
        "InstantExpenseLine", back_populates="sheet", lazy="dynamic", cascade="all, delete-orphan"
    )

    @property
    def is_open(self):
        return self.status == SHEET_OPEN

    def touch(self):
        self.last_modified = _utcnow()

    def to_dict(self, total_spent=None, line_count=None):
        result = {
            "id": self.id,
            "custodyNumber": self.custody_number,
            "custodyAmount": _money(self.custody_amount) or 0.0,
            "userId": self.user_id,
            "status": self.status,
            "notes": self.notes,
            "createdAt": _iso(self.created_at),
            "lastModified": _iso(self.last_modified),
        }
        if total_spent is not None:
            result["totalSpent"] = _money(total_spent)
            result["remaining"] = round(result["custodyAmount"] - result["totalSpent"], 2)
        if line_count is not None:
            result["lineCount"] = int(line_count)
        return result


class InstantExpenseLine(db.Model):
    __tablename__ = "instant_expense_lines"

    id = db.Column(db.String(40), primary_key=True, default=lambda: _prefixed_id("LINE", 16))
    sheet_id = db.Column(
        db.String(32), db.ForeignKey("instant_expense_sheets.id", ondelete="CASCADE"), nullable=False, index=True
    )
    date = db.Column(db.Date, nullable=True, index=True)
    company = db.Column(db.String(255))
    invoice_number = db.Column(db.String(64))
    description = db.Column(db.Text)
    reason = db.Column(db.String(64), nullable=False, index=True)
    amount = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    bank_fees = db.Column(db.Numeric(12, 2), nullable=True)
    buyer_name = db.Column(db.String(255))
    notes = db.Column(db.Text)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    sheet = db.relationship("InstantExpenseSheet", back_populates="lines")

    def to_dict(self):
        return {
            "id": self.id,
            "sheetId": self.sheet_id,
            "date": self.date.isoformat() if self.date else None,
            "company": self.company,
            "invoiceNumber": self.invoice_number,
            "description": self.description,
            "reason": self.reason,
            "amount": _money(self.amount) or 0.0,
            "bankFees": _money(self.bank_fees),
            "buyerName": self.buyer_name,
            "notes": self.notes,
            "createdAt": _iso(self.created_at),
        }
