"""
Instant expenses — cash custody sheets and the lines spent from them.

Same gate as purchase invoices: the ``purchase_management`` flag, with
plain employees limited to their own sheets.  A sheet's spend is the sum of
``amount + bank_fees`` over its lines; lines can only be added to or
removed from an OPEN sheet.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select

from solarops.core.exceptions import NotFoundError, PreconditionFailedError, ValidationError
from solarops.models import db
from solarops.models.auth import User
from solarops.models.purchase import SHEET_CLOSED, SHEET_OPEN, InstantExpenseLine, InstantExpenseSheet
from solarops.services import access_guard
from solarops.services.purchase_service import CAPABILITY, parse_amount, parse_date, sees_only_own

logger = logging.getLogger(__name__)

_LINE_SPEND = InstantExpenseLine.amount + func.coalesce(InstantExpenseLine.bank_fees, 0)


def _text(data: dict, key: str) -> str | None:
    value = data.get(key)
    if value is None:
        return None
    return str(value).strip() or None


def _commit():
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise


def _load_visible(caller: User, sheet_id: str) -> InstantExpenseSheet:
    sheet = db.session.get(InstantExpenseSheet, sheet_id)
    if sheet is None or (sees_only_own(caller) and sheet.user_id != caller.id):
        raise NotFoundError(resource="InstantExpenseSheet", resource_id=sheet_id)
    return sheet


def _require_open(sheet: InstantExpenseSheet, transition: str) -> None:
    if not sheet.is_open:
        raise PreconditionFailedError(transition, [SHEET_OPEN], sheet.status)


def _totals(sheet_id: str):
    spent, count = db.session.execute(
        select(func.coalesce(func.sum(_LINE_SPEND), 0), func.count(InstantExpenseLine.id))
        .where(InstantExpenseLine.sheet_id == sheet_id)
    ).one()
    return spent, count


def sheet_summary(sheet: InstantExpenseSheet) -> dict:
    spent, count = _totals(sheet.id)
    return sheet.to_dict(total_spent=spent, line_count=count)


# ── Sheets ───────────────────────────────────────────────────────────────────


def list_sheets(caller: User) -> list[dict]:
    """Visible sheets with their spend and line count, most recently touched first."""
    access_guard.require_capability(caller, CAPABILITY)
    totals = (
        select(
            InstantExpenseLine.sheet_id.label("sheet_id"),
            func.sum(_LINE_SPEND).label("spent"),
            func.count(InstantExpenseLine.id).label("line_count"),
        )
        .group_by(InstantExpenseLine.sheet_id)
        .subquery()
    )
    q = (
        select(InstantExpenseSheet, totals.c.spent, totals.c.line_count)
        .outerjoin(totals, totals.c.sheet_id == InstantExpenseSheet.id)
        .order_by(InstantExpenseSheet.last_modified.desc(), InstantExpenseSheet.id)
    )
    if sees_only_own(caller):
        q = q.where(InstantExpenseSheet.user_id == caller.id)
    return [
        sheet.to_dict(total_spent=spent or 0, line_count=count or 0)
        for sheet, spent, count in db.session.execute(q).all()
    ]


def create_sheet(caller: User, data: dict) -> InstantExpenseSheet:
    access_guard.require_capability(caller, CAPABILITY)
    sheet = InstantExpenseSheet(
        custody_number=_text(data, "custodyNumber"),
        custody_amount=parse_amount(data.get("custodyAmount"), "custodyAmount", default_zero=True),
        notes=_text(data, "notes"),
        user_id=caller.id,
        status=SHEET_OPEN,
    )
    db.session.add(sheet)
    _commit()
    logger.info(
        "Custody sheet %s opened", sheet.id,
        extra={"user_id": caller.id, "event_type": "expense_sheet_created"},
    )
    return sheet


def get_sheet(caller: User, sheet_id: str) -> dict:
    """Sheet summary plus its lines, latest expense date first."""
    access_guard.require_capability(caller, CAPABILITY)
    sheet = _load_visible(caller, sheet_id)
    lines = sheet.lines.order_by(
        InstantExpenseLine.date.desc(), InstantExpenseLine.created_at.desc()
    ).all()
    return {"sheet": sheet_summary(sheet), "lines": [line.to_dict() for line in lines]}


def close_sheet(caller: User, sheet_id: str) -> InstantExpenseSheet:
    """Close an open sheet; closing a closed sheet is a no-op."""
    access_guard.require_capability(caller, CAPABILITY)
    sheet = _load_visible(caller, sheet_id)
    if sheet.status == SHEET_CLOSED:
        return sheet
    sheet.status = SHEET_CLOSED
    sheet.touch()
    _commit()
    logger.info(
        "Custody sheet %s closed", sheet.id,
        extra={"user_id": caller.id, "event_type": "expense_sheet_closed"},
    )
    return sheet


# ── Lines ────────────────────────────────────────────────────────────────────


def add_line(caller: User, sheet_id: str, data: dict) -> InstantExpenseLine:
    """Record one expense on an open sheet.  ``reason`` is required."""
    access_guard.require_capability(caller, CAPABILITY)
    sheet = _load_visible(caller, sheet_id)
    _require_open(sheet, "addExpenseLine")
    reason = _text(data, "reason")
    if not reason:
        raise ValidationError("reason is required", details={"reason": "required"})

    line = InstantExpenseLine(
        sheet_id=sheet.id,
        date=parse_date(data.get("date"), "date"),
        company=_text(data, "company"),
        invoice_number=_text(data, "invoiceNumber"),
        description=_text(data, "description"),
        reason=reason,
        amount=parse_amount(data.get("amount"), "amount", default_zero=True),
        bank_fees=parse_amount(data.get("bankFees"), "bankFees"),
        buyer_name=_text(data, "buyerName"),
        notes=_text(data, "notes"),
    )
    db.session.add(line)
    sheet.touch()
    _commit()
    return line


def delete_line(caller: User, sheet_id: str, line_id: str) -> None:
    access_guard.require_capability(caller, CAPABILITY)
    sheet = _load_visible(caller, sheet_id)
    _require_open(sheet, "deleteExpenseLine")
    line = db.session.execute(
        select(InstantExpenseLine).where(
            InstantExpenseLine.id == line_id, InstantExpenseLine.sheet_id == sheet.id
        )
    ).scalar_one_or_none()
    if line is None:
        raise NotFoundError(resource="InstantExpenseLine", resource_id=line_id)
    db.session.delete(line)
    sheet.touch()
    _commit()
