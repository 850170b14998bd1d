# backend/app/services/credit_notes.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..config import settings
from ..domain.audit import audit_write
from ..domain.billing.money import ZERO, money, to_decimal, total
from ..domain.clock import SYSTEM_CLOCK, Clock
from ..domain.errors import BillingError, ConcurrencyConflict, InvalidTransition
from ..models import CreditNote, CreditNoteLine, Invoice, InvoiceLine
from .numbering import next_credit_note_number
from .ownership import must_get_credit_note, must_get_invoice

log = logging.getLogger(__name__)

CREDITABLE = {"issued", "partially_paid", "paid"}
REASONS = {"refund", "correction", "discount", "other"}


@dataclass(frozen=True)
class CreditRequest:
    invoice_line_id: int
    amount: Decimal  # tax-inclusive, positive
    description: Optional[str] = None

    @classmethod
    def parse(cls, raw: Any) -> "CreditRequest":
        if isinstance(raw, CreditRequest):
            return raw
        get = raw.get if isinstance(raw, dict) else (lambda k, d=None: getattr(raw, k, d))
        amt = to_decimal(get("amount"))
        if amt is None:
            raise BillingError("invalid_credit_amount", "credit line amount is required")
        return cls(invoice_line_id=int(get("invoice_line_id")), amount=amt, description=get("description"))


def credited_so_far(db: Session, *, invoice_line_id: int) -> Decimal:
    """Gross amount already credited against an invoice line (positive)."""
    v = db.scalar(
        select(func.coalesce(func.sum(CreditNoteLine.total_amount), 0)).where(
            CreditNoteLine.invoice_line_id == invoice_line_id
        )
    )
    return money(-Decimal(str(v)))


def _split_tax(line: InvoiceLine, gross: Decimal) -> Decimal:
    line_total = money(line.total_amount)
    if line_total <= ZERO:
        return ZERO
    return money(gross * money(line.tax_amount) / line_total)


def create_credit_note(
    db: Session,
    *,
    org_id: int,
    invoice_id: int,
    reason: str,
    lines: Iterable[Any],
    notes: Optional[str] = None,
    clock: Clock = SYSTEM_CLOCK,
    actor: Optional[str] = None,
) -> CreditNote:
    """
    Draft credit note against lines of an issued invoice.

    Amounts are gross (tax included). Each one must be positive and fit in
    what is left of the line after earlier credits; tax is split in the
    line's own tax/total ratio. Credit lines are stored negative and the
    invoice lines themselves are never touched.
    """
    inv: Invoice = must_get_invoice(db, org_id=org_id, invoice_id=invoice_id)
    if inv.status not in CREDITABLE:
        raise InvalidTransition(
            "invalid_invoice_state",
            f"credit notes need an issued, partially paid or paid invoice; {inv.invoice_number} is {inv.status}",
        )
    why = (reason or "").strip().lower()
    if why not in REASONS:
        raise BillingError("invalid_credit_reason", f"reason must be one of {sorted(REASONS)}")

    requests = [CreditRequest.parse(r) for r in lines]
    if not requests:
        raise BillingError("empty_credit_note", "at least one credit line is required")

    by_id = {l.id: l for l in inv.lines}
    pending: dict[int, Decimal] = {}
    today = clock.today()

    cn = CreditNote(
        org_id=org_id,
        invoice_id=inv.id,
        status="draft",
        reason=why,
        notes=notes,
        credit_note_date=today,
    )

    for n, req in enumerate(requests, start=1):
        line = by_id.get(req.invoice_line_id)
        if line is None:
            raise BillingError(
                "invoice_line_not_found",
                f"line {req.invoice_line_id} is not on invoice {inv.invoice_number}",
            )
        gross = money(req.amount)
        if gross <= ZERO:
            raise BillingError("invalid_credit_amount", "credit line amount must be positive")

        already = credited_so_far(db, invoice_line_id=line.id) + pending.get(line.id, ZERO)
        remaining = money(line.total_amount) - already
        if gross > remaining:
            raise BillingError(
                "credit_exceeds_line",
                f"credit {gross} exceeds remaining {remaining} on line {line.line_number}",
                invoice_line_id=line.id,
            )
        pending[line.id] = pending.get(line.id, ZERO) + gross

        tax = _split_tax(line, gross)
        cn.lines.append(
            CreditNoteLine(
                invoice_line_id=line.id,
                line_number=n,
                description=(req.description or f"Credit for: {line.description}")[:300],
                amount=-(gross - tax),
                tax_amount=-tax,
                total_amount=-gross,
            )
        )

    cn.sub_total = total(l.amount for l in cn.lines)
    cn.tax_amount = total(l.tax_amount for l in cn.lines)
    cn.total_amount = total(l.total_amount for l in cn.lines)
    # numbered last: a rejected note must not burn a number
    cn.credit_note_number = next_credit_note_number(
        db, org_id=org_id, prefix=settings.billing_credit_note_prefix, on=today
    )

    db.add(cn)
    db.flush()
    audit_write(
        db,
        org_id=org_id,
        actor=actor,
        action="credit_note.create",
        entity_type="credit_note",
        entity_id=cn.id,
        after={"invoice_id": inv.id, "number": cn.credit_note_number, "total_amount": cn.total_amount},
        at=clock.now(),
    )
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ConcurrencyConflict("credit note number was taken concurrently") from e

    log.info(
        "credit note created %s",
        cn.credit_note_number,
        extra={"org_id": org_id, "invoice_id": inv.id},
    )
    return cn


def issue_credit_note(
    db: Session,
    *,
    org_id: int,
    credit_note_id: int,
    expected_version: Optional[int] = None,
    clock: Clock = SYSTEM_CLOCK,
    actor: Optional[str] = None,
) -> CreditNote:
    cn = must_get_credit_note(db, org_id=org_id, credit_note_id=credit_note_id)
    if expected_version is not None and int(expected_version) != int(cn.version):
        raise ConcurrencyConflict(
            f"credit note {cn.id} is at version {cn.version}, caller expected {expected_version}",
            current_version=cn.version,
        )
    if cn.status != "draft":
        raise InvalidTransition("credit_note_already_issued", f"credit note {cn.credit_note_number} is {cn.status}")
    if not cn.lines:
        raise BillingError("empty_credit_note", "credit note has no lines")

    cn.status = "issued"
    cn.issued_at = clock.now()
    audit_write(
        db,
        org_id=org_id,
        actor=actor,
        action="credit_note.issue",
        entity_type="credit_note",
        entity_id=cn.id,
        before={"status": "draft"},
        after={"status": "issued"},
        at=clock.now(),
    )
    try:
        db.commit()
    except StaleDataError as e:
        db.rollback()
        raise ConcurrencyConflict(f"credit note {cn.id} was changed concurrently") from e
    return cn
