# backend/app/services/ownership.py
from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..domain.errors import NotFound
from ..models import CreditNote, Invoice, InvoiceRun, Lease, LeaseRecurringCharge, Unit, UtilityStatement


def must_get_unit(db: Session, *, org_id: int, unit_id: int) -> Unit:
    row = db.scalar(select(Unit).where(Unit.id == unit_id, Unit.org_id == org_id))
    if not row:
        raise NotFound("unit", unit_id)
    return row


def must_get_lease(db: Session, *, org_id: int, lease_id: int) -> Lease:
    row = db.scalar(select(Lease).where(Lease.id == lease_id, Lease.org_id == org_id))
    if not row:
        raise NotFound("lease", lease_id)
    return row


def must_get_invoice(db: Session, *, org_id: int, invoice_id: int) -> Invoice:
    row = db.scalar(select(Invoice).where(Invoice.id == invoice_id, Invoice.org_id == org_id))
    if not row:
        raise NotFound("invoice", invoice_id)
    return row


def must_get_run(db: Session, *, org_id: int, run_id: int) -> InvoiceRun:
    row = db.scalar(select(InvoiceRun).where(InvoiceRun.id == run_id, InvoiceRun.org_id == org_id))
    if not row:
        raise NotFound("invoice_run", run_id)
    return row


def must_get_credit_note(db: Session, *, org_id: int, credit_note_id: int) -> CreditNote:
    row = db.scalar(select(CreditNote).where(CreditNote.id == credit_note_id, CreditNote.org_id == org_id))
    if not row:
        raise NotFound("credit_note", credit_note_id)
    return row


def must_get_statement(db: Session, *, org_id: int, statement_id: int) -> UtilityStatement:
    row = db.scalar(
        select(UtilityStatement).where(UtilityStatement.id == statement_id, UtilityStatement.org_id == org_id)
    )
    if not row:
        raise NotFound("utility_statement", statement_id)
    return row


def must_get_recurring_charge(db: Session, *, org_id: int, charge_id: int) -> LeaseRecurringCharge:
    row = db.scalar(
        select(LeaseRecurringCharge).where(LeaseRecurringCharge.id == charge_id, LeaseRecurringCharge.org_id == org_id)
    )
    if not row:
        raise NotFound("recurring_charge", charge_id)
    return row
