# backend/app/services/invoice_generation.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..config import settings
from ..domain.audit import audit_write
from ..domain.billing.assembly import InvoiceDraft, assemble_invoice
from ..domain.clock import SYSTEM_CLOCK, Clock
from ..domain.errors import AssemblyError, BillingError
from ..models import Invoice, InvoiceLine, Lease
from .billing_context import load_billing_context
from .lease_rules import periods_overlap
from .numbering import next_invoice_number
from .ownership import must_get_lease

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class InvoiceGenerationResult:
    ok: bool
    lease_id: int
    invoice: Optional[Invoice] = None
    error: Optional[AssemblyError] = None
    was_updated: bool = False

    @property
    def invoice_id(self) -> Optional[int]:
        return None if self.invoice is None else self.invoice.id


def _live_invoices(db: Session, *, lease_id: int, period_start: date, period_end: date) -> list[Invoice]:
    rows = db.scalars(
        select(Invoice).where(
            Invoice.lease_id == lease_id,
            Invoice.status != "void",
            Invoice.billing_period_start <= period_end,
            Invoice.billing_period_end >= period_start,
        )
    ).all()
    return [r for r in rows if periods_overlap(r.billing_period_start, r.billing_period_end, period_start, period_end)]


def _existing_draft(db: Session, lease: Lease, period_start: date, period_end: date) -> Optional[Invoice]:
    """
    The invoice to rebuild in place, if any. A live non-draft invoice for the
    period, or any live invoice overlapping it, blocks generation.
    """
    draft: Optional[Invoice] = None
    for inv in _live_invoices(db, lease_id=lease.id, period_start=period_start, period_end=period_end):
        exact = inv.billing_period_start == period_start and inv.billing_period_end == period_end
        if not exact:
            raise AssemblyError(
                lease.id,
                "overlapping_invoice_period",
                f"invoice {inv.invoice_number} already covers "
                f"{inv.billing_period_start.isoformat()}..{inv.billing_period_end.isoformat()}",
                kind="state",
            )
        if inv.status != "draft":
            raise AssemblyError(
                lease.id,
                "duplicate_invoice",
                f"invoice {inv.invoice_number} ({inv.status}) already exists for this period",
                kind="state",
            )
        draft = inv
    return draft


def _apply_draft(invoice: Invoice, draft: InvoiceDraft) -> None:
    invoice.invoice_date = draft.invoice_date
    invoice.due_date = draft.due_date
    invoice.sub_total = draft.sub_total
    invoice.tax_amount = draft.tax_amount
    invoice.total_amount = draft.total_amount
    invoice.paid_amount = draft.paid_amount
    invoice.balance_amount = draft.balance_amount
    for l in draft.lines:
        invoice.lines.append(
            InvoiceLine(
                line_number=l.line_number,
                charge_code=l.charge_code,
                description=l.description,
                quantity=l.quantity,
                unit_price=l.unit_price,
                amount=l.amount,
                tax_rate=l.tax_rate,
                tax_amount=l.tax_amount,
                total_amount=l.total_amount,
                source=l.source,
                source_ref_id=l.source_ref_id,
                period_start=l.period_start,
                period_end=l.period_end,
                is_prorated=l.is_prorated,
            )
        )


def _generate(
    db: Session,
    *,
    org_id: int,
    lease_id: int,
    period_start: date,
    period_end: date,
    clock: Clock,
    invoice_run_id: Optional[int],
    actor: Optional[str],
) -> tuple[Invoice, bool]:
    lease = must_get_lease(db, org_id=org_id, lease_id=lease_id)
    existing = _existing_draft(db, lease, period_start, period_end)

    ctx = load_billing_context(
        db,
        org_id=org_id,
        lease=lease,
        period_start=period_start,
        period_end=period_end,
        exclude_invoice_id=existing.id if existing is not None else None,
    )
    draft = assemble_invoice(ctx)

    missing = sorted({l.charge_code for l in draft.lines} - set(ctx.charge_taxes))
    if missing:
        log.warning(
            "no charge type configured for %s; lines billed untaxed",
            ",".join(missing),
            extra={"org_id": org_id, "lease_id": lease.id},
        )

    setting = lease.billing_setting
    if existing is not None:
        invoice = existing
        invoice.lines.clear()
        # old lines go first so line numbers can be reused
        db.flush()
    else:
        prefix = (setting.invoice_prefix if setting and setting.invoice_prefix else None) or settings.billing_default_invoice_prefix
        invoice = Invoice(
            org_id=org_id,
            lease_id=lease.id,
            invoice_number=next_invoice_number(db, org_id=org_id, prefix=prefix, on=period_start),
            status="draft",
            billing_period_start=period_start,
            billing_period_end=period_end,
        )
        db.add(invoice)

    if setting is not None and setting.payment_instructions:
        invoice.payment_instructions = setting.payment_instructions
    if invoice_run_id is not None:
        invoice.invoice_run_id = invoice_run_id
    _apply_draft(invoice, draft)
    db.flush()

    audit_write(
        db,
        org_id=org_id,
        actor=actor,
        action="invoice.regenerate" if existing is not None else "invoice.generate",
        entity_type="invoice",
        entity_id=invoice.id,
        after={
            "invoice_number": invoice.invoice_number,
            "lease_id": lease.id,
            "period": f"{period_start.isoformat()}..{period_end.isoformat()}",
            "total_amount": invoice.total_amount,
        },
        at=clock.now(),
    )
    return invoice, existing is not None


def generate_invoice_for_lease(
    db: Session,
    *,
    org_id: int,
    lease_id: int,
    period_start: date,
    period_end: date,
    clock: Clock = SYSTEM_CLOCK,
    invoice_run_id: Optional[int] = None,
    actor: Optional[str] = None,
) -> InvoiceGenerationResult:
    """
    Assemble and persist one Draft invoice for a lease and period.

    All-or-nothing: on any failure the transaction is rolled back and the
    result carries an AssemblyError with the lease id and reason. A Draft
    invoice for the same period is rebuilt in place; an issued one blocks.
    """
    try:
        invoice, updated = _generate(
            db,
            org_id=org_id,
            lease_id=lease_id,
            period_start=period_start,
            period_end=period_end,
            clock=clock,
            invoice_run_id=invoice_run_id,
            actor=actor,
        )
        db.commit()
    except BillingError as e:
        db.rollback()
        err = AssemblyError.wrap(lease_id, e)
        log.warning(
            "invoice generation failed: %s",
            err.message,
            extra={"org_id": org_id, "lease_id": lease_id, "error_code": err.code},
        )
        return InvoiceGenerationResult(ok=False, lease_id=lease_id, error=err)
    except (IntegrityError, StaleDataError) as e:
        db.rollback()
        err = AssemblyError(
            lease_id,
            "concurrency_conflict",
            "another invoice for this lease and period was written concurrently",
            kind="concurrency",
            cause=e,
        )
        log.warning(
            "invoice generation lost a race",
            extra={"org_id": org_id, "lease_id": lease_id, "error_code": err.code},
        )
        return InvoiceGenerationResult(ok=False, lease_id=lease_id, error=err)

    log.info(
        "invoice generated %s",
        invoice.invoice_number,
        extra={"org_id": org_id, "lease_id": lease_id, "invoice_id": invoice.id},
    )
    return InvoiceGenerationResult(ok=True, lease_id=lease_id, invoice=invoice, was_updated=updated)
