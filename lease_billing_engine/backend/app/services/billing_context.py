# backend/app/services/billing_context.py
from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from ..config import settings
from ..domain.billing.assembly import BillingContext, ChargeTax, RecurringChargeInput, UtilityInput
from ..domain.billing.proration import ProrationMethod
from ..models import ChargeType, Invoice, InvoiceLine, Lease, LeaseRecurringCharge, UtilityStatement
from .utility_statements import load_rate_plan


def charge_tax_table(db: Session, *, org_id: int) -> dict[str, ChargeTax]:
    """Tax treatment per charge code; a taxable type without its own rate uses the configured default."""
    out: dict[str, ChargeTax] = {}
    rows = db.scalars(select(ChargeType).where(ChargeType.org_id == org_id, ChargeType.is_active.is_(True))).all()
    for r in rows:
        rate = r.tax_rate if r.tax_rate is not None else Decimal(settings.billing_default_tax_rate)
        out[r.code.strip().upper()] = ChargeTax(is_taxable=bool(r.is_taxable), rate=Decimal(rate))
    return out


def _billed_statement_ids(db: Session, *, lease_id: int, exclude_invoice_id: Optional[int]):
    q = (
        select(InvoiceLine.source_ref_id)
        .join(Invoice, Invoice.id == InvoiceLine.invoice_id)
        .where(
            Invoice.lease_id == lease_id,
            Invoice.status != "void",
            InvoiceLine.source.in_(("utility", "adjustment")),
            InvoiceLine.source_ref_id.is_not(None),
        )
    )
    if exclude_invoice_id is not None:
        q = q.where(Invoice.id != exclude_invoice_id)
    return q


def unbilled_final_statements(
    db: Session,
    *,
    lease_id: int,
    period_start: date,
    period_end: date,
    exclude_invoice_id: Optional[int] = None,
) -> list[UtilityStatement]:
    """
    Final statements ending on or before the period end that no live invoice
    has billed yet. Statements that start before the period are late bills for
    earlier periods and go on the invoice as adjustments.
    """
    billed = _billed_statement_ids(db, lease_id=lease_id, exclude_invoice_id=exclude_invoice_id)
    return list(
        db.scalars(
            select(UtilityStatement)
            .where(
                UtilityStatement.lease_id == lease_id,
                UtilityStatement.is_final.is_(True),
                UtilityStatement.period_end <= period_end,
                UtilityStatement.id.not_in(billed),
            )
            .order_by(UtilityStatement.period_start, UtilityStatement.id)
        ).all()
    )


def active_recurring_charges(
    db: Session, *, lease_id: int, period_start: date, period_end: date
) -> list[LeaseRecurringCharge]:
    """Active charges whose own date range touches the period; the assembler clips and prorates."""
    return list(
        db.scalars(
            select(LeaseRecurringCharge)
            .where(
                LeaseRecurringCharge.lease_id == lease_id,
                LeaseRecurringCharge.is_active.is_(True),
                LeaseRecurringCharge.start_date <= period_end,
                or_(LeaseRecurringCharge.end_date.is_(None), LeaseRecurringCharge.end_date >= period_start),
            )
            .order_by(LeaseRecurringCharge.start_date, LeaseRecurringCharge.id)
        ).all()
    )


def load_billing_context(
    db: Session,
    *,
    org_id: int,
    lease: Lease,
    period_start: date,
    period_end: date,
    exclude_invoice_id: Optional[int] = None,
) -> BillingContext:
    setting = lease.billing_setting

    utilities: list[UtilityInput] = []
    for s in unbilled_final_statements(
        db,
        lease_id=lease.id,
        period_start=period_start,
        period_end=period_end,
        exclude_invoice_id=exclude_invoice_id,
    ):
        plan = None
        if s.is_meter_based and s.rate_plan_id is not None:
            plan = load_rate_plan(db, org_id=org_id, plan_id=s.rate_plan_id)
        utilities.append(
            UtilityInput(
                statement_id=s.id,
                utility_type=s.utility_type,
                period_start=s.period_start,
                period_end=s.period_end,
                is_meter_based=bool(s.is_meter_based),
                units=s.units_consumed,
                direct_amount=s.direct_amount,
                rate_plan=plan,
                is_adjustment=s.period_start < period_start,
            )
        )

    recurring = tuple(
        RecurringChargeInput(
            charge_id=c.id,
            charge_code=c.charge_code,
            description=c.description,
            amount=c.amount,
            frequency=c.frequency,
            start_date=c.start_date,
            end_date=c.end_date,
        )
        for c in active_recurring_charges(db, lease_id=lease.id, period_start=period_start, period_end=period_end)
    )

    return BillingContext(
        lease_id=lease.id,
        lease_status=lease.status,
        lease_start=lease.start_date,
        lease_end=lease.end_date,
        period_start=period_start,
        period_end=period_end,
        terms=tuple(lease.terms),
        proration_method=(setting.proration_method if setting else ProrationMethod.actual_days_in_month),
        utilities=tuple(utilities),
        recurring_charges=recurring,
        charge_taxes=charge_tax_table(db, org_id=org_id),
        payment_term_days=(
            setting.payment_term_days if setting else settings.billing_default_payment_term_days
        ),
        apply_escalation=settings.billing_apply_escalation,
    )
