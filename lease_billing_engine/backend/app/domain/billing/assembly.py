# backend/app/domain/billing/assembly.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Mapping, Optional

from ..errors import AssemblyError, BillingError, InvalidConsumption, InvalidRatePlan, NoTermFound
from ..leasing.lifecycle import OCCUPYING, coerce_status
from ..leasing.terms import TermSegment, TermTimeline, escalated_rent
from .money import ZERO, money, tax_on, to_decimal, total
from .proration import ProrationMethod, coerce_method, describe_range, prorate_range
from .utility_rates import RatePlan

# Charge codes looked up in the org's charge-type table for tax treatment.
RENT = "RENT"
MAINTENANCE = "MAINT"
OTHER_FIXED = "FIXED"
UTILITY_CODES = {
    "electricity": "ELEC",
    "water": "WATER",
    "gas": "GAS",
    "other": "UTIL",
}


@dataclass(frozen=True)
class ChargeTax:
    is_taxable: bool = False
    rate: Decimal = ZERO  # percent

    def rate_for_line(self) -> Decimal:
        return self.rate if self.is_taxable else ZERO


@dataclass(frozen=True)
class UtilityInput:
    statement_id: int
    utility_type: str
    period_start: date
    period_end: date
    is_meter_based: bool
    units: Optional[Decimal] = None
    direct_amount: Optional[Decimal] = None
    rate_plan: Optional[RatePlan] = None
    # a final statement for an earlier period that was never billed
    is_adjustment: bool = False


RECURRING_FREQUENCIES = {"monthly", "one_time"}


@dataclass(frozen=True)
class RecurringChargeInput:
    charge_id: int
    charge_code: str
    description: str
    amount: Decimal  # per month for monthly charges
    frequency: str
    start_date: date
    end_date: Optional[date] = None  # inclusive


@dataclass(frozen=True)
class BillingContext:
    lease_id: int
    lease_status: str
    lease_start: date
    lease_end: Optional[date]
    period_start: date
    period_end: date
    terms: tuple[Any, ...]
    proration_method: ProrationMethod | str = ProrationMethod.actual_days_in_month
    utilities: tuple[UtilityInput, ...] = ()
    recurring_charges: tuple[RecurringChargeInput, ...] = ()
    charge_taxes: Mapping[str, ChargeTax] = field(default_factory=dict)
    payment_term_days: int = 0
    apply_escalation: bool = True

    def tax_for(self, code: str) -> ChargeTax:
        return self.charge_taxes.get(code, ChargeTax())


@dataclass(frozen=True)
class DraftLine:
    line_number: int
    charge_code: str
    description: str
    quantity: Decimal
    unit_price: Decimal
    amount: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    source: str  # rent | fixed_charge | recurring_charge | utility | adjustment
    source_ref_id: Optional[int]
    period_start: date
    period_end: date
    is_prorated: bool = False


@dataclass(frozen=True)
class InvoiceDraft:
    lease_id: int
    period_start: date
    period_end: date
    invoice_date: date
    due_date: date
    lines: tuple[DraftLine, ...]
    sub_total: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    paid_amount: Decimal = ZERO

    @property
    def balance_amount(self) -> Decimal:
        return money(self.total_amount - self.paid_amount)


@dataclass
class _Line:
    charge_code: str
    description: str
    quantity: Decimal
    unit_price: Decimal
    amount: Decimal
    source: str
    source_ref_id: Optional[int]
    period_start: date
    period_end: date
    is_prorated: bool = False


def billable_window(ctx: BillingContext) -> tuple[date, date]:
    """The billing period clipped to the lease's own dates (end_date inclusive)."""
    start = max(ctx.period_start, ctx.lease_start)
    end = ctx.period_end if ctx.lease_end is None else min(ctx.period_end, ctx.lease_end)
    return start, end


def _covered_segments(timeline: TermTimeline, start: date, end: date) -> list[TermSegment]:
    segs = timeline.overlapping(start, end)
    cursor = start
    for seg in segs:
        if seg.start > cursor:
            break
        cursor = seg.end + timedelta(days=1)
    if cursor <= end:
        raise NoTermFound(f"no lease term effective on {cursor.isoformat()}", on=cursor.isoformat())
    return segs


def _term_lines(ctx: BillingContext, start: date, end: date) -> list[_Line]:
    timeline = TermTimeline(ctx.terms)
    method = coerce_method(ctx.proration_method)
    out: list[_Line] = []

    for seg in _covered_segments(timeline, start, end):
        term = seg.term
        term_id = getattr(term, "id", None)

        def rent_on(d: date, _t: Any = term) -> Decimal:
            return escalated_rent(_t, d) if ctx.apply_escalation else money(_t.monthly_rent)

        pieces = prorate_range(seg.start, seg.end, method, rent_on)
        prorated = any(p.is_prorated for p in pieces)
        amount = total(p.amount for p in pieces)
        out.append(
            _Line(
                charge_code=RENT,
                description=f"Rent {describe_range(seg.start, seg.end, prorated=prorated)}",
                quantity=Decimal("1"),
                unit_price=amount,
                amount=amount,
                source="rent",
                source_ref_id=term_id,
                period_start=seg.start,
                period_end=seg.end,
                is_prorated=prorated,
            )
        )

        for code, attr, label in (
            (MAINTENANCE, "maintenance_charge", "Maintenance charge"),
            (OTHER_FIXED, "other_fixed_charge", "Fixed charge"),
        ):
            monthly = to_decimal(getattr(term, attr, None))
            if not monthly:
                continue
            fixed_pieces = prorate_range(seg.start, seg.end, method, lambda _d, _m=monthly: _m)
            fixed_amount = total(p.amount for p in fixed_pieces)
            if fixed_amount == 0:
                continue
            out.append(
                _Line(
                    charge_code=code,
                    description=f"{label} {describe_range(seg.start, seg.end, prorated=prorated)}",
                    quantity=Decimal("1"),
                    unit_price=fixed_amount,
                    amount=fixed_amount,
                    source="fixed_charge",
                    source_ref_id=term_id,
                    period_start=seg.start,
                    period_end=seg.end,
                    is_prorated=prorated,
                )
            )
    return out


def _recurring_lines(ctx: BillingContext, start: date, end: date) -> list[_Line]:
    """
    One line per recurring charge that applies inside [start, end]. Monthly
    charges are clipped to their own dates and prorated like rent; a one-time
    charge is billed in full by the period containing its start date.
    """
    method = coerce_method(ctx.proration_method)
    out: list[_Line] = []

    for c in sorted(ctx.recurring_charges, key=lambda c: (c.start_date, c.charge_id)):
        if c.frequency not in RECURRING_FREQUENCIES:
            raise BillingError(
                "invalid_charge_frequency",
                f"recurring charge {c.charge_id} has unsupported frequency {c.frequency!r}",
            )
        full = to_decimal(c.amount)
        if full is None or full <= 0:
            raise BillingError("invalid_charge_amount", f"recurring charge {c.charge_id} amount must be positive")
        code = str(c.charge_code).strip().upper()

        if c.frequency == "one_time":
            if not start <= c.start_date <= end:
                continue
            amount = money(full)
            out.append(
                _Line(
                    charge_code=code,
                    description=c.description,
                    quantity=Decimal("1"),
                    unit_price=amount,
                    amount=amount,
                    source="recurring_charge",
                    source_ref_id=c.charge_id,
                    period_start=c.start_date,
                    period_end=c.start_date,
                )
            )
            continue

        s = max(start, c.start_date)
        e = end if c.end_date is None else min(end, c.end_date)
        if e < s:
            continue
        pieces = prorate_range(s, e, method, lambda _d, _m=full: _m)
        amount = total(p.amount for p in pieces)
        if amount == 0:
            continue
        prorated = any(p.is_prorated for p in pieces)
        out.append(
            _Line(
                charge_code=code,
                description=f"{c.description} {describe_range(s, e, prorated=prorated)}",
                quantity=Decimal("1"),
                unit_price=amount,
                amount=amount,
                source="recurring_charge",
                source_ref_id=c.charge_id,
                period_start=s,
                period_end=e,
                is_prorated=prorated,
            )
        )
    return out


def _utility_line(u: UtilityInput) -> _Line:
    code = UTILITY_CODES.get(str(u.utility_type).lower(), UTILITY_CODES["other"])
    label = str(u.utility_type).replace("_", " ").title()
    period = f"{u.period_start.isoformat()} to {u.period_end.isoformat()}"
    source = "adjustment" if u.is_adjustment else "utility"
    prefix = "Prior period " if u.is_adjustment else ""

    if u.is_meter_based:
        if u.rate_plan is None:
            raise InvalidRatePlan(f"meter-based statement {u.statement_id} has no rate plan")
        if u.units is None:
            raise InvalidConsumption(f"meter-based statement {u.statement_id} has no consumption")
        charge = u.rate_plan.charge(u.units)
        unit_price = money(charge.amount / charge.units) if charge.units else charge.amount
        return _Line(
            charge_code=code,
            description=f"{prefix}{label} {period} - {charge.units} units",
            quantity=charge.units,
            unit_price=unit_price,
            amount=charge.amount,
            source=source,
            source_ref_id=u.statement_id,
            period_start=u.period_start,
            period_end=u.period_end,
        )

    amount = to_decimal(u.direct_amount)
    if amount is None or amount < 0:
        raise InvalidConsumption(f"statement {u.statement_id} has no valid direct amount")
    amount = money(amount)
    return _Line(
        charge_code=code,
        description=f"{prefix}{label} {period}",
        quantity=Decimal("1"),
        unit_price=amount,
        amount=amount,
        source=source,
        source_ref_id=u.statement_id,
        period_start=u.period_start,
        period_end=u.period_end,
    )


def _build(ctx: BillingContext) -> InvoiceDraft:
    if ctx.period_end < ctx.period_start:
        raise AssemblyError(ctx.lease_id, "invalid_period", "billing period end is before its start")

    status = coerce_status(ctx.lease_status)
    if status not in OCCUPYING:
        raise AssemblyError(
            ctx.lease_id, "lease_not_billable", f"lease is {status.value}", kind="state"
        )

    start, end = billable_window(ctx)
    if end < start:
        raise AssemblyError(ctx.lease_id, "lease_not_billable", "lease does not overlap the billing period")

    # terms resolve before anything that depends on them
    raw = _term_lines(ctx, start, end)
    raw.extend(_recurring_lines(ctx, start, end))
    raw.extend(_utility_line(u) for u in sorted(ctx.utilities, key=lambda u: (u.is_adjustment, u.period_start, u.statement_id)))

    lines: list[DraftLine] = []
    for n, r in enumerate(raw, start=1):
        tax = ctx.tax_for(r.charge_code)
        rate = tax.rate_for_line()
        tax_amount = tax_on(r.amount, rate)
        lines.append(
            DraftLine(
                line_number=n,
                charge_code=r.charge_code,
                description=r.description,
                quantity=r.quantity,
                unit_price=r.unit_price,
                amount=r.amount,
                tax_rate=rate,
                tax_amount=tax_amount,
                total_amount=money(r.amount + tax_amount),
                source=r.source,
                source_ref_id=r.source_ref_id,
                period_start=r.period_start,
                period_end=r.period_end,
                is_prorated=r.is_prorated,
            )
        )

    sub_total = total(l.amount for l in lines)
    tax_amount = total(l.tax_amount for l in lines)
    invoice_date = ctx.period_end
    return InvoiceDraft(
        lease_id=ctx.lease_id,
        period_start=ctx.period_start,
        period_end=ctx.period_end,
        invoice_date=invoice_date,
        due_date=invoice_date + timedelta(days=max(0, int(ctx.payment_term_days or 0))),
        lines=tuple(lines),
        sub_total=sub_total,
        tax_amount=tax_amount,
        total_amount=money(sub_total + tax_amount),
    )


def assemble_invoice(ctx: BillingContext) -> InvoiceDraft:
    """
    Build a complete draft invoice for one lease and one billing period.

    Pure: nothing is persisted. Any term, proration or rate failure comes back
    as an AssemblyError tagged with the lease id, keeping the original kind.
    """
    try:
        return _build(ctx)
    except BillingError as e:
        raise AssemblyError.wrap(ctx.lease_id, e) from e
