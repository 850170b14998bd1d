# backend/app/domain/billing/utility_rates.py
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Iterable, Optional

from ..errors import InvalidConsumption, InvalidRatePlan
from .money import ZERO, money, to_decimal


@dataclass(frozen=True)
class Slab:
    order: int
    from_units: Decimal
    to_units: Optional[Decimal]  # None = unlimited
    rate_per_unit: Decimal
    fixed_charge: Decimal = ZERO

    def units_in(self, consumed: Decimal) -> Decimal:
        """Units of `consumed` falling in [from_units, to_units)."""
        if consumed <= self.from_units:
            return Decimal("0")
        upper = consumed if self.to_units is None else min(consumed, self.to_units)
        return upper - self.from_units


@dataclass(frozen=True)
class SlabCharge:
    slab_order: int
    from_units: Decimal
    to_units: Optional[Decimal]
    units: Decimal
    rate_per_unit: Decimal
    amount: Decimal
    fixed_charge: Decimal


@dataclass(frozen=True)
class UtilityCharge:
    units: Decimal
    amount: Decimal
    breakdown: tuple[SlabCharge, ...] = field(default_factory=tuple)

    def describe(self) -> str:
        parts = [f"{s.units}u @ {s.rate_per_unit}" for s in self.breakdown]
        return ", ".join(parts) if parts else "no consumption"


def _num(v: Any, what: str) -> Decimal:
    d = to_decimal(v)
    if d is None:
        raise InvalidRatePlan(f"{what} is not a number: {v!r}")
    return d


class RatePlan:
    """
    Validated, ordered slab list.

    Construct through from_slabs(); an invalid plan never exists, so
    charge() can't fail on configuration at billing time.
    """

    def __init__(self, slabs: tuple[Slab, ...], *, plan_id: Optional[int] = None, name: str = "") -> None:
        self.slabs = slabs
        self.plan_id = plan_id
        self.name = name

    @classmethod
    def from_slabs(cls, rows: Iterable[Any], *, plan_id: Optional[int] = None, name: str = "") -> "RatePlan":
        raw = list(rows)
        if not raw:
            raise InvalidRatePlan("rate plan has no slabs", plan_id=plan_id)

        slabs: list[Slab] = []
        for r in raw:
            get = r.get if isinstance(r, dict) else (lambda k, _r=r: getattr(_r, k, None))
            slabs.append(
                Slab(
                    order=int(get("slab_order")),
                    from_units=_num(get("from_units"), "from_units"),
                    to_units=None if get("to_units") is None else _num(get("to_units"), "to_units"),
                    rate_per_unit=_num(get("rate_per_unit"), "rate_per_unit"),
                    fixed_charge=ZERO if get("fixed_charge") is None else _num(get("fixed_charge"), "fixed_charge"),
                )
            )

        slabs.sort(key=lambda s: s.order)
        expected_from = Decimal("0")
        prev_order: Optional[int] = None
        for i, s in enumerate(slabs):
            if prev_order is not None and s.order <= prev_order:
                raise InvalidRatePlan(f"duplicate slab_order {s.order}", plan_id=plan_id)
            prev_order = s.order

            if s.from_units != expected_from:
                raise InvalidRatePlan(
                    f"slab {s.order} starts at {s.from_units}, expected {expected_from} (slabs must be contiguous)",
                    plan_id=plan_id,
                )
            if s.rate_per_unit < 0 or s.fixed_charge < 0:
                raise InvalidRatePlan(f"slab {s.order} has a negative rate or fixed charge", plan_id=plan_id)

            if s.to_units is None:
                if i != len(slabs) - 1:
                    raise InvalidRatePlan(f"unlimited slab {s.order} must be the last slab", plan_id=plan_id)
            else:
                if s.to_units <= s.from_units:
                    raise InvalidRatePlan(f"slab {s.order} has to_units <= from_units", plan_id=plan_id)
                expected_from = s.to_units

        return cls(tuple(slabs), plan_id=plan_id, name=name)

    @property
    def max_units(self) -> Optional[Decimal]:
        return self.slabs[-1].to_units

    def charge(self, units: Any) -> UtilityCharge:
        consumed = to_decimal(units)
        if consumed is None or consumed < 0:
            raise InvalidConsumption(f"consumed units must be a non-negative number, got {units!r}")

        cap = self.max_units
        if cap is not None and consumed > cap:
            raise InvalidConsumption(
                f"consumption {consumed} exceeds the plan's last slab bound {cap}",
                plan_id=self.plan_id,
            )

        raw_total = Decimal("0")
        lines: list[SlabCharge] = []
        for s in self.slabs:
            n = s.units_in(consumed)
            if n <= 0:
                break
            amount = n * s.rate_per_unit
            raw_total += amount + s.fixed_charge
            lines.append(
                SlabCharge(
                    slab_order=s.order,
                    from_units=s.from_units,
                    to_units=s.to_units,
                    units=n,
                    rate_per_unit=s.rate_per_unit,
                    amount=money(amount),
                    fixed_charge=s.fixed_charge,
                )
            )

        return UtilityCharge(units=consumed, amount=money(raw_total), breakdown=tuple(lines))
