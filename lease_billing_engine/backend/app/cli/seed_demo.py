# backend/app/cli/seed_demo.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from app.db import SessionLocal, create_schema
from app.models import ChargeType, Lease, LeaseBillingSetting, LeaseParty, LeaseTerm, Organization, Tenant, Unit
from app.services.utility_statements import create_rate_plan


@dataclass(frozen=True)
class SeedResult:
    org_id: int
    org_slug: str
    lease_id: Optional[int]
    rate_plan_id: Optional[int]


DEFAULT_CHARGE_TYPES = [
    ("RENT", "Rent", False, None),
    ("MAINT", "Maintenance", True, Decimal("18")),
    ("FIXED", "Other fixed charge", False, None),
    ("ELEC", "Electricity", False, None),
    ("WATER", "Water", False, None),
    ("GAS", "Gas", False, None),
    ("UTIL", "Other utility", False, None),
]


def _get_or_create_org(db: Session, slug: str, name: str) -> Organization:
    row = db.query(Organization).filter(Organization.slug == slug).one_or_none()
    if row:
        return row
    row = Organization(slug=slug, name=name)
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def _ensure_charge_types(db: Session, org_id: int) -> None:
    have = {c.code for c in db.query(ChargeType).filter(ChargeType.org_id == int(org_id)).all()}
    for code, name, taxable, rate in DEFAULT_CHARGE_TYPES:
        if code in have:
            continue
        db.add(ChargeType(org_id=int(org_id), code=code, name=name, is_taxable=taxable, tax_rate=rate))
    db.commit()


def _create_sample_lease(db: Session, org_id: int, start: date) -> int:
    unit = Unit(org_id=int(org_id), code=f"U-{start:%Y%m}", name="Sample unit")
    tenant = Tenant(org_id=int(org_id), full_name="Sample Tenant", email="tenant@demo.local")
    db.add_all([unit, tenant])
    db.flush()

    lease = Lease(
        org_id=int(org_id),
        unit_id=unit.id,
        lease_number=f"L-{start:%Y%m}-{unit.id}",
        status="draft",
        start_date=start,
        rent_due_day=1,
    )
    lease.terms.append(
        LeaseTerm(
            effective_from=start,
            monthly_rent=Decimal("5000.00"),
            security_deposit=Decimal("10000.00"),
            maintenance_charge=Decimal("250.00"),
            escalation_type="percentage",
            escalation_value=Decimal("5"),
            escalation_every_months=12,
        )
    )
    lease.parties.append(LeaseParty(tenant_id=tenant.id, role="primary_tenant", is_responsible_for_payment=True))
    lease.billing_setting = LeaseBillingSetting(billing_day=1, payment_term_days=7)
    db.add(lease)
    db.commit()
    return int(lease.id)


def seed_demo(
    *,
    org_slug: str = "demo",
    org_name: str = "demo",
    lease_start: Optional[date] = None,
    create_sample_lease: bool = True,
) -> SeedResult:
    create_schema()
    db = SessionLocal()
    try:
        org = _get_or_create_org(db, org_slug, org_name)
        _ensure_charge_types(db, org.id)

        plan = create_rate_plan(
            db,
            org_id=org.id,
            name="Residential electricity",
            utility_type="electricity",
            slabs=[
                {"slab_order": 1, "from_units": 0, "to_units": 100, "rate_per_unit": "0.10"},
                {"slab_order": 2, "from_units": 100, "to_units": None, "rate_per_unit": "0.15"},
            ],
        )

        lease_id: Optional[int] = None
        if create_sample_lease:
            lease_id = _create_sample_lease(db, org.id, lease_start or date.today().replace(day=1))

        return SeedResult(org_id=int(org.id), org_slug=org_slug, lease_id=lease_id, rate_plan_id=int(plan.id))
    finally:
        db.close()
