from __future__ import annotations

import itertools
import os
import tempfile
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

import pytest

# Point the app at a throwaway SQLite file before app.config is imported.
_DB_DIR = tempfile.mkdtemp(prefix="lease-billing-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_DB_DIR}/test.db"
os.environ["APP_ENV"] = "test"
os.environ["BILLING_RUNS_VIA_CELERY"] = "false"

from app.db import Base, SessionLocal, create_schema, engine  # noqa: E402
from app.domain.clock import FixedClock  # noqa: E402
from app.models import (  # noqa: E402
    ChargeType,
    Lease,
    LeaseBillingSetting,
    LeaseParty,
    LeaseTerm,
    Organization,
    Tenant,
    Unit,
)
from app.services.utility_statements import create_rate_plan  # noqa: E402

_seq = itertools.count(1)


@pytest.fixture(autouse=True)
def _fresh_schema():
    create_schema()
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def session_factory():
    return SessionLocal


@pytest.fixture
def clock():
    return FixedClock(datetime(2026, 3, 1, 9, 0, 0))


class Builder:
    """Small row factory; every method commits so other sessions can see the rows."""

    def __init__(self, db):
        self.db = db

    def org(self, slug: Optional[str] = None) -> Organization:
        n = next(_seq)
        row = Organization(slug=slug or f"org-{n}", name=slug or f"Org {n}")
        self.db.add(row)
        self.db.commit()
        return row

    def unit(self, org_id: int) -> Unit:
        row = Unit(org_id=org_id, code=f"U-{next(_seq)}")
        self.db.add(row)
        self.db.commit()
        return row

    def charge_type(self, org_id: int, code: str, *, taxable: bool = False, rate: Optional[str] = None) -> ChargeType:
        row = ChargeType(
            org_id=org_id,
            code=code,
            name=code.title(),
            is_taxable=taxable,
            tax_rate=None if rate is None else Decimal(rate),
        )
        self.db.add(row)
        self.db.commit()
        return row

    def lease(
        self,
        org_id: int,
        *,
        unit_id: Optional[int] = None,
        start: date = date(2026, 1, 1),
        end: Optional[date] = None,
        rent: str = "1000.00",
        term_from: Optional[date] = None,
        maintenance: Optional[str] = None,
        other_fixed: Optional[str] = None,
        escalation_type: str = "none",
        escalation_value: Optional[str] = None,
        escalation_every_months: Optional[int] = None,
        status: str = "draft",
        rent_due_day: int = 5,
        primary_tenant: bool = True,
        payer: bool = True,
        with_terms: bool = True,
        billing_day: int = 1,
        auto_generate: bool = True,
        proration_method: str = "actual_days_in_month",
        payment_term_days: int = 0,
        invoice_prefix: Optional[str] = None,
    ) -> Lease:
        if unit_id is None:
            unit_id = self.unit(org_id).id
        tenant = Tenant(org_id=org_id, full_name=f"Tenant {next(_seq)}")
        self.db.add(tenant)
        self.db.flush()

        lease = Lease(
            org_id=org_id,
            unit_id=unit_id,
            lease_number=f"L-{next(_seq)}",
            status=status,
            start_date=start,
            end_date=end,
            rent_due_day=rent_due_day,
        )
        if with_terms:
            lease.terms.append(
                LeaseTerm(
                    effective_from=term_from or start,
                    monthly_rent=Decimal(rent),
                    security_deposit=Decimal("0"),
                    maintenance_charge=None if maintenance is None else Decimal(maintenance),
                    other_fixed_charge=None if other_fixed is None else Decimal(other_fixed),
                    escalation_type=escalation_type,
                    escalation_value=None if escalation_value is None else Decimal(escalation_value),
                    escalation_every_months=escalation_every_months,
                )
            )
        lease.parties.append(
            LeaseParty(
                tenant_id=tenant.id,
                role="primary_tenant" if primary_tenant else "occupant",
                is_responsible_for_payment=payer,
            )
        )
        lease.billing_setting = LeaseBillingSetting(
            billing_day=billing_day,
            payment_term_days=payment_term_days,
            generate_invoice_automatically=auto_generate,
            proration_method=proration_method,
            invoice_prefix=invoice_prefix,
        )
        self.db.add(lease)
        self.db.commit()
        return lease

    def electricity_plan(self, org_id: int):
        return create_rate_plan(
            self.db,
            org_id=org_id,
            name="Residential electricity",
            utility_type="electricity",
            slabs=[
                {"slab_order": 1, "from_units": "0", "to_units": "100", "rate_per_unit": "0.10"},
                {"slab_order": 2, "from_units": "100", "to_units": None, "rate_per_unit": "0.15"},
            ],
        )


@pytest.fixture
def build(db_session):
    return Builder(db_session)
