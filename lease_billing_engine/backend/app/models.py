# backend/app/models.py
from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from .db import Base
from .domain.billing.proration import ProrationMethod
from .domain.errors import BillingError

MONEY = Numeric(14, 2, asdecimal=True)
QTY = Numeric(14, 4, asdecimal=True)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


# -----------------------------
# Reference data
# -----------------------------
class Organization(Base):
    __tablename__ = "organizations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    slug: Mapped[str] = mapped_column(String(80), nullable=False, unique=True, index=True)
    name: Mapped[str] = mapped_column(String(160), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)


class Unit(Base):
    __tablename__ = "units"
    __table_args__ = (UniqueConstraint("org_id", "code", name="uq_units_org_code"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    code: Mapped[str] = mapped_column(String(40), nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(160), nullable=True)

    # bumped by lease activation so two activations on one unit can't both commit
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)

    leases: Mapped[List["Lease"]] = relationship(back_populates="unit")

    __mapper_args__ = {"version_id_col": version, "version_id_generator": False}


class Tenant(Base):
    __tablename__ = "tenants"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    full_name: Mapped[str] = mapped_column(String(160), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)


class ChargeType(Base):
    __tablename__ = "charge_types"
    __table_args__ = (UniqueConstraint("org_id", "code", name="uq_charge_types_org_code"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    code: Mapped[str] = mapped_column(String(20), nullable=False)  # RENT|MAINT|FIXED|ELEC|WATER|GAS|UTIL
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    is_taxable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    tax_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(7, 4), nullable=True)  # percent
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


# -----------------------------
# Leases
# -----------------------------
class Lease(Base):
    __tablename__ = "leases"
    __table_args__ = (UniqueConstraint("org_id", "lease_number", name="uq_leases_org_number"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    unit_id: Mapped[int] = mapped_column(Integer, ForeignKey("units.id"), nullable=False, index=True)
    lease_number: Mapped[str] = mapped_column(String(40), nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft", index=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)  # inclusive

    rent_due_day: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    grace_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    late_fee_type: Mapped[str] = mapped_column(String(20), nullable=False, default="none")  # none|flat|percent
    late_fee_value: Mapped[Optional[Decimal]] = mapped_column(MONEY, nullable=True)
    auto_renew: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    activated_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    notice_given_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    unit: Mapped["Unit"] = relationship(back_populates="leases")
    terms: Mapped[List["LeaseTerm"]] = relationship(
        back_populates="lease", order_by="LeaseTerm.effective_from", cascade="all, delete-orphan"
    )
    parties: Mapped[List["LeaseParty"]] = relationship(back_populates="lease", cascade="all, delete-orphan")
    billing_setting: Mapped[Optional["LeaseBillingSetting"]] = relationship(
        back_populates="lease", uselist=False, cascade="all, delete-orphan"
    )
    recurring_charges: Mapped[List["LeaseRecurringCharge"]] = relationship(
        back_populates="lease", order_by="LeaseRecurringCharge.id", cascade="all, delete-orphan"
    )

    __mapper_args__ = {"version_id_col": version}


class LeaseTerm(Base):
    """Append-only. A change in financial terms is a new row, never an update."""

    __tablename__ = "lease_terms"
    __table_args__ = (UniqueConstraint("lease_id", "effective_from", name="uq_lease_terms_lease_from"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    lease_id: Mapped[int] = mapped_column(Integer, ForeignKey("leases.id", ondelete="CASCADE"), nullable=False, index=True)

    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[Optional[date]] = mapped_column(Date, nullable=True)  # exclusive

    monthly_rent: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    security_deposit: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    maintenance_charge: Mapped[Optional[Decimal]] = mapped_column(MONEY, nullable=True)
    other_fixed_charge: Mapped[Optional[Decimal]] = mapped_column(MONEY, nullable=True)

    escalation_type: Mapped[str] = mapped_column(String(20), nullable=False, default="none")  # none|percentage|fixed
    escalation_value: Mapped[Optional[Decimal]] = mapped_column(QTY, nullable=True)
    escalation_every_months: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)

    lease: Mapped["Lease"] = relationship(back_populates="terms")


PRORATION_METHODS = tuple(m.value for m in ProrationMethod)


class LeaseBillingSetting(Base):
    __tablename__ = "lease_billing_settings"
    __table_args__ = (
        CheckConstraint("billing_day BETWEEN 1 AND 28", name="ck_lease_billing_settings_billing_day"),
        CheckConstraint("payment_term_days >= 0", name="ck_lease_billing_settings_payment_term_days"),
        CheckConstraint(
            "proration_method IN ('actual_days_in_month', 'thirty_day_month')",
            name="ck_lease_billing_settings_proration_method",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    lease_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("leases.id", ondelete="CASCADE"), nullable=False, unique=True, index=True
    )
    billing_day: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    payment_term_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    generate_invoice_automatically: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    proration_method: Mapped[str] = mapped_column(String(30), nullable=False, default="actual_days_in_month")
    invoice_prefix: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    payment_instructions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    lease: Mapped["Lease"] = relationship(back_populates="billing_setting")

    @validates("billing_day")
    def _valid_billing_day(self, key, value):
        if value is None or not 1 <= int(value) <= 28:
            raise BillingError("invalid_billing_day", f"billing day must be between 1 and 28, got {value!r}")
        return int(value)

    @validates("payment_term_days")
    def _valid_payment_term(self, key, value):
        if value is None or int(value) < 0:
            raise BillingError("invalid_payment_term", f"payment term days must be >= 0, got {value!r}")
        return int(value)

    @validates("proration_method")
    def _valid_proration_method(self, key, value):
        v = getattr(value, "value", value)
        if v not in PRORATION_METHODS:
            raise BillingError("invalid_proration_method", f"proration method must be one of {list(PRORATION_METHODS)}")
        return v


class LeaseParty(Base):
    __tablename__ = "lease_parties"
    __table_args__ = (UniqueConstraint("lease_id", "tenant_id", name="uq_lease_parties_lease_tenant"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    lease_id: Mapped[int] = mapped_column(Integer, ForeignKey("leases.id", ondelete="CASCADE"), nullable=False, index=True)
    tenant_id: Mapped[int] = mapped_column(Integer, ForeignKey("tenants.id"), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False)  # primary_tenant|co_tenant|guarantor|occupant
    is_responsible_for_payment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    lease: Mapped["Lease"] = relationship(back_populates="parties")
    tenant: Mapped["Tenant"] = relationship()


class LeaseRecurringCharge(Base):
    """A charge billed on its own schedule, independent of the lease term (parking, amenities, ...)."""

    __tablename__ = "lease_recurring_charges"
    __table_args__ = (CheckConstraint("amount > 0", name="ck_lease_recurring_charges_amount"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    lease_id: Mapped[int] = mapped_column(Integer, ForeignKey("leases.id", ondelete="CASCADE"), nullable=False, index=True)

    charge_code: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[str] = mapped_column(String(300), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    frequency: Mapped[str] = mapped_column(String(20), nullable=False, default="monthly")  # monthly|one_time
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)  # inclusive

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)

    lease: Mapped["Lease"] = relationship(back_populates="recurring_charges")


# -----------------------------
# Utilities
# -----------------------------
class UtilityRatePlan(Base):
    __tablename__ = "utility_rate_plans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    utility_type: Mapped[str] = mapped_column(String(20), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)

    slabs: Mapped[List["UtilityRateSlab"]] = relationship(
        back_populates="plan", order_by="UtilityRateSlab.slab_order", cascade="all, delete-orphan"
    )


class UtilityRateSlab(Base):
    __tablename__ = "utility_rate_slabs"
    __table_args__ = (UniqueConstraint("plan_id", "slab_order", name="uq_utility_rate_slabs_plan_order"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    plan_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("utility_rate_plans.id", ondelete="CASCADE"), nullable=False, index=True
    )
    slab_order: Mapped[int] = mapped_column(Integer, nullable=False)
    from_units: Mapped[Decimal] = mapped_column(QTY, nullable=False)
    to_units: Mapped[Optional[Decimal]] = mapped_column(QTY, nullable=True)  # null = unlimited
    rate_per_unit: Mapped[Decimal] = mapped_column(QTY, nullable=False)
    fixed_charge: Mapped[Optional[Decimal]] = mapped_column(MONEY, nullable=True)

    plan: Mapped["UtilityRatePlan"] = relationship(back_populates="slabs")


class UtilityStatement(Base):
    __tablename__ = "utility_statements"
    __table_args__ = (
        UniqueConstraint(
            "lease_id", "utility_type", "period_start", "period_end", "version",
            name="uq_utility_statements_version",
        ),
        Index(
            "uq_utility_statements_final",
            "lease_id",
            "utility_type",
            "period_start",
            "period_end",
            unique=True,
            sqlite_where=text("is_final = 1"),
            postgresql_where=text("is_final"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    lease_id: Mapped[int] = mapped_column(Integer, ForeignKey("leases.id", ondelete="CASCADE"), nullable=False, index=True)
    utility_type: Mapped[str] = mapped_column(String(20), nullable=False)  # electricity|water|gas|other
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)

    is_meter_based: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    rate_plan_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("utility_rate_plans.id"), nullable=True)
    previous_reading: Mapped[Optional[Decimal]] = mapped_column(QTY, nullable=True)
    current_reading: Mapped[Optional[Decimal]] = mapped_column(QTY, nullable=True)
    units_consumed: Mapped[Optional[Decimal]] = mapped_column(QTY, nullable=True)
    direct_amount: Mapped[Optional[Decimal]] = mapped_column(MONEY, nullable=True)

    # statement revision number, not an optimistic-lock token
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_final: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)

    rate_plan: Mapped[Optional["UtilityRatePlan"]] = relationship()


# -----------------------------
# Invoices
# -----------------------------
class Invoice(Base):
    __tablename__ = "invoices"
    __table_args__ = (
        UniqueConstraint("org_id", "invoice_number", name="uq_invoices_org_number"),
        # duplicate-billing guard: one live invoice per lease and exact period
        Index(
            "uq_invoices_lease_period_live",
            "lease_id",
            "billing_period_start",
            "billing_period_end",
            unique=True,
            sqlite_where=text("status != 'void'"),
            postgresql_where=text("status != 'void'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    lease_id: Mapped[int] = mapped_column(Integer, ForeignKey("leases.id"), nullable=False, index=True)
    invoice_run_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("invoice_runs.id"), nullable=True, index=True)

    invoice_number: Mapped[str] = mapped_column(String(40), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft", index=True)
    billing_period_start: Mapped[date] = mapped_column(Date, nullable=False)
    billing_period_end: Mapped[date] = mapped_column(Date, nullable=False)
    invoice_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    sub_total: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    tax_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    paid_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    balance_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))

    payment_instructions: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    issued_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    voided_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    void_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow, onupdate=_utcnow)

    lines: Mapped[List["InvoiceLine"]] = relationship(
        back_populates="invoice", order_by="InvoiceLine.line_number", cascade="all, delete-orphan"
    )
    credit_notes: Mapped[List["CreditNote"]] = relationship(back_populates="invoice")
    payments: Mapped[List["Payment"]] = relationship(back_populates="invoice", order_by="Payment.id")

    __mapper_args__ = {"version_id_col": version}


class InvoiceLine(Base):
    __tablename__ = "invoice_lines"
    __table_args__ = (UniqueConstraint("invoice_id", "line_number", name="uq_invoice_lines_number"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    invoice_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    charge_code: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[str] = mapped_column(String(300), nullable=False)

    quantity: Mapped[Decimal] = mapped_column(QTY, nullable=False, default=Decimal("1"))
    unit_price: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    tax_rate: Mapped[Decimal] = mapped_column(Numeric(7, 4), nullable=False, default=Decimal("0"))
    tax_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)

    # traceability back to the term / recurring charge / statement that produced the line
    source: Mapped[str] = mapped_column(String(20), nullable=False)  # rent|fixed_charge|recurring_charge|utility|adjustment
    source_ref_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, index=True)
    period_start: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    period_end: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    is_prorated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    invoice: Mapped["Invoice"] = relationship(back_populates="lines")


class Payment(Base):
    __tablename__ = "payments"
    __table_args__ = (CheckConstraint("amount > 0", name="ck_payments_amount"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    invoice_id: Mapped[int] = mapped_column(Integer, ForeignKey("invoices.id"), nullable=False, index=True)
    lease_id: Mapped[int] = mapped_column(Integer, ForeignKey("leases.id"), nullable=False, index=True)

    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    payment_mode: Mapped[str] = mapped_column(String(20), nullable=False, default="cash")  # cash|bank_transfer|upi|cheque|card|other
    transaction_reference: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    received_by: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)

    invoice: Mapped["Invoice"] = relationship(back_populates="payments")


class InvoiceRun(Base):
    __tablename__ = "invoice_runs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    run_number: Mapped[str] = mapped_column(String(40), nullable=False, unique=True)
    billing_period_start: Mapped[date] = mapped_column(Date, nullable=False)
    billing_period_end: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending", index=True)
    total_leases: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    success_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failure_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)

    items: Mapped[List["InvoiceRunItem"]] = relationship(back_populates="run", cascade="all, delete-orphan")

    __mapper_args__ = {"version_id_col": version}


class InvoiceRunItem(Base):
    __tablename__ = "invoice_run_items"
    __table_args__ = (UniqueConstraint("run_id", "lease_id", name="uq_invoice_run_items_run_lease"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    run_id: Mapped[int] = mapped_column(Integer, ForeignKey("invoice_runs.id", ondelete="CASCADE"), nullable=False, index=True)
    lease_id: Mapped[int] = mapped_column(Integer, ForeignKey("leases.id"), nullable=False, index=True)

    is_success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    invoice_id: Mapped[Optional[int]] = mapped_column(Integer, ForeignKey("invoices.id"), nullable=True)
    error_code: Mapped[Optional[str]] = mapped_column(String(60), nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    processed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)

    run: Mapped["InvoiceRun"] = relationship(back_populates="items")


# -----------------------------
# Credit notes
# -----------------------------
class CreditNote(Base):
    __tablename__ = "credit_notes"
    __table_args__ = (UniqueConstraint("org_id", "credit_note_number", name="uq_credit_notes_org_number"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    invoice_id: Mapped[int] = mapped_column(Integer, ForeignKey("invoices.id"), nullable=False, index=True)
    credit_note_number: Mapped[str] = mapped_column(String(40), nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")  # draft|issued
    reason: Mapped[str] = mapped_column(String(40), nullable=False)  # refund|correction|discount|other
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    credit_note_date: Mapped[date] = mapped_column(Date, nullable=False)

    # stored negative: a credit reduces what the tenant owes
    sub_total: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    tax_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))

    issued_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)

    invoice: Mapped["Invoice"] = relationship(back_populates="credit_notes")
    lines: Mapped[List["CreditNoteLine"]] = relationship(
        back_populates="credit_note", order_by="CreditNoteLine.line_number", cascade="all, delete-orphan"
    )

    __mapper_args__ = {"version_id_col": version}


class CreditNoteLine(Base):
    __tablename__ = "credit_note_lines"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    credit_note_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("credit_notes.id", ondelete="CASCADE"), nullable=False, index=True
    )
    invoice_line_id: Mapped[int] = mapped_column(Integer, ForeignKey("invoice_lines.id"), nullable=False, index=True)
    line_number: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(String(300), nullable=False)
    amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False, default=Decimal("0"))
    total_amount: Mapped[Decimal] = mapped_column(MONEY, nullable=False)

    credit_note: Mapped["CreditNote"] = relationship(back_populates="lines")
    invoice_line: Mapped["InvoiceLine"] = relationship()


# -----------------------------
# Numbering + audit
# -----------------------------
class NumberSequence(Base):
    __tablename__ = "number_sequences"
    __table_args__ = (UniqueConstraint("org_id", "kind", "period_key", name="uq_number_sequences_key"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(Integer, ForeignKey("organizations.id"), nullable=False, index=True)
    kind: Mapped[str] = mapped_column(String(40), nullable=False)  # e.g. "invoice:INV"
    period_key: Mapped[str] = mapped_column(String(6), nullable=False)  # YYYYMM
    last_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class AuditEvent(Base):
    __tablename__ = "audit_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    org_id: Mapped[int] = mapped_column(Integer, ForeignKey("organizations.id"), index=True, nullable=False)
    actor: Mapped[Optional[str]] = mapped_column(String(120), nullable=True)

    action: Mapped[str] = mapped_column(String(80), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(80), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(80), nullable=False)

    before_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    after_json: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)
