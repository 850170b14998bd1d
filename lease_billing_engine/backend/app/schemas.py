# backend/app/schemas.py
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


# -------------------- Errors --------------------

class ErrorOut(BaseModel):
    kind: str
    code: str
    message: str
    retryable: bool = False


# -------------------- Leases --------------------

class LeaseTransitionIn(BaseModel):
    expected_version: Optional[int] = Field(default=None, ge=1)


class GiveNoticeIn(LeaseTransitionIn):
    move_out_date: Optional[date] = None


class EndLeaseIn(LeaseTransitionIn):
    end_date: Optional[date] = None


class LeaseStateOut(BaseModel):
    id: int
    lease_number: str
    status: str
    start_date: date
    end_date: Optional[date] = None
    version: int
    activated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class LeaseTermIn(BaseModel):
    effective_from: date
    effective_to: Optional[date] = None
    monthly_rent: Decimal = Field(ge=0)
    security_deposit: Decimal = Field(default=Decimal("0"), ge=0)
    maintenance_charge: Optional[Decimal] = Field(default=None, ge=0)
    other_fixed_charge: Optional[Decimal] = Field(default=None, ge=0)
    escalation_type: str = "none"
    escalation_value: Optional[Decimal] = None
    escalation_every_months: Optional[int] = Field(default=None, ge=1)
    notes: Optional[str] = None


class LeaseTermOut(LeaseTermIn):
    id: int
    lease_id: int

    model_config = ConfigDict(from_attributes=True)


# -------------------- Recurring charges --------------------

class RecurringChargeIn(BaseModel):
    charge_code: str = Field(min_length=1, max_length=20)
    description: str = Field(min_length=1, max_length=300)
    amount: Decimal = Field(gt=0)
    frequency: str = "monthly"
    start_date: date
    end_date: Optional[date] = None
    notes: Optional[str] = None


class RecurringChargeOut(RecurringChargeIn):
    id: int
    lease_id: int
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


# -------------------- Utility statements --------------------

class UtilityStatementIn(BaseModel):
    utility_type: str
    period_start: date
    period_end: date
    is_meter_based: bool = True
    rate_plan_id: Optional[int] = None
    previous_reading: Optional[Decimal] = None
    current_reading: Optional[Decimal] = None
    units_consumed: Optional[Decimal] = None
    direct_amount: Optional[Decimal] = None
    notes: Optional[str] = None
    finalize: bool = False


class UtilityStatementOut(BaseModel):
    id: int
    lease_id: int
    utility_type: str
    period_start: date
    period_end: date
    is_meter_based: bool
    units_consumed: Optional[Decimal] = None
    direct_amount: Optional[Decimal] = None
    version: int
    is_final: bool

    model_config = ConfigDict(from_attributes=True)


# -------------------- Invoices --------------------

class InvoiceGenerateIn(BaseModel):
    period_start: date
    period_end: date

    @model_validator(mode="after")
    def _period_order(self) -> "InvoiceGenerateIn":
        if self.period_end < self.period_start:
            raise ValueError("period_end must be on or after period_start")
        return self


class InvoiceLineOut(BaseModel):
    id: int
    line_number: int
    charge_code: str
    description: str
    quantity: Decimal
    unit_price: Decimal
    amount: Decimal
    tax_rate: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    source: str
    source_ref_id: Optional[int] = None
    period_start: Optional[date] = None
    period_end: Optional[date] = None
    is_prorated: bool

    model_config = ConfigDict(from_attributes=True)


class InvoiceOut(BaseModel):
    id: int
    lease_id: int
    invoice_run_id: Optional[int] = None
    invoice_number: str
    status: str
    billing_period_start: date
    billing_period_end: date
    invoice_date: date
    due_date: date
    sub_total: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    paid_amount: Decimal
    balance_amount: Decimal
    payment_instructions: Optional[str] = None
    issued_at: Optional[datetime] = None
    voided_at: Optional[datetime] = None
    void_reason: Optional[str] = None
    version: int
    lines: List[InvoiceLineOut] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class InvoiceIssueIn(BaseModel):
    expected_version: Optional[int] = Field(default=None, ge=1)


class InvoiceVoidIn(InvoiceIssueIn):
    reason: str = Field(min_length=1)


class PaymentIn(InvoiceIssueIn):
    amount: Decimal = Field(gt=0)
    payment_mode: str = "cash"
    transaction_reference: Optional[str] = Field(default=None, max_length=120)
    payment_date: Optional[date] = None
    notes: Optional[str] = None


class PaymentOut(BaseModel):
    id: int
    invoice_id: int
    lease_id: int
    amount: Decimal
    payment_mode: str
    transaction_reference: Optional[str] = None
    payment_date: date
    received_by: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


# -------------------- Credit notes --------------------

class CreditNoteLineIn(BaseModel):
    invoice_line_id: int
    amount: Decimal = Field(gt=0)
    description: Optional[str] = None


class CreditNoteIn(BaseModel):
    reason: str
    notes: Optional[str] = None
    lines: List[CreditNoteLineIn] = Field(min_length=1)


class CreditNoteLineOut(BaseModel):
    id: int
    invoice_line_id: int
    line_number: int
    description: str
    amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal

    model_config = ConfigDict(from_attributes=True)


class CreditNoteOut(BaseModel):
    id: int
    invoice_id: int
    credit_note_number: str
    status: str
    reason: str
    credit_note_date: date
    sub_total: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    issued_at: Optional[datetime] = None
    version: int
    lines: List[CreditNoteLineOut] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


# -------------------- Invoice runs --------------------

class InvoiceRunIn(BaseModel):
    period_start: date
    period_end: date

    @model_validator(mode="after")
    def _period_order(self) -> "InvoiceRunIn":
        if self.period_end < self.period_start:
            raise ValueError("period_end must be on or after period_start")
        return self


class InvoiceRunItemOut(BaseModel):
    id: int
    lease_id: int
    is_success: bool
    invoice_id: Optional[int] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    processed_at: datetime

    model_config = ConfigDict(from_attributes=True)


class InvoiceRunOut(BaseModel):
    id: int
    run_number: str
    billing_period_start: date
    billing_period_end: date
    status: str
    total_leases: int
    success_count: int
    failure_count: int
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    items: List[InvoiceRunItemOut] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)
