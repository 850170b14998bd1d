# backend/app/services/invoice_management.py
from __future__ import annotations

import logging
from datetime import date
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..domain.audit import audit_write
from ..domain.billing.money import ZERO, money, to_decimal
from ..domain.clock import SYSTEM_CLOCK, Clock
from ..domain.errors import BillingError, ConcurrencyConflict, InvalidTransition
from ..models import Invoice, Payment
from .ownership import must_get_invoice

log = logging.getLogger(__name__)

INVOICE_STATUSES = {"draft", "issued", "partially_paid", "paid", "void"}
VOIDABLE = {"issued", "partially_paid"}
PAYABLE = {"issued", "partially_paid"}
PAYMENT_MODES = {"cash", "bank_transfer", "upi", "cheque", "card", "other"}


def _check_version(inv: Invoice, expected_version: Optional[int]) -> None:
    if expected_version is not None and int(expected_version) != int(inv.version):
        raise ConcurrencyConflict(
            f"invoice {inv.id} is at version {inv.version}, caller expected {expected_version}",
            invoice_id=inv.id,
            current_version=inv.version,
        )


def _commit(db: Session, inv: Invoice) -> None:
    try:
        db.commit()
    except (StaleDataError, IntegrityError) as e:
        db.rollback()
        raise ConcurrencyConflict(f"invoice {inv.id} was changed concurrently") from e


def issue_invoice(
    db: Session,
    *,
    org_id: int,
    invoice_id: int,
    expected_version: Optional[int] = None,
    clock: Clock = SYSTEM_CLOCK,
    actor: Optional[str] = None,
) -> Invoice:
    """Draft -> Issued. An issued invoice is never regenerated."""
    inv = must_get_invoice(db, org_id=org_id, invoice_id=invoice_id)
    _check_version(inv, expected_version)
    if inv.status != "draft":
        raise InvalidTransition("invalid_invoice_state", f"invoice {inv.invoice_number} is {inv.status}")
    if not inv.lines:
        raise BillingError("empty_invoice", f"invoice {inv.invoice_number} has no lines")
    if money(inv.total_amount) <= ZERO:
        raise BillingError("non_positive_total", f"invoice {inv.invoice_number} total is {inv.total_amount}")

    inv.status = "issued"
    inv.issued_at = clock.now()
    audit_write(
        db,
        org_id=org_id,
        actor=actor,
        action="invoice.issue",
        entity_type="invoice",
        entity_id=inv.id,
        before={"status": "draft"},
        after={"status": inv.status, "total_amount": inv.total_amount},
        at=clock.now(),
    )
    _commit(db, inv)
    log.info("invoice issued %s", inv.invoice_number, extra={"org_id": org_id, "invoice_id": inv.id})
    return inv


def void_invoice(
    db: Session,
    *,
    org_id: int,
    invoice_id: int,
    reason: str,
    expected_version: Optional[int] = None,
    clock: Clock = SYSTEM_CLOCK,
    actor: Optional[str] = None,
) -> Invoice:
    """
    Issued / PartiallyPaid -> Void.

    A voided invoice frees its period: the lease can be billed again for it.
    Drafts are regenerated rather than voided; paid invoices are corrected
    with credit notes.
    """
    inv = must_get_invoice(db, org_id=org_id, invoice_id=invoice_id)
    _check_version(inv, expected_version)
    if inv.status not in VOIDABLE:
        raise InvalidTransition("invalid_invoice_state", f"invoice {inv.invoice_number} is {inv.status}; cannot void")
    why = (reason or "").strip()
    if not why:
        raise BillingError("void_reason_required", "a reason is required to void an invoice")

    before = inv.status
    inv.status = "void"
    inv.voided_at = clock.now()
    inv.void_reason = why
    audit_write(
        db,
        org_id=org_id,
        actor=actor,
        action="invoice.void",
        entity_type="invoice",
        entity_id=inv.id,
        before={"status": before},
        after={"status": inv.status, "reason": why},
        at=clock.now(),
    )
    _commit(db, inv)
    log.info("invoice voided %s", inv.invoice_number, extra={"org_id": org_id, "invoice_id": inv.id})
    return inv


def record_payment(
    db: Session,
    *,
    org_id: int,
    invoice_id: int,
    amount: Any,
    payment_mode: str = "cash",
    transaction_reference: Optional[str] = None,
    payment_date: Optional[date] = None,
    notes: Optional[str] = None,
    expected_version: Optional[int] = None,
    clock: Clock = SYSTEM_CLOCK,
    actor: Optional[str] = None,
) -> Payment:
    """
    Apply a payment to an issued invoice.

    Issued -> PartiallyPaid -> Paid as the balance falls. A payment can never
    exceed the outstanding balance; anything other than cash needs a
    transaction reference.
    """
    inv = must_get_invoice(db, org_id=org_id, invoice_id=invoice_id)
    _check_version(inv, expected_version)
    if inv.status not in PAYABLE:
        raise InvalidTransition(
            "invalid_invoice_state", f"invoice {inv.invoice_number} is {inv.status}; cannot take a payment"
        )

    value = to_decimal(amount)
    if value is None or money(value) <= ZERO:
        raise BillingError("invalid_payment_amount", f"payment amount must be positive, got {amount!r}")
    value = money(value)

    mode = (payment_mode or "").strip().lower()
    if mode not in PAYMENT_MODES:
        raise BillingError("invalid_payment_mode", f"payment_mode must be one of {sorted(PAYMENT_MODES)}")
    ref = (transaction_reference or "").strip() or None
    if mode != "cash" and ref is None:
        raise BillingError("transaction_reference_required", f"a {mode} payment needs a transaction reference")

    balance = money(inv.total_amount - inv.paid_amount)
    if value > balance:
        raise BillingError(
            "payment_exceeds_balance",
            f"payment {value} exceeds the outstanding balance {balance} on {inv.invoice_number}",
            balance=str(balance),
        )

    before = {"status": inv.status, "paid_amount": inv.paid_amount, "balance_amount": inv.balance_amount}
    inv.paid_amount = money(inv.paid_amount + value)
    inv.balance_amount = money(inv.total_amount - inv.paid_amount)
    inv.status = "paid" if inv.balance_amount == ZERO else "partially_paid"

    payment = Payment(
        org_id=org_id,
        invoice_id=inv.id,
        lease_id=inv.lease_id,
        amount=value,
        payment_mode=mode,
        transaction_reference=ref,
        payment_date=payment_date or clock.today(),
        notes=notes,
        received_by=actor,
    )
    db.add(payment)
    audit_write(
        db,
        org_id=org_id,
        actor=actor,
        action="invoice.payment",
        entity_type="invoice",
        entity_id=inv.id,
        before=before,
        after={
            "status": inv.status,
            "paid_amount": inv.paid_amount,
            "balance_amount": inv.balance_amount,
            "payment_amount": value,
        },
        at=clock.now(),
    )
    _commit(db, inv)
    log.info(
        "payment recorded on %s",
        inv.invoice_number,
        extra={"org_id": org_id, "invoice_id": inv.id, "status": inv.status},
    )
    return payment
