# backend/app/routers/invoices.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth import Principal, get_principal
from ..db import get_db
from ..schemas import (
    CreditNoteIn,
    CreditNoteOut,
    InvoiceGenerateIn,
    InvoiceIssueIn,
    InvoiceOut,
    InvoiceVoidIn,
    PaymentIn,
    PaymentOut,
)
from ..services.credit_notes import create_credit_note, issue_credit_note
from ..services.invoice_generation import generate_invoice_for_lease
from ..services.invoice_management import issue_invoice, record_payment, void_invoice
from ..services.ownership import must_get_invoice

router = APIRouter(tags=["invoices"])


@router.post("/leases/{lease_id}/invoices", response_model=InvoiceOut)
def generate_invoice(
    lease_id: int,
    payload: InvoiceGenerateIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    res = generate_invoice_for_lease(
        db,
        org_id=p.org_id,
        lease_id=lease_id,
        period_start=payload.period_start,
        period_end=payload.period_end,
        actor=p.actor,
    )
    if not res.ok:
        raise res.error
    return res.invoice


@router.get("/invoices/{invoice_id}", response_model=InvoiceOut)
def get_invoice(invoice_id: int, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    return must_get_invoice(db, org_id=p.org_id, invoice_id=invoice_id)


@router.post("/invoices/{invoice_id}/issue", response_model=InvoiceOut)
def issue(
    invoice_id: int,
    payload: InvoiceIssueIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    return issue_invoice(
        db, org_id=p.org_id, invoice_id=invoice_id, expected_version=payload.expected_version, actor=p.actor
    )


@router.post("/invoices/{invoice_id}/void", response_model=InvoiceOut)
def void(
    invoice_id: int,
    payload: InvoiceVoidIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    return void_invoice(
        db,
        org_id=p.org_id,
        invoice_id=invoice_id,
        reason=payload.reason,
        expected_version=payload.expected_version,
        actor=p.actor,
    )


# -------------------- Payments --------------------

@router.get("/invoices/{invoice_id}/payments", response_model=list[PaymentOut])
def list_payments(invoice_id: int, db: Session = Depends(get_db), p: Principal = Depends(get_principal)):
    return list(must_get_invoice(db, org_id=p.org_id, invoice_id=invoice_id).payments)


@router.post("/invoices/{invoice_id}/payments", response_model=PaymentOut)
def pay(
    invoice_id: int,
    payload: PaymentIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    return record_payment(db, org_id=p.org_id, invoice_id=invoice_id, actor=p.actor, **payload.model_dump())


# -------------------- Credit notes --------------------

@router.post("/invoices/{invoice_id}/credit-notes", response_model=CreditNoteOut)
def create_credit(
    invoice_id: int,
    payload: CreditNoteIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    return create_credit_note(
        db,
        org_id=p.org_id,
        invoice_id=invoice_id,
        reason=payload.reason,
        notes=payload.notes,
        lines=[l.model_dump() for l in payload.lines],
        actor=p.actor,
    )


@router.post("/credit-notes/{credit_note_id}/issue", response_model=CreditNoteOut)
def issue_credit(
    credit_note_id: int,
    payload: InvoiceIssueIn,
    db: Session = Depends(get_db),
    p: Principal = Depends(get_principal),
):
    return issue_credit_note(
        db, org_id=p.org_id, credit_note_id=credit_note_id, expected_version=payload.expected_version, actor=p.actor
    )
