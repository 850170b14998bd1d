# backend/app/auth.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException
from sqlalchemy import select
from sqlalchemy.orm import Session

from .db import get_db
from .models import Organization


@dataclass(frozen=True)
class Principal:
    org_id: int
    org_slug: str
    actor: Optional[str] = None


def get_principal(
    db: Session = Depends(get_db),
    x_org_id: Optional[str] = Header(default=None, alias="X-Org-Id"),
    x_actor: Optional[str] = Header(default=None, alias="X-Actor"),
) -> Principal:
    """
    Org scoping only. Identity is handled upstream (gateway); this just pins
    every query to the organization named in X-Org-Id.
    """
    raw = str(x_org_id or "").strip()
    if not raw:
        raise HTTPException(status_code=401, detail="Missing X-Org-Id (active org context).")
    try:
        org_id = int(raw)
    except ValueError:
        raise HTTPException(status_code=400, detail="X-Org-Id must be an integer")

    org = db.scalar(select(Organization).where(Organization.id == org_id))
    if org is None:
        raise HTTPException(status_code=404, detail="Unknown organization")

    actor = (x_actor or "").strip() or None
    return Principal(org_id=int(org.id), org_slug=str(org.slug), actor=actor)
