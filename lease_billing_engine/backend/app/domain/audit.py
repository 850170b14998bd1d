# backend/app/domain/audit.py
from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.orm import Session

from ..models import AuditEvent


def _dumps(v: Optional[dict[str, Any]]) -> Optional[str]:
    if v is None:
        return None
    return json.dumps(v, sort_keys=True, default=str)


def audit_write(
    db: Session,
    *,
    org_id: int,
    actor: Optional[str],
    action: str,
    entity_type: str,
    entity_id: Any,
    before: Optional[dict[str, Any]] = None,
    after: Optional[dict[str, Any]] = None,
    at: Optional[datetime] = None,
    commit: bool = False,
) -> AuditEvent:
    """
    Preferred audit writer.

    - Does NOT commit by default (so services can bundle the audit row with
      the change it describes in one txn).
    - Returns the AuditEvent row for tests / introspection.
    """
    row = AuditEvent(
        org_id=org_id,
        actor=actor,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        before_json=_dumps(before),
        after_json=_dumps(after),
    )
    if at is not None:
        row.created_at = at
    db.add(row)
    if commit:
        db.commit()
        db.refresh(row)
    return row
