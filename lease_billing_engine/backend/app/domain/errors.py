# backend/app/domain/errors.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

# Error kinds. Callers branch on these, not on exception classes:
#   validation     - caller-correctable input (bad due day, missing tenant, ...)
#   state          - operation not valid for the current lifecycle state
#   concurrency    - optimistic-lock loss; retryable by the caller
#   configuration  - malformed reference data (rate plans, term history)
#   infrastructure - persistence / connectivity faults
#   not_found      - scoped lookup missed
KINDS = {"validation", "state", "concurrency", "configuration", "infrastructure", "not_found"}


class BillingError(Exception):
    kind = "validation"

    def __init__(self, code: str, message: str | None = None, **details: Any) -> None:
        self.code = str(code)
        self.message = message or self.code
        self.details = details
        super().__init__(self.message)

    @property
    def retryable(self) -> bool:
        return self.kind == "concurrency"

    def as_info(self) -> "ErrorInfo":
        return ErrorInfo(kind=self.kind, code=self.code, message=self.message, retryable=self.retryable)


class ActivationError(BillingError):
    """A Draft lease failed one of the activation invariants."""

    def __init__(self, code: str, message: str | None = None, **details: Any) -> None:
        super().__init__(code, message, **details)
        self.kind = "state" if code == "invalid_lease_state" else "validation"


class InvalidTransition(BillingError):
    kind = "state"


class ConcurrencyConflict(BillingError):
    kind = "concurrency"

    def __init__(self, message: str | None = None, **details: Any) -> None:
        super().__init__("concurrency_conflict", message, **details)


class InvalidRatePlan(BillingError):
    kind = "configuration"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__("invalid_rate_plan", message, **details)


class InvalidConsumption(BillingError):
    def __init__(self, message: str, **details: Any) -> None:
        super().__init__("invalid_consumption", message, **details)


class InvalidProrationRange(BillingError):
    def __init__(self, message: str, **details: Any) -> None:
        super().__init__("invalid_proration_range", message, **details)


class NoTermFound(BillingError):
    def __init__(self, message: str, **details: Any) -> None:
        super().__init__("no_term_found", message, **details)


class InvalidTerm(BillingError):
    kind = "configuration"


class OverlappingTerms(InvalidTerm):
    def __init__(self, message: str, **details: Any) -> None:
        super().__init__("overlapping_terms", message, **details)


class StatementAlreadyFinal(BillingError):
    kind = "state"

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__("statement_already_final", message, **details)


class NotFound(BillingError):
    kind = "not_found"

    def __init__(self, entity: str, entity_id: Any) -> None:
        super().__init__(f"{entity}_not_found", f"{entity} {entity_id} not found", entity_id=entity_id)


class AssemblyError(BillingError):
    """
    Invoice assembly failed for one lease.

    Wraps the underlying failure (term / proration / rate errors, duplicates)
    and keeps its kind so a lost race is still reported as a concurrency error.
    """

    def __init__(
        self,
        lease_id: int,
        code: str,
        reason: str,
        *,
        kind: str = "validation",
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(code, f"lease {lease_id}: {reason}", lease_id=lease_id)
        self.lease_id = int(lease_id)
        self.reason = reason
        self.kind = kind if kind in KINDS else "validation"
        self.cause = cause

    @classmethod
    def wrap(cls, lease_id: int, err: BillingError) -> "AssemblyError":
        if isinstance(err, AssemblyError):
            return err
        return cls(lease_id, err.code, err.message, kind=err.kind, cause=err)


@dataclass(frozen=True)
class ErrorInfo:
    kind: str
    code: str
    message: str
    retryable: bool = False

    def as_dict(self) -> dict:
        return {"kind": self.kind, "code": self.code, "message": self.message, "retryable": self.retryable}
