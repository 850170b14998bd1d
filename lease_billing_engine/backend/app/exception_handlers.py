# backend/app/exception_handlers.py
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .domain.errors import BillingError

log = logging.getLogger(__name__)

STATUS_BY_KIND = {
    "not_found": 404,
    "state": 409,
    "concurrency": 409,
    "validation": 422,
    "configuration": 422,
    "infrastructure": 503,
}


def status_for(err: BillingError) -> int:
    return STATUS_BY_KIND.get(err.kind, 400)


def setup_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(BillingError)
    async def billing_error_handler(request: Request, exc: BillingError):
        status = status_for(exc)
        if status >= 500:
            log.error("billing infrastructure error: %s", exc.message, extra={"error_code": exc.code})
        return JSONResponse(content={"detail": exc.as_info().as_dict()}, status_code=status)
