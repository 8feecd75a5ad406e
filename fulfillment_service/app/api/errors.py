"""도메인 예외 -> HTTP 응답 매핑.

응답 바디는 {"detail": 메시지, "code": 기계가 읽는 코드} 형태다.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ..exceptions import (
    ConsistencyViolationError,
    CouponRejectedError,
    CredentialInUseError,
    DuplicateCouponCodeError,
    FulfillmentError,
    FulfillmentInProgressError,
    InvalidOrderError,
    InvalidTransitionError,
    NotFoundError,
)


logger = logging.getLogger(__name__)


def _error_response(status_code: int, code: str, detail: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": detail, "code": code})


def _status_and_code(exc: FulfillmentError) -> tuple[int, str]:
    if isinstance(exc, NotFoundError):
        return 404, "not_found"
    if isinstance(exc, InvalidTransitionError):
        return 409, "invalid_transition"
    if isinstance(exc, FulfillmentInProgressError):
        return 409, "fulfillment_in_progress"
    if isinstance(exc, CredentialInUseError):
        return 409, "credential_in_use"
    if isinstance(exc, DuplicateCouponCodeError):
        return 409, "duplicate_coupon_code"
    if isinstance(exc, CouponRejectedError):
        return 400, str(exc.reason)
    if isinstance(exc, InvalidOrderError):
        return 400, "invalid_order"
    if isinstance(exc, ConsistencyViolationError):
        return 500, "consistency_violation"
    return 500, "internal_error"


async def handle_fulfillment_error(request: Request, exc: Exception) -> JSONResponse:
    assert isinstance(exc, FulfillmentError)
    status_code, code = _status_and_code(exc)
    if status_code >= 500:
        logger.error(
            "request failed with %s: %s",
            code,
            exc,
            extra={"path": request.url.path},
        )
    return _error_response(status_code, code, str(exc))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(FulfillmentError, handle_fulfillment_error)
