"""Mongo 쓰기 경합/일시 장애에 대한 제한 횟수 재시도 유틸."""

from __future__ import annotations

import logging
import time
from typing import Callable, TypeVar

from pymongo.errors import AutoReconnect, OperationFailure


logger = logging.getLogger(__name__)

T = TypeVar("T")

# MongoDB WriteConflict 에러 코드
WRITE_CONFLICT_CODE = 112

DEFAULT_BACKOFF_SECONDS = 0.05


class RetryExhaustedError(Exception):
    """재시도 한도를 모두 소진한 경우."""


def is_transient_error(exc: Exception) -> bool:
    if isinstance(exc, AutoReconnect):
        return True
    if isinstance(exc, OperationFailure):
        if exc.code == WRITE_CONFLICT_CODE:
            return True
        return exc.has_error_label("TransientTransactionError")
    return False


def run_with_retry(
    operation: Callable[[], T],
    *,
    max_attempts: int,
    label: str,
    backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
) -> T:
    """operation 을 최대 max_attempts 번 실행한다.

    일시적 오류(AutoReconnect, WriteConflict)만 재시도하고, 그 밖의 예외는 그대로 올린다.
    한도를 넘기면 RetryExhaustedError 를 발생시켜 호출자가 비즈니스 거절로 바꾸게 한다.
    """

    attempts = max(1, max_attempts)
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except (AutoReconnect, OperationFailure) as exc:
            if not is_transient_error(exc):
                raise
            logger.warning(
                "transient mongo error on %s (attempt %d/%d): %s",
                label,
                attempt,
                attempts,
                exc,
            )
            if attempt < attempts:
                time.sleep(backoff_seconds * attempt)

    raise RetryExhaustedError(f"{label} failed after {attempts} attempts")
