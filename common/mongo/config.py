from __future__ import annotations

import os


MONGO_URI_ENV = "MONGO_URI"
MONGO_DB_NAME_ENV = "MONGO_DB_NAME"
MONGO_SERVER_SELECTION_TIMEOUT_MS_ENV = "MONGO_SERVER_SELECTION_TIMEOUT_MS"

DEFAULT_SERVER_SELECTION_TIMEOUT_MS = 5000


def get_mongo_uri() -> str:
    """MONGO_URI 를 읽는다. 주문/재고 저장소 없이 뜰 수는 없으므로 비어 있으면 RuntimeError."""

    uri = os.getenv(MONGO_URI_ENV, "").strip()
    if not uri:
        raise RuntimeError(f"{MONGO_URI_ENV} must be set for the fulfillment store")
    return uri


def get_mongo_db_name() -> str | None:
    # None 이면 URI 경로의 기본 DB 를 쓴다.
    return os.getenv(MONGO_DB_NAME_ENV, "").strip() or None


def get_server_selection_timeout_ms() -> int:
    raw = os.getenv(MONGO_SERVER_SELECTION_TIMEOUT_MS_ENV, "").strip()
    if not raw:
        return DEFAULT_SERVER_SELECTION_TIMEOUT_MS
    try:
        value = int(raw)
    except ValueError as exc:
        raise RuntimeError(
            f"{MONGO_SERVER_SELECTION_TIMEOUT_MS_ENV} must be an integer, got {raw!r}"
        ) from exc
    if value <= 0:
        raise RuntimeError(f"{MONGO_SERVER_SELECTION_TIMEOUT_MS_ENV} must be positive")
    return value
