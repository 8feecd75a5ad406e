from __future__ import annotations

import logging
import threading
from typing import Optional, cast

from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.database import Database

from .config import get_mongo_db_name, get_mongo_uri, get_server_selection_timeout_ms


logger = logging.getLogger(__name__)


_client: Optional[MongoClient] = None
_db: Optional[Database] = None
_lock = threading.Lock()


def get_client() -> MongoClient:
    """전역 MongoClient 싱글톤을 반환한다.

    - MONGO_URI 에서 URI 를 읽고 ping 으로 연결을 검증한다.
    - MONGO_DB_NAME 이 없으면 URI 의 기본 데이터베이스를 사용한다.
    - 주문/재고 컬렉션 인덱스를 한 번만 생성한다.
    """

    global _client, _db

    if _client is not None:
        return _client

    with _lock:
        if _client is not None:
            return _client

        uri = get_mongo_uri()
        client = MongoClient(
            uri,
            tz_aware=True,
            serverSelectionTimeoutMS=get_server_selection_timeout_ms(),
        )

        try:
            client.admin.command("ping")
        except Exception as exc:  # noqa: BLE001
            client.close()
            raise RuntimeError(f"failed to connect to MongoDB: {exc}") from exc

        db_name = get_mongo_db_name()
        try:
            if db_name:
                db = client[db_name]
            else:
                db = client.get_default_database()
        except Exception as exc:  # noqa: BLE001
            client.close()
            raise RuntimeError(
                "MongoDB database name must be specified via MONGO_DB_NAME or in MONGO_URI (mongodb://.../db_name)",
            ) from exc

        _client = client
        _db = db

        try:
            ensure_indexes(_db)
        except Exception as exc:  # noqa: BLE001
            logger.error("failed to ensure MongoDB indexes: %s", exc)
            raise

        safe_db = cast(Database, _db)
        logger.info("MongoDB connected and indexes ensured (db=%s)", safe_db.name)
        return _client


def get_database() -> Database:
    """전역 기본 Database 객체를 반환한다."""

    global _db

    if _db is None:
        get_client()
    assert _db is not None
    return _db


def ensure_indexes(db: Database) -> None:
    """필수 인덱스를 생성한다. 중복 호출해도 MongoDB 가 무시하므로 idempotent 하다."""

    plans = db["plans"]
    plans.create_index(
        [("ship_id", ASCENDING), ("sort_order", ASCENDING)],
        name="idx_ship_sort_order",
    )

    credentials = db["credential_pools"]

    # 같은 플랜 안에서 username 중복 금지
    credentials.create_index(
        [("plan_id", ASCENDING), ("username", ASCENDING)],
        name="uniq_plan_username",
        unique=True,
    )

    # ClaimOne: plan_id + is_assigned=false 중 가장 오래된 것부터 집는다.
    credentials.create_index(
        [("plan_id", ASCENDING), ("is_assigned", ASCENDING), ("created_at", ASCENDING)],
        name="idx_plan_assigned_created_at",
    )

    credentials.create_index(
        [("assigned_to_order_id", ASCENDING)],
        name="idx_assigned_to_order_id",
    )

    coupons = db["coupons"]

    # 대소문자 무시 유니크: 정규화된 code_key 로 강제한다.
    coupons.create_index(
        [("code_key", ASCENDING)],
        name="uniq_code_key",
        unique=True,
    )

    usages = db["coupon_usages"]
    usages.create_index(
        [("coupon_id", ASCENDING), ("user_id", ASCENDING)],
        name="idx_coupon_user",
    )
    usages.create_index(
        [("order_id", ASCENDING)],
        name="uniq_order_id",
        unique=True,
    )

    orders = db["orders"]
    orders.create_index(
        [("status", ASCENDING), ("created_at", ASCENDING)],
        name="idx_status_created_at",
    )
    orders.create_index(
        [("user_id", ASCENDING), ("coupon_id", ASCENDING), ("status", ASCENDING)],
        name="idx_user_coupon_status",
    )
    orders.create_index(
        [("user_id", ASCENDING), ("paid_at", DESCENDING)],
        name="idx_user_paid_at",
    )
    orders.create_index(
        [("status", ASCENDING), ("expires_at", ASCENDING)],
        name="idx_status_expires_at",
    )
