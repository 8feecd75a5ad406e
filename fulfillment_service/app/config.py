from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


FULFILLMENT_SERVICE_PORT = "FULFILLMENT_SERVICE_PORT"
PENDING_ORDER_TTL_MINUTES = "PENDING_ORDER_TTL_MINUTES"
ORDER_SWEEP_INTERVAL_SECONDS = "ORDER_SWEEP_INTERVAL_SECONDS"
ORDER_EXPIRY_TIMEZONE = "ORDER_EXPIRY_TIMEZONE"
CLAIM_MAX_RETRIES = "CLAIM_MAX_RETRIES"
COUPON_USAGE_MAX_RETRIES = "COUPON_USAGE_MAX_RETRIES"
FULFILLMENT_LEASE_SECONDS = "FULFILLMENT_LEASE_SECONDS"

DEFAULT_PORT = 8003
DEFAULT_PENDING_ORDER_TTL_MINUTES = 20
DEFAULT_ORDER_SWEEP_INTERVAL_SECONDS = 300.0
DEFAULT_ORDER_EXPIRY_TIMEZONE = "Europe/Istanbul"
DEFAULT_CLAIM_MAX_RETRIES = 3
DEFAULT_COUPON_USAGE_MAX_RETRIES = 5
DEFAULT_FULFILLMENT_LEASE_SECONDS = 120.0


@dataclass(slots=True)
class OrderPolicyConfig:
    """주문 수명 정책."""

    pending_order_ttl_minutes: int
    sweep_interval_seconds: float
    expiry_timezone: str
    # 할당 중인 주문의 선점 유효 시간. 지나면 다른 요청이 이어받을 수 있다.
    fulfillment_lease_seconds: float = DEFAULT_FULFILLMENT_LEASE_SECONDS


@dataclass(slots=True)
class RetryConfig:
    """경합 재시도 한도. 한도를 넘기면 재고 없음/사용 한도 초과로 처리한다."""

    claim_max_retries: int
    coupon_usage_max_retries: int


@dataclass(slots=True)
class AppConfig:
    """fulfillment-service 전체 설정."""

    port: int
    order_policy: OrderPolicyConfig
    retry: RetryConfig


def _read_int(name: str, default: int, *, minimum: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be an integer if set, got: {raw!r}") from exc
    if value < minimum:
        raise RuntimeError(f"{name} must be >= {minimum}, got: {value}")
    return value


def _read_float(name: str, default: float, *, minimum: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as exc:
        raise RuntimeError(f"{name} must be a float if set, got: {raw!r}") from exc
    if value < minimum:
        raise RuntimeError(f"{name} must be >= {minimum}, got: {value}")
    return value


def load_order_policy_config() -> OrderPolicyConfig:
    timezone_name = (
        os.getenv(ORDER_EXPIRY_TIMEZONE, "").strip() or DEFAULT_ORDER_EXPIRY_TIMEZONE
    )
    try:
        ZoneInfo(timezone_name)
    except ZoneInfoNotFoundError as exc:
        raise RuntimeError(
            f"{ORDER_EXPIRY_TIMEZONE} is not a known IANA timezone: {timezone_name!r}"
        ) from exc

    return OrderPolicyConfig(
        pending_order_ttl_minutes=_read_int(
            PENDING_ORDER_TTL_MINUTES, DEFAULT_PENDING_ORDER_TTL_MINUTES, minimum=1
        ),
        sweep_interval_seconds=_read_float(
            ORDER_SWEEP_INTERVAL_SECONDS,
            DEFAULT_ORDER_SWEEP_INTERVAL_SECONDS,
            minimum=1.0,
        ),
        expiry_timezone=timezone_name,
        fulfillment_lease_seconds=_read_float(
            FULFILLMENT_LEASE_SECONDS,
            DEFAULT_FULFILLMENT_LEASE_SECONDS,
            minimum=1.0,
        ),
    )


def load_retry_config() -> RetryConfig:
    return RetryConfig(
        claim_max_retries=_read_int(
            CLAIM_MAX_RETRIES, DEFAULT_CLAIM_MAX_RETRIES, minimum=1
        ),
        coupon_usage_max_retries=_read_int(
            COUPON_USAGE_MAX_RETRIES, DEFAULT_COUPON_USAGE_MAX_RETRIES, minimum=1
        ),
    )


def load_config() -> AppConfig:
    """환경 변수에서 설정을 읽어 AppConfig 로 반환한다."""

    return AppConfig(
        port=_read_int(FULFILLMENT_SERVICE_PORT, DEFAULT_PORT, minimum=1),
        order_policy=load_order_policy_config(),
        retry=load_retry_config(),
    )


@lru_cache(maxsize=1)
def get_app_config() -> AppConfig:
    """프로세스 전역 설정 (FastAPI DI 용)."""

    return load_config()
