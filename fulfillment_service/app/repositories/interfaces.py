from __future__ import annotations

from datetime import datetime
from typing import Any, Protocol

from ..models.coupon import Coupon, CouponUsage, UsageClaim
from ..models.credential import Credential, CredentialInsertResult, CredentialStats
from ..models.order import Order, OrderStatus
from ..models.plan import Plan


class PlanRepositoryInterface(Protocol):
    """PlanRepository 가 따라야 할 최소한의 계약.

    엔진은 플랜을 읽기만 한다. insert 는 관리자 시딩용이다.
    """

    def insert(self, plan: Plan) -> Plan:  # pragma: no cover - Protocol
        ...

    def find_by_id(self, plan_id: str) -> Plan | None:  # pragma: no cover - Protocol
        ...

    def find_by_ids(
        self, plan_ids: list[str]
    ) -> dict[str, Plan]:  # pragma: no cover - Protocol
        ...

    def list_active_by_ship(
        self, ship_id: str
    ) -> list[Plan]:  # pragma: no cover - Protocol
        ...


class CredentialRepositoryInterface(Protocol):
    """CredentialRepository 가 따라야 할 계약.

    - claim_one 은 "미할당일 때만 할당" 하는 단일 도큐먼트 CAS 여야 한다.
      같은 자격증명이 두 호출자에게 동시에 돌아가서는 안 된다.
    - release 계열은 할당을 지우기만 하고 도큐먼트를 삭제하지 않는다.
    """

    def insert_many(
        self, credentials: list[Credential]
    ) -> CredentialInsertResult:  # pragma: no cover - Protocol
        ...

    def existing_usernames(
        self, plan_id: str, usernames: list[str]
    ) -> set[str]:  # pragma: no cover - Protocol
        ...

    def claim_one(
        self, plan_id: str, order_id: str, user_id: str
    ) -> Credential | None:  # pragma: no cover - Protocol
        """가장 오래된 미할당 자격증명을 할당한다. 재고가 없으면 None."""
        ...

    def release(
        self, credential_id: str, expected_order_id: str | None = None
    ) -> Credential | None:  # pragma: no cover - Protocol
        """할당된 자격증명을 해제하고 해제된 도큐먼트를 반환한다.

        expected_order_id 가 주어지면 그 주문에 묶인 경우에만 해제한다.
        조건이 맞지 않으면(이미 미할당, 다른 주문, 없음) None 을 반환한다.
        """
        ...

    def release_all_for_order(
        self, order_id: str
    ) -> int:  # pragma: no cover - Protocol
        ...

    def find_by_id(
        self, credential_id: str
    ) -> Credential | None:  # pragma: no cover - Protocol
        ...

    def find_by_ids(
        self, credential_ids: list[str]
    ) -> list[Credential]:  # pragma: no cover - Protocol
        ...

    def list_for_order(
        self, order_id: str
    ) -> list[Credential]:  # pragma: no cover - Protocol
        ...

    def list_by_plan(
        self, plan_id: str, page: int, page_size: int
    ) -> tuple[list[Credential], int]:  # pragma: no cover - Protocol
        ...

    def stats(self, plan_id: str) -> CredentialStats:  # pragma: no cover - Protocol
        ...

    def stats_all(self) -> list[CredentialStats]:  # pragma: no cover - Protocol
        ...

    def delete_if_unassigned(
        self, credential_id: str
    ) -> bool:  # pragma: no cover - Protocol
        ...


class CouponRepositoryInterface(Protocol):
    """쿠폰과 쿠폰 사용 원장(coupon_usages)에 대한 계약."""

    def insert(self, coupon: Coupon) -> Coupon:  # pragma: no cover - Protocol
        """code 가 대소문자 무시로 중복되면 DuplicateCouponCodeError."""
        ...

    def find_by_id(
        self, coupon_id: str
    ) -> Coupon | None:  # pragma: no cover - Protocol
        ...

    def find_by_code(self, code: str) -> Coupon | None:  # pragma: no cover - Protocol
        ...

    def claim_usage_slot(
        self, coupon_id: str
    ) -> UsageClaim:  # pragma: no cover - Protocol
        """used_count 를 낙관적 버전 체크로 1 증가시킨다.

        한도가 이미 찼으면 증가하지 않고 over_limit=True 를 돌려준다.
        경합 재시도를 모두 소진하면 RetryExhaustedError.
        """
        ...

    def record_usage(
        self, usage: CouponUsage
    ) -> CouponUsage:  # pragma: no cover - Protocol
        """주문당 한 건만 기록한다. 이미 있으면 기존 기록을 반환한다."""
        ...


class OrderRepositoryInterface(Protocol):
    """OrderRepository 가 따라야 할 계약.

    상태 변경은 update_if_status 하나로만 한다. 현재 상태가 expected 중 하나일 때만 적용된다.
    """

    def insert(self, order: Order) -> Order:  # pragma: no cover - Protocol
        ...

    def find_by_id(self, order_id: str) -> Order | None:  # pragma: no cover - Protocol
        ...

    def update_if_status(
        self,
        order_id: str,
        expected: list[OrderStatus],
        updates: dict[str, Any],
        *,
        fulfillment_token: str | None = None,
        lease_expired_before: datetime | None = None,
    ) -> Order | None:  # pragma: no cover - Protocol
        ...

    def detach_credential(
        self, order_id: str, credential_id: str, note: str
    ) -> Order | None:  # pragma: no cover - Protocol
        """credential_ids 에서 하나를 빼고 needs_reconciliation 을 표시한다."""
        ...

    def count_coupon_orders(
        self,
        user_id: str,
        coupon_id: str,
        exclude_statuses: list[OrderStatus],
        exclude_order_id: str | None = None,
    ) -> int:  # pragma: no cover - Protocol
        ...

    def list_purchased_since(
        self, user_id: str, since: datetime
    ) -> list[Order]:  # pragma: no cover - Protocol
        ...

    def list_stale_pending(
        self, created_before: datetime, limit: int
    ) -> list[Order]:  # pragma: no cover - Protocol
        ...

    def list_lapsed_purchases(
        self, expired_before: datetime, limit: int
    ) -> list[Order]:  # pragma: no cover - Protocol
        ...
