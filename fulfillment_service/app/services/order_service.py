"""주문 상태 머신과 할당 코디네이터.

모든 상태 변경은 "현재 상태가 기대값일 때만" 적용되는 조건부 업데이트로 한다.
같은 주문에 대한 두 전이가 동시에 성공할 수 없다.

결제 확정(pending -> paid) 시 쿠폰 사용 슬롯을 잡고, 할당(paid -> fulfilled) 시
항목 수량만큼 자격증명을 하나씩 잡는다. 하나라도 재고가 없으면 이미 잡은 것을 모두
해제하고 fulfillment_failed 로 보낸다. 부분 할당 상태로 남는 주문은 없다.
할당은 주문 단위 선점 토큰(fulfillment_token)을 쥔 요청 하나만 진행한다.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from fastapi import Depends
from pymongo.database import Database

from common.mongo.retry import RetryExhaustedError

from ..config import AppConfig, OrderPolicyConfig, get_app_config
from ..exceptions import (
    ConsistencyViolationError,
    CouponRejectedError,
    FulfillmentError,
    FulfillmentInProgressError,
    InvalidOrderError,
    InvalidTransitionError,
    OrderNotFoundError,
)
from ..models.coupon import CouponUsage, UsageClaim, normalize_coupon_code
from ..models.credential import Credential
from ..models.order import (
    FulfillmentResult,
    Order,
    OrderStatus,
    can_transition,
)
from ..repositories.coupon_repository import CouponRepository
from ..repositories.credential_repository import CredentialRepository
from ..repositories.interfaces import (
    CouponRepositoryInterface,
    OrderRepositoryInterface,
)
from ..repositories.order_repository import OrderRepository
from ..repositories.plan_repository import PlanRepository
from ..utils.dates import end_of_month
from .coupon_policy_service import (
    CouponPolicyService,
    get_coupon_policy_service,
    get_coupon_repository,
    get_order_repository,
)
from .credential_pool_service import (
    CredentialPoolService,
    get_credential_pool_service,
)
from .discount_composer import ZERO, compose_total
from .order_events import OrderEventPublisher, get_order_event_publisher


logger = logging.getLogger(__name__)

OUT_OF_STOCK_PREFIX = "out_of_stock:"
DEFAULT_SWEEP_BATCH_SIZE = 100

_LEASE_CLEARED: dict[str, Any] = {"fulfillment_token": None, "fulfillment_started_at": None}


class OrderService:
    def __init__(
        self,
        order_repo: OrderRepositoryInterface,
        coupon_repo: CouponRepositoryInterface,
        pool: CredentialPoolService,
        coupon_policy: CouponPolicyService,
        events: OrderEventPublisher,
        policy: OrderPolicyConfig,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._order_repo = order_repo
        self._coupon_repo = coupon_repo
        self._pool = pool
        self._coupon_policy = coupon_policy
        self._events = events
        self._policy = policy
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ------------------------------------------------------------------ 조회

    def get(self, order_id: str) -> Order:
        order = self._order_repo.find_by_id(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    def get_with_credentials(self, order_id: str) -> tuple[Order, list[Credential]]:
        order = self.get(order_id)
        if order.status != OrderStatus.FULFILLED or not order.credential_ids:
            return order, []
        return order, self._ordered_credentials(order)

    # ------------------------------------------------------------------ 전이

    def complete(
        self,
        order_id: str,
        payment_reference: str,
        coupon_code: str | None = None,
    ) -> FulfillmentResult:
        """결제 확정과 할당을 한 번에 진행한다.

        이미 paid 인 주문은 할당부터 재개하고, 같은 결제 참조로 이미 fulfilled 된 주문은
        기존 결과를 그대로 돌려준다.
        """
        order = self.get(order_id)

        if order.status == OrderStatus.PENDING:
            try:
                order = self.mark_paid(order_id, payment_reference, coupon_code)
            except InvalidTransitionError:
                # 동시에 들어온 같은 결제 확정 요청이 먼저 전이한 경우
                order = self.get(order_id)
                if order.payment_reference != payment_reference:
                    raise

        if order.status == OrderStatus.FULFILLED:
            if order.payment_reference != payment_reference:
                raise InvalidTransitionError(
                    order_id, order.status.value, OrderStatus.FULFILLED.value
                )
            return FulfillmentResult(
                order=order, credentials=self._ordered_credentials(order)
            )

        if order.status != OrderStatus.PAID:
            raise InvalidTransitionError(
                order_id, order.status.value, OrderStatus.PAID.value
            )
        if order.payment_reference and order.payment_reference != payment_reference:
            raise InvalidOrderError(
                f"order {order_id} was paid with a different payment reference"
            )

        return self.fulfill(order_id)

    def mark_paid(
        self,
        order_id: str,
        payment_reference: str,
        coupon_code: str | None = None,
    ) -> Order:
        """pending -> paid.

        쿠폰이 있으면 사용 슬롯을 하나 잡는다. 그 사이 한도가 찼더라도 결제는 이미 캡처됐으므로
        전이는 성공시키고 주문에 needs_reconciliation 을 표시한다.
        """
        order = self.get(order_id)
        if order.status != OrderStatus.PENDING:
            raise InvalidTransitionError(
                order_id, order.status.value, OrderStatus.PAID.value
            )

        order = self._apply_coupon_code(order, coupon_code)

        now = self._clock()
        paid = self._transition(
            order,
            OrderStatus.PAID,
            {
                "paid_at": now,
                "payment_reference": payment_reference,
                "expires_at": end_of_month(now, self._policy.expiry_timezone),
            },
        )

        if paid.coupon_id:
            paid = self._consume_coupon(paid)
        return paid

    def fulfill(self, order_id: str) -> FulfillmentResult:
        """paid(또는 fulfillment_failed 재시도) -> fulfilled.

        주문에 할당 선점(lease)을 먼저 건다. 같은 주문의 할당은 한 번에 하나만 진행되고,
        선점을 못 잡은 요청은 FulfillmentInProgressError 로 끝난다.
        이전 시도에서 이미 이 주문에 묶인 자격증명은 다시 쓰고 모자란 만큼만 잡는다.
        """
        order = self.get(order_id)
        if order.status not in (OrderStatus.PAID, OrderStatus.FULFILLMENT_FAILED):
            raise InvalidTransitionError(
                order_id, order.status.value, OrderStatus.FULFILLED.value
            )
        assert order.id is not None

        token = uuid.uuid4().hex
        order = self._acquire_fulfillment_lease(order, token)
        try:
            return self._fulfill_under_lease(order, token)
        except Exception:
            self._drop_fulfillment_lease(order_id, token)
            raise

    def _fulfill_under_lease(self, order: Order, token: str) -> FulfillmentResult:
        assert order.id is not None
        bound = self._pool.list_for_order(order.id)
        bound_by_plan: dict[str, list[Credential]] = {}
        for credential in bound:
            bound_by_plan.setdefault(credential.plan_id, []).append(credential)

        needed_by_plan: dict[str, int] = {}
        for item in order.items:
            needed_by_plan[item.plan_id] = needed_by_plan.get(item.plan_id, 0) + item.quantity

        assigned: list[Credential] = []
        newly_claimed: list[Credential] = []
        for plan_id, quantity in needed_by_plan.items():
            reuse = bound_by_plan.pop(plan_id, [])[:quantity]
            assigned.extend(reuse)
            for _ in range(quantity - len(reuse)):
                credential = self._pool.claim_one(plan_id, order.id, order.user_id)
                if credential is None:
                    return self._roll_back_fulfillment(
                        order, plan_id, token, newly_claimed
                    )
                assigned.append(credential)
                newly_claimed.append(credential)

        credential_ids = [c.id for c in assigned if c.id is not None]
        fulfilled = self._commit_under_lease(
            order,
            OrderStatus.FULFILLED,
            {
                "credential_ids": credential_ids,
                "fulfilled_at": self._clock(),
                "failure_reason": None,
                **_LEASE_CLEARED,
            },
            token,
            newly_claimed,
        )

        self._verify_assignment(fulfilled)
        return FulfillmentResult(order=fulfilled, credentials=assigned)

    def retry_fulfillment(self, order_id: str) -> FulfillmentResult:
        """관리자 재시도: fulfillment_failed -> fulfilled."""
        order = self.get(order_id)
        if order.status != OrderStatus.FULFILLMENT_FAILED:
            raise InvalidTransitionError(
                order_id, order.status.value, OrderStatus.FULFILLED.value
            )
        return self.fulfill(order_id)

    def mark_failed(self, order_id: str, reason: str | None = None) -> Order:
        """pending -> failed (결제 실패)."""
        order = self.get(order_id)
        return self._transition(
            order,
            OrderStatus.FAILED,
            {"failure_reason": reason or "payment_failed"},
        )

    def refund(self, order_id: str) -> Order:
        """-> refunded. 주문에 묶인 자격증명을 모두 풀어 풀에 되돌린다."""
        order = self.get(order_id)
        return self._close_and_release(order, OrderStatus.REFUNDED)

    def expire(self, order_id: str) -> Order:
        order = self.get(order_id)
        return self._close_and_release(order, OrderStatus.EXPIRED)

    def expire_stale_pending(
        self, now: datetime | None = None, limit: int = DEFAULT_SWEEP_BATCH_SIZE
    ) -> list[str]:
        """TTL 이 지난 pending 주문을 expired 로 보낸다. 만료된 주문 ID 목록을 반환한다."""
        now = now or self._clock()
        cutoff = now - timedelta(minutes=self._policy.pending_order_ttl_minutes)

        expired: list[str] = []
        for order in self._order_repo.list_stale_pending(cutoff, limit):
            try:
                closed = self._close_and_release(order, OrderStatus.EXPIRED)
            except InvalidTransitionError:
                # 스윕 사이에 결제 확정된 주문
                logger.info(
                    "skipping stale order that changed state", extra={"order_id": order.id}
                )
                continue
            if closed.id is not None:
                expired.append(closed.id)
        return expired

    def expire_lapsed_packages(
        self, now: datetime | None = None, limit: int = DEFAULT_SWEEP_BATCH_SIZE
    ) -> list[str]:
        """expires_at(구매 월 말일)이 지난 paid/fulfilled 주문을 expired 로 닫는다.

        자격증명은 풀로 돌아가 다음 구매에 다시 할당된다.
        """
        now = now or self._clock()

        expired: list[str] = []
        for order in self._order_repo.list_lapsed_purchases(now, limit):
            try:
                closed = self._close_and_release(order, OrderStatus.EXPIRED)
            except (InvalidTransitionError, FulfillmentInProgressError):
                logger.info(
                    "skipping lapsed order that changed state",
                    extra={"order_id": order.id},
                )
                continue
            except ConsistencyViolationError:
                # 이미 ERROR 로 남았다. 나머지 주문은 계속 처리한다.
                continue
            if closed.id is not None:
                expired.append(closed.id)
        return expired

    def unassign_credential(self, credential_id: str) -> Credential:
        """관리자 할당 해제.

        자격증명을 풀에 돌려주고, 묶여 있던 주문의 credential_ids 에서도 빼면서
        needs_reconciliation 을 표시한다. 주문 쪽 처리(교체, 환불)는 운영자가 정한다.
        """
        credential = self._pool.get(credential_id)
        order_id = credential.assigned_to_order_id
        if not credential.is_assigned or order_id is None:
            return self._pool.release(credential_id)

        released = self._pool.release(credential_id, expected_order_id=order_id)
        note = f"credential {credential_id} unassigned by admin"
        detached = self._order_repo.detach_credential(order_id, credential_id, note)
        logger.warning(
            "admin unassigned credential from order",
            extra={
                "order_id": order_id,
                "credential_id": credential_id,
                "order_found": detached is not None,
            },
        )
        return released

    # ------------------------------------------------------------------ 내부

    def _transition(
        self,
        order: Order,
        target: OrderStatus,
        updates: dict[str, Any],
        *,
        fulfillment_token: str | None = None,
        lease_expired_before: datetime | None = None,
    ) -> Order:
        assert order.id is not None
        if not can_transition(order.status, target):
            raise InvalidTransitionError(order.id, order.status.value, target.value)

        updated = self._order_repo.update_if_status(
            order.id,
            [order.status],
            {**updates, "status": target},
            fulfillment_token=fulfillment_token,
            lease_expired_before=lease_expired_before,
        )
        if updated is None:
            raise self._lost_race(order, target)

        logger.info(
            "order %s -> %s",
            order.status.value,
            target.value,
            extra={"order_id": order.id, "user_id": order.user_id},
        )
        self._events.status_changed(updated, order.status)
        return updated

    def _apply_coupon_code(self, order: Order, coupon_code: str | None) -> Order:
        """결제 확정 시 함께 넘어온 쿠폰 코드를 반영한다."""
        if not coupon_code or not coupon_code.strip():
            return order
        assert order.id is not None

        if order.coupon_id is not None:
            if normalize_coupon_code(order.coupon_code or "") != normalize_coupon_code(
                coupon_code
            ):
                raise InvalidOrderError(
                    f"order {order.id} already carries coupon {order.coupon_code}"
                )
            return order

        validation = self._coupon_policy.validate(
            coupon_code,
            order.ship_id,
            order.subtotal_usd,
            order.plan_ids,
            order.user_id,
            exclude_order_id=order.id,
        )
        if not validation.valid or validation.coupon is None:
            assert validation.reason_code is not None
            raise CouponRejectedError(validation.reason_code)

        coupon_discount = validation.discount_amount or ZERO
        composed = compose_total(
            order.subtotal_usd, coupon_discount, order.loyalty_percent
        )
        updated = self._order_repo.update_if_status(
            order.id,
            [OrderStatus.PENDING],
            {
                "coupon_id": validation.coupon.id,
                "coupon_code": validation.coupon.code,
                "coupon_discount_usd": coupon_discount,
                "loyalty_discount_usd": composed.loyalty_amount,
                "discount_usd": order.subtotal_usd - composed.total,
                "total_usd": composed.total,
            },
        )
        if updated is None:
            current = self._order_repo.find_by_id(order.id)
            if current is None:
                raise OrderNotFoundError(order.id)
            raise InvalidTransitionError(
                order.id, current.status.value, OrderStatus.PAID.value
            )
        return updated

    def _consume_coupon(self, order: Order) -> Order:
        assert order.id is not None and order.coupon_id is not None

        note: str | None = None
        try:
            claim = self._coupon_repo.claim_usage_slot(order.coupon_id)
            if claim.over_limit:
                note = (
                    f"coupon usage limit exceeded ({claim.used_count}/{claim.max_uses})"
                )
        except RetryExhaustedError:
            coupon = self._coupon_repo.find_by_id(order.coupon_id)
            claim = UsageClaim(
                coupon_id=order.coupon_id,
                used_count=coupon.used_count if coupon else 0,
                max_uses=coupon.max_uses if coupon else None,
                over_limit=True,
            )
            note = "coupon usage slot could not be claimed under contention"

        now = self._clock()
        self._coupon_repo.record_usage(
            CouponUsage(
                coupon_id=order.coupon_id,
                user_id=order.user_id,
                order_id=order.id,
                discount_amount=order.coupon_discount_usd,
                over_limit=claim.over_limit,
                created_at=now,
                updated_at=now,
            )
        )

        if note is None:
            return order

        logger.warning(
            "order needs coupon reconciliation: %s",
            note,
            extra={"order_id": order.id, "coupon_id": order.coupon_id},
        )
        flagged = self._order_repo.update_if_status(
            order.id,
            list(OrderStatus),
            {"needs_reconciliation": True, "reconciliation_note": note},
        )
        self._events.reconciliation_required(flagged or order, claim)
        return flagged or order

    def _roll_back_fulfillment(
        self,
        order: Order,
        missing_plan_id: str,
        token: str,
        newly_claimed: list[Credential],
    ) -> FulfillmentResult:
        assert order.id is not None
        logger.warning(
            "out of stock during fulfillment; rolling back",
            extra={"order_id": order.id, "plan_id": missing_plan_id},
        )

        # 재시도 실패면 상태는 fulfillment_failed 그대로 두고 사유만 갱신한다.
        failed = self._commit_under_lease(
            order,
            OrderStatus.FULFILLMENT_FAILED,
            {
                "failure_reason": f"{OUT_OF_STOCK_PREFIX}{missing_plan_id}",
                "credential_ids": [],
            },
            token,
            newly_claimed,
        )
        # 선점을 쥔 채로 해제해야 다음 재시도가 해제 도중에 끼어들지 못한다.
        self._pool.release_all_for_order(order.id)
        self._verify_released(failed)
        failed = self._drop_fulfillment_lease(order.id, token) or failed
        return FulfillmentResult(order=failed, missing_plan_id=missing_plan_id)

    def _close_and_release(self, order: Order, target: OrderStatus) -> Order:
        """refund/expire 공통: 전이 후 주문에 묶인 자격증명을 모두 해제한다.

        할당이 진행 중인(선점이 살아 있는) 주문은 닫지 않는다.
        """
        if not can_transition(order.status, target):
            assert order.id is not None
            raise InvalidTransitionError(order.id, order.status.value, target.value)
        if order.status == OrderStatus.FULFILLED:
            self._verify_assignment(order, expect_all_units=False)

        closed = self._transition(
            order, target, {}, lease_expired_before=self._lease_cutoff()
        )
        assert closed.id is not None
        self._pool.release_all_for_order(closed.id)
        self._verify_released(closed)
        return closed

    def _lease_cutoff(self, now: datetime | None = None) -> datetime:
        now = now or self._clock()
        return now - timedelta(seconds=self._policy.fulfillment_lease_seconds)

    def _acquire_fulfillment_lease(self, order: Order, token: str) -> Order:
        assert order.id is not None
        now = self._clock()
        leased = self._order_repo.update_if_status(
            order.id,
            [order.status],
            {"fulfillment_token": token, "fulfillment_started_at": now},
            lease_expired_before=self._lease_cutoff(now),
        )
        if leased is None:
            raise self._lost_race(order, OrderStatus.FULFILLED)
        if order.fulfillment_token is not None:
            logger.warning(
                "taking over expired fulfillment lease",
                extra={"order_id": order.id, "started_at": order.fulfillment_started_at},
            )
        return leased

    def _drop_fulfillment_lease(self, order_id: str, token: str) -> Order | None:
        return self._order_repo.update_if_status(
            order_id, list(OrderStatus), _LEASE_CLEARED, fulfillment_token=token
        )

    def _commit_under_lease(
        self,
        order: Order,
        target: OrderStatus,
        updates: dict[str, Any],
        token: str,
        newly_claimed: list[Credential],
    ) -> Order:
        """선점 토큰이 그대로일 때만 할당 결과를 커밋한다.

        커밋에 실패하면 이번 호출이 새로 잡은 자격증명 중 주문이 갖지 않은 것을 돌려준다.
        """
        assert order.id is not None
        try:
            if order.status == target:
                updated = self._order_repo.update_if_status(
                    order.id, [target], updates, fulfillment_token=token
                )
                if updated is None:
                    raise self._lost_race(order, target)
                return updated
            return self._transition(order, target, updates, fulfillment_token=token)
        except (InvalidTransitionError, FulfillmentInProgressError):
            self._release_unowned(order.id, newly_claimed)
            raise

    def _release_unowned(self, order_id: str, claimed: list[Credential]) -> None:
        current = self._order_repo.find_by_id(order_id)
        if (
            current is not None
            and current.status in (OrderStatus.PAID, OrderStatus.FULFILLMENT_FAILED)
            and current.fulfillment_token is not None
        ):
            # 다른 요청이 할당 중이다. 그 요청이 재사용하거나 롤백하면서 푼다.
            logger.warning(
                "leaving claimed credentials to the current fulfillment lease holder",
                extra={"order_id": order_id, "count": len(claimed)},
            )
            return

        owned = set(current.credential_ids) if current is not None else set()
        for credential in claimed:
            if credential.id is None or credential.id in owned:
                continue
            self._pool.release(credential.id, expected_order_id=order_id)

    def _lost_race(self, order: Order, target: OrderStatus) -> FulfillmentError:
        """조건부 업데이트가 매칭되지 않았을 때 알맞은 예외를 만든다."""
        assert order.id is not None
        current = self._order_repo.find_by_id(order.id)
        if current is None:
            return OrderNotFoundError(order.id)
        if current.status == order.status:
            # 상태는 그대로인데 선점 조건이 맞지 않았다.
            return FulfillmentInProgressError(order.id)
        return InvalidTransitionError(order.id, current.status.value, target.value)

    def _verify_assignment(self, order: Order, *, expect_all_units: bool = True) -> None:
        """주문이 가진 모든 자격증명이 풀에서 이 주문에 묶여 있는지 확인한다.

        expect_all_units 이면 개수가 주문 수량과 같은지도 본다. 관리자가 일부를 해제한
        주문을 닫을 때는 남은 것만 확인한다.
        """
        assert order.id is not None
        credentials = self._pool.find_by_ids(order.credential_ids)
        found = {c.id: c for c in credentials}

        problems: list[str] = []
        for credential_id in order.credential_ids:
            credential = found.get(credential_id)
            if credential is None:
                problems.append(f"{credential_id} missing from pool")
            elif not credential.is_bound_to(order.id):
                problems.append(
                    f"{credential_id} bound to {credential.assigned_to_order_id}"
                )
        if len(set(order.credential_ids)) != len(order.credential_ids):
            problems.append("duplicate credential ids on order")
        if expect_all_units and len(order.credential_ids) != order.total_units:
            problems.append(
                f"expected {order.total_units} credentials, order lists {len(order.credential_ids)}"
            )

        if problems:
            detail = "; ".join(problems)
            logger.error(
                "order/pool consistency violation: %s", detail, extra={"order_id": order.id}
            )
            raise ConsistencyViolationError(order.id, detail)

    def _verify_released(self, order: Order) -> None:
        assert order.id is not None
        leftover = self._pool.list_for_order(order.id)
        if leftover:
            detail = f"{len(leftover)} credentials still bound after release"
            logger.error(
                "order/pool consistency violation: %s", detail, extra={"order_id": order.id}
            )
            raise ConsistencyViolationError(order.id, detail)

    def _ordered_credentials(self, order: Order) -> list[Credential]:
        """주문이 나열한 순서대로, 지금도 이 주문에 묶여 있는 자격증명만 돌려준다."""
        assert order.id is not None
        found = {c.id: c for c in self._pool.find_by_ids(order.credential_ids)}
        credentials: list[Credential] = []
        for credential_id in order.credential_ids:
            credential = found.get(credential_id)
            if credential is None or not credential.is_bound_to(order.id):
                logger.warning(
                    "order lists a credential that is no longer bound to it",
                    extra={"order_id": order.id, "credential_id": credential_id},
                )
                continue
            credentials.append(credential)
        return credentials


def get_order_service(
    order_repo: OrderRepositoryInterface = Depends(get_order_repository),
    coupon_repo: CouponRepositoryInterface = Depends(get_coupon_repository),
    pool: CredentialPoolService = Depends(get_credential_pool_service),
    coupon_policy: CouponPolicyService = Depends(get_coupon_policy_service),
    events: OrderEventPublisher = Depends(get_order_event_publisher),
    config: AppConfig = Depends(get_app_config),
) -> OrderService:
    """FastAPI DI용 OrderService 팩토리."""

    return OrderService(
        order_repo=order_repo,
        coupon_repo=coupon_repo,
        pool=pool,
        coupon_policy=coupon_policy,
        events=events,
        policy=config.order_policy,
    )


def build_order_service(db: Database, config: AppConfig) -> OrderService:
    """DI 밖(백그라운드 스레드)에서 쓰는 OrderService 조립."""

    order_repo = OrderRepository(db)
    coupon_repo = CouponRepository(
        db, usage_max_retries=config.retry.coupon_usage_max_retries
    )
    pool = CredentialPoolService(
        credential_repo=CredentialRepository(
            db, claim_max_retries=config.retry.claim_max_retries
        ),
        plan_repo=PlanRepository(db),
    )
    return OrderService(
        order_repo=order_repo,
        coupon_repo=coupon_repo,
        pool=pool,
        coupon_policy=CouponPolicyService(coupon_repo=coupon_repo, order_repo=order_repo),
        events=get_order_event_publisher(),
        policy=config.order_policy,
    )
