from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from fulfillment_service.app.exceptions import (
    ConsistencyViolationError,
    CouponRejectedError,
    FulfillmentInProgressError,
    InvalidOrderError,
    InvalidTransitionError,
    OrderNotFoundError,
)
from fulfillment_service.app.models.coupon import CouponReason
from fulfillment_service.app.models.order import OrderStatus
from fulfillment_service.tests.fakes import (
    BASE_TIME,
    EngineFixture,
    build_coupon,
    build_engine,
    build_pending_order,
    build_plan,
)


def _stock(engine: EngineFixture, plan_id: str, count: int) -> None:
    for i in range(count):
        engine.credential_repo.add(plan_id, f"{plan_id}-user{i}")


def _seed_order(engine: EngineFixture, quantities: list[tuple[int, int]], **kwargs):
    """(재고 수, 주문 수량) 쌍마다 플랜을 만들고 pending 주문을 저장한다."""
    plans = []
    for index, (stock, quantity) in enumerate(quantities):
        plan = engine.plan_repo.insert(build_plan(name=f"plan-{index}"))
        _stock(engine, plan.id, stock)
        plans.append((plan, quantity))
    order = engine.order_repo.insert(build_pending_order(plans, **kwargs))
    return order, [plan for plan, _ in plans]


def test_complete_fulfills_every_unit() -> None:
    engine = build_engine()
    order, (plan_a, plan_b) = _seed_order(engine, [(3, 2), (1, 1)])

    result = engine.order_service.complete(order.id, "pay-1")

    assert result.fulfilled
    assert result.order.status == OrderStatus.FULFILLED
    assert len(result.credentials) == 3
    assert len(set(result.order.credential_ids)) == 3
    assert all(c.is_bound_to(order.id) for c in result.credentials)
    assert engine.pool.stats(plan_a.id).assigned == 2
    assert engine.pool.stats(plan_b.id).available == 0
    assert [change[2] for change in engine.events.status_changes] == [
        OrderStatus.PAID,
        OrderStatus.FULFILLED,
    ]


def test_paid_order_gets_end_of_month_expiry_in_istanbul() -> None:
    engine = build_engine()
    order, _ = _seed_order(engine, [(1, 1)])

    paid = engine.order_service.mark_paid(order.id, "pay-1")

    # 2024-03-31 23:59:59.999999 +03:00
    assert paid.expires_at == datetime(2024, 3, 31, 20, 59, 59, 999999, tzinfo=timezone.utc)
    assert paid.paid_at == BASE_TIME
    assert paid.payment_reference == "pay-1"


def test_out_of_stock_rolls_back_all_claims() -> None:
    engine = build_engine()
    # 플랜 A 재고 1, 플랜 B 재고 0
    order, (plan_a, plan_b) = _seed_order(engine, [(1, 1), (0, 1)])

    result = engine.order_service.complete(order.id, "pay-1")

    assert not result.fulfilled
    assert result.order.status == OrderStatus.FULFILLMENT_FAILED
    assert result.order.failure_reason == f"out_of_stock:{plan_b.id}"
    assert result.missing_plan_id == plan_b.id
    assert result.order.credential_ids == []

    stats_a = engine.pool.stats(plan_a.id)
    assert (stats_a.available, stats_a.assigned) == (1, 0)
    assert engine.pool.list_for_order(order.id) == []


def test_admin_retry_after_restock() -> None:
    engine = build_engine()
    order, (_, plan_b) = _seed_order(engine, [(1, 1), (0, 1)])
    engine.order_service.complete(order.id, "pay-1")

    _stock(engine, plan_b.id, 1)
    result = engine.order_service.retry_fulfillment(order.id)

    assert result.fulfilled
    assert result.order.failure_reason is None
    assert len(result.order.credential_ids) == 2


def test_retry_that_fails_again_stays_fulfillment_failed() -> None:
    engine = build_engine()
    order, _ = _seed_order(engine, [(0, 1)])
    engine.order_service.complete(order.id, "pay-1")

    result = engine.order_service.retry_fulfillment(order.id)

    assert result.order.status == OrderStatus.FULFILLMENT_FAILED


def test_complete_is_reentrant() -> None:
    engine = build_engine()
    order, _ = _seed_order(engine, [(2, 2)])

    first = engine.order_service.complete(order.id, "pay-1")
    second = engine.order_service.complete(order.id, "pay-1")

    assert second.order.credential_ids == first.order.credential_ids
    assert [c.id for c in second.credentials] == first.order.credential_ids

    with pytest.raises(InvalidTransitionError):
        engine.order_service.complete(order.id, "pay-other")


def test_complete_resumes_paid_order() -> None:
    engine = build_engine()
    order, _ = _seed_order(engine, [(1, 1)])
    engine.order_service.mark_paid(order.id, "pay-1")

    result = engine.order_service.complete(order.id, "pay-1")

    assert result.fulfilled

    other, _ = _seed_order(engine, [(1, 1)])
    engine.order_service.mark_paid(other.id, "pay-2")
    with pytest.raises(InvalidOrderError):
        engine.order_service.complete(other.id, "pay-x")


def test_fulfill_reuses_credentials_left_by_crashed_attempt() -> None:
    engine = build_engine()
    order, (plan,) = _seed_order(engine, [(3, 2)])
    engine.order_service.mark_paid(order.id, "pay-1")
    leftover = engine.pool.claim_one(plan.id, order.id, order.user_id)

    result = engine.order_service.fulfill(order.id)

    assert leftover.id in result.order.credential_ids
    assert engine.pool.stats(plan.id).assigned == 2


def test_concurrent_completion_of_many_orders_never_oversells() -> None:
    engine = build_engine()
    plan = engine.plan_repo.insert(build_plan())
    _stock(engine, plan.id, 10)
    orders = [
        engine.order_repo.insert(build_pending_order([(plan, 1)], user_id=f"u{i}"))
        for i in range(25)
    ]

    with ThreadPoolExecutor(max_workers=12) as executor:
        results = list(
            executor.map(
                lambda o: engine.order_service.complete(o.id, f"pay-{o.id}"), orders
            )
        )

    fulfilled = [r for r in results if r.fulfilled]
    assert len(fulfilled) == 10
    all_ids = [cid for r in fulfilled for cid in r.order.credential_ids]
    assert len(set(all_ids)) == 10
    stats = engine.pool.stats(plan.id)
    assert (stats.available, stats.assigned, stats.total) == (0, 10, 10)


@pytest.mark.parametrize(
    ("setup", "action"),
    [
        ("fulfilled", "mark_paid"),
        ("failed", "mark_paid"),
        ("refunded", "refund"),
        ("pending", "retry_fulfillment"),
        ("fulfilled", "mark_failed"),
    ],
)
def test_invalid_transitions_are_rejected(setup: str, action: str) -> None:
    engine = build_engine()
    order, _ = _seed_order(engine, [(1, 1)])
    service = engine.order_service
    if setup in ("fulfilled", "refunded"):
        service.complete(order.id, "pay-1")
    if setup == "refunded":
        service.refund(order.id)
    if setup == "failed":
        service.mark_failed(order.id)

    with pytest.raises(InvalidTransitionError):
        if action == "mark_paid":
            service.mark_paid(order.id, "pay-2")
        else:
            getattr(service, action)(order.id)


def test_unknown_order() -> None:
    engine = build_engine()
    with pytest.raises(OrderNotFoundError):
        engine.order_service.complete("missing", "pay-1")


def test_refund_releases_every_credential() -> None:
    engine = build_engine()
    order, (plan,) = _seed_order(engine, [(2, 2)])
    engine.order_service.complete(order.id, "pay-1")

    refunded = engine.order_service.refund(order.id)

    assert refunded.status == OrderStatus.REFUNDED
    assert engine.pool.list_for_order(order.id) == []
    assert engine.pool.stats(plan.id).available == 2


def test_refund_blocked_on_consistency_violation() -> None:
    engine = build_engine()
    order, _ = _seed_order(engine, [(1, 1)])
    result = engine.order_service.complete(order.id, "pay-1")
    # 관리자가 주문 몰래 자격증명을 해제한 상황
    engine.pool.release(result.order.credential_ids[0])

    with pytest.raises(ConsistencyViolationError):
        engine.order_service.refund(order.id)

    assert engine.order_service.get(order.id).status == OrderStatus.FULFILLED


def test_mark_failed_records_reason() -> None:
    engine = build_engine()
    order, _ = _seed_order(engine, [(1, 1)])

    failed = engine.order_service.mark_failed(order.id, "card_declined")

    assert failed.status == OrderStatus.FAILED
    assert failed.failure_reason == "card_declined"


def test_coupon_usage_is_counted_once_at_payment() -> None:
    engine = build_engine()
    coupon = engine.coupon_repo.insert(build_coupon("SAVE10", max_uses=10))
    order, _ = _seed_order(engine, [(1, 1)], coupon=coupon, coupon_discount="5")

    engine.order_service.complete(order.id, "pay-1")
    engine.order_service.complete(order.id, "pay-1")

    assert engine.coupon_repo.find_by_id(coupon.id).used_count == 1
    usage = engine.coupon_repo.usages[order.id]
    assert usage.over_limit is False
    assert usage.discount_amount == Decimal("5")


def test_exhausted_ceiling_flags_reconciliation_but_still_pays() -> None:
    engine = build_engine()
    coupon = engine.coupon_repo.insert(
        build_coupon("LAST", max_uses=1, used_count=1)
    )
    order, _ = _seed_order(engine, [(1, 1)], coupon=coupon, coupon_discount="5")

    result = engine.order_service.complete(order.id, "pay-1")

    assert result.fulfilled
    assert result.order.needs_reconciliation is True
    assert engine.coupon_repo.find_by_id(coupon.id).used_count == 1
    assert engine.coupon_repo.usages[order.id].over_limit is True
    assert len(engine.events.reconciliations) == 1


def test_usage_contention_flags_reconciliation() -> None:
    engine = build_engine()
    coupon = engine.coupon_repo.insert(build_coupon("BUSY", max_uses=100))
    engine.coupon_repo.exhaust_retries = True
    order, _ = _seed_order(engine, [(1, 1)], coupon=coupon, coupon_discount="5")

    paid = engine.order_service.mark_paid(order.id, "pay-1")

    assert paid.status == OrderStatus.PAID
    assert paid.needs_reconciliation is True


def test_coupon_supplied_at_completion_recomputes_total() -> None:
    engine = build_engine()
    engine.coupon_repo.insert(build_coupon("SAVE10"))
    order, _ = _seed_order(engine, [(1, 2)])  # 2 x 50.00

    paid = engine.order_service.mark_paid(order.id, "pay-1", coupon_code="save10")

    assert paid.coupon_code == "SAVE10"
    assert paid.coupon_discount_usd == Decimal("10")
    assert paid.total_usd == Decimal("90.00")
    assert paid.discount_usd == Decimal("10.00")


def test_invalid_coupon_at_completion_keeps_order_pending() -> None:
    engine = build_engine()
    order, _ = _seed_order(engine, [(1, 1)])

    with pytest.raises(CouponRejectedError) as exc_info:
        engine.order_service.complete(order.id, "pay-1", coupon_code="NOPE")

    assert exc_info.value.reason == CouponReason.NOT_FOUND
    assert engine.order_service.get(order.id).status == OrderStatus.PENDING


def test_sweep_expires_only_stale_pending_orders() -> None:
    engine = build_engine()
    stale, _ = _seed_order(engine, [(1, 1)], created_at=BASE_TIME - timedelta(minutes=30))
    fresh, _ = _seed_order(engine, [(1, 1)], created_at=BASE_TIME - timedelta(minutes=5))
    paid, _ = _seed_order(engine, [(1, 1)], created_at=BASE_TIME - timedelta(hours=2))
    engine.order_service.mark_paid(paid.id, "pay-1")

    expired = engine.order_service.expire_stale_pending()

    assert expired == [stale.id]
    assert engine.order_service.get(stale.id).status == OrderStatus.EXPIRED
    assert engine.order_service.get(fresh.id).status == OrderStatus.PENDING
    assert engine.order_service.get(paid.id).status == OrderStatus.PAID


def _claim_hook(monkeypatch: pytest.MonkeyPatch, engine: EngineFixture, on_first_claim):
    """첫 번째 claim_one 직후에 on_first_claim 을 한 번 실행한다."""
    original = engine.credential_repo.claim_one
    fired = []

    def hooked(plan_id: str, order_id: str, user_id: str):
        claimed = original(plan_id, order_id, user_id)
        if not fired:
            fired.append(True)
            on_first_claim()
        return claimed

    monkeypatch.setattr(engine.credential_repo, "claim_one", hooked)


def _assert_order_owns_its_credentials(engine: EngineFixture, order_id: str) -> None:
    order = engine.order_service.get(order_id)
    listed = engine.pool.find_by_ids(order.credential_ids)
    assert len(listed) == len(order.credential_ids) == order.total_units
    assert all(c.is_bound_to(order_id) for c in listed)


def test_duplicate_completion_while_fulfilling_is_turned_away(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    engine = build_engine()
    order, (plan,) = _seed_order(engine, [(3, 2)])
    duplicate_errors: list[Exception] = []

    def duplicate_webhook() -> None:
        try:
            engine.order_service.complete(order.id, "pay-1")
        except FulfillmentInProgressError as exc:
            duplicate_errors.append(exc)

    _claim_hook(monkeypatch, engine, duplicate_webhook)

    result = engine.order_service.complete(order.id, "pay-1")

    assert len(duplicate_errors) == 1
    assert result.fulfilled
    assert result.order.fulfillment_token is None
    _assert_order_owns_its_credentials(engine, order.id)
    stats = engine.pool.stats(plan.id)
    assert (stats.available, stats.assigned) == (1, 2)

    again = engine.order_service.complete(order.id, "pay-1")
    assert again.order.credential_ids == result.order.credential_ids


def test_caller_that_lost_an_expired_lease_keeps_the_winners_credentials(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    engine = build_engine()
    order, (plan,) = _seed_order(engine, [(4, 2)])
    engine.order_service.mark_paid(order.id, "pay-1")
    winner = []

    def stall_then_take_over() -> None:
        # 첫 요청이 선점 유효 시간을 넘겨 멈춘 상황
        stalled = engine.order_repo.orders[order.id]
        engine.order_repo.orders[order.id] = stalled.model_copy(
            update={"fulfillment_started_at": BASE_TIME - timedelta(minutes=10)}
        )
        winner.append(engine.order_service.complete(order.id, "pay-1"))

    _claim_hook(monkeypatch, engine, stall_then_take_over)

    with pytest.raises(InvalidTransitionError):
        engine.order_service.complete(order.id, "pay-1")

    assert winner[0].fulfilled
    assert engine.order_service.get(order.id).status == OrderStatus.FULFILLED
    _assert_order_owns_its_credentials(engine, order.id)
    stats = engine.pool.stats(plan.id)
    assert (stats.available, stats.assigned) == (2, 2)


def test_refund_waits_for_running_fulfillment() -> None:
    engine = build_engine()
    order, _ = _seed_order(engine, [(1, 1)])
    paid = engine.order_service.mark_paid(order.id, "pay-1")
    engine.order_repo.orders[order.id] = paid.model_copy(
        update={"fulfillment_token": "other", "fulfillment_started_at": BASE_TIME}
    )

    with pytest.raises(FulfillmentInProgressError):
        engine.order_service.refund(order.id)
    with pytest.raises(FulfillmentInProgressError):
        engine.order_service.fulfill(order.id)

    assert engine.order_service.get(order.id).status == OrderStatus.PAID


def test_admin_unassign_detaches_credential_from_order() -> None:
    engine = build_engine()
    plan = engine.plan_repo.insert(build_plan())
    _stock(engine, plan.id, 2)
    first = engine.order_repo.insert(build_pending_order([(plan, 1)]))
    second = engine.order_repo.insert(build_pending_order([(plan, 1)], user_id="u2"))
    credential_id = engine.order_service.complete(first.id, "pay-1").order.credential_ids[0]

    engine.order_service.unassign_credential(credential_id)
    # 가장 오래된 자격증명이 다시 풀에 있으므로 두 번째 주문이 그것을 받는다.
    reassigned = engine.order_service.complete(second.id, "pay-2")

    assert reassigned.order.credential_ids == [credential_id]
    order, credentials = engine.order_service.get_with_credentials(first.id)
    assert credentials == []
    assert order.credential_ids == []
    assert order.needs_reconciliation is True

    refunded = engine.order_service.refund(first.id)

    assert refunded.status == OrderStatus.REFUNDED
    assert engine.pool.get(credential_id).is_bound_to(second.id)


def test_order_never_shows_credentials_bound_elsewhere() -> None:
    engine = build_engine()
    plan = engine.plan_repo.insert(build_plan())
    _stock(engine, plan.id, 1)
    first = engine.order_repo.insert(build_pending_order([(plan, 1)]))
    second = engine.order_repo.insert(build_pending_order([(plan, 1)], user_id="u2"))
    credential_id = engine.order_service.complete(first.id, "pay-1").order.credential_ids[0]
    engine.pool.release(credential_id)
    engine.order_service.complete(second.id, "pay-2")

    _, credentials = engine.order_service.get_with_credentials(first.id)
    replay = engine.order_service.complete(first.id, "pay-1")

    assert credentials == []
    assert replay.credentials == []


def test_lapsed_packages_expire_and_return_credentials() -> None:
    engine = build_engine()
    fulfilled, (plan,) = _seed_order(engine, [(2, 2)])
    paid_only, _ = _seed_order(engine, [(1, 1)])
    pending, _ = _seed_order(engine, [(1, 1)])
    engine.order_service.complete(fulfilled.id, "pay-1")
    engine.order_service.mark_paid(paid_only.id, "pay-2")

    assert engine.order_service.expire_lapsed_packages() == []

    april = datetime(2024, 4, 1, tzinfo=timezone.utc)
    expired = engine.order_service.expire_lapsed_packages(now=april)

    assert sorted(expired) == sorted([fulfilled.id, paid_only.id])
    assert engine.order_service.get(fulfilled.id).status == OrderStatus.EXPIRED
    assert engine.order_service.get(pending.id).status == OrderStatus.PENDING
    assert engine.pool.stats(plan.id).available == 2
    assert (fulfilled.id, OrderStatus.FULFILLED, OrderStatus.EXPIRED) in (
        engine.events.status_changes
    )


def test_single_use_coupon_stays_used_after_package_lapses() -> None:
    engine = build_engine()
    coupon = engine.coupon_repo.insert(build_coupon("ONCE", single_use_only=True))
    order, (plan,) = _seed_order(engine, [(1, 1)], coupon=coupon, coupon_discount="5")
    engine.order_service.complete(order.id, "pay-1")
    engine.order_service.expire_lapsed_packages(now=datetime(2024, 4, 1, tzinfo=timezone.utc))

    validation = engine.coupon_policy.validate(
        "ONCE", "ship-1", Decimal("50"), [plan.id], "user-1"
    )

    assert validation.reason_code == CouponReason.SINGLE_USE_ALREADY_USED
