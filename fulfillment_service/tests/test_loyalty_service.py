from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from fulfillment_service.app.models.order import OrderStatus
from fulfillment_service.app.services.loyalty_service import (
    LoyaltyService,
    next_tier_for,
    tier_for,
)
from fulfillment_service.tests.fakes import (
    FakeOrderRepository,
    build_pending_order,
    build_plan,
)


NOW = datetime(2024, 3, 10, 9, 0, tzinfo=timezone.utc)


def _purchase(
    repo: FakeOrderRepository,
    gb: int,
    *,
    paid_at: datetime = NOW,
    status: OrderStatus = OrderStatus.FULFILLED,
    user_id: str = "user-1",
) -> None:
    plan = build_plan(plan_id=f"plan-{gb}", data_limit_gb=gb)
    order = repo.insert(build_pending_order([(plan, 1)], user_id=user_id))
    repo.update_if_status(
        order.id, [OrderStatus.PENDING], {"status": status, "paid_at": paid_at}
    )


@pytest.mark.parametrize(
    ("gb", "expected"),
    [(0, "0"), (24, "0"), (25, "5"), (49, "5"), (50, "10"), (99, "10"), (100, "15"), (500, "15")],
)
def test_tier_thresholds(gb: int, expected: str) -> None:
    assert tier_for(gb).discount_percent == Decimal(expected)


def test_next_tier() -> None:
    assert next_tier_for(30).needed_gb == 20
    assert next_tier_for(30).next_discount == Decimal("10")
    assert next_tier_for(0).needed_gb == 25
    assert next_tier_for(100) is None


def test_status_counts_only_this_month_purchases() -> None:
    repo = FakeOrderRepository()
    _purchase(repo, 40)
    _purchase(repo, 20, status=OrderStatus.PAID)
    _purchase(repo, 100, status=OrderStatus.REFUNDED)
    _purchase(repo, 100, paid_at=NOW - timedelta(days=15))  # 지난달
    _purchase(repo, 100, user_id="someone-else")
    service = LoyaltyService(repo, "Europe/Istanbul", clock=lambda: NOW)

    status = service.status("user-1")

    assert status.current_gb == 60
    assert status.current_discount == Decimal("10")
    assert status.next_tier.needed_gb == 40
    assert status.days_remaining == 21
    assert service.discount_percent("user-1") == Decimal("10")


def test_month_boundary_uses_istanbul_time() -> None:
    repo = FakeOrderRepository()
    # UTC 2월 29일 22:00 == 이스탄불 3월 1일 01:00
    _purchase(repo, 30, paid_at=datetime(2024, 2, 29, 22, 0, tzinfo=timezone.utc))
    service = LoyaltyService(repo, "Europe/Istanbul", clock=lambda: NOW)

    assert service.monthly_purchased_gb("user-1") == 30
