from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

import pytest

from fulfillment_service.app.services.discount_composer import compose_total


D = Decimal


@pytest.mark.parametrize(
    ("subtotal", "coupon", "loyalty", "expected_total"),
    [
        (D("100"), D("10"), D("5"), D("85.00")),
        (D("30"), D("30"), D("0"), D("0.00")),
        (D("100"), D("0"), D("15"), D("85.00")),
        (D("100"), D("95"), D("10"), D("0.00")),
        (D("19.99"), D("0"), D("5"), D("18.99")),
        (D("0"), D("0"), D("15"), D("0.00")),
    ],
)
def test_compose_total_examples(subtotal, coupon, loyalty, expected_total) -> None:
    assert compose_total(subtotal, coupon, loyalty).total == expected_total


def test_discounts_are_additive_off_the_original_subtotal() -> None:
    result = compose_total(D("100"), D("10"), D("5"))

    # 복리라면 (100 - 10) * 5% = 4.5 가 된다.
    assert result.loyalty_amount == D("5")
    assert result.total_discount == D("15")


def test_only_final_total_is_rounded() -> None:
    result = compose_total(D("33.33"), D("0"), D("5"))

    assert result.loyalty_amount == D("1.6665")
    assert result.total == D("31.66")


def test_half_up_rounding_at_total() -> None:
    # 10.005 -> 10.01 (banker's rounding 이면 10.00)
    result = compose_total(D("10.005"), D("0"), D("0"))
    assert result.total == D("10.01")


@pytest.mark.parametrize("subtotal", [D("0.01"), D("9.99"), D("50"), D("123.45"), D("1000")])
@pytest.mark.parametrize("coupon_ratio", [D("0"), D("0.1"), D("0.5"), D("1")])
@pytest.mark.parametrize("loyalty", [D("0"), D("5"), D("10"), D("15")])
def test_total_is_bounded_and_never_negative(subtotal, coupon_ratio, loyalty) -> None:
    coupon = subtotal * coupon_ratio
    result = compose_total(subtotal, coupon, loyalty)

    assert D("0") <= result.total <= subtotal.quantize(D("0.01"))
    assert result.total_discount == coupon + result.loyalty_amount
    assert result.total == max(D("0"), subtotal - result.total_discount).quantize(
        D("0.01"), rounding=ROUND_HALF_UP
    )
