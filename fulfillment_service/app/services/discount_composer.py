"""쿠폰 할인과 로열티 할인 합산.

두 할인은 모두 원래 소계를 기준으로 더한다(복리 적용 금지).
중간값은 반올림하지 않고 최종 total 만 센트 단위 ROUND_HALF_UP 으로 반올림한다.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from ..models.pricing import ComposedTotal


CENT = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")


def round_money(amount: Decimal) -> Decimal:
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def compose_total(
    subtotal: Decimal, coupon_discount: Decimal, loyalty_percent: Decimal
) -> ComposedTotal:
    loyalty_amount = subtotal * loyalty_percent / HUNDRED
    total_discount = coupon_discount + loyalty_amount
    total = max(ZERO, subtotal - total_discount)
    return ComposedTotal(
        total=round_money(total),
        loyalty_amount=loyalty_amount,
        total_discount=total_discount,
    )
