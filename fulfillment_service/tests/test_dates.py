from __future__ import annotations

from datetime import datetime, timezone

from fulfillment_service.app.utils.dates import (
    days_remaining_in_month,
    end_of_month,
    start_of_month,
)

TZ = "Europe/Istanbul"


def test_end_of_month_is_last_local_moment_in_utc() -> None:
    moment = datetime(2024, 2, 10, 12, 0, tzinfo=timezone.utc)
    assert end_of_month(moment, TZ) == datetime(
        2024, 2, 29, 20, 59, 59, 999999, tzinfo=timezone.utc
    )


def test_end_of_month_rolls_with_local_date() -> None:
    # UTC 1월 31일 22:30 은 이스탄불로 2월 1일이다.
    moment = datetime(2024, 1, 31, 22, 30, tzinfo=timezone.utc)
    assert end_of_month(moment, TZ).month == 2


def test_start_of_month() -> None:
    moment = datetime(2024, 3, 10, tzinfo=timezone.utc)
    assert start_of_month(moment, TZ) == datetime(2024, 2, 29, 21, 0, tzinfo=timezone.utc)


def test_naive_datetime_is_treated_as_utc() -> None:
    assert days_remaining_in_month(datetime(2024, 4, 28, 12, 0), TZ) == 2
