"""패키지 만료일/월 경계 계산.

모든 패키지는 구매한 달의 마지막 순간(현지 시각 23:59:59.999999)까지 유효하다.
계산은 설정된 타임존에서 하고 결과는 UTC 로 돌려준다.
"""

from __future__ import annotations

import calendar
from datetime import datetime, time, timezone
from zoneinfo import ZoneInfo


def _localize(moment: datetime, tz_name: str) -> datetime:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(ZoneInfo(tz_name))


def end_of_month(moment: datetime, tz_name: str) -> datetime:
    local = _localize(moment, tz_name)
    last_day = calendar.monthrange(local.year, local.month)[1]
    local_end = datetime.combine(
        local.date().replace(day=last_day), time.max, tzinfo=local.tzinfo
    )
    return local_end.astimezone(timezone.utc)


def start_of_month(moment: datetime, tz_name: str) -> datetime:
    local = _localize(moment, tz_name)
    local_start = datetime.combine(
        local.date().replace(day=1), time.min, tzinfo=local.tzinfo
    )
    return local_start.astimezone(timezone.utc)


def days_remaining_in_month(moment: datetime, tz_name: str) -> int:
    local = _localize(moment, tz_name)
    last_day = calendar.monthrange(local.year, local.month)[1]
    return last_day - local.day
