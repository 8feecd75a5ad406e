from __future__ import annotations

import uuid
from typing import Any, Mapping

from .core import Event


def new_json_event(
    payload: Mapping[str, Any],
    *,
    key: str | None = None,
    event_id: str | None = None,
) -> Event:
    """payload 를 Event 로 감싼다. event_id 가 없으면 UUID4 를 발급한다."""

    return Event(id=event_id or str(uuid.uuid4()), payload=dict(payload), key=key)
