from __future__ import annotations

import logging
import threading

from common.mongo.client import get_database

from ..config import get_app_config
from ..services.order_service import OrderService, build_order_service


logger = logging.getLogger(__name__)


_EXPIRY_SCHEDULER_THREAD: threading.Thread | None = None
_EXPIRY_SCHEDULER_STOP_EVENT: threading.Event | None = None


def run_expiry_sweep(service: OrderService) -> int:
    """한 번의 스윕. 방치된 pending 주문과 기간이 끝난 패키지를 만료시키고 그 수를 반환한다."""

    abandoned = service.expire_stale_pending()
    for order_id in abandoned:
        logger.info("expired abandoned pending order", extra={"order_id": order_id})

    lapsed = service.expire_lapsed_packages()
    for order_id in lapsed:
        logger.info("expired lapsed package", extra={"order_id": order_id})
    return len(abandoned) + len(lapsed)


def _run_scheduler_loop(stop_event: threading.Event) -> None:
    config = get_app_config()
    interval = config.order_policy.sweep_interval_seconds
    logger.info(
        "order expiry scheduler thread started (interval=%.0f seconds, ttl=%d minutes)",
        interval,
        config.order_policy.pending_order_ttl_minutes,
    )

    service = build_order_service(get_database(), config)

    try:
        # 최초 실행
        try:
            count = run_expiry_sweep(service)
            logger.info("order expiry sweep completed (initial run, expired=%d)", count)
        except Exception:  # noqa: BLE001
            logger.exception("order expiry sweep failed (initial run)")

        # 주기적 실행
        while not stop_event.wait(interval):
            try:
                count = run_expiry_sweep(service)
                logger.info(
                    "order expiry sweep completed (scheduled run, expired=%d)", count
                )
            except Exception:  # noqa: BLE001
                logger.exception("order expiry sweep failed (scheduled run)")
    finally:
        logger.info("order expiry scheduler thread stopped")


def start_order_expiry_scheduler() -> None:
    """pending 주문 만료 스케줄러 스레드를 시작한다.

    FastAPI lifespan 시작 시 호출된다.
    """

    global _EXPIRY_SCHEDULER_THREAD, _EXPIRY_SCHEDULER_STOP_EVENT

    if _EXPIRY_SCHEDULER_THREAD and _EXPIRY_SCHEDULER_THREAD.is_alive():
        return

    stop_event = threading.Event()
    thread = threading.Thread(
        target=_run_scheduler_loop,
        args=(stop_event,),
        name="order-expiry-scheduler",
        daemon=True,
    )

    _EXPIRY_SCHEDULER_STOP_EVENT = stop_event
    _EXPIRY_SCHEDULER_THREAD = thread

    thread.start()
    logger.info("order expiry scheduler thread launched")


def stop_order_expiry_scheduler() -> None:
    """FastAPI lifespan 종료 시 호출된다."""

    global _EXPIRY_SCHEDULER_THREAD, _EXPIRY_SCHEDULER_STOP_EVENT

    if _EXPIRY_SCHEDULER_THREAD is None or _EXPIRY_SCHEDULER_STOP_EVENT is None:
        return

    _EXPIRY_SCHEDULER_STOP_EVENT.set()
    _EXPIRY_SCHEDULER_THREAD.join(timeout=10.0)

    _EXPIRY_SCHEDULER_THREAD = None
    _EXPIRY_SCHEDULER_STOP_EVENT = None

    logger.info("order expiry scheduler thread stopped by shutdown")
