from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI

from common.eventbus.kafka import close_kafka_event_bus
from common.logger import setup_logger
from common.middleware.request_trace import RequestTraceMiddleware

from .api.errors import register_exception_handlers
from .api.health import router as health_router
from .api.v1 import api_router
from .config import get_app_config
from .scheduler.order_expiry_scheduler import (
    start_order_expiry_scheduler,
    stop_order_expiry_scheduler,
)


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - framework hook
    start_order_expiry_scheduler()
    try:
        yield
    finally:
        stop_order_expiry_scheduler()
        close_kafka_event_bus()


def create_app(*, enable_scheduler: bool = True) -> FastAPI:
    setup_logger()
    app = FastAPI(
        title="Maritime Fulfillment Service",
        version="0.1.0",
        lifespan=lifespan if enable_scheduler else None,
    )

    # 공통 Request/Span ID 로그 미들웨어
    app.add_middleware(RequestTraceMiddleware)
    register_exception_handlers(app)

    app.include_router(health_router, tags=["health"])
    app.include_router(api_router, prefix="/api/v1")

    return app


app = create_app()


def main() -> None:
    import uvicorn

    uvicorn.run(
        "fulfillment_service.app.main:app",
        host="0.0.0.0",
        port=get_app_config().port,
        reload=False,
        access_log=False,
    )


if __name__ == "__main__":  # pragma: no cover - CLI entrypoint
    main()
