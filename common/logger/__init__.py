import json
import logging
import os
import sys


# extra 로 넘겨받아 JSON 로그에 그대로 싣는 필드 목록.
# HTTP 추적 필드와 주문/재고 도메인 식별자를 함께 다룬다.
STRUCTURED_EXTRA_KEYS: tuple[str, ...] = (
    "request_id",
    "span_id",
    "method",
    "path",
    "query_params",
    "status",
    "body",
    "duration",
    "order_id",
    "plan_id",
    "credential_id",
    "coupon_id",
    "user_id",
)


def setup_logger(
    name: str = "fulfillment-service", level: str | None = None
) -> logging.Logger:
    """서비스 전역 로거를 JSON 포맷으로 설정하고 반환한다.

    Args:
        name: 로거 이름. SERVICE_NAME 환경변수가 있으면 그 값을 우선한다.
        level: 로그 레벨. None 이면 LOG_LEVEL 환경변수(기본 INFO)를 사용한다.
    """
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")

    log_level = getattr(logging, level.upper(), logging.INFO)

    service_name = os.getenv("SERVICE_NAME", name)
    logger = logging.getLogger(service_name)
    logger.setLevel(log_level)

    # 재호출 시 핸들러가 중복으로 붙지 않도록 비운다.
    if logger.handlers:
        logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)

    # 모듈 로거(logging.getLogger(__name__))는 루트로 전파되므로 루트에도 같은 핸들러를 단다.
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        root_logger.addHandler(handler)
        root_logger.setLevel(log_level)

    return logger


class JsonFormatter(logging.Formatter):
    """구조화 로그 수집용 JSON 포맷터.

    - datetime, level, logger, message 를 기본으로 포함한다.
    - STRUCTURED_EXTRA_KEYS 에 해당하는 extra 값이 있으면 같이 기록한다.
    - 예외 정보는 exc_info 필드에 문자열로 넣는다.
    """

    def __init__(self) -> None:
        super().__init__(datefmt="%Y-%m-%dT%H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        log_record: dict[str, object] = {
            "datetime": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in STRUCTURED_EXTRA_KEYS:
            if hasattr(record, key):
                log_record[key] = getattr(record, key)

        service_name = getattr(record, "service_name", None) or os.getenv(
            "SERVICE_NAME"
        )
        if service_name:
            log_record["service_name"] = service_name

        if record.exc_info:
            log_record["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(log_record, ensure_ascii=False, default=str)
