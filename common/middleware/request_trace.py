import logging
import time
import uuid
from urllib.parse import parse_qs

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response


REQUEST_ID_HEADER = "X-Request-Id"
SPAN_ID_HEADER = "X-Span-Id"

# 헬스체크처럼 로그 노이즈만 만드는 경로
IGNORED_LOG_PATHS: set[str] = {"/health"}

# 자격증명(비밀번호)이 바디에 실리는 경로는 바디를 로그에 남기지 않는다.
REDACTED_BODY_PATH_SUFFIXES: tuple[str, ...] = ("/admin/credentials/import",)

MAX_LOGGED_BODY_LENGTH = 1024


class RequestTraceMiddleware(BaseHTTPMiddleware):
    """Request/Span ID 를 전파하고 요청 단위 로그를 남기는 미들웨어.

    - X-Request-Id 가 없으면 새로 만들고, X-Span-Id 가 없으면 "0" 을 쓴다.
    - request.state 에 ID 를 저장하고 응답 헤더로 되돌려준다.
    - 요청이 끝나면 completed request 로그를 한 줄 남긴다.
    """

    def __init__(self, app, logger: logging.Logger | None = None) -> None:  # type: ignore[override]
        super().__init__(app)
        self._logger = logger or logging.getLogger("request_trace")

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id, span_id = self._extract_trace_ids(request)
        request.state.request_id = request_id
        request.state.span_id = span_id
        request.state.request_body = await self._read_body_snippet(request)

        should_log = request.url.path not in IGNORED_LOG_PATHS
        start = time.monotonic()

        try:
            response = await call_next(request)
        except Exception:
            if should_log:
                self._logger.exception(
                    "request failed",
                    extra=self._build_log_extra(
                        request,
                        request_id,
                        span_id,
                        duration=time.monotonic() - start,
                    ),
                )
            raise

        response.headers.setdefault(REQUEST_ID_HEADER, request_id)
        response.headers.setdefault(SPAN_ID_HEADER, span_id)

        if should_log:
            self._logger.info(
                "completed request",
                extra=self._build_log_extra(
                    request,
                    request_id,
                    span_id,
                    status=response.status_code,
                    duration=time.monotonic() - start,
                ),
            )

        return response

    def _extract_trace_ids(self, request: Request) -> tuple[str, str]:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        span_id = request.headers.get(SPAN_ID_HEADER) or "0"
        return request_id, span_id

    async def _read_body_snippet(self, request: Request) -> str | None:
        if request.method not in {"POST", "PUT", "PATCH", "DELETE"}:
            return None
        if request.url.path.endswith(REDACTED_BODY_PATH_SUFFIXES):
            return "<redacted>"

        try:
            body_bytes = await request.body()
        except Exception:  # noqa: BLE001
            body_bytes = b""
        if not body_bytes:
            return None

        text = body_bytes.decode("utf-8", errors="replace")
        return text[:MAX_LOGGED_BODY_LENGTH]

    def _build_log_extra(
        self,
        request: Request,
        request_id: str,
        span_id: str,
        status: int | None = None,
        duration: float | None = None,
    ) -> dict[str, object]:
        extra: dict[str, object] = {
            "request_id": request_id,
            "span_id": span_id,
            "method": request.method,
            "path": request.url.path,
        }

        if request.url.query:
            parsed = parse_qs(request.url.query, keep_blank_values=True)
            if parsed:
                extra["query_params"] = {
                    key: values[0] if len(values) == 1 else values
                    for key, values in parsed.items()
                }

        body = getattr(request.state, "request_body", None)
        if body:
            extra["body"] = body

        if status is not None:
            extra["status"] = status

        if duration is not None:
            extra["duration"] = f"{duration * 1000:.3f}ms"

        return extra
