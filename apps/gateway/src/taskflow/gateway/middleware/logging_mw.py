"""LoggingMiddleware -- 请求级日志

每个请求绑定 request_id（沿用上游传入的 X-Request-ID，否则生成 ULID），
记录耗时与状态码。健康检查只记 debug，避免定时探测刷屏。
"""

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from ulid import ULID

_PROBE_PATHS = {"/health", "/ready"}


class LoggingMiddleware(BaseHTTPMiddleware):
    """请求级日志中间件"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("x-request-id") or str(ULID())
        path = request.url.path

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=path,
        )

        log = structlog.get_logger()
        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = round((time.perf_counter() - started) * 1000, 1)

        if path in _PROBE_PATHS:
            await log.adebug("probe_completed", status_code=response.status_code)
        elif response.status_code >= 500:
            await log.aerror(
                "request_failed", status_code=response.status_code, duration_ms=duration_ms
            )
        else:
            await log.ainfo(
                "request_completed", status_code=response.status_code, duration_ms=duration_ms
            )

        response.headers["X-Request-ID"] = request_id
        return response
