"""TraceMiddleware -- 待办/跟进操作追踪

从路径中提取 todo_id 绑定 trace_id，并绑定调用方 user_id，贯穿该请求的业务日志。
跟进 ID 位于请求体中，由 follow-ups 路由解析后自行绑定。
"""

import structlog
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# ULID 字符串长度
_ULID_LENGTH = 26


class TraceMiddleware(BaseHTTPMiddleware):
    """业务追踪中间件"""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        trace_id = None

        if path.startswith("/api/todos/"):
            # /api/todos/{todo_id}/status；排除 /bulk、/stats 等子路由
            parts = path.split("/")
            if len(parts) > 3 and len(parts[3]) == _ULID_LENGTH:
                trace_id = f"trace-{parts[3]}"

        if trace_id:
            structlog.contextvars.bind_contextvars(trace_id=trace_id)

        user_id = request.headers.get("x-user-id")
        if user_id:
            structlog.contextvars.bind_contextvars(user_id=user_id)

        return await call_next(request)
