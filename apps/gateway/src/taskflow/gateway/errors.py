"""异常 -> HTTP 错误响应映射

错误响应体统一为 {"error": {"code": ..., "message": ...}}。
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse
from taskflow.core.exceptions import (
    InvalidTransitionError,
    NotFoundError,
    TaskflowError,
    ValidationError,
)
from taskflow.notify import DependencyError

log = structlog.get_logger()


class UnauthorizedError(TaskflowError):
    """缺少调用方身份或 cron 密钥不匹配"""

    code = "UNAUTHORIZED"


_STATUS_BY_TYPE: list[tuple[type[TaskflowError], int]] = [
    (ValidationError, 400),
    (UnauthorizedError, 401),
    (NotFoundError, 404),
    (InvalidTransitionError, 409),
]


def error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message}},
    )


async def _taskflow_error_handler(request: Request, exc: TaskflowError) -> JSONResponse:
    status_code = next(
        (status for exc_type, status in _STATUS_BY_TYPE if isinstance(exc, exc_type)),
        500,
    )
    return error_response(status_code, exc.code, exc.message)


async def _dependency_error_handler(request: Request, exc: DependencyError) -> JSONResponse:
    log.error(
        "dependency_error",
        collaborator=exc.collaborator,
        recoverable=exc.recoverable,
        error=str(exc),
    )
    return error_response(502, "DEPENDENCY_ERROR", str(exc))


async def _request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query"))
    message = first.get("msg", "invalid request")
    if field:
        message = f"{field}: {message}"
    return error_response(400, ValidationError.code, message)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(TaskflowError, _taskflow_error_handler)
    app.add_exception_handler(DependencyError, _dependency_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
