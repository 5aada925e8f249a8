"""FastAPI 应用主文件

app 创建 + lifespan 管理：DB 初始化/关闭 + Notifier 初始化 + 路由注册。
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from taskflow.core.config import get_db_path
from taskflow.core.store import create_store_group
from taskflow.notify import StructlogAuditSink, build_notifier, load_notify_config

from .errors import register_error_handlers
from .middleware.logging_config import setup_logfire, setup_logging
from .middleware.logging_mw import LoggingMiddleware
from .middleware.trace_mw import TraceMiddleware
from .routes import cron, follow_ups, health, todos, webhooks

log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """应用生命周期管理：启动时初始化 DB 和 Notifier，关闭时清理连接"""
    # 启动：初始化 Store
    store_group = await create_store_group(get_db_path())
    app.state.store_group = store_group

    # 邮件传输层按 TASKFLOW_EMAIL_MODE 选择 relay / log
    app.state.notifier = build_notifier(load_notify_config(), audit_sink=StructlogAuditSink())
    log.info("gateway_started", db_path=get_db_path())

    yield

    # 关闭：清理数据库连接
    if getattr(app.state, "store_group", None):
        await app.state.store_group.conn.close()


def create_app() -> FastAPI:
    """创建 FastAPI 应用实例"""
    app = FastAPI(
        title="Taskflow Gateway",
        version="0.1.0",
        description="待办与客户跟进生命周期 API",
        lifespan=lifespan,
    )

    # 注册中间件（顺序：先 Trace 后 Logging）
    app.add_middleware(TraceMiddleware)
    app.add_middleware(LoggingMiddleware)

    setup_logging()
    setup_logfire()

    register_error_handlers(app)

    app.include_router(todos.router, tags=["todos"])
    app.include_router(follow_ups.router, tags=["follow-ups"])
    app.include_router(webhooks.router, tags=["webhooks"])
    app.include_router(cron.router, tags=["cron"])
    app.include_router(health.router, tags=["health"])

    return app


# 默认 app 实例（uvicorn 入口）
app = create_app()
