"""健康检查路由

GET /health: Liveness 检查，永远返回 200。
GET /ready: Readiness 检查，包含 SQLite 连通性、WAL 模式与磁盘空间；
         profile=full 时额外探测邮件中继。
"""

import shutil

import structlog
from fastapi import APIRouter, Query, Request
from starlette.responses import JSONResponse
from taskflow.core.store import verify_wal_mode

log = structlog.get_logger()

router = APIRouter()


@router.get("/health")
async def health():
    """Liveness 检查 -- 永远返回 200"""
    return {"status": "ok"}


@router.get("/ready")
async def ready(
    request: Request,
    profile: str | None = Query(
        default=None,
        description="检查配置：core（默认）仅核心检查；full 包含邮件中继健康检查",
    ),
):
    """Readiness 检查 -- 验证核心依赖可用性

    检查项：
    1. sqlite: 数据库连通性
    2. wal_mode: 是否运行在 WAL 模式
    3. disk_space_mb: 磁盘剩余空间
    4. email_relay: profile=full 时探测
    """
    effective_profile = profile or "core"

    checks = {}
    all_ok = True

    # 1. SQLite 连通性检查
    try:
        store_group = request.app.state.store_group
        cursor = await store_group.conn.execute("SELECT 1")
        await cursor.fetchone()
        checks["sqlite"] = "ok"
        checks["wal_mode"] = "ok" if await verify_wal_mode(store_group.conn) else "disabled"
    except Exception as e:
        checks["sqlite"] = f"error: {str(e)}"
        all_ok = False

    # 2. 磁盘空间检查
    try:
        disk_usage = shutil.disk_usage("/")
        checks["disk_space_mb"] = disk_usage.free // (1024 * 1024)
    except OSError:
        checks["disk_space_mb"] = 0
        all_ok = False

    # 3. 邮件中继
    if effective_profile == "full":
        notifier = getattr(request.app.state, "notifier", None)
        if notifier is None:
            checks["email_relay"] = "skipped"
        else:
            relay_ok = await notifier.transport.health_check()
            checks["email_relay"] = "ok" if relay_ok else "unreachable"
            if not relay_ok:
                log.warning("email_relay_not_ready")
                all_ok = False
    else:
        checks["email_relay"] = "skipped"

    status_code = 200 if all_ok else 503
    status_text = "ready" if all_ok else "not_ready"

    return JSONResponse(
        status_code=status_code,
        content={
            "status": status_text,
            "profile": effective_profile,
            "checks": checks,
        },
    )
