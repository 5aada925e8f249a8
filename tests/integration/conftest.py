"""集成测试共享 fixture"""

import os
from collections.abc import AsyncGenerator
from pathlib import Path

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from taskflow.core.models import DirectoryUser
from taskflow.core.store import create_store_group
from taskflow.notify import LogEmailTransport, MemoryAuditSink, Notifier


@pytest_asyncio.fixture
async def integration_app(tmp_path: Path):
    """集成测试用 FastAPI app（真实时钟 + 日志模式邮件）"""
    os.environ["TASKFLOW_DB_PATH"] = str(tmp_path / "test.db")
    os.environ["LOGFIRE_SEND_TO_LOGFIRE"] = "false"
    os.environ.pop("TASKFLOW_CRON_SECRET", None)

    from taskflow.gateway.main import create_app

    app = create_app()

    store_group = await create_store_group(str(tmp_path / "test.db"))
    await store_group.user_store.upsert_user(
        DirectoryUser(user_id=1, full_name="Alice Agent", email="alice@example.test", manager_id=10)
    )
    await store_group.user_store.upsert_user(
        DirectoryUser(
            user_id=10, full_name="Maria Manager", email="maria@example.test", is_manager=True
        )
    )
    await store_group.conn.commit()

    app.state.store_group = store_group
    app.state.notifier = Notifier(LogEmailTransport(), audit_sink=MemoryAuditSink())

    yield app

    await store_group.conn.close()
    os.environ.pop("TASKFLOW_DB_PATH", None)
    os.environ.pop("LOGFIRE_SEND_TO_LOGFIRE", None)


@pytest_asyncio.fixture
async def client(integration_app) -> AsyncGenerator[AsyncClient, None]:
    async with AsyncClient(
        transport=ASGITransport(app=integration_app),
        base_url="http://test",
        headers={"X-User-Id": "1"},
    ) as ac:
        yield ac
