"""apps/gateway 测试配置 -- Store、Notifier、业务服务与 FastAPI app fixture"""

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from taskflow.core.clock import fixed_clock
from taskflow.core.models import DirectoryUser, FollowUp
from taskflow.core.store import StoreGroup, create_store_group
from taskflow.gateway.services.completion_service import AutoCompletionMatcher
from taskflow.gateway.services.event_service import EventIntakeService
from taskflow.gateway.services.follow_up_service import FollowUpService
from taskflow.gateway.services.scheduler import EscalationScheduler
from taskflow.gateway.services.todo_service import TodoService
from taskflow.notify import EmailMessage, MemoryAuditSink, Notifier, RelayUnreachableError
from ulid import ULID

AGENT_ID = 1
OTHER_AGENT_ID = 2
MANAGER_ID = 10
OTHER_MANAGER_ID = 20


class SwitchableTransport:
    """可切换结果的邮件传输：ok / reject / error"""

    def __init__(self) -> None:
        self.mode = "ok"
        self.sent: list[EmailMessage] = []

    async def deliver(self, message: EmailMessage) -> bool:
        if self.mode == "error":
            raise RelayUnreachableError(
                relay_url="http://relay.test",
                original_error=ConnectionRefusedError("connection refused"),
            )
        if self.mode == "reject":
            return False
        self.sent.append(message)
        return True

    async def health_check(self) -> bool:
        return self.mode == "ok"


@pytest.fixture
def now() -> datetime:
    """测试基准时刻"""
    return datetime(2024, 3, 15, 12, 0, tzinfo=UTC)


@pytest_asyncio.fixture
async def store_group(tmp_path: Path) -> AsyncGenerator[StoreGroup, None]:
    group = await create_store_group(str(tmp_path / "sqlite" / "gateway_test.db"))
    yield group
    await group.conn.close()


@pytest_asyncio.fixture
async def directory(store_group: StoreGroup) -> None:
    """用户目录：两名业务员，两名经理（业务员 1 的直属经理为 10）"""
    users = store_group.user_store
    await users.upsert_user(
        DirectoryUser(
            user_id=AGENT_ID,
            full_name="Alice Agent",
            email="alice@example.test",
            manager_id=MANAGER_ID,
        )
    )
    await users.upsert_user(
        DirectoryUser(user_id=OTHER_AGENT_ID, full_name="Bob Agent", email="bob@example.test")
    )
    await users.upsert_user(
        DirectoryUser(
            user_id=MANAGER_ID, full_name="Maria Manager", email="maria@example.test",
            is_manager=True,
        )
    )
    await users.upsert_user(
        DirectoryUser(
            user_id=OTHER_MANAGER_ID, full_name="Omar Manager", email="omar@example.test",
            is_manager=True,
        )
    )
    await store_group.conn.commit()


@pytest.fixture
def transport() -> SwitchableTransport:
    return SwitchableTransport()


@pytest.fixture
def audit_sink() -> MemoryAuditSink:
    return MemoryAuditSink()


@pytest.fixture
def notifier(
    transport: SwitchableTransport, audit_sink: MemoryAuditSink, now: datetime
) -> Notifier:
    return Notifier(
        transport, audit_sink=audit_sink, portal_url="https://portal.test", clock=fixed_clock(now)
    )


@pytest.fixture
def todo_service(store_group: StoreGroup, notifier: Notifier, now: datetime) -> TodoService:
    return TodoService(store_group, notifier, clock=fixed_clock(now))


@pytest.fixture
def follow_up_service(
    store_group: StoreGroup, notifier: Notifier, now: datetime
) -> FollowUpService:
    return FollowUpService(store_group, notifier, clock=fixed_clock(now))


@pytest.fixture
def intake(
    store_group: StoreGroup,
    notifier: Notifier,
    todo_service: TodoService,
    follow_up_service: FollowUpService,
    now: datetime,
) -> EventIntakeService:
    return EventIntakeService(
        store_group,
        todo_service,
        follow_up_service,
        AutoCompletionMatcher(store_group, notifier, clock=fixed_clock(now)),
        clock=fixed_clock(now),
    )


@pytest.fixture
def scheduler(store_group: StoreGroup, notifier: Notifier, now: datetime) -> EscalationScheduler:
    return EscalationScheduler(store_group, notifier, clock=fixed_clock(now))


@pytest.fixture
def add_follow_up(
    store_group: StoreGroup, now: datetime
) -> Callable[..., Awaitable[FollowUp]]:
    """直接写入跟进（绕过服务层），用于构造任意序号与截止时间"""

    async def _add(**overrides) -> FollowUp:
        data = {
            "follow_up_id": str(ULID()),
            "owner_id": AGENT_ID,
            "client_name": "Acme",
            "client_email": "ops@acme.test",
            "document_type": "contract",
            "email_subject": "Your contract",
            "sent_date": now - timedelta(days=7),
            "due_date": now - timedelta(hours=1),
            "created_at": now - timedelta(days=7),
            "updated_at": now - timedelta(days=7),
        }
        data.update(overrides)
        follow_up = FollowUp(**data)
        await store_group.follow_up_store.create_follow_up(follow_up)
        await store_group.conn.commit()
        return follow_up

    return _add


@pytest_asyncio.fixture
async def app(store_group: StoreGroup, notifier: Notifier, now: datetime, monkeypatch):
    """创建测试用 FastAPI app 实例（手动初始化 app.state，绕过 lifespan）"""
    monkeypatch.setenv("LOGFIRE_SEND_TO_LOGFIRE", "false")
    monkeypatch.delenv("TASKFLOW_CRON_SECRET", raising=False)
    monkeypatch.delenv("TASKFLOW_DEFAULT_MANAGER_ID", raising=False)

    from taskflow.gateway.main import create_app

    application = create_app()
    application.state.store_group = store_group
    application.state.notifier = notifier
    application.state.clock = fixed_clock(now)
    return application


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """以业务员 1 的身份访问"""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"X-User-Id": str(AGENT_ID)},
    ) as ac:
        yield ac
