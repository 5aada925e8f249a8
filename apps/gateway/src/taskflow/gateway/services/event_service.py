"""EventIntakeService -- 入站通知事件处理

处理流程：
1. 校验信封与按类型的 payload
2. event_id / idempotency_key 去重；重复但尚未生成结果的事件继续处理
3. 持久化事件（调度器步骤 3 与回放依赖事件表）
4. 自动完成匹配
5. 生成规则：创建待办或跟进
"""

from datetime import datetime
from typing import Any

import aiosqlite
import structlog
from pydantic import BaseModel, Field
from taskflow.core.clock import Clock, utc_now
from taskflow.core.exceptions import ValidationError
from taskflow.core.models import ActorType, NotificationEvent, parse_event
from taskflow.core.rules import (
    RuleKind,
    follow_up_from_event,
    from_event,
    get_rule,
    should_generate_for,
)
from taskflow.core.store import StoreGroup
from taskflow.core.store.transaction import append_event_only

from .completion_service import AutoCompletionMatcher
from .follow_up_service import FollowUpService
from .todo_service import TodoService

log = structlog.get_logger()


def notification_to_event(
    raw: dict[str, Any],
    received_at: datetime,
    default_user_id: int | None = None,
) -> NotificationEvent:
    """通知记录 -> 入站事件

    通知形如 {id, type, user_id, title, message, data, created_at, idempotency_key}。
    title/message 并入 payload，data 中的同名字段优先；
    通知 id 映射为 event_id，保证 webhook 重投时幂等。

    Raises:
        ValidationError: 缺少 type、data 不是对象或 payload 不合法
    """
    if not raw.get("type"):
        raise ValidationError("notification type is required", field="type")
    data = raw.get("data") or raw.get("payload") or {}
    if not isinstance(data, dict):
        raise ValidationError("notification data must be an object", field="data")

    payload: dict[str, Any] = {
        key: raw[key] for key in ("title", "message") if raw.get(key) is not None
    }
    payload.update(data)

    envelope: dict[str, Any] = {
        "type": raw["type"],
        "user_id": raw.get("user_id", default_user_id),
        "payload": payload,
        "created_at": raw.get("created_at") or received_at,
        "idempotency_key": raw.get("idempotency_key"),
    }
    if raw.get("event_id"):
        envelope["event_id"] = str(raw["event_id"])
    elif raw.get("id") is not None:
        payload.setdefault("notification_id", str(raw["id"]))
        envelope["event_id"] = f"notification-{raw['id']}"
    return parse_event(envelope)


class IntakeResult(BaseModel):
    """单个事件的处理结果"""

    event_id: str = Field(description="事件 ID（重复时为已存在事件的 ID）")
    duplicate: bool = Field(default=False, description="是否为重复事件")
    resumed: bool = Field(default=False, description="是否为重投后补做的生成")
    todo_generated: bool = Field(default=False, description="是否生成了待办或跟进")
    todo_id: str | None = Field(default=None, description="生成的待办 ID")
    follow_up_id: str | None = Field(default=None, description="生成的跟进 ID")
    auto_completed_count: int = Field(default=0, description="被自动完成的待办数")
    message: str = Field(default="", description="处理说明")


class EventIntakeService:
    """入站事件服务"""

    def __init__(
        self,
        store_group: StoreGroup,
        todo_service: TodoService,
        follow_up_service: FollowUpService,
        matcher: AutoCompletionMatcher,
        clock: Clock = utc_now,
    ) -> None:
        self._stores = store_group
        self._todos = todo_service
        self._follow_ups = follow_up_service
        self._matcher = matcher
        self._clock = clock

    async def handle_event(self, event: NotificationEvent | dict[str, Any]) -> IntakeResult:
        """处理一条事件

        重复事件若应生成待办/跟进却尚无生成结果（上次处理中途失败），
        按已入库的事件继续处理，而不是直接判为重复。

        Raises:
            ValidationError: 信封或 payload 不合法
        """
        if isinstance(event, NotificationEvent):
            event.typed_payload()
        else:
            event = parse_event(event)

        existing_id = await self._find_duplicate(event)
        if existing_id is not None:
            return await self._handle_duplicate(event, existing_id)

        now = self._clock()
        try:
            await append_event_only(self._stores.conn, self._stores.event_store, event, now)
        except aiosqlite.IntegrityError:
            # 并发重复请求
            existing_id = await self._find_duplicate(event)
            if existing_id is None:
                raise
            return IntakeResult(event_id=existing_id, duplicate=True, message="duplicate event")

        return await self._process(event)

    async def _handle_duplicate(self, event: NotificationEvent, existing_id: str) -> IntakeResult:
        stored = await self._stores.event_store.get_event(existing_id)
        if stored is not None and not await self._generation_done(stored):
            log.warning("event_generation_resumed", event_id=existing_id, type=stored.type)
            result = await self._process(stored)
            result.resumed = True
            return result
        log.info("event_duplicate", event_id=existing_id, type=event.type)
        return IntakeResult(event_id=existing_id, duplicate=True, message="duplicate event")

    async def _generation_done(self, event: NotificationEvent) -> bool:
        """不需要生成，或已有以该事件为来源的待办/跟进"""
        if not should_generate_for(event):
            return True
        if get_rule(event.type).kind == RuleKind.FOLLOW_UP:
            return await self._stores.follow_up_store.exists_for_source_event(event.event_id)
        return await self._stores.todo_store.exists_for_source_event(event.event_id)

    async def _process(self, event: NotificationEvent) -> IntakeResult:
        """自动完成匹配 + 生成规则（事件已入库）"""
        now = self._clock()
        result = IntakeResult(event_id=event.event_id)
        completed = await self._matcher.match_event(event)
        result.auto_completed_count = len(completed)

        if not should_generate_for(event):
            result.message = "event does not generate a todo"
            log.info(
                "event_processed",
                event_id=event.event_id,
                type=event.type,
                generated=False,
                auto_completed=result.auto_completed_count,
            )
            return result

        rule = get_rule(event.type)
        if rule.kind == RuleKind.FOLLOW_UP:
            follow_up = await self._follow_ups.create(
                follow_up_from_event(event), actor=ActorType.SYSTEM
            )
            result.follow_up_id = follow_up.follow_up_id
            result.message = "follow-up created"
        else:
            todo = await self._todos.create(from_event(event, now), actor=ActorType.SYSTEM)
            result.todo_id = todo.todo_id
            result.message = "todo created"
        result.todo_generated = True

        log.info(
            "event_processed",
            event_id=event.event_id,
            type=event.type,
            generated=True,
            todo_id=result.todo_id,
            follow_up_id=result.follow_up_id,
            auto_completed=result.auto_completed_count,
        )
        return result

    async def _find_duplicate(self, event: NotificationEvent) -> str | None:
        if await self._stores.event_store.get_event(event.event_id) is not None:
            return event.event_id
        if event.idempotency_key:
            return await self._stores.event_store.check_idempotency_key(event.idempotency_key)
        return None
