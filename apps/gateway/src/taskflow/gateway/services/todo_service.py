"""TodoService -- 待办创建/状态流转/查询业务逻辑

每次成功变更：
1. 条件 UPDATE（WHERE status = 当前状态），与历史记录同事务提交
2. 写审计日志（失败只记 warning）
"""

from datetime import timedelta
from typing import Any

import structlog
from pydantic import ValidationError as PydanticValidationError
from taskflow.core.clock import Clock, utc_now
from taskflow.core.config import BULK_UPDATE_MAX_ITEMS, DUE_SOON_WINDOW
from taskflow.core.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from taskflow.core.models import (
    BULK_TARGET_STATES,
    ActorType,
    BulkItemError,
    BulkUpdateResult,
    EntityType,
    HistoryAction,
    HistoryRecord,
    Todo,
    TodoFilters,
    TodoInput,
    TodoStats,
    TodoStatus,
    validate_transition,
)
from taskflow.core.store import StoreGroup
from taskflow.core.store.transaction import create_with_history, update_with_history
from taskflow.notify import Notifier
from ulid import ULID

log = structlog.get_logger()


def parse_status(value: TodoStatus | str) -> TodoStatus:
    """字符串 -> TodoStatus，越界抛 ValidationError"""
    try:
        return TodoStatus(value)
    except ValueError as e:
        raise ValidationError(f"unknown todo status: {value}", field="status") from e


class TodoService:
    """待办业务服务"""

    def __init__(
        self,
        store_group: StoreGroup,
        notifier: Notifier,
        clock: Clock = utc_now,
        due_soon_window: timedelta = DUE_SOON_WINDOW,
    ) -> None:
        self._stores = store_group
        self._notifier = notifier
        self._clock = clock
        self._due_soon_window = due_soon_window

    async def create(
        self,
        data: TodoInput | dict[str, Any],
        actor: ActorType = ActorType.USER,
    ) -> Todo:
        """创建待办，状态固定为 pending

        Raises:
            ValidationError: 分类/优先级越界或标题为空
        """
        if isinstance(data, TodoInput):
            todo_input = data
        else:
            try:
                todo_input = TodoInput.model_validate(data)
            except PydanticValidationError as e:
                raise ValidationError.from_pydantic(e, "invalid todo") from e

        now = self._clock()
        todo = Todo(
            **todo_input.model_dump(),
            todo_id=str(ULID()),
            status=TodoStatus.PENDING,
            created_at=now,
            updated_at=now,
        )
        record = HistoryRecord.new(
            EntityType.TODO,
            todo.todo_id,
            todo.owner_id,
            HistoryAction.CREATED,
            now,
            actor=actor,
            new_status=TodoStatus.PENDING.value,
            details={
                "auto_generated": todo.auto_generated,
                "source_event_id": todo.source_event_id,
                "category": todo.category.value,
                "priority": todo.priority.value,
            },
        )
        await create_with_history(
            self._stores.conn,
            self._stores.history_store,
            lambda: self._stores.todo_store.create_todo(todo),
            [record],
        )

        log.info(
            "todo_created",
            todo_id=todo.todo_id,
            owner_id=todo.owner_id,
            category=todo.category.value,
            priority=todo.priority.value,
            auto_generated=todo.auto_generated,
        )
        await self._notifier.log_audit_event(
            todo.owner_id if actor == ActorType.USER else None,
            "todo_created",
            f"todo:{todo.todo_id}",
            {"title": todo.title, "auto_generated": todo.auto_generated},
        )
        return todo

    async def get(self, todo_id: str, owner_id: int) -> Todo:
        """查询单个待办

        Raises:
            NotFoundError: 不存在或不属于 owner_id
        """
        todo = await self._stores.todo_store.get_todo(todo_id, owner_id=owner_id)
        if todo is None:
            raise NotFoundError("todo", todo_id)
        return todo

    async def update_status(
        self,
        todo_id: str,
        owner_id: int,
        status: TodoStatus | str,
    ) -> Todo:
        """用户发起的状态流转

        Raises:
            ValidationError: 未知状态
            NotFoundError: 不存在或不属于 owner_id
            InvalidTransitionError: 流转不在允许的状态图内
        """
        target = parse_status(status)
        todo = await self._transition(todo_id, owner_id, target)
        await self._notifier.log_audit_event(
            owner_id,
            "todo_status_changed",
            f"todo:{todo_id}",
            {"new_status": target.value},
        )
        return todo

    async def bulk_update_status(
        self,
        todo_ids: list[str],
        owner_id: int,
        status: TodoStatus | str,
    ) -> BulkUpdateResult:
        """批量完成/忽略 -- 单条失败跳过并计入 errors

        Raises:
            ValidationError: 目标状态不是 completed/dismissed，或 id 列表为空/超限
        """
        target = parse_status(status)
        if target not in BULK_TARGET_STATES:
            raise ValidationError(
                f"bulk status must be one of completed, dismissed; got {target.value}",
                field="status",
            )
        if not todo_ids:
            raise ValidationError("todo_ids must not be empty", field="todo_ids")
        if len(todo_ids) > BULK_UPDATE_MAX_ITEMS:
            raise ValidationError(
                f"at most {BULK_UPDATE_MAX_ITEMS} todos per request",
                field="todo_ids",
            )

        # 去重保序
        unique_ids = list(dict.fromkeys(todo_ids))
        result = BulkUpdateResult(status=target, requested_count=len(unique_ids))
        for todo_id in unique_ids:
            try:
                await self._transition(todo_id, owner_id, target)
            except (NotFoundError, InvalidTransitionError) as e:
                result.errors.append(BulkItemError(todo_id=todo_id, code=e.code, message=e.message))
                continue
            result.updated_ids.append(todo_id)
        result.updated_count = len(result.updated_ids)

        log.info(
            "todos_bulk_updated",
            owner_id=owner_id,
            status=target.value,
            requested=result.requested_count,
            updated=result.updated_count,
            failed=len(result.errors),
        )
        if result.updated_count:
            await self._notifier.log_audit_event(
                owner_id,
                "todos_bulk_updated",
                "todo:bulk",
                {"status": target.value, "todo_ids": result.updated_ids},
            )
        return result

    async def get_by_user(self, filters: TodoFilters) -> tuple[list[Todo], int]:
        """分页查询，"逾期/即将到期" 按当前时钟计算"""
        return await self._stores.todo_store.list_todos(
            filters, self._clock(), self._due_soon_window
        )

    async def get_stats(self, owner_id: int) -> TodoStats:
        return await self._stores.todo_store.get_stats(
            owner_id, self._clock(), self._due_soon_window
        )

    async def _transition(self, todo_id: str, owner_id: int, target: TodoStatus) -> Todo:
        todo = await self.get(todo_id, owner_id)
        if not validate_transition(todo.status, target):
            raise InvalidTransitionError(todo_id, todo.status.value, target.value)

        now = self._clock()
        record = HistoryRecord.new(
            EntityType.TODO,
            todo_id,
            owner_id,
            HistoryAction.COMPLETED
            if target == TodoStatus.COMPLETED
            else HistoryAction.STATUS_CHANGED,
            now,
            actor=ActorType.USER,
            previous_status=todo.status.value,
            new_status=target.value,
        )
        applied = await update_with_history(
            self._stores.conn,
            self._stores.history_store,
            lambda: self._stores.todo_store.update_status(todo_id, todo.status, target, now),
            [record],
        )
        if not applied:
            # 读取与更新之间状态被并发修改
            current = await self.get(todo_id, owner_id)
            raise InvalidTransitionError(
                todo_id, current.status.value, target.value, reason="status changed concurrently"
            )

        log.info(
            "todo_status_changed",
            todo_id=todo_id,
            owner_id=owner_id,
            from_status=todo.status.value,
            to_status=target.value,
        )
        return todo.model_copy(
            update={
                "status": target,
                "updated_at": now,
                "completed_at": now if target == TodoStatus.COMPLETED else todo.completed_at,
                "dismissed_at": now if target == TodoStatus.DISMISSED else todo.dismissed_at,
            }
        )
