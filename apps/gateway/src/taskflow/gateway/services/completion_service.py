"""AutoCompletionMatcher -- 后续事件确认动作已完成时自动关闭待办

匹配键：(owner_id, application_id) 或 (owner_id, client_name, document_type)，
并要求待办记录的 action_type 在事件的完成列表内。
已完成的待办不会再被匹配，重放同一事件是 no-op。
"""

import structlog
from taskflow.core.clock import Clock, utc_now
from taskflow.core.models import (
    ActorType,
    EntityType,
    HistoryAction,
    HistoryRecord,
    NotificationEvent,
    TodoStatus,
)
from taskflow.core.rules import CompletionCriteria, completion_criteria
from taskflow.core.store import StoreGroup
from taskflow.core.store.transaction import update_with_history
from taskflow.notify import Notifier

log = structlog.get_logger()


class AutoCompletionMatcher:
    """自动完成匹配器"""

    def __init__(self, store_group: StoreGroup, notifier: Notifier, clock: Clock = utc_now) -> None:
        self._stores = store_group
        self._notifier = notifier
        self._clock = clock

    async def match_event(self, event: NotificationEvent) -> list[str]:
        """按事件关闭匹配的待办

        Returns:
            本次被完成的 todo_id 列表
        """
        criteria = completion_criteria(event)
        if criteria is None:
            return []
        return await self.complete_matching(criteria)

    async def complete_matching(self, criteria: CompletionCriteria) -> list[str]:
        candidates = await self._stores.todo_store.find_completion_candidates(
            criteria.owner_id,
            criteria.action_types,
            application_id=criteria.application_id,
            client_name=criteria.client_name,
            document_type=criteria.document_type,
        )
        completed: list[str] = []
        for todo in candidates:
            now = self._clock()
            record = HistoryRecord.new(
                EntityType.TODO,
                todo.todo_id,
                todo.owner_id,
                HistoryAction.AUTO_COMPLETED,
                now,
                actor=ActorType.SYSTEM,
                previous_status=todo.status.value,
                new_status=TodoStatus.COMPLETED.value,
                note=criteria.reason,
                details={"source_event_id": criteria.source_event_id},
            )
            applied = await update_with_history(
                self._stores.conn,
                self._stores.history_store,
                lambda t=todo, ts=now: self._stores.todo_store.update_status(
                    t.todo_id, t.status, TodoStatus.COMPLETED, ts
                ),
                [record],
            )
            if applied:
                completed.append(todo.todo_id)

        if completed:
            log.info(
                "todos_auto_completed",
                owner_id=criteria.owner_id,
                count=len(completed),
                todo_ids=completed,
                reason=criteria.reason,
            )
            await self._notifier.log_audit_event(
                None,
                "todos_auto_completed",
                f"user:{criteria.owner_id}",
                {
                    "todo_ids": completed,
                    "reason": criteria.reason,
                    "source_event_id": criteria.source_event_id,
                },
            )
        return completed
