"""EscalationScheduler -- 外部触发的无状态调度轮次

run_pass(now) 依次执行四个可独立重入的步骤：
1. 过期待办：pending 且超过截止时间 24h -> expired，并创建 2h 内到期的 urgent 替代待办
2. 自动升级：第 3 次跟进逾期超过提醒间隔且未升级 -> 升级给解析出的经理；
   所有者本人是经理时不升级，改为 no_response
3. 生成跟进：[now-7d-1h, now-7d+1h] 内的文档发送事件，(用户, 客户) 无近期跟进则创建
4. 分发提醒：委托 ReminderDispatcher

不持有定时器或后台任务，调用频率由外部决定；单条失败计入结果，不中断本步骤。
只有无法访问存储（候选查询失败）才向调用方抛出。
"""

import math
from datetime import datetime, timedelta

import aiosqlite
import structlog
from taskflow.core.clock import Clock, ensure_utc, fixed_clock, utc_now
from taskflow.core.config import (
    EXPIRY_GRACE,
    FOLLOW_UP_WINDOW,
    FOLLOW_UP_WINDOW_TOLERANCE,
    REMINDER_INTERVAL,
    URGENT_REPLACEMENT_DUE,
)
from taskflow.core.exceptions import ValidationError
from taskflow.core.models import (
    DOCUMENT_SENT_EVENT_TYPES,
    ActorType,
    EntityType,
    FollowUp,
    FollowUpStatus,
    HistoryAction,
    HistoryRecord,
    Todo,
    TodoPriority,
    TodoStatus,
    validate_transition,
)
from taskflow.core.rules import follow_up_from_event, should_generate_for
from taskflow.core.store import StoreGroup
from taskflow.core.store.transaction import update_with_history
from taskflow.notify import Notifier
from ulid import ULID

from .follow_up_service import FollowUpService
from .reminder_dispatcher import ReminderDispatcher
from .results import (
    DispatchResult,
    EscalateResult,
    ExpireResult,
    GenerateResult,
    PassResult,
    StepError,
)

log = structlog.get_logger()


def _internal_error(entity_id: str, error: Exception) -> StepError:
    """未预期的单条异常，计入结果而不中断本步骤"""
    return StepError(
        entity_id=entity_id,
        code="INTERNAL_ERROR",
        message=f"{type(error).__name__}: {error}",
    )


class EscalationScheduler:
    """调度器"""

    def __init__(
        self,
        store_group: StoreGroup,
        notifier: Notifier,
        clock: Clock = utc_now,
        default_manager_id: int | None = None,
        expiry_grace: timedelta = EXPIRY_GRACE,
        urgent_due: timedelta = URGENT_REPLACEMENT_DUE,
        reminder_interval: timedelta = REMINDER_INTERVAL,
        follow_up_window: timedelta = FOLLOW_UP_WINDOW,
        window_tolerance: timedelta = FOLLOW_UP_WINDOW_TOLERANCE,
    ) -> None:
        self._stores = store_group
        self._notifier = notifier
        self._clock = clock
        self._default_manager_id = default_manager_id
        self._expiry_grace = expiry_grace
        self._urgent_due = urgent_due
        self._reminder_interval = reminder_interval
        self._follow_up_window = follow_up_window
        self._window_tolerance = window_tolerance
        self._dispatcher = ReminderDispatcher(store_group, notifier)

    async def run_pass(self, now: datetime | None = None) -> PassResult:
        """执行完整轮次（步骤 1-4）"""
        now = self._now(now)
        result = await self.process_follow_ups(now)
        result.dispatch = await self.dispatch_reminders(now)
        log.info("scheduler_pass_completed", ran_at=now.isoformat(), errors=result.error_count)
        return result

    async def process_follow_ups(self, now: datetime | None = None) -> PassResult:
        """步骤 1-3"""
        now = self._now(now)
        return PassResult(
            ran_at=now,
            expire=await self.expire_stale_todos(now),
            escalate=await self.auto_escalate(now),
            generate=await self.generate_follow_ups(now),
        )

    async def dispatch_reminders(self, now: datetime | None = None) -> DispatchResult:
        """步骤 4"""
        return await self._dispatcher.dispatch(self._now(now))

    # ---- 步骤 1 ----

    async def expire_stale_todos(self, now: datetime) -> ExpireResult:
        now = ensure_utc(now)
        result = ExpireResult()
        stale = await self._stores.todo_store.list_stale_pending(now - self._expiry_grace)
        result.scanned_count = len(stale)

        for todo in stale:
            try:
                replacement_id = await self._expire_one(todo, now)
            except aiosqlite.Error as e:
                result.errors.append(
                    StepError(entity_id=todo.todo_id, code="STORE_ERROR", message=str(e))
                )
                log.error("todo_expire_failed", todo_id=todo.todo_id, error=str(e))
                continue
            except Exception as e:
                result.errors.append(_internal_error(todo.todo_id, e))
                log.exception("todo_expire_crashed", todo_id=todo.todo_id)
                continue
            if replacement_id is None:
                # 并发轮次或用户已修改状态
                continue
            result.expired_count += 1
            result.urgent_created_count += 1
            result.expired_ids.append(todo.todo_id)
            result.urgent_todo_ids.append(replacement_id)

        if result.expired_count:
            await self._notifier.log_audit_event(
                None,
                "todos_expired",
                "scheduler",
                {"todo_ids": result.expired_ids, "urgent_todo_ids": result.urgent_todo_ids},
            )
        return result

    async def _expire_one(self, todo: Todo, now: datetime) -> str | None:
        if not validate_transition(todo.status, TodoStatus.EXPIRED, actor=ActorType.SCHEDULER):
            return None
        hours_overdue = math.ceil((now - todo.due_date).total_seconds() / 3600)
        title = (
            f"URGENT: Follow up with {todo.client_name}"
            if todo.client_name
            else f"URGENT: {todo.title}"
        )
        replacement = Todo(
            todo_id=str(ULID()),
            owner_id=todo.owner_id,
            title=title[:255],
            description=(
                f"Task is {hours_overdue} hours overdue. Original task: \"{todo.title}\""
            ),
            category=todo.category,
            priority=TodoPriority.URGENT,
            status=TodoStatus.PENDING,
            due_date=now + self._urgent_due,
            auto_generated=True,
            source_event_id=todo.source_event_id,
            action_type=todo.action_type,
            action_data={
                **todo.action_data,
                "urgent_reminder": True,
                "original_todo_id": todo.todo_id,
                "hours_overdue": hours_overdue,
            },
            client_name=todo.client_name,
            document_type=todo.document_type,
            application_id=todo.application_id,
            created_at=now,
            updated_at=now,
        )
        records = [
            HistoryRecord.new(
                EntityType.TODO,
                todo.todo_id,
                todo.owner_id,
                HistoryAction.EXPIRED,
                now,
                actor=ActorType.SCHEDULER,
                previous_status=TodoStatus.PENDING.value,
                new_status=TodoStatus.EXPIRED.value,
                details={"hours_overdue": hours_overdue, "replacement_todo_id": replacement.todo_id},
            ),
            HistoryRecord.new(
                EntityType.TODO,
                replacement.todo_id,
                replacement.owner_id,
                HistoryAction.CREATED,
                now,
                actor=ActorType.SCHEDULER,
                new_status=TodoStatus.PENDING.value,
                details={"original_todo_id": todo.todo_id},
            ),
        ]
        applied = await update_with_history(
            self._stores.conn,
            self._stores.history_store,
            lambda: self._stores.todo_store.update_status(
                todo.todo_id, TodoStatus.PENDING, TodoStatus.EXPIRED, now
            ),
            records,
            follow_on=lambda: self._stores.todo_store.create_todo(replacement),
        )
        if not applied:
            return None

        log.info(
            "todo_expired",
            todo_id=todo.todo_id,
            owner_id=todo.owner_id,
            hours_overdue=hours_overdue,
            urgent_todo_id=replacement.todo_id,
        )
        return replacement.todo_id

    # ---- 步骤 2 ----

    async def auto_escalate(self, now: datetime) -> EscalateResult:
        now = ensure_utc(now)
        result = EscalateResult()
        candidates = await self._stores.follow_up_store.list_escalation_candidates(
            now - self._reminder_interval
        )
        result.scanned_count = len(candidates)
        service = self._follow_up_service(now)

        for follow_up in candidates:
            try:
                owner = await self._stores.user_store.get_user(follow_up.owner_id)
                if owner is not None and owner.is_manager:
                    # 经理本人的跟进不再向上升级，直接标记为无回复
                    if await self._close_manager_owned(follow_up, now):
                        result.closed_no_response_count += 1
                        result.closed_ids.append(follow_up.follow_up_id)
                    continue
                manager = await service.managers.resolve(follow_up.owner_id)
                if manager is None:
                    result.errors.append(
                        StepError(
                            entity_id=follow_up.follow_up_id,
                            code="NO_MANAGER",
                            message="no active manager available for escalation",
                        )
                    )
                    log.warning(
                        "escalation_manager_unresolved",
                        follow_up_id=follow_up.follow_up_id,
                        owner_id=follow_up.owner_id,
                    )
                    continue
                outcome = await service.escalate(follow_up, manager, ActorType.SCHEDULER)
            except aiosqlite.Error as e:
                result.errors.append(
                    StepError(entity_id=follow_up.follow_up_id, code="STORE_ERROR", message=str(e))
                )
                log.error("auto_escalation_failed", follow_up_id=follow_up.follow_up_id, error=str(e))
                continue
            except Exception as e:
                result.errors.append(_internal_error(follow_up.follow_up_id, e))
                log.exception("auto_escalation_crashed", follow_up_id=follow_up.follow_up_id)
                continue

            if not outcome.applied:
                continue
            result.escalated_count += 1
            result.escalated_ids.append(follow_up.follow_up_id)
            if outcome.notify_error is not None:
                result.errors.append(
                    StepError(
                        entity_id=follow_up.follow_up_id,
                        code="DEPENDENCY_ERROR",
                        message=outcome.notify_error,
                    )
                )

        if result.escalated_count:
            await self._notifier.log_audit_event(
                None,
                "follow_ups_auto_escalated",
                "scheduler",
                {"follow_up_ids": result.escalated_ids},
            )
        return result

    async def _close_manager_owned(self, follow_up: FollowUp, now: datetime) -> bool:
        record = HistoryRecord.new(
            EntityType.FOLLOW_UP,
            follow_up.follow_up_id,
            follow_up.owner_id,
            HistoryAction.MARKED_NO_RESPONSE,
            now,
            actor=ActorType.SCHEDULER,
            previous_status=FollowUpStatus.PENDING.value,
            new_status=FollowUpStatus.NO_RESPONSE.value,
            note="owner is a manager",
        )
        applied = await update_with_history(
            self._stores.conn,
            self._stores.history_store,
            lambda: self._stores.follow_up_store.close(
                follow_up.follow_up_id, FollowUpStatus.NO_RESPONSE, None, now
            ),
            [record],
        )
        if applied:
            log.info(
                "manager_follow_up_closed",
                follow_up_id=follow_up.follow_up_id,
                owner_id=follow_up.owner_id,
            )
        return applied

    # ---- 步骤 3 ----

    async def generate_follow_ups(self, now: datetime) -> GenerateResult:
        now = ensure_utc(now)
        result = GenerateResult()
        center = now - self._follow_up_window
        window_start = center - self._window_tolerance
        window_end = center + self._window_tolerance
        events = await self._stores.event_store.list_events_between(
            DOCUMENT_SENT_EVENT_TYPES, window_start, window_end
        )
        result.scanned_count = len(events)
        existing_since = window_start - timedelta(days=1)
        service = self._follow_up_service(now)

        for event in events:
            try:
                if not should_generate_for(event):
                    result.skipped_count += 1
                    continue
                fu_input = follow_up_from_event(event)
                if await self._stores.follow_up_store.exists_for_client_since(
                    fu_input.owner_id, fu_input.client_name, existing_since
                ):
                    result.skipped_count += 1
                    continue
                follow_up = await service.create(fu_input, actor=ActorType.SCHEDULER)
            except ValidationError as e:
                result.errors.append(
                    StepError(entity_id=event.event_id, code=e.code, message=e.message)
                )
                log.warning("follow_up_generation_invalid", event_id=event.event_id, error=e.message)
                continue
            except aiosqlite.Error as e:
                result.errors.append(
                    StepError(entity_id=event.event_id, code="STORE_ERROR", message=str(e))
                )
                log.error("follow_up_generation_failed", event_id=event.event_id, error=str(e))
                continue
            except Exception as e:
                result.errors.append(_internal_error(event.event_id, e))
                log.exception("follow_up_generation_crashed", event_id=event.event_id)
                continue

            result.created_count += 1
            result.follow_up_ids.append(follow_up.follow_up_id)
            if follow_up.client_name not in result.clients_scheduled:
                result.clients_scheduled.append(follow_up.client_name)

        log.info(
            "follow_ups_generated",
            scanned=result.scanned_count,
            created=result.created_count,
            skipped=result.skipped_count,
        )
        return result

    def _now(self, now: datetime | None) -> datetime:
        """未指定时取注入时钟；naive datetime 按 UTC 解释"""
        return ensure_utc(now or self._clock())

    def _follow_up_service(self, now: datetime) -> FollowUpService:
        """绑定到本轮时刻的 FollowUpService，保证同一轮内时间一致"""
        return FollowUpService(
            self._stores,
            self._notifier,
            clock=fixed_clock(now),
            default_manager_id=self._default_manager_id,
            follow_up_window=self._follow_up_window,
            reminder_interval=self._reminder_interval,
        )
