"""FollowUpService -- 客户跟进业务逻辑

状态机：pending -> completed / no_response（终态）。
follow_up_number 只增不减，上限 3；升级标记与状态正交。
通知失败（提醒、升级通知）不回滚已提交的状态变更，只记录 reminder_failed。
"""

from datetime import datetime, timedelta
from typing import Any

import aiosqlite
import structlog
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError
from taskflow.core.clock import Clock, ensure_utc, utc_now
from taskflow.core.config import FOLLOW_UP_WINDOW, MAX_FOLLOW_UP_NUMBER, REMINDER_INTERVAL
from taskflow.core.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from taskflow.core.models import (
    FOLLOW_UP_TERMINAL_STATES,
    ActorType,
    CompletionReason,
    DirectoryUser,
    EntityType,
    FollowUp,
    FollowUpInput,
    FollowUpStats,
    FollowUpStatus,
    HistoryAction,
    HistoryRecord,
)
from taskflow.core.store import StoreGroup
from taskflow.core.store.transaction import (
    append_history_only,
    create_with_history,
    update_with_history,
)
from taskflow.notify import DependencyError, Notifier, OutboundNotification, ordinal
from ulid import ULID

from .manager_resolver import ManagerResolver

log = structlog.get_logger()

# update_status 允许的目标状态
_CLOSE_ACTIONS = {
    FollowUpStatus.COMPLETED: HistoryAction.COMPLETED,
    FollowUpStatus.NO_RESPONSE: HistoryAction.MARKED_NO_RESPONSE,
}


class EscalationOutcome(BaseModel):
    """一次升级的结果"""

    applied: bool
    manager_id: int | None = None
    notify_error: str | None = None


class FollowUpService:
    """跟进业务服务"""

    def __init__(
        self,
        store_group: StoreGroup,
        notifier: Notifier,
        clock: Clock = utc_now,
        default_manager_id: int | None = None,
        follow_up_window: timedelta = FOLLOW_UP_WINDOW,
        reminder_interval: timedelta = REMINDER_INTERVAL,
    ) -> None:
        self._stores = store_group
        self._notifier = notifier
        self._clock = clock
        self._follow_up_window = follow_up_window
        self._reminder_interval = reminder_interval
        self.managers = ManagerResolver(store_group.user_store, default_manager_id)

    # ---- 创建与查询 ----

    async def create(
        self,
        data: FollowUpInput | dict[str, Any],
        actor: ActorType = ActorType.USER,
    ) -> FollowUp:
        """创建跟进：follow_up_number=1，due_date = sent_date + 跟进窗口

        Raises:
            ValidationError: 缺少客户名称/邮件主题等
        """
        if isinstance(data, FollowUpInput):
            fu_input = data
        else:
            try:
                fu_input = FollowUpInput.model_validate(data)
            except PydanticValidationError as e:
                raise ValidationError.from_pydantic(e, "invalid follow-up") from e

        now = self._clock()
        sent_date = ensure_utc(fu_input.sent_date) if fu_input.sent_date else now
        follow_up = FollowUp(
            follow_up_id=str(ULID()),
            owner_id=fu_input.owner_id,
            client_name=fu_input.client_name,
            client_email=fu_input.client_email,
            document_type=fu_input.document_type,
            email_subject=fu_input.email_subject,
            original_email_id=fu_input.original_email_id,
            follow_up_number=1,
            status=FollowUpStatus.PENDING,
            sent_date=sent_date,
            due_date=sent_date + self._follow_up_window,
            created_at=now,
            updated_at=now,
            source_event_id=fu_input.source_event_id,
        )
        record = HistoryRecord.new(
            EntityType.FOLLOW_UP,
            follow_up.follow_up_id,
            follow_up.owner_id,
            HistoryAction.CREATED,
            now,
            actor=actor,
            new_status=FollowUpStatus.PENDING.value,
            details={"source_event_id": follow_up.source_event_id},
        )
        await create_with_history(
            self._stores.conn,
            self._stores.history_store,
            lambda: self._stores.follow_up_store.create_follow_up(follow_up),
            [record],
        )

        log.info(
            "follow_up_created",
            follow_up_id=follow_up.follow_up_id,
            owner_id=follow_up.owner_id,
            due_date=follow_up.due_date.isoformat(),
        )
        await self._notifier.log_audit_event(
            follow_up.owner_id if actor == ActorType.USER else None,
            "follow_up_created",
            f"follow_up:{follow_up.follow_up_id}",
            {"client_name": follow_up.client_name},
        )
        return follow_up

    async def get(self, follow_up_id: str, owner_id: int) -> FollowUp:
        """Raises: NotFoundError 不存在或不属于 owner_id"""
        follow_up = await self._stores.follow_up_store.get_follow_up(follow_up_id, owner_id=owner_id)
        if follow_up is None:
            raise NotFoundError("follow_up", follow_up_id)
        return follow_up

    async def get_by_user(
        self,
        owner_id: int,
        status: FollowUpStatus | None = None,
        follow_up_number: int | None = None,
        client_name: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[FollowUp], int]:
        return await self._stores.follow_up_store.list_follow_ups(
            owner_id,
            status=status,
            follow_up_number=follow_up_number,
            client_name=client_name,
            limit=limit,
            offset=offset,
        )

    async def get_stats(self, owner_id: int) -> FollowUpStats:
        return await self._stores.follow_up_store.get_stats(owner_id, self._clock())

    async def needing_reminders(self, now: datetime | None = None) -> list[FollowUp]:
        """pending、已到期、当天尚未提醒的跟进"""
        return await self._stores.follow_up_store.list_needing_reminders(now or self._clock())

    # ---- 状态变更 ----

    async def update_status(
        self,
        follow_up_id: str,
        owner_id: int,
        status: FollowUpStatus | str,
        reason: CompletionReason | str | None = None,
    ) -> FollowUp:
        """关闭跟进（completed / no_response），终态后不再接受变更

        Raises:
            ValidationError: 目标状态或完成原因非法
            NotFoundError: 不存在或不属于 owner_id
            InvalidTransitionError: 已是终态
        """
        try:
            target = FollowUpStatus(status)
        except ValueError as e:
            raise ValidationError(f"unknown follow-up status: {status}", field="status") from e
        if target not in _CLOSE_ACTIONS:
            raise ValidationError(
                "follow-up status must be completed or no_response", field="status"
            )

        completion_reason: CompletionReason | None = None
        if target == FollowUpStatus.COMPLETED:
            try:
                completion_reason = CompletionReason(reason or CompletionReason.CLIENT_RESPONDED)
            except ValueError as e:
                raise ValidationError(f"unknown completion reason: {reason}", field="reason") from e

        follow_up = await self.get(follow_up_id, owner_id)
        self._require_pending(follow_up, target.value)

        now = self._clock()
        record = HistoryRecord.new(
            EntityType.FOLLOW_UP,
            follow_up_id,
            owner_id,
            _CLOSE_ACTIONS[target],
            now,
            actor=ActorType.USER,
            previous_status=follow_up.status.value,
            new_status=target.value,
            note=completion_reason.value if completion_reason else "",
        )
        applied = await update_with_history(
            self._stores.conn,
            self._stores.history_store,
            lambda: self._stores.follow_up_store.close(follow_up_id, target, completion_reason, now),
            [record],
        )
        if not applied:
            current = await self.get(follow_up_id, owner_id)
            raise InvalidTransitionError(
                follow_up_id, current.status.value, target.value, reason="follow-up already closed"
            )

        log.info(
            "follow_up_closed",
            follow_up_id=follow_up_id,
            owner_id=owner_id,
            status=target.value,
            reason=completion_reason.value if completion_reason else None,
        )
        await self._notifier.log_audit_event(
            owner_id,
            "follow_up_status_changed",
            f"follow_up:{follow_up_id}",
            {"status": target.value, "reason": completion_reason.value if completion_reason else None},
        )
        return await self.get(follow_up_id, owner_id)

    async def snooze(self, follow_up_id: str, owner_id: int) -> FollowUp:
        """进入下一次跟进：number + 1，due_date = now + 提醒间隔，并立即发送提醒

        Raises:
            NotFoundError: 不存在或不属于 owner_id
            InvalidTransitionError: 已是终态或已到第 3 次（状态不变）
        """
        follow_up = await self.get(follow_up_id, owner_id)
        self._require_pending(follow_up, "snoozed")
        if follow_up.follow_up_number >= MAX_FOLLOW_UP_NUMBER:
            raise InvalidTransitionError(
                follow_up_id,
                f"follow_up_{follow_up.follow_up_number}",
                "snoozed",
                reason=f"maximum of {MAX_FOLLOW_UP_NUMBER} follow-ups reached",
            )

        now = self._clock()
        new_due = now + self._reminder_interval
        number = follow_up.follow_up_number
        record = HistoryRecord.new(
            EntityType.FOLLOW_UP,
            follow_up_id,
            owner_id,
            HistoryAction.SNOOZED,
            now,
            actor=ActorType.USER,
            details={"from_number": number, "to_number": number + 1, "due_date": new_due.isoformat()},
        )
        applied = await update_with_history(
            self._stores.conn,
            self._stores.history_store,
            lambda: self._stores.follow_up_store.advance(follow_up_id, number, new_due, now),
            [record],
        )
        if not applied:
            current = await self.get(follow_up_id, owner_id)
            raise InvalidTransitionError(
                follow_up_id,
                f"follow_up_{current.follow_up_number}",
                "snoozed",
                reason="follow-up changed concurrently",
            )

        log.info(
            "follow_up_snoozed",
            follow_up_id=follow_up_id,
            owner_id=owner_id,
            follow_up_number=number + 1,
        )
        await self._notifier.log_audit_event(
            owner_id,
            "follow_up_snoozed",
            f"follow_up:{follow_up_id}",
            {"follow_up_number": number + 1},
        )
        updated = await self.get(follow_up_id, owner_id)
        await self.send_manual_reminder(updated, trigger="snooze")
        return updated

    async def resend(self, follow_up_id: str, owner_id: int) -> bool:
        """重新发送提醒，不修改跟进状态

        Returns:
            True 如果邮件被接受

        Raises:
            NotFoundError: 不存在或不属于 owner_id
            InvalidTransitionError: 已是终态
        """
        follow_up = await self.get(follow_up_id, owner_id)
        self._require_pending(follow_up, "reminder_resent")
        sent = await self.send_manual_reminder(follow_up, trigger="resend")
        await self._notifier.log_audit_event(
            owner_id,
            "follow_up_reminder_resent",
            f"follow_up:{follow_up_id}",
            {"sent": sent},
        )
        return sent

    async def manual_escalate(
        self,
        follow_up_id: str,
        owner_id: int,
        manager_id: int | None = None,
        manager_name: str | None = None,
    ) -> FollowUp:
        """手动升级给经理，状态保持不变

        manager_id 为空时按解析顺序自动选择经理。

        Raises:
            NotFoundError: 不存在或不属于 owner_id
            InvalidTransitionError: 已是终态
            ValidationError: 指定的经理不存在/不在职，或没有可用经理
        """
        follow_up = await self.get(follow_up_id, owner_id)
        self._require_pending(follow_up, "escalated")

        if manager_id is not None:
            manager = await self.managers.require_active_manager(manager_id)
            if manager is None:
                raise ValidationError(
                    f"user {manager_id} is not an active manager", field="manager_id"
                )
        else:
            manager = await self.managers.resolve(owner_id)
            if manager is None:
                raise ValidationError("no active manager available", field="manager_id")

        outcome = await self.escalate(follow_up, manager, ActorType.USER, manager_name=manager_name)
        if not outcome.applied:
            current = await self.get(follow_up_id, owner_id)
            raise InvalidTransitionError(
                follow_up_id, current.status.value, "escalated", reason="follow-up already closed"
            )
        await self._notifier.log_audit_event(
            owner_id,
            "follow_up_escalated",
            f"follow_up:{follow_up_id}",
            {"manager_id": manager.user_id},
        )
        return await self.get(follow_up_id, owner_id)

    async def escalate(
        self,
        follow_up: FollowUp,
        manager: DirectoryUser,
        actor: ActorType,
        manager_name: str | None = None,
    ) -> EscalationOutcome:
        """设置升级标记并通知经理

        自动升级（actor=SCHEDULER）只对尚未升级的跟进生效。
        通知失败不回滚升级，错误写入 outcome.notify_error。

        Returns:
            EscalationOutcome；跟进已关闭或已被其他调度轮次升级时 applied=False
        """
        now = self._clock()
        automatic = actor == ActorType.SCHEDULER
        record = HistoryRecord.new(
            EntityType.FOLLOW_UP,
            follow_up.follow_up_id,
            follow_up.owner_id,
            HistoryAction.AUTO_ESCALATED if automatic else HistoryAction.ESCALATED,
            now,
            actor=actor,
            details={
                "manager_id": manager.user_id,
                "manager_name": manager_name or manager.full_name,
                "follow_up_number": follow_up.follow_up_number,
            },
        )
        applied = await update_with_history(
            self._stores.conn,
            self._stores.history_store,
            lambda: self._stores.follow_up_store.mark_escalated(
                follow_up.follow_up_id,
                manager.user_id,
                now,
                only_if_not_escalated=automatic,
            ),
            [record],
        )
        if not applied:
            return EscalationOutcome(applied=False, manager_id=manager.user_id)

        log.info(
            "follow_up_escalated",
            follow_up_id=follow_up.follow_up_id,
            owner_id=follow_up.owner_id,
            manager_id=manager.user_id,
            automatic=automatic,
        )
        notify_error = await self._notify_manager(follow_up, manager, automatic)
        return EscalationOutcome(applied=True, manager_id=manager.user_id, notify_error=notify_error)

    # ---- 通知 ----

    async def send_manual_reminder(self, follow_up: FollowUp, trigger: str) -> bool:
        """用户触发的提醒（snooze/resend），记录 reminder_resent 或 reminder_failed

        不占用当天 reminder_sent 唯一槽位。
        """
        recipient = await self._owner_email(follow_up.owner_id)
        error: str | None = None
        try:
            sent = await self._notifier.send_reminder_email(follow_up, recipient)
            if not sent:
                error = "rejected by email relay"
        except DependencyError as e:
            sent = False
            error = str(e)
            log.warning(
                "manual_reminder_failed",
                follow_up_id=follow_up.follow_up_id,
                trigger=trigger,
                error=error,
            )

        await self._record_notification(
            follow_up,
            HistoryAction.REMINDER_RESENT if sent else HistoryAction.REMINDER_FAILED,
            ActorType.USER,
            note=trigger,
            details={"follow_up_number": follow_up.follow_up_number, "error": error},
        )
        return sent

    async def _notify_manager(
        self, follow_up: FollowUp, manager: DirectoryUser, automatic: bool
    ) -> str | None:
        """通知经理，返回失败原因（成功为 None）"""
        owner = await self._stores.user_store.get_user(follow_up.owner_id)
        owner_name = owner.full_name if owner and owner.full_name else f"user {follow_up.owner_id}"
        reason = (
            f"the {ordinal(follow_up.follow_up_number)} follow-up is overdue"
            if automatic
            else f"{owner_name} escalated it manually"
        )
        notification = OutboundNotification(
            recipient_user_id=manager.user_id,
            recipient_email=manager.email,
            kind="follow_up_escalated",
            title=f"Follow-up escalated: {follow_up.client_name}",
            message=(
                f"The follow-up with {follow_up.client_name} owned by {owner_name} "
                f"was escalated to you because {reason}."
            ),
            metadata={
                "follow_up_id": follow_up.follow_up_id,
                "owner_id": follow_up.owner_id,
                "automatic": automatic,
            },
        )
        error: str | None = None
        try:
            if not await self._notifier.queue_email(notification):
                error = "rejected by email relay"
        except DependencyError as e:
            error = str(e)

        if error is not None:
            log.warning(
                "escalation_notification_failed",
                follow_up_id=follow_up.follow_up_id,
                manager_id=manager.user_id,
                error=error,
            )
            await self._record_notification(
                follow_up,
                HistoryAction.REMINDER_FAILED,
                ActorType.SCHEDULER if automatic else ActorType.USER,
                note="escalation",
                details={"manager_id": manager.user_id, "error": error},
            )
        return error

    async def _record_notification(
        self,
        follow_up: FollowUp,
        action: HistoryAction,
        actor: ActorType,
        note: str = "",
        details: dict[str, Any] | None = None,
    ) -> None:
        record = HistoryRecord.new(
            EntityType.FOLLOW_UP,
            follow_up.follow_up_id,
            follow_up.owner_id,
            action,
            self._clock(),
            actor=actor,
            note=note,
            details=details or {},
        )
        try:
            await append_history_only(self._stores.conn, self._stores.history_store, record)
        except aiosqlite.Error as e:
            log.error(
                "notification_history_write_failed",
                follow_up_id=follow_up.follow_up_id,
                action=action.value,
                error=str(e),
            )

    async def _owner_email(self, owner_id: int) -> str | None:
        owner = await self._stores.user_store.get_user(owner_id)
        return owner.email if owner else None

    @staticmethod
    def _require_pending(follow_up: FollowUp, requested: str) -> None:
        if follow_up.status in FOLLOW_UP_TERMINAL_STATES:
            raise InvalidTransitionError(
                follow_up.follow_up_id,
                follow_up.status.value,
                requested,
                reason="follow-up is closed",
            )
