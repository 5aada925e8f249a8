"""ReminderDispatcher -- 决定今天给哪些到期跟进发提醒

流程（每条候选）：
1. 检查所有者通知偏好（email_enabled + email_follow_up_reminders），关闭则跳过
2. 写入当天的 reminder_sent 历史记录占位（唯一索引），冲突视为重复
3. 调用 Notifier 发送；失败保留占位并记录 reminder_failed（同一天至多发送一次）
"""

from datetime import datetime

import aiosqlite
import structlog
from taskflow.core.clock import ensure_utc
from taskflow.core.models import ActorType, EntityType, FollowUp, HistoryAction, HistoryRecord
from taskflow.core.store import StoreGroup
from taskflow.core.store.transaction import append_history_only
from taskflow.notify import DependencyError, Notifier

from .results import DispatchResult, StepError

log = structlog.get_logger()


class ReminderDispatcher:
    """提醒分发器"""

    def __init__(self, store_group: StoreGroup, notifier: Notifier) -> None:
        self._stores = store_group
        self._notifier = notifier

    async def dispatch(self, now: datetime) -> DispatchResult:
        now = ensure_utc(now)
        result = DispatchResult()
        candidates = await self._stores.follow_up_store.list_needing_reminders(now)
        result.candidate_count = len(candidates)

        for follow_up in candidates:
            try:
                await self._dispatch_one(follow_up, now, result)
            except aiosqlite.Error as e:
                result.failed_count += 1
                result.errors.append(
                    StepError(entity_id=follow_up.follow_up_id, code="STORE_ERROR", message=str(e))
                )
                log.error(
                    "reminder_dispatch_store_error",
                    follow_up_id=follow_up.follow_up_id,
                    error=str(e),
                )
            except Exception as e:
                result.failed_count += 1
                result.errors.append(
                    StepError(
                        entity_id=follow_up.follow_up_id,
                        code="INTERNAL_ERROR",
                        message=f"{type(e).__name__}: {e}",
                    )
                )
                log.exception("reminder_dispatch_crashed", follow_up_id=follow_up.follow_up_id)

        log.info(
            "reminders_dispatched",
            candidates=result.candidate_count,
            sent=result.sent_count,
            skipped=result.skipped_count,
            duplicates=result.duplicate_count,
            failed=result.failed_count,
        )
        return result

    async def _dispatch_one(
        self, follow_up: FollowUp, now: datetime, result: DispatchResult
    ) -> None:
        prefs = await self._stores.user_store.get_preferences(follow_up.owner_id)
        if not prefs.allows_follow_up_reminders():
            result.skipped_count += 1
            log.debug(
                "reminder_skipped_by_preferences",
                follow_up_id=follow_up.follow_up_id,
                owner_id=follow_up.owner_id,
            )
            return

        claim = HistoryRecord.new(
            EntityType.FOLLOW_UP,
            follow_up.follow_up_id,
            follow_up.owner_id,
            HistoryAction.REMINDER_SENT,
            now,
            actor=ActorType.SCHEDULER,
            details={"follow_up_number": follow_up.follow_up_number},
        )
        try:
            await append_history_only(self._stores.conn, self._stores.history_store, claim)
        except aiosqlite.IntegrityError:
            # 并发轮次已占用当天的提醒槽位
            result.duplicate_count += 1
            log.info("reminder_already_claimed", follow_up_id=follow_up.follow_up_id)
            return

        owner = await self._stores.user_store.get_user(follow_up.owner_id)
        recipient = owner.email if owner else None
        try:
            sent = await self._notifier.send_reminder_email(follow_up, recipient)
        except DependencyError as e:
            await self._record_failure(follow_up, now, result, "DEPENDENCY_ERROR", str(e))
            return

        if not sent:
            await self._record_failure(
                follow_up, now, result, "DELIVERY_REJECTED", "rejected by email relay"
            )
            return

        result.sent_count += 1
        result.sent_ids.append(follow_up.follow_up_id)
        log.info(
            "reminder_sent",
            follow_up_id=follow_up.follow_up_id,
            owner_id=follow_up.owner_id,
            follow_up_number=follow_up.follow_up_number,
        )

    async def _record_failure(
        self,
        follow_up: FollowUp,
        now: datetime,
        result: DispatchResult,
        code: str,
        message: str,
    ) -> None:
        await append_history_only(
            self._stores.conn,
            self._stores.history_store,
            HistoryRecord.new(
                EntityType.FOLLOW_UP,
                follow_up.follow_up_id,
                follow_up.owner_id,
                HistoryAction.REMINDER_FAILED,
                now,
                actor=ActorType.SCHEDULER,
                note=code,
                details={"error": message},
            ),
        )
        result.failed_count += 1
        result.errors.append(
            StepError(entity_id=follow_up.follow_up_id, code=code, message=message)
        )
        log.warning(
            "reminder_send_failed",
            follow_up_id=follow_up.follow_up_id,
            code=code,
            error=message,
        )
