"""SQLite Store 单元测试

测试内容：
1. TodoStore：归属隔离、排序与筛选、条件更新、统计、过期扫描、完成候选
2. FollowUpStore：关闭、推进、升级标记、提醒候选、升级候选、客户去重、统计
3. HistoryStore：reminder_sent 同日唯一
4. EventStore：幂等键、时间窗查询
5. UserStore：通知偏好默认值、在职经理
"""

from datetime import datetime, timedelta

import aiosqlite
import pytest
from taskflow.core.models import (
    CompletionReason,
    DirectoryUser,
    EntityType,
    FollowUp,
    FollowUpStatus,
    HistoryAction,
    HistoryRecord,
    NotificationEvent,
    NotificationPreferences,
    Todo,
    TodoCategory,
    TodoFilters,
    TodoPriority,
    TodoStatus,
)
from taskflow.core.store import StoreGroup

WINDOW = timedelta(hours=24)


async def _add_todo(store_group: StoreGroup, now: datetime, todo_id: str, **overrides) -> Todo:
    data = {
        "todo_id": todo_id,
        "owner_id": 1,
        "title": f"todo {todo_id}",
        "category": TodoCategory.TO_CHECK,
        "created_at": now,
        "updated_at": now,
    }
    data.update(overrides)
    todo = Todo(**data)
    await store_group.todo_store.create_todo(todo)
    await store_group.conn.commit()
    return todo


async def _add_follow_up(
    store_group: StoreGroup, now: datetime, follow_up_id: str, **overrides
) -> FollowUp:
    data = {
        "follow_up_id": follow_up_id,
        "owner_id": 1,
        "client_name": "Acme",
        "email_subject": "Contract",
        "sent_date": now - timedelta(days=7),
        "due_date": now,
        "created_at": now - timedelta(days=7),
        "updated_at": now - timedelta(days=7),
    }
    data.update(overrides)
    follow_up = FollowUp(**data)
    await store_group.follow_up_store.create_follow_up(follow_up)
    await store_group.conn.commit()
    return follow_up


class TestTodoStore:
    """待办存储"""

    async def test_get_scoped_by_owner(self, store_group: StoreGroup, now: datetime):
        await _add_todo(store_group, now, "T1", owner_id=1, action_data={"k": [1, 2]})
        todo = await store_group.todo_store.get_todo("T1", owner_id=1)
        assert todo is not None
        assert todo.action_data == {"k": [1, 2]}
        assert await store_group.todo_store.get_todo("T1", owner_id=2) is None

    async def test_list_ordering(self, store_group: StoreGroup, now: datetime):
        """urgent 优先，其次截止时间升序，无截止时间排最后"""
        await _add_todo(store_group, now, "T1", due_date=now + timedelta(hours=5))
        await _add_todo(store_group, now, "T2")
        await _add_todo(store_group, now, "T3", due_date=now + timedelta(hours=1))
        await _add_todo(
            store_group, now, "T4", due_date=now + timedelta(days=3), priority=TodoPriority.URGENT
        )
        todos, total = await store_group.todo_store.list_todos(
            TodoFilters(owner_id=1), now, WINDOW
        )
        assert total == 4
        assert [t.todo_id for t in todos] == ["T4", "T3", "T1", "T2"]

    async def test_list_filters(self, store_group: StoreGroup, now: datetime):
        await _add_todo(store_group, now, "T1", due_date=now - timedelta(hours=1))
        await _add_todo(store_group, now, "T2", due_date=now + timedelta(hours=2))
        await _add_todo(store_group, now, "T3", due_date=now + timedelta(days=2),
                        category=TodoCategory.TO_SEND)
        await _add_todo(store_group, now, "T4", due_date=now - timedelta(hours=1),
                        status=TodoStatus.COMPLETED)

        store = store_group.todo_store
        overdue, _ = await store.list_todos(TodoFilters(owner_id=1, overdue_only=True), now, WINDOW)
        assert [t.todo_id for t in overdue] == ["T1"]

        due_soon, _ = await store.list_todos(
            TodoFilters(owner_id=1, due_soon_only=True), now, WINDOW
        )
        assert [t.todo_id for t in due_soon] == ["T2"]

        to_send, _ = await store.list_todos(
            TodoFilters(owner_id=1, categories=[TodoCategory.TO_SEND]), now, WINDOW
        )
        assert [t.todo_id for t in to_send] == ["T3"]

        completed, _ = await store.list_todos(
            TodoFilters(owner_id=1, statuses=[TodoStatus.COMPLETED]), now, WINDOW
        )
        assert [t.todo_id for t in completed] == ["T4"]

    async def test_pagination(self, store_group: StoreGroup, now: datetime):
        for i in range(5):
            await _add_todo(store_group, now, f"T{i}", due_date=now + timedelta(hours=i))
        page, total = await store_group.todo_store.list_todos(
            TodoFilters(owner_id=1, limit=2, offset=2), now, WINDOW
        )
        assert total == 5
        assert [t.todo_id for t in page] == ["T2", "T3"]

    async def test_conditional_update(self, store_group: StoreGroup, now: datetime):
        await _add_todo(store_group, now, "T1")
        store = store_group.todo_store
        later = now + timedelta(minutes=5)
        assert await store.update_status("T1", TodoStatus.PENDING, TodoStatus.COMPLETED, later)
        await store_group.conn.commit()
        # 状态已变化，第二次条件更新不命中
        assert not await store.update_status("T1", TodoStatus.PENDING, TodoStatus.DISMISSED, later)
        todo = await store.get_todo("T1")
        assert todo.status == TodoStatus.COMPLETED
        assert todo.completed_at == later
        assert todo.dismissed_at is None

    async def test_stats(self, store_group: StoreGroup, now: datetime):
        await _add_todo(store_group, now, "T1", due_date=now - timedelta(hours=1))
        await _add_todo(store_group, now, "T2", due_date=now + timedelta(hours=3),
                        status=TodoStatus.IN_PROGRESS)
        await _add_todo(store_group, now, "T3", status=TodoStatus.COMPLETED,
                        category=TodoCategory.TO_SEND)
        await _add_todo(store_group, now, "T4", owner_id=2)

        stats = await store_group.todo_store.get_stats(1, now, WINDOW)
        assert stats.total_todos == 3
        assert stats.pending_count == 1
        assert stats.in_progress_count == 1
        assert stats.completed_count == 1
        assert stats.overdue_count == 1
        assert stats.due_soon_count == 1
        assert stats.by_category == {"to_check": 2}

    async def test_stats_empty(self, store_group: StoreGroup, now: datetime):
        stats = await store_group.todo_store.get_stats(99, now, WINDOW)
        assert stats.total_todos == 0
        assert stats.overdue_count == 0

    async def test_list_stale_pending(self, store_group: StoreGroup, now: datetime):
        await _add_todo(store_group, now, "T1", due_date=now - timedelta(hours=25))
        await _add_todo(store_group, now, "T2", due_date=now - timedelta(hours=23))
        await _add_todo(store_group, now, "T3", due_date=now - timedelta(hours=30),
                        status=TodoStatus.IN_PROGRESS)
        await _add_todo(store_group, now, "T4", owner_id=5, due_date=now - timedelta(days=3))

        stale = await store_group.todo_store.list_stale_pending(now - timedelta(hours=24))
        assert [t.todo_id for t in stale] == ["T4", "T1"]

    async def test_completion_candidates_by_application(
        self, store_group: StoreGroup, now: datetime
    ):
        await _add_todo(store_group, now, "T1", action_type="review_document",
                        action_data={"application_id": "X"})
        await _add_todo(store_group, now, "T2", action_type="review_document", application_id="X")
        await _add_todo(store_group, now, "T3", action_type="send_document", application_id="X")
        await _add_todo(store_group, now, "T4", action_type="review_document", application_id="Y")
        await _add_todo(store_group, now, "T5", action_type="review_document", application_id="X",
                        status=TodoStatus.DISMISSED)

        found = await store_group.todo_store.find_completion_candidates(
            1, ["review_document"], application_id="X"
        )
        assert {t.todo_id for t in found} == {"T1", "T2"}

    async def test_completion_candidates_by_client_document(
        self, store_group: StoreGroup, now: datetime
    ):
        await _add_todo(store_group, now, "T1", action_type="send_document",
                        client_name="ACME", document_type="NDA")
        await _add_todo(store_group, now, "T2", action_type="send_document",
                        client_name="Acme", document_type="contract")
        found = await store_group.todo_store.find_completion_candidates(
            1, ["send_document"], client_name="acme", document_type="nda"
        )
        assert [t.todo_id for t in found] == ["T1"]

    async def test_completion_candidates_need_key(self, store_group: StoreGroup, now: datetime):
        await _add_todo(store_group, now, "T1", action_type="send_document")
        found = await store_group.todo_store.find_completion_candidates(1, ["send_document"])
        assert found == []


class TestFollowUpStore:
    """跟进存储"""

    async def test_close_only_from_pending(self, store_group: StoreGroup, now: datetime):
        await _add_follow_up(store_group, now, "F1")
        store = store_group.follow_up_store
        assert await store.close("F1", FollowUpStatus.COMPLETED, CompletionReason.SIGNED, now)
        await store_group.conn.commit()
        assert not await store.close("F1", FollowUpStatus.NO_RESPONSE, None, now)

        fu = await store.get_follow_up("F1")
        assert fu.status == FollowUpStatus.COMPLETED
        assert fu.completed_reason == CompletionReason.SIGNED
        assert fu.completed_at == now

    async def test_advance_is_monotonic_and_capped(self, store_group: StoreGroup, now: datetime):
        await _add_follow_up(store_group, now, "F1")
        store = store_group.follow_up_store
        due = now + timedelta(days=7)
        assert await store.advance("F1", 1, due, now)
        # 期望序号已过期
        assert not await store.advance("F1", 1, due, now)
        assert await store.advance("F1", 2, due, now)
        assert not await store.advance("F1", 3, due, now)
        await store_group.conn.commit()

        fu = await store.get_follow_up("F1")
        assert fu.follow_up_number == 3
        assert fu.due_date == due

    async def test_mark_escalated_keeps_status(self, store_group: StoreGroup, now: datetime):
        await _add_follow_up(store_group, now, "F1", follow_up_number=3)
        store = store_group.follow_up_store
        assert await store.mark_escalated("F1", 9, now, only_if_not_escalated=True)
        assert not await store.mark_escalated("F1", 9, now, only_if_not_escalated=True)
        # 手动升级允许重复
        assert await store.mark_escalated("F1", 10, now)
        await store_group.conn.commit()

        fu = await store.get_follow_up("F1")
        assert fu.status == FollowUpStatus.PENDING
        assert fu.escalated_to_manager is True
        assert fu.manager_id == 10
        assert fu.escalation_date == now

    async def test_needing_reminders_excludes_reminded_today(
        self, store_group: StoreGroup, now: datetime
    ):
        await _add_follow_up(store_group, now, "F1", due_date=now - timedelta(hours=1))
        await _add_follow_up(store_group, now, "F2", due_date=now - timedelta(hours=2))
        await _add_follow_up(store_group, now, "F3", due_date=now + timedelta(hours=1))
        await _add_follow_up(store_group, now, "F4", due_date=now - timedelta(hours=1),
                             status=FollowUpStatus.COMPLETED)
        await store_group.history_store.append(
            HistoryRecord.new(EntityType.FOLLOW_UP, "F2", 1, HistoryAction.REMINDER_RESENT, now)
        )
        # 昨天的提醒不影响今天
        await store_group.history_store.append(
            HistoryRecord.new(
                EntityType.FOLLOW_UP, "F1", 1, HistoryAction.REMINDER_SENT, now - timedelta(days=1)
            )
        )
        await store_group.conn.commit()

        found = await store_group.follow_up_store.list_needing_reminders(now)
        assert [f.follow_up_id for f in found] == ["F1"]

    async def test_escalation_candidates(self, store_group: StoreGroup, now: datetime):
        cutoff = now - timedelta(days=7)
        await _add_follow_up(store_group, now, "F1", follow_up_number=3,
                             due_date=cutoff - timedelta(minutes=1))
        await _add_follow_up(store_group, now, "F2", follow_up_number=3, due_date=cutoff)
        await _add_follow_up(store_group, now, "F3", follow_up_number=2,
                             due_date=cutoff - timedelta(days=1))
        await _add_follow_up(store_group, now, "F4", follow_up_number=3,
                             due_date=cutoff - timedelta(days=1), escalated_to_manager=True)

        found = await store_group.follow_up_store.list_escalation_candidates(cutoff)
        assert [f.follow_up_id for f in found] == ["F1"]

    async def test_exists_for_client_since(self, store_group: StoreGroup, now: datetime):
        await _add_follow_up(store_group, now, "F1", client_name="Acme Corp",
                             created_at=now - timedelta(days=3))
        store = store_group.follow_up_store
        assert await store.exists_for_client_since(1, "acme corp", now - timedelta(days=5))
        assert not await store.exists_for_client_since(1, "Acme Corp", now - timedelta(days=1))
        assert not await store.exists_for_client_since(2, "Acme Corp", now - timedelta(days=5))

    async def test_list_filters_and_order(self, store_group: StoreGroup, now: datetime):
        await _add_follow_up(store_group, now, "F1", status=FollowUpStatus.COMPLETED,
                             due_date=now - timedelta(days=2))
        await _add_follow_up(store_group, now, "F2", client_name="Beta LLC",
                             due_date=now + timedelta(days=1))
        await _add_follow_up(store_group, now, "F3", due_date=now - timedelta(days=1),
                             follow_up_number=2)

        store = store_group.follow_up_store
        all_items, total = await store.list_follow_ups(1)
        assert total == 3
        assert [f.follow_up_id for f in all_items] == ["F3", "F2", "F1"]

        by_client, _ = await store.list_follow_ups(1, client_name="beta")
        assert [f.follow_up_id for f in by_client] == ["F2"]

        second, _ = await store.list_follow_ups(1, follow_up_number=2)
        assert [f.follow_up_id for f in second] == ["F3"]

    async def test_stats(self, store_group: StoreGroup, now: datetime):
        await _add_follow_up(store_group, now, "F1", due_date=now - timedelta(hours=1))
        await _add_follow_up(store_group, now, "F2", due_date=now + timedelta(hours=2),
                             escalated_to_manager=True)
        await _add_follow_up(store_group, now, "F3", status=FollowUpStatus.NO_RESPONSE)
        await _add_follow_up(store_group, now, "F4", status=FollowUpStatus.COMPLETED)

        stats = await store_group.follow_up_store.get_stats(1, now)
        assert stats.total_pending == 2
        assert stats.total_completed == 1
        assert stats.total_no_response == 1
        assert stats.overdue_count == 1
        assert stats.due_today_count == 2
        assert stats.escalated_count == 1


class TestHistoryStore:
    """历史记录"""

    async def test_reminder_sent_unique_per_day(self, store_group: StoreGroup, now: datetime):
        history = store_group.history_store
        await history.append(
            HistoryRecord.new(EntityType.FOLLOW_UP, "F1", 1, HistoryAction.REMINDER_SENT, now)
        )
        with pytest.raises(aiosqlite.IntegrityError):
            await history.append(
                HistoryRecord.new(
                    EntityType.FOLLOW_UP,
                    "F1",
                    1,
                    HistoryAction.REMINDER_SENT,
                    now + timedelta(hours=1),
                )
            )

    async def test_other_actions_not_unique(self, store_group: StoreGroup, now: datetime):
        history = store_group.history_store
        for _ in range(2):
            await history.append(
                HistoryRecord.new(EntityType.FOLLOW_UP, "F1", 1, HistoryAction.REMINDER_RESENT, now)
            )
        await store_group.conn.commit()
        records = await history.list_for_entity("F1")
        assert len(records) == 2

    async def test_has_action_on_day(self, store_group: StoreGroup, now: datetime):
        history = store_group.history_store
        await history.append(
            HistoryRecord.new(
                EntityType.FOLLOW_UP, "F1", 1, HistoryAction.SNOOZED, now, details={"to_number": 2}
            )
        )
        await store_group.conn.commit()
        assert await history.has_action_on_day("F1", {HistoryAction.SNOOZED}, "2024-03-15")
        assert not await history.has_action_on_day("F1", {HistoryAction.SNOOZED}, "2024-03-16")
        assert not await history.has_action_on_day(
            "F1", {HistoryAction.REMINDER_SENT}, "2024-03-15"
        )
        records = await history.list_for_entity("F1")
        assert records[0].details == {"to_number": 2}


class TestEventStore:
    """入站事件"""

    async def test_idempotency_key(self, store_group: StoreGroup, now: datetime):
        events = store_group.event_store
        event = NotificationEvent(type="login", user_id=1, created_at=now, idempotency_key="k-1")
        await events.append_event(event, now)
        await store_group.conn.commit()
        assert await events.check_idempotency_key("k-1") == event.event_id
        assert await events.check_idempotency_key("k-2") is None

        duplicate = NotificationEvent(type="login", user_id=1, created_at=now, idempotency_key="k-1")
        with pytest.raises(aiosqlite.IntegrityError):
            await events.append_event(duplicate, now)

    async def test_list_between_inclusive(self, store_group: StoreGroup, now: datetime):
        events = store_group.event_store
        start, end = now - timedelta(hours=1), now + timedelta(hours=1)
        for offset in (-61, -60, 0, 60, 61):
            await events.append_event(
                NotificationEvent(
                    event_id=f"E{offset}",
                    type="pdf_sent_to_client",
                    user_id=1,
                    payload={"client_name": "Acme"},
                    created_at=now + timedelta(minutes=offset),
                ),
                now,
            )
        await events.append_event(
            NotificationEvent(event_id="other", type="login", user_id=1, created_at=now), now
        )
        await store_group.conn.commit()

        found = await events.list_events_between({"pdf_sent_to_client"}, start, end)
        assert [e.event_id for e in found] == ["E-60", "E0", "E60"]
        assert found[0].payload == {"client_name": "Acme"}


class TestUserStore:
    """用户目录与偏好"""

    async def test_default_preferences(self, store_group: StoreGroup):
        prefs = await store_group.user_store.get_preferences(42)
        assert prefs.allows_follow_up_reminders() is True

    async def test_upsert_preferences(self, store_group: StoreGroup):
        users = store_group.user_store
        await users.upsert_preferences(
            NotificationPreferences(user_id=42, email_follow_up_reminders=False)
        )
        await store_group.conn.commit()
        prefs = await users.get_preferences(42)
        assert prefs.email_enabled is True
        assert prefs.allows_follow_up_reminders() is False

    async def test_active_managers(self, store_group: StoreGroup):
        users = store_group.user_store
        await users.upsert_user(DirectoryUser(user_id=3, is_manager=True))
        await users.upsert_user(DirectoryUser(user_id=2, is_manager=True))
        await users.upsert_user(DirectoryUser(user_id=4, is_manager=True, is_active=False))
        await users.upsert_user(DirectoryUser(user_id=5))
        await store_group.conn.commit()

        managers = await users.list_active_managers()
        assert [m.user_id for m in managers] == [2, 3]
        managers = await users.list_active_managers(exclude_user_id=2)
        assert [m.user_id for m in managers] == [3]

    async def test_upsert_overwrites(self, store_group: StoreGroup):
        users = store_group.user_store
        await users.upsert_user(DirectoryUser(user_id=1, full_name="Old", manager_id=2))
        await users.upsert_user(DirectoryUser(user_id=1, full_name="New", email="n@x.test"))
        await store_group.conn.commit()
        user = await users.get_user(1)
        assert user.full_name == "New"
        assert user.manager_id is None
        assert user.email == "n@x.test"
