"""Domain Model 单元测试

测试内容：
1. Todo 逾期 / 即将到期推导
2. 事件 payload 按类型校验
3. parse_event 信封校验与错误转换
4. 时钟工具（UTC 归一化、日历日键）
"""

from datetime import UTC, datetime, timedelta, timezone

import pytest
from taskflow.core.clock import day_key, ensure_utc, from_iso, start_of_day, to_iso
from taskflow.core.exceptions import ValidationError
from taskflow.core.models import (
    DocumentSentPayload,
    EntityType,
    EventPayload,
    HistoryAction,
    HistoryRecord,
    ReviewRequestedPayload,
    Todo,
    TodoCategory,
    TodoStatus,
    parse_event,
    parse_payload,
)


def _todo(now: datetime, **overrides) -> Todo:
    data = {
        "todo_id": "01JTODO0000000000000000001",
        "owner_id": 1,
        "title": "Send contract",
        "category": TodoCategory.TO_SEND,
        "created_at": now,
        "updated_at": now,
    }
    data.update(overrides)
    return Todo(**data)


class TestTodoDerivedFlags:
    """逾期与即将到期在查询时推导"""

    def test_overdue_when_past_due(self, now: datetime):
        todo = _todo(now, due_date=now - timedelta(minutes=1))
        assert todo.is_overdue(now) is True
        assert todo.is_due_soon(now, timedelta(hours=24)) is False

    def test_due_soon_window_is_half_open(self, now: datetime):
        """[now, now+window) 内为即将到期"""
        window = timedelta(hours=24)
        assert _todo(now, due_date=now).is_due_soon(now, window) is True
        assert _todo(now, due_date=now + window - timedelta(seconds=1)).is_due_soon(now, window)
        assert _todo(now, due_date=now + window).is_due_soon(now, window) is False

    def test_terminal_todo_never_overdue(self, now: datetime):
        todo = _todo(now, due_date=now - timedelta(days=3), status=TodoStatus.COMPLETED)
        assert todo.is_overdue(now) is False

    def test_no_due_date(self, now: datetime):
        todo = _todo(now)
        assert todo.is_overdue(now) is False
        assert todo.is_due_soon(now, timedelta(hours=24)) is False


class TestPayloads:
    """payload 按事件类型选择模型"""

    def test_known_type_uses_specific_model(self):
        payload = parse_payload("review_requested", {"application_id": 42, "urgency": "high"})
        assert isinstance(payload, ReviewRequestedPayload)
        # 整数 ID 统一为字符串
        assert payload.application_id == "42"

    def test_unknown_type_uses_common_model(self):
        payload = parse_payload("something_new", {"title": "Hello", "extra": 1})
        assert type(payload) is EventPayload
        assert payload.title == "Hello"

    def test_missing_required_field(self):
        with pytest.raises(ValidationError) as exc_info:
            parse_payload("pdf_sent_to_client", {"document_type": "contract"})
        assert exc_info.value.field == "client_name"
        assert "pdf_sent_to_client" in exc_info.value.message

    def test_invalid_enum_value(self):
        with pytest.raises(ValidationError):
            parse_payload("review_requested", {"application_id": "A1", "urgency": "extreme"})

    def test_document_sent_payload(self):
        payload = parse_payload(
            "pdf_sent_to_client",
            {"client_name": "Acme", "document_type": "contract", "email_subject": "Your contract"},
        )
        assert isinstance(payload, DocumentSentPayload)
        assert payload.email_subject == "Your contract"


class TestParseEvent:
    """事件信封校验"""

    def test_valid_event(self, now: datetime):
        event = parse_event(
            {"type": "document_generated", "user_id": 3, "payload": {"document_type": "nda"},
             "created_at": now.isoformat()}
        )
        assert event.user_id == 3
        assert len(event.event_id) == 26

    def test_missing_type(self, now: datetime):
        with pytest.raises(ValidationError) as exc_info:
            parse_event({"user_id": 3, "created_at": now.isoformat()})
        assert exc_info.value.field == "type"

    def test_invalid_payload_rejected_at_entry(self, now: datetime):
        with pytest.raises(ValidationError):
            parse_event({"type": "payment_pending", "user_id": 3, "payload": {},
                         "created_at": now.isoformat()})


class TestClock:
    """时钟工具"""

    def test_naive_treated_as_utc(self):
        naive = datetime(2024, 1, 1, 8, 0)
        assert ensure_utc(naive) == datetime(2024, 1, 1, 8, 0, tzinfo=UTC)

    def test_day_key_uses_utc_calendar_day(self):
        # 东四区 01:00 仍是 UTC 前一天
        local = datetime(2024, 1, 2, 1, 0, tzinfo=timezone(timedelta(hours=4)))
        assert day_key(local) == "2024-01-01"

    def test_iso_roundtrip_preserves_order(self, now: datetime):
        earlier = to_iso(now)
        later = to_iso(now + timedelta(microseconds=1))
        assert earlier < later
        assert from_iso(earlier) == now

    def test_start_of_day(self, now: datetime):
        assert start_of_day(now) == datetime(2024, 3, 15, tzinfo=UTC)

    def test_history_record_day(self, now: datetime):
        record = HistoryRecord.new(
            EntityType.FOLLOW_UP, "F1", 1, HistoryAction.REMINDER_SENT, now
        )
        assert record.day == "2024-03-15"
        assert len(record.record_id) == 26
