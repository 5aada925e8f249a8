"""Taskflow Core Domain Models -- 公共类型导出

所有公共模型类型从此入口导入。
"""

from .enums import (
    ACTIVE_STATES,
    BULK_TARGET_STATES,
    DOCUMENT_SENT_EVENT_TYPES,
    FOLLOW_UP_TERMINAL_STATES,
    INFORMATIONAL_EVENT_TYPES,
    REMINDER_ACTIONS,
    SCHEDULER_TRANSITIONS,
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    ActorType,
    CompletionReason,
    EntityType,
    EventType,
    FollowUpStatus,
    HistoryAction,
    TodoCategory,
    TodoPriority,
    TodoStatus,
    validate_transition,
)
from .event import NotificationEvent, parse_event
from .follow_up import FollowUp, FollowUpInput, FollowUpStats
from .history import HistoryRecord
from .payloads import (
    PAYLOAD_MODELS,
    ApplicationDecisionPayload,
    ClientNoResponsePayload,
    DocumentExpiringPayload,
    DocumentGeneratedPayload,
    DocumentSentPayload,
    EventPayload,
    GoldenVisaSubmittedPayload,
    MeetingReminderPayload,
    PaymentPendingPayload,
    ReviewCompletedPayload,
    ReviewRequestedPayload,
    parse_payload,
)
from .todo import (
    BulkItemError,
    BulkUpdateResult,
    Todo,
    TodoFilters,
    TodoInput,
    TodoStats,
)
from .user import DirectoryUser, NotificationPreferences

__all__ = [
    # 枚举
    "TodoStatus",
    "TodoCategory",
    "TodoPriority",
    "ActorType",
    "FollowUpStatus",
    "CompletionReason",
    "EntityType",
    "HistoryAction",
    "EventType",
    # 状态机
    "VALID_TRANSITIONS",
    "SCHEDULER_TRANSITIONS",
    "TERMINAL_STATES",
    "ACTIVE_STATES",
    "BULK_TARGET_STATES",
    "FOLLOW_UP_TERMINAL_STATES",
    "REMINDER_ACTIONS",
    "INFORMATIONAL_EVENT_TYPES",
    "DOCUMENT_SENT_EVENT_TYPES",
    "validate_transition",
    # Todo
    "Todo",
    "TodoInput",
    "TodoFilters",
    "TodoStats",
    "BulkItemError",
    "BulkUpdateResult",
    # FollowUp
    "FollowUp",
    "FollowUpInput",
    "FollowUpStats",
    # History
    "HistoryRecord",
    # Event
    "NotificationEvent",
    "parse_event",
    # Payloads
    "EventPayload",
    "ReviewRequestedPayload",
    "ApplicationDecisionPayload",
    "ReviewCompletedPayload",
    "DocumentSentPayload",
    "DocumentGeneratedPayload",
    "ClientNoResponsePayload",
    "PaymentPendingPayload",
    "MeetingReminderPayload",
    "DocumentExpiringPayload",
    "GoldenVisaSubmittedPayload",
    "PAYLOAD_MODELS",
    "parse_payload",
    # 用户目录
    "DirectoryUser",
    "NotificationPreferences",
]
