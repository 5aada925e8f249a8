"""枚举定义

包含 TodoStatus / FollowUpStatus 状态机、分类与优先级、历史动作、
入站事件类型，以及 VALID_TRANSITIONS 合法流转映射和终态集合。
"""

from enum import StrEnum


class TodoStatus(StrEnum):
    """待办状态机"""

    # 活跃状态
    PENDING = "pending"
    IN_PROGRESS = "in_progress"

    # 终态
    COMPLETED = "completed"
    DISMISSED = "dismissed"
    EXPIRED = "expired"


class TodoCategory(StrEnum):
    """待办分类"""

    TO_SEND = "to_send"
    TO_CHECK = "to_check"
    TO_FOLLOW_UP = "to_follow_up"


class TodoPriority(StrEnum):
    """待办优先级"""

    STANDARD = "standard"
    URGENT = "urgent"


class ActorType(StrEnum):
    """操作者类型"""

    USER = "user"
    SYSTEM = "system"
    SCHEDULER = "scheduler"


# 用户与系统（自动完成）可触发的合法流转
VALID_TRANSITIONS: dict[TodoStatus, set[TodoStatus]] = {
    TodoStatus.PENDING: {
        TodoStatus.IN_PROGRESS,
        TodoStatus.COMPLETED,
        TodoStatus.DISMISSED,
    },
    TodoStatus.IN_PROGRESS: {TodoStatus.COMPLETED, TodoStatus.DISMISSED},
    # 终态不可再流转
    TodoStatus.COMPLETED: set(),
    TodoStatus.DISMISSED: set(),
    TodoStatus.EXPIRED: set(),
}

# 仅调度器可触发的流转
SCHEDULER_TRANSITIONS: dict[TodoStatus, set[TodoStatus]] = {
    TodoStatus.PENDING: {TodoStatus.EXPIRED},
}

TERMINAL_STATES: set[TodoStatus] = {
    TodoStatus.COMPLETED,
    TodoStatus.DISMISSED,
    TodoStatus.EXPIRED,
}

ACTIVE_STATES: set[TodoStatus] = {TodoStatus.PENDING, TodoStatus.IN_PROGRESS}

# 批量更新允许的目标状态
BULK_TARGET_STATES: set[TodoStatus] = {TodoStatus.COMPLETED, TodoStatus.DISMISSED}


class FollowUpStatus(StrEnum):
    """客户跟进状态"""

    PENDING = "pending"
    COMPLETED = "completed"
    NO_RESPONSE = "no_response"


FOLLOW_UP_TERMINAL_STATES: set[FollowUpStatus] = {
    FollowUpStatus.COMPLETED,
    FollowUpStatus.NO_RESPONSE,
}


class CompletionReason(StrEnum):
    """跟进完成原因"""

    CLIENT_RESPONDED = "client_responded"
    SIGNED = "signed"
    PAID = "paid"
    CANCELLED = "cancelled"
    OTHER = "other"


class EntityType(StrEnum):
    """历史记录关联的实体类型"""

    TODO = "todo"
    FOLLOW_UP = "follow_up"


class HistoryAction(StrEnum):
    """历史记录动作（append-only）"""

    CREATED = "created"
    STATUS_CHANGED = "status_changed"
    COMPLETED = "completed"
    MARKED_NO_RESPONSE = "marked_no_response"
    SNOOZED = "snoozed"
    ESCALATED = "escalated"
    AUTO_ESCALATED = "auto_escalated"
    REMINDER_SENT = "reminder_sent"
    REMINDER_RESENT = "reminder_resent"
    REMINDER_FAILED = "reminder_failed"
    AUTO_COMPLETED = "auto_completed"
    EXPIRED = "expired"


# 计入"当天已提醒"的动作
REMINDER_ACTIONS: set[HistoryAction] = {
    HistoryAction.REMINDER_SENT,
    HistoryAction.REMINDER_RESENT,
}


class EventType(StrEnum):
    """已知入站事件类型

    未知类型仍可入站，由默认规则处理。
    """

    REVIEW_REQUESTED = "review_requested"
    APPLICATION_APPROVED = "application_approved"
    APPLICATION_REJECTED = "application_rejected"
    REVIEW_COMPLETED = "review_completed"
    PDF_SENT_TO_CLIENT = "pdf_sent_to_client"
    DOCUMENT_GENERATED = "document_generated"
    CLIENT_NO_RESPONSE = "client_no_response"
    PAYMENT_PENDING = "payment_pending"
    MEETING_REMINDER = "meeting_reminder"
    DOCUMENT_EXPIRING = "document_expiring"
    GOLDEN_VISA_SUBMITTED = "golden_visa_submitted"

    # 纯信息类事件，不生成待办
    LOGIN = "login"
    LOGOUT = "logout"
    PROFILE_UPDATED = "profile_updated"


INFORMATIONAL_EVENT_TYPES: set[str] = {
    EventType.LOGIN,
    EventType.LOGOUT,
    EventType.PROFILE_UPDATED,
}

# 表示"文档已发送给客户"的事件类型，调度器据此生成 7 天跟进
DOCUMENT_SENT_EVENT_TYPES: set[str] = {EventType.PDF_SENT_TO_CLIENT}


def validate_transition(
    from_status: TodoStatus,
    to_status: TodoStatus,
    actor: ActorType = ActorType.USER,
) -> bool:
    """验证待办状态流转是否合法

    Args:
        from_status: 当前状态
        to_status: 目标状态
        actor: 操作者，只有调度器可以把待办标记为 expired

    Returns:
        True 如果流转合法，否则 False
    """
    allowed = VALID_TRANSITIONS.get(from_status, set())
    if actor == ActorType.SCHEDULER:
        allowed = allowed | SCHEDULER_TRANSITIONS.get(from_status, set())
    return to_status in allowed
