"""生成规则引擎 -- 入站事件到待办/跟进创建参数的纯映射

规则表按事件类型索引，导入时加载一次，运行期只读。
所有函数无副作用，实时事件路径与调度器回放路径共用。
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field

from .clock import ensure_utc
from .config import FOLLOW_UP_WINDOW
from .exceptions import ValidationError
from .models.enums import (
    INFORMATIONAL_EVENT_TYPES,
    EventType,
    TodoCategory,
    TodoPriority,
)
from .models.event import NotificationEvent
from .models.follow_up import FollowUpInput
from .models.payloads import (
    ClientNoResponsePayload,
    DocumentExpiringPayload,
    EventPayload,
    MeetingReminderPayload,
    ReviewCompletedPayload,
    ReviewRequestedPayload,
    parse_payload,
)
from .models.todo import TodoInput

DEFAULT_RULE_KEY = "default"

# client_no_response 低于该天数不生成待办
NO_RESPONSE_MIN_DAYS = 7

# 会议准备需提前完成的时长
MEETING_PREP_LEAD = timedelta(hours=2)

# action_data 中不重复保存的 payload 字段
_ACTION_DATA_EXCLUDE = {"title", "message", "category", "priority"}


class RuleKind(StrEnum):
    """规则产出的实体类型"""

    TODO = "todo"
    FOLLOW_UP = "follow_up"


@dataclass(frozen=True)
class CompletionSpec:
    """事件所代表的"已完成动作"：完成哪些 action_type 的待办"""

    action_types: tuple[str, ...]
    reason: str


@dataclass(frozen=True)
class GenerationRule:
    """单条生成规则"""

    kind: RuleKind
    category: TodoCategory
    priority: TodoPriority
    action_type: str
    due_offset: Callable[[EventPayload, datetime], timedelta]
    title: Callable[[EventPayload], str]
    description: Callable[[EventPayload], str]
    predicate: Callable[[EventPayload], bool] | None = None
    priority_for: Callable[[EventPayload], TodoPriority | None] | None = None
    completes: CompletionSpec | None = None


class CompletionCriteria(BaseModel):
    """自动完成匹配条件"""

    owner_id: int
    action_types: list[str] = Field(default_factory=list)
    application_id: str | None = None
    client_name: str | None = None
    document_type: str | None = None
    reason: str = ""
    source_event_id: str | None = None

    def is_specific(self) -> bool:
        """至少有一个实体键，避免一条事件关闭该用户全部待办"""
        return bool(self.action_types) and (
            bool(self.application_id) or bool(self.client_name and self.document_type)
        )


def _hours(n: int) -> Callable[[EventPayload, datetime], timedelta]:
    return lambda payload, now: timedelta(hours=n)


def _label(payload: EventPayload, *names: str, default: str) -> str:
    for name in names:
        value = getattr(payload, name, None)
        if value:
            return str(value)
    return default


def _meeting_offset(payload: EventPayload, now: datetime) -> timedelta:
    meeting_at = payload.meeting_at if isinstance(payload, MeetingReminderPayload) else None
    if meeting_at is None:
        return timedelta(hours=22)
    return max(ensure_utc(meeting_at) - MEETING_PREP_LEAD - now, timedelta(0))


def _review_offset(payload: EventPayload, now: datetime) -> timedelta:
    if isinstance(payload, ReviewRequestedPayload) and payload.urgency == "high":
        return timedelta(hours=4)
    return timedelta(hours=24)


def _review_priority(payload: EventPayload) -> TodoPriority | None:
    if isinstance(payload, ReviewRequestedPayload) and payload.urgency == "high":
        return TodoPriority.URGENT
    return None


def _review_result_offset(payload: EventPayload, now: datetime) -> timedelta:
    if isinstance(payload, ReviewCompletedPayload) and payload.decision == "rejected":
        return timedelta(hours=4)
    return timedelta(hours=2)


def _rejection_title(payload: EventPayload) -> str:
    name = _label(payload, "application_title", default="form").removesuffix(".pdf")
    reason = payload.message or "No specific reason provided"
    return f"Edit {name} - Reason: {reason}"


def _no_response_days(payload: EventPayload) -> int:
    if isinstance(payload, ClientNoResponsePayload):
        return payload.days_ago
    return 0


def _expiry_suffix(payload: EventPayload) -> str:
    if isinstance(payload, DocumentExpiringPayload) and payload.expires_on:
        return f" (expires {payload.expires_on.isoformat()})"
    return ""


GENERATION_RULES: dict[str, GenerationRule] = {
    # 审核流程
    EventType.REVIEW_REQUESTED: GenerationRule(
        kind=RuleKind.TODO,
        category=TodoCategory.TO_CHECK,
        priority=TodoPriority.STANDARD,
        action_type="review_document",
        due_offset=_review_offset,
        priority_for=_review_priority,
        title=lambda p: f"Review {_label(p, 'application_title', default='application')}",
        description=lambda p: (
            f"Review submitted by {_label(p, 'submitter_name', default='user')} "
            "requires your attention."
        ),
    ),
    EventType.APPLICATION_APPROVED: GenerationRule(
        kind=RuleKind.TODO,
        category=TodoCategory.TO_SEND,
        priority=TodoPriority.STANDARD,
        action_type="send_approved_document",
        due_offset=_hours(4),
        title=lambda p: (
            f"Send {_label(p, 'application_title', default='approved document')} "
            f"to {_label(p, 'client_name', default='client')}"
        ),
        description=lambda p: (
            f"Approved by {_label(p, 'reviewer_name', default='reviewer')}. "
            "Send the approved document to the client promptly."
        ),
        completes=CompletionSpec(
            action_types=("review_document", "edit_rejected_document"),
            reason="application_approved",
        ),
    ),
    EventType.APPLICATION_REJECTED: GenerationRule(
        kind=RuleKind.TODO,
        category=TodoCategory.TO_CHECK,
        priority=TodoPriority.STANDARD,
        action_type="edit_rejected_document",
        due_offset=_hours(24),
        title=_rejection_title,
        description=lambda p: (
            f"Rejected by {_label(p, 'reviewer_name', default='reviewer')}. "
            "Address the feedback and resubmit."
        ),
        completes=CompletionSpec(
            action_types=("review_document",),
            reason="application_rejected",
        ),
    ),
    EventType.REVIEW_COMPLETED: GenerationRule(
        kind=RuleKind.TODO,
        category=TodoCategory.TO_FOLLOW_UP,
        priority=TodoPriority.STANDARD,
        action_type="send_review_result",
        due_offset=_review_result_offset,
        title=lambda p: (
            f"Follow up on {_label(p, 'application_title', default='application')} review result"
        ),
        description=lambda p: (
            f"Application has been {getattr(p, 'decision', 'reviewed')}. "
            "Send the result to the client."
        ),
        completes=CompletionSpec(action_types=("review_document",), reason="review_completed"),
    ),
    # 文档生命周期
    EventType.PDF_SENT_TO_CLIENT: GenerationRule(
        kind=RuleKind.FOLLOW_UP,
        category=TodoCategory.TO_FOLLOW_UP,
        priority=TodoPriority.STANDARD,
        action_type="contact_client",
        due_offset=lambda p, now: FOLLOW_UP_WINDOW,
        title=lambda p: (
            f"Follow up with {_label(p, 'client_name', default='client')} "
            f"on {_label(p, 'document_type', 'filename', default='document')}"
        ),
        description=lambda p: "Document sent to client. Check whether they need assistance.",
        completes=CompletionSpec(
            action_types=("send_document", "send_approved_document", "send_review_result"),
            reason="document_sent",
        ),
    ),
    EventType.DOCUMENT_GENERATED: GenerationRule(
        kind=RuleKind.TODO,
        category=TodoCategory.TO_SEND,
        priority=TodoPriority.STANDARD,
        action_type="send_document",
        due_offset=_hours(4),
        title=lambda p: (
            f"Send {_label(p, 'document_type', 'filename', default='document')} "
            f"to {_label(p, 'client_name', default='client')}"
        ),
        description=lambda p: "Document has been generated and is ready to send.",
    ),
    # 客户沟通
    EventType.CLIENT_NO_RESPONSE: GenerationRule(
        kind=RuleKind.TODO,
        category=TodoCategory.TO_FOLLOW_UP,
        priority=TodoPriority.URGENT,
        action_type="urgent_follow_up",
        due_offset=_hours(2),
        predicate=lambda p: _no_response_days(p) >= NO_RESPONSE_MIN_DAYS,
        title=lambda p: (
            f"URGENT: Contact {_label(p, 'client_name', default='client')} "
            f"- No response for {_no_response_days(p)}+ days"
        ),
        description=lambda p: (
            f"Client has not responded to {_label(p, 'document_type', default='document')}. "
            "Immediate follow-up required."
        ),
    ),
    EventType.PAYMENT_PENDING: GenerationRule(
        kind=RuleKind.TODO,
        category=TodoCategory.TO_FOLLOW_UP,
        priority=TodoPriority.STANDARD,
        action_type="payment_follow_up",
        due_offset=_hours(24),
        title=lambda p: f"Follow up on pending payment from {_label(p, 'client_name', default='client')}",
        description=lambda p: "Payment is pending. Contact the client about payment status.",
    ),
    EventType.MEETING_REMINDER: GenerationRule(
        kind=RuleKind.TODO,
        category=TodoCategory.TO_CHECK,
        priority=TodoPriority.STANDARD,
        action_type="meeting_preparation",
        due_offset=_meeting_offset,
        title=lambda p: f"Prepare for meeting with {_label(p, 'client_name', default='client')}",
        description=lambda p: "Review the client file and prepare documents before the meeting.",
    ),
    # 维护类
    EventType.DOCUMENT_EXPIRING: GenerationRule(
        kind=RuleKind.TODO,
        category=TodoCategory.TO_FOLLOW_UP,
        priority=TodoPriority.STANDARD,
        action_type="renewal_contact",
        due_offset=lambda p, now: timedelta(days=3),
        title=lambda p: (
            f"Renew expiring {_label(p, 'document_type', default='document')} "
            f"for {_label(p, 'client_name', default='client')}{_expiry_suffix(p)}"
        ),
        description=lambda p: "Document is expiring soon. Contact the client to start renewal.",
    ),
    EventType.GOLDEN_VISA_SUBMITTED: GenerationRule(
        kind=RuleKind.TODO,
        category=TodoCategory.TO_CHECK,
        priority=TodoPriority.STANDARD,
        action_type="process_golden_visa",
        due_offset=_hours(48),
        title=lambda p: (
            f"Process Golden Visa application for {_label(p, 'client_name', default='client')}"
        ),
        description=lambda p: "Review documents and initiate the government submission.",
    ),
    DEFAULT_RULE_KEY: GenerationRule(
        kind=RuleKind.TODO,
        category=TodoCategory.TO_CHECK,
        priority=TodoPriority.STANDARD,
        action_type="general_action",
        due_offset=_hours(24),
        title=lambda p: f"Action required: {p.title or 'Review notification'}",
        description=lambda p: p.message or "Review this notification and take action.",
    ),
}


def get_rule(event_type: str) -> GenerationRule:
    """按事件类型取规则，未知类型使用默认规则"""
    return GENERATION_RULES.get(event_type, GENERATION_RULES[DEFAULT_RULE_KEY])


def should_generate(event_type: str, payload: EventPayload | dict[str, Any]) -> bool:
    """过滤噪声事件

    Args:
        event_type: 事件类型
        payload: 已解析或原始 payload

    Returns:
        True 如果该事件应生成待办或跟进
    """
    if event_type in INFORMATIONAL_EVENT_TYPES:
        return False
    if isinstance(payload, dict):
        try:
            payload = parse_payload(event_type, payload)
        except ValidationError:
            return False
    rule = get_rule(event_type)
    if rule.predicate is not None and not rule.predicate(payload):
        return False
    return True


def should_generate_for(event: NotificationEvent) -> bool:
    """事件级过滤：无归属用户的事件不生成"""
    if not event.user_id:
        return False
    return should_generate(event.type, event.payload)


def _action_data(event: NotificationEvent, payload: EventPayload) -> dict[str, Any]:
    data = payload.model_dump(mode="json", exclude_none=True, exclude=_ACTION_DATA_EXCLUDE)
    data["event_type"] = event.type
    return data


def from_event(event: NotificationEvent, now: datetime) -> TodoInput:
    """事件 -> 待办创建参数

    due_date = now + rule.due_offset；分类/优先级取自规则，payload 可覆盖。

    Raises:
        ValidationError: payload 不合法或事件没有归属用户
    """
    if not event.user_id:
        raise ValidationError("event has no user_id", field="user_id")
    payload = event.typed_payload()
    rule = get_rule(event.type)

    priority = rule.priority
    if rule.priority_for is not None:
        priority = rule.priority_for(payload) or priority
    if payload.priority is not None:
        priority = payload.priority

    return TodoInput(
        owner_id=event.user_id,
        title=rule.title(payload)[:255],
        description=rule.description(payload),
        category=payload.category or rule.category,
        priority=priority,
        due_date=now + rule.due_offset(payload, now),
        auto_generated=True,
        source_event_id=event.event_id,
        action_type=rule.action_type,
        action_data=_action_data(event, payload),
        client_name=payload.client_name,
        document_type=payload.document_type,
        application_id=payload.application_id,
    )


def follow_up_from_event(event: NotificationEvent) -> FollowUpInput:
    """文档发送事件 -> 跟进创建参数，sent_date 取事件发生时间

    Raises:
        ValidationError: 非跟进类事件、payload 不合法或缺少客户名称
    """
    if get_rule(event.type).kind != RuleKind.FOLLOW_UP:
        raise ValidationError(f"event type {event.type} does not create follow-ups", field="type")
    if not event.user_id:
        raise ValidationError("event has no user_id", field="user_id")
    payload = event.typed_payload()
    if not payload.client_name:
        raise ValidationError("client_name is required", field="client_name")

    document = payload.document_type or "document"
    subject = getattr(payload, "email_subject", None) or f"{document} for {payload.client_name}"
    return FollowUpInput(
        owner_id=event.user_id,
        client_name=payload.client_name,
        client_email=payload.client_email,
        document_type=payload.document_type,
        email_subject=subject,
        sent_date=event.created_at,
        source_event_id=event.event_id,
    )


def completion_criteria(event: NotificationEvent) -> CompletionCriteria | None:
    """事件能关闭哪些待办；不代表"已完成动作"的事件返回 None"""
    rule = GENERATION_RULES.get(event.type)
    if rule is None or rule.completes is None or not event.user_id:
        return None
    payload = event.typed_payload()
    criteria = CompletionCriteria(
        owner_id=event.user_id,
        action_types=list(rule.completes.action_types),
        application_id=payload.application_id,
        client_name=payload.client_name,
        document_type=payload.document_type,
        reason=rule.completes.reason,
        source_event_id=event.event_id,
    )
    if not criteria.is_specific():
        return None
    return criteria


__all__ = [
    "GENERATION_RULES",
    "CompletionCriteria",
    "CompletionSpec",
    "GenerationRule",
    "RuleKind",
    "completion_criteria",
    "follow_up_from_event",
    "from_event",
    "get_rule",
    "should_generate",
    "should_generate_for",
]
