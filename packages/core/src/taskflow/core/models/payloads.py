"""入站事件 Payload 子类型

每种已知事件类型对应一个带校验的 payload 模型，按事件 type 选择（tagged variant）。
客户名称、文档类型等均为显式结构化字段，不从文件名或邮箱地址推断。
"""

from datetime import date, datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from ..exceptions import ValidationError
from .enums import EventType, TodoCategory, TodoPriority


def _to_str(value: Any) -> Any:
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


# 外部系统的 ID 可能是整数，统一存为字符串弱引用
WeakRef = Annotated[str, BeforeValidator(_to_str)]


class EventPayload(BaseModel):
    """所有事件 payload 的公共字段"""

    model_config = ConfigDict(extra="ignore")

    title: str | None = Field(default=None, description="通知标题")
    message: str | None = Field(default=None, description="通知正文")
    notification_id: WeakRef | None = Field(default=None, description="来源通知 ID")
    category: TodoCategory | None = Field(default=None, description="覆盖规则分类")
    priority: TodoPriority | None = Field(default=None, description="覆盖规则优先级")
    client_name: str | None = Field(default=None, description="客户名称")
    client_email: str | None = Field(default=None, description="客户邮箱")
    document_type: str | None = Field(default=None, description="文档类型")
    application_id: WeakRef | None = Field(default=None, description="关联申请 ID")


class ReviewRequestedPayload(EventPayload):
    """review_requested 事件 payload"""

    application_id: WeakRef
    application_title: str | None = None
    submitter_name: str | None = None
    urgency: Literal["low", "medium", "high"] = "medium"


class ApplicationDecisionPayload(EventPayload):
    """application_approved / application_rejected 事件 payload"""

    application_id: WeakRef
    application_title: str | None = None
    reviewer_name: str | None = None
    comments: str | None = None


class ReviewCompletedPayload(EventPayload):
    """review_completed 事件 payload"""

    application_id: WeakRef
    application_title: str | None = None
    decision: Literal["approved", "rejected"] = "approved"


class DocumentSentPayload(EventPayload):
    """pdf_sent_to_client 事件 payload"""

    client_name: str = Field(min_length=1)
    email_subject: str | None = None
    filename: str | None = None


class DocumentGeneratedPayload(EventPayload):
    """document_generated 事件 payload"""

    document_type: str = Field(min_length=1)
    filename: str | None = None


class ClientNoResponsePayload(EventPayload):
    """client_no_response 事件 payload"""

    client_name: str = Field(min_length=1)
    days_ago: int = Field(default=0, ge=0, description="距离上次联系的天数")


class PaymentPendingPayload(EventPayload):
    """payment_pending 事件 payload"""

    client_name: str = Field(min_length=1)
    invoice_id: WeakRef | None = None
    amount: float | None = Field(default=None, ge=0)
    currency: str = "AED"


class MeetingReminderPayload(EventPayload):
    """meeting_reminder 事件 payload"""

    meeting_at: datetime | None = Field(default=None, description="会议时间")
    location: str | None = None


class DocumentExpiringPayload(EventPayload):
    """document_expiring 事件 payload"""

    client_name: str = Field(min_length=1)
    expires_on: date | None = None


class GoldenVisaSubmittedPayload(EventPayload):
    """golden_visa_submitted 事件 payload"""

    client_name: str = Field(min_length=1)


PAYLOAD_MODELS: dict[str, type[EventPayload]] = {
    EventType.REVIEW_REQUESTED: ReviewRequestedPayload,
    EventType.APPLICATION_APPROVED: ApplicationDecisionPayload,
    EventType.APPLICATION_REJECTED: ApplicationDecisionPayload,
    EventType.REVIEW_COMPLETED: ReviewCompletedPayload,
    EventType.PDF_SENT_TO_CLIENT: DocumentSentPayload,
    EventType.DOCUMENT_GENERATED: DocumentGeneratedPayload,
    EventType.CLIENT_NO_RESPONSE: ClientNoResponsePayload,
    EventType.PAYMENT_PENDING: PaymentPendingPayload,
    EventType.MEETING_REMINDER: MeetingReminderPayload,
    EventType.DOCUMENT_EXPIRING: DocumentExpiringPayload,
    EventType.GOLDEN_VISA_SUBMITTED: GoldenVisaSubmittedPayload,
}


def parse_payload(event_type: str, raw: dict[str, Any]) -> EventPayload:
    """按事件类型校验 payload

    未知事件类型使用公共字段模型。

    Raises:
        ValidationError: payload 不符合该事件类型的 schema
    """
    model = PAYLOAD_MODELS.get(event_type, EventPayload)
    try:
        return model.model_validate(raw)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e, f"invalid payload for {event_type}") from e
