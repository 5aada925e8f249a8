"""入站事件 Domain Model

来自通知/审计协作方的事件：{type, user_id, payload, created_at}。
事件表 append-only，event_id 使用 ULID 格式；payload 在入口按 type 校验。
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError
from ulid import ULID

from ..exceptions import ValidationError
from .payloads import EventPayload, parse_payload


class NotificationEvent(BaseModel):
    """入站事件"""

    event_id: str = Field(default_factory=lambda: str(ULID()), description="唯一标识，ULID 格式")
    type: str = Field(min_length=1, description="事件类型")
    user_id: int | None = Field(default=None, description="事件所属用户")
    payload: dict[str, Any] = Field(default_factory=dict, description="原始 payload")
    created_at: datetime = Field(description="事件发生时间")
    idempotency_key: str | None = Field(default=None, description="幂等键")

    def typed_payload(self) -> EventPayload:
        """按事件类型解析 payload

        Raises:
            ValidationError: payload 不合法
        """
        return parse_payload(self.type, self.payload)


def parse_event(raw: dict[str, Any]) -> NotificationEvent:
    """从外部输入构造事件并校验 payload

    Raises:
        ValidationError: 信封字段或 payload 不合法
    """
    try:
        event = NotificationEvent.model_validate(raw)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e, "invalid event") from e
    event.typed_payload()
    return event
