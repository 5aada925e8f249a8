"""数据模型 -- EmailMessage + OutboundNotification + AuditEntry"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field


class EmailMessage(BaseModel):
    """交给传输层的邮件

    to_email 为空时由中继按 to_user_id 解析收件地址。
    """

    to_user_id: int | None = Field(default=None, description="收件用户 ID")
    to_email: str | None = Field(default=None, description="收件地址")
    subject: str = Field(min_length=1, description="主题")
    text: str = Field(description="纯文本正文")
    category: str = Field(default="general", description="邮件类别，对应通知偏好")
    metadata: dict[str, Any] = Field(default_factory=dict, description="附加信息")


class OutboundNotification(BaseModel):
    """站内通知 + 邮件队列条目（升级通知等）"""

    recipient_user_id: int = Field(description="接收用户 ID")
    recipient_email: str | None = Field(default=None, description="接收地址")
    kind: str = Field(description="通知类型，如 follow_up_escalated")
    title: str = Field(description="标题")
    message: str = Field(description="正文")
    metadata: dict[str, Any] = Field(default_factory=dict, description="附加信息")


class AuditEntry(BaseModel):
    """审计日志写入契约"""

    user_id: int | None = Field(description="操作用户，系统操作为 None")
    action: str = Field(description="动作，如 todo_status_changed")
    resource: str = Field(description="资源，如 todo:01J...")
    details: dict[str, Any] = Field(default_factory=dict, description="结构化详情")
    ts: datetime = Field(description="发生时间")
