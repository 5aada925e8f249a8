"""FollowUp Domain Model

客户跟进：文档发送给客户后的多轮（最多 3 次）联系提醒。
follow_up_number 单调不减；升级标记与状态正交，已升级的跟进可保持 pending。
"""

from datetime import datetime

from pydantic import BaseModel, Field

from .enums import CompletionReason, FollowUpStatus


class FollowUpInput(BaseModel):
    """创建跟进的输入参数"""

    owner_id: int = Field(gt=0, description="所属用户 ID")
    client_name: str = Field(min_length=1, max_length=255, description="客户名称")
    email_subject: str = Field(min_length=1, description="原始邮件主题")
    client_email: str | None = Field(default=None, description="客户邮箱")
    document_type: str | None = Field(default=None, description="文档类型")
    original_email_id: str | None = Field(default=None, description="原始邮件 ID")
    sent_date: datetime | None = Field(default=None, description="发送时间，为空取当前时间")
    source_event_id: str | None = Field(default=None, description="来源事件 ID（弱引用）")


class FollowUp(BaseModel):
    """FollowUp 数据模型"""

    follow_up_id: str = Field(description="唯一标识，ULID 格式")
    owner_id: int = Field(description="所属用户 ID")
    client_name: str = Field(description="客户名称")
    client_email: str | None = Field(default=None, description="客户邮箱")
    document_type: str | None = Field(default=None, description="文档类型")
    email_subject: str = Field(description="原始邮件主题")
    original_email_id: str | None = Field(default=None, description="原始邮件 ID")
    follow_up_number: int = Field(default=1, ge=1, le=3, description="第几次跟进")
    status: FollowUpStatus = Field(default=FollowUpStatus.PENDING, description="当前状态")
    escalated_to_manager: bool = Field(default=False, description="是否已升级给经理")
    manager_id: int | None = Field(default=None, description="升级目标经理 ID")
    escalation_date: datetime | None = Field(default=None, description="升级时间")
    sent_date: datetime = Field(description="文档发送时间")
    due_date: datetime = Field(description="下次跟进截止时间")
    created_at: datetime = Field(description="创建时间")
    updated_at: datetime = Field(description="更新时间")
    completed_at: datetime | None = Field(default=None, description="完成时间")
    completed_reason: CompletionReason | None = Field(default=None, description="完成原因")
    source_event_id: str | None = Field(default=None, description="来源事件 ID")

    def is_overdue(self, now: datetime) -> bool:
        return self.status == FollowUpStatus.PENDING and self.due_date < now


class FollowUpStats(BaseModel):
    """跟进统计"""

    total_pending: int = 0
    total_completed: int = 0
    total_no_response: int = 0
    overdue_count: int = 0
    due_today_count: int = 0
    escalated_count: int = 0
