"""Todo Domain Model

待办是面向用户的可执行事项，可由事件自动生成，也可由用户直接创建。
"逾期" 与 "即将到期" 由 due_date 在查询时推导，不落库。
"""

from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel, Field, field_validator

from ..clock import ensure_utc
from .enums import ACTIVE_STATES, TodoCategory, TodoPriority, TodoStatus


class TodoInput(BaseModel):
    """创建待办的输入参数"""

    owner_id: int = Field(gt=0, description="所属用户 ID")
    title: str = Field(min_length=1, max_length=255, description="标题")
    description: str = Field(default="", description="描述")
    category: TodoCategory = Field(description="分类")
    priority: TodoPriority = Field(default=TodoPriority.STANDARD, description="优先级")
    due_date: datetime | None = Field(default=None, description="截止时间")
    auto_generated: bool = Field(default=False, description="是否由事件自动生成")
    source_event_id: str | None = Field(default=None, description="来源事件 ID（弱引用）")
    action_type: str = Field(default="", description="动作类型，自动完成按此匹配")
    action_data: dict[str, Any] = Field(default_factory=dict, description="动作附加数据")
    client_name: str | None = Field(default=None, description="客户名称")
    document_type: str | None = Field(default=None, description="文档类型")
    application_id: str | None = Field(default=None, description="关联申请 ID（弱引用）")

    @field_validator("due_date")
    @classmethod
    def _due_date_utc(cls, value: datetime | None) -> datetime | None:
        """不带时区的截止时间按 UTC 解释"""
        return ensure_utc(value) if value is not None else None


class Todo(TodoInput):
    """Todo 数据模型"""

    todo_id: str = Field(description="唯一标识，ULID 格式")
    status: TodoStatus = Field(default=TodoStatus.PENDING, description="当前状态")
    created_at: datetime = Field(description="创建时间")
    updated_at: datetime = Field(description="更新时间")
    completed_at: datetime | None = Field(default=None, description="完成时间")
    dismissed_at: datetime | None = Field(default=None, description="忽略时间")

    def is_overdue(self, now: datetime) -> bool:
        """活跃且已过截止时间"""
        return (
            self.status in ACTIVE_STATES
            and self.due_date is not None
            and self.due_date < now
        )

    def is_due_soon(self, now: datetime, window: timedelta) -> bool:
        """活跃且将在 window 内到期（不含已逾期）"""
        return (
            self.status in ACTIVE_STATES
            and self.due_date is not None
            and now <= self.due_date < now + window
        )


class TodoFilters(BaseModel):
    """待办列表查询条件"""

    owner_id: int = Field(description="所属用户 ID")
    statuses: list[TodoStatus] = Field(default_factory=list, description="状态筛选，空表示不限")
    categories: list[TodoCategory] = Field(default_factory=list, description="分类筛选")
    priorities: list[TodoPriority] = Field(default_factory=list, description="优先级筛选")
    overdue_only: bool = Field(default=False, description="仅逾期")
    due_soon_only: bool = Field(default=False, description="仅即将到期")
    limit: int = Field(default=50, ge=1, le=200, description="分页大小")
    offset: int = Field(default=0, ge=0, description="分页偏移")


class TodoStats(BaseModel):
    """待办统计（按查询时刻计算）"""

    total_todos: int = 0
    pending_count: int = 0
    in_progress_count: int = 0
    completed_count: int = 0
    dismissed_count: int = 0
    expired_count: int = 0
    overdue_count: int = 0
    due_soon_count: int = 0
    by_category: dict[str, int] = Field(default_factory=dict, description="活跃待办按分类计数")


class BulkItemError(BaseModel):
    """批量更新中单条失败"""

    todo_id: str
    code: str
    message: str


class BulkUpdateResult(BaseModel):
    """批量更新结果 -- 部分失败不影响整体"""

    success: bool = True
    status: TodoStatus
    requested_count: int = 0
    updated_count: int = 0
    updated_ids: list[str] = Field(default_factory=list)
    errors: list[BulkItemError] = Field(default_factory=list)
