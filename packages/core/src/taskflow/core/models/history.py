"""History Record Domain Model

历史表 append-only：只允许插入，不允许更新或删除。
同日提醒去重与完成原因审计都依赖此表。
"""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field
from ulid import ULID

from ..clock import day_key
from .enums import ActorType, EntityType, HistoryAction


class HistoryRecord(BaseModel):
    """历史记录"""

    record_id: str = Field(description="唯一标识，ULID 格式")
    entity_type: EntityType = Field(description="实体类型")
    entity_id: str = Field(description="实体 ID")
    owner_id: int = Field(description="实体所属用户 ID")
    action: HistoryAction = Field(description="动作")
    day: str = Field(description="UTC 日历日（YYYY-MM-DD），用于同日去重")
    created_at: datetime = Field(description="记录时间")
    actor: ActorType = Field(default=ActorType.USER, description="操作者")
    previous_status: str | None = Field(default=None, description="变更前状态")
    new_status: str | None = Field(default=None, description="变更后状态")
    note: str = Field(default="", description="备注，如完成原因")
    details: dict[str, Any] = Field(default_factory=dict, description="结构化附加信息")

    @classmethod
    def new(
        cls,
        entity_type: EntityType,
        entity_id: str,
        owner_id: int,
        action: HistoryAction,
        now: datetime,
        **fields: Any,
    ) -> "HistoryRecord":
        """生成新记录，day 由 now 推导"""
        return cls(
            record_id=str(ULID()),
            entity_type=entity_type,
            entity_id=entity_id,
            owner_id=owner_id,
            action=action,
            day=day_key(now),
            created_at=now,
            **fields,
        )
