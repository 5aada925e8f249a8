"""调度结果模型

每个步骤返回计数 + 错误列表，PassResult 汇总四个步骤。
计数随结果对象返回，不保存在模块级状态中。
"""

from datetime import datetime

from pydantic import BaseModel, Field


class StepError(BaseModel):
    """单条处理失败"""

    entity_id: str | None = Field(default=None, description="出错的实体 ID")
    code: str = Field(description="错误码，如 DEPENDENCY_ERROR")
    message: str = Field(description="错误描述")


class ExpireResult(BaseModel):
    """步骤 1：过期待办"""

    scanned_count: int = 0
    expired_count: int = 0
    urgent_created_count: int = 0
    expired_ids: list[str] = Field(default_factory=list)
    urgent_todo_ids: list[str] = Field(default_factory=list)
    errors: list[StepError] = Field(default_factory=list)


class EscalateResult(BaseModel):
    """步骤 2：自动升级"""

    scanned_count: int = 0
    escalated_count: int = 0
    escalated_ids: list[str] = Field(default_factory=list)
    closed_no_response_count: int = Field(default=0, description="所有者为经理、直接标记无回复的数量")
    closed_ids: list[str] = Field(default_factory=list)
    errors: list[StepError] = Field(default_factory=list)


class GenerateResult(BaseModel):
    """步骤 3：生成 7 天跟进"""

    scanned_count: int = 0
    created_count: int = 0
    skipped_count: int = 0
    follow_up_ids: list[str] = Field(default_factory=list)
    clients_scheduled: list[str] = Field(default_factory=list)
    errors: list[StepError] = Field(default_factory=list)


class DispatchResult(BaseModel):
    """步骤 4：提醒发送"""

    candidate_count: int = 0
    sent_count: int = 0
    skipped_count: int = 0
    duplicate_count: int = 0
    failed_count: int = 0
    sent_ids: list[str] = Field(default_factory=list)
    errors: list[StepError] = Field(default_factory=list)


class PassResult(BaseModel):
    """一次调度轮次的汇总"""

    ran_at: datetime
    expire: ExpireResult | None = None
    escalate: EscalateResult | None = None
    generate: GenerateResult | None = None
    dispatch: DispatchResult | None = None

    @property
    def error_count(self) -> int:
        steps = (self.expire, self.escalate, self.generate, self.dispatch)
        return sum(len(step.errors) for step in steps if step is not None)
