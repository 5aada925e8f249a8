"""核心异常体系

ValidationError / NotFoundError / InvalidTransitionError 直接抛给调用方，
由 gateway 映射为 400 / 404 / 409。
协作方（邮件、审计）失败使用 taskflow.notify.exceptions.DependencyError。
"""

from pydantic import ValidationError as PydanticValidationError


class TaskflowError(Exception):
    """核心层基础异常"""

    code = "TASKFLOW_ERROR"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(TaskflowError):
    """输入非法（枚举越界、必填字段为空、批量超限等）"""

    code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None) -> None:
        """
        Args:
            message: 错误描述
            field: 出错的字段名（可选）
        """
        super().__init__(message)
        self.field = field

    @classmethod
    def from_pydantic(cls, error: PydanticValidationError, context: str) -> "ValidationError":
        """取第一条 pydantic 校验错误，转换为核心 ValidationError"""
        first = error.errors()[0] if error.errors() else {}
        field = ".".join(str(p) for p in first.get("loc", ())) or None
        return cls(f"{context}: {first.get('msg', str(error))}", field=field)


class NotFoundError(TaskflowError):
    """实体不存在或不属于当前用户

    两种情况不做区分，避免泄露实体是否存在。
    """

    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(f"{entity} {entity_id} not found")
        self.entity = entity
        self.entity_id = entity_id


class InvalidTransitionError(TaskflowError):
    """非法状态流转"""

    code = "INVALID_TRANSITION"

    def __init__(self, entity_id: str, from_state: str, to_state: str, reason: str = "") -> None:
        """
        Args:
            entity_id: 实体 ID
            from_state: 当前状态
            to_state: 请求的目标状态或操作
            reason: 补充说明
        """
        message = f"cannot move {entity_id} from {from_state} to {to_state}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.entity_id = entity_id
        self.from_state = from_state
        self.to_state = to_state
