"""Notify 异常体系

协作方（邮件中继、审计）调用失败统一为 DependencyError。
调度器捕获后计入结果对象，不中断批次。
"""


class DependencyError(Exception):
    """外部协作方调用失败"""

    def __init__(self, message: str, collaborator: str, recoverable: bool = True) -> None:
        """
        Args:
            message: 错误描述
            collaborator: 协作方名称（如 email_relay、audit）
            recoverable: 是否可通过重试恢复
        """
        super().__init__(message)
        self.collaborator = collaborator
        self.recoverable = recoverable


class RelayUnreachableError(DependencyError):
    """邮件中继不可达（连接失败、超时、DNS 解析失败等）"""

    def __init__(self, relay_url: str, original_error: Exception) -> None:
        """
        Args:
            relay_url: 尝试连接的中继地址
            original_error: 原始异常
        """
        super().__init__(
            f"email relay unreachable: {relay_url} -- {original_error}",
            collaborator="email_relay",
            recoverable=True,
        )
        self.relay_url = relay_url
        self.original_error = original_error


class RelayServerError(DependencyError):
    """邮件中继返回 5xx"""

    def __init__(self, relay_url: str, status_code: int) -> None:
        super().__init__(
            f"email relay error: {relay_url} returned {status_code}",
            collaborator="email_relay",
            recoverable=True,
        )
        self.relay_url = relay_url
        self.status_code = status_code
