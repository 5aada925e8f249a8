"""LogEmailTransport -- 日志模式邮件传输

不连接任何中继，只记录结构化日志并保存已发送邮件。
用于本地开发与测试；TASKFLOW_EMAIL_MODE=log 时启用。
"""

import structlog

from .models import EmailMessage

log = structlog.get_logger()


class LogEmailTransport:
    """记录而不投递的邮件传输"""

    def __init__(self) -> None:
        self.sent: list[EmailMessage] = []

    async def deliver(self, message: EmailMessage) -> bool:
        """记录邮件，始终返回 True"""
        self.sent.append(message)
        log.info(
            "email_logged",
            to_user_id=message.to_user_id,
            subject=message.subject,
            category=message.category,
        )
        return True

    async def health_check(self) -> bool:
        return True
