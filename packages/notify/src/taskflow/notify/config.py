"""NotifyConfig -- 通知协作方配置加载

从环境变量加载配置，不硬编码中继地址与密钥。
"""

import os
from typing import Literal

import structlog
from pydantic import BaseModel, Field, SecretStr

log = structlog.get_logger()


class NotifyConfig(BaseModel):
    """Notify 包配置 -- 从环境变量加载

    环境变量:
        TASKFLOW_EMAIL_MODE: 邮件模式（relay/log）
        TASKFLOW_EMAIL_RELAY_URL: 中继地址（默认 http://localhost:8025）
        TASKFLOW_EMAIL_RELAY_KEY: 中继访问密钥
        TASKFLOW_EMAIL_TIMEOUT_S: 调用超时（秒，默认 10）
        TASKFLOW_PORTAL_URL: 邮件中的门户链接
    """

    email_mode: Literal["relay", "log"] = Field(
        default="log",
        description="邮件模式：relay 通过 HTTP 中继发送 / log 仅记录日志",
    )
    relay_base_url: str = Field(
        default="http://localhost:8025",
        description="邮件中继基础 URL",
    )
    relay_api_key: SecretStr = Field(
        default=SecretStr(""),
        description="中继访问密钥",
    )
    timeout_s: int = Field(
        default=10,
        ge=1,
        description="中继调用超时（秒）",
    )
    portal_url: str = Field(
        default="http://localhost:3000",
        description="邮件正文中的门户地址",
    )


def load_notify_config() -> NotifyConfig:
    """从环境变量加载 Notify 配置

    环境变量映射:
        TASKFLOW_EMAIL_MODE -> email_mode (默认 "log")
        TASKFLOW_EMAIL_RELAY_URL -> relay_base_url
        TASKFLOW_EMAIL_RELAY_KEY -> relay_api_key
        TASKFLOW_EMAIL_TIMEOUT_S -> timeout_s (默认 10)
        TASKFLOW_PORTAL_URL -> portal_url

    Returns:
        NotifyConfig 实例
    """
    kwargs: dict = {}

    if val := os.environ.get("TASKFLOW_EMAIL_MODE"):
        kwargs["email_mode"] = val

    if val := os.environ.get("TASKFLOW_EMAIL_RELAY_URL"):
        kwargs["relay_base_url"] = val

    if val := os.environ.get("TASKFLOW_EMAIL_RELAY_KEY"):
        kwargs["relay_api_key"] = SecretStr(val)

    if val := os.environ.get("TASKFLOW_EMAIL_TIMEOUT_S"):
        try:
            kwargs["timeout_s"] = int(val)
        except ValueError:
            log.warning(
                "invalid_timeout_config",
                env_var="TASKFLOW_EMAIL_TIMEOUT_S",
                value=val,
                fallback=10,
            )

    if val := os.environ.get("TASKFLOW_PORTAL_URL"):
        kwargs["portal_url"] = val.rstrip("/")

    return NotifyConfig(**kwargs)
