"""Taskflow Notify -- 邮件与审计协作方

packages/notify 的公开接口导出。
"""

from .audit import MemoryAuditSink, StructlogAuditSink
from .config import NotifyConfig, load_notify_config
from .exceptions import DependencyError, RelayServerError, RelayUnreachableError
from .log_transport import LogEmailTransport
from .models import AuditEntry, EmailMessage, OutboundNotification
from .notifier import Notifier, build_notifier, ordinal, render_reminder
from .relay_client import RelayEmailTransport

__all__ = [
    "AuditEntry",
    "EmailMessage",
    "OutboundNotification",
    "Notifier",
    "build_notifier",
    "ordinal",
    "render_reminder",
    "RelayEmailTransport",
    "LogEmailTransport",
    "StructlogAuditSink",
    "MemoryAuditSink",
    "NotifyConfig",
    "load_notify_config",
    "DependencyError",
    "RelayUnreachableError",
    "RelayServerError",
]
