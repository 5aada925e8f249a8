"""Notifier -- 提醒邮件、通知队列与审计日志的统一出口

服务层和调度器只依赖 Notifier，不直接接触传输层。
邮件失败以 DependencyError 上抛，由调用方计入结果；审计失败只记 warning。
"""

from typing import Any, Protocol

import structlog

from taskflow.core.clock import Clock, utc_now
from taskflow.core.models import FollowUp

from .audit import StructlogAuditSink
from .config import NotifyConfig
from .log_transport import LogEmailTransport
from .models import AuditEntry, EmailMessage, OutboundNotification
from .relay_client import RelayEmailTransport

log = structlog.get_logger()

_ORDINALS = {1: "1st", 2: "2nd", 3: "3rd"}


class EmailTransport(Protocol):
    async def deliver(self, message: EmailMessage) -> bool: ...

    async def health_check(self) -> bool: ...


class AuditSink(Protocol):
    async def write(self, entry: AuditEntry) -> None: ...


def ordinal(n: int) -> str:
    """跟进序号的英文序数词"""
    return _ORDINALS.get(n, f"{n}th")


def render_reminder(follow_up: FollowUp, portal_url: str) -> tuple[str, str]:
    """渲染跟进提醒邮件 -- 返回 (subject, text)"""
    subject = f"{ordinal(follow_up.follow_up_number)} follow-up reminder: {follow_up.client_name}"
    lines = [
        f"It is time to follow up with {follow_up.client_name}.",
        "",
        f"Follow-up: {ordinal(follow_up.follow_up_number)} of 3",
        f"Due: {follow_up.due_date.strftime('%Y-%m-%d %H:%M UTC')}",
        f"Sent: {follow_up.sent_date.strftime('%Y-%m-%d %H:%M UTC')}",
    ]
    if follow_up.document_type:
        lines.append(f"Document: {follow_up.document_type}")
    if follow_up.email_subject:
        lines.append(f"Original email: {follow_up.email_subject}")
    if follow_up.client_email:
        lines.append(f"Client email: {follow_up.client_email}")
    lines += ["", f"Open: {portal_url}/follow-ups/{follow_up.follow_up_id}"]
    return subject, "\n".join(lines)


class Notifier:
    """通知出口"""

    def __init__(
        self,
        transport: EmailTransport,
        audit_sink: AuditSink | None = None,
        portal_url: str = "http://localhost:3000",
        clock: Clock = utc_now,
    ) -> None:
        self._transport = transport
        self._audit_sink = audit_sink or StructlogAuditSink()
        self._portal_url = portal_url.rstrip("/")
        self._clock = clock

    @property
    def transport(self) -> EmailTransport:
        return self._transport

    async def send_reminder_email(
        self,
        follow_up: FollowUp,
        recipient_email: str | None = None,
    ) -> bool:
        """发送跟进提醒邮件给跟进负责人

        Returns:
            传输层是否接受

        Raises:
            DependencyError: 中继不可达或返回 5xx
        """
        subject, text = render_reminder(follow_up, self._portal_url)
        message = EmailMessage(
            to_user_id=follow_up.owner_id,
            to_email=recipient_email,
            subject=subject,
            text=text,
            category="follow_up_reminder",
            metadata={
                "follow_up_id": follow_up.follow_up_id,
                "follow_up_number": follow_up.follow_up_number,
            },
        )
        return await self._transport.deliver(message)

    async def queue_email(self, notification: OutboundNotification) -> bool:
        """投递一条通知邮件（如升级通知）

        Raises:
            DependencyError: 中继不可达或返回 5xx
        """
        message = EmailMessage(
            to_user_id=notification.recipient_user_id,
            to_email=notification.recipient_email,
            subject=notification.title,
            text=notification.message,
            category=notification.kind,
            metadata=notification.metadata,
        )
        return await self._transport.deliver(message)

    async def log_audit_event(
        self,
        user_id: int | None,
        action: str,
        resource: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """写审计日志 -- 失败只记录 warning，不影响业务结果"""
        entry = AuditEntry(
            user_id=user_id,
            action=action,
            resource=resource,
            details=details or {},
            ts=self._clock(),
        )
        try:
            await self._audit_sink.write(entry)
        except Exception as e:
            log.warning(
                "audit_write_failed",
                action=action,
                resource=resource,
                error=str(e),
                error_type=type(e).__name__,
            )


def build_notifier(config: NotifyConfig, audit_sink: AuditSink | None = None) -> Notifier:
    """按配置选择传输层并构建 Notifier"""
    if config.email_mode == "relay":
        transport: EmailTransport = RelayEmailTransport(
            relay_base_url=config.relay_base_url,
            relay_api_key=config.relay_api_key.get_secret_value(),
            timeout_s=config.timeout_s,
        )
    else:
        transport = LogEmailTransport()
    log.info("notifier_configured", email_mode=config.email_mode)
    return Notifier(transport=transport, audit_sink=audit_sink, portal_url=config.portal_url)
