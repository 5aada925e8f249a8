"""审计日志写入

审计条目以结构化日志输出，由日志管道（stdout / Logfire）统一收集。
"""

import structlog

from .models import AuditEntry

log = structlog.get_logger("taskflow.audit")


class StructlogAuditSink:
    """通过 structlog 写审计条目"""

    async def write(self, entry: AuditEntry) -> None:
        await log.ainfo(
            "audit_event",
            audit_user_id=entry.user_id,
            audit_action=entry.action,
            resource=entry.resource,
            details=entry.details,
            ts=entry.ts.isoformat(),
        )


class MemoryAuditSink:
    """内存审计 sink，保存全部条目"""

    def __init__(self) -> None:
        self.entries: list[AuditEntry] = []

    async def write(self, entry: AuditEntry) -> None:
        self.entries.append(entry)
