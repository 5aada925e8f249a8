"""EventStore SQLite 实现

入站事件表 append-only：只允许插入，不允许更新或删除。
调度器按 (type, created_at) 扫描文档发送事件以生成 7 天跟进。
"""

import json
from datetime import datetime

import aiosqlite

from ..clock import from_iso, to_iso
from ..models.event import NotificationEvent


class SqliteEventStore:
    """EventStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def append_event(self, event: NotificationEvent, received_at: datetime) -> None:
        """追加事件（append-only）

        注意：此方法不自动提交事务，需由调用方管理事务。
        """
        await self._conn.execute(
            """
            INSERT INTO events (event_id, type, user_id, payload, created_at,
                                received_at, idempotency_key)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.event_id,
                event.type,
                event.user_id,
                json.dumps(event.payload, ensure_ascii=False, default=str),
                to_iso(event.created_at),
                to_iso(received_at),
                event.idempotency_key,
            ),
        )

    async def get_event(self, event_id: str) -> NotificationEvent | None:
        """根据 event_id 查询事件"""
        cursor = await self._conn.execute(
            """
            SELECT event_id, type, user_id, payload, created_at, idempotency_key
            FROM events WHERE event_id = ?
            """,
            (event_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_event(row)

    async def check_idempotency_key(self, key: str) -> str | None:
        """检查幂等键是否已存在

        Returns:
            关联的 event_id 如果存在，否则 None
        """
        cursor = await self._conn.execute(
            "SELECT event_id FROM events WHERE idempotency_key = ? LIMIT 1",
            (key,),
        )
        row = await cursor.fetchone()
        return row[0] if row else None

    async def list_events_between(
        self,
        event_types: set[str],
        start: datetime,
        end: datetime,
    ) -> list[NotificationEvent]:
        """查询 [start, end] 时间窗内指定类型的事件，按发生时间正序"""
        if not event_types:
            return []
        placeholders = ", ".join("?" for _ in event_types)
        cursor = await self._conn.execute(
            f"""
            SELECT event_id, type, user_id, payload, created_at, idempotency_key
            FROM events
            WHERE type IN ({placeholders}) AND created_at >= ? AND created_at <= ?
            ORDER BY created_at ASC
            """,
            (*sorted(event_types), to_iso(start), to_iso(end)),
        )
        rows = await cursor.fetchall()
        return [self._row_to_event(r) for r in rows]

    @staticmethod
    def _row_to_event(row: aiosqlite.Row) -> NotificationEvent:
        """将数据库行转换为 NotificationEvent 模型"""
        return NotificationEvent(
            event_id=row[0],
            type=row[1],
            user_id=row[2],
            payload=json.loads(row[3]) if row[3] else {},
            created_at=from_iso(row[4]),
            idempotency_key=row[5],
        )
