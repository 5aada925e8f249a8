"""HistoryStore SQLite 实现

历史表 append-only：只允许插入，不允许更新或删除。
reminder_sent 在 (entity_id, action, day) 上有唯一索引，
重复插入抛出 aiosqlite.IntegrityError，由调用方视为"当天已提醒"。
"""

import json

import aiosqlite

from ..clock import from_iso, to_iso
from ..models.enums import HistoryAction
from ..models.history import HistoryRecord

_COLUMNS = (
    "record_id",
    "entity_type",
    "entity_id",
    "owner_id",
    "action",
    "day",
    "created_at",
    "actor",
    "previous_status",
    "new_status",
    "note",
    "details",
)


class SqliteHistoryStore:
    """HistoryStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def append(self, record: HistoryRecord) -> None:
        """追加历史记录（append-only）

        注意：此方法不自动提交事务，需由调用方管理事务。
        """
        await self._conn.execute(
            f"""
            INSERT INTO history ({', '.join(_COLUMNS)})
            VALUES ({', '.join('?' for _ in _COLUMNS)})
            """,
            (
                record.record_id,
                record.entity_type.value,
                record.entity_id,
                record.owner_id,
                record.action.value,
                record.day,
                to_iso(record.created_at),
                record.actor.value,
                record.previous_status,
                record.new_status,
                record.note,
                json.dumps(record.details, ensure_ascii=False, default=str),
            ),
        )

    async def list_for_entity(self, entity_id: str) -> list[HistoryRecord]:
        """查询实体的全部历史，按时间正序（同一时刻按插入顺序）"""
        cursor = await self._conn.execute(
            f"""
            SELECT {', '.join(_COLUMNS)} FROM history
            WHERE entity_id = ?
            ORDER BY created_at ASC, rowid ASC
            """,
            (entity_id,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_record(r) for r in rows]

    async def has_action_on_day(
        self,
        entity_id: str,
        actions: set[HistoryAction],
        day: str,
    ) -> bool:
        """指定日历日内是否存在任一动作记录"""
        placeholders = ", ".join("?" for _ in actions)
        cursor = await self._conn.execute(
            f"""
            SELECT 1 FROM history
            WHERE entity_id = ? AND day = ? AND action IN ({placeholders})
            LIMIT 1
            """,
            (entity_id, day, *(a.value for a in actions)),
        )
        return await cursor.fetchone() is not None

    @staticmethod
    def _row_to_record(row: aiosqlite.Row) -> HistoryRecord:
        """将数据库行转换为 HistoryRecord 模型"""
        data = dict(zip(_COLUMNS, tuple(row), strict=True))
        return HistoryRecord(
            record_id=data["record_id"],
            entity_type=data["entity_type"],
            entity_id=data["entity_id"],
            owner_id=data["owner_id"],
            action=data["action"],
            day=data["day"],
            created_at=from_iso(data["created_at"]),
            actor=data["actor"],
            previous_status=data["previous_status"],
            new_status=data["new_status"],
            note=data["note"],
            details=json.loads(data["details"]) if data["details"] else {},
        )
