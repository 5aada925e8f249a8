"""FollowUpStore SQLite 实现

状态、跟进次数、升级标记的更新均为条件 UPDATE，
保证 follow_up_number 单调不减且终态不再变化。
此处不提交事务，提交由 transaction 模块负责。
"""

from datetime import datetime, timedelta

import aiosqlite

from ..clock import day_key, from_iso, start_of_day, to_iso
from ..models.enums import CompletionReason, FollowUpStatus, HistoryAction
from ..models.follow_up import FollowUp, FollowUpStats

_COLUMNS = (
    "follow_up_id",
    "owner_id",
    "client_name",
    "client_email",
    "document_type",
    "email_subject",
    "original_email_id",
    "follow_up_number",
    "status",
    "escalated_to_manager",
    "manager_id",
    "escalation_date",
    "sent_date",
    "due_date",
    "created_at",
    "updated_at",
    "completed_at",
    "completed_reason",
    "source_event_id",
)
_SELECT = f"SELECT {', '.join(_COLUMNS)} FROM follow_ups"

# pending 优先，其次截止时间升序，最后创建时间倒序
_ORDER_BY = (
    "ORDER BY CASE status WHEN 'pending' THEN 0 ELSE 1 END, due_date ASC, created_at DESC"
)

_REMINDER_ACTIONS_SQL = (
    f"('{HistoryAction.REMINDER_SENT.value}', '{HistoryAction.REMINDER_RESENT.value}')"
)


class SqliteFollowUpStore:
    """FollowUpStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_follow_up(self, follow_up: FollowUp) -> None:
        """创建跟进记录"""
        await self._conn.execute(
            f"""
            INSERT INTO follow_ups ({', '.join(_COLUMNS)})
            VALUES ({', '.join('?' for _ in _COLUMNS)})
            """,
            (
                follow_up.follow_up_id,
                follow_up.owner_id,
                follow_up.client_name,
                follow_up.client_email,
                follow_up.document_type,
                follow_up.email_subject,
                follow_up.original_email_id,
                follow_up.follow_up_number,
                follow_up.status.value,
                int(follow_up.escalated_to_manager),
                follow_up.manager_id,
                to_iso(follow_up.escalation_date) if follow_up.escalation_date else None,
                to_iso(follow_up.sent_date),
                to_iso(follow_up.due_date),
                to_iso(follow_up.created_at),
                to_iso(follow_up.updated_at),
                to_iso(follow_up.completed_at) if follow_up.completed_at else None,
                follow_up.completed_reason.value if follow_up.completed_reason else None,
                follow_up.source_event_id,
            ),
        )

    async def get_follow_up(
        self, follow_up_id: str, owner_id: int | None = None
    ) -> FollowUp | None:
        """查询跟进；传入 owner_id 时不属于该用户视为不存在"""
        if owner_id is None:
            cursor = await self._conn.execute(
                f"{_SELECT} WHERE follow_up_id = ?", (follow_up_id,)
            )
        else:
            cursor = await self._conn.execute(
                f"{_SELECT} WHERE follow_up_id = ? AND owner_id = ?",
                (follow_up_id, owner_id),
            )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_follow_up(row)

    async def list_follow_ups(
        self,
        owner_id: int,
        status: FollowUpStatus | None = None,
        follow_up_number: int | None = None,
        client_name: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[FollowUp], int]:
        """分页查询跟进，client_name 为不区分大小写的包含匹配"""
        clauses = ["owner_id = ?"]
        params: list = [owner_id]
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if follow_up_number is not None:
            clauses.append("follow_up_number = ?")
            params.append(follow_up_number)
        if client_name:
            clauses.append("lower(client_name) LIKE '%' || lower(?) || '%'")
            params.append(client_name)
        where = " AND ".join(clauses)

        cursor = await self._conn.execute(
            f"SELECT COUNT(*) FROM follow_ups WHERE {where}", params
        )
        row = await cursor.fetchone()
        total = row[0] if row else 0

        cursor = await self._conn.execute(
            f"{_SELECT} WHERE {where} {_ORDER_BY} LIMIT ? OFFSET ?",
            [*params, limit, offset],
        )
        rows = await cursor.fetchall()
        return [self._row_to_follow_up(r) for r in rows], total

    async def close(
        self,
        follow_up_id: str,
        status: FollowUpStatus,
        reason: CompletionReason | None,
        now: datetime,
    ) -> bool:
        """pending -> completed / no_response

        Returns:
            True 如果更新生效；已是终态时返回 False
        """
        ts = to_iso(now)
        cursor = await self._conn.execute(
            """
            UPDATE follow_ups
            SET status = ?, updated_at = ?,
                completed_at = ?,
                completed_reason = ?
            WHERE follow_up_id = ? AND status = 'pending'
            """,
            (
                status.value,
                ts,
                ts if status == FollowUpStatus.COMPLETED else None,
                reason.value if reason else None,
                follow_up_id,
            ),
        )
        return cursor.rowcount == 1

    async def advance(
        self,
        follow_up_id: str,
        expected_number: int,
        due_date: datetime,
        now: datetime,
    ) -> bool:
        """follow_up_number + 1 并重置截止时间

        仅当仍为 pending 且次数等于 expected_number 时生效。
        """
        cursor = await self._conn.execute(
            """
            UPDATE follow_ups
            SET follow_up_number = follow_up_number + 1,
                due_date = ?, updated_at = ?
            WHERE follow_up_id = ? AND status = 'pending'
              AND follow_up_number = ? AND follow_up_number < 3
            """,
            (to_iso(due_date), to_iso(now), follow_up_id, expected_number),
        )
        return cursor.rowcount == 1

    async def mark_escalated(
        self,
        follow_up_id: str,
        manager_id: int | None,
        now: datetime,
        only_if_not_escalated: bool = False,
    ) -> bool:
        """设置升级标记，状态保持不变"""
        sql = """
            UPDATE follow_ups
            SET escalated_to_manager = 1, manager_id = ?,
                escalation_date = ?, updated_at = ?
            WHERE follow_up_id = ? AND status = 'pending'
        """
        if only_if_not_escalated:
            sql += " AND escalated_to_manager = 0"
        ts = to_iso(now)
        cursor = await self._conn.execute(sql, (manager_id, ts, ts, follow_up_id))
        return cursor.rowcount == 1

    async def list_needing_reminders(self, now: datetime, limit: int = 1000) -> list[FollowUp]:
        """pending、已到期、且当天没有提醒记录的跟进（跨用户）"""
        cursor = await self._conn.execute(
            f"""
            {_SELECT}
            WHERE status = 'pending' AND due_date <= ?
              AND NOT EXISTS (
                  SELECT 1 FROM history h
                  WHERE h.entity_id = follow_ups.follow_up_id
                    AND h.day = ?
                    AND h.action IN {_REMINDER_ACTIONS_SQL}
              )
            ORDER BY due_date ASC
            LIMIT ?
            """,
            (to_iso(now), day_key(now), limit),
        )
        rows = await cursor.fetchall()
        return [self._row_to_follow_up(r) for r in rows]

    async def list_escalation_candidates(
        self, overdue_before: datetime, limit: int = 500
    ) -> list[FollowUp]:
        """第 3 次跟进、截止时间早于 overdue_before、尚未升级的 pending 跟进"""
        cursor = await self._conn.execute(
            f"""
            {_SELECT}
            WHERE status = 'pending' AND follow_up_number = 3
              AND escalated_to_manager = 0 AND due_date < ?
            ORDER BY due_date ASC
            LIMIT ?
            """,
            (to_iso(overdue_before), limit),
        )
        rows = await cursor.fetchall()
        return [self._row_to_follow_up(r) for r in rows]

    async def exists_for_source_event(self, event_id: str) -> bool:
        """是否已有由该事件生成的跟进"""
        cursor = await self._conn.execute(
            "SELECT 1 FROM follow_ups WHERE source_event_id = ? LIMIT 1", (event_id,)
        )
        return await cursor.fetchone() is not None

    async def exists_for_client_since(
        self, owner_id: int, client_name: str, since: datetime
    ) -> bool:
        """同一 (用户, 客户) 自 since 以来是否已创建过跟进"""
        cursor = await self._conn.execute(
            """
            SELECT 1 FROM follow_ups
            WHERE owner_id = ? AND lower(client_name) = lower(?) AND created_at >= ?
            LIMIT 1
            """,
            (owner_id, client_name, to_iso(since)),
        )
        return await cursor.fetchone() is not None

    async def get_stats(self, owner_id: int, now: datetime) -> FollowUpStats:
        """按查询时刻统计"""
        today = start_of_day(now)
        cursor = await self._conn.execute(
            """
            SELECT
                COALESCE(SUM(status = 'pending'), 0),
                COALESCE(SUM(status = 'completed'), 0),
                COALESCE(SUM(status = 'no_response'), 0),
                COALESCE(SUM(status = 'pending' AND due_date < ?), 0),
                COALESCE(SUM(status = 'pending' AND due_date >= ? AND due_date < ?), 0),
                COALESCE(SUM(status = 'pending' AND escalated_to_manager = 1), 0)
            FROM follow_ups
            WHERE owner_id = ?
            """,
            (
                to_iso(now),
                to_iso(today),
                to_iso(today + timedelta(days=1)),
                owner_id,
            ),
        )
        row = await cursor.fetchone()
        return FollowUpStats(
            total_pending=row[0],
            total_completed=row[1],
            total_no_response=row[2],
            overdue_count=row[3],
            due_today_count=row[4],
            escalated_count=row[5],
        )

    @staticmethod
    def _row_to_follow_up(row: aiosqlite.Row) -> FollowUp:
        """将数据库行转换为 FollowUp 模型"""
        data = dict(zip(_COLUMNS, tuple(row), strict=True))
        return FollowUp(
            follow_up_id=data["follow_up_id"],
            owner_id=data["owner_id"],
            client_name=data["client_name"],
            client_email=data["client_email"],
            document_type=data["document_type"],
            email_subject=data["email_subject"],
            original_email_id=data["original_email_id"],
            follow_up_number=data["follow_up_number"],
            status=data["status"],
            escalated_to_manager=bool(data["escalated_to_manager"]),
            manager_id=data["manager_id"],
            escalation_date=from_iso(data["escalation_date"]),
            sent_date=from_iso(data["sent_date"]),
            due_date=from_iso(data["due_date"]),
            created_at=from_iso(data["created_at"]),
            updated_at=from_iso(data["updated_at"]),
            completed_at=from_iso(data["completed_at"]),
            completed_reason=data["completed_reason"],
            source_event_id=data["source_event_id"],
        )
