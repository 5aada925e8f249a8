"""TodoStore SQLite 实现

所有读写按 owner_id 隔离；状态更新使用条件 UPDATE（WHERE status = 当前状态），
并发修改同一待办时后到者影响 0 行，由调用方决定如何处理。
此处不提交事务，提交由 transaction 模块负责。
"""

import json
from datetime import datetime, timedelta

import aiosqlite

from ..clock import from_iso, to_iso
from ..models.enums import TodoStatus
from ..models.todo import Todo, TodoFilters, TodoStats

_COLUMNS = (
    "todo_id",
    "owner_id",
    "title",
    "description",
    "category",
    "priority",
    "status",
    "due_date",
    "auto_generated",
    "source_event_id",
    "action_type",
    "action_data",
    "client_name",
    "document_type",
    "application_id",
    "created_at",
    "updated_at",
    "completed_at",
    "dismissed_at",
)
_SELECT = f"SELECT {', '.join(_COLUMNS)} FROM todos"

_ACTIVE_SQL = "('pending', 'in_progress')"

# 紧急优先，其次按截止时间升序（无截止时间排最后），最后按创建时间倒序
_ORDER_BY = (
    "ORDER BY CASE priority WHEN 'urgent' THEN 0 ELSE 1 END, "
    "due_date IS NULL, due_date ASC, created_at DESC"
)


class SqliteTodoStore:
    """TodoStore 的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def create_todo(self, todo: Todo) -> None:
        """创建待办记录"""
        await self._conn.execute(
            f"""
            INSERT INTO todos ({', '.join(_COLUMNS)})
            VALUES ({', '.join('?' for _ in _COLUMNS)})
            """,
            (
                todo.todo_id,
                todo.owner_id,
                todo.title,
                todo.description,
                todo.category.value,
                todo.priority.value,
                todo.status.value,
                to_iso(todo.due_date) if todo.due_date else None,
                int(todo.auto_generated),
                todo.source_event_id,
                todo.action_type,
                json.dumps(todo.action_data, ensure_ascii=False, default=str),
                todo.client_name,
                todo.document_type,
                todo.application_id,
                to_iso(todo.created_at),
                to_iso(todo.updated_at),
                to_iso(todo.completed_at) if todo.completed_at else None,
                to_iso(todo.dismissed_at) if todo.dismissed_at else None,
            ),
        )

    async def get_todo(self, todo_id: str, owner_id: int | None = None) -> Todo | None:
        """查询待办；传入 owner_id 时不属于该用户视为不存在"""
        if owner_id is None:
            cursor = await self._conn.execute(f"{_SELECT} WHERE todo_id = ?", (todo_id,))
        else:
            cursor = await self._conn.execute(
                f"{_SELECT} WHERE todo_id = ? AND owner_id = ?",
                (todo_id, owner_id),
            )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_todo(row)

    async def list_todos(
        self,
        filters: TodoFilters,
        now: datetime,
        due_soon_window: timedelta,
    ) -> tuple[list[Todo], int]:
        """按条件分页查询待办

        Returns:
            (当前页待办, 满足条件的总数)
        """
        clauses = ["owner_id = ?"]
        params: list = [filters.owner_id]

        if filters.statuses:
            clauses.append(f"status IN ({', '.join('?' for _ in filters.statuses)})")
            params.extend(s.value for s in filters.statuses)
        if filters.categories:
            clauses.append(f"category IN ({', '.join('?' for _ in filters.categories)})")
            params.extend(c.value for c in filters.categories)
        if filters.priorities:
            clauses.append(f"priority IN ({', '.join('?' for _ in filters.priorities)})")
            params.extend(p.value for p in filters.priorities)
        if filters.overdue_only:
            clauses.append(f"status IN {_ACTIVE_SQL} AND due_date IS NOT NULL AND due_date < ?")
            params.append(to_iso(now))
        if filters.due_soon_only:
            clauses.append(f"status IN {_ACTIVE_SQL} AND due_date >= ? AND due_date < ?")
            params.extend([to_iso(now), to_iso(now + due_soon_window)])

        where = " AND ".join(clauses)

        cursor = await self._conn.execute(f"SELECT COUNT(*) FROM todos WHERE {where}", params)
        row = await cursor.fetchone()
        total = row[0] if row else 0

        cursor = await self._conn.execute(
            f"{_SELECT} WHERE {where} {_ORDER_BY} LIMIT ? OFFSET ?",
            [*params, filters.limit, filters.offset],
        )
        rows = await cursor.fetchall()
        return [self._row_to_todo(r) for r in rows], total

    async def update_status(
        self,
        todo_id: str,
        from_status: TodoStatus,
        to_status: TodoStatus,
        updated_at: datetime,
    ) -> bool:
        """条件更新状态

        Returns:
            True 如果更新生效；状态已被他人修改时返回 False
        """
        ts = to_iso(updated_at)
        cursor = await self._conn.execute(
            """
            UPDATE todos
            SET status = ?, updated_at = ?,
                completed_at = COALESCE(?, completed_at),
                dismissed_at = COALESCE(?, dismissed_at)
            WHERE todo_id = ? AND status = ?
            """,
            (
                to_status.value,
                ts,
                ts if to_status == TodoStatus.COMPLETED else None,
                ts if to_status == TodoStatus.DISMISSED else None,
                todo_id,
                from_status.value,
            ),
        )
        return cursor.rowcount == 1

    async def get_stats(self, owner_id: int, now: datetime, due_soon_window: timedelta) -> TodoStats:
        """按查询时刻统计"""
        now_iso = to_iso(now)
        cursor = await self._conn.execute(
            f"""
            SELECT
                COUNT(*),
                COALESCE(SUM(status = 'pending'), 0),
                COALESCE(SUM(status = 'in_progress'), 0),
                COALESCE(SUM(status = 'completed'), 0),
                COALESCE(SUM(status = 'dismissed'), 0),
                COALESCE(SUM(status = 'expired'), 0),
                COALESCE(SUM(status IN {_ACTIVE_SQL}
                             AND due_date IS NOT NULL AND due_date < ?), 0),
                COALESCE(SUM(status IN {_ACTIVE_SQL}
                             AND due_date >= ? AND due_date < ?), 0)
            FROM todos
            WHERE owner_id = ?
            """,
            (now_iso, now_iso, to_iso(now + due_soon_window), owner_id),
        )
        row = await cursor.fetchone()

        cursor = await self._conn.execute(
            f"""
            SELECT category, COUNT(*) FROM todos
            WHERE owner_id = ? AND status IN {_ACTIVE_SQL}
            GROUP BY category
            """,
            (owner_id,),
        )
        by_category = {r[0]: r[1] for r in await cursor.fetchall()}

        return TodoStats(
            total_todos=row[0],
            pending_count=row[1],
            in_progress_count=row[2],
            completed_count=row[3],
            dismissed_count=row[4],
            expired_count=row[5],
            overdue_count=row[6],
            due_soon_count=row[7],
            by_category=by_category,
        )

    async def exists_for_source_event(self, event_id: str) -> bool:
        """是否已有由该事件生成的待办"""
        cursor = await self._conn.execute(
            "SELECT 1 FROM todos WHERE source_event_id = ? LIMIT 1", (event_id,)
        )
        return await cursor.fetchone() is not None

    async def list_stale_pending(self, cutoff: datetime, limit: int = 500) -> list[Todo]:
        """查询截止时间早于 cutoff 的 pending 待办（跨用户，供调度器使用）"""
        cursor = await self._conn.execute(
            f"""
            {_SELECT}
            WHERE status = 'pending' AND due_date IS NOT NULL AND due_date < ?
            ORDER BY due_date ASC
            LIMIT ?
            """,
            (to_iso(cutoff), limit),
        )
        rows = await cursor.fetchall()
        return [self._row_to_todo(r) for r in rows]

    async def find_completion_candidates(
        self,
        owner_id: int,
        action_types: list[str],
        application_id: str | None = None,
        client_name: str | None = None,
        document_type: str | None = None,
    ) -> list[Todo]:
        """查询可被自动完成的活跃待办

        application_id 同时匹配列值与 action_data.application_id；
        否则按 (client_name, document_type) 不区分大小写匹配。
        """
        if not action_types:
            return []

        keys: list[str] = []
        params: list = [owner_id, *action_types]
        if application_id:
            keys.append(
                "(application_id = ? "
                "OR CAST(json_extract(action_data, '$.application_id') AS TEXT) = ?)"
            )
            params.extend([application_id, application_id])
        if client_name and document_type:
            keys.append("(lower(client_name) = lower(?) AND lower(document_type) = lower(?))")
            params.extend([client_name, document_type])
        if not keys:
            return []

        cursor = await self._conn.execute(
            f"""
            {_SELECT}
            WHERE owner_id = ?
              AND status IN {_ACTIVE_SQL}
              AND action_type IN ({', '.join('?' for _ in action_types)})
              AND ({' OR '.join(keys)})
            ORDER BY created_at ASC
            """,
            params,
        )
        rows = await cursor.fetchall()
        return [self._row_to_todo(r) for r in rows]

    @staticmethod
    def _row_to_todo(row: aiosqlite.Row) -> Todo:
        """将数据库行转换为 Todo 模型"""
        data = dict(zip(_COLUMNS, tuple(row), strict=True))
        return Todo(
            todo_id=data["todo_id"],
            owner_id=data["owner_id"],
            title=data["title"],
            description=data["description"],
            category=data["category"],
            priority=data["priority"],
            status=data["status"],
            due_date=from_iso(data["due_date"]),
            auto_generated=bool(data["auto_generated"]),
            source_event_id=data["source_event_id"],
            action_type=data["action_type"],
            action_data=json.loads(data["action_data"]) if data["action_data"] else {},
            client_name=data["client_name"],
            document_type=data["document_type"],
            application_id=data["application_id"],
            created_at=from_iso(data["created_at"]),
            updated_at=from_iso(data["updated_at"]),
            completed_at=from_iso(data["completed_at"]),
            dismissed_at=from_iso(data["dismissed_at"]),
        )

