"""Taskflow Core Store -- SQLite 持久化实现

提供工厂函数创建共享数据库连接的 Store 实例组。
"""

from pathlib import Path

import aiosqlite

from .event_store import SqliteEventStore
from .follow_up_store import SqliteFollowUpStore
from .history_store import SqliteHistoryStore
from .sqlite_init import init_db, verify_wal_mode
from .todo_store import SqliteTodoStore
from .transaction import (
    append_event_only,
    append_history_only,
    create_with_history,
    update_with_history,
)
from .user_store import SqliteUserStore


class StoreGroup:
    """Store 实例组 -- 共享同一个数据库连接"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self.conn = conn
        self.todo_store = SqliteTodoStore(conn)
        self.follow_up_store = SqliteFollowUpStore(conn)
        self.history_store = SqliteHistoryStore(conn)
        self.event_store = SqliteEventStore(conn)
        self.user_store = SqliteUserStore(conn)


async def open_db(db_path: str | Path) -> aiosqlite.Connection:
    """打开并初始化数据库连接"""
    conn = await aiosqlite.connect(str(db_path))
    conn.row_factory = aiosqlite.Row
    await init_db(conn)
    return conn


async def create_store_group(db_path: str) -> StoreGroup:
    """创建 Store 实例组

    Args:
        db_path: SQLite 数据库文件路径

    Returns:
        StoreGroup 实例
    """
    # 确保数据库目录存在
    db_dir = Path(db_path).parent
    db_dir.mkdir(parents=True, exist_ok=True)

    conn = await open_db(db_path)
    return StoreGroup(conn=conn)


__all__ = [
    "StoreGroup",
    "create_store_group",
    "open_db",
    "SqliteTodoStore",
    "SqliteFollowUpStore",
    "SqliteHistoryStore",
    "SqliteEventStore",
    "SqliteUserStore",
    "init_db",
    "verify_wal_mode",
    "create_with_history",
    "update_with_history",
    "append_history_only",
    "append_event_only",
]
