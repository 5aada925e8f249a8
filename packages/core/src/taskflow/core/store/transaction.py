"""实体变更 + 历史记录原子事务封装

在同一 SQLite 事务内提交实体写入和对应的历史记录，失败时回滚。
状态类更新是条件 UPDATE：未命中（并发修改或状态不符）时回滚并返回 False，
不写历史记录。
"""

from collections.abc import Awaitable, Callable
from datetime import datetime

import aiosqlite

from ..models.event import NotificationEvent
from ..models.history import HistoryRecord
from .event_store import SqliteEventStore
from .history_store import SqliteHistoryStore


async def create_with_history(
    conn: aiosqlite.Connection,
    history_store: SqliteHistoryStore,
    insert: Callable[[], Awaitable[None]],
    records: list[HistoryRecord],
) -> None:
    """在同一事务内插入实体和历史记录

    Args:
        conn: 数据库连接（需在同一连接上操作以保证事务性）
        history_store: HistoryStore 实例
        insert: 执行实体插入的协程工厂
        records: 要追加的历史记录

    Raises:
        Exception: 如果事务提交失败，自动回滚
    """
    try:
        await insert()
        for record in records:
            await history_store.append(record)
        await conn.commit()
    except Exception:
        await conn.rollback()
        raise


async def update_with_history(
    conn: aiosqlite.Connection,
    history_store: SqliteHistoryStore,
    update: Callable[[], Awaitable[bool]],
    records: list[HistoryRecord],
    follow_on: Callable[[], Awaitable[None]] | None = None,
) -> bool:
    """条件更新实体，命中后在同一事务内追加历史记录

    Args:
        conn: 数据库连接
        history_store: HistoryStore 实例
        update: 条件更新协程工厂，返回是否命中
        records: 命中后要追加的历史记录
        follow_on: 命中后在同一事务内执行的附加写入（如创建替代待办）

    Returns:
        True 如果更新命中并已提交
    """
    try:
        applied = await update()
        if not applied:
            await conn.rollback()
            return False
        if follow_on is not None:
            await follow_on()
        for record in records:
            await history_store.append(record)
        await conn.commit()
        return True
    except Exception:
        await conn.rollback()
        raise


async def append_history_only(
    conn: aiosqlite.Connection,
    history_store: SqliteHistoryStore,
    record: HistoryRecord,
) -> None:
    """仅追加一条历史记录

    reminder_sent 当天重复时抛出 aiosqlite.IntegrityError（已回滚）。
    """
    try:
        await history_store.append(record)
        await conn.commit()
    except Exception:
        await conn.rollback()
        raise


async def append_event_only(
    conn: aiosqlite.Connection,
    event_store: SqliteEventStore,
    event: NotificationEvent,
    received_at: datetime,
) -> None:
    """写入一条入站事件

    event_id / idempotency_key 重复时抛出 aiosqlite.IntegrityError（已回滚）。
    """
    try:
        await event_store.append_event(event, received_at)
        await conn.commit()
    except Exception:
        await conn.rollback()
        raise
