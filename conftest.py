"""全局 pytest 配置 -- 临时 SQLite 数据库 fixture

各包 tests/conftest.py 在此基础上提供 StoreGroup、Notifier 等更高层 fixture。
"""

from collections.abc import AsyncGenerator
from pathlib import Path

import aiosqlite
import pytest_asyncio
from taskflow.core.store import open_db


@pytest_asyncio.fixture
async def tmp_db_path(tmp_path: Path) -> Path:
    """临时 SQLite 数据库路径（位于 sqlite/ 子目录，与默认布局一致）"""
    db_dir = tmp_path / "sqlite"
    db_dir.mkdir(parents=True, exist_ok=True)
    return db_dir / "taskflow.db"


@pytest_asyncio.fixture
async def db_conn(tmp_db_path: Path) -> AsyncGenerator[aiosqlite.Connection, None]:
    """已建表（含索引、WAL）的裸连接，用于直接检查 schema"""
    conn = await open_db(tmp_db_path)
    yield conn
    await conn.close()
