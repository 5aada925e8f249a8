"""packages/core 测试配置 -- 核心层 fixture"""

from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from pathlib import Path

import pytest
import pytest_asyncio
from taskflow.core.store import StoreGroup, create_store_group


@pytest.fixture
def now() -> datetime:
    """测试基准时刻"""
    return datetime(2024, 3, 15, 12, 0, tzinfo=UTC)


@pytest_asyncio.fixture
async def core_db_path(tmp_path: Path) -> Path:
    """核心层临时数据库路径"""
    return tmp_path / "sqlite" / "core_test.db"


@pytest_asyncio.fixture
async def store_group(core_db_path: Path) -> AsyncGenerator[StoreGroup, None]:
    """核心层已初始化的 StoreGroup"""
    group = await create_store_group(str(core_db_path))
    yield group
    await group.conn.close()
