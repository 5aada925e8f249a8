"""SQLite 数据库初始化

PRAGMA 配置 + 表 DDL + 索引创建。
使用 aiosqlite 异步操作。
"""

import aiosqlite

# todos 表 DDL
_TODOS_DDL = """
CREATE TABLE IF NOT EXISTS todos (
    todo_id          TEXT PRIMARY KEY,
    owner_id         INTEGER NOT NULL,
    title            TEXT NOT NULL,
    description      TEXT NOT NULL DEFAULT '',
    category         TEXT NOT NULL,
    priority         TEXT NOT NULL DEFAULT 'standard',
    status           TEXT NOT NULL DEFAULT 'pending',
    due_date         TEXT,
    auto_generated   INTEGER NOT NULL DEFAULT 0,
    source_event_id  TEXT,
    action_type      TEXT NOT NULL DEFAULT '',
    action_data      TEXT NOT NULL DEFAULT '{}',
    client_name      TEXT,
    document_type    TEXT,
    application_id   TEXT,
    created_at       TEXT NOT NULL,
    updated_at       TEXT NOT NULL,
    completed_at     TEXT,
    dismissed_at     TEXT
);
"""

_TODOS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_todos_owner_status ON todos(owner_id, status);",
    "CREATE INDEX IF NOT EXISTS idx_todos_status_due ON todos(status, due_date);",
    "CREATE INDEX IF NOT EXISTS idx_todos_owner_action ON todos(owner_id, action_type);",
    "CREATE INDEX IF NOT EXISTS idx_todos_application ON todos(application_id);",
    "CREATE INDEX IF NOT EXISTS idx_todos_source_event ON todos(source_event_id);",
]

# follow_ups 表 DDL
_FOLLOW_UPS_DDL = """
CREATE TABLE IF NOT EXISTS follow_ups (
    follow_up_id          TEXT PRIMARY KEY,
    owner_id              INTEGER NOT NULL,
    client_name           TEXT NOT NULL,
    client_email          TEXT,
    document_type         TEXT,
    email_subject         TEXT NOT NULL,
    original_email_id     TEXT,
    follow_up_number      INTEGER NOT NULL DEFAULT 1
                          CHECK (follow_up_number BETWEEN 1 AND 3),
    status                TEXT NOT NULL DEFAULT 'pending',
    escalated_to_manager  INTEGER NOT NULL DEFAULT 0,
    manager_id            INTEGER,
    escalation_date       TEXT,
    sent_date             TEXT NOT NULL,
    due_date              TEXT NOT NULL,
    created_at            TEXT NOT NULL,
    updated_at            TEXT NOT NULL,
    completed_at          TEXT,
    completed_reason      TEXT,
    source_event_id       TEXT
);
"""

_FOLLOW_UPS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_follow_ups_owner_status ON follow_ups(owner_id, status);",
    "CREATE INDEX IF NOT EXISTS idx_follow_ups_status_due ON follow_ups(status, due_date);",
    (
        "CREATE INDEX IF NOT EXISTS idx_follow_ups_owner_client "
        "ON follow_ups(owner_id, client_name, created_at);"
    ),
    "CREATE INDEX IF NOT EXISTS idx_follow_ups_source_event ON follow_ups(source_event_id);",
]

# history 表 DDL（append-only）
_HISTORY_DDL = """
CREATE TABLE IF NOT EXISTS history (
    record_id        TEXT PRIMARY KEY,
    entity_type      TEXT NOT NULL,
    entity_id        TEXT NOT NULL,
    owner_id         INTEGER NOT NULL,
    action           TEXT NOT NULL,
    day              TEXT NOT NULL,
    created_at       TEXT NOT NULL,
    actor            TEXT NOT NULL DEFAULT 'user',
    previous_status  TEXT,
    new_status       TEXT,
    note             TEXT NOT NULL DEFAULT '',
    details          TEXT NOT NULL DEFAULT '{}'
);
"""

_HISTORY_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_history_entity ON history(entity_id, created_at);",
    "CREATE INDEX IF NOT EXISTS idx_history_entity_day ON history(entity_id, day, action);",
    # 同一跟进同一天最多一条计划提醒（并发调度也不会重复发送）
    (
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_history_reminder_once_per_day "
        "ON history(entity_id, action, day) WHERE action = 'reminder_sent';"
    ),
]

# events 表 DDL（入站事件，append-only）
_EVENTS_DDL = """
CREATE TABLE IF NOT EXISTS events (
    event_id         TEXT PRIMARY KEY,
    type             TEXT NOT NULL,
    user_id          INTEGER,
    payload          TEXT NOT NULL DEFAULT '{}',
    created_at       TEXT NOT NULL,
    received_at      TEXT NOT NULL,
    idempotency_key  TEXT
);
"""

_EVENTS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_events_type_created ON events(type, created_at);",
    # 幂等键唯一约束（仅对非 NULL 值生效）
    (
        "CREATE UNIQUE INDEX IF NOT EXISTS idx_events_idempotency_key "
        "ON events(idempotency_key) WHERE idempotency_key IS NOT NULL;"
    ),
]

# 用户目录（只读视图，由外部用户管理系统写入）
_USERS_DDL = """
CREATE TABLE IF NOT EXISTS users (
    user_id     INTEGER PRIMARY KEY,
    full_name   TEXT NOT NULL DEFAULT '',
    email       TEXT,
    is_manager  INTEGER NOT NULL DEFAULT 0,
    is_active   INTEGER NOT NULL DEFAULT 1,
    manager_id  INTEGER
);
"""

_PREFERENCES_DDL = """
CREATE TABLE IF NOT EXISTS notification_preferences (
    user_id                    INTEGER PRIMARY KEY,
    email_enabled              INTEGER NOT NULL DEFAULT 1,
    email_follow_up_reminders  INTEGER NOT NULL DEFAULT 1
);
"""

_USERS_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_users_manager ON users(is_manager, is_active);",
]


async def init_db(conn: aiosqlite.Connection) -> None:
    """初始化数据库：设置 PRAGMA + 创建表 + 创建索引

    Args:
        conn: aiosqlite 数据库连接
    """
    # 设置 PRAGMA
    await conn.execute("PRAGMA journal_mode = WAL;")
    await conn.execute("PRAGMA foreign_keys = ON;")
    await conn.execute("PRAGMA busy_timeout = 5000;")

    # 创建表
    for ddl in (
        _TODOS_DDL,
        _FOLLOW_UPS_DDL,
        _HISTORY_DDL,
        _EVENTS_DDL,
        _USERS_DDL,
        _PREFERENCES_DDL,
    ):
        await conn.execute(ddl)

    # 创建索引
    for idx_sql in (
        _TODOS_INDEXES
        + _FOLLOW_UPS_INDEXES
        + _HISTORY_INDEXES
        + _EVENTS_INDEXES
        + _USERS_INDEXES
    ):
        await conn.execute(idx_sql)

    await conn.commit()


async def verify_wal_mode(conn: aiosqlite.Connection) -> bool:
    """验证 WAL 模式是否生效

    Returns:
        True 如果 WAL 模式已启用
    """
    cursor = await conn.execute("PRAGMA journal_mode;")
    row = await cursor.fetchone()
    return row is not None and row[0].lower() == "wal"
