"""用户目录与通知偏好 SQLite 实现（只读为主）

用户与偏好由外部管理系统维护；upsert 方法供同步任务与测试写入。
"""

import aiosqlite

from ..models.user import DirectoryUser, NotificationPreferences

_USER_COLUMNS = "user_id, full_name, email, is_manager, is_active, manager_id"


class SqliteUserStore:
    """用户目录 + 通知偏好的 SQLite 实现"""

    def __init__(self, conn: aiosqlite.Connection) -> None:
        self._conn = conn

    async def get_user(self, user_id: int) -> DirectoryUser | None:
        """根据 user_id 查询用户"""
        cursor = await self._conn.execute(
            f"SELECT {_USER_COLUMNS} FROM users WHERE user_id = ?",
            (user_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return None
        return self._row_to_user(row)

    async def list_active_managers(self, exclude_user_id: int | None = None) -> list[DirectoryUser]:
        """查询在职经理，按 user_id 升序"""
        cursor = await self._conn.execute(
            f"""
            SELECT {_USER_COLUMNS} FROM users
            WHERE is_manager = 1 AND is_active = 1 AND user_id != ?
            ORDER BY user_id ASC
            """,
            (exclude_user_id if exclude_user_id is not None else -1,),
        )
        rows = await cursor.fetchall()
        return [self._row_to_user(r) for r in rows]

    async def upsert_user(self, user: DirectoryUser) -> None:
        """写入或覆盖用户目录条目（不自动提交）"""
        await self._conn.execute(
            f"""
            INSERT INTO users ({_USER_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                full_name = excluded.full_name,
                email = excluded.email,
                is_manager = excluded.is_manager,
                is_active = excluded.is_active,
                manager_id = excluded.manager_id
            """,
            (
                user.user_id,
                user.full_name,
                user.email,
                int(user.is_manager),
                int(user.is_active),
                user.manager_id,
            ),
        )

    async def get_preferences(self, user_id: int) -> NotificationPreferences:
        """查询通知偏好；没有记录时返回默认值（全部开启）"""
        cursor = await self._conn.execute(
            """
            SELECT email_enabled, email_follow_up_reminders
            FROM notification_preferences WHERE user_id = ?
            """,
            (user_id,),
        )
        row = await cursor.fetchone()
        if row is None:
            return NotificationPreferences(user_id=user_id)
        return NotificationPreferences(
            user_id=user_id,
            email_enabled=bool(row[0]),
            email_follow_up_reminders=bool(row[1]),
        )

    async def upsert_preferences(self, prefs: NotificationPreferences) -> None:
        """写入或覆盖通知偏好（不自动提交）"""
        await self._conn.execute(
            """
            INSERT INTO notification_preferences
                (user_id, email_enabled, email_follow_up_reminders)
            VALUES (?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                email_enabled = excluded.email_enabled,
                email_follow_up_reminders = excluded.email_follow_up_reminders
            """,
            (prefs.user_id, int(prefs.email_enabled), int(prefs.email_follow_up_reminders)),
        )

    @staticmethod
    def _row_to_user(row: aiosqlite.Row) -> DirectoryUser:
        """将数据库行转换为 DirectoryUser 模型"""
        return DirectoryUser(
            user_id=row[0],
            full_name=row[1],
            email=row[2],
            is_manager=bool(row[3]),
            is_active=bool(row[4]),
            manager_id=row[5],
        )
