"""升级目标经理解析

解析顺序：
1. 跟进所有者的直属经理（在职）
2. TASKFLOW_DEFAULT_MANAGER_ID 指定的默认经理（在职且具经理角色）
3. 其他任意在职经理（按 user_id 升序取第一个）
都不可用时返回 None，由调用方报告错误并在下一轮重试。
"""

import structlog
from taskflow.core.models import DirectoryUser
from taskflow.core.store.user_store import SqliteUserStore

log = structlog.get_logger()


class ManagerResolver:
    """经理解析器"""

    def __init__(self, user_store: SqliteUserStore, default_manager_id: int | None = None) -> None:
        self._user_store = user_store
        self._default_manager_id = default_manager_id

    async def resolve(self, owner_id: int) -> DirectoryUser | None:
        owner = await self._user_store.get_user(owner_id)
        if owner is not None and owner.manager_id is not None:
            assigned = await self._user_store.get_user(owner.manager_id)
            if assigned is not None and assigned.is_active:
                return assigned
            log.info("assigned_manager_unavailable", owner_id=owner_id, manager_id=owner.manager_id)

        if self._default_manager_id is not None and self._default_manager_id != owner_id:
            default = await self._user_store.get_user(self._default_manager_id)
            if default is not None and default.is_active and default.is_manager:
                return default
            log.warning("default_manager_unavailable", manager_id=self._default_manager_id)

        managers = await self._user_store.list_active_managers(exclude_user_id=owner_id)
        if managers:
            return managers[0]
        return None

    async def require_active_manager(self, manager_id: int) -> DirectoryUser | None:
        """手动升级指定的经理必须在职且具经理角色，否则返回 None"""
        manager = await self._user_store.get_user(manager_id)
        if manager is None or not manager.is_active or not manager.is_manager:
            return None
        return manager
