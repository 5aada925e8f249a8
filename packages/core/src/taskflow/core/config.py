"""配置常量模块 -- 可通过环境变量覆盖

包含数据库路径、到期宽限期、跟进窗口、提醒间隔、批量上限等可配置常量。
路径与密钥类配置在调用时读取，数值类常量在导入时读取。
"""

import os
from datetime import timedelta
from pathlib import Path


def _get_base_dir() -> Path:
    """获取项目 data 基础目录"""
    return Path(os.environ.get("TASKFLOW_DATA_DIR", "data"))


def get_db_path() -> str:
    """获取 SQLite 数据库路径"""
    return os.environ.get(
        "TASKFLOW_DB_PATH",
        str(_get_base_dir() / "sqlite" / "taskflow.db"),
    )


def get_cron_secret() -> str | None:
    """获取 cron 触发端点的 Bearer 密钥，未配置时返回 None（不校验）"""
    return os.environ.get("TASKFLOW_CRON_SECRET") or None


def get_default_manager_id() -> int | None:
    """获取默认升级经理 ID

    当 follow-up 所有者没有可用的直属经理时，自动升级优先落到此用户。
    """
    value = os.environ.get("TASKFLOW_DEFAULT_MANAGER_ID")
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        return None


# 待办过期宽限期：pending 待办超过 due_date 此时长后由调度器标记 expired
EXPIRY_GRACE_HOURS: int = int(os.environ.get("TASKFLOW_EXPIRY_GRACE_HOURS", "24"))

# 过期后新建的 urgent 待办的截止时长
URGENT_REPLACEMENT_DUE_HOURS: int = int(
    os.environ.get("TASKFLOW_URGENT_REPLACEMENT_DUE_HOURS", "2")
)

# "即将到期" 前瞻窗口
DUE_SOON_WINDOW_HOURS: int = int(os.environ.get("TASKFLOW_DUE_SOON_WINDOW_HOURS", "24"))

# 跟进窗口：文档发送后多少天需要跟进客户
FOLLOW_UP_WINDOW_DAYS: int = int(os.environ.get("TASKFLOW_FOLLOW_UP_WINDOW_DAYS", "7"))

# 跟进生成窗口容差（分钟），调度器按 now - 窗口 ± 容差 扫描发送事件
FOLLOW_UP_WINDOW_TOLERANCE_MINUTES: int = int(
    os.environ.get("TASKFLOW_FOLLOW_UP_WINDOW_TOLERANCE_MINUTES", "60")
)

# 提醒间隔：snooze 后的新截止时长，同时也是第 3 次跟进自动升级前的逾期阈值
REMINDER_INTERVAL_DAYS: int = int(os.environ.get("TASKFLOW_REMINDER_INTERVAL_DAYS", "7"))

# 单次批量更新的最大待办数
BULK_UPDATE_MAX_ITEMS: int = 50

# 列表分页
DEFAULT_PAGE_LIMIT: int = 50
MAX_PAGE_LIMIT: int = 200

# 跟进最大次数
MAX_FOLLOW_UP_NUMBER: int = 3


EXPIRY_GRACE = timedelta(hours=EXPIRY_GRACE_HOURS)
URGENT_REPLACEMENT_DUE = timedelta(hours=URGENT_REPLACEMENT_DUE_HOURS)
DUE_SOON_WINDOW = timedelta(hours=DUE_SOON_WINDOW_HOURS)
FOLLOW_UP_WINDOW = timedelta(days=FOLLOW_UP_WINDOW_DAYS)
FOLLOW_UP_WINDOW_TOLERANCE = timedelta(minutes=FOLLOW_UP_WINDOW_TOLERANCE_MINUTES)
REMINDER_INTERVAL = timedelta(days=REMINDER_INTERVAL_DAYS)
