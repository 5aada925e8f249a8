"""时间源 -- 可注入的时钟与日期工具

所有业务逻辑通过 Clock 获取当前时间，测试中替换为固定时钟。
时间统一使用 UTC，"同一天" 按 UTC 日历日计算。
"""

from collections.abc import Callable
from datetime import UTC, date, datetime

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """默认时钟：当前 UTC 时间"""
    return datetime.now(UTC)


def fixed_clock(moment: datetime) -> Clock:
    """返回永远指向 moment 的时钟"""
    pinned = ensure_utc(moment)
    return lambda: pinned


def ensure_utc(value: datetime) -> datetime:
    """naive datetime 视为 UTC，aware datetime 转换到 UTC"""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def day_key(value: datetime) -> str:
    """日历日键（YYYY-MM-DD），用于同日提醒去重"""
    return ensure_utc(value).date().isoformat()


def start_of_day(value: datetime) -> datetime:
    """当日 00:00 UTC"""
    d: date = ensure_utc(value).date()
    return datetime(d.year, d.month, d.day, tzinfo=UTC)


def to_iso(value: datetime) -> str:
    """统一的存储格式（UTC、微秒精度），保证 SQLite 中按字符串比较即按时间比较"""
    return ensure_utc(value).isoformat(timespec="microseconds")


def from_iso(value: str | None) -> datetime | None:
    """解析存储格式，空值返回 None"""
    if not value:
        return None
    return ensure_utc(datetime.fromisoformat(value))
