"""依赖注入模块 -- 通过 FastAPI Depends 注入 Store、Notifier 与业务服务

Store 与 Notifier 通过 app.state 管理，在 lifespan 中初始化/清理。
服务对象无状态，按请求构建。
"""

from fastapi import Depends, Header, Request
from taskflow.core.clock import Clock, utc_now
from taskflow.core.config import get_cron_secret, get_default_manager_id
from taskflow.core.store import StoreGroup
from taskflow.notify import Notifier

from .errors import UnauthorizedError
from .services.completion_service import AutoCompletionMatcher
from .services.event_service import EventIntakeService
from .services.follow_up_service import FollowUpService
from .services.scheduler import EscalationScheduler
from .services.todo_service import TodoService


def get_store_group(request: Request) -> StoreGroup:
    """从 app.state 获取 StoreGroup 实例"""
    return request.app.state.store_group


def get_notifier(request: Request) -> Notifier:
    """从 app.state 获取 Notifier 实例"""
    return request.app.state.notifier


def get_clock(request: Request) -> Clock:
    """测试中可通过 app.state.clock 注入固定时钟"""
    return getattr(request.app.state, "clock", None) or utc_now


def get_current_user_id(x_user_id: str | None = Header(default=None)) -> int:
    """从 X-User-Id 头获取调用方身份（由上游认证层写入）"""
    if not x_user_id:
        raise UnauthorizedError("missing X-User-Id header")
    try:
        user_id = int(x_user_id)
    except ValueError as e:
        raise UnauthorizedError("invalid X-User-Id header") from e
    if user_id <= 0:
        raise UnauthorizedError("invalid X-User-Id header")
    return user_id


def verify_cron_secret(authorization: str | None = Header(default=None)) -> None:
    """配置了 TASKFLOW_CRON_SECRET 时要求 Bearer 密钥"""
    secret = get_cron_secret()
    if secret and authorization != f"Bearer {secret}":
        raise UnauthorizedError("invalid cron credentials")


def get_todo_service(
    store_group: StoreGroup = Depends(get_store_group),
    notifier: Notifier = Depends(get_notifier),
    clock: Clock = Depends(get_clock),
) -> TodoService:
    return TodoService(store_group, notifier, clock=clock)


def get_follow_up_service(
    store_group: StoreGroup = Depends(get_store_group),
    notifier: Notifier = Depends(get_notifier),
    clock: Clock = Depends(get_clock),
) -> FollowUpService:
    return FollowUpService(
        store_group, notifier, clock=clock, default_manager_id=get_default_manager_id()
    )


def get_intake_service(
    store_group: StoreGroup = Depends(get_store_group),
    notifier: Notifier = Depends(get_notifier),
    clock: Clock = Depends(get_clock),
    todo_service: TodoService = Depends(get_todo_service),
    follow_up_service: FollowUpService = Depends(get_follow_up_service),
) -> EventIntakeService:
    return EventIntakeService(
        store_group,
        todo_service,
        follow_up_service,
        AutoCompletionMatcher(store_group, notifier, clock=clock),
        clock=clock,
    )


def get_scheduler(
    store_group: StoreGroup = Depends(get_store_group),
    notifier: Notifier = Depends(get_notifier),
    clock: Clock = Depends(get_clock),
) -> EscalationScheduler:
    return EscalationScheduler(
        store_group, notifier, clock=clock, default_manager_id=get_default_manager_id()
    )
