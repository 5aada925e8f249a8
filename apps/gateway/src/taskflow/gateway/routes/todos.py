"""待办路由

GET  /api/todos: 分页查询，支持状态/分类/优先级/逾期/即将到期筛选
POST /api/todos: 直接创建，或 from_notification=true 时按生成规则从通知创建
PUT  /api/todos/bulk: 批量完成/忽略
PUT  /api/todos/{todo_id}/status: 单个状态流转
GET  /api/todos/stats: 统计 + 派生指标
"""

from typing import Any

from fastapi import APIRouter, Body, Depends, Query
from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError
from starlette.responses import JSONResponse
from taskflow.core.clock import Clock
from taskflow.core.config import DEFAULT_PAGE_LIMIT, DUE_SOON_WINDOW
from taskflow.core.exceptions import ValidationError
from taskflow.core.models import (
    Todo,
    TodoCategory,
    TodoFilters,
    TodoPriority,
    TodoStats,
    TodoStatus,
)

from ..deps import get_clock, get_current_user_id, get_intake_service, get_todo_service
from ..services.event_service import EventIntakeService, notification_to_event
from ..services.todo_service import TodoService

router = APIRouter()


class StatusUpdateRequest(BaseModel):
    status: str = Field(description="目标状态")


class BulkUpdateRequest(BaseModel):
    todo_ids: list[str] = Field(description="待办 ID 列表（最多 50 个）")
    status: str = Field(description="completed 或 dismissed")


def _split(values: list[str] | None) -> list[str]:
    """支持 ?status=a&status=b 与 ?status=a,b 两种写法"""
    result: list[str] = []
    for value in values or []:
        result.extend(v.strip() for v in value.split(",") if v.strip())
    return result


def _parse_enum(enum_cls, values: list[str] | None, field: str) -> list:
    parsed = []
    for value in _split(values):
        try:
            parsed.append(enum_cls(value))
        except ValueError as e:
            raise ValidationError(f"unknown {field}: {value}", field=field) from e
    return parsed


def todo_view(todo: Todo, clock: Clock) -> dict[str, Any]:
    """待办 JSON 视图，附带按当前时刻推导的逾期标记"""
    now = clock()
    data = todo.model_dump(mode="json")
    data["is_overdue"] = todo.is_overdue(now)
    data["is_due_soon"] = todo.is_due_soon(now, DUE_SOON_WINDOW)
    return data


def stats_view(stats: TodoStats) -> dict[str, Any]:
    """统计 + 派生指标（活跃数、完成率、逾期等级、工作负载）"""
    active = stats.pending_count + stats.in_progress_count
    completion_rate = (
        round(stats.completed_count / stats.total_todos * 100) if stats.total_todos else 0
    )
    if stats.overdue_count > 5:
        level = "critical"
    elif stats.overdue_count > 2:
        level = "high"
    elif stats.overdue_count > 0:
        level = "medium"
    else:
        level = "normal"

    if active > 10:
        workload = "heavy"
    elif active > 5:
        workload = "moderate"
    else:
        workload = "light"

    return {
        "stats": {
            **stats.model_dump(mode="json"),
            "active_todos": active,
            "completion_rate": completion_rate,
            "overdue_priority_level": level,
        },
        "insights": {
            "has_overdue": stats.overdue_count > 0,
            "has_due_soon": stats.due_soon_count > 0,
            "needs_attention": stats.overdue_count > 0 or stats.due_soon_count > 0,
            "workload_level": workload,
        },
    }


@router.get("/api/todos")
async def list_todos(
    status: list[str] | None = Query(default=None, description="按状态筛选"),
    category: list[str] | None = Query(default=None, description="按分类筛选"),
    priority: list[str] | None = Query(default=None, description="按优先级筛选"),
    overdue_only: bool = Query(default=False),
    due_soon_only: bool = Query(default=False),
    limit: int = Query(default=DEFAULT_PAGE_LIMIT),
    offset: int = Query(default=0),
    user_id: int = Depends(get_current_user_id),
    service: TodoService = Depends(get_todo_service),
    clock: Clock = Depends(get_clock),
):
    """分页查询：urgent 优先，其次截止时间升序（无截止时间排最后），最后创建时间倒序"""
    try:
        filters = TodoFilters(
            owner_id=user_id,
            statuses=_parse_enum(TodoStatus, status, "status"),
            categories=_parse_enum(TodoCategory, category, "category"),
            priorities=_parse_enum(TodoPriority, priority, "priority"),
            overdue_only=overdue_only,
            due_soon_only=due_soon_only,
            limit=limit,
            offset=offset,
        )
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e, "invalid filters") from e

    todos, total = await service.get_by_user(filters)
    return {
        "todos": [todo_view(t, clock) for t in todos],
        "total": total,
        "limit": filters.limit,
        "offset": filters.offset,
        "has_more": filters.offset + len(todos) < total,
    }


@router.post("/api/todos", status_code=201)
async def create_todo(
    body: dict[str, Any] = Body(...),
    user_id: int = Depends(get_current_user_id),
    service: TodoService = Depends(get_todo_service),
    intake: EventIntakeService = Depends(get_intake_service),
    clock: Clock = Depends(get_clock),
):
    """创建待办

    from_notification=true 时 notification_data 作为事件处理（自动完成 + 生成规则）。
    """
    if body.get("from_notification"):
        notification = body.get("notification_data")
        if not isinstance(notification, dict):
            raise ValidationError("notification_data is required", field="notification_data")
        event = notification_to_event(notification, clock(), default_user_id=user_id)
        if event.user_id != user_id:
            raise ValidationError("notification belongs to another user", field="user_id")
        result = await intake.handle_event(event)
        todo = await service.get(result.todo_id, user_id) if result.todo_id else None
        return JSONResponse(
            status_code=201 if result.todo_generated else 200,
            content={
                "success": True,
                "result": result.model_dump(mode="json"),
                "todo": todo_view(todo, clock) if todo else None,
            },
        )

    fields = {k: v for k, v in body.items() if k not in ("owner_id", "from_notification")}
    todo = await service.create({**fields, "owner_id": user_id})
    return {"success": True, "todo": todo_view(todo, clock)}


@router.put("/api/todos/bulk")
async def bulk_update(
    request: BulkUpdateRequest,
    user_id: int = Depends(get_current_user_id),
    service: TodoService = Depends(get_todo_service),
):
    """批量更新 -- 单条失败计入 errors，不影响其余条目"""
    result = await service.bulk_update_status(request.todo_ids, user_id, request.status)
    return {
        **result.model_dump(mode="json"),
        "message": f"{result.updated_count} todos updated to {result.status.value}",
    }


@router.put("/api/todos/{todo_id}/status")
async def update_status(
    todo_id: str,
    request: StatusUpdateRequest,
    user_id: int = Depends(get_current_user_id),
    service: TodoService = Depends(get_todo_service),
    clock: Clock = Depends(get_clock),
):
    todo = await service.update_status(todo_id, user_id, request.status)
    return {"success": True, "todo": todo_view(todo, clock)}


@router.get("/api/todos/stats")
async def todo_stats(
    user_id: int = Depends(get_current_user_id),
    service: TodoService = Depends(get_todo_service),
):
    stats = await service.get_stats(user_id)
    return {"success": True, **stats_view(stats)}
