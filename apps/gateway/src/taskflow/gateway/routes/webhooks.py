"""入站 webhook 路由

POST /api/webhooks/notification-created: 通知创建后触发自动完成与待办生成。
"""

from typing import Any

import structlog
from fastapi import APIRouter, Body, Depends
from taskflow.core.clock import Clock
from taskflow.core.exceptions import ValidationError

from ..deps import get_clock, get_intake_service
from ..services.event_service import EventIntakeService, notification_to_event

log = structlog.get_logger()

router = APIRouter()


@router.post("/api/webhooks/notification-created")
async def notification_created(
    body: dict[str, Any] = Body(...),
    intake: EventIntakeService = Depends(get_intake_service),
    clock: Clock = Depends(get_clock),
):
    """处理一条通知；重复投递返回 duplicate=true"""
    if body.get("user_id") is None:
        raise ValidationError("notification user_id is required", field="user_id")
    event = notification_to_event(body, clock())
    result = await intake.handle_event(event)
    await log.ainfo(
        "notification_webhook_processed",
        event_id=result.event_id,
        duplicate=result.duplicate,
        todo_generated=result.todo_generated,
    )
    return {
        "success": True,
        "message": result.message,
        "result": result.model_dump(mode="json"),
    }
