"""跟进路由

GET   /api/follow-ups: 分页查询（pending 优先，其次截止时间升序）
POST  /api/follow-ups: 创建跟进
PATCH /api/follow-ups: 执行动作 complete / snooze / no_response / resend / escalate
GET   /api/follow-ups/stats: 统计
"""

from datetime import datetime
from typing import Literal

import structlog
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from taskflow.core.config import DEFAULT_PAGE_LIMIT, MAX_FOLLOW_UP_NUMBER, MAX_PAGE_LIMIT
from taskflow.core.exceptions import ValidationError
from taskflow.core.models import FollowUpStatus

from ..deps import get_current_user_id, get_follow_up_service
from ..services.follow_up_service import FollowUpService

router = APIRouter()


class CreateFollowUpRequest(BaseModel):
    client_name: str = Field(description="客户名称")
    email_subject: str = Field(description="原始邮件主题")
    client_email: str | None = None
    document_type: str | None = None
    original_email_id: str | None = None
    sent_date: datetime | None = None


class FollowUpActionRequest(BaseModel):
    follow_up_id: str = Field(min_length=1, description="跟进 ID")
    action: Literal["complete", "snooze", "no_response", "resend", "escalate"]
    reason: str | None = Field(default=None, description="complete 的完成原因")
    manager_id: int | None = Field(default=None, description="escalate 的目标经理")
    manager_name: str | None = None


@router.get("/api/follow-ups")
async def list_follow_ups(
    status: str | None = Query(default=None),
    follow_up_number: int | None = Query(default=None),
    client_name: str | None = Query(default=None),
    limit: int = Query(default=DEFAULT_PAGE_LIMIT),
    offset: int = Query(default=0),
    user_id: int = Depends(get_current_user_id),
    service: FollowUpService = Depends(get_follow_up_service),
):
    try:
        status_filter = FollowUpStatus(status) if status else None
    except ValueError as e:
        raise ValidationError(f"unknown follow-up status: {status}", field="status") from e
    if follow_up_number is not None and not 1 <= follow_up_number <= MAX_FOLLOW_UP_NUMBER:
        raise ValidationError("follow_up_number must be between 1 and 3", field="follow_up_number")
    if not 1 <= limit <= MAX_PAGE_LIMIT:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_LIMIT}", field="limit")
    if offset < 0:
        raise ValidationError("offset must not be negative", field="offset")

    follow_ups, total = await service.get_by_user(
        user_id,
        status=status_filter,
        follow_up_number=follow_up_number,
        client_name=client_name,
        limit=limit,
        offset=offset,
    )
    return {
        "follow_ups": [f.model_dump(mode="json") for f in follow_ups],
        "total": total,
        "limit": limit,
        "offset": offset,
        "has_more": offset + len(follow_ups) < total,
    }


@router.post("/api/follow-ups", status_code=201)
async def create_follow_up(
    request: CreateFollowUpRequest,
    user_id: int = Depends(get_current_user_id),
    service: FollowUpService = Depends(get_follow_up_service),
):
    follow_up = await service.create({**request.model_dump(), "owner_id": user_id})
    return {"success": True, "follow_up": follow_up.model_dump(mode="json")}


@router.patch("/api/follow-ups")
async def follow_up_action(
    request: FollowUpActionRequest,
    user_id: int = Depends(get_current_user_id),
    service: FollowUpService = Depends(get_follow_up_service),
):
    """执行跟进动作；通知失败不影响已提交的状态变更"""
    structlog.contextvars.bind_contextvars(trace_id=f"trace-{request.follow_up_id}")

    reminder_sent: bool | None = None
    if request.action == "complete":
        follow_up = await service.update_status(
            request.follow_up_id, user_id, FollowUpStatus.COMPLETED, request.reason
        )
    elif request.action == "no_response":
        follow_up = await service.update_status(
            request.follow_up_id, user_id, FollowUpStatus.NO_RESPONSE
        )
    elif request.action == "snooze":
        follow_up = await service.snooze(request.follow_up_id, user_id)
    elif request.action == "resend":
        reminder_sent = await service.resend(request.follow_up_id, user_id)
        follow_up = await service.get(request.follow_up_id, user_id)
    else:
        follow_up = await service.manual_escalate(
            request.follow_up_id, user_id, request.manager_id, request.manager_name
        )

    content = {
        "success": True,
        "message": f"Follow-up {request.action} successful",
        "follow_up": follow_up.model_dump(mode="json"),
    }
    if reminder_sent is not None:
        content["reminder_sent"] = reminder_sent
    return content


@router.get("/api/follow-ups/stats")
async def follow_up_stats(
    user_id: int = Depends(get_current_user_id),
    service: FollowUpService = Depends(get_follow_up_service),
):
    stats = await service.get_stats(user_id)
    return {"success": True, "stats": stats.model_dump(mode="json")}
