"""调度触发路由 -- 外部定时器的薄调用层

GET /api/cron/process-follow-ups: 步骤 1-3（过期、自动升级、生成跟进）
GET /api/cron/escalate-follow-ups: 仅步骤 2
GET /api/cron/send-follow-up-reminders: 步骤 4（分发提醒）

配置了 TASKFLOW_CRON_SECRET 时要求 Authorization: Bearer <secret>。
部分失败仍返回 200 与完整结果；只有存储不可达时失败。
"""

from fastapi import APIRouter, Depends
from taskflow.core.clock import Clock

from ..deps import get_clock, get_scheduler, verify_cron_secret
from ..services.scheduler import EscalationScheduler

router = APIRouter(dependencies=[Depends(verify_cron_secret)])


@router.get("/api/cron/process-follow-ups")
async def process_follow_ups(scheduler: EscalationScheduler = Depends(get_scheduler)):
    result = await scheduler.process_follow_ups()
    return {
        "success": True,
        "error_count": result.error_count,
        "result": result.model_dump(mode="json", exclude_none=True),
    }


@router.get("/api/cron/escalate-follow-ups")
async def escalate_follow_ups(
    scheduler: EscalationScheduler = Depends(get_scheduler),
    clock: Clock = Depends(get_clock),
):
    result = await scheduler.auto_escalate(clock())
    return {"success": True, "result": result.model_dump(mode="json")}


@router.get("/api/cron/send-follow-up-reminders")
async def send_follow_up_reminders(scheduler: EscalationScheduler = Depends(get_scheduler)):
    result = await scheduler.dispatch_reminders()
    return {
        "success": True,
        "message": f"sent {result.sent_count} of {result.candidate_count} reminders",
        "result": result.model_dump(mode="json"),
    }
