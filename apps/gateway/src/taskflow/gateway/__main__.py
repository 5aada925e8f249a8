"""CLI 入口模块 -- python -m taskflow.gateway <command>

供外部定时器（cron、systemd timer）直接调用，无需经过 HTTP。

支持的命令：
  init-db              初始化数据库（建表 + 索引）
  process-follow-ups   执行调度步骤 1-3（过期、自动升级、生成跟进）
  send-reminders       执行调度步骤 4（分发提醒）
  run-pass             执行完整调度轮次
"""

import asyncio
import json
import sys

from taskflow.core.config import get_db_path, get_default_manager_id
from taskflow.core.store import create_store_group
from taskflow.notify import StructlogAuditSink, build_notifier, load_notify_config

from .middleware.logging_config import setup_logging
from .services.scheduler import EscalationScheduler

_COMMANDS = ("init-db", "process-follow-ups", "send-reminders", "run-pass")


def main() -> None:
    """CLI 主入口"""
    if len(sys.argv) < 2:
        print("用法: python -m taskflow.gateway <command>")
        print("命令:")
        print("  init-db              初始化数据库")
        print("  process-follow-ups   执行调度步骤 1-3")
        print("  send-reminders       执行调度步骤 4")
        print("  run-pass             执行完整调度轮次")
        sys.exit(1)

    command = sys.argv[1]
    if command not in _COMMANDS:
        print(f"未知命令: {command}")
        print(f"可用命令: {', '.join(_COMMANDS)}")
        sys.exit(1)

    setup_logging(service="taskflow-scheduler")
    exit_code = asyncio.run(run_command(command))
    sys.exit(exit_code)


async def run_command(command: str) -> int:
    """执行单个命令，返回进程退出码（有单条失败时为 2）"""
    db_path = get_db_path()
    store_group = await create_store_group(db_path)

    try:
        if command == "init-db":
            print(f"数据库已初始化: {db_path}")
            return 0

        scheduler = EscalationScheduler(
            store_group,
            build_notifier(load_notify_config(), audit_sink=StructlogAuditSink()),
            default_manager_id=get_default_manager_id(),
        )
        if command == "process-follow-ups":
            result = await scheduler.process_follow_ups()
            error_count = result.error_count
        elif command == "send-reminders":
            result = await scheduler.dispatch_reminders()
            error_count = len(result.errors)
        else:
            result = await scheduler.run_pass()
            error_count = result.error_count

        print(json.dumps(result.model_dump(mode="json", exclude_none=True), indent=2))
        return 2 if error_count else 0
    finally:
        await store_group.conn.close()


if __name__ == "__main__":
    main()
