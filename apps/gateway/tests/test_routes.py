"""Gateway HTTP 路由测试

测试内容：
1. /health 与 /ready
2. 待办：列表、创建、从通知创建、状态流转、批量更新、统计
3. 错误映射：401 无身份、404 他人待办、409 非法流转、400 校验失败
4. 跟进：创建、PATCH 动作、列表筛选、统计
5. 调度触发端点与 cron 密钥
6. 通知 webhook：生成、重复投递、缺少 user_id
"""

from datetime import UTC, datetime, timedelta

import pytest
from httpx import ASGITransport, AsyncClient


async def _create_todo(client: AsyncClient, **fields) -> dict:
    body = {"title": "Send contract", "category": "to_send"}
    body.update(fields)
    resp = await client.post("/api/todos", json=body)
    assert resp.status_code == 201
    return resp.json()["todo"]


async def _create_follow_up(client: AsyncClient, **fields) -> dict:
    body = {"client_name": "Acme", "email_subject": "Your contract"}
    body.update(fields)
    resp = await client.post("/api/follow-ups", json=body)
    assert resp.status_code == 201
    return resp.json()["follow_up"]


class TestHealth:
    async def test_health(self, client: AsyncClient):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    async def test_request_id(self, client: AsyncClient):
        resp = await client.get("/health", headers={"X-Request-ID": "req-1"})
        assert resp.headers["X-Request-ID"] == "req-1"
        resp = await client.get("/health")
        assert len(resp.headers["X-Request-ID"]) == 26

    async def test_ready(self, client: AsyncClient):
        resp = await client.get("/ready")
        assert resp.status_code == 200
        data = resp.json()
        assert data["profile"] == "core"
        assert data["checks"]["sqlite"] == "ok"
        assert data["checks"]["email_relay"] == "skipped"

    async def test_ready_full_with_relay_down(self, client: AsyncClient, transport):
        transport.mode = "error"
        resp = await client.get("/ready", params={"profile": "full"})
        assert resp.status_code == 503
        assert resp.json()["checks"]["email_relay"] == "unreachable"


class TestTodoRoutes:
    """待办 API"""

    async def test_create_and_list(self, client: AsyncClient, now: datetime):
        created = await _create_todo(
            client, due_date=(now - timedelta(hours=1)).isoformat(), owner_id=99
        )
        assert created["owner_id"] == 1
        assert created["status"] == "pending"
        assert created["is_overdue"] is True
        await _create_todo(client, title="Check visa", category="to_check", priority="urgent")

        resp = await client.get("/api/todos")
        assert resp.status_code == 200
        data = resp.json()
        assert data["total"] == 2
        assert data["has_more"] is False
        assert data["todos"][0]["priority"] == "urgent"

        resp = await client.get("/api/todos", params={"category": "to_send", "overdue_only": True})
        assert [t["todo_id"] for t in resp.json()["todos"]] == [created["todo_id"]]

    async def test_create_with_naive_due_date(self, client: AsyncClient, now: datetime):
        # 表单常见的不带时区截止时间按 UTC 处理
        created = await _create_todo(client, title="Call bank", due_date="2024-03-15T15:00:00")
        assert datetime.fromisoformat(created["due_date"]) == datetime(2024, 3, 15, 15, tzinfo=UTC)
        assert created["is_overdue"] is False
        assert created["is_due_soon"] is True

        listed = (await client.get("/api/todos")).json()
        assert listed["total"] == 1
        assert listed["todos"][0]["due_date"] == created["due_date"]

    async def test_list_rejects_bad_filters(self, client: AsyncClient):
        assert (await client.get("/api/todos", params={"status": "done"})).status_code == 400
        resp = await client.get("/api/todos", params={"limit": 500})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "VALIDATION_ERROR"

    async def test_create_invalid(self, client: AsyncClient):
        resp = await client.post("/api/todos", json={"title": "", "category": "to_send"})
        assert resp.status_code == 400
        resp = await client.post("/api/todos", json={"title": "x", "category": "to_file"})
        assert resp.status_code == 400

    async def test_missing_identity(self, app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as anon:
            resp = await anon.get("/api/todos")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "UNAUTHORIZED"

    async def test_status_flow(self, client: AsyncClient, now: datetime):
        todo = await _create_todo(client)
        url = f"/api/todos/{todo['todo_id']}/status"

        resp = await client.put(url, json={"status": "in_progress"})
        assert resp.status_code == 200
        assert resp.json()["todo"]["status"] == "in_progress"

        resp = await client.put(url, json={"status": "completed"})
        assert resp.json()["todo"]["completed_at"] is not None

        resp = await client.put(url, json={"status": "pending"})
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "INVALID_TRANSITION"

        resp = await client.put(url, json={"status": "expired"})
        assert resp.status_code in (400, 409)

    async def test_other_users_todo(self, client: AsyncClient):
        todo = await _create_todo(client)
        resp = await client.put(
            f"/api/todos/{todo['todo_id']}/status",
            json={"status": "completed"},
            headers={"X-User-Id": "2"},
        )
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "NOT_FOUND"

    async def test_bulk(self, client: AsyncClient):
        mine = [await _create_todo(client, title=f"Task {i}") for i in range(2)]
        resp = await client.post(
            "/api/todos",
            json={"title": "Theirs", "category": "to_check"},
            headers={"X-User-Id": "2"},
        )
        theirs = resp.json()["todo"]

        resp = await client.put(
            "/api/todos/bulk",
            json={"todo_ids": [t["todo_id"] for t in mine] + [theirs["todo_id"]],
                  "status": "completed"},
        )
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["updated_count"] == 2
        assert [e["todo_id"] for e in data["errors"]] == [theirs["todo_id"]]
        assert data["message"] == "2 todos updated to completed"

    async def test_bulk_limits(self, client: AsyncClient):
        resp = await client.put("/api/todos/bulk", json={"todo_ids": [], "status": "completed"})
        assert resp.status_code == 400
        too_many = [f"id-{i}" for i in range(51)]
        resp = await client.put(
            "/api/todos/bulk", json={"todo_ids": too_many, "status": "completed"}
        )
        assert resp.status_code == 400
        resp = await client.put("/api/todos/bulk", json={"todo_ids": ["a"], "status": "pending"})
        assert resp.status_code == 400

    async def test_stats(self, client: AsyncClient, now: datetime):
        await _create_todo(client, due_date=(now - timedelta(hours=2)).isoformat())
        await _create_todo(client, due_date=(now + timedelta(hours=2)).isoformat())
        done = await _create_todo(client)
        await client.put(f"/api/todos/{done['todo_id']}/status", json={"status": "completed"})

        resp = await client.get("/api/todos/stats")
        assert resp.status_code == 200
        stats = resp.json()["stats"]
        insights = resp.json()["insights"]
        assert stats["total_todos"] == 3
        assert stats["active_todos"] == 2
        assert stats["completion_rate"] == 33
        assert stats["overdue_count"] == 1
        assert stats["due_soon_count"] == 1
        assert stats["overdue_priority_level"] == "medium"
        assert insights["needs_attention"] is True
        assert insights["workload_level"] == "light"

    async def test_from_notification(self, client: AsyncClient):
        notification = {
            "id": 501,
            "type": "document_generated",
            "title": "Invoice ready",
            "data": {"document_type": "invoice", "client_name": "Acme"},
        }
        resp = await client.post(
            "/api/todos", json={"from_notification": True, "notification_data": notification}
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["todo"]["title"] == "Send invoice to Acme"
        assert data["result"]["event_id"] == "notification-501"

        resp = await client.post(
            "/api/todos", json={"from_notification": True, "notification_data": notification}
        )
        assert resp.status_code == 200
        assert resp.json()["result"]["duplicate"] is True
        assert resp.json()["todo"] is None

    async def test_from_notification_for_other_user(self, client: AsyncClient):
        resp = await client.post(
            "/api/todos",
            json={
                "from_notification": True,
                "notification_data": {"id": 7, "type": "login", "user_id": 2},
            },
        )
        assert resp.status_code == 400


@pytest.mark.usefixtures("directory")
class TestFollowUpRoutes:
    """跟进 API"""

    async def test_create_and_list(self, client: AsyncClient, now: datetime):
        created = await _create_follow_up(client, sent_date=now.isoformat())
        assert created["follow_up_number"] == 1
        assert created["owner_id"] == 1
        await _create_follow_up(client, client_name="Globex")

        resp = await client.get("/api/follow-ups", params={"client_name": "acme"})
        data = resp.json()
        assert data["total"] == 1
        assert data["follow_ups"][0]["follow_up_id"] == created["follow_up_id"]

        for params in ({"status": "open"}, {"follow_up_number": 4}, {"limit": 0}):
            assert (await client.get("/api/follow-ups", params=params)).status_code == 400

    async def test_snooze_until_limit(self, client: AsyncClient, transport):
        fu = await _create_follow_up(client)
        body = {"follow_up_id": fu["follow_up_id"], "action": "snooze"}

        for expected in (2, 3):
            resp = await client.patch("/api/follow-ups", json=body)
            assert resp.status_code == 200
            assert resp.json()["follow_up"]["follow_up_number"] == expected
            assert resp.json()["message"] == "Follow-up snooze successful"

        resp = await client.patch("/api/follow-ups", json=body)
        assert resp.status_code == 409
        assert len(transport.sent) == 2

    async def test_complete_with_reason(self, client: AsyncClient):
        fu = await _create_follow_up(client)
        resp = await client.patch(
            "/api/follow-ups",
            json={"follow_up_id": fu["follow_up_id"], "action": "complete", "reason": "paid"},
        )
        assert resp.status_code == 200
        assert resp.json()["follow_up"]["status"] == "completed"
        assert resp.json()["follow_up"]["completed_reason"] == "paid"

    async def test_resend_reports_delivery(self, client: AsyncClient, transport):
        fu = await _create_follow_up(client)
        body = {"follow_up_id": fu["follow_up_id"], "action": "resend"}
        resp = await client.patch("/api/follow-ups", json=body)
        assert resp.json()["reminder_sent"] is True

        transport.mode = "reject"
        resp = await client.patch("/api/follow-ups", json=body)
        assert resp.status_code == 200
        assert resp.json()["reminder_sent"] is False

    async def test_escalate(self, client: AsyncClient):
        fu = await _create_follow_up(client)
        resp = await client.patch(
            "/api/follow-ups",
            json={"follow_up_id": fu["follow_up_id"], "action": "escalate", "manager_id": 20},
        )
        assert resp.status_code == 200
        assert resp.json()["follow_up"]["escalated_to_manager"] is True
        assert resp.json()["follow_up"]["manager_id"] == 20

        resp = await client.patch(
            "/api/follow-ups",
            json={"follow_up_id": fu["follow_up_id"], "action": "escalate", "manager_id": 2},
        )
        assert resp.status_code == 400

    async def test_unknown_action(self, client: AsyncClient):
        fu = await _create_follow_up(client)
        resp = await client.patch(
            "/api/follow-ups", json={"follow_up_id": fu["follow_up_id"], "action": "archive"}
        )
        assert resp.status_code == 400

    async def test_other_users_follow_up(self, client: AsyncClient):
        fu = await _create_follow_up(client)
        resp = await client.patch(
            "/api/follow-ups",
            json={"follow_up_id": fu["follow_up_id"], "action": "no_response"},
            headers={"X-User-Id": "2"},
        )
        assert resp.status_code == 404

    async def test_stats(self, client: AsyncClient, add_follow_up, now: datetime):
        await add_follow_up()
        await add_follow_up(follow_up_number=3, due_date=now + timedelta(days=2))
        resp = await client.get("/api/follow-ups/stats")
        assert resp.status_code == 200
        stats = resp.json()["stats"]
        assert stats["total_pending"] == 2
        assert stats["overdue_count"] == 1
        assert stats["escalated_count"] == 0


@pytest.mark.usefixtures("directory")
class TestCronRoutes:
    """调度触发端点"""

    async def test_process_follow_ups(self, client: AsyncClient, add_follow_up, now: datetime):
        await add_follow_up(follow_up_number=3, due_date=now - timedelta(days=8))
        resp = await client.get("/api/cron/process-follow-ups")
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert data["error_count"] == 0
        assert data["result"]["escalate"]["escalated_count"] == 1
        assert "dispatch" not in data["result"]

    async def test_escalate_only(self, client: AsyncClient, add_follow_up, now: datetime):
        await add_follow_up(follow_up_number=3, due_date=now - timedelta(days=8))
        resp = await client.get("/api/cron/escalate-follow-ups")
        assert resp.json()["result"]["escalated_count"] == 1

    async def test_send_reminders(self, client: AsyncClient, add_follow_up):
        await add_follow_up()
        resp = await client.get("/api/cron/send-follow-up-reminders")
        assert resp.status_code == 200
        assert resp.json()["message"] == "sent 1 of 1 reminders"

        resp = await client.get("/api/cron/send-follow-up-reminders")
        assert resp.json()["message"] == "sent 0 of 0 reminders"

    async def test_secret_required(self, client: AsyncClient, monkeypatch):
        monkeypatch.setenv("TASKFLOW_CRON_SECRET", "s3cret")
        resp = await client.get("/api/cron/send-follow-up-reminders")
        assert resp.status_code == 401

        resp = await client.get(
            "/api/cron/send-follow-up-reminders", headers={"Authorization": "Bearer s3cret"}
        )
        assert resp.status_code == 200


class TestWebhook:
    """通知 webhook"""

    async def test_notification_created(self, client: AsyncClient):
        body = {
            "id": 900,
            "type": "review_requested",
            "user_id": 1,
            "data": {"application_id": "APP-1", "application_title": "Residency form"},
        }
        resp = await client.post("/api/webhooks/notification-created", json=body)
        assert resp.status_code == 200
        result = resp.json()["result"]
        assert result["todo_generated"] is True
        assert result["event_id"] == "notification-900"

        resp = await client.post("/api/webhooks/notification-created", json=body)
        assert resp.json()["result"]["duplicate"] is True

        todos = (await client.get("/api/todos")).json()
        assert todos["total"] == 1
        assert todos["todos"][0]["title"] == "Review Residency form"

    async def test_missing_user(self, client: AsyncClient):
        resp = await client.post(
            "/api/webhooks/notification-created", json={"id": 1, "type": "login"}
        )
        assert resp.status_code == 400

    async def test_invalid_payload(self, client: AsyncClient):
        resp = await client.post(
            "/api/webhooks/notification-created",
            json={"id": 2, "type": "review_requested", "user_id": 1, "data": {}},
        )
        assert resp.status_code == 400
