"""packages/notify 测试配置"""

from datetime import UTC, datetime

import pytest
from taskflow.core.models import FollowUp

_ENV_VARS = (
    "TASKFLOW_EMAIL_MODE",
    "TASKFLOW_EMAIL_RELAY_URL",
    "TASKFLOW_EMAIL_RELAY_KEY",
    "TASKFLOW_EMAIL_TIMEOUT_S",
    "TASKFLOW_PORTAL_URL",
)


@pytest.fixture
def clean_env(monkeypatch):
    """清除 Notify 相关环境变量"""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def follow_up() -> FollowUp:
    now = datetime(2024, 3, 15, 12, 0, tzinfo=UTC)
    return FollowUp(
        follow_up_id="01JFU00000000000000000001",
        owner_id=4,
        client_name="Acme",
        client_email="ops@acme.test",
        document_type="contract",
        email_subject="Your contract",
        follow_up_number=2,
        sent_date=datetime(2024, 3, 1, 9, 30, tzinfo=UTC),
        due_date=now,
        created_at=now,
        updated_at=now,
    )
