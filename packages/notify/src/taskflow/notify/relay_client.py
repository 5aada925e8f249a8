"""RelayEmailTransport -- HTTP 邮件中继调用封装

通过 httpx 调用中继 POST /v1/messages。投递机制（SMTP、模板、退信）属于中继，
这里只决定发什么、发给谁。
"""

import time

import httpx
import structlog

from .exceptions import RelayServerError, RelayUnreachableError
from .models import EmailMessage

log = structlog.get_logger()

# 健康检查超时（硬编码，应快速响应）
HEALTH_CHECK_TIMEOUT_S = 5


class RelayEmailTransport:
    """邮件中继客户端"""

    def __init__(
        self,
        relay_base_url: str = "http://localhost:8025",
        relay_api_key: str = "",
        timeout_s: int = 10,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """初始化中继客户端

        Args:
            relay_base_url: 中继基础 URL
            relay_api_key: 中继访问密钥
            timeout_s: 请求超时（秒）
            transport: 自定义 httpx 传输层（测试中注入 MockTransport）
        """
        self._relay_base_url = relay_base_url.rstrip("/")
        self._relay_api_key = relay_api_key
        self._timeout_s = timeout_s
        self._transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        headers = {}
        if self._relay_api_key:
            headers["Authorization"] = f"Bearer {self._relay_api_key}"
        return httpx.AsyncClient(
            base_url=self._relay_base_url,
            headers=headers,
            timeout=timeout,
            transport=self._transport,
        )

    async def deliver(self, message: EmailMessage) -> bool:
        """提交邮件到中继

        Returns:
            True 如果中继接受；4xx（如地址无效）返回 False

        Raises:
            RelayUnreachableError: 连接失败或超时
            RelayServerError: 中继返回 5xx
        """
        start_time = time.monotonic()
        try:
            async with self._client(self._timeout_s) as client:
                resp = await client.post("/v1/messages", json=message.model_dump(mode="json"))
        except httpx.TransportError as e:
            log.error(
                "email_relay_call_failed",
                error=str(e),
                error_type=type(e).__name__,
                category=message.category,
            )
            raise RelayUnreachableError(relay_url=self._relay_base_url, original_error=e) from e

        duration_ms = int((time.monotonic() - start_time) * 1000)
        if resp.status_code >= 500:
            log.error(
                "email_relay_server_error",
                status_code=resp.status_code,
                duration_ms=duration_ms,
            )
            raise RelayServerError(relay_url=self._relay_base_url, status_code=resp.status_code)
        if resp.status_code >= 400:
            log.warning(
                "email_relay_rejected",
                status_code=resp.status_code,
                category=message.category,
                duration_ms=duration_ms,
            )
            return False

        log.info(
            "email_relay_accepted",
            category=message.category,
            to_user_id=message.to_user_id,
            duration_ms=duration_ms,
        )
        return True

    async def health_check(self) -> bool:
        """检查中继可达性

        发送 GET {relay_base_url}/health 请求。

        注意: 此方法不抛出异常，所有异常内部捕获并返回 False。
        """
        try:
            async with self._client(HEALTH_CHECK_TIMEOUT_S) as client:
                resp = await client.get("/health")
                return resp.status_code == 200
        except httpx.HTTPError as e:
            log.debug("health_check_failed", url=self._relay_base_url, error=str(e))
            return False


__all__ = ["RelayEmailTransport"]
