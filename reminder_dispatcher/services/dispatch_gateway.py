"""
Outbound message gateway.

Talks to a WhatsApp HTTP API (WAHA-compatible: `POST /api/sendText`,
`GET /api/sessions/{session}`). `send` never raises: transport errors,
timeouts and error statuses come back as a failed SendResult, with
throttling (HTTP 429) flagged separately.
"""

import httpx

from reminder_dispatcher.config import settings
from reminder_dispatcher.infrastructure.observability.logging import get_logger
from reminder_dispatcher.scheduling.interfaces import SendResult

logger = get_logger(__name__)

READY_STATUSES = {"WORKING", "CONNECTED"}
STATUS_TIMEOUT = 5  # seconds


class GatewayError(Exception):
    """Gateway misconfiguration."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


def to_chat_id(address: str) -> str:
    """Digits-only address to the gateway's chat id."""
    if "@" in address:
        return address
    return f"{address}@c.us"


class HttpDispatchGateway:
    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        session: str | None = None,
        timeout_seconds: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        self.base_url = (base_url or settings.GATEWAY_BASE_URL).rstrip("/")
        if not self.base_url.startswith(("http://", "https://")):
            raise GatewayError(f"Invalid gateway URL: {self.base_url!r}")

        self.session = session or settings.GATEWAY_SESSION
        api_key = api_key if api_key is not None else settings.GATEWAY_API_KEY
        headers = {"Accept": "application/json"}
        if api_key:
            headers["X-Api-Key"] = api_key

        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=httpx.Timeout(timeout_seconds or settings.SEND_TIMEOUT_SECONDS),
        )
        self._ready = False

    def is_ready(self) -> bool:
        return self._ready

    def mark_ready(self, ready: bool) -> None:
        if ready != self._ready:
            logger.info("Gateway readiness changed", ready=ready)
        self._ready = ready

    async def refresh_readiness(self) -> bool:
        """Ask the gateway whether the messaging session is connected."""
        try:
            response = await self._client.get(
                f"/api/sessions/{self.session}", timeout=STATUS_TIMEOUT
            )
            payload = response.json() if response.is_success else None
            status = payload.get("status") if isinstance(payload, dict) else None
            self.mark_ready(status in READY_STATUSES)
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("Gateway status check failed", error=str(e))
            self.mark_ready(False)
        return self._ready

    async def send(self, address: str, body: str) -> SendResult:
        payload = {"session": self.session, "chatId": to_chat_id(address), "text": body}
        try:
            response = await self._client.post("/api/sendText", json=payload)
        except httpx.TimeoutException:
            logger.warning("Gateway send timed out", address=address)
            return SendResult.failed("timeout")
        except httpx.HTTPError as e:
            logger.warning("Gateway send error", address=address, error=str(e))
            return SendResult.failed(str(e))

        if response.status_code == 429:
            logger.warning("Gateway throttled send", address=address)
            return SendResult.failed("throttled", throttled=True)

        if not response.is_success:
            logger.warning(
                "Gateway rejected send",
                address=address,
                status_code=response.status_code,
                response=response.text[:200],
            )
            return SendResult.failed(f"HTTP {response.status_code}")

        logger.debug("Message sent", address=address, length=len(body))
        return SendResult.ok()

    async def close(self) -> None:
        await self._client.aclose()
