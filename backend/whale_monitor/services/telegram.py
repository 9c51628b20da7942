"""
Telegram Bot API transport

send(chat_id, text) -> message_id, with bounded exponential retry.
429 responses are retried after the server-provided retry_after.
"""

import asyncio
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from whale_monitor.core.exceptions import ConfigurationMissing, TransportFailure
from whale_monitor.core.logging_config import get_logger
from whale_monitor.core.security import mask_token

logger = get_logger(__name__)

# Telegram rejects longer messages
MAX_MESSAGE_LENGTH = 4096


class TelegramTransport:
    """
    Async sendMessage client

    Usage:
        transport = TelegramTransport(bot_token="123:abc")
        await transport.send("-100123", "<b>hello</b>")
        await transport.close()
    """

    def __init__(
        self,
        bot_token: Optional[str],
        api_url: str = "https://api.telegram.org",
        retry_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        timeout: float = 15.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.bot_token = bot_token
        self.api_url = api_url.rstrip("/")
        self.retry_attempts = max(1, retry_attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.timeout = timeout
        self._transport = transport
        self._sleep = sleep
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def _backoff(self, attempt: int) -> float:
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    async def send(self, chat_id: str, text: str) -> Optional[int]:
        """
        Send an HTML message

        Returns:
            Telegram message_id

        Raises:
            ConfigurationMissing: No bot token configured
            TransportFailure: Every attempt failed
        """
        if not self.bot_token:
            raise ConfigurationMissing("TELEGRAM_BOT_TOKEN is not configured")

        url = f"{self.api_url}/bot{self.bot_token}/sendMessage"
        payload = {
            "chat_id": chat_id,
            "text": text[:MAX_MESSAGE_LENGTH],
            "parse_mode": "HTML",
            "disable_web_page_preview": True,
        }
        client = await self._get_client()
        last_error: Optional[str] = None

        for attempt in range(self.retry_attempts):
            try:
                response = await client.post(url, json=payload)
                data = _json_or_empty(response)

                if response.status_code == 429:
                    retry_after = data.get("parameters", {}).get("retry_after")
                    delay = min(float(retry_after), self.max_delay) if retry_after else self._backoff(attempt)
                    last_error = "rate limited"
                    logger.warning("Telegram rate limited, sleeping %.1fs", delay)
                    if attempt < self.retry_attempts - 1:
                        await self._sleep(delay)
                    continue

                if response.status_code == 200 and data.get("ok"):
                    return data.get("result", {}).get("message_id")

                last_error = data.get("description") or f"HTTP {response.status_code}"
                if 400 <= response.status_code < 500:
                    # Bad chat id, blocked bot, malformed HTML: retrying will not help
                    break

            except httpx.RequestError as e:
                last_error = str(e) or type(e).__name__

            logger.warning(
                "Telegram send to %s failed: %s (attempt %d/%d)",
                chat_id, last_error, attempt + 1, self.retry_attempts,
            )
            if attempt < self.retry_attempts - 1:
                await self._sleep(self._backoff(attempt))

        logger.error("Telegram send to %s via bot %s gave up: %s", chat_id, mask_token(self.bot_token), last_error)
        raise TransportFailure(f"Telegram send to {chat_id} failed: {last_error}")


def _json_or_empty(response: httpx.Response) -> Dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}
