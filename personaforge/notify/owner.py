"""Owner alerts over the Telegram Bot API."""

from __future__ import annotations

import time
from collections.abc import Callable

import httpx
from loguru import logger

from personaforge.config.schema import NotifyConfig

_TELEGRAM_API = "https://api.telegram.org"
_MAX_MESSAGE_CHARS = 4000


class OwnerNotifier:
    """Send operational alerts to the owner chats.

    Alerts sharing a ``key`` are sent at most once per cooldown. Without a
    bot token or owner chat ids alerts are only logged.
    """

    def __init__(
        self,
        config: NotifyConfig,
        *,
        clock: Callable[[], float] = time.time,
        client: httpx.AsyncClient | None = None,
    ):
        self._config = config
        self._clock = clock
        self._client = client
        self._recent_alert_keys: dict[str, float] = {}

    @property
    def configured(self) -> bool:
        return bool(self._config.bot_token and self._config.owner_chat_ids)

    def _should_send(self, key: str | None) -> bool:
        if key is None:
            return True
        now = self._clock()
        for known, expires_at in list(self._recent_alert_keys.items()):
            if expires_at <= now:
                self._recent_alert_keys.pop(known, None)
        if key in self._recent_alert_keys:
            return False
        self._recent_alert_keys[key] = now + float(self._config.alert_cooldown_seconds)
        return True

    async def notify(self, text: str, *, key: str | None = None) -> None:
        if not self._should_send(key):
            logger.debug("owner_alert_suppressed key={}", key)
            return
        logger.warning("owner_alert key={} text={}", key or "-", text)
        if not self.configured:
            return

        url = f"{_TELEGRAM_API}/bot{self._config.bot_token}/sendMessage"
        body = text[:_MAX_MESSAGE_CHARS]
        if self._client is not None:
            await self._send_all(self._client, url, body)
            return
        async with httpx.AsyncClient(timeout=15.0) as client:
            await self._send_all(client, url, body)

    async def _send_all(self, client: httpx.AsyncClient, url: str, text: str) -> None:
        for chat_id in self._config.owner_chat_ids:
            try:
                r = await client.post(url, json={"chat_id": chat_id, "text": text})
                r.raise_for_status()
            except httpx.HTTPError as e:
                logger.warning("owner_alert_failed chat={} error={}", chat_id, e)
