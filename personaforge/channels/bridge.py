"""Websocket bridge transport: one chat-network session per account."""

from __future__ import annotations

import asyncio
import contextlib
import json
import uuid
from collections.abc import AsyncIterator
from typing import Any

from loguru import logger

from personaforge.config.schema import TransportConfig
from personaforge.core.errors import TransportClosed
from personaforge.core.models import ContentKind, InboundEvent

PROTOCOL_VERSION = 1

_KINDS: frozenset[str] = frozenset({"text", "voice", "photo", "animation", "video_note", "sticker"})


class BridgeProtocolError(RuntimeError):
    """Bridge returned a command-level error."""

    def __init__(self, code: str, message: str):
        super().__init__(f"{code}: {message}")
        self.code = code


def parse_inbound(account_id: str, payload: dict[str, Any]) -> InboundEvent | None:
    """Build an ``InboundEvent`` from a bridge ``message`` frame payload."""
    chat_id = str(payload.get("chatId") or "").strip()
    sender_id = str(payload.get("senderId") or "").strip()
    text = str(payload.get("text") or "").strip()

    media = payload.get("media") if isinstance(payload.get("media"), dict) else {}
    kind_raw = str(media.get("kind") or payload.get("kind") or "text")
    kind: ContentKind = kind_raw if kind_raw in _KINDS else "text"  # type: ignore[assignment]
    media_path = str(media.get("path") or "").strip() or None
    media_text = str(media.get("text") or "").strip() or None

    if not chat_id or not sender_id or (kind == "text" and not text):
        logger.warning("bridge_inbound_malformed account={}", account_id)
        return None

    timestamp_raw = payload.get("timestamp")
    timestamp = float(timestamp_raw) if isinstance(timestamp_raw, (int, float)) else 0.0
    if timestamp > 1e12:
        timestamp /= 1000.0

    return InboundEvent(
        account_id=account_id,
        chat_id=chat_id,
        sender_id=sender_id,
        message_id=str(payload.get("messageId") or "").strip() or None,
        timestamp=timestamp,
        text=text,
        kind=kind,
        is_private=not bool(payload.get("isGroup", False)),
        sender_name=str(payload.get("senderName") or "").strip(),
        mentions_self=bool(payload.get("mentionedSelf", False)),
        reply_to_self=bool(payload.get("replyToSelf", False)),
        media_path=media_path,
        media_text=media_text,
    )


class BridgeTransport:
    """Account session over a JSON websocket bridge.

    Commands carry a request id and are answered by ``response`` frames;
    ``message`` frames become inbound events. When the socket closes the
    event stream raises ``TransportClosed``.
    """

    def __init__(self, config: TransportConfig, account_id: str):
        self.config = config
        self.account_id = account_id
        self._ws: Any | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._send_lock = asyncio.Lock()
        self._pending: dict[str, asyncio.Future[dict[str, Any]]] = {}
        self._inbound: asyncio.Queue[InboundEvent | None] = asyncio.Queue()
        self._closed_reason: str | None = None

    @property
    def url(self) -> str:
        return self.config.bridge_url.format(account=self.account_id)

    @property
    def supports_read_receipts(self) -> bool:
        return True

    async def start(self) -> None:
        import websockets

        logger.info("bridge_connecting account={} url={}", self.account_id, self.url)
        self._closed_reason = None
        try:
            self._ws = await asyncio.wait_for(
                websockets.connect(
                    self.url,
                    max_size=self.config.max_payload_bytes,
                    ping_interval=20,
                    ping_timeout=20,
                ),
                timeout=self.config.connect_timeout_seconds,
            )
            self._reader_task = asyncio.create_task(self._read_loop())
            await self._verify_bridge_health()
        except Exception as e:
            await self.stop()
            raise TransportClosed(f"bridge connect failed for {self.account_id}: {e}") from e
        logger.info("bridge_connected account={}", self.account_id)

    async def stop(self) -> None:
        if self._reader_task:
            self._reader_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._reader_task
            self._reader_task = None
        if self._ws:
            with contextlib.suppress(Exception):
                await self._ws.close()
            self._ws = None
        self._close("transport stopped")

    async def events(self) -> AsyncIterator[InboundEvent]:
        while True:
            event = await self._inbound.get()
            if event is None:
                raise TransportClosed(self._closed_reason or "bridge connection closed")
            yield event

    async def send_text(self, chat_id: str, text: str, *, reply_to_message_id: str | None = None) -> None:
        payload: dict[str, Any] = {"chatId": chat_id, "text": text}
        if reply_to_message_id:
            payload["replyToMessageId"] = reply_to_message_id
        await self._send_command("send_text", payload)

    async def set_typing(self, chat_id: str, enabled: bool) -> None:
        await self._send_command(
            "presence_update",
            {"chatId": chat_id, "state": "composing" if enabled else "paused"},
            timeout_seconds=6.0,
        )

    async def mark_read(self, chat_id: str, message_id: str) -> None:
        await self._send_command("mark_read", {"chatId": chat_id, "messageId": message_id}, timeout_seconds=6.0)

    async def _verify_bridge_health(self) -> None:
        response = await self._send_command("health", {}, timeout_seconds=self.config.connect_timeout_seconds)
        version = response.get("protocolVersion")
        if version != PROTOCOL_VERSION:
            raise BridgeProtocolError("ERR_VERSION", f"expected v{PROTOCOL_VERSION}, got {version!r}")

    async def _read_loop(self) -> None:
        try:
            if self._ws is not None:
                async for raw in self._ws:
                    self._handle_bridge_message(raw)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("bridge_read_failed account={} error={}", self.account_id, e)
        self._close("bridge connection closed")

    def _handle_bridge_message(self, raw: str | bytes) -> None:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("bridge_invalid_json account={}", self.account_id)
            return
        if not isinstance(data, dict):
            return

        payload = data.get("payload") if isinstance(data.get("payload"), dict) else {}
        msg_type = data.get("type")
        if msg_type == "response":
            request_id = data.get("requestId")
            if isinstance(request_id, str):
                self._resolve_pending(request_id, payload)
        elif msg_type == "message":
            event = parse_inbound(self.account_id, payload)
            if event is not None:
                self._inbound.put_nowait(event)
        elif msg_type == "status":
            logger.info("bridge_status account={} status={}", self.account_id, payload.get("status"))
        elif msg_type == "error":
            logger.warning("bridge_error account={} error={}", self.account_id, payload)

    async def _send_command(
        self,
        command_type: str,
        payload: dict[str, Any],
        timeout_seconds: float | None = None,
    ) -> dict[str, Any]:
        if not self._ws:
            raise TransportClosed("bridge websocket not connected")

        request_id = uuid.uuid4().hex
        future: asyncio.Future[dict[str, Any]] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        envelope = {
            "version": PROTOCOL_VERSION,
            "type": command_type,
            "token": self.config.bridge_token,
            "requestId": request_id,
            "accountId": self.account_id,
            "payload": payload,
        }
        try:
            async with self._send_lock:
                await self._ws.send(json.dumps(envelope, ensure_ascii=False))
            return await asyncio.wait_for(future, timeout=timeout_seconds or self.config.command_timeout_seconds)
        finally:
            self._pending.pop(request_id, None)

    def _resolve_pending(self, request_id: str, payload: dict[str, Any]) -> None:
        future = self._pending.get(request_id)
        if not future or future.done():
            return
        if payload.get("ok"):
            result = payload.get("result")
            future.set_result(result if isinstance(result, dict) else {})
            return
        error = payload.get("error") if isinstance(payload.get("error"), dict) else {}
        future.set_exception(
            BridgeProtocolError(str(error.get("code") or "ERR_INTERNAL"), str(error.get("message") or "command failed"))
        )

    def _close(self, reason: str) -> None:
        if self._closed_reason is None:
            self._closed_reason = reason
            self._inbound.put_nowait(None)
        for future in self._pending.values():
            if not future.done():
                future.set_exception(TransportClosed(reason))
        self._pending.clear()
