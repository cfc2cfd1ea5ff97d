"""Telegram channel: Bot API send helpers."""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from myamori.core.channels.base import DeliveryError

TELEGRAM_API = "https://api.telegram.org/bot{token}"


def approval_keyboard(approval_id: str) -> dict[str, Any]:
    """Inline keyboard whose callback data is ``approve:<id>`` / ``reject:<id>``."""
    return {
        "inline_keyboard": [
            [
                {"text": "✅ Approve", "callback_data": f"approve:{approval_id}"},
                {"text": "❌ Reject", "callback_data": f"reject:{approval_id}"},
            ]
        ]
    }


def parse_callback_data(data: str) -> tuple[str, str] | None:
    """Split ``approve:<id>`` / ``reject:<id>`` into (decision, approval_id)."""
    action, sep, approval_id = data.partition(":")
    if not sep or not approval_id:
        return None
    if action == "approve":
        return "approved", approval_id
    if action == "reject":
        return "rejected", approval_id
    return None


class TelegramChannel:
    """Sends replies and approval prompts through the Telegram Bot API."""

    def __init__(
        self,
        token: str,
        api_base: str = TELEGRAM_API,
        timeout_s: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.url = api_base.format(token=token)
        self.timeout_s = timeout_s
        self._transport = transport

    async def send(self, chat_id: str, text: str, thread_id: int | None = None) -> None:
        await self._call("sendMessage", self._body(chat_id, text, thread_id))

    async def send_approval_prompt(
        self,
        chat_id: str,
        text: str,
        approval_id: str,
        thread_id: int | None = None,
    ) -> None:
        body = self._body(chat_id, text, thread_id)
        body["reply_markup"] = approval_keyboard(approval_id)
        await self._call("sendMessage", body)

    @staticmethod
    def _body(chat_id: str, text: str, thread_id: int | None) -> dict[str, Any]:
        body: dict[str, Any] = {"chat_id": chat_id, "text": text}
        if thread_id is not None:
            body["message_thread_id"] = thread_id
        return body

    async def _call(self, method: str, body: dict[str, Any]) -> dict[str, Any]:
        async with httpx.AsyncClient(
            timeout=httpx.Timeout(self.timeout_s), transport=self._transport
        ) as client:
            try:
                resp = await client.post(f"{self.url}/{method}", json=body)
            except httpx.HTTPError as e:
                raise DeliveryError(f"Telegram {method} failed: {e}") from e

        try:
            data = resp.json()
        except ValueError:
            data = {"ok": False, "error_code": resp.status_code, "description": resp.text}

        if not data.get("ok"):
            raise DeliveryError(
                f"Telegram {method} failed ({data.get('error_code')}): "
                f"{data.get('description')}"
            )
        logger.debug(f"Telegram {method} → chat {body.get('chat_id')}")
        return data
