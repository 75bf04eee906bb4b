"""Telegram Bot API channel (MarkdownV2)."""

from __future__ import annotations

import re

import httpx

from modules.notifications.channels.base import DeliveryChannel

_API_BASE = "https://api.telegram.org"

# MarkdownV2 characters that break rendering unless escaped
_ESC_RE = re.compile(r"([_*\[\]()~`>#+\-=|{}.!])")


def escape_markdown_v2(text: str) -> str:
    """Escape MarkdownV2 special characters in plain text."""
    return _ESC_RE.sub(r"\\\1", text)


class TelegramChannel(DeliveryChannel):
    provider = "telegram"

    def __init__(self, bot_token: str, chat_id: str, http: httpx.AsyncClient, api_base: str = _API_BASE):
        super().__init__(http)
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.api_base = api_base.rstrip("/")

    def format_text(self, title: str, message: str) -> str:
        return f"*{escape_markdown_v2(title)}*\n\n{escape_markdown_v2(message)}"

    async def send(self, title: str, message: str) -> None:
        resp = await self._http.post(
            f"{self.api_base}/bot{self.bot_token}/sendMessage",
            json={
                "chat_id": self.chat_id,
                "text": self.format_text(title, message),
                "parse_mode": "MarkdownV2",
            },
        )
        self._check(resp)
