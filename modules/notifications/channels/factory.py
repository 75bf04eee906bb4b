"""Build a delivery channel from a stored channel row."""

from __future__ import annotations

from typing import Any, Protocol

import httpx

from modules.notifications.channels.base import (
    ChannelConfigError,
    DeliveryChannel,
    require_config,
)
from modules.notifications.channels.ntfy import NtfyChannel
from modules.notifications.channels.pushover import PushoverChannel
from modules.notifications.channels.telegram import TelegramChannel


class ChannelRow(Protocol):
    channel_type: str
    config: dict[str, Any]


def _telegram(config: dict, http: httpx.AsyncClient) -> DeliveryChannel:
    return TelegramChannel(
        bot_token=require_config(config, "bot_token", "telegram"),
        chat_id=require_config(config, "chat_id", "telegram"),
        http=http,
    )


def _pushover(config: dict, http: httpx.AsyncClient) -> DeliveryChannel:
    return PushoverChannel(
        user_key=require_config(config, "user_key", "pushover"),
        app_token=require_config(config, "app_token", "pushover"),
        http=http,
    )


def _ntfy(config: dict, http: httpx.AsyncClient) -> DeliveryChannel:
    return NtfyChannel(
        topic=require_config(config, "topic", "ntfy"),
        server_url=config.get("server_url") or None,
        token=config.get("token") or None,
        http=http,
    )


_BUILDERS = {
    "telegram": _telegram,
    "pushover": _pushover,
    "ntfy": _ntfy,
}


class ChannelFactory:
    """Maps a channel's type to a provider adapter sharing one HTTP client."""

    def __init__(self, http: httpx.AsyncClient | None = None, timeout: float = 15.0):
        self._owns_client = http is None
        self._http = http or httpx.AsyncClient(timeout=timeout)

    def create(self, channel: ChannelRow) -> DeliveryChannel:
        builder = _BUILDERS.get(channel.channel_type)
        if builder is None:
            raise ChannelConfigError(f"Unknown channel type: {channel.channel_type}")
        config = channel.config if isinstance(channel.config, dict) else {}
        return builder(config, self._http)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()
