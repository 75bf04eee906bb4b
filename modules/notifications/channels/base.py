"""Base interface for notification delivery channels.

Each provider (Telegram, Pushover, ntfy) implements this interface so the
dispatcher stays provider-agnostic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

import httpx


class ChannelError(Exception):
    """Base class for channel failures."""


class ChannelConfigError(ChannelError):
    """Unknown channel type, or provider config missing a required field."""


class ChannelDeliveryError(ChannelError):
    """The provider answered with a non-success status."""

    def __init__(self, provider: str, status_code: int, body: str = ""):
        self.provider = provider
        self.status_code = status_code
        super().__init__(f"{provider} API error {status_code}: {body[:300]}")


class DeliveryChannel(ABC):
    """One configured delivery destination.

    ``send`` performs exactly one outbound request.  It returns normally on
    success and raises on any failure; there is no retry at this level.
    """

    provider: str = ""

    def __init__(self, http: httpx.AsyncClient):
        self._http = http

    @abstractmethod
    async def send(self, title: str, message: str) -> None:
        """Deliver a title and message to the provider."""

    def _check(self, resp: httpx.Response) -> None:
        if resp.is_success:
            return
        raise ChannelDeliveryError(self.provider, resp.status_code, resp.text)


def require_config(config: dict, key: str, channel_type: str) -> str:
    """Return a non-empty string setting or raise ChannelConfigError."""
    value = config.get(key)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ChannelConfigError(f"{channel_type} channel is missing '{key}'")
    return str(value).strip()
