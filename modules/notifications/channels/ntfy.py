"""ntfy topic channel.

Publishes with ntfy's JSON API (POST to the server root) rather than the
header-based form, so non-ASCII titles survive.
"""

from __future__ import annotations

import httpx

from modules.notifications.channels.base import DeliveryChannel

DEFAULT_SERVER = "https://ntfy.sh"


class NtfyChannel(DeliveryChannel):
    provider = "ntfy"

    def __init__(
        self,
        topic: str,
        http: httpx.AsyncClient,
        server_url: str | None = None,
        token: str | None = None,
    ):
        super().__init__(http)
        self.topic = topic
        self.server_url = (server_url or DEFAULT_SERVER).rstrip("/")
        self.token = token or None

    async def send(self, title: str, message: str) -> None:
        headers = {}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        resp = await self._http.post(
            self.server_url,
            json={
                "topic": self.topic,
                "title": title,
                "message": message,
                "tags": ["bell"],
            },
            headers=headers,
        )
        self._check(resp)
