"""Pushover channel - form-encoded user/app credentials."""

from __future__ import annotations

import httpx

from modules.notifications.channels.base import DeliveryChannel

_MESSAGES_URL = "https://api.pushover.net/1/messages.json"


class PushoverChannel(DeliveryChannel):
    provider = "pushover"

    def __init__(self, user_key: str, app_token: str, http: httpx.AsyncClient, url: str = _MESSAGES_URL):
        super().__init__(http)
        self.user_key = user_key
        self.app_token = app_token
        self.url = url

    async def send(self, title: str, message: str) -> None:
        resp = await self._http.post(
            self.url,
            data={
                "token": self.app_token,
                "user": self.user_key,
                "title": title,
                "message": message,
            },
        )
        self._check(resp)
