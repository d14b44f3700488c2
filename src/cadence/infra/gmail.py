from __future__ import annotations

import json

import urllib3

from .google_oauth import Credentials, http
from ..scheduling.errors import TransmissionFailure

SEND_URL = "https://gmail.googleapis.com/gmail/v1/users/me/messages/send"


class GmailTransport:
    """Sends one pre-encoded message through the Gmail REST API."""

    def __init__(self, pool=None):
        self._pool = pool or http

    def send(self, creds: Credentials, encoded_message: str) -> dict:
        try:
            resp = self._pool.request(
                "POST",
                SEND_URL,
                body=json.dumps({"raw": encoded_message}).encode("utf-8"),
                headers={
                    "Authorization": f"Bearer {creds.access_token}",
                    "Content-Type": "application/json",
                },
            )
        except urllib3.exceptions.HTTPError as e:
            raise TransmissionFailure(f"gmail unreachable: {e!r}") from e

        try:
            data = json.loads(resp.data.decode("utf-8") or "{}")
        except ValueError:
            data = {}
        if resp.status >= 400:
            raise TransmissionFailure(f"gmail send failed ({resp.status}): {data}", status=resp.status)

        return {"message_id": data.get("id"), "thread_id": data.get("threadId")}
