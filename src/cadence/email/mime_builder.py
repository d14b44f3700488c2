from __future__ import annotations

import base64
from dataclasses import dataclass

from .email_utils import html_to_plaintext

DEFAULT_SUBJECT = "(No subject)"
CONTENT_TYPE = 'text/plain; charset="UTF-8"'


@dataclass(frozen=True)
class OutboundMessage:
    to: str
    subject: str
    body: str


def _header_value(value: str) -> str:
    # Header values must stay on one line.
    return " ".join((value or "").replace("\r", " ").replace("\n", " ").split())


def compose_message(recipient: str, subject: str, body: str) -> OutboundMessage:
    return OutboundMessage(
        to=_header_value(recipient),
        subject=_header_value(subject) or DEFAULT_SUBJECT,
        body=html_to_plaintext(body or ""),
    )


def build_raw_message(msg: OutboundMessage) -> bytes:
    headers = "\r\n".join([
        f"To: {msg.to}",
        f"Subject: {msg.subject}",
        f"Content-Type: {CONTENT_TYPE}",
    ])
    return f"{headers}\r\n\r\n{msg.body}".encode("utf-8")


def encode_raw_message(raw: bytes) -> str:
    """Standard base64, then + -> -, / -> _, trailing = stripped."""
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def decode_raw_message(encoded: str) -> bytes:
    padding = "=" * (-len(encoded) % 4)
    return base64.urlsafe_b64decode(encoded + padding)


def build_encoded_message(recipient: str, subject: str, body: str) -> str:
    return encode_raw_message(build_raw_message(compose_message(recipient, subject, body)))
