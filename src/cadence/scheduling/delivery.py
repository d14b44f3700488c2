from __future__ import annotations

from typing import Optional

from .errors import NoCredentials, TransmissionFailure
from .models import DeliveryResult, SendInstruction
from ..email.mime_builder import build_encoded_message


def deliver(instruction: SendInstruction, resolver=None, transport=None) -> DeliveryResult:
    """
    One delivery attempt: resolve credentials, compose, transmit.

    Never raises and never retries. A missing credential is reported as
    non-retryable; anything else as retryable, leaving the decision to the
    executor's retry budget.
    """
    if resolver is None:
        from ..infra.google_oauth import CredentialResolver
        resolver = CredentialResolver()
    if transport is None:
        from ..infra.gmail import GmailTransport
        transport = GmailTransport()

    try:
        creds = resolver.resolve(instruction.owner_id)
        encoded = build_encoded_message(instruction.recipient, instruction.subject, instruction.body)
        sent = transport.send(creds, encoded)
    except NoCredentials as e:
        print(f"[deliver] no credentials owner={instruction.owner_id} reason={e.reason}")
        return DeliveryResult(ok=False, error=f"no_credentials:{e.reason}", retryable=False)
    except TransmissionFailure as e:
        print(f"[deliver] transmission failed owner={instruction.owner_id} status={e.status} err={e}")
        return DeliveryResult(ok=False, error=f"transmission_failure:{e}", retryable=True)
    except Exception as e:
        print(f"[deliver] unexpected error owner={instruction.owner_id} err={e!r}")
        return DeliveryResult(ok=False, error=f"error:{e!r}", retryable=True)

    message_id: Optional[str] = (sent or {}).get("message_id")
    print(f"[deliver] sent owner={instruction.owner_id} to={instruction.recipient} message_id={message_id}")
    return DeliveryResult(ok=True)
