from __future__ import annotations

from datetime import datetime, timezone

from .schedule_handler import _as_dict
from ..email.email_utils import safe_json
from ..scheduling.delivery import deliver
from ..scheduling.models import SendInstruction


def _extract_delivery(event) -> dict | None:
    event = _as_dict(event)
    if event is None:
        return None
    if "recipient" in event or "to" in event:
        return event
    for wrapper in ("detail", "data", "body"):
        inner = _as_dict(event.get(wrapper))
        if inner is not None:
            found = _extract_delivery(inner)
            if found is not None:
                return found
    return None


def instruction_from_event(payload: dict) -> SendInstruction:
    recipient = str(payload.get("recipient") or payload.get("to") or "").strip()
    if not recipient:
        raise ValueError("recipient required")
    due_raw = payload.get("dueAt") or payload.get("due_at")
    data = {
        "owner_id": payload.get("ownerId") or payload.get("owner_id") or payload.get("userId"),
        "recipient": recipient,
        "subject": payload.get("subject"),
        "body": payload.get("body"),
        "due_at": due_raw or datetime.now(timezone.utc).isoformat(),
    }
    return SendInstruction.from_dict(data)


def handle_delivery_event(event, resolver=None, transport=None) -> dict:
    payload = _extract_delivery(event)
    if payload is None:
        print("[delivery] unrecognised event:", safe_json(event))
        return {"ok": False, "error": "unrecognised_event", "retryable": False}

    try:
        instruction = instruction_from_event(payload)
    except (ValueError, KeyError) as e:
        print(f"[delivery] rejected event err={e!r}")
        return {"ok": False, "error": f"bad_event:{e}", "retryable": False}

    print(f"[delivery] start id={payload.get('instructionId')} owner={instruction.owner_id}")
    result = deliver(instruction, resolver=resolver, transport=transport)
    return {"ok": result.ok, "error": result.error, "retryable": result.retryable}


def lambda_handler(event, context):
    return handle_delivery_event(event)
