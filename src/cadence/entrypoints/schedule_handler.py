from __future__ import annotations

import base64
import json
import uuid
from typing import Any, Dict, Optional

from ..email.email_utils import safe_json
from ..infra.config import DEFAULT_TIMEZONE
from ..scheduling.models import ScheduleRequest
from ..scheduling.pipeline import schedule_request

# Accepted spellings per field: camelCase, snake_case, and the legacy web payload.
_FIELDS = {
    "owner_id": ("ownerId", "owner_id", "userId", "user_id"),
    "raw_intent": ("rawIntent", "raw_intent", "prompt", "intent"),
    "timezone": ("timezone", "timeZone", "tz"),
    "recipient": ("recipient", "to", "fallbackRecipient"),
    "subject": ("subject", "fallbackSubject"),
    "body": ("body", "fallbackBody"),
}


def _as_dict(value: Any) -> Optional[dict]:
    if isinstance(value, dict):
        return value
    if isinstance(value, (str, bytes)):
        try:
            parsed = json.loads(value)
        except ValueError:
            return None
        return parsed if isinstance(parsed, dict) else None
    return None


def extract_payload(event: Any) -> Optional[dict]:
    """
    Find the trigger payload in a bare dict, a JSON string, an EventBridge
    envelope ("detail"), an SQS/API body ("body") or an event bus message ("data").
    """
    event = _as_dict(event)
    if event is None:
        return None

    known = {name for names in _FIELDS.values() for name in names}
    if known & set(event.keys()) - {"body", "subject"}:
        return event

    for wrapper in ("detail", "data", "body"):
        value = event.get(wrapper)
        if wrapper == "body" and event.get("isBase64Encoded") and isinstance(value, str):
            value = base64.b64decode(value).decode("utf-8", errors="replace")
        inner = _as_dict(value)
        if inner is not None:
            found = extract_payload(inner)
            if found is not None:
                return found
    return None


def _pick(payload: dict, field: str) -> str:
    for name in _FIELDS[field]:
        value = payload.get(name)
        if value is not None:
            return str(value)
    return ""


def request_from_payload(payload: dict) -> ScheduleRequest:
    owner_id = _pick(payload, "owner_id").strip()
    raw_intent = _pick(payload, "raw_intent").strip()
    recipient = _pick(payload, "recipient").strip()
    missing = [name for name, value in (("recipient", recipient), ("rawIntent", raw_intent)) if not value]
    if missing:
        raise ValueError(f"{' and '.join(missing)} required")
    return ScheduleRequest(
        owner_id=owner_id,
        raw_intent=raw_intent,
        timezone=_pick(payload, "timezone").strip() or DEFAULT_TIMEZONE,
        fallback_recipient=recipient,
        fallback_subject=_pick(payload, "subject"),
        fallback_body=_pick(payload, "body"),
    )


def handle_schedule_event(event: Any, executor, workflow_id: Optional[str] = None, planner=None) -> Dict[str, Any]:
    payload = extract_payload(event)
    if payload is None:
        print("[schedule] unrecognised event:", safe_json(event))
        return {"ok": False, "error": "unrecognised_event"}

    try:
        request = request_from_payload(payload)
    except ValueError as e:
        print(f"[schedule] rejected event err={e}")
        return {"ok": False, "error": str(e)}

    workflow_id = workflow_id or str(payload.get("id") or payload.get("workflowId") or "") or f"wf-{uuid.uuid4()}"
    print(f"[schedule] start workflow={workflow_id} owner={request.owner_id} tz={request.timezone}")
    return schedule_request(request, executor, workflow_id, planner=planner)
