from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any, List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .config import MAX_PLAN_TIMES
from ..scheduling.errors import InvalidTimeEntry, MalformedPlan
from ..scheduling.models import SchedulePlan, ScheduleRequest, SendInstruction


def resolve_tz(name: Any) -> ZoneInfo:
    if isinstance(name, str) and name.strip():
        try:
            return ZoneInfo(name.strip())
        except (ZoneInfoNotFoundError, ValueError):
            print(f"[validate] unknown timezone={name!r}; using UTC")
    return ZoneInfo("UTC")


def parse_instant(value: Any, tz: ZoneInfo) -> datetime:
    """
    Parse one ISO-8601 entry into an aware UTC datetime.
    Naive values are read in `tz`; a trailing Z means UTC.
    """
    if not isinstance(value, str):
        raise InvalidTimeEntry(f"not a string: {value!r}")
    text = value.strip()
    if not text:
        raise InvalidTimeEntry("empty time entry")
    if text[-1] in "zZ":
        text = text[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(text)
    except ValueError as e:
        raise InvalidTimeEntry(f"unparseable time entry: {value!r}") from e
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=tz)
    try:
        return dt.astimezone(timezone.utc)
    except (OverflowError, ValueError) as e:
        # e.g. 0001-01-01T00:00:00+01:00 has no UTC representation
        raise InvalidTimeEntry(f"time entry out of range: {value!r}") from e


def parse_plan(obj: Any) -> SchedulePlan:
    """Shape-check raw planner JSON. Entries are not validated here."""
    if not isinstance(obj, Mapping):
        raise MalformedPlan(f"plan is not an object: {type(obj).__name__}")

    times = obj.get("times")
    if isinstance(times, (list, tuple)):
        times = tuple(times)
    else:
        times = ()

    subject = obj.get("subject")
    body = obj.get("body")
    return SchedulePlan(
        times=times,
        subject=subject if isinstance(subject, str) else None,
        body=body if isinstance(body, str) else None,
    )


def validate_plan(plan: Any, request: ScheduleRequest, limit: int = MAX_PLAN_TIMES) -> List[SendInstruction]:
    """
    Turn an untrusted plan into at most `limit` send instructions.

    Order is the order the planner emitted; nothing is sorted. Entries that
    do not parse are skipped without affecting their siblings.
    """
    if not isinstance(plan, SchedulePlan):
        try:
            plan = parse_plan(plan)
        except MalformedPlan:
            return []

    if not isinstance(plan.times, (list, tuple)) or not plan.times:
        return []

    tz = resolve_tz(request.timezone)
    subject = plan.subject or request.fallback_subject
    body = plan.body or request.fallback_body

    out: List[SendInstruction] = []
    dropped = 0
    for entry in plan.times:
        if len(out) >= limit:
            break
        try:
            due_at = parse_instant(entry, tz)
        except InvalidTimeEntry:
            dropped += 1
            continue
        out.append(SendInstruction(
            owner_id=request.owner_id,
            recipient=request.fallback_recipient,
            subject=subject,
            body=body,
            due_at=due_at,
        ))

    if dropped or len(plan.times) > len(out) + dropped:
        print(f"[validate] kept={len(out)} dropped_invalid={dropped} offered={len(plan.times)}")
    return out
