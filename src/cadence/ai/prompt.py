from datetime import datetime
from zoneinfo import ZoneInfo

from .config import MAX_PLAN_TIMES


def build_prompt(intent_text: str, tz: ZoneInfo, fallback_subject: str, fallback_body: str) -> str:
    now_local = datetime.now(tz=tz).replace(microsecond=0)

    return f"""
You are a scheduler. Convert the user's intent into a JSON plan.
Return ONLY valid JSON. No prose. No markdown. No backticks. No extra keys.

Fields:
- times: array of ISO-8601 datetimes in {tz.key}, with UTC offset (max {MAX_PLAN_TIMES} entries)
- subject: string (fallback to the provided subject)
- body: string (fallback to the provided body)

Rules:
- Every time must be in the future relative to Now.
- Keep times in the order the user asked for them.
- If the intent names no time at all, times must be [].
- "morning" = 9:00, "afternoon" = 14:00, "evening" = 18:00, "around 9" = 9:00.

--------------------
EXAMPLE
--------------------

Now: 2025-01-01T15:00:00+00:00
Timezone: UTC
Intent: "remind me tomorrow at 9am and 6pm"
Output:
{{
  "times": ["2025-01-02T09:00:00+00:00", "2025-01-02T18:00:00+00:00"],
  "subject": "Reminder",
  "body": "Reminder"
}}

--------------------
TASK
--------------------

Now: {now_local.isoformat()}
Timezone: {tz.key}
Provided subject: {fallback_subject or "(none)"}
Provided body: {fallback_body or "(none)"}

Intent:
{intent_text}
""".strip()
