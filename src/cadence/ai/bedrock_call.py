from typing import Any, Tuple

from botocore.exceptions import BotoCoreError, ClientError

from .clients import bedrock_client
from .config import MODEL_ID, INFERENCE_CONFIG, SYSTEM_PROMPT
from .text_normalize import clean_intent_text, normalize_slang
from .prompt import build_prompt
from .parse_utils import extract_text_from_converse, parse_json_lenient
from .validate import resolve_tz
from ..scheduling.errors import PlannerUnavailable
from ..scheduling.models import ScheduleRequest


def call_planner(request: ScheduleRequest, client=None) -> Tuple[str, Any]:
    """
    One converse call, no retries. Returns (raw_text, parsed_json).
    Raises PlannerUnavailable or MalformedPlan.
    """
    intent = normalize_slang(clean_intent_text(request.raw_intent))
    prompt = build_prompt(intent, resolve_tz(request.timezone), request.fallback_subject, request.fallback_body)

    client = client or bedrock_client()
    try:
        resp = client.converse(
            modelId=MODEL_ID,
            system=[{"text": SYSTEM_PROMPT}],
            messages=[{"role": "user", "content": [{"text": prompt}]}],
            inferenceConfig=INFERENCE_CONFIG,
        )
    except (ClientError, BotoCoreError) as e:
        raise PlannerUnavailable(repr(e)) from e

    out_text = extract_text_from_converse(resp)
    return out_text, parse_json_lenient(out_text)
