from __future__ import annotations

import os
from typing import Tuple, Optional

from .clients import bedrock_client


def apply_input_guardrail(text: str, client=None) -> Tuple[bool, Optional[str], Optional[dict]]:
    """
    Screen a scheduling intent with a Bedrock guardrail before it reaches the planner.

    Returns:
      (allowed, block_message, raw_response)

    - If BEDROCK_GUARDRAIL_ID is not set -> allowed=True
    - If ApplyGuardrail errors -> allowed=True, response=None
    - If the guardrail intervenes -> allowed=False and the guardrail's output text if present
    """
    guardrail_id = os.getenv("BEDROCK_GUARDRAIL_ID", "").strip()
    if not guardrail_id or not text:
        return True, None, None

    version = os.getenv("BEDROCK_GUARDRAIL_VERSION", "DRAFT").strip() or "DRAFT"

    try:
        resp = (client or bedrock_client()).apply_guardrail(
            guardrailIdentifier=guardrail_id,
            guardrailVersion=version,
            source="INPUT",
            content=[{"text": {"text": text}}],
            outputScope="INTERVENTIONS",
        )
    except Exception as e:
        print("[guardrail] apply_guardrail failed; allowing:", repr(e))
        return True, None, None

    if resp.get("action") == "GUARDRAIL_INTERVENED":
        outputs = resp.get("outputs") or []
        msg = None
        if outputs and isinstance(outputs[0], dict):
            msg = outputs[0].get("text")
        return False, msg or "Request blocked by guardrail.", resp

    return True, None, resp
