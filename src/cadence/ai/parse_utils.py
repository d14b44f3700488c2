import json
import re
from typing import Any, Dict

from ..scheduling.errors import MalformedPlan

_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)
_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)


def extract_text_from_converse(resp: Dict[str, Any]) -> str:
    parts = (resp or {}).get("output", {}).get("message", {}).get("content", []) or []
    return "".join(p["text"] for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str)).strip()


def parse_json_lenient(text: str) -> Any:
    """
    Strict JSON first, then a fenced ```json block, then the outermost {...}.
    Raises MalformedPlan when nothing parses.
    """
    if not text or not text.strip():
        raise MalformedPlan("empty planner output")

    candidates = [text]
    fenced = _FENCE_RE.search(text)
    if fenced:
        candidates.append(fenced.group(1))
    braced = _OBJECT_RE.search(text)
    if braced:
        candidates.append(braced.group(0))

    for candidate in candidates:
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    raise MalformedPlan(f"planner output is not JSON: {text[:120]!r}")
