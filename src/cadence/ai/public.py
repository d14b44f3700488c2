from .bedrock_call import call_planner
from .config import MODEL_ID, PLANNER_ENABLED
from .guardrails import apply_input_guardrail
from .validate import parse_plan
from ..scheduling.models import SchedulePlan, ScheduleRequest

EMPTY_PLAN = SchedulePlan(times=())


def plan_schedule(request: ScheduleRequest, client=None) -> SchedulePlan:
    """
    Ask the oracle for a plan. Fails open: any planner problem (disabled,
    blocked by the guardrail, unreachable, unparseable) yields an empty plan
    and is never raised to the caller.
    """
    if not PLANNER_ENABLED or not MODEL_ID:
        print("[planner] disabled; empty plan")
        return EMPTY_PLAN

    allowed, block_message, _ = apply_input_guardrail(request.raw_intent, client=client)
    if not allowed:
        print(f"[planner] guardrail blocked intent owner={request.owner_id} msg={block_message!r}")
        return EMPTY_PLAN

    try:
        raw, parsed = call_planner(request, client=client)
        plan = parse_plan(parsed)
    except Exception as e:
        print(f"[planner] failing open owner={request.owner_id} err={e!r}")
        return EMPTY_PLAN

    print(f"[planner] ok owner={request.owner_id} times={len(plan.times)} raw_len={len(raw)}")
    return plan
