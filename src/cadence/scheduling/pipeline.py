from __future__ import annotations

from typing import Any, Callable, Dict, Optional

from .errors import WorkflowBusy
from .executor import StepExecutor
from .models import SchedulePlan, ScheduleRequest, WorkflowClaim
from ..ai.validate import validate_plan


def schedule_request(
    request: ScheduleRequest,
    executor: StepExecutor,
    workflow_id: str,
    planner: Optional[Callable[[ScheduleRequest], SchedulePlan]] = None,
) -> Dict[str, Any]:
    """
    Claim -> plan -> validate -> register checkpoints.

    The workflow claim is taken before the planner runs, so two deliveries of
    the same trigger cannot both plan. A redelivered trigger is re-attached
    without planning again; one whose claim is held elsewhere raises
    WorkflowBusy and is retried later.
    """
    claim = executor.claim_workflow(workflow_id)
    if claim == WorkflowClaim.BUSY:
        raise WorkflowBusy(workflow_id)
    if claim == WorkflowClaim.SCHEDULED:
        print(f"[pipeline] idempotent skip workflow={workflow_id}")
        checkpoints = executor.schedule(workflow_id, ())
        return _summary(workflow_id, checkpoints, replanned=False)

    existing = executor.workflow_status(workflow_id)
    if existing:
        # Previous claimer registered the checkpoints but died before finishing the claim.
        print(f"[pipeline] idempotent skip workflow={workflow_id} claim={claim.value}")
        checkpoints = executor.schedule(workflow_id, (), existing=existing)
        executor.finish_workflow_claim(workflow_id)
        return _summary(workflow_id, checkpoints, replanned=False)

    if planner is None:
        from ..ai.public import plan_schedule
        planner = plan_schedule

    plan = planner(request)
    instructions = validate_plan(plan, request)
    checkpoints = executor.schedule(workflow_id, instructions, existing=existing)
    executor.finish_workflow_claim(workflow_id)
    print(f"[pipeline] workflow={workflow_id} owner={request.owner_id} scheduled={len(checkpoints)}")
    return _summary(workflow_id, checkpoints, replanned=True)


def _summary(workflow_id: str, checkpoints, replanned: bool) -> Dict[str, Any]:
    return {
        "ok": True,
        "workflow_id": workflow_id,
        "scheduled": len(checkpoints),
        "planned": replanned,
        "checkpoints": [
            {
                "instruction_id": c.instruction_id,
                "due_at": c.due_at.isoformat(),
                "status": c.status.value,
            }
            for c in checkpoints
        ],
    }
