from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class CheckpointStatus(str, Enum):
    PENDING = "pending"
    FIRED = "fired"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


UNFINISHED_STATUSES = (CheckpointStatus.PENDING, CheckpointStatus.FIRED)


class WorkflowClaim(str, Enum):
    """Outcome of claiming the right to plan a workflow."""
    CLAIMED = "claimed"        # first claim for this workflow
    RECLAIMED = "reclaimed"    # previous claimer's lease ran out before it finished
    SCHEDULED = "scheduled"    # planning already finished; re-attach only
    BUSY = "busy"              # another worker holds a live claim


@dataclass(frozen=True)
class ScheduleRequest:
    owner_id: str
    raw_intent: str
    timezone: str
    fallback_recipient: str
    fallback_subject: str = ""
    fallback_body: str = ""


@dataclass(frozen=True)
class SchedulePlan:
    """
    Untrusted planner output. `times` holds whatever the planner emitted;
    only the validator decides which entries become instructions.
    """
    times: Tuple[Any, ...] = ()
    subject: Optional[str] = None
    body: Optional[str] = None


@dataclass(frozen=True)
class SendInstruction:
    owner_id: str
    recipient: str
    subject: str
    body: str
    due_at: datetime  # timezone-aware, UTC

    def to_dict(self) -> Dict[str, Any]:
        return {
            "owner_id": self.owner_id,
            "recipient": self.recipient,
            "subject": self.subject,
            "body": self.body,
            "due_at": self.due_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SendInstruction":
        due_at = datetime.fromisoformat(str(d["due_at"]).replace("Z", "+00:00"))
        if due_at.tzinfo is None:
            due_at = due_at.replace(tzinfo=timezone.utc)
        return cls(
            owner_id=str(d.get("owner_id") or ""),
            recipient=str(d.get("recipient") or ""),
            subject=str(d.get("subject") or ""),
            body=str(d.get("body") or ""),
            due_at=due_at.astimezone(timezone.utc),
        )


@dataclass(frozen=True)
class DeliveryResult:
    ok: bool
    error: Optional[str] = None
    retryable: bool = False


def make_instruction_id(workflow_id: str, sequence: int, due_at: datetime) -> str:
    stamp = due_at.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")
    return f"{workflow_id}#send-at-{stamp}#{sequence:02d}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Checkpoint:
    instruction_id: str
    workflow_id: str
    sequence: int
    instruction: SendInstruction
    status: CheckpointStatus = CheckpointStatus.PENDING
    attempts: int = 0
    last_error: Optional[str] = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    fired_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def due_at(self) -> datetime:
        return self.instruction.due_at

    @classmethod
    def for_instruction(cls, workflow_id: str, sequence: int, instruction: SendInstruction) -> "Checkpoint":
        return cls(
            instruction_id=make_instruction_id(workflow_id, sequence, instruction.due_at),
            workflow_id=workflow_id,
            sequence=sequence,
            instruction=instruction,
        )
