from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .models import Checkpoint, CheckpointStatus, UNFINISHED_STATUSES, WorkflowClaim

# Status of a workflow claim record.
CLAIM_PLANNING = "planning"
CLAIM_SCHEDULED = "scheduled"


class CheckpointStore(ABC):
    """
    Durable log of send checkpoints. Implementations must make
    `transition` and `record_attempt` atomic per instruction_id.
    """

    @abstractmethod
    def put_pending(self, checkpoint: Checkpoint) -> bool:
        """Create the checkpoint if it does not exist. Returns False when it already did."""
        raise NotImplementedError

    @abstractmethod
    def get(self, instruction_id: str) -> Optional[Checkpoint]:
        raise NotImplementedError

    @abstractmethod
    def transition(
        self,
        instruction_id: str,
        expected: CheckpointStatus,
        new: CheckpointStatus,
        **fields: Any,
    ) -> bool:
        """Compare-and-set on status. Returns False if the current status is not `expected`."""
        raise NotImplementedError

    @abstractmethod
    def record_attempt(self, instruction_id: str, expected_attempts: int) -> bool:
        """Increment attempts iff status is fired and attempts == expected_attempts."""
        raise NotImplementedError

    @abstractmethod
    def list_unfinished(self) -> List[Checkpoint]:
        raise NotImplementedError

    @abstractmethod
    def list_workflow(self, workflow_id: str) -> List[Checkpoint]:
        """Checkpoints of one workflow in registration (sequence) order."""
        raise NotImplementedError

    @abstractmethod
    def claim_workflow(self, workflow_id: str, lease_seconds: float) -> WorkflowClaim:
        """
        Claim the right to plan a workflow. A claim that is still planning
        after `lease_seconds` may be taken over by the next caller.
        """
        raise NotImplementedError

    @abstractmethod
    def finish_workflow_claim(self, workflow_id: str) -> None:
        """Mark the workflow's checkpoints as registered; later claims return SCHEDULED."""
        raise NotImplementedError


class InMemoryCheckpointStore(CheckpointStore):
    def __init__(self) -> None:
        self._db: Dict[str, Checkpoint] = {}
        self._claims: Dict[str, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def put_pending(self, checkpoint: Checkpoint) -> bool:
        with self._lock:
            if checkpoint.instruction_id in self._db:
                return False
            self._db[checkpoint.instruction_id] = replace(checkpoint, status=CheckpointStatus.PENDING)
            return True

    def get(self, instruction_id: str) -> Optional[Checkpoint]:
        with self._lock:
            ckpt = self._db.get(instruction_id)
            return replace(ckpt) if ckpt else None

    def transition(self, instruction_id, expected, new, **fields) -> bool:
        with self._lock:
            ckpt = self._db.get(instruction_id)
            if ckpt is None or ckpt.status != expected:
                return False
            self._db[instruction_id] = replace(
                ckpt, status=new, updated_at=datetime.now(timezone.utc), **fields
            )
            return True

    def record_attempt(self, instruction_id: str, expected_attempts: int) -> bool:
        with self._lock:
            ckpt = self._db.get(instruction_id)
            if ckpt is None or ckpt.status != CheckpointStatus.FIRED or ckpt.attempts != expected_attempts:
                return False
            self._db[instruction_id] = replace(
                ckpt, attempts=expected_attempts + 1, updated_at=datetime.now(timezone.utc)
            )
            return True

    def list_unfinished(self) -> List[Checkpoint]:
        with self._lock:
            out = [replace(c) for c in self._db.values() if c.status in UNFINISHED_STATUSES]
        return sorted(out, key=lambda c: (c.workflow_id, c.sequence))

    def list_workflow(self, workflow_id: str) -> List[Checkpoint]:
        with self._lock:
            out = [replace(c) for c in self._db.values() if c.workflow_id == workflow_id]
        return sorted(out, key=lambda c: c.sequence)

    def claim_workflow(self, workflow_id: str, lease_seconds: float) -> WorkflowClaim:
        now = datetime.now(timezone.utc)
        with self._lock:
            claim = self._claims.get(workflow_id)
            if claim is None:
                self._claims[workflow_id] = {"status": CLAIM_PLANNING, "claimed_at": now}
                return WorkflowClaim.CLAIMED
            if claim["status"] == CLAIM_SCHEDULED:
                return WorkflowClaim.SCHEDULED
            if (now - claim["claimed_at"]).total_seconds() < lease_seconds:
                return WorkflowClaim.BUSY
            claim["claimed_at"] = now
            return WorkflowClaim.RECLAIMED

    def finish_workflow_claim(self, workflow_id: str) -> None:
        with self._lock:
            self._claims[workflow_id] = {"status": CLAIM_SCHEDULED, "claimed_at": datetime.now(timezone.utc)}
