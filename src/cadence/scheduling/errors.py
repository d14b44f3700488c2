from __future__ import annotations


class CadenceError(Exception):
    """Base class for every error raised inside the send scheduler."""


class PlannerUnavailable(CadenceError):
    """The oracle call failed (timeout, throttling, client error)."""


class MalformedPlan(CadenceError):
    """Oracle output could not be parsed into a plan object."""


class InvalidTimeEntry(CadenceError, ValueError):
    """A single plan time entry is not a parseable instant."""


class NoCredentials(CadenceError):
    """The owner has no usable transport credentials."""

    def __init__(self, owner_id: str, reason: str = "not_found"):
        super().__init__(f"no credentials for owner={owner_id} ({reason})")
        self.owner_id = owner_id
        self.reason = reason


class TransmissionFailure(CadenceError):
    """A transmission attempt failed; the executor may retry it."""

    def __init__(self, message: str, status: int | None = None):
        super().__init__(message)
        self.status = status


class WorkflowBusy(CadenceError):
    """Another worker is planning this workflow right now."""

    def __init__(self, workflow_id: str):
        super().__init__(f"workflow={workflow_id} is being planned elsewhere")
        self.workflow_id = workflow_id
