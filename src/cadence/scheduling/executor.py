from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional

from .dispatch import default_dispatcher
from .models import Checkpoint, CheckpointStatus, DeliveryResult, SendInstruction, UNFINISHED_STATUSES, WorkflowClaim
from .store import CheckpointStore
from ..infra.config import (
    FINISH_RETRY_SECONDS,
    FINISH_WRITE_ATTEMPTS,
    FIRED_STALE_SECONDS,
    MAX_SEND_ATTEMPTS,
    MAX_WAIT_SLICE_SECONDS,
    RETRY_BASE_SECONDS,
    RETRY_MAX_SECONDS,
    WORKFLOW_CLAIM_LEASE_SECONDS,
)


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = MAX_SEND_ATTEMPTS
    base_delay: float = RETRY_BASE_SECONDS
    max_delay: float = RETRY_MAX_SECONDS

    def delay_for(self, attempts_made: int) -> float:
        """Backoff before the next attempt, after `attempts_made` failed ones."""
        if attempts_made <= 0:
            return 0.0
        return min(self.max_delay, self.base_delay * (2 ** (attempts_made - 1)))


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class StepExecutor:
    """
    Durable per-instruction state machine: pending -> fired -> completed | failed,
    plus pending -> cancelled.

    Every checkpoint is persisted before its wait begins; each wait runs on its
    own daemon thread. The pending -> fired claim and every attempt increment
    are compare-and-set writes in the store, so a checkpoint fires at most once
    and is attempted at most `max_attempts` times across restarts and workers.
    """

    def __init__(
        self,
        store: CheckpointStore,
        dispatcher=None,
        retry_policy: Optional[RetryPolicy] = None,
        clock: Optional[Callable[[], datetime]] = None,
        wait_slice: float = MAX_WAIT_SLICE_SECONDS,
        fired_stale_after: float = FIRED_STALE_SECONDS,
        finish_attempts: int = FINISH_WRITE_ATTEMPTS,
        finish_retry_delay: float = FINISH_RETRY_SECONDS,
        claim_lease: float = WORKFLOW_CLAIM_LEASE_SECONDS,
    ):
        self._store = store
        self._dispatcher = dispatcher or default_dispatcher()
        self._retry = retry_policy or RetryPolicy()
        self._clock = clock or _utcnow
        self._wait_slice = wait_slice
        self._fired_stale_after = fired_stale_after
        self._finish_attempts = max(1, finish_attempts)
        self._finish_retry_delay = finish_retry_delay
        self._claim_lease = claim_lease
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._threads: Dict[str, threading.Thread] = {}

    # ---- public API ----

    def schedule(
        self,
        workflow_id: str,
        instructions: Iterable[SendInstruction],
        existing: Optional[List[Checkpoint]] = None,
    ) -> List[Checkpoint]:
        """
        Register and attach a workflow's checkpoints. A workflow that already has
        checkpoints is re-attached as stored. Pass `existing` when the caller has
        just listed the workflow.
        """
        if existing is None:
            existing = self._store.list_workflow(workflow_id)
        if existing:
            print(f"[executor] workflow exists id={workflow_id} checkpoints={len(existing)}; re-attaching")
            for ckpt in existing:
                if ckpt.status in UNFINISHED_STATUSES:
                    self._attach(ckpt)
            return existing

        checkpoints = [
            Checkpoint.for_instruction(workflow_id, seq, instruction)
            for seq, instruction in enumerate(instructions)
        ]

        # Persist the whole workflow before any wait starts.
        registered: List[Checkpoint] = []
        for ckpt in checkpoints:
            if self._store.put_pending(ckpt):
                registered.append(ckpt)
            else:
                registered.append(self._store.get(ckpt.instruction_id) or ckpt)

        for ckpt in registered:
            print(f"[executor] registered id={ckpt.instruction_id} due_at={ckpt.due_at.isoformat()}")
            if ckpt.status in UNFINISHED_STATUSES:
                self._attach(ckpt)
        return registered

    def recover(self) -> List[Checkpoint]:
        """
        Re-attach waits for every checkpoint left pending by a previous process,
        and resume fired ones whose last activity is older than `fired_stale_after`.
        """
        unfinished = self._store.list_unfinished()
        for ckpt in unfinished:
            self._attach(ckpt)
        print(f"[executor] recovery attached={len(unfinished)}")
        return unfinished

    def cancel(self, instruction_id: str) -> bool:
        ok = self._store.transition(
            instruction_id, CheckpointStatus.PENDING, CheckpointStatus.CANCELLED, finished_at=self._clock()
        )
        print(f"[executor] cancel id={instruction_id} ok={ok}")
        return ok

    def cancel_workflow(self, workflow_id: str) -> int:
        cancelled = 0
        for ckpt in self._store.list_workflow(workflow_id):
            if ckpt.status == CheckpointStatus.PENDING and self.cancel(ckpt.instruction_id):
                cancelled += 1
        return cancelled

    def claim_workflow(self, workflow_id: str) -> WorkflowClaim:
        claim = self._store.claim_workflow(workflow_id, self._claim_lease)
        print(f"[executor] workflow claim id={workflow_id} result={claim.value}")
        return claim

    def finish_workflow_claim(self, workflow_id: str) -> None:
        self._store.finish_workflow_claim(workflow_id)

    def workflow_status(self, workflow_id: str) -> List[Checkpoint]:
        return self._store.list_workflow(workflow_id)

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for attached checkpoints to settle. Returns True when none are left running."""
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            with self._lock:
                threads = list(self._threads.values())
            if not threads:
                return True
            for t in threads:
                remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
                t.join(remaining)
            if deadline is not None and time.monotonic() >= deadline:
                with self._lock:
                    return not any(t.is_alive() for t in self._threads.values())

    def shutdown(self, wait: bool = True, timeout: Optional[float] = None) -> None:
        """Stop waiting. Unfired checkpoints stay pending in the store for the next recover()."""
        self._stop.set()
        if wait:
            self.join(timeout)

    # ---- internals ----

    def _attach(self, ckpt: Checkpoint) -> None:
        with self._lock:
            if self._stop.is_set():
                return
            current = self._threads.get(ckpt.instruction_id)
            if current is not None and current.is_alive():
                return
            t = threading.Thread(
                target=self._run,
                args=(ckpt,),
                name=f"ckpt-{ckpt.instruction_id}",
                daemon=True,
            )
            self._threads[ckpt.instruction_id] = t
            t.start()

    def _run(self, ckpt: Checkpoint) -> None:
        try:
            self._drive(ckpt)
        except Exception as e:
            print(f"[executor] checkpoint crashed id={ckpt.instruction_id} err={e!r}")
        finally:
            with self._lock:
                if self._threads.get(ckpt.instruction_id) is threading.current_thread():
                    del self._threads[ckpt.instruction_id]

    def _drive(self, ckpt: Checkpoint) -> None:
        if ckpt.status == CheckpointStatus.PENDING:
            if not self._wait_until(ckpt.due_at):
                return
            if not self._store.transition(
                ckpt.instruction_id, CheckpointStatus.PENDING, CheckpointStatus.FIRED, fired_at=self._clock()
            ):
                print(f"[executor] skip id={ckpt.instruction_id} (no longer pending)")
                return
            print(f"[executor] fired id={ckpt.instruction_id}")
            attempts = 0
        elif ckpt.status == CheckpointStatus.FIRED:
            idle = (self._clock() - ckpt.updated_at).total_seconds()
            if idle < self._fired_stale_after:
                # Another worker is still delivering it.
                print(f"[executor] fired id={ckpt.instruction_id} active {idle:.0f}s ago; leaving it")
                return
            print(f"[executor] resuming fired id={ckpt.instruction_id} attempts={ckpt.attempts}")
            attempts = ckpt.attempts
        else:
            return

        self._deliver_with_retries(ckpt, attempts)

    def _wait_until(self, due_at: datetime) -> bool:
        while not self._stop.is_set():
            remaining = (due_at - self._clock()).total_seconds()
            if remaining <= 0:
                return True
            self._stop.wait(min(remaining, self._wait_slice))
        return False

    def _deliver_with_retries(self, ckpt: Checkpoint, attempts: int) -> None:
        last_error = ckpt.last_error
        while attempts < self._retry.max_attempts:
            if self._stop.wait(self._retry.delay_for(attempts)):
                print(f"[executor] stopping; id={ckpt.instruction_id} left fired attempts={attempts}")
                return
            if not self._store.record_attempt(ckpt.instruction_id, attempts):
                print(f"[executor] attempt {attempts + 1} already taken id={ckpt.instruction_id}")
                return
            attempts += 1

            result = self._dispatch(ckpt)
            if result.ok:
                if self._finish(ckpt, CheckpointStatus.COMPLETED, last_error=None):
                    print(f"[executor] completed id={ckpt.instruction_id} attempts={attempts}")
                return

            last_error = result.error
            print(f"[executor] attempt failed id={ckpt.instruction_id} attempt={attempts} "
                  f"retryable={result.retryable} err={result.error}")
            if not result.retryable:
                break

        if self._finish(ckpt, CheckpointStatus.FAILED, last_error=last_error):
            print(f"[executor] failed id={ckpt.instruction_id} attempts={attempts} err={last_error}")

    def _finish(self, ckpt: Checkpoint, new: CheckpointStatus, **fields) -> bool:
        """
        Write the terminal status of a fired checkpoint. Store errors are retried
        with a short linear backoff; a lost compare-and-set is final.
        """
        for attempt in range(1, self._finish_attempts + 1):
            try:
                return self._store.transition(
                    ckpt.instruction_id, CheckpointStatus.FIRED, new, finished_at=self._clock(), **fields
                )
            except Exception as e:
                print(f"[executor] {new.value} write failed id={ckpt.instruction_id} "
                      f"try={attempt}/{self._finish_attempts} err={e!r}")
                if attempt < self._finish_attempts:
                    time.sleep(self._finish_retry_delay * attempt)
        print(f"[executor] ERROR could not record {new.value} id={ckpt.instruction_id}; "
              f"checkpoint left fired and will be resumed by recovery")
        return False

    def _dispatch(self, ckpt: Checkpoint) -> DeliveryResult:
        try:
            return self._dispatcher.dispatch(ckpt.instruction, ckpt.instruction_id)
        except Exception as e:
            return DeliveryResult(ok=False, error=f"dispatch_error:{e!r}", retryable=True)
