from __future__ import annotations

import signal
import threading
import time

from botocore.exceptions import BotoCoreError, ClientError

from .schedule_handler import handle_schedule_event
from ..infra.aws_clients import checkpoint_table, sqs as _sqs
from ..infra.checkpoint_store import DdbCheckpointStore
from ..infra.config import RECOVERY_INTERVAL_SECONDS, TRIGGER_QUEUE_URL, require_env
from ..scheduling.dispatch import default_dispatcher
from ..scheduling.errors import WorkflowBusy
from ..scheduling.executor import StepExecutor

ERROR_BACKOFF_SECONDS = 5


def build_executor() -> StepExecutor:
    return StepExecutor(DdbCheckpointStore(checkpoint_table()), default_dispatcher())


def poll_once(executor: StepExecutor, queue_url: str, client=None, wait_seconds: int = 20, planner=None) -> int:
    """
    Receive one batch of trigger events and schedule each. A message is
    deleted only after its checkpoints are persisted; the SQS MessageId is
    the workflow id, so a redelivered message re-attaches instead of re-planning.
    """
    client = client or _sqs()
    resp = client.receive_message(
        QueueUrl=queue_url,
        MaxNumberOfMessages=10,
        WaitTimeSeconds=wait_seconds,
    )
    handled = 0
    for msg in resp.get("Messages", []):
        message_id = msg.get("MessageId")
        try:
            result = handle_schedule_event(msg.get("Body") or "", executor, workflow_id=message_id, planner=planner)
        except WorkflowBusy:
            print(f"[worker] workflow busy message_id={message_id}; leaving queued")
            continue
        except Exception as e:
            # Leave it on the queue; visibility timeout brings it back.
            print(f"[worker] schedule failed message_id={message_id} err={e!r}")
            continue
        print(f"[worker] message_id={message_id} ok={result.get('ok')} scheduled={result.get('scheduled', 0)}")
        client.delete_message(QueueUrl=queue_url, ReceiptHandle=msg["ReceiptHandle"])
        handled += 1
    return handled


def _recover(executor: StepExecutor) -> None:
    try:
        executor.recover()
    except Exception as e:
        # Next interval retries; the poll loop keeps running.
        print(f"[worker] recovery failed err={e!r}")


def run_worker(
    executor: StepExecutor | None = None,
    queue_url: str | None = None,
    stop: threading.Event | None = None,
    client=None,
) -> None:
    if executor is None or queue_url is None:
        require_env()
    executor = executor or build_executor()
    queue_url = queue_url or TRIGGER_QUEUE_URL
    stop = stop or threading.Event()

    def _handle_signal(signum, frame):
        print(f"[worker] signal={signum}; shutting down")
        stop.set()

    previous = {}
    if threading.current_thread() is threading.main_thread():
        for signum in (signal.SIGTERM, signal.SIGINT):
            previous[signum] = signal.signal(signum, _handle_signal)

    try:
        _recover(executor)
        next_recovery = time.monotonic() + RECOVERY_INTERVAL_SECONDS
        print(f"[worker] polling queue={queue_url}")
        while not stop.is_set():
            try:
                poll_once(executor, queue_url, client=client)
            except (ClientError, BotoCoreError) as e:
                print(f"[worker] receive failed err={e!r}")
                stop.wait(ERROR_BACKOFF_SECONDS)
            except Exception as e:
                print(f"[worker] poll crashed err={e!r}")
                stop.wait(ERROR_BACKOFF_SECONDS)
            if time.monotonic() >= next_recovery:
                # Picks up fired checkpoints orphaned by workers that died mid-delivery.
                _recover(executor)
                next_recovery = time.monotonic() + RECOVERY_INTERVAL_SECONDS
    finally:
        for signum, handler in previous.items():
            signal.signal(signum, handler)
        executor.shutdown(wait=True, timeout=30)
        print("[worker] stopped")


if __name__ == "__main__":
    run_worker()
