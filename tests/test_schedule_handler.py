import base64
import json

import pytest
from botocore.exceptions import ReadTimeoutError

from cadence.ai import public
from cadence.entrypoints.schedule_handler import extract_payload, handle_schedule_event, request_from_payload
from cadence.scheduling.errors import WorkflowBusy
from cadence.scheduling.executor import StepExecutor
from cadence.scheduling.models import SchedulePlan
from cadence.scheduling.store import InMemoryCheckpointStore

from conftest import StubDispatcher, make_instruction, utc

PAYLOAD = {
    "ownerId": "owner-1",
    "rawIntent": "remind me tomorrow at 9am and 6pm",
    "timezone": "America/New_York",
    "recipient": "bob@example.com",
    "subject": "Standup",
    "body": "<p>Join the call</p>",
}


class RecordingPlanner:
    def __init__(self, plan):
        self.plan = plan
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        return self.plan


@pytest.fixture
def executor(no_backoff):
    ex = StepExecutor(InMemoryCheckpointStore(), StubDispatcher(), no_backoff, wait_slice=0.05)
    yield ex
    ex.shutdown(timeout=5)


@pytest.mark.parametrize("event", [
    PAYLOAD,
    json.dumps(PAYLOAD),
    {"body": json.dumps(PAYLOAD)},
    {"body": base64.b64encode(json.dumps(PAYLOAD).encode("utf-8")).decode("ascii"), "isBase64Encoded": True},
    {"detail-type": "schedule.requested", "detail": PAYLOAD},
    {"name": "schedule", "data": PAYLOAD},
])
def test_payload_found_in_common_envelopes(event):
    assert extract_payload(event) == PAYLOAD


def test_legacy_field_names_are_accepted():
    request = request_from_payload({"userId": "u-9", "prompt": "ping me at noon", "to": "ann@example.com"})
    assert request.owner_id == "u-9"
    assert request.raw_intent == "ping me at noon"
    assert request.fallback_recipient == "ann@example.com"
    assert request.timezone == "UTC"
    assert request.fallback_subject == "" and request.fallback_body == ""


@pytest.mark.parametrize("payload, message", [
    ({"ownerId": "o", "rawIntent": "x"}, "recipient required"),
    ({"ownerId": "o", "recipient": "a@b.c"}, "rawIntent required"),
    ({"ownerId": "o", "recipient": " ", "rawIntent": " "}, "recipient and rawIntent required"),
])
def test_missing_required_fields_are_rejected(payload, message, executor):
    with pytest.raises(ValueError, match=message):
        request_from_payload(payload)
    assert handle_schedule_event(payload, executor) == {"ok": False, "error": message}


def test_unrecognised_event(executor):
    assert handle_schedule_event({"Records": []}, executor) == {"ok": False, "error": "unrecognised_event"}


def test_schedules_validated_plan_in_plan_order(executor):
    planner = RecordingPlanner(SchedulePlan(
        times=("2099-01-02T18:00:00", "not a time", "2099-01-02T09:00:00Z"),
        subject=None,
        body="Custom body",
    ))

    out = handle_schedule_event(PAYLOAD, executor, workflow_id="wf-evt", planner=planner)

    assert out["ok"] and out["planned"]
    assert out["scheduled"] == 2
    assert [c["due_at"] for c in out["checkpoints"]] == [
        "2099-01-02T23:00:00+00:00",  # naive time read in America/New_York
        "2099-01-02T09:00:00+00:00",
    ]
    assert all(c["status"] == "pending" for c in out["checkpoints"])

    stored = executor.workflow_status("wf-evt")
    assert stored[0].instruction.subject == "Standup"
    assert stored[0].instruction.body == "Custom body"
    assert planner.requests[0].timezone == "America/New_York"


def test_redelivered_trigger_does_not_plan_again(executor):
    planner = RecordingPlanner(SchedulePlan(times=("2099-01-02T09:00:00Z",)))

    first = handle_schedule_event(PAYLOAD, executor, workflow_id="wf-again", planner=planner)
    second = handle_schedule_event(PAYLOAD, executor, workflow_id="wf-again", planner=planner)

    assert len(planner.requests) == 1
    assert second["planned"] is False
    assert second["checkpoints"] == first["checkpoints"]


def test_workflow_id_taken_from_payload(executor):
    planner = RecordingPlanner(SchedulePlan(times=()))
    out = handle_schedule_event(dict(PAYLOAD, id="evt-123"), executor, planner=planner)
    assert out["workflow_id"] == "evt-123"


def test_oracle_timeout_schedules_nothing(monkeypatch, executor):
    monkeypatch.setattr(public, "PLANNER_ENABLED", True)
    monkeypatch.setattr(public, "MODEL_ID", "amazon.nova-lite-v1:0")
    monkeypatch.delenv("BEDROCK_GUARDRAIL_ID", raising=False)

    class TimingOut:
        calls = 0

        def converse(self, **kwargs):
            TimingOut.calls += 1
            raise ReadTimeoutError(endpoint_url="https://bedrock-runtime.us-east-1.amazonaws.com")

    out = handle_schedule_event(PAYLOAD, executor, workflow_id="wf-timeout",
                                planner=lambda r: public.plan_schedule(r, client=TimingOut()))

    assert out["ok"] and out["scheduled"] == 0
    assert TimingOut.calls == 1
    assert executor.workflow_status("wf-timeout") == []


def test_past_entries_fire_right_away(no_backoff):
    dispatcher = StubDispatcher()
    ex = StepExecutor(InMemoryCheckpointStore(), dispatcher, no_backoff)
    planner = RecordingPlanner(SchedulePlan(times=("2001-01-01T00:00:00Z",)))

    out = handle_schedule_event(PAYLOAD, ex, workflow_id="wf-past", planner=planner)
    assert ex.join(timeout=5)

    assert out["scheduled"] == 1
    assert len(dispatcher.calls) == 1
    assert ex.workflow_status("wf-past")[0].status.value == "completed"


class CountingStore(InMemoryCheckpointStore):
    def __init__(self):
        super().__init__()
        self.lookups = 0

    def list_workflow(self, workflow_id):
        self.lookups += 1
        return super().list_workflow(workflow_id)


def test_each_trigger_looks_the_workflow_up_once(no_backoff):
    store = CountingStore()
    ex = StepExecutor(store, StubDispatcher(), no_backoff, wait_slice=0.05)
    planner = RecordingPlanner(SchedulePlan(times=("2099-01-02T09:00:00Z",)))

    handle_schedule_event(PAYLOAD, ex, workflow_id="wf-count", planner=planner)
    assert store.lookups == 1
    handle_schedule_event(PAYLOAD, ex, workflow_id="wf-count", planner=planner)
    assert store.lookups == 2
    ex.shutdown(timeout=5)


def test_concurrent_delivery_of_a_claimed_workflow_is_refused(executor):
    assert executor.claim_workflow("wf-busy").value == "claimed"
    planner = RecordingPlanner(SchedulePlan(times=("2099-01-02T09:00:00Z",)))

    with pytest.raises(WorkflowBusy):
        handle_schedule_event(PAYLOAD, executor, workflow_id="wf-busy", planner=planner)

    assert planner.requests == []
    assert executor.workflow_status("wf-busy") == []


def test_expired_claim_with_registered_checkpoints_is_not_planned_again(no_backoff):
    store = InMemoryCheckpointStore()
    ex = StepExecutor(store, StubDispatcher(), no_backoff, wait_slice=0.05, claim_lease=0)
    planner = RecordingPlanner(SchedulePlan(times=("2099-01-02T09:00:00Z", "2099-01-02T18:00:00Z")))

    # A worker that registered the checkpoints but died before finishing its claim.
    ex.claim_workflow("wf-crash")
    registered = ex.schedule("wf-crash", [make_instruction(utc(2099, 1, 3, 9))])

    out = handle_schedule_event(PAYLOAD, ex, workflow_id="wf-crash", planner=planner)
    ex.shutdown(timeout=5)

    assert planner.requests == []
    assert out["planned"] is False
    assert [c["instruction_id"] for c in out["checkpoints"]] == [c.instruction_id for c in registered]
    assert store.claim_workflow("wf-crash", lease_seconds=0).value == "scheduled"


def test_expired_claim_without_checkpoints_is_planned(no_backoff):
    ex = StepExecutor(InMemoryCheckpointStore(), StubDispatcher(), no_backoff, wait_slice=0.05, claim_lease=0)
    planner = RecordingPlanner(SchedulePlan(times=("2099-01-02T09:00:00Z",)))
    ex.claim_workflow("wf-lost")

    out = handle_schedule_event(PAYLOAD, ex, workflow_id="wf-lost", planner=planner)
    ex.shutdown(timeout=5)

    assert len(planner.requests) == 1
    assert out["planned"] and out["scheduled"] == 1
