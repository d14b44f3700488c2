from __future__ import annotations

import json
import re
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import pytest
from botocore.exceptions import ClientError

from cadence.infra.checkpoint_store import DdbCheckpointStore
from cadence.scheduling.executor import RetryPolicy
from cadence.scheduling.models import DeliveryResult, ScheduleRequest, SendInstruction
from cadence.scheduling.store import InMemoryCheckpointStore


def _conditional_failure(op: str) -> ClientError:
    return ClientError(
        {"Error": {"Code": "ConditionalCheckFailedException", "Message": "The conditional request failed"}},
        op,
    )


class FakeTable:
    """
    In-memory stand-in for a boto3 DynamoDB Table resource. Understands the
    expression subset the stores issue: "SET a = :b, ..." updates and
    "#a = :b AND attribute_not_exists(#c)" conditions, filters and key conditions.
    """

    def __init__(self, key_attrs=("pk",), page_size: int = 2):
        self.key_attrs = tuple(key_attrs)
        self.page_size = page_size
        self.items: Dict[tuple, Dict[str, Any]] = {}
        self.scans = 0
        self.queries: List[Optional[str]] = []
        self._lock = threading.Lock()

    def _k(self, key: Dict[str, Any]) -> tuple:
        return tuple(key.get(a) for a in self.key_attrs)

    @staticmethod
    def _matches(expr: Optional[str], item: Optional[dict], names: dict, values: dict) -> bool:
        if not expr:
            return True
        for clause in expr.split(" AND "):
            clause = clause.strip()
            m = re.fullmatch(r"attribute_not_exists\((#?\w+)\)", clause)
            if m:
                attr = names.get(m.group(1), m.group(1))
                if item is not None and attr in item:
                    return False
                continue
            lhs, rhs = [p.strip() for p in clause.split("=")]
            attr = names.get(lhs, lhs)
            if item is None or item.get(attr) != values[rhs]:
                return False
        return True

    def put_item(self, Item, ConditionExpression=None, ExpressionAttributeNames=None, ExpressionAttributeValues=None):
        with self._lock:
            k = self._k(Item)
            current = self.items.get(k)
            if not self._matches(ConditionExpression, current, ExpressionAttributeNames or {}, ExpressionAttributeValues or {}):
                raise _conditional_failure("PutItem")
            self.items[k] = dict(Item)
        return {}

    def get_item(self, Key, ConsistentRead=False):
        with self._lock:
            item = self.items.get(self._k(Key))
            return {"Item": dict(item)} if item else {}

    def update_item(self, Key, UpdateExpression, ConditionExpression=None,
                    ExpressionAttributeNames=None, ExpressionAttributeValues=None):
        names = ExpressionAttributeNames or {}
        values = ExpressionAttributeValues or {}
        with self._lock:
            k = self._k(Key)
            current = self.items.get(k)
            if not self._matches(ConditionExpression, current, names, values):
                raise _conditional_failure("UpdateItem")
            new = dict(current or Key)
            assert UpdateExpression.startswith("SET ")
            for clause in UpdateExpression[len("SET "):].split(","):
                lhs, rhs = [p.strip() for p in clause.split("=")]
                new[names.get(lhs, lhs)] = values[rhs]
            self.items[k] = new
        return {}

    def scan(self, FilterExpression=None, ExpressionAttributeNames=None, ExpressionAttributeValues=None,
             ConsistentRead=False, ExclusiveStartKey=None):
        with self._lock:
            self.scans += 1
            keys = list(self.items.keys())
            start = keys.index(self._k(ExclusiveStartKey)) + 1 if ExclusiveStartKey else 0
            page = keys[start:start + self.page_size]
            items = [
                dict(self.items[k]) for k in page
                if self._matches(FilterExpression, self.items[k], ExpressionAttributeNames or {},
                                 ExpressionAttributeValues or {})
            ]
            resp: Dict[str, Any] = {"Items": items}
            if start + self.page_size < len(keys):
                resp["LastEvaluatedKey"] = dict(zip(self.key_attrs, page[-1]))
            return resp

    def query(self, IndexName=None, KeyConditionExpression=None, FilterExpression=None,
              ExpressionAttributeNames=None, ExpressionAttributeValues=None, ExclusiveStartKey=None):
        names = ExpressionAttributeNames or {}
        values = ExpressionAttributeValues or {}
        with self._lock:
            self.queries.append(IndexName)
            keys = [k for k, item in self.items.items() if self._matches(KeyConditionExpression, item, names, values)]
            start = keys.index(self._k(ExclusiveStartKey)) + 1 if ExclusiveStartKey else 0
            page = keys[start:start + self.page_size]
            items = [dict(self.items[k]) for k in page if self._matches(FilterExpression, self.items[k], names, values)]
            resp: Dict[str, Any] = {"Items": items}
            if start + self.page_size < len(keys):
                resp["LastEvaluatedKey"] = dict(zip(self.key_attrs, page[-1]))
            return resp


class StubDispatcher:
    """Records every dispatch; `outcome` decides each result (default: success)."""

    def __init__(self, outcome: Optional[Callable[[SendInstruction, int], DeliveryResult]] = None):
        self._outcome = outcome or (lambda instruction, n: DeliveryResult(ok=True))
        self._lock = threading.Lock()
        self.calls: List[tuple] = []

    def dispatch(self, instruction, instruction_id=None):
        with self._lock:
            self.calls.append((instruction_id, instruction))
            n = sum(1 for cid, _ in self.calls if cid == instruction_id)
        return self._outcome(instruction, n)

    def calls_for(self, instruction_id: str) -> int:
        with self._lock:
            return sum(1 for cid, _ in self.calls if cid == instruction_id)


class FakeResponse:
    def __init__(self, status, payload):
        self.status = status
        self.data = json.dumps(payload).encode("utf-8")


class StubPool:
    def __init__(self, *responses, exc=None):
        self.responses = list(responses)
        self.exc = exc
        self.requests = []

    def request(self, method, url, body=None, headers=None):
        self.requests.append({"method": method, "url": url, "body": body, "headers": headers})
        if self.exc:
            raise self.exc
        return self.responses.pop(0)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def past(minutes: int = 5) -> datetime:
    return datetime.now(timezone.utc) - timedelta(minutes=minutes)


def future(hours: int = 1) -> datetime:
    return datetime.now(timezone.utc) + timedelta(hours=hours)


def make_instruction(due_at: datetime, owner_id: str = "owner-1", recipient: str = "bob@example.com") -> SendInstruction:
    return SendInstruction(owner_id=owner_id, recipient=recipient, subject="Ping", body="Hello", due_at=due_at)


@pytest.fixture
def request_factory():
    def _make(**overrides) -> ScheduleRequest:
        fields = dict(
            owner_id="owner-1",
            raw_intent="remind me tomorrow at 9am and 6pm",
            timezone="UTC",
            fallback_recipient="bob@example.com",
            fallback_subject="Fallback subject",
            fallback_body="Fallback body",
        )
        fields.update(overrides)
        return ScheduleRequest(**fields)
    return _make


@pytest.fixture(params=["memory", "dynamodb", "dynamodb-index"])
def store(request):
    if request.param == "memory":
        return InMemoryCheckpointStore()
    index = "workflow_id-index" if request.param == "dynamodb-index" else None
    return DdbCheckpointStore(FakeTable(), pk_attr="pk", sk_attr=None, workflow_index=index)


@pytest.fixture
def no_backoff():
    return RetryPolicy(max_attempts=3, base_delay=0, max_delay=0)
