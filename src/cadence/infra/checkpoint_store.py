from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from botocore.exceptions import ClientError

from .config import CHECKPOINT_PK_ATTR, CHECKPOINT_SK_ATTR, CHECKPOINT_SK_VALUE, CHECKPOINT_WORKFLOW_INDEX
from .serialization import ddb_clean, to_ddb_safe
from ..scheduling.models import Checkpoint, CheckpointStatus, SendInstruction, UNFINISHED_STATUSES, WorkflowClaim
from ..scheduling.store import CLAIM_PLANNING, CLAIM_SCHEDULED, CheckpointStore

RECORD_TYPE = "SEND_CHECKPOINT"
CLAIM_RECORD_TYPE = "WORKFLOW_CLAIM"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def _is_conditional_failure(e: ClientError) -> bool:
    return e.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException"


class DdbCheckpointStore(CheckpointStore):
    """
    One item per checkpoint:
      pk = "ckpt#<instruction_id>" (+ sk = CHECKPOINT_SK_VALUE when the table has a sort key)
      record_type = "SEND_CHECKPOINT"
      status / attempts / due_at as top-level attributes (used in conditions)
      instruction_json = the immutable SendInstruction

    One item per workflow claim:
      pk = "wfclaim#<workflow_id>", record_type = "WORKFLOW_CLAIM"
      status = "planning" | "scheduled", claimed_at

    With `workflow_index` set (a GSI keyed on workflow_id), list_workflow
    queries the index instead of scanning the table.
    """

    def __init__(
        self,
        table,
        pk_attr: str = CHECKPOINT_PK_ATTR,
        sk_attr: Optional[str] = CHECKPOINT_SK_ATTR,
        workflow_index: Optional[str] = CHECKPOINT_WORKFLOW_INDEX,
    ):
        self._table = table
        self._pk_attr = pk_attr
        self._sk_attr = sk_attr
        self._workflow_index = workflow_index

    def _key(self, ident: str, prefix: str = "ckpt#") -> Dict[str, Any]:
        key: Dict[str, Any] = {self._pk_attr: f"{prefix}{ident}"}
        if self._sk_attr:
            key[self._sk_attr] = CHECKPOINT_SK_VALUE
        return key

    def _to_item(self, ckpt: Checkpoint) -> Dict[str, Any]:
        item = self._key(ckpt.instruction_id)
        item.update({
            "record_type": RECORD_TYPE,
            "instruction_id": ckpt.instruction_id,
            "workflow_id": ckpt.workflow_id,
            "sequence": ckpt.sequence,
            "status": ckpt.status.value,
            "attempts": ckpt.attempts,
            "due_at": ckpt.due_at.isoformat(),
            "instruction_json": json.dumps(ckpt.instruction.to_dict()),
            "last_error": ckpt.last_error,
            "created_at": _iso(ckpt.created_at),
            "updated_at": _iso(ckpt.updated_at),
            "fired_at": _iso(ckpt.fired_at),
            "finished_at": _iso(ckpt.finished_at),
        })
        return ddb_clean(to_ddb_safe(item))

    def _from_item(self, item: Dict[str, Any]) -> Optional[Checkpoint]:
        if item.get("record_type") != RECORD_TYPE:
            return None
        try:
            instruction = SendInstruction.from_dict(json.loads(item.get("instruction_json") or "{}"))
            status = CheckpointStatus(item.get("status"))
        except (KeyError, ValueError) as e:
            print(f"[ckpt] unreadable item id={item.get('instruction_id')} err={e!r}")
            return None

        ckpt = Checkpoint(
            instruction_id=item["instruction_id"],
            workflow_id=item.get("workflow_id", ""),
            sequence=int(item.get("sequence", 0)),
            instruction=instruction,
            status=status,
            attempts=int(item.get("attempts", 0)),
            last_error=item.get("last_error"),
        )
        ckpt.created_at = _parse_iso(item.get("created_at")) or ckpt.created_at
        ckpt.updated_at = _parse_iso(item.get("updated_at")) or ckpt.updated_at
        ckpt.fired_at = _parse_iso(item.get("fired_at"))
        ckpt.finished_at = _parse_iso(item.get("finished_at"))
        return ckpt

    def put_pending(self, checkpoint: Checkpoint) -> bool:
        checkpoint.status = CheckpointStatus.PENDING
        try:
            self._table.put_item(
                Item=self._to_item(checkpoint),
                ConditionExpression="attribute_not_exists(#pk)",
                ExpressionAttributeNames={"#pk": self._pk_attr},
            )
            return True
        except ClientError as e:
            if _is_conditional_failure(e):
                return False
            raise

    def get(self, instruction_id: str) -> Optional[Checkpoint]:
        item = self._table.get_item(Key=self._key(instruction_id), ConsistentRead=True).get("Item")
        return self._from_item(item) if item else None

    def transition(self, instruction_id, expected, new, **fields) -> bool:
        updates = [("#st", ":st", "status", new.value), ("#ua", ":ua", "updated_at", _now_iso())]
        for i, (attr, value) in enumerate(sorted(fields.items())):
            if isinstance(value, datetime):
                value = value.isoformat()
            updates.append((f"#f{i}", f":f{i}", attr, value))

        names = {"#st": "status"}
        values: Dict[str, Any] = {":expected": expected.value}
        sets = []
        for name_key, value_key, attr_name, value in updates:
            names[name_key] = attr_name
            values[value_key] = value
            sets.append(f"{name_key} = {value_key}")

        try:
            self._table.update_item(
                Key=self._key(instruction_id),
                UpdateExpression="SET " + ", ".join(sets),
                ConditionExpression="#st = :expected",
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=to_ddb_safe(values),
            )
            return True
        except ClientError as e:
            if _is_conditional_failure(e):
                return False
            raise

    def record_attempt(self, instruction_id: str, expected_attempts: int) -> bool:
        try:
            self._table.update_item(
                Key=self._key(instruction_id),
                UpdateExpression="SET #att = :next, #ua = :ua",
                ConditionExpression="#st = :fired AND #att = :expected",
                ExpressionAttributeNames={"#att": "attempts", "#st": "status", "#ua": "updated_at"},
                ExpressionAttributeValues={
                    ":next": expected_attempts + 1,
                    ":expected": expected_attempts,
                    ":fired": CheckpointStatus.FIRED.value,
                    ":ua": _now_iso(),
                },
            )
            return True
        except ClientError as e:
            if _is_conditional_failure(e):
                return False
            raise

    def _collect(self, op, **kwargs) -> List[Checkpoint]:
        out: List[Checkpoint] = []
        while True:
            resp = op(**kwargs)
            for item in resp.get("Items", []):
                ckpt = self._from_item(item)
                if ckpt:
                    out.append(ckpt)
            last_key = resp.get("LastEvaluatedKey")
            if not last_key:
                return out
            kwargs["ExclusiveStartKey"] = last_key

    def list_unfinished(self) -> List[Checkpoint]:
        items = self._collect(
            self._table.scan,
            FilterExpression="#rt = :rt",
            ExpressionAttributeNames={"#rt": "record_type"},
            ExpressionAttributeValues={":rt": RECORD_TYPE},
            ConsistentRead=True,
        )
        out = [c for c in items if c.status in UNFINISHED_STATUSES]
        return sorted(out, key=lambda c: (c.workflow_id, c.sequence))

    def list_workflow(self, workflow_id: str) -> List[Checkpoint]:
        names = {"#rt": "record_type", "#wf": "workflow_id"}
        values = {":rt": RECORD_TYPE, ":wf": workflow_id}
        if self._workflow_index:
            # GSI reads are eventually consistent; the workflow claim, not this
            # lookup, is what keeps a workflow from being planned twice.
            items = self._collect(
                self._table.query,
                IndexName=self._workflow_index,
                KeyConditionExpression="#wf = :wf",
                FilterExpression="#rt = :rt",
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
            )
        else:
            items = self._collect(
                self._table.scan,
                FilterExpression="#rt = :rt AND #wf = :wf",
                ExpressionAttributeNames=names,
                ExpressionAttributeValues=values,
                ConsistentRead=True,
            )
        return sorted(items, key=lambda c: c.sequence)

    # ---- workflow claims ----

    def claim_workflow(self, workflow_id: str, lease_seconds: float) -> WorkflowClaim:
        now = datetime.now(timezone.utc)
        key = self._key(workflow_id, prefix="wfclaim#")
        item = dict(key)
        item.update({
            "record_type": CLAIM_RECORD_TYPE,
            "workflow_id": workflow_id,
            "status": CLAIM_PLANNING,
            "claimed_at": now.isoformat(),
        })
        try:
            self._table.put_item(
                Item=item,
                ConditionExpression="attribute_not_exists(#pk)",
                ExpressionAttributeNames={"#pk": self._pk_attr},
            )
            return WorkflowClaim.CLAIMED
        except ClientError as e:
            if not _is_conditional_failure(e):
                raise

        current = self._table.get_item(Key=key, ConsistentRead=True).get("Item") or {}
        if current.get("status") == CLAIM_SCHEDULED:
            return WorkflowClaim.SCHEDULED
        seen = current.get("claimed_at")
        claimed_at = _parse_iso(seen)
        if claimed_at is None or (now - claimed_at).total_seconds() < lease_seconds:
            return WorkflowClaim.BUSY

        # Take over only if nobody refreshed or finished the claim since we read it.
        try:
            self._table.update_item(
                Key=key,
                UpdateExpression="SET #ca = :now",
                ConditionExpression="#st = :planning AND #ca = :seen",
                ExpressionAttributeNames={"#ca": "claimed_at", "#st": "status"},
                ExpressionAttributeValues={":now": now.isoformat(), ":planning": CLAIM_PLANNING, ":seen": seen},
            )
            return WorkflowClaim.RECLAIMED
        except ClientError as e:
            if _is_conditional_failure(e):
                return WorkflowClaim.BUSY
            raise

    def finish_workflow_claim(self, workflow_id: str) -> None:
        self._table.update_item(
            Key=self._key(workflow_id, prefix="wfclaim#"),
            UpdateExpression="SET #st = :scheduled, #ua = :ua",
            ExpressionAttributeNames={"#st": "status", "#ua": "updated_at"},
            ExpressionAttributeValues={":scheduled": CLAIM_SCHEDULED, ":ua": _now_iso()},
        )
