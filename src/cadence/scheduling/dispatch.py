from __future__ import annotations

import json
from typing import Optional

from .delivery import deliver
from .models import DeliveryResult, SendInstruction


def delivery_event(instruction: SendInstruction, instruction_id: Optional[str] = None) -> dict:
    event = {
        "ownerId": instruction.owner_id,
        "recipient": instruction.recipient,
        "subject": instruction.subject,
        "body": instruction.body,
        "dueAt": instruction.due_at.isoformat(),
    }
    if instruction_id:
        event["instructionId"] = instruction_id
    return event


class LocalDispatcher:
    """Runs the delivery function in this process."""

    def __init__(self, resolver=None, transport=None):
        self._resolver = resolver
        self._transport = transport

    def dispatch(self, instruction: SendInstruction, instruction_id: Optional[str] = None) -> DeliveryResult:
        return deliver(instruction, resolver=self._resolver, transport=self._transport)


class LambdaDispatcher:
    """Invokes the delivery Lambda synchronously and reads back its DeliveryResult."""

    def __init__(self, function_arn: str, client=None):
        self._function_arn = function_arn
        self._client = client

    @property
    def client(self):
        if self._client is None:
            from ..infra.aws_clients import lambda_client
            self._client = lambda_client()
        return self._client

    def dispatch(self, instruction: SendInstruction, instruction_id: Optional[str] = None) -> DeliveryResult:
        try:
            resp = self.client.invoke(
                FunctionName=self._function_arn,
                InvocationType="RequestResponse",
                Payload=json.dumps(delivery_event(instruction, instruction_id)).encode("utf-8"),
            )
            raw = resp["Payload"].read()
            payload = json.loads(raw.decode("utf-8") or "{}")
        except Exception as e:
            print(f"[dispatch] delivery function unreachable id={instruction_id} err={e!r}")
            return DeliveryResult(ok=False, error=f"unreachable:{e!r}", retryable=True)

        if resp.get("FunctionError") or not isinstance(payload, dict):
            return DeliveryResult(ok=False, error=f"function_error:{payload}", retryable=True)

        return DeliveryResult(
            ok=bool(payload.get("ok")),
            error=payload.get("error"),
            retryable=bool(payload.get("retryable", not payload.get("ok"))),
        )


def default_dispatcher():
    from ..infra.config import DELIVERY_LAMBDA_ARN
    if DELIVERY_LAMBDA_ARN:
        return LambdaDispatcher(DELIVERY_LAMBDA_ARN)
    return LocalDispatcher()
