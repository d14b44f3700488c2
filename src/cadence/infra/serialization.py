from __future__ import annotations

from decimal import Decimal
from typing import Any


def to_ddb_safe(x: Any) -> Any:
    """Convert floats to Decimal recursively for DynamoDB compatibility."""
    if isinstance(x, float):
        return Decimal(str(x))
    if isinstance(x, dict):
        return {k: to_ddb_safe(v) for k, v in x.items()}
    if isinstance(x, (list, tuple)):
        return [to_ddb_safe(v) for v in x]
    return x


def to_json_safe(x: Any) -> Any:
    """Convert Decimal (as returned by DynamoDB) back to int/float recursively."""
    if isinstance(x, Decimal):
        return int(x) if x == x.to_integral_value() else float(x)
    if isinstance(x, dict):
        return {k: to_json_safe(v) for k, v in x.items()}
    if isinstance(x, (list, tuple)):
        return [to_json_safe(v) for v in x]
    return x


def ddb_clean(item: Any) -> Any:
    """
    Drop dict keys whose values are None.
    Empty strings are kept: a checkpoint body may legitimately be "".
    """
    if isinstance(item, dict):
        return {k: ddb_clean(v) for k, v in item.items() if v is not None}
    if isinstance(item, (list, tuple)):
        return [ddb_clean(v) for v in item]
    return item
