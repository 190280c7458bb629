"""
Deterministic hashing of audit payloads.

An AuditEvent stores its payload as JSON together with the SHA-256 of the
payload's canonical form.  Re-hashing the stored JSON later must give the
same digest, so canonicalization only emits plain JSON types and renders
every kernel value (amounts, stamps, ids, statuses) one fixed way.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


def _canonical_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        # 48.500 and 48.5 are the same quantity of fuel
        return format(value.normalize(), "f")
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    raise TypeError(f"cannot canonicalize {type(value).__name__} in an audit payload")


def canonicalize_json(data: Any) -> str:
    """Sorted keys, compact separators, kernel types rendered as strings."""
    return json.dumps(
        data, sort_keys=True, separators=(",", ":"), default=_canonical_value,
    )


def to_json_safe(data: Any) -> Any:
    """The JSON-column form of ``data``; hashing it again is stable."""
    return json.loads(canonicalize_json(data))


def hash_payload(payload: dict) -> str:
    return hashlib.sha256(canonicalize_json(payload).encode("utf-8")).hexdigest()
