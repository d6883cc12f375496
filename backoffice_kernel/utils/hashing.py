"""
Canonical JSON and SHA-256 helpers.

Audit chain links, run parameter fingerprints, settings checksums and bank
file checksums all hash through here, so equal inputs hash equally no matter
how a dict was built or how a Decimal was written (``10.50`` and ``10.5``
are the same amount).
"""

import hashlib
import json
from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

GENESIS = "GENESIS"


def _encode(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return asdict(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Decimal):
        return format(value.normalize(), "f")
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    if isinstance(value, bytes):
        return value.hex()
    raise TypeError(f"Cannot canonicalize {type(value).__name__}")


def canonicalize_json(data: Any) -> str:
    """Sorted keys, no whitespace, stable rendering of non-JSON scalars."""
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_encode)


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def hash_payload(payload: Any) -> str:
    return _sha256(canonicalize_json(payload))


def hash_bytes(content: bytes) -> str:
    return hashlib.sha256(content).hexdigest()


def hash_audit_event(
    entity_type: str,
    entity_id: str,
    action: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """Chain link: the first event hashes against ``GENESIS``."""
    return _sha256("|".join((entity_type, str(entity_id), action, payload_hash, prev_hash or GENESIS)))


def to_json_safe(data: Any) -> Any:
    """``data`` as plain JSON types, ready for a JSON column (Decimals as strings)."""
    return json.loads(canonicalize_json(data))
