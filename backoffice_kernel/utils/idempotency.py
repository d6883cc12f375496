"""
Idempotency key utilities.

Run and journal idempotency keys have the form ``producer:scope:discriminator``.
Keys are stored under unique constraints, so the same key can never produce
a second run or a second journal entry.
"""

from typing import Any
from uuid import UUID

from backoffice_kernel.utils.hashing import hash_payload


def generate_idempotency_key(
    producer: str,
    scope: str,
    discriminator: UUID | str,
) -> str:
    """
    Build an idempotency key.

    Example:
        >>> generate_idempotency_key("alloc.cost_allocation", "ACME", "2026-01")
        'alloc.cost_allocation:ACME:2026-01'
    """
    return f"{producer}:{scope}:{discriminator}"


def parse_idempotency_key(key: str) -> tuple[str, str, str]:
    """
    Split a key into (producer, scope, discriminator).

    Raises:
        ValueError: If key format is invalid.
    """
    parts = key.split(":", 2)
    if len(parts) != 3 or not all(parts):
        raise ValueError(f"Invalid idempotency key format: {key}")
    return parts[0], parts[1], parts[2]


def parameters_fingerprint(parameters: dict[str, Any]) -> str:
    """Short stable fingerprint of run parameters, used as a key discriminator."""
    return hash_payload(parameters)[:24]
