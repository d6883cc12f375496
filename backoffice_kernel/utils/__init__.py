"""Kernel utilities: deterministic hashing and idempotency keys."""
