"""
Trace records for pure engine calls.

``@traced_engine`` leaves the wrapped engine untouched and logs one
``BACKOFFICE_ENGINE_TRACE`` record per call, so a run's log shows which
engine version computed an outcome and from which inputs.  The inputs are
summarized as a 16-hex-char fingerprint of the chosen keyword arguments,
hashed with the same canonical JSON the audit log uses.

    @traced_engine("allocation", "1.0", fingerprint_fields=("rule",))
    def evaluate(self, *, rule, balances, drivers=None):
        ...
"""

from __future__ import annotations

import functools
import time
from collections.abc import Callable
from typing import Any

from backoffice_kernel.logging_config import get_logger
from backoffice_kernel.utils.hashing import hash_payload

TRACE_MESSAGE = "BACKOFFICE_ENGINE_TRACE"
FINGERPRINT_LENGTH = 16

_logger = get_logger("engines.tracer")


def compute_input_fingerprint(fingerprint_fields: tuple[str, ...], kwargs: dict[str, Any]) -> str:
    """Fingerprint of the named keyword arguments; absent ones hash as null."""
    selected = {name: kwargs.get(name) for name in fingerprint_fields}
    return hash_payload(selected)[:FINGERPRINT_LENGTH]


def traced_engine(
    engine_name: str,
    engine_version: str,
    fingerprint_fields: tuple[str, ...] = (),
) -> Callable:

    def wrap(engine_call: Callable) -> Callable:
        @functools.wraps(engine_call)
        def traced(*args: Any, **kwargs: Any) -> Any:
            fingerprint = compute_input_fingerprint(fingerprint_fields, kwargs) if fingerprint_fields else ""
            started = time.perf_counter()
            outcome = engine_call(*args, **kwargs)
            elapsed_ms = (time.perf_counter() - started) * 1000

            _logger.info(
                TRACE_MESSAGE,
                extra={
                    "trace_type": TRACE_MESSAGE,
                    "engine_name": engine_name,
                    "engine_version": engine_version,
                    "input_fingerprint": fingerprint,
                    "duration_ms": round(elapsed_ms, 2),
                    "function": engine_call.__qualname__,
                },
            )
            return outcome

        return traced

    return wrap
