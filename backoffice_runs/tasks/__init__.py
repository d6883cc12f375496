"""
backoffice_runs.tasks -- Task protocol, registry, and module task implementations.

Module task files import their module services lazily.
"""

from backoffice_runs.tasks.base import (
    RunContext,
    RunItemInput,
    RunTask,
    RunTaskResult,
    TaskRegistry,
    succeeded_data,
)

__all__ = [
    "RunContext",
    "RunItemInput",
    "RunTask",
    "RunTaskResult",
    "TaskRegistry",
    "succeeded_data",
]
