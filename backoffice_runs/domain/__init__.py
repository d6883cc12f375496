"""Pure run domain: DTOs, statuses and schedule evaluation."""

from backoffice_runs.domain.schedule import (
    CronSpec,
    compute_next_run,
    matches_cron,
    parse_cron,
    should_fire,
)
from backoffice_runs.domain.types import (
    JobSchedule,
    Run,
    RunItemResult,
    RunItemStatus,
    RunMode,
    RunResult,
    RunStatus,
    ScheduleFrequency,
)

__all__ = [
    "CronSpec",
    "JobSchedule",
    "Run",
    "RunItemResult",
    "RunItemStatus",
    "RunMode",
    "RunResult",
    "RunStatus",
    "ScheduleFrequency",
    "compute_next_run",
    "matches_cron",
    "parse_cron",
    "should_fire",
]
