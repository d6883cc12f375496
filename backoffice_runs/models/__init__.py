"""Run ORM models."""

from backoffice_runs.models.run import RunItemModel, RunModel, RunScheduleModel

__all__ = ["RunItemModel", "RunModel", "RunScheduleModel"]
