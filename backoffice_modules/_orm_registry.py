"""
Module ORM registry.

Imports every ORM module so ``Base.metadata`` holds the full schema before
``create_all()`` runs.  Idempotent; repeated calls are harmless.
"""


def import_all_orm_models() -> None:
    """Import kernel, run and module ORM models."""
    # fmt: off
    import backoffice_kernel.models  # noqa: F401
    import backoffice_kernel.services.sequence_service  # noqa: F401  # sequence_counters
    import backoffice_modules.alloc.orm  # noqa: F401
    import backoffice_modules.billing.orm  # noqa: F401
    import backoffice_modules.dunning.orm  # noqa: F401
    import backoffice_modules.payments.orm  # noqa: F401
    import backoffice_modules.revenue.orm  # noqa: F401
    import backoffice_runs.models  # noqa: F401
    # fmt: on
