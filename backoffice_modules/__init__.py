"""
Back-office business modules.

Each module follows the same layout:

    config.py   -- configuration dataclass with defaults and validation
    models.py   -- frozen domain DTOs returned to callers
    orm.py      -- SQLAlchemy persistence
    service.py  -- document operations plus the per-item work its run task calls

Computation lives in backoffice_engines; ledger posting, auditing and
locks live in backoffice_kernel.  Run orchestration lives in
backoffice_runs, which imports modules and never the other way round.
"""
