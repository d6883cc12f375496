"""
backoffice_runs -- Idempotent back-office run orchestration.

Provides a run engine with dry-run/commit modes, per-item SAVEPOINT
isolation, idempotency keys, audit trail and an in-process cron-like
scheduler.  Wraps the module run work (cost allocation, invoice runs,
payment selection, dunning, revenue recognition) in a uniform framework.

Architecture:
    backoffice_runs/ is a top-level package.  Nothing in kernel/,
    engines/ or modules/ imports from backoffice_runs.

Invariants:
    - Each item runs in its own SAVEPOINT; a failing item never undoes
      another item's work.
    - A DRY_RUN persists the run record, its items and its summary, and
      nothing else.
    - One run per idempotency key; a repeated key replays the stored run.
    - One RUNNING run per (run_type, company).
    - Every lifecycle transition is audited.
    - Time comes from the injected Clock.
"""
