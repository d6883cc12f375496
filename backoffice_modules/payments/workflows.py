"""
Pay run workflow (``backoffice_modules.payments.workflows``).

Declares the pay run state machine as frozen transitions.  PaymentsService
consults ``require_transition`` before every status change; an illegal
transition raises PayRunStateError.
"""

from dataclasses import dataclass

from backoffice_kernel.exceptions import PayRunStateError
from backoffice_kernel.logging_config import get_logger
from backoffice_modules.payments.models import PayRunStatus

logger = get_logger("modules.payments.workflows")


@dataclass(frozen=True)
class Transition:
    action: str
    from_status: PayRunStatus
    to_status: PayRunStatus
    posts_entry: bool = False


PAY_RUN_TRANSITIONS: tuple[Transition, ...] = (
    Transition("approve", PayRunStatus.DRAFT, PayRunStatus.APPROVED),
    Transition("export", PayRunStatus.APPROVED, PayRunStatus.EXPORTED),
    Transition("execute", PayRunStatus.EXPORTED, PayRunStatus.EXECUTED, posts_entry=True),
    Transition("cancel", PayRunStatus.DRAFT, PayRunStatus.CANCELLED),
    Transition("cancel", PayRunStatus.APPROVED, PayRunStatus.CANCELLED),
)


def require_transition(pay_run_id: str, status: PayRunStatus, action: str) -> Transition:
    """The transition ``action`` takes from ``status``.

    Raises:
        PayRunStateError: ``action`` is not allowed from ``status``.
    """
    for transition in PAY_RUN_TRANSITIONS:
        if transition.action == action and transition.from_status == status:
            return transition
    raise PayRunStateError(pay_run_id, status.value, action)


logger.info(
    "pay_run_workflow_defined",
    extra={
        "states": [s.value for s in PayRunStatus],
        "transitions": len(PAY_RUN_TRANSITIONS),
    },
)
