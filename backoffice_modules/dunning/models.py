"""
Dunning domain models (``backoffice_modules.dunning.models``).

Channels, policy steps and the per-group outcome a dunning run item
reports.  Aging and template rendering live in ``backoffice_engines``.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any


class DunningChannel(str, Enum):
    EMAIL = "EMAIL"
    WEBHOOK = "WEBHOOK"


class StepOutcome(str, Enum):
    SENT = "SENT"
    THROTTLED = "THROTTLED"  # Same step sent within throttle_days
    WAITING = "WAITING"  # An invoice in the group is younger than wait_days


class DunningSkipReason(str, Enum):
    NO_POLICY = "NO_POLICY"
    NOTHING_DUE = "NOTHING_DUE"  # Every step throttled or waiting


@dataclass(frozen=True)
class PolicyStep:
    policy_code: str
    from_bucket: str
    step_idx: int
    wait_days: int
    channel: DunningChannel
    template_code: str
    throttle_days: int
    segment: str | None = None


@dataclass(frozen=True)
class StepResult:
    step_idx: int
    policy_code: str
    channel: DunningChannel
    outcome: StepOutcome
    subject: str | None = None
    recipient: str | None = None


@dataclass(frozen=True)
class GroupOutcome:
    """What dunning one (customer, bucket) group did (or would do)."""

    customer_code: str
    bucket: str
    invoice_count: int
    total_due: Decimal
    steps: tuple[StepResult, ...] = field(default_factory=tuple)
    skip_reason: DunningSkipReason | None = None

    @property
    def sent(self) -> tuple[StepResult, ...]:
        return tuple(s for s in self.steps if s.outcome == StepOutcome.SENT)

    def count(self, channel: DunningChannel) -> int:
        return sum(1 for s in self.sent if s.channel == channel)

    def preview(self) -> dict[str, Any]:
        return {
            "customer": self.customer_code,
            "bucket": self.bucket,
            "invoice_count": self.invoice_count,
            "total_due": self.total_due,
            "emails": self.count(DunningChannel.EMAIL),
            "webhooks": self.count(DunningChannel.WEBHOOK),
            "steps": [
                {
                    "step_idx": s.step_idx,
                    "policy_code": s.policy_code,
                    "channel": s.channel.value,
                    "outcome": s.outcome.value,
                    "subject": s.subject,
                    "recipient": s.recipient,
                }
                for s in self.steps
            ],
        }
