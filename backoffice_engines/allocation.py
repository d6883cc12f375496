"""
Module: backoffice_engines.allocation
Responsibility:
    Evaluate cost allocation rules against a period's trial balance and
    driver statistics, producing the allocation lines a run previews (dry
    run) or posts (commit).

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import backoffice_kernel domain types and helpers.

Invariants enforced:
    - Decimal-only money, rounded HALF_UP to 2 places via round_money.
    - Conservation: for PERCENT rules whose percents sum to exactly 1 and for
      DRIVER_SHARE rules, the lines sum to the source pool.  The rounding
      remainder is assigned to the last line.
    - Determinism: rules are ordered by (order_no, code); driver rows by
      (cost_center, project).
    - Purity: no clock access, no I/O.

Failure modes:
    - AllocationRuleError from AllocationRule.__post_init__ on an invalid
      rule definition.

Usage:
    from backoffice_engines.allocation import AllocationEngine, AllocationRule

    engine = AllocationEngine()
    outcome = engine.evaluate(rule=rule, balances=rows, drivers=drivers)
    for line in outcome.lines:
        ...
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum

from backoffice_engines.tracer import traced_engine
from backoffice_kernel.db.types import ZERO, round_money
from backoffice_kernel.domain.periods import Period
from backoffice_kernel.exceptions import AllocationRuleError
from backoffice_kernel.logging_config import get_logger

logger = get_logger("engines.allocation")

UNKNOWN_TARGET = "UNKNOWN"


class AllocationMethod(str, Enum):
    """How a rule apportions its source pool."""

    PERCENT = "PERCENT"  # Fixed percentage per target cost center
    RATE_PER_UNIT = "RATE_PER_UNIT"  # Rate times driver quantity
    DRIVER_SHARE = "DRIVER_SHARE"  # Pool split by driver proportion


@dataclass(frozen=True)
class AllocationTarget:
    """A PERCENT rule target: a cost center and its share in (0, 1]."""

    cost_center: str
    percent: Decimal

    def __post_init__(self) -> None:
        if not self.cost_center:
            raise AllocationRuleError("?", "target cost center is required")
        if not ZERO < self.percent <= Decimal("1"):
            raise AllocationRuleError(
                "?", f"target percent {self.percent} must be in (0, 1]"
            )


@dataclass(frozen=True)
class AllocationRule:
    """
    A cost allocation rule.

    Contract:
        Frozen, validated on construction.  ``src_account`` selects source
        balances by substring; ``src_cc_like`` by SQL-LIKE pattern (``%``
        wildcard, a bare value is a prefix); ``src_project`` by equality.
    """

    code: str
    name: str
    method: AllocationMethod
    src_account: str
    eff_from: date
    src_cc_like: str | None = None
    src_project: str | None = None
    driver_code: str | None = None
    rate_per_unit: Decimal | None = None
    targets: tuple[AllocationTarget, ...] = ()
    eff_to: date | None = None
    order_no: int = 1
    active: bool = True

    def __post_init__(self) -> None:
        if not self.code:
            raise AllocationRuleError("?", "rule code is required")
        if not self.src_account:
            raise AllocationRuleError(self.code, "src_account is required")
        if self.eff_to is not None and self.eff_to < self.eff_from:
            raise AllocationRuleError(self.code, "eff_to is before eff_from")

        if self.method == AllocationMethod.PERCENT:
            if not self.targets:
                raise AllocationRuleError(self.code, "PERCENT method requires targets")
            if self.total_percent > Decimal("1"):
                raise AllocationRuleError(
                    self.code, f"target percents sum to {self.total_percent} (> 1)"
                )
            cost_centers = [t.cost_center for t in self.targets]
            if len(set(cost_centers)) != len(cost_centers):
                raise AllocationRuleError(self.code, "duplicate target cost center")
        elif self.method == AllocationMethod.RATE_PER_UNIT:
            if not self.driver_code:
                raise AllocationRuleError(self.code, "RATE_PER_UNIT method requires driver_code")
            if self.rate_per_unit is None or self.rate_per_unit <= ZERO:
                raise AllocationRuleError(
                    self.code, "RATE_PER_UNIT method requires a positive rate_per_unit"
                )
        elif self.method == AllocationMethod.DRIVER_SHARE:
            if not self.driver_code:
                raise AllocationRuleError(self.code, "DRIVER_SHARE method requires driver_code")

    @property
    def total_percent(self) -> Decimal:
        return sum((t.percent for t in self.targets), ZERO)

    def is_effective(self, period: Period) -> bool:
        """Active and effective on the first day of ``period``."""
        first = period.first_day
        if not self.active or self.eff_from > first:
            return False
        return self.eff_to is None or self.eff_to >= first


@dataclass(frozen=True)
class DriverValue:
    """A driver statistic for one cost center / project in a period."""

    driver_code: str
    value: Decimal
    cost_center: str | None = None
    project: str | None = None

    def __post_init__(self) -> None:
        if self.value < ZERO:
            raise AllocationRuleError(
                self.driver_code, f"driver value {self.value} must be non-negative"
            )

    @property
    def target_label(self) -> str:
        return self.cost_center or self.project or UNKNOWN_TARGET


@dataclass(frozen=True)
class BalanceRow:
    """Net balance (debits - credits) of one account / dimension combination."""

    account: str
    balance: Decimal
    cost_center: str | None = None
    project: str | None = None


@dataclass(frozen=True)
class AllocationLine:
    """One target's share of a rule's pool."""

    rule_code: str
    src_account: str
    target_cost_center: str | None
    target_project: str | None
    amount: Decimal
    note: str
    driver_code: str | None = None
    driver_value: Decimal | None = None

    @property
    def target_label(self) -> str:
        return self.target_cost_center or self.target_project or UNKNOWN_TARGET


@dataclass(frozen=True)
class RuleAllocation:
    """Engine output for one rule."""

    rule_code: str
    method: AllocationMethod
    pool: Decimal
    lines: tuple[AllocationLine, ...] = field(default_factory=tuple)

    @property
    def total(self) -> Decimal:
        return sum((line.amount for line in self.lines), ZERO)

    @property
    def unallocated(self) -> Decimal:
        return self.pool - self.total

    @property
    def is_empty(self) -> bool:
        return not self.lines


# =============================================================================
# Rule selection and source matching (pure)
# =============================================================================


def active_rules_for_period(
    rules: Iterable[AllocationRule],
    period: Period,
    rule_codes: Iterable[str] | None = None,
) -> tuple[AllocationRule, ...]:
    """Rules effective in ``period``, optionally restricted, ordered by (order_no, code)."""
    wanted = set(rule_codes) if rule_codes else None
    selected = [
        r for r in rules
        if r.is_effective(period) and (wanted is None or r.code in wanted)
    ]
    return tuple(sorted(selected, key=lambda r: (r.order_no, r.code)))


def _like_to_regex(pattern: str) -> re.Pattern[str]:
    parts = []
    for ch in pattern:
        if ch == "%":
            parts.append(".*")
        elif ch == "_":
            parts.append(".")
        else:
            parts.append(re.escape(ch))
    return re.compile("^" + "".join(parts) + "$")


def cost_center_matches(pattern: str | None, cost_center: str | None) -> bool:
    """SQL-LIKE match; a pattern without wildcards is a prefix match."""
    if not pattern:
        return True
    if cost_center is None:
        return False
    if "%" not in pattern and "_" not in pattern:
        return cost_center.startswith(pattern)
    return _like_to_regex(pattern).match(cost_center) is not None


def source_pool(rule: AllocationRule, balances: Iterable[BalanceRow]) -> Decimal:
    """Sum of the balances the rule draws from."""
    total = ZERO
    for row in balances:
        if rule.src_account not in row.account:
            continue
        if not cost_center_matches(rule.src_cc_like, row.cost_center):
            continue
        if rule.src_project and row.project != rule.src_project:
            continue
        total += row.balance
    return round_money(total)


def _pct(value: Decimal) -> str:
    return f"{value * 100:.1f}%"


# =============================================================================
# Engine
# =============================================================================


class AllocationEngine:
    """
    Stateless allocation rule evaluator.

    Contract:
        ``evaluate`` is a pure function of (rule, balances, drivers).  Rules
        with a non-positive pool produce no lines.
    """

    @traced_engine("allocation", "1.0", fingerprint_fields=("rule",))
    def evaluate(
        self,
        *,
        rule: AllocationRule,
        balances: Sequence[BalanceRow],
        drivers: Sequence[DriverValue] = (),
    ) -> RuleAllocation:
        pool = source_pool(rule, balances)
        if pool <= ZERO:
            logger.info(
                "allocation_rule_empty_pool",
                extra={"rule_code": rule.code, "pool": str(pool)},
            )
            return RuleAllocation(rule.code, rule.method, pool)

        rule_drivers = sorted(
            (d for d in drivers if d.driver_code == rule.driver_code),
            key=lambda d: (d.cost_center or "", d.project or ""),
        )

        match rule.method:
            case AllocationMethod.PERCENT:
                lines = self._by_percent(rule, pool)
            case AllocationMethod.RATE_PER_UNIT:
                lines = self._by_rate(rule, rule_drivers)
            case AllocationMethod.DRIVER_SHARE:
                lines = self._by_driver_share(rule, pool, rule_drivers)
            case _:
                raise AllocationRuleError(rule.code, f"unknown method {rule.method}")

        outcome = RuleAllocation(
            rule.code,
            rule.method,
            pool,
            tuple(line for line in lines if line.amount != ZERO),
        )
        logger.info(
            "allocation_rule_evaluated",
            extra={
                "rule_code": rule.code,
                "method": rule.method.value,
                "pool": str(pool),
                "total": str(outcome.total),
                "line_count": len(outcome.lines),
            },
        )
        return outcome

    def _by_percent(self, rule: AllocationRule, pool: Decimal) -> list[AllocationLine]:
        conserve = rule.total_percent == Decimal("1")
        lines: list[AllocationLine] = []
        allocated = ZERO
        last = len(rule.targets) - 1
        for i, target in enumerate(rule.targets):
            if conserve and i == last:
                amount = pool - allocated
            else:
                amount = round_money(pool * target.percent)
            allocated += amount
            lines.append(
                AllocationLine(
                    rule_code=rule.code,
                    src_account=rule.src_account,
                    target_cost_center=target.cost_center,
                    target_project=None,
                    amount=amount,
                    note=f"Percent allocation: {_pct(target.percent)}",
                )
            )
        return lines

    def _by_rate(
        self,
        rule: AllocationRule,
        drivers: Sequence[DriverValue],
    ) -> list[AllocationLine]:
        assert rule.rate_per_unit is not None
        return [
            AllocationLine(
                rule_code=rule.code,
                src_account=rule.src_account,
                target_cost_center=d.cost_center,
                target_project=d.project,
                amount=round_money(rule.rate_per_unit * d.value),
                note=f"Rate allocation: {rule.rate_per_unit.normalize():f} per unit",
                driver_code=d.driver_code,
                driver_value=d.value,
            )
            for d in drivers
            if d.value > ZERO
        ]

    def _by_driver_share(
        self,
        rule: AllocationRule,
        pool: Decimal,
        drivers: Sequence[DriverValue],
    ) -> list[AllocationLine]:
        weighted = [d for d in drivers if d.value > ZERO]
        total = sum((d.value for d in weighted), ZERO)
        if total == ZERO:
            return []

        lines: list[AllocationLine] = []
        allocated = ZERO
        last = len(weighted) - 1
        for i, d in enumerate(weighted):
            share = d.value / total
            amount = pool - allocated if i == last else round_money(pool * share)
            allocated += amount
            lines.append(
                AllocationLine(
                    rule_code=rule.code,
                    src_account=rule.src_account,
                    target_cost_center=d.cost_center,
                    target_project=d.project,
                    amount=amount,
                    note=f"Driver share: {_pct(share)}",
                    driver_code=d.driver_code,
                    driver_value=d.value,
                )
            )
        return lines
