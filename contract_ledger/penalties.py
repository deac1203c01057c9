"""
Overdue Penalty Module

Computes the per-day overdue penalty of a contract from its standing
OVERDUE_CONFIG rule. The penalty accrues on every overdue installment at
once, each with its own day count.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .events import OverdueConfig, PenaltyKind
from .money import ZERO, HUNDRED, quantize_money


@dataclass(frozen=True)
class OverdueInstallment:
    """An unpaid installment whose due date has passed"""
    index: int
    due_date: date
    days_overdue: int
    amount_due: Decimal     # effective value not yet covered


@dataclass(frozen=True)
class PenaltyLine:
    """Penalty accrued by one overdue installment"""
    index: int
    days_overdue: int
    amount: Decimal


@dataclass
class PenaltySummary:
    """Cumulative penalty with its per-installment breakdown"""
    total_penalty: Decimal = ZERO
    breakdown: List[PenaltyLine] = field(default_factory=list)


def penalty_for_days(config: OverdueConfig, installment_value: Decimal, days: int) -> Decimal:
    """Penalty of a single installment overdue for ``days`` days"""
    if days <= 0:
        return ZERO
    if config.kind == PenaltyKind.PERCENTAGE:
        amount = installment_value * (config.value / HUNDRED) * days
    else:
        amount = config.value * days
    return quantize_money(amount)


def compute_cumulative_penalty(
    overdue_installments: Sequence[OverdueInstallment],
    config: Optional[OverdueConfig],
    installment_value: Decimal
) -> PenaltySummary:
    """
    Sum the overdue penalty over every overdue installment.

    Args:
        overdue_installments: All unpaid installments past due
        config: Standing overdue rule; None means no computed penalty
        installment_value: Base value the percentage rule applies to

    Returns:
        PenaltySummary with one breakdown line per installment
    """
    summary = PenaltySummary()
    if config is None or config.value <= ZERO:
        return summary

    for item in overdue_installments:
        amount = penalty_for_days(config, installment_value, item.days_overdue)
        summary.breakdown.append(PenaltyLine(item.index, item.days_overdue, amount))
        summary.total_penalty += amount

    return summary
