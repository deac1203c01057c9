"""
Ledger Event Module

Typed ledger events carried in a contract's annotation. Each event class maps
to one tag name of the annotation grammar; the codec turns them into and out
of ``[NAME:field:...]`` substrings and the projector folds them into state.
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass
from typing import Optional, Union
from enum import Enum


class PenaltyKind(Enum):
    """How a standing overdue rule charges per day"""
    PERCENTAGE = "percentage"  # percent of the installment value per day
    FIXED = "fixed"            # flat amount per day


class MarkerKind(Enum):
    """Field-less marker tags"""
    HISTORICAL_CONTRACT = "HISTORICAL_CONTRACT"
    HISTORICAL_INTEREST_CONTRACT = "HISTORICAL_INTEREST_CONTRACT"
    RENEGOTIATED = "RENEGOTIATED"
    INTEREST_ONLY_PAYMENT = "INTEREST_ONLY_PAYMENT"


class OriginalTermKey(Enum):
    """Fixed key set of the snapshot written on renegotiation"""
    PRINCIPAL = "ORIGINAL_PRINCIPAL"
    RATE = "ORIGINAL_RATE"
    INSTALLMENTS = "ORIGINAL_INSTALLMENTS"
    TOTAL_INTEREST = "ORIGINAL_TOTAL_INTEREST"
    TOTAL_PAID = "ORIGINAL_TOTAL_PAID"
    REMAINING = "ORIGINAL_REMAINING"
    RENEGOTIATION_DATE = "RENEGOTIATION_DATE"


@dataclass(frozen=True)
class PartialPaid:
    """Cumulative amount tracked against one installment"""
    index: int
    amount: Decimal


@dataclass(frozen=True)
class AdvanceSubinstallment:
    """
    Unpaid remainder of an installment paid early, tracked as its own
    due-dated unit. Settling it flips ``paid`` instead of deleting the tag.
    """
    original_index: int
    remaining_amount: Decimal
    due_date: Optional[date]
    unique_id: str
    paid: bool = False

    def __post_init__(self):
        # The id is the event key and a tag field
        if not self.unique_id or not self.unique_id.strip():
            raise ValueError("Advance sub-installment needs a unique id")
        if (self.unique_id != self.unique_id.strip()
                or ":" in self.unique_id or "]" in self.unique_id):
            raise ValueError(f"Invalid advance sub-installment id: {self.unique_id}")


@dataclass(frozen=True)
class InterestOnlyPaid:
    """Interest-only payment routed to an installment (repeatable)"""
    index: int
    amount: Decimal
    paid_on: Optional[date]


@dataclass(frozen=True)
class HistoricalInterestReceived:
    """Interest received before the contract was registered"""
    amount: Decimal
    legacy: bool = False  # written as the single-field HISTORICAL_INTEREST tag


@dataclass(frozen=True)
class DailyPenalty:
    """Manual fixed penalty attached to one installment"""
    index: int
    amount: Decimal


@dataclass(frozen=True)
class OverdueConfig:
    """Standing rule for the computed per-day overdue penalty"""
    kind: PenaltyKind
    value: Decimal


@dataclass(frozen=True)
class RenewalFeeInstallment:
    """Overrides one installment's base value after a renewal fee"""
    index: int
    new_value: Decimal
    fee_amount: Optional[Decimal] = None


@dataclass(frozen=True)
class Amortization:
    """Principal reduction with recomputed interest"""
    amount: Decimal
    new_principal: Decimal
    new_total_interest: Decimal
    applied_on: Optional[date] = None


@dataclass(frozen=True)
class Marker:
    """Field-less flag such as RENEGOTIATED"""
    kind: MarkerKind


@dataclass(frozen=True)
class OriginalTerm:
    """One field of the pre-renegotiation snapshot"""
    key: OriginalTermKey
    value: str


@dataclass(frozen=True)
class ExtraInstallments:
    """Installments appended to a daily contract"""
    count: int
    added_on: Optional[date] = None


LedgerEvent = Union[
    PartialPaid,
    AdvanceSubinstallment,
    InterestOnlyPaid,
    HistoricalInterestReceived,
    DailyPenalty,
    OverdueConfig,
    RenewalFeeInstallment,
    Amortization,
    Marker,
    OriginalTerm,
    ExtraInstallments,
]

# Events tied to an installment index; stale once the schedule is replaced
PER_INSTALLMENT_EVENTS = (
    PartialPaid,
    AdvanceSubinstallment,
    InterestOnlyPaid,
    DailyPenalty,
    RenewalFeeInstallment,
)
