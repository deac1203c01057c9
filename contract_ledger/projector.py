"""
Ledger Projector Module

Folds a contract's decoded ledger events and its schedule into per-installment
status, paid count, outstanding amounts and realized versus expected profit.

The fold is an explicit reducer, ``apply_event(state, event) -> state``, so
supersede semantics (last PARTIAL_PAID per index wins, pending advances
renamed to paid, and so on) can be exercised on their own. Everything here is
a pure function of the contract and the reference date.
"""

from decimal import Decimal, ROUND_FLOOR
from datetime import date
from dataclasses import dataclass, field, replace
from functools import reduce
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple
from enum import Enum
import logging

from .codec import decode
from .config import get_config
from .contracts import Contract
from .events import (
    LedgerEvent, PartialPaid, AdvanceSubinstallment, InterestOnlyPaid,
    HistoricalInterestReceived, DailyPenalty, OverdueConfig, RenewalFeeInstallment,
    Amortization, Marker, OriginalTerm, ExtraInstallments, MarkerKind, OriginalTermKey
)
from .interest import installment_value, resolve_total_interest
from .money import ZERO, ONE, quantize_money, non_negative
from .penalties import OverdueInstallment, PenaltySummary, compute_cumulative_penalty

logger = logging.getLogger("contract_ledger.projector")


class InstallmentStatus(Enum):
    """Derived state of one installment"""
    PAID = "paid"
    PARTIAL = "partial"
    PENDING = "pending"
    OVERDUE = "overdue"


@dataclass(frozen=True)
class LedgerState:
    """Result of folding a contract's ledger events"""
    partial_paid: Dict[int, Decimal] = field(default_factory=dict)
    advances: Dict[str, AdvanceSubinstallment] = field(default_factory=dict)
    interest_only_payments: Tuple[InterestOnlyPaid, ...] = ()
    historical_interest: Decimal = ZERO
    daily_penalties: Dict[int, Decimal] = field(default_factory=dict)
    overdue_config: Optional[OverdueConfig] = None
    renewal_fees: Dict[int, RenewalFeeInstallment] = field(default_factory=dict)
    amortizations: Tuple[Amortization, ...] = ()
    markers: FrozenSet[MarkerKind] = frozenset()
    original_terms: Dict[OriginalTermKey, str] = field(default_factory=dict)
    extra_installments: Tuple[ExtraInstallments, ...] = ()

    @classmethod
    def initial(cls) -> 'LedgerState':
        """Empty state, before any event"""
        return cls()

    @property
    def has_installment_tracking(self) -> bool:
        """Check if any per-installment payment tag exists"""
        return bool(self.partial_paid) or bool(self.advances)

    @property
    def total_amortized(self) -> Decimal:
        return sum((a.amount for a in self.amortizations), ZERO)

    @property
    def interest_only_total(self) -> Decimal:
        return sum((p.amount for p in self.interest_only_payments), ZERO)

    @property
    def daily_penalty_total(self) -> Decimal:
        return sum(self.daily_penalties.values(), ZERO)

    def pending_advances(self, index: Optional[int] = None) -> List[AdvanceSubinstallment]:
        """Unsettled advance sub-installments, optionally for one index"""
        return [
            advance for advance in self.advances.values()
            if not advance.paid and (index is None or advance.original_index == index)
        ]


def apply_event(state: LedgerState, event: LedgerEvent) -> LedgerState:
    """
    Apply one ledger event to a state, returning the next state.

    Keyed kinds replace whatever the key held before; repeatable kinds
    accumulate. The input state is never modified.
    """
    if isinstance(event, PartialPaid):
        return replace(state, partial_paid={**state.partial_paid, event.index: event.amount})
    if isinstance(event, AdvanceSubinstallment):
        return replace(state, advances={**state.advances, event.unique_id: event})
    if isinstance(event, InterestOnlyPaid):
        return replace(state, interest_only_payments=state.interest_only_payments + (event,))
    if isinstance(event, HistoricalInterestReceived):
        return replace(state, historical_interest=event.amount)
    if isinstance(event, DailyPenalty):
        return replace(state, daily_penalties={**state.daily_penalties, event.index: event.amount})
    if isinstance(event, OverdueConfig):
        return replace(state, overdue_config=event)
    if isinstance(event, RenewalFeeInstallment):
        return replace(state, renewal_fees={**state.renewal_fees, event.index: event})
    if isinstance(event, Amortization):
        return replace(state, amortizations=state.amortizations + (event,))
    if isinstance(event, Marker):
        return replace(state, markers=state.markers | {event.kind})
    if isinstance(event, OriginalTerm):
        return replace(state, original_terms={**state.original_terms, event.key: event.value})
    if isinstance(event, ExtraInstallments):
        return replace(state, extra_installments=state.extra_installments + (event,))
    raise TypeError(f"Not a ledger event: {event!r}")


def fold_events(events: Iterable[LedgerEvent], state: Optional[LedgerState] = None) -> LedgerState:
    """Fold events, in order, into a ledger state"""
    return reduce(apply_event, events, state or LedgerState.initial())


def load_state(contract: Contract) -> LedgerState:
    """Decode and fold a contract's annotation"""
    return fold_events(decode(contract.annotation))


@dataclass(frozen=True)
class InstallmentView:
    """Projected state of one installment"""
    index: int
    due_date: Optional[date]
    base_value: Decimal        # scheduled value, or the renewal override
    effective_value: Decimal   # base value plus any daily penalty
    paid_amount: Decimal
    penalty: Decimal
    status: InstallmentStatus
    days_overdue: int = 0
    has_pending_advance: bool = False

    @property
    def remaining(self) -> Decimal:
        """Effective value not yet covered"""
        if self.status == InstallmentStatus.PAID:
            return ZERO
        return non_negative(self.effective_value - self.paid_amount)

    @property
    def is_paid(self) -> bool:
        return self.status == InstallmentStatus.PAID


@dataclass
class LedgerProjection:
    """Everything derived from one contract at one reference date"""
    contract_id: str
    as_of: date
    state: LedgerState
    installments: List[InstallmentView]
    principal: Decimal                 # principal net of amortizations
    total_interest: Decimal
    installment_value: Decimal         # base value of one installment
    paid_count: int
    first_unpaid_index: int            # -1 when every installment is paid
    overdue_installments: List[OverdueInstallment]
    computed_penalty: PenaltySummary
    tracked_paid_total: Decimal
    remaining_amount: Decimal
    interest_share: Decimal            # interest part of each unit paid
    realized_interest: Decimal         # interest already collected through payments
    realized_profit: Decimal
    expected_profit: Decimal
    is_paid: bool
    is_overdue: bool

    @property
    def is_historical(self) -> bool:
        return MarkerKind.HISTORICAL_CONTRACT in self.state.markers

    @property
    def is_historical_interest(self) -> bool:
        return MarkerKind.HISTORICAL_INTEREST_CONTRACT in self.state.markers

    @property
    def is_renegotiated(self) -> bool:
        return MarkerKind.RENEGOTIATED in self.state.markers

    @property
    def daily_penalty_total(self) -> Decimal:
        return self.state.daily_penalty_total

    def installment(self, index: int) -> InstallmentView:
        """Projected installment by index"""
        return self.installments[index]


@dataclass
class LoanStatus:
    """Display status of a contract"""
    is_paid: bool
    is_overdue: bool
    overdue_installments: List[OverdueInstallment]
    total_per_installment: Decimal


def _paid_tolerance() -> Decimal:
    return Decimal(get_config().paid_tolerance_ratio)


def _classify(paid_amount: Decimal, effective_value: Decimal, due_date: Optional[date],
              today: date, pending_advance: bool, tolerance: Decimal) -> InstallmentStatus:
    """Status precedence for one installment"""
    if not pending_advance and paid_amount >= effective_value * tolerance:
        return InstallmentStatus.PAID
    if paid_amount > ZERO:
        return InstallmentStatus.PARTIAL
    if due_date is not None and due_date < today:
        return InstallmentStatus.OVERDUE
    return InstallmentStatus.PENDING


def _legacy_paid_count(total_paid: Decimal, base_value: Decimal, count: int) -> int:
    """Paid count of contracts predating per-installment tags"""
    divisor = base_value if base_value > ZERO else ONE
    paid = int((total_paid / divisor).to_integral_value(rounding=ROUND_FLOOR))
    return max(0, min(count, paid))


def _paid_count(views: List[InstallmentView]) -> int:
    """Contiguous paid installments counted from index 0"""
    count = 0
    for view in views:
        if not view.is_paid:
            break
        count += 1
    return count


def project(contract: Contract, today: Optional[date] = None,
            state: Optional[LedgerState] = None) -> LedgerProjection:
    """
    Project a contract's derived state.

    Args:
        contract: Contract to project
        today: Reference date for overdue checks (defaults to today)
        state: Already-folded ledger state; decoded from the annotation when omitted

    Returns:
        LedgerProjection
    """
    today = today or date.today()
    if state is None:
        state = load_state(contract)
    tolerance = _paid_tolerance()
    count = contract.installment_count

    if state.amortizations:
        principal = non_negative(contract.principal_amount - state.total_amortized)
        total_interest = state.amortizations[-1].new_total_interest
        base_value = installment_value(contract, principal, total_interest)
    else:
        principal = contract.principal_amount
        total_interest = resolve_total_interest(contract)
        base_value = installment_value(contract)

    # Interest-only money is in total_paid but never covers an installment
    legacy_paid = non_negative(contract.total_paid - state.interest_only_total)
    legacy = not state.has_installment_tracking and legacy_paid > ZERO
    legacy_count = _legacy_paid_count(legacy_paid, base_value, count) if legacy else 0
    legacy_remainder = non_negative(legacy_paid - base_value * legacy_count)

    views: List[InstallmentView] = []
    for index in range(count):
        renewal = state.renewal_fees.get(index)
        base = renewal.new_value if renewal is not None else base_value
        penalty = state.daily_penalties.get(index, ZERO)
        effective = base + penalty
        due = contract.due_date_for(index)
        pending_advance = bool(state.pending_advances(index))

        if contract.is_paid:
            paid_amount = max(state.partial_paid.get(index, ZERO), effective)
            status = InstallmentStatus.PAID
        elif legacy:
            if index < legacy_count:
                paid_amount = effective
                status = InstallmentStatus.PAID
            else:
                paid_amount = legacy_remainder if index == legacy_count else ZERO
                status = _classify(paid_amount, effective, due, today, True, tolerance)
        else:
            paid_amount = state.partial_paid.get(index, ZERO)
            status = _classify(paid_amount, effective, due, today, pending_advance, tolerance)

        days_overdue = 0
        if status != InstallmentStatus.PAID and due is not None and due < today:
            days_overdue = (today - due).days

        views.append(InstallmentView(
            index=index,
            due_date=due,
            base_value=base,
            effective_value=effective,
            paid_amount=paid_amount,
            penalty=penalty,
            status=status,
            days_overdue=days_overdue,
            has_pending_advance=pending_advance,
        ))

    paid_count = _paid_count(views)
    first_unpaid = paid_count if paid_count < count else -1

    overdue = [
        OverdueInstallment(view.index, view.due_date, view.days_overdue, view.remaining)
        for view in views if view.days_overdue > 0
    ]
    computed_penalty = compute_cumulative_penalty(overdue, state.overdue_config, base_value)

    denominator = principal + total_interest
    interest_share = total_interest / denominator if denominator > ZERO else ZERO
    interest_only = state.interest_only_total
    realized_interest = quantize_money(
        non_negative(contract.total_paid - interest_only) * interest_share + interest_only
    )
    renewal_fees = sum((fee.fee_amount or ZERO for fee in state.renewal_fees.values()), ZERO)

    is_paid = contract.is_paid or paid_count == count

    projection = LedgerProjection(
        contract_id=contract.id,
        as_of=today,
        state=state,
        installments=views,
        principal=principal,
        total_interest=total_interest,
        installment_value=base_value,
        paid_count=paid_count,
        first_unpaid_index=first_unpaid,
        overdue_installments=overdue,
        computed_penalty=computed_penalty,
        tracked_paid_total=sum((view.paid_amount for view in views), ZERO),
        remaining_amount=sum((view.remaining for view in views), ZERO),
        interest_share=interest_share,
        realized_interest=realized_interest,
        realized_profit=realized_interest + state.historical_interest,
        expected_profit=total_interest + state.daily_penalty_total + renewal_fees,
        is_paid=is_paid,
        is_overdue=not is_paid and bool(overdue),
    )

    logger.debug(
        f"Projected contract {contract.id}: {paid_count}/{count} paid, "
        f"{len(overdue)} overdue"
    )
    return projection


def get_paid_installments_count(contract: Contract, today: Optional[date] = None) -> int:
    """
    Number of installments paid, counted contiguously from the first.

    No later installment counts as paid while an earlier one is open. Legacy
    contracts without per-installment tags fall back to
    ``floor(total_paid / installment_value)``.
    """
    return project(contract, today).paid_count


def get_first_unpaid_installment_index(contract: Contract, today: Optional[date] = None) -> int:
    """
    Index of the first installment not yet paid, or -1 when all are paid.

    Interest-only payments never move this index.
    """
    return project(contract, today).first_unpaid_index


def get_overdue_installments(contract: Contract, today: Optional[date] = None) -> List[OverdueInstallment]:
    """Every unpaid installment past its due date, each with its own day count"""
    return project(contract, today).overdue_installments


def get_loan_status(contract: Contract, today: Optional[date] = None) -> LoanStatus:
    """Display status of a contract"""
    projection = project(contract, today)
    return LoanStatus(
        is_paid=projection.is_paid,
        is_overdue=projection.is_overdue,
        overdue_installments=projection.overdue_installments,
        total_per_installment=projection.installment_value,
    )
