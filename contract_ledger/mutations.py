"""
Mutation Operations Module

Computes the next annotation and the next running totals of a contract for
payments, amortizations, renegotiations and penalty changes. Every operation
reads the current state through the projector, decides, and returns a
MutationResult; nothing is persisted here. Callers must serialize mutations
of the same contract (refresh, then write).
"""

from decimal import Decimal
from datetime import date
from dataclasses import dataclass, field, replace
from typing import List, Optional, Sequence, Tuple
from enum import Enum
import logging

from .codec import upsert, remove, remove_kinds
from .config import get_config
from .contracts import Contract, ContractStatus, InterestMode, PaymentType
from .events import (
    PartialPaid, AdvanceSubinstallment, InterestOnlyPaid, HistoricalInterestReceived,
    DailyPenalty, OverdueConfig, RenewalFeeInstallment, Amortization, Marker,
    OriginalTerm, ExtraInstallments, PenaltyKind, MarkerKind, OriginalTermKey,
    PER_INSTALLMENT_EVENTS
)
from .interest import (
    calculate_total_interest, daily_total_interest, installment_value, past_installment_interest
)
from .logging_config import log_action
from .money import ZERO, HUNDRED, to_decimal, quantize_money, non_negative
from .projector import LedgerProjection, LedgerState, load_state, project
from .schedule import cadence_for, extend_schedule, generate_schedule, step_from

logger = logging.getLogger("contract_ledger.mutations")

CENT = Decimal('0.01')


class PaymentKind(Enum):
    """How a payment is applied to the installments"""
    PARTIAL = "partial"                          # first unpaid installment onwards
    INSTALLMENTS = "installments"                # selected installments first
    FULL = "full"                                # total payoff
    DISCOUNT_SETTLEMENT = "discount_settlement"  # settle for less, all principal


@dataclass
class PaymentRecord:
    """Payment history row for the caller to persist"""
    amount: Decimal
    principal_paid: Decimal
    interest_paid: Decimal
    payment_date: date
    installment_indices: List[int] = field(default_factory=list)
    note: str = ""


@dataclass
class MutationResult:
    """Next state of the contract fields touched by a mutation"""
    next_annotation: str
    next_outstanding_balance: Decimal
    next_total_interest: Optional[Decimal] = None
    next_status: Optional[ContractStatus] = None
    next_total_paid: Optional[Decimal] = None
    next_principal_amount: Optional[Decimal] = None
    next_interest_rate: Optional[Decimal] = None
    next_interest_mode: Optional[InterestMode] = None
    next_payment_type: Optional[PaymentType] = None
    next_installment_value: Optional[Decimal] = None
    next_installment_count: Optional[int] = None
    next_installment_due_dates: Optional[List[date]] = None
    next_due_date: Optional[date] = None
    payment_record: Optional[PaymentRecord] = None

    def apply_to(self, contract: Contract) -> Contract:
        """Return a copy of ``contract`` with this result's fields applied"""
        updates = {
            'annotation': self.next_annotation,
            'outstanding_balance': self.next_outstanding_balance,
        }
        optional = {
            'stored_total_interest': self.next_total_interest,
            'status': self.next_status,
            'total_paid': self.next_total_paid,
            'principal_amount': self.next_principal_amount,
            'interest_rate': self.next_interest_rate,
            'interest_mode': self.next_interest_mode,
            'payment_type': self.next_payment_type,
            'installment_value': self.next_installment_value,
            'installment_count': self.next_installment_count,
            'installment_due_dates': self.next_installment_due_dates,
            'due_date': self.next_due_date,
        }
        updates.update({key: value for key, value in optional.items() if value is not None})
        return replace(contract, **updates)


def _positive_amount(amount) -> Decimal:
    value = quantize_money(to_decimal(amount))
    if value <= ZERO:
        raise ValueError("Amount must be positive")
    return value


def _check_index(contract: Contract, index: int) -> None:
    if not 0 <= index < contract.installment_count:
        raise ValueError(
            f"Installment index {index} out of range for {contract.installment_count} installments"
        )


def _materialize_legacy(annotation: str, contract: Contract, projection: LedgerProjection) -> str:
    """
    Write PARTIAL_PAID tags for paid amounts inferred from ``total_paid``.

    Contracts without per-installment tags derive their paid count from the
    running total; once the first tag is written that inference stops, so
    the inferred amounts must be written down first.
    """
    if projection.state.has_installment_tracking or contract.total_paid <= ZERO or contract.is_paid:
        return annotation
    for view in projection.installments:
        if view.paid_amount > ZERO:
            annotation = upsert(annotation, PartialPaid(view.index, quantize_money(view.paid_amount)))
    return annotation


def _settle_advances(annotation: str, state: LedgerState, index: int) -> str:
    """Rename the pending advance sub-installments of an index to paid"""
    for advance in state.pending_advances(index):
        annotation = upsert(annotation, replace(advance, paid=True))
    return annotation


def _allocate(
    annotation: str,
    projection: LedgerProjection,
    order: Sequence[int],
    amount: Decimal,
    payment_date: date
) -> Tuple[str, List[int]]:
    """
    Spread ``amount`` over installments in ``order``.

    Returns the new annotation and the indices that received money.
    An early payment that leaves part of an installment open records the
    remainder as an advance sub-installment due on the installment's date.
    """
    state = projection.state
    tolerance = Decimal(get_config().paid_tolerance_ratio)
    left = amount
    touched: List[int] = []

    for index in order:
        if left <= ZERO:
            break
        view = projection.installment(index)
        due = view.remaining
        if view.is_paid or due <= ZERO:
            continue

        applied = min(left, due)
        new_paid = quantize_money(view.paid_amount + applied)
        annotation = upsert(annotation, PartialPaid(index, new_paid))
        annotation = _settle_advances(annotation, state, index)

        remainder = quantize_money(view.effective_value - new_paid)
        early = view.due_date is not None and payment_date < view.due_date
        if remainder > ZERO and early and new_paid < view.effective_value * tolerance:
            sequence = sum(1 for a in state.advances.values() if a.original_index == index) + 1
            annotation = upsert(annotation, AdvanceSubinstallment(
                original_index=index,
                remaining_amount=remainder,
                due_date=view.due_date,
                unique_id=f"{index}-{payment_date.strftime('%Y%m%d')}-{sequence}",
            ))

        left -= applied
        touched.append(index)

    return annotation, touched


def _settle_all(annotation: str, projection: LedgerProjection) -> str:
    """Mark every open installment fully paid"""
    for view in projection.installments:
        if view.is_paid:
            continue
        annotation = upsert(annotation, PartialPaid(view.index, quantize_money(view.effective_value)))
        annotation = _settle_advances(annotation, projection.state, view.index)
    return annotation


def register_payment(
    contract: Contract,
    amount,
    payment_date: date,
    kind: PaymentKind = PaymentKind.PARTIAL,
    installment_indices: Optional[Sequence[int]] = None,
    today: Optional[date] = None
) -> MutationResult:
    """
    Register a payment.

    Args:
        contract: Current contract state
        amount: Amount received
        payment_date: Date the money was received
        kind: How the amount is applied
        installment_indices: Installments to pay first (``INSTALLMENTS`` only);
            any excess flows to the next open installments
        today: Reference date for the projection (defaults to ``payment_date``)

    Returns:
        MutationResult with the payment's principal/interest split

    Principal and interest are split in the proportion of the installment
    (``total_interest / (principal + total_interest)``). A total payoff caps
    the interest part at the total interest not yet collected; a discount
    settlement books everything as principal and closes the contract.
    """
    amount = _positive_amount(amount)
    if contract.is_paid:
        raise ValueError(f"Contract {contract.id} is already paid")

    projection = project(contract, today or payment_date)
    outstanding = quantize_money(contract.outstanding_balance)
    annotation = _materialize_legacy(contract.annotation, contract, projection)
    open_indices = [view.index for view in projection.installments if not view.is_paid]

    if kind in (PaymentKind.FULL, PaymentKind.DISCOUNT_SETTLEMENT):
        if kind == PaymentKind.FULL and amount < outstanding - CENT:
            raise ValueError(
                f"Payoff amount {amount} is below the outstanding balance {outstanding}"
            )
        annotation = _settle_all(annotation, projection)
        if kind == PaymentKind.FULL:
            interest_cap = non_negative(projection.total_interest - projection.realized_interest)
            interest_paid = quantize_money(min(interest_cap, amount))
        else:
            interest_paid = ZERO
        touched = open_indices
        next_outstanding = ZERO
        next_status = ContractStatus.PAID
    else:
        if kind == PaymentKind.INSTALLMENTS:
            if not installment_indices:
                raise ValueError("Select at least one installment")
            selected = sorted(set(installment_indices))
            for index in selected:
                _check_index(contract, index)
                if projection.installment(index).is_paid:
                    raise ValueError(f"Installment {index} is already paid")
            order = selected + [index for index in open_indices if index not in selected]
        else:
            order = open_indices

        annotation, touched = _allocate(annotation, projection, order, amount, payment_date)
        interest_paid = quantize_money(amount * projection.interest_share)
        next_outstanding = quantize_money(non_negative(outstanding - amount))
        next_status = ContractStatus.PAID if next_outstanding <= ZERO else ContractStatus.ACTIVE

    record = PaymentRecord(
        amount=amount,
        principal_paid=amount - interest_paid,
        interest_paid=interest_paid,
        payment_date=payment_date,
        installment_indices=list(touched),
        note=kind.value,
    )

    log_action(
        logger, "info", f"Payment of {amount} registered ({kind.value})",
        contract_id=contract.id, action="register_payment", resource="contract",
        extra={"installments": record.installment_indices, "outstanding": str(next_outstanding)}
    )

    return MutationResult(
        next_annotation=annotation,
        next_outstanding_balance=next_outstanding,
        next_status=next_status,
        next_total_paid=quantize_money(contract.total_paid + amount),
        payment_record=record,
    )


def register_interest_only_payment(
    contract: Contract,
    amount,
    payment_date: date,
    renewal_fee=None,
    today: Optional[date] = None
) -> MutationResult:
    """
    Register a payment that covers interest only.

    The payment is routed to the first unpaid installment and never counts
    toward its tracked paid amount. An optional renewal fee raises that
    installment's value (and the outstanding balance) by the fee.
    """
    amount = _positive_amount(amount)
    projection = project(contract, today or payment_date)
    index = projection.first_unpaid_index
    if contract.is_paid or index < 0:
        raise ValueError(f"Contract {contract.id} has no open installment")

    annotation = _materialize_legacy(contract.annotation, contract, projection)
    annotation = upsert(annotation, InterestOnlyPaid(index, amount, payment_date))
    annotation = upsert(annotation, Marker(MarkerKind.INTEREST_ONLY_PAYMENT))
    next_outstanding = quantize_money(contract.outstanding_balance)

    if renewal_fee is not None:
        fee = _positive_amount(renewal_fee)
        view = projection.installment(index)
        # Fees on the same installment stack in both value and fee amount
        previous = projection.state.renewal_fees.get(index)
        earlier_fees = (previous.fee_amount or ZERO) if previous is not None else ZERO
        annotation = upsert(annotation, RenewalFeeInstallment(
            index=index,
            new_value=quantize_money(view.base_value + fee),
            fee_amount=quantize_money(earlier_fees + fee),
        ))
        next_outstanding = quantize_money(next_outstanding + fee)

    log_action(
        logger, "info", f"Interest-only payment of {amount} routed to installment {index}",
        contract_id=contract.id, action="register_interest_only_payment", resource="contract"
    )

    return MutationResult(
        next_annotation=annotation,
        next_outstanding_balance=next_outstanding,
        next_total_paid=quantize_money(contract.total_paid + amount),
        payment_record=PaymentRecord(
            amount=amount,
            principal_paid=ZERO,
            interest_paid=amount,
            payment_date=payment_date,
            installment_indices=[index],
            note="interest_only",
        ),
    )


def register_historical_interest(contract: Contract, amount) -> MutationResult:
    """Add interest received before the contract was registered"""
    amount = _positive_amount(amount)
    state = load_state(contract)
    total = quantize_money(state.historical_interest + amount)
    annotation = upsert(contract.annotation, HistoricalInterestReceived(total))
    annotation = upsert(annotation, Marker(MarkerKind.HISTORICAL_INTEREST_CONTRACT))

    log_action(
        logger, "info", f"Historical interest raised to {total}",
        contract_id=contract.id, action="register_historical_interest", resource="contract"
    )
    return MutationResult(
        next_annotation=annotation,
        next_outstanding_balance=quantize_money(contract.outstanding_balance),
    )


def register_historical_installment_interest(
    contract: Contract,
    installment_indices: Sequence[int],
    today: Optional[date] = None
) -> MutationResult:
    """
    Add the interest of selected past installments as historical interest.

    Each selected installment must already be due before ``today``; its
    interest share comes from ``past_installment_interest`` and the shares
    are summed into the cumulative historical interest tag.
    """
    if not installment_indices:
        raise ValueError("Select at least one past installment")
    rows = {row.index: row for row in past_installment_interest(contract, today)}
    selected = sorted(set(installment_indices))
    missing = [index for index in selected if index not in rows]
    if missing:
        raise ValueError(f"Installments {missing} are not past due")

    amount = sum((rows[index].interest for index in selected), ZERO)
    if amount <= ZERO:
        raise ValueError("Selected installments carry no interest")

    log_action(
        logger, "info", f"Historical interest of {amount} from installments {selected}",
        contract_id=contract.id, action="register_historical_installment_interest",
        resource="contract"
    )
    return register_historical_interest(contract, amount)


def register_amortization(contract: Contract, amount, applied_on: date) -> MutationResult:
    """
    Register an amortization (principal reduction).

    ``new_principal = principal - previous amortizations - amount`` (clamped
    at zero) and ``new_total_interest = new_principal * rate``, always flat
    regardless of the interest mode. The outstanding balance drops by the
    amount and by the interest no longer due. ``total_paid`` is left alone;
    the returned payment record is for the audit trail only.
    """
    amount = _positive_amount(amount)
    projection = project(contract, applied_on)
    previous = projection.state.total_amortized

    new_principal = quantize_money(non_negative(contract.principal_amount - previous - amount))
    new_interest = quantize_money(new_principal * contract.interest_rate / HUNDRED)
    interest_relief = projection.total_interest - new_interest

    annotation = upsert(contract.annotation, Amortization(
        amount=amount,
        new_principal=new_principal,
        new_total_interest=new_interest,
        applied_on=applied_on,
    ))
    next_outstanding = quantize_money(
        non_negative(contract.outstanding_balance - amount - interest_relief)
    )

    log_action(
        logger, "info", f"Amortization of {amount}, principal now {new_principal}",
        contract_id=contract.id, action="register_amortization", resource="contract",
        extra={"new_total_interest": str(new_interest)}
    )

    return MutationResult(
        next_annotation=annotation,
        next_outstanding_balance=next_outstanding,
        next_total_interest=new_interest,
        payment_record=PaymentRecord(
            amount=amount,
            principal_paid=amount,
            interest_paid=ZERO,
            payment_date=applied_on,
            note="amortization",
        ),
    )


def register_renegotiation(
    contract: Contract,
    new_rate,
    new_installment_count: int,
    today: Optional[date] = None,
    new_principal=None,
    interest_mode: Optional[InterestMode] = None,
    payment_type: Optional[PaymentType] = None,
    new_installment_value=None,
    first_due_date: Optional[date] = None,
    skip_saturday: Optional[bool] = None,
    skip_sunday: Optional[bool] = None,
    skip_holidays: Optional[bool] = None
) -> MutationResult:
    """
    Replace the remaining terms of a contract.

    The current terms are snapshotted into ORIGINAL_* tags and the contract
    is marked RENEGOTIATED. Per-installment tracking and amortizations refer
    to the old schedule and are stripped. The new principal defaults to the
    current outstanding balance, ``total_paid`` restarts at zero and a fresh
    schedule starts one period after ``today`` unless ``first_due_date`` is
    given.
    """
    today = today or date.today()
    settings = get_config()
    new_rate = to_decimal(new_rate)
    if new_rate < ZERO:
        raise ValueError("Interest rate must be non-negative")
    if new_installment_count < 1:
        raise ValueError("Installment count must be at least 1")

    projection = project(contract, today)
    mode = interest_mode or contract.interest_mode
    ptype = payment_type or contract.payment_type

    if new_principal is None:
        principal = contract.outstanding_balance
    else:
        principal = to_decimal(new_principal)
    principal = quantize_money(non_negative(principal))

    snapshot = [
        (OriginalTermKey.PRINCIPAL, format(contract.principal_amount, 'f')),
        (OriginalTermKey.RATE, format(contract.interest_rate, 'f')),
        (OriginalTermKey.INSTALLMENTS, str(contract.installment_count)),
        (OriginalTermKey.TOTAL_INTEREST, format(projection.total_interest, 'f')),
        (OriginalTermKey.TOTAL_PAID, format(contract.total_paid, 'f')),
        (OriginalTermKey.REMAINING, format(contract.outstanding_balance, 'f')),
        (OriginalTermKey.RENEGOTIATION_DATE, today.isoformat()),
    ]
    annotation = remove_kinds(contract.annotation, *PER_INSTALLMENT_EVENTS, Amortization)
    for key, value in snapshot:
        annotation = upsert(annotation, OriginalTerm(key, value))
    annotation = upsert(annotation, Marker(MarkerKind.RENEGOTIATED))

    value = None
    if ptype == PaymentType.DAILY:
        if new_installment_value is None:
            raise ValueError("Daily contracts need an installment value")
        value = quantize_money(to_decimal(new_installment_value))
        total_interest = daily_total_interest(value, new_installment_count, principal)
    else:
        total_interest = calculate_total_interest(principal, new_rate, new_installment_count, mode)

    cadence = cadence_for(ptype)
    dates = generate_schedule(
        first_due_date or step_from(today, cadence),
        new_installment_count,
        cadence,
        settings.skip_saturday if skip_saturday is None else skip_saturday,
        settings.skip_sunday if skip_sunday is None else skip_sunday,
        settings.skip_holidays if skip_holidays is None else skip_holidays,
    )

    log_action(
        logger, "info",
        f"Renegotiated into {new_installment_count} installments at {new_rate}%",
        contract_id=contract.id, action="register_renegotiation", resource="contract",
        extra={"principal": str(principal), "total_interest": str(total_interest)}
    )

    return MutationResult(
        next_annotation=annotation,
        next_outstanding_balance=quantize_money(principal + total_interest),
        next_total_interest=total_interest,
        next_status=ContractStatus.ACTIVE,
        next_total_paid=ZERO,
        next_principal_amount=principal,
        next_interest_rate=new_rate,
        next_interest_mode=mode,
        next_payment_type=ptype,
        next_installment_value=value,
        next_installment_count=new_installment_count,
        next_installment_due_dates=dates,
        next_due_date=dates[-1],
    )


def _penalty_change(contract: Contract, annotation: str, old_total: Decimal, action: str) -> MutationResult:
    """Result of a penalty tag change: the balance moves by the change in total"""
    new_total = load_state(replace(contract, annotation=annotation)).daily_penalty_total
    next_outstanding = quantize_money(contract.outstanding_balance + new_total - old_total)

    log_action(
        logger, "info", f"Daily penalties changed from {old_total} to {new_total}",
        contract_id=contract.id, action=action, resource="contract"
    )
    return MutationResult(next_annotation=annotation, next_outstanding_balance=next_outstanding)


def apply_daily_penalty(contract: Contract, index: int, amount) -> MutationResult:
    """Set the fixed penalty of one installment, replacing any previous one"""
    _check_index(contract, index)
    amount = _positive_amount(amount)
    state = load_state(contract)
    annotation = upsert(contract.annotation, DailyPenalty(index, amount))
    return _penalty_change(contract, annotation, state.daily_penalty_total, "apply_daily_penalty")


def edit_daily_penalty(contract: Contract, index: int, amount) -> MutationResult:
    """Change an existing installment penalty"""
    _check_index(contract, index)
    if index not in load_state(contract).daily_penalties:
        raise ValueError(f"Installment {index} has no penalty to edit")
    return apply_daily_penalty(contract, index, amount)


def remove_daily_penalty(contract: Contract, index: int) -> MutationResult:
    """Remove the penalty of one installment"""
    state = load_state(contract)
    if index not in state.daily_penalties:
        raise ValueError(f"Installment {index} has no penalty to remove")
    annotation = remove(
        contract.annotation,
        lambda event: isinstance(event, DailyPenalty) and event.index == index
    )
    return _penalty_change(contract, annotation, state.daily_penalty_total, "remove_daily_penalty")


def remove_all_daily_penalties(contract: Contract) -> MutationResult:
    """Remove every installment penalty"""
    state = load_state(contract)
    annotation = remove_kinds(contract.annotation, DailyPenalty)
    return _penalty_change(contract, annotation, state.daily_penalty_total, "remove_all_daily_penalties")


def apply_cumulative_penalty(contract: Contract, today: Optional[date] = None) -> MutationResult:
    """
    Store the computed overdue penalty as installment penalties.

    Each overdue installment's penalty tag is replaced by its accrual as of
    ``today`` under the contract's OVERDUE_CONFIG rule.
    """
    projection = project(contract, today)
    if projection.state.overdue_config is None:
        raise ValueError(f"Contract {contract.id} has no overdue penalty rule")

    annotation = contract.annotation
    for line in projection.computed_penalty.breakdown:
        if line.amount > ZERO:
            annotation = upsert(annotation, DailyPenalty(line.index, line.amount))
    return _penalty_change(
        contract, annotation, projection.state.daily_penalty_total, "apply_cumulative_penalty"
    )


def set_overdue_config(contract: Contract, kind: PenaltyKind, value) -> MutationResult:
    """Set the standing overdue rule; the computed penalty is not stored"""
    value = _positive_amount(value) if kind == PenaltyKind.FIXED else to_decimal(value)
    if value <= ZERO:
        raise ValueError("Penalty value must be positive")
    annotation = upsert(contract.annotation, OverdueConfig(kind, value))

    log_action(
        logger, "info", f"Overdue rule set to {kind.value} {value}",
        contract_id=contract.id, action="set_overdue_config", resource="contract"
    )
    return MutationResult(
        next_annotation=annotation,
        next_outstanding_balance=quantize_money(contract.outstanding_balance),
    )


def remove_overdue_config(contract: Contract) -> MutationResult:
    """Drop the standing overdue rule"""
    annotation = remove_kinds(contract.annotation, OverdueConfig)
    log_action(
        logger, "info", "Overdue rule removed",
        contract_id=contract.id, action="remove_overdue_config", resource="contract"
    )
    return MutationResult(
        next_annotation=annotation,
        next_outstanding_balance=quantize_money(contract.outstanding_balance),
    )


def add_extra_installments(
    contract: Contract,
    extra_count: int,
    new_dates: Optional[List[date]] = None,
    added_on: Optional[date] = None
) -> MutationResult:
    """
    Append installments to a daily contract.

    New due dates continue the existing schedule unless given explicitly;
    the outstanding balance grows by one installment value per new
    installment.
    """
    if contract.payment_type != PaymentType.DAILY:
        raise ValueError("Extra installments are only supported on daily contracts")
    if extra_count < 1:
        raise ValueError("Extra installment count must be at least 1")

    settings = get_config()
    if new_dates is None:
        new_dates = extend_schedule(
            contract.installment_due_dates, extra_count, cadence_for(contract.payment_type),
            settings.skip_saturday, settings.skip_sunday, settings.skip_holidays
        )
    elif len(new_dates) != extra_count:
        raise ValueError("Provide exactly one due date per extra installment")

    value = installment_value(contract)
    new_count = contract.installment_count + extra_count
    dates = list(contract.installment_due_dates) + list(new_dates)
    annotation = upsert(contract.annotation, ExtraInstallments(extra_count, added_on or date.today()))

    log_action(
        logger, "info", f"{extra_count} extra installment(s) added",
        contract_id=contract.id, action="add_extra_installments", resource="contract"
    )

    return MutationResult(
        next_annotation=annotation,
        next_outstanding_balance=quantize_money(contract.outstanding_balance + value * extra_count),
        next_total_interest=daily_total_interest(value, new_count, contract.principal_amount),
        next_status=ContractStatus.ACTIVE,
        next_installment_count=new_count,
        next_installment_due_dates=dates,
        next_due_date=dates[-1],
    )
