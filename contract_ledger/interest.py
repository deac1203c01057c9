"""
Interest Calculator Module

Pure functions for total and per-installment interest under each supported
interest mode, the inverse solve used when the installment value is edited
instead of the rate, Price-table (PMT) helpers and day-based accrual.
Rates are percentages (10 means 10%).
"""

from decimal import Decimal
from dataclasses import dataclass
from datetime import date
from typing import List, Optional

from .contracts import Contract, InterestMode, PaymentType
from .money import ZERO, ONE, HUNDRED, quantize_money, non_negative

RATE_PLACES = Decimal('0.0001')
DAYS_PER_MONTH = Decimal('30')


def _floor_one(value) -> Decimal:
    """Denominator guard: zero or negative counts/principals become 1"""
    value = Decimal(value)
    return value if value > ZERO else ONE


def calculate_total_interest(
    principal: Decimal,
    rate: Decimal,
    count: int,
    mode: InterestMode
) -> Decimal:
    """
    Calculate total contract interest from the rate.

    Args:
        principal: Amount lent
        rate: Interest rate in percent
        count: Number of installments
        mode: Interest mode

    Returns:
        Total interest rounded to cents
    """
    r = rate / HUNDRED
    n = max(int(count), 1)

    if mode == InterestMode.PER_INSTALLMENT:
        total = principal * r * n
    elif mode == InterestMode.ON_TOTAL:
        total = principal * r
    elif mode == InterestMode.COMPOUND:
        total = principal * (ONE + r) ** n - principal
    else:
        raise ValueError(f"Unsupported interest mode: {mode}")

    return quantize_money(total)


def daily_total_interest(installment_value: Decimal, count: int, principal: Decimal) -> Decimal:
    """Total interest of a daily contract: supplied value times count, less principal"""
    return quantize_money(non_negative(installment_value * max(int(count), 1) - principal))


def resolve_total_interest(contract: Contract) -> Decimal:
    """
    Total interest of a contract as the rest of the engine should see it.

    A stored total is authoritative when positive, or when the rate is exactly
    zero; it preserves manual rounding done at origination. Daily contracts
    never derive interest from the rate.
    """
    stored = contract.stored_total_interest
    if stored is not None and (stored > ZERO or contract.interest_rate == ZERO):
        return stored

    if contract.payment_type == PaymentType.DAILY:
        if contract.installment_value is None:
            return ZERO
        return daily_total_interest(
            contract.installment_value, contract.installment_count, contract.principal_amount
        )

    return calculate_total_interest(
        contract.principal_amount,
        contract.interest_rate,
        contract.installment_count,
        contract.interest_mode
    )


@dataclass(frozen=True)
class InstallmentInterest:
    """Interest carried by one scheduled installment"""
    index: int
    due_date: date
    interest: Decimal


def interest_per_installment(contract: Contract) -> Decimal:
    """
    Interest share of a single installment.

    Daily contracts take their supplied value less the principal share; the
    others split the rate-derived total of their interest mode evenly. The
    stored total is not consulted. Never negative.
    """
    n = max(contract.installment_count, 1)
    principal = contract.principal_amount
    if principal <= ZERO:
        return ZERO

    if contract.payment_type == PaymentType.DAILY and contract.installment_value:
        share = contract.installment_value - principal / n
    else:
        share = calculate_total_interest(
            principal, contract.interest_rate, n, contract.interest_mode
        ) / n
    return quantize_money(non_negative(share))


def past_installment_interest(
    contract: Contract,
    today: Optional[date] = None,
    max_installments: int = 60
) -> List[InstallmentInterest]:
    """
    Installments already due before ``today`` with their interest share.

    Used to record interest received before the contract entered the
    ledger. At most ``max_installments`` rows are returned.
    """
    today = today or date.today()
    share = interest_per_installment(contract)
    past = [
        InstallmentInterest(index, due, share)
        for index, due in enumerate(contract.installment_due_dates)
        if due < today
    ]
    return past[:max_installments]


def calculate_installment_value(principal: Decimal, total_interest: Decimal, count: int) -> Decimal:
    """Equal share of principal plus interest per installment"""
    return quantize_money((principal + total_interest) / _floor_one(count))


def installment_value(
    contract: Contract,
    principal: Optional[Decimal] = None,
    total_interest: Optional[Decimal] = None
) -> Decimal:
    """
    Base value of one installment.

    Daily contracts use their supplied per-installment value; everything else
    splits principal plus total interest evenly. ``principal`` and
    ``total_interest`` override the contract's own figures (after an
    amortization, for instance).
    """
    if (contract.payment_type == PaymentType.DAILY and contract.installment_value is not None
            and principal is None and total_interest is None):
        return quantize_money(contract.installment_value)

    if principal is None:
        principal = contract.principal_amount
    if total_interest is None:
        total_interest = resolve_total_interest(contract)
    return calculate_installment_value(principal, total_interest, contract.installment_count)


def solve_rate_for_installment_value(
    principal: Decimal,
    target_value: Decimal,
    count: int,
    mode: InterestMode
) -> Decimal:
    """
    Derive the rate that produces a given installment value.

    Used when the user edits the displayed installment amount instead of the
    rate. Targets below the interest-free value solve to a zero rate.

    Returns:
        Rate in percent, rounded to 4 places
    """
    n = max(int(count), 1)
    base = _floor_one(principal)
    total = target_value * n
    interest = total - principal

    if interest <= ZERO:
        return ZERO

    if mode == InterestMode.PER_INSTALLMENT:
        rate = interest / (base * n) * HUNDRED
    elif mode == InterestMode.ON_TOTAL:
        rate = interest / base * HUNDRED
    elif mode == InterestMode.COMPOUND:
        ratio = total / base
        rate = (ratio ** (ONE / Decimal(n)) - ONE) * HUNDRED
    else:
        raise ValueError(f"Unsupported interest mode: {mode}")

    return non_negative(rate).quantize(RATE_PLACES)


def calculate_price_installment(principal: Decimal, rate: Decimal, count: int) -> Decimal:
    """
    Price-table (PMT) fixed installment.

    PMT = P * [i * (1 + i)^n] / [(1 + i)^n - 1]; with a zero rate the
    payment is simply P / n.
    """
    n = max(int(count), 1)
    i = rate / HUNDRED
    if i == ZERO:
        return quantize_money(principal / n)
    factor = (ONE + i) ** n
    return quantize_money(principal * (i * factor) / (factor - ONE))


def solve_rate_for_price_installment(
    payment: Decimal,
    principal: Decimal,
    count: int,
    max_iterations: int = 100
) -> Decimal:
    """
    Solve the Price-table rate for a given installment (Newton-Raphson).

    Returns:
        Monthly rate in percent, rounded to 4 places
    """
    n = max(int(count), 1)
    if abs(payment - principal / n) < Decimal('0.01') or payment * n <= principal:
        return ZERO

    def pmt(rate: Decimal) -> Decimal:
        factor = (ONE + rate) ** n
        return principal * (rate * factor) / (factor - ONE)

    rate = Decimal('0.1')
    step = Decimal('0.0001')
    tolerance = Decimal('0.0000001')
    minimum = Decimal('0.0001')

    for _ in range(max_iterations):
        value = pmt(rate) - payment
        derivative = (pmt(rate + step) - pmt(rate)) / step
        if abs(derivative) < tolerance:
            break
        new_rate = rate - value / derivative
        if abs(new_rate - rate) < tolerance:
            rate = new_rate
            break
        rate = max(minimum, new_rate)

    return (rate * HUNDRED).quantize(RATE_PLACES)


def calculate_simple_interest(principal: Decimal, monthly_rate: Decimal, days: int) -> Decimal:
    """Simple interest accrued over ``days`` at a monthly rate (30-day months)"""
    daily_rate = monthly_rate / DAYS_PER_MONTH / HUNDRED
    return quantize_money(principal * daily_rate * days)


def calculate_compound_interest(principal: Decimal, monthly_rate: Decimal, days: int) -> Decimal:
    """Daily-compounded interest over ``days`` at a monthly rate (30-day months)"""
    daily_rate = monthly_rate / DAYS_PER_MONTH / HUNDRED
    return quantize_money(principal * (ONE + daily_rate) ** max(int(days), 0) - principal)


def calculate_accumulated_interest(
    principal: Decimal,
    monthly_rate: Decimal,
    start_date: date,
    as_of: Optional[date] = None,
    compound: bool = False
) -> Decimal:
    """Interest accrued between ``start_date`` and ``as_of`` (default today)"""
    as_of = as_of or date.today()
    days = abs((as_of - start_date).days)
    if compound:
        return calculate_compound_interest(principal, monthly_rate, days)
    return calculate_simple_interest(principal, monthly_rate, days)
