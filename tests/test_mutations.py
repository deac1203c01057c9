"""
Test suite for mutation operations

Tests payments of every kind, interest-only payments, amortization,
renegotiation, penalty changes and extra installments. Every mutation must
keep the outstanding balance exact to the cent.
"""

import pytest
from decimal import Decimal
from datetime import date

from contract_ledger.codec import decode
from contract_ledger.contracts import Contract, ContractStatus, InterestMode, PaymentType
from contract_ledger.events import (
    AdvanceSubinstallment, DailyPenalty, Marker, MarkerKind, OriginalTerm, OriginalTermKey,
    PartialPaid, PenaltyKind
)
from contract_ledger.mutations import (
    MutationResult, PaymentKind, register_payment, register_interest_only_payment,
    register_historical_interest, register_historical_installment_interest, register_amortization,
    register_renegotiation, apply_daily_penalty, edit_daily_penalty, remove_daily_penalty,
    remove_all_daily_penalties, apply_cumulative_penalty, set_overdue_config, remove_overdue_config,
    add_extra_installments
)
from contract_ledger.projector import InstallmentStatus, project


DUE_DATES = [date(2024, 1, 10), date(2024, 2, 10), date(2024, 3, 10)]


def make_contract(annotation="", total_paid=Decimal('0'), **overrides):
    """Three monthly installments of 100 without interest"""
    fields = dict(
        principal_amount=Decimal('300'),
        interest_rate=Decimal('0'),
        payment_type=PaymentType.INSTALLMENT,
        installment_count=3,
        installment_due_dates=list(DUE_DATES),
        due_date=DUE_DATES[-1],
        outstanding_balance=Decimal('300') - total_paid,
        total_paid=total_paid,
        annotation=annotation,
    )
    fields.update(overrides)
    return Contract(**fields)


def make_interest_contract():
    """Single payment of 1000 at 10% on the total"""
    return Contract(
        principal_amount=Decimal('1000'),
        interest_rate=Decimal('10'),
        interest_mode=InterestMode.ON_TOTAL,
        installment_count=1,
        installment_due_dates=[date(2024, 3, 1)],
        due_date=date(2024, 3, 1),
        outstanding_balance=Decimal('1100'),
    )


class TestRegisterPayment:
    """Test registering payments"""

    def test_sequential_payments_keep_balance_exact(self):
        """Test outstanding drops by exactly the sum of payments"""
        contract = make_contract()
        amounts = [Decimal('150'), Decimal('50'), Decimal('30.55')]
        for amount in amounts:
            contract = register_payment(contract, amount, date(2024, 1, 20)).apply_to(contract)
        assert contract.outstanding_balance == Decimal('300') - sum(amounts)
        assert contract.total_paid == sum(amounts)

    def test_excess_flows_forward(self):
        """Test a payment spanning installments"""
        contract = make_contract()
        result = register_payment(contract, Decimal('150'), date(2024, 1, 10))
        events = decode(result.next_annotation)
        assert PartialPaid(0, Decimal('100')) in events
        assert PartialPaid(1, Decimal('50')) in events
        assert result.payment_record.installment_indices == [0, 1]
        assert result.next_outstanding_balance == Decimal('150.00')
        assert result.next_status == ContractStatus.ACTIVE

    def test_early_partial_payment_creates_advance(self):
        """Test the open remainder of an installment paid early"""
        contract = make_contract()
        result = register_payment(contract, Decimal('150'), date(2024, 1, 10))
        advances = [e for e in decode(result.next_annotation) if isinstance(e, AdvanceSubinstallment)]
        assert len(advances) == 1
        assert advances[0].original_index == 1
        assert advances[0].remaining_amount == Decimal('50')
        assert advances[0].due_date == date(2024, 2, 10)
        assert not advances[0].paid

        contract = result.apply_to(contract)
        projection = project(contract, date(2024, 1, 20))
        assert projection.paid_count == 1
        assert projection.installment(1).has_pending_advance

    def test_paying_the_rest_settles_the_advance(self):
        """Test covering an installment renames its advance to paid"""
        contract = make_contract()
        contract = register_payment(contract, Decimal('150'), date(2024, 1, 10)).apply_to(contract)
        result = register_payment(contract, Decimal('50'), date(2024, 1, 20))
        assert "[ADVANCE_SUBPARCELA_PAID:1:50" in result.next_annotation
        assert "[ADVANCE_SUBPARCELA:" not in result.next_annotation

        contract = result.apply_to(contract)
        assert project(contract, date(2024, 1, 20)).paid_count == 2
        assert contract.outstanding_balance == Decimal('100.00')

    def test_late_partial_payment_has_no_advance(self):
        """Test a partial payment after the due date"""
        result = register_payment(make_contract(), Decimal('50'), date(2024, 1, 15))
        assert "ADVANCE" not in result.next_annotation
        projection = project(result.apply_to(make_contract()), date(2024, 1, 15))
        assert projection.installment(0).status == InstallmentStatus.PARTIAL

    def test_selected_installments_first(self):
        """Test selected installments are paid first, excess flows to the oldest open"""
        result = register_payment(
            make_contract(), Decimal('150'), date(2024, 3, 10),
            kind=PaymentKind.INSTALLMENTS, installment_indices=[2]
        )
        events = decode(result.next_annotation)
        assert PartialPaid(2, Decimal('100')) in events
        assert PartialPaid(0, Decimal('50')) in events
        assert result.payment_record.installment_indices == [2, 0]

    def test_selecting_paid_installment(self):
        """Test a paid installment cannot be selected"""
        contract = make_contract("[PARTIAL_PAID:0:100]", total_paid=Decimal('100'))
        with pytest.raises(ValueError):
            register_payment(
                contract, Decimal('100'), date(2024, 1, 10),
                kind=PaymentKind.INSTALLMENTS, installment_indices=[0]
            )

    def test_selection_required(self):
        """Test the installments kind needs indices"""
        with pytest.raises(ValueError):
            register_payment(make_contract(), Decimal('100'), date(2024, 1, 10),
                             kind=PaymentKind.INSTALLMENTS)

    def test_legacy_contract_keeps_inferred_payments(self):
        """Test the first tag on a legacy contract writes down the inferred amounts"""
        contract = make_contract(total_paid=Decimal('150'))
        result = register_payment(contract, Decimal('50'), date(2024, 1, 20))
        events = decode(result.next_annotation)
        assert PartialPaid(0, Decimal('100')) in events
        assert PartialPaid(1, Decimal('100')) in events
        assert project(result.apply_to(contract), date(2024, 1, 20)).paid_count == 2

    def test_interest_split(self):
        """Test interest and principal split in the installment's proportion"""
        result = register_payment(make_interest_contract(), Decimal('110'), date(2024, 2, 1))
        assert result.payment_record.interest_paid == Decimal('10.00')
        assert result.payment_record.principal_paid == Decimal('100.00')

    def test_full_payoff(self):
        """Test a total payoff closes the contract"""
        contract = make_interest_contract()
        result = register_payment(contract, Decimal('1100'), date(2024, 2, 1), kind=PaymentKind.FULL)
        assert result.next_status == ContractStatus.PAID
        assert result.next_outstanding_balance == Decimal('0')
        assert result.payment_record.interest_paid == Decimal('100.00')
        assert result.payment_record.principal_paid == Decimal('1000.00')
        assert project(result.apply_to(contract), date(2024, 2, 1)).is_paid

    def test_full_payoff_interest_capped(self):
        """Test interest already collected is not charged again"""
        contract = make_interest_contract()
        contract = register_payment(contract, Decimal('550'), date(2024, 2, 1)).apply_to(contract)
        result = register_payment(contract, Decimal('550'), date(2024, 2, 2), kind=PaymentKind.FULL)
        assert result.payment_record.interest_paid == Decimal('50.00')

    def test_full_payoff_below_balance(self):
        """Test a payoff must cover the outstanding balance"""
        with pytest.raises(ValueError):
            register_payment(make_interest_contract(), Decimal('1000'), date(2024, 2, 1),
                             kind=PaymentKind.FULL)

    def test_discount_settlement(self):
        """Test settling for less books everything as principal"""
        contract = make_interest_contract()
        result = register_payment(contract, Decimal('900'), date(2024, 2, 1),
                                  kind=PaymentKind.DISCOUNT_SETTLEMENT)
        assert result.next_status == ContractStatus.PAID
        assert result.next_outstanding_balance == Decimal('0')
        assert result.payment_record.interest_paid == Decimal('0')
        assert result.payment_record.principal_paid == Decimal('900.00')

    def test_invalid_amounts(self):
        """Test non-positive amounts are rejected"""
        with pytest.raises(ValueError):
            register_payment(make_contract(), Decimal('0'), date(2024, 1, 10))
        with pytest.raises(ValueError):
            register_payment(make_contract(), Decimal('-5'), date(2024, 1, 10))

    def test_paid_contract(self):
        """Test a closed contract takes no more payments"""
        with pytest.raises(ValueError):
            register_payment(make_contract(status=ContractStatus.PAID), Decimal('10'), date(2024, 1, 10))


class TestInterestOnlyPayment:
    """Test interest-only payments"""

    def test_routed_to_first_unpaid(self):
        """Test the payment is tagged against the first open installment"""
        contract = make_contract("[PARTIAL_PAID:0:100]", total_paid=Decimal('100'))
        result = register_interest_only_payment(contract, Decimal('30'), date(2024, 2, 1))
        assert "[INTEREST_ONLY_PAID:1:30.00:2024-02-01]" in result.next_annotation
        assert "[INTEREST_ONLY_PAYMENT]" in result.next_annotation
        assert result.next_total_paid == Decimal('130.00')
        assert result.next_outstanding_balance == Decimal('200.00')
        assert result.payment_record.interest_paid == Decimal('30.00')

    def test_isolation(self):
        """Test the first unpaid index does not move"""
        contract = make_contract()
        contract = register_interest_only_payment(contract, Decimal('30'), date(2024, 1, 5)).apply_to(contract)
        projection = project(contract, date(2024, 1, 5))
        assert projection.first_unpaid_index == 0
        assert projection.paid_count == 0

    def test_renewal_fee(self):
        """Test a renewal fee raises the installment and the balance"""
        contract = make_contract()
        result = register_interest_only_payment(
            contract, Decimal('30'), date(2024, 1, 5), renewal_fee=Decimal('20')
        )
        assert "[RENEWAL_FEE_INSTALLMENT:0:120.00:20.00]" in result.next_annotation
        assert result.next_outstanding_balance == Decimal('320.00')
        projection = project(result.apply_to(contract), date(2024, 1, 5))
        assert projection.installment(0).base_value == Decimal('120.00')

    def test_renewal_fees_stack(self):
        """Test a second fee on the same installment adds to value, balance and profit"""
        contract = make_contract()
        contract = register_interest_only_payment(
            contract, Decimal('30'), date(2024, 1, 5), renewal_fee=Decimal('10')
        ).apply_to(contract)
        result = register_interest_only_payment(
            contract, Decimal('30'), date(2024, 1, 6), renewal_fee=Decimal('20')
        )
        assert "[RENEWAL_FEE_INSTALLMENT:0:130.00:30.00]" in result.next_annotation
        assert result.next_outstanding_balance == Decimal('330.00')

        projection = project(result.apply_to(contract), date(2024, 1, 6))
        assert projection.installment(0).base_value == Decimal('130.00')
        assert projection.expected_profit == Decimal('30')

    def test_no_open_installment(self):
        """Test a fully paid contract"""
        contract = make_contract("[PARTIAL_PAID:0:100]\n[PARTIAL_PAID:1:100]\n[PARTIAL_PAID:2:100]")
        with pytest.raises(ValueError):
            register_interest_only_payment(contract, Decimal('30'), date(2024, 1, 5))


class TestHistoricalInterest:
    """Test historical interest"""

    def test_accumulates(self):
        """Test repeated registrations add up in a single tag"""
        contract = make_contract()
        contract = register_historical_interest(contract, Decimal('10')).apply_to(contract)
        contract = register_historical_interest(contract, Decimal('15')).apply_to(contract)
        assert "[HISTORICAL_INTEREST_RECEIVED:25.00]" in contract.annotation
        assert contract.annotation.count("HISTORICAL_INTEREST_RECEIVED") == 1
        assert project(contract, date(2024, 1, 5)).is_historical_interest
        assert contract.outstanding_balance == Decimal('300')

    def test_selected_installments_rate_based(self):
        """Test the interest of selected past installments is summed"""
        contract = make_contract(interest_rate=Decimal('10'), interest_mode=InterestMode.ON_TOTAL)
        result = register_historical_installment_interest(contract, [0, 1], today=date(2024, 2, 15))
        assert "[HISTORICAL_INTEREST_RECEIVED:20.00]" in result.next_annotation
        assert "[HISTORICAL_INTEREST_CONTRACT]" in result.next_annotation
        assert result.next_outstanding_balance == Decimal('300.00')

    def test_selected_installments_daily(self):
        """Test daily installments carry their value less the principal share"""
        contract = Contract(
            principal_amount=Decimal('100'),
            interest_rate=Decimal('0'),
            payment_type=PaymentType.DAILY,
            installment_count=5,
            installment_value=Decimal('25'),
            installment_due_dates=[date(2024, 1, day) for day in range(1, 6)],
            outstanding_balance=Decimal('125'),
        )
        result = register_historical_installment_interest(contract, [0, 2, 2], today=date(2024, 1, 4))
        assert "[HISTORICAL_INTEREST_RECEIVED:10.00]" in result.next_annotation

    def test_selected_installments_must_be_past_due(self):
        """Test future installments, empty selections and interest-free contracts are rejected"""
        contract = make_contract(interest_rate=Decimal('10'), interest_mode=InterestMode.ON_TOTAL)
        with pytest.raises(ValueError):
            register_historical_installment_interest(contract, [2], today=date(2024, 2, 15))
        with pytest.raises(ValueError):
            register_historical_installment_interest(contract, [], today=date(2024, 2, 15))
        with pytest.raises(ValueError):
            register_historical_installment_interest(make_contract(), [0], today=date(2024, 2, 15))


class TestAmortization:
    """Test principal reductions"""

    def test_single_amortization(self):
        """Test principal, interest and balance after one amortization"""
        contract = make_interest_contract()
        result = register_amortization(contract, Decimal('200'), date(2024, 2, 1))
        assert "[AMORTIZATION:200.00:800.00:80.00:2024-02-01]" in result.next_annotation
        assert result.next_total_interest == Decimal('80.00')
        assert result.next_outstanding_balance == Decimal('880.00')
        assert result.next_total_paid is None
        assert result.payment_record.principal_paid == Decimal('200.00')

    def test_successive_amortizations(self):
        """Test previous amortizations are deducted"""
        contract = make_interest_contract()
        contract = register_amortization(contract, Decimal('200'), date(2024, 2, 1)).apply_to(contract)
        result = register_amortization(contract, Decimal('300'), date(2024, 2, 10))
        assert "[AMORTIZATION:300.00:500.00:50.00:2024-02-10]" in result.next_annotation
        assert result.next_outstanding_balance == Decimal('550.00')
        assert contract.total_paid == Decimal('0')

    def test_principal_clamped_at_zero(self):
        """Test amortizing more than the principal"""
        result = register_amortization(make_interest_contract(), Decimal('1500'), date(2024, 2, 1))
        assert "[AMORTIZATION:1500.00:0.00:0.00:2024-02-01]" in result.next_annotation
        assert result.next_outstanding_balance == Decimal('0')


class TestRenegotiation:
    """Test renegotiating the remaining terms"""

    def test_renegotiation(self):
        """Test snapshot, reset and fresh schedule"""
        contract = make_contract("nota\n[PARTIAL_PAID:0:100]", total_paid=Decimal('100'))
        result = register_renegotiation(
            contract, Decimal('10'), 2, today=date(2024, 2, 1),
            skip_saturday=False, skip_sunday=False, skip_holidays=False
        )
        events = decode(result.next_annotation)
        assert not any(isinstance(e, PartialPaid) for e in events)
        assert Marker(MarkerKind.RENEGOTIATED) in events
        assert OriginalTerm(OriginalTermKey.PRINCIPAL, "300") in events
        assert OriginalTerm(OriginalTermKey.INSTALLMENTS, "3") in events
        assert OriginalTerm(OriginalTermKey.TOTAL_PAID, "100") in events
        assert OriginalTerm(OriginalTermKey.RENEGOTIATION_DATE, "2024-02-01") in events
        assert result.next_annotation.startswith("nota")

        assert result.next_principal_amount == Decimal('200.00')
        assert result.next_total_interest == Decimal('40.00')
        assert result.next_outstanding_balance == Decimal('240.00')
        assert result.next_total_paid == Decimal('0')
        assert result.next_installment_due_dates == [date(2024, 3, 1), date(2024, 4, 1)]
        assert result.next_due_date == date(2024, 4, 1)

        renegotiated = result.apply_to(contract)
        projection = project(renegotiated, date(2024, 2, 1))
        assert projection.is_renegotiated
        assert projection.paid_count == 0
        assert projection.installment_value == Decimal('120.00')

    def test_negative_principal_clamped(self):
        """Test a negative new principal renegotiates from zero"""
        result = register_renegotiation(
            make_contract(), Decimal('10'), 2, today=date(2024, 2, 1), new_principal=Decimal('-50'),
            skip_saturday=False, skip_sunday=False, skip_holidays=False
        )
        assert result.next_principal_amount == Decimal('0')
        assert result.next_total_interest == Decimal('0')
        assert result.next_outstanding_balance == Decimal('0')

    def test_negative_outstanding_clamped(self):
        """Test an overpaid contract renegotiates from zero"""
        contract = make_contract(outstanding_balance=Decimal('-20'))
        result = register_renegotiation(
            contract, Decimal('10'), 2, today=date(2024, 2, 1),
            skip_saturday=False, skip_sunday=False, skip_holidays=False
        )
        assert result.next_principal_amount == Decimal('0')
        assert result.next_outstanding_balance == Decimal('0')
        assert OriginalTerm(OriginalTermKey.REMAINING, "-20") in decode(result.next_annotation)

    def test_invalid_terms(self):
        """Test negative rates and empty schedules are rejected"""
        with pytest.raises(ValueError):
            register_renegotiation(make_contract(), Decimal('-1'), 2, today=date(2024, 2, 1))
        with pytest.raises(ValueError):
            register_renegotiation(make_contract(), Decimal('10'), 0, today=date(2024, 2, 1))

    def test_daily_needs_value(self):
        """Test daily renegotiations need an installment value"""
        with pytest.raises(ValueError):
            register_renegotiation(make_contract(), Decimal('0'), 10, today=date(2024, 2, 1),
                                   payment_type=PaymentType.DAILY)


class TestPenalties:
    """Test penalty mutations"""

    def test_apply_and_replace(self):
        """Test the balance follows the change in penalty total"""
        contract = make_contract()
        contract = apply_daily_penalty(contract, 1, Decimal('15')).apply_to(contract)
        assert "[DAILY_PENALTY:1:15.00]" in contract.annotation
        assert contract.outstanding_balance == Decimal('315.00')

        contract = edit_daily_penalty(contract, 1, Decimal('10')).apply_to(contract)
        assert contract.annotation.count("DAILY_PENALTY") == 1
        assert contract.outstanding_balance == Decimal('310.00')

    def test_remove(self):
        """Test removing penalties restores the balance"""
        contract = make_contract()
        contract = apply_daily_penalty(contract, 0, Decimal('5')).apply_to(contract)
        contract = apply_daily_penalty(contract, 1, Decimal('7')).apply_to(contract)
        removed = remove_daily_penalty(contract, 0).apply_to(contract)
        assert removed.outstanding_balance == Decimal('307.00')
        cleared = remove_all_daily_penalties(contract).apply_to(contract)
        assert cleared.outstanding_balance == Decimal('300.00')
        assert "DAILY_PENALTY" not in cleared.annotation

    def test_invalid_penalty_input(self):
        """Test missing penalties and bad indices"""
        with pytest.raises(ValueError):
            edit_daily_penalty(make_contract(), 0, Decimal('5'))
        with pytest.raises(ValueError):
            remove_daily_penalty(make_contract(), 0)
        with pytest.raises(ValueError):
            apply_daily_penalty(make_contract(), 3, Decimal('5'))

    def test_cumulative_penalty(self):
        """Test the computed penalty is stored per installment"""
        contract = make_contract(
            "[OVERDUE_CONFIG:percentage:1]",
            installment_due_dates=[date(2024, 1, 10), date(2024, 1, 12), date(2024, 3, 10)]
        )
        result = apply_cumulative_penalty(contract, date(2024, 1, 15))
        events = decode(result.next_annotation)
        assert DailyPenalty(0, Decimal('5.00')) in events
        assert DailyPenalty(1, Decimal('3.00')) in events
        assert result.next_outstanding_balance == Decimal('308.00')

    def test_cumulative_penalty_needs_rule(self):
        """Test there must be an overdue rule"""
        with pytest.raises(ValueError):
            apply_cumulative_penalty(make_contract(), date(2024, 1, 15))

    def test_overdue_config(self):
        """Test setting and removing the overdue rule"""
        contract = make_contract()
        contract = set_overdue_config(contract, PenaltyKind.FIXED, Decimal('2')).apply_to(contract)
        assert "[OVERDUE_CONFIG:fixed:2.00]" in contract.annotation
        contract = set_overdue_config(contract, PenaltyKind.PERCENTAGE, Decimal('1.5')).apply_to(contract)
        assert contract.annotation == "[OVERDUE_CONFIG:percentage:1.5]"
        assert contract.outstanding_balance == Decimal('300')
        contract = remove_overdue_config(contract).apply_to(contract)
        assert contract.annotation == ""


class TestExtraInstallments:
    """Test extending daily contracts"""

    def make_daily(self):
        return Contract(
            principal_amount=Decimal('100'),
            interest_rate=Decimal('0'),
            payment_type=PaymentType.DAILY,
            installment_count=3,
            installment_value=Decimal('40'),
            installment_due_dates=[date(2024, 3, 1), date(2024, 3, 2), date(2024, 3, 3)],
            due_date=date(2024, 3, 3),
            outstanding_balance=Decimal('120'),
        )

    def test_explicit_dates(self):
        """Test appending installments on given dates"""
        contract = self.make_daily()
        result = add_extra_installments(
            contract, 2, new_dates=[date(2024, 3, 4), date(2024, 3, 5)], added_on=date(2024, 3, 3)
        )
        assert result.next_installment_count == 5
        assert result.next_due_date == date(2024, 3, 5)
        assert result.next_outstanding_balance == Decimal('200.00')
        assert result.next_total_interest == Decimal('100.00')
        assert "[EXTRA_INSTALLMENTS:2:2024-03-03]" in result.next_annotation

        extended = result.apply_to(contract)
        assert len(project(extended, date(2024, 3, 1)).installments) == 5

    def test_only_daily(self):
        """Test other payment types are rejected"""
        with pytest.raises(ValueError):
            add_extra_installments(make_contract(), 1)

    def test_dates_must_match_count(self):
        """Test one date per new installment"""
        with pytest.raises(ValueError):
            add_extra_installments(self.make_daily(), 2, new_dates=[date(2024, 3, 4)])


class TestMutationResult:
    """Test applying results to contracts"""

    def test_apply_to_keeps_untouched_fields(self):
        """Test only the fields a result sets are replaced"""
        contract = make_contract(annotation="nota")
        result = MutationResult(next_annotation="nota\n[RENEGOTIATED]", next_outstanding_balance=Decimal('250'))
        updated = result.apply_to(contract)
        assert updated.annotation == "nota\n[RENEGOTIATED]"
        assert updated.outstanding_balance == Decimal('250')
        assert updated.total_paid == contract.total_paid
        assert updated.installment_due_dates == contract.installment_due_dates
        assert updated.id == contract.id
        assert contract.annotation == "nota"
