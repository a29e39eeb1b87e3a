"""
Test suite for the amortization calculator

All schedule math must be cent-exact: every installment satisfies
principal + interest == total, principal portions sum to the loan
principal, and the final balance is zero.
"""

import pytest
from decimal import Decimal
from datetime import date

from lending_core.amortization import AmortizationCalculator, AmortizationMethod
from lending_core.currency import Money
from lending_core.errors import ValidationError
from lending_core.periodicity import IntervalType, PeriodicityRule, generate_due_dates


def monthly_dates(count):
    return generate_due_dates(PeriodicityRule(IntervalType.MONTHLY, 1), date(2024, 2, 10), count)


class TestScheduleInvariants:
    """Invariants shared by every method"""

    def setup_method(self):
        self.calculator = AmortizationCalculator()

    @pytest.mark.parametrize("method,principal,rate,count", [
        (method,) + case
        for method in AmortizationMethod
        for case in [("1200.00", "2", 12), ("1000.00", "3.5", 7), ("999.99", "0", 3), ("50.00", "10", 1)]
        # interest-only at 0% leaves nothing due before the last installment
        if not (method == AmortizationMethod.INTEREST_ONLY and case[1] == "0")
    ])
    def test_schedule_is_balanced(self, method, principal, rate, count):
        result = self.calculator.simulate(method, Money(Decimal(principal)), Decimal(rate), count,
                                          monthly_dates(count))

        assert len(result.installments) == count
        assert Money.sum(row.principal for row in result.installments) == Money(Decimal(principal))
        assert result.final_balance.is_zero()
        assert result.total_amount == result.principal + result.total_interest
        for row in result.installments:
            assert row.principal + row.interest == row.total
            assert not row.principal.is_negative()
            assert not row.interest.is_negative()
        assert [row.number for row in result.installments] == list(range(1, count + 1))

    def test_due_dates_copied_in_order(self):
        dates = monthly_dates(4)
        result = self.calculator.simulate(AmortizationMethod.SAC, Money(Decimal("400")), Decimal("1"), 4, dates)
        assert [row.due_date for row in result.installments] == dates


class TestPrice:
    """Fixed-installment (annuity) schedules"""

    def setup_method(self):
        self.calculator = AmortizationCalculator()

    def test_annuity_installment(self):
        result = self.calculator.simulate(
            AmortizationMethod.PRICE, Money(Decimal("1200.00")), Decimal("2"), 12, monthly_dates(12)
        )
        assert result.installment_value == Money(Decimal("113.47"))
        # Every installment but the last equals the annuity value
        assert all(row.total == result.installment_value for row in result.installments[:-1])
        assert abs(result.installments[-1].total.amount - Decimal("113.47")) <= Decimal("0.10")
        assert Decimal("161") < result.total_interest.amount < Decimal("162")
        assert result.final_balance.is_zero()

    def test_interest_declines(self):
        result = self.calculator.simulate(
            AmortizationMethod.PRICE, Money(Decimal("1200.00")), Decimal("2"), 12, monthly_dates(12)
        )
        interests = [row.interest for row in result.installments]
        assert interests == sorted(interests, reverse=True)
        assert result.installments[0].interest == Money(Decimal("24.00"))

    def test_zero_rate_splits_evenly(self):
        result = self.calculator.simulate(
            AmortizationMethod.PRICE, Money(Decimal("1000.00")), Decimal("0"), 3, monthly_dates(3)
        )
        assert result.total_interest.is_zero()
        assert result.total_amount == Money(Decimal("1000.00"))

    def test_price_installment_formula(self):
        payment = self.calculator.price_installment(Money(Decimal("1000")), Decimal("0.01"), 12)
        assert payment == Money(Decimal("88.85"))


class TestSac:
    """Constant amortization"""

    def test_constant_principal_declining_totals(self):
        calculator = AmortizationCalculator()
        result = calculator.simulate(AmortizationMethod.SAC, Money(Decimal("1200.00")), Decimal("2"), 12,
                                     monthly_dates(12))
        assert all(row.principal == Money(Decimal("100.00")) for row in result.installments)
        totals = [row.total for row in result.installments]
        assert totals == sorted(totals, reverse=True)
        assert result.installments[0].total == Money(Decimal("124.00"))
        assert result.installments[-1].total == Money(Decimal("102.00"))
        assert result.total_interest == Money(Decimal("156.00"))
        assert result.installment_value == Money(Decimal("124.00"))

    def test_remainder_on_first_installment(self):
        calculator = AmortizationCalculator()
        result = calculator.simulate(AmortizationMethod.SAC, Money(Decimal("100.00")), Decimal("0"), 3,
                                     monthly_dates(3))
        assert [row.principal for row in result.installments] == [
            Money(Decimal("33.34")), Money(Decimal("33.33")), Money(Decimal("33.33"))
        ]


class TestFlatInterest:
    """Simple, recurring simple and interest-only models"""

    def setup_method(self):
        self.calculator = AmortizationCalculator()

    def test_simple_interest(self):
        result = self.calculator.simulate(
            AmortizationMethod.SIMPLE_INTEREST, Money(Decimal("1000.00")), Decimal("5"), 3, monthly_dates(3)
        )
        assert result.total_interest == Money(Decimal("150.00"))
        assert result.total_amount == Money(Decimal("1150.00"))
        assert [row.total for row in result.installments] == [
            Money(Decimal("383.34")), Money(Decimal("383.33")), Money(Decimal("383.33"))
        ]

    def test_recurring_simple_interest(self):
        result = self.calculator.simulate(
            AmortizationMethod.RECURRING_SIMPLE_INTEREST, Money(Decimal("1000.00")), Decimal("5"), 4,
            monthly_dates(4)
        )
        assert all(row.interest == Money(Decimal("50.00")) for row in result.installments)
        assert result.total_interest == Money(Decimal("200.00"))
        assert result.installment_value == Money(Decimal("300.00"))

    def test_interest_only(self):
        result = self.calculator.simulate(
            AmortizationMethod.INTEREST_ONLY, Money(Decimal("1000.00")), Decimal("5"), 3, monthly_dates(3)
        )
        assert [row.principal for row in result.installments] == [
            Money(Decimal("0")), Money(Decimal("0")), Money(Decimal("1000.00"))
        ]
        assert result.installments[-1].total == Money(Decimal("1050.00"))
        assert result.installment_value == Money(Decimal("50.00"))
        assert result.total_interest == Money(Decimal("150.00"))
        assert result.effective_rate == Decimal("15.0000")


class TestValidation:

    def setup_method(self):
        self.calculator = AmortizationCalculator()

    def test_non_positive_principal(self):
        with pytest.raises(ValidationError):
            self.calculator.simulate(AmortizationMethod.PRICE, Money(Decimal("0")), Decimal("2"), 3, monthly_dates(3))

    def test_zero_count(self):
        with pytest.raises(ValidationError):
            self.calculator.simulate(AmortizationMethod.PRICE, Money(Decimal("100")), Decimal("2"), 0, [])

    def test_negative_rate(self):
        with pytest.raises(ValidationError):
            self.calculator.simulate(AmortizationMethod.SAC, Money(Decimal("100")), Decimal("-1"), 3, monthly_dates(3))

    def test_due_date_count_mismatch(self):
        with pytest.raises(ValidationError):
            self.calculator.simulate(AmortizationMethod.SAC, Money(Decimal("100")), Decimal("1"), 3, monthly_dates(2))

    def test_interest_only_at_zero_rate_rejected(self):
        with pytest.raises(ValidationError) as exc_info:
            self.calculator.simulate(AmortizationMethod.INTEREST_ONLY, Money(Decimal("1200")), Decimal("0"), 3,
                                     monthly_dates(3))
        assert exc_info.value.details["installment"] == 1

    @pytest.mark.parametrize("method", [
        AmortizationMethod.PRICE, AmortizationMethod.SAC, AmortizationMethod.SIMPLE_INTEREST
    ])
    def test_principal_too_small_for_count_rejected(self, method):
        with pytest.raises(ValidationError):
            self.calculator.simulate(method, Money(Decimal("0.02")), Decimal("0"), 3, monthly_dates(3))
