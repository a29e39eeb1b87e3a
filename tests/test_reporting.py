"""
Tests for portfolio dashboard figures
"""

from decimal import Decimal
from datetime import date

from lending_core.amortization import AmortizationMethod
from lending_core.currency import Money
from lending_core.loans import LoanRequest
from lending_core.periodicity import IntervalType, PeriodicityRule


class TestDashboard:

    def create_daily_loan(self, system, customer_id="customer-1"):
        """Five daily installments of 100 from Monday 2024-01-08"""
        return system.loan_manager.create_loan(LoanRequest(
            principal=Money(Decimal("500")),
            method=AmortizationMethod.SIMPLE_INTEREST,
            interest_rate=Decimal("0"),
            installment_count=5,
            start_date=date(2024, 1, 8),
            customer_id=customer_id,
            periodicity_rule=PeriodicityRule(IntervalType.DAILY, 1),
        ))

    def test_empty_portfolio(self, system):
        dashboard = system.reporter.dashboard()
        assert dashboard["date"] == "2024-01-10"
        assert dashboard["overdue"] == {"count": 0, "amount": "0.00"}
        assert dashboard["default_rate"] == "0"
        assert dashboard["upcoming"] == []

    def test_figures(self, system):
        loan = self.create_daily_loan(system)
        first = system.ledger.get_loan_installments(loan.id)[0]
        system.ledger.pay(first.id, first.amount)

        dashboard = system.reporter.dashboard()

        assert dashboard["due_today"] == {"count": 1, "amount": "100.00"}
        assert dashboard["due_this_week"] == {"count": 4, "amount": "400.00"}
        assert dashboard["due_this_month"] == {"count": 4, "amount": "400.00"}
        assert dashboard["overdue"] == {"count": 1, "amount": "100.00"}
        assert dashboard["received_this_month"] == "100.00"
        assert dashboard["active_loans"] == 1
        assert dashboard["unique_customers"] == 1
        assert dashboard["default_rate"] == "20.00"
        assert [u["number"] for u in dashboard["upcoming"]] == [3, 4, 5]

    def test_fines_count_towards_amounts_due(self, system):
        loan = self.create_daily_loan(system)
        second = system.ledger.get_loan_installments(loan.id)[1]
        system.ledger.apply_fine(second.id, Money(Decimal("5")))

        dashboard = system.reporter.dashboard()
        assert dashboard["overdue"]["amount"] == "205.00"

    def test_upcoming_limit(self, system):
        self.create_daily_loan(system)
        self.create_daily_loan(system, customer_id="customer-2")
        dashboard = system.reporter.dashboard(upcoming_limit=2)
        assert len(dashboard["upcoming"]) == 2
        assert dashboard["unique_customers"] == 2

    def test_overdue_follows_the_clock(self, system, clock):
        self.create_daily_loan(system)
        assert len(system.reporter.overdue_installments()) == 2
        clock.set_today(date(2024, 2, 1))
        assert len(system.reporter.overdue_installments()) == 5
