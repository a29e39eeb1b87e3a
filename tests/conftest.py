"""
Shared fixtures: an in-memory lending system pinned to a fixed date
"""

from datetime import date
from decimal import Decimal

import pytest

from lending_core.amortization import AmortizationMethod
from lending_core.clock import FixedClock
from lending_core.config import LendingConfig
from lending_core.currency import Money
from lending_core.loans import LoanRequest
from lending_core.periodicity import IntervalType, PeriodicityRule
from lending_core.storage import InMemoryStorage
from lending_core.system import LendingSystem


TODAY = date(2024, 1, 10)


@pytest.fixture
def config():
    return LendingConfig(database_url="memory", log_level="WARNING")


@pytest.fixture
def clock():
    return FixedClock(TODAY)


@pytest.fixture
def system(config, clock):
    lending = LendingSystem(storage=InMemoryStorage(), clock=clock, config=config)
    yield lending
    lending.close()


@pytest.fixture
def monthly_rule():
    return PeriodicityRule(IntervalType.MONTHLY, 1)


@pytest.fixture
def loan_request(monthly_rule):
    """PRICE loan of 1200 at 2% over 12 monthly installments"""
    return LoanRequest(
        principal=Money(Decimal("1200.00")),
        method=AmortizationMethod.PRICE,
        interest_rate=Decimal("2"),
        installment_count=12,
        start_date=TODAY,
        first_due_date=date(2024, 2, 10),
        customer_id="customer-1",
        periodicity_rule=monthly_rule,
    )
