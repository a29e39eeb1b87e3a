"""
Amortization Calculator Module

Produces per-installment breakdowns (principal, interest, running balance)
and totals for the five supported interest models. All figures are Money
rounded half-up to cents; rounding remainders are placed deterministically
so that the installment totals add up exactly to the loan total and the
principal portions add up exactly to the principal.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, Iterable, List, Union

from .currency import Money, Currency
from .errors import ValidationError


HUNDRED = Decimal("100")
RATE_PRECISION = Decimal("0.0001")


class AmortizationMethod(Enum):
    """Supported interest models"""
    PRICE = "price"                          # French system, constant installment
    SAC = "sac"                              # Constant principal, declining interest
    SIMPLE_INTEREST = "simple_interest"      # Flat interest P*r*n spread evenly
    RECURRING_SIMPLE_INTEREST = "recurring_simple_interest"  # P*r charged every period
    INTEREST_ONLY = "interest_only"          # P*r each period, principal balloon at the end


METHOD_LABELS = {
    AmortizationMethod.PRICE: "PRICE - fixed installments",
    AmortizationMethod.SAC: "SAC - constant amortization",
    AmortizationMethod.SIMPLE_INTEREST: "Simple interest",
    AmortizationMethod.RECURRING_SIMPLE_INTEREST: "Recurring simple interest",
    AmortizationMethod.INTEREST_ONLY: "Interest only - principal at the end",
}


@dataclass
class InstallmentBreakdown:
    """One row of a simulated schedule"""
    number: int
    due_date: date
    principal: Money
    interest: Money
    total: Money
    remaining_balance: Money

    def __post_init__(self):
        if self.principal + self.interest != self.total:
            raise ValueError(
                f"Installment {self.number}: principal {self.principal.amount} + "
                f"interest {self.interest.amount} != total {self.total.amount}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "number": self.number,
            "due_date": self.due_date.isoformat(),
            "principal": str(self.principal.amount),
            "interest": str(self.interest.amount),
            "total": str(self.total.amount),
            "remaining_balance": str(self.remaining_balance.amount),
        }


@dataclass
class SimulationResult:
    """Outcome of a simulation: schedule plus aggregate figures"""
    method: AmortizationMethod
    principal: Money
    interest_rate: Decimal
    installment_count: int
    installment_value: Money
    total_amount: Money
    total_interest: Money
    effective_rate: Decimal
    installments: List[InstallmentBreakdown]

    @property
    def has_constant_installments(self) -> bool:
        totals = {row.total for row in self.installments}
        return len(totals) == 1

    @property
    def final_balance(self) -> Money:
        return self.installments[-1].remaining_balance

    def to_dict(self) -> Dict[str, Any]:
        return {
            "method": self.method.value,
            "principal": str(self.principal.amount),
            "interest_rate": str(self.interest_rate),
            "installment_count": self.installment_count,
            "installment_value": str(self.installment_value.amount),
            "total_amount": str(self.total_amount.amount),
            "total_interest": str(self.total_interest.amount),
            "effective_rate": str(self.effective_rate),
            "installments": [row.to_dict() for row in self.installments],
        }


def _even_split(total: Money, parts: int) -> List[Money]:
    """
    Split ``total`` into ``parts`` cent-exact slices. Every slice is the
    truncated quotient except the first, which absorbs the remainder.
    """
    slice_ = Money.truncated(total.amount / parts, total.currency)
    first = total - slice_ * (parts - 1)
    return [first] + [slice_] * (parts - 1)


class AmortizationCalculator:
    """
    Amortization calculator for the five interest models.

    ``interest_rate`` is the nominal rate per period expressed as a
    percentage (2 means 2 % per period).
    """

    def __init__(self, currency: Currency = Currency.BRL):
        self.currency = currency

    def _money(self, value: Union[Money, Decimal, int, str]) -> Money:
        if isinstance(value, Money):
            return value
        return Money(Decimal(str(value)), self.currency)

    def validate_inputs(self, principal: Money, interest_rate: Decimal,
                        installment_count: int, due_dates: List[date]) -> None:
        if not principal.is_positive():
            raise ValidationError("Principal must be greater than zero")
        if installment_count is None or installment_count < 1:
            raise ValidationError("Installment count must be at least 1")
        if interest_rate < 0:
            raise ValidationError("Interest rate cannot be negative")
        if len(due_dates) != installment_count:
            raise ValidationError(
                f"Expected {installment_count} due dates, got {len(due_dates)}"
            )

    def simulate(
        self,
        method: AmortizationMethod,
        principal: Union[Money, Decimal],
        interest_rate: Union[Decimal, int, str],
        installment_count: int,
        due_dates: Iterable[date]
    ) -> SimulationResult:
        """
        Build the installment schedule and totals for a loan.

        Args:
            method: Interest model
            principal: Amount lent
            interest_rate: Nominal periodic rate in percent
            installment_count: Number of installments
            due_dates: One due date per installment, in order

        Returns:
            SimulationResult

        Raises:
            ValidationError: On non-positive principal or count, negative
                rate, a due-date list of the wrong length, or a schedule
                with an installment of zero
        """
        if not isinstance(method, AmortizationMethod):
            raise ValidationError(f"Unsupported amortization method: {method}")
        principal = self._money(principal)
        rate_percent = Decimal(str(interest_rate))
        dates = list(due_dates)
        self.validate_inputs(principal, rate_percent, installment_count, dates)

        rate = rate_percent / HUNDRED
        builders = {
            AmortizationMethod.PRICE: self._price,
            AmortizationMethod.SAC: self._sac,
            AmortizationMethod.SIMPLE_INTEREST: self._simple_interest,
            AmortizationMethod.RECURRING_SIMPLE_INTEREST: self._recurring_simple_interest,
            AmortizationMethod.INTEREST_ONLY: self._interest_only,
        }
        portions = builders[method](principal, rate, installment_count)

        rows = []
        balance = principal
        for number, (due_date, (principal_part, interest_part)) in enumerate(zip(dates, portions), start=1):
            balance = balance - principal_part
            rows.append(InstallmentBreakdown(
                number=number,
                due_date=due_date,
                principal=principal_part,
                interest=interest_part,
                total=principal_part + interest_part,
                remaining_balance=balance,
            ))

        # A zero installment can never be paid or settled
        for row in rows:
            if not row.total.is_positive():
                raise ValidationError(
                    f"Installment {row.number} would have no amount due",
                    {"method": method.value, "installment": row.number, "total": str(row.total.amount)}
                )

        total_amount = Money.sum((row.total for row in rows), self.currency)
        total_interest = Money.sum((row.interest for row in rows), self.currency)
        effective_rate = (total_interest.amount / principal.amount * HUNDRED).quantize(
            RATE_PRECISION, rounding=ROUND_HALF_UP
        )

        # Interest-only loans quote the recurring interest installment, the
        # others quote the first (for SAC and the flat models, the largest) one
        if method == AmortizationMethod.INTEREST_ONLY:
            installment_value = rows[0].interest
        else:
            installment_value = rows[0].total

        return SimulationResult(
            method=method,
            principal=principal,
            interest_rate=rate_percent,
            installment_count=installment_count,
            installment_value=installment_value,
            total_amount=total_amount,
            total_interest=total_interest,
            effective_rate=effective_rate,
            installments=rows,
        )

    def price_installment(self, principal: Money, rate: Decimal, count: int) -> Money:
        """Annuity payment A = P*r / (1 - (1+r)^-n); P/n when r is zero"""
        if rate == 0:
            return principal / count
        factor = (Decimal("1") + rate) ** count
        return Money(principal.amount * rate * factor / (factor - Decimal("1")), principal.currency)

    def _price(self, principal: Money, rate: Decimal, count: int):
        payment = self.price_installment(principal, rate, count)
        balance = principal
        portions = []
        for number in range(1, count + 1):
            interest = balance * rate
            if number == count:
                # Last installment clears whatever rounding left on the balance
                principal_part = balance
            else:
                principal_part = payment - interest
            balance = balance - principal_part
            portions.append((principal_part, interest))
        return portions

    def _sac(self, principal: Money, rate: Decimal, count: int):
        balance = principal
        portions = []
        for principal_part in _even_split(principal, count):
            portions.append((principal_part, balance * rate))
            balance = balance - principal_part
        return portions

    def _simple_interest(self, principal: Money, rate: Decimal, count: int):
        total_interest = principal * (rate * count)
        return list(zip(_even_split(principal, count), _even_split(total_interest, count)))

    def _recurring_simple_interest(self, principal: Money, rate: Decimal, count: int):
        interest = principal * rate
        return [(part, interest) for part in _even_split(principal, count)]

    def _interest_only(self, principal: Money, rate: Decimal, count: int):
        interest = principal * rate
        zero = Money.zero(principal.currency)
        return [(zero, interest)] * (count - 1) + [(principal, interest)]
