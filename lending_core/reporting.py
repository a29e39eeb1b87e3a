"""
Portfolio Reporting Module

Read-only dashboard figures over loans and installments: dues for today,
this week and this month, overdue exposure, money received this month and
the default rate. "Today" comes from the injected clock.
"""

from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from .calendar_utils import month_bounds, week_bounds
from .clock import Clock
from .currency import Money, Currency
from .installments import Installment, InstallmentLedger
from .loans import LoanManager, LoanStatus
from .logging_config import get_logger


class PortfolioReporter:
    """Dashboard statistics for the loan portfolio"""

    def __init__(self, loan_manager: LoanManager, ledger: InstallmentLedger, clock: Clock,
                 currency: Currency = Currency.BRL):
        self.loan_manager = loan_manager
        self.ledger = ledger
        self.clock = clock
        self.currency = currency
        self.logger = get_logger("lending.reporting")

    def _summarize(self, installments: List[Installment]) -> Dict[str, Any]:
        total = Money.sum((i.amount_due for i in installments), self.currency)
        return {"count": len(installments), "amount": str(total.amount)}

    def _open_between(self, installments: List[Installment], start: date, end: date) -> List[Installment]:
        return [i for i in installments if not i.is_paid and start <= i.due_date <= end]

    def overdue_installments(self, today: Optional[date] = None) -> List[Installment]:
        today = today or self.clock.today()
        overdue = [i for i in self.ledger.list_installments() if i.is_overdue(today)]
        return sorted(overdue, key=lambda i: (i.due_date, i.number))

    def dashboard(self, today: Optional[date] = None, upcoming_limit: int = 10) -> Dict[str, Any]:
        today = today or self.clock.today()
        installments = self.ledger.list_installments()
        week_start, week_end = week_bounds(today)
        month_start, month_end = month_bounds(today)

        overdue = [i for i in installments if i.is_overdue(today)]
        received = Money.sum(
            (i.paid_amount + i.fine_amount for i in installments
             if i.is_paid and i.paid_at and month_start <= i.paid_at <= month_end),
            self.currency,
        )

        active_loans = self.loan_manager.list_loans(status=LoanStatus.ACTIVE)
        default_rate = Decimal("0")
        if installments:
            default_rate = (Decimal(len(overdue)) / Decimal(len(installments)) * Decimal("100")).quantize(
                Decimal("0.01"), rounding=ROUND_HALF_UP
            )

        upcoming = sorted(
            (i for i in installments if not i.is_paid and i.due_date >= today),
            key=lambda i: (i.due_date, i.number),
        )[:upcoming_limit]

        return {
            "date": today.isoformat(),
            "due_today": self._summarize(self._open_between(installments, today, today)),
            "due_this_week": self._summarize(self._open_between(installments, week_start, week_end)),
            "due_this_month": self._summarize(self._open_between(installments, month_start, month_end)),
            "overdue": self._summarize(overdue),
            "received_this_month": str(received.amount),
            "active_loans": len(active_loans),
            "unique_customers": len({loan.customer_id for loan in active_loans}),
            "default_rate": str(default_rate),
            "upcoming": [
                {
                    "installment_id": i.id,
                    "loan_id": i.loan_id,
                    "number": i.number,
                    "due_date": i.due_date.isoformat(),
                    "amount_due": str(i.amount_due.amount),
                }
                for i in upcoming
            ],
        }
