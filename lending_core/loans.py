"""
Loan Origination Module

Simulation and creation of loans: the periodicity scheduler produces the
due dates, the amortization calculator the schedule and totals, and
creation persists the loan with its installments and the creditor's
disbursement entry as one atomic unit.
"""

import uuid
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from .amortization import AmortizationCalculator, AmortizationMethod, SimulationResult
from .audit import AuditTrail, AuditEventType
from .cash_flow import CashFlowAllocator
from .clock import Clock, SystemClock
from .config import LendingConfig, get_config
from .currency import Money, Currency
from .errors import ConsistencyError, InsufficientBalanceError, NotFoundError, ValidationError
from .logging_config import get_logger, log_action
from .periodicity import DueDateSchedule, PeriodicityManager, PeriodicityRule
from .storage import StorageInterface, StorageRecord

if TYPE_CHECKING:
    from .installments import InstallmentLedger


HUNDRED = Decimal("100")


class LoanStatus(Enum):
    """Loan lifecycle status"""
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass
class LoanRequest:
    """Parameters for simulating or creating a loan"""
    principal: Money
    method: AmortizationMethod
    interest_rate: Decimal
    installment_count: int
    start_date: date
    first_due_date: Optional[date] = None
    customer_id: Optional[str] = None
    periodicity_id: Optional[str] = None
    periodicity_rule: Optional[PeriodicityRule] = None
    creditor_id: Optional[str] = None
    route_id: Optional[str] = None
    intermediary_rate: Decimal = Decimal("0")
    creditor_rate: Decimal = Decimal("0")
    observation: Optional[str] = None
    renewed_from_loan_id: Optional[str] = None

    @property
    def schedule_start(self) -> date:
        return self.first_due_date or self.start_date


@dataclass
class Loan(StorageRecord):
    """
    Originated loan. The computed figures (total amount, total interest,
    installment value) are fixed at creation.
    """
    customer_id: str
    principal: Money
    method: AmortizationMethod
    interest_rate: Decimal
    installment_count: int
    start_date: date
    first_due_date: date
    periodicity_rule: PeriodicityRule
    total_amount: Money
    total_interest: Money
    installment_value: Money
    status: LoanStatus = LoanStatus.ACTIVE
    periodicity_id: Optional[str] = None
    creditor_id: Optional[str] = None
    route_id: Optional[str] = None
    intermediary_rate: Decimal = Decimal("0")
    creditor_rate: Decimal = Decimal("0")
    observation: Optional[str] = None
    renewed_from_loan_id: Optional[str] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == LoanStatus.ACTIVE


def loan_to_dict(loan: Loan) -> Dict[str, Any]:
    """Convert loan to dictionary for storage"""
    return {
        "id": loan.id,
        "created_at": loan.created_at.isoformat(),
        "updated_at": loan.updated_at.isoformat(),
        "customer_id": loan.customer_id,
        "principal": str(loan.principal.amount),
        "currency": loan.principal.currency.code,
        "method": loan.method.value,
        "interest_rate": str(loan.interest_rate),
        "installment_count": loan.installment_count,
        "start_date": loan.start_date.isoformat(),
        "first_due_date": loan.first_due_date.isoformat(),
        "periodicity_rule": loan.periodicity_rule.to_dict(),
        "total_amount": str(loan.total_amount.amount),
        "total_interest": str(loan.total_interest.amount),
        "installment_value": str(loan.installment_value.amount),
        "status": loan.status.value,
        "periodicity_id": loan.periodicity_id,
        "creditor_id": loan.creditor_id,
        "route_id": loan.route_id,
        "intermediary_rate": str(loan.intermediary_rate),
        "creditor_rate": str(loan.creditor_rate),
        "observation": loan.observation,
        "renewed_from_loan_id": loan.renewed_from_loan_id,
        "completed_at": loan.completed_at.isoformat() if loan.completed_at else None,
        "cancelled_at": loan.cancelled_at.isoformat() if loan.cancelled_at else None,
    }


def loan_from_dict(data: Dict[str, Any]) -> Loan:
    """Create loan from dictionary"""
    currency = Currency[data.get("currency", "BRL")]
    return Loan(
        id=data["id"],
        created_at=datetime.fromisoformat(data["created_at"]),
        updated_at=datetime.fromisoformat(data["updated_at"]),
        customer_id=data["customer_id"],
        principal=Money(Decimal(data["principal"]), currency),
        method=AmortizationMethod(data["method"]),
        interest_rate=Decimal(data["interest_rate"]),
        installment_count=data["installment_count"],
        start_date=date.fromisoformat(data["start_date"]),
        first_due_date=date.fromisoformat(data["first_due_date"]),
        periodicity_rule=PeriodicityRule.from_dict(data["periodicity_rule"]),
        total_amount=Money(Decimal(data["total_amount"]), currency),
        total_interest=Money(Decimal(data["total_interest"]), currency),
        installment_value=Money(Decimal(data["installment_value"]), currency),
        status=LoanStatus(data["status"]),
        periodicity_id=data.get("periodicity_id"),
        creditor_id=data.get("creditor_id"),
        route_id=data.get("route_id"),
        intermediary_rate=Decimal(data.get("intermediary_rate") or "0"),
        creditor_rate=Decimal(data.get("creditor_rate") or "0"),
        observation=data.get("observation"),
        renewed_from_loan_id=data.get("renewed_from_loan_id"),
        completed_at=datetime.fromisoformat(data["completed_at"]) if data.get("completed_at") else None,
        cancelled_at=datetime.fromisoformat(data["cancelled_at"]) if data.get("cancelled_at") else None,
    )


class LoanManager:
    """
    Loan simulation, origination, cancellation and renewal
    """

    TABLE = "loans"

    def __init__(
        self,
        storage: StorageInterface,
        ledger: 'InstallmentLedger',
        allocator: CashFlowAllocator,
        periodicity_manager: PeriodicityManager,
        audit_trail: Optional[AuditTrail] = None,
        clock: Optional[Clock] = None,
        config: Optional[LendingConfig] = None
    ):
        self.storage = storage
        self.ledger = ledger
        self.allocator = allocator
        self.periodicity_manager = periodicity_manager
        self.audit_trail = audit_trail
        self.config = config or get_config()
        self.clock = clock or SystemClock(self.config.timezone)
        self.calculator = AmortizationCalculator(Currency[self.config.currency])
        self.logger = get_logger("lending.loans")

        periodicity_manager.add_reference_check(self._periodicity_in_use)

    def _periodicity_in_use(self, periodicity_id: str) -> bool:
        return bool(self.storage.find(self.TABLE, {"periodicity_id": periodicity_id}))

    def _resolve_rule(self, request: LoanRequest) -> PeriodicityRule:
        if request.periodicity_id:
            periodicity = self.periodicity_manager.get_periodicity(request.periodicity_id)
            if not periodicity.is_active:
                raise ValidationError(f"Periodicity {periodicity.id} is inactive")
            return periodicity.rule
        if request.periodicity_rule is not None:
            return request.periodicity_rule
        raise ValidationError("A periodicity is required")

    def _validate_request(self, request: LoanRequest) -> None:
        if request.first_due_date and request.first_due_date < request.start_date:
            raise ValidationError("First due date cannot be before the start date")
        for label, rate in (("Intermediary", request.intermediary_rate), ("Creditor", request.creditor_rate)):
            if rate is not None and (rate < 0 or rate > HUNDRED):
                raise ValidationError(f"{label} commission rate must be between 0 and 100")

    def simulate(self, request: LoanRequest) -> SimulationResult:
        """Schedule and price a loan without persisting anything"""
        self._validate_request(request)
        rule = self._resolve_rule(request)
        due_dates = DueDateSchedule(rule, request.schedule_start, max(request.installment_count, 0),
                                    self.config.max_schedule_rejections)
        return self.calculator.simulate(
            request.method, request.principal, request.interest_rate,
            request.installment_count, due_dates
        )

    def create_loan(self, request: LoanRequest) -> Loan:
        """
        Originate a loan.

        The creditor balance is checked before anything is written; the
        loan, its installments and the disbursement entry are then
        written in one atomic block.

        Raises:
            ValidationError: Invalid request or periodicity
            InsufficientBalanceError: Creditor cannot fund the principal
            ConsistencyError: Persisted installments differ from the configured count
        """
        if not request.customer_id:
            raise ValidationError("Customer is required")
        simulation = self.simulate(request)
        rule = self._resolve_rule(request)

        with self.storage.atomic():
            if request.creditor_id:
                self.allocator.get_creditor(request.creditor_id)
                if not self.allocator.check_available_balance(request.creditor_id, simulation.principal):
                    raise InsufficientBalanceError(
                        request.creditor_id,
                        self.allocator.compute_balance(request.creditor_id).amount,
                        simulation.principal.amount,
                    )

            now = datetime.now(timezone.utc)
            loan = Loan(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                customer_id=request.customer_id,
                principal=simulation.principal,
                method=request.method,
                interest_rate=simulation.interest_rate,
                installment_count=request.installment_count,
                start_date=request.start_date,
                first_due_date=simulation.installments[0].due_date,
                periodicity_rule=rule,
                total_amount=simulation.total_amount,
                total_interest=simulation.total_interest,
                installment_value=simulation.installment_value,
                periodicity_id=request.periodicity_id,
                creditor_id=request.creditor_id,
                route_id=request.route_id,
                intermediary_rate=request.intermediary_rate or Decimal("0"),
                creditor_rate=request.creditor_rate or Decimal("0"),
                observation=request.observation,
                renewed_from_loan_id=request.renewed_from_loan_id,
            )
            self.save_loan(loan)

            installments = self.ledger.create_installments(loan, simulation)
            self.allocator.post_disbursement(loan)

            persisted = len(self.ledger.get_loan_installments(loan.id))
            if persisted != loan.installment_count or len(installments) != loan.installment_count:
                raise ConsistencyError(
                    f"Loan {loan.id} expected {loan.installment_count} installments, found {persisted}",
                    {"loan_id": loan.id, "expected": loan.installment_count, "found": persisted},
                )

            if self.audit_trail:
                self.audit_trail.log_event(AuditEventType.LOAN_CREATED, "loan", loan.id, {
                    "customer_id": loan.customer_id,
                    "principal": str(loan.principal.amount),
                    "method": loan.method.value,
                    "interest_rate": str(loan.interest_rate),
                    "installment_count": loan.installment_count,
                    "total_amount": str(loan.total_amount.amount),
                    "creditor_id": loan.creditor_id,
                    "route_id": loan.route_id,
                })

        log_action(self.logger, "info", f"Loan {loan.id} created",
                   action="create_loan", resource=f"loan:{loan.id}",
                   extra={"principal": str(loan.principal.amount), "method": loan.method.value,
                          "installments": loan.installment_count, "creditor_id": loan.creditor_id})
        return loan

    def get_loan(self, loan_id: str) -> Loan:
        data = self.storage.load(self.TABLE, loan_id)
        if not data:
            raise NotFoundError("Loan", loan_id)
        return loan_from_dict(data)

    def save_loan(self, loan: Loan) -> None:
        self.storage.save(self.TABLE, loan.id, loan_to_dict(loan))

    def list_loans(self, status: Optional[LoanStatus] = None, customer_id: Optional[str] = None,
                   creditor_id: Optional[str] = None) -> List[Loan]:
        filters = {}
        if status:
            filters["status"] = status.value
        if customer_id:
            filters["customer_id"] = customer_id
        if creditor_id:
            filters["creditor_id"] = creditor_id
        loans = [loan_from_dict(d) for d in self.storage.find(self.TABLE, filters)]
        return sorted(loans, key=lambda l: l.created_at)

    def cancel_loan(self, loan_id: str, reason: str = "") -> Loan:
        """
        Cancel an ACTIVE loan with no paid installment.

        The loan's installments are removed and the disbursement is offset
        by a CREDIT entry to the creditor.
        """
        with self.storage.atomic():
            loan = self.get_loan(loan_id)
            if loan.status != LoanStatus.ACTIVE:
                raise ValidationError(f"Only active loans can be cancelled (loan is {loan.status.value})")
            installments = self.ledger.get_loan_installments(loan_id)
            if any(i.is_paid for i in installments):
                raise ValidationError("Loans with paid installments cannot be cancelled")

            for installment in installments:
                self.ledger.delete_installment(installment)
            self.allocator.reverse_disbursement(loan)

            loan.status = LoanStatus.CANCELLED
            loan.cancelled_at = datetime.now(timezone.utc)
            loan.updated_at = loan.cancelled_at
            self.save_loan(loan)

            if self.audit_trail:
                self.audit_trail.log_event(AuditEventType.LOAN_CANCELLED, "loan", loan.id, {
                    "reason": reason,
                    "removed_installments": len(installments),
                })

        log_action(self.logger, "info", f"Loan {loan_id} cancelled",
                   action="cancel_loan", resource=f"loan:{loan_id}", extra={"reason": reason})
        return loan

    def renew_loan(self, loan_id: str, start_date: Optional[date] = None,
                   first_due_date: Optional[date] = None) -> Loan:
        """Originate a new loan from the renewal draft of a COMPLETED loan"""
        draft = self.ledger.renewal_draft(loan_id)
        start = start_date or self.clock.today()
        request = draft.to_request(start, first_due_date or start)
        with self.storage.atomic():
            loan = self.create_loan(request)
            if self.audit_trail:
                self.audit_trail.log_event(AuditEventType.LOAN_RENEWED, "loan", loan_id, {
                    "new_loan_id": loan.id,
                })
        return loan

    def check_installment_consistency(self) -> List[Dict[str, Any]]:
        """Loans whose persisted installment count differs from the configured count"""
        problems = []
        for loan in self.list_loans():
            if loan.status == LoanStatus.CANCELLED:
                continue
            installments = self.ledger.get_loan_installments(loan.id)
            original = [i for i in installments if not i.appended]
            if len(original) != loan.installment_count:
                problems.append({
                    "loan_id": loan.id,
                    "expected": loan.installment_count,
                    "found": len(original),
                    "appended": len(installments) - len(original),
                })
        if problems:
            log_action(self.logger, "warning", f"{len(problems)} loans with inconsistent installments",
                       action="check_installment_consistency", extra={"loans": [p["loan_id"] for p in problems]})
        return problems
