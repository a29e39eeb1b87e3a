"""
Installment Ledger Module

State machine for the installments of a loan. Stored status is PENDING or
PAID; OVERDUE is derived at read time (PENDING and due before today), so
stored state never drifts from the calendar.

Every state change runs inside ``storage.atomic()`` and checks the
installment's ``version``, so a concurrent change fails cleanly with a
ConsistencyError instead of double-counting.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from .amortization import AmortizationMethod, SimulationResult
from .audit import AuditTrail, AuditEventType
from .cash_flow import CashFlowAllocator
from .clock import Clock, SystemClock
from .config import LendingConfig, get_config
from .currency import Money, Currency
from .errors import ConsistencyError, NotFoundError, ValidationError
from .logging_config import get_logger, log_action
from .loans import Loan, LoanRequest, LoanStatus, loan_from_dict, loan_to_dict
from .periodicity import DueDateSchedule, PeriodicityRule
from .storage import StorageInterface, StorageRecord


class InstallmentStatus(Enum):
    """Persisted installment status"""
    PENDING = "pending"
    PAID = "paid"


class DisplayStatus(Enum):
    """Status as shown to operators, with OVERDUE derived from the date"""
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"


@dataclass
class Installment(StorageRecord):
    """One scheduled payment of a loan"""
    loan_id: str
    number: int
    due_date: date
    amount: Money
    principal_portion: Money
    interest_portion: Money
    fine_amount: Money
    paid_amount: Money
    status: InstallmentStatus = InstallmentStatus.PENDING
    paid_at: Optional[date] = None
    fine_before_payment: Optional[Money] = None
    appended: bool = False
    version: int = 1

    @property
    def is_paid(self) -> bool:
        return self.status == InstallmentStatus.PAID

    def is_overdue(self, today: date) -> bool:
        return self.status == InstallmentStatus.PENDING and self.due_date < today

    def days_overdue(self, today: date) -> int:
        return (today - self.due_date).days if self.is_overdue(today) else 0

    def display_status(self, today: date) -> DisplayStatus:
        if self.is_paid:
            return DisplayStatus.PAID
        if self.is_overdue(today):
            return DisplayStatus.OVERDUE
        return DisplayStatus.PENDING

    @property
    def amount_due(self) -> Money:
        """Scheduled amount plus accumulated fine"""
        return self.amount + self.fine_amount


@dataclass
class FineRecord(StorageRecord):
    """Audit row for one apply_fine call"""
    installment_id: str
    loan_id: str
    amount: Money
    reason: str
    fine_after: Money


@dataclass
class RenewalDraft:
    """Creation parameters copied from a completed loan"""
    source_loan_id: str
    customer_id: str
    principal: Money
    method: AmortizationMethod
    interest_rate: Decimal
    installment_count: int
    installment_value: Money
    periodicity_rule: PeriodicityRule
    periodicity_id: Optional[str] = None
    creditor_id: Optional[str] = None
    route_id: Optional[str] = None
    intermediary_rate: Decimal = Decimal("0")
    creditor_rate: Decimal = Decimal("0")

    def to_request(self, start_date: date, first_due_date: Optional[date] = None) -> LoanRequest:
        return LoanRequest(
            principal=self.principal,
            method=self.method,
            interest_rate=self.interest_rate,
            installment_count=self.installment_count,
            start_date=start_date,
            first_due_date=first_due_date,
            customer_id=self.customer_id,
            periodicity_id=self.periodicity_id,
            periodicity_rule=self.periodicity_rule,
            creditor_id=self.creditor_id,
            route_id=self.route_id,
            intermediary_rate=self.intermediary_rate,
            creditor_rate=self.creditor_rate,
            renewed_from_loan_id=self.source_loan_id,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_loan_id": self.source_loan_id,
            "customer_id": self.customer_id,
            "principal": str(self.principal.amount),
            "method": self.method.value,
            "interest_rate": str(self.interest_rate),
            "installment_count": self.installment_count,
            "installment_value": str(self.installment_value.amount),
            "periodicity_id": self.periodicity_id,
            "periodicity_rule": self.periodicity_rule.to_dict(),
            "creditor_id": self.creditor_id,
            "route_id": self.route_id,
            "intermediary_rate": str(self.intermediary_rate),
            "creditor_rate": str(self.creditor_rate),
        }


@dataclass
class SettlementResult:
    """Outcome of settling every open installment of a loan"""
    loan: Loan
    settled: List[Installment] = field(default_factory=list)
    renewal_draft: Optional[RenewalDraft] = None

    @property
    def total_settled(self) -> Money:
        return Money.sum((i.paid_amount + i.fine_amount for i in self.settled), self.loan.principal.currency)


class InstallmentLedger:
    """
    Pay / fine / reverse / settle / append operations over a loan's installments
    """

    TABLE = "installments"
    FINES_TABLE = "installment_fines"
    LOANS_TABLE = "loans"

    def __init__(
        self,
        storage: StorageInterface,
        allocator: Optional[CashFlowAllocator] = None,
        audit_trail: Optional[AuditTrail] = None,
        clock: Optional[Clock] = None,
        config: Optional[LendingConfig] = None
    ):
        self.storage = storage
        self.allocator = allocator
        self.audit_trail = audit_trail
        self.config = config or get_config()
        self.clock = clock or SystemClock(self.config.timezone)
        self.currency = Currency[self.config.currency]
        self.logger = get_logger("lending.installments")

    # Reads

    def get_installment(self, installment_id: str) -> Installment:
        data = self.storage.load(self.TABLE, installment_id)
        if not data:
            raise NotFoundError("Installment", installment_id)
        return self._installment_from_dict(data)

    def get_loan_installments(self, loan_id: str) -> List[Installment]:
        installments = [self._installment_from_dict(d) for d in self.storage.find(self.TABLE, {"loan_id": loan_id})]
        return sorted(installments, key=lambda i: i.number)

    def list_installments(self) -> List[Installment]:
        return [self._installment_from_dict(d) for d in self.storage.load_all(self.TABLE)]

    def get_fine_history(self, installment_id: str) -> List[FineRecord]:
        records = [self._fine_from_dict(d) for d in self.storage.find(self.FINES_TABLE, {"installment_id": installment_id})]
        return sorted(records, key=lambda r: r.created_at)

    def loan_balance_summary(self, loan_id: str) -> Dict[str, Any]:
        """Scheduled, fined, paid and outstanding figures for a loan"""
        loan = self._load_loan(loan_id)
        installments = self.get_loan_installments(loan_id)
        today = self.clock.today()
        zero = Money.zero(loan.principal.currency)
        scheduled = Money.sum((i.amount for i in installments), zero.currency)
        fines = Money.sum((i.fine_amount for i in installments), zero.currency)
        paid = Money.sum((i.paid_amount for i in installments if i.is_paid), zero.currency)
        outstanding = Money.sum((i.amount_due for i in installments if not i.is_paid), zero.currency)
        return {
            "loan_id": loan_id,
            "status": loan.status.value,
            "loan_total_amount": str(loan.total_amount.amount),
            "scheduled_amount": str(scheduled.amount),
            "fine_amount": str(fines.amount),
            "paid_amount": str(paid.amount),
            "outstanding_amount": str(outstanding.amount),
            "installments": len(installments),
            "paid_installments": sum(1 for i in installments if i.is_paid),
            "overdue_installments": sum(1 for i in installments if i.is_overdue(today)),
        }

    # Creation

    def create_installments(self, loan: Loan, simulation: SimulationResult) -> List[Installment]:
        """Persist one PENDING installment per simulated row"""
        now = datetime.now(timezone.utc)
        zero = Money.zero(loan.principal.currency)
        created = []
        with self.storage.atomic():
            for row in simulation.installments:
                installment = Installment(
                    id=str(uuid.uuid4()),
                    created_at=now,
                    updated_at=now,
                    loan_id=loan.id,
                    number=row.number,
                    due_date=row.due_date,
                    amount=row.total,
                    principal_portion=row.principal,
                    interest_portion=row.interest,
                    fine_amount=zero,
                    paid_amount=zero,
                )
                self._save_installment(installment)
                created.append(installment)
        return created

    def delete_installment(self, installment: Installment) -> None:
        """Remove an installment as part of cancelling its loan"""
        self.storage.delete(self.TABLE, installment.id)

    # State transitions

    def pay(
        self,
        installment_id: str,
        amount: Money,
        fine_amount: Optional[Money] = None,
        payment_date: Optional[date] = None,
        expected_version: Optional[int] = None
    ) -> Installment:
        """
        Record payment of an installment.

        ``fine_amount`` overwrites the stored fine (it is the full figure,
        not an increment); when omitted the current fine is kept. The
        accepted ``amount`` is governed by the payment amount policy.

        Raises:
            ValidationError: Installment already PAID, loan not active, or
                amount rejected by the policy
            ConsistencyError: ``expected_version`` is stale
        """
        with self.storage.atomic():
            installment = self.get_installment(installment_id)
            loan = self._load_loan(installment.loan_id)
            self._check_version(installment, expected_version)
            if loan.status != LoanStatus.ACTIVE:
                raise ValidationError(f"Loan {loan.id} is {loan.status.value}; payments are not accepted")
            if installment.is_paid:
                raise ValidationError(f"Installment {installment.number} is already paid")
            self._check_payment_amount(installment, amount)
            if fine_amount is not None and fine_amount.is_negative():
                raise ValidationError("Fine amount cannot be negative")

            previous_version = installment.version
            installment.fine_before_payment = installment.fine_amount
            if fine_amount is not None:
                installment.fine_amount = fine_amount
            installment.paid_amount = amount
            installment.status = InstallmentStatus.PAID
            installment.paid_at = payment_date or self.clock.today()
            self._write(installment, previous_version)

            if self.allocator and self.config.post_loan_returns:
                self.allocator.post_loan_return(loan, installment, installment.paid_amount + installment.fine_amount)

            self._audit(AuditEventType.INSTALLMENT_PAID, installment, {
                "amount": str(amount.amount),
                "fine_amount": str(installment.fine_amount.amount),
                "scheduled_amount": str(installment.amount.amount),
                "paid_at": installment.paid_at.isoformat(),
            })

        log_action(self.logger, "info", f"Installment {installment.number} of loan {loan.id} paid",
                   action="pay_installment", resource=f"installment:{installment.id}",
                   extra={"amount": str(amount.amount), "fine": str(installment.fine_amount.amount)})
        return installment

    def apply_fine(self, installment_id: str, amount: Money, reason: str = "",
                   expected_version: Optional[int] = None) -> Installment:
        """Add ``amount`` to the accumulated fine of an unpaid installment"""
        if not amount.is_positive():
            raise ValidationError("Fine amount must be greater than zero")

        with self.storage.atomic():
            installment = self.get_installment(installment_id)
            self._check_version(installment, expected_version)
            if installment.is_paid:
                raise ValidationError(f"Installment {installment.number} is already paid; fines cannot be applied")

            previous_version = installment.version
            installment.fine_amount = installment.fine_amount + amount
            self._write(installment, previous_version)

            now = datetime.now(timezone.utc)
            record = FineRecord(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                installment_id=installment.id,
                loan_id=installment.loan_id,
                amount=amount,
                reason=reason,
                fine_after=installment.fine_amount,
            )
            self.storage.save(self.FINES_TABLE, record.id, self._fine_to_dict(record))

            self._audit(AuditEventType.INSTALLMENT_FINED, installment, {
                "amount": str(amount.amount),
                "reason": reason,
                "fine_amount": str(installment.fine_amount.amount),
            })

        log_action(self.logger, "info", f"Fine applied to installment {installment.number} of loan {installment.loan_id}",
                   action="apply_fine", resource=f"installment:{installment.id}",
                   extra={"amount": str(amount.amount), "reason": reason})
        return installment

    def reverse(self, installment_id: str, expected_version: Optional[int] = None) -> Installment:
        """
        Undo the payment of an installment.

        Status returns to PENDING with nothing paid; the fine is preserved.
        A completed loan is reopened, and the creditor's loan return is
        offset by a DEBIT entry.
        """
        with self.storage.atomic():
            installment = self.get_installment(installment_id)
            self._check_version(installment, expected_version)
            if not installment.is_paid:
                raise ValidationError(f"Installment {installment.number} is not paid; nothing to reverse")
            loan = self._load_loan(installment.loan_id)
            if loan.status == LoanStatus.CANCELLED:
                raise ValidationError(f"Loan {loan.id} is cancelled")

            previous_version = installment.version
            reversed_amount = installment.paid_amount
            installment.status = InstallmentStatus.PENDING
            installment.paid_amount = Money.zero(installment.amount.currency)
            installment.paid_at = None
            self._write(installment, previous_version)

            if self.allocator:
                self.allocator.reverse_loan_return(loan, installment)

            if loan.status == LoanStatus.COMPLETED:
                loan.status = LoanStatus.ACTIVE
                loan.completed_at = None
                loan.updated_at = datetime.now(timezone.utc)
                self._save_loan(loan)

            self._audit(AuditEventType.PAYMENT_REVERSED, installment, {
                "reversed_amount": str(reversed_amount.amount),
                "fine_amount": str(installment.fine_amount.amount),
                "fine_before_payment": str(installment.fine_before_payment.amount)
                if installment.fine_before_payment is not None else None,
            })

        log_action(self.logger, "info", f"Payment of installment {installment.number} of loan {loan.id} reversed",
                   action="reverse_payment", resource=f"installment:{installment.id}",
                   extra={"reversed_amount": str(reversed_amount.amount)})
        return installment

    def settle_all(self, loan_id: str) -> SettlementResult:
        """
        Pay every open installment with its scheduled amount and current
        fine at today's date, then mark the loan COMPLETED.

        All-or-nothing: every installment is validated before the first
        write, and any failure rolls the whole batch back.
        """
        today = self.clock.today()
        with self.storage.atomic():
            loan = self._load_loan(loan_id)
            if loan.status != LoanStatus.ACTIVE:
                raise ValidationError(f"Loan {loan_id} is {loan.status.value}; only active loans can be settled")

            open_installments = [i for i in self.get_loan_installments(loan_id) if not i.is_paid]
            for installment in open_installments:
                if not installment.amount.is_positive():
                    raise ValidationError(f"Installment {installment.number} has no amount to settle")

            settled = []
            for installment in open_installments:
                try:
                    settled.append(self.pay(
                        installment.id,
                        installment.amount,
                        installment.fine_amount,
                        today,
                        expected_version=installment.version,
                    ))
                except ConsistencyError as exc:
                    raise ConsistencyError(
                        f"Installment {installment.number} changed during settlement of loan {loan_id}",
                        {"loan_id": loan_id, "installment_id": installment.id, "cause": exc.message},
                    )

            remaining = [i for i in self.get_loan_installments(loan_id) if not i.is_paid]
            if remaining:
                raise ConsistencyError(
                    f"Loan {loan_id} still has {len(remaining)} unpaid installments after settlement",
                    {"loan_id": loan_id},
                )

            loan = self._load_loan(loan_id)
            loan.status = LoanStatus.COMPLETED
            loan.completed_at = datetime.now(timezone.utc)
            loan.updated_at = loan.completed_at
            self._save_loan(loan)

            if self.audit_trail:
                self.audit_trail.log_event(AuditEventType.LOAN_COMPLETED, "loan", loan_id, {
                    "settled_installments": len(settled),
                    "settled_on": today.isoformat(),
                })

        log_action(self.logger, "info", f"Loan {loan_id} settled",
                   action="settle_all", resource=f"loan:{loan_id}",
                   extra={"settled_installments": len(settled)})
        return SettlementResult(loan=loan, settled=settled, renewal_draft=self.renewal_draft(loan_id))

    def append_installments(self, loan_id: str, value: Money, count: int, start_date: date) -> List[Installment]:
        """
        Extend an ACTIVE loan with ``count`` installments of ``value``.

        Numbering continues after the highest existing number and due dates
        come from the loan's own periodicity starting at ``start_date``.
        Existing installments and the loan's totals are left untouched.
        """
        if not value.is_positive():
            raise ValidationError("Installment value must be greater than zero")
        if count < 1 or count > self.config.max_appended_installments:
            raise ValidationError(
                f"Installment count must be between 1 and {self.config.max_appended_installments}"
            )
        if start_date < self.clock.today() and not self.config.allow_past_append_start:
            raise ValidationError("Start date cannot be before today")

        with self.storage.atomic():
            loan = self._load_loan(loan_id)
            if loan.status != LoanStatus.ACTIVE:
                raise ValidationError(f"Installments can only be added to active loans (loan is {loan.status.value})")

            existing = self.get_loan_installments(loan_id)
            next_number = max((i.number for i in existing), default=0) + 1
            due_dates = DueDateSchedule(loan.periodicity_rule, start_date, count,
                                        self.config.max_schedule_rejections)

            now = datetime.now(timezone.utc)
            zero = Money.zero(value.currency)
            created = []
            for offset, due_date in enumerate(due_dates):
                installment = Installment(
                    id=str(uuid.uuid4()),
                    created_at=now,
                    updated_at=now,
                    loan_id=loan_id,
                    number=next_number + offset,
                    due_date=due_date,
                    amount=value,
                    principal_portion=zero,
                    interest_portion=zero,
                    fine_amount=zero,
                    paid_amount=zero,
                    appended=True,
                )
                self._save_installment(installment)
                created.append(installment)

            if self.audit_trail:
                self.audit_trail.log_event(AuditEventType.INSTALLMENTS_APPENDED, "loan", loan_id, {
                    "count": count,
                    "value": str(value.amount),
                    "first_number": next_number,
                    "start_date": start_date.isoformat(),
                })

        log_action(self.logger, "info", f"{count} installments appended to loan {loan_id}",
                   action="append_installments", resource=f"loan:{loan_id}",
                   extra={"value": str(value.amount), "first_number": next_number})
        return created

    def renewal_draft(self, loan_id: str) -> RenewalDraft:
        """Prefilled creation parameters for renewing a COMPLETED loan (read only)"""
        loan = self._load_loan(loan_id)
        if loan.status != LoanStatus.COMPLETED:
            raise ValidationError(f"Only completed loans can be renewed (loan is {loan.status.value})")
        return RenewalDraft(
            source_loan_id=loan.id,
            customer_id=loan.customer_id,
            principal=loan.principal,
            method=loan.method,
            interest_rate=loan.interest_rate,
            installment_count=loan.installment_count,
            installment_value=loan.installment_value,
            periodicity_rule=loan.periodicity_rule,
            periodicity_id=loan.periodicity_id,
            creditor_id=loan.creditor_id,
            route_id=loan.route_id,
            intermediary_rate=loan.intermediary_rate,
            creditor_rate=loan.creditor_rate,
        )

    # Helpers

    def _check_payment_amount(self, installment: Installment, amount: Money) -> None:
        if not amount.is_positive():
            raise ValidationError("Payment amount must be greater than zero")
        policy = self.config.payment_amount_policy
        if policy == "at_least_scheduled" and amount < installment.amount:
            raise ValidationError(
                f"Payment {amount.amount} is below the scheduled amount {installment.amount.amount}"
            )
        if policy == "exact" and amount != installment.amount:
            raise ValidationError(
                f"Payment {amount.amount} differs from the scheduled amount {installment.amount.amount}"
            )

    def _check_version(self, installment: Installment, expected_version: Optional[int]) -> None:
        if expected_version is not None and installment.version != expected_version:
            raise ConsistencyError(
                f"Installment {installment.id} was modified concurrently",
                {"expected_version": expected_version, "actual_version": installment.version},
            )

    def _write(self, installment: Installment, previous_version: int) -> None:
        """Optimistic write: the stored version must still be ``previous_version``"""
        stored = self.storage.load(self.TABLE, installment.id)
        if stored is None:
            raise NotFoundError("Installment", installment.id)
        if stored.get("version", 1) != previous_version:
            raise ConsistencyError(
                f"Installment {installment.id} was modified concurrently",
                {"expected_version": previous_version, "actual_version": stored.get("version")},
            )
        installment.version = previous_version + 1
        installment.updated_at = datetime.now(timezone.utc)
        self._save_installment(installment)

    def _audit(self, event_type: AuditEventType, installment: Installment, metadata: Dict[str, Any]) -> None:
        if self.audit_trail:
            metadata = dict(metadata, loan_id=installment.loan_id, number=installment.number)
            self.audit_trail.log_event(event_type, "installment", installment.id, metadata)

    def _load_loan(self, loan_id: str) -> Loan:
        data = self.storage.load(self.LOANS_TABLE, loan_id)
        if not data:
            raise NotFoundError("Loan", loan_id)
        return loan_from_dict(data)

    def _save_loan(self, loan: Loan) -> None:
        self.storage.save(self.LOANS_TABLE, loan.id, loan_to_dict(loan))

    def _save_installment(self, installment: Installment) -> None:
        self.storage.save(self.TABLE, installment.id, self._installment_to_dict(installment))

    def _installment_to_dict(self, installment: Installment) -> Dict[str, Any]:
        return {
            "id": installment.id,
            "created_at": installment.created_at.isoformat(),
            "updated_at": installment.updated_at.isoformat(),
            "loan_id": installment.loan_id,
            "number": installment.number,
            "due_date": installment.due_date.isoformat(),
            "amount": str(installment.amount.amount),
            "currency": installment.amount.currency.code,
            "principal_portion": str(installment.principal_portion.amount),
            "interest_portion": str(installment.interest_portion.amount),
            "fine_amount": str(installment.fine_amount.amount),
            "paid_amount": str(installment.paid_amount.amount),
            "status": installment.status.value,
            "paid_at": installment.paid_at.isoformat() if installment.paid_at else None,
            "fine_before_payment": str(installment.fine_before_payment.amount)
            if installment.fine_before_payment is not None else None,
            "appended": installment.appended,
            "version": installment.version,
        }

    def _installment_from_dict(self, data: Dict[str, Any]) -> Installment:
        currency = Currency[data.get("currency", self.currency.code)]

        def money(key: str) -> Money:
            return Money(Decimal(data[key]), currency)

        return Installment(
            id=data["id"],
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            loan_id=data["loan_id"],
            number=data["number"],
            due_date=date.fromisoformat(data["due_date"]),
            amount=money("amount"),
            principal_portion=money("principal_portion"),
            interest_portion=money("interest_portion"),
            fine_amount=money("fine_amount"),
            paid_amount=money("paid_amount"),
            status=InstallmentStatus(data["status"]),
            paid_at=date.fromisoformat(data["paid_at"]) if data.get("paid_at") else None,
            fine_before_payment=money("fine_before_payment") if data.get("fine_before_payment") else None,
            appended=data.get("appended", False),
            version=data.get("version", 1),
        )

    def _fine_to_dict(self, record: FineRecord) -> Dict[str, Any]:
        return {
            "id": record.id,
            "created_at": record.created_at.isoformat(),
            "updated_at": record.updated_at.isoformat(),
            "installment_id": record.installment_id,
            "loan_id": record.loan_id,
            "amount": str(record.amount.amount),
            "currency": record.amount.currency.code,
            "reason": record.reason,
            "fine_after": str(record.fine_after.amount),
        }

    def _fine_from_dict(self, data: Dict[str, Any]) -> FineRecord:
        currency = Currency[data.get("currency", self.currency.code)]
        return FineRecord(
            id=data["id"],
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            installment_id=data["installment_id"],
            loan_id=data["loan_id"],
            amount=Money(Decimal(data["amount"]), currency),
            reason=data.get("reason", ""),
            fine_after=Money(Decimal(data["fine_after"]), currency),
        )
