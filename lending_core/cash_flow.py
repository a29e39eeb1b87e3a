"""
Commission & Cash-Flow Allocator Module

Per-creditor append-only cash-flow ledger. A creditor's balance is the sum
of its CREDIT entries minus the sum of its DEBIT entries; a cached running
balance is kept on the creditor record and can be verified against the
raw entries. Corrections are always new offsetting entries.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from .audit import AuditTrail, AuditEventType
from .currency import Money, Currency
from .errors import InsufficientBalanceError, NotFoundError, ValidationError
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord


HUNDRED = Decimal("100")


class CashFlowDirection(Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class CashFlowCategory(Enum):
    """Why money moved"""
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    COMMISSION = "commission"                              # creditor's share of interest
    INTERMEDIARY_COMMISSION = "intermediary_commission"    # route/intermediary share
    MANAGER_COMMISSION = "manager_commission"              # capital manager's share
    LOAN_DISBURSEMENT = "loan_disbursement"
    LOAN_RETURN = "loan_return"


# Categories an operator may post by hand, with their natural direction
MANUAL_CATEGORIES = {
    CashFlowCategory.DEPOSIT: CashFlowDirection.CREDIT,
    CashFlowCategory.WITHDRAWAL: CashFlowDirection.DEBIT,
    CashFlowCategory.COMMISSION: CashFlowDirection.CREDIT,
    CashFlowCategory.LOAN_DISBURSEMENT: CashFlowDirection.DEBIT,
}

COMMISSION_CATEGORIES = (
    CashFlowCategory.COMMISSION,
    CashFlowCategory.INTERMEDIARY_COMMISSION,
    CashFlowCategory.MANAGER_COMMISSION,
)


@dataclass
class Creditor(StorageRecord):
    """Party whose capital funds loans"""
    name: str
    balance: Money
    is_manager: bool = False
    user_id: Optional[str] = None


@dataclass
class CashFlowEntry(StorageRecord):
    """Immutable ledger movement for one creditor"""
    creditor_id: str
    direction: CashFlowDirection
    category: CashFlowCategory
    amount: Money
    description: str
    loan_id: Optional[str] = None
    installment_id: Optional[str] = None

    @property
    def signed_amount(self) -> Money:
        return self.amount if self.direction == CashFlowDirection.CREDIT else -self.amount


@dataclass
class CommissionSplit:
    """Interest split between intermediary, creditor and capital manager"""
    loan_id: str
    base_amount: Money
    interest_rate: Decimal
    intermediary_rate: Decimal
    creditor_rate: Decimal
    manager_rate: Decimal
    intermediary_amount: Money
    creditor_amount: Money
    manager_amount: Money
    residual_clamped: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "loan_id": self.loan_id,
            "base_amount": str(self.base_amount.amount),
            "interest_rate": str(self.interest_rate),
            "intermediary_rate": str(self.intermediary_rate),
            "creditor_rate": str(self.creditor_rate),
            "manager_rate": str(self.manager_rate),
            "intermediary_amount": str(self.intermediary_amount.amount),
            "creditor_amount": str(self.creditor_amount.amount),
            "manager_amount": str(self.manager_amount.amount),
            "residual_clamped": self.residual_clamped,
        }


class CashFlowAllocator:
    """
    Creditor balances, disbursement/return postings and commission splits
    """

    CREDITORS_TABLE = "creditors"
    ENTRIES_TABLE = "cash_flow_entries"
    LOANS_TABLE = "loans"

    def __init__(self, storage: StorageInterface, audit_trail: Optional[AuditTrail] = None,
                 currency: Currency = Currency.BRL):
        self.storage = storage
        self.audit_trail = audit_trail
        self.currency = currency
        self.logger = get_logger("lending.cash_flow")

    # Creditors

    def register_creditor(self, name: str, is_manager: bool = False,
                          user_id: Optional[str] = None,
                          initial_deposit: Optional[Money] = None) -> Creditor:
        """Create a creditor, optionally funding it with an initial deposit"""
        if not name or not name.strip():
            raise ValidationError("Creditor name is required")

        with self.storage.atomic():
            if is_manager and self.get_manager() is not None:
                raise ValidationError("A manager creditor already exists")

            now = datetime.now(timezone.utc)
            creditor = Creditor(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                name=name.strip(),
                balance=Money.zero(self.currency),
                is_manager=is_manager,
                user_id=user_id,
            )
            self._save_creditor(creditor)
            self._audit(AuditEventType.CREDITOR_CREATED, "creditor", creditor.id,
                        {"name": creditor.name, "is_manager": is_manager})

            if initial_deposit is not None and initial_deposit.is_positive():
                self.post_entry(creditor.id, CashFlowDirection.CREDIT, CashFlowCategory.DEPOSIT,
                                initial_deposit, "Initial deposit")
                creditor = self.get_creditor(creditor.id)

        log_action(self.logger, "info", f"Creditor '{creditor.name}' registered",
                   action="register_creditor", resource=f"creditor:{creditor.id}",
                   extra={"is_manager": is_manager})
        return creditor

    def get_creditor(self, creditor_id: str) -> Creditor:
        data = self.storage.load(self.CREDITORS_TABLE, creditor_id)
        if not data:
            raise NotFoundError("Creditor", creditor_id)
        return self._creditor_from_dict(data)

    def list_creditors(self) -> List[Creditor]:
        creditors = [self._creditor_from_dict(d) for d in self.storage.load_all(self.CREDITORS_TABLE)]
        return sorted(creditors, key=lambda c: c.name)

    def get_manager(self) -> Optional[Creditor]:
        managers = self.storage.find(self.CREDITORS_TABLE, {"is_manager": True})
        return self._creditor_from_dict(managers[0]) if managers else None

    def _has_active_loans(self, creditor_id: str) -> bool:
        return bool(self.storage.find(self.LOANS_TABLE, {"creditor_id": creditor_id, "status": "active"}))

    def set_manager(self, creditor_id: str, is_manager: bool = True) -> Creditor:
        """
        Flag or unflag a creditor as the capital manager.

        Only one manager may exist, and the flag cannot change while the
        creditor funds ACTIVE loans.
        """
        with self.storage.atomic():
            creditor = self.get_creditor(creditor_id)
            if creditor.is_manager == is_manager:
                return creditor
            if self._has_active_loans(creditor_id):
                raise ValidationError(
                    f"Creditor {creditor_id} has active loans; manager flag cannot change"
                )
            if is_manager:
                current = self.get_manager()
                if current is not None:
                    raise ValidationError(f"Creditor {current.id} is already the manager")

            creditor.is_manager = is_manager
            creditor.updated_at = datetime.now(timezone.utc)
            self._save_creditor(creditor)
            self._audit(AuditEventType.MANAGER_CHANGED, "creditor", creditor.id,
                        {"is_manager": is_manager})

        log_action(self.logger, "info", f"Creditor {creditor_id} manager flag set to {is_manager}",
                   action="set_manager", resource=f"creditor:{creditor_id}")
        return creditor

    # Entries and balances

    def post_entry(
        self,
        creditor_id: str,
        direction: CashFlowDirection,
        category: CashFlowCategory,
        amount: Money,
        description: str = "",
        loan_id: Optional[str] = None,
        installment_id: Optional[str] = None
    ) -> CashFlowEntry:
        """Append one entry and move the creditor's cached balance"""
        if not amount.is_positive():
            raise ValidationError("Cash-flow amount must be greater than zero")

        with self.storage.atomic():
            creditor = self.get_creditor(creditor_id)
            now = datetime.now(timezone.utc)
            entry = CashFlowEntry(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                creditor_id=creditor_id,
                direction=direction,
                category=category,
                amount=amount,
                description=description,
                loan_id=loan_id,
                installment_id=installment_id,
            )
            self.storage.save(self.ENTRIES_TABLE, entry.id, self._entry_to_dict(entry))

            creditor.balance = creditor.balance + entry.signed_amount
            creditor.updated_at = now
            self._save_creditor(creditor)

            self._audit(AuditEventType.CASH_FLOW_POSTED, "cash_flow", entry.id, {
                "creditor_id": creditor_id,
                "direction": direction.value,
                "category": category.value,
                "amount": str(amount.amount),
                "loan_id": loan_id,
                "installment_id": installment_id,
            })

        log_action(self.logger, "info",
                   f"{direction.value.upper()} {category.value} {amount.to_string()} for creditor {creditor_id}",
                   action="post_cash_flow", resource=f"creditor:{creditor_id}",
                   extra={"entry_id": entry.id, "loan_id": loan_id})
        return entry

    def post_manual_entry(self, creditor_id: str, category: CashFlowCategory, amount: Money,
                          description: str = "") -> CashFlowEntry:
        """Operator-entered movement (deposit, withdrawal, commission, disbursement)"""
        if category not in MANUAL_CATEGORIES:
            raise ValidationError(f"Category {category.value} cannot be posted manually")
        direction = MANUAL_CATEGORIES[category]
        with self.storage.atomic():
            if category == CashFlowCategory.WITHDRAWAL and not self.check_available_balance(creditor_id, amount):
                raise InsufficientBalanceError(creditor_id, self.compute_balance(creditor_id).amount, amount.amount)
            return self.post_entry(creditor_id, direction, category, amount, description)

    def get_entries(
        self,
        creditor_id: Optional[str] = None,
        loan_id: Optional[str] = None,
        category: Optional[CashFlowCategory] = None
    ) -> List[CashFlowEntry]:
        filters = {}
        if creditor_id:
            filters["creditor_id"] = creditor_id
        if loan_id:
            filters["loan_id"] = loan_id
        if category:
            filters["category"] = category.value
        entries = [self._entry_from_dict(d) for d in self.storage.find(self.ENTRIES_TABLE, filters)]
        return sorted(entries, key=lambda e: e.created_at)

    def get_balance(self, creditor_id: str) -> Money:
        """Cached running balance"""
        return self.get_creditor(creditor_id).balance

    def compute_balance(self, creditor_id: str) -> Money:
        """Balance recomputed from the raw entries: sum(CREDIT) - sum(DEBIT)"""
        self.get_creditor(creditor_id)
        return Money.sum((e.signed_amount for e in self.get_entries(creditor_id=creditor_id)), self.currency)

    def verify_balance(self, creditor_id: str) -> Dict[str, Any]:
        cached = self.get_balance(creditor_id)
        computed = self.compute_balance(creditor_id)
        result = {
            "creditor_id": creditor_id,
            "cached_balance": str(cached.amount),
            "computed_balance": str(computed.amount),
            "consistent": cached == computed,
        }
        if not result["consistent"]:
            log_action(self.logger, "error", f"Balance mismatch for creditor {creditor_id}",
                       action="verify_balance", resource=f"creditor:{creditor_id}", extra=result)
        return result

    def check_available_balance(self, creditor_id: str, amount: Money) -> bool:
        """Whether the creditor's entries cover ``amount``"""
        return amount <= self.compute_balance(creditor_id)

    # Loan movements

    def post_disbursement(self, loan) -> Optional[CashFlowEntry]:
        """DEBIT the loan principal from the loan's creditor"""
        if not loan.creditor_id:
            return None
        return self.post_entry(
            loan.creditor_id, CashFlowDirection.DEBIT, CashFlowCategory.LOAN_DISBURSEMENT,
            loan.principal, f"Loan disbursement - loan {loan.id}", loan_id=loan.id
        )

    def reverse_disbursement(self, loan) -> Optional[CashFlowEntry]:
        """Offset the disbursement of a cancelled loan with a CREDIT entry"""
        if not loan.creditor_id:
            return None
        net = self._net_for(loan.creditor_id, CashFlowCategory.LOAN_DISBURSEMENT, loan_id=loan.id)
        # Disbursements are debits, so an outstanding one nets negative
        if not net.is_negative():
            return None
        return self.post_entry(
            loan.creditor_id, CashFlowDirection.CREDIT, CashFlowCategory.LOAN_DISBURSEMENT,
            -net, f"Disbursement reversal - loan {loan.id}", loan_id=loan.id
        )

    def post_loan_return(self, loan, installment, amount: Money) -> Optional[CashFlowEntry]:
        """CREDIT money received for an installment back to the loan's creditor"""
        if not loan.creditor_id or not amount.is_positive():
            return None
        return self.post_entry(
            loan.creditor_id, CashFlowDirection.CREDIT, CashFlowCategory.LOAN_RETURN, amount,
            f"Loan return - installment {installment.number} of loan {loan.id}",
            loan_id=loan.id, installment_id=installment.id
        )

    def reverse_loan_return(self, loan, installment) -> Optional[CashFlowEntry]:
        """DEBIT whatever LOAN_RETURN is still credited for the installment"""
        if not loan.creditor_id:
            return None
        net = self._net_for(loan.creditor_id, CashFlowCategory.LOAN_RETURN, installment_id=installment.id)
        if not net.is_positive():
            return None
        return self.post_entry(
            loan.creditor_id, CashFlowDirection.DEBIT, CashFlowCategory.LOAN_RETURN, net,
            f"Loan return reversal - installment {installment.number} of loan {loan.id}",
            loan_id=loan.id, installment_id=installment.id
        )

    def _net_for(self, creditor_id: str, category: CashFlowCategory,
                 loan_id: Optional[str] = None, installment_id: Optional[str] = None) -> Money:
        filters = {"creditor_id": creditor_id, "category": category.value}
        if loan_id:
            filters["loan_id"] = loan_id
        if installment_id:
            filters["installment_id"] = installment_id
        entries = [self._entry_from_dict(d) for d in self.storage.find(self.ENTRIES_TABLE, filters)]
        return Money.sum((e.signed_amount for e in entries), self.currency)

    # Commissions

    def compute_commission_split(self, loan) -> CommissionSplit:
        """
        Split the loan's interest rate among intermediary, creditor and manager.

        The intermediary rate applies only when the loan has a route, the
        creditor rate only when it has a creditor; the manager receives
        the residual rate, floored at zero. Each amount is
        ``total_amount * rate / 100``.
        """
        intermediary_rate = Decimal(loan.intermediary_rate or 0) if loan.route_id else Decimal("0")
        creditor_rate = Decimal(loan.creditor_rate or 0) if loan.creditor_id else Decimal("0")
        residual = Decimal(loan.interest_rate) - intermediary_rate - creditor_rate
        clamped = residual < 0
        manager_rate = max(residual, Decimal("0"))
        if clamped:
            log_action(self.logger, "warning",
                       f"Commission rates exceed the interest rate of loan {loan.id}; manager share set to zero",
                       action="compute_commission_split", resource=f"loan:{loan.id}",
                       extra={"residual_rate": str(residual)})

        base = loan.total_amount
        return CommissionSplit(
            loan_id=loan.id,
            base_amount=base,
            interest_rate=Decimal(loan.interest_rate),
            intermediary_rate=intermediary_rate,
            creditor_rate=creditor_rate,
            manager_rate=manager_rate,
            intermediary_amount=base * (intermediary_rate / HUNDRED),
            creditor_amount=base * (creditor_rate / HUNDRED),
            manager_amount=base * (manager_rate / HUNDRED),
            residual_clamped=clamped,
        )

    def post_commission_split(self, loan) -> List[CashFlowEntry]:
        """
        Persist a loan's commission split.

        Creditor commission: CREDIT to the loan's creditor. Manager
        commission: CREDIT to the manager creditor. Intermediary commission:
        DEBIT from the loan's creditor (the house side of the payout).
        A loan's split can only be posted once.
        """
        split = self.compute_commission_split(loan)
        entries: List[CashFlowEntry] = []

        with self.storage.atomic():
            already_posted = [e for e in self.get_entries(loan_id=loan.id) if e.category in COMMISSION_CATEGORIES]
            if already_posted:
                raise ValidationError(f"Commissions for loan {loan.id} were already posted")

            if split.creditor_amount.is_positive():
                entries.append(self.post_entry(
                    loan.creditor_id, CashFlowDirection.CREDIT, CashFlowCategory.COMMISSION,
                    split.creditor_amount, f"Creditor commission ({split.creditor_rate}%) - loan {loan.id}",
                    loan_id=loan.id
                ))

            if split.manager_amount.is_positive():
                manager = self.get_manager()
                if manager is None:
                    raise ValidationError("No manager creditor registered to receive the manager commission")
                entries.append(self.post_entry(
                    manager.id, CashFlowDirection.CREDIT, CashFlowCategory.MANAGER_COMMISSION,
                    split.manager_amount, f"Manager commission ({split.manager_rate}%) - loan {loan.id}",
                    loan_id=loan.id
                ))

            if split.intermediary_amount.is_positive() and loan.creditor_id:
                entries.append(self.post_entry(
                    loan.creditor_id, CashFlowDirection.DEBIT, CashFlowCategory.INTERMEDIARY_COMMISSION,
                    split.intermediary_amount,
                    f"Intermediary commission ({split.intermediary_rate}%) - route {loan.route_id} - loan {loan.id}",
                    loan_id=loan.id
                ))

            self._audit(AuditEventType.COMMISSIONS_POSTED, "loan", loan.id, split.to_dict())

        return entries

    # Serialization helpers

    def _audit(self, event_type: AuditEventType, entity_type: str, entity_id: str,
               metadata: Dict[str, Any]) -> None:
        if self.audit_trail:
            self.audit_trail.log_event(event_type, entity_type, entity_id, metadata)

    def _save_creditor(self, creditor: Creditor) -> None:
        self.storage.save(self.CREDITORS_TABLE, creditor.id, self._creditor_to_dict(creditor))

    def _creditor_to_dict(self, creditor: Creditor) -> Dict[str, Any]:
        return {
            "id": creditor.id,
            "created_at": creditor.created_at.isoformat(),
            "updated_at": creditor.updated_at.isoformat(),
            "name": creditor.name,
            "balance": str(creditor.balance.amount),
            "currency": creditor.balance.currency.code,
            "is_manager": creditor.is_manager,
            "user_id": creditor.user_id,
        }

    def _creditor_from_dict(self, data: Dict[str, Any]) -> Creditor:
        currency = Currency[data.get("currency", self.currency.code)]
        return Creditor(
            id=data["id"],
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            name=data["name"],
            balance=Money(Decimal(data["balance"]), currency),
            is_manager=data.get("is_manager", False),
            user_id=data.get("user_id"),
        )

    def _entry_to_dict(self, entry: CashFlowEntry) -> Dict[str, Any]:
        return {
            "id": entry.id,
            "created_at": entry.created_at.isoformat(),
            "updated_at": entry.updated_at.isoformat(),
            "creditor_id": entry.creditor_id,
            "direction": entry.direction.value,
            "category": entry.category.value,
            "amount": str(entry.amount.amount),
            "currency": entry.amount.currency.code,
            "description": entry.description,
            "loan_id": entry.loan_id,
            "installment_id": entry.installment_id,
        }

    def _entry_from_dict(self, data: Dict[str, Any]) -> CashFlowEntry:
        currency = Currency[data.get("currency", self.currency.code)]
        return CashFlowEntry(
            id=data["id"],
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            creditor_id=data["creditor_id"],
            direction=CashFlowDirection(data["direction"]),
            category=CashFlowCategory(data["category"]),
            amount=Money(Decimal(data["amount"]), currency),
            description=data.get("description", ""),
            loan_id=data.get("loan_id"),
            installment_id=data.get("installment_id"),
        )
