"""
Pydantic schemas for API requests and responses
"""

from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..amortization import AmortizationMethod
from ..cash_flow import CashFlowCategory, CashFlowEntry, Creditor
from ..currency import Money, to_decimal
from ..errors import ValidationError
from ..installments import Installment
from ..loans import Loan, LoanRequest
from ..periodicity import IntervalType, Periodicity, PeriodicityRule, describe_periodicity


def parse_money(value: str) -> Money:
    try:
        return Money(to_decimal(value))
    except ValueError as exc:
        raise ValidationError(str(exc))


def parse_decimal(value: str) -> Decimal:
    try:
        return to_decimal(value)
    except ValueError as exc:
        raise ValidationError(str(exc))


def parse_enum(enum_cls, value: str):
    try:
        return enum_cls(value.lower())
    except ValueError:
        options = ", ".join(member.value for member in enum_cls)
        raise ValidationError(f"Invalid value '{value}'; expected one of: {options}")


class PeriodicityModel(BaseModel):
    interval_type: str = Field(..., description="daily, weekly, monthly or yearly")
    interval_value: int = Field(1, description="Repeat every N units")
    allowed_weekdays: List[int] = Field(default_factory=list, description="0=Sunday ... 6=Saturday")
    allowed_month_days: List[int] = Field(default_factory=list, description="1-31")
    allowed_months: List[int] = Field(default_factory=list, description="1-12")

    def to_rule(self) -> PeriodicityRule:
        return PeriodicityRule(
            interval_type=parse_enum(IntervalType, self.interval_type),
            interval_value=self.interval_value,
            allowed_weekdays=list(self.allowed_weekdays),
            allowed_month_days=list(self.allowed_month_days),
            allowed_months=list(self.allowed_months),
        )


class SimulateRequest(BaseModel):
    method: str = Field(..., description="price, sac, simple_interest, recurring_simple_interest, interest_only")
    principal: str = Field(..., description="Decimal amount as string")
    interest_rate: str = Field(..., description="Periodic rate in percent, e.g. '2' for 2%")
    installment_count: int = Field(..., description="Number of installments")
    start_date: date
    first_due_date: Optional[date] = None
    periodicity_id: Optional[str] = None
    periodicity: Optional[PeriodicityModel] = None

    def to_loan_request(self, **extra) -> LoanRequest:
        return LoanRequest(
            principal=parse_money(self.principal),
            method=parse_enum(AmortizationMethod, self.method),
            interest_rate=parse_decimal(self.interest_rate),
            installment_count=self.installment_count,
            start_date=self.start_date,
            first_due_date=self.first_due_date,
            periodicity_id=self.periodicity_id,
            periodicity_rule=self.periodicity.to_rule() if self.periodicity else None,
            **extra
        )


class CreateLoanRequest(SimulateRequest):
    customer_id: str
    creditor_id: Optional[str] = None
    route_id: Optional[str] = None
    intermediary_rate: str = Field("0", description="Intermediary commission in percent")
    creditor_rate: str = Field("0", description="Creditor commission in percent")
    observation: Optional[str] = None

    def to_loan_request(self) -> LoanRequest:
        return super().to_loan_request(
            customer_id=self.customer_id,
            creditor_id=self.creditor_id,
            route_id=self.route_id,
            intermediary_rate=parse_decimal(self.intermediary_rate),
            creditor_rate=parse_decimal(self.creditor_rate),
            observation=self.observation,
        )


class CancelLoanRequest(BaseModel):
    reason: str = ""


class RenewLoanRequest(BaseModel):
    start_date: Optional[date] = None
    first_due_date: Optional[date] = None


class PayInstallmentRequest(BaseModel):
    amount: str = Field(..., description="Amount paid, decimal string")
    fine_amount: Optional[str] = Field(None, description="Full fine figure; keeps the current fine when omitted")
    payment_date: Optional[date] = None
    expected_version: Optional[int] = None


class ApplyFineRequest(BaseModel):
    amount: str = Field(..., description="Fine increment, decimal string")
    reason: str = ""


class AppendInstallmentsRequest(BaseModel):
    value: str = Field(..., description="Scheduled amount of each new installment")
    count: int = Field(..., description="Number of installments to add")
    start_date: date


class CreateCreditorRequest(BaseModel):
    name: str
    is_manager: bool = False
    user_id: Optional[str] = None
    initial_deposit: Optional[str] = None


class CashFlowEntryRequest(BaseModel):
    creditor_id: str
    category: str = Field(..., description="deposit, withdrawal, commission or loan_disbursement")
    amount: str
    description: str = ""


class CreatePeriodicityRequest(PeriodicityModel):
    name: str
    description: Optional[str] = None


class UpdatePeriodicityRequest(BaseModel):
    name: Optional[str] = None
    is_active: Optional[bool] = None
    rule: Optional[PeriodicityModel] = None


class PreviewDueDatesRequest(BaseModel):
    periodicity: PeriodicityModel
    start_date: date
    count: int


class ValidateStartDateRequest(BaseModel):
    periodicity: PeriodicityModel
    start_date: date


# Response builders

def money_str(money: Money) -> str:
    return str(money.amount)


def loan_response(loan: Loan) -> Dict[str, Any]:
    return {
        "id": loan.id,
        "customer_id": loan.customer_id,
        "status": loan.status.value,
        "principal": money_str(loan.principal),
        "method": loan.method.value,
        "interest_rate": str(loan.interest_rate),
        "installment_count": loan.installment_count,
        "installment_value": money_str(loan.installment_value),
        "total_amount": money_str(loan.total_amount),
        "total_interest": money_str(loan.total_interest),
        "start_date": loan.start_date.isoformat(),
        "first_due_date": loan.first_due_date.isoformat(),
        "periodicity_id": loan.periodicity_id,
        "periodicity": loan.periodicity_rule.to_dict(),
        "periodicity_description": describe_periodicity(loan.periodicity_rule),
        "creditor_id": loan.creditor_id,
        "route_id": loan.route_id,
        "intermediary_rate": str(loan.intermediary_rate),
        "creditor_rate": str(loan.creditor_rate),
        "observation": loan.observation,
        "renewed_from_loan_id": loan.renewed_from_loan_id,
    }


def installment_response(installment: Installment, today: date) -> Dict[str, Any]:
    return {
        "id": installment.id,
        "loan_id": installment.loan_id,
        "number": installment.number,
        "due_date": installment.due_date.isoformat(),
        "amount": money_str(installment.amount),
        "principal_portion": money_str(installment.principal_portion),
        "interest_portion": money_str(installment.interest_portion),
        "fine_amount": money_str(installment.fine_amount),
        "paid_amount": money_str(installment.paid_amount),
        "status": installment.status.value,
        "display_status": installment.display_status(today).value,
        "days_overdue": installment.days_overdue(today),
        "paid_at": installment.paid_at.isoformat() if installment.paid_at else None,
        "appended": installment.appended,
        "version": installment.version,
    }


def creditor_response(creditor: Creditor) -> Dict[str, Any]:
    return {
        "id": creditor.id,
        "name": creditor.name,
        "is_manager": creditor.is_manager,
        "balance": money_str(creditor.balance),
        "user_id": creditor.user_id,
    }


def entry_response(entry: CashFlowEntry) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "creditor_id": entry.creditor_id,
        "direction": entry.direction.value,
        "category": entry.category.value,
        "amount": money_str(entry.amount),
        "description": entry.description,
        "loan_id": entry.loan_id,
        "installment_id": entry.installment_id,
        "created_at": entry.created_at.isoformat(),
    }


def periodicity_response(periodicity: Periodicity) -> Dict[str, Any]:
    return {
        "id": periodicity.id,
        "name": periodicity.name,
        "description": periodicity.description,
        "is_active": periodicity.is_active,
        **periodicity.rule.to_dict(),
    }


def parse_category(value: str) -> CashFlowCategory:
    return parse_enum(CashFlowCategory, value)
