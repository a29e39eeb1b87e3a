"""
Loan endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, status

from .dependencies import get_lending_system, http_error
from .schemas import (
    AppendInstallmentsRequest, CancelLoanRequest, CreateLoanRequest, RenewLoanRequest,
    entry_response, installment_response, loan_response, parse_enum, parse_money,
)
from ..cash_flow import COMMISSION_CATEGORIES
from ..errors import LendingError
from ..loans import LoanStatus
from ..system import LendingSystem


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_loan(
    request: CreateLoanRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Originate a loan with its installments and disbursement"""
    try:
        loan = system.loan_manager.create_loan(request.to_loan_request())
        today = system.clock.today()
        return {
            "loan": loan_response(loan),
            "installments": [
                installment_response(i, today) for i in system.ledger.get_loan_installments(loan.id)
            ],
            "message": "Loan created successfully"
        }

    except LendingError as e:
        raise http_error(e)


@router.get("")
async def list_loans(
    status: Optional[str] = None,
    customer_id: Optional[str] = None,
    creditor_id: Optional[str] = None,
    system: LendingSystem = Depends(get_lending_system)
):
    """List loans, optionally filtered"""
    try:
        loan_status = parse_enum(LoanStatus, status) if status else None
        loans = system.loan_manager.list_loans(loan_status, customer_id, creditor_id)
        return {"loans": [loan_response(loan) for loan in loans], "total_count": len(loans)}

    except LendingError as e:
        raise http_error(e)


@router.get("/consistency")
async def check_consistency(system: LendingSystem = Depends(get_lending_system)):
    """Loans whose installment count differs from their configured count"""
    problems = system.loan_manager.check_installment_consistency()
    return {"consistent": not problems, "problems": problems}


@router.get("/{loan_id}")
async def get_loan(
    loan_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Get loan details"""
    try:
        return loan_response(system.loan_manager.get_loan(loan_id))

    except LendingError as e:
        raise http_error(e)


@router.get("/{loan_id}/summary")
async def get_loan_summary(
    loan_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Scheduled, paid and outstanding figures"""
    try:
        return system.ledger.loan_balance_summary(loan_id)

    except LendingError as e:
        raise http_error(e)


@router.post("/{loan_id}/cancel")
async def cancel_loan(
    loan_id: str,
    request: CancelLoanRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Cancel an active loan with nothing paid"""
    try:
        loan = system.loan_manager.cancel_loan(loan_id, request.reason)
        return {"loan": loan_response(loan), "message": "Loan cancelled"}

    except LendingError as e:
        raise http_error(e)


@router.get("/{loan_id}/installments")
async def get_loan_installments(
    loan_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Installments of a loan ordered by number"""
    try:
        system.loan_manager.get_loan(loan_id)
        today = system.clock.today()
        installments = system.ledger.get_loan_installments(loan_id)
        return {
            "loan_id": loan_id,
            "installments": [installment_response(i, today) for i in installments],
            "total_count": len(installments)
        }

    except LendingError as e:
        raise http_error(e)


@router.post("/{loan_id}/installments", status_code=status.HTTP_201_CREATED)
async def append_installments(
    loan_id: str,
    request: AppendInstallmentsRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Add installments to the end of an active loan"""
    try:
        created = system.ledger.append_installments(
            loan_id, parse_money(request.value), request.count, request.start_date
        )
        today = system.clock.today()
        return {"installments": [installment_response(i, today) for i in created]}

    except LendingError as e:
        raise http_error(e)


@router.post("/{loan_id}/settle")
async def settle_loan(
    loan_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Pay every open installment and complete the loan"""
    try:
        result = system.ledger.settle_all(loan_id)
        today = system.clock.today()
        return {
            "loan": loan_response(result.loan),
            "settled": [installment_response(i, today) for i in result.settled],
            "total_settled": str(result.total_settled.amount),
            "renewal_draft": result.renewal_draft.to_dict() if result.renewal_draft else None,
        }

    except LendingError as e:
        raise http_error(e)


@router.get("/{loan_id}/renewal-draft")
async def get_renewal_draft(
    loan_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Prefilled parameters for renewing a completed loan"""
    try:
        return system.ledger.renewal_draft(loan_id).to_dict()

    except LendingError as e:
        raise http_error(e)


@router.post("/{loan_id}/renew", status_code=status.HTTP_201_CREATED)
async def renew_loan(
    loan_id: str,
    request: RenewLoanRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Originate a new loan from a completed one"""
    try:
        loan = system.loan_manager.renew_loan(loan_id, request.start_date, request.first_due_date)
        return {"loan": loan_response(loan), "message": "Loan renewed"}

    except LendingError as e:
        raise http_error(e)


@router.get("/{loan_id}/commissions")
async def get_commission_split(
    loan_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Commission split of a loan and any entries already posted"""
    try:
        loan = system.loan_manager.get_loan(loan_id)
        split = system.allocator.compute_commission_split(loan)
        posted = [
            e for e in system.allocator.get_entries(loan_id=loan_id)
            if e.category in COMMISSION_CATEGORIES
        ]
        return {"split": split.to_dict(), "posted": [entry_response(e) for e in posted]}

    except LendingError as e:
        raise http_error(e)


@router.post("/{loan_id}/commissions", status_code=status.HTTP_201_CREATED)
async def post_commissions(
    loan_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Post a loan's commission split to the cash-flow ledger"""
    try:
        loan = system.loan_manager.get_loan(loan_id)
        entries = system.allocator.post_commission_split(loan)
        return {"entries": [entry_response(e) for e in entries]}

    except LendingError as e:
        raise http_error(e)
