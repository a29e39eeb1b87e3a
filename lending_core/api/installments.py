"""
Installment endpoints
"""

from fastapi import APIRouter, Depends

from .dependencies import get_lending_system, http_error
from .schemas import ApplyFineRequest, PayInstallmentRequest, installment_response, parse_money
from ..errors import LendingError
from ..system import LendingSystem


router = APIRouter()


@router.get("/{installment_id}")
async def get_installment(
    installment_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Get installment details"""
    try:
        installment = system.ledger.get_installment(installment_id)
        return installment_response(installment, system.clock.today())

    except LendingError as e:
        raise http_error(e)


@router.post("/{installment_id}/pay")
async def pay_installment(
    installment_id: str,
    request: PayInstallmentRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Record payment of an installment"""
    try:
        fine_amount = parse_money(request.fine_amount) if request.fine_amount is not None else None
        installment = system.ledger.pay(
            installment_id,
            parse_money(request.amount),
            fine_amount=fine_amount,
            payment_date=request.payment_date,
            expected_version=request.expected_version
        )
        return installment_response(installment, system.clock.today())

    except LendingError as e:
        raise http_error(e)


@router.post("/{installment_id}/fine")
async def apply_fine(
    installment_id: str,
    request: ApplyFineRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Add a fine to an unpaid installment"""
    try:
        installment = system.ledger.apply_fine(installment_id, parse_money(request.amount), request.reason)
        return installment_response(installment, system.clock.today())

    except LendingError as e:
        raise http_error(e)


@router.get("/{installment_id}/fines")
async def get_fine_history(
    installment_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Fines applied to an installment, oldest first"""
    try:
        system.ledger.get_installment(installment_id)
        return {
            "installment_id": installment_id,
            "fines": [
                {
                    "id": record.id,
                    "amount": str(record.amount.amount),
                    "reason": record.reason,
                    "fine_after": str(record.fine_after.amount),
                    "created_at": record.created_at.isoformat(),
                }
                for record in system.ledger.get_fine_history(installment_id)
            ]
        }

    except LendingError as e:
        raise http_error(e)


@router.post("/{installment_id}/reverse")
async def reverse_payment(
    installment_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Undo the payment of an installment"""
    try:
        installment = system.ledger.reverse(installment_id)
        return installment_response(installment, system.clock.today())

    except LendingError as e:
        raise http_error(e)
