"""
Creditor and cash-flow endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, status

from .dependencies import get_lending_system, http_error
from .schemas import (
    CashFlowEntryRequest, CreateCreditorRequest, creditor_response, entry_response,
    parse_category, parse_money,
)
from ..errors import LendingError
from ..system import LendingSystem


router = APIRouter()
cash_flow_router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_creditor(
    request: CreateCreditorRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Register a creditor, optionally with an opening deposit"""
    try:
        initial_deposit = parse_money(request.initial_deposit) if request.initial_deposit else None
        creditor = system.allocator.register_creditor(
            request.name,
            is_manager=request.is_manager,
            user_id=request.user_id,
            initial_deposit=initial_deposit
        )
        return creditor_response(creditor)

    except LendingError as e:
        raise http_error(e)


@router.get("")
async def list_creditors(system: LendingSystem = Depends(get_lending_system)):
    """List creditors"""
    creditors = system.allocator.list_creditors()
    return {"creditors": [creditor_response(c) for c in creditors], "total_count": len(creditors)}


@router.get("/{creditor_id}")
async def get_creditor(
    creditor_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Get creditor details"""
    try:
        return creditor_response(system.allocator.get_creditor(creditor_id))

    except LendingError as e:
        raise http_error(e)


@router.get("/{creditor_id}/balance")
async def get_creditor_balance(
    creditor_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Cached balance checked against the raw cash-flow entries"""
    try:
        return system.allocator.verify_balance(creditor_id)

    except LendingError as e:
        raise http_error(e)


@router.post("/{creditor_id}/manager")
async def set_manager(
    creditor_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Make a creditor the capital manager"""
    try:
        return creditor_response(system.allocator.set_manager(creditor_id, True))

    except LendingError as e:
        raise http_error(e)


@router.delete("/{creditor_id}/manager")
async def unset_manager(
    creditor_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Remove the manager flag from a creditor"""
    try:
        return creditor_response(system.allocator.set_manager(creditor_id, False))

    except LendingError as e:
        raise http_error(e)


@cash_flow_router.post("", status_code=status.HTTP_201_CREATED)
async def post_cash_flow_entry(
    request: CashFlowEntryRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Post a manual movement (deposit, withdrawal, commission, disbursement)"""
    try:
        entry = system.allocator.post_manual_entry(
            request.creditor_id,
            parse_category(request.category),
            parse_money(request.amount),
            request.description
        )
        return entry_response(entry)

    except LendingError as e:
        raise http_error(e)


@cash_flow_router.get("")
async def list_cash_flow_entries(
    creditor_id: Optional[str] = None,
    loan_id: Optional[str] = None,
    category: Optional[str] = None,
    system: LendingSystem = Depends(get_lending_system)
):
    """List cash-flow entries, oldest first"""
    try:
        entries = system.allocator.get_entries(
            creditor_id=creditor_id,
            loan_id=loan_id,
            category=parse_category(category) if category else None
        )
        return {"entries": [entry_response(e) for e in entries], "total_count": len(entries)}

    except LendingError as e:
        raise http_error(e)
