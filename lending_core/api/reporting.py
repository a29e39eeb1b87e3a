"""
Reporting and audit endpoints
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from .dependencies import get_lending_system
from .schemas import installment_response
from ..system import LendingSystem


router = APIRouter()


@router.get("/dashboard")
async def get_dashboard(
    today: Optional[date] = None,
    upcoming_limit: int = 10,
    system: LendingSystem = Depends(get_lending_system)
):
    """Portfolio figures for the dashboard"""
    return system.reporter.dashboard(today, upcoming_limit)


@router.get("/overdue")
async def get_overdue_installments(system: LendingSystem = Depends(get_lending_system)):
    """Unpaid installments past their due date"""
    today = system.clock.today()
    overdue = system.reporter.overdue_installments(today)
    return {
        "date": today.isoformat(),
        "installments": [installment_response(i, today) for i in overdue],
        "total_count": len(overdue)
    }


@router.get("/audit-integrity")
async def verify_audit_integrity(system: LendingSystem = Depends(get_lending_system)):
    """Verify the hash chain of the audit trail"""
    if system.audit_trail is None:
        raise HTTPException(status_code=404, detail="Audit logging is disabled")
    return system.audit_trail.verify_integrity()
