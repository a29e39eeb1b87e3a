"""
Periodicity catalogue endpoints
"""

from fastapi import APIRouter, Depends, status

from .dependencies import get_lending_system, http_error
from .schemas import (
    CreatePeriodicityRequest, PreviewDueDatesRequest, UpdatePeriodicityRequest,
    ValidateStartDateRequest, periodicity_response,
)
from ..errors import LendingError
from ..periodicity import describe_periodicity, generate_due_dates, validate_start_date
from ..system import LendingSystem


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_periodicity(
    request: CreatePeriodicityRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Add a periodicity to the catalogue"""
    try:
        periodicity = system.periodicity_manager.create_periodicity(
            request.name, request.to_rule(), request.description
        )
        return periodicity_response(periodicity)

    except LendingError as e:
        raise http_error(e)


@router.get("")
async def list_periodicities(
    active_only: bool = True,
    system: LendingSystem = Depends(get_lending_system)
):
    """List catalogue periodicities"""
    periodicities = system.periodicity_manager.list_periodicities(active_only=active_only)
    return {
        "periodicities": [periodicity_response(p) for p in periodicities],
        "total_count": len(periodicities)
    }


@router.post("/seed")
async def seed_periodicities(system: LendingSystem = Depends(get_lending_system)):
    """Create the standard presets missing from the catalogue"""
    try:
        created = system.periodicity_manager.seed_standard()
        return {"created": [periodicity_response(p) for p in created]}

    except LendingError as e:
        raise http_error(e)


@router.post("/preview")
async def preview_due_dates(
    request: PreviewDueDatesRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Due dates a periodicity would produce from a start date"""
    try:
        rule = request.periodicity.to_rule()
        dates = generate_due_dates(rule, request.start_date, request.count,
                                   system.config.max_schedule_rejections)
        return {
            "description": describe_periodicity(rule),
            "due_dates": [d.isoformat() for d in dates]
        }

    except LendingError as e:
        raise http_error(e)


@router.post("/validate-start-date")
async def check_start_date(request: ValidateStartDateRequest):
    """Whether a start date is allowed, with a suggested alternative"""
    try:
        is_valid, suggested, message = validate_start_date(request.periodicity.to_rule(), request.start_date)
        return {
            "is_valid": is_valid,
            "suggested_date": suggested.isoformat() if suggested else None,
            "message": message
        }

    except LendingError as e:
        raise http_error(e)


@router.get("/{periodicity_id}")
async def get_periodicity(
    periodicity_id: str,
    system: LendingSystem = Depends(get_lending_system)
):
    """Get a periodicity"""
    try:
        return periodicity_response(system.periodicity_manager.get_periodicity(periodicity_id))

    except LendingError as e:
        raise http_error(e)


@router.patch("/{periodicity_id}")
async def update_periodicity(
    periodicity_id: str,
    request: UpdatePeriodicityRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Rename, (de)activate or change the rule of an unused periodicity"""
    try:
        periodicity = system.periodicity_manager.update_periodicity(
            periodicity_id,
            rule=request.rule.to_rule() if request.rule else None,
            name=request.name,
            is_active=request.is_active
        )
        return periodicity_response(periodicity)

    except LendingError as e:
        raise http_error(e)
