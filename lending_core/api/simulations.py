"""
Loan simulation endpoints
"""

from fastapi import APIRouter, Depends

from .dependencies import get_lending_system, http_error
from .schemas import SimulateRequest
from ..amortization import METHOD_LABELS
from ..errors import LendingError
from ..system import LendingSystem


router = APIRouter()


@router.post("")
async def simulate_loan(
    request: SimulateRequest,
    system: LendingSystem = Depends(get_lending_system)
):
    """Preview a loan schedule without persisting anything"""
    try:
        result = system.loan_manager.simulate(request.to_loan_request())
        return result.to_dict()

    except LendingError as e:
        raise http_error(e)


@router.get("/methods")
async def list_methods():
    """Supported amortization methods"""
    return {
        "methods": [
            {"value": method.value, "label": label}
            for method, label in METHOD_LABELS.items()
        ]
    }
