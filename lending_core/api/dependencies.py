"""
Shared API dependencies: the lending system instance and error mapping
"""

from typing import Optional

from fastapi import HTTPException

from ..errors import (
    ConsistencyError, InsufficientBalanceError, LendingError, NotFoundError,
)
from ..logging_config import get_logger
from ..system import LendingSystem


logger = get_logger("lending.api")

# Global lending system instance, created on first use
lending_system: Optional[LendingSystem] = None


def get_lending_system() -> LendingSystem:
    global lending_system
    if lending_system is None:
        lending_system = LendingSystem()
    return lending_system


def http_error(exc: LendingError) -> HTTPException:
    """Map an engine error onto an HTTP error response"""
    if isinstance(exc, NotFoundError):
        status_code = 404
    elif isinstance(exc, (InsufficientBalanceError, ConsistencyError)):
        status_code = 409
    else:
        status_code = 400
    if status_code == 409:
        logger.warning(f"{exc.__class__.__name__}: {exc.message}")
    return HTTPException(status_code=status_code, detail=exc.to_dict())
