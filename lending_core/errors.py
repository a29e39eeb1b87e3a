"""
Error Taxonomy Module

Every failure raised by the engine derives from LendingError. The base
class subclasses ValueError so callers that guard with ``except ValueError``
keep working.
"""

from typing import Any, Dict, Optional


class LendingError(ValueError):
    """Base class for all lending engine errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(LendingError):
    """Input or state precondition violated"""


class ConfigurationError(ValidationError):
    """Periodicity or engine configuration is invalid or unsatisfiable"""


class NotFoundError(ValidationError):
    """Referenced entity does not exist"""

    def __init__(self, entity_type: str, entity_id: str):
        super().__init__(
            f"{entity_type} {entity_id} not found",
            {"entity_type": entity_type, "entity_id": entity_id},
        )
        self.entity_type = entity_type
        self.entity_id = entity_id


class InsufficientBalanceError(LendingError):
    """Creditor balance does not cover a disbursement"""

    def __init__(self, creditor_id: str, available, required):
        super().__init__(
            f"Creditor {creditor_id} has insufficient balance: "
            f"available {available}, required {required}",
            {"creditor_id": creditor_id, "available": str(available), "required": str(required)},
        )
        self.creditor_id = creditor_id


class ConsistencyError(LendingError):
    """Concurrent modification or persisted state mismatch"""
