"""
Custom Application Exceptions
"""
from decimal import Decimal
from typing import Any, Dict, Optional


class MillStockException(Exception):
    """Base exception for the stock ledger"""
    pass


class ValidationError(MillStockException):
    """
    Raised when a movement proposal is rejected.

    Subclasses carry enough context for the caller to correct and resubmit.
    """

    code = "validation_error"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> Dict[str, Any]:
        payload = {"code": self.code, "message": self.message}
        for key, value in self.context.items():
            payload[key] = str(value) if isinstance(value, Decimal) else value
        return payload


class InvalidArgument(ValidationError):
    """Raised when input is malformed (bad cutoff, non-positive bags, missing field)"""
    code = "invalid_argument"


class VarietyMismatch(ValidationError):
    """Raised when the destination's allotted variety differs from the event variety"""
    code = "variety_mismatch"

    def __init__(self, message: str, expected: str, actual: str, **context: Any):
        super().__init__(message, expected=expected, actual=actual, **context)
        self.expected = expected
        self.actual = actual


class VarietyConflict(ValidationError):
    """Raised when the destination already holds admitted stock of another variety"""
    code = "variety_conflict"

    def __init__(self, message: str, existing: str, incoming: str, **context: Any):
        super().__init__(message, existing=existing, incoming=incoming, **context)
        self.existing = existing
        self.incoming = incoming


class SourceStockNotFound(ValidationError):
    """Raised when the source location never received the variety"""
    code = "source_stock_not_found"


class InsufficientStock(ValidationError):
    """Raised when the source balance is below the requested bags"""
    code = "insufficient_stock"

    def __init__(self, message: str, available: int, requested: int, **context: Any):
        super().__init__(message, available=available, requested=requested, **context)
        self.available = available
        self.requested = requested


class OutturnVarietyMismatch(ValidationError):
    """Raised when the outturn's allotted variety differs from the event variety"""
    code = "outturn_variety_mismatch"

    def __init__(self, message: str, expected: str, actual: str, **context: Any):
        super().__init__(message, expected=expected, actual=actual, **context)
        self.expected = expected
        self.actual = actual


class BusinessLogicError(MillStockException):
    """Raised when a workflow transition is not allowed"""
    pass


class InsufficientPermissionsError(MillStockException):
    """Raised when the acting role may not perform the operation"""
    pass


class RecordNotFound(MillStockException):
    """Raised when a referenced record does not exist"""

    def __init__(self, entity: str, key: Any):
        super().__init__(f"{entity} {key} not found")
        self.entity = entity
        self.key = key


class StoreUnavailable(MillStockException):
    """Raised when the event store cannot be reached or a statement times out"""

    def __init__(self, message: str, original: Optional[BaseException] = None):
        super().__init__(message)
        self.original = original


class ProjectionError(MillStockException):
    """Raised by a derived projection; logged, never propagated to the admission"""
    pass
