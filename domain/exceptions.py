"""Domain Exceptions

All domain errors derive from ValueError so callers that only care about
"the request was rejected" can keep catching ValueError.
"""
from typing import Any, List, Optional


class DomainError(ValueError):
    """Base class for rejected domain operations"""
    code = "DOMAIN_ERROR"

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(DomainError):
    """Malformed input: missing ids, non-positive quantity, bad window"""
    code = "VALIDATION_ERROR"


class InvalidWindowError(ValidationError):
    code = "INVALID_DATE_RANGE"


class NotFoundError(DomainError):
    code = "NOT_FOUND"

    def __init__(self, resource: str, identifier: Any):
        super().__init__(f"{resource} not found: {identifier}")
        self.resource = resource
        self.identifier = identifier


class IllegalTransitionError(DomainError):
    """Attempted state change the lifecycle does not allow"""
    code = "ILLEGAL_TRANSITION"


class CapacityConflictError(DomainError):
    """Raised at commit time when a write would exceed inventory"""
    code = "INSUFFICIENT_INVENTORY"

    def __init__(self, message: str, conflicts: List[Any]):
        super().__init__(message, details=conflicts)
        self.conflicts = conflicts


class PaymentProviderError(DomainError):
    """Payment collaborator unreachable, timed out or declined"""
    code = "EXTERNAL_SERVICE_ERROR"


class CodeGenerationError(DomainError):
    """No unused reservation code could be drawn"""
    code = "CODE_GENERATION_FAILED"
