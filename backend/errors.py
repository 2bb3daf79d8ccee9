"""
Marketplace exceptions.

Services raise these; main.py renders them into the JSON envelope
with the matching HTTP status.
"""


class MarketplaceError(Exception):
    """Base exception for all marketplace rule violations."""
    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(MarketplaceError):
    """
    Raised when a payload is malformed or references something that does
    not exist (e.g. an inquiry against an unknown listing id).
    """
    status_code = 400

    def __init__(self, message: str, field: str = None):
        self.field = field
        super().__init__(message)


class NotFoundError(MarketplaceError):
    """Raised when the entity addressed by the request is absent."""
    status_code = 404


class StateConflictError(MarketplaceError):
    """
    Raised when an operation is not legal in the current workflow state,
    e.g. advancing a phase with outstanding required tasks or responding
    to a rejected inquiry.
    """
    status_code = 409


class PermissionDeniedError(MarketplaceError):
    """Raised when the caller's role or relationship does not allow the operation."""
    status_code = 403
