"""
Simple exception classes for the application.
"""

from fastapi import HTTPException, status


class ValidationError(HTTPException):
    """Raised when input validation fails."""

    def __init__(self, message: str):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=message
        )


class UnauthorizedError(HTTPException):
    """Raised when a request carries no acceptable credential."""

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=message
        )


class NotFoundError(HTTPException):
    """Raised when a requested resource is not found."""

    def __init__(self, resource_type: str, resource_id):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource_type} not found"
        )
        self.resource_id = resource_id


class ConflictError(HTTPException):
    """Raised when there's a conflict with existing data."""

    def __init__(self, message: str):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=message
        )


class DatabaseError(HTTPException):
    """Raised when database operations fail."""

    def __init__(self, message: str = "Database operation failed"):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=message
        )


class ExternalServiceError(HTTPException):
    """Raised when external service calls fail."""

    def __init__(self, service_name: str, message: str):
        super().__init__(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"{service_name} service error: {message}"
        )


# Specific domain exceptions
class TransactionNotFoundError(NotFoundError):
    """Raised when a bank transaction is not found."""

    def __init__(self, transaction_id: int):
        super().__init__("Transaction", transaction_id)


class FeeNotFoundError(NotFoundError):
    """Raised when a fee is not found."""

    def __init__(self, fee_id: int):
        super().__init__("Fee", fee_id)


class ChildNotFoundError(NotFoundError):
    """Raised when a child is not found."""

    def __init__(self, child_id: int):
        super().__init__("Child", child_id)


class WarningNotFoundError(NotFoundError):
    """Raised when a transaction warning is not found."""

    def __init__(self, warning_id: int):
        super().__init__("Warning", warning_id)


class KnownIBANNotFoundError(NotFoundError):
    """Raised when an IBAN is not in the registry."""

    def __init__(self, iban: str):
        super().__init__("Known IBAN", iban)


class IllegalTransitionError(ValidationError):
    """Raised when a match state change is not allowed."""

    def __init__(self, current: str, target: str):
        super().__init__(f"Cannot move transaction from '{current}' to '{target}'")
        self.current = current
        self.target = target


class AllocationError(ValidationError):
    """Raised when an allocation request is inconsistent."""


class ConcurrentModificationError(ConflictError):
    """Raised when a row was changed by someone else in the meantime."""

    def __init__(self, resource_type: str = "Transaction"):
        super().__init__(f"{resource_type} was modified concurrently, reload and retry")


class SyncInProgressError(ConflictError):
    """Raised when a sync pass is already running for the banking configuration."""

    def __init__(self):
        super().__init__("A bank sync is already in progress")


class BankingNotConfiguredError(ValidationError):
    """Raised when banking is not configured or sync is disabled."""


class SecretDecryptionError(Exception):
    """Raised when the stored bank secret cannot be decrypted."""


class AcquisitionError(ExternalServiceError):
    """Raised when the bank transaction source fails."""

    def __init__(self, message: str):
        super().__init__("Bank acquisition", message)


class CSVFormatError(ValidationError):
    """Raised when an uploaded bank CSV cannot be read."""
