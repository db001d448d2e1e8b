"""
Custom exception classes and error handling utilities.
"""
from typing import Optional, Dict, Any
from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse


class CreditLedgerException(Exception):
    """Base exception class for the credit ledger service."""

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class AuthorizationError(CreditLedgerException):
    """Authorization related errors."""

    def __init__(self, message: str = "Access denied"):
        super().__init__(
            message=message,
            status_code=status.HTTP_403_FORBIDDEN
        )


class ValidationError(CreditLedgerException):
    """Data validation errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message,
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details=details
        )


class NotFoundError(CreditLedgerException):
    """Resource not found errors."""

    def __init__(self, resource: str, identifier: str = ""):
        message = f"{resource} not found"
        if identifier:
            message += f": {identifier}"
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND
        )


class PricingNotFoundError(CreditLedgerException):
    """No active pricing tier for a provider/operation pair."""

    def __init__(self, provider: str, operation: str):
        self.provider = provider
        self.operation = operation
        super().__init__(
            message=f"No active pricing for {provider}/{operation}",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"provider": provider, "operation": operation}
        )


class InsufficientCreditsError(CreditLedgerException):
    """Insufficient credits for operation."""

    def __init__(self, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(
            message=f"Insufficient credits. Required: {required}, Available: {available}",
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            details={"required_credits": required, "available_credits": available}
        )


class PaymentError(CreditLedgerException):
    """Payment and billing related errors."""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            status_code=status.HTTP_402_PAYMENT_REQUIRED
        )


class StorageUnavailableError(CreditLedgerException):
    """The ledger store could not be reached."""

    def __init__(self, operation: str, message: str = "Ledger storage is unavailable"):
        self.operation = operation
        super().__init__(
            message=message,
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            details={"operation": operation, "retryable": True}
        )


class UnexpectedLedgerError(CreditLedgerException):
    """Any other failure reading or writing the ledger."""

    def __init__(self, operation: str, message: str = "Ledger operation failed"):
        self.operation = operation
        super().__init__(
            message=message,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            details={"operation": operation}
        )


# Exception handlers
async def ledger_exception_handler(request: Request, exc: CreditLedgerException) -> JSONResponse:
    """Global exception handler for ledger exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "message": exc.message,
                "type": exc.__class__.__name__,
                "details": exc.details,
                "status_code": exc.status_code
            }
        }
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for framework HTTP errors (auth header problems, 404 routes)."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": {
                "message": exc.detail,
                "type": "HTTPException",
                "status_code": exc.status_code
            }
        },
        headers=getattr(exc, "headers", None)
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unexpected exceptions."""
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": {
                "message": "Internal server error",
                "type": "InternalServerError",
                "status_code": status.HTTP_500_INTERNAL_SERVER_ERROR
            }
        }
    )
