"""Errors raised by the relay.

Each error is an ``HTTPException`` so FastAPI renders it directly; the status
code is fixed by the error kind.
"""

from typing import Any

from fastapi import HTTPException, status

# Square error categories that describe a problem with what the caller sent
CLIENT_ERROR_CATEGORIES = frozenset({"INVALID_REQUEST_ERROR", "PAYMENT_METHOD_ERROR"})


class Unauthenticated(HTTPException):
    """No credential for the merchant, or it expired and could not be renewed."""

    def __init__(
        self, detail: str = "Seller not connected or token expired. Please reconnect."
    ) -> None:
        super().__init__(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


class ValidationError(HTTPException):
    """Malformed or missing input, detected before any call to Square."""

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=message)


class UpstreamError(HTTPException):
    """A call to Square failed."""

    def __init__(
        self,
        message: str,
        errors: list[dict[str, Any]] | None = None,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        body: Any = None,
    ) -> None:
        self.errors = errors or []
        self.body = body
        super().__init__(
            status_code=status_code,
            detail={"error": message, "details": self.errors},
        )

    @classmethod
    def from_square_errors(
        cls, message: str, errors: list[dict[str, Any]] | None, body: Any = None
    ) -> "UpstreamError":
        """Build an error whose status reflects who is at fault per Square."""
        errors = errors or []
        caller_fault = any(e.get("category") in CLIENT_ERROR_CATEGORIES for e in errors)
        status_code = (
            status.HTTP_400_BAD_REQUEST if caller_fault else status.HTTP_500_INTERNAL_SERVER_ERROR
        )
        return cls(message, errors=errors, status_code=status_code, body=body)

    def joined_details(self) -> str:
        """Square sub-errors flattened into one readable message."""
        return ", ".join(str(e.get("detail", "")) for e in self.errors if e.get("detail"))


class InternalError(HTTPException):
    """Unexpected failure; the detail is always generic."""

    def __init__(self, detail: str = "Internal server error") -> None:
        super().__init__(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=detail)


class AuthError(HTTPException):
    """The OAuth callback could not be completed."""

    def __init__(self, code: str, body: Any = None) -> None:
        self.code = code
        self.body = body
        detail: dict[str, Any] = {"error": code}
        if body is not None:
            detail["provider_response"] = body
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class CardCreationFailed(InternalError):
    """Card creation failed. The caller only ever sees a generic code."""

    code = "CARD_CREATION_FAILED"

    def __init__(self) -> None:
        super().__init__()
        self.detail = {"error": "Failed to create card. Please try again.", "code": self.code}
