"""
Domain error base classes.

Exception Hierarchy:
    BaseApplicationError
    ├── ValidationError - Bad input or a violated business rule (400)
    ├── NotFoundError - Missing resource (404)
    ├── PermissionDeniedError - Caller is not allowed (403)
    └── ConflictError - Current state forbids the operation (409)

Every error carries a machine-readable ``error_code`` and optional
``details`` that API views return as-is:

    raise ValidationError(
        "Order amount is below the minimum",
        error_code="AMOUNT_TOO_SMALL",
        details={"amount": 50, "minimum": 100},
    )

Request-shape errors stay with DRF serializers.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base for all domain errors.

    Attributes:
        message: Human-readable description
        error_code: Stable code clients can branch on
        details: Ids, amounts and states relevant to the failure
    """

    default_error_code: str = "APPLICATION_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        API body for this error:

            {"error": "...", "error_code": "ORDER_NOT_FOUND", "details": {...}}

        ``details`` is omitted when empty.
        """
        body: dict[str, Any] = {"error": self.message, "error_code": self.error_code}
        if self.details:
            body["details"] = self.details
        return body

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.message!r}, error_code={self.error_code!r})"


class ValidationError(BaseApplicationError):
    default_error_code: str = "VALIDATION_ERROR"


class NotFoundError(BaseApplicationError):
    default_error_code: str = "NOT_FOUND"


class PermissionDeniedError(BaseApplicationError):
    """
    The caller is authenticated but not a party allowed to do this,
    e.g. an editor confirming the client's download.
    """

    default_error_code: str = "PERMISSION_DENIED"


class ConflictError(BaseApplicationError):
    """
    The resource's current state forbids the operation: a terminal
    order, a lost compare-and-swap or a duplicate refund.
    """

    default_error_code: str = "CONFLICT"
