"""Domain error taxonomy.

Every failure a service can report is one of these. They subclass
``ValueError`` so callers that only care about "the request was rejected"
can keep catching that, while the HTTP layer maps ``kind`` and
``status_code`` onto a response.
"""

from typing import Optional


class DomainError(ValueError):
    kind = "internal_error"
    status_code = 500

    def __init__(self, message: str, *, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.field = field

    def to_dict(self) -> dict[str, object]:
        payload: dict[str, object] = {"error": self.kind, "detail": self.message}
        if self.field:
            payload["field"] = self.field
        return payload


class UnauthenticatedError(DomainError):
    kind = "unauthenticated"
    status_code = 401


class NotFoundError(DomainError):
    """Row is absent or belongs to another user; the two are not told apart."""

    kind = "not_found"
    status_code = 404


class InvalidCategoryError(DomainError):
    kind = "invalid_category"
    status_code = 400


class TypeMismatchError(DomainError):
    kind = "type_mismatch"
    status_code = 400


class DuplicateNameError(DomainError):
    kind = "duplicate_name"
    status_code = 409


class DuplicateBudgetError(DomainError):
    kind = "duplicate_budget"
    status_code = 409


class InUseError(DomainError):
    kind = "in_use"
    status_code = 409


class InputValidationError(DomainError):
    kind = "validation_error"
    status_code = 422
