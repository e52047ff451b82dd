"""Error types for the formstate engine.

Two families live here:

- Exceptions for structural failures (schema construction, unknown fields,
  type-contract violations, collaborator failures, use after disposal).
  These are raised to the immediate caller.
- FieldError, a structured per-field validation record. Validation failures
  are data: they are accumulated in ValidationErrors and never raised.
"""

from dataclasses import dataclass
from typing import Any, Dict, List, Optional


class FormStateError(Exception):
    """Base class for all formstate exceptions."""


class SchemaError(FormStateError):
    """Raised when a FormSchema is structurally invalid.

    Attributes:
        code: Machine-readable reason ("duplicate_field", "reserved_name",
            "unknown_dependency", "undeclared_dependency", "dependency_cycle",
            "sealed")
        field: The field the problem was detected on, if any
    """

    def __init__(self, code: str, message: str, field: Optional[str] = None):
        self.code = code
        self.field = field
        super().__init__(message)


class FieldNotFoundError(FormStateError, KeyError):
    """Raised when a field name is not registered in the schema."""

    def __init__(self, field: str, form_name: Optional[str] = None):
        self.field = field
        self.form_name = form_name
        where = f" in form '{form_name}'" if form_name else ""
        super().__init__(f"Field '{field}' not found{where}")

    def __str__(self) -> str:
        # KeyError quotes its argument otherwise
        return self.args[0]


class FieldTypeMismatchError(FormStateError, TypeError):
    """Raised when a value's variant does not fit a field's type contract.

    The rejected mutation is not applied.
    """

    def __init__(self, field: str, expected: Any, received: Any):
        self.field = field
        self.expected = expected
        self.received = received
        super().__init__(
            f"Field '{field}' has invalid type. Expected {expected}, got {received}"
        )


class RecordDecodeError(FormStateError, ValueError):
    """Raised when a serialized record does not match its schema.

    Attributes:
        errors: One FieldError per violation, pointing at the offending key
    """

    def __init__(self, message: str, errors: Optional[List["FieldError"]] = None):
        self.errors = list(errors or [])
        super().__init__(message)


class PersistenceError(FormStateError):
    """Raised when a persistence backend fails."""

    def __init__(self, message: str, backend: Optional[str] = None):
        self.backend = backend
        super().__init__(message)


class AnalyticsError(FormStateError):
    """Failure reported by an analytics tracker.

    Analytics hooks catch and log these; they never reach form operations.
    """


class FormDisposedError(FormStateError):
    """Raised when a disposed FormHandle is used."""


@dataclass(frozen=True)
class FieldError:
    """Per-field validation error details.

    Attributes:
        field: Field name, or "form" for form-level errors
        message: Human-readable error description
        code: Optional validator code that produced the message

    Examples:
        >>> err = FieldError(field="email", message="Email is required", code="required")
        >>> err.to_dict()
        {'field': 'email', 'message': 'Email is required', 'code': 'required'}
    """
    field: str
    message: str
    code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        result: Dict[str, Any] = {"field": self.field, "message": self.message}
        if self.code is not None:
            result["code"] = self.code
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldError":
        """Create FieldError from dict."""
        return cls(field=data["field"], message=data["message"], code=data.get("code"))

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"


__all__ = [
    "FormStateError",
    "SchemaError",
    "FieldNotFoundError",
    "FieldTypeMismatchError",
    "RecordDecodeError",
    "PersistenceError",
    "AnalyticsError",
    "FormDisposedError",
    "FieldError",
]
