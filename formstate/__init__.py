"""formstate: reactive form state and validation engine.

formstate tracks the values, dirtiness, touched fields and validation errors
of statically described form records:
- Declarative field metadata with first-failure-wins validators
- Cross-field and conditional validation with automatic dependency propagation
- Atomic state updates delivered to subscribers as immutable snapshots
- Debounced real-time validation on a pluggable reactive runtime
- Explicit persistence and fire-and-forget analytics collaborators

Basic usage:
    >>> from dataclasses import dataclass
    >>> from formstate import AttributeForm, FieldMetadata, FieldType, FormHandle, Validator
    >>> @dataclass
    ... class Login(AttributeForm):
    ...     email: str = ""
    ...     @classmethod
    ...     def field_metadata(cls):
    ...         return [FieldMetadata("email", FieldType.email(),
    ...                               validators=(Validator.required(), Validator.email()))]
    ...     @classmethod
    ...     def default_values(cls):
    ...         return cls()
    >>> handle = FormHandle(Login)
    >>> handle.validate().errors.to_dict()
    {'email': ['Email is required']}
"""

__version__ = "0.1.0"
__author__ = "formstate contributors"

# Version info
VERSION = (0, 1, 0)

# Core exports
from formstate.config import FormConfig, RuntimeConfig
from formstate.errors import (
    FieldError,
    FieldNotFoundError,
    FieldTypeMismatchError,
    FormDisposedError,
    FormStateError,
    PersistenceError,
    RecordDecodeError,
    SchemaError,
)
from formstate.form import AttributeForm, Form
from formstate.handle import FormHandle, SubmissionResult
from formstate.schema import FieldMetadata, FormSchema
from formstate.state import FormState
from formstate.state_machine import InvalidStateTransitionError
from formstate.types import FieldKind, FieldType, FieldValue, SubmissionState, ValidationMode
from formstate.validation import ValidationEngine, ValidationErrors, ValidationResult
from formstate.validators import FieldCondition, Validator
from formstate.wizard import FormWizard, WizardStep

__all__ = [
    "__version__",
    "VERSION",
    "AttributeForm",
    "FieldCondition",
    "FieldError",
    "FieldKind",
    "FieldMetadata",
    "FieldNotFoundError",
    "FieldType",
    "FieldTypeMismatchError",
    "FieldValue",
    "Form",
    "FormConfig",
    "FormDisposedError",
    "FormHandle",
    "FormSchema",
    "FormState",
    "FormStateError",
    "FormWizard",
    "InvalidStateTransitionError",
    "PersistenceError",
    "RecordDecodeError",
    "RuntimeConfig",
    "SchemaError",
    "SubmissionResult",
    "SubmissionState",
    "ValidationEngine",
    "ValidationErrors",
    "ValidationMode",
    "ValidationResult",
    "Validator",
    "WizardStep",
]
