"""Validation engine for formstate schemas.

This module provides the ValidationEngine, which maps (record, schema) to
structured ValidationErrors deterministically.

Rules applied by the engine:
- Per field, validators run in declaration order and the FIRST failure is
  the field's message; later validators are skipped.
- A field flagged is_required without an explicit Required validator gets an
  implicit leading Required check.
- Whole-form validation runs every field in schema order, then form-level
  validators (errors may land under the synthetic "form" key), then the
  record's own validate() hook.
- A change to a field re-validates every field that transitively depends
  on it, dependencies first (see affected_fields / revalidation_order).

Validation failures are data. Only structural problems (an unknown field
name) raise.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from formstate.errors import FieldError
from formstate.schema import FORM_ERROR_KEY, FieldMetadata, FormLevelValidator, FormSchema
from formstate.types import FieldValue, ValidatorKind
from formstate.validators import NAMED_VALIDATORS, CustomValidatorFn, Validator

logger = logging.getLogger(__name__)

_IMPLICIT_REQUIRED = Validator.required()


class ValidationErrors:
    """Mapping from field name to an ordered list of error messages.

    An empty mapping means the form is valid. Form-level messages are kept
    under the "form" key.

    Examples:
        >>> errors = ValidationErrors()
        >>> errors.add_field_error("email", "Email is required")
        >>> errors.has_field_error("email"), errors.is_empty()
        (True, False)
        >>> errors.to_dict()
        {'email': ['Email is required']}
    """

    def __init__(self, errors: Optional[Mapping[str, Iterable[str]]] = None) -> None:
        self._errors: Dict[str, List[str]] = {}
        for name, messages in (errors or {}).items():
            for message in messages:
                self.add_field_error(name, message)

    def add_field_error(self, field: str, message: str) -> None:
        self._errors.setdefault(field, []).append(message)

    def add_form_error(self, message: str) -> None:
        self.add_field_error(FORM_ERROR_KEY, message)

    def set_field_errors(self, field: str, messages: Sequence[str]) -> None:
        """Replace a field's messages; an empty sequence clears the field."""
        if messages:
            self._errors[field] = list(messages)
        else:
            self._errors.pop(field, None)

    def clear_field(self, field: str) -> None:
        self._errors.pop(field, None)

    def is_empty(self) -> bool:
        return not self._errors

    def has_errors(self) -> bool:
        return bool(self._errors)

    def has_field_error(self, field: str) -> bool:
        return field in self._errors

    def get_field_errors(self, field: str) -> List[str]:
        return list(self._errors.get(field, ()))

    def first_error(self, field: str) -> Optional[str]:
        messages = self._errors.get(field)
        return messages[0] if messages else None

    @property
    def form_errors(self) -> List[str]:
        return self.get_field_errors(FORM_ERROR_KEY)

    def fields(self) -> Tuple[str, ...]:
        return tuple(self._errors)

    def merge(self, other: "ValidationErrors") -> None:
        """Append all of other's messages to this mapping."""
        for name, messages in other.items():
            for message in messages:
                self.add_field_error(name, message)

    def without(self, fields: Iterable[str]) -> "ValidationErrors":
        """Copy with the given fields removed."""
        dropped = set(fields)
        return ValidationErrors({k: v for k, v in self._errors.items() if k not in dropped})

    def copy(self) -> "ValidationErrors":
        return ValidationErrors(self._errors)

    def items(self) -> Iterator[Tuple[str, List[str]]]:
        for name, messages in self._errors.items():
            yield name, list(messages)

    def to_field_errors(self) -> List[FieldError]:
        return [
            FieldError(field=name, message=message)
            for name, messages in self._errors.items()
            for message in messages
        ]

    def to_dict(self) -> Dict[str, List[str]]:
        """Convert to dict for serialization."""
        return {name: list(messages) for name, messages in self._errors.items()}

    @classmethod
    def from_dict(cls, data: Mapping[str, Iterable[str]]) -> "ValidationErrors":
        """Create ValidationErrors from dict."""
        return cls(data)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ValidationErrors):
            return self._errors == other._errors
        if isinstance(other, Mapping):
            return self._errors == {k: list(v) for k, v in other.items()}
        return NotImplemented

    def __len__(self) -> int:
        return len(self._errors)

    def __iter__(self) -> Iterator[str]:
        return iter(tuple(self._errors))

    def __contains__(self, field: object) -> bool:
        return field in self._errors

    def __bool__(self) -> bool:
        # truthiness follows has_errors, not container length semantics
        return bool(self._errors)

    def __repr__(self) -> str:
        return f"ValidationErrors({self._errors!r})"

    def __str__(self) -> str:
        lines = []
        if self.form_errors:
            lines.append("Form errors:")
            lines.extend(f"  - {message}" for message in self.form_errors)
        field_names = [name for name in self._errors if name != FORM_ERROR_KEY]
        if field_names:
            lines.append("Field errors:")
            for name in field_names:
                lines.append(f"  {name}:")
                lines.extend(f"    - {message}" for message in self._errors[name])
        return "\n".join(lines)


@dataclass(frozen=True)
class ValidationResult:
    """Result of validating a record against its schema.

    Attributes:
        is_valid: Whether the record passed all validation checks
        errors: Field-level and form-level messages (empty if valid)
    """
    is_valid: bool
    errors: ValidationErrors

    @property
    def missing_fields(self) -> List[str]:
        """Fields whose message came from a Required check."""
        return [
            name for name in self.errors
            if name != FORM_ERROR_KEY and any(m.endswith(" is required") for m in self.errors.get_field_errors(name))
        ]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "isValid": self.is_valid,
            "errors": self.errors.to_dict(),
        }


class ValidationEngine:
    """Schema-driven validation engine.

    Attributes:
        schema: The sealed schema validated against

    Examples:
        >>> from formstate.schema import FieldMetadata, FormSchema
        >>> from formstate.types import FieldType
        >>> schema = FormSchema("signup", [
        ...     FieldMetadata("email", FieldType.email(),
        ...                   validators=(Validator.required(), Validator.email())),
        ... ])
        >>> engine = ValidationEngine(schema)
        >>> class Rec:
        ...     def get_field(self, name):
        ...         return FieldValue.string("")
        >>> engine.validate_field(Rec(), "email")
        ['Email is required']
    """

    def __init__(
        self,
        schema: FormSchema,
        custom_validators: Optional[Mapping[str, CustomValidatorFn]] = None,
    ) -> None:
        """Initialize the validation engine.

        Args:
            schema: Field metadata and form-level validators
            custom_validators: Named validators used by Validator.custom(name)

        Raises:
            SchemaError: If the schema cannot be sealed
        """
        self.schema = schema.seal()
        # named built-ins first so callers can replace them
        self._custom: Dict[str, CustomValidatorFn] = dict(NAMED_VALIDATORS)
        self._custom.update(custom_validators or {})

    def register_validator(self, name: str, fn: CustomValidatorFn) -> None:
        """Register a custom validator usable as Validator.custom(name)."""
        self._custom[name] = fn

    def validators_for(self, name: str) -> Tuple[Validator, ...]:
        """Effective validator chain for a field, including the implicit Required."""
        meta = self.schema.require_field(name)
        return self._chain(meta)

    def _chain(self, meta: FieldMetadata) -> Tuple[Validator, ...]:
        if meta.is_required and not any(v.kind == ValidatorKind.REQUIRED for v in meta.validators):
            return (_IMPLICIT_REQUIRED,) + meta.validators
        return meta.validators

    def _read(self, record: Any, name: str) -> FieldValue:
        value = record.get_field(name)
        if value is None:
            # absent value
            return FieldValue.null()
        return FieldValue.from_python(value)

    def _check(self, record: Any, meta: FieldMetadata) -> Optional[str]:
        value = self._read(record, meta.name)
        for validator in self._chain(meta):
            if not validator.applies_to(record):
                continue
            message = validator.check(value, meta.label, record, self._custom)
            if message is not None:
                return message
        return None

    def validate_field(self, record: Any, name: str) -> List[str]:
        """Validate one field.

        Returns:
            An empty list if the field is valid, otherwise its single message

        Raises:
            FieldNotFoundError: If the field is not in the schema
        """
        meta = self.schema.require_field(name)
        message = self._check(record, meta)
        return [] if message is None else [message]

    def validate_fields(self, record: Any, names: Iterable[str]) -> ValidationErrors:
        """Validate several fields, in the order given."""
        errors = ValidationErrors()
        for name in names:
            for message in self.validate_field(record, name):
                errors.add_field_error(name, message)
        return errors

    def validate_form(self, record: Any) -> ValidationErrors:
        """Full validation: per-field, then form-level validators, then record.validate()."""
        errors = ValidationErrors()
        for meta in self.schema:
            message = self._check(record, meta)
            if message is not None:
                errors.add_field_error(meta.name, message)
        errors.merge(self.validate_form_rules(record))
        return errors

    def validate_form_rules(self, record: Any) -> ValidationErrors:
        """Messages of the form-level validators and the record's validate() hook only."""
        errors = ValidationErrors()
        for validator in self.schema.form_validators:
            self._apply_form_validator(validator, record, errors)

        record_hook = getattr(record, "validate", None)
        if callable(record_hook):
            extra = record_hook()
            if extra:
                errors.merge(extra if isinstance(extra, ValidationErrors) else ValidationErrors(extra))
        return errors

    def validate_fields_with_form_rules(self, record: Any, names: Iterable[str]) -> ValidationErrors:
        """Re-validate a subset of fields after a change.

        Per-field rules run for `names`. Form-level validators and the record
        hook run over the whole record; their messages are kept for `names`
        and for the "form" key. The result holds an entry only for those keys,
        so it can replace them in an existing mapping.
        """
        names = tuple(names)
        errors = self.validate_fields(record, names)
        rules = self.validate_form_rules(record)
        kept = set(names) | {FORM_ERROR_KEY}
        for name, messages in rules.items():
            if name in kept:
                for message in messages:
                    errors.add_field_error(name, message)
        return errors

    def _apply_form_validator(
        self,
        validator: FormLevelValidator,
        record: Any,
        errors: ValidationErrors,
    ) -> None:
        try:
            outcome = validator(record)
        except Exception:
            logger.exception("Form-level validator %r raised", validator)
            errors.add_form_error("Form validation failed")
            return

        if outcome is None:
            return
        if isinstance(outcome, str):
            errors.add_form_error(outcome)
            return
        for name, messages in outcome.items():
            if isinstance(messages, str):
                messages = [messages]
            for message in messages:
                errors.add_field_error(name, message)

    def validate(self, record: Any) -> ValidationResult:
        """Validate a record and wrap the outcome in a ValidationResult."""
        errors = self.validate_form(record)
        return ValidationResult(is_valid=errors.is_empty(), errors=errors)

    def affected_fields(self, changed: str) -> FrozenSet[str]:
        """All fields that transitively depend on `changed` (excluding it).

        Raises:
            FieldNotFoundError: If `changed` is not in the schema
        """
        return frozenset(self.schema.revalidation_order(changed)[1:])

    def revalidation_order(self, changed: str) -> Tuple[str, ...]:
        """`changed` first, then its transitive dependents, dependencies first."""
        return self.schema.revalidation_order(changed)


def fields_match(first: str, second: str, message: Optional[str] = None) -> FormLevelValidator:
    """Form-level validator requiring two fields to hold equal values.

    The error is reported on the second field, e.g. a password confirmation.
    """

    def validate(record: Any) -> Optional[Dict[str, str]]:
        if record.get_field(first) != record.get_field(second):
            return {second: message or f"{_humanize(second)} must match {_humanize(first).lower()}"}
        return None

    validate.__name__ = f"fields_match_{first}_{second}"
    return validate


def at_least_one_of(*names: str, message: Optional[str] = None) -> FormLevelValidator:
    """Form-level validator requiring at least one of the named fields to be filled."""

    def validate(record: Any) -> Optional[str]:
        for name in names:
            value = record.get_field(name)
            if value is not None and not FieldValue.from_python(value).is_empty():
                return None
        return message or f"At least one of {', '.join(names)} is required"

    validate.__name__ = f"at_least_one_of_{'_'.join(names)}"
    return validate


def _humanize(name: str) -> str:
    text = name.replace("_", " ")
    return text[:1].upper() + text[1:]


__all__ = [
    "ValidationErrors",
    "ValidationResult",
    "ValidationEngine",
    "fields_match",
    "at_least_one_of",
]
