"""Record contract for form types.

A form type is an ordinary Python class that describes its fields once
(field_metadata) and offers name-based access to its values (get_field /
set_field). FormHandle, the validation engine and the persistence hooks only
talk to records through this contract.

Two base classes are provided:

- Form: the abstract contract. Subclasses implement field_metadata,
  default_values, get_field and set_field.
- AttributeForm: a Form that stores each field in an attribute of the same
  name, typically on a dataclass. Only field_metadata and default_values
  remain to be written.

Usage:
    >>> from dataclasses import dataclass
    >>> from formstate.schema import FieldMetadata
    >>> from formstate.types import FieldType
    >>> @dataclass
    ... class Newsletter(AttributeForm):
    ...     email: str = ""
    ...     @classmethod
    ...     def field_metadata(cls):
    ...         return [FieldMetadata("email", FieldType.email(), is_required=True)]
    ...     @classmethod
    ...     def default_values(cls):
    ...         return cls()
    >>> Newsletter.from_json('{"email": "a@b.co"}')
    Newsletter(email='a@b.co')
"""

import json
from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Sequence, Type, TypeVar

from jsonschema import Draft7Validator

from formstate.errors import FieldError, FieldTypeMismatchError, RecordDecodeError
from formstate.schema import FORM_ERROR_KEY, FieldMetadata, FormLevelValidator, FormSchema
from formstate.types import FieldValue
from formstate.validation import ValidationErrors

F = TypeVar("F", bound="Form")


class Form(ABC):
    """Abstract record contract used by FormHandle."""

    @classmethod
    @abstractmethod
    def field_metadata(cls) -> Sequence[FieldMetadata]:
        """Ordered field descriptions of this form type."""

    @classmethod
    @abstractmethod
    def default_values(cls: Type[F]) -> F:
        """A fresh record holding every field's default value."""

    @abstractmethod
    def get_field(self, name: str) -> FieldValue:
        """Current value of a field."""

    @abstractmethod
    def set_field(self, name: str, value: FieldValue) -> None:
        """Store a value.

        Raises:
            FieldTypeMismatchError: If the record refuses the value's variant
        """

    @classmethod
    def form_name(cls) -> str:
        return cls.__name__

    @classmethod
    def form_validators(cls) -> Sequence[FormLevelValidator]:
        """Form-level validators added to the schema. None by default."""
        return ()

    @classmethod
    def schema(cls) -> FormSchema:
        """The sealed schema of this form type, built once per class."""
        cached = cls.__dict__.get("_formstate_schema")
        if cached is None:
            cached = FormSchema(
                name=cls.form_name(),
                fields=cls.field_metadata(),
                form_validators=cls.form_validators(),
            )
            # per class, so subclasses build their own
            setattr(cls, "_formstate_schema", cached)
        return cached

    def validate(self) -> ValidationErrors:
        """Record-specific checks merged into whole-form validation."""
        return ValidationErrors()

    def get_form_data(self) -> Dict[str, FieldValue]:
        """All field values keyed by name, in schema order."""
        return {name: self.get_field(name) for name in self.schema().field_names()}

    def to_dict(self) -> Dict[str, Any]:
        """Plain JSON-compatible representation of the record."""
        return {name: value.to_python() for name, value in self.get_form_data().items()}

    @classmethod
    def from_dict(cls: Type[F], data: Mapping[str, Any]) -> F:
        """Build a record from its dict representation.

        Missing optional keys keep their defaults.

        Raises:
            RecordDecodeError: If the payload violates the schema's value types
                or contains unknown keys
        """
        validator = Draft7Validator(cls.schema().to_json_schema())
        violations = sorted(validator.iter_errors(dict(data)), key=lambda e: list(e.path))
        if violations:
            errors = [
                FieldError(
                    field=str(error.path[0]) if error.path else FORM_ERROR_KEY,
                    message=error.message,
                    code=str(error.validator),
                )
                for error in violations
            ]
            raise RecordDecodeError(
                f"Invalid {cls.form_name()} payload: {'; '.join(str(e) for e in errors)}",
                errors,
            )

        record = cls.default_values()
        for name, raw in data.items():
            record.set_field(name, FieldValue.from_python(raw))
        return record

    def to_json(self, **kwargs: Any) -> str:
        return json.dumps(self.to_dict(), **kwargs)

    @classmethod
    def from_json(cls: Type[F], text: str) -> F:
        return cls.from_dict(json.loads(text))


class AttributeForm(Form):
    """Form whose fields are instance attributes named after the fields.

    Values are stored as plain Python (str, float, bool, list, dict, None).
    set_field checks the field type contract before assigning.
    """

    def get_field(self, name: str) -> FieldValue:
        meta = self.schema().require_field(name)
        return FieldValue.from_python(getattr(self, meta.name))

    def set_field(self, name: str, value: FieldValue) -> None:
        meta = self.schema().require_field(name)
        if not meta.field_type.accepts(value):
            raise FieldTypeMismatchError(name, meta.field_type.kind.value, value.kind.value)
        setattr(self, meta.name, value.to_python())


__all__ = [
    "Form",
    "AttributeForm",
]
