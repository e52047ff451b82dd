"""Core type definitions for the formstate engine.

This module defines the fundamental value types shared by every layer:
- ValueKind / FieldValue: the dynamic, tagged carrier used for name-based field access
- FieldKind / FieldType: the declared shape of a field and its value type contract
- ValidatorKind: built-in validator identifiers
- ValidationMode: when field mutations trigger validation
- SubmissionState: lifecycle states of a form submission
- EventType: typed events emitted by a FormHandle

FieldType is descriptive: it is used by validators and by view components to
pick a rendering. The only thing checked automatically is the value
representation contract (see FieldType.accepts).
"""

from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from jsonschema import Draft7Validator


class ValueKind(str, Enum):
    """Variants of the FieldValue tagged union."""
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"
    NULL = "null"


@dataclass(frozen=True)
class FieldValue:
    """Dynamically typed field value.

    A FieldValue pairs a ValueKind tag with the Python payload for that kind.
    Numbers are always stored as float; arrays as tuples of FieldValue and
    objects as a tuple of (name, FieldValue) pairs so the value stays hashable
    and immutable.

    Examples:
        >>> FieldValue.string("alice").as_string()
        'alice'
        >>> FieldValue.from_python(3).kind
        <ValueKind.NUMBER: 'number'>
        >>> FieldValue.from_python({"a": [1, True]}).to_python()
        {'a': [1.0, True]}
    """
    kind: ValueKind
    value: Any = None

    @classmethod
    def string(cls, value: str) -> "FieldValue":
        return cls(ValueKind.STRING, str(value))

    @classmethod
    def number(cls, value: float) -> "FieldValue":
        return cls(ValueKind.NUMBER, float(value))

    @classmethod
    def boolean(cls, value: bool) -> "FieldValue":
        return cls(ValueKind.BOOLEAN, bool(value))

    @classmethod
    def array(cls, items: Sequence[Any]) -> "FieldValue":
        return cls(ValueKind.ARRAY, tuple(_coerce(item) for item in items))

    @classmethod
    def object(cls, mapping: Mapping[str, Any]) -> "FieldValue":
        return cls(
            ValueKind.OBJECT,
            tuple(sorted((str(key), _coerce(item)) for key, item in mapping.items())),
        )

    @classmethod
    def null(cls) -> "FieldValue":
        return cls(ValueKind.NULL, None)

    @classmethod
    def from_python(cls, value: Any) -> "FieldValue":
        """Convert a plain Python value into a FieldValue.

        Raises:
            TypeError: If the value has no FieldValue representation
        """
        if isinstance(value, FieldValue):
            return value
        if value is None:
            return cls.null()
        # bool is a subclass of int, check it first
        if isinstance(value, bool):
            return cls.boolean(value)
        if isinstance(value, (int, float)):
            return cls.number(value)
        if isinstance(value, str):
            return cls.string(value)
        if isinstance(value, Mapping):
            return cls.object(value)
        if isinstance(value, (list, tuple)):
            return cls.array(value)
        raise TypeError(f"Cannot represent {type(value).__name__} as a FieldValue")

    def to_python(self) -> Any:
        """Convert back to plain Python (str, float, bool, list, dict or None)."""
        if self.kind == ValueKind.ARRAY:
            return [item.to_python() for item in self.value]
        if self.kind == ValueKind.OBJECT:
            return {key: item.to_python() for key, item in self.value}
        return self.value

    def as_string(self) -> Optional[str]:
        return self.value if self.kind == ValueKind.STRING else None

    def as_number(self) -> Optional[float]:
        return self.value if self.kind == ValueKind.NUMBER else None

    def as_boolean(self) -> Optional[bool]:
        return self.value if self.kind == ValueKind.BOOLEAN else None

    def as_array(self) -> Optional[List["FieldValue"]]:
        return list(self.value) if self.kind == ValueKind.ARRAY else None

    def as_object(self) -> Optional[Dict[str, "FieldValue"]]:
        return dict(self.value) if self.kind == ValueKind.OBJECT else None

    def is_null(self) -> bool:
        return self.kind == ValueKind.NULL

    def is_empty(self) -> bool:
        """True for null, blank strings, empty arrays and empty objects."""
        if self.kind == ValueKind.NULL:
            return True
        if self.kind == ValueKind.STRING:
            return not self.value.strip()
        if self.kind in (ValueKind.ARRAY, ValueKind.OBJECT):
            return len(self.value) == 0
        return False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {"kind": self.kind.value, "value": self.to_python()}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldValue":
        """Create FieldValue from dict."""
        kind = ValueKind(data["kind"])
        value = cls.from_python(data.get("value"))
        if value.kind != kind:
            raise ValueError(
                f"FieldValue payload of kind '{value.kind.value}' does not match tag '{kind.value}'"
            )
        return value

    def __str__(self) -> str:
        if self.kind == ValueKind.NUMBER and self.value.is_integer():
            return str(int(self.value))
        if self.kind == ValueKind.NULL:
            return "null"
        if self.kind == ValueKind.ARRAY:
            return "[]"
        if self.kind == ValueKind.OBJECT:
            return "{}"
        if self.kind == ValueKind.BOOLEAN:
            return "true" if self.value else "false"
        return str(self.value)


def _coerce(value: Any) -> FieldValue:
    return FieldValue.from_python(value)


class FieldKind(str, Enum):
    """Declared field kinds, used to pick validators and renderings."""
    TEXT = "text"
    EMAIL = "email"
    PASSWORD = "password"
    NUMBER = "number"
    BOOLEAN = "boolean"
    SELECT = "select"
    MULTI_SELECT = "multi_select"
    DATE = "date"
    DATETIME = "datetime"
    FILE = "file"
    RICH_TEXT = "rich_text"
    MARKDOWN = "markdown"
    CODE = "code"
    ARRAY = "array"
    OBJECT = "object"


_STRING_KINDS = frozenset({
    FieldKind.TEXT,
    FieldKind.EMAIL,
    FieldKind.PASSWORD,
    FieldKind.SELECT,
    FieldKind.DATE,
    FieldKind.DATETIME,
    FieldKind.RICH_TEXT,
    FieldKind.MARKDOWN,
    FieldKind.CODE,
})


@dataclass(frozen=True)
class SelectOption:
    """A choice offered by SELECT and MULTI_SELECT fields."""
    value: str
    label: str
    disabled: bool = False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        result: Dict[str, Any] = {"value": self.value, "label": self.label}
        if self.disabled:
            result["disabled"] = True
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SelectOption":
        """Create SelectOption from dict."""
        return cls(
            value=data["value"],
            label=data.get("label", data["value"]),
            disabled=data.get("disabled", False),
        )


@dataclass(frozen=True)
class FieldType:
    """Declared shape of a field.

    Attributes:
        kind: The field kind
        min: NUMBER lower bound hint
        max: NUMBER upper bound hint
        step: NUMBER step hint
        options: SELECT / MULTI_SELECT choices
        inner: ARRAY element type
        accept: FILE accepted MIME types
        max_size: FILE maximum size in bytes
        multiple: FILE allows several files
        nested: OBJECT nested form type name

    Examples:
        >>> FieldType.number(min=0, max=120).accepts(FieldValue.number(30))
        True
        >>> FieldType.number().accepts(FieldValue.string("x"))
        False
    """
    kind: FieldKind
    min: Optional[float] = None
    max: Optional[float] = None
    step: Optional[float] = None
    options: Tuple[SelectOption, ...] = ()
    inner: Optional["FieldType"] = None
    accept: Tuple[str, ...] = ()
    max_size: Optional[int] = None
    multiple: bool = False
    nested: Optional[str] = None

    @classmethod
    def text(cls) -> "FieldType":
        return cls(FieldKind.TEXT)

    @classmethod
    def email(cls) -> "FieldType":
        return cls(FieldKind.EMAIL)

    @classmethod
    def password(cls) -> "FieldType":
        return cls(FieldKind.PASSWORD)

    @classmethod
    def number(
        cls,
        min: Optional[float] = None,
        max: Optional[float] = None,
        step: Optional[float] = None,
    ) -> "FieldType":
        return cls(FieldKind.NUMBER, min=min, max=max, step=step)

    @classmethod
    def boolean(cls) -> "FieldType":
        return cls(FieldKind.BOOLEAN)

    @classmethod
    def select(cls, options: Sequence[Any]) -> "FieldType":
        return cls(FieldKind.SELECT, options=_options(options))

    @classmethod
    def multi_select(cls, options: Sequence[Any]) -> "FieldType":
        return cls(FieldKind.MULTI_SELECT, options=_options(options))

    @classmethod
    def date(cls) -> "FieldType":
        return cls(FieldKind.DATE)

    @classmethod
    def datetime(cls) -> "FieldType":
        return cls(FieldKind.DATETIME)

    @classmethod
    def file(
        cls,
        accept: Sequence[str] = (),
        max_size: Optional[int] = None,
        multiple: bool = False,
    ) -> "FieldType":
        return cls(FieldKind.FILE, accept=tuple(accept), max_size=max_size, multiple=multiple)

    @classmethod
    def rich_text(cls) -> "FieldType":
        return cls(FieldKind.RICH_TEXT)

    @classmethod
    def markdown(cls) -> "FieldType":
        return cls(FieldKind.MARKDOWN)

    @classmethod
    def code(cls) -> "FieldType":
        return cls(FieldKind.CODE)

    @classmethod
    def array(cls, inner: "FieldType") -> "FieldType":
        return cls(FieldKind.ARRAY, inner=inner)

    @classmethod
    def object(cls, nested: Optional[str] = None) -> "FieldType":
        return cls(FieldKind.OBJECT, nested=nested)

    def to_json_schema(self) -> Dict[str, Any]:
        """JSON Schema for the value representation of this field type.

        Null is always allowed; an unset field holds FieldValue.null().
        Bounds such as min/max are validator concerns and are not included.
        """
        if self.kind in _STRING_KINDS:
            return {"type": ["string", "null"]}
        if self.kind == FieldKind.NUMBER:
            return {"type": ["number", "null"]}
        if self.kind == FieldKind.BOOLEAN:
            return {"type": ["boolean", "null"]}
        if self.kind == FieldKind.MULTI_SELECT:
            return {"type": ["array", "null"], "items": {"type": "string"}}
        if self.kind == FieldKind.ARRAY:
            schema: Dict[str, Any] = {"type": ["array", "null"]}
            if self.inner is not None:
                schema["items"] = self.inner.to_json_schema()
            return schema
        return {"type": ["object", "null"]}

    def accepts(self, value: FieldValue) -> bool:
        """Check the value representation against this field type's contract."""
        return _contract_validator(self).is_valid(value.to_python())

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        result: Dict[str, Any] = {"kind": self.kind.value}
        if self.min is not None:
            result["min"] = self.min
        if self.max is not None:
            result["max"] = self.max
        if self.step is not None:
            result["step"] = self.step
        if self.options:
            result["options"] = [o.to_dict() for o in self.options]
        if self.inner is not None:
            result["inner"] = self.inner.to_dict()
        if self.accept:
            result["accept"] = list(self.accept)
        if self.max_size is not None:
            result["maxSize"] = self.max_size
        if self.multiple:
            result["multiple"] = True
        if self.nested is not None:
            result["nested"] = self.nested
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldType":
        """Create FieldType from dict."""
        inner = data.get("inner")
        return cls(
            kind=FieldKind(data["kind"]),
            min=data.get("min"),
            max=data.get("max"),
            step=data.get("step"),
            options=tuple(SelectOption.from_dict(o) for o in data.get("options", [])),
            inner=cls.from_dict(inner) if inner is not None else None,
            accept=tuple(data.get("accept", [])),
            max_size=data.get("maxSize"),
            multiple=data.get("multiple", False),
            nested=data.get("nested"),
        )


@lru_cache(maxsize=128)
def _contract_validator(field_type: FieldType) -> Draft7Validator:
    return Draft7Validator(field_type.to_json_schema())


def _options(options: Sequence[Any]) -> Tuple[SelectOption, ...]:
    result = []
    for option in options:
        if isinstance(option, SelectOption):
            result.append(option)
        elif isinstance(option, tuple):
            result.append(SelectOption(value=option[0], label=option[1]))
        else:
            result.append(SelectOption(value=str(option), label=str(option)))
    return tuple(result)


class ValidatorKind(str, Enum):
    """Built-in validator identifiers."""
    REQUIRED = "required"
    EMAIL = "email"
    URL = "url"
    MIN_LENGTH = "min_length"
    MAX_LENGTH = "max_length"
    MIN = "min"
    MAX = "max"
    RANGE = "range"
    PATTERN = "pattern"
    DATE = "date"
    DATETIME = "datetime"
    PHONE = "phone"
    POSTAL_CODE = "postal_code"
    CREDIT_CARD = "credit_card"
    POSITIVE = "positive"
    NEGATIVE = "negative"
    INTEGER = "integer"
    ARRAY_LENGTH = "array_length"
    CUSTOM = "custom"


class ValidationMode(str, Enum):
    """When a FormHandle recomputes field errors.

    ON_CHANGE recomputes on every set_field_value (the default).
    ON_BLUR recomputes when a field is touched.
    ON_SUBMIT only recomputes on validate() and submit().
    """
    ON_CHANGE = "on_change"
    ON_BLUR = "on_blur"
    ON_SUBMIT = "on_submit"


class SubmissionState(str, Enum):
    """Submission lifecycle states of a FormHandle.

    DISPOSED is terminal: the handle has been torn down.
    """
    IDLE = "idle"
    SUBMITTING = "submitting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    DISPOSED = "disposed"


class EventType(str, Enum):
    """Event types emitted by a FormHandle."""
    FORM_VIEWED = "form.viewed"
    FIELD_CHANGED = "field.changed"
    FIELD_TOUCHED = "field.touched"
    VALIDATION_PASSED = "validation.passed"
    VALIDATION_FAILED = "validation.failed"
    FORM_RESET = "form.reset"
    FORM_LOADED = "form.loaded"
    SUBMISSION_STARTED = "submission.started"
    SUBMISSION_SUCCEEDED = "submission.succeeded"
    SUBMISSION_FAILED = "submission.failed"
    FORM_DISPOSED = "form.disposed"


__all__ = [
    "ValueKind",
    "FieldValue",
    "FieldKind",
    "SelectOption",
    "FieldType",
    "ValidatorKind",
    "ValidationMode",
    "SubmissionState",
    "EventType",
]
