"""Validator and condition definitions.

A Validator is a declarative rule attached to a field's metadata. Validators
are pure: they look at one FieldValue (and, for conditions and custom rules,
the record it belongs to) and either pass or produce a message.

A FieldCondition makes a validator conditional on other fields of the same
record, for example "company name is required when account type is business".
Every field a condition reads must be listed in the owning field's
dependencies, so a change to that field re-validates the owner.
"""

import re
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Any, Callable, Dict, Mapping, Optional, Tuple
from urllib.parse import urlparse

from dateutil.parser import isoparse

from formstate.types import FieldValue, ValidatorKind, ValueKind

CustomValidatorFn = Callable[[FieldValue, Any], Optional[str]]
"""Signature of a registered custom validator: (value, record) -> message or None."""


class ConditionOp(str, Enum):
    """Operators supported by FieldCondition."""
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    IS_EMPTY = "is_empty"
    IS_NOT_EMPTY = "is_not_empty"
    ALL = "all"
    ANY = "any"


@dataclass(frozen=True)
class FieldCondition:
    """A predicate over other fields of a record.

    Examples:
        >>> cond = FieldCondition.equals("account_type", "business")
        >>> cond.referenced_fields()
        frozenset({'account_type'})
    """
    op: ConditionOp
    field: Optional[str] = None
    value: Optional[FieldValue] = None
    conditions: Tuple["FieldCondition", ...] = ()

    @classmethod
    def equals(cls, field: str, value: Any) -> "FieldCondition":
        return cls(ConditionOp.EQUALS, field=field, value=FieldValue.from_python(value))

    @classmethod
    def not_equals(cls, field: str, value: Any) -> "FieldCondition":
        return cls(ConditionOp.NOT_EQUALS, field=field, value=FieldValue.from_python(value))

    @classmethod
    def contains(cls, field: str, value: str) -> "FieldCondition":
        return cls(ConditionOp.CONTAINS, field=field, value=FieldValue.string(value))

    @classmethod
    def is_empty(cls, field: str) -> "FieldCondition":
        return cls(ConditionOp.IS_EMPTY, field=field)

    @classmethod
    def is_not_empty(cls, field: str) -> "FieldCondition":
        return cls(ConditionOp.IS_NOT_EMPTY, field=field)

    @classmethod
    def all_of(cls, *conditions: "FieldCondition") -> "FieldCondition":
        return cls(ConditionOp.ALL, conditions=tuple(conditions))

    @classmethod
    def any_of(cls, *conditions: "FieldCondition") -> "FieldCondition":
        return cls(ConditionOp.ANY, conditions=tuple(conditions))

    def referenced_fields(self) -> frozenset:
        """All field names this condition reads."""
        if self.op in (ConditionOp.ALL, ConditionOp.ANY):
            names: frozenset = frozenset()
            for condition in self.conditions:
                names = names | condition.referenced_fields()
            return names
        return frozenset({self.field})

    def evaluate(self, record: Any) -> bool:
        """Evaluate against a record implementing get_field(name)."""
        if self.op == ConditionOp.ALL:
            return all(c.evaluate(record) for c in self.conditions)
        if self.op == ConditionOp.ANY:
            return any(c.evaluate(record) for c in self.conditions)

        current = FieldValue.from_python(record.get_field(self.field))
        if self.op == ConditionOp.EQUALS:
            return current == self.value
        if self.op == ConditionOp.NOT_EQUALS:
            return current != self.value
        if self.op == ConditionOp.CONTAINS:
            if current.kind == ValueKind.STRING:
                return self.value.value in current.value
            if current.kind == ValueKind.ARRAY:
                return self.value in current.value
            return False
        if self.op == ConditionOp.IS_EMPTY:
            return current.is_empty()
        return not current.is_empty()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        result: Dict[str, Any] = {"op": self.op.value}
        if self.field is not None:
            result["field"] = self.field
        if self.value is not None:
            result["value"] = self.value.to_dict()
        if self.conditions:
            result["conditions"] = [c.to_dict() for c in self.conditions]
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldCondition":
        """Create FieldCondition from dict."""
        value = data.get("value")
        return cls(
            op=ConditionOp(data["op"]),
            field=data.get("field"),
            value=FieldValue.from_dict(value) if value is not None else None,
            conditions=tuple(cls.from_dict(c) for c in data.get("conditions", [])),
        )


@dataclass(frozen=True)
class Validator:
    """A declarative validation rule.

    Attributes:
        kind: Which built-in rule to apply
        argument: Rule parameter (length, bound, pattern, custom name, ...)
        message: Optional message overriding the built-in one
        when: Optional condition; the rule is skipped when it does not hold

    Examples:
        >>> Validator.min_length(8).check(FieldValue.string("short"), "Password")
        'Password must be at least 8 characters'
        >>> Validator.required().check(FieldValue.string("x"), "Name") is None
        True
    """
    kind: ValidatorKind
    argument: Any = None
    message: Optional[str] = None
    when: Optional[FieldCondition] = None

    @classmethod
    def required(cls, message: Optional[str] = None, when: Optional[FieldCondition] = None) -> "Validator":
        return cls(ValidatorKind.REQUIRED, message=message, when=when)

    @classmethod
    def email(cls, message: Optional[str] = None, when: Optional[FieldCondition] = None) -> "Validator":
        return cls(ValidatorKind.EMAIL, message=message, when=when)

    @classmethod
    def url(cls, message: Optional[str] = None, when: Optional[FieldCondition] = None) -> "Validator":
        return cls(ValidatorKind.URL, message=message, when=when)

    @classmethod
    def min_length(cls, length: int, message: Optional[str] = None,
                   when: Optional[FieldCondition] = None) -> "Validator":
        return cls(ValidatorKind.MIN_LENGTH, int(length), message, when)

    @classmethod
    def max_length(cls, length: int, message: Optional[str] = None,
                   when: Optional[FieldCondition] = None) -> "Validator":
        return cls(ValidatorKind.MAX_LENGTH, int(length), message, when)

    @classmethod
    def min(cls, bound: float, message: Optional[str] = None,
            when: Optional[FieldCondition] = None) -> "Validator":
        return cls(ValidatorKind.MIN, float(bound), message, when)

    @classmethod
    def max(cls, bound: float, message: Optional[str] = None,
            when: Optional[FieldCondition] = None) -> "Validator":
        return cls(ValidatorKind.MAX, float(bound), message, when)

    @classmethod
    def range(cls, low: float, high: float, message: Optional[str] = None,
              when: Optional[FieldCondition] = None) -> "Validator":
        if low > high:
            raise ValueError(f"Invalid range: {low} > {high}")
        return cls(ValidatorKind.RANGE, (float(low), float(high)), message, when)

    @classmethod
    def pattern(cls, regex: str, message: Optional[str] = None,
                when: Optional[FieldCondition] = None) -> "Validator":
        _compiled(regex)  # fail fast on a bad expression
        return cls(ValidatorKind.PATTERN, regex, message, when)

    @classmethod
    def date(cls, message: Optional[str] = None, when: Optional[FieldCondition] = None) -> "Validator":
        return cls(ValidatorKind.DATE, message=message, when=when)

    @classmethod
    def datetime(cls, message: Optional[str] = None, when: Optional[FieldCondition] = None) -> "Validator":
        return cls(ValidatorKind.DATETIME, message=message, when=when)

    @classmethod
    def phone(cls, message: Optional[str] = None, when: Optional[FieldCondition] = None) -> "Validator":
        """Optional leading +, then up to 16 digits not starting with 0.

        Spaces, dashes, dots and parentheses between digits are ignored.
        """
        return cls(ValidatorKind.PHONE, message=message, when=when)

    @classmethod
    def postal_code(cls, message: Optional[str] = None, when: Optional[FieldCondition] = None) -> "Validator":
        """Five digits with an optional -NNNN extension."""
        return cls(ValidatorKind.POSTAL_CODE, message=message, when=when)

    @classmethod
    def credit_card(cls, message: Optional[str] = None, when: Optional[FieldCondition] = None) -> "Validator":
        """13 to 19 digits passing the Luhn checksum; spaces and dashes are ignored."""
        return cls(ValidatorKind.CREDIT_CARD, message=message, when=when)

    @classmethod
    def positive(cls, message: Optional[str] = None, when: Optional[FieldCondition] = None) -> "Validator":
        return cls(ValidatorKind.POSITIVE, message=message, when=when)

    @classmethod
    def negative(cls, message: Optional[str] = None, when: Optional[FieldCondition] = None) -> "Validator":
        return cls(ValidatorKind.NEGATIVE, message=message, when=when)

    @classmethod
    def integer(cls, message: Optional[str] = None, when: Optional[FieldCondition] = None) -> "Validator":
        return cls(ValidatorKind.INTEGER, message=message, when=when)

    @classmethod
    def array_length(cls, min_items: int, max_items: int, message: Optional[str] = None,
                     when: Optional[FieldCondition] = None) -> "Validator":
        """Item count between min_items and max_items, inclusive.

        Unlike the other rules, an empty list is checked (against min_items).
        """
        if min_items < 0 or min_items > max_items:
            raise ValueError(f"Invalid item range: {min_items}..{max_items}")
        return cls(ValidatorKind.ARRAY_LENGTH, (int(min_items), int(max_items)), message, when)

    @classmethod
    def custom(cls, name: str, message: Optional[str] = None,
               when: Optional[FieldCondition] = None) -> "Validator":
        return cls(ValidatorKind.CUSTOM, name, message, when)

    def applies_to(self, record: Any) -> bool:
        """Whether the rule's condition holds for the record (always true without one)."""
        return self.when is None or self.when.evaluate(record)

    def check(
        self,
        value: FieldValue,
        label: str,
        record: Any = None,
        custom: Optional[Mapping[str, CustomValidatorFn]] = None,
    ) -> Optional[str]:
        """Apply the rule to a value.

        Args:
            value: The field value to check
            label: Human-readable field label used in messages
            record: The record the value belongs to (for custom rules)
            custom: Registry of custom validators by name

        Returns:
            None if the value passes, otherwise the error message
        """
        if self.kind == ValidatorKind.CUSTOM:
            fn = (custom or {}).get(self.argument)
            if fn is None:
                return f"Unknown validator '{self.argument}'"
            error = fn(value, record)
            if error is None:
                return None
            return self.message or error

        # Empty values are the REQUIRED rule's business
        if self.kind != ValidatorKind.REQUIRED and value.is_empty() and not _counts_empty(self.kind, value):
            return None

        error = _CHECKS[self.kind](value, self.argument, label)
        if error is None:
            return None
        return self.message or error

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        result: Dict[str, Any] = {"kind": self.kind.value}
        if self.argument is not None:
            result["argument"] = list(self.argument) if isinstance(self.argument, tuple) else self.argument
        if self.message is not None:
            result["message"] = self.message
        if self.when is not None:
            result["when"] = self.when.to_dict()
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Validator":
        """Create Validator from dict."""
        argument = data.get("argument")
        if isinstance(argument, list):
            argument = tuple(argument)
        when = data.get("when")
        return cls(
            kind=ValidatorKind(data["kind"]),
            argument=argument,
            message=data.get("message"),
            when=FieldCondition.from_dict(when) if when is not None else None,
        )


def format_number(n: float) -> str:
    """Render 8.0 as '8' and 2.5 as '2.5' for messages."""
    if float(n).is_integer():
        return str(int(n))
    return str(n)


@lru_cache(maxsize=256)
def _compiled(regex: str) -> "re.Pattern":
    return re.compile(regex)


def _length(value: FieldValue) -> Optional[int]:
    if value.kind in (ValueKind.STRING, ValueKind.ARRAY):
        return len(value.value)
    return None


def _check_required(value: FieldValue, _arg: Any, label: str) -> Optional[str]:
    if value.is_null() or value.is_empty():
        return f"{label} is required"
    return None


def _check_email(value: FieldValue, _arg: Any, label: str) -> Optional[str]:
    text = value.as_string()
    if text is None:
        return f"{label} must be text"
    if text.count("@") != 1:
        return f"{label} must be a valid email address"
    local, domain = text.split("@")
    if not local or not domain:
        return f"{label} must be a valid email address"
    return None


def _check_url(value: FieldValue, _arg: Any, label: str) -> Optional[str]:
    text = value.as_string()
    if text is None:
        return f"{label} must be text"
    parsed = urlparse(text)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        return f"{label} must be a valid URL"
    return None


def _check_min_length(value: FieldValue, n: int, label: str) -> Optional[str]:
    length = _length(value)
    if length is None:
        return f"{label} must be text"
    if length < n:
        return f"{label} must be at least {n} characters"
    return None


def _check_max_length(value: FieldValue, n: int, label: str) -> Optional[str]:
    length = _length(value)
    if length is None:
        return f"{label} must be text"
    if length > n:
        return f"{label} must be at most {n} characters"
    return None


def _check_min(value: FieldValue, bound: float, label: str) -> Optional[str]:
    number = value.as_number()
    if number is None:
        return f"{label} must be a number"
    if number < bound:
        return f"{label} must be at least {format_number(bound)}"
    return None


def _check_max(value: FieldValue, bound: float, label: str) -> Optional[str]:
    number = value.as_number()
    if number is None:
        return f"{label} must be a number"
    if number > bound:
        return f"{label} must be at most {format_number(bound)}"
    return None


def _check_range(value: FieldValue, bounds: Tuple[float, float], label: str) -> Optional[str]:
    number = value.as_number()
    if number is None:
        return f"{label} must be a number"
    low, high = bounds
    if number < low or number > high:
        return f"{label} must be between {format_number(low)} and {format_number(high)}"
    return None


def _check_pattern(value: FieldValue, regex: str, label: str) -> Optional[str]:
    text = value.as_string()
    if text is None:
        return f"{label} must be text"
    if _compiled(regex).search(text) is None:
        return f"{label} has an invalid format"
    return None


def _check_date(value: FieldValue, _arg: Any, label: str) -> Optional[str]:
    text = value.as_string()
    if text is None:
        return f"{label} must be text"
    stripped = text.strip()
    if "T" in stripped or " " in stripped:
        return f"{label} must be a valid date"
    try:
        isoparse(stripped)
    except (ValueError, OverflowError):
        return f"{label} must be a valid date"
    return None


def _check_datetime(value: FieldValue, _arg: Any, label: str) -> Optional[str]:
    text = value.as_string()
    if text is None:
        return f"{label} must be text"
    try:
        isoparse(text.strip())
    except (ValueError, OverflowError):
        return f"{label} must be a valid date and time"
    return None


_PHONE_SEPARATORS = re.compile(r"[\s\-.()]")
_PHONE = re.compile(r"^\+?[1-9]\d{0,15}$")
_POSTAL_CODE = re.compile(r"^\d{5}(-\d{4})?$")


def _check_phone(value: FieldValue, _arg: Any, label: str) -> Optional[str]:
    text = value.as_string()
    if text is None:
        return f"{label} must be text"
    if _PHONE.match(_PHONE_SEPARATORS.sub("", text.strip())) is None:
        return f"{label} must be a valid phone number"
    return None


def _check_postal_code(value: FieldValue, _arg: Any, label: str) -> Optional[str]:
    text = value.as_string()
    if text is None:
        return f"{label} must be text"
    if _POSTAL_CODE.match(text.strip()) is None:
        return f"{label} must be a valid postal code"
    return None


def luhn_valid(digits: str) -> bool:
    """Luhn checksum over a string of decimal digits.

    Examples:
        >>> luhn_valid("4111111111111111"), luhn_valid("4111111111111112")
        (True, False)
    """
    total = 0
    for position, char in enumerate(reversed(digits)):
        digit = int(char)
        if position % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return total % 10 == 0


def _check_credit_card(value: FieldValue, _arg: Any, label: str) -> Optional[str]:
    text = value.as_string()
    if text is None:
        return f"{label} must be text"
    digits = re.sub(r"[\s\-]", "", text)
    if not digits.isdigit() or not 13 <= len(digits) <= 19 or not luhn_valid(digits):
        return f"{label} must be a valid card number"
    return None


def _check_positive(value: FieldValue, _arg: Any, label: str) -> Optional[str]:
    number = value.as_number()
    if number is None:
        return f"{label} must be a number"
    if number <= 0:
        return f"{label} must be positive"
    return None


def _check_negative(value: FieldValue, _arg: Any, label: str) -> Optional[str]:
    number = value.as_number()
    if number is None:
        return f"{label} must be a number"
    if number >= 0:
        return f"{label} must be negative"
    return None


def _check_integer(value: FieldValue, _arg: Any, label: str) -> Optional[str]:
    number = value.as_number()
    if number is None:
        return f"{label} must be a number"
    if not float(number).is_integer():
        return f"{label} must be a whole number"
    return None


def _check_array_length(value: FieldValue, bounds: Tuple[int, int], label: str) -> Optional[str]:
    items = value.as_array()
    if items is None:
        return f"{label} must be a list"
    low, high = bounds
    if not low <= len(items) <= high:
        return f"{label} must have between {low} and {high} items"
    return None


def _counts_empty(kind: ValidatorKind, value: FieldValue) -> bool:
    # an empty list still has a length to check
    return kind == ValidatorKind.ARRAY_LENGTH and value.kind == ValueKind.ARRAY


_CHECKS: Dict[ValidatorKind, Callable[[FieldValue, Any, str], Optional[str]]] = {
    ValidatorKind.REQUIRED: _check_required,
    ValidatorKind.EMAIL: _check_email,
    ValidatorKind.URL: _check_url,
    ValidatorKind.MIN_LENGTH: _check_min_length,
    ValidatorKind.MAX_LENGTH: _check_max_length,
    ValidatorKind.MIN: _check_min,
    ValidatorKind.MAX: _check_max,
    ValidatorKind.RANGE: _check_range,
    ValidatorKind.PATTERN: _check_pattern,
    ValidatorKind.DATE: _check_date,
    ValidatorKind.DATETIME: _check_datetime,
    ValidatorKind.PHONE: _check_phone,
    ValidatorKind.POSTAL_CODE: _check_postal_code,
    ValidatorKind.CREDIT_CARD: _check_credit_card,
    ValidatorKind.POSITIVE: _check_positive,
    ValidatorKind.NEGATIVE: _check_negative,
    ValidatorKind.INTEGER: _check_integer,
    ValidatorKind.ARRAY_LENGTH: _check_array_length,
}


def _named(validator: Validator) -> CustomValidatorFn:
    def check(value: FieldValue, record: Any) -> Optional[str]:
        return validator.check(value, "Value", record)

    check.__name__ = validator.kind.value
    return check


NAMED_VALIDATORS: Dict[str, CustomValidatorFn] = {
    validator.kind.value: _named(validator)
    for validator in (
        Validator.phone(),
        Validator.postal_code(),
        Validator.credit_card(),
        Validator.positive(),
        Validator.negative(),
        Validator.integer(),
    )
}
"""Parameterless rules available to every engine as Validator.custom(name)."""


__all__ = [
    "ConditionOp",
    "FieldCondition",
    "Validator",
    "CustomValidatorFn",
    "NAMED_VALIDATORS",
    "format_number",
    "luhn_valid",
]
