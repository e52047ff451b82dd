"""Form state value and pure reducers.

FormState is immutable. Every operation of a FormHandle builds the complete
next state with one of the reducers below and publishes it in a single step,
so subscribers never observe a half-applied change.

is_valid is derived from errors and cannot be set on its own.
"""

import copy
from dataclasses import dataclass, field, replace
from typing import Any, Dict, FrozenSet, Generic, Optional, TypeVar

from formstate.validation import ValidationErrors

R = TypeVar("R")


@dataclass(frozen=True)
class FormState(Generic[R]):
    """Snapshot of one form's state.

    Attributes:
        values: The current record
        errors: Current validation messages per field
        is_dirty: Whether any field changed since creation or the last reset
        is_submitting: Whether a submission is in progress
        touched_fields: Names of fields the user interacted with
    """
    values: R
    errors: ValidationErrors = field(default_factory=ValidationErrors)
    is_dirty: bool = False
    is_submitting: bool = False
    touched_fields: FrozenSet[str] = frozenset()

    @property
    def is_valid(self) -> bool:
        return self.errors.is_empty()

    def is_touched(self, name: str) -> bool:
        return name in self.touched_fields

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization (devtools, persistence)."""
        to_dict = getattr(self.values, "to_dict", None)
        return {
            "values": to_dict() if callable(to_dict) else self.values,
            "errors": self.errors.to_dict(),
            "isValid": self.is_valid,
            "isDirty": self.is_dirty,
            "isSubmitting": self.is_submitting,
            "touchedFields": sorted(self.touched_fields),
        }


def initial_state(values: R) -> FormState[R]:
    """Fresh state: no errors, not dirty, not submitting, nothing touched."""
    return FormState(values=values)


def apply_field_change(
    state: FormState[R],
    name: str,
    values: R,
    errors: Optional[ValidationErrors] = None,
) -> FormState[R]:
    """State after a field was set: new record, touched and dirty.

    errors replaces the error mapping when given; otherwise errors are kept.
    """
    return replace(
        state,
        values=values,
        errors=state.errors if errors is None else errors,
        is_dirty=True,
        touched_fields=state.touched_fields | {name},
    )


def replace_errors(state: FormState[R], errors: ValidationErrors) -> FormState[R]:
    return replace(state, errors=errors)


def touch_field(
    state: FormState[R],
    name: str,
    errors: Optional[ValidationErrors] = None,
) -> FormState[R]:
    return replace(
        state,
        errors=state.errors if errors is None else errors,
        touched_fields=state.touched_fields | {name},
    )


def start_submission(state: FormState[R]) -> FormState[R]:
    return replace(state, is_submitting=True)


def finish_submission(state: FormState[R]) -> FormState[R]:
    return replace(state, is_submitting=False)


def reset_state(values: R) -> FormState[R]:
    """Same as initial_state; kept separate for readability at call sites."""
    return initial_state(values)


def loaded_state(state: FormState[R], values: R) -> FormState[R]:
    """State after a record was restored from storage: new values, not dirty."""
    return replace(state, values=values, errors=ValidationErrors(), is_dirty=False)


def snapshot(state: FormState[R]) -> FormState[R]:
    """Deep copy handed to external holders, so they cannot alias internal state."""
    return copy.deepcopy(state)


__all__ = [
    "FormState",
    "initial_state",
    "apply_field_change",
    "replace_errors",
    "touch_field",
    "start_submission",
    "finish_submission",
    "reset_state",
    "loaded_state",
    "snapshot",
]
