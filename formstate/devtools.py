"""Inspection helpers for debugging forms.

None of these helpers change a handle's state:

- field_states() describes every field with its value, errors and flags.
- create_snapshot() captures a handle at one instant; compare_snapshots()
  lists the fields whose values differ between two snapshots.
- check_integrity() reports inconsistencies a developer should look at,
  such as required fields left empty or errors keyed by unknown fields.
- FormInspector keeps a bounded history of snapshots as the form changes.
"""

import json
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Mapping, Optional, Tuple

from dateutil.parser import isoparse

from formstate.handle import FormHandle
from formstate.reactive import SubscriptionId
from formstate.schema import FORM_ERROR_KEY
from formstate.state import FormState

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FieldState:
    """Debug view of one field.

    Attributes:
        name: Field name
        field_type: Kind of the field, e.g. "email"
        is_required: Whether the schema marks the field required
        value: The current value as plain Python
        is_touched: Whether the user interacted with the field
        errors: Current validation messages
    """
    name: str
    field_type: str
    is_required: bool
    value: Any
    is_touched: bool = False
    errors: Tuple[str, ...] = ()

    @property
    def has_error(self) -> bool:
        return bool(self.errors)

    @property
    def error_message(self) -> Optional[str]:
        return ", ".join(self.errors) if self.errors else None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "name": self.name,
            "fieldType": self.field_type,
            "isRequired": self.is_required,
            "value": self.value,
            "isTouched": self.is_touched,
            "errors": list(self.errors),
        }


def field_states(handle: FormHandle) -> List[FieldState]:
    """Describe every field of the handle, in schema order."""
    errors = handle.errors
    touched = handle.touched_fields
    return [
        FieldState(
            name=meta.name,
            field_type=meta.field_type.kind.value,
            is_required=meta.is_required,
            value=handle.get_field_value(meta.name).to_python(),
            is_touched=meta.name in touched,
            errors=tuple(errors.get_field_errors(meta.name)),
        )
        for meta in handle.schema
    ]


@dataclass(frozen=True)
class FormSnapshot:
    """A handle's values and flags at one instant."""
    form_name: str
    timestamp: datetime
    field_values: Mapping[str, Any] = field(default_factory=dict)
    errors: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)
    is_dirty: bool = False
    is_submitting: bool = False
    touched_fields: Tuple[str, ...] = ()

    @property
    def field_count(self) -> int:
        return len(self.field_values)

    @property
    def has_errors(self) -> bool:
        return bool(self.errors)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {
            "formName": self.form_name,
            "timestamp": self.timestamp.isoformat(),
            "fieldCount": self.field_count,
            "fieldValues": dict(self.field_values),
            "errors": {name: list(messages) for name, messages in self.errors.items()},
            "isDirty": self.is_dirty,
            "isSubmitting": self.is_submitting,
            "hasErrors": self.has_errors,
            "touchedFields": list(self.touched_fields),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FormSnapshot":
        """Create FormSnapshot from dict."""
        return cls(
            form_name=data["formName"],
            timestamp=isoparse(data["timestamp"]),
            field_values=dict(data.get("fieldValues", {})),
            errors={name: tuple(messages) for name, messages in data.get("errors", {}).items()},
            is_dirty=data.get("isDirty", False),
            is_submitting=data.get("isSubmitting", False),
            touched_fields=tuple(data.get("touchedFields", ())),
        )


def _snapshot_of(handle: FormHandle, state: FormState) -> FormSnapshot:
    return FormSnapshot(
        form_name=handle.form_name,
        timestamp=datetime.now(timezone.utc),
        field_values={name: state.values.get_field(name).to_python() for name in handle.schema.field_names()},
        errors={name: tuple(messages) for name, messages in state.errors.to_dict().items()},
        is_dirty=state.is_dirty,
        is_submitting=state.is_submitting,
        touched_fields=tuple(sorted(state.touched_fields)),
    )


def create_snapshot(handle: FormHandle) -> FormSnapshot:
    """Capture the handle's current values and flags."""
    return _snapshot_of(handle, handle.state)


def export_snapshot(handle: FormHandle, **kwargs: Any) -> str:
    """Serialize the handle's current snapshot to JSON.

    Args:
        handle: The form to export
        **kwargs: Passed to json.dumps, e.g. indent=2
    """
    return json.dumps(create_snapshot(handle).to_dict(), **kwargs)


@dataclass(frozen=True)
class FieldChange:
    """A field whose value differs between two snapshots."""
    field_name: str
    old_value: Any
    new_value: Any

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {"fieldName": self.field_name, "oldValue": self.old_value, "newValue": self.new_value}


@dataclass(frozen=True)
class SnapshotDiff:
    """Differences between two snapshots, in the field order of the newer one."""
    changes: Tuple[FieldChange, ...] = ()

    @property
    def has_changes(self) -> bool:
        return bool(self.changes)

    @property
    def changed_fields(self) -> Tuple[str, ...]:
        return tuple(change.field_name for change in self.changes)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {"hasChanges": self.has_changes, "changes": [change.to_dict() for change in self.changes]}


def compare_snapshots(before: FormSnapshot, after: FormSnapshot) -> SnapshotDiff:
    """List the fields present in both snapshots whose values differ."""
    changes = tuple(
        FieldChange(name, before.field_values[name], value)
        for name, value in after.field_values.items()
        if name in before.field_values and before.field_values[name] != value
    )
    return SnapshotDiff(changes)


@dataclass(frozen=True)
class IntegrityReport:
    """Result of check_integrity()."""
    issues: Tuple[str, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.issues

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {"isValid": self.is_valid, "issues": list(self.issues)}


def check_integrity(handle: FormHandle) -> IntegrityReport:
    """Look for inconsistencies between the schema and the handle's state.

    Reported issues:
        - A required field whose value is empty
        - A value the field's declared type does not accept
        - Errors keyed by a name that is neither a field nor the form key
        - A touched field missing from the schema
    """
    issues: List[str] = []
    for meta in handle.schema:
        value = handle.get_field_value(meta.name)
        if meta.is_required and value.is_empty():
            issues.append(f"Required field '{meta.name}' is empty")
        elif not value.is_null() and not meta.field_type.accepts(value):
            issues.append(
                f"Field '{meta.name}' holds a {value.kind.value} value its {meta.field_type.kind.value} type rejects"
            )
    for name in handle.errors.fields():
        if name != FORM_ERROR_KEY and name not in handle.schema:
            issues.append(f"Errors reported for unknown field '{name}'")
    for name in sorted(handle.touched_fields):
        if name not in handle.schema:
            issues.append(f"Touched field '{name}' is not in the schema")
    if issues:
        logger.debug("Integrity check of %r found %d issue(s)", handle.form_name, len(issues))
    return IntegrityReport(tuple(issues))


class FormInspector:
    """Records a snapshot of a handle after every state change.

    Args:
        handle: The form to watch
        max_history: Number of snapshots kept; the oldest are dropped first
    """

    def __init__(self, handle: FormHandle, max_history: int = 50) -> None:
        if max_history < 1:
            raise ValueError("max_history must be at least 1")
        self.handle = handle
        self.history: Deque[FormSnapshot] = deque([create_snapshot(handle)], maxlen=max_history)
        self._sid: Optional[SubscriptionId] = handle.subscribe(self._record)

    def _record(self, state: FormState) -> None:
        self.history.append(_snapshot_of(self.handle, state))

    @property
    def is_recording(self) -> bool:
        return self._sid is not None

    @property
    def latest(self) -> FormSnapshot:
        return self.history[-1]

    def current_state(self) -> Dict[str, Any]:
        """Summary of the handle for a debug panel."""
        return {
            "formName": self.handle.form_name,
            "fieldCount": len(self.handle.schema),
            "isDirty": self.handle.is_dirty,
            "isSubmitting": self.handle.is_submitting,
            "hasErrors": not self.handle.is_valid,
            "submissionState": self.handle.submission_state.value,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def field_states(self) -> List[FieldState]:
        return field_states(self.handle)

    def changes_since(self, index: int = 0) -> SnapshotDiff:
        """Differences between a recorded snapshot and the latest one."""
        return compare_snapshots(self.history[index], self.latest)

    def stop(self) -> None:
        """Stop recording. Idempotent."""
        if self._sid is None:
            return
        self.handle.unsubscribe(self._sid)
        self._sid = None


__all__ = [
    "FieldState",
    "FormSnapshot",
    "FieldChange",
    "SnapshotDiff",
    "IntegrityReport",
    "FormInspector",
    "field_states",
    "create_snapshot",
    "export_snapshot",
    "compare_snapshots",
    "check_integrity",
]
