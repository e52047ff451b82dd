"""Event system for formstate handles.

A FormHandle emits a typed FormEvent for every significant action (field
changes, validation outcomes, submission transitions, reset, disposal).
Events feed collaborators such as the analytics hook; they are separate from
state subscriptions, which deliver FormState snapshots.
"""

import json
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from dateutil.parser import isoparse

from formstate.types import EventType

logger = logging.getLogger(__name__)


def new_event_id() -> str:
    """Generate a unique event identifier."""
    return f"evt_{uuid.uuid4().hex[:16]}"


@dataclass(frozen=True)
class FormEvent:
    """A single event emitted by a form handle.

    Attributes:
        event_id: Unique event identifier (e.g., "evt_3f2a...")
        type: Event type from EventType enum
        form_name: Name of the form that emitted the event
        ts: UTC timestamp when the event occurred
        field: Field the event concerns, if any
        payload: Optional event-specific data (values, errors, states)

    Examples:
        >>> event = FormEvent.create(EventType.FIELD_CHANGED, "login", field="email")
        >>> event.to_dict()["type"]
        'field.changed'
    """
    event_id: str
    type: EventType
    form_name: str
    ts: datetime
    field: Optional[str] = None
    payload: Optional[Dict[str, Any]] = None

    def __post_init__(self):
        if isinstance(self.type, str):
            object.__setattr__(self, "type", EventType(self.type))

    @classmethod
    def create(
        cls,
        event_type: EventType,
        form_name: str,
        field: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> "FormEvent":
        """Build an event stamped with a fresh id and the current UTC time."""
        return cls(
            event_id=new_event_id(),
            type=event_type,
            form_name=form_name,
            ts=datetime.now(timezone.utc),
            field=field,
            payload=payload,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to dictionary for serialization.

        Timestamp is formatted as ISO 8601 string.
        """
        result: Dict[str, Any] = {
            "eventId": self.event_id,
            "type": self.type.value,
            "formName": self.form_name,
            "ts": self.ts.isoformat(),
        }
        if self.field is not None:
            result["field"] = self.field
        if self.payload is not None:
            result["payload"] = self.payload
        return result

    def to_jsonl(self) -> str:
        """Single-line JSON suitable for appending to a JSONL event log."""
        return json.dumps(self.to_dict(), separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FormEvent":
        """Create FormEvent from dictionary (camelCase keys)."""
        return cls(
            event_id=data["eventId"],
            type=EventType(data["type"]),
            form_name=data.get("formName", ""),
            ts=isoparse(data["ts"]),
            field=data.get("field"),
            payload=data.get("payload"),
        )


EventListener = Callable[[FormEvent], None]
"""Type alias for event listener callbacks.

Listeners are called synchronously when events are emitted. An exception
raised by a listener is logged and does not reach the emitter.
"""


class EventEmitter:
    """Dispatches FormEvents to registered listeners.

    - Type-specific subscriptions via on()
    - Wildcard subscriptions via on_any()
    - Synchronous dispatch in registration order, typed listeners first
    - Listener exceptions are logged and isolated from other listeners

    Examples:
        >>> emitter = EventEmitter()
        >>> seen = []
        >>> emitter.on(EventType.FORM_RESET, seen.append)
        >>> emitter.emit(FormEvent.create(EventType.FORM_RESET, "login"))
        >>> len(seen)
        1
    """

    def __init__(self):
        self._listeners: Dict[EventType, List[EventListener]] = {}
        self._any_listeners: List[EventListener] = []

    def on(self, event_type: EventType, listener: EventListener) -> None:
        """Subscribe to a specific event type."""
        self._listeners.setdefault(event_type, []).append(listener)

    def on_any(self, listener: EventListener) -> None:
        """Subscribe to all event types."""
        self._any_listeners.append(listener)

    def off(self, event_type: EventType, listener: EventListener) -> None:
        """Unsubscribe from a specific event type; unknown listeners are ignored."""
        listeners = self._listeners.get(event_type)
        if listeners and listener in listeners:
            listeners.remove(listener)

    def off_any(self, listener: EventListener) -> None:
        """Remove a wildcard subscription; unknown listeners are ignored."""
        if listener in self._any_listeners:
            self._any_listeners.remove(listener)

    def emit(self, event: FormEvent) -> None:
        """Dispatch an event to typed listeners, then wildcard listeners."""
        # snapshot so listeners may unsubscribe while being called
        targets = list(self._listeners.get(event.type, ())) + list(self._any_listeners)
        for listener in targets:
            try:
                listener(event)
            except Exception:
                logger.exception("Event listener %r failed on %s", listener, event.type.value)

    def clear(self) -> None:
        """Remove all event listeners."""
        self._listeners.clear()
        self._any_listeners.clear()

    def listener_count(self, event_type: Optional[EventType] = None) -> int:
        """Number of listeners for one type, or all listeners including wildcards."""
        if event_type is not None:
            return len(self._listeners.get(event_type, []))
        return len(self._any_listeners) + sum(len(v) for v in self._listeners.values())


__all__ = [
    "FormEvent",
    "EventListener",
    "EventEmitter",
    "new_event_id",
]
