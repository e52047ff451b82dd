"""Submission state machine for form handles.

Every FormHandle owns one SubmissionStateMachine that tracks the submit()
lifecycle and enforces exactly one terminal outcome per submission:

    idle -> submitting -> succeeded | failed
    succeeded | failed -> submitting   (submit again)
    any non-idle state -> idle         (reset)
    any state -> disposed              (terminal)

Usage:
    >>> sm = SubmissionStateMachine(form_name="login")
    >>> sm.state
    <SubmissionState.IDLE: 'idle'>
    >>> _ = sm.transition_to(SubmissionState.SUBMITTING)
    >>> sm.can_transition_to(SubmissionState.SUBMITTING)
    False
    >>> len(sm.get_events())
    1
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from formstate.errors import FormStateError
from formstate.events import FormEvent
from formstate.types import EventType, SubmissionState

logger = logging.getLogger(__name__)


class InvalidStateTransitionError(FormStateError):
    """Raised when a submission transition violates the lifecycle rules.

    Attributes:
        current_state: The state before the attempted transition
        target_state: The state that was attempted
    """

    def __init__(self, current_state: SubmissionState, target_state: SubmissionState, message: str):
        self.current_state = current_state
        self.target_state = target_state
        super().__init__(message)


# Event emitted on entering each state; IDLE is entered through reset
STATE_TO_EVENT_TYPE: Dict[SubmissionState, EventType] = {
    SubmissionState.IDLE: EventType.FORM_RESET,
    SubmissionState.SUBMITTING: EventType.SUBMISSION_STARTED,
    SubmissionState.SUCCEEDED: EventType.SUBMISSION_SUCCEEDED,
    SubmissionState.FAILED: EventType.SUBMISSION_FAILED,
    SubmissionState.DISPOSED: EventType.FORM_DISPOSED,
}


VALID_TRANSITIONS: Dict[SubmissionState, Set[SubmissionState]] = {
    SubmissionState.IDLE: {
        SubmissionState.SUBMITTING,
        SubmissionState.DISPOSED,
    },
    SubmissionState.SUBMITTING: {
        SubmissionState.SUCCEEDED,
        SubmissionState.FAILED,
        SubmissionState.IDLE,
        SubmissionState.DISPOSED,
    },
    SubmissionState.SUCCEEDED: {
        SubmissionState.SUBMITTING,
        SubmissionState.IDLE,
        SubmissionState.DISPOSED,
    },
    SubmissionState.FAILED: {
        SubmissionState.SUBMITTING,
        SubmissionState.IDLE,
        SubmissionState.DISPOSED,
    },
    # Terminal
    SubmissionState.DISPOSED: set(),
}


@dataclass
class SubmissionStateMachine:
    """Submission lifecycle of one form handle.

    Attributes:
        form_name: Name of the owning form, copied into events
        state: Current submission state
    """

    form_name: str = ""
    state: SubmissionState = SubmissionState.IDLE
    _events: List[FormEvent] = field(default_factory=list, init=False, repr=False)

    def can_transition_to(self, target_state: SubmissionState) -> bool:
        """Check if transition to target state is valid."""
        return target_state in VALID_TRANSITIONS.get(self.state, set())

    def transition_to(
        self,
        target_state: SubmissionState,
        payload: Optional[Dict[str, Any]] = None,
    ) -> FormEvent:
        """Move to a new state and record the matching event.

        Returns:
            The recorded FormEvent

        Raises:
            InvalidStateTransitionError: If the transition is not allowed
        """
        if not self.can_transition_to(target_state):
            allowed = VALID_TRANSITIONS[self.state]
            if allowed:
                message = (
                    f"Invalid state transition: cannot transition from "
                    f"'{self.state.value}' to '{target_state.value}'. "
                    f"Valid transitions from '{self.state.value}' are: "
                    f"{', '.join(sorted(s.value for s in allowed))}"
                )
            else:
                message = (
                    f"Invalid state transition: '{self.state.value}' is a terminal state, "
                    f"no transitions are allowed."
                )
            raise InvalidStateTransitionError(self.state, target_state, message)

        old_state = self.state
        self.state = target_state
        logger.debug("Form %r submission state %s -> %s", self.form_name, old_state.value, target_state.value)
        return self._record_event(target_state, old_state, payload)

    def is_terminal(self) -> bool:
        """True once no further transitions are possible (disposed)."""
        return not VALID_TRANSITIONS[self.state]

    def _record_event(
        self,
        new_state: SubmissionState,
        old_state: SubmissionState,
        payload: Optional[Dict[str, Any]],
    ) -> FormEvent:
        body: Dict[str, Any] = {"fromState": old_state.value, "toState": new_state.value}
        if payload:
            body.update(payload)
        event = FormEvent.create(STATE_TO_EVENT_TYPE[new_state], self.form_name, payload=body)
        self._events.append(event)
        return event

    def get_events(self) -> List[FormEvent]:
        """All transition events recorded so far, in chronological order."""
        return list(self._events)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize the state machine to a dictionary.

        Examples:
            >>> SubmissionStateMachine("login", SubmissionState.FAILED).to_dict()
            {'formName': 'login', 'state': 'failed'}
        """
        return {"formName": self.form_name, "state": self.state.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SubmissionStateMachine":
        """Deserialize a state machine from a dictionary."""
        return cls(form_name=data.get("formName", ""), state=SubmissionState(data["state"]))


__all__ = [
    "SubmissionStateMachine",
    "InvalidStateTransitionError",
    "VALID_TRANSITIONS",
    "STATE_TO_EVENT_TYPE",
]
