"""FormHandle: the stateful controller of one form instance.

The handle coordinates the validation engine, the submission state machine,
the event emitter and a reactive runtime to implement the form lifecycle:

- Every state-producing operation builds the complete next FormState and
  publishes it in one step. Subscribers receive exactly one snapshot per
  operation, in registration order.
- A change to a field re-validates that field and every field depending on
  it, dependencies first. Form-level validators and the record hook are
  re-run with them.
- Structural problems (unknown field, type-contract violation, use after
  dispose) raise; validation failures are data.

Example:
    ```python
    handle = FormHandle(LoginForm)
    handle.set_field_value("email", "a@b.com")
    result = handle.submit(lambda values: api.login(values.email, values.password))
    if not result.success:
        show(result.errors)
    ```
"""

import copy
import inspect
import logging
from dataclasses import dataclass, field, replace
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    FrozenSet,
    Generic,
    Iterable,
    List,
    Optional,
    Set,
    Tuple,
    Type,
    TypeVar,
    Union,
)

from formstate.config import FormConfig
from formstate.errors import FieldTypeMismatchError, FormDisposedError
from formstate.events import EventEmitter, FormEvent
from formstate.form import Form
from formstate.reactive import Signal, SubscriptionId, TimerHandle, create_runtime
from formstate.schema import FORM_ERROR_KEY, FieldMetadata, FormSchema
from formstate.state import (
    FormState,
    apply_field_change,
    finish_submission,
    initial_state,
    loaded_state,
    replace_errors,
    reset_state,
    snapshot,
    start_submission,
    touch_field,
)
from formstate.state_machine import SubmissionStateMachine
from formstate.types import EventType, FieldKind, FieldType, FieldValue, SubmissionState, ValidationMode
from formstate.validation import ValidationEngine, ValidationErrors, ValidationResult
from formstate.validators import CustomValidatorFn

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=Form)

SubmitCallback = Callable[[Any], Any]
StateCallback = Callable[[FormState], Any]

_ARRAY_KINDS = frozenset({FieldKind.ARRAY, FieldKind.MULTI_SELECT})


class Debouncer:
    """Keeps at most one pending timer per key.

    Scheduling a key cancels the previous timer for that key first, so only
    the latest request fires.

    Examples:
        >>> from formstate.reactive import create_runtime
        >>> runtime = create_runtime()
        >>> debouncer = Debouncer(runtime)
        >>> calls = []
        >>> _ = debouncer.schedule("email", 300, lambda: calls.append(1))
        >>> _ = debouncer.schedule("email", 300, lambda: calls.append(2))
        >>> runtime.scheduler.advance(300), calls
        (1, [2])
    """

    def __init__(self, runtime: Any) -> None:
        self._runtime = runtime
        self._timers: Dict[str, TimerHandle] = {}

    def schedule(self, key: str, delay_ms: float, callback: Callable[[], Any]) -> TimerHandle:
        self.cancel(key)

        def fire() -> None:
            if self._timers.get(key) is handle:
                del self._timers[key]
            callback()

        handle = self._runtime.set_timeout(delay_ms, fire)
        self._timers[key] = handle
        return handle

    def cancel(self, key: str) -> bool:
        """Cancel the pending timer for key. Returns False if none was pending."""
        handle = self._timers.pop(key, None)
        return handle is not None and handle.cancel()

    def cancel_all(self) -> int:
        """Cancel every pending timer and return how many were cancelled."""
        cancelled = sum(1 for handle in self._timers.values() if handle.cancel())
        self._timers.clear()
        return cancelled

    def pending(self) -> Tuple[str, ...]:
        """Keys with a timer that has neither fired nor been cancelled."""
        return tuple(key for key, handle in self._timers.items() if handle.active)

    def is_pending(self, key: str) -> bool:
        handle = self._timers.get(key)
        return handle is not None and handle.active


@dataclass(frozen=True)
class SubmissionResult:
    """Outcome of FormHandle.submit().

    Attributes:
        success: The form was valid and the callback completed without raising
        data: Copy of the submitted record (None if validation failed)
        errors: Validation errors that blocked the submission
        error: Exception raised by the submit callback, if any
        result: Return value of the submit callback
    """
    success: bool
    data: Any = None
    errors: ValidationErrors = field(default_factory=ValidationErrors)
    error: Optional[BaseException] = None
    result: Any = None

    @property
    def is_validation_failure(self) -> bool:
        return not self.success and self.errors.has_errors()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        result: Dict[str, Any] = {"success": self.success}
        if self.errors.has_errors():
            result["errors"] = self.errors.to_dict()
        if self.error is not None:
            result["error"] = f"{type(self.error).__name__}: {self.error}"
        return result


class FormHandle(Generic[R]):
    """Stateful controller for one form record.

    Attributes:
        form_type: The record class this handle edits
        config: Handle settings (validation mode, debounce delay, runtime)
        form_name: Name used in events and analytics

    Example:
        ```python
        handle = FormHandle(SignupForm, config=FormConfig(debounce_ms=150))
        sid = handle.subscribe(render)
        handle.set_field_value("email", "")   # render() called once
        handle.unsubscribe(sid)
        ```
    """

    def __init__(
        self,
        form_type: Type[R],
        initial_values: Optional[R] = None,
        *,
        config: Optional[FormConfig] = None,
        runtime: Any = None,
        engine: Optional[ValidationEngine] = None,
        custom_validators: Optional[Dict[str, CustomValidatorFn]] = None,
    ) -> None:
        """Create a handle.

        Args:
            form_type: Record class implementing the Form contract
            initial_values: Starting record (deep copied); defaults to
                form_type.default_values()
            config: Handle settings; FormConfig() if omitted
            runtime: Reactive runtime; one is created from config.runtime if
                omitted and disposed together with the handle
            engine: Validation engine; built from form_type.schema() if omitted
            custom_validators: Named validators for a newly built engine

        Raises:
            SchemaError: If the form type's schema is invalid
        """
        self.form_type = form_type
        self.config = config or FormConfig()
        self._engine = engine or ValidationEngine(form_type.schema(), custom_validators)
        self._schema = self._engine.schema
        self.form_name = self.config.form_name or self._schema.name or form_type.__name__

        self._owns_runtime = runtime is None
        self._runtime = runtime if runtime is not None else create_runtime(self.config.runtime)

        if initial_values is not None:
            values = copy.deepcopy(initial_values)
        else:
            values = form_type.default_values()
        self._state: Signal[FormState[R]] = self._runtime.create_signal(
            initial_state(values), name=f"{self.form_name}.state"
        )
        self._subscriber_ids: Set[SubscriptionId] = set()

        deps = [self._state]
        self._is_valid = self._runtime.create_memo(lambda: self._state.get().is_valid, deps)
        self._is_dirty = self._runtime.create_memo(lambda: self._state.get().is_dirty, deps)
        self._is_submitting = self._runtime.create_memo(lambda: self._state.get().is_submitting, deps)
        self._touched = self._runtime.create_memo(lambda: self._state.get().touched_fields, deps)
        self._errors = self._runtime.create_memo(lambda: self._state.get().errors, deps)

        self._events = EventEmitter()
        self._machine = SubmissionStateMachine(form_name=self.form_name)
        self._debouncer = Debouncer(self._runtime)
        self._disposed = False
        logger.debug("Created form handle %r (%d fields)", self.form_name, len(self._schema))

    @classmethod
    def for_record(cls, record: R, **kwargs: Any) -> "FormHandle[R]":
        """Create a handle editing a copy of an existing record."""
        return cls(type(record), record, **kwargs)

    # -- internals ----------------------------------------------------------

    @property
    def _current(self) -> FormState[R]:
        return self._state.get_untracked()

    def _publish(self, state: FormState[R]) -> None:
        self._state.set(state)

    def _emit(self, event_type: EventType, field_name: Optional[str] = None,
              payload: Optional[Dict[str, Any]] = None) -> None:
        self._events.emit(FormEvent.create(event_type, self.form_name, field=field_name, payload=payload))

    def _ensure_active(self) -> None:
        if self._disposed:
            raise FormDisposedError(f"Form handle '{self.form_name}' has been disposed")

    def _revalidate(self, values: R, errors: ValidationErrors, names: Iterable[str]) -> ValidationErrors:
        # form-level messages are recomputed along with the fields
        names = tuple(names)
        updated = errors.without(names + (FORM_ERROR_KEY,))
        updated.merge(self._engine.validate_fields_with_form_rules(values, names))
        return updated

    def _coerce(self, meta: FieldMetadata, value: Any) -> FieldValue:
        try:
            field_value = FieldValue.from_python(value)
        except TypeError:
            raise FieldTypeMismatchError(meta.name, meta.field_type.kind.value, type(value).__name__) from None
        if not meta.field_type.accepts(field_value):
            raise FieldTypeMismatchError(meta.name, meta.field_type.kind.value, field_value.kind.value)
        return field_value

    # -- field access -------------------------------------------------------

    def get_field_value(self, name: str) -> FieldValue:
        """Current value of a field.

        Raises:
            FieldNotFoundError: If the field is not in the schema
        """
        self._schema.require_field(name)
        return FieldValue.from_python(self._current.values.get_field(name))

    def set_field_value(self, name: str, value: Any) -> None:
        """Set a field, re-validate it and its dependents, and notify once.

        Raw Python values are converted with FieldValue.from_python.

        Raises:
            FieldNotFoundError: If the field is not in the schema
            FieldTypeMismatchError: If the value does not fit the field type;
                the state is left unchanged
            FormDisposedError: After dispose()
        """
        self._ensure_active()
        meta = self._schema.require_field(name)
        field_value = self._coerce(meta, value)

        state = self._current
        values = copy.deepcopy(state.values)
        values.set_field(name, field_value)

        errors = None
        if self.config.validation_mode == ValidationMode.ON_CHANGE:
            errors = self._revalidate(values, state.errors, self._engine.revalidation_order(name))
        self._publish(apply_field_change(state, name, values, errors))
        self._emit(EventType.FIELD_CHANGED, field_name=name, payload={"kind": field_value.kind.value})

    def set_field_values(self, updates: Dict[str, Any]) -> None:
        """Set several fields in order; each update is published on its own."""
        for name, value in updates.items():
            self.set_field_value(name, value)

    def touch_field(self, name: str) -> None:
        """Mark a field touched; in ON_BLUR mode also validate it and its dependents."""
        self._ensure_active()
        self._schema.require_field(name)
        state = self._current
        errors = None
        if self.config.validation_mode == ValidationMode.ON_BLUR:
            errors = self._revalidate(state.values, state.errors, self._engine.revalidation_order(name))
        self._publish(touch_field(state, name, errors))
        self._emit(EventType.FIELD_TOUCHED, field_name=name)

    def load_values(self, values: R) -> None:
        """Replace the whole record (e.g. restored from storage): not dirty, errors cleared."""
        self._ensure_active()
        self._publish(loaded_state(self._current, copy.deepcopy(values)))
        self._emit(EventType.FORM_LOADED)

    # -- validation ---------------------------------------------------------

    def validate(self) -> ValidationResult:
        """Full validation of the current values; replaces all errors.

        Dirty and touched flags are left alone. Emits VALIDATION_PASSED or
        VALIDATION_FAILED.
        """
        self._ensure_active()
        state = self._current
        errors = self._engine.validate_form(state.values)
        self._publish(replace_errors(state, errors))
        if errors.is_empty():
            self._emit(EventType.VALIDATION_PASSED)
        else:
            self._emit(EventType.VALIDATION_FAILED, payload={"errors": errors.to_dict()})
        return ValidationResult(is_valid=errors.is_empty(), errors=errors.copy())

    def validate_field(self, name: str) -> List[str]:
        """Validate one field, replace its errors and notify.

        Form-level validators and the record hook are re-run too; their
        messages for this field are included in the result.

        Raises:
            FieldNotFoundError: If the field is not in the schema
        """
        self._ensure_active()
        self._schema.require_field(name)
        state = self._current
        errors = self._revalidate(state.values, state.errors, [name])
        self._publish(replace_errors(state, errors))
        return errors.get_field_errors(name)

    def validate_fields(self, names: Iterable[str]) -> ValidationErrors:
        """Validate several fields with a single notification.

        Returns:
            The messages of the named fields only

        Raises:
            FieldNotFoundError: If a name is not in the schema
        """
        self._ensure_active()
        names = tuple(names)
        for name in names:
            self._schema.require_field(name)
        state = self._current
        errors = self._revalidate(state.values, state.errors, names)
        self._publish(replace_errors(state, errors))
        return ValidationErrors({name: errors.get_field_errors(name) for name in names})

    def schedule_validation(self, name: str, delay_ms: Optional[float] = None) -> TimerHandle:
        """Debounced validate_field(name).

        A newer request for the same field cancels the pending one, so only
        the last request within the window runs.
        """
        self._ensure_active()
        self._schema.require_field(name)
        delay = self.config.debounce_ms if delay_ms is None else delay_ms
        return self._debouncer.schedule(name, delay, lambda: self._run_scheduled_validation(name))

    def _run_scheduled_validation(self, name: str) -> None:
        if self._disposed:
            return
        logger.debug("Running debounced validation of %s.%s", self.form_name, name)
        self.validate_field(name)

    def cancel_scheduled_validation(self, name: str) -> bool:
        return self._debouncer.cancel(name)

    @property
    def pending_validations(self) -> Tuple[str, ...]:
        return self._debouncer.pending()

    def clear_errors(self) -> None:
        self._ensure_active()
        self._publish(replace_errors(self._current, ValidationErrors()))

    def clear_field_errors(self, name: str) -> None:
        """Drop the messages of one field (or of the "form" key)."""
        self._ensure_active()
        if name != FORM_ERROR_KEY:
            self._schema.require_field(name)
        state = self._current
        self._publish(replace_errors(state, state.errors.without([name])))

    def reset(self) -> None:
        """Back to default values with no errors, not dirty, nothing touched.

        Pending debounced validations are cancelled and a finished submission
        returns the state machine to idle.
        """
        self._ensure_active()
        self._debouncer.cancel_all()
        state = self._current
        fresh = reset_state(self.form_type.default_values())
        if state.is_submitting:
            # the running submit() clears the flag when it finishes
            fresh = replace(fresh, is_submitting=True)
        self._publish(fresh)
        if self._machine.state in (SubmissionState.SUCCEEDED, SubmissionState.FAILED):
            self._events.emit(self._machine.transition_to(SubmissionState.IDLE))
        else:
            self._emit(EventType.FORM_RESET)

    # -- submission ---------------------------------------------------------

    def _start_submission(self) -> None:
        # raises InvalidStateTransitionError while a submission is running
        event = self._machine.transition_to(SubmissionState.SUBMITTING)
        self._publish(start_submission(self._current))
        self._events.emit(event)

    def _validate_for_submit(self) -> Optional[SubmissionResult]:
        result = self.validate()
        if result.is_valid:
            return None
        return SubmissionResult(success=False, errors=result.errors)

    def _callback_failed(self, data: Any, exc: BaseException) -> SubmissionResult:
        logger.exception("Submit callback of form %r raised", self.form_name)
        return SubmissionResult(success=False, data=data, error=exc)

    def _finish_submission(self, outcome: Optional[SubmissionResult]) -> None:
        if self._disposed:
            return
        self._publish(finish_submission(self._current))
        if self._machine.state == SubmissionState.SUBMITTING:
            success = outcome is not None and outcome.success
            target = SubmissionState.SUCCEEDED if success else SubmissionState.FAILED
            payload = {"validationFailed": bool(outcome and outcome.is_validation_failure)}
            self._events.emit(self._machine.transition_to(target, payload))

    def submit(self, callback: Optional[SubmitCallback] = None) -> SubmissionResult:
        """Validate, then hand a copy of the values to callback.

        An invalid form never reaches the callback. An exception raised by
        the callback is captured in the result. is_submitting is cleared on
        every path.

        Subscribers are notified three times: when is_submitting turns on,
        with the validation result, and when is_submitting turns off. A view
        therefore sees is_submitting change twice per call.

        Raises:
            InvalidStateTransitionError: If a submission is already running
            FormDisposedError: After dispose()
        """
        self._ensure_active()
        self._start_submission()
        outcome: Optional[SubmissionResult] = None
        try:
            outcome = self._validate_for_submit()
            if outcome is None:
                data = self.values
                try:
                    returned = callback(data) if callback is not None else None
                except Exception as exc:
                    outcome = self._callback_failed(data, exc)
                else:
                    outcome = SubmissionResult(success=True, data=data, result=returned)
            return outcome
        finally:
            self._finish_submission(outcome)

    async def submit_async(
        self,
        callback: Optional[Callable[[Any], Union[Any, Awaitable[Any]]]] = None,
    ) -> SubmissionResult:
        """Coroutine variant of submit() accepting sync or async callbacks.

        Cancellation of the awaiting task still clears is_submitting and
        re-raises asyncio.CancelledError.
        """
        self._ensure_active()
        self._start_submission()
        outcome: Optional[SubmissionResult] = None
        try:
            outcome = self._validate_for_submit()
            if outcome is None:
                data = self.values
                try:
                    returned = callback(data) if callback is not None else None
                    if inspect.isawaitable(returned):
                        returned = await returned
                except Exception as exc:
                    outcome = self._callback_failed(data, exc)
                else:
                    outcome = SubmissionResult(success=True, data=data, result=returned)
            return outcome
        finally:
            self._finish_submission(outcome)

    # -- array fields -------------------------------------------------------

    def _array_items(self, name: str) -> List[FieldValue]:
        meta = self._schema.require_field(name)
        value = self.get_field_value(name)
        if meta.field_type.kind not in _ARRAY_KINDS or not (value.is_null() or value.as_array() is not None):
            raise FieldTypeMismatchError(name, "array", value.kind.value)
        return value.as_array() or []

    def _set_array(self, name: str, items: List[FieldValue]) -> None:
        self.set_field_value(name, FieldValue.array(items))

    def add_array_item(self, name: str, item: Any) -> None:
        items = self._array_items(name)
        items.append(FieldValue.from_python(item))
        self._set_array(name, items)

    def batch_add_array_items(self, name: str, new_items: Iterable[Any]) -> None:
        """Append several items with a single update."""
        items = self._array_items(name)
        items.extend(FieldValue.from_python(item) for item in new_items)
        self._set_array(name, items)

    def insert_array_item(self, name: str, index: int, item: Any) -> bool:
        """Insert before index; index == length appends. Out of range is a no-op."""
        items = self._array_items(name)
        if not 0 <= index <= len(items):
            return False
        items.insert(index, FieldValue.from_python(item))
        self._set_array(name, items)
        return True

    def remove_array_item(self, name: str, index: int) -> bool:
        items = self._array_items(name)
        if not 0 <= index < len(items):
            return False
        del items[index]
        self._set_array(name, items)
        return True

    def move_array_item(self, name: str, from_index: int, to_index: int) -> bool:
        items = self._array_items(name)
        if not (0 <= from_index < len(items) and 0 <= to_index < len(items)):
            return False
        items.insert(to_index, items.pop(from_index))
        self._set_array(name, items)
        return True

    def swap_array_items(self, name: str, first: int, second: int) -> bool:
        items = self._array_items(name)
        if not (0 <= first < len(items) and 0 <= second < len(items)):
            return False
        items[first], items[second] = items[second], items[first]
        self._set_array(name, items)
        return True

    def duplicate_array_item(self, name: str, index: int) -> bool:
        """Insert a copy of the item right after it."""
        items = self._array_items(name)
        if not 0 <= index < len(items):
            return False
        items.insert(index + 1, items[index])
        self._set_array(name, items)
        return True

    def set_array_item(self, name: str, index: int, item: Any) -> bool:
        items = self._array_items(name)
        if not 0 <= index < len(items):
            return False
        items[index] = FieldValue.from_python(item)
        self._set_array(name, items)
        return True

    def clear_array(self, name: str) -> None:
        self._array_items(name)
        self._set_array(name, [])

    def get_array_length(self, name: str) -> int:
        return len(self._array_items(name))

    def get_array_item(self, name: str, index: int) -> Optional[FieldValue]:
        items = self._array_items(name)
        if not 0 <= index < len(items):
            return None
        return items[index]

    # -- introspection ------------------------------------------------------

    @property
    def schema(self) -> FormSchema:
        return self._schema

    @property
    def engine(self) -> ValidationEngine:
        return self._engine

    @property
    def runtime(self) -> Any:
        return self._runtime

    @property
    def events(self) -> EventEmitter:
        """Emitter of this handle's FormEvents."""
        return self._events

    @property
    def state_signal(self) -> Signal:
        """The signal holding the current FormState, for memos and effects."""
        return self._state

    @property
    def state(self) -> FormState[R]:
        """Snapshot of the current state."""
        return snapshot(self._current)

    @property
    def values(self) -> R:
        """Copy of the current record."""
        return copy.deepcopy(self._current.values)

    @property
    def errors(self) -> ValidationErrors:
        return self._errors.get_untracked().copy()

    @property
    def is_valid(self) -> bool:
        return self._is_valid.get_untracked()

    @property
    def is_dirty(self) -> bool:
        return self._is_dirty.get_untracked()

    @property
    def is_submitting(self) -> bool:
        return self._is_submitting.get_untracked()

    @property
    def touched_fields(self) -> FrozenSet[str]:
        return self._touched.get_untracked()

    @property
    def submission_state(self) -> SubmissionState:
        return self._machine.state

    @property
    def submission_events(self) -> List[FormEvent]:
        """Transition events recorded by the submission state machine."""
        return self._machine.get_events()

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def get_field_errors(self, name: str) -> List[str]:
        return self._current.errors.get_field_errors(name)

    def is_field_touched(self, name: str) -> bool:
        return name in self._current.touched_fields

    def get_field_metadata(self, name: str) -> Optional[FieldMetadata]:
        return self._schema.get_field(name)

    def is_field_required(self, name: str) -> bool:
        meta = self._schema.get_field(name)
        return meta is not None and meta.is_required

    def get_field_type(self, name: str) -> Optional[FieldType]:
        meta = self._schema.get_field(name)
        return meta.field_type if meta is not None else None

    # -- subscriptions ------------------------------------------------------

    def subscribe(self, callback: StateCallback) -> SubscriptionId:
        """Register callback(state) to receive a snapshot after every state change."""
        self._ensure_active()
        sid = self._state.subscribe(lambda state: callback(snapshot(state)))
        self._subscriber_ids.add(sid)
        return sid

    def unsubscribe(self, sid: SubscriptionId) -> bool:
        if sid not in self._subscriber_ids:
            return False
        self._subscriber_ids.discard(sid)
        return self._state.unsubscribe(sid)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriber_ids)

    # -- teardown -----------------------------------------------------------

    def dispose(self) -> None:
        """Release timers, memos, subscribers and listeners. Idempotent."""
        if self._disposed:
            return
        self._debouncer.cancel_all()
        for memo in (self._is_valid, self._is_dirty, self._is_submitting, self._touched, self._errors):
            memo.dispose()
        self._state.clear_subscribers()
        self._subscriber_ids.clear()
        self._events.emit(self._machine.transition_to(SubmissionState.DISPOSED))
        self._events.clear()
        if self._owns_runtime:
            self._runtime.dispose()
        self._disposed = True
        logger.debug("Disposed form handle %r", self.form_name)

    def close(self) -> None:
        self.dispose()

    def __enter__(self) -> "FormHandle[R]":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.dispose()

    def __repr__(self) -> str:
        state = self._current
        return (
            f"FormHandle({self.form_name!r}, valid={state.is_valid}, dirty={state.is_dirty}, "
            f"submitting={state.is_submitting}, state={self._machine.state.value})"
        )


__all__ = [
    "Debouncer",
    "SubmissionResult",
    "FormHandle",
]
