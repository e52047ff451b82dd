"""
Tests for FormHandle.

Tests cover:
- Field access, type mismatches and unknown fields
- Validation on change, on blur and on submit
- Dependency propagation to dependent fields
- Subscriber notifications (one per operation, in order, re-entrant safe)
- Debounced validation on the manual clock
- Submission: invalid forms, callback errors, re-entrant submits, async
  callbacks and cancellation
- Reset, load and clear operations
- Array field helpers
- Introspection helpers and events
- Disposal
"""

import asyncio

import pytest

from formstate.config import FormConfig, RuntimeConfig
from formstate.errors import FieldNotFoundError, FieldTypeMismatchError, FormDisposedError
from formstate.handle import Debouncer, FormHandle, SubmissionResult
from formstate.reactive import TrackingRuntime, create_runtime
from formstate.schema import FieldMetadata, FormSchema
from formstate.state_machine import InvalidStateTransitionError
from formstate.types import EventType, FieldKind, FieldValue, SubmissionState, ValidationMode
from formstate.validation import ValidationEngine
from formstate.validators import Validator

from tests.sample_forms import ChainForm, ContactForm, LoginForm, RegistrationForm, valid_registration


def collect_states(handle):
    states = []
    handle.subscribe(states.append)
    return states


class TestFieldAccess:
    """Tests for reading and writing fields."""

    def test_initial_state(self):
        """Should start from default values, clean and valid."""
        handle = FormHandle(LoginForm)
        assert handle.values == LoginForm()
        assert handle.is_valid
        assert not handle.is_dirty
        assert not handle.is_submitting
        assert handle.touched_fields == frozenset()
        assert handle.submission_state == SubmissionState.IDLE

    def test_initial_values_are_copied(self):
        """Should not alias the record passed in."""
        record = LoginForm(email="a@b.co")
        handle = FormHandle(LoginForm, record)
        record.email = "changed"
        assert handle.get_field_value("email") == FieldValue.string("a@b.co")

    def test_for_record(self):
        """Should infer the form type from a record."""
        handle = FormHandle.for_record(valid_registration())
        assert handle.form_type is RegistrationForm
        assert handle.form_name == "registration"

    def test_set_field_value(self):
        """Should store the value, mark dirty and touched."""
        handle = FormHandle(LoginForm)
        handle.set_field_value("email", "a@b.co")
        assert handle.values.email == "a@b.co"
        assert handle.is_dirty
        assert handle.is_field_touched("email")
        assert not handle.is_field_touched("password")

    def test_values_returns_a_copy(self):
        """Should not let callers mutate internal state."""
        handle = FormHandle(LoginForm)
        handle.values.email = "sneaky"
        assert handle.values.email == ""

    def test_type_mismatch_leaves_state_unchanged(self):
        """Should raise and keep the previous value."""
        handle = FormHandle(RegistrationForm)
        handle.set_field_value("age", 30)
        states = collect_states(handle)
        with pytest.raises(FieldTypeMismatchError) as exc_info:
            handle.set_field_value("age", "x")
        assert exc_info.value.field == "age"
        assert handle.get_field_value("age") == FieldValue.number(30)
        assert states == []

    def test_unrepresentable_value(self):
        """Should report values without a FieldValue form as mismatches."""
        handle = FormHandle(RegistrationForm)
        with pytest.raises(FieldTypeMismatchError) as exc_info:
            handle.set_field_value("company_name", object())
        assert exc_info.value.received == "object"

    def test_record_can_refuse_values(self):
        """Should propagate a refusal from the record's set_field."""
        handle = FormHandle(ContactForm)
        with pytest.raises(FieldTypeMismatchError):
            handle.set_field_value("nickname", None)
        assert not handle.is_dirty

    def test_unknown_field(self):
        """Should raise FieldNotFoundError."""
        handle = FormHandle(LoginForm)
        with pytest.raises(FieldNotFoundError):
            handle.set_field_value("nope", "x")
        with pytest.raises(FieldNotFoundError):
            handle.get_field_value("nope")

    def test_set_field_values(self):
        """Should apply updates in order."""
        handle = FormHandle(LoginForm)
        states = collect_states(handle)
        handle.set_field_values({"email": "a@b.co", "password": "longenough1"})
        assert len(states) == 2
        assert handle.is_valid
        assert handle.touched_fields == frozenset({"email", "password"})


class TestValidationModes:
    """Tests for when validation runs."""

    def test_on_change_validates_the_changed_field(self):
        """Should validate only the changed field and its dependents."""
        handle = FormHandle(LoginForm)
        handle.set_field_value("password", "short")
        assert handle.errors.to_dict() == {"password": ["Password must be at least 8 characters"]}
        assert handle.get_field_errors("email") == []

    def test_on_change_clears_fixed_errors(self):
        """Should drop a field's message once it becomes valid."""
        handle = FormHandle(LoginForm)
        handle.set_field_value("email", "bad")
        assert handle.get_field_errors("email") == ["Email must be a valid email address"]
        handle.set_field_value("email", "a@b.co")
        assert handle.get_field_errors("email") == []

    def test_on_blur(self):
        """Should validate when the field is touched, not when it changes."""
        handle = FormHandle(LoginForm, config=FormConfig(validation_mode=ValidationMode.ON_BLUR))
        handle.set_field_value("email", "bad")
        assert handle.is_valid
        handle.touch_field("email")
        assert handle.get_field_errors("email") == ["Email must be a valid email address"]

    def test_on_submit(self):
        """Should only validate on validate() or submit()."""
        handle = FormHandle(LoginForm, config=FormConfig(validation_mode="on_submit"))
        handle.set_field_value("email", "bad")
        handle.touch_field("email")
        assert handle.is_valid
        assert not handle.validate().is_valid

    def test_touch_without_validation(self):
        """Should mark the field touched without dirtying the form."""
        handle = FormHandle(LoginForm)
        handle.touch_field("email")
        assert handle.is_field_touched("email")
        assert not handle.is_dirty
        assert handle.is_valid

    def test_validate_login_messages(self):
        """Should report the exact messages of the login form."""
        handle = FormHandle(LoginForm, LoginForm(email="", password="short"))
        result = handle.validate()
        assert not result.is_valid
        assert result.errors.to_dict() == {
            "email": ["Email is required"],
            "password": ["Password must be at least 8 characters"],
        }
        assert handle.errors == result.errors

    def test_validate_is_idempotent(self):
        """Should produce equal results without changing dirty or touched."""
        handle = FormHandle(RegistrationForm)
        first = handle.validate()
        second = handle.validate()
        assert first.errors == second.errors
        assert not handle.is_dirty
        assert handle.touched_fields == frozenset()

    def test_validate_field(self):
        """Should replace the errors of a single field."""
        handle = FormHandle(LoginForm)
        assert handle.validate_field("email") == ["Email is required"]
        assert handle.errors.to_dict() == {"email": ["Email is required"]}
        with pytest.raises(FieldNotFoundError):
            handle.validate_field("nope")

    def test_validate_fields(self):
        """Should validate a group of fields with one notification."""
        handle = FormHandle(RegistrationForm)
        states = collect_states(handle)
        errors = handle.validate_fields(["email", "password", "age"])
        assert errors.to_dict() == {
            "email": ["Email is required"],
            "password": ["Password is required"],
        }
        assert len(states) == 1
        assert handle.errors.fields() == ("email", "password")
        with pytest.raises(FieldNotFoundError):
            handle.validate_fields(["email", "nope"])

    def test_clear_errors(self):
        """Should drop all or selected messages."""
        handle = FormHandle(RegistrationForm, valid_registration(confirm_password="x", email="bad"))
        handle.validate()
        handle.clear_field_errors("email")
        assert handle.errors.fields() == ("confirm_password",)
        handle.clear_errors()
        assert handle.is_valid


class TestDependencyPropagation:
    """Tests for revalidation of dependent fields."""

    def test_condition_change_revalidates_dependent(self):
        """Should flag the company name when the account becomes a business."""
        handle = FormHandle(RegistrationForm)
        handle.set_field_value("account_type", "business")
        assert handle.errors.to_dict() == {"company_name": ["Company name is required"]}
        handle.set_field_value("account_type", "personal")
        assert handle.is_valid

    def test_dependent_error_clears_when_fixed(self):
        """Should clear the dependent's error once it is filled in."""
        handle = FormHandle(RegistrationForm)
        handle.set_field_value("account_type", "business")
        handle.set_field_value("company_name", "Acme")
        assert handle.get_field_errors("company_name") == []

    def test_transitive_propagation(self):
        """Should revalidate indirect dependents in one operation."""
        handle = FormHandle(ChainForm, ChainForm(billing="x", shipping=""))
        states = collect_states(handle)
        handle.set_field_value("country", "NO")
        assert len(states) == 1
        assert states[0].errors.to_dict() == {"shipping": ["Shipping is required"]}

    def test_unrelated_errors_are_kept(self):
        """Should leave errors of unaffected fields alone."""
        handle = FormHandle(RegistrationForm)
        handle.validate()
        handle.set_field_value("account_type", "business")
        assert set(handle.errors.fields()) == {"email", "password", "company_name"}

    def test_change_keeps_cross_field_error(self):
        """Should re-run form-level validators when the field changes."""
        handle = FormHandle(RegistrationForm, valid_registration(confirm_password="different1"))
        assert not handle.validate().is_valid
        handle.set_field_value("confirm_password", "stilldifferent")
        assert not handle.is_valid
        assert handle.errors.to_dict() == {"confirm_password": ["Confirm password must match password"]}
        assert not handle.submit().success
        handle.set_field_value("confirm_password", "longenough1")
        assert handle.is_valid

    def test_change_keeps_record_hook_error(self):
        """Should re-run the record's own validate() hook when the field changes."""
        handle = FormHandle(ContactForm, ContactForm({"newsletter": True}))
        handle.set_field_value("nickname", "")
        assert not handle.is_valid
        assert handle.get_field_errors("nickname") == ["Nickname is needed for the newsletter"]
        handle.set_field_value("nickname", "neo")
        assert handle.is_valid

    def test_validate_field_includes_form_rules(self):
        """Should report a cross-field message for the validated field."""
        handle = FormHandle(RegistrationForm, valid_registration(confirm_password="other"))
        assert handle.validate_field("confirm_password") == ["Confirm password must match password"]
        assert handle.errors.fields() == ("confirm_password",)


class TestSubscriptions:
    """Tests for state notifications."""

    def test_one_notification_per_operation(self):
        """Should notify exactly once for each state change."""
        handle = FormHandle(RegistrationForm)
        states = collect_states(handle)
        handle.set_field_value("account_type", "business")
        handle.touch_field("email")
        handle.validate()
        assert len(states) == 3
        assert states[0].values.account_type == "business"
        assert states[0].is_dirty

    def test_snapshots_are_independent(self):
        """Should hand out copies that do not alias internal state."""
        handle = FormHandle(LoginForm)
        states = collect_states(handle)
        handle.set_field_value("email", "a@b.co")
        states[0].values.email = "mutated"
        states[0].errors.add_field_error("email", "fake")
        assert handle.values.email == "a@b.co"
        assert handle.is_valid

    def test_failing_subscriber_does_not_block_others(self):
        """Should keep notifying after a subscriber raises."""
        handle = FormHandle(LoginForm)

        def broken(state):
            raise RuntimeError("boom")

        handle.subscribe(broken)
        states = collect_states(handle)
        handle.set_field_value("email", "a@b.co")
        assert len(states) == 1

    def test_reentrant_mutation_is_not_lost(self):
        """Should deliver both states in order when a subscriber mutates."""
        handle = FormHandle(RegistrationForm)
        seen = []

        def autofill(state):
            if state.values.email and not state.values.company_name:
                handle.set_field_value("company_name", "Acme")

        handle.subscribe(autofill)
        handle.subscribe(lambda state: seen.append((state.values.email, state.values.company_name)))
        handle.set_field_value("email", "x@acme.io")
        assert seen == [("x@acme.io", ""), ("x@acme.io", "Acme")]
        assert handle.values.company_name == "Acme"
        assert handle.values.email == "x@acme.io"

    def test_unsubscribe(self):
        """Should stop notifications and report unknown ids."""
        handle = FormHandle(LoginForm)
        states = []
        sid = handle.subscribe(states.append)
        assert handle.subscriber_count == 1
        assert handle.unsubscribe(sid)
        assert not handle.unsubscribe(sid)
        handle.set_field_value("email", "a@b.co")
        assert states == []
        assert handle.subscriber_count == 0


class TestDebouncedValidation:
    """Tests for schedule_validation on the manual clock."""

    def test_only_last_request_runs(self):
        """Should validate once for several requests within the window."""
        handle = FormHandle(LoginForm, config=FormConfig(validation_mode=ValidationMode.ON_SUBMIT))
        states = collect_states(handle)
        first = handle.schedule_validation("email")
        handle.schedule_validation("email")
        handle.schedule_validation("email")
        assert first.cancelled
        assert handle.pending_validations == ("email",)
        assert handle.runtime.scheduler.advance(299) == 0
        assert handle.runtime.scheduler.advance(1) == 1
        assert len(states) == 1
        assert handle.get_field_errors("email") == ["Email is required"]
        assert handle.pending_validations == ()

    def test_custom_delay(self):
        """Should use the given delay instead of the configured one."""
        handle = FormHandle(LoginForm, config=FormConfig(debounce_ms=1000))
        handle.schedule_validation("password", delay_ms=10)
        handle.runtime.scheduler.advance(10)
        assert handle.get_field_errors("password") == ["Password is required"]

    def test_runs_against_latest_values(self):
        """Should validate the values current when the timer fires."""
        handle = FormHandle(LoginForm, config=FormConfig(validation_mode=ValidationMode.ON_SUBMIT))
        handle.schedule_validation("email")
        handle.set_field_value("email", "a@b.co")
        handle.runtime.scheduler.advance(300)
        assert handle.is_valid

    def test_counts_validator_runs(self):
        """Should invoke the field's validators once after the quiet period."""
        runs = []

        def counting(value, record):
            runs.append(value.as_string())
            return None

        schema = FormSchema("counted", [
            FieldMetadata("email", validators=(Validator.custom("counting"),)),
            FieldMetadata("password"),
        ])
        counted = FormHandle(
            LoginForm,
            config=FormConfig(validation_mode=ValidationMode.ON_SUBMIT),
            engine=ValidationEngine(schema, {"counting": counting}),
        )
        for text in ("a", "ab", "abc"):
            counted.set_field_value("email", text)
            counted.schedule_validation("email")
        counted.runtime.scheduler.advance(300)
        assert runs == ["abc"]

    def test_cancel_scheduled_validation(self):
        """Should drop a pending request."""
        handle = FormHandle(LoginForm)
        handle.schedule_validation("email")
        assert handle.cancel_scheduled_validation("email")
        assert not handle.cancel_scheduled_validation("email")
        assert handle.runtime.scheduler.advance(1000) == 0

    def test_unknown_field(self):
        """Should refuse to schedule unknown fields."""
        with pytest.raises(FieldNotFoundError):
            FormHandle(LoginForm).schedule_validation("nope")

    def test_debouncer_keys_are_independent(self):
        """Should keep one timer per key."""
        runtime = create_runtime()
        debouncer = Debouncer(runtime)
        calls = []
        debouncer.schedule("a", 10, lambda: calls.append("a"))
        debouncer.schedule("b", 10, lambda: calls.append("b"))
        assert set(debouncer.pending()) == {"a", "b"}
        assert debouncer.is_pending("a")
        runtime.scheduler.advance(10)
        assert sorted(calls) == ["a", "b"]
        assert debouncer.cancel_all() == 0


class TestSubmission:
    """Tests for submit()."""

    def test_invalid_form_never_calls_callback(self):
        """Should fail with errors and clear is_submitting."""
        handle = FormHandle(LoginForm)
        calls = []
        states = collect_states(handle)
        result = handle.submit(calls.append)
        assert not result.success
        assert result.is_validation_failure
        assert result.errors.to_dict() == {"email": ["Email is required"], "password": ["Password is required"]}
        assert calls == []
        assert not handle.is_submitting
        assert handle.submission_state == SubmissionState.FAILED
        assert [s.is_submitting for s in states] == [True, True, False]

    def test_valid_submission(self):
        """Should pass a copy of the values and keep the callback's result."""
        handle = FormHandle(LoginForm, LoginForm(email="a@b.co", password="longenough1"))
        received = []

        def send(values):
            received.append(values)
            values.email = "mutated"
            return {"id": 7}

        result = handle.submit(send)
        assert result.success
        assert result.result == {"id": 7}
        assert received[0].password == "longenough1"
        assert handle.values.email == "a@b.co"
        assert handle.submission_state == SubmissionState.SUCCEEDED
        assert result.to_dict() == {"success": True}

    def test_submit_without_callback(self):
        """Should succeed when the form is valid."""
        handle = FormHandle(LoginForm, LoginForm(email="a@b.co", password="longenough1"))
        result = handle.submit()
        assert result.success
        assert result.data == handle.values

    def test_callback_error_is_captured(self):
        """Should report the exception and clear is_submitting."""
        handle = FormHandle(LoginForm, LoginForm(email="a@b.co", password="longenough1"))

        def failing(values):
            raise ConnectionError("server down")

        result = handle.submit(failing)
        assert not result.success
        assert isinstance(result.error, ConnectionError)
        assert not result.is_validation_failure
        assert not handle.is_submitting
        assert handle.submission_state == SubmissionState.FAILED
        assert result.to_dict() == {"success": False, "error": "ConnectionError: server down"}

    def test_reentrant_submit_is_rejected(self):
        """Should refuse a second submit while one is running."""
        handle = FormHandle(LoginForm, LoginForm(email="a@b.co", password="longenough1"))
        result = handle.submit(lambda values: handle.submit())
        assert isinstance(result.error, InvalidStateTransitionError)
        assert not handle.is_submitting

    def test_submit_again_after_failure(self):
        """Should allow a new submission once the previous one finished."""
        handle = FormHandle(LoginForm)
        assert not handle.submit().success
        handle.set_field_values({"email": "a@b.co", "password": "longenough1"})
        assert handle.submit().success
        assert [e.type for e in handle.submission_events] == [
            EventType.SUBMISSION_STARTED,
            EventType.SUBMISSION_FAILED,
            EventType.SUBMISSION_STARTED,
            EventType.SUBMISSION_SUCCEEDED,
        ]

    def test_submission_events(self):
        """Should emit start, validation and outcome events."""
        handle = FormHandle(LoginForm)
        events = []
        handle.events.on_any(events.append)
        handle.submit()
        assert [e.type for e in events] == [
            EventType.SUBMISSION_STARTED,
            EventType.VALIDATION_FAILED,
            EventType.SUBMISSION_FAILED,
        ]
        assert events[1].payload["errors"]["email"] == ["Email is required"]
        assert events[2].payload["validationFailed"] is True

    def test_submission_result_defaults(self):
        """Should default to no errors and no exception."""
        result = SubmissionResult(success=False)
        assert not result.is_validation_failure
        assert result.to_dict() == {"success": False}


class TestAsyncSubmission:
    """Tests for submit_async()."""

    def test_async_callback(self):
        """Should await coroutine callbacks."""
        handle = FormHandle(LoginForm, LoginForm(email="a@b.co", password="longenough1"))

        async def send(values):
            await asyncio.sleep(0)
            return values.email

        result = asyncio.run(handle.submit_async(send))
        assert result.success
        assert result.result == "a@b.co"
        assert not handle.is_submitting

    def test_sync_callback(self):
        """Should accept plain callbacks too."""
        handle = FormHandle(LoginForm, LoginForm(email="a@b.co", password="longenough1"))
        result = asyncio.run(handle.submit_async(lambda values: "ok"))
        assert result.result == "ok"

    def test_invalid_form(self):
        """Should not call the callback for an invalid form."""
        handle = FormHandle(LoginForm)
        calls = []

        async def send(values):
            calls.append(values)

        result = asyncio.run(handle.submit_async(send))
        assert not result.success
        assert calls == []

    def test_async_callback_error(self):
        """Should capture exceptions raised by coroutine callbacks."""
        handle = FormHandle(LoginForm, LoginForm(email="a@b.co", password="longenough1"))

        async def send(values):
            raise ValueError("rejected")

        result = asyncio.run(handle.submit_async(send))
        assert isinstance(result.error, ValueError)
        assert handle.submission_state == SubmissionState.FAILED

    def test_cancellation_clears_submitting(self):
        """Should clear is_submitting and re-raise when the task is cancelled."""
        handle = FormHandle(LoginForm, LoginForm(email="a@b.co", password="longenough1"))

        async def scenario():
            started = asyncio.Event()

            async def slow(values):
                started.set()
                await asyncio.sleep(10)

            task = asyncio.ensure_future(handle.submit_async(slow))
            await started.wait()
            assert handle.is_submitting
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(scenario())
        assert not handle.is_submitting
        assert handle.submission_state == SubmissionState.FAILED


class TestResetAndLoad:
    """Tests for reset(), load_values() and clearing."""

    def test_reset(self):
        """Should restore defaults with no errors, not dirty, nothing touched."""
        handle = FormHandle(LoginForm)
        handle.set_field_value("email", "bad")
        handle.touch_field("password")
        handle.reset()
        assert handle.values == LoginForm()
        assert handle.is_valid
        assert not handle.is_dirty
        assert handle.touched_fields == frozenset()

    def test_reset_cancels_pending_validations(self):
        """Should drop debounced validations."""
        handle = FormHandle(LoginForm)
        handle.schedule_validation("email")
        handle.reset()
        assert handle.pending_validations == ()
        assert handle.runtime.scheduler.advance(1000) == 0
        assert handle.is_valid

    def test_reset_after_submission(self):
        """Should return the submission state to idle."""
        handle = FormHandle(LoginForm)
        handle.submit()
        events = []
        handle.events.on(EventType.FORM_RESET, events.append)
        handle.reset()
        assert handle.submission_state == SubmissionState.IDLE
        assert events[0].payload == {"fromState": "failed", "toState": "idle"}

    def test_reset_before_any_submission(self):
        """Should emit a plain reset event."""
        handle = FormHandle(LoginForm)
        events = []
        handle.events.on(EventType.FORM_RESET, events.append)
        handle.reset()
        assert len(events) == 1
        assert events[0].payload is None

    def test_reset_during_submission_keeps_flag_until_finished(self):
        """Should let the running submission clear is_submitting."""
        handle = FormHandle(LoginForm, LoginForm(email="a@b.co", password="longenough1"))
        during = []

        def callback(values):
            handle.reset()
            during.append(handle.is_submitting)

        handle.submit(callback)
        assert during == [True]
        assert not handle.is_submitting
        assert handle.values == LoginForm()

    def test_load_values(self):
        """Should replace the record as one clean state."""
        handle = FormHandle(LoginForm)
        handle.set_field_value("email", "bad")
        states = collect_states(handle)
        handle.load_values(LoginForm(email="saved@b.co"))
        assert len(states) == 1
        assert handle.values.email == "saved@b.co"
        assert not handle.is_dirty
        assert handle.is_valid


class TestArrayFields:
    """Tests for the array helpers."""

    def test_add_and_batch_add(self):
        """Should append items."""
        handle = FormHandle(RegistrationForm)
        handle.add_array_item("tags", "a")
        handle.batch_add_array_items("tags", ["b", "c"])
        assert handle.values.tags == ["a", "b", "c"]
        assert handle.get_array_length("tags") == 3

    def test_insert_remove_and_set(self):
        """Should edit items by index and ignore out-of-range indexes."""
        handle = FormHandle(RegistrationForm, RegistrationForm(tags=["a", "c"]))
        assert handle.insert_array_item("tags", 1, "b")
        assert handle.insert_array_item("tags", 3, "d")
        assert not handle.insert_array_item("tags", 9, "x")
        assert handle.values.tags == ["a", "b", "c", "d"]
        assert handle.remove_array_item("tags", 0)
        assert not handle.remove_array_item("tags", 5)
        assert handle.set_array_item("tags", 0, "B")
        assert handle.values.tags == ["B", "c", "d"]
        assert handle.get_array_item("tags", 2) == FieldValue.string("d")
        assert handle.get_array_item("tags", 3) is None

    def test_move_swap_duplicate(self):
        """Should reorder and copy items."""
        handle = FormHandle(RegistrationForm, RegistrationForm(tags=["a", "b", "c"]))
        assert handle.move_array_item("tags", 0, 2)
        assert handle.values.tags == ["b", "c", "a"]
        assert handle.swap_array_items("tags", 0, 1)
        assert handle.values.tags == ["c", "b", "a"]
        assert handle.duplicate_array_item("tags", 1)
        assert handle.values.tags == ["c", "b", "b", "a"]
        assert not handle.move_array_item("tags", 0, 4)

    def test_no_op_does_not_notify(self):
        """Should not publish a state for out-of-range operations."""
        handle = FormHandle(RegistrationForm)
        states = collect_states(handle)
        assert not handle.remove_array_item("tags", 0)
        assert states == []
        assert not handle.is_dirty

    def test_clear_array(self):
        """Should empty the array."""
        handle = FormHandle(RegistrationForm, RegistrationForm(tags=["a"]))
        handle.clear_array("tags")
        assert handle.values.tags == []

    def test_wrong_item_type(self):
        """Should reject items that do not fit the inner type."""
        handle = FormHandle(RegistrationForm)
        with pytest.raises(FieldTypeMismatchError):
            handle.add_array_item("tags", 5)
        assert handle.values.tags == []

    def test_non_array_field(self):
        """Should refuse array operations on scalar fields."""
        handle = FormHandle(RegistrationForm)
        with pytest.raises(FieldTypeMismatchError):
            handle.add_array_item("email", "x")


class TestIntrospection:
    """Tests for metadata helpers and events."""

    def test_field_metadata_helpers(self):
        """Should expose metadata, required flags and types."""
        handle = FormHandle(RegistrationForm)
        assert handle.get_field_metadata("email").label == "Email"
        assert handle.get_field_metadata("nope") is None
        assert handle.is_field_required("email")
        assert not handle.is_field_required("company_name")
        assert not handle.is_field_required("nope")
        assert handle.get_field_type("tags").kind == FieldKind.ARRAY
        assert handle.get_field_type("nope") is None

    def test_state_snapshot(self):
        """Should return a serializable snapshot."""
        handle = FormHandle(LoginForm)
        handle.set_field_value("email", "a@b.co")
        assert handle.state.to_dict()["touchedFields"] == ["email"]

    def test_field_events(self):
        """Should emit change and touch events with the field name."""
        handle = FormHandle(LoginForm)
        events = []
        handle.events.on_any(events.append)
        handle.set_field_value("email", "a@b.co")
        handle.touch_field("password")
        assert [(e.type, e.field) for e in events] == [
            (EventType.FIELD_CHANGED, "email"),
            (EventType.FIELD_TOUCHED, "password"),
        ]
        assert events[0].payload == {"kind": "string"}
        assert events[0].form_name == "LoginForm"

    def test_form_name_from_config(self):
        """Should prefer the configured form name."""
        handle = FormHandle(LoginForm, config=FormConfig(form_name="signin"))
        assert handle.form_name == "signin"

    def test_both_runtime_generations_agree(self):
        """Should derive the same flags on tracking and explicit runtimes."""
        for generation in ("tracking", "explicit"):
            handle = FormHandle(LoginForm, config=FormConfig(runtime=RuntimeConfig(generation=generation)))
            handle.set_field_value("email", "bad")
            assert not handle.is_valid
            assert handle.is_dirty
            handle.set_field_value("email", "a@b.co")
            assert handle.is_valid
            assert handle.touched_fields == frozenset({"email"})


class TestDisposal:
    """Tests for dispose()."""

    def test_dispose_releases_everything(self):
        """Should cancel timers, drop subscribers and refuse further use."""
        handle = FormHandle(LoginForm)
        states = collect_states(handle)
        handle.schedule_validation("email")
        handle.dispose()
        assert handle.is_disposed
        assert handle.subscriber_count == 0
        assert handle.submission_state == SubmissionState.DISPOSED
        assert handle.runtime.is_disposed
        assert handle.runtime.scheduler.pending_count() == 0
        with pytest.raises(FormDisposedError):
            handle.set_field_value("email", "x")
        with pytest.raises(FormDisposedError):
            handle.submit()
        assert states == []

    def test_dispose_is_idempotent(self):
        """Should allow repeated dispose calls."""
        handle = FormHandle(LoginForm)
        handle.dispose()
        handle.dispose()
        assert handle.is_disposed

    def test_dispose_event(self):
        """Should emit a final disposed event."""
        handle = FormHandle(LoginForm)
        events = []
        handle.events.on(EventType.FORM_DISPOSED, events.append)
        handle.dispose()
        assert len(events) == 1
        assert handle.events.listener_count() == 0

    def test_shared_runtime_is_not_disposed(self):
        """Should leave a runtime passed in alive."""
        runtime = TrackingRuntime()
        handle = FormHandle(LoginForm, runtime=runtime)
        handle.dispose()
        assert not runtime.is_disposed

    def test_context_manager(self):
        """Should dispose on exit."""
        with FormHandle(LoginForm) as handle:
            handle.set_field_value("email", "a@b.co")
        assert handle.is_disposed
