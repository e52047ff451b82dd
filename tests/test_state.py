"""
Tests for FormState and its reducers.

Tests cover:
- Initial state defaults and the derived is_valid flag
- Field change, touch, submission and load reducers
- Snapshots not aliasing the original state
- Dict serialization
"""

import dataclasses

import pytest

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
from formstate.validation import ValidationErrors

from tests.sample_forms import LoginForm


class TestInitialState:
    """Tests for initial_state and reset_state."""

    def test_defaults(self):
        """Should start clean, valid and untouched."""
        state = initial_state(LoginForm())
        assert state.errors.is_empty()
        assert state.is_valid
        assert not state.is_dirty
        assert not state.is_submitting
        assert state.touched_fields == frozenset()

    def test_reset_matches_initial(self):
        """Should produce the same state as initial_state."""
        assert reset_state(LoginForm()) == initial_state(LoginForm())

    def test_state_is_immutable(self):
        """Should refuse attribute assignment."""
        state = initial_state(LoginForm())
        with pytest.raises(dataclasses.FrozenInstanceError):
            state.is_dirty = True


class TestReducers:
    """Tests for the state reducers."""

    def test_apply_field_change(self):
        """Should mark the form dirty and the field touched."""
        state = initial_state(LoginForm())
        changed = apply_field_change(state, "email", LoginForm(email="a@b.co"))
        assert changed.is_dirty
        assert changed.is_touched("email")
        assert changed.values.email == "a@b.co"
        assert state.values.email == ""

    def test_apply_field_change_replaces_errors_when_given(self):
        """Should keep errors unless new ones are passed."""
        state = replace_errors(initial_state(LoginForm()), ValidationErrors({"email": ["x"]}))
        kept = apply_field_change(state, "password", LoginForm())
        replaced = apply_field_change(state, "email", LoginForm(), ValidationErrors())
        assert kept.errors.to_dict() == {"email": ["x"]}
        assert replaced.is_valid

    def test_is_valid_follows_errors(self):
        """Should derive validity from the error mapping."""
        state = replace_errors(initial_state(LoginForm()), ValidationErrors({"form": ["nope"]}))
        assert not state.is_valid

    def test_touch_field(self):
        """Should add the field to the touched set without dirtying the form."""
        state = touch_field(initial_state(LoginForm()), "email")
        assert state.touched_fields == frozenset({"email"})
        assert not state.is_dirty

    def test_submission_flags(self):
        """Should toggle is_submitting."""
        state = start_submission(initial_state(LoginForm()))
        assert state.is_submitting
        assert not finish_submission(state).is_submitting

    def test_loaded_state(self):
        """Should replace values, clear errors and the dirty flag, keep touched."""
        state = apply_field_change(initial_state(LoginForm()), "email", LoginForm(email="x"),
                                   ValidationErrors({"email": ["bad"]}))
        loaded = loaded_state(state, LoginForm(email="saved@b.co"))
        assert loaded.values.email == "saved@b.co"
        assert loaded.errors.is_empty()
        assert not loaded.is_dirty
        assert loaded.touched_fields == frozenset({"email"})


class TestSnapshot:
    """Tests for snapshot and serialization."""

    def test_snapshot_does_not_alias(self):
        """Should deep-copy values and errors."""
        state = replace_errors(initial_state(LoginForm()), ValidationErrors({"email": ["x"]}))
        copy = snapshot(state)
        copy.values.email = "changed"
        copy.errors.add_field_error("password", "y")
        assert state.values.email == ""
        assert state.errors.to_dict() == {"email": ["x"]}
        assert copy == snapshot(copy)

    def test_to_dict(self):
        """Should serialize values and flags with camelCase keys."""
        state = apply_field_change(initial_state(LoginForm()), "email", LoginForm(email="a@b.co"))
        assert state.to_dict() == {
            "values": {"email": "a@b.co", "password": ""},
            "errors": {},
            "isValid": True,
            "isDirty": True,
            "isSubmitting": False,
            "touchedFields": ["email"],
        }

    def test_generic_values(self):
        """Should accept values without a to_dict method."""
        state = FormState(values={"raw": 1})
        assert state.to_dict()["values"] == {"raw": 1}
