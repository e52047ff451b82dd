"""Persistence and analytics collaborators.

Both collaborators sit outside the validation and state pipeline:

- PersistenceHook saves and restores a handle's record through a storage
  backend, only when asked to (or, once enable_auto_save() was called,
  debounced after changes). Backend failures raise PersistenceError to the
  caller of the hook and never alter the handle's state.
- AnalyticsHook forwards the handle's events to a tracker. Tracker failures
  are logged and swallowed; they never reach form operations.
"""

import asyncio
import json
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from typing_extensions import Protocol, runtime_checkable

from formstate.errors import AnalyticsError, FormStateError, PersistenceError, RecordDecodeError
from formstate.events import FormEvent
from formstate.handle import Debouncer, FormHandle
from formstate.reactive import Effect
from formstate.types import EventType

logger = logging.getLogger(__name__)


@runtime_checkable
class FormPersistence(Protocol):
    """Storage backend for serialized records, addressed by key."""

    def save(self, key: str, data: Dict[str, Any]) -> None:
        ...

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        ...

    def clear(self, key: str) -> None:
        ...

    def exists(self, key: str) -> bool:
        ...


@runtime_checkable
class FormAnalytics(Protocol):
    """Fire-and-forget tracker of form usage."""

    def track_view(self, form_name: str) -> None:
        ...

    def track_field_interaction(self, form_name: str, field_name: str, action: str) -> None:
        ...

    def track_submission(self, form_name: str, success: bool) -> None:
        ...

    def track_validation_errors(self, form_name: str, errors: Dict[str, List[str]]) -> None:
        ...


class MemoryStorage:
    """In-memory storage backend.

    Stored payloads are JSON round-tripped so later changes to the caller's
    dict do not leak into storage.
    """

    def __init__(self) -> None:
        self._storage: Dict[str, str] = {}

    def save(self, key: str, data: Dict[str, Any]) -> None:
        try:
            self._storage[key] = json.dumps(data)
        except (TypeError, ValueError) as e:
            raise PersistenceError(f"Cannot serialize form data for '{key}': {e}", backend="memory") from e

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        text = self._storage.get(key)
        return json.loads(text) if text is not None else None

    def clear(self, key: str) -> None:
        self._storage.pop(key, None)

    def exists(self, key: str) -> bool:
        return key in self._storage

    def keys(self) -> List[str]:
        return sorted(self._storage)


class JsonFileStorage:
    """Stores each key as `<directory>/<key>.json`.

    Writes go to a temporary file that replaces the target, so a crash never
    leaves a truncated document behind.
    """

    def __init__(self, directory: Union[str, Path]) -> None:
        self.directory = Path(directory)

    def path_for(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key in (".", ".."):
            raise PersistenceError(f"Invalid storage key '{key}'", backend="json-file")
        return self.directory / f"{key}.json"

    def save(self, key: str, data: Dict[str, Any]) -> None:
        path = self.path_for(key)
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{key}.", suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(data, fh, indent=2, sort_keys=True)
                os.replace(tmp_name, path)
            except BaseException:
                if os.path.exists(tmp_name):
                    os.unlink(tmp_name)
                raise
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Failed to write {path}: {e}", backend="json-file") from e

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        path = self.path_for(key)
        try:
            with path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            raise PersistenceError(f"Failed to read {path}: {e}", backend="json-file") from e
        if not isinstance(data, dict):
            raise PersistenceError(f"{path} does not contain a JSON object", backend="json-file")
        return data

    def clear(self, key: str) -> None:
        path = self.path_for(key)
        try:
            path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise PersistenceError(f"Failed to delete {path}: {e}", backend="json-file") from e

    def exists(self, key: str) -> bool:
        return self.path_for(key).is_file()


def _backend_name(backend: Any) -> str:
    return type(backend).__name__


class PersistenceHook:
    """Explicit save/load of a handle's record.

    Attributes:
        storage_key: Key under which the record is stored (form name by default)
    """

    AUTO_SAVE_KEY = "__autosave__"

    def __init__(self, handle: FormHandle, backend: FormPersistence, storage_key: Optional[str] = None):
        self.handle = handle
        self.backend = backend
        self.storage_key = storage_key or handle.form_name
        self._auto_save: Optional[Effect] = None
        self._debouncer = Debouncer(handle.runtime)
        self.auto_save_count = 0

    def _call(self, operation: str, fn: Any, *args: Any) -> Any:
        try:
            return fn(*args)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(
                f"{operation} of '{self.storage_key}' failed: {e}", backend=_backend_name(self.backend)
            ) from e

    def _decode(self, data: Dict[str, Any]) -> Any:
        try:
            return self.handle.form_type.from_dict(data)
        except (RecordDecodeError, FormStateError, TypeError, ValueError) as e:
            raise PersistenceError(
                f"Stored data for '{self.storage_key}' does not match the form: {e}",
                backend=_backend_name(self.backend),
            ) from e

    def save(self) -> None:
        """Store the handle's current record.

        Raises:
            PersistenceError: If the backend fails
        """
        data = self.handle.values.to_dict()
        self._call("Save", self.backend.save, self.storage_key, data)
        logger.debug("Saved form %r under %r", self.handle.form_name, self.storage_key)

    def load(self) -> Optional[Any]:
        """Restore the stored record into the handle.

        The record is applied as one notified state, not dirty, errors cleared.

        Returns:
            The loaded record, or None if nothing is stored (state untouched)

        Raises:
            PersistenceError: If the backend fails or the data does not decode
        """
        data = self._call("Load", self.backend.load, self.storage_key)
        if data is None:
            return None
        record = self._decode(data)
        self.handle.load_values(record)
        return record

    def clear(self) -> None:
        self._call("Clear", self.backend.clear, self.storage_key)

    def exists(self) -> bool:
        return bool(self._call("Exists", self.backend.exists, self.storage_key))

    async def save_async(self) -> None:
        """save() with the backend call run in a worker thread."""
        data = self.handle.values.to_dict()
        await asyncio.to_thread(self._call, "Save", self.backend.save, self.storage_key, data)

    async def load_async(self) -> Optional[Any]:
        """load() with the backend call run in a worker thread.

        The handle is only updated after the backend returned; cancelling the
        awaiting task leaves it untouched.
        """
        data = await asyncio.to_thread(self._call, "Load", self.backend.load, self.storage_key)
        if data is None:
            return None
        record = self._decode(data)
        self.handle.load_values(record)
        return record

    # -- auto-save ----------------------------------------------------------

    @property
    def auto_save_enabled(self) -> bool:
        return self._auto_save is not None and self._auto_save.is_active

    def enable_auto_save(self, delay_ms: Optional[float] = None) -> None:
        """Save, debounced by delay_ms, after every change that leaves the form dirty."""
        if self.auto_save_enabled:
            return
        delay = self.handle.config.debounce_ms if delay_ms is None else delay_ms
        signal = self.handle.state_signal
        first_run = [True]

        def on_state_change() -> None:
            state = signal.get()
            if first_run[0]:
                first_run[0] = False
                return
            if state.is_dirty:
                self._debouncer.schedule(self.AUTO_SAVE_KEY, delay, self._run_auto_save)

        self._auto_save = self.handle.runtime.create_effect(on_state_change, deps=[signal])

    def disable_auto_save(self) -> None:
        if self._auto_save is not None:
            self._auto_save.stop()
            self._auto_save = None
        self._debouncer.cancel_all()

    def _run_auto_save(self) -> None:
        if self.handle.is_disposed:
            return
        try:
            self.save()
        except PersistenceError:
            logger.exception("Auto-save of form %r failed", self.handle.form_name)
            return
        self.auto_save_count += 1


@dataclass(frozen=True)
class AnalyticsOptions:
    """Which events an AnalyticsHook forwards to its tracker."""
    track_views: bool = True
    track_field_interactions: bool = True
    track_submissions: bool = True
    track_validation_errors: bool = True


# field interaction actions reported to trackers
_FIELD_ACTIONS = {
    EventType.FIELD_CHANGED: "change",
    EventType.FIELD_TOUCHED: "touch",
}


class AnalyticsHook:
    """Forwards a handle's events to an analytics tracker.

    track_view is reported once when the hook attaches. Any exception raised
    by the tracker is logged as an AnalyticsError (chained from the original)
    and kept in last_error; it never reaches form operations.
    """

    def __init__(self, handle: FormHandle, tracker: FormAnalytics, options: Optional[AnalyticsOptions] = None):
        self.handle = handle
        self.tracker = tracker
        self.options = options or AnalyticsOptions()
        self._attached = False
        self.failures = 0
        self.last_error: Optional[AnalyticsError] = None
        self.attach()

    def attach(self) -> None:
        if self._attached:
            return
        self.handle.events.on_any(self._on_event)
        self._attached = True
        if self.options.track_views:
            self._safe("track_view", self.handle.form_name)

    def detach(self) -> None:
        if not self._attached:
            return
        self.handle.events.off_any(self._on_event)
        self._attached = False

    @property
    def is_attached(self) -> bool:
        return self._attached

    def _safe(self, method: str, *args: Any) -> None:
        try:
            getattr(self.tracker, method)(*args)
        except AnalyticsError as e:
            self._record_failure(e)
        except Exception as e:
            error = AnalyticsError(f"Analytics tracker {method} failed: {e}")
            error.__cause__ = e
            self._record_failure(error)

    def _record_failure(self, error: AnalyticsError) -> None:
        self.failures += 1
        self.last_error = error
        logger.warning("%s", error, exc_info=error)

    def _on_event(self, event: FormEvent) -> None:
        form_name = event.form_name
        if event.type in _FIELD_ACTIONS:
            if self.options.track_field_interactions and event.field is not None:
                self._safe("track_field_interaction", form_name, event.field, _FIELD_ACTIONS[event.type])
        elif event.type in (EventType.SUBMISSION_SUCCEEDED, EventType.SUBMISSION_FAILED):
            if self.options.track_submissions:
                self._safe("track_submission", form_name, event.type == EventType.SUBMISSION_SUCCEEDED)
        elif event.type == EventType.VALIDATION_FAILED:
            if self.options.track_validation_errors:
                errors = (event.payload or {}).get("errors", {})
                self._safe("track_validation_errors", form_name, errors)
        elif event.type == EventType.FORM_DISPOSED:
            self._attached = False


class LoggingAnalytics:
    """Tracker that writes every call to a logger at INFO level."""

    def __init__(self, log: Optional[logging.Logger] = None) -> None:
        self._log = log or logger

    def track_view(self, form_name: str) -> None:
        self._log.info("Form analytics: %s viewed", form_name)

    def track_field_interaction(self, form_name: str, field_name: str, action: str) -> None:
        self._log.info("Form analytics: %s.%s %s", form_name, field_name, action)

    def track_submission(self, form_name: str, success: bool) -> None:
        self._log.info("Form analytics: %s submitted (success=%s)", form_name, success)

    def track_validation_errors(self, form_name: str, errors: Dict[str, List[str]]) -> None:
        self._log.info("Form analytics: %s has errors on %s", form_name, ", ".join(sorted(errors)))


__all__ = [
    "FormPersistence",
    "FormAnalytics",
    "MemoryStorage",
    "JsonFileStorage",
    "PersistenceHook",
    "AnalyticsOptions",
    "AnalyticsHook",
    "LoggingAnalytics",
]
