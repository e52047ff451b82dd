"""Multi-step navigation over a FormHandle.

A FormWizard splits one form into ordered steps. The current step index is
held in a signal of the handle's runtime, so memos and effects can follow it
like any other form state.

- next() moves forward one step. With validate_on_next, the fields of the
  current step are validated first and an invalid step blocks the move.
- prev() and go_to() move without validation.
- Moves that would leave the range of steps are no-ops returning False.

Example:
    ```python
    wizard = FormWizard(handle, [
        WizardStep("account", ("email", "password")),
        WizardStep("profile", ("age", "tags")),
    ])
    if not wizard.next():
        show(wizard.step_errors())
    ```
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from formstate.errors import FormDisposedError
from formstate.handle import FormHandle
from formstate.reactive import Signal, SubscriptionId
from formstate.validation import ValidationErrors

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WizardStep:
    """One step of a wizard.

    Attributes:
        name: Unique step name
        fields: Names of the fields edited on this step
        title: Display title; derived from the name if omitted
    """
    name: str
    fields: Tuple[str, ...] = ()
    title: Optional[str] = None

    def __post_init__(self):
        object.__setattr__(self, "fields", tuple(self.fields))

    @property
    def label(self) -> str:
        return self.title or self.name.replace("_", " ").capitalize()

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        return {"name": self.name, "fields": list(self.fields), "title": self.label}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "WizardStep":
        """Create WizardStep from dict."""
        return cls(name=data["name"], fields=tuple(data.get("fields", ())), title=data.get("title"))


StepSpec = Union[str, WizardStep]


class FormWizard:
    """Step state of a multi-step form.

    Args:
        handle: The handle whose fields the steps edit
        steps: Step names or WizardStep objects, in order
        validate_on_next: Validate the current step's fields before next()

    Raises:
        ValueError: If there are no steps or two steps share a name
        FieldNotFoundError: If a step names a field missing from the schema
    """

    def __init__(
        self,
        handle: FormHandle,
        steps: Sequence[StepSpec],
        *,
        validate_on_next: bool = True,
    ) -> None:
        self.handle = handle
        self.steps: Tuple[WizardStep, ...] = tuple(
            step if isinstance(step, WizardStep) else WizardStep(step) for step in steps
        )
        if not self.steps:
            raise ValueError("A wizard needs at least one step")
        names = [step.name for step in self.steps]
        duplicates = sorted({name for name in names if names.count(name) > 1})
        if duplicates:
            raise ValueError(f"Duplicate wizard steps: {', '.join(duplicates)}")
        for step in self.steps:
            for name in step.fields:
                handle.schema.require_field(name)
        self.validate_on_next = validate_on_next
        self._index: Signal[int] = handle.runtime.create_signal(0, name=f"{handle.form_name}.step")
        self._visited: List[int] = [0]

    def _ensure_active(self) -> None:
        if self.handle.is_disposed:
            raise FormDisposedError(f"Form handle '{self.handle.form_name}' has been disposed")

    def _move(self, index: int) -> bool:
        current = self._index.get_untracked()
        if index == current:
            return True
        logger.debug(
            "Wizard %r: %s -> %s", self.handle.form_name, self.steps[current].name, self.steps[index].name
        )
        if index not in self._visited:
            self._visited.append(index)
        self._index.set(index)
        return True

    def index_of(self, name: str) -> int:
        """Position of the named step.

        Raises:
            KeyError: If no step has that name
        """
        for index, step in enumerate(self.steps):
            if step.name == name:
                return index
        raise KeyError(f"Unknown wizard step '{name}'")

    # -- navigation ---------------------------------------------------------

    def next(self) -> bool:
        """Advance one step.

        Returns:
            False on the last step or when the current step has errors
        """
        self._ensure_active()
        if self.is_last:
            return False
        if self.validate_on_next and not self.validate_step():
            return False
        return self._move(self.current_index + 1)

    def prev(self) -> bool:
        """Go back one step; False on the first step."""
        self._ensure_active()
        if self.is_first:
            return False
        return self._move(self.current_index - 1)

    def go_to(self, step: Union[int, str]) -> bool:
        """Jump to a step by position or name.

        Returns:
            False if the position is out of range or the name is unknown
        """
        self._ensure_active()
        if isinstance(step, str):
            try:
                index = self.index_of(step)
            except KeyError:
                return False
        else:
            index = step
        if not 0 <= index < len(self.steps):
            return False
        return self._move(index)

    def reset(self) -> None:
        """Return to the first step and forget visited steps."""
        self._visited = [0]
        if self.current_index != 0:
            self._index.set(0)

    # -- validation ---------------------------------------------------------

    def validate_step(self, step: Optional[StepSpec] = None) -> bool:
        """Validate the fields of a step (the current one by default).

        The handle's errors are updated with a single notification.
        """
        target = self._resolve(step)
        if not target.fields:
            return True
        return self.handle.validate_fields(target.fields).is_empty()

    def step_errors(self, step: Optional[StepSpec] = None) -> ValidationErrors:
        """Current messages of a step's fields, without validating."""
        target = self._resolve(step)
        errors = self.handle.errors
        return ValidationErrors({name: errors.get_field_errors(name) for name in target.fields})

    def _resolve(self, step: Optional[StepSpec]) -> WizardStep:
        if step is None:
            return self.current_step
        if isinstance(step, WizardStep):
            return step
        return self.steps[self.index_of(step)]

    # -- state --------------------------------------------------------------

    @property
    def index_signal(self) -> Signal:
        """The signal holding the current step index, for memos and effects."""
        return self._index

    @property
    def current_index(self) -> int:
        return self._index.get_untracked()

    @property
    def current_step(self) -> WizardStep:
        return self.steps[self.current_index]

    @property
    def step_count(self) -> int:
        return len(self.steps)

    @property
    def is_first(self) -> bool:
        return self.current_index == 0

    @property
    def is_last(self) -> bool:
        return self.current_index == len(self.steps) - 1

    @property
    def progress(self) -> float:
        """Fraction of the way through, 0.0 on the first step and 1.0 on the last."""
        if len(self.steps) == 1:
            return 1.0
        return self.current_index / (len(self.steps) - 1)

    @property
    def visited(self) -> Tuple[str, ...]:
        """Names of the steps shown so far, in first-visit order."""
        return tuple(self.steps[index].name for index in self._visited)

    def subscribe(self, callback: Callable[[WizardStep], Any]) -> SubscriptionId:
        """Register callback(step) to run whenever the current step changes."""
        return self._index.subscribe(lambda index: callback(self.steps[index]))

    def unsubscribe(self, sid: SubscriptionId) -> bool:
        return self._index.unsubscribe(sid)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization (devtools)."""
        return {
            "formName": self.handle.form_name,
            "currentStep": self.current_index,
            "stepName": self.current_step.name,
            "steps": [step.to_dict() for step in self.steps],
            "visited": list(self.visited),
        }

    def __repr__(self) -> str:
        return f"FormWizard({self.handle.form_name!r}, step={self.current_index + 1}/{len(self.steps)})"


__all__ = [
    "WizardStep",
    "FormWizard",
]
