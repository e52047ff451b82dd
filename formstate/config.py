"""Explicit configuration for form handles and reactive runtimes.

Configuration is always passed in; nothing is read from module globals or
the environment.

Examples:
    >>> config = FormConfig(form_name="signup", debounce_ms=150)
    >>> FormConfig.from_dict(config.to_dict()) == config
    True
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from formstate.types import ValidationMode

RUNTIME_GENERATIONS = ("tracking", "explicit")
SCHEDULERS = ("manual", "asyncio")


@dataclass(frozen=True)
class RuntimeConfig:
    """Selects the reactive runtime a FormHandle runs on.

    Attributes:
        generation: "tracking" (memos and effects record the signals they read)
            or "explicit" (they only follow the dependencies passed in)
        scheduler: "manual" (virtual clock advanced by the caller) or
            "asyncio" (timers on the running event loop)
    """
    generation: str = "tracking"
    scheduler: str = "manual"

    def __post_init__(self):
        if self.generation not in RUNTIME_GENERATIONS:
            raise ValueError(
                f"Unknown runtime generation '{self.generation}', "
                f"expected one of: {', '.join(RUNTIME_GENERATIONS)}"
            )
        if self.scheduler not in SCHEDULERS:
            raise ValueError(
                f"Unknown scheduler '{self.scheduler}', expected one of: {', '.join(SCHEDULERS)}"
            )

    def to_dict(self) -> Dict[str, Any]:
        return {"generation": self.generation, "scheduler": self.scheduler}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuntimeConfig":
        return cls(
            generation=data.get("generation", "tracking"),
            scheduler=data.get("scheduler", "manual"),
        )


@dataclass(frozen=True)
class FormConfig:
    """Per-handle settings.

    Attributes:
        form_name: Name used in events and analytics; defaults to the schema name
        validation_mode: When field mutations trigger validation
        debounce_ms: Default delay for schedule_validation() and auto-save
        runtime: Reactive runtime used when no runtime instance is supplied
    """
    form_name: Optional[str] = None
    validation_mode: ValidationMode = ValidationMode.ON_CHANGE
    debounce_ms: int = 300
    runtime: RuntimeConfig = field(default_factory=RuntimeConfig)

    def __post_init__(self):
        if isinstance(self.validation_mode, str):
            object.__setattr__(self, "validation_mode", ValidationMode(self.validation_mode))
        if self.debounce_ms < 0:
            raise ValueError(f"debounce_ms must be >= 0, got {self.debounce_ms}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        result: Dict[str, Any] = {
            "validationMode": self.validation_mode.value,
            "debounceMs": self.debounce_ms,
            "runtime": self.runtime.to_dict(),
        }
        if self.form_name is not None:
            result["formName"] = self.form_name
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FormConfig":
        """Create FormConfig from dict."""
        return cls(
            form_name=data.get("formName"),
            validation_mode=ValidationMode(data.get("validationMode", ValidationMode.ON_CHANGE.value)),
            debounce_ms=data.get("debounceMs", 300),
            runtime=RuntimeConfig.from_dict(data.get("runtime", {})),
        )


__all__ = [
    "RuntimeConfig",
    "FormConfig",
]
