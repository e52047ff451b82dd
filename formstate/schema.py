"""Form schema and field metadata.

A FormSchema is an ordered collection of FieldMetadata plus form-level
validators. It is built once per record type and shared, read-only, by every
FormHandle for that type.

Building happens in two steps. Fields are added (duplicate and reserved names
are rejected immediately), then the schema is sealed. Sealing checks the
dependency graph: every dependency must name a field of the schema, every
validator condition may only read declared dependencies, and the graph must
be acyclic. A sealed schema cannot be modified. A schema whose seal failed
is never usable: every consumer seals before use and the error propagates.

Usage:
    >>> from formstate.types import FieldType
    >>> from formstate.validators import Validator
    >>> schema = FormSchema.new("login")
    >>> _ = schema.add_field(FieldMetadata("email", FieldType.email(),
    ...                                    validators=(Validator.required(),), is_required=True))
    >>> _ = schema.add_field(FieldMetadata("remember", FieldType.boolean()))
    >>> schema.seal().field_names()
    ('email', 'remember')
    >>> [f.name for f in schema.required_fields()]
    ['email']
"""

from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Callable, Dict, FrozenSet, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

from formstate.errors import FieldNotFoundError, SchemaError
from formstate.types import FieldType, FieldValue
from formstate.validators import Validator

FORM_ERROR_KEY = "form"
"""Synthetic ValidationErrors key holding form-level messages."""

FormLevelValidator = Callable[[Any], Any]
"""Form-level validator: (record) -> None, a message, or a mapping field -> message(s)."""


@dataclass(frozen=True)
class FieldMetadata:
    """Static description of one field.

    Attributes:
        name: Unique key of the field within its schema
        field_type: Declared shape of the field
        validators: Ordered validation rules; the first failing one wins
        is_required: Whether the field must be filled in
        default_value: Optional value used by default records
        dependencies: Names of fields this field's validity depends on
        attributes: UI hints such as label or placeholder
    """
    name: str
    field_type: FieldType = field(default_factory=FieldType.text)
    validators: Tuple[Validator, ...] = ()
    is_required: bool = False
    default_value: Optional[FieldValue] = None
    dependencies: FrozenSet[str] = frozenset()
    attributes: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self):
        """Normalize collection fields to immutable types."""
        object.__setattr__(self, "validators", tuple(self.validators))
        object.__setattr__(self, "dependencies", frozenset(self.dependencies))
        object.__setattr__(self, "attributes", MappingProxyType(dict(self.attributes)))

    def __hash__(self) -> int:
        return hash((self.name, self.field_type, self.validators, self.is_required, self.dependencies))

    def __deepcopy__(self, memo: Dict[int, Any]) -> "FieldMetadata":
        # immutable; mappingproxy cannot be deep-copied
        return self

    @property
    def label(self) -> str:
        """Display label: the 'label' attribute, or the humanized name."""
        if "label" in self.attributes:
            return self.attributes["label"]
        text = self.name.replace("_", " ").strip()
        return text[:1].upper() + text[1:]

    def condition_fields(self) -> FrozenSet[str]:
        """Fields read by the conditions attached to this field's validators."""
        names: FrozenSet[str] = frozenset()
        for validator in self.validators:
            if validator.when is not None:
                names = names | validator.when.referenced_fields()
        return names

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization."""
        result: Dict[str, Any] = {
            "name": self.name,
            "fieldType": self.field_type.to_dict(),
            "isRequired": self.is_required,
        }
        if self.validators:
            result["validators"] = [v.to_dict() for v in self.validators]
        if self.default_value is not None:
            result["defaultValue"] = self.default_value.to_dict()
        if self.dependencies:
            result["dependencies"] = sorted(self.dependencies)
        if self.attributes:
            result["attributes"] = dict(self.attributes)
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FieldMetadata":
        """Create FieldMetadata from dict."""
        default = data.get("defaultValue")
        return cls(
            name=data["name"],
            field_type=FieldType.from_dict(data["fieldType"]),
            validators=tuple(Validator.from_dict(v) for v in data.get("validators", [])),
            is_required=data.get("isRequired", False),
            default_value=FieldValue.from_dict(default) if default is not None else None,
            dependencies=frozenset(data.get("dependencies", [])),
            attributes=data.get("attributes", {}),
        )


class FormSchema:
    """Ordered field metadata plus form-level validators.

    Attributes:
        name: Form name (used in events and analytics)
        attributes: Form-level UI hints
    """

    def __init__(
        self,
        name: str = "",
        fields: Iterable[FieldMetadata] = (),
        form_validators: Iterable[FormLevelValidator] = (),
        attributes: Optional[Mapping[str, str]] = None,
        seal: bool = True,
    ) -> None:
        """Build a schema, sealing it unless seal=False.

        Raises:
            SchemaError: On duplicate names, unknown or undeclared dependencies,
                or a dependency cycle
        """
        self.name = name
        self.attributes: Mapping[str, str] = MappingProxyType(dict(attributes or {}))
        self._fields: List[FieldMetadata] = []
        self._index: Dict[str, FieldMetadata] = {}
        self._form_validators: List[FormLevelValidator] = list(form_validators)
        self._dependents: Dict[str, Tuple[str, ...]] = {}
        self._topo_rank: Dict[str, int] = {}
        self._sealed = False
        for meta in fields:
            self.add_field(meta)
        if seal:
            self.seal()

    @classmethod
    def new(cls, name: str = "") -> "FormSchema":
        """Create an empty, unsealed schema to be filled with add_field()."""
        return cls(name, seal=False)

    @property
    def is_sealed(self) -> bool:
        return self._sealed

    @property
    def fields(self) -> Tuple[FieldMetadata, ...]:
        return tuple(self._fields)

    @property
    def form_validators(self) -> Tuple[FormLevelValidator, ...]:
        return tuple(self._form_validators)

    def add_field(self, meta: FieldMetadata) -> "FormSchema":
        """Append a field.

        Raises:
            SchemaError: If the schema is sealed, the name is reserved, or the
                name is already present
        """
        self._ensure_open()
        if meta.name == FORM_ERROR_KEY:
            raise SchemaError(
                "reserved_name",
                f"Field name '{FORM_ERROR_KEY}' is reserved for form-level errors",
                field=meta.name,
            )
        if meta.name in self._index:
            raise SchemaError(
                "duplicate_field",
                f"Field '{meta.name}' is already defined in schema '{self.name}'",
                field=meta.name,
            )
        self._fields.append(meta)
        self._index[meta.name] = meta
        return self

    def add_form_validator(self, validator: FormLevelValidator) -> "FormSchema":
        """Append a form-level validator, run after all per-field validators."""
        self._ensure_open()
        self._form_validators.append(validator)
        return self

    def seal(self) -> "FormSchema":
        """Check the dependency graph and freeze the schema.

        Idempotent. On failure the schema stays unsealed and every later
        seal() raises the same error.

        Raises:
            SchemaError: unknown_dependency, undeclared_dependency or dependency_cycle
        """
        if self._sealed:
            return self

        for meta in self._fields:
            for dep in sorted(meta.dependencies):
                if dep not in self._index:
                    raise SchemaError(
                        "unknown_dependency",
                        f"Field '{meta.name}' depends on unknown field '{dep}'",
                        field=meta.name,
                    )
            undeclared = meta.condition_fields() - meta.dependencies - {meta.name}
            if undeclared:
                raise SchemaError(
                    "undeclared_dependency",
                    f"Field '{meta.name}' has validator conditions on "
                    f"{', '.join(sorted(undeclared))} which are not declared dependencies",
                    field=meta.name,
                )

        order = self._topological_order()

        dependents: Dict[str, List[str]] = {meta.name: [] for meta in self._fields}
        for meta in self._fields:
            for dep in meta.dependencies:
                dependents[dep].append(meta.name)
        self._topo_rank = {name: rank for rank, name in enumerate(order)}
        self._dependents = {
            name: tuple(sorted(names, key=self._topo_rank.__getitem__))
            for name, names in dependents.items()
        }
        self._sealed = True
        return self

    def _topological_order(self) -> List[str]:
        # Depth-first search over "depends on" edges; dependencies come first.
        visiting: List[str] = []
        state: Dict[str, int] = {}
        order: List[str] = []

        def visit(name: str) -> None:
            mark = state.get(name)
            if mark == 2:
                return
            if mark == 1:
                cycle = visiting[visiting.index(name):] + [name]
                raise SchemaError(
                    "dependency_cycle",
                    f"Dependency cycle detected: {' -> '.join(cycle)}",
                    field=name,
                )
            state[name] = 1
            visiting.append(name)
            for dep in sorted(self._index[name].dependencies):
                visit(dep)
            visiting.pop()
            state[name] = 2
            order.append(name)

        for meta in self._fields:
            visit(meta.name)
        return order

    def _ensure_open(self) -> None:
        if self._sealed:
            raise SchemaError("sealed", f"Schema '{self.name}' is sealed and cannot be modified")

    def _ensure_sealed(self) -> None:
        if not self._sealed:
            self.seal()

    def get_field(self, name: str) -> Optional[FieldMetadata]:
        """Return the metadata for a field, or None if not found."""
        return self._index.get(name)

    def require_field(self, name: str) -> FieldMetadata:
        """Return the metadata for a field.

        Raises:
            FieldNotFoundError: If the field is not registered
        """
        meta = self._index.get(name)
        if meta is None:
            raise FieldNotFoundError(name, self.name or None)
        return meta

    def required_fields(self) -> Tuple[FieldMetadata, ...]:
        """Fields with is_required set, in declaration order."""
        return tuple(meta for meta in self._fields if meta.is_required)

    def field_names(self) -> Tuple[str, ...]:
        return tuple(meta.name for meta in self._fields)

    def dependents_of(self, name: str) -> Tuple[str, ...]:
        """Fields that directly declare a dependency on `name`."""
        self._ensure_sealed()
        self.require_field(name)
        return self._dependents[name]

    def revalidation_order(self, name: str) -> Tuple[str, ...]:
        """`name` followed by all of its transitive dependents, dependencies first.

        If A depends on B and B depends on C, revalidation_order("C") is
        ("C", "B", "A").
        """
        self._ensure_sealed()
        self.require_field(name)
        seen = {name}
        stack = [name]
        while stack:
            current = stack.pop()
            for dependent in self._dependents[current]:
                if dependent not in seen:
                    seen.add(dependent)
                    stack.append(dependent)
        seen.discard(name)
        return (name,) + tuple(sorted(seen, key=self._topo_rank.__getitem__))

    def to_json_schema(self) -> Dict[str, Any]:
        """Draft-7 JSON Schema describing the value types of a serialized record."""
        return {
            "$schema": "http://json-schema.org/draft-07/schema#",
            "title": self.name or None,
            "type": "object",
            "properties": {meta.name: meta.field_type.to_json_schema() for meta in self._fields},
            "required": [meta.name for meta in self.required_fields()],
            "additionalProperties": False,
        }

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dict for serialization (form-level validators are code and not included)."""
        result: Dict[str, Any] = {
            "name": self.name,
            "fields": [meta.to_dict() for meta in self._fields],
        }
        if self.attributes:
            result["attributes"] = dict(self.attributes)
        return result

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        form_validators: Sequence[FormLevelValidator] = (),
    ) -> "FormSchema":
        """Create a sealed FormSchema from dict."""
        return cls(
            name=data.get("name", ""),
            fields=[FieldMetadata.from_dict(f) for f in data.get("fields", [])],
            form_validators=form_validators,
            attributes=data.get("attributes"),
        )

    def __contains__(self, name: object) -> bool:
        return name in self._index

    def __iter__(self) -> Iterator[FieldMetadata]:
        return iter(tuple(self._fields))

    def __len__(self) -> int:
        return len(self._fields)

    def __repr__(self) -> str:
        state = "sealed" if self._sealed else "open"
        return f"FormSchema(name={self.name!r}, fields={list(self.field_names())!r}, {state})"


__all__ = [
    "FORM_ERROR_KEY",
    "FormLevelValidator",
    "FieldMetadata",
    "FormSchema",
]
