from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterator, Mapping

from shapegen.locations import SourceSpan


@dataclass(frozen=True, order=True)
class QualifiedName:
    package: str
    simple_names: tuple[str, ...]

    @property
    def canonical(self) -> str:
        if not self.package:
            return ".".join(self.simple_names)
        return ".".join((self.package, *self.simple_names))

    @property
    def simple_name(self) -> str:
        return self.simple_names[-1]

    def enclosing(self) -> QualifiedName | None:
        if len(self.simple_names) < 2:
            return None
        return QualifiedName(self.package, self.simple_names[:-1])

    def nested(self, name: str) -> QualifiedName:
        return QualifiedName(self.package, (*self.simple_names, name))

    @classmethod
    def best_guess(cls, text: str) -> QualifiedName:
        parts = text.split(".")
        for index, part in enumerate(parts):
            if part[:1].isupper():
                return cls(".".join(parts[:index]), tuple(parts[index:]))
        raise ValueError(f"Cannot guess qualified type name from '{text}'")

    def __str__(self) -> str:
        return self.canonical


class Primitive(Enum):
    STRING = "string"
    BOOLEAN = "boolean"
    INT8 = "int8"
    INT16 = "int16"
    INT32 = "int32"
    INT64 = "int64"
    FLOAT32 = "float32"
    FLOAT64 = "float64"
    DECIMAL = "decimal"
    DATE = "date"
    TIME = "time"
    LOCAL_DATE_TIME = "local-date-time"
    DATE_TIME = "date-time"
    DURATION = "duration"
    BYTES = "bytes"


class TypeRefKind(Enum):
    PRIMITIVE = "primitive"
    DEFINED = "defined"
    EXTERNAL = "external"
    LIST = "list"
    SET = "set"
    MAP = "map"
    OPTIONAL = "optional"
    ANY = "any"
    UNIT = "unit"


@dataclass(frozen=True, eq=False)
class TypeRef:
    """Interned type handle; only a TypeArena creates these, so equal means identical."""

    handle: int
    kind: TypeRefKind
    primitive: Primitive | None = None
    name: QualifiedName | None = None
    arguments: tuple[TypeRef, ...] = ()

    @property
    def is_optional(self) -> bool:
        return self.kind is TypeRefKind.OPTIONAL

    @property
    def is_defined(self) -> bool:
        return self.kind is TypeRefKind.DEFINED

    def non_optional(self) -> TypeRef:
        return self.arguments[0] if self.is_optional else self

    def describe(self) -> str:
        if self.kind is TypeRefKind.PRIMITIVE:
            return self.primitive.value
        if self.kind in (TypeRefKind.DEFINED, TypeRefKind.EXTERNAL):
            return self.name.canonical
        if self.kind in (TypeRefKind.ANY, TypeRefKind.UNIT):
            return self.kind.value
        args = ", ".join(arg.describe() for arg in self.arguments)
        return f"{self.kind.value}<{args}>"

    def __repr__(self) -> str:
        return f"TypeRef({self.describe()})"


class TypeArena:
    def __init__(self) -> None:
        self._refs: dict[tuple, TypeRef] = {}

    def _intern(self, key: tuple, **values: Any) -> TypeRef:
        ref = self._refs.get(key)
        if ref is None:
            ref = TypeRef(handle=len(self._refs), **values)
            self._refs[key] = ref
        return ref

    def primitive(self, primitive: Primitive) -> TypeRef:
        return self._intern(("primitive", primitive), kind=TypeRefKind.PRIMITIVE, primitive=primitive)

    def defined(self, name: QualifiedName) -> TypeRef:
        return self._intern(("defined", name), kind=TypeRefKind.DEFINED, name=name)

    def external(self, name: QualifiedName) -> TypeRef:
        return self._intern(("external", name), kind=TypeRefKind.EXTERNAL, name=name)

    def list_of(self, element: TypeRef) -> TypeRef:
        return self._intern(("list", element.handle), kind=TypeRefKind.LIST, arguments=(element,))

    def set_of(self, element: TypeRef) -> TypeRef:
        return self._intern(("set", element.handle), kind=TypeRefKind.SET, arguments=(element,))

    def map_of(self, key: TypeRef, value: TypeRef) -> TypeRef:
        return self._intern(("map", key.handle, value.handle), kind=TypeRefKind.MAP, arguments=(key, value))

    def optional(self, element: TypeRef) -> TypeRef:
        if element.is_optional:
            return element
        return self._intern(("optional", element.handle), kind=TypeRefKind.OPTIONAL, arguments=(element,))

    def any(self) -> TypeRef:
        return self._intern(("any",), kind=TypeRefKind.ANY)

    def unit(self) -> TypeRef:
        return self._intern(("unit",), kind=TypeRefKind.UNIT)


class DefinitionKind(Enum):
    CLASS = "class"
    INTERFACE = "interface"
    ENUM = "enum"
    PATCH = "patch"
    PROBLEM = "problem"


class DiscriminatorRole(Enum):
    NONE = "none"
    ROOT = "root"
    LEAF = "leaf"


@dataclass(frozen=True)
class Constraints:
    min_length: int | None = None
    max_length: int | None = None
    pattern: str | None = None
    minimum: float | None = None
    maximum: float | None = None
    min_items: int | None = None
    max_items: int | None = None
    valid: bool = False

    def is_empty(self) -> bool:
        return self == Constraints()


@dataclass(frozen=True)
class PropertyDefinition:
    name: str
    wire_name: str
    type_ref: TypeRef
    optional: bool
    default: Any = None
    tri_state: bool = False
    constraints: Constraints | None = None
    external_discriminator: str | None = None
    implementation: Mapping[str, Any] | None = None


@dataclass(frozen=True)
class EnumCase:
    name: str
    literal: Any


@dataclass(frozen=True)
class DiscriminatorInfo:
    role: DiscriminatorRole
    property_name: str
    wire_name: str
    type_ref: TypeRef
    value: str | None = None
    enum_case: str | None = None
    external: bool = False


@dataclass(frozen=True)
class ProblemInfo:
    type_uri: str
    status: int
    title: str
    detail: str


@dataclass(frozen=True)
class SubtypeEntry:
    value: str
    type_ref: TypeRef


@dataclass(frozen=True)
class TypeDefinition:
    name: QualifiedName
    kind: DefinitionKind
    span: SourceSpan | None = None
    super_type: TypeRef | None = None
    properties: tuple[PropertyDefinition, ...] = ()
    discriminator: DiscriminatorInfo | None = None
    subtypes: tuple[SubtypeEntry, ...] = ()
    enum_cases: tuple[EnumCase, ...] = ()
    nested: tuple[TypeDefinition, ...] = ()
    is_abstract: bool = False
    is_open: bool = False
    problem: ProblemInfo | None = None

    @property
    def discriminator_role(self) -> DiscriminatorRole:
        if self.discriminator is None:
            return DiscriminatorRole.NONE
        return self.discriminator.role

    def find_property(self, name: str) -> PropertyDefinition | None:
        for prop in self.properties:
            if prop.name == name or prop.wire_name == name:
                return prop
        return None

    def find_nested(self, simple_name: str) -> TypeDefinition | None:
        for definition in self.nested:
            if definition.name.simple_name == simple_name:
                return definition
        return None


@dataclass(frozen=True)
class TypeDefinitionGraph:
    definitions: Mapping[QualifiedName, TypeDefinition] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "definitions", MappingProxyType(dict(self.definitions)))

    def __getitem__(self, name: QualifiedName | str) -> TypeDefinition:
        if isinstance(name, str):
            for qualified, definition in self.definitions.items():
                if qualified.canonical == name:
                    return definition
            raise KeyError(name)
        return self.definitions[name]

    def __contains__(self, name: object) -> bool:
        if isinstance(name, str):
            return any(qualified.canonical == name for qualified in self.definitions)
        return name in self.definitions

    def __iter__(self) -> Iterator[QualifiedName]:
        return iter(self.definitions)

    def __len__(self) -> int:
        return len(self.definitions)

    def top_level(self) -> list[TypeDefinition]:
        return [definition for name, definition in self.definitions.items() if name.enclosing() is None]
