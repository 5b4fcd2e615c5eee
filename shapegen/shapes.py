from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from shapegen.locations import SourceSpan


class ShapeKind(Enum):
    SCALAR = "scalar"
    ARRAY = "array"
    NODE = "node"
    UNION = "union"
    FILE = "file"
    NIL = "nil"
    ANY = "any"


class DataType:
    STRING = "string"
    BOOLEAN = "boolean"
    INTEGER = "integer"
    LONG = "long"
    NUMBER = "number"
    FLOAT = "float"
    DOUBLE = "double"
    DECIMAL = "decimal"
    DATE = "date-only"
    TIME = "time-only"
    DATE_TIME_ONLY = "datetime-only"
    DATE_TIME = "datetime"
    DURATION = "duration"
    BINARY = "binary"


# Shapes compare and hash by identity; the parser may tie cycles through
# property ranges after construction.


@dataclass(eq=False)
class Shape:
    name: str | None = None
    span: SourceSpan | None = None
    declared: bool = False
    inherits: list[Shape] = field(default_factory=list)
    link_target: Shape | None = None
    annotations: dict[str, Any] = field(default_factory=dict)

    kind = ShapeKind.ANY

    def __repr__(self) -> str:
        label = self.name if self.name is not None else "<anonymous>"
        return f"{type(self).__name__}({label})"


@dataclass(eq=False, repr=False)
class ScalarShape(Shape):
    data_type: str = DataType.STRING
    format: str | None = None
    values: list[Any] = field(default_factory=list)
    min_length: int | None = None
    max_length: int | None = None
    pattern: str | None = None
    minimum: float | None = None
    maximum: float | None = None

    kind = ShapeKind.SCALAR


@dataclass(eq=False, repr=False)
class ArrayShape(Shape):
    items: Shape | None = None
    unique_items: bool = False
    min_items: int | None = None
    max_items: int | None = None

    kind = ShapeKind.ARRAY


@dataclass(eq=False)
class PropertyShape:
    name: str
    range: Shape
    required: bool = True
    default: Any = None
    span: SourceSpan | None = None


@dataclass(eq=False, repr=False)
class NodeShape(Shape):
    properties: list[PropertyShape] = field(default_factory=list)
    closed: bool = False
    additional_properties: Shape | None = None
    discriminator: str | None = None
    discriminator_value: str | None = None
    discriminator_mapping: dict[str, str] = field(default_factory=dict)

    kind = ShapeKind.NODE


@dataclass(eq=False, repr=False)
class UnionShape(Shape):
    any_of: list[Shape] = field(default_factory=list)

    kind = ShapeKind.UNION


@dataclass(eq=False, repr=False)
class FileShape(Shape):
    kind = ShapeKind.FILE


@dataclass(eq=False, repr=False)
class NilShape(Shape):
    kind = ShapeKind.NIL


@dataclass(eq=False, repr=False)
class AnyShape(Shape):
    all_of: list[Shape] = field(default_factory=list)
    or_: list[Shape] = field(default_factory=list)
    xone: list[Shape] = field(default_factory=list)

    kind = ShapeKind.ANY


@dataclass(eq=False)
class Parameter:
    name: str
    binding: str
    schema: Shape
    required: bool = True
    span: SourceSpan | None = None


@dataclass(eq=False)
class Payload:
    media_type: str
    schema: Shape
    span: SourceSpan | None = None


@dataclass(eq=False)
class Response:
    status_code: str
    payloads: list[Payload] = field(default_factory=list)
    span: SourceSpan | None = None


@dataclass(eq=False)
class Operation:
    method: str
    name: str | None = None
    operation_id: str | None = None
    parameters: list[Parameter] = field(default_factory=list)
    request: list[Payload] = field(default_factory=list)
    responses: list[Response] = field(default_factory=list)
    annotations: dict[str, Any] = field(default_factory=dict)
    span: SourceSpan | None = None


@dataclass(eq=False)
class EndPoint:
    path: str
    operations: list[Operation] = field(default_factory=list)
    span: SourceSpan | None = None


@dataclass(eq=False)
class Api:
    title: str | None = None
    base_uri: str | None = None
    endpoints: list[EndPoint] = field(default_factory=list)
    annotations: dict[str, Any] = field(default_factory=dict)


@dataclass(eq=False)
class Document:
    location: str
    declares: list[Shape] = field(default_factory=list)
    uses: dict[str, Document] = field(default_factory=dict)
    includes: list[Document] = field(default_factory=list)
    annotations: dict[str, Any] = field(default_factory=dict)
    api: Api | None = None

    @property
    def references(self) -> list[Document]:
        return [*self.uses.values(), *self.includes]

    def __repr__(self) -> str:
        return f"Document({self.location})"


def all_documents(roots: list[Document]) -> list[Document]:
    """Referenced documents first, each document once, in reference order."""
    ordered: list[Document] = []
    seen: set[int] = set()

    def visit(document: Document) -> None:
        if id(document) in seen:
            return
        seen.add(id(document))
        for reference in document.references:
            visit(reference)
        ordered.append(document)

    for root in roots:
        visit(root)
    return ordered


def is_link(shape: Shape) -> bool:
    return shape.link_target is not None


def shape_members(shape: Shape) -> list[Shape]:
    """Structurally nested shapes, excluding inheritance and link targets."""
    if isinstance(shape, NodeShape):
        members = [prop.range for prop in shape.properties]
        if shape.additional_properties is not None:
            members.append(shape.additional_properties)
        return members
    if isinstance(shape, ArrayShape):
        return [shape.items] if shape.items is not None else []
    if isinstance(shape, UnionShape):
        return list(shape.any_of)
    if isinstance(shape, AnyShape):
        return [*shape.all_of, *shape.or_, *shape.xone]
    return []


def operation_shapes(operation: Operation) -> list[Shape]:
    shapes = [param.schema for param in operation.parameters]
    shapes.extend(payload.schema for payload in operation.request)
    for response in operation.responses:
        shapes.extend(payload.schema for payload in response.payloads)
    return shapes
