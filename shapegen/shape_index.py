from __future__ import annotations

import logging

from shapegen.errors import MalformedShapeError
from shapegen.shapes import (
    AnyShape,
    Document,
    NodeShape,
    PropertyShape,
    ScalarShape,
    Shape,
    all_documents,
    is_link,
    operation_shapes,
    shape_members,
)


logger = logging.getLogger(__name__)


class ShapeArena:
    """Interns shapes by object identity, issuing dense integer handles."""

    def __init__(self) -> None:
        self._handles: dict[int, int] = {}
        self._shapes: list[Shape] = []

    def intern(self, shape: Shape) -> int:
        handle = self._handles.get(id(shape))
        if handle is None:
            handle = len(self._shapes)
            self._handles[id(shape)] = handle
            self._shapes.append(shape)
        return handle

    def find(self, shape: Shape) -> int | None:
        return self._handles.get(id(shape))

    def shape(self, handle: int) -> Shape:
        return self._shapes[handle]

    def __len__(self) -> int:
        return len(self._shapes)


def is_soft_link(shape: Shape) -> bool:
    if is_link(shape):
        return True
    if shape.name is not None or shape.declared:
        return False
    if len(shape.inherits) != 1:
        return False
    if isinstance(shape, NodeShape):
        return not shape.properties and shape.discriminator is None and shape.discriminator_value is None
    if isinstance(shape, ScalarShape) and shape.values:
        # An enumeration narrowing its parent declares its own cases.
        return shape.values == _enumerated_values(shape.inherits[0])
    return True


def _enumerated_values(shape: Shape) -> list:
    seen: set[int] = set()
    while shape.link_target is not None and id(shape) not in seen:
        seen.add(id(shape))
        shape = shape.link_target
    return getattr(shape, "values", [])


def is_aggregation(shape: Shape) -> bool:
    return isinstance(shape, AnyShape) and bool(shape.all_of)


def decompose_aggregation(shape: AnyShape) -> tuple[Shape, NodeShape]:
    links = [member for member in shape.all_of if is_link(member) or is_soft_link(member)]
    nodes = [member for member in shape.all_of if isinstance(member, NodeShape) and member not in links]
    if len(shape.all_of) != 2 or len(links) != 1 or len(nodes) != 1:
        raise MalformedShapeError(
            "Aggregated inheritance must combine exactly one referenced type and one object",
            shape.span,
        )
    return links[0], nodes[0]


class ShapeIndex:
    """Inheritance and property-order queries over an indexed shape graph.

    Shapes first met after the initial traversal are indexed on first
    sight, with the same rules as the traversal itself.
    """

    def __init__(self, builder: ShapeIndexBuilder) -> None:
        self._builder = builder
        self.arena = builder.arena
        self._reference_map = builder.reference_map
        self._inherited = builder.inherited
        self._inheriting = builder.inheriting
        self._property_orders = builder.property_orders

    def handle_of(self, shape: Shape) -> int:
        self._builder.visit(shape)
        return self.arena.intern(self.dereference(shape))

    def shape_of(self, handle: int) -> Shape:
        return self.arena.shape(handle)

    def dereference(self, shape: Shape) -> Shape:
        current = shape
        seen: set[int] = set()
        while True:
            if id(current) in seen:
                raise MalformedShapeError("Reference cycle between aliased shapes", shape.span)
            seen.add(id(current))

            handle = self.arena.find(current)
            if handle is not None and handle in self._reference_map:
                return self._reference_map[handle]
            if current.link_target is not None:
                current = current.link_target
            elif is_soft_link(current):
                current = current.inherits[0]
            else:
                return current

    def has_inherited(self, shape: Shape) -> bool:
        return self.super_shape_id(shape) is not None

    def has_inheriting(self, shape: Shape) -> bool:
        return bool(self.inheriting_ids(shape))

    def super_shape_id(self, shape: Shape) -> int | None:
        return self._inherited.get(self.handle_of(shape))

    def super_shape(self, shape: Shape) -> Shape | None:
        handle = self.super_shape_id(shape)
        return None if handle is None else self.arena.shape(handle)

    def inheriting_ids(self, shape: Shape) -> list[int]:
        return list(self._inheriting.get(self.handle_of(shape), []))

    def inheriting_shapes(self, shape: Shape) -> list[Shape]:
        return [self.arena.shape(handle) for handle in self.inheriting_ids(shape)]

    def declared_property_order(self, shape: Shape) -> list[str]:
        return list(self._property_orders.get(self.handle_of(shape), []))

    def property_container(self, shape: Shape) -> NodeShape | None:
        resolved = self.dereference(shape)
        if isinstance(resolved, NodeShape):
            return resolved
        if is_aggregation(resolved):
            return decompose_aggregation(resolved)[1]
        return None

    def declared_properties(self, shape: Shape) -> list[PropertyShape]:
        container = self.property_container(shape)
        if container is None:
            return []
        by_name = {prop.name: prop for prop in container.properties}
        return [by_name[name] for name in self.declared_property_order(shape) if name in by_name]


class ShapeIndexBuilder:
    def __init__(self) -> None:
        self.arena = ShapeArena()
        self.reference_map: dict[int, Shape] = {}
        self.inherited: dict[int, int] = {}
        self.inheriting: dict[int, list[int]] = {}
        self.property_orders: dict[int, list[str]] = {}
        self.visited: set[int] = set()

    def index(self, documents: list[Document]) -> ShapeIndexBuilder:
        for document in all_documents(documents):
            for shape in document.declares:
                self._visit(shape)
            if document.api is None:
                continue
            for endpoint in document.api.endpoints:
                for operation in endpoint.operations:
                    for shape in operation_shapes(operation):
                        self._visit(shape)
        return self

    def build(self) -> ShapeIndex:
        logger.debug(
            "indexed %d shapes (%d aliases, %d inheritance edges)",
            len(self.arena),
            len(self.reference_map),
            len(self.inherited),
        )
        return ShapeIndex(self)

    def _dereference(self, shape: Shape) -> Shape:
        current = shape
        seen: set[int] = set()
        while True:
            if id(current) in seen:
                raise MalformedShapeError("Reference cycle between aliased shapes", shape.span)
            seen.add(id(current))
            if current.link_target is not None:
                current = current.link_target
            elif is_soft_link(current):
                current = current.inherits[0]
            else:
                return current

    def visit(self, shape: Shape) -> None:
        handle = self.arena.find(shape)
        if handle is not None and handle in self.visited:
            return
        if handle is None:
            logger.debug("indexing %r on first use", shape)
        self._visit(shape)

    def _visit(self, shape: Shape) -> None:
        handle = self.arena.intern(shape)
        if handle in self.visited:
            return
        self.visited.add(handle)

        if is_soft_link(shape):
            target = self._dereference(shape)
            self.reference_map[handle] = target
            self._visit(target)
            return

        if len(shape.inherits) > 1:
            names = ", ".join(str(parent.name) for parent in shape.inherits)
            raise MalformedShapeError(f"Multiple inheritance is unsupported ({names})", shape.span)

        super_shape: Shape | None = shape.inherits[0] if shape.inherits else None
        container: NodeShape | None = shape if isinstance(shape, NodeShape) else None
        if is_aggregation(shape):
            if super_shape is not None:
                raise MalformedShapeError("Aggregated shape cannot also inherit directly", shape.span)
            super_shape, container = decompose_aggregation(shape)

        if container is not None:
            order: list[str] = []
            for prop in container.properties:
                if prop.name in order:
                    raise MalformedShapeError(f"Duplicate property '{prop.name}'", prop.span)
                order.append(prop.name)
            self.property_orders[handle] = order

        for member in shape_members(shape):
            if is_aggregation(shape) and member is container:
                for prop in container.properties:
                    self._visit(prop.range)
                continue
            self._visit(member)

        if super_shape is not None:
            resolved_super = self._dereference(super_shape)
            self._visit(resolved_super)
            super_handle = self.arena.intern(resolved_super)
            if super_handle == handle:
                raise MalformedShapeError("Shape inherits from itself", shape.span)
            self.inherited[handle] = super_handle
            self.inheriting.setdefault(super_handle, []).append(handle)


def build_shape_index(documents: list[Document]) -> ShapeIndex:
    return ShapeIndexBuilder().index(documents).build()
