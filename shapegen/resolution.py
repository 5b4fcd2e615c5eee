from __future__ import annotations

import re

from shapegen.errors import GenerationError, MalformedShapeError, UnresolvedReferenceError
from shapegen.shape_index import ShapeIndex
from shapegen.shapes import (
    Document,
    Operation,
    PropertyShape,
    Shape,
    all_documents,
    operation_shapes,
    shape_members,
)


DECL_REGEX = re.compile(r"^(?:([^.]+)\.)?([\w\-.]+)$")

Element = Shape | Operation | PropertyShape


class ResolutionContext:
    def __init__(self, documents: list[Document], index: ShapeIndex):
        self.documents = all_documents(documents)
        self.index = index
        self._declaring: dict[int, Document] = {}
        self._claim_all()

    def _claim_all(self) -> None:
        # Declarations claim first so that an inline occurrence elsewhere
        # never steals a declared shape from its own document.
        for document in self.documents:
            for shape in document.declares:
                self._declaring.setdefault(id(shape), document)

        for document in self.documents:
            for shape in document.declares:
                self._claim_members(shape, document)
            if document.api is None:
                continue
            for endpoint in document.api.endpoints:
                for operation in endpoint.operations:
                    self._declaring.setdefault(id(operation), document)
                    for shape in operation_shapes(operation):
                        if id(shape) not in self._declaring:
                            self._declaring[id(shape)] = document
                            self._claim_members(shape, document)

    def _claim_members(self, shape: Shape, document: Document) -> None:
        stack = list(shape_members(shape))
        props = getattr(shape, "properties", [])
        for prop in props:
            self._declaring.setdefault(id(prop), document)
        while stack:
            member = stack.pop()
            if id(member) in self._declaring:
                continue
            self._declaring[id(member)] = document
            for prop in getattr(member, "properties", []):
                self._declaring.setdefault(id(prop), document)
            stack.extend(shape_members(member))

    def declaring_document_of(self, element: Element) -> Document | None:
        document = self._declaring.get(id(element))
        if document is None and isinstance(element, Shape):
            document = self._declaring.get(id(self.index.dereference(element)))
        return document

    def find_declaring_document(self, element: Element) -> Document:
        document = self.declaring_document_of(element)
        if document is None:
            raise GenerationError(f"Unable to locate declaring document of {element!r}", getattr(element, "span", None))
        return document

    def find_importing_document(self, document: Document) -> Document | None:
        for candidate in self.documents:
            if any(reference is document for reference in candidate.references):
                return candidate
        return None

    def resolve_ref(self, name: str, source: Element) -> tuple[Shape, Document] | None:
        return self.resolve_ref_in(name, self.find_declaring_document(source))

    def resolve_ref_in(self, name: str, document: Document) -> tuple[Shape, Document] | None:
        found = _resolve_in(document, name)
        if found is not None:
            return found

        importing = self.find_importing_document(document)
        if importing is not None:
            return _resolve_in(importing, name)
        return None

    def require_ref(self, name: str, source: Element) -> tuple[Shape, Document]:
        found = self.resolve_ref(name, source)
        if found is None:
            raise UnresolvedReferenceError(name, getattr(source, "span", None))
        return found

    def find_super_shape(self, shape: Shape) -> Shape | None:
        return self.index.super_shape(shape)

    def find_root_shape(self, shape: Shape) -> Shape:
        current = self.index.dereference(shape)
        seen: set[int] = set()
        while True:
            handle = self.index.handle_of(current)
            if handle in seen:
                raise MalformedShapeError("Inheritance cycle detected", shape.span)
            seen.add(handle)
            parent = self.index.super_shape(current)
            if parent is None:
                return current
            current = parent

    def find_inheriting_shapes(self, shape: Shape) -> list[Shape]:
        return self.index.inheriting_shapes(shape)

    def find_ancestry(self, shape: Shape) -> list[Shape]:
        """Inheritance chain from the root down to ``shape`` itself."""
        chain: list[Shape] = []
        current: Shape | None = self.index.dereference(shape)
        seen: set[int] = set()
        while current is not None:
            handle = self.index.handle_of(current)
            if handle in seen:
                raise MalformedShapeError("Inheritance cycle detected", shape.span)
            seen.add(handle)
            chain.append(current)
            current = self.index.super_shape(current)
        chain.reverse()
        return chain

    def find_all_properties(self, shape: Shape) -> list[PropertyShape]:
        properties: list[PropertyShape] = []
        for ancestor in self.find_ancestry(shape):
            properties.extend(self.index.declared_properties(ancestor))
        return properties


def _resolve_in(document: Document, name: str) -> tuple[Shape, Document] | None:
    if name.startswith("#/"):
        name = name.rsplit("/", 1)[-1]

    match = DECL_REGEX.match(name)
    if match is None:
        return None

    alias, local_name = match.group(1), match.group(2)
    if alias is not None:
        library = document.uses.get(alias)
        if library is not None:
            found = _find_declaration(library, local_name)
            if found is not None:
                return found, library

    found = _find_declaration(document, name)
    if found is not None:
        return found, document
    return None


def _find_declaration(document: Document, name: str) -> Shape | None:
    for shape in document.declares:
        if shape.name == name:
            return shape
    return None
