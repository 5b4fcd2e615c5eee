from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable

from shapegen.annotations import APIAnnotationName, find_annotation, find_string_annotation
from shapegen.config import GenerationOptions
from shapegen.errors import AnnotationError
from shapegen.resolution import ResolutionContext
from shapegen.shapes import Document, Shape
from shapegen.type_model import QualifiedName


WORD_SEPARATORS = re.compile(r"[-_]+")
ENUM_WORD_SEPARATORS = re.compile(r"[\W_]+")


def to_upper_camel_case(text: str) -> str:
    return "".join(part[:1].upper() + part[1:] for part in WORD_SEPARATORS.split(text) if part)


def to_lower_camel_case(text: str) -> str:
    upper = to_upper_camel_case(text)
    return upper[:1].lower() + upper[1:]


def enum_case_name(literal: Any) -> str:
    name = "".join(part[:1].upper() + part[1:] for part in ENUM_WORD_SEPARATORS.split(str(literal)) if part)
    if not name:
        return "Empty"
    if name[0].isdigit():
        return f"Value{name}"
    return name


@dataclass(frozen=True)
class NamingContext:
    enclosing: QualifiedName | None = None
    operation: str | None = None
    member: str | None = None

    @classmethod
    def for_property(cls, owner: QualifiedName, property_name: str) -> NamingContext:
        return cls(enclosing=owner, member=property_name)

    @classmethod
    def for_operation(cls, operation: str, member: str | None = None) -> NamingContext:
        return cls(operation=operation, member=member)

    @property
    def is_empty(self) -> bool:
        return self.enclosing is None and self.operation is None


class NamingStrategy:
    def __init__(
        self,
        options: GenerationOptions,
        resolution: ResolutionContext,
        enclosing_name_of: Callable[[Shape, Document], QualifiedName],
    ):
        self.options = options
        self.resolution = resolution
        self._enclosing_name_of = enclosing_name_of
        self._anonymous_count = 0

    def override_of(self, shape: Shape) -> QualifiedName | None:
        value = find_string_annotation(shape.annotations, APIAnnotationName.TypeOverride, self.options.generation_mode)
        if value is None:
            return None
        try:
            return QualifiedName.best_guess(value)
        except ValueError:
            raise AnnotationError("Type override must name a fully qualified type", value, shape.span) from None

    def name_of(self, shape: Shape, context: NamingContext, kind_suffix: str = "") -> QualifiedName:
        override = self.override_of(shape)
        if override is not None:
            return override

        nested = self._nested_name_of(shape)
        if nested is not None:
            return nested

        if shape.name and (shape.declared or context.is_empty):
            return QualifiedName(self.package_of(shape), (to_upper_camel_case(shape.name),))

        if context.enclosing is not None and context.member:
            return context.enclosing.nested(to_upper_camel_case(context.member) + kind_suffix)

        if context.operation is not None:
            local_name = to_upper_camel_case(context.operation) + to_upper_camel_case(context.member or "")
            return QualifiedName(self.package_of(shape), (local_name + kind_suffix,))

        self._anonymous_count += 1
        return QualifiedName(self.package_of(shape), (f"Anonymous{kind_suffix or 'Type'}{self._anonymous_count}",))

    def package_of(self, shape: Shape) -> str:
        mode = self.options.generation_mode
        package = find_string_annotation(shape.annotations, APIAnnotationName.ModelPackage, mode)
        if package is not None:
            return package

        document = self.resolution.declaring_document_of(shape)
        if document is not None:
            return self.document_package_of(document)
        return self.options.model_package

    def document_package_of(self, document: Document) -> str:
        package = document_annotation(document, APIAnnotationName.ModelPackage, self.options)
        return package if package is not None else self.options.model_package

    def service_package_of(self, document: Document) -> str:
        package = document_annotation(document, APIAnnotationName.ServicePackage, self.options)
        return package if package is not None else self.options.service_package

    def _nested_name_of(self, shape: Shape) -> QualifiedName | None:
        value = find_annotation(shape.annotations, APIAnnotationName.Nested, self.options.generation_mode)
        if value is None:
            return None
        if not isinstance(value, dict):
            raise AnnotationError("Nested annotation must be an object", value, shape.span)

        enclosed_in = value.get("enclosedIn")
        if not enclosed_in:
            raise AnnotationError("Nested annotation is missing parent", value, shape.span)

        found = self.resolution.resolve_ref(str(enclosed_in), shape)
        if found is None:
            raise AnnotationError("Nested annotation references invalid enclosing type", value, shape.span)

        nested_name = value.get("name")
        if not nested_name:
            raise AnnotationError("Nested annotation is missing name", value, shape.span)

        enclosing_shape, enclosing_document = found
        enclosing_name = self._enclosing_name_of(enclosing_shape, enclosing_document)
        return enclosing_name.nested(str(nested_name))


def document_annotation(
    document: Document,
    name: APIAnnotationName,
    options: GenerationOptions,
) -> str | None:
    value = find_string_annotation(document.annotations, name, options.generation_mode)
    if value is None and document.api is not None:
        value = find_string_annotation(document.api.annotations, name, options.generation_mode)
    return value
