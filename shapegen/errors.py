from __future__ import annotations

from shapegen.locations import SourceSpan, describe_span


class GenerationError(ValueError):
    def __init__(self, message: str, span: SourceSpan | None = None):
        if span is not None:
            super().__init__(f"{message} at {span.describe()}")
        else:
            super().__init__(message)
        self.message = message
        self.span = span


class UnresolvedReferenceError(GenerationError):
    def __init__(self, reference: str, span: SourceSpan | None = None):
        super().__init__(f"Unresolved reference '{reference}'", span)
        self.reference = reference


class NameCollisionError(GenerationError):
    def __init__(self, qualified_name: str, first: SourceSpan | None, second: SourceSpan | None):
        super().__init__(
            f"Multiple types defined with name '{qualified_name}' "
            f"(first defined at {describe_span(first)}); "
            "add a 'modelPackage' annotation to one of them to disambiguate",
            second,
        )
        self.qualified_name = qualified_name
        self.first_span = first
        self.second_span = second


class ShapeKindError(GenerationError):
    pass


class AnnotationError(GenerationError):
    def __init__(self, message: str, value: object, span: SourceSpan | None = None):
        super().__init__(f"{message} (annotation value: {value!r})", span)
        self.value = value


class MalformedShapeError(GenerationError):
    pass
