from __future__ import annotations

from enum import Enum
from typing import Any

from shapegen.config import GenerationMode


class APIAnnotationName(Enum):
    ServiceGroup = ("group", False)
    ModelPackage = ("modelPackage", True)
    ServicePackage = ("servicePackage", True)
    TypeOverride = ("typeOverride", True)
    Implementation = ("implementation", True)
    Nested = ("nested", False)
    ExternalDiscriminator = ("externalDiscriminator", False)
    ExternallyDiscriminated = ("externallyDiscriminated", False)
    Patchable = ("patchable", False)
    ProblemBaseUri = ("problemBaseUri", False)
    ProblemUriParams = ("problemUriParams", False)
    ProblemTypes = ("problemTypes", False)
    Problems = ("problems", False)

    def __init__(self, annotation_id: str, mode_specific: bool):
        self.annotation_id = annotation_id
        self.mode_specific = mode_specific

    def matches(self, test: str, generation_mode: GenerationMode | None = None) -> bool:
        if self.mode_specific and generation_mode is not None:
            mode = generation_mode.value
            return test in (f"{self.annotation_id}:{mode}", f"x-{self.annotation_id}-{mode}")
        return test in (self.annotation_id, f"x-{self.annotation_id}")

    def __str__(self) -> str:
        return self.annotation_id


_MISSING = object()


def _lookup(annotations: dict[str, Any], name: APIAnnotationName, mode: GenerationMode | None) -> Any:
    for key, value in annotations.items():
        if name.matches(key, mode):
            return value
    return _MISSING


def find_annotation(
    annotations: dict[str, Any],
    name: APIAnnotationName,
    generation_mode: GenerationMode | None,
) -> Any:
    # Mode-specific spelling wins over the generic one.
    if generation_mode is not None and name.mode_specific:
        value = _lookup(annotations, name, generation_mode)
        if value is not _MISSING:
            return value
    value = _lookup(annotations, name, None)
    return None if value is _MISSING else value


def has_annotation(annotations: dict[str, Any], name: APIAnnotationName, generation_mode: GenerationMode | None) -> bool:
    if generation_mode is not None and name.mode_specific:
        if _lookup(annotations, name, generation_mode) is not _MISSING:
            return True
    return _lookup(annotations, name, None) is not _MISSING


def find_string_annotation(
    annotations: dict[str, Any],
    name: APIAnnotationName,
    generation_mode: GenerationMode | None,
) -> str | None:
    value = find_annotation(annotations, name, generation_mode)
    if value is None:
        return None
    return str(value)


def find_bool_annotation(
    annotations: dict[str, Any],
    name: APIAnnotationName,
    generation_mode: GenerationMode | None,
) -> bool | None:
    value = find_annotation(annotations, name, generation_mode)
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() == "true"
