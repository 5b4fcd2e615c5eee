from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Mapping
from urllib.parse import urljoin

from shapegen.annotations import APIAnnotationName, find_annotation
from shapegen.config import GenerationOptions
from shapegen.errors import AnnotationError, GenerationError
from shapegen.shapes import Document, all_documents


logger = logging.getLogger(__name__)


URI_TEMPLATE_VARIABLE = re.compile(r"\{([^{}]*)\}")


@dataclass(frozen=True, eq=False)
class ProblemTypeDefinition:
    """A problem type declared in a document's ``problemTypes`` annotation."""

    code: str
    type_uri: str
    status: int
    title: str
    detail: str
    custom: Mapping[str, str] = field(default_factory=dict)
    defined_in: Document | None = None

    @classmethod
    def from_annotation(cls, code: str, fields: Any, base_uri: str, defined_in: Document) -> ProblemTypeDefinition:
        if not isinstance(fields, dict):
            raise AnnotationError(f"Problem type '{code}' must be an object", fields)

        def required(key: str) -> Any:
            value = fields.get(key)
            if value is None:
                raise AnnotationError(f"Problem type '{code}' missing {key}", fields)
            return value

        status = required("status")
        if isinstance(status, bool) or not str(status).isdigit():
            raise AnnotationError(f"Problem type '{code}' status must be an integer", status)

        custom = fields.get("custom") or {}
        if not isinstance(custom, dict):
            raise AnnotationError(f"Problem type '{code}' custom fields must be an object", custom)

        return cls(
            code=code,
            type_uri=urljoin(base_uri, f"./{code}"),
            status=int(status),
            title=str(required("title")),
            detail=str(required("detail")),
            custom={str(name): "string" if type_name is None else str(type_name) for name, type_name in custom.items()},
            defined_in=defined_in,
        )


def expand_uri_template(template: str, params: Mapping[str, Any]) -> str:
    expanded = URI_TEMPLATE_VARIABLE.sub(lambda match: str(params.get(match.group(1), "")), template)
    if any(char.isspace() or char in "{}" for char in expanded):
        raise GenerationError(
            f"Problem URI '{template}' is not a valid URI; "
            "use 'problemBaseUri' and/or 'problemUriParams' to make it valid"
        )
    return expanded


def problem_base_uri(document: Document, options: GenerationOptions) -> str:
    mode = options.generation_mode
    params = find_annotation(document.annotations, APIAnnotationName.ProblemUriParams, mode) or {}
    if not isinstance(params, dict):
        raise AnnotationError("Problem URI parameters must be an object", params)

    server = document.api.base_uri if document.api is not None else None
    base = expand_uri_template(server or options.default_problem_base_uri, params)

    declared = find_annotation(document.annotations, APIAnnotationName.ProblemBaseUri, mode)
    if declared is None:
        return base
    # Relative problem bases resolve against the server URI.
    return urljoin(base, expand_uri_template(str(declared), params))


def find_problem_types(document: Document, options: GenerationOptions) -> dict[str, ProblemTypeDefinition]:
    base_uri = problem_base_uri(document, options)

    problem_types: dict[str, ProblemTypeDefinition] = {}
    for unit in all_documents([document]):
        declared = find_annotation(unit.annotations, APIAnnotationName.ProblemTypes, options.generation_mode)
        if declared is None:
            continue
        if not isinstance(declared, dict):
            raise AnnotationError(f"Problem types of '{unit.location}' must be an object", declared)
        for code, fields in declared.items():
            problem_types[str(code)] = ProblemTypeDefinition.from_annotation(str(code), fields, base_uri, unit)

    logger.debug("found %d problem types under %s", len(problem_types), base_uri)
    return problem_types
