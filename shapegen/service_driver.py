from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

from shapegen.annotations import APIAnnotationName, find_annotation, find_string_annotation
from shapegen.errors import AnnotationError, GenerationError
from shapegen.naming import NamingContext, to_lower_camel_case, to_upper_camel_case
from shapegen.problems import ProblemTypeDefinition, find_problem_types
from shapegen.shapes import Document, EndPoint, Operation, Parameter, Payload, Response
from shapegen.type_model import QualifiedName, TypeRef
from shapegen.type_registry import TypeRegistry


logger = logging.getLogger(__name__)


PARAMETER_BINDINGS = ("uri", "query", "header", "cookie")


class EmissionHooks(Protocol):
    def service_begin(self, name: QualifiedName, document: Document) -> None: ...

    def method_begin(self, name: str, operation: Operation, endpoint: EndPoint) -> None: ...

    def parameter(self, binding: str, name: str, type_ref: TypeRef, parameter: Parameter) -> None: ...

    def request_body(self, type_ref: TypeRef, payload: Payload) -> None: ...

    def return_type(self, type_ref: TypeRef, response: Response | None) -> None: ...

    def problem_type(self, code: str, type_ref: TypeRef, problem: ProblemTypeDefinition) -> None: ...

    def method_end(self, name: str, operation: Operation) -> None: ...

    def service_end(self, name: QualifiedName) -> None: ...


@dataclass(frozen=True)
class _MethodPlan:
    name: str
    operation: Operation
    endpoint: EndPoint


class ServiceDriver:
    """Walks a document's operations and reports each service to an emitter."""

    def __init__(self, registry: TypeRegistry, hooks: EmissionHooks):
        self.registry = registry
        self.hooks = hooks

    def drive(self, document: Document) -> None:
        if document.api is None:
            raise GenerationError(f"Document '{document.location}' does not define an API")

        package = self.registry.naming.service_package_of(document)
        problem_types = find_problem_types(document, self.registry.options)
        for group, plans in self._group_operations(document).items():
            service_name = QualifiedName(package, (service_name_of(group),))
            logger.debug("emitting service %s (%d methods)", service_name, len(plans))
            self.hooks.service_begin(service_name, document)
            for plan in plans:
                self._drive_method(plan, problem_types)
            self.hooks.service_end(service_name)

    def _group_operations(self, document: Document) -> dict[str | None, list[_MethodPlan]]:
        mode = self.registry.mode
        groups: dict[str | None, list[_MethodPlan]] = {}
        for endpoint in document.api.endpoints:
            for operation in endpoint.operations:
                group = find_string_annotation(operation.annotations, APIAnnotationName.ServiceGroup, mode)
                plans = groups.setdefault(group, [])
                name = method_name_of(operation, len(plans) + 1)
                if any(plan.name == name for plan in plans):
                    raise GenerationError(f"Duplicate method name '{name}' in service", operation.span)
                plans.append(_MethodPlan(name=name, operation=operation, endpoint=endpoint))
        return groups

    def _drive_method(self, plan: _MethodPlan, problem_types: dict[str, ProblemTypeDefinition]) -> None:
        operation = plan.operation
        resolve = self.registry.resolve_type_reference
        types = self.registry.types

        self.hooks.method_begin(plan.name, operation, plan.endpoint)

        for binding in PARAMETER_BINDINGS:
            for param in operation.parameters:
                if param.binding != binding:
                    continue
                type_ref = resolve(param.schema, NamingContext.for_operation(plan.name, param.name))
                if not param.required:
                    type_ref = types.optional(type_ref)
                self.hooks.parameter(binding, to_lower_camel_case(param.name), type_ref, param)

        if operation.request:
            payload = operation.request[0]
            self.hooks.request_body(resolve(payload.schema, NamingContext.for_operation(plan.name, "Body")), payload)

        response = success_response_of(operation)
        if response is None or not response.payloads:
            self.hooks.return_type(types.unit(), response)
        else:
            context = NamingContext.for_operation(plan.name, "Response")
            self.hooks.return_type(resolve(response.payloads[0].schema, context), response)

        for code in self._problem_codes(operation):
            problem = problem_types.get(code)
            if problem is None:
                raise GenerationError(f"Unknown problem code referenced: {code}", operation.span)
            self.hooks.problem_type(code, self.registry.define_problem_type(problem), problem)

        self.hooks.method_end(plan.name, operation)

    def _problem_codes(self, operation: Operation) -> list[str]:
        codes = find_annotation(operation.annotations, APIAnnotationName.Problems, self.registry.mode)
        if codes is None:
            return []
        if not isinstance(codes, list):
            raise AnnotationError("Problems annotation must be a list of problem codes", codes, operation.span)
        return [str(code) for code in codes]


def service_name_of(group: str | None) -> str:
    if not group:
        return "API"
    return f"{to_upper_camel_case(group)}API"


def method_name_of(operation: Operation, position: int) -> str:
    if operation.operation_id:
        return to_lower_camel_case(operation.operation_id)
    if operation.name:
        return to_lower_camel_case(operation.name)
    return f"method{position}"


def success_response_of(operation: Operation) -> Response | None:
    for response in operation.responses:
        if response.status_code.startswith("2"):
            return response
    return None


@dataclass
class ParameterOutline:
    binding: str
    name: str
    type_ref: TypeRef


@dataclass
class MethodOutline:
    name: str
    http_method: str
    path: str
    parameters: list[ParameterOutline] = field(default_factory=list)
    body: TypeRef | None = None
    returns: TypeRef | None = None
    problems: list[TypeRef] = field(default_factory=list)


@dataclass
class ServiceOutline:
    name: QualifiedName
    methods: list[MethodOutline] = field(default_factory=list)

    def find_method(self, name: str) -> MethodOutline | None:
        for method in self.methods:
            if method.name == name:
                return method
        return None


class OutlineHooks:
    """Collects service outlines as plain data."""

    def __init__(self) -> None:
        self.services: list[ServiceOutline] = []
        self._service: ServiceOutline | None = None
        self._method: MethodOutline | None = None

    def service_begin(self, name: QualifiedName, document: Document) -> None:
        self._service = ServiceOutline(name=name)

    def method_begin(self, name: str, operation: Operation, endpoint: EndPoint) -> None:
        self._method = MethodOutline(name=name, http_method=operation.method.upper(), path=endpoint.path)

    def parameter(self, binding: str, name: str, type_ref: TypeRef, parameter: Parameter) -> None:
        self._method.parameters.append(ParameterOutline(binding=binding, name=name, type_ref=type_ref))

    def request_body(self, type_ref: TypeRef, payload: Payload) -> None:
        self._method.body = type_ref

    def return_type(self, type_ref: TypeRef, response: Response | None) -> None:
        self._method.returns = type_ref

    def problem_type(self, code: str, type_ref: TypeRef, problem: ProblemTypeDefinition) -> None:
        self._method.problems.append(type_ref)

    def method_end(self, name: str, operation: Operation) -> None:
        self._service.methods.append(self._method)
        self._method = None

    def service_end(self, name: QualifiedName) -> None:
        self.services.append(self._service)
        self._service = None


def render_outlines(services: list[ServiceOutline]) -> str:
    lines: list[str] = []
    for service in services:
        lines.append(f"service {service.name}")
        for method in service.methods:
            params = [f"{p.binding} {p.name}: {p.type_ref.describe()}" for p in method.parameters]
            if method.body is not None:
                params.append(f"body: {method.body.describe()}")
            returns = method.returns.describe() if method.returns is not None else "unit"
            line = f"  {method.http_method} {method.path} {method.name}({', '.join(params)}) -> {returns}"
            if method.problems:
                line += " throws " + ", ".join(problem.describe() for problem in method.problems)
            lines.append(line)
    return "\n".join(lines)
