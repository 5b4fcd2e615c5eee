from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from yaml.constructor import SafeConstructor
from yaml.nodes import MappingNode, Node, ScalarNode, SequenceNode

from shapegen.errors import GenerationError
from shapegen.locations import SourcePos, SourceSpan
from shapegen.shapes import (
    AnyShape,
    Api,
    ArrayShape,
    DataType,
    Document,
    EndPoint,
    FileShape,
    NilShape,
    NodeShape,
    Operation,
    Parameter,
    Payload,
    PropertyShape,
    Response,
    ScalarShape,
    Shape,
    UnionShape,
)


logger = logging.getLogger(__name__)


class LoadError(GenerationError):
    pass


BUILTIN_SCALARS = {
    "string": DataType.STRING,
    "boolean": DataType.BOOLEAN,
    "integer": DataType.INTEGER,
    "long": DataType.LONG,
    "number": DataType.NUMBER,
    "float": DataType.FLOAT,
    "double": DataType.DOUBLE,
    "decimal": DataType.DECIMAL,
    "date-only": DataType.DATE,
    "time-only": DataType.TIME,
    "datetime-only": DataType.DATE_TIME_ONLY,
    "datetime": DataType.DATE_TIME,
    "duration": DataType.DURATION,
    "binary": DataType.BINARY,
}
BUILTIN_SHAPES: dict[str, type[Shape]] = {
    "object": NodeShape,
    "array": ArrayShape,
    "file": FileShape,
    "nil": NilShape,
    "any": AnyShape,
}

DOCUMENT_KEYS = {"title", "version", "description", "baseUri", "uses", "includes", "types", "endpoints"}
OPERATION_KEYS = {
    "operationId",
    "displayName",
    "description",
    "queryParameters",
    "headers",
    "uriParameters",
    "cookies",
    "body",
    "responses",
}
FACET_KEYS = {
    "type",
    "description",
    "displayName",
    "example",
    "examples",
    "enum",
    "format",
    "minLength",
    "maxLength",
    "pattern",
    "minimum",
    "maximum",
    "items",
    "uniqueItems",
    "minItems",
    "maxItems",
    "properties",
    "additionalProperties",
    "discriminator",
    "discriminatorValue",
    "discriminatorMapping",
    "anyOf",
    "allOf",
    "oneOf",
    "or",
}
HTTP_METHODS = ("get", "post", "put", "patch", "delete", "head", "options")
PARAMETER_SECTIONS = {
    "uriParameters": "uri",
    "queryParameters": "query",
    "headers": "header",
    "cookies": "cookie",
}


def _span(path: str, node: Node) -> SourceSpan:
    start = node.start_mark
    end = node.end_mark
    return SourceSpan(
        start=SourcePos(path=path, offset=start.index, line=start.line + 1, column=start.column + 1),
        end=SourcePos(path=path, offset=end.index, line=end.line + 1, column=end.column + 1),
    )


def _annotation_key(key: str) -> str | None:
    if len(key) > 2 and key.startswith("(") and key.endswith(")"):
        return key[1:-1]
    return None


class ShapeGraphLoader:
    """Reads YAML shape-graph documents into the in-memory shape model.

    Declared types are built on first use, so declarations may appear in any
    order and may refer to each other through properties.
    """

    def __init__(self) -> None:
        self._documents: dict[Path, Document] = {}
        self._paths: dict[int, Path] = {}
        self._declarations: dict[int, dict[str, Node]] = {}
        self._declaration_keys: dict[tuple[int, str], Node] = {}
        self._importers: dict[int, Document] = {}
        self._shapes: dict[tuple[int, str], Shape] = {}
        self._in_progress: set[int] = set()
        self._constructor = SafeConstructor()

    def load(self, entry_path: str | Path) -> list[Document]:
        root = self._load_document(Path(entry_path).resolve(), importer=None)

        for document in self._documents.values():
            names = list(self._declarations[id(document)])
            document.declares = [self._declared(document, name) for name in names]

        logger.debug("loaded %d documents from %s", len(self._documents), root.location)
        return [root]

    # Documents

    def _load_document(self, path: Path, importer: Document | None) -> Document:
        existing = self._documents.get(path)
        if existing is not None:
            if importer is not None:
                self._importers.setdefault(id(existing), importer)
            return existing

        try:
            text = path.read_text(encoding="utf-8")
        except OSError as error:
            raise LoadError(f"Unable to read '{path.as_posix()}': {error.strerror}") from None

        location = path.as_posix()
        try:
            root = yaml.compose(text)
        except yaml.MarkedYAMLError as error:
            mark = error.problem_mark
            span = None
            if mark is not None:
                pos = SourcePos(path=location, offset=mark.index, line=mark.line + 1, column=mark.column + 1)
                span = SourceSpan(start=pos, end=pos)
            raise LoadError(f"Invalid YAML: {error.problem}", span) from None

        document = Document(location=location)
        self._documents[path] = document
        self._paths[id(document)] = path
        if importer is not None:
            self._importers[id(document)] = importer

        if root is None:
            self._declarations[id(document)] = {}
            return document
        entries = self._mapping(document, root, "Document")

        for key, (key_node, value_node) in entries.items():
            annotation = _annotation_key(key)
            if annotation is not None:
                document.annotations[annotation] = self._value(value_node)
            elif key not in DOCUMENT_KEYS:
                raise LoadError(f"Unknown document key '{key}'", _span(location, key_node))

        self._declarations[id(document)] = {}
        if "types" in entries:
            for name, (name_node, type_node) in self._mapping(document, entries["types"][1], "types").items():
                self._declarations[id(document)][name] = type_node
                self._declaration_keys[(id(document), name)] = name_node

        if "uses" in entries:
            for alias, (_, path_node) in self._mapping(document, entries["uses"][1], "uses").items():
                target = self._resolve_path(document, path_node)
                document.uses[alias] = self._load_document(target, importer=document)

        if "includes" in entries:
            includes = entries["includes"][1]
            if not isinstance(includes, SequenceNode):
                raise LoadError("'includes' must be a list of paths", _span(location, includes))
            for path_node in includes.value:
                document.includes.append(self._load_document(self._resolve_path(document, path_node), importer=document))

        if {"endpoints", "title", "baseUri"} & entries.keys():
            title = entries["title"][1].value if "title" in entries else None
            base_uri = str(self._value(entries["baseUri"][1])) if "baseUri" in entries else None
            document.api = Api(title=title, base_uri=base_uri, annotations=document.annotations)
            if "endpoints" in entries:
                self._endpoints(document, entries["endpoints"][1])

        return document

    def _endpoints(self, document: Document, node: Node) -> None:
        # Read after uses and includes so referenced declarations are registered.
        for path, (path_node, operations_node) in self._mapping(document, node, "endpoints").items():
            endpoint = EndPoint(path=path, span=_span(document.location, path_node))
            for method, (method_node, operation_node) in self._mapping(document, operations_node, path).items():
                if method not in HTTP_METHODS:
                    raise LoadError(f"Unknown HTTP method '{method}'", _span(document.location, method_node))
                endpoint.operations.append(self._operation(document, method, method_node, operation_node))
            document.api.endpoints.append(endpoint)

    def _resolve_path(self, document: Document, node: Node) -> Path:
        if not isinstance(node, ScalarNode):
            raise LoadError("Document reference must be a path", _span(document.location, node))
        return (self._paths[id(document)].parent / node.value).resolve()

    # Operations

    def _operation(self, document: Document, method: str, method_node: Node, node: Node) -> Operation:
        operation = Operation(method=method, span=_span(document.location, method_node))
        if isinstance(node, ScalarNode) and node.value in ("", "~", "null"):
            return operation

        entries = self._mapping(document, node, method)
        for key, (key_node, value_node) in entries.items():
            annotation = _annotation_key(key)
            if annotation is not None:
                operation.annotations[annotation] = self._value(value_node)
                continue
            if key not in OPERATION_KEYS:
                raise LoadError(f"Unknown operation key '{key}'", _span(document.location, key_node))

            if key == "operationId":
                operation.operation_id = str(self._value(value_node))
            elif key == "displayName":
                operation.name = str(self._value(value_node))
            elif key in PARAMETER_SECTIONS:
                binding = PARAMETER_SECTIONS[key]
                for name, (name_node, param_node) in self._mapping(document, value_node, key).items():
                    operation.parameters.append(self._parameter(document, binding, name, name_node, param_node))
            elif key == "body":
                operation.request = self._payloads(document, value_node)
            elif key == "responses":
                for code, (code_node, response_node) in self._mapping(document, value_node, key).items():
                    operation.responses.append(self._response(document, code, code_node, response_node))
        return operation

    def _parameter(self, document: Document, binding: str, name: str, name_node: Node, node: Node) -> Parameter:
        required = True
        if name.endswith("?"):
            name = name[:-1]
            required = False
        node, extracted = self._extract(node, ("required",))
        if "required" in extracted:
            required = bool(self._value(extracted["required"]))
        return Parameter(
            name=name,
            binding=binding,
            schema=self._build(document, node),
            required=required,
            span=_span(document.location, name_node),
        )

    def _response(self, document: Document, code: str, code_node: Node, node: Node) -> Response:
        response = Response(status_code=code, span=_span(document.location, code_node))
        if isinstance(node, ScalarNode) and node.value in ("", "~", "null"):
            return response
        entries = self._mapping(document, node, f"response {code}")
        for key, (key_node, value_node) in entries.items():
            if key == "body":
                response.payloads = self._payloads(document, value_node)
            elif key != "description":
                raise LoadError(f"Unknown response key '{key}'", _span(document.location, key_node))
        return response

    def _payloads(self, document: Document, node: Node) -> list[Payload]:
        if isinstance(node, MappingNode) and node.value and all("/" in key.value for key, _ in node.value):
            return [
                Payload(media_type=key.value, schema=self._build(document, value), span=_span(document.location, key))
                for key, value in node.value
            ]
        return [Payload(media_type="application/json", schema=self._build(document, node), span=_span(document.location, node))]

    # Declared types

    def _locate(self, document: Document, name: str) -> tuple[Document, str] | None:
        if name in self._declarations[id(document)]:
            return document, name

        alias, _, local_name = name.partition(".")
        if local_name:
            library = document.uses.get(alias)
            if library is not None and local_name in self._declarations[id(library)]:
                return library, local_name

        importer = self._importers.get(id(document))
        if importer is not None and name in self._declarations[id(importer)]:
            return importer, name
        return None

    def _require(self, document: Document, name: str, node: Node) -> tuple[Document, str]:
        found = self._locate(document, name)
        if found is None:
            raise LoadError(f"Unknown type '{name}'", _span(document.location, node))
        return found

    def _declared(self, document: Document, name: str) -> Shape:
        key = (id(document), name)
        shape = self._shapes.get(key)
        if shape is not None:
            return shape

        node = self._declarations[id(document)][name]
        shape_class = self._kind_of(document, node, {key})
        shape = shape_class(name=name, declared=True, span=_span(document.location, self._declaration_keys[key]))
        self._shapes[key] = shape

        self._in_progress.add(id(shape))
        try:
            self._populate(shape, document, node)
        finally:
            self._in_progress.discard(id(shape))
        return shape

    def _link(self, document: Document, name: str, node: Node) -> Shape:
        target_document, target_name = self._require(document, name, node)
        target = self._declared(target_document, target_name)
        return type(target)(link_target=target, span=_span(document.location, node))

    # Kind inference

    def _kind_of(self, document: Document, node: Node, visiting: set[tuple[int, str]]) -> type[Shape]:
        if isinstance(node, ScalarNode):
            return self._kind_of_expression(document, node.value, node, visiting)
        if not isinstance(node, MappingNode):
            raise LoadError("Type expression must be a string or a mapping", _span(document.location, node))

        keys = {key.value: value for key, value in node.value}
        type_node = keys.get("type")
        if isinstance(type_node, ScalarNode):
            return self._kind_of_expression(document, type_node.value, type_node, visiting)
        if isinstance(type_node, SequenceNode):
            return NodeShape
        if type_node is not None:
            raise LoadError("'type' must be a type expression or a list of types", _span(document.location, type_node))
        if "allOf" in keys or "oneOf" in keys or "or" in keys:
            return AnyShape
        if "anyOf" in keys:
            return UnionShape
        if "items" in keys:
            return ArrayShape
        if {"properties", "additionalProperties", "discriminator", "discriminatorValue"} & keys.keys():
            return NodeShape
        return ScalarShape

    def _kind_of_expression(
        self,
        document: Document,
        expression: str,
        node: Node,
        visiting: set[tuple[int, str]],
    ) -> type[Shape]:
        expression = expression.strip() or "string"
        if "|" in expression or expression.endswith("?"):
            return UnionShape
        if expression.endswith("[]"):
            return ArrayShape
        if expression in BUILTIN_SCALARS:
            return ScalarShape
        if expression in BUILTIN_SHAPES:
            return BUILTIN_SHAPES[expression]

        target_document, target_name = self._require(document, expression, node)
        key = (id(target_document), target_name)
        existing = self._shapes.get(key)
        if existing is not None:
            return type(existing)
        if key in visiting:
            raise LoadError(f"Cyclic type definition '{expression}'", _span(document.location, node))
        return self._kind_of(target_document, self._declarations[key[0]][target_name], visiting | {key})

    # Shape construction

    def _build(self, document: Document, node: Node) -> Shape:
        if isinstance(node, ScalarNode):
            return self._build_expression(document, node.value, node)
        shape = self._kind_of(document, node, set())(span=_span(document.location, node))
        self._populate(shape, document, node)
        return shape

    def _build_expression(self, document: Document, expression: str, node: Node) -> Shape:
        expression = expression.strip() or "string"
        composite = "|" in expression or expression.endswith(("?", "[]"))
        if not composite and expression not in BUILTIN_SCALARS and expression not in BUILTIN_SHAPES:
            return self._link(document, expression, node)

        shape = self._kind_of_expression(document, expression, node, set())(span=_span(document.location, node))
        self._apply_expression(shape, document, expression, node)
        return shape

    def _apply_expression(self, shape: Shape, document: Document, expression: str, node: Node) -> None:
        expression = expression.strip() or "string"
        span = _span(document.location, node)
        if "|" in expression:
            shape.any_of = [self._build_expression(document, part, node) for part in expression.split("|")]
        elif expression.endswith("?"):
            shape.any_of = [self._build_expression(document, expression[:-1], node), NilShape(span=span)]
        elif expression.endswith("[]"):
            shape.items = self._build_expression(document, expression[:-2], node)
        elif expression in BUILTIN_SCALARS:
            shape.data_type = BUILTIN_SCALARS[expression]
        elif expression not in BUILTIN_SHAPES:
            link = self._link(document, expression, node)
            shape.inherits = [link]
            self._copy_structure(shape, link.link_target, node, document)

    def _copy_structure(self, shape: Shape, target: Shape, node: Node, document: Document) -> None:
        if isinstance(shape, (NodeShape, AnyShape)):
            return
        if id(target) in self._in_progress:
            raise LoadError(f"Cyclic type definition '{target.name}'", _span(document.location, node))
        if isinstance(shape, ScalarShape):
            shape.data_type = target.data_type
            shape.format = target.format
            shape.values = list(target.values)
        elif isinstance(shape, ArrayShape):
            shape.items = target.items
            shape.unique_items = target.unique_items
        elif isinstance(shape, UnionShape):
            shape.any_of = list(target.any_of)

    def _populate(self, shape: Shape, document: Document, node: Node) -> None:
        if isinstance(node, ScalarNode):
            self._apply_expression(shape, document, node.value, node)
            return

        entries = self._mapping(document, node, "type")
        for key, (key_node, value_node) in entries.items():
            annotation = _annotation_key(key)
            if annotation is not None:
                shape.annotations[annotation] = self._value(value_node)
            elif key not in FACET_KEYS:
                raise LoadError(f"Unknown facet '{key}'", _span(document.location, key_node))

        if "type" in entries:
            type_node = entries["type"][1]
            if isinstance(type_node, SequenceNode):
                shape.inherits = [self._link(document, item.value, item) for item in type_node.value]
            else:
                self._apply_expression(shape, document, type_node.value, type_node)

        facets = {key: value for key, (_, value) in entries.items()}
        if isinstance(shape, ScalarShape):
            self._scalar_facets(shape, facets)
        elif isinstance(shape, ArrayShape):
            if "items" in facets:
                shape.items = self._build(document, facets["items"])
            shape.unique_items = bool(self._value(facets["uniqueItems"])) if "uniqueItems" in facets else shape.unique_items
            shape.min_items = self._value(facets["minItems"]) if "minItems" in facets else None
            shape.max_items = self._value(facets["maxItems"]) if "maxItems" in facets else None
        elif isinstance(shape, NodeShape):
            self._node_facets(shape, document, facets)
        elif isinstance(shape, UnionShape):
            if "anyOf" in facets:
                shape.any_of.extend(self._build(document, item) for item in self._sequence(document, facets["anyOf"]))
        elif isinstance(shape, AnyShape):
            for key, attr in (("allOf", "all_of"), ("or", "or_"), ("oneOf", "xone")):
                if key in facets:
                    setattr(shape, attr, [self._build(document, item) for item in self._sequence(document, facets[key])])

    def _scalar_facets(self, shape: ScalarShape, facets: dict[str, Node]) -> None:
        if "enum" in facets:
            values = self._value(facets["enum"])
            if not isinstance(values, list):
                raise LoadError("'enum' must be a list", shape.span)
            shape.values = values
        for key, attr in (
            ("format", "format"),
            ("minLength", "min_length"),
            ("maxLength", "max_length"),
            ("pattern", "pattern"),
            ("minimum", "minimum"),
            ("maximum", "maximum"),
        ):
            if key in facets:
                setattr(shape, attr, self._value(facets[key]))

    def _node_facets(self, shape: NodeShape, document: Document, facets: dict[str, Node]) -> None:
        if "properties" in facets:
            for name, (name_node, value_node) in self._mapping(document, facets["properties"], "properties").items():
                shape.properties.append(self._property(document, name, name_node, value_node))

        if "additionalProperties" in facets:
            additional = facets["additionalProperties"]
            value = self._value(additional) if isinstance(additional, ScalarNode) else None
            if isinstance(value, bool):
                shape.closed = not value
            else:
                shape.additional_properties = self._build(document, additional)

        if "discriminator" in facets:
            shape.discriminator = str(self._value(facets["discriminator"]))
        if "discriminatorValue" in facets:
            shape.discriminator_value = str(self._value(facets["discriminatorValue"]))
        if "discriminatorMapping" in facets:
            mapping = self._mapping(document, facets["discriminatorMapping"], "discriminatorMapping")
            shape.discriminator_mapping = {value: str(self._value(target)) for value, (_, target) in mapping.items()}

    def _property(self, document: Document, name: str, name_node: Node, node: Node) -> PropertyShape:
        required = True
        if name.endswith("?") and len(name) > 1:
            name = name[:-1]
            required = False

        node, extracted = self._extract(node, ("required", "default"))
        if "required" in extracted:
            required = bool(self._value(extracted["required"]))
        default = self._value(extracted["default"]) if "default" in extracted else None

        return PropertyShape(
            name=name,
            range=self._build(document, node),
            required=required,
            default=default,
            span=_span(document.location, name_node),
        )

    # YAML helpers

    def _extract(self, node: Node, keys: tuple[str, ...]) -> tuple[Node, dict[str, Node]]:
        if not isinstance(node, MappingNode):
            return node, {}
        extracted = {key.value: value for key, value in node.value if key.value in keys}
        if not extracted:
            return node, {}
        remaining = [(key, value) for key, value in node.value if key.value not in keys]
        if not remaining:
            # A bare `{required: false}` keeps the default string type.
            return ScalarNode(tag="tag:yaml.org,2002:str", value="string", start_mark=node.start_mark, end_mark=node.end_mark), extracted
        return MappingNode(tag=node.tag, value=remaining, start_mark=node.start_mark, end_mark=node.end_mark), extracted

    def _mapping(self, document: Document, node: Node, label: str) -> dict[str, tuple[Node, Node]]:
        if isinstance(node, ScalarNode) and node.value in ("", "~", "null"):
            return {}
        if not isinstance(node, MappingNode):
            raise LoadError(f"'{label}' must be a mapping", _span(document.location, node))
        entries: dict[str, tuple[Node, Node]] = {}
        for key, value in node.value:
            if not isinstance(key, ScalarNode):
                raise LoadError(f"Keys of '{label}' must be strings", _span(document.location, key))
            if key.value in entries:
                raise LoadError(f"Duplicate key '{key.value}' in '{label}'", _span(document.location, key))
            entries[key.value] = (key, value)
        return entries

    def _sequence(self, document: Document, node: Node) -> list[Node]:
        if not isinstance(node, SequenceNode):
            raise LoadError("Expected a list of types", _span(document.location, node))
        return list(node.value)

    def _value(self, node: Node) -> Any:
        return self._constructor.construct_object(node, deep=True)


def load_documents(entry_path: str | Path) -> list[Document]:
    return ShapeGraphLoader().load(entry_path)
