from __future__ import annotations

from dataclasses import fields, is_dataclass
from datetime import date, time
from enum import Enum
import json
from typing import Any, Mapping

from shapegen.locations import SourceSpan
from shapegen.type_model import QualifiedName, TypeDefinitionGraph, TypeRef


def type_graph_to_debug_data(graph: TypeDefinitionGraph, *, include_spans: bool = False) -> Any:
    return [_to_debug_data(definition, include_spans=include_spans) for definition in graph.top_level()]


def _to_debug_data(node: Any, *, include_spans: bool) -> Any:
    if node is None:
        return None

    if isinstance(node, (str, int, float, bool)):
        return node

    # YAML timestamps in defaults and enum literals
    if isinstance(node, (date, time)):
        return node.isoformat()

    if isinstance(node, TypeRef):
        return node.describe()

    if isinstance(node, QualifiedName):
        return node.canonical

    if isinstance(node, Enum):
        return node.value

    if isinstance(node, (list, tuple)):
        return [_to_debug_data(item, include_spans=include_spans) for item in node]

    if is_dataclass(node):
        if isinstance(node, SourceSpan):
            return node.describe()
        result: dict[str, Any] = {}
        for field in fields(node):
            if not include_spans and field.name == "span":
                continue
            result[field.name] = _to_debug_data(getattr(node, field.name), include_spans=include_spans)
        return result

    if isinstance(node, Mapping):
        return {str(k): _to_debug_data(v, include_spans=include_spans) for k, v in node.items()}

    raise TypeError(f"Unsupported type graph debug serialization value: {type(node).__name__}")


def type_graph_to_debug_json(graph: TypeDefinitionGraph, *, include_spans: bool = False) -> str:
    data = type_graph_to_debug_data(graph, include_spans=include_spans)
    return json.dumps(data, indent=2, sort_keys=True)
