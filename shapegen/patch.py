from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Mapping

from shapegen.errors import GenerationError
from shapegen.type_model import DefinitionKind, TypeDefinition


class _Absent:
    _instance: _Absent | None = None

    def __new__(cls) -> _Absent:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __bool__(self) -> bool:
        return False

    def __repr__(self) -> str:
        return "ABSENT"


ABSENT = _Absent()


@dataclass(frozen=True)
class Present:
    value: Any


@dataclass(frozen=True)
class PatchRecord:
    """Per-field presence of a partial update; fields map to ``Present`` or ``ABSENT``."""

    definition: TypeDefinition
    fields: Mapping[str, Present | _Absent]

    def __getitem__(self, name: str) -> Present | _Absent:
        return self.fields[name]

    def present_fields(self) -> dict[str, Any]:
        return {name: entry.value for name, entry in self.fields.items() if isinstance(entry, Present)}


def derive_patch(definition: TypeDefinition, source: Mapping[str, Any]) -> PatchRecord:
    if definition.kind is not DefinitionKind.PATCH:
        raise GenerationError(f"'{definition.name}' is not a patch definition", definition.span)

    fields: dict[str, Present | _Absent] = {}
    for prop in definition.properties:
        if prop.wire_name in source:
            fields[prop.name] = Present(source[prop.wire_name])
        else:
            fields[prop.name] = ABSENT
    return PatchRecord(definition=definition, fields=MappingProxyType(fields))
