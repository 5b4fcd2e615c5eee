from __future__ import annotations

from dataclasses import dataclass, fields, replace
from enum import Enum
from pathlib import Path
from typing import Any

import yaml


class GenerationMode(Enum):
    CLIENT = "client"
    SERVER = "server"


@dataclass(frozen=True)
class GenerationOptions:
    generation_mode: GenerationMode = GenerationMode.CLIENT
    implement_model: bool = True
    validation_constraints: bool = False
    default_model_package: str | None = None
    default_service_package: str = "api"
    default_problem_base_uri: str = "http://example.com/"

    @property
    def model_package(self) -> str:
        if self.default_model_package:
            return self.default_model_package
        return f"{self.default_service_package}.{self.generation_mode.value}.model"

    @property
    def service_package(self) -> str:
        return self.default_service_package

    def with_overrides(self, **overrides: Any) -> GenerationOptions:
        return replace(self, **{key: value for key, value in overrides.items() if value is not None})


_OPTION_KEYS = {
    "generationMode": "generation_mode",
    "implementModel": "implement_model",
    "validationConstraints": "validation_constraints",
    "defaultModelPackage": "default_model_package",
    "defaultServicePackage": "default_service_package",
    "defaultProblemBaseUri": "default_problem_base_uri",
}


def options_from_mapping(raw: dict[str, Any]) -> GenerationOptions:
    known = {f.name for f in fields(GenerationOptions)}
    values: dict[str, Any] = {}
    for key, value in raw.items():
        attr = _OPTION_KEYS.get(key, key)
        if attr not in known:
            raise ValueError(f"Unknown generation option '{key}'")
        values[attr] = value

    if "generation_mode" in values:
        try:
            values["generation_mode"] = GenerationMode(str(values["generation_mode"]).lower())
        except ValueError:
            raise ValueError(f"Invalid generation mode '{values['generation_mode']}'") from None

    for flag in ("implement_model", "validation_constraints"):
        if flag in values and not isinstance(values[flag], bool):
            raise ValueError(f"Generation option '{flag}' must be bool")

    return GenerationOptions(**values)


def load_options(path: str | Path) -> GenerationOptions:
    config_path = Path(path)
    raw = yaml.safe_load(config_path.read_text(encoding="utf-8"))
    if raw is None:
        return GenerationOptions()
    if not isinstance(raw, dict):
        raise ValueError(f"{config_path.as_posix()}: configuration must be a mapping")
    return options_from_mapping(raw)
