from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from shapegen.config import GenerationOptions
from shapegen.discriminators import DiscriminatorResolver
from shapegen.errors import AnnotationError, GenerationError, UnresolvedReferenceError
from shapegen.loader import load_documents
from shapegen.resolution import ResolutionContext
from shapegen.shape_index import build_shape_index
from shapegen.shapes import Document, NodeShape, PropertyShape, ScalarShape
from shapegen.type_model import DiscriminatorRole
from shapegen.type_registry import TypeRegistry


def _write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(content).strip() + "\n", encoding="utf-8")


def _registry(tmp_path: Path, content: str, **options) -> TypeRegistry:
    _write(tmp_path / "api.yaml", content)
    return TypeRegistry.for_documents(load_documents(tmp_path / "api.yaml"), GenerationOptions(**options))


def _shape(registry: TypeRegistry, name: str):
    return next(shape for shape in registry.resolution.documents[-1].declares if shape.name == name)


ANIMALS = """
    types:
      Animal:
        discriminator: kind
        discriminatorMapping:
          doggo: Dog
        properties:
          kind: string
          name: string
      Dog:
        type: Animal
        properties:
          bark: boolean
      Cat:
        type: Animal
        discriminatorValue: kitty
        properties:
          lives: integer
      Bird:
        type: Animal
        properties:
          wings: integer
    """


def test_discriminator_value_precedence(tmp_path: Path) -> None:
    registry = _registry(tmp_path, ANIMALS)
    resolver = registry.discriminators
    animal = _shape(registry, "Animal")

    assert resolver.discriminator_value(_shape(registry, "Cat"), animal) == "kitty"
    assert resolver.discriminator_value(_shape(registry, "Dog"), animal) == "doggo"
    assert resolver.discriminator_value(_shape(registry, "Bird"), animal) == "Bird"
    assert resolver.find_discriminator_root(_shape(registry, "Bird")) is animal
    assert resolver.discriminator_property_name(_shape(registry, "Dog")) == "kind"


def test_root_and_leaf_definitions(tmp_path: Path) -> None:
    registry = _registry(tmp_path, ANIMALS)

    registry.resolve_type_reference(_shape(registry, "Animal"))
    graph = registry.build_graph()
    animal = graph["api.client.model.Animal"]
    cat = graph["api.client.model.Cat"]

    assert animal.discriminator_role is DiscriminatorRole.ROOT
    assert animal.discriminator.wire_name == "kind"
    assert animal.is_abstract
    assert [prop.name for prop in animal.properties] == ["name"]
    assert [(entry.value, entry.type_ref.name.simple_name) for entry in animal.subtypes] == [
        ("doggo", "Dog"),
        ("kitty", "Cat"),
        ("Bird", "Bird"),
    ]

    assert cat.discriminator_role is DiscriminatorRole.LEAF
    assert cat.discriminator.value == "kitty"
    assert cat.discriminator.type_ref.describe() == "string"
    assert [prop.name for prop in cat.properties] == ["lives"]
    assert not cat.is_abstract


def test_root_is_not_abstract_for_interfaces(tmp_path: Path) -> None:
    registry = _registry(tmp_path, ANIMALS, implement_model=False)

    registry.resolve_type_reference(_shape(registry, "Animal"))

    assert not registry.build_graph()["api.client.model.Animal"].is_abstract


def test_enum_discriminator_maps_values_to_cases(tmp_path: Path) -> None:
    registry = _registry(
        tmp_path,
        """
        types:
          Vehicle:
            discriminator: kind
            (externallyDiscriminated): true
            properties:
              kind:
                enum: [car, pickup-truck]
          Car:
            type: Vehicle
            discriminatorValue: car
          Truck:
            type: Vehicle
            discriminatorValue: pickup-truck
        """,
    )

    registry.resolve_type_reference(_shape(registry, "Vehicle"))
    graph = registry.build_graph()
    vehicle = graph["api.client.model.Vehicle"]

    assert vehicle.discriminator.external
    assert vehicle.discriminator.type_ref.describe() == "api.client.model.Vehicle.KindEnum"
    assert graph["api.client.model.Car"].discriminator.enum_case == "Car"
    assert graph["api.client.model.Truck"].discriminator.enum_case == "PickupTruck"


def test_discriminator_value_outside_enum_is_rejected(tmp_path: Path) -> None:
    registry = _registry(
        tmp_path,
        """
        types:
          Vehicle:
            discriminator: kind
            properties:
              kind:
                enum: [car]
          Boat:
            type: Vehicle
            discriminatorValue: boat
        """,
    )

    with pytest.raises(AnnotationError, match="Discriminator value is not a case of enum"):
        registry.resolve_type_reference(_shape(registry, "Vehicle"))


def test_missing_discriminator_property_is_rejected(tmp_path: Path) -> None:
    registry = _registry(
        tmp_path,
        """
        types:
          Animal:
            discriminator: species
            properties:
              name: string
        """,
    )

    with pytest.raises(AnnotationError, match="Discriminator property 'species' not found"):
        registry.resolve_type_reference(_shape(registry, "Animal"))


def test_mapping_to_unknown_type_is_rejected(tmp_path: Path) -> None:
    registry = _registry(
        tmp_path,
        """
        types:
          Animal:
            discriminator: kind
            discriminatorMapping:
              fish: Fish
            properties:
              kind: string
          Dog:
            type: Animal
            properties:
              bark: boolean
        """,
    )

    with pytest.raises(UnresolvedReferenceError, match="Unresolved reference 'Fish'"):
        registry.resolve_type_reference(_shape(registry, "Animal"))


def test_anonymous_subtype_without_value_is_rejected() -> None:
    root = NodeShape(
        name="Root",
        declared=True,
        discriminator="kind",
        properties=[PropertyShape("kind", ScalarShape())],
    )
    anonymous = NodeShape(inherits=[root], properties=[PropertyShape("x", ScalarShape())])
    holder = NodeShape(name="Holder", declared=True, properties=[PropertyShape("child", anonymous)])
    documents = [Document("api.yaml", declares=[root, holder])]
    resolver = DiscriminatorResolver(ResolutionContext(documents, build_shape_index(documents)))

    with pytest.raises(GenerationError, match="Unable to determine discriminator value"):
        resolver.discriminator_value(anonymous, root)
