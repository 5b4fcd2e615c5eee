from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from shapegen.config import GenerationOptions
from shapegen.errors import AnnotationError, NameCollisionError, ShapeKindError
from shapegen.loader import load_documents
from shapegen.shapes import Document, NodeShape, PropertyShape, ScalarShape
from shapegen.type_model import DefinitionKind, Primitive, TypeRefKind
from shapegen.type_registry import TypeRegistry


def _write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(content).strip() + "\n", encoding="utf-8")


def _registry(tmp_path: Path, content: str, **options) -> TypeRegistry:
    _write(tmp_path / "api.yaml", content)
    return TypeRegistry.for_documents(load_documents(tmp_path / "api.yaml"), GenerationOptions(**options))


def _shape(registry: TypeRegistry, name: str):
    for document in registry.resolution.documents:
        for shape in document.declares:
            if shape.name == name:
                return shape
    raise KeyError(name)


def _resolve(registry: TypeRegistry, name: str):
    return registry.resolve_type_reference(_shape(registry, name))


def test_object_becomes_class_with_ordered_properties(tmp_path: Path) -> None:
    registry = _registry(
        tmp_path,
        """
        types:
          Pet:
            properties:
              pet_name: string
              tag?: string
              status:
                enum: [available, on-hold]
        """,
    )

    pet_ref = _resolve(registry, "Pet")
    graph = registry.build_graph()
    pet = graph[pet_ref.name]

    assert pet_ref.kind is TypeRefKind.DEFINED
    assert pet.name.canonical == "api.client.model.Pet"
    assert pet.kind is DefinitionKind.CLASS
    assert [(prop.name, prop.wire_name) for prop in pet.properties] == [
        ("petName", "pet_name"),
        ("tag", "tag"),
        ("status", "status"),
    ]
    assert pet.properties[1].type_ref.describe() == "optional<string>"
    assert pet.properties[1].optional

    [status_enum] = pet.nested
    assert status_enum.name.canonical == "api.client.model.Pet.StatusEnum"
    assert status_enum.kind is DefinitionKind.ENUM
    assert [(case.name, case.literal) for case in status_enum.enum_cases] == [
        ("Available", "available"),
        ("OnHold", "on-hold"),
    ]
    assert graph.top_level() == [pet]


def test_interfaces_are_generated_when_model_is_not_implemented(tmp_path: Path) -> None:
    registry = _registry(
        tmp_path,
        """
        types:
          Pet:
            properties:
              name: string
        """,
        implement_model=False,
    )

    _resolve(registry, "Pet")

    assert registry.build_graph()["api.client.model.Pet"].kind is DefinitionKind.INTERFACE


@pytest.mark.parametrize(
    ("facets", "expected"),
    [
        ("string", Primitive.STRING),
        ("{type: string, format: date-time}", Primitive.DATE_TIME),
        ("boolean", Primitive.BOOLEAN),
        ("integer", Primitive.INT32),
        ("{type: integer, format: int8}", Primitive.INT8),
        ("{type: integer, format: int16}", Primitive.INT16),
        ("{type: integer, format: long}", Primitive.INT64),
        ("number", Primitive.FLOAT64),
        ("{type: number, format: float}", Primitive.FLOAT32),
        ("date-only", Primitive.DATE),
        ("time-only", Primitive.TIME),
        ("datetime-only", Primitive.LOCAL_DATE_TIME),
        ("datetime", Primitive.DATE_TIME),
        ("duration", Primitive.DURATION),
        ("file", Primitive.BYTES),
    ],
)
def test_scalar_mapping(tmp_path: Path, facets: str, expected: Primitive) -> None:
    registry = _registry(
        tmp_path,
        f"""
        types:
          Value: {facets}
        """,
    )

    type_ref = _resolve(registry, "Value")

    assert type_ref.kind is TypeRefKind.PRIMITIVE
    assert type_ref.primitive is expected


def test_unsupported_integer_format_is_rejected(tmp_path: Path) -> None:
    registry = _registry(
        tmp_path,
        """
        types:
          Huge:
            type: integer
            format: int128
        """,
    )

    with pytest.raises(ShapeKindError, match="Integer format 'int128' is unsupported"):
        _resolve(registry, "Huge")


def test_collections_maps_and_special_types(tmp_path: Path) -> None:
    registry = _registry(
        tmp_path,
        """
        types:
          Holder:
            properties:
              names: string[]
              tags:
                type: string[]
                uniqueItems: true
              metadata:
                type: object
              counters:
                type: object
                additionalProperties: integer
              anything: any
              nothing: nil
        """,
    )

    _resolve(registry, "Holder")
    holder = registry.build_graph()["api.client.model.Holder"]

    assert [prop.type_ref.describe() for prop in holder.properties] == [
        "list<string>",
        "set<string>",
        "map<string, any>",
        "map<string, int32>",
        "any",
        "unit",
    ]


def test_nil_union_collapses_to_optional(tmp_path: Path) -> None:
    registry = _registry(
        tmp_path,
        """
        types:
          Pet:
            properties:
              name: string
          Holder:
            properties:
              pet: Pet | nil
              nickname: string?
        """,
    )

    _resolve(registry, "Holder")
    holder = registry.build_graph()["api.client.model.Holder"]

    assert holder.properties[0].type_ref.describe() == "optional<api.client.model.Pet>"
    assert holder.properties[1].type_ref.describe() == "optional<string>"
    assert not holder.properties[0].optional


def test_union_resolves_to_nearest_common_ancestor(tmp_path: Path) -> None:
    registry = _registry(
        tmp_path,
        """
        types:
          Grandparent:
            properties:
              id: string
          Parent:
            type: Grandparent
            properties:
              p: string
          ChildA:
            type: Parent
            properties:
              a: string
          ChildB:
            type: Parent
            properties:
              b: string
          Other:
            type: Grandparent
            properties:
              o: string
          Loner:
            properties:
              l: string
          Holder:
            properties:
              siblings: ChildA | ChildB
              cousins: ChildA | Other
              mixed: ChildA | string
              strangers: ChildB | Loner
        """,
    )

    _resolve(registry, "Holder")
    holder = registry.build_graph()["api.client.model.Holder"]

    assert [prop.type_ref.describe() for prop in holder.properties] == [
        "api.client.model.Parent",
        "api.client.model.Grandparent",
        "any",
        "any",
    ]


def test_inheritance_sets_super_type_and_openness(tmp_path: Path) -> None:
    registry = _registry(
        tmp_path,
        """
        types:
          Base:
            properties:
              id: string
          Derived:
            type: Base
            properties:
              extra: integer
        """,
    )

    derived_ref = _resolve(registry, "Derived")
    graph = registry.build_graph()
    base = graph["api.client.model.Base"]
    derived = graph[derived_ref.name]

    assert derived.super_type is _resolve(registry, "Base")
    assert [prop.name for prop in derived.properties] == ["extra"]
    assert base.is_open
    assert not derived.is_open


def test_aggregation_defines_subclass(tmp_path: Path) -> None:
    registry = _registry(
        tmp_path,
        """
        types:
          Base:
            properties:
              id: string
          Extended:
            allOf:
              - Base
              - properties:
                  extra: string
        """,
    )

    extended_ref = _resolve(registry, "Extended")
    extended = registry.build_graph()[extended_ref.name]

    assert extended.name.simple_name == "Extended"
    assert extended.super_type is _resolve(registry, "Base")
    assert [prop.name for prop in extended.properties] == ["extra"]


def test_alias_and_soft_link_resolve_to_the_same_reference(tmp_path: Path) -> None:
    registry = _registry(
        tmp_path,
        """
        types:
          Pet:
            properties:
              name: string
          PetAlias: Pet
          Holder:
            properties:
              direct: Pet
              annotated:
                type: Pet
                description: Same pet, different words
        """,
    )

    pet_ref = _resolve(registry, "Pet")

    assert _resolve(registry, "PetAlias") is pet_ref
    assert _resolve(registry, "Pet") is pet_ref
    _resolve(registry, "Holder")
    graph = registry.build_graph()
    holder = graph["api.client.model.Holder"]
    assert all(prop.type_ref is pet_ref for prop in holder.properties)
    assert "api.client.model.PetAlias" not in graph
    assert not graph["api.client.model.Pet"].is_open


def test_recursive_types_resolve(tmp_path: Path) -> None:
    registry = _registry(
        tmp_path,
        """
        types:
          Node:
            properties:
              children: Node[]
              parent?: Node
        """,
    )

    node_ref = _resolve(registry, "Node")
    node = registry.build_graph()[node_ref.name]

    assert node.properties[0].type_ref.arguments[0] is node_ref
    assert node.properties[1].type_ref.arguments[0] is node_ref


def test_type_override_produces_external_reference(tmp_path: Path) -> None:
    registry = _registry(
        tmp_path,
        """
        types:
          Money:
            type: string
            (typeOverride): java.math.BigDecimal
        """,
    )

    type_ref = _resolve(registry, "Money")

    assert type_ref.kind is TypeRefKind.EXTERNAL
    assert type_ref.name.canonical == "java.math.BigDecimal"
    assert len(registry.build_graph()) == 0


def test_class_may_extend_overridden_type(tmp_path: Path) -> None:
    registry = _registry(
        tmp_path,
        """
        types:
          Base:
            (typeOverride): com.example.Base
            properties:
              id: string
          Derived:
            type: Base
            properties:
              extra: string
          Sibling:
            type: Base
            properties:
              other: integer
          Holder:
            properties:
              either: Derived | Sibling
        """,
    )

    derived_ref = _resolve(registry, "Derived")
    _resolve(registry, "Holder")
    graph = registry.build_graph()
    derived = graph[derived_ref.name]

    assert derived.super_type.kind is TypeRefKind.EXTERNAL
    assert derived.super_type.describe() == "com.example.Base"
    assert [prop.name for prop in derived.properties] == ["extra"]
    assert "com.example.Base" not in graph
    assert graph["api.client.model.Holder"].properties[0].type_ref.describe() == "com.example.Base"


def test_class_cannot_extend_scalar() -> None:
    code = ScalarShape(name="Code", declared=True)
    wrapped = NodeShape(
        name="Wrapped",
        declared=True,
        inherits=[code],
        properties=[PropertyShape("extra", ScalarShape())],
    )
    registry = TypeRegistry.for_documents([Document("api.yaml", declares=[code, wrapped])])

    with pytest.raises(ShapeKindError, match="inherits from non-object type 'string'"):
        registry.resolve_type_reference(wrapped)


def test_shape_outside_the_documents_keeps_its_properties() -> None:
    registry = TypeRegistry.for_documents([Document("api.yaml")])
    stray = NodeShape(name="Stray", declared=True, properties=[PropertyShape("id", ScalarShape())])

    type_ref = registry.resolve_type_reference(stray)

    assert type_ref.describe() == "api.client.model.Stray"
    assert [prop.name for prop in registry.build_graph()[type_ref.name].properties] == ["id"]


def test_narrowed_enumeration_defines_its_own_enum(tmp_path: Path) -> None:
    registry = _registry(
        tmp_path,
        """
        types:
          Status:
            enum: [open, closed, archived]
          Holder:
            properties:
              current: Status
              described:
                type: Status
                description: Same cases as Status
              active:
                type: Status
                enum: [open, closed]
        """,
    )

    status_ref = _resolve(registry, "Status")
    _resolve(registry, "Holder")
    graph = registry.build_graph()
    holder = graph["api.client.model.Holder"]

    assert holder.properties[0].type_ref is status_ref
    assert holder.properties[1].type_ref is status_ref
    assert holder.properties[2].type_ref.describe() == "api.client.model.Holder.ActiveEnum"
    assert [case.name for case in holder.find_nested("ActiveEnum").enum_cases] == ["Open", "Closed"]
    assert [case.name for case in graph["api.client.model.Status"].enum_cases] == ["Open", "Closed", "Archived"]


def test_nested_annotation_attaches_definition_to_enclosing_type(tmp_path: Path) -> None:
    registry = _registry(
        tmp_path,
        """
        types:
          Outer:
            properties:
              detail: Inner
          Inner:
            (nested):
              enclosedIn: Outer
              name: Detail
            properties:
              value: string
        """,
    )

    _resolve(registry, "Outer")
    graph = registry.build_graph()
    outer = graph["api.client.model.Outer"]

    assert outer.properties[0].type_ref.describe() == "api.client.model.Outer.Detail"
    assert [nested.name.simple_name for nested in outer.nested] == ["Detail"]
    assert [definition.name.simple_name for definition in graph.top_level()] == ["Outer"]


def test_name_collision_is_reported_with_both_locations(tmp_path: Path) -> None:
    _write(
        tmp_path / "lib.yaml",
        """
        types:
          Code:
            properties:
              value: string
        """,
    )
    registry = _registry(
        tmp_path,
        """
        uses:
          lib: lib.yaml
        types:
          Code:
            properties:
              text: string
          Holder:
            properties:
              ours: Code
              theirs: lib.Code
        """,
    )

    with pytest.raises(NameCollisionError, match=r"Multiple types defined with name 'api\.client\.model\.Code'") as info:
        _resolve(registry, "Holder")

    assert info.value.first_span is not None
    assert info.value.second_span is not None


def test_package_annotation_resolves_collision(tmp_path: Path) -> None:
    _write(
        tmp_path / "lib.yaml",
        """
        (modelPackage): com.example.lib
        types:
          Code:
            properties:
              value: string
        """,
    )
    registry = _registry(
        tmp_path,
        """
        uses:
          lib: lib.yaml
        types:
          Code:
            properties:
              text: string
          Holder:
            properties:
              ours: Code
              theirs: lib.Code
        """,
    )

    _resolve(registry, "Holder")
    holder = registry.build_graph()["api.client.model.Holder"]

    assert [prop.type_ref.describe() for prop in holder.properties] == [
        "api.client.model.Code",
        "com.example.lib.Code",
    ]


def test_inline_object_is_named_after_its_property(tmp_path: Path) -> None:
    registry = _registry(
        tmp_path,
        """
        types:
          Holder:
            properties:
              address:
                properties:
                  street: string
        """,
    )

    _resolve(registry, "Holder")
    holder = registry.build_graph()["api.client.model.Holder"]

    assert holder.properties[0].type_ref.describe() == "api.client.model.Holder.Address"
    assert holder.nested[0].properties[0].name == "street"


def test_validation_constraints_are_recorded_when_enabled(tmp_path: Path) -> None:
    content = """
        types:
          Item:
            properties:
              name: string
          Order:
            properties:
              code:
                type: string
                minLength: 2
                maxLength: 5
                pattern: "^[A-Z]+$"
              quantity:
                type: integer
                minimum: 1
                maximum: 99
              items:
                type: Item[]
                minItems: 1
              item: Item
              note: string
        """
    registry = _registry(tmp_path, content, validation_constraints=True)

    _resolve(registry, "Order")
    order = registry.build_graph()["api.client.model.Order"]
    code, quantity, items, item, note = order.properties

    assert (code.constraints.min_length, code.constraints.max_length, code.constraints.pattern) == (2, 5, "^[A-Z]+$")
    assert (quantity.constraints.minimum, quantity.constraints.maximum) == (1, 99)
    assert items.constraints.min_items == 1
    assert item.constraints.valid
    assert note.constraints is None

    plain = _registry(tmp_path / "plain", content)
    _resolve(plain, "Order")
    assert all(prop.constraints is None for prop in plain.build_graph()["api.client.model.Order"].properties)


def test_external_discriminator_must_name_an_existing_property(tmp_path: Path) -> None:
    registry = _registry(
        tmp_path,
        """
        types:
          Payload:
            properties:
              data: string
          Envelope:
            properties:
              kind: string
              payload:
                type: Payload
                (externalDiscriminator): kind
          Broken:
            properties:
              payload:
                type: Payload
                (externalDiscriminator): missing
        """,
    )

    _resolve(registry, "Envelope")
    envelope = registry.build_graph()["api.client.model.Envelope"]
    assert envelope.properties[1].external_discriminator == "kind"

    with pytest.raises(AnnotationError, match="External discriminator 'missing' not found in object"):
        _resolve(registry, "Broken")


def test_external_discriminator_requires_object_type(tmp_path: Path) -> None:
    registry = _registry(
        tmp_path,
        """
        types:
          Envelope:
            properties:
              kind: string
              payload:
                type: string
                (externalDiscriminator): kind
        """,
    )

    with pytest.raises(AnnotationError, match="Externally discriminated types must be 'object'"):
        _resolve(registry, "Envelope")


def test_default_values_are_carried(tmp_path: Path) -> None:
    registry = _registry(
        tmp_path,
        """
        types:
          Settings:
            properties:
              retries:
                type: integer
                default: 3
        """,
    )

    _resolve(registry, "Settings")

    assert registry.build_graph()["api.client.model.Settings"].properties[0].default == 3


def test_graph_is_deterministic(tmp_path: Path) -> None:
    content = """
        types:
          Zeta:
            properties:
              alpha:
                properties:
                  value: string
              beta:
                enum: [x, y]
          Alpha:
            properties:
              zeta: Zeta
        """

    def definitions(directory: Path) -> list[str]:
        registry = _registry(directory, content)
        for name in ("Zeta", "Alpha"):
            _resolve(registry, name)
        graph = registry.build_graph()
        return [name.canonical for name in graph] + [
            nested.name.canonical for definition in graph.top_level() for nested in definition.nested
        ]

    assert definitions(tmp_path / "first") == definitions(tmp_path / "second")
    assert definitions(tmp_path / "first") == [
        "api.client.model.Zeta",
        "api.client.model.Zeta.Alpha",
        "api.client.model.Zeta.BetaEnum",
        "api.client.model.Alpha",
        "api.client.model.Zeta.Alpha",
        "api.client.model.Zeta.BetaEnum",
    ]
