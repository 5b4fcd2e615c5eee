from __future__ import annotations

import textwrap
from pathlib import Path

import pytest

from shapegen.loader import LoadError, load_documents
from shapegen.shapes import ArrayShape, DataType, NilShape, NodeShape, ScalarShape, UnionShape


def _write(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(content).strip() + "\n", encoding="utf-8")


def _declared(document, name: str):
    return next(shape for shape in document.declares if shape.name == name)


def test_loads_declared_types_with_facets_and_annotations(tmp_path: Path) -> None:
    _write(
        tmp_path / "api.yaml",
        """
        (modelPackage): com.example.model
        types:
          Pet:
            (patchable): true
            properties:
              name:
                type: string
                maxLength: 20
              tag?: string
              nickname: string?
              status:
                enum: [available, sold]
              scores: integer[]
              age:
                type: integer
                required: false
                default: 1
        """,
    )

    [document] = load_documents(tmp_path / "api.yaml")
    pet = _declared(document, "Pet")

    assert document.annotations == {"modelPackage": "com.example.model"}
    assert isinstance(pet, NodeShape)
    assert pet.declared
    assert pet.annotations == {"patchable": True}
    assert [prop.name for prop in pet.properties] == ["name", "tag", "nickname", "status", "scores", "age"]

    name, tag, nickname, status, scores, age = pet.properties
    assert name.range.max_length == 20
    assert tag.required is False
    assert isinstance(nickname.range, UnionShape)
    assert isinstance(nickname.range.any_of[1], NilShape)
    assert status.range.values == ["available", "sold"]
    assert isinstance(scores.range, ArrayShape)
    assert scores.range.items.data_type == DataType.INTEGER
    assert age.required is False
    assert age.default == 1
    assert pet.span.start.line == 3


def test_references_become_links_to_declared_shapes(tmp_path: Path) -> None:
    _write(
        tmp_path / "api.yaml",
        """
        types:
          Owner:
            properties:
              pet: Pet
          Pet:
            properties:
              owner?: Owner
          Puppy:
            type: Pet
            properties:
              age: integer
        """,
    )

    [document] = load_documents(tmp_path / "api.yaml")
    owner, pet, puppy = document.declares

    assert owner.properties[0].range.link_target is pet
    assert pet.properties[0].range.link_target is owner
    assert puppy.inherits[0].link_target is pet


def test_scalar_alias_copies_its_parent_type(tmp_path: Path) -> None:
    _write(
        tmp_path / "api.yaml",
        """
        types:
          Count:
            type: integer
            format: int64
          Total: Count
        """,
    )

    [document] = load_documents(tmp_path / "api.yaml")
    total = _declared(document, "Total")

    assert isinstance(total, ScalarShape)
    assert total.data_type == DataType.INTEGER
    assert total.format == "int64"


def test_uses_and_includes_are_followed(tmp_path: Path) -> None:
    _write(
        tmp_path / "lib" / "common.yaml",
        """
        types:
          Code:
            type: string
        """,
    )
    _write(
        tmp_path / "fragment.yaml",
        """
        types:
          Wrapper:
            properties:
              order: Order
        """,
    )
    _write(
        tmp_path / "api.yaml",
        """
        uses:
          common: lib/common.yaml
        includes:
          - fragment.yaml
        types:
          Order:
            properties:
              code: common.Code
        """,
    )

    [document] = load_documents(tmp_path / "api.yaml")
    library = document.uses["common"]
    [fragment] = document.includes
    order = _declared(document, "Order")

    assert order.properties[0].range.link_target is _declared(library, "Code")
    assert _declared(fragment, "Wrapper").properties[0].range.link_target is order


def test_endpoints_become_operations(tmp_path: Path) -> None:
    _write(
        tmp_path / "api.yaml",
        """
        title: Store
        baseUri: https://shop.example.com/v1
        types:
          Order:
            properties:
              id: string
        endpoints:
          /orders/{id}:
            get:
              operationId: getOrder
              (group): orders
              uriParameters:
                id: string
              headers:
                x-trace?: string
              responses:
                200:
                  body: Order
                404:
            put:
              body:
                application/json: Order
              responses:
                204:
        """,
    )

    [document] = load_documents(tmp_path / "api.yaml")
    [endpoint] = document.api.endpoints
    get, put = endpoint.operations

    assert document.api.title == "Store"
    assert document.api.base_uri == "https://shop.example.com/v1"
    assert endpoint.path == "/orders/{id}"
    assert get.operation_id == "getOrder"
    assert get.annotations == {"group": "orders"}
    assert [(param.binding, param.name, param.required) for param in get.parameters] == [
        ("uri", "id", True),
        ("header", "x-trace", False),
    ]
    assert [response.status_code for response in get.responses] == ["200", "404"]
    assert get.responses[0].payloads[0].schema.link_target is _declared(document, "Order")
    assert put.request[0].media_type == "application/json"
    assert put.responses[0].payloads == []


def test_unknown_type_reports_location(tmp_path: Path) -> None:
    _write(
        tmp_path / "api.yaml",
        """
        types:
          Pet:
            properties:
              owner: Missing
        """,
    )

    with pytest.raises(LoadError, match=r"Unknown type 'Missing' at .*api\.yaml:4:14"):
        load_documents(tmp_path / "api.yaml")


def test_cyclic_alias_is_rejected(tmp_path: Path) -> None:
    _write(
        tmp_path / "api.yaml",
        """
        types:
          First: Second
          Second: First
        """,
    )

    with pytest.raises(LoadError, match="Cyclic type definition"):
        load_documents(tmp_path / "api.yaml")


def test_unknown_facet_is_rejected(tmp_path: Path) -> None:
    _write(
        tmp_path / "api.yaml",
        """
        types:
          Pet:
            properties:
              name: string
            colour: red
        """,
    )

    with pytest.raises(LoadError, match="Unknown facet 'colour'"):
        load_documents(tmp_path / "api.yaml")


def test_invalid_yaml_is_reported(tmp_path: Path) -> None:
    (tmp_path / "api.yaml").write_text("types: [unclosed\n", encoding="utf-8")

    with pytest.raises(LoadError, match="Invalid YAML"):
        load_documents(tmp_path / "api.yaml")


def test_missing_file_is_reported(tmp_path: Path) -> None:
    with pytest.raises(LoadError, match="Unable to read"):
        load_documents(tmp_path / "missing.yaml")
