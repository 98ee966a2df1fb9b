"""Tests for the operation registry and built-in catalog."""

from __future__ import annotations

import pytest

from storyagent.ai.operations.catalog import CATALOG_NAMES, build_catalog
from storyagent.ai.operations.registry import (
    OperationCategory,
    OperationDescriptor,
    OperationRegistry,
    default_registry,
)
from storyagent.ai.orchestration.errors import (
    DuplicateOperationError,
    RegistryFrozenError,
    UnknownOperationError,
)


def _descriptor(name: str = "query_assets", **kwargs) -> OperationDescriptor:
    return OperationDescriptor(name=name, label=name.replace("_", " ").title(), **kwargs)


def test_register_and_lookup() -> None:
    registry = OperationRegistry()
    descriptor = registry.register(_descriptor())

    assert registry.lookup("query_assets") is descriptor
    assert registry.lookup("missing") is None
    assert "query_assets" in registry
    assert len(registry) == 1
    assert registry.names() == ["query_assets"]


def test_duplicate_names_are_rejected() -> None:
    registry = OperationRegistry([_descriptor()])

    with pytest.raises(DuplicateOperationError):
        registry.register(_descriptor())


def test_frozen_registry_rejects_registration() -> None:
    registry = OperationRegistry([_descriptor()]).freeze()

    assert registry.frozen is True
    with pytest.raises(RegistryFrozenError):
        registry.register(_descriptor("query_timeline"))


def test_get_required_raises_for_unknown_names() -> None:
    registry = OperationRegistry()

    with pytest.raises(UnknownOperationError) as info:
        registry.get_required("teleport")

    assert "teleport" in info.value.message


def test_descriptor_validates_name_and_category() -> None:
    with pytest.raises(ValueError):
        OperationDescriptor(name="", label="Nameless")
    with pytest.raises(ValueError):
        OperationDescriptor(name="x", label="X", category="mystery")


def test_openai_tool_declaration_uses_schema() -> None:
    schema = {"type": "object", "properties": {"assetIds": {"type": "array"}}, "required": ["assetIds"]}
    descriptor = _descriptor(
        "delete_asset",
        description="Delete assets",
        parameters=schema,
        category=OperationCategory.DELETION,
        requires_confirmation=True,
    )

    tool = descriptor.to_openai_tool()

    assert tool == {
        "type": "function",
        "function": {"name": "delete_asset", "description": "Delete assets", "parameters": schema},
    }


def test_default_registry_is_frozen_singleton() -> None:
    registry = default_registry()

    assert registry is default_registry()
    assert registry.frozen is True
    assert set(registry.names()) == set(CATALOG_NAMES)


def test_catalog_gates_everything_but_reads() -> None:
    for descriptor in build_catalog():
        if descriptor.category == OperationCategory.READ:
            assert descriptor.requires_confirmation is False, descriptor.name
        else:
            assert descriptor.requires_confirmation is True, descriptor.name

    registry = default_registry()
    assert registry.lookup("delete_asset").category == OperationCategory.DELETION
    assert registry.requires_confirmation("delete_asset") is True
    assert registry.requires_confirmation("query_assets") is False
    assert registry.requires_confirmation("unknown") is False


def test_catalog_schemas_are_valid_json_schema() -> None:
    from jsonschema import Draft202012Validator

    for descriptor in build_catalog():
        Draft202012Validator.check_schema(dict(descriptor.parameters))
