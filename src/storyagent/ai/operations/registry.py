"""Operation registry for the orchestration loop.

The registry is the single catalog of operations the model may request. It is
built once (normally from :mod:`storyagent.ai.operations.catalog`), frozen,
and then shared read-only by every loop instance in the process.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Iterable, Iterator, Mapping

from ..orchestration.errors import (
    DuplicateOperationError,
    RegistryFrozenError,
    UnknownOperationError,
)

__all__ = [
    "OperationCategory",
    "OperationDescriptor",
    "OperationRegistry",
    "default_registry",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Operation Categories
# -----------------------------------------------------------------------------


class OperationCategory:
    """Standard operation categories."""

    READ = "read"
    GENERATION = "generation"
    MODIFICATION = "modification"
    DELETION = "deletion"

    ALL: tuple[str, ...] = (READ, GENERATION, MODIFICATION, DELETION)


# -----------------------------------------------------------------------------
# Operation Descriptor
# -----------------------------------------------------------------------------


@dataclass(slots=True, frozen=True)
class OperationDescriptor:
    """Declaration of an operation the model can invoke.

    Attributes:
        name: Unique identifier for the operation.
        label: Short human-readable label shown in confirmations.
        description: Description sent to the model.
        parameters: JSON Schema for the operation's arguments.
        category: One of :class:`OperationCategory`.
        requires_confirmation: Whether the user must approve the call first.
    """

    name: str
    label: str
    description: str = ""
    parameters: Mapping[str, Any] = field(default_factory=dict)
    category: str = OperationCategory.READ
    requires_confirmation: bool = False

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Operation name is required")
        if self.category not in OperationCategory.ALL:
            raise ValueError(f"Unknown operation category: {self.category}")

    def to_openai_tool(self) -> dict[str, Any]:
        """Convert to OpenAI tool definition format."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description or self.label,
                "parameters": dict(self.parameters) if self.parameters else {
                    "type": "object",
                    "properties": {},
                },
            },
        }

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary."""
        return {
            "name": self.name,
            "label": self.label,
            "description": self.description,
            "parameters": dict(self.parameters),
            "category": self.category,
            "requires_confirmation": self.requires_confirmation,
        }


# -----------------------------------------------------------------------------
# Operation Registry
# -----------------------------------------------------------------------------


class OperationRegistry:
    """Name -> descriptor catalog, read-only once frozen.

    Example:
        registry = OperationRegistry()
        registry.register(OperationDescriptor(name="query_assets", label="Query assets"))
        registry.freeze()

        descriptor = registry.lookup("query_assets")
    """

    def __init__(self, descriptors: Iterable[OperationDescriptor] | None = None) -> None:
        self._descriptors: dict[str, OperationDescriptor] = {}
        self._frozen = False
        for descriptor in descriptors or ():
            self.register(descriptor)

    def register(self, descriptor: OperationDescriptor) -> OperationDescriptor:
        """Register a descriptor.

        Raises:
            RegistryFrozenError: If the registry has been frozen.
            DuplicateOperationError: If the name is already registered.
        """
        if self._frozen:
            raise RegistryFrozenError(details={"name": descriptor.name})
        if descriptor.name in self._descriptors:
            raise DuplicateOperationError(
                message=f"Operation '{descriptor.name}' is already registered",
                details={"name": descriptor.name},
            )
        self._descriptors[descriptor.name] = descriptor
        LOGGER.debug("Registered operation: %s", descriptor.name)
        return descriptor

    def freeze(self) -> OperationRegistry:
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def lookup(self, name: str) -> OperationDescriptor | None:
        """Return the descriptor for ``name`` or ``None``."""
        return self._descriptors.get(name)

    def get_required(self, name: str) -> OperationDescriptor:
        descriptor = self._descriptors.get(name)
        if descriptor is None:
            raise UnknownOperationError.for_name(name)
        return descriptor

    def names(self) -> list[str]:
        return list(self._descriptors)

    def requires_confirmation(self, name: str) -> bool:
        descriptor = self._descriptors.get(name)
        return bool(descriptor and descriptor.requires_confirmation)

    def to_openai_tools(self) -> list[dict[str, Any]]:
        """Tool declarations for every registered operation."""
        return [descriptor.to_openai_tool() for descriptor in self._descriptors.values()]

    def __contains__(self, name: object) -> bool:
        return name in self._descriptors

    def __iter__(self) -> Iterator[OperationDescriptor]:
        return iter(self._descriptors.values())

    def __len__(self) -> int:
        return len(self._descriptors)


_DEFAULT_REGISTRY: OperationRegistry | None = None
_DEFAULT_LOCK = threading.Lock()


def default_registry() -> OperationRegistry:
    """Return the process-wide registry built from the built-in catalog."""

    global _DEFAULT_REGISTRY
    if _DEFAULT_REGISTRY is None:
        with _DEFAULT_LOCK:
            if _DEFAULT_REGISTRY is None:
                from .catalog import build_catalog

                _DEFAULT_REGISTRY = OperationRegistry(build_catalog()).freeze()
    return _DEFAULT_REGISTRY
