"""Node Registry - lookup from (kind, version) to a node definition."""

import logging

from studio.errors import GraphValidationError
from studio.graph.node import NodeDefinition

logger = logging.getLogger(__name__)


class NodeRegistry:
    """
    Holds the node definitions available to the compiler and runtime.

    Populated once at startup (see ``studio.nodes.register_builtin_nodes``);
    there is no removal.
    """

    def __init__(self) -> None:
        self._definitions: dict[tuple[str, str], NodeDefinition] = {}

    def register(self, definition: NodeDefinition) -> None:
        """
        Add a definition.

        Raises:
            ValueError: if (kind, version) is already registered
        """
        if definition.key in self._definitions:
            raise ValueError(
                f"Node definition already registered: {definition.kind}@{definition.version}"
            )
        self._definitions[definition.key] = definition
        logger.debug(f"Registered node {definition.kind}@{definition.version}")

    def get(self, kind: str, version: str) -> NodeDefinition | None:
        return self._definitions.get((kind, version))

    def require(self, kind: str, version: str) -> NodeDefinition:
        definition = self.get(kind, version)
        if definition is None:
            raise GraphValidationError(f"Unknown node kind {kind}@{version}")
        return definition

    def list(self) -> list[NodeDefinition]:
        return list(self._definitions.values())

    def __contains__(self, key: tuple[str, str]) -> bool:
        return key in self._definitions

    def __len__(self) -> int:
        return len(self._definitions)
