"""Built-in Studio node definitions."""

from studio.graph.node import NodeDefinition
from studio.graph.registry import NodeRegistry
from studio.nodes.cli_command import CLI_COMMAND_NODE
from studio.nodes.dataset import DATASET_NODE
from studio.nodes.generation import (
    IMAGE_GENERATION_NODE,
    TEXT_GENERATION_NODE,
    TRANSCRIPTION_NODE,
)
from studio.nodes.http_request import HTTP_REQUEST_NODE
from studio.nodes.media import AUDIO_EXTRACT_NODE, MEDIA_INGEST_NODE
from studio.nodes.text import INPUT_NODE, PROMPT_TEMPLATE_NODE

BUILTIN_NODES: tuple[NodeDefinition, ...] = (
    INPUT_NODE,
    PROMPT_TEMPLATE_NODE,
    TEXT_GENERATION_NODE,
    IMAGE_GENERATION_NODE,
    TRANSCRIPTION_NODE,
    MEDIA_INGEST_NODE,
    AUDIO_EXTRACT_NODE,
    HTTP_REQUEST_NODE,
    CLI_COMMAND_NODE,
    DATASET_NODE,
)


def register_builtin_nodes(registry: NodeRegistry) -> NodeRegistry:
    for definition in BUILTIN_NODES:
        registry.register(definition)
    return registry


__all__ = [
    "BUILTIN_NODES",
    "register_builtin_nodes",
    "INPUT_NODE",
    "PROMPT_TEMPLATE_NODE",
    "TEXT_GENERATION_NODE",
    "IMAGE_GENERATION_NODE",
    "TRANSCRIPTION_NODE",
    "MEDIA_INGEST_NODE",
    "AUDIO_EXTRACT_NODE",
    "HTTP_REQUEST_NODE",
    "CLI_COMMAND_NODE",
    "DATASET_NODE",
]
