"""Port types and the compile-time compatibility rule."""

from dataclasses import dataclass
from enum import StrEnum
from typing import Any


class PortType(StrEnum):
    TEXT = "text"
    JSON = "json"
    NUMBER = "number"
    BOOLEAN = "boolean"
    ANY = "any"


def is_port_compatible(source: PortType, target: PortType) -> bool:
    """``any`` matches every type in both directions; other types must be equal."""
    return source == PortType.ANY or target == PortType.ANY or source == target


@dataclass(frozen=True)
class PortDefinition:
    """A named, typed input or output slot on a node definition."""

    id: str
    type: PortType
    required: bool = False
    default: Any = None
    description: str = ""


class CapabilityClass(StrEnum):
    """Scheduling class; the adaptive scheduler limits concurrency per class."""

    LOCAL_CPU = "local_cpu"
    LOCAL_IO = "local_io"
    API = "api"


class CachePolicy(StrEnum):
    NEVER = "never"
    BY_INPUTS = "by_inputs"
