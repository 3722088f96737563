"""wharf — sandbox containers for coding agents."""

from wharf.container_manager import ContainerManager
from wharf.lifecycle import managed_containers
from wharf.types import BuildResult, ContainerConfig, ContainerInfo, PortMapping, StreamResult

__all__ = [
    "BuildResult",
    "ContainerConfig",
    "ContainerInfo",
    "ContainerManager",
    "PortMapping",
    "StreamResult",
    "managed_containers",
]
