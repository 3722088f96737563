"""Data models for wharf."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

ContainerState = Literal["creating", "running", "stopped", "removed"]
Liveness = Literal["running", "stopped", "missing"]

_STATES: frozenset[str] = frozenset({"creating", "running", "stopped", "removed"})


@dataclass(frozen=True)
class ContainerConfig:
    """Per-session container request."""

    image: str
    ports: tuple[int, ...] = ()
    volumes: tuple[str, ...] = ()  # "host:container[:opts]"
    env: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        # Accept lists from callers but keep the instance immutable
        object.__setattr__(self, "ports", tuple(self.ports))
        object.__setattr__(self, "volumes", tuple(self.volumes))
        object.__setattr__(self, "env", dict(self.env))


@dataclass
class PortMapping:
    container_port: int
    host_port: int

    def to_dict(self) -> dict[str, int]:
        return {"containerPort": self.container_port, "hostPort": self.host_port}

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> PortMapping:
        return cls(container_port=int(raw["containerPort"]), host_port=int(raw["hostPort"]))


@dataclass
class ContainerInfo:
    """A tracked container. Serialized with camelCase keys."""

    container_id: str
    name: str
    image: str
    host_cwd: str
    container_cwd: str
    state: ContainerState = "creating"
    port_mappings: list[PortMapping] = field(default_factory=list)
    volume_name: str | None = None  # absent for legacy bind-mount containers

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "containerId": self.container_id,
            "name": self.name,
            "image": self.image,
            "portMappings": [m.to_dict() for m in self.port_mappings],
            "hostCwd": self.host_cwd,
            "containerCwd": self.container_cwd,
            "state": self.state,
        }
        if self.volume_name is not None:
            d["volumeName"] = self.volume_name
        return d

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> ContainerInfo:
        """Parse a persisted record. Raises KeyError/TypeError/ValueError on bad input."""
        state = raw["state"]
        if state not in _STATES:
            raise ValueError(f"Unknown container state: {state!r}")
        volume = raw.get("volumeName")
        return cls(
            container_id=str(raw["containerId"]),
            name=str(raw["name"]),
            image=str(raw["image"]),
            host_cwd=str(raw["hostCwd"]),
            container_cwd=str(raw["containerCwd"]),
            state=state,
            port_mappings=[PortMapping.from_dict(m) for m in raw.get("portMappings", [])],
            volume_name=str(volume) if volume is not None else None,
        )


@dataclass
class StreamResult:
    """Outcome of a streamed command: exit code plus the combined transcript."""

    exit_code: int
    lines: list[str] = field(default_factory=list)
    stderr: str = ""

    @property
    def output(self) -> str:
        return "\n".join(self.lines)


@dataclass
class BuildResult:
    success: bool
    log: str
