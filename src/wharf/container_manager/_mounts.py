"""Container naming, port validation and ``create`` argument construction."""

from __future__ import annotations

from pathlib import Path

from wharf.config import get_settings
from wharf.types import ContainerConfig

# Read-only staging paths for host state. Seeding copies from these into the
# container's writable home, so runtime writes never reach the host.
HOST_CLAUDE_MOUNT = "/wharf-host-claude"
HOST_CODEX_MOUNT = "/wharf-host-codex"
HOST_GITCONFIG_MOUNT = "/wharf-host-gitconfig"

CLAUDE_HOME = "/root/.claude"
CODEX_HOME = "/root/.codex"

_SHORT_ID_LEN = 8


def container_name_for(session_id: str) -> str:
    return f"{get_settings().container.name_prefix}-{session_id[:_SHORT_ID_LEN]}"


def volume_name_for(session_id: str) -> str:
    return f"{get_settings().container.name_prefix}-ws-{session_id[:_SHORT_ID_LEN]}"


def validate_ports(ports: tuple[int, ...]) -> None:
    """Raise ValueError unless every port is an integer in [1, 65535]."""
    for port in ports:
        if isinstance(port, bool) or not isinstance(port, int) or not 1 <= port <= 65535:
            raise ValueError(f"Invalid port number: {port!r} (must be 1-65535)")


def build_create_args(
    name: str,
    volume_name: str,
    config: ContainerConfig,
    home: Path | None,
) -> list[str]:
    """Build CLI args for ``<runtime> create`` (without the executable)."""
    workspace = get_settings().container.workspace_path
    args = [
        "create",
        "--name",
        name,
        # host.docker.internal is automatic on Docker Desktop but needs an
        # explicit mapping on Linux
        "--add-host=host.docker.internal:host-gateway",
    ]

    # Writable tmpfs for agent runtime state; host state seeds it read-only
    if home is not None and (home / ".claude").is_dir():
        args.extend(["-v", f"{home / '.claude'}:{HOST_CLAUDE_MOUNT}:ro"])
    args.extend(["--tmpfs", CLAUDE_HOME])

    if home is not None and (home / ".codex").is_dir():
        args.extend(["-v", f"{home / '.codex'}:{HOST_CODEX_MOUNT}:ro", "--tmpfs", CODEX_HOME])

    # Isolated workspace, populated later by copy_workspace_to_container
    args.extend(["-v", f"{volume_name}:{workspace}", "-w", workspace])

    # Staged, not mounted at /root/.gitconfig, so the global config stays writable
    if home is not None and (home / ".gitconfig").is_file():
        args.extend(["-v", f"{home / '.gitconfig'}:{HOST_GITCONFIG_MOUNT}:ro"])

    for port in config.ports:
        args.extend(["-p", f"0:{port}"])

    for vol in config.volumes:
        args.extend(["-v", vol])

    for key, value in config.env.items():
        args.extend(["-e", f"{key}={value}"])

    # Idle foreground process keeps the container up between exec calls
    args.extend([config.image, "sleep", "infinity"])
    return args
