"""Container runtime detection — Docker or Podman.

Both speak the same CLI dialect for everything wharf needs (create, exec,
port, inspect, volume, build, pull, tag), so a runtime is just a name and the
executable to invoke.
"""

from __future__ import annotations

import json
import shutil
import subprocess
from dataclasses import dataclass

from wharf.config import get_settings
from wharf.errors import RuntimeUnavailableError
from wharf.logger import logger

_KNOWN_CLIS = {"docker": "docker", "podman": "podman"}


@dataclass(frozen=True)
class ContainerRuntime:
    """Detected container runtime."""

    name: str
    cli: str

    def is_available(self) -> bool:
        return shutil.which(self.cli) is not None

    def ensure_running(self) -> None:
        """Verify the runtime daemon answers, raise RuntimeUnavailableError if not."""
        try:
            subprocess.run(
                [self.cli, "info"],
                capture_output=True,
                check=True,
                timeout=get_settings().container.quick_timeout,
            )
            logger.debug("Container runtime is running", runtime=self.name)
        except FileNotFoundError as exc:
            raise RuntimeUnavailableError(f"{self.cli} CLI not found on PATH") from exc
        except (subprocess.CalledProcessError, subprocess.TimeoutExpired) as exc:
            raise RuntimeUnavailableError(
                f"{self.name} is required but not running. "
                f"Start with: sudo systemctl start {self.name}"
            ) from exc

    def list_running_containers(self, prefix: str = "wharf-") -> list[str]:
        """Return names of running containers matching *prefix*."""
        try:
            result = subprocess.run(
                [self.cli, "ps", "--format", "{{json .}}"],
                capture_output=True,
                text=True,
                timeout=get_settings().container.quick_timeout,
            )
        except Exception as exc:
            logger.warning("Failed to list containers", err=str(exc), runtime=self.name)
            return []

        names: list[str] = []
        for line in result.stdout.strip().splitlines():
            if not line:
                continue
            try:
                c = json.loads(line)
            except json.JSONDecodeError:
                continue
            name = c.get("Names", "")
            if isinstance(name, list):  # podman emits a list
                name = name[0] if name else ""
            if name.startswith(prefix):
                names.append(name)
        return names


def detect_runtime() -> ContainerRuntime:
    """Detect the container runtime to use.

    Priority: settings.container.runtime override → docker on PATH →
    podman on PATH → docker.
    """
    override = (get_settings().container.runtime or "").lower().strip()
    if override:
        cli = _KNOWN_CLIS.get(override)
        if cli is not None:
            return ContainerRuntime(name=override, cli=cli)
        logger.warning("Unknown runtime override; falling back to auto-detection", runtime=override)

    for name, cli in _KNOWN_CLIS.items():
        if shutil.which(cli):
            return ContainerRuntime(name=name, cli=cli)

    return ContainerRuntime(name="docker", cli="docker")


_runtime: ContainerRuntime | None = None


def get_runtime() -> ContainerRuntime:
    """Lazy singleton — caches the result of detect_runtime()."""
    global _runtime  # noqa: PLW0603
    if _runtime is None:
        _runtime = detect_runtime()
        logger.info("Container runtime detected", name=_runtime.name, cli=_runtime.cli)
    return _runtime


def reset_runtime() -> None:
    """Forget the cached runtime (for tests)."""
    global _runtime  # noqa: PLW0603
    _runtime = None
