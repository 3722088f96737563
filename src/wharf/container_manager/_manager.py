"""ContainerManager — lifecycle of session containers and their volumes.

Owns the registry ``session_id → ContainerInfo``. Registry mutations happen
only on the event loop; callers serialize lifecycle operations per session
(no ``remove`` while ``create`` is in flight).

State machine per entry::

    creating ──ok──▶ running ──stop──▶ stopped ──start──▶ running
        │                │                 │
        └──fail──▶ removed ◀────remove─────┘
"""

from __future__ import annotations

import re
import time
from collections.abc import Sequence
from pathlib import Path

from wharf.config import get_settings
from wharf.container_manager import _images, _persistence, _seed, _workspace
from wharf.container_manager._credentials import host_home
from wharf.container_manager._exec import (
    OnLine,
    best_effort,
    exec_in_container,
    exec_in_container_streaming,
    run_runtime,
    validate_container_id,
)
from wharf.container_manager._mounts import (
    build_create_args,
    container_name_for,
    validate_ports,
    volume_name_for,
)
from wharf.errors import (
    CommandTimeoutError,
    CreationFailedError,
    ExecutionError,
    PersistenceWarning,
)
from wharf.logger import logger
from wharf.types import (
    BuildResult,
    ContainerConfig,
    ContainerInfo,
    Liveness,
    PortMapping,
    StreamResult,
)

# `docker port` prints "0.0.0.0:49152" and/or "[::]:49152"
_HOST_PORT_RE = re.compile(r":(\d+)$", re.MULTILINE)
_SLOW_INSPECT_MS = 500


class ContainerManager:
    """Creates, seeds, tracks and tears down session containers."""

    def __init__(self) -> None:
        self._containers: dict[str, ContainerInfo] = {}

    # ------------------------------------------------------------------
    # Runtime probes: never raise
    # ------------------------------------------------------------------

    async def check_runtime(self) -> bool:
        """Whether the runtime daemon is reachable."""
        try:
            await run_runtime(
                "info",
                "--format",
                "{{.ServerVersion}}",
                timeout=get_settings().container.quick_timeout,
            )
            return True
        except Exception:
            return False

    async def runtime_version(self) -> str | None:
        try:
            return await run_runtime(
                "version",
                "--format",
                "{{.Server.Version}}",
                timeout=get_settings().container.quick_timeout,
            )
        except Exception:
            return None

    async def list_images(self) -> list[str]:
        """Local images as sorted ``repo:tag`` strings, untagged images excluded."""
        try:
            raw = await run_runtime(
                "images",
                "--format",
                "{{.Repository}}:{{.Tag}}",
                timeout=get_settings().container.quick_timeout,
            )
        except Exception:
            return []
        return sorted(line for line in raw.splitlines() if line and not line.startswith("<none>"))

    async def image_exists(self, image: str) -> bool:
        try:
            await run_runtime(
                "image", "inspect", image, timeout=get_settings().container.quick_timeout
            )
            return True
        except Exception:
            return False

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_container(
        self,
        session_id: str,
        host_cwd: str,
        config: ContainerConfig,
    ) -> ContainerInfo:
        """Create, start, seed and register a container for *session_id*.

        All-or-nothing: on any failure the container and volume that this call
        created are removed (best-effort), nothing is registered, and
        CreationFailedError is raised with the original error chained. A
        pre-existing volume or a container owned by another session is never
        touched.
        """
        validate_ports(config.ports)

        s = get_settings()
        name = container_name_for(session_id)
        volume_name = volume_name_for(session_id)
        # Names keep only a session-id prefix, so distinct sessions can collide
        owner = next((sid for sid, i in self._containers.items() if i.name == name), None)
        if owner is not None:
            logger.error(
                "Container name already tracked", session=session_id, owner=owner, container=name
            )
            raise CreationFailedError(
                f"Failed to create container: name {name} is already used by session {owner}"
            )

        info = ContainerInfo(
            container_id="",
            name=name,
            image=config.image,
            host_cwd=host_cwd,
            container_cwd=s.container.workspace_path,
            state="creating",
            volume_name=volume_name,
        )

        # Only resources this call created are torn down on failure
        created_container: str | None = None
        created_volume: str | None = None
        try:
            if not await self._volume_exists(volume_name):
                await run_runtime(
                    "volume", "create", volume_name, timeout=s.container.quick_timeout
                )
                created_volume = volume_name
            args = build_create_args(name, volume_name, config, host_home())
            raw_id = await run_runtime(*args, timeout=s.container.boot_timeout)
            # create succeeded, so the name is ours even if the id is unusable
            created_container = name
            info.container_id = validate_container_id(raw_id.splitlines()[-1].strip())
            created_container = info.container_id

            await run_runtime("start", info.container_id, timeout=s.container.boot_timeout)
            info.state = "running"

            await _seed.seed_container(info.container_id)
            info.port_mappings = await self.resolve_port_mappings(info.container_id, config.ports)
        except Exception as exc:
            await self._discard_partial(created_container, created_volume)
            info.state = "removed"
            logger.error(
                "Container creation failed",
                session=session_id,
                container=name,
                image=config.image,
                err=str(exc),
            )
            raise CreationFailedError(f"Failed to create container: {exc}") from exc

        self._containers[session_id] = info
        logger.info(
            "Created container",
            container=name,
            id=info.container_id[:12],
            session=session_id,
            ports=", ".join(f"{m.container_port}->{m.host_port}" for m in info.port_mappings),
        )
        return info

    async def _volume_exists(self, volume_name: str) -> bool:
        try:
            await run_runtime(
                "volume", "inspect", volume_name, timeout=get_settings().container.quick_timeout
            )
        except CommandTimeoutError:
            raise
        except ExecutionError:
            return False
        return True

    async def _discard_partial(self, container: str | None, volume_name: str | None) -> None:
        quick = get_settings().container.quick_timeout
        if container is not None:
            with best_effort("Partial container cleanup", container=container):
                await run_runtime("rm", "-f", container)
        if volume_name is not None:
            with best_effort("Partial volume cleanup", volume=volume_name):
                await run_runtime("volume", "rm", volume_name, timeout=quick)

    async def resolve_port_mappings(
        self,
        container_id: str,
        ports: Sequence[int],
    ) -> list[PortMapping]:
        """Ask the runtime for each published port.

        Unresolvable ports are logged and omitted, so the result may be
        shorter than *ports*.
        """
        validate_container_id(container_id)
        mappings: list[PortMapping] = []
        for container_port in ports:
            try:
                raw = await run_runtime("port", container_id, str(container_port))
            except Exception as exc:
                logger.warning(
                    "Could not resolve port",
                    port=container_port,
                    container=container_id[:12],
                    err=str(exc),
                )
                continue
            match = _HOST_PORT_RE.search(raw)
            if match:
                mappings.append(PortMapping(container_port, int(match.group(1))))
            else:
                logger.warning(
                    "Unparseable port output",
                    port=container_port,
                    container=container_id[:12],
                    output=raw[:200],
                )
        return mappings

    # ------------------------------------------------------------------
    # In-container execution and workspace
    # ------------------------------------------------------------------

    async def exec_in_container(
        self,
        container_id: str,
        cmd: Sequence[str],
        timeout: float | None = None,
    ) -> str:
        return await exec_in_container(container_id, cmd, timeout)

    async def exec_in_container_streaming(
        self,
        container_id: str,
        cmd: Sequence[str],
        *,
        timeout: float | None = None,
        on_output: OnLine | None = None,
    ) -> StreamResult:
        return await exec_in_container_streaming(
            container_id, cmd, timeout=timeout, on_output=on_output
        )

    async def copy_workspace_to_container(self, container_id: str, host_cwd: str) -> None:
        await _workspace.copy_workspace_to_container(container_id, host_cwd)

    async def reseed_git_auth(self, container_id: str) -> None:
        """Re-run git seeding once the workspace has a ``.git`` directory."""
        await _seed.seed_git_auth(container_id)

    async def has_binary(self, container_id: str, binary: str) -> bool:
        """Whether *binary* is on the login-shell PATH (nvm, bun, ... included)."""
        validate_container_id(container_id)
        try:
            await exec_in_container(
                container_id,
                ["bash", "-lc", 'which "$1"', "which", binary],
                timeout=get_settings().container.quick_timeout,
            )
            return True
        except Exception:
            return False

    # ------------------------------------------------------------------
    # Start / stop / inspect
    # ------------------------------------------------------------------

    async def start_container(self, container_id: str) -> None:
        """Start a stopped container and re-seed its (wiped) tmpfs homes."""
        validate_container_id(container_id)
        await run_runtime("start", container_id, timeout=get_settings().container.boot_timeout)
        await _seed.seed_container(container_id)
        if (info := self._find(container_id)) is not None:
            info.state = "running"
        logger.info("Started container", container=container_id[:12])

    async def stop_container(self, container_id: str) -> None:
        validate_container_id(container_id)
        await run_runtime("stop", container_id)
        if (info := self._find(container_id)) is not None:
            info.state = "stopped"
        logger.info("Stopped container", container=container_id[:12])

    async def is_container_alive(self, container_id: str) -> Liveness:
        """Return ``running``, ``stopped`` or ``missing``; inspection errors → missing."""
        validate_container_id(container_id)
        start = time.monotonic()
        try:
            state = await run_runtime(
                "inspect",
                "--format",
                "{{.State.Running}}",
                container_id,
                timeout=get_settings().container.quick_timeout,
            )
        except Exception:
            return "missing"
        finally:
            elapsed_ms = (time.monotonic() - start) * 1000
            if elapsed_ms > _SLOW_INSPECT_MS:
                logger.warning(
                    "Slow container inspect", container=container_id[:12], elapsed_ms=round(elapsed_ms)
                )
        return "running" if state == "true" else "stopped"

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def get_container(self, session_id: str) -> ContainerInfo | None:
        return self._containers.get(session_id)

    def list_containers(self) -> list[ContainerInfo]:
        return list(self._containers.values())

    def _find(self, container_id: str) -> ContainerInfo | None:
        for info in self._containers.values():
            if info.container_id == container_id:
                return info
        return None

    def retrack(self, container_id: str, new_session_id: str) -> None:
        """Re-key an entry, e.g. when a provisional session id becomes durable."""
        for old_key, info in list(self._containers.items()):
            if info.container_id == container_id:
                del self._containers[old_key]
                self._containers[new_session_id] = info
                logger.debug("Retracked container", old=old_key, new=new_session_id)
                return

    async def remove_container(self, session_id: str) -> None:
        """Remove the container and its volume, then always deregister.

        Both removals are independently best-effort: the runtime resource may
        leak, but the registry never claims a removed session.
        """
        info = self._containers.get(session_id)
        if info is None:
            return

        with best_effort("Container removal", container=info.name):
            await run_runtime("rm", "-f", validate_container_id(info.container_id))
            logger.info("Removed container", container=info.name, id=info.container_id[:12])

        if info.volume_name:
            with best_effort("Volume removal", volume=info.volume_name):
                await run_runtime(
                    "volume",
                    "rm",
                    info.volume_name,
                    timeout=get_settings().container.quick_timeout,
                )
                logger.info("Removed volume", volume=info.volume_name)

        info.state = "removed"
        self._containers.pop(session_id, None)

    async def cleanup_all(self) -> None:
        """Remove every tracked container (shutdown)."""
        for session_id in list(self._containers):
            await self.remove_container(session_id)

    async def restore_container(self, session_id: str, info: ContainerInfo) -> bool:
        """Re-admit a persisted entry if the runtime still has its container."""
        try:
            validate_container_id(info.container_id)
            state = await run_runtime(
                "inspect",
                "--format",
                "{{.State.Running}}",
                info.container_id,
                timeout=get_settings().container.quick_timeout,
            )
        except Exception:
            logger.warning(
                "Container no longer exists, skipping restore",
                container=info.name,
                id=info.container_id[:12],
            )
            return False

        info.state = "running" if state == "true" else "stopped"
        self._containers[session_id] = info
        logger.info(
            "Restored container", container=info.name, id=info.container_id[:12], state=info.state
        )
        return True

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def persist_state(self, path: Path | None = None) -> None:
        _persistence.write_snapshot(self._containers, path or get_settings().state_path)

    async def restore_state(self, path: Path | None = None) -> int:
        """Restore tracking from disk. Returns how many containers came back."""
        path = path or get_settings().state_path
        try:
            entries = _persistence.read_snapshot(path)
        except PersistenceWarning as exc:
            logger.warning("Failed to restore container state", err=str(exc))
            return 0

        restored = 0
        for session_id, info in entries:
            if await self.restore_container(session_id, info):
                restored += 1
        if restored:
            logger.info("Restored containers from disk", count=restored)
        return restored

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    async def build_image(self, dockerfile_path: str, tag: str | None = None) -> str:
        return await _images.build_image(dockerfile_path, tag)

    async def build_image_streaming(
        self,
        dockerfile_content: str,
        tag: str,
        on_progress: OnLine | None = None,
    ) -> BuildResult:
        return await _images.build_image_streaming(dockerfile_content, tag, on_progress)

    async def pull_image(
        self,
        remote_image: str,
        local_tag: str,
        on_progress: OnLine | None = None,
    ) -> bool:
        return await _images.pull_image(remote_image, local_tag, on_progress)

    @staticmethod
    def registry_image_for(local_tag: str) -> str | None:
        return _images.registry_image_for(local_tag)
