"""Workspace population — stream the host tree into a container volume.

A tar stream is piped straight into ``<runtime> exec -i ... tar -xf -`` so the
archive is never staged in memory or on disk; this is also much faster than
``docker cp`` on Docker Desktop. Hidden files are included (``-C DIR .``).
"""

from __future__ import annotations

from wharf.config import get_settings
from wharf.container_manager._exec import shell_quote, stream_process, validate_container_id
from wharf.errors import CommandTimeoutError, CopyFailedError, CopyTimeoutError
from wharf.logger import logger
from wharf.runtime import get_runtime


def copy_command(container_id: str, host_cwd: str) -> str:
    workspace = get_settings().container.workspace_path
    return "; ".join(
        [
            "set -o pipefail",
            # COPYFILE_DISABLE keeps macOS tar from adding ._* AppleDouble files
            f"COPYFILE_DISABLE=1 tar -C {shell_quote(host_cwd)} -cf - . | "
            f"{shell_quote(get_runtime().cli)} exec -i {shell_quote(container_id)} "
            f"tar -xf - -C {shell_quote(workspace)}",
        ]
    )


async def copy_workspace_to_container(
    container_id: str,
    host_cwd: str,
    *,
    timeout: float | None = None,
) -> None:
    """Copy *host_cwd* into the container's workspace.

    Raises CopyTimeoutError (after killing the pipeline) or CopyFailedError.
    """
    validate_container_id(container_id)
    if timeout is None:
        timeout = get_settings().container.copy_timeout

    logger.info("Copying workspace into container", container=container_id, host_cwd=host_cwd)
    try:
        result = await stream_process(
            ["bash", "-lc", copy_command(container_id, host_cwd)],
            timeout=timeout,
        )
    except CommandTimeoutError as exc:
        raise CopyTimeoutError(f"workspace copy timed out after {int(timeout)}s") from exc

    if result.exit_code != 0:
        raise CopyFailedError(
            f"workspace copy failed (exit {result.exit_code}): {result.stderr or 'unknown error'}",
            exit_code=result.exit_code,
            stderr=result.stderr,
        )
    logger.info("Workspace copied", container=container_id)
