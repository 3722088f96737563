"""Command execution — bounded CLI calls, streamed processes, identifier checks.

Two modes:
  - Bounded: ``run_runtime()`` runs a runtime CLI command to completion in a
    worker thread (``asyncio.to_thread``) and returns trimmed stdout, raising
    ``ExecutionError`` on non-zero exit.
  - Streamed: ``stream_process()`` spawns a process, drains stdout and stderr
    with two concurrent readers and forwards every line to a callback as it
    arrives.

Both kill the child on timeout and raise ``CommandTimeoutError``.
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import re
import shlex
import signal
import subprocess
from collections.abc import Callable, Iterator, Sequence

from wharf.config import get_settings
from wharf.errors import (
    CommandTimeoutError,
    ExecutionError,
    InvalidIdentifierError,
    RuntimeUnavailableError,
)
from wharf.logger import logger
from wharf.runtime import get_runtime
from wharf.types import StreamResult

OnLine = Callable[[str], None]

_CONTAINER_ID_RE = re.compile(r"[A-Za-z0-9][A-Za-z0-9_.-]*")
_READ_CHUNK = 8192
_KILL_GRACE = 5.0


# ---------------------------------------------------------------------------
# Identifiers and quoting
# ---------------------------------------------------------------------------


def validate_container_id(value: str) -> str:
    """Return *value* unchanged if it is a legal container id or name."""
    if not isinstance(value, str) or not _CONTAINER_ID_RE.fullmatch(value):
        raise InvalidIdentifierError(f"Invalid container ID or name: {str(value)[:40]!r}")
    return value


def shell_quote(value: str) -> str:
    """Quote a value for a ``bash -c`` string (safe tokens pass through unquoted)."""
    return shlex.quote(value)


@contextlib.contextmanager
def best_effort(label: str, **context: object) -> Iterator[None]:
    """Run an auxiliary step whose failure must not abort the caller.

    Failures are logged at warning level and discarded. Use plain calls for
    steps that must succeed.
    """
    try:
        yield
    except Exception as exc:
        logger.warning(f"{label} failed (ignored)", err=str(exc), **context)


# ---------------------------------------------------------------------------
# Bounded execution
# ---------------------------------------------------------------------------


def _run_sync(argv: Sequence[str], *, timeout: float, input: str | None = None) -> str:
    """Run *argv* to completion (blocking — internal only)."""
    try:
        result = subprocess.run(
            list(argv),
            capture_output=True,
            text=True,
            timeout=timeout,
            input=input,
        )
    except FileNotFoundError as exc:
        raise RuntimeUnavailableError(f"{argv[0]} not found on PATH") from exc
    except subprocess.TimeoutExpired as exc:
        # subprocess.run has already killed the child
        raise CommandTimeoutError(
            f"{argv[0]} {argv[1] if len(argv) > 1 else ''} timed out after {timeout:g}s".strip(),
            argv=argv,
            timeout=timeout,
        ) from exc

    if result.returncode != 0:
        stderr = (result.stderr or "").strip()
        raise ExecutionError(
            f"{' '.join(argv[:2])} exited with code {result.returncode}: {stderr[-500:]}",
            argv=argv,
            exit_code=result.returncode,
            stderr=stderr,
        )
    return (result.stdout or "").strip()


async def run_runtime(*args: str, timeout: float | None = None, input: str | None = None) -> str:
    """Run a runtime CLI command without blocking the event loop.

    Defaults to the standard timeout tier.
    """
    if timeout is None:
        timeout = get_settings().container.standard_timeout
    argv = [get_runtime().cli, *args]
    return await asyncio.to_thread(_run_sync, argv, timeout=timeout, input=input)


async def exec_in_container(
    container_id: str,
    cmd: Sequence[str],
    timeout: float | None = None,
) -> str:
    """Run *cmd* inside a container and return its stdout. Raises on non-zero exit."""
    validate_container_id(container_id)
    return await run_runtime("exec", container_id, *cmd, timeout=timeout)


# ---------------------------------------------------------------------------
# Streamed execution
# ---------------------------------------------------------------------------


async def _pump(
    stream: asyncio.StreamReader,
    transcript: list[str],
    on_line: OnLine | None,
    captured: list[str] | None = None,
) -> None:
    """Split a byte stream into lines and forward each non-blank one."""

    def _emit(raw: bytes) -> None:
        line = raw.decode(errors="replace").rstrip("\r")
        if captured is not None:
            captured.append(line)
        if not line.strip():
            return
        transcript.append(line)
        if on_line is not None:
            on_line(line)

    pending = b""
    while True:
        chunk = await stream.read(_READ_CHUNK)
        if not chunk:
            break
        pending += chunk
        *complete, pending = pending.split(b"\n")
        for raw in complete:
            _emit(raw)
    if pending:
        _emit(pending)


async def _kill(proc: asyncio.subprocess.Process) -> None:
    """Force-kill a child and its process group.

    Pipelines (``tar | docker exec -i ...``) leave grandchildren that a plain
    ``proc.kill()`` on the shell would orphan. Termination failures never mask
    the caller's error.
    """
    with contextlib.suppress(ProcessLookupError, PermissionError, OSError):
        os.killpg(proc.pid, signal.SIGKILL)
    with contextlib.suppress(ProcessLookupError, OSError):
        proc.kill()
    with contextlib.suppress(Exception):
        await asyncio.wait_for(proc.wait(), timeout=_KILL_GRACE)


async def stream_process(
    argv: Sequence[str],
    *,
    timeout: float,
    on_line: OnLine | None = None,
) -> StreamResult:
    """Spawn *argv*, stream its output line by line, and wait for exit.

    stdout and stderr are read by two concurrent readers and both are joined
    before the exit code is collected; reading them one after the other can
    deadlock once the unread pipe fills.
    """
    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,  # own process group so _kill reaches the whole pipeline
        )
    except FileNotFoundError as exc:
        raise RuntimeUnavailableError(f"{argv[0]} not found on PATH") from exc

    assert proc.stdout is not None
    assert proc.stderr is not None

    lines: list[str] = []
    stderr_lines: list[str] = []

    async def _drain_and_wait() -> int:
        await asyncio.gather(
            _pump(proc.stdout, lines, on_line),
            _pump(proc.stderr, lines, on_line, stderr_lines),
        )
        return await proc.wait()

    try:
        exit_code = await asyncio.wait_for(_drain_and_wait(), timeout=timeout)
    except TimeoutError:
        await _kill(proc)
        logger.warning("Command timed out, killed", cmd=" ".join(argv[:3]), timeout=timeout)
        raise CommandTimeoutError(
            f"Command timed out after {timeout:g}s", argv=argv, timeout=timeout
        ) from None
    except BaseException:
        await _kill(proc)
        raise

    return StreamResult(exit_code=exit_code, lines=lines, stderr="\n".join(stderr_lines).strip())


async def exec_in_container_streaming(
    container_id: str,
    cmd: Sequence[str],
    *,
    timeout: float | None = None,
    on_output: OnLine | None = None,
) -> StreamResult:
    """Run *cmd* inside a container, streaming combined stdout+stderr.

    Returns the exit code and transcript instead of raising on non-zero exit.
    """
    validate_container_id(container_id)
    if timeout is None:
        timeout = get_settings().container.exec_timeout
    argv = [get_runtime().cli, "exec", container_id, *cmd]
    return await stream_process(argv, timeout=timeout, on_line=on_output)
