"""Shared test fixtures for wharf."""

from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Sequence
from pathlib import Path

import pytest

from wharf.errors import ExecutionError
from wharf.logger import LOGGER_NAME
from wharf.runtime import ContainerRuntime

# ---------------------------------------------------------------------------
# Shared helpers (plain functions and classes, importable by test files)
# ---------------------------------------------------------------------------

# Cached property names that must be set via __dict__ (not model_construct).
_CACHED_PROPERTY_NAMES = frozenset({"state_path"})


def make_settings(**overrides):
    """Create a Settings object with pure defaults — no config.toml, no .env.

    Usage::

        s = make_settings(state_path=tmp_path / "containers.json")
        s = make_settings(container=ContainerSettings(quick_timeout=1))
    """
    from wharf.config import (
        ContainerSettings,
        ImageSettings,
        LoggingSettings,
        Settings,
        StateSettings,
    )

    cached = {k: overrides.pop(k) for k in list(overrides) if k in _CACHED_PROPERTY_NAMES}

    defaults = {
        "container": ContainerSettings(),
        "images": ImageSettings(),
        "state": StateSettings(),
        "logging": LoggingSettings(),
    }
    defaults.update(overrides)
    s = Settings.model_construct(**defaults)

    for key, value in cached.items():
        s.__dict__[key] = value

    return s


class FakeRuntime:
    """Scripted stand-in for ``_exec._run_sync`` (bounded runtime calls).

    Rules match on the argv prefix after the executable; later rules win.
    Unmatched commands succeed with empty stdout, except ``volume inspect``,
    which reports no such volume so creation starts from a clean runtime.
    """

    def __init__(self) -> None:
        self.calls: list[list[str]] = []
        self._rules: list[tuple[tuple[str, ...], str | BaseException]] = []
        self.on("volume", "inspect", error=ExecutionError("no such volume", exit_code=1))

    def on(self, *prefix: str, stdout: str = "", error: BaseException | None = None) -> None:
        self._rules.insert(0, (prefix, error if error is not None else stdout))

    def __call__(self, argv: Sequence[str], *, timeout: float, input: str | None = None) -> str:
        argv = list(argv)
        self.calls.append(argv)
        for prefix, result in self._rules:
            if tuple(argv[1 : 1 + len(prefix)]) == prefix:
                if isinstance(result, BaseException):
                    raise result
                return result
        return ""

    @property
    def commands(self) -> list[str]:
        return [" ".join(c) for c in self.calls]

    def called(self, *prefix: str) -> bool:
        return any(tuple(c[1 : 1 + len(prefix)]) == prefix for c in self.calls)


class FakeProcess:
    """Simulates asyncio.subprocess.Process for streamed commands.

    Construct inside a running event loop.
    """

    def __init__(self) -> None:
        self.stdin = None
        self.stdout = asyncio.StreamReader()
        self.stderr = asyncio.StreamReader()
        self._returncode: int | None = None
        self._wait_event = asyncio.Event()
        self.pid = 12345
        self.killed = False

    def emit_stdout(self, data: bytes) -> None:
        self.stdout.feed_data(data)

    def emit_stderr(self, data: bytes) -> None:
        self.stderr.feed_data(data)

    def close(self, code: int = 0) -> None:
        """Simulate process exit."""
        if self._returncode is not None:
            return
        self._returncode = code
        self.stdout.feed_eof()
        self.stderr.feed_eof()
        self._wait_event.set()

    async def wait(self) -> int:
        await self._wait_event.wait()
        return self._returncode  # type: ignore[return-value]

    def kill(self) -> None:
        self.killed = True
        self.close(-9)

    @property
    def returncode(self) -> int | None:
        return self._returncode


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    # An unreaped orphan still answers kill(0); treat zombies as dead
    stat = f"/proc/{pid}/stat"
    if os.path.exists(stat):
        with open(stat) as f:
            return f.read().rsplit(")", 1)[1].split()[0] != "Z"
    return True


async def wait_until_dead(pid: int, within: float = 3.0) -> bool:
    """Poll until *pid* is gone (or a zombie); False if it is still running."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + within
    while loop.time() < deadline:
        if not _pid_alive(pid):
            return True
        await asyncio.sleep(0.05)
    return not _pid_alive(pid)


# ---------------------------------------------------------------------------
# Autouse fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def reset_settings(monkeypatch, tmp_path: Path):
    """Each test gets default settings, a fixed docker runtime and a private HOME."""
    safe = make_settings(state_path=tmp_path / "state" / "containers.json")
    monkeypatch.setattr("wharf.config._settings", safe)
    monkeypatch.setattr("wharf.runtime._runtime", ContainerRuntime(name="docker", cli="docker"))
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.delenv("USERPROFILE", raising=False)


@pytest.fixture(autouse=True)
def no_host_gh_token(monkeypatch):
    """Never shell out to the real ``gh`` CLI from tests."""
    monkeypatch.setattr("wharf.container_manager._seed.read_gh_token", lambda: None)


# ---------------------------------------------------------------------------
# Reusable fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def fake_runtime(monkeypatch) -> FakeRuntime:
    """Route every bounded runtime call through a FakeRuntime."""
    fake = FakeRuntime()
    monkeypatch.setattr("wharf.container_manager._exec._run_sync", fake)
    return fake


@pytest.fixture
def spawned(monkeypatch):
    """Capture streamed spawns; tests assign ``spawned.proc`` before triggering one."""

    class _Spawned:
        proc: FakeProcess | None = None
        argv: list[str] = []
        kwargs: dict = {}
        killed_groups: list[int] = []

    state = _Spawned()
    state.killed_groups = []

    async def _fake_create(*args, **kwargs):
        state.argv = list(args)
        state.kwargs = kwargs
        assert state.proc is not None, "test forgot to set spawned.proc"
        return state.proc

    # FakeProcess.pid is not a real process group
    def _fake_killpg(pgid, sig):
        state.killed_groups.append(pgid)

    monkeypatch.setattr(
        "wharf.container_manager._exec.asyncio.create_subprocess_exec", _fake_create
    )
    monkeypatch.setattr("wharf.container_manager._exec.os.killpg", _fake_killpg)
    return state


@pytest.fixture
def wharf_log_level():
    """Restore the ``wharf`` logger level after a test changes it."""
    stdlib_logger = logging.getLogger(LOGGER_NAME)
    original = stdlib_logger.level
    yield stdlib_logger
    stdlib_logger.setLevel(original)
