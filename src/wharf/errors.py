"""Exception taxonomy for sandbox orchestration."""

from __future__ import annotations

from collections.abc import Sequence


class WharfError(Exception):
    """Base class for every error raised by wharf."""


class RuntimeUnavailableError(WharfError):
    """The container runtime CLI is missing or its daemon is unreachable."""


class InvalidIdentifierError(WharfError, ValueError):
    """A container id or name failed validation before reaching a command line."""


class ExecutionError(WharfError):
    """An external command exited non-zero (or could not complete)."""

    def __init__(
        self,
        message: str,
        *,
        argv: Sequence[str] = (),
        exit_code: int | None = None,
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.argv = list(argv)
        self.exit_code = exit_code
        self.stderr = stderr


class CommandTimeoutError(ExecutionError):
    """An external command exceeded its timeout and was killed."""

    def __init__(self, message: str, *, argv: Sequence[str] = (), timeout: float) -> None:
        super().__init__(message, argv=argv)
        self.timeout = timeout


class CreationFailedError(WharfError):
    """Container creation failed; partial resources were cleaned up."""


class CopyTimeoutError(WharfError):
    """Workspace copy exceeded its timeout and was killed."""


class CopyFailedError(WharfError):
    """Workspace copy pipeline exited non-zero."""

    def __init__(self, message: str, *, exit_code: int, stderr: str = "") -> None:
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr


class BuildFailedError(WharfError):
    """Image build failed."""


class PersistenceWarning(WharfError):
    """Non-fatal problem reading or writing the registry snapshot.

    Never escapes the persistence helpers — always logged and swallowed.
    """
