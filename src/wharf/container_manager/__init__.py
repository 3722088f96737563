"""Container manager — session sandboxes over a CLI container runtime.

This package is split into focused submodules:
  _exec         — bounded and streamed command execution, id validation, best_effort
  _credentials  — host-side credential discovery (home dir, gh token, Codex auth)
  _mounts       — naming, port validation and ``create`` argument construction
  _seed         — best-effort auth/config seeding inside a running container
  _workspace    — tar-stream workspace population
  _images       — image build, streaming build, pull and registry mapping
  _persistence  — registry snapshot read/write
  _manager      — ContainerManager: lifecycle and the session registry
"""

from wharf.container_manager._credentials import has_container_codex_auth, host_home
from wharf.container_manager._exec import (
    best_effort,
    shell_quote,
    stream_process,
    validate_container_id,
)
from wharf.container_manager._images import registry_image_for
from wharf.container_manager._manager import ContainerManager

__all__ = [
    "ContainerManager",
    "best_effort",
    "has_container_codex_auth",
    "host_home",
    "registry_image_for",
    "shell_quote",
    "stream_process",
    "validate_container_id",
]
