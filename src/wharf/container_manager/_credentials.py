"""Host-side credential discovery.

Everything here reads the *host* environment. Nothing is written; the seeder
decides what to copy into containers.
"""

from __future__ import annotations

import os
import subprocess
from collections.abc import Mapping
from pathlib import Path

from wharf.config import get_settings
from wharf.logger import logger


def host_home() -> Path | None:
    """Return the host home directory, or None when no home is configured.

    Checks ``HOME`` then ``USERPROFILE`` (Windows).
    """
    home = os.environ.get("HOME") or os.environ.get("USERPROFILE")
    return Path(home) if home else None


def read_gh_token() -> str | None:
    """Read a GitHub token from the host's gh CLI (may live in an OS keyring)."""
    try:
        result = subprocess.run(
            ["gh", "auth", "token"],
            capture_output=True,
            text=True,
            timeout=get_settings().container.quick_timeout,
        )
        if result.returncode == 0:
            return result.stdout.strip() or None
    except (FileNotFoundError, subprocess.TimeoutExpired, OSError) as exc:
        logger.debug("Failed to read GitHub token from gh CLI", err=str(exc))
    return None


def has_container_codex_auth(env_vars: Mapping[str, str] | None = None) -> bool:
    """Whether Codex inside a container has a plausible auth source.

    True for explicit OpenAI/Codex API keys in *env_vars*, or an ``auth.json``
    under the host's ``~/.codex`` that seeding can copy in.
    """
    if env_vars and (env_vars.get("OPENAI_API_KEY") or env_vars.get("CODEX_API_KEY")):
        return True
    home = host_home()
    if home is None:
        return False
    return (home / ".codex" / "auth.json").exists()
