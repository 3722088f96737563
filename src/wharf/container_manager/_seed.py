"""Auth and config seeding — copy host credentials into a running container.

Runs after create and after every start: the tmpfs homes are wiped when a
container stops. Every step is best-effort and idempotent. A missing source
file is skipped and a failing step is logged, never raised.

Shell scripts join their steps with ``;`` rather than ``&&`` so one missing
file does not skip the rest, and end with ``true`` so the exec succeeds.
"""

from __future__ import annotations

import asyncio

from wharf.config import get_settings
from wharf.container_manager._credentials import read_gh_token
from wharf.container_manager._exec import best_effort, exec_in_container, shell_quote
from wharf.container_manager._mounts import (
    CLAUDE_HOME,
    CODEX_HOME,
    HOST_CLAUDE_MOUNT,
    HOST_CODEX_MOUNT,
    HOST_GITCONFIG_MOUNT,
)
from wharf.logger import logger

CLAUDE_AUTH_FILES = (".credentials.json", "auth.json", ".auth.json", "credentials.json")
CLAUDE_SETTINGS_FILES = ("settings.json", "settings.local.json")
CODEX_FILES = ("auth.json", "config.toml", "models_cache.json", "version.json")
CODEX_DIRS = ("skills", "vendor_imports", "prompts", "rules")


def _copy_files(src: str, dst: str, names: tuple[str, ...]) -> str:
    return (
        f"for f in {' '.join(names)}; do "
        f'[ -f {src}/$f ] && cp {src}/$f {dst}/$f 2>/dev/null; done'
    )


def _copy_dirs(src: str, dst: str, names: tuple[str, ...]) -> str:
    # Copy contents (``$d/.``) into a pre-created target so repeat runs overwrite
    # instead of nesting ``skills/skills``.
    return (
        f"for d in {' '.join(names)}; do "
        f"[ -d {src}/$d ] && mkdir -p {dst}/$d && cp -r {src}/$d/. {dst}/$d/ 2>/dev/null; done"
    )


def _sh(*steps: str) -> list[str]:
    return ["sh", "-lc", "; ".join([*steps, "true"])]


def claude_seed_command() -> list[str]:
    return _sh(
        f"mkdir -p {CLAUDE_HOME}",
        _copy_files(HOST_CLAUDE_MOUNT, CLAUDE_HOME, CLAUDE_AUTH_FILES),
        _copy_files(HOST_CLAUDE_MOUNT, CLAUDE_HOME, CLAUDE_SETTINGS_FILES),
        _copy_dirs(HOST_CLAUDE_MOUNT, CLAUDE_HOME, ("skills",)),
    )


def codex_seed_command() -> list[str]:
    return _sh(
        f"[ -d {HOST_CODEX_MOUNT} ] || exit 0",
        f"mkdir -p {CODEX_HOME}",
        _copy_files(HOST_CODEX_MOUNT, CODEX_HOME, CODEX_FILES),
        _copy_dirs(HOST_CODEX_MOUNT, CODEX_HOME, CODEX_DIRS),
    )


def git_config_command() -> list[str]:
    workspace = get_settings().container.workspace_path
    return _sh(
        # Identity from the staged host gitconfig into the writable global config
        f"if [ -f {HOST_GITCONFIG_MOUNT} ]; then "
        f"NAME=$(git config -f {HOST_GITCONFIG_MOUNT} user.name 2>/dev/null); "
        f"EMAIL=$(git config -f {HOST_GITCONFIG_MOUNT} user.email 2>/dev/null); "
        '[ -n "$NAME" ] && git config --global user.name "$NAME"; '
        '[ -n "$EMAIL" ] && git config --global user.email "$EMAIL"; '
        "fi",
        # Host signing tools (gpg agent, 1Password) are not reachable in here
        "git config --global commit.gpgsign false 2>/dev/null",
        # Volume owner may differ from the container user
        f"git config --global --replace-all safe.directory {workspace} {workspace} 2>/dev/null",
        # No host SSH keys in the container: git@host:org/repo -> https://host/org/repo
        f"cd {workspace} 2>/dev/null && "
        "git remote 2>/dev/null | while read remote; do "
        'url=$(git remote get-url "$remote" 2>/dev/null); '
        'case "$url" in git@*:*) '
        "https_url=$(echo \"$url\" | sed -E 's|^git@([^:]+):|https://\\1/|'); "
        'git remote set-url "$remote" "$https_url" 2>/dev/null;; esac; '
        "done",
    )


async def seed_claude_files(container_id: str) -> None:
    with best_effort("Claude auth seeding", container=container_id):
        await exec_in_container(container_id, claude_seed_command())


async def seed_codex_files(container_id: str) -> None:
    with best_effort("Codex auth seeding", container=container_id):
        await exec_in_container(container_id, codex_seed_command())


async def seed_git_auth(container_id: str) -> None:
    """Seed gh auth, git identity and remote URLs.

    Call again after the workspace is populated: remote rewriting needs
    ``.git`` to exist.
    """
    # gh may block on a keyring prompt or a slow credential helper
    token = await asyncio.to_thread(read_gh_token)
    if token:
        with best_effort("gh auth login", container=container_id):
            await exec_in_container(
                container_id,
                _sh(f"printf '%s\\n' {shell_quote(token)} | gh auth login --with-token 2>/dev/null"),
            )

    # Copied gh config may still be valid when the host token is unavailable
    with best_effort("gh auth setup-git", container=container_id):
        await exec_in_container(container_id, _sh("gh auth setup-git 2>/dev/null"))

    with best_effort("git config seeding", container=container_id):
        await exec_in_container(container_id, git_config_command())


async def seed_container(container_id: str) -> None:
    """Run every seeding step. Never raises."""
    await seed_claude_files(container_id)
    await seed_codex_files(container_id)
    await seed_git_auth(container_id)
    logger.debug("Container seeded", container=container_id)
