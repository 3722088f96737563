"""Registry snapshot — survive host process restarts.

The snapshot is advisory: the live runtime is the source of truth and every
entry is re-verified on load. Format is a JSON array of
``{"sessionId": ..., "info": {...}}`` objects.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from pathlib import Path

from wharf.errors import PersistenceWarning
from wharf.logger import logger
from wharf.types import ContainerInfo
from wharf.utils import write_json_atomic


def write_snapshot(containers: Mapping[str, ContainerInfo], path: Path) -> None:
    """Persist every non-removed entry. Logs instead of raising."""
    entries = [
        {"sessionId": session_id, "info": info.to_dict()}
        for session_id, info in containers.items()
        if info.state != "removed"
    ]
    try:
        write_json_atomic(path, entries, indent=2)
    except (OSError, TypeError, ValueError) as exc:
        logger.warning("Failed to persist container state", path=str(path), err=str(exc))
        return
    logger.debug("Persisted container state", path=str(path), count=len(entries))


def read_snapshot(path: Path) -> list[tuple[str, ContainerInfo]]:
    """Decode a snapshot. Missing file → empty list.

    Raises PersistenceWarning if any part of the document is unreadable, so a
    corrupt snapshot restores nothing rather than a random subset.
    """
    if not path.exists():
        return []
    try:
        raw = json.loads(path.read_text())
        if not isinstance(raw, list):
            raise ValueError("snapshot root is not a list")
        return [(str(entry["sessionId"]), ContainerInfo.from_dict(entry["info"])) for entry in raw]
    except (OSError, KeyError, TypeError, ValueError) as exc:
        # json.JSONDecodeError is a ValueError
        raise PersistenceWarning(f"Unreadable container state at {path}: {exc}") from exc
