"""Process lifecycle hooks — restore tracking on startup, persist on shutdown.

The host process owns one ContainerManager for its lifetime::

    async with managed_containers() as manager:
        info = await manager.create_container(session_id, cwd, config)
        ...
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

from wharf.config import get_settings
from wharf.container_manager import ContainerManager
from wharf.logger import logger, set_level


@asynccontextmanager
async def managed_containers(
    state_path: Path | None = None,
    *,
    cleanup: bool = False,
) -> AsyncIterator[ContainerManager]:
    """Yield a manager with persisted containers restored.

    On exit the registry is persisted. With ``cleanup=True`` every tracked
    container is removed first, leaving an empty snapshot behind.
    """
    set_level(get_settings().logging.level)
    path = state_path or get_settings().state_path
    manager = ContainerManager()
    restored = await manager.restore_state(path)
    logger.info("Container manager started", state=str(path), restored=restored)
    try:
        yield manager
    finally:
        if cleanup:
            logger.info("Removing all tracked containers")
            await manager.cleanup_all()
        logger.info("Persisting container state before shutdown", state=str(path))
        manager.persist_state(path)
