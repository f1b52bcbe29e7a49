"""Per-project-path locking for git-mutating operations.

All branch creation, branch deletion and merge calls for one repository go
through the same :class:`asyncio.Lock`, so concurrently running workflows
that target the same project never interleave git state changes. Workflows
targeting different repositories are not serialized.

Example:
    >>> locks = PathLockRegistry()
    >>> async with locks.hold("/srv/repo", operation="merge"):
    ...     await git.merge(...)
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path

import structlog

log = structlog.get_logger(__name__)


class PathLockRegistry:
    """Lazily created asyncio locks keyed by resolved project path.

    Lock creation is guarded by a meta-lock so two workflows asking for the
    same path at the same time always share one lock.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._locks_lock = asyncio.Lock()

    @staticmethod
    def normalize(project_path: str | Path) -> str:
        """Canonical key for a project path."""
        return str(Path(project_path).expanduser().resolve(strict=False))

    async def get_lock(self, project_path: str | Path) -> asyncio.Lock:
        """Get or create the lock for ``project_path``."""
        key = self.normalize(project_path)
        async with self._locks_lock:
            if key not in self._locks:
                self._locks[key] = asyncio.Lock()
            return self._locks[key]

    @asynccontextmanager
    async def hold(self, project_path: str | Path, operation: str = "git") -> AsyncIterator[None]:
        """Hold the path lock for the duration of the block."""
        lock = await self.get_lock(project_path)
        async with lock:
            log.debug("path_lock_acquired", path=str(project_path), operation=operation)
            try:
                yield
            finally:
                log.debug("path_lock_released", path=str(project_path), operation=operation)

    def is_locked(self, project_path: str | Path) -> bool:
        lock = self._locks.get(self.normalize(project_path))
        return lock is not None and lock.locked()
