"""
Workflow lock.

At most one withdraw/bridge/create workflow may run per managed position.
Inside a process an asyncio.Lock serializes callers; across processes an
exclusive flock on a lock file next to the config does. A second
invocation fails fast instead of waiting.
"""
import asyncio
import fcntl
import logging
import os
from pathlib import Path
from typing import Optional, Union

from domain import WorkflowLockedError

logger = logging.getLogger(__name__)


class WorkflowLock:
    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = asyncio.Lock()
        self._fd: Optional[int] = None

    @classmethod
    def for_config(cls, config_path: Union[str, Path]) -> "WorkflowLock":
        config_path = Path(config_path)
        return cls(config_path.with_name(f"{config_path.name}.lock"))

    @property
    def locked(self) -> bool:
        return self._lock.locked()

    async def acquire(self) -> None:
        """
        Raises:
            WorkflowLockedError: If the lock is held in this or another process
        """
        if self._lock.locked():
            raise WorkflowLockedError(f"Workflow already running in this process ({self.path})")
        await self._lock.acquire()

        fd = os.open(self.path, os.O_CREAT | os.O_RDWR, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as e:
            os.close(fd)
            self._lock.release()
            raise WorkflowLockedError(f"Workflow already running in another process ({self.path})") from e

        os.ftruncate(fd, 0)
        os.write(fd, str(os.getpid()).encode())
        self._fd = fd
        logger.debug(f"Acquired workflow lock {self.path}")

    def release(self) -> None:
        if self._fd is not None:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
            os.close(self._fd)
            self._fd = None
            logger.debug(f"Released workflow lock {self.path}")
        if self._lock.locked():
            self._lock.release()

    async def __aenter__(self) -> "WorkflowLock":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.release()
