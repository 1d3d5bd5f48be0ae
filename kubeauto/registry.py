"""
Task deduplication.

TaskRegistry guarantees at most one live task per key. start() is the only way
in: the check and the insert happen under one lock, so when several callers
race on the same key exactly one of them spawns the task. The spawned task
removes its own key when it finishes, whatever the reason, which lets a later
start() on the same key run it again.

PortLocks hands out one asyncio.Lock per local port.
"""

import asyncio
import logging
import threading
from functools import partial
from typing import Any, Awaitable, Callable, Dict, Hashable, List, Optional

logger = logging.getLogger(__name__)


class TaskRegistry:
    def __init__(self, name: str = "tasks"):
        self.name = name
        self._lock = threading.Lock()
        self._tasks: Dict[Hashable, Optional[asyncio.Task]] = {}

    def __contains__(self, key: Hashable) -> bool:
        with self._lock:
            return key in self._tasks

    def __len__(self) -> int:
        with self._lock:
            return len(self._tasks)

    def keys(self) -> List[Hashable]:
        with self._lock:
            return list(self._tasks)

    def start(
        self,
        key: Hashable,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
        name: Optional[str] = None,
    ) -> Optional[asyncio.Task]:
        """
        Run func(*args) as a task unless one is already registered for key.

        Must be called from inside the running event loop. Returns the new
        task, or None when the key is taken.
        """
        with self._lock:
            if key in self._tasks:
                return None
            self._tasks[key] = None
        try:
            task = asyncio.get_running_loop().create_task(
                self._guard(key, func, *args),
                name=name or f"{self.name}:{key}",
            )
        except BaseException:
            self._release(key)
            raise
        with self._lock:
            self._tasks[key] = task
        # a task cancelled before its first step never enters _guard
        task.add_done_callback(partial(self._release, key))
        return task

    async def _guard(self, key: Hashable, func: Callable[..., Awaitable[Any]], *args: Any) -> None:
        try:
            await func(*args)
        except asyncio.CancelledError:
            logger.debug(f"[{self.name}] {key} cancelled")
            raise
        except Exception:
            logger.exception(f"[{self.name}] {key} failed")
        finally:
            self._release(key, asyncio.current_task())

    def _release(self, key: Hashable, task: Optional[asyncio.Task] = None) -> None:
        with self._lock:
            if key in self._tasks and self._tasks[key] is task:
                del self._tasks[key]

    async def close(self) -> None:
        """Cancel every registered task and wait for all of them to finish."""
        with self._lock:
            tasks = [t for t in self._tasks.values() if t is not None]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)


class PortLocks:
    """One lock per local port, created on first use."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[int, asyncio.Lock] = {}

    def __getitem__(self, port: int) -> asyncio.Lock:
        with self._guard:
            lock = self._locks.get(port)
            if lock is None:
                lock = self._locks[port] = asyncio.Lock()
            return lock
