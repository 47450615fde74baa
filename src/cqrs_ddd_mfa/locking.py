"""KeyedLock: per-key asyncio locks for single-process deployments."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .exceptions import LockAcquisitionError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = logging.getLogger("cqrs_ddd.locking")


@dataclass
class _LockState:
    """State for a single key."""

    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    ref_count: int = 0


class KeyedLock:
    """Mutual exclusion per key, with no global lock held while waiting.

    Entries are reference counted and dropped as soon as nobody holds or
    waits on a key, so memory stays proportional to in-flight keys.

    Example:
        ```python
        locks = KeyedLock()

        async with locks.hold(session_id):
            session = await store.get(session_id)
            ...
        ```
    """

    def __init__(self, *, timeout: float = 10.0) -> None:
        self._locks: dict[str, _LockState] = {}
        self._timeout = timeout

    def __len__(self) -> int:
        return len(self._locks)

    def is_locked(self, key: str) -> bool:
        state = self._locks.get(key)
        return state is not None and state.lock.locked()

    @asynccontextmanager
    async def hold(self, key: str, *, timeout: float | None = None) -> AsyncIterator[None]:
        """Hold the lock for ``key`` for the duration of the block.

        Raises:
            LockAcquisitionError: If the lock is not acquired in time.
        """
        timeout = self._timeout if timeout is None else timeout
        state = self._locks.get(key)
        if state is None:
            state = _LockState()
            self._locks[key] = state
        state.ref_count += 1

        try:
            try:
                await asyncio.wait_for(state.lock.acquire(), timeout=timeout)
            except asyncio.TimeoutError as err:
                logger.warning("Lock acquisition on %s timed out after %.1fs", key, timeout)
                raise LockAcquisitionError(key, timeout) from err

            try:
                yield
            finally:
                state.lock.release()
        finally:
            state.ref_count -= 1
            if state.ref_count == 0 and self._locks.get(key) is state:
                del self._locks[key]


__all__: list[str] = ["KeyedLock"]
