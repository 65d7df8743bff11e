"""In-process mutual exclusion keyed by pull request.

The lock table is a busy set, not a queue: a second trigger for a key that
is already held is refused rather than waited on, so the caller can tell
the requester to retry later. State lives in process memory only.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Hashable, NamedTuple, Set

logger = logging.getLogger(__name__)


class PullRequestKey(NamedTuple):
    """Composite identity of a pull request."""

    owner: str
    repo: str
    number: int

    def __str__(self) -> str:
        return f"{self.owner}/{self.repo}#{self.number}"


class EntityLockTable:
    """Set of entity keys that currently have a job in flight.

    All methods are synchronous and never await, so check-and-set is atomic
    with respect to other coroutines on the same event loop.
    """

    def __init__(self) -> None:
        self._held: Set[Hashable] = set()

    def try_acquire(self, key: Hashable) -> bool:
        """Mark ``key`` busy.

        Returns:
            True if the key was free and is now held, False if already held.
        """
        if key in self._held:
            logger.info("Entity lock busy", extra={"key": str(key)})
            return False
        self._held.add(key)
        logger.debug("Entity lock acquired", extra={"key": str(key)})
        return True

    def release(self, key: Hashable) -> None:
        """Release ``key``. Releasing a key that is not held is a no-op."""
        self._held.discard(key)
        logger.debug("Entity lock released", extra={"key": str(key)})

    def is_held(self, key: Hashable) -> bool:
        return key in self._held

    def __len__(self) -> int:
        return len(self._held)

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[bool]:
        """Try to acquire ``key`` for the duration of the block.

        Yields whether the key was acquired. When it was, the key is
        released on every exit path, including exceptions.

        Example:
            >>> async with locks.hold(key) as acquired:
            ...     if not acquired:
            ...         await reply_busy()
            ...         return
            ...     await do_work()
        """
        acquired = self.try_acquire(key)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(key)
