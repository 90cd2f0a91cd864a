"""Process-scoped per-user processing locks.

A user being scanned is marked here; any other scan of the same user
(the global tick catching up with itself, or a manual scan) skips that user
instead of waiting. The markers live only in memory and are all unheld after
a restart.
"""

import logging
from contextlib import contextmanager
from typing import Iterator

logger = logging.getLogger(__name__)


class UserLockRegistry:
    """Non-blocking try-locks keyed by user id."""

    def __init__(self):
        self._held: set[str] = set()

    def __len__(self) -> int:
        return len(self._held)

    def is_held(self, user_id: str) -> bool:
        return user_id in self._held

    def try_acquire(self, user_id: str) -> bool:
        """
        Mark a user as being processed.

        Check-and-set runs without yielding to the event loop, so two
        coroutines can never both acquire the same user.

        Returns:
            True if acquired, False if already held
        """
        if user_id in self._held:
            logger.debug(f"User {user_id} already being processed")
            return False
        self._held.add(user_id)
        return True

    def release(self, user_id: str) -> None:
        self._held.discard(user_id)

    @contextmanager
    def hold(self, user_id: str) -> Iterator[bool]:
        """
        Context manager yielding whether the lock was acquired.

        The lock is released on exit only if this block acquired it.
        """
        acquired = self.try_acquire(user_id)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(user_id)


# Global registry shared by the scan tick and manual scans
user_locks = UserLockRegistry()
