"""In-process locks serializing batches and store writes."""

import asyncio
from typing import Dict, Tuple


class LockRegistry:
    """
    Two lock families, created lazily:

    - batch locks, one per (user, project): at most one executor batch or
      rollback in flight; a second request is rejected, never queued.
    - user locks: every read-then-write on a user's mappings, ignores,
      operations or audit rows holds the same lock.
    """

    def __init__(self):
        self._batch: Dict[Tuple[int, str], asyncio.Lock] = {}
        self._user: Dict[int, asyncio.Lock] = {}

    def batch(self, user_id: int, project_id: str) -> asyncio.Lock:
        return self._batch.setdefault((user_id, project_id), asyncio.Lock())

    def user(self, user_id: int) -> asyncio.Lock:
        return self._user.setdefault(user_id, asyncio.Lock())

    def batch_running(self, user_id: int, project_id: str) -> bool:
        return self.batch(user_id, project_id).locked()
