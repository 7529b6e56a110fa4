# offer_tracker/services/listing_locks.py
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Dict

logger = logging.getLogger(__name__)


class ListingLockRegistry:
    """
    One asyncio.Lock per listing id.

    Offer writes for a listing (reconciliation passes and pricing-health
    patches) hold the listing's lock for their whole transaction. Listings
    never wait on each other. Cross-process exclusion comes from the
    ``SELECT ... FOR UPDATE`` taken inside the lock.

    A listing's entry lives only while some task holds or waits on its lock.
    """

    def __init__(self):
        self._locks: Dict[int, asyncio.Lock] = {}
        self._users: Dict[int, int] = {}

    @asynccontextmanager
    async def hold(self, listing_id: int):
        lock = self._locks.get(listing_id)
        if lock is None:
            lock = self._locks[listing_id] = asyncio.Lock()
        self._users[listing_id] = self._users.get(listing_id, 0) + 1

        try:
            if lock.locked():
                logger.debug(f"Waiting for lock on listing {listing_id}")
            async with lock:
                yield
        finally:
            self._users[listing_id] -= 1
            if not self._users[listing_id]:
                del self._users[listing_id]
                del self._locks[listing_id]

    def is_held(self, listing_id: int) -> bool:
        lock = self._locks.get(listing_id)
        return lock is not None and lock.locked()

    def __len__(self):
        return len(self._locks)


# Process-wide registry shared by all message tasks
listing_locks = ListingLockRegistry()
