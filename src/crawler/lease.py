# src/crawler/lease.py
# Responsibility: Redis-backed per-item leases, used to tell live `running` items from orphaned ones.

import os
import socket
from typing import Optional

import redis

from src.config.settings import settings

# Deletes the key only while it still holds our owner token
RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


class ItemLease:
    """
    A lease is a Redis key `{prefix}:{item_id}` set with NX and a TTL while a worker owns the item.
    An item that is `running` past the TTL with no lease key was abandoned by a dead worker.
    """

    def __init__(self, client: Optional[redis.Redis] = None, ttl: Optional[int] = None, owner: Optional[str] = None):
        self.redis = client if client is not None else redis.from_url(settings.REDIS.URL)
        self.ttl = ttl if ttl is not None else settings.CRAWLER.LEASE_TTL_SECONDS
        self.prefix = settings.REDIS.LEASE_PREFIX
        self.owner = owner or f"{socket.gethostname()}:{os.getpid()}"

    def key(self, item_id: int) -> str:
        return f"{self.prefix}:{item_id}"

    def acquire(self, item_id: int) -> bool:
        """
        Returns False only if another holder owns the lease.
        Redis errors are logged and treated as acquired (the in-process queue still guarantees exclusivity).
        """
        try:
            return bool(self.redis.set(self.key(item_id), self.owner, ex=self.ttl, nx=True))
        except redis.RedisError as e:
            print(f"[Lease] Acquire failed for item {item_id}, continuing without lease: {e}")
            return True

    def release(self, item_id: int):
        """Drops the lease if this holder still owns it; an expired lease taken over by another holder is left alone."""
        try:
            self.redis.eval(RELEASE_SCRIPT, 1, self.key(item_id), self.owner)
        except redis.RedisError as e:
            print(f"[Lease] Release failed for item {item_id}: {e}")

    def is_held(self, item_id: int) -> bool:
        """Raises redis.RedisError; callers skip recovery when Redis is unavailable."""
        return bool(self.redis.exists(self.key(item_id)))
