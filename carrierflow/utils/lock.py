from contextlib import contextmanager
import threading
import time
import uuid

from carrierflow.core.errors import LockUnavailable
from carrierflow.observability.logging import log

_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class KeyedLocks:
    """
    In-process per-key mutual exclusion. Work on different keys proceeds concurrently;
    work on the same key is strictly serialized.
    """

    def __init__(self, wait_sec: float = 5.0):
        self.wait_sec = wait_sec
        self._guard = threading.Lock()
        self._locks = {}
        self._refs = {}

    @contextmanager
    def hold(self, key: str):
        with self._guard:
            lk = self._locks.get(key)
            if lk is None:
                lk = self._locks[key] = threading.Lock()
            self._refs[key] = self._refs.get(key, 0) + 1
        acquired = lk.acquire(timeout=self.wait_sec)
        try:
            if not acquired:
                raise LockUnavailable(f"Could not acquire lock for {key}", key=key)
            yield
        finally:
            if acquired:
                lk.release()
            with self._guard:
                self._refs[key] -= 1
                if self._refs[key] <= 0:
                    # nobody waiting, drop the entry so the map stays bounded
                    del self._refs[key]
                    del self._locks[key]


class RedisKeyedLocks:
    """
    Distributed lock to ensure single-writer per key across workers.
    """

    def __init__(self, redis, ttl_ms: int = 35000, wait_sec: float = 5.0, prefix: str = "carrierflow"):
        self.r = redis
        self.ttl_ms = ttl_ms
        self.wait_sec = wait_sec
        self.prefix = prefix

    @contextmanager
    def hold(self, key: str):
        lock_key = f"{self.prefix}:lock:{key}"
        token = uuid.uuid4().hex
        acquired = bool(self.r.set(lock_key, token, px=self.ttl_ms, nx=True))

        try:
            if not acquired:
                # short spin, then give up
                deadline = time.monotonic() + self.wait_sec
                while time.monotonic() < deadline:
                    time.sleep(0.1)
                    if self.r.set(lock_key, token, px=self.ttl_ms, nx=True):
                        acquired = True
                        break

                if not acquired:
                    raise LockUnavailable(f"Could not acquire lock for {key}", key=key)

            yield
        finally:
            if acquired:
                # Release only if we own it
                try:
                    self.r.eval(_RELEASE_SCRIPT, 1, lock_key, token)
                except Exception as e:
                    # the TTL frees it anyway
                    log(event="lock_release_failed", key=key, error=str(e))
