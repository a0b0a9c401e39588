import copy
import json
import math
import threading
from typing import Dict, Optional, Tuple

from carrierflow.observability.logging import log
from carrierflow.utils.time import SystemClock


class TTLStore:
    """
    Keyed store with per-entry expiry. Entries past their deadline are treated as
    absent at lookup time whether or not a sweep has removed them yet.
    """

    def put(self, key: str, record: dict, ttl_seconds: Optional[float] = None) -> None:
        raise NotImplementedError

    def get(self, key: str) -> Optional[dict]:
        raise NotImplementedError

    def delete(self, key: str) -> bool:
        raise NotImplementedError

    def pop(self, key: str) -> Optional[dict]:
        """Atomic lookup-and-delete. Exactly one concurrent caller receives the record."""
        raise NotImplementedError

    def sweep(self) -> int:
        raise NotImplementedError


class MemoryTTLStore(TTLStore):
    def __init__(self, name: str, clock=None):
        self.name = name
        self.clock = clock or SystemClock()
        self._lock = threading.Lock()
        self._data: Dict[str, Tuple[Optional[float], dict]] = {}

    def _expired(self, expires_at: Optional[float]) -> bool:
        return expires_at is not None and self.clock.now() >= expires_at

    def put(self, key, record, ttl_seconds=None):
        expires_at = None if ttl_seconds is None else self.clock.now() + float(ttl_seconds)
        with self._lock:
            self._data[key] = (expires_at, copy.deepcopy(record))

    def get(self, key):
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            expires_at, record = entry
            if self._expired(expires_at):
                del self._data[key]
                return None
            return copy.deepcopy(record)

    def delete(self, key):
        with self._lock:
            return self._data.pop(key, None) is not None

    def pop(self, key):
        with self._lock:
            entry = self._data.pop(key, None)
        if entry is None:
            return None
        expires_at, record = entry
        if self._expired(expires_at):
            return None
        return record

    def sweep(self):
        with self._lock:
            dead = [k for k, (exp, _) in self._data.items() if self._expired(exp)]
            for k in dead:
                del self._data[k]
        return len(dead)

    def __len__(self):
        with self._lock:
            return len(self._data)


class RedisTTLStore(TTLStore):
    """
    Records are stored as JSON {"expiresAt": <epoch s | null>, "record": {...}}.
    Redis EX drops the key eventually; the stored deadline is what lookups honour.
    """

    def __init__(self, name: str, redis, prefix: str = "carrierflow", clock=None):
        self.name = name
        self.r = redis
        self.prefix = f"{prefix}:{name}:"
        self.clock = clock or SystemClock()

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    def _decode(self, raw) -> Tuple[Optional[float], Optional[dict]]:
        if not raw:
            return None, None
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            log(event="store_decode_failed", store=self.name)
            return None, None
        return data.get("expiresAt"), data.get("record")

    def _expired(self, expires_at) -> bool:
        return expires_at is not None and self.clock.now() >= float(expires_at)

    def put(self, key, record, ttl_seconds=None):
        expires_at = None if ttl_seconds is None else self.clock.now() + float(ttl_seconds)
        payload = json.dumps({"expiresAt": expires_at, "record": record}, default=str)
        if ttl_seconds is None:
            self.r.set(self._key(key), payload)
        else:
            self.r.set(self._key(key), payload, ex=max(1, int(math.ceil(ttl_seconds))))

    def get(self, key):
        expires_at, record = self._decode(self.r.get(self._key(key)))
        if record is None:
            return None
        if self._expired(expires_at):
            self.r.delete(self._key(key))
            return None
        return record

    def delete(self, key):
        return bool(self.r.delete(self._key(key)))

    def pop(self, key):
        expires_at, record = self._decode(self.r.getdel(self._key(key)))
        if record is None or self._expired(expires_at):
            return None
        return record

    def sweep(self):
        removed = 0
        for full_key in self.r.scan_iter(match=f"{self.prefix}*"):
            expires_at, record = self._decode(self.r.get(full_key))
            if record is not None and self._expired(expires_at):
                removed += int(self.r.delete(full_key) or 0)
        return removed


def build_store(name: str, backend: str = "memory", clock=None, redis=None, prefix: str = "carrierflow") -> TTLStore:
    if backend == "redis":
        if redis is None:
            from carrierflow.store.redis_conn import get_redis
            redis = get_redis()
        return RedisTTLStore(name, redis, prefix=prefix, clock=clock)
    return MemoryTTLStore(name, clock=clock)
