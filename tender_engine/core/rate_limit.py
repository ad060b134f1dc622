from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Dict, Tuple


@dataclass
class Bucket:
    tokens: float
    last_ts: float


class InMemoryRateLimiter:
    """
    Token bucket:
      capacity tokens; refill rate tokens/sec.

    Keyed by (actor_id, route_key). Process-local; request workers in the
    same process share one instance.
    """
    def __init__(self, capacity: int, refill_per_sec: float):
        self.capacity = float(capacity)
        self.refill_per_sec = float(refill_per_sec)
        self._buckets: Dict[Tuple[str, str], Bucket] = {}
        self._lock = threading.Lock()

    def allow(self, actor_id: str, route_key: str, cost: float = 1.0) -> bool:
        now = time.monotonic()
        k = (actor_id, route_key)
        with self._lock:
            b = self._buckets.get(k)
            if b is None:
                b = Bucket(tokens=self.capacity, last_ts=now)
                self._buckets[k] = b

            # refill
            elapsed = max(0.0, now - b.last_ts)
            b.tokens = min(self.capacity, b.tokens + elapsed * self.refill_per_sec)
            b.last_ts = now

            if b.tokens >= cost:
                b.tokens -= cost
                return True
            return False

    def reset(self) -> None:
        with self._lock:
            self._buckets.clear()
