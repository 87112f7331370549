import time
from typing import Any, Dict, Optional, Tuple


class TTLCache:
    """Small process-local cache for computed listings."""

    def __init__(self, ttl: float = 300, max_entries: int = 1000):
        self.ttl = ttl
        self.max_entries = max_entries
        self._entries: Dict[str, Tuple[float, Any]] = {}

    @staticmethod
    def make_key(prefix: str, **params) -> str:
        parts = "|".join(f"{k}:{params[k]}" for k in sorted(params))
        return f"{prefix}:{parts}"

    def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at < time.monotonic():
            self._entries.pop(key, None)
            return None
        return value

    def set(self, key: str, value: Any, ttl: Optional[float] = None):
        if len(self._entries) >= self.max_entries:
            self._evict()
        self._entries[key] = (time.monotonic() + (ttl if ttl is not None else self.ttl), value)

    def invalidate(self, prefix: str = ""):
        if not prefix:
            self._entries.clear()
            return
        for key in [k for k in self._entries if k.startswith(prefix)]:
            del self._entries[key]

    def _evict(self):
        now = time.monotonic()
        for key in [k for k, (exp, _) in self._entries.items() if exp < now]:
            del self._entries[key]
        # Still full: drop the oldest insertions
        while len(self._entries) >= self.max_entries:
            self._entries.pop(next(iter(self._entries)))

    def __len__(self):
        return len(self._entries)
