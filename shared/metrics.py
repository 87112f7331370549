from collections import defaultdict, deque
from datetime import datetime
from typing import Dict, Tuple, Deque, List, Optional
import bisect

# Upper bounds in milliseconds; the last bucket is open-ended
DEFAULT_BUCKETS = (5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000)


class Histogram:
    def __init__(self, buckets=DEFAULT_BUCKETS):
        self.buckets = tuple(buckets)
        self.counts = [0] * (len(self.buckets) + 1)
        self.count = 0
        self.total = 0.0
        self.max = 0.0

    def observe(self, value: float):
        self.counts[bisect.bisect_left(self.buckets, value)] += 1
        self.count += 1
        self.total += value
        self.max = max(self.max, value)

    def snapshot(self) -> dict:
        labels = [f"le_{b}" for b in self.buckets] + ["inf"]
        return {
            "count": self.count,
            "avg": round(self.total / self.count, 2) if self.count else 0.0,
            "max": round(self.max, 2),
            "buckets": dict(zip(labels, self.counts)),
        }


class MetricsRegistry:
    """
    Per-application request metrics.

    One registry is created with the app and handed to the request logging
    middleware; nothing here is module-global.
    """

    def __init__(self, slow_request_ms: float = 1000, slow_log_size: int = 100):
        self.started_at = datetime.utcnow()
        self.slow_request_ms = slow_request_ms
        self.requests: Dict[Tuple[str, str, int], int] = defaultdict(int)
        self.durations: Dict[Tuple[str, str], Histogram] = {}
        self.slow_requests: Deque[dict] = deque(maxlen=slow_log_size)
        self.counters: Dict[str, int] = defaultdict(int)

    def increment(self, name: str, amount: int = 1):
        self.counters[name] += amount

    def record_request(self, method: str, path: str, status_code: int, duration_ms: float,
                       request_id: Optional[str] = None):
        self.requests[(method, path, status_code)] += 1
        hist = self.durations.get((method, path))
        if hist is None:
            hist = self.durations[(method, path)] = Histogram()
        hist.observe(duration_ms)
        if duration_ms >= self.slow_request_ms:
            self.slow_requests.append({
                "method": method,
                "path": path,
                "status_code": status_code,
                "duration_ms": round(duration_ms, 2),
                "request_id": request_id,
                "at": datetime.utcnow().isoformat(),
            })

    def snapshot(self) -> dict:
        total = sum(self.requests.values())
        errors = sum(n for (_, _, code), n in self.requests.items() if code >= 500)
        routes: List[dict] = []
        for (method, path), hist in sorted(self.durations.items()):
            routes.append({"method": method, "path": path, **hist.snapshot()})
        return {
            "uptime_seconds": round((datetime.utcnow() - self.started_at).total_seconds(), 1),
            "total_requests": total,
            "server_errors": errors,
            "by_status": self._by_status(),
            "routes": routes,
            "counters": dict(self.counters),
            "slow_requests": list(self.slow_requests),
        }

    def _by_status(self) -> dict:
        out: Dict[str, int] = defaultdict(int)
        for (_, _, code), n in self.requests.items():
            out[str(code)] += n
        return dict(out)
