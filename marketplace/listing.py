"""
In-memory filtering, sorting and pagination.

The store only applies a single equality predicate, so every listing endpoint
fetches a bounded window and finishes the job here.
"""
import math
from datetime import datetime
from decimal import Decimal
from typing import Any, Callable, Iterable, List, Optional, Sequence


def matches_search(doc: dict, term: Optional[str], fields: Sequence[str]) -> bool:
    if not term:
        return True
    needle = term.lower()
    for field in fields:
        value = doc.get(field)
        if isinstance(value, str) and needle in value.lower():
            return True
    return False


def in_range(value: Any, low: Optional[float] = None, high: Optional[float] = None) -> bool:
    if low is None and high is None:
        return True
    if not isinstance(value, (int, float, Decimal)) or isinstance(value, bool):
        return False
    if low is not None and value < low:
        return False
    if high is not None and value > high:
        return False
    return True


def in_date_range(value: Any, start: Optional[datetime] = None, end: Optional[datetime] = None) -> bool:
    if start is None and end is None:
        return True
    if not isinstance(value, datetime):
        return False
    if start is not None and value < start:
        return False
    if end is not None and value > end:
        return False
    return True


def filter_documents(docs: Iterable[dict], *predicates: Callable[[dict], bool]) -> List[dict]:
    return [doc for doc in docs if all(p(doc) for p in predicates)]


def _sort_key(value: Any):
    # Numbers, datetimes and strings each compare within their own kind;
    # mixed kinds fall back to a fixed kind order.
    if isinstance(value, bool):
        return (1, int(value))
    if isinstance(value, (int, float, Decimal)):
        return (1, float(value))
    if isinstance(value, datetime):
        return (2, value.timestamp() if value.tzinfo else (value - datetime(1970, 1, 1)).total_seconds())
    if isinstance(value, str):
        return (3, value.casefold())
    return (4, str(value))


def sort_documents(docs: List[dict], sort_by: str = "created_at", sort_order: str = "desc") -> List[dict]:
    """Stable sort; documents missing the field always go last."""
    present = [d for d in docs if d.get(sort_by) is not None]
    missing = [d for d in docs if d.get(sort_by) is None]
    present.sort(key=lambda d: _sort_key(d[sort_by]), reverse=(sort_order == "desc"))
    return present + missing


def paginate(docs: List[Any], page: int = 1, limit: int = 20) -> dict:
    page = max(1, page)
    limit = max(1, limit)
    total = len(docs)
    start = (page - 1) * limit
    end = start + limit
    return {
        "items": docs[start:end],
        "total": total,
        "total_pages": math.ceil(total / limit) if total else 0,
        "current_page": page,
        "has_next_page": end < total,
        "has_prev_page": page > 1,
    }


def fetch_window(page: int, limit: int, cap: int) -> int:
    """Over-fetch size for a page: three pages' worth up to the current one, capped."""
    return min(max(1, page) * max(1, limit) * 3, cap)
