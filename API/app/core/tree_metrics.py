"""In-memory tree write metrics: outcome counts and latency percentiles for GET /metrics/tree."""
from __future__ import annotations

from collections import Counter, deque
from threading import Lock

_WRITE_WINDOW = 500

_lock = Lock()
_outcomes: Counter[str] = Counter()
_durations_sec: deque[float] = deque(maxlen=_WRITE_WINDOW)


def record_tree_write(outcome: str, duration_sec: float) -> None:
    with _lock:
        _outcomes[outcome] += 1
        _durations_sec.append(max(0.0, float(duration_sec)))


def get_tree_metrics() -> dict:
    with _lock:
        outcomes = dict(_outcomes)
        values = list(_durations_sec)
    total = sum(outcomes.values())
    failed = total - outcomes.get("ok", 0)
    if not values:
        return {
            "tree_writes_total": total,
            "tree_write_outcomes": outcomes,
            "tree_write_failure_rate": 0.0,
            "tree_write_p50_ms": None,
            "tree_write_p95_ms": None,
        }
    sorted_ms = sorted(v * 1000 for v in values)
    n = len(sorted_ms)
    return {
        "tree_writes_total": total,
        "tree_write_outcomes": outcomes,
        "tree_write_failure_rate": round(failed / total, 4) if total else 0.0,
        "tree_write_p50_ms": round(sorted_ms[int((n - 1) * 0.50)], 2),
        "tree_write_p95_ms": round(sorted_ms[int((n - 1) * 0.95)], 2),
    }


def reset_tree_metrics() -> None:
    with _lock:
        _outcomes.clear()
        _durations_sec.clear()
