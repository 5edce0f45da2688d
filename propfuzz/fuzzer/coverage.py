"""Shared coverage map.

Coverage is keyed by code identity (code hash) and holds the set of
``(pc, op_class)`` points seen across all workers. Points are only ever
added. Each call merges under one lock, so the first worker to report a
point is the one told it was new.
"""

from __future__ import annotations

import threading
from typing import Any, Iterable, Mapping

CoveragePoint = tuple[int, str]
CoverageMap = dict[str, set[CoveragePoint]]


class CoverageTracker:
    """Thread-safe union of coverage reported by every worker."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._points: CoverageMap = {}
        self._total = 0

    def record(self, code_id: str, points: Iterable[CoveragePoint]) -> bool:
        """Merge points for one code object. Returns True if new coverage found."""
        return self._merge({code_id: points}) > 0

    def record_many(self, coverage: Mapping[str, Iterable[CoveragePoint]]) -> int:
        """Merge a whole execution's coverage. Returns the number of new points."""
        return self._merge(coverage)

    def _merge(self, coverage: Mapping[str, Iterable[CoveragePoint]]) -> int:
        incoming = {code_id: set(points) for code_id, points in coverage.items()}
        with self._lock:
            added = 0
            for code_id, points in incoming.items():
                known = self._points.setdefault(code_id, set())
                fresh = points - known
                if fresh:
                    known |= fresh
                    added += len(fresh)
            self._total += added
            return added

    def total_unique_points(self) -> int:
        with self._lock:
            return self._total

    def unique_code_objects(self) -> int:
        with self._lock:
            return sum(1 for points in self._points.values() if points)

    def snapshot(self) -> CoverageMap:
        """Copy of the current map, safe to read without the lock."""
        with self._lock:
            return {code_id: set(points) for code_id, points in self._points.items()}

    def to_dict(self) -> dict[str, Any]:
        with self._lock:
            return {
                "unique_points": self._total,
                "unique_code_objects": sum(1 for p in self._points.values() if p),
                "points_per_code_object": {
                    code_id: len(points) for code_id, points in self._points.items()
                },
            }
