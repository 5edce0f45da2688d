"""Tests for the shared coverage tracker."""

from __future__ import annotations

import threading

from propfuzz.fuzzer.coverage import CoverageTracker


class TestCoverageTracker:
    """Coverage only grows and novelty is reported exactly once."""

    def test_record_reports_novelty(self):
        tracker = CoverageTracker()
        assert tracker.record("a", [(1, "jump"), (2, "op")]) is True
        assert tracker.record("a", [(1, "jump")]) is False
        assert tracker.record("a", [(1, "jump"), (3, "op")]) is True
        assert tracker.total_unique_points() == 3

    def test_record_many_counts_new_points(self):
        tracker = CoverageTracker()
        assert tracker.record_many({"a": {(1, "x")}, "b": {(1, "x"), (2, "y")}}) == 3
        assert tracker.record_many({"a": {(1, "x")}, "b": {(3, "z")}}) == 1
        assert tracker.unique_code_objects() == 2

    def test_same_point_different_code_objects(self):
        tracker = CoverageTracker()
        tracker.record("a", [(1, "x")])
        assert tracker.record("b", [(1, "x")]) is True

    def test_monotonic(self):
        tracker = CoverageTracker()
        totals = []
        for i in range(20):
            tracker.record_many({"c": {(i % 7, "op")}})
            totals.append(tracker.total_unique_points())
        assert totals == sorted(totals)
        assert totals[-1] == 7

    def test_snapshot_is_a_copy(self):
        tracker = CoverageTracker()
        tracker.record("a", [(1, "x")])
        snap = tracker.snapshot()
        snap["a"].add((99, "y"))
        assert tracker.total_unique_points() == 1
        assert (99, "y") not in tracker.snapshot()["a"]

    def test_empty_report_is_not_a_code_object(self):
        tracker = CoverageTracker()
        assert tracker.record("a", []) is False
        assert tracker.unique_code_objects() == 0

    def test_concurrent_first_discoverer_unique(self):
        """Exactly one thread is told each point is new."""
        tracker = CoverageTracker()
        points = [(i, "op") for i in range(200)]
        barrier = threading.Barrier(8)
        new_counts: list[int] = []
        lock = threading.Lock()

        def worker():
            barrier.wait()
            n = sum(tracker.record_many({"c": {p}}) for p in points)
            with lock:
                new_counts.append(n)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sum(new_counts) == len(points)
        assert tracker.total_unique_points() == len(points)

    def test_to_dict(self):
        tracker = CoverageTracker()
        tracker.record_many({"a": {(1, "x"), (2, "x")}})
        assert tracker.to_dict()["points_per_code_object"] == {"a": 2}
