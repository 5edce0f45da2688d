"""Corpus management.

``CorpusManager`` holds the in-memory set of interesting sequences shared
by all workers: sequences that produced new coverage, and reproducers of
falsified tests. Inserts are atomic and deduplicated by content hash.
When the corpus grows past ``max_size`` the least productive coverage
entries are evicted; reproducers are never evicted.

``CorpusStore`` persists sequences as one JSON file per sequence:

    <dir>/coverage/<hash>.json
    <dir>/reproducers/<hash>.json
"""

from __future__ import annotations

import json
import logging
import random
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from propfuzz.core.errors import CorpusIOError
from propfuzz.fuzzer.transactions import (
    Sequence,
    sequence_from_json,
    sequence_hash,
    sequence_to_json,
)

logger = logging.getLogger(__name__)


class CorpusOrigin(str, Enum):
    """Why a sequence is in the corpus."""
    COVERAGE = "coverage"
    REPRODUCER = "reproducers"


@dataclass(frozen=True)
class CorpusEntry:
    sequence: Sequence
    hash: str
    origin: CorpusOrigin
    novel_points: int
    order: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "hash": self.hash,
            "origin": self.origin.value,
            "length": len(self.sequence),
            "novel_points": self.novel_points,
            "order": self.order,
        }


class CorpusManager:
    """Thread-safe corpus of coverage-increasing sequences and reproducers."""

    def __init__(self, max_size: int = 10_000) -> None:
        self.max_size = max_size
        self._lock = threading.Lock()
        self._entries: dict[str, CorpusEntry] = {}
        self._counter = 0
        self._evictions = 0

    def offer(
        self,
        seq: Sequence,
        novel: bool = False,
        reproducer: bool = False,
        novel_points: int = 0,
    ) -> bool:
        """Offer a sequence; returns True if it was inserted.

        Rejected when empty, already present (by hash), or neither novel
        nor a reproducer.
        """
        if not seq or not (novel or reproducer):
            return False
        digest = sequence_hash(seq)
        origin = CorpusOrigin.REPRODUCER if reproducer else CorpusOrigin.COVERAGE
        with self._lock:
            if digest in self._entries:
                return False
            self._counter += 1
            self._entries[digest] = CorpusEntry(
                sequence=tuple(seq),
                hash=digest,
                origin=origin,
                novel_points=novel_points,
                order=self._counter,
            )
            if len(self._entries) > self.max_size:
                self._evict()
        return True

    def sample(self, rng: random.Random) -> Sequence:
        """Pick an entry, favouring shorter and more recent sequences.

        Returns an empty tuple when the corpus is empty.
        """
        with self._lock:
            entries = sorted(self._entries.values(), key=lambda e: e.order)
        if not entries:
            return ()
        n = len(entries)
        weights = [(1.0 + i / n) / (1 + len(e.sequence)) for i, e in enumerate(entries)]
        return rng.choices(entries, weights=weights, k=1)[0].sequence

    def size(self) -> int:
        with self._lock:
            return len(self._entries)

    def entries(self) -> list[CorpusEntry]:
        """Snapshot of all entries in insertion order."""
        with self._lock:
            return sorted(self._entries.values(), key=lambda e: e.order)

    def __contains__(self, seq: Sequence) -> bool:
        digest = sequence_hash(seq)
        with self._lock:
            return digest in self._entries

    def _evict(self) -> None:
        """Evict the least productive coverage entries. Caller holds the lock."""
        excess = len(self._entries) - self.max_size
        candidates = sorted(
            (e for e in self._entries.values() if e.origin is CorpusOrigin.COVERAGE),
            key=lambda e: (e.novel_points, e.order),
        )
        for entry in candidates[:excess]:
            del self._entries[entry.hash]
            self._evictions += 1

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            reproducers = sum(
                1 for e in self._entries.values() if e.origin is CorpusOrigin.REPRODUCER
            )
            return {
                "size": len(self._entries),
                "reproducers": reproducers,
                "coverage": len(self._entries) - reproducers,
                "evictions": self._evictions,
            }


class CorpusStore:
    """File-per-sequence JSON persistence for a corpus directory."""

    KINDS = tuple(o.value for o in CorpusOrigin)

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    def _kind_dir(self, kind: str | CorpusOrigin) -> Path:
        value = kind.value if isinstance(kind, CorpusOrigin) else kind
        if value not in self.KINDS:
            raise ValueError(f"unknown corpus kind: {kind!r}")
        return self.directory / value

    def save(self, seq: Sequence, kind: str | CorpusOrigin = CorpusOrigin.COVERAGE) -> Path:
        """Write a sequence to ``<dir>/<kind>/<hash>.json``."""
        path = self._kind_dir(kind) / f"{sequence_hash(seq)}.json"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(sequence_to_json(seq), indent=2))
        except OSError as exc:
            raise CorpusIOError(
                f"Failed to write corpus file {path}",
                details=[{"path": str(path), "error": str(exc)}],
            ) from exc
        return path

    def load(self, kind: str | CorpusOrigin = CorpusOrigin.COVERAGE) -> list[Sequence]:
        """Read every stored sequence of a kind, sorted by file name.

        Unreadable or malformed files are logged and skipped.
        """
        directory = self._kind_dir(kind)
        if not directory.is_dir():
            return []
        sequences: list[Sequence] = []
        for path in sorted(directory.glob("*.json")):
            try:
                data = json.loads(path.read_text())
                seq = sequence_from_json(data)
            except (OSError, ValueError, KeyError, TypeError, AttributeError) as exc:
                logger.warning("Skipping unreadable corpus file %s: %s", path, exc)
                continue
            if seq:
                sequences.append(seq)
        logger.info("Loaded %d %s sequences from %s", len(sequences), directory.name, self.directory)
        return sequences
