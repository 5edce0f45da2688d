"""Campaign coordinator.

Validates a campaign, spawns one thread per worker, and watches the stop
conditions:

  - sequence budget (``test_limit``) exhausted
  - wall-clock ``timeout`` elapsed
  - every property/call/assertion test resolved, when ``stop_on_fail``
    is set or there are no optimization tests
  - ``cancel()`` called

On stop it joins the workers, finalises test states, persists
reproducers and returns a ``CampaignResult``.

Architecture::

    Campaign
     ├─ Worker-0  (executor + RNG(seed, 0) + corpus partition[0])
     ├─ Worker-1  (executor + RNG(seed, 1) + corpus partition[1])
     ├─ …
     └─ shared: CoverageTracker, CorpusManager, TestOracle, EventLog, budget
"""

from __future__ import annotations

import logging
import random
import threading
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from pydantic import ValidationError

from propfuzz.core.config import CampaignConfig
from propfuzz.core.errors import ConfigurationError, CorpusIOError
from propfuzz.fuzzer.abi import FunctionSignature
from propfuzz.fuzzer.corpus import CorpusManager, CorpusOrigin, CorpusStore
from propfuzz.fuzzer.coverage import CoverageTracker
from propfuzz.fuzzer.dictionary import GenDict
from propfuzz.fuzzer.events import CampaignEvent, EventLog
from propfuzz.fuzzer.executor import ExecutorFactory
from propfuzz.fuzzer.generator import TxGenerator
from propfuzz.fuzzer.oracle import FuzzTest, TestKind, TestOracle, TestStatus
from propfuzz.fuzzer.transactions import Sequence, sequence_to_json
from propfuzz.fuzzer.worker import (
    SequenceBudget,
    SharedState,
    Worker,
    WorkerState,
    derive_seed,
)

logger = logging.getLogger(__name__)


# ── Results ──────────────────────────────────────────────────────────────────


@dataclass
class CampaignResult:
    """Final outcome of a campaign."""
    campaign_id: str
    seed: int
    tests: list[FuzzTest] = field(default_factory=list)
    coverage_points: int = 0
    code_objects: int = 0
    corpus_size: int = 0
    gas_info: dict[str, tuple[int, Sequence]] = field(default_factory=dict)
    events: list[CampaignEvent] = field(default_factory=list)
    sequences_executed: int = 0
    elapsed_sec: float = 0.0
    stop_reason: str = ""
    worker_stats: list[dict[str, Any]] = field(default_factory=list)

    def test(self, name: str) -> FuzzTest:
        for t in self.tests:
            if t.name == name:
                return t
        raise KeyError(name)

    @property
    def failed_tests(self) -> list[FuzzTest]:
        return [t for t in self.tests if t.state.status is TestStatus.SOLVED and t.is_boolean]

    def to_dict(self) -> dict[str, Any]:
        return {
            "campaign_id": self.campaign_id,
            "seed": self.seed,
            "tests": [t.to_dict() for t in self.tests],
            "coverage": {
                "unique_points": self.coverage_points,
                "unique_code_objects": self.code_objects,
            },
            "corpus_size": self.corpus_size,
            "gas": {
                sig: {"max_gas": gas, "sequence": sequence_to_json(seq)}
                for sig, (gas, seq) in self.gas_info.items()
            },
            "sequences_executed": self.sequences_executed,
            "elapsed_sec": round(self.elapsed_sec, 2),
            "stop_reason": self.stop_reason,
            "events": len(self.events),
            "worker_stats": self.worker_stats,
        }


# ── Campaign ─────────────────────────────────────────────────────────────────


class Campaign:
    """Coordinate N fuzzing workers over shared feedback state.

    Usage::

        campaign = Campaign(
            CampaignConfig.quick(workers=4, seed=7),
            load_signatures(abi),
            [FuzzTest.property_test("balance_non_negative", lambda s: s.balance >= 0)],
            executor_factory=lambda: MyVmExecutor(bytecode),
        )
        result = campaign.run()
    """

    def __init__(
        self,
        config: CampaignConfig | Mapping[str, Any],
        signatures: Iterable[FunctionSignature | Mapping[str, Any]],
        tests: Iterable[FuzzTest],
        executor_factory: ExecutorFactory,
        constants: Iterable[Any] = (),
        campaign_id: str | None = None,
    ) -> None:
        self.config = self._validate_config(config)
        self.signatures = self._validate_signatures(signatures)
        self.tests = self._validate_tests(list(tests))
        self.campaign_id = campaign_id or uuid.uuid4().hex[:12]
        self.seed = (
            self.config.seed
            if self.config.seed is not None
            else random.SystemRandom().getrandbits(32)
        )
        self._factory = executor_factory
        self._constants = list(constants)

        self.tracker = CoverageTracker()
        self.corpus = CorpusManager(max_size=self.config.corpus_max_size)
        self.oracle = TestOracle(self.tests, shrink_limit=self.config.shrink_limit)
        self.events = EventLog(campaign_id=self.campaign_id)
        self.budget = SequenceBudget(self.config.test_limit)
        self.store = CorpusStore(self.config.corpus_dir) if self.config.corpus_dir else None

        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._workers: list[Worker] = []
        self._threads: list[threading.Thread] = []
        self._started_at: float | None = None
        self._finished_at: float | None = None
        self._stop_reason = ""

    # ── Validation ───────────────────────────────────────────────────

    @staticmethod
    def _validate_config(config: CampaignConfig | Mapping[str, Any]) -> CampaignConfig:
        if isinstance(config, CampaignConfig):
            return config
        try:
            return CampaignConfig.model_validate(dict(config))
        except ValidationError as exc:
            raise ConfigurationError.from_validation_error(exc, context="campaign config") from exc

    @staticmethod
    def _validate_signatures(
        signatures: Iterable[FunctionSignature | Mapping[str, Any]],
    ) -> list[FunctionSignature]:
        result: list[FunctionSignature] = []
        for entry in signatures:
            if isinstance(entry, FunctionSignature):
                result.append(entry)
                continue
            try:
                result.append(FunctionSignature.model_validate(dict(entry)))
            except ValidationError as exc:
                raise ConfigurationError.from_validation_error(
                    exc, context=f"signature {entry.get('name')!r}"
                ) from exc
        seen: set[str] = set()
        for sig in result:
            if sig.signature in seen:
                raise ConfigurationError(f"Duplicate signature: {sig.signature}")
            seen.add(sig.signature)
        return result

    @staticmethod
    def _validate_tests(tests: list[FuzzTest]) -> list[FuzzTest]:
        names: set[str] = set()
        for test in tests:
            if test.name in names:
                raise ConfigurationError(f"Duplicate test name: {test.name}")
            names.add(test.name)
            needs_check = test.kind in (TestKind.PROPERTY, TestKind.CALL, TestKind.OPTIMIZATION)
            if needs_check and not callable(test.check):
                raise ConfigurationError(
                    f"Test {test.name} ({test.kind.value}) has no callable check"
                )
        return tests

    # ── Run ──────────────────────────────────────────────────────────

    def run(self) -> CampaignResult:
        """Run the campaign to completion (blocking)."""
        with self._lock:
            if self._started_at is not None:
                raise RuntimeError("campaign already started")
            self._started_at = time.monotonic()

        cfg = self.config
        logger.info(
            "Starting campaign %s: %d workers, seed %d, test_limit %d, seq_len %d",
            self.campaign_id, cfg.workers, self.seed, cfg.test_limit, cfg.seq_len,
        )

        shared = SharedState(
            config=cfg,
            generator=TxGenerator(self.signatures, cfg.tx, cfg.dict_freq),
            tracker=self.tracker,
            corpus=self.corpus,
            oracle=self.oracle,
            events=self.events,
            budget=self.budget,
            stop=self._stop,
            store=self.store,
        )

        # Partition persisted corpus round-robin
        partitions: list[list[Sequence]] = [[] for _ in range(cfg.workers)]
        for i, seq in enumerate(self._load_persisted()):
            partitions[i % cfg.workers].append(seq)

        base_dict = GenDict.with_constants(self.seed, self._constants)
        self._workers = [
            Worker(
                WorkerState(
                    worker_id=i,
                    gen_dict=base_dict.copy(),
                    rng=random.Random(derive_seed(self.seed, i)),
                    seed_queue=partitions[i],
                ),
                shared,
                self._factory,
            )
            for i in range(cfg.workers)
        ]
        self._threads = [
            threading.Thread(target=w.run, name=f"propfuzz-worker-{w.worker_id}", daemon=True)
            for w in self._workers
        ]
        for t in self._threads:
            t.start()

        reason = self._wait_for_stop()
        self._stop.set()
        for t in self._threads:
            t.join()

        self.oracle.finalize()
        self._persist_reproducers()
        self._finished_at = time.monotonic()
        self._stop_reason = reason

        result = self._build_result()
        logger.info(
            "Campaign %s finished (%s): %d sequences, %d coverage points, corpus %d in %.1fs",
            self.campaign_id, reason, result.sequences_executed,
            result.coverage_points, result.corpus_size, result.elapsed_sec,
        )
        return result

    def cancel(self) -> None:
        """Request a cooperative stop; workers finish their current sequence."""
        with self._lock:
            if not self._stop_reason:
                self._stop_reason = "cancelled"
        self._stop.set()

    def _wait_for_stop(self) -> str:
        cfg = self.config
        stop_when_resolved = cfg.stop_on_fail or not self.oracle.has_optimization_tests()
        while True:
            if self._stop.wait(cfg.poll_interval):
                return self._stop_reason or "cancelled"
            if stop_when_resolved and self.oracle.all_resolved():
                return "all tests resolved"
            if not any(t.is_alive() for t in self._threads):
                return "test limit reached" if self.budget.exhausted else "all workers stopped"
            if cfg.timeout is not None and self.elapsed() >= cfg.timeout:
                return "timeout"

    def _load_persisted(self) -> list[Sequence]:
        if self.store is None:
            return []
        return self.store.load(CorpusOrigin.COVERAGE)

    def _persist_reproducers(self) -> None:
        for test in self.oracle.snapshot():
            if test.state.status is not TestStatus.SOLVED or not test.reproducer:
                continue
            self.corpus.offer(test.reproducer, reproducer=True)
            if self.store is None:
                continue
            try:
                self.store.save(test.reproducer, CorpusOrigin.REPRODUCER)
            except CorpusIOError as exc:
                logger.warning("%s", exc.message)

    # ── Reporting ────────────────────────────────────────────────────

    def elapsed(self) -> float:
        if self._started_at is None:
            return 0.0
        end = self._finished_at if self._finished_at is not None else time.monotonic()
        return end - self._started_at

    def merged_gas_info(self) -> dict[str, tuple[int, Sequence]]:
        """Max gas per function across all workers."""
        merged: dict[str, tuple[int, Sequence]] = {}
        for w in self._workers:
            for sig, (gas, seq) in dict(w.state.gas_info).items():
                if sig not in merged or gas > merged[sig][0]:
                    merged[sig] = (gas, seq)
        return merged

    def status(self) -> dict[str, Any]:
        """Live aggregate view, safe to call from another thread."""
        return {
            "campaign_id": self.campaign_id,
            "running": self._started_at is not None and self._finished_at is None,
            "elapsed_sec": round(self.elapsed(), 2),
            "seed": self.seed,
            "sequences_executed": sum(w.state.sequences_executed for w in self._workers),
            "coverage_points": self.tracker.total_unique_points(),
            "code_objects": self.tracker.unique_code_objects(),
            "corpus_size": self.corpus.size(),
            "tests": {t.name: str(t.state) for t in self.oracle.snapshot()},
            "workers": [w.state.to_dict() for w in self._workers],
        }

    def _build_result(self) -> CampaignResult:
        return CampaignResult(
            campaign_id=self.campaign_id,
            seed=self.seed,
            tests=self.oracle.snapshot(),
            coverage_points=self.tracker.total_unique_points(),
            code_objects=self.tracker.unique_code_objects(),
            corpus_size=self.corpus.size(),
            gas_info=self.merged_gas_info(),
            events=self.events.events(),
            sequences_executed=sum(w.state.sequences_executed for w in self._workers),
            elapsed_sec=self.elapsed(),
            stop_reason=self._stop_reason,
            worker_stats=[w.state.to_dict() for w in self._workers],
        )
