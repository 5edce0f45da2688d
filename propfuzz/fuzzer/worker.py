"""Fuzzing worker loop.

One ``Worker`` runs per thread. Each owns its executor, VM start state,
RNG and generation dictionary; the coverage tracker, corpus, oracle,
event log and sequence budget are shared through ``SharedState``.

Per iteration::

    claim budget ─► replayed seed | corpus sample / empty
                 ─► mutate 1..max_mutations times, fit to seq_len
                 ─► execute on the worker's start state
                 ─► coverage ─► corpus (when novel) ─► store
                 ─► gas info, dictionary learning
                 ─► oracle ─► shrink owned triggers

Exceptions raised while building or running the executor are internal
faults: the worker logs them, builds a fresh executor, resumes any shrink
it still owns and carries on, up to ``max_worker_restarts`` times.
"""

from __future__ import annotations

import hashlib
import logging
import random
import threading
from dataclasses import dataclass, field
from typing import Any

from propfuzz.core.config import CampaignConfig
from propfuzz.core.errors import CorpusIOError, ExecutionFault
from propfuzz.core.logging import worker_logger
from propfuzz.fuzzer.corpus import CorpusManager, CorpusOrigin, CorpusStore
from propfuzz.fuzzer.coverage import CoverageTracker
from propfuzz.fuzzer.dictionary import GenDict
from propfuzz.fuzzer.events import EventKind, EventLog
from propfuzz.fuzzer.executor import ExecutionResult, Executor, ExecutorFactory
from propfuzz.fuzzer.generator import TxGenerator
from propfuzz.fuzzer.mutation_engine import SequenceMutator
from propfuzz.fuzzer.oracle import TestKind, TestOracle, Trigger
from propfuzz.fuzzer.shrinker import Shrinker
from propfuzz.fuzzer.transactions import Sequence

logger = logging.getLogger(__name__)


def derive_seed(seed: int, worker_id: int) -> int:
    """Independent, reproducible per-worker seed."""
    digest = hashlib.blake2b(f"{seed}:{worker_id}".encode(), digest_size=8).digest()
    return int.from_bytes(digest, "big")


class SequenceBudget:
    """Campaign-wide count of sequences that may still be executed."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        self._lock = threading.Lock()
        self._claimed = 0

    def claim(self) -> bool:
        """Reserve one sequence; False once the budget is spent."""
        with self._lock:
            if self._claimed >= self.limit:
                return False
            self._claimed += 1
            return True

    @property
    def claimed(self) -> int:
        with self._lock:
            return self._claimed

    @property
    def exhausted(self) -> bool:
        with self._lock:
            return self._claimed >= self.limit


@dataclass
class SharedState:
    """Structures shared by every worker of a campaign."""
    config: CampaignConfig
    generator: TxGenerator
    tracker: CoverageTracker
    corpus: CorpusManager
    oracle: TestOracle
    events: EventLog
    budget: SequenceBudget
    stop: threading.Event = field(default_factory=threading.Event)
    store: CorpusStore | None = None


@dataclass
class WorkerState:
    """Worker-private state."""
    worker_id: int
    gen_dict: GenDict
    rng: random.Random
    gas_info: dict[str, tuple[int, Sequence]] = field(default_factory=dict)
    seed_queue: list[Sequence] = field(default_factory=list)
    sequences_executed: int = 0
    restarts: int = 0
    active: bool = True
    error: str | None = None

    def update_gas(self, seq: Sequence, result: ExecutionResult) -> None:
        """Keep the max gas per function and the prefix that reached it."""
        for i, (tx, tx_result) in enumerate(zip(seq, result.tx_results)):
            if tx.is_wait:
                continue
            best = self.gas_info.get(tx.signature)
            if best is None or tx_result.gas_used > best[0]:
                self.gas_info[tx.signature] = (tx_result.gas_used, tuple(seq[: i + 1]))

    def to_dict(self) -> dict[str, Any]:
        return {
            "worker_id": self.worker_id,
            "sequences_executed": self.sequences_executed,
            "restarts": self.restarts,
            "active": self.active,
            "error": self.error,
            "dictionary_size": self.gen_dict.size,
        }


class Worker:
    """Runs the fuzz loop for one ``WorkerState`` until stopped."""

    def __init__(
        self,
        state: WorkerState,
        shared: SharedState,
        executor_factory: ExecutorFactory,
    ) -> None:
        self.state = state
        self.shared = shared
        self.config = shared.config
        self._factory = executor_factory
        self._executor: Executor | None = None
        self._start_state: Any = None
        self._pending: list[Trigger] = []
        self._mutator = SequenceMutator(shared.generator, state.gen_dict)
        self._shrinker = Shrinker(
            limit=self.config.shrink_limit,
            gen_dict=state.gen_dict,
            first_sender=self.config.tx.senders[0],
        )
        self.log = worker_logger(__name__, state.worker_id, shared.events.campaign_id)

    @property
    def worker_id(self) -> int:
        return self.state.worker_id

    # ── Lifecycle ────────────────────────────────────────────────────

    def run(self) -> None:
        """Thread entry point."""
        reason = "stopped"
        try:
            while True:
                try:
                    self._reset_executor()
                    self._shrink_pending()
                    self._fuzz_loop()
                    reason = "budget exhausted" if self.shared.budget.exhausted else "stopped"
                    return
                except ExecutionFault as exc:
                    self.state.restarts += 1
                    self.state.error = exc.message
                    self.log.exception("Executor fault (restart %d)", self.state.restarts)
                    if self.state.restarts > self.config.max_worker_restarts:
                        reason = f"restart limit reached: {self.state.error}"
                        return
                    self.shared.events.append(
                        self.worker_id,
                        EventKind.WORKER_RESTARTED,
                        f"Worker restarted after fault: {self.state.error}",
                        restarts=self.state.restarts,
                    )
        finally:
            self.state.active = False
            self.shared.oracle.release(self.worker_id)
            self.shared.events.append(
                self.worker_id,
                EventKind.WORKER_STOPPED,
                f"Worker stopped ({reason}) after {self.state.sequences_executed} sequences",
                reason=reason,
                sequences=self.state.sequences_executed,
            )

    def _reset_executor(self) -> None:
        try:
            executor = self._factory()
            start_state = executor.initial_state()
        except Exception as exc:
            raise ExecutionFault(
                f"executor setup raised {type(exc).__name__}: {exc}",
                details=[{"worker_id": self.worker_id}],
            ) from exc
        self._executor = executor
        self._start_state = start_state

    def _fuzz_loop(self) -> None:
        while not self.shared.stop.is_set():
            if not self.shared.budget.claim():
                return
            self.run_sequence(self._next_sequence())

    # ── Sequence construction ────────────────────────────────────────

    def _next_sequence(self) -> Sequence:
        if self.state.seed_queue:
            return self.state.seed_queue.pop(0)

        rng = self.state.rng
        corpus = self.shared.corpus
        seq: Sequence = ()
        if rng.random() < self.config.corpus_mutation_prob:
            seq = corpus.sample(rng)
        donor = corpus.sample(rng) if corpus.size() else None
        for _ in range(rng.randint(1, self.config.max_mutations)):
            seq = self._mutator.mutate(seq, rng, donor=donor)
        return self._mutator.fit(seq, self.config.seq_len, rng)

    # ── Execution ────────────────────────────────────────────────────

    def _execute(self, seq: Sequence) -> ExecutionResult:
        if self._executor is None:
            raise ExecutionFault("executor used before setup", details=[{"worker_id": self.worker_id}])
        try:
            return self._executor.execute(self._start_state, seq)
        except Exception as exc:
            raise ExecutionFault(
                f"executor raised {type(exc).__name__}: {exc}",
                details=[{"worker_id": self.worker_id, "length": len(seq)}],
            ) from exc

    def run_sequence(self, seq: Sequence) -> ExecutionResult:
        """Execute one sequence and feed every consumer of its result."""
        result = self._execute(seq)
        self.state.sequences_executed += 1
        executed = result.executed(seq)

        if result.aborted:
            self.shared.events.append(
                self.worker_id,
                EventKind.EXECUTION_ABORTED,
                f"Execution aborted after {len(executed)}/{len(seq)} txs",
                executed=len(executed),
            )

        new_points = self.shared.tracker.record_many(result.coverage)
        if new_points:
            self._on_new_coverage(executed, new_points)

        self.state.update_gas(executed, result)
        for tx_result in result.tx_results:
            if tx_result.success and tx_result.return_value is not None:
                self.state.gen_dict.learn(tx_result.return_value)

        evaluation = self.shared.oracle.evaluate(self.worker_id, seq, result)
        for name, reason in evaluation.failures:
            self.shared.events.append(
                self.worker_id, EventKind.TEST_FAILED,
                f"Test {name} could not be evaluated: {reason}",
                test=name, reason=reason,
            )
        for trigger in evaluation.triggers:
            self._announce(trigger)
        self._pending.extend(evaluation.triggers)
        self._shrink_pending()
        return result

    def _on_new_coverage(self, executed: Sequence, new_points: int) -> None:
        inserted = self.shared.corpus.offer(executed, novel=True, novel_points=new_points)
        total = self.shared.tracker.total_unique_points()
        self.shared.events.append(
            self.worker_id, EventKind.NEW_COVERAGE,
            f"New coverage: +{new_points} points ({total} total), corpus {self.shared.corpus.size()}",
            new_points=new_points, total_points=total, length=len(executed),
        )
        if inserted and self.shared.store is not None:
            try:
                self.shared.store.save(executed, CorpusOrigin.COVERAGE)
            except CorpusIOError as exc:
                self.log.warning("%s", exc.message)

    # ── Shrinking ────────────────────────────────────────────────────

    def _announce(self, trigger: Trigger) -> None:
        if trigger.kind is TestKind.OPTIMIZATION:
            self.shared.events.append(
                self.worker_id, EventKind.TEST_OPTIMIZED,
                f"Test {trigger.test_name} reached new max value {trigger.value}",
                test=trigger.test_name, value=trigger.value, length=len(trigger.reproducer),
            )
        else:
            self.shared.events.append(
                self.worker_id, EventKind.TEST_FALSIFIED,
                f"Test {trigger.test_name} falsified by {len(trigger.reproducer)} txs",
                test=trigger.test_name, length=len(trigger.reproducer),
            )

    def _shrink_pending(self) -> None:
        """Shrink queued triggers in order; a fault leaves the rest queued for the restart."""
        while self._pending:
            trigger = self._pending[0]
            current = self.shared.oracle.current_reproducer(self.worker_id, trigger)
            if current is not None:
                self._shrink(trigger, current)
            self._pending.pop(0)

    def _shrink(self, trigger: Trigger, reproducer: Sequence) -> None:
        oracle = self.shared.oracle
        last_events: list[str] = []
        last_best = [reproducer]

        def oracle_check(candidate: Sequence) -> bool:
            result = self._execute(candidate)
            ok = oracle.reproduces(trigger, candidate, result)
            if ok:
                last_events[:] = result.events
            return ok

        def on_step(attempts: int, best: Sequence) -> bool:
            if best is not last_best[0]:
                last_best[0] = best
                self.shared.events.append(
                    self.worker_id, EventKind.SHRINK_PROGRESS,
                    f"Shrinking {trigger.test_name}: {len(best)} txs, "
                    f"{attempts}/{self.config.shrink_limit} attempts",
                    test=trigger.test_name, attempts=attempts, length=len(best),
                )
            return oracle.shrink_progress(self.worker_id, trigger, attempts, best)

        result = self._shrinker.shrink(
            reproducer, oracle_check, self.state.rng, on_step=on_step, cancel=self.shared.stop,
        )
        if result.cancelled:
            return
        if not result.reproduced:
            self.log.warning(
                "Reproducer for %s did not replay; keeping it unshrunk", trigger.test_name,
            )
        committed = oracle.shrink_done(
            self.worker_id, trigger, result.sequence, last_events if result.reproduced else None,
        )
        if committed and not trigger.solved:
            self.shared.events.append(
                self.worker_id, EventKind.TEST_SOLVED,
                f"Test {trigger.test_name} solved with {len(result.sequence)} txs "
                f"after {result.attempts} shrink attempts",
                test=trigger.test_name, length=len(result.sequence), attempts=result.attempts,
            )
