"""Test oracle and per-test state machine.

Every declared test has a kind (closed set) and a state:

    Open ──falsified / first improvement──► Large(0)
    Large(n) ──shrink attempt──► Large(n+1)          (n <= shrink_limit)
    Large(n) ──limit reached or fixed point──► Solved
    Open (boolean kinds) ──campaign end──► Passed
    any non-terminal ──predicate raised──► Failed(reason)

Passed and Failed are terminal. An optimization test that is Solved stays
Solved when a larger value turns up; the value and reproducer are replaced
and the new reproducer is shrunk in place.

Predicates run outside the oracle lock, against worker-private results.
State changes are applied under the lock, and only the worker that made
a test's triggering transition owns its shrink. Each replacement of a
reproducer bumps a per-test generation so stale shrink results are
discarded.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable

from propfuzz.core.errors import HarnessFault
from propfuzz.fuzzer.executor import ExecutionResult, TxResult
from propfuzz.fuzzer.transactions import Sequence, sequence_to_json

logger = logging.getLogger(__name__)


# ── Test Model ───────────────────────────────────────────────────────────────


class TestKind(str, Enum):
    __test__ = False

    PROPERTY = "property"
    CALL = "call"
    ASSERTION = "assertion"
    OPTIMIZATION = "optimization"
    EXPLORATION = "exploration"


BOOLEAN_KINDS = frozenset({TestKind.PROPERTY, TestKind.CALL, TestKind.ASSERTION})


class TestStatus(str, Enum):
    __test__ = False

    OPEN = "open"
    LARGE = "large"
    SOLVED = "solved"
    PASSED = "passed"
    FAILED = "failed"


@dataclass(frozen=True)
class TestState:
    """Immutable test state; ``shrinks`` is meaningful for LARGE only."""
    __test__ = False

    status: TestStatus = TestStatus.OPEN
    shrinks: int = 0
    reason: str = ""

    @classmethod
    def open(cls) -> TestState:
        return cls(TestStatus.OPEN)

    @classmethod
    def large(cls, n: int) -> TestState:
        return cls(TestStatus.LARGE, shrinks=n)

    @classmethod
    def solved(cls) -> TestState:
        return cls(TestStatus.SOLVED)

    @classmethod
    def passed(cls) -> TestState:
        return cls(TestStatus.PASSED)

    @classmethod
    def failed(cls, reason: str) -> TestState:
        return cls(TestStatus.FAILED, reason=reason)

    @property
    def is_terminal(self) -> bool:
        return self.status in (TestStatus.PASSED, TestStatus.FAILED)

    @property
    def is_resolved(self) -> bool:
        """Nothing left to do for a boolean test."""
        return self.status in (TestStatus.SOLVED, TestStatus.PASSED, TestStatus.FAILED)

    def __str__(self) -> str:
        if self.status is TestStatus.LARGE:
            return f"large({self.shrinks})"
        if self.status is TestStatus.FAILED:
            return f"failed({self.reason})"
        return self.status.value


@dataclass
class FuzzTest:
    """A declared test and its current outcome.

    ``check`` is the kind-specific callable: a state predicate (PROPERTY),
    a per-call predicate over ``TxResult`` (CALL) or an objective returning
    an int (OPTIMIZATION). ASSERTION tests match calls to ``signature``.
    """
    name: str
    kind: TestKind
    check: Callable[..., Any] | None = None
    signature: str | None = None
    state: TestState = field(default_factory=TestState.open)
    reproducer: Sequence = ()
    value: int | None = None
    events: list[str] = field(default_factory=list)
    generation: int = 0
    shrink_owner: int | None = None

    @classmethod
    def property_test(cls, name: str, predicate: Callable[[Any], bool]) -> FuzzTest:
        return cls(name=name, kind=TestKind.PROPERTY, check=predicate)

    @classmethod
    def call_test(cls, name: str, predicate: Callable[[TxResult], bool]) -> FuzzTest:
        return cls(name=name, kind=TestKind.CALL, check=predicate)

    @classmethod
    def assertion_test(cls, name: str, signature: str | None = None) -> FuzzTest:
        return cls(name=name, kind=TestKind.ASSERTION, signature=signature or name)

    @classmethod
    def optimization_test(cls, name: str, objective: Callable[[Any], int]) -> FuzzTest:
        return cls(name=name, kind=TestKind.OPTIMIZATION, check=objective)

    @classmethod
    def exploration_test(cls, name: str = "exploration") -> FuzzTest:
        return cls(name=name, kind=TestKind.EXPLORATION)

    @property
    def is_boolean(self) -> bool:
        return self.kind in BOOLEAN_KINDS

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind.value,
            "state": self.state.status.value,
            "shrinks": self.state.shrinks,
            "reason": self.state.reason or None,
            "value": self.value,
            "events": list(self.events),
            "reproducer": sequence_to_json(self.reproducer),
        }


# ── Evaluators ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Outcome:
    """Result of evaluating one test against one execution."""
    triggered: bool
    reproducer: Sequence = ()
    value: int | None = None


def _eval_property(test: FuzzTest, seq: Sequence, result: ExecutionResult) -> Outcome:
    if test.check(result.final_state):  # type: ignore[misc]
        return Outcome(False)
    return Outcome(True, result.executed(seq))


def _eval_call(test: FuzzTest, seq: Sequence, result: ExecutionResult) -> Outcome:
    for i, (tx, tx_result) in enumerate(zip(seq, result.tx_results)):
        if tx.is_wait:
            continue
        if not test.check(tx_result):  # type: ignore[misc]
            return Outcome(True, tuple(seq[: i + 1]))
    return Outcome(False)


def _eval_assertion(test: FuzzTest, seq: Sequence, result: ExecutionResult) -> Outcome:
    for i, (tx, tx_result) in enumerate(zip(seq, result.tx_results)):
        if tx_result.assertion_failed and _matches(test.signature, tx.signature):
            return Outcome(True, tuple(seq[: i + 1]))
    return Outcome(False)


def _matches(wanted: str | None, signature: str) -> bool:
    if not wanted:
        return True
    if "(" in wanted:
        return wanted == signature
    return signature.split("(", 1)[0] == wanted


def _eval_optimization(test: FuzzTest, seq: Sequence, result: ExecutionResult) -> Outcome:
    value = test.check(result.final_state)  # type: ignore[misc]
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"objective returned {type(value).__name__}, expected int")
    improved = test.value is None or value > test.value
    return Outcome(improved, result.executed(seq), value)


def _eval_exploration(test: FuzzTest, seq: Sequence, result: ExecutionResult) -> Outcome:
    return Outcome(False)


EVALUATORS: dict[TestKind, Callable[[FuzzTest, Sequence, ExecutionResult], Outcome]] = {
    TestKind.PROPERTY: _eval_property,
    TestKind.CALL: _eval_call,
    TestKind.ASSERTION: _eval_assertion,
    TestKind.OPTIMIZATION: _eval_optimization,
    TestKind.EXPLORATION: _eval_exploration,
}

_missing = set(TestKind) - set(EVALUATORS)
if _missing:
    raise RuntimeError(f"no evaluator for test kinds: {sorted(k.value for k in _missing)}")


def evaluate_test(test: FuzzTest, seq: Sequence, result: ExecutionResult) -> Outcome:
    """Run a test's evaluator, converting any exception into ``HarnessFault``."""
    try:
        return EVALUATORS[test.kind](test, seq, result)
    except Exception as exc:
        raise HarnessFault(
            f"{test.name}: {type(exc).__name__}: {exc}",
            details=[{"test": test.name, "kind": test.kind.value}],
        ) from exc


# ── Oracle ───────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Trigger:
    """A transition that the reporting worker now owns the shrink for."""
    test_name: str
    kind: TestKind
    reproducer: Sequence
    generation: int
    value: int | None = None
    solved: bool = False  # optimization test already Solved, shrink in place


@dataclass
class Evaluation:
    triggers: list[Trigger] = field(default_factory=list)
    failures: list[tuple[str, str]] = field(default_factory=list)


class TestOracle:
    """Shared, lock-guarded registry of tests and their states."""

    __test__ = False

    def __init__(self, tests: list[FuzzTest], shrink_limit: int) -> None:
        names = [t.name for t in tests]
        if len(set(names)) != len(names):
            raise ValueError("test names must be unique")
        self.shrink_limit = shrink_limit
        self._lock = threading.Lock()
        self._tests: dict[str, FuzzTest] = {t.name: t for t in tests}

    # ── Evaluation ───────────────────────────────────────────────────

    def evaluate(self, worker_id: int, seq: Sequence, result: ExecutionResult) -> Evaluation:
        """Evaluate every live test against one execution and apply transitions."""
        evaluation = Evaluation()
        for test in self._live_tests():
            try:
                outcome = evaluate_test(test, seq, result)
            except HarnessFault as exc:
                if self._fail(test.name, exc.message):
                    evaluation.failures.append((test.name, exc.message))
                continue
            if not outcome.triggered:
                continue
            trigger = self._apply(worker_id, test.name, outcome, result.events)
            if trigger is not None:
                evaluation.triggers.append(trigger)
        return evaluation

    def _live_tests(self) -> list[FuzzTest]:
        with self._lock:
            return [
                t for t in self._tests.values()
                if t.kind is not TestKind.EXPLORATION
                and not t.state.is_terminal
                and (t.kind is TestKind.OPTIMIZATION or t.state.status is TestStatus.OPEN)
            ]

    def _apply(
        self,
        worker_id: int,
        name: str,
        outcome: Outcome,
        events: list[str],
    ) -> Trigger | None:
        with self._lock:
            test = self._tests[name]
            if test.state.is_terminal:
                return None

            if test.kind is TestKind.OPTIMIZATION:
                if test.value is not None and outcome.value is not None and outcome.value <= test.value:
                    return None
                test.value = outcome.value
                solved = test.state.status is TestStatus.SOLVED
                if not solved:
                    test.state = TestState.large(0)
            elif test.state.status is TestStatus.OPEN:
                solved = False
                test.state = TestState.large(0)
            else:
                return None

            test.reproducer = outcome.reproducer
            test.events = list(events)
            test.generation += 1
            test.shrink_owner = worker_id
            return Trigger(
                test_name=name,
                kind=test.kind,
                reproducer=outcome.reproducer,
                generation=test.generation,
                value=test.value,
                solved=solved,
            )

    def _fail(self, name: str, reason: str) -> bool:
        with self._lock:
            test = self._tests[name]
            if test.state.is_terminal:
                return False
            test.state = TestState.failed(reason)
            test.shrink_owner = None
            return True

    def reproduces(self, trigger: Trigger, seq: Sequence, result: ExecutionResult) -> bool:
        """Whether ``result`` still shows the condition behind ``trigger``.

        A predicate fault during re-execution counts as not reproducing.
        """
        with self._lock:
            test = replace(self._tests[trigger.test_name], value=None)
        try:
            outcome = evaluate_test(test, seq, result)
        except HarnessFault as exc:
            logger.debug("Shrink candidate rejected: %s", exc.message)
            return False
        if trigger.kind is TestKind.OPTIMIZATION:
            if outcome.value is None or trigger.value is None:
                return False
            return outcome.value >= trigger.value
        return outcome.triggered

    # ── Shrink protocol ──────────────────────────────────────────────

    def shrink_progress(
        self,
        worker_id: int,
        trigger: Trigger,
        attempts: int,
        reproducer: Sequence,
    ) -> bool:
        """Record shrink progress. Returns False once the worker no longer owns the shrink."""
        with self._lock:
            test = self._tests[trigger.test_name]
            if not self._owns(test, worker_id, trigger):
                return False
            test.reproducer = reproducer
            if test.state.status is TestStatus.LARGE:
                test.state = TestState.large(
                    max(test.state.shrinks, min(attempts, self.shrink_limit))
                )
            return True

    def shrink_done(
        self,
        worker_id: int,
        trigger: Trigger,
        reproducer: Sequence,
        events: list[str] | None = None,
    ) -> bool:
        """Commit a finished shrink; Large becomes Solved."""
        with self._lock:
            test = self._tests[trigger.test_name]
            if not self._owns(test, worker_id, trigger):
                return False
            test.reproducer = reproducer
            if events is not None:
                test.events = list(events)
            if test.state.status is TestStatus.LARGE:
                test.state = TestState.solved()
            test.shrink_owner = None
            return True

    def current_reproducer(self, worker_id: int, trigger: Trigger) -> Sequence | None:
        """Best reproducer so far, or None once the worker no longer owns the shrink."""
        with self._lock:
            test = self._tests[trigger.test_name]
            if not self._owns(test, worker_id, trigger):
                return None
            return test.reproducer

    @staticmethod
    def _owns(test: FuzzTest, worker_id: int, trigger: Trigger) -> bool:
        return (
            test.shrink_owner == worker_id
            and test.generation == trigger.generation
            and not test.state.is_terminal
        )

    def release(self, worker_id: int) -> None:
        """Drop shrink ownership held by a worker that is going away."""
        with self._lock:
            for test in self._tests.values():
                if test.shrink_owner == worker_id:
                    test.shrink_owner = None

    # ── Campaign-level queries ───────────────────────────────────────

    def all_resolved(self) -> bool:
        """All boolean tests are Solved or Failed (and at least one exists)."""
        with self._lock:
            boolean = [t for t in self._tests.values() if t.is_boolean]
            return bool(boolean) and all(t.state.is_resolved for t in boolean)

    def has_optimization_tests(self) -> bool:
        return any(t.kind is TestKind.OPTIMIZATION for t in self._tests.values())

    def finalize(self) -> None:
        """End-of-campaign transitions: Open boolean tests pass, Large becomes Solved."""
        with self._lock:
            for test in self._tests.values():
                if test.state.status is TestStatus.LARGE:
                    test.state = TestState.solved()
                elif test.is_boolean and test.state.status is TestStatus.OPEN:
                    test.state = TestState.passed()
                test.shrink_owner = None

    def get(self, name: str) -> FuzzTest:
        with self._lock:
            return replace(self._tests[name], events=list(self._tests[name].events))

    def snapshot(self) -> list[FuzzTest]:
        """Copies of every test, in declaration order."""
        with self._lock:
            return [replace(t, events=list(t.events)) for t in self._tests.values()]
