"""Reproducer minimisation.

Delta-debugging style search for a shorter / simpler sequence that still
triggers the same outcome. Each round runs three passes over the current
best sequence:

  1. delete a transaction (largest chunks first, then single transactions)
  2. collapse a wait into its neighbour (its delay is added to the next tx)
  3. simplify one transaction (value, gas price, delay, arguments, sender)

A candidate is accepted only if it is strictly simpler than the current
best and ``oracle_check`` still holds. Every call to ``oracle_check``
consumes one attempt; the search stops after ``limit`` attempts or when a
full round accepts nothing. All choices are driven by the RNG passed in,
so a fixed seed gives a fixed result.
"""

from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass, replace
from typing import Any, Callable, Iterator

from propfuzz.fuzzer.abi import AbiType, parse_type
from propfuzz.fuzzer.dictionary import GenDict
from propfuzz.fuzzer.transactions import ContractCall, Sequence, Tx

logger = logging.getLogger(__name__)

OracleCheck = Callable[[Sequence], bool]
StepCallback = Callable[[int, Sequence], bool]


@dataclass(frozen=True)
class ShrinkResult:
    sequence: Sequence
    attempts: int
    limit: int
    reproduced: bool = True
    cancelled: bool = False

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.limit

    def to_dict(self) -> dict[str, Any]:
        return {
            "length": len(self.sequence),
            "attempts": self.attempts,
            "limit": self.limit,
            "reproduced": self.reproduced,
            "cancelled": self.cancelled,
        }


class _Budget(Exception):
    """Raised internally when no attempts are left."""


def complexity(seq: Sequence, first_sender: str | None = None) -> int:
    """Secondary simplicity measure used after sequence length."""
    return sum(_tx_complexity(tx, first_sender) for tx in seq)


def _tx_complexity(tx: Tx, first_sender: str | None) -> int:
    score = 0 if tx.is_wait else 1
    if first_sender and tx.sender != first_sender:
        score += 1
    score += tx.value.bit_length() + tx.gas_price.bit_length()
    score += tx.delay[0].bit_length() + tx.delay[1].bit_length()
    if isinstance(tx.call, ContractCall):
        score += sum(_value_complexity(v) for v in tx.call.args)
    return score


def _value_complexity(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, int):
        return abs(value).bit_length() + (1 if value < 0 else 0)
    if isinstance(value, (bytes, str)):
        return len(value)
    if isinstance(value, (tuple, list)):
        return 1 + len(value) + sum(_value_complexity(v) for v in value)
    return 0


def simpler(a: Sequence, b: Sequence, first_sender: str | None = None) -> bool:
    """True if ``a`` is strictly simpler than ``b``."""
    return (len(a), complexity(a, first_sender)) < (len(b), complexity(b, first_sender))


class Shrinker:
    """Bounded, deterministic sequence minimiser."""

    def __init__(
        self,
        limit: int,
        gen_dict: GenDict | None = None,
        first_sender: str | None = None,
    ) -> None:
        self.limit = limit
        self._dict = gen_dict
        self._first_sender = first_sender

    def shrink(
        self,
        seq: Sequence,
        oracle_check: OracleCheck,
        rng: random.Random,
        on_step: StepCallback | None = None,
        cancel: threading.Event | None = None,
    ) -> ShrinkResult:
        """Minimise ``seq`` while ``oracle_check`` keeps holding.

        ``on_step(attempts, best)`` is called after every attempt; returning
        False aborts the search (e.g. the caller lost ownership of the test).
        If ``seq`` itself does not reproduce, it is returned unchanged.
        """
        seq = tuple(seq)
        state = _SearchState(self.limit, oracle_check, on_step, cancel, self._first_sender)
        if self.limit == 0:
            return ShrinkResult(seq, 0, self.limit)

        state.best = seq
        try:
            if not state.check(seq):
                return ShrinkResult(seq, state.attempts, self.limit, reproduced=False)
            progressed = True
            while progressed:
                progressed = False
                for pass_fn in (self._delete_pass, self._collapse_pass, self._simplify_pass):
                    if pass_fn(state, rng):
                        progressed = True
        except _Budget:
            pass

        logger.debug(
            "Shrink finished: %d -> %d txs in %d/%d attempts",
            len(seq), len(state.best), state.attempts, self.limit,
        )
        return ShrinkResult(state.best, state.attempts, self.limit, cancelled=state.cancelled)

    # ── Passes ───────────────────────────────────────────────────────

    def _delete_pass(self, state: _SearchState, rng: random.Random) -> bool:
        """Chunked deletion: halves, quarters, ... single transactions."""
        accepted = False
        chunk = max(1, len(state.best) // 2)
        while chunk >= 1 and state.best:
            starts = list(range(0, len(state.best), chunk))
            rng.shuffle(starts)
            for start in starts:
                current = state.best
                if start >= len(current):
                    continue
                candidate = current[:start] + current[start + chunk:]
                if state.try_accept(candidate):
                    accepted = True
            chunk //= 2
        return accepted

    def _collapse_pass(self, state: _SearchState, rng: random.Random) -> bool:
        """Merge each wait's delay into the following (or previous) transaction."""
        accepted = False
        i = 0
        while i < len(state.best):
            current = state.best
            if not current[i].is_wait or len(current) < 2:
                i += 1
                continue
            j = i + 1 if i + 1 < len(current) else i - 1
            neighbour = current[j]
            merged = replace(
                neighbour,
                delay=(
                    neighbour.delay[0] + current[i].delay[0],
                    neighbour.delay[1] + current[i].delay[1],
                ),
            )
            txs = list(current)
            txs[j] = merged
            del txs[i]
            if state.try_accept(tuple(txs)):
                accepted = True
            else:
                i += 1
        return accepted

    def _simplify_pass(self, state: _SearchState, rng: random.Random) -> bool:
        accepted = False
        order = list(range(len(state.best)))
        rng.shuffle(order)
        for idx in order:
            if idx >= len(state.best):
                continue
            for candidate_tx in self._simplifications(state.best[idx], rng):
                current = state.best
                candidate = current[:idx] + (candidate_tx,) + current[idx + 1:]
                if state.try_accept(candidate):
                    accepted = True
                    break
        return accepted

    # ── Transaction simplification ───────────────────────────────────

    def _simplifications(self, tx: Tx, rng: random.Random) -> Iterator[Tx]:
        """Candidate replacements for one tx, most aggressive first."""
        if tx.value:
            yield replace(tx, value=0)
            yield replace(tx, value=tx.value // 2)
        if tx.gas_price:
            yield replace(tx, gas_price=0)
            yield replace(tx, gas_price=tx.gas_price // 2)
        if tx.delay != (0, 0):
            yield replace(tx, delay=(0, 0))
            yield replace(tx, delay=(tx.delay[0] // 2, tx.delay[1] // 2))
        if self._first_sender and tx.sender != self._first_sender:
            yield replace(tx, sender=self._first_sender)
        if isinstance(tx.call, ContractCall) and tx.call.args:
            types = [parse_type(t) for t in tx.call.arg_types]
            positions = list(range(len(tx.call.args)))
            rng.shuffle(positions)
            for pos in positions:
                for smaller in self._simpler_values(types[pos], tx.call.args[pos]):
                    args = list(tx.call.args)
                    args[pos] = smaller
                    yield replace(tx, call=tx.call.with_args(args))

    def _simpler_values(self, t: AbiType, value: Any) -> Iterator[Any]:
        if t.is_integer and not isinstance(value, bool):
            if value == 0:
                return
            yield 0
            if self._dict is not None:
                for c in self._dict.candidates(t):
                    if abs(c) < abs(value) and c != 0:
                        yield c
                        break
            yield value // 2 if value > 0 else -(-value // 2)
            yield value - 1 if value > 0 else value + 1
        elif t.kind == "bool":
            if value:
                yield False
        elif t.kind in ("bytes", "string"):
            if value:
                yield value[:0]
                yield value[: len(value) // 2]
        elif t.kind == "fixed_bytes":
            zero = bytes(t.size)
            if value != zero:
                yield zero
        elif t.kind == "array" and value:
            if t.length is None:
                yield ()
                yield tuple(value[: len(value) // 2])
            for i, item in enumerate(value):
                for smaller in self._simpler_values(t.element, item):  # type: ignore[arg-type]
                    items = list(value)
                    items[i] = smaller
                    yield tuple(items)
                    break


class _SearchState:
    """Attempt accounting and the current best sequence."""

    def __init__(
        self,
        limit: int,
        oracle_check: OracleCheck,
        on_step: StepCallback | None,
        cancel: threading.Event | None,
        first_sender: str | None = None,
    ) -> None:
        self.limit = limit
        self.first_sender = first_sender
        self.oracle_check = oracle_check
        self.on_step = on_step
        self.cancel = cancel
        self.attempts = 0
        self.best: Sequence = ()
        self.cancelled = False

    def check(self, candidate: Sequence) -> bool:
        if self.attempts >= self.limit:
            raise _Budget
        if self.cancel is not None and self.cancel.is_set():
            self.cancelled = True
            raise _Budget
        self.attempts += 1
        ok = self.oracle_check(candidate)
        if self.on_step is not None and not self.on_step(self.attempts, candidate if ok else self.best):
            self.cancelled = True
            if ok:
                self.best = candidate
            raise _Budget
        return ok

    def try_accept(self, candidate: Sequence) -> bool:
        if not simpler(candidate, self.best, self.first_sender):
            return False
        if self.check(candidate):
            self.best = candidate
            return True
        return False
