"""Tests for reproducer minimisation."""

from __future__ import annotations

import random
import threading

from conftest import BankExecutor
from propfuzz.core.config import DEFAULT_SENDERS
from propfuzz.fuzzer.shrinker import Shrinker, complexity, simpler


def _negative_balance(executor: BankExecutor):
    def check(seq) -> bool:
        result = executor.execute(executor.initial_state(), seq)
        return result.final_state.balance < 0

    return check


class TestComplexity:
    def test_shorter_is_simpler(self, make_tx):
        assert simpler((make_tx("deposit", 9),), (make_tx("deposit", 1), make_tx("deposit", 1)))

    def test_smaller_args_are_simpler(self, make_tx):
        assert simpler((make_tx("withdraw", 1001),), (make_tx("withdraw", 5000),))
        assert not simpler((make_tx("withdraw", 5000),), (make_tx("withdraw", 5000),))

    def test_other_sender_costs_more(self, make_tx):
        first = (make_tx("deposit", 1),)
        other = (make_tx("deposit", 1, sender=DEFAULT_SENDERS[2]),)
        assert complexity(other, DEFAULT_SENDERS[0]) > complexity(first, DEFAULT_SENDERS[0])


class TestShrinker:
    """Bounded, deterministic minimisation."""

    def test_bank_reproducer_shrinks_to_one_withdrawal(self, make_tx, bank_executor):
        seq = (make_tx("deposit", 5), make_tx("deposit", 7), make_tx("withdraw", 5000))
        result = Shrinker(limit=10).shrink(seq, _negative_balance(bank_executor), random.Random(0))
        assert result.reproduced
        assert result.attempts <= 10
        assert len(result.sequence) == 1
        (tx,) = result.sequence
        assert tx.call.name == "withdraw"
        assert tx.call.args[0] > 1000

    def test_result_still_reproduces(self, make_tx, bank_executor):
        seq = tuple(make_tx("deposit", i) for i in range(6)) + (make_tx("withdraw", 2**200),)
        check = _negative_balance(bank_executor)
        result = Shrinker(limit=200).shrink(seq, check, random.Random(3))
        assert check(result.sequence)
        assert len(result.sequence) == 1
        assert result.sequence[0].call.args[0] < 2**200

    def test_attempts_never_exceed_limit(self, make_tx, bank_executor):
        seq = tuple(make_tx("deposit", i) for i in range(20)) + (make_tx("withdraw", 99_999),)
        calls = []

        def check(candidate):
            calls.append(candidate)
            return _negative_balance(bank_executor)(candidate)

        result = Shrinker(limit=7).shrink(seq, check, random.Random(1))
        assert len(calls) == result.attempts <= 7
        assert result.exhausted

    def test_non_reproducing_input_returned_unchanged(self, make_tx, bank_executor):
        seq = (make_tx("deposit", 5),)
        result = Shrinker(limit=10).shrink(seq, _negative_balance(bank_executor), random.Random(0))
        assert result.reproduced is False
        assert result.sequence == seq
        assert result.attempts == 1

    def test_zero_limit_is_identity(self, make_tx):
        seq = (make_tx("deposit", 5), make_tx("withdraw", 5000))
        result = Shrinker(limit=0).shrink(seq, lambda s: True, random.Random(0))
        assert result.sequence == seq
        assert result.attempts == 0

    def test_deterministic_for_fixed_seed(self, make_tx, bank_executor):
        seq = tuple(make_tx("deposit", i * 3) for i in range(8)) + (make_tx("withdraw", 123_456),)
        check = _negative_balance(bank_executor)
        a = Shrinker(limit=30).shrink(seq, check, random.Random(42))
        b = Shrinker(limit=30).shrink(seq, check, random.Random(42))
        assert a == b

    def test_wait_delay_collapsed_into_neighbour(self, make_tx):
        seq = (make_tx(None, delay=(100, 2)), make_tx("withdraw", 5000))

        def needs_time(candidate):
            waited = sum(tx.delay[0] for tx in candidate)
            return waited >= 100 and any(not tx.is_wait for tx in candidate)

        result = Shrinker(limit=100).shrink(seq, needs_time, random.Random(0))
        (tx,) = result.sequence
        assert not tx.is_wait
        assert tx.delay[0] == 100

    def test_sender_simplified_to_first(self, make_tx, bank_executor):
        seq = (make_tx("withdraw", 5000, sender=DEFAULT_SENDERS[1]),)
        shrinker = Shrinker(limit=50, first_sender=DEFAULT_SENDERS[0])
        result = shrinker.shrink(seq, _negative_balance(bank_executor), random.Random(0))
        assert result.sequence[0].sender == DEFAULT_SENDERS[0]

    def test_step_callback_can_abort(self, make_tx, bank_executor):
        seq = tuple(make_tx("deposit", i) for i in range(10)) + (make_tx("withdraw", 5000),)
        steps = []

        def on_step(attempts, best):
            steps.append(attempts)
            return attempts < 3

        result = Shrinker(limit=100).shrink(
            seq, _negative_balance(bank_executor), random.Random(0), on_step=on_step,
        )
        assert result.cancelled
        assert result.attempts == 3
        assert steps == [1, 2, 3]

    def test_cancel_event_stops_search(self, make_tx):
        stop = threading.Event()
        stop.set()
        seq = (make_tx("withdraw", 5000),)
        result = Shrinker(limit=100).shrink(seq, lambda s: True, random.Random(0), cancel=stop)
        assert result.cancelled
        assert result.attempts == 0
        assert result.sequence == seq
