"""Tests for the plain-text report."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime

import pytest

from propfuzz.core.config import DEFAULT_CONTRACT_ADDRESS, DEFAULT_SENDERS, CampaignConfig, TxConfig
from propfuzz.fuzzer.campaign import CampaignResult
from propfuzz.fuzzer.events import CampaignEvent, EventKind
from propfuzz.fuzzer.oracle import FuzzTest, TestState
from propfuzz.fuzzer.report import ReportRenderer, format_value, render_campaign


@pytest.fixture
def renderer() -> ReportRenderer:
    return ReportRenderer(shrink_limit=10, tx_gas=TxConfig().max_gas_per_tx)


def _falsified(make_tx, state: TestState, **fields) -> FuzzTest:
    test = FuzzTest.property_test("balance_non_negative", lambda s: True)
    test.state = state
    test.reproducer = (make_tx("withdraw", 5000),)
    for key, value in fields.items():
        setattr(test, key, value)
    return test


class TestValues:
    @pytest.mark.parametrize(
        "value, expected",
        [
            (True, "true"),
            (7, "7"),
            (b"\x01\xff", "0x01ff"),
            ("hi", '"hi"'),
            (DEFAULT_SENDERS[0], DEFAULT_SENDERS[0]),
            ((1, (2, 3)), "[1, [2, 3]]"),
        ],
    )
    def test_format_value(self, value, expected):
        assert format_value(value) == expected


class TestTransactions:
    def test_plain_call(self, renderer, make_tx):
        assert renderer.tx(make_tx("deposit", 5), print_names=False) == "deposit(5)"

    def test_call_with_extras(self, renderer, make_tx):
        tx = make_tx("deposit", 5, value=3, gas_price=2, delay=(60, 2))
        assert renderer.tx(tx, print_names=True) == (
            f"deposit(5) from: {DEFAULT_SENDERS[0]} to: {DEFAULT_CONTRACT_ADDRESS} Gas price: 2 Value: 3 "
            "Time delay: 60 seconds Block delay: 2"
        )

    def test_non_default_gas(self, renderer, make_tx):
        tx = replace(make_tx("deposit", 5), gas=100)
        assert renderer.tx(tx, print_names=False) == "deposit(5) Gas: 100"

    def test_wait(self, renderer, make_tx):
        assert renderer.tx(make_tx(None, delay=(60, 0)), print_names=False) == "*wait* Time delay: 60 seconds"

    def test_senders_shown_only_when_several(self, renderer, make_tx):
        one = (make_tx("deposit", 1), make_tx("withdraw", 2))
        assert renderer.call_sequence(one) == "    deposit(1)\n    withdraw(2)\n"
        two = (make_tx("deposit", 1), make_tx("withdraw", 2, sender=DEFAULT_SENDERS[1]))
        assert f"withdraw(2) from: {DEFAULT_SENDERS[1]} to: {DEFAULT_CONTRACT_ADDRESS}\n" in renderer.call_sequence(two)


class TestTestBlocks:
    """Status lines for every test state."""

    def test_shrinking(self, renderer, make_tx):
        test = _falsified(make_tx, TestState.large(3), events=["Withdraw"])
        assert renderer.test(test) == (
            "balance_non_negative: failed!💥  \n"
            "  Call sequence, shrinking 3/10:\n"
            "    withdraw(5000)\n"
            "\n"
            "Event sequence:\n"
            "Withdraw\n"
        )

    def test_shrink_limit_reached_hides_progress(self, renderer, make_tx):
        text = renderer.test(_falsified(make_tx, TestState.large(10)))
        assert "shrinking" not in text

    def test_solved(self, renderer, make_tx):
        assert renderer.test(_falsified(make_tx, TestState.solved())) == (
            "balance_non_negative: failed!💥  \n  Call sequence:\n    withdraw(5000)\n\n"
        )

    def test_solved_without_transactions(self, renderer, make_tx):
        test = _falsified(make_tx, TestState.solved(), reproducer=())
        assert renderer.test(test) == "balance_non_negative: failed with no transactions made ⁉️  "

    def test_passed(self, renderer):
        test = FuzzTest.property_test("ok", lambda s: True)
        test.state = TestState.passed()
        assert renderer.test(test) == "ok:  passed! 🎉"

    def test_open(self, renderer):
        assert renderer.test(FuzzTest.property_test("ok", lambda s: True)) == "ok: passing"

    def test_failed(self, renderer):
        test = FuzzTest.property_test("broken", lambda s: True)
        test.state = TestState.failed("broken: KeyError: 'x'")
        assert renderer.test(test) == "broken: could not evaluate ☣\n  broken: KeyError: 'x'"

    def test_assertion_labelled_by_signature(self, renderer):
        test = FuzzTest.assertion_test("withdraw", "withdraw(uint256)")
        assert renderer.test(test) == "withdraw(uint256): passing"

    def test_optimization(self, renderer, make_tx):
        test = FuzzTest.optimization_test("max_balance", lambda s: 0)
        test.state = TestState.solved()
        test.value = 150
        test.reproducer = (make_tx("deposit", 150),)
        assert renderer.test(test) == (
            "max_balance: max value: 150\n\n  Call sequence:\n    deposit(150)\n\n"
        )

    def test_optimization_without_reproducer(self, renderer):
        test = FuzzTest.optimization_test("max_balance", lambda s: 0)
        assert renderer.test(test) == "max_balance: max value: None\nCall sequence:\n(no transactions)"

    def test_exploration_omitted(self, renderer):
        assert renderer.test(FuzzTest.exploration_test()) is None
        assert renderer.tests([FuzzTest.exploration_test()]) == ""


class TestSummary:
    def test_coverage_and_corpus(self, renderer):
        assert renderer.coverage(5, 1) == "Unique instructions: 5\nUnique codehashes: 1"
        assert renderer.corpus(12) == "Corpus size: 12"

    def test_gas_info_sorted_by_gas(self, renderer, make_tx):
        text = renderer.gas_info({
            "withdraw(uint256)": (26_000, (make_tx("withdraw", 5000),)),
            "deposit(uint256)": (21_010, (make_tx("deposit", 1),)),
        })
        assert text.index("deposit(uint256) used a maximum of 21010 gas") < text.index(
            "withdraw(uint256) used a maximum of 26000 gas"
        )
        assert "  Call sequence:\n    withdraw(5000)\n" in text

    def test_log_line(self):
        ts = datetime(2024, 1, 2, 3, 4, 5, 670000).timestamp()
        event = CampaignEvent(worker_id=2, kind=EventKind.NEW_COVERAGE, message="hi", timestamp=ts)
        assert ReportRenderer.log_line(event) == "[2024-01-02 03:04:05.67] [Worker 2] hi"

    def test_render_campaign(self, make_tx):
        test = FuzzTest.property_test("balance_non_negative", lambda s: True)
        test.state = TestState.solved()
        test.reproducer = (make_tx("withdraw", 5000),)
        result = CampaignResult(
            campaign_id="c1",
            seed=42,
            tests=[test, FuzzTest.exploration_test()],
            coverage_points=5,
            code_objects=1,
            corpus_size=3,
        )
        text = render_campaign(result, CampaignConfig(shrink_limit=10))
        assert text.startswith("balance_non_negative: failed!💥")
        assert text.endswith("Unique instructions: 5\nUnique codehashes: 1\nCorpus size: 3\nSeed: 42\n")
