"""Plain-text campaign report.

Read-only consumer of ``CampaignResult`` and ``CampaignEvent``; nothing
here touches live campaign state. Layout::

    <test lines>
    <gas table>
    Unique instructions: N
    Unique codehashes: M
    Corpus size: K
    Seed: S
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable

from propfuzz.core.config import CampaignConfig
from propfuzz.fuzzer.campaign import CampaignResult
from propfuzz.fuzzer.events import CampaignEvent
from propfuzz.fuzzer.oracle import FuzzTest, TestKind, TestState, TestStatus
from propfuzz.fuzzer.transactions import ContractCall, Sequence, Tx


def format_value(value: Any) -> str:
    """Render one argument the way it would be written in Solidity."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    if isinstance(value, str):
        if value.startswith("0x") and len(value) == 42:
            return value
        return f'"{value}"'
    if isinstance(value, (tuple, list)):
        return "[" + ", ".join(format_value(v) for v in value) + "]"
    return str(value)


def format_call(call: ContractCall) -> str:
    return f"{call.name}({','.join(format_value(a) for a in call.args)})"


def format_delay(delay: tuple[int, int]) -> str:
    time_delay, block_delay = delay
    out = ""
    if time_delay:
        out += f" Time delay: {time_delay} seconds"
    if block_delay:
        out += f" Block delay: {block_delay}"
    return out


def progress(n: int, m: int) -> str:
    return f"{n}/{m}"


def _lines(items: Iterable[str]) -> str:
    return "".join(f"{item}\n" for item in items)


class ReportRenderer:
    """Renders tests, gas usage, coverage and log lines as text."""

    def __init__(self, shrink_limit: int, tx_gas: int) -> None:
        self.shrink_limit = shrink_limit
        self.tx_gas = tx_gas

    @classmethod
    def from_config(cls, config: CampaignConfig) -> ReportRenderer:
        return cls(shrink_limit=config.shrink_limit, tx_gas=config.tx.max_gas_per_tx)

    # ── Transactions ─────────────────────────────────────────────────

    def tx(self, tx: Tx, print_names: bool) -> str:
        if not isinstance(tx.call, ContractCall):
            return "*wait*" + format_delay(tx.delay)
        out = format_call(tx.call)
        if print_names:
            out += f" from: {tx.sender} to: {tx.destination}"
        if tx.gas != self.tx_gas:
            out += f" Gas: {tx.gas}"
        if tx.gas_price:
            out += f" Gas price: {tx.gas_price}"
        if tx.value:
            out += f" Value: {tx.value}"
        return out + format_delay(tx.delay)

    def call_sequence(self, txs: Sequence) -> str:
        print_names = len({tx.sender for tx in txs}) != 1
        return _lines(f"    {self.tx(tx, print_names)}" for tx in txs)

    @staticmethod
    def events(events: list[str]) -> str:
        if not events:
            return ""
        return _lines(["Event sequence:", *events])

    # ── Tests ────────────────────────────────────────────────────────

    def _shrinking(self, state: TestState) -> str:
        if state.status is TestStatus.LARGE and state.shrinks < self.shrink_limit:
            return ", shrinking " + progress(state.shrinks, self.shrink_limit)
        return ""

    def _failed(self, state: TestState, test: FuzzTest) -> str:
        if not test.reproducer:
            return "failed with no transactions made ⁉️  "
        return (
            "failed!💥  \n  Call sequence" + self._shrinking(state) + ":\n"
            + self.call_sequence(test.reproducer) + "\n"
            + self.events(test.events)
        )

    def _optimized(self, state: TestState, test: FuzzTest) -> str:
        if not test.reproducer:
            return "Call sequence:\n(no transactions)"
        return (
            "\n  Call sequence" + self._shrinking(state) + ":\n"
            + self.call_sequence(test.reproducer) + "\n"
            + self.events(test.events)
        )

    def test_status(self, test: FuzzTest) -> str:
        state = test.state
        if state.status is TestStatus.FAILED:
            return f"could not evaluate ☣\n  {state.reason}"
        if state.status is TestStatus.PASSED:
            return " passed! 🎉"
        if test.kind is TestKind.OPTIMIZATION:
            return self._optimized(state, test)
        if state.status is TestStatus.OPEN and not test.reproducer:
            return "passing"
        return self._failed(state, test)

    def test(self, test: FuzzTest) -> str | None:
        """One test block, or None for exploration tests."""
        if test.kind is TestKind.EXPLORATION:
            return None
        if test.kind is TestKind.OPTIMIZATION:
            return f"{test.name}: max value: {test.value}\n{self.test_status(test)}"
        label = test.name
        if test.kind is TestKind.ASSERTION and test.signature and "(" in test.signature:
            label = test.signature
        return f"{label}: {self.test_status(test)}"

    def tests(self, tests: Iterable[FuzzTest]) -> str:
        return _lines(block for block in (self.test(t) for t in tests) if block is not None)

    # ── Campaign summary ─────────────────────────────────────────────

    def gas_info(self, gas_info: dict[str, tuple[int, Sequence]]) -> str:
        parts = []
        for func, (gas, txs) in sorted(gas_info.items(), key=lambda item: item[1][0]):
            if not func:
                continue
            parts.append(
                f"\n{func} used a maximum of {gas} gas\n  Call sequence:\n"
                + self.call_sequence(txs)
            )
        return "".join(parts)

    @staticmethod
    def coverage(points: int, code_objects: int) -> str:
        return f"Unique instructions: {points}\nUnique codehashes: {code_objects}"

    @staticmethod
    def corpus(size: int) -> str:
        return f"Corpus size: {size}"

    def campaign(self, result: CampaignResult) -> str:
        return _lines([
            self.tests(result.tests),
            self.gas_info(result.gas_info),
            self.coverage(result.coverage_points, result.code_objects),
            self.corpus(result.corpus_size),
            f"Seed: {result.seed}",
        ])

    @staticmethod
    def log_line(event: CampaignEvent) -> str:
        ts = datetime.fromtimestamp(event.timestamp).strftime("%Y-%m-%d %H:%M:%S.%f")[:-4]
        return f"[{ts}] [Worker {event.worker_id}] {event.message}"


def render_campaign(result: CampaignResult, config: CampaignConfig) -> str:
    """Full text report for a finished campaign."""
    return ReportRenderer.from_config(config).campaign(result)
