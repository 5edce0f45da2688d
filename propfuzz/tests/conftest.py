"""Shared fixtures for the propfuzz test suite.

The toy ``BankExecutor`` stands in for a VM: a single contract with
``deposit(uint256)`` and ``withdraw(uint256)``. Withdrawals above 1000
skip the balance check, so the balance can go negative. Coverage points
depend only on the function and branch taken, so the coverage space is
small and saturates quickly.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable

import pytest

from propfuzz.core.config import DEFAULT_CONTRACT_ADDRESS, DEFAULT_SENDERS, CampaignConfig, TxConfig
from propfuzz.fuzzer.abi import FunctionSignature
from propfuzz.fuzzer.executor import ExecutionResult, Executor, TxResult, TxStatus
from propfuzz.fuzzer.transactions import NO_CALL, ContractCall, Sequence, Tx

BANK_CODE = "bank"
LARGE_WITHDRAWAL = 1000
MAX_DEPOSIT = 10**30


# ── Toy VM ───────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class BankState:
    balance: int = 0
    deposits: int = 0


class BankExecutor(Executor):
    """Deterministic executor for the toy bank contract."""

    def __init__(self) -> None:
        self.executions = 0

    def initial_state(self) -> BankState:
        return BankState()

    def execute(self, state: BankState, sequence: Sequence) -> ExecutionResult:
        self.executions += 1
        balance, deposits = state.balance, state.deposits
        results: list[TxResult] = []
        points: set[tuple[int, str]] = set()

        for tx in sequence:
            if not isinstance(tx.call, ContractCall):
                results.append(TxResult())
                points.add((0, "wait"))
                continue
            amount = tx.call.args[0] if tx.call.args else 0
            gas = 21_000 + 10 * amount.bit_length()
            if tx.call.name == "deposit":
                if amount > MAX_DEPOSIT:
                    results.append(TxResult(TxStatus.REVERT, gas, events=["DepositRejected"]))
                    points.add((10, "deposit:revert"))
                    continue
                balance += amount
                deposits += 1
                results.append(TxResult(gas_used=gas, events=["Deposit"], return_value=balance))
                points.add((11, "deposit:ok"))
            elif tx.call.name == "withdraw":
                if amount > LARGE_WITHDRAWAL:
                    balance -= amount
                    results.append(TxResult(gas_used=gas + 5_000, events=["Withdraw"]))
                    points.add((20, "withdraw:large"))
                elif amount <= balance:
                    balance -= amount
                    results.append(TxResult(gas_used=gas, events=["Withdraw"]))
                    points.add((21, "withdraw:ok"))
                else:
                    results.append(TxResult(TxStatus.REVERT, gas))
                    points.add((22, "withdraw:revert"))
            else:
                results.append(TxResult(TxStatus.VM_ERROR, 0))

        return ExecutionResult(
            tx_results=results,
            coverage={BANK_CODE: points},
            final_state=BankState(balance=balance, deposits=deposits),
        )


class FlakyExecutor(BankExecutor):
    """Raises on the ``fail_at``-th execution of each instance."""

    def __init__(self, fail_at: int | None) -> None:
        super().__init__()
        self.fail_at = fail_at

    def execute(self, state: BankState, sequence: Sequence) -> ExecutionResult:
        if self.fail_at is not None and self.executions + 1 >= self.fail_at:
            self.executions += 1
            raise RuntimeError("vm crashed")
        return super().execute(state, sequence)


# ── Fixtures ─────────────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def _quiet_logging():
    logging.getLogger("propfuzz").setLevel(logging.WARNING)
    yield
    logging.getLogger("propfuzz").setLevel(logging.NOTSET)


@pytest.fixture
def tx_config() -> TxConfig:
    return TxConfig()


@pytest.fixture
def bank_signatures() -> list[FunctionSignature]:
    return [
        FunctionSignature(name="deposit", inputs=("uint256",)),
        FunctionSignature(name="withdraw", inputs=("uint256",)),
    ]


@pytest.fixture
def bank_executor() -> BankExecutor:
    return BankExecutor()


@pytest.fixture
def make_tx() -> Callable[..., Tx]:
    """Factory for bank transactions with default gas and first sender."""

    def _make(
        name: str | None,
        *args: Any,
        arg_types: tuple[str, ...] | None = None,
        sender: str = DEFAULT_SENDERS[0],
        **fields: Any,
    ) -> Tx:
        if name is None:
            call: Any = NO_CALL
        else:
            call = ContractCall(
                name=name,
                arg_types=arg_types if arg_types is not None else ("uint256",) * len(args),
                args=tuple(args),
            )
        return Tx(
            call=call,
            sender=sender,
            destination=DEFAULT_CONTRACT_ADDRESS,
            gas=TxConfig().max_gas_per_tx,
            **fields,
        )

    return _make


@pytest.fixture
def quick_config() -> Callable[..., CampaignConfig]:
    def _config(**overrides: Any) -> CampaignConfig:
        params: dict[str, Any] = {"seq_len": 5, "test_limit": 500, "shrink_limit": 100, "seed": 1}
        params.update(overrides)
        return CampaignConfig.quick(**params)

    return _config
