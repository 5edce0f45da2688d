"""Execution backend interface.

The VM is a black box behind ``Executor``: it hands out a fresh start
state and runs a whole sequence against it, reporting per-transaction
outcomes, the coverage observed, and the state left behind. Each worker
owns its own executor instance; executors are never shared between
threads.

A revert, out-of-gas or VM error is an ordinary ``TxResult`` status. An
exception escaping ``execute`` is an internal fault of the backend.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable

from propfuzz.fuzzer.coverage import CoverageMap
from propfuzz.fuzzer.transactions import Sequence


class TxStatus(str, Enum):
    SUCCESS = "success"
    REVERT = "revert"
    OUT_OF_GAS = "out_of_gas"
    VM_ERROR = "vm_error"


@dataclass
class TxResult:
    """Outcome of one transaction."""
    status: TxStatus = TxStatus.SUCCESS
    gas_used: int = 0
    events: list[str] = field(default_factory=list)
    return_value: Any = None
    assertion_failed: bool = False

    @property
    def success(self) -> bool:
        return self.status is TxStatus.SUCCESS


@dataclass
class ExecutionResult:
    """Outcome of running a sequence from a start state.

    ``tx_results`` holds one entry per transaction actually executed; when
    ``aborted`` is set the executor stopped early and the remaining
    transactions were not run.
    """
    tx_results: list[TxResult] = field(default_factory=list)
    coverage: CoverageMap = field(default_factory=dict)
    final_state: Any = None
    aborted: bool = False

    def executed(self, sequence: Sequence) -> Sequence:
        """The prefix of ``sequence`` that was actually executed."""
        return tuple(sequence[: len(self.tx_results)])

    @property
    def events(self) -> list[str]:
        return [e for r in self.tx_results for e in r.events]


class Executor:
    """Base class for VM backends.

    Subclasses implement ``initial_state`` and ``execute``. ``execute``
    must not mutate the state it is given; the same start state is reused
    for every sequence a worker runs.
    """

    def initial_state(self) -> Any:
        raise NotImplementedError

    def execute(self, state: Any, sequence: Sequence) -> ExecutionResult:
        raise NotImplementedError


ExecutorFactory = Callable[[], Executor]
