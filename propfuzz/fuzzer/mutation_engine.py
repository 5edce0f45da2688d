"""Sequence-level mutation.

``SequenceMutator`` rewrites the *composition* of a transaction sequence:
it replaces, inserts or deletes transactions, splices in a slice of a
donor sequence from the corpus, or perturbs delays. Argument-level
perturbation is delegated to ``TxGenerator.mutate_value``.

Sequences are immutable tuples; every operator returns a new tuple and all
randomness comes from the RNG passed in by the caller.
"""

from __future__ import annotations

import logging
import random
from dataclasses import replace
from enum import Enum

from propfuzz.fuzzer.dictionary import GenDict
from propfuzz.fuzzer.generator import TxGenerator
from propfuzz.fuzzer.transactions import ContractCall, Sequence, Tx

logger = logging.getLogger(__name__)


class SequenceMutationType(str, Enum):
    """Mutation operators on whole sequences."""
    REPLACE = "replace"
    INSERT = "insert"
    DELETE = "delete"
    SPLICE = "splice"
    DELAY = "delay"


DEFAULT_WEIGHTS: dict[SequenceMutationType, float] = {
    SequenceMutationType.REPLACE: 9.0,
    SequenceMutationType.INSERT: 8.0,
    SequenceMutationType.DELETE: 5.0,
    SequenceMutationType.SPLICE: 6.0,
    SequenceMutationType.DELAY: 4.0,
}


class SequenceMutator:
    """Applies one weighted-random mutation per ``mutate`` call."""

    def __init__(
        self,
        generator: TxGenerator,
        gen_dict: GenDict,
        weights: dict[SequenceMutationType, float] | None = None,
    ) -> None:
        self._gen = generator
        self._dict = gen_dict
        self._weights = dict(weights or DEFAULT_WEIGHTS)

    def select_mutation(self, rng: random.Random) -> SequenceMutationType:
        """Select a mutation type by weighted random."""
        types = list(self._weights.keys())
        weights = [self._weights[t] for t in types]
        return rng.choices(types, weights=weights, k=1)[0]

    def mutate(
        self,
        seq: Sequence,
        rng: random.Random,
        donor: Sequence | None = None,
    ) -> Sequence:
        """Apply a random mutation, returning a new sequence."""
        return self.apply_mutation(seq, self.select_mutation(rng), rng, donor=donor)

    def apply_mutation(
        self,
        seq: Sequence,
        mutation_type: SequenceMutationType,
        rng: random.Random,
        donor: Sequence | None = None,
    ) -> Sequence:
        """Apply a specific mutation."""
        if not seq and mutation_type is not SequenceMutationType.SPLICE:
            mutation_type = SequenceMutationType.INSERT

        handler = {
            SequenceMutationType.REPLACE: self._replace,
            SequenceMutationType.INSERT: self._insert,
            SequenceMutationType.DELETE: self._delete,
            SequenceMutationType.SPLICE: self._splice,
            SequenceMutationType.DELAY: self._delay,
        }[mutation_type]
        return handler(list(seq), rng, donor)

    def fit(self, seq: Sequence, length: int, rng: random.Random) -> Sequence:
        """Truncate, or pad with fresh transactions, to exactly ``length``."""
        if len(seq) >= length:
            return tuple(seq[:length])
        padding = [self._gen.generate(self._dict, rng) for _ in range(length - len(seq))]
        return tuple(seq) + tuple(padding)

    # ── Mutation Operators ───────────────────────────────────────────

    def _replace(self, txs: list[Tx], rng: random.Random, _donor: Sequence | None) -> Sequence:
        """Point replacement: either a fresh tx or a mutated argument."""
        idx = rng.randrange(len(txs))
        tx = txs[idx]
        if isinstance(tx.call, ContractCall) and tx.call.args and rng.random() < 0.5:
            types = self._gen.arg_types(tx.call)
            arg_idx = rng.randrange(len(tx.call.args))
            args = list(tx.call.args)
            args[arg_idx] = self._gen.mutate_value(types[arg_idx], args[arg_idx], self._dict, rng)
            txs[idx] = replace(tx, call=tx.call.with_args(args))
        else:
            txs[idx] = self._gen.generate(self._dict, rng)
        return tuple(txs)

    def _insert(self, txs: list[Tx], rng: random.Random, _donor: Sequence | None) -> Sequence:
        """Insert a fresh transaction at a random position."""
        txs.insert(rng.randint(0, len(txs)), self._gen.generate(self._dict, rng))
        return tuple(txs)

    def _delete(self, txs: list[Tx], rng: random.Random, _donor: Sequence | None) -> Sequence:
        """Remove a random transaction."""
        txs.pop(rng.randrange(len(txs)))
        return tuple(txs)

    def _splice(self, txs: list[Tx], rng: random.Random, donor: Sequence | None) -> Sequence:
        """Splice a slice of the donor into this sequence."""
        if not donor:
            return self._insert(txs, rng, None)
        start = rng.randrange(len(donor))
        end = rng.randint(start + 1, len(donor))
        pos = rng.randint(0, len(txs))
        txs[pos:pos] = donor[start:end]
        return tuple(txs)

    def _delay(self, txs: list[Tx], rng: random.Random, _donor: Sequence | None) -> Sequence:
        """Perturb the (time, block) delay of one transaction."""
        idx = rng.randrange(len(txs))
        tx = txs[idx]
        op = rng.randrange(3)
        if op == 0:
            delay = self._gen.random_delay(rng)
        elif op == 1:
            delay = (0, 0)
        else:
            cfg = self._gen.tx_config
            delay = (
                min(cfg.max_time_delay, tx.delay[0] * 2 + rng.randint(0, 60)),
                min(cfg.max_block_delay, tx.delay[1] * 2 + rng.randint(0, 5)),
            )
        txs[idx] = replace(tx, delay=delay)
        return tuple(txs)
