"""Tests for transaction generation and sequence mutation."""

from __future__ import annotations

import random

import pytest

from propfuzz.fuzzer.abi import FunctionSignature, parse_type
from propfuzz.fuzzer.dictionary import GenDict
from propfuzz.fuzzer.generator import TxGenerator
from propfuzz.fuzzer.mutation_engine import SequenceMutationType, SequenceMutator
from propfuzz.fuzzer.transactions import ContractCall


@pytest.fixture
def generator(bank_signatures, tx_config) -> TxGenerator:
    return TxGenerator(bank_signatures, tx_config, dict_freq=0.4)


@pytest.fixture
def mutator(generator) -> SequenceMutator:
    return SequenceMutator(generator, GenDict(seed=0))


class TestTxGenerator:
    """Generated transactions are well-formed and reproducible."""

    def test_same_seed_same_transactions(self, generator):
        d = GenDict(seed=0)
        rng1, rng2 = random.Random(42), random.Random(42)
        seq1 = [generator.generate(d, rng1) for _ in range(50)]
        seq2 = [generator.generate(d, rng2) for _ in range(50)]
        assert seq1 == seq2

    def test_no_signatures_emits_wait(self, tx_config):
        gen = TxGenerator([], tx_config)
        tx = gen.generate(GenDict(seed=0), random.Random(1))
        assert tx.is_wait
        assert tx.sender in tx_config.senders

    def test_fields_within_bounds(self, generator, tx_config):
        rng = random.Random(7)
        d = GenDict(seed=0)
        for _ in range(200):
            tx = generator.generate(d, rng)
            assert isinstance(tx.call, ContractCall)
            assert tx.call.name in ("deposit", "withdraw")
            assert tx.sender in tx_config.senders
            assert tx.destination == tx_config.contract_address
            assert tx.gas == tx_config.max_gas_per_tx
            assert tx.value == 0  # nothing payable
            assert 0 <= tx.delay[0] <= tx_config.max_time_delay
            assert 0 <= tx.delay[1] <= tx_config.max_block_delay
            assert 0 <= tx.call.args[0] < 2**256

    def test_payable_functions_get_value(self, tx_config):
        gen = TxGenerator([FunctionSignature(name="fund", payable=True)], tx_config)
        rng = random.Random(3)
        values = [gen.generate(GenDict(seed=0), rng).value for _ in range(100)]
        assert any(v > 0 for v in values)
        assert all(0 <= v <= tx_config.max_value for v in values)

    def test_every_type_in_range(self, tx_config):
        types = ("uint8", "int16", "address", "bool", "bytes4", "bytes", "string", "uint8[3]", "int8[]")
        gen = TxGenerator([FunctionSignature(name="f", inputs=types)], tx_config)
        rng = random.Random(11)
        for _ in range(100):
            args = gen.generate(GenDict(seed=0), rng).call.args
            assert 0 <= args[0] <= 255
            assert -(2**15) <= args[1] < 2**15
            assert args[2].startswith("0x") and len(args[2]) == 42
            assert isinstance(args[3], bool)
            assert isinstance(args[4], bytes) and len(args[4]) == 4
            assert isinstance(args[5], bytes) and len(args[5]) <= 64
            assert isinstance(args[6], str)
            assert len(args[7]) == 3 and all(0 <= v <= 255 for v in args[7])
            assert len(args[8]) <= 8 and all(-128 <= v <= 127 for v in args[8])

    def test_dictionary_values_used(self, tx_config):
        gen = TxGenerator([FunctionSignature(name="f", inputs=("uint256",))], tx_config, dict_freq=1.0)
        d = GenDict(seed=0, ints={31337})
        rng = random.Random(5)
        assert all(gen.generate(d, rng).call.args == (31337,) for _ in range(20))

    def test_mutate_value_stays_in_range(self, generator):
        t = parse_type("uint8")
        rng = random.Random(9)
        d = GenDict(seed=0)
        value = 200
        for _ in range(200):
            value = generator.mutate_value(t, value, d, rng)
            assert 0 <= value <= 255


class TestSequenceMutator:
    """Each operator reshapes the sequence as described."""

    def _seq(self, make_tx, n=4):
        return tuple(make_tx("deposit", i + 1) for i in range(n))

    def test_insert(self, mutator, make_tx):
        seq = self._seq(make_tx)
        out = mutator.apply_mutation(seq, SequenceMutationType.INSERT, random.Random(1))
        assert len(out) == len(seq) + 1

    def test_delete(self, mutator, make_tx):
        seq = self._seq(make_tx)
        out = mutator.apply_mutation(seq, SequenceMutationType.DELETE, random.Random(1))
        assert len(out) == len(seq) - 1
        assert set(out) <= set(seq)

    def test_replace_keeps_length(self, mutator, make_tx):
        seq = self._seq(make_tx)
        out = mutator.apply_mutation(seq, SequenceMutationType.REPLACE, random.Random(2))
        assert len(out) == len(seq)
        assert sum(a != b for a, b in zip(seq, out)) <= 1

    def test_splice_inserts_donor_slice(self, mutator, make_tx):
        seq = self._seq(make_tx)
        donor = (make_tx("withdraw", 99), make_tx("withdraw", 98))
        out = mutator.apply_mutation(seq, SequenceMutationType.SPLICE, random.Random(3), donor=donor)
        assert len(out) > len(seq)
        assert any(tx in donor for tx in out)

    def test_splice_without_donor_inserts(self, mutator, make_tx):
        seq = self._seq(make_tx)
        out = mutator.apply_mutation(seq, SequenceMutationType.SPLICE, random.Random(3))
        assert len(out) == len(seq) + 1

    def test_delay_only_touches_delay(self, mutator, make_tx):
        seq = self._seq(make_tx)
        out = mutator.apply_mutation(seq, SequenceMutationType.DELAY, random.Random(4))
        assert [tx.call for tx in out] == [tx.call for tx in seq]

    @pytest.mark.parametrize("kind", list(SequenceMutationType))
    def test_empty_sequence_grows(self, mutator, kind):
        out = mutator.apply_mutation((), kind, random.Random(0))
        assert len(out) == 1

    def test_input_not_modified(self, mutator, make_tx):
        seq = self._seq(make_tx)
        before = tuple(seq)
        rng = random.Random(5)
        for _ in range(50):
            mutator.mutate(seq, rng)
        assert seq == before

    def test_fit_pads_and_truncates(self, mutator, make_tx):
        seq = self._seq(make_tx)
        assert mutator.fit(seq, 2, random.Random(0)) == seq[:2]
        padded = mutator.fit(seq, 10, random.Random(0))
        assert len(padded) == 10
        assert padded[:4] == seq

    def test_deterministic_per_seed(self, mutator, make_tx):
        seq = self._seq(make_tx)

        def run(seed):
            rng = random.Random(seed)
            out = seq
            for _ in range(20):
                out = mutator.mutate(out, rng)
            return out

        assert run(123) == run(123)
