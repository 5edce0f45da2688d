"""Random transaction generation.

``TxGenerator.generate`` produces one syntactically valid transaction,
taking each argument from the worker's dictionary with probability
``dict_freq`` and otherwise drawing a random value within the type's range.
All randomness comes from the caller-owned ``random.Random``.
"""

from __future__ import annotations

import logging
import random
from typing import Any, Sequence

from propfuzz.core.config import TxConfig
from propfuzz.fuzzer.abi import MAX_DYNAMIC_ARRAY, MAX_DYNAMIC_BYTES, AbiType, FunctionSignature
from propfuzz.fuzzer.dictionary import GenDict
from propfuzz.fuzzer.transactions import NO_CALL, ContractCall, Tx

logger = logging.getLogger(__name__)

_SMALL_INT_BOUND = 256
_STRING_ALPHABET = "abcdefghijklmnopqrstuvwxyz0123456789 _-"


class TxGenerator:
    """Generates transactions for a fixed set of callable signatures."""

    def __init__(
        self,
        signatures: Sequence[FunctionSignature],
        tx_config: TxConfig,
        dict_freq: float = 0.40,
    ) -> None:
        self.signatures = list(signatures)
        self.tx_config = tx_config
        self.dict_freq = dict_freq
        self._types = {s.signature: s.input_types for s in self.signatures}

    # ── Transactions ─────────────────────────────────────────────────

    def generate(self, gen_dict: GenDict, rng: random.Random) -> Tx:
        """Generate one transaction."""
        if not self.signatures:
            return self.wait(rng)

        sig = rng.choice(self.signatures)
        args = tuple(self.random_value(t, gen_dict, rng) for t in self._types[sig.signature])
        value = 0
        if sig.payable and self.tx_config.max_value:
            value = 0 if rng.random() < 0.5 else rng.randint(0, self.tx_config.max_value)

        return Tx(
            call=ContractCall(
                name=sig.name,
                arg_types=sig.inputs,
                args=args,
                selector=sig.selector,
            ),
            sender=rng.choice(self.tx_config.senders),
            destination=self.tx_config.contract_address,
            gas=self.tx_config.max_gas_per_tx,
            gas_price=rng.randint(0, self.tx_config.max_gas_price),
            value=value,
            delay=self.random_delay(rng),
        )

    def wait(self, rng: random.Random) -> Tx:
        """A NoCall transaction that only advances time and blocks."""
        return Tx(
            call=NO_CALL,
            sender=rng.choice(self.tx_config.senders),
            destination=self.tx_config.contract_address,
            gas=self.tx_config.max_gas_per_tx,
            delay=self.random_delay(rng),
        )

    def random_delay(self, rng: random.Random) -> tuple[int, int]:
        """Time/block delay; half the time no delay at all."""
        if rng.random() < 0.5:
            return (0, 0)
        return (
            rng.randint(0, self.tx_config.max_time_delay),
            rng.randint(0, self.tx_config.max_block_delay),
        )

    def arg_types(self, call: ContractCall) -> tuple[AbiType, ...]:
        cached = self._types.get(call.signature)
        if cached is not None:
            return cached
        return FunctionSignature(name=call.name, inputs=call.arg_types).input_types

    # ── Values ───────────────────────────────────────────────────────

    def random_value(self, t: AbiType, gen_dict: GenDict, rng: random.Random) -> Any:
        """A value for ``t``: dictionary constant or fresh random."""
        if t.kind != "array" and rng.random() < self.dict_freq:
            candidates = gen_dict.candidates(t)
            if candidates:
                return rng.choice(candidates)
        return self._fresh_value(t, gen_dict, rng)

    def _fresh_value(self, t: AbiType, gen_dict: GenDict, rng: random.Random) -> Any:
        if t.is_integer:
            if rng.random() < 0.3:
                lo = max(t.min_value, -_SMALL_INT_BOUND)
                return rng.randint(lo, min(t.max_value, _SMALL_INT_BOUND))
            return rng.randint(t.min_value, t.max_value)
        if t.kind == "address":
            pool = list(self.tx_config.senders) + [self.tx_config.contract_address]
            if rng.random() < 0.8:
                return rng.choice(pool)
            return "0x" + rng.getrandbits(160).to_bytes(20, "big").hex()
        if t.kind == "bool":
            return rng.random() < 0.5
        if t.kind == "fixed_bytes":
            return rng.getrandbits(8 * t.size).to_bytes(t.size, "big")
        if t.kind == "bytes":
            n = rng.randint(0, MAX_DYNAMIC_BYTES)
            return bytes(rng.getrandbits(8) for _ in range(n))
        if t.kind == "string":
            n = rng.randint(0, MAX_DYNAMIC_BYTES // 2)
            return "".join(rng.choice(_STRING_ALPHABET) for _ in range(n))
        if t.kind == "array":
            n = t.length if t.length is not None else rng.randint(0, MAX_DYNAMIC_ARRAY)
            return tuple(self.random_value(t.element, gen_dict, rng) for _ in range(n))  # type: ignore[arg-type]
        raise ValueError(f"cannot generate value for {t}")

    def mutate_value(self, t: AbiType, value: Any, gen_dict: GenDict, rng: random.Random) -> Any:
        """Small perturbation of an existing argument, staying inside ``t``'s range."""
        if t.is_integer:
            op = rng.randrange(5)
            if op == 0:
                candidate = value + rng.randint(-16, 16)
            elif op == 1:
                candidate = value ^ (1 << rng.randrange(t.bits))
            elif op == 2:
                candidate = value * 2
            elif op == 3:
                candidate = value // 2
            else:
                return self.random_value(t, gen_dict, rng)
            return min(t.max_value, max(t.min_value, candidate))
        if t.kind in ("bytes", "fixed_bytes") and value:
            data = bytearray(value)
            idx = rng.randrange(len(data))
            data[idx] ^= 1 << rng.randrange(8)
            return bytes(data)
        if t.kind == "bool":
            return not value
        if t.kind == "array" and value:
            items = list(value)
            idx = rng.randrange(len(items))
            items[idx] = self.mutate_value(t.element, items[idx], gen_dict, rng)  # type: ignore[arg-type]
            return tuple(items)
        return self.random_value(t, gen_dict, rng)
