"""Transactions and transaction sequences.

A ``Tx`` is immutable once created; a sequence is an ordered tuple of them
executed strictly in order against one VM state. Sequences have a stable
JSON form and a content hash used for corpus deduplication and file names.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Union

from propfuzz.fuzzer.abi import AbiType, parse_type


@dataclass(frozen=True)
class NoCall:
    """A pure wait: advances time/blocks without calling the contract."""

    @property
    def signature(self) -> str:
        return ""


@dataclass(frozen=True)
class ContractCall:
    """A call to a contract function with concrete arguments."""

    name: str
    arg_types: tuple[str, ...] = ()
    args: tuple[Any, ...] = ()
    selector: str | None = None

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(self.arg_types)})"

    def with_args(self, args: Iterable[Any]) -> ContractCall:
        return replace(self, args=tuple(args))


Call = Union[NoCall, ContractCall]

NO_CALL = NoCall()


@dataclass(frozen=True)
class Tx:
    """A single simulated transaction."""

    call: Call
    sender: str
    destination: str
    gas: int
    gas_price: int = 0
    value: int = 0
    delay: tuple[int, int] = field(default=(0, 0))  # (seconds, blocks)

    @property
    def is_wait(self) -> bool:
        return isinstance(self.call, NoCall)

    @property
    def signature(self) -> str:
        return self.call.signature

    def to_dict(self) -> dict[str, Any]:
        if isinstance(self.call, ContractCall):
            types = [parse_type(t) for t in self.call.arg_types]
            call: dict[str, Any] = {
                "function": self.call.name,
                "arg_types": list(self.call.arg_types),
                "args": [_encode_value(t, v) for t, v in zip(types, self.call.args)],
            }
            if self.call.selector:
                call["selector"] = self.call.selector
        else:
            call = {"function": None}
        return {
            "call": call,
            "sender": self.sender,
            "destination": self.destination,
            "gas": self.gas,
            "gas_price": self.gas_price,
            "value": self.value,
            "delay": [self.delay[0], self.delay[1]],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Tx:
        raw_call = data.get("call") or {}
        if raw_call.get("function") is None:
            call: Call = NO_CALL
        else:
            arg_types = tuple(raw_call.get("arg_types", ()))
            types = [parse_type(t) for t in arg_types]
            raw_args = raw_call.get("args", [])
            if len(raw_args) != len(types):
                raise ValueError(
                    f"{raw_call['function']}: expected {len(types)} args, got {len(raw_args)}"
                )
            call = ContractCall(
                name=raw_call["function"],
                arg_types=arg_types,
                args=tuple(_decode_value(t, v) for t, v in zip(types, raw_args)),
                selector=raw_call.get("selector"),
            )
        delay = data.get("delay", (0, 0))
        return cls(
            call=call,
            sender=data["sender"],
            destination=data["destination"],
            gas=int(data["gas"]),
            gas_price=int(data.get("gas_price", 0)),
            value=int(data.get("value", 0)),
            delay=(int(delay[0]), int(delay[1])),
        )


Sequence = tuple[Tx, ...]


def _encode_value(t: AbiType, value: Any) -> Any:
    if t.kind == "array":
        return [_encode_value(t.element, v) for v in value]  # type: ignore[arg-type]
    if t.kind in ("bytes", "fixed_bytes"):
        return "0x" + bytes(value).hex()
    return value


def _decode_value(t: AbiType, value: Any) -> Any:
    if t.kind == "array":
        return tuple(_decode_value(t.element, v) for v in value)  # type: ignore[arg-type]
    if t.kind in ("bytes", "fixed_bytes"):
        text = value[2:] if isinstance(value, str) and value.startswith("0x") else value
        return bytes.fromhex(text)
    if t.is_integer:
        return int(value)
    if t.kind == "bool":
        return bool(value)
    return value


def sequence_to_json(seq: Iterable[Tx]) -> list[dict[str, Any]]:
    return [tx.to_dict() for tx in seq]


def sequence_from_json(data: list[dict[str, Any]]) -> Sequence:
    return tuple(Tx.from_dict(d) for d in data)


def sequence_hash(seq: Iterable[Tx]) -> str:
    """Stable content hash of a sequence."""
    canonical = json.dumps(sequence_to_json(seq), sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode()).hexdigest()[:32]


def distinct_senders(seq: Iterable[Tx]) -> set[str]:
    return {tx.sender for tx in seq}
