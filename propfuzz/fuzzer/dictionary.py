"""Generation dictionary: the pool of "interesting" constants.

Each worker owns its own ``GenDict`` (a copy of the shared initial pool)
and may grow it with values observed during execution, so no locking is
needed here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from propfuzz.fuzzer.abi import AbiType

# Well-known boundary values for Solidity integer types
INTERESTING_INTS = (
    0,
    1,
    2,
    -1,
    0xFF,
    0xFFFF,
    0xFFFFFFFF,
    2**64 - 1,
    2**128 - 1,
    2**128,
    2**255 - 1,
    -(2**255),
    2**256 - 1,
    2**256 - 2,
    10**18,
)

INTERESTING_ADDRESSES = (
    "0x0000000000000000000000000000000000000000",
    "0x0000000000000000000000000000000000000001",
    "0xdead000000000000000000000000000000000000",
    "0xffffffffffffffffffffffffffffffffffffffff",
)

INTERESTING_BYTES = (
    b"",
    b"\x00" * 32,
    b"\xff" * 32,
    b"\x00" * 31 + b"\x01",
)

MAX_LEARNED = 5_000


@dataclass
class GenDict:
    """Seed plus pools of interesting literal values."""

    seed: int
    ints: set[int] = field(default_factory=lambda: set(INTERESTING_INTS))
    addresses: set[str] = field(default_factory=lambda: set(INTERESTING_ADDRESSES))
    byte_values: set[bytes] = field(default_factory=lambda: set(INTERESTING_BYTES))
    strings: set[str] = field(default_factory=lambda: {""})

    @classmethod
    def with_constants(cls, seed: int, constants: Iterable[Any] = ()) -> GenDict:
        """Build a dictionary seeded with extra constants (e.g. mined from bytecode)."""
        d = cls(seed=seed)
        for value in constants:
            d.learn(value)
        return d

    def copy(self) -> GenDict:
        return GenDict(
            seed=self.seed,
            ints=set(self.ints),
            addresses=set(self.addresses),
            byte_values=set(self.byte_values),
            strings=set(self.strings),
        )

    @property
    def size(self) -> int:
        return len(self.ints) + len(self.addresses) + len(self.byte_values) + len(self.strings)

    def learn(self, value: Any) -> None:
        """Add an observed value (recursing into tuples/lists)."""
        if self.size >= MAX_LEARNED:
            return
        if isinstance(value, bool):
            return
        if isinstance(value, int):
            self.ints.add(value)
        elif isinstance(value, str):
            if value.startswith("0x") and len(value) == 42:
                self.addresses.add(value.lower())
            else:
                self.strings.add(value)
        elif isinstance(value, (bytes, bytearray)):
            self.byte_values.add(bytes(value))
        elif isinstance(value, (list, tuple)):
            for item in value:
                self.learn(item)

    def candidates(self, t: AbiType) -> list[Any]:
        """Dictionary values compatible with an ABI type, sorted for determinism."""
        if t.is_integer:
            return sorted(v for v in self.ints if t.min_value <= v <= t.max_value)
        if t.kind == "address":
            return sorted(self.addresses)
        if t.kind == "fixed_bytes":
            return sorted(v for v in self.byte_values if len(v) == t.size)
        if t.kind == "bytes":
            return sorted(self.byte_values)
        if t.kind == "string":
            return sorted(self.strings)
        return []
