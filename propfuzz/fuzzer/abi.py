"""Callable signatures and ABI type shapes consumed by the generator.

ABI *encoding* is done by the VM executor; here we only need enough
structure to produce type-appropriate Python values for each argument.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Iterable

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from propfuzz.core.errors import ConfigurationError

_ARRAY_RE = re.compile(r"^(.+)\[(\d*)\]$")
_UINT_RE = re.compile(r"^uint(\d*)$")
_INT_RE = re.compile(r"^int(\d*)$")
_BYTES_N_RE = re.compile(r"^bytes(\d+)$")

MAX_DYNAMIC_ARRAY = 8
MAX_DYNAMIC_BYTES = 64


@dataclass(frozen=True)
class AbiType:
    """Parsed shape of a Solidity ABI type string."""

    kind: str                      # uint | int | address | bool | bytes | fixed_bytes | string | array
    bits: int = 0                  # uint/int width
    size: int = 0                  # fixed_bytes width
    element: AbiType | None = None
    length: int | None = None      # None for dynamic arrays

    @property
    def is_integer(self) -> bool:
        return self.kind in ("uint", "int")

    @property
    def min_value(self) -> int:
        if self.kind == "int":
            return -(2 ** (self.bits - 1))
        return 0

    @property
    def max_value(self) -> int:
        if self.kind == "int":
            return 2 ** (self.bits - 1) - 1
        if self.kind == "uint":
            return 2**self.bits - 1
        return 0


def parse_type(type_str: str) -> AbiType:
    """Parse an ABI type string. Raises ``ValueError`` on unsupported types."""
    t = type_str.strip()

    m = _ARRAY_RE.match(t)
    if m:
        inner, length = m.groups()
        return AbiType(
            kind="array",
            element=parse_type(inner),
            length=int(length) if length else None,
        )

    m = _UINT_RE.match(t)
    if m:
        bits = int(m.group(1) or 256)
        if bits % 8 or not 8 <= bits <= 256:
            raise ValueError(f"invalid integer width: {type_str}")
        return AbiType(kind="uint", bits=bits)

    m = _INT_RE.match(t)
    if m:
        bits = int(m.group(1) or 256)
        if bits % 8 or not 8 <= bits <= 256:
            raise ValueError(f"invalid integer width: {type_str}")
        return AbiType(kind="int", bits=bits)

    m = _BYTES_N_RE.match(t)
    if m:
        size = int(m.group(1))
        if not 1 <= size <= 32:
            raise ValueError(f"invalid bytes width: {type_str}")
        return AbiType(kind="fixed_bytes", size=size)

    if t in ("address", "bool", "bytes", "string"):
        return AbiType(kind=t)

    raise ValueError(f"unsupported ABI type: {type_str}")


class FunctionSignature(BaseModel):
    """A callable function of the contract under test."""

    model_config = ConfigDict(frozen=True)

    name: str
    inputs: tuple[str, ...] = ()
    payable: bool = False
    selector: str | None = None

    @field_validator("name")
    @classmethod
    def _check_name(cls, v: str) -> str:
        if not v or not v.isidentifier():
            raise ValueError(f"invalid function name: {v!r}")
        return v

    @field_validator("inputs")
    @classmethod
    def _check_inputs(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        for t in v:
            parse_type(t)
        return v

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(self.inputs)})"

    @property
    def input_types(self) -> tuple[AbiType, ...]:
        return tuple(parse_type(t) for t in self.inputs)

    @classmethod
    def from_abi(cls, entry: dict[str, Any]) -> FunctionSignature:
        """Create from a JSON ABI function entry."""
        return cls(
            name=entry.get("name", ""),
            inputs=tuple(i.get("type", "") for i in entry.get("inputs", [])),
            payable=entry.get("stateMutability") == "payable" or bool(entry.get("payable")),
            selector=entry.get("selector"),
        )


def load_signatures(
    abi: Iterable[dict[str, Any]],
    exclude: Iterable[str] = (),
) -> list[FunctionSignature]:
    """Extract fuzzable functions from an ABI (non-view, non-pure).

    Raises ``ConfigurationError`` when an entry cannot be validated.
    """
    excluded = set(exclude)
    signatures: list[FunctionSignature] = []
    for entry in abi:
        if entry.get("type", "function") != "function":
            continue
        if entry.get("stateMutability") in ("view", "pure"):
            continue
        if entry.get("name") in excluded:
            continue
        try:
            signatures.append(FunctionSignature.from_abi(entry))
        except ValidationError as exc:
            raise ConfigurationError.from_validation_error(
                exc, context=f"ABI entry {entry.get('name')!r}"
            ) from exc
    return signatures
