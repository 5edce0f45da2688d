"""Configuration for fuzzing campaigns.

Two layers:
  - ``CampaignConfig`` / ``TxConfig``: validated pydantic models describing
    one campaign. Built by the caller (or from a config file loaded
    elsewhere) and validated before any worker starts.
  - ``Settings``: environment-level defaults (``PROPFUZZ_*`` variables or a
    ``.env`` file) that can be turned into a ``CampaignConfig``.
"""

from __future__ import annotations

import re
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{1,40}$")

DEFAULT_SENDERS = (
    "0x0000000000000000000000000000000000010000",
    "0x0000000000000000000000000000000000020000",
    "0x0000000000000000000000000000000000030000",
)
DEFAULT_CONTRACT_ADDRESS = "0x00a329c0648769a73afac7f9381e08fb43dbea72"


class TxConfig(BaseModel):
    """Bounds for generated transactions."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_gas_per_tx: int = Field(default=12_500_000, gt=0)
    max_gas_price: int = Field(default=0, ge=0)
    max_value: int = Field(default=100 * 10**18, ge=0)
    max_time_delay: int = Field(default=604_800, ge=0)
    max_block_delay: int = Field(default=60_480, ge=0)
    senders: tuple[str, ...] = DEFAULT_SENDERS
    contract_address: str = DEFAULT_CONTRACT_ADDRESS

    @field_validator("senders")
    @classmethod
    def _check_senders(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        if not v:
            raise ValueError("at least one sender is required")
        for addr in v:
            if not _ADDRESS_RE.match(addr):
                raise ValueError(f"not an address: {addr!r}")
        return v

    @field_validator("contract_address")
    @classmethod
    def _check_contract(cls, v: str) -> str:
        if not _ADDRESS_RE.match(v):
            raise ValueError(f"not an address: {v!r}")
        return v


class CampaignConfig(BaseModel):
    """Parameters for a single fuzzing campaign."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    seq_len: int = Field(default=100, ge=1)
    test_limit: int = Field(default=50_000, ge=1)
    shrink_limit: int = Field(default=5_000, ge=0)
    workers: int = Field(default=1, ge=1, le=256)
    timeout: float | None = Field(default=None, gt=0)
    seed: int | None = None
    dict_freq: float = Field(default=0.40, ge=0.0, le=1.0)
    corpus_mutation_prob: float = Field(default=0.8, ge=0.0, le=1.0)
    max_mutations: int = Field(default=3, ge=1)
    corpus_max_size: int = Field(default=10_000, ge=1)
    corpus_dir: str | None = None
    stop_on_fail: bool = False
    max_worker_restarts: int = Field(default=5, ge=0)
    poll_interval: float = Field(default=0.05, gt=0)
    tx: TxConfig = Field(default_factory=TxConfig)

    @model_validator(mode="after")
    def _check_budget(self) -> CampaignConfig:
        if self.test_limit < self.workers:
            raise ValueError(
                f"test_limit ({self.test_limit}) must be >= workers ({self.workers})"
            )
        return self

    @classmethod
    def quick(cls, **overrides) -> CampaignConfig:
        """Small campaign for smoke runs."""
        params = {"seq_len": 10, "test_limit": 1_000, "shrink_limit": 200}
        params.update(overrides)
        return cls(**params)

    @classmethod
    def deep(cls, **overrides) -> CampaignConfig:
        """Long multi-worker campaign."""
        params = {"seq_len": 100, "test_limit": 500_000, "shrink_limit": 5_000, "workers": 4}
        params.update(overrides)
        return cls(**params)


class Settings(BaseSettings):
    """Environment-level settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="PROPFUZZ_",
        case_sensitive=False,
    )

    # ── Runtime ──────────────────────────────────────────────────────────
    env: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"

    # ── Campaign defaults ────────────────────────────────────────────────
    seq_len: int = 100
    test_limit: int = 50_000
    shrink_limit: int = 5_000
    workers: int = 1
    timeout: float | None = None
    seed: int | None = None
    dict_freq: float = 0.40
    corpus_dir: str | None = None
    stop_on_fail: bool = False

    # ── Transactions ─────────────────────────────────────────────────────
    max_gas_per_tx: int = 12_500_000
    max_time_delay: int = 604_800
    max_block_delay: int = 60_480

    def to_campaign_config(self, **overrides) -> CampaignConfig:
        """Build a validated ``CampaignConfig`` from these settings."""
        params = {
            "seq_len": self.seq_len,
            "test_limit": self.test_limit,
            "shrink_limit": self.shrink_limit,
            "workers": self.workers,
            "timeout": self.timeout,
            "seed": self.seed,
            "dict_freq": self.dict_freq,
            "corpus_dir": self.corpus_dir,
            "stop_on_fail": self.stop_on_fail,
            "tx": TxConfig(
                max_gas_per_tx=self.max_gas_per_tx,
                max_time_delay=self.max_time_delay,
                max_block_delay=self.max_block_delay,
            ),
        }
        params.update(overrides)
        return CampaignConfig(**params)


@lru_cache
def get_settings() -> Settings:
    """Return cached settings singleton."""
    return Settings()
