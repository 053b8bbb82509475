"""Pydantic configuration models with code-baked defaults.

Sparse TOML contract: defaults baked here, regctl.toml only contains overrides.
Durations are plain seconds in TOML (or ISO 8601 durations, which pydantic
also accepts for ``timedelta`` fields).
"""

from __future__ import annotations

from datetime import timedelta
from decimal import Decimal
from typing import Literal

from pydantic import BaseModel, Field


class RegistryConfig(BaseModel):
    """[registry] section — defaults for TLDs created without explicit values."""

    model_config = {"frozen": True}

    automatic_transfer_length: timedelta = timedelta(days=5)
    transfer_grace_period: timedelta = timedelta(days=5)
    transfer_lock_period: timedelta = timedelta(days=60)
    default_renew_cost: Decimal = Decimal("8.00")
    currency: str = "USD"


class StorageConfig(BaseModel):
    """[storage] section — contention handling for single-resource transactions."""

    model_config = {"frozen": True}

    busy_timeout: float = 5.0
    max_retries: int = Field(default=3, ge=1)
    retry_base_delay: float = 0.1
    retry_max_delay: float = 5.0


class DeletionConfig(BaseModel):
    """[deletion] section."""

    model_config = {"frozen": True}

    failfast_check_count: int = Field(default=5, ge=0)
    scan_time_budget: float = 3600.0
    shard_count: int = Field(default=4, ge=1)


class IntegrityConfig(BaseModel):
    """[integrity] section."""

    model_config = {"frozen": True}

    shard_count: int = Field(default=4, ge=1)
    sink: Literal["table", "memory"] = "table"


class JobsConfig(BaseModel):
    """[jobs] section."""

    model_config = {"frozen": True}

    max_workers: int = Field(default=4, ge=1)
    sync: bool = False
