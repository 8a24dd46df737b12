"""Settings module with unified configuration precedence: CLI > ENV > CONFIG FILE."""

from __future__ import annotations

import os
import tomllib
from enum import Enum
from pathlib import Path
from typing import Annotated, Any
from urllib.parse import urlsplit

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    NoDecode,
    SettingsConfigDict,
)

from .constants import (
    BLOCKS_PER_CYCLE,
    DEFAULT_SEPOLIA_RPC_URLS,
    INITIAL_BLOCKS_UNTIL_CRON,
)

load_dotenv()


class RunMode(str, Enum):
    AUTO = "auto"
    LIVE = "live"
    SIMULATED = "simulated"


class SimulatedPoolSettings(BaseModel):
    pool_id: str
    label: str
    apy: float = Field(ge=0)

    model_config = ConfigDict(extra="ignore")


def _default_simulated_pools() -> list[SimulatedPoolSettings]:
    return [
        SimulatedPoolSettings(pool_id="pool-a", label="SparkLend", apy=5.2),
        SimulatedPoolSettings(pool_id="pool-b", label="Aave V3", apy=4.8),
        SimulatedPoolSettings(pool_id="pool-c", label="Compound", apy=3.9),
    ]


class SimulationSettings(BaseModel):
    """Synthetic rate drift used when no live vault is configured."""

    pools: list[SimulatedPoolSettings] = Field(default_factory=_default_simulated_pools)
    initial_active_pool: str = "pool-a"
    threshold_percent: float = Field(default=2.0, ge=0)
    max_drift_percent: float = Field(default=0.4, ge=0)
    min_apy_percent: float = Field(default=2.0, ge=0)
    max_apy_percent: float = Field(default=8.0, gt=0)
    drift_interval_seconds: float = Field(default=3.0, gt=0)
    rate_update_log_percent: float = Field(default=0.1, ge=0)
    trend_percent: float = Field(default=0.1, ge=0)
    seed: int | None = None

    model_config = ConfigDict(extra="ignore")

    @model_validator(mode="after")
    def validate_pools(self) -> "SimulationSettings":
        if self.min_apy_percent >= self.max_apy_percent:
            raise ValueError(
                f"min_apy_percent ({self.min_apy_percent}) must be less than "
                f"max_apy_percent ({self.max_apy_percent})"
            )
        if not self.pools:
            raise ValueError("simulation requires at least one pool")
        ids = [pool.pool_id for pool in self.pools]
        if len(set(ids)) != len(ids):
            raise ValueError(f"Duplicate simulated pool ids: {ids}")
        if self.initial_active_pool not in ids:
            raise ValueError(
                f"initial_active_pool '{self.initial_active_pool}' is not one of {ids}"
            )
        return self


class RebalanceSettings(BaseModel):
    """Timing of the rebalance state machine."""

    debounce_seconds: float = Field(default=0.5, ge=0)
    step_seconds: float = Field(default=2.0, ge=0)

    model_config = ConfigDict(extra="ignore")


class VaultSettings(BaseSettings):
    """Single source of truth for configuration. Values may come from:
    - CLI (init kwargs)
    - ENV / .env (prefixed with YIELD_VAULT_)
    - Config file (TOML), lowest precedence

    Do not read os.environ or files elsewhere in the codebase.
    """

    mode: RunMode = RunMode.AUTO

    # --- vault / endpoints ---
    vault_address: str | None = None
    rpc_endpoints: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_SEPOLIA_RPC_URLS)
    )
    rpc_timeout_seconds: float = Field(default=10.0, gt=0)

    # --- timers ---
    poll_interval_seconds: float = Field(default=30.0, gt=0)
    tick_interval_seconds: float = Field(default=1.0, gt=0)
    blocks_per_cycle: int = Field(default=BLOCKS_PER_CYCLE, gt=0)
    initial_blocks_until_cron: int = Field(default=INITIAL_BLOCKS_UNTIL_CRON, gt=0)

    # --- activity log ---
    activity_log_size: int = Field(default=20, gt=0)
    origin_chain_label: str = "Reactive"
    destination_chain_label: str = "Sepolia"

    # --- logging ---
    log_level: str = "INFO"

    simulation: SimulationSettings = Field(default_factory=SimulationSettings)
    rebalance: RebalanceSettings = Field(default_factory=RebalanceSettings)

    model_config = SettingsConfigDict(
        env_prefix="YIELD_VAULT_",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",  # ignore unknown keys in env/config file
    )

    @field_validator("rpc_endpoints", mode="before")
    @classmethod
    def split_endpoints(cls, v: Any) -> Any:
        """Accept a comma separated string (handy for env vars)."""
        if isinstance(v, str):
            return [item.strip() for item in v.split(",") if item.strip()]
        return v

    @model_validator(mode="after")
    def validate_live_endpoints(self) -> "VaultSettings":
        if self.is_live and not self.rpc_endpoints:
            raise ValueError("rpc_endpoints must contain at least one URL in live mode")
        return self

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Custom config-file source with explicit precedence: CLI > ENV > FILE."""
        env_cfg = os.environ.get("YIELD_VAULT_CONFIG")
        cfg_path = Path(env_cfg) if env_cfg else None

        class TomlConfigSource(PydanticBaseSettingsSource):
            def __init__(self, settings_cls: type[BaseSettings], path: Path | None):
                super().__init__(settings_cls)
                self._path = path

            def get_field_value(
                self, field: Any, field_name: str
            ) -> tuple[Any, str, bool]:
                return None, "", False

            def __call__(self) -> dict[str, Any]:
                if not self._path:
                    # Try default locations
                    local_config = Path("yield-vault.toml")
                    user_config = Path.home() / ".config" / "yield-vault" / "config.toml"
                    if local_config.exists():
                        self._path = local_config
                    elif user_config.exists():
                        self._path = user_config
                    else:
                        return {}

                if not self._path.exists():
                    return {}

                with self._path.open("rb") as f:
                    data = tomllib.load(f)  # supports top-level or [yield_vault]
                body = data.get("yield_vault", data)
                if not isinstance(body, dict):
                    return {}
                return body

        return (
            init_settings,  # CLI (highest)
            env_settings,  # ENV
            dotenv_settings,  # .env
            TomlConfigSource(settings_cls, cfg_path),  # CONFIG (lowest)
            file_secret_settings,  # optional secrets dir
        )

    def as_safe_dict(self) -> dict[str, Any]:
        """Return the config as a dict with RPC URL paths redacted.

        Hosted RPC providers embed API keys in the path or query string.
        """
        data = self.model_dump(mode="json")
        data["rpc_endpoints"] = [redact_url(url) for url in self.rpc_endpoints]
        return data

    @property
    def is_live(self) -> bool:
        """Live mode reads the vault contract; otherwise rates are simulated."""
        if self.mode is RunMode.LIVE:
            return True
        if self.mode is RunMode.SIMULATED:
            return False
        return self.vault_address is not None

    @property
    def vault_address_required(self) -> str:
        """Get vault_address, raising ValueError if not set."""
        if self.vault_address is None:
            raise ValueError("vault_address must be configured")
        return self.vault_address


def redact_url(url: str) -> str:
    parts = urlsplit(url)
    if not parts.scheme or not parts.hostname:
        return "***redacted***"
    host = parts.hostname
    if parts.port:
        host = f"{host}:{parts.port}"
    if parts.path.strip("/") or parts.query:
        return f"{parts.scheme}://{host}/***redacted***"
    return f"{parts.scheme}://{host}"
