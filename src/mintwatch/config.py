from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Mapping

from eth_utils import is_address

from .domain.errors import ConfigError
from .domain.value_types import Address

ENV_PREFIX = "MINTWATCH_"


def _opt_int(env: Mapping[str, str], name: str, default: int | None) -> int | None:
    raw = env.get(ENV_PREFIX + name, "").strip()
    if not raw:
        return default
    try:
        return int(raw, 10)
    except ValueError as e:
        raise ConfigError(f"{ENV_PREFIX}{name} must be an integer, got {raw!r}") from e


def _opt_str(env: Mapping[str, str], name: str) -> str | None:
    raw = env.get(ENV_PREFIX + name, "").strip()
    return raw or None


@dataclass(slots=True, frozen=True)
class MonitorConfig:
    contract_address: Address
    rpc_endpoint: str
    start_height: int | None = None
    poll_interval_ms: int = 15_000
    dedup_cache_capacity: int = 4_096
    max_backoff_ms: int = 60_000
    base_backoff_ms: int = 1_000
    max_block_span: int = 2_000
    request_timeout_s: int = 20
    backfill_endpoint: str | None = None
    webhook_url: str | None = None

    def __post_init__(self) -> None:
        if not self.contract_address:
            raise ConfigError("contract address is required")
        if not is_address(self.contract_address):
            raise ConfigError(f"contract address {self.contract_address!r} is not a valid address")
        object.__setattr__(self, "contract_address", Address(self.contract_address.lower()))
        if not self.rpc_endpoint:
            raise ConfigError("rpc endpoint is required")
        if self.start_height is not None and self.start_height < 0:
            raise ConfigError(f"start height must be >= 0, got {self.start_height}")
        for name in ("poll_interval_ms", "dedup_cache_capacity", "base_backoff_ms", "max_block_span", "request_timeout_s"):
            if getattr(self, name) < 1:
                raise ConfigError(f"{name} must be >= 1, got {getattr(self, name)}")
        if self.max_backoff_ms < self.base_backoff_ms:
            raise ConfigError(f"max_backoff_ms ({self.max_backoff_ms}) must be >= base_backoff_ms ({self.base_backoff_ms})")

    def require_scheme(self, *schemes: str) -> None:
        if not self.rpc_endpoint.lower().startswith(tuple(s + "://" for s in schemes)):
            raise ConfigError(f"rpc endpoint {self.rpc_endpoint!r} must use one of: {', '.join(schemes)}")

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None, **overrides: Any) -> "MonitorConfig":
        """Build from MINTWATCH_* variables; keyword overrides win when not None."""
        env = os.environ if env is None else env
        values: dict[str, Any] = {
            "contract_address":     _opt_str(env, "CONTRACT_ADDRESS"),
            "rpc_endpoint":         _opt_str(env, "RPC_ENDPOINT"),
            "start_height":         _opt_int(env, "START_HEIGHT", None),
            "poll_interval_ms":     _opt_int(env, "POLL_INTERVAL_MS", 15_000),
            "dedup_cache_capacity": _opt_int(env, "DEDUP_CACHE_CAPACITY", 4_096),
            "max_backoff_ms":       _opt_int(env, "MAX_BACKOFF_MS", 60_000),
            "base_backoff_ms":      _opt_int(env, "BASE_BACKOFF_MS", 1_000),
            "max_block_span":       _opt_int(env, "MAX_BLOCK_SPAN", 2_000),
            "request_timeout_s":    _opt_int(env, "REQUEST_TIMEOUT_S", 20),
            "backfill_endpoint":    _opt_str(env, "BACKFILL_ENDPOINT"),
            "webhook_url":          _opt_str(env, "WEBHOOK_URL"),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        if not values["contract_address"]:
            raise ConfigError(f"missing {ENV_PREFIX}CONTRACT_ADDRESS (or --contract)")
        if not values["rpc_endpoint"]:
            raise ConfigError(f"missing {ENV_PREFIX}RPC_ENDPOINT (or --rpc)")
        return cls(**values)
