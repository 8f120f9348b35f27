"""Ledger JSON-RPC configuration values."""

from __future__ import annotations

from dataclasses import dataclass

from .env import optional_env_float, optional_env_int, require_env_vars
from .http_resilience import RateLimit, ResilienceConfig, RetryPolicy

LEDGER_TIMEOUT_SECONDS = 10.0
DEFAULT_POLL_INTERVAL_SECONDS = 4.0
DEFAULT_RATE_LIMIT_PER_SECOND = 20


@dataclass(frozen=True, slots=True)
class LedgerConfig:
    """Holds the ledger endpoint and the feed polling cadence."""

    rpc_url: str
    resilience: ResilienceConfig
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    reconnect_initial_delay: float = 1.0
    reconnect_max_delay: float = 60.0


def get_ledger_config(*, resilience: ResilienceConfig | None = None) -> LedgerConfig:
    values = require_env_vars(("LEDGER_RPC_URL",))
    rpc_url = values["LEDGER_RPC_URL"].strip()
    timeout = optional_env_float("LEDGER_RPC_TIMEOUT", LEDGER_TIMEOUT_SECONDS)
    rate = optional_env_int("LEDGER_RATE_LIMIT", DEFAULT_RATE_LIMIT_PER_SECOND)
    return LedgerConfig(
        rpc_url=rpc_url,
        poll_interval_seconds=optional_env_float(
            "LEDGER_POLL_INTERVAL", DEFAULT_POLL_INTERVAL_SECONDS
        ),
        resilience=resilience
        or ResilienceConfig(
            name="ledger",
            base_url=rpc_url,
            timeout_seconds=timeout,
            retry=RetryPolicy(total=3),
            ratelimit=RateLimit(max_calls=rate, per_seconds=1.0) if rate > 0 else None,
            default_headers={"Content-Type": "application/json"},
        ),
    )
