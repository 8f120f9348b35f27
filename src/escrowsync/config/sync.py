"""Reconciliation defaults for the indexer."""

from __future__ import annotations

from dataclasses import dataclass

from .env import optional_env_float, optional_env_int
from .errors import ConfigurationError

DEFAULT_REPLAY_BATCH_SIZE = 1000
DEFAULT_WORKERS = 4
DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_PLATFORM_FEE_BPS = 200
FEED_NAME = "employment"


@dataclass(frozen=True, slots=True)
class ReconcileSettings:
    replay_batch_size: int = DEFAULT_REPLAY_BATCH_SIZE
    workers: int = DEFAULT_WORKERS
    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    backoff_factor: float = 0.5
    max_backoff_wait: float = 30.0
    platform_fee_bps: int = DEFAULT_PLATFORM_FEE_BPS
    shutdown_grace_seconds: float = 10.0
    queue_size: int = 1000
    feed_name: str = FEED_NAME

    def __post_init__(self) -> None:
        if self.replay_batch_size < 1:
            raise ConfigurationError("Replay batch size must be positive")
        if self.workers < 1:
            raise ConfigurationError("At least one reconciliation worker is required")
        if self.max_attempts < 1:
            raise ConfigurationError("Max attempts must be at least 1")
        if not 0 <= self.platform_fee_bps <= 10_000:
            raise ConfigurationError("Platform fee must be between 0 and 10000 basis points")


def get_reconcile_settings() -> ReconcileSettings:
    return ReconcileSettings(
        replay_batch_size=optional_env_int("ESCROWSYNC_REPLAY_BATCH", DEFAULT_REPLAY_BATCH_SIZE),
        workers=optional_env_int("ESCROWSYNC_WORKERS", DEFAULT_WORKERS),
        max_attempts=optional_env_int("ESCROWSYNC_MAX_ATTEMPTS", DEFAULT_MAX_ATTEMPTS),
        platform_fee_bps=optional_env_int("ESCROWSYNC_FEE_BPS", DEFAULT_PLATFORM_FEE_BPS),
        shutdown_grace_seconds=optional_env_float("ESCROWSYNC_SHUTDOWN_GRACE", 10.0),
    )
