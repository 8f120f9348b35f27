from __future__ import annotations

import pytest

from escrowsync.config import LedgerConfig, ResilienceConfig, RetryPolicy
from tests.helpers.rpc import RPC_URL


@pytest.fixture
def ledger_config() -> LedgerConfig:
    return LedgerConfig(
        rpc_url=RPC_URL,
        resilience=ResilienceConfig(name="ledger-test", retry=RetryPolicy(total=0)),
        poll_interval_seconds=2.0,
        reconnect_initial_delay=0.25,
        reconnect_max_delay=1.0,
    )
