"""Notification feed backed by the ledger gateway.

Replay pages through ``ledger_getNotifications``. Live mode polls the head, yields
every new block range followed by a ``Checkpoint`` and reconnects with exponential
backoff whenever the gateway is unreachable.
"""

from __future__ import annotations

import asyncio
from logging import getLogger
from typing import TYPE_CHECKING

from escrowsync.domain.errors import UnreachableSource
from escrowsync.domain.notifications import Checkpoint
from escrowsync.domain.reconciliation.retry import Backoff

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable, Sequence

    from escrowsync.config.ledger import LedgerConfig
    from escrowsync.domain.notifications import FeedItem, Notification

    from .client import JsonRpcLedgerClient

log = getLogger(__name__)

DEFAULT_MAX_RANGE = 1000


class LedgerNotificationFeed:
    def __init__(
        self,
        client: JsonRpcLedgerClient,
        config: LedgerConfig,
        *,
        max_range: int = DEFAULT_MAX_RANGE,
        owns_client: bool = False,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._config = config
        self._max_range = max_range
        self._owns_client = owns_client
        self._sleep = sleep
        self._backoff = Backoff(
            initial=config.reconnect_initial_delay,
            maximum=config.reconnect_max_delay,
        )

    async def head(self) -> int:
        return await self._client.block_number()

    async def list_notifications(
        self, from_position: int, to_position: int
    ) -> Sequence[Notification]:
        return await self._client.notifications(max(0, from_position), to_position)

    async def subscribe(self, from_position: int) -> AsyncIterator[FeedItem]:
        """Yield notifications from ``from_position`` on, forever.

        After a reconnect the stream resumes at the block after the last checkpoint it
        yielded, so consumers may see a notification twice but never miss one.
        """

        next_position = max(0, from_position)
        failures = 0
        while True:
            try:
                head = await self._client.block_number()
                if head >= next_position:
                    upper = min(head, next_position + self._max_range - 1)
                    notifications = await self._client.notifications(next_position, upper)
                else:
                    upper = None
                    notifications = []
            except UnreachableSource as exc:
                failures += 1
                delay = self._backoff.delay(failures)
                log.warning(
                    "Ledger subscription lost (%s); reconnecting in %.1fs (attempt %s)",
                    exc,
                    delay,
                    failures,
                )
                await self._sleep(delay)
                continue

            if failures:
                log.info("Ledger subscription restored at block %s", next_position)
                failures = 0
            if upper is None:
                await self._sleep(self._config.poll_interval_seconds)
                continue

            for notification in notifications:
                yield notification
            yield Checkpoint(upper)
            next_position = upper + 1
            if upper >= head:
                await self._sleep(self._config.poll_interval_seconds)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


__all__ = ["DEFAULT_MAX_RANGE", "LedgerNotificationFeed"]
