"""Ports for retrieving ledger notifications."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Sequence

    from escrowsync.domain.notifications import FeedItem, Notification


@runtime_checkable
class NotificationFeed(Protocol):
    """Replay and live access to the same stream of confirmed notifications.

    Neither mode promises ordering or exactly-once delivery; the reconciliation
    engine's dedup and cursor handling carry correctness.
    """

    async def head(self) -> int: ...

    async def list_notifications(
        self, from_position: int, to_position: int
    ) -> Sequence[Notification]: ...

    def subscribe(self, from_position: int) -> AsyncIterator[FeedItem]: ...

    async def aclose(self) -> None: ...


__all__ = ["NotificationFeed"]
