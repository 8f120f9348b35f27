"""In-process fan-out of committed activity to per-address channels.

Channels are lower-cased party addresses. Each subscriber owns a bounded queue;
a full queue drops the event for that subscriber only, so a slow consumer can
never stall reconciliation.
"""

from __future__ import annotations

import asyncio
from logging import getLogger
from typing import TYPE_CHECKING, Any

from escrowsync.domain.amounts import format_amount
from escrowsync.domain.model import NotificationType
from escrowsync.domain.ports.publication import PublicationEvent, Publisher

if TYPE_CHECKING:
    from types import TracebackType

    from escrowsync.domain.model import ActivityRecord, Agreement

log = getLogger(__name__)

DEFAULT_SUBSCRIPTION_SIZE = 100


def events_for(
    record: ActivityRecord, agreement: Agreement | None = None
) -> list[PublicationEvent]:
    """Map a committed record to the events its parties are told about."""

    company = record.company
    talent = record.talent
    base: dict[str, Any] = {"contractId": record.agreement_id}
    payload = record.payload
    targets: list[tuple[str | None, str, dict[str, Any]]] = []

    match record.type:
        case NotificationType.AGREEMENT_CREATED:
            amount = format_amount(payload.amount_value)
            targets.append(
                (company, "contract-created", {**base, "talent": talent, "amount": amount})
            )
            targets.append(
                (talent, "contract-received", {**base, "company": company, "amount": amount})
            )
        case NotificationType.AGREEMENT_ACCEPTED:
            targets.append((company, "contract-accepted", {**base, "talent": talent}))
        case NotificationType.MILESTONE_SUBMITTED:
            data = {**base, "milestoneIndex": payload.milestone_index}
            targets.append((company, "milestone-submitted", data))
        case NotificationType.MILESTONE_APPROVED:
            data = {**base, "milestoneIndex": payload.milestone_index}
            targets.append((talent, "milestone-approved", data))
        case NotificationType.MILESTONE_PAID:
            data = {
                **base,
                "milestoneIndex": payload.milestone_index,
                "amount": format_amount(payload.amount_value),
            }
            targets.append((talent, "milestone-paid", data))
        case NotificationType.AGREEMENT_DISPUTED:
            data = {**base, "initiator": record.initiator, "reason": payload.reason}
            targets.extend((party, "contract-disputed", data) for party in (company, talent))
        case NotificationType.CREDENTIAL_ISSUED:
            data = {
                "tokenId": payload.token_id,
                "skillName": payload.skill_name,
                "issuer": company,
                "contractId": record.agreement_id,
            }
            targets.append((talent, "credential-received", data))
        case kind:
            event_type = _BOTH_PARTIES_EVENTS[kind]
            targets.extend((party, event_type, dict(base)) for party in (company, talent))

    if agreement is not None:
        status = agreement.status.value
        for _channel, _event_type, data in targets:
            data.setdefault("status", status)

    return [
        PublicationEvent(channel=channel, type=event_type, payload=data)
        for channel, event_type, data in targets
        if channel is not None
    ]


_BOTH_PARTIES_EVENTS: dict[NotificationType, str] = {
    NotificationType.AGREEMENT_ACTIVATED: "contract-activated",
    NotificationType.AGREEMENT_COMPLETED: "contract-completed",
    NotificationType.AGREEMENT_FINALIZED: "contract-finalized",
    NotificationType.AGREEMENT_CANCELLED: "contract-cancelled",
}


class Subscription:
    """Bounded stream of events for one channel; iterate with ``async for``."""

    def __init__(self, hub: ChannelHub, channel: str, maxsize: int) -> None:
        self.channel = channel
        self._hub = hub
        self._queue: asyncio.Queue[PublicationEvent] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def offer(self, event: PublicationEvent) -> bool:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            log.debug(f"Dropping {event.type} for slow subscriber on {self.channel}")
            return False
        return True

    async def get(self) -> PublicationEvent:
        return await self._queue.get()

    def get_nowait(self) -> PublicationEvent:
        return self._queue.get_nowait()

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        self._hub.unsubscribe(self)

    def __aiter__(self) -> Subscription:
        return self

    async def __anext__(self) -> PublicationEvent:
        return await self.get()

    def __enter__(self) -> Subscription:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()


class ChannelHub:
    """Publisher that delivers events to in-process subscribers keyed by address."""

    def __init__(self, *, subscription_size: int = DEFAULT_SUBSCRIPTION_SIZE) -> None:
        self._subscription_size = subscription_size
        self._subscribers: dict[str, list[Subscription]] = {}

    def subscribe(self, address: str) -> Subscription:
        channel = address.lower()
        subscription = Subscription(self, channel, self._subscription_size)
        self._subscribers.setdefault(channel, []).append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        subscribers = self._subscribers.get(subscription.channel)
        if not subscribers or subscription not in subscribers:
            return
        subscribers.remove(subscription)
        if not subscribers:
            del self._subscribers[subscription.channel]

    def subscriber_count(self, address: str | None = None) -> int:
        if address is None:
            return sum(len(subscribers) for subscribers in self._subscribers.values())
        return len(self._subscribers.get(address.lower(), ()))

    def publish(self, record: ActivityRecord, agreement: Agreement | None = None) -> None:
        for event in events_for(record, agreement):
            for subscription in tuple(self._subscribers.get(event.channel, ())):
                subscription.offer(event)


if TYPE_CHECKING:
    _publisher_check: Publisher = ChannelHub()


__all__ = ["ChannelHub", "Subscription", "events_for"]
