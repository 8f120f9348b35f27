"""Port for best-effort fan-out of committed activity."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from escrowsync.domain.model import ActivityRecord, Agreement


@dataclass(frozen=True, slots=True)
class PublicationEvent:
    channel: str
    type: str
    payload: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class Publisher(Protocol):
    """Deliver events for a committed record. Must not raise or block."""

    def publish(self, record: ActivityRecord, agreement: Agreement | None = None) -> None: ...


__all__ = ["PublicationEvent", "Publisher"]
