"""Read-only port onto the ledger that owns canonical agreement state."""

from __future__ import annotations

from typing import TYPE_CHECKING, Literal, Protocol, runtime_checkable

if TYPE_CHECKING:
    from escrowsync.domain.model import Agreement, Milestone

PartyFilter = Literal["company", "talent", "both"]


@runtime_checkable
class LedgerClient(Protocol):
    """Pure queries against the latest observed ledger state.

    Implementations must not cache: callers decide how fresh a read has to be.
    Failures surface as ``UnreachableSource`` or ``InvalidReference``.
    """

    async def fetch_agreement(self, agreement_id: int) -> Agreement: ...

    async def fetch_milestone(self, agreement_id: int, index: int) -> Milestone: ...

    async def fetch_party_agreements(
        self, address: str, role: PartyFilter = "both"
    ) -> frozenset[int]: ...

    async def verify_signed_message(
        self, message: str, signature: str, claimed_address: str
    ) -> bool: ...

    async def aclose(self) -> None: ...


__all__ = ["LedgerClient", "PartyFilter"]
