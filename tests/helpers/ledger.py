from __future__ import annotations

from collections import defaultdict, deque
from typing import TYPE_CHECKING

from escrowsync.domain.errors import InvalidReference, UnreachableSource

if TYPE_CHECKING:
    from escrowsync.domain.model import Agreement, Milestone
    from escrowsync.domain.ports.ledger import PartyFilter


class FakeLedger:
    """In-memory ledger; ``script`` queues one-off snapshots served before the current state."""

    def __init__(self) -> None:
        self.agreements: dict[int, Agreement] = {}
        self.script: dict[int, deque[Agreement]] = defaultdict(deque)
        self.signatures: dict[tuple[str, str], str] = {}
        self.fail_next = 0
        self.offline = False
        self.fetches: list[int] = []
        self.closed = False

    def put(self, agreement: Agreement) -> None:
        self.agreements[agreement.id] = agreement.copy()

    def queue(self, agreement: Agreement) -> None:
        self.script[agreement.id].append(agreement.copy())

    async def fetch_agreement(self, agreement_id: int) -> Agreement:
        self.fetches.append(agreement_id)
        self._maybe_fail()
        if self.script[agreement_id]:
            return self.script[agreement_id].popleft()
        agreement = self.agreements.get(agreement_id)
        if agreement is None:
            raise InvalidReference(f"Agreement {agreement_id} does not exist")
        return agreement.copy()

    async def fetch_milestone(self, agreement_id: int, index: int) -> Milestone:
        agreement = await self.fetch_agreement(agreement_id)
        milestone = agreement.milestone(index)
        if milestone is None:
            raise InvalidReference(f"Milestone {agreement_id}/{index} does not exist")
        return milestone

    async def fetch_party_agreements(
        self, address: str, role: PartyFilter = "both"
    ) -> frozenset[int]:
        self._maybe_fail()
        address = address.lower()
        ids: set[int] = set()
        for agreement in self.agreements.values():
            if role in {"company", "both"} and agreement.company == address:
                ids.add(agreement.id)
            if role in {"talent", "both"} and agreement.talent == address:
                ids.add(agreement.id)
        return frozenset(ids)

    async def verify_signed_message(
        self, message: str, signature: str, claimed_address: str
    ) -> bool:
        signer = self.signatures.get((message, signature))
        return signer is not None and signer.lower() == claimed_address.lower()

    async def aclose(self) -> None:
        self.closed = True

    def _maybe_fail(self) -> None:
        if self.offline:
            raise UnreachableSource("ledger offline")
        if self.fail_next > 0:
            self.fail_next -= 1
            raise UnreachableSource("ledger timeout")
