"""JSON-RPC client for the ledger gateway."""

from __future__ import annotations

import itertools
from logging import getLogger
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import ValidationError

from escrowsync.adapters.http_resilience import ResilientClient
from escrowsync.domain.amounts import is_valid_address, normalize_address, parse_quantity
from escrowsync.domain.errors import InvalidReference, InvariantViolation, UnreachableSource
from .schema import AgreementPayload, MilestonePayload, NotificationPayload, RpcResponse
from .translator import parse_agreement, parse_milestone, parse_notifications

if TYPE_CHECKING:
    from collections.abc import Callable

    from escrowsync.config.http_resilience import ResilienceConfig
    from escrowsync.config.ledger import LedgerConfig
    from escrowsync.domain.model import Agreement, Milestone
    from escrowsync.domain.notifications import Notification
    from escrowsync.domain.ports.ledger import PartyFilter

log = getLogger(__name__)

# "execution reverted" and "resource not found" are how the gateway reports unknown ids.
NOT_FOUND_CODES = frozenset({3, -32001})


def _default_client_factory(config: ResilienceConfig) -> ResilientClient:
    return ResilientClient(config)


class LedgerAPIError(UnreachableSource):
    """Raised when the gateway answers with an error object or an unusable payload."""

    def __init__(self, message: str, *, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code


class LedgerRpcError(LedgerAPIError):
    """The gateway answered with a JSON-RPC error object."""


class JsonRpcLedgerClient:
    """Read-only ledger queries over JSON-RPC 2.0."""

    def __init__(
        self,
        config: LedgerConfig,
        *,
        client_factory: Callable[[ResilienceConfig], ResilientClient] = _default_client_factory,
    ) -> None:
        self.config = config
        self._client = client_factory(config.resilience)
        self._request_ids = itertools.count(1)

    async def __aenter__(self) -> JsonRpcLedgerClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def fetch_agreement(self, agreement_id: int) -> Agreement:
        result = await self.call("ledger_getAgreement", [agreement_id])
        if result is None:
            raise InvalidReference(f"Agreement {agreement_id} does not exist on the ledger")
        payload = self._validate(AgreementPayload, result, "ledger_getAgreement")
        # Unknown ids come back as a zeroed struct.
        if payload.id != agreement_id:
            raise InvalidReference(f"Agreement {agreement_id} does not exist on the ledger")
        try:
            return parse_agreement(payload)
        except ValueError as exc:
            raise InvariantViolation(f"Agreement {agreement_id} is not decodable: {exc}") from exc

    async def fetch_milestone(self, agreement_id: int, index: int) -> Milestone:
        result = await self.call("ledger_getMilestone", [agreement_id, index])
        if result is None:
            raise InvalidReference(f"Milestone {agreement_id}/{index} does not exist on the ledger")
        payload = self._validate(MilestonePayload, result, "ledger_getMilestone")
        try:
            return parse_milestone(agreement_id, index, payload)
        except ValueError as exc:
            raise InvariantViolation(
                f"Milestone {agreement_id}/{index} is not decodable: {exc}"
            ) from exc

    async def fetch_party_agreements(
        self, address: str, role: PartyFilter = "both"
    ) -> frozenset[int]:
        try:
            party = normalize_address(address)
        except ValueError as exc:
            raise InvalidReference(str(exc)) from exc
        roles = ("company", "talent") if role == "both" else (role,)
        agreement_ids: set[int] = set()
        for current in roles:
            result = await self.call("ledger_getPartyAgreements", [party, current])
            if not isinstance(result, list):
                raise LedgerAPIError("ledger_getPartyAgreements returned a non-list result")
            try:
                agreement_ids.update(parse_quantity(value) for value in result)
            except (AttributeError, TypeError, ValueError) as exc:
                raise LedgerAPIError(f"ledger_getPartyAgreements returned {result!r}") from exc
        return frozenset(agreement_ids)

    async def verify_signed_message(
        self, message: str, signature: str, claimed_address: str
    ) -> bool:
        """Return whether ``signature`` over ``message`` recovers to ``claimed_address``.

        A malformed address or a signature the gateway rejects verifies as ``False``.
        Transport failures still raise ``UnreachableSource``.
        """

        if not is_valid_address(claimed_address):
            return False
        try:
            recovered = await self.call("personal_ecRecover", [message, signature])
        except (InvalidReference, LedgerRpcError) as exc:
            log.debug(f"Signature verification failed: {exc}")
            return False
        if not isinstance(recovered, str):
            return False
        return recovered.lower() == claimed_address.lower()

    async def block_number(self) -> int:
        result = await self.call("eth_blockNumber", [])
        try:
            return parse_quantity(result)
        except (AttributeError, TypeError, ValueError) as exc:
            raise LedgerAPIError(f"eth_blockNumber returned {result!r}") from exc

    async def notifications(self, from_position: int, to_position: int) -> list[Notification]:
        """Notifications emitted in blocks ``from_position`` to ``to_position`` inclusive."""

        if to_position < from_position:
            return []
        result = await self.call("ledger_getNotifications", [hex(from_position), hex(to_position)])
        if not isinstance(result, list):
            raise LedgerAPIError("ledger_getNotifications returned a non-list result")
        payloads: list[NotificationPayload] = []
        for raw in result:  # pyright: ignore[reportUnknownVariableType]
            try:
                payloads.append(NotificationPayload.model_validate(raw))
            except ValidationError as exc:
                log.error(f"Dropping undecodable notification at {from_position}: {exc}")
        return parse_notifications(payloads)

    async def call(self, method: str, params: list[object]) -> Any:
        request = {
            "jsonrpc": "2.0",
            "id": next(self._request_ids),
            "method": method,
            "params": params,
        }
        try:
            response = await self._client.post(self.config.rpc_url, json=request)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status < 500 and status != 429:
                raise LedgerAPIError(f"{method} rejected with HTTP {status}", code=status) from exc
            raise UnreachableSource(f"{method} failed with HTTP {status}") from exc
        except httpx.HTTPError as exc:
            raise UnreachableSource(f"{method} failed: {exc}") from exc

        try:
            envelope = RpcResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise LedgerAPIError(f"{method} returned a malformed JSON-RPC response") from exc

        if envelope.error is not None:
            error = envelope.error
            if error.code in NOT_FOUND_CODES:
                raise InvalidReference(f"{method}{params}: {error.message}")
            log.error(f"Ledger RPC error {error.code} for {method}: {error.message}")
            raise LedgerRpcError(error.message, code=error.code)
        return envelope.result

    @staticmethod
    def _validate[TModel: AgreementPayload | MilestonePayload](
        model: type[TModel], result: object, method: str
    ) -> TModel:
        try:
            return model.model_validate(result)
        except ValidationError as exc:
            raise LedgerAPIError(f"{method} returned an invalid payload: {exc}") from exc


__all__ = ["NOT_FOUND_CODES", "JsonRpcLedgerClient", "LedgerAPIError", "LedgerRpcError"]
