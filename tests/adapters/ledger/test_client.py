from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import httpx
import pytest

from escrowsync.adapters.ledger import JsonRpcLedgerClient, LedgerAPIError
from escrowsync.domain.amounts import UNIT
from escrowsync.domain.errors import InvalidReference, InvariantViolation, UnreachableSource
from escrowsync.domain.model import AgreementStatus, MilestoneStatus
from escrowsync.domain.notifications import AgreementCreated, MilestonePaid
from tests.helpers.agreements import COMPANY, TALENT
from tests.helpers.rpc import (
    agreement_payload,
    make_client_factory,
    notification_payload,
    rpc_error,
    rpc_result,
)

if TYPE_CHECKING:
    from escrowsync.config import LedgerConfig
    from tests.helpers.rpc import RpcHandler


def _client(
    config: LedgerConfig,
    handler: RpcHandler,
    requests: list[dict[str, Any]] | None = None,
) -> JsonRpcLedgerClient:
    return JsonRpcLedgerClient(config, client_factory=make_client_factory(handler, requests))


def test_fetch_agreement_translates_the_ledger_struct(ledger_config: LedgerConfig) -> None:
    requests: list[dict[str, Any]] = []

    def handler(method: str, params: list[Any]) -> httpx.Response:
        assert method == "ledger_getAgreement"
        assert params == [1]
        return rpc_result(agreement_payload(1))

    agreement = asyncio.run(_client(ledger_config, handler, requests).fetch_agreement(1))

    assert requests[0]["jsonrpc"] == "2.0"
    assert isinstance(requests[0]["id"], int)
    assert agreement.id == 1
    assert agreement.company == COMPANY
    assert agreement.talent == TALENT
    assert agreement.title == "Backend engineer"
    assert agreement.total_amount == 3 * UNIT
    assert agreement.status is AgreementStatus.ACTIVE
    assert agreement.start_at == datetime(2025, 1, 1, tzinfo=UTC)
    assert agreement.end_at is None
    assert agreement.company_approved
    assert [milestone.index for milestone in agreement.milestones] == [0, 1]
    design, build = agreement.milestones
    assert design.status is MilestoneStatus.PAID
    assert design.deadline is None
    assert design.deliverable_ref == "ipfs://design"
    assert build.amount == 2 * UNIT
    assert build.status is MilestoneStatus.IN_PROGRESS
    assert build.deliverable_ref is None
    agreement.check_escrow()


def test_unknown_agreement_is_an_invalid_reference(ledger_config: LedgerConfig) -> None:
    def handler(method: str, params: list[Any]) -> httpx.Response:
        return rpc_result(None)

    with pytest.raises(InvalidReference):
        asyncio.run(_client(ledger_config, handler).fetch_agreement(9))


def test_undecodable_agreement_status_is_an_invariant_violation(
    ledger_config: LedgerConfig,
) -> None:
    def handler(method: str, params: list[Any]) -> httpx.Response:
        return rpc_result(agreement_payload(1, status=9))

    with pytest.raises(InvariantViolation, match="status code: 9"):
        asyncio.run(_client(ledger_config, handler).fetch_agreement(1))


def test_undecodable_milestone_status_is_an_invariant_violation(
    ledger_config: LedgerConfig,
) -> None:
    def handler(method: str, params: list[Any]) -> httpx.Response:
        milestone = agreement_payload(1)["milestones"][0]
        milestone["status"] = 9
        return rpc_result(milestone)

    with pytest.raises(InvariantViolation, match="status code: 9"):
        asyncio.run(_client(ledger_config, handler).fetch_milestone(1, 0))


def test_zeroed_agreement_struct_is_an_invalid_reference(ledger_config: LedgerConfig) -> None:
    def handler(method: str, params: list[Any]) -> httpx.Response:
        payload = agreement_payload(0)
        payload["company"] = "0x" + "0" * 40
        payload["talent"] = "0x" + "0" * 40
        payload["milestones"] = []
        return rpc_result(payload)

    with pytest.raises(InvalidReference):
        asyncio.run(_client(ledger_config, handler).fetch_agreement(9))


def test_not_found_error_codes_are_invalid_references(ledger_config: LedgerConfig) -> None:
    def handler(method: str, params: list[Any]) -> httpx.Response:
        return rpc_error(3, "execution reverted: milestone out of range")

    with pytest.raises(InvalidReference):
        asyncio.run(_client(ledger_config, handler).fetch_milestone(1, 5))


def test_other_error_codes_are_transient_api_errors(ledger_config: LedgerConfig) -> None:
    def handler(method: str, params: list[Any]) -> httpx.Response:
        return rpc_error(-32000, "header not found")

    with pytest.raises(LedgerAPIError) as excinfo:
        asyncio.run(_client(ledger_config, handler).fetch_agreement(1))

    assert excinfo.value.code == -32000
    assert isinstance(excinfo.value, UnreachableSource)
    assert excinfo.value.transient


@pytest.mark.parametrize("status", [429, 502, 503])
def test_server_errors_are_unreachable_source(ledger_config: LedgerConfig, status: int) -> None:
    def handler(method: str, params: list[Any]) -> httpx.Response:
        return httpx.Response(status)

    with pytest.raises(UnreachableSource) as excinfo:
        asyncio.run(_client(ledger_config, handler).block_number())

    assert not isinstance(excinfo.value, LedgerAPIError)


def test_client_errors_are_api_errors(ledger_config: LedgerConfig) -> None:
    def handler(method: str, params: list[Any]) -> httpx.Response:
        return httpx.Response(401)

    with pytest.raises(LedgerAPIError) as excinfo:
        asyncio.run(_client(ledger_config, handler).block_number())

    assert excinfo.value.code == 401


def test_transport_errors_are_unreachable_source(ledger_config: LedgerConfig) -> None:
    def handler(method: str, params: list[Any]) -> httpx.Response:
        raise httpx.ConnectError("connection refused")

    with pytest.raises(UnreachableSource):
        asyncio.run(_client(ledger_config, handler).fetch_agreement(1))


def test_malformed_envelope_is_an_api_error(ledger_config: LedgerConfig) -> None:
    def handler(method: str, params: list[Any]) -> httpx.Response:
        return httpx.Response(200, content=b"<html>gateway</html>")

    with pytest.raises(LedgerAPIError):
        asyncio.run(_client(ledger_config, handler).block_number())


def test_block_number_parses_hex(ledger_config: LedgerConfig) -> None:
    def handler(method: str, params: list[Any]) -> httpx.Response:
        assert method == "eth_blockNumber"
        return rpc_result("0x1b4")

    assert asyncio.run(_client(ledger_config, handler).block_number()) == 436


def test_party_agreements_union_both_roles(ledger_config: LedgerConfig) -> None:
    calls: list[list[Any]] = []

    def handler(method: str, params: list[Any]) -> httpx.Response:
        assert method == "ledger_getPartyAgreements"
        calls.append(params)
        return rpc_result(["0x1", "0x3"] if params[1] == "company" else [3, 4])

    client = _client(ledger_config, handler)
    ids = asyncio.run(client.fetch_party_agreements("0x" + "A" * 40))

    assert ids == frozenset({1, 3, 4})
    assert calls == [[COMPANY, "company"], [COMPANY, "talent"]]


def test_party_agreements_single_role(ledger_config: LedgerConfig) -> None:
    def handler(method: str, params: list[Any]) -> httpx.Response:
        assert params == [TALENT, "talent"]
        return rpc_result([7])

    ids = asyncio.run(_client(ledger_config, handler).fetch_party_agreements(TALENT, "talent"))

    assert ids == frozenset({7})


def test_party_agreements_rejects_invalid_address(ledger_config: LedgerConfig) -> None:
    def handler(method: str, params: list[Any]) -> httpx.Response:
        raise AssertionError("no request expected")

    with pytest.raises(InvalidReference):
        asyncio.run(_client(ledger_config, handler).fetch_party_agreements("0x1234"))


def test_signature_verification_compares_recovered_signer(ledger_config: LedgerConfig) -> None:
    def handler(method: str, params: list[Any]) -> httpx.Response:
        assert method == "personal_ecRecover"
        assert params == ["login:42", "0xsig"]
        return rpc_result("0x" + "A" * 40)

    client = _client(ledger_config, handler)

    assert asyncio.run(client.verify_signed_message("login:42", "0xsig", COMPANY))
    assert not asyncio.run(client.verify_signed_message("login:42", "0xsig", TALENT))


def test_signature_verification_fails_closed(ledger_config: LedgerConfig) -> None:
    calls: list[str] = []

    def handler(method: str, params: list[Any]) -> httpx.Response:
        calls.append(method)
        return rpc_error(-32602, "invalid signature length")

    client = _client(ledger_config, handler)

    assert not asyncio.run(client.verify_signed_message("hello", "0xbad", COMPANY))
    assert not asyncio.run(client.verify_signed_message("hello", "0xsig", "not-an-address"))
    assert calls == ["personal_ecRecover"]


def test_signature_verification_surfaces_an_unreachable_ledger(
    ledger_config: LedgerConfig,
) -> None:
    def handler(method: str, params: list[Any]) -> httpx.Response:
        raise httpx.ConnectError("connection refused")

    client = _client(ledger_config, handler)

    with pytest.raises(UnreachableSource):
        asyncio.run(client.verify_signed_message("hello", "0xsig", COMPANY))


def test_signature_verification_surfaces_gateway_rejections(
    ledger_config: LedgerConfig,
) -> None:
    def handler(method: str, params: list[Any]) -> httpx.Response:
        return httpx.Response(401)

    client = _client(ledger_config, handler)

    with pytest.raises(LedgerAPIError):
        asyncio.run(client.verify_signed_message("hello", "0xsig", COMPANY))


def test_notifications_request_hex_range_and_translate(ledger_config: LedgerConfig) -> None:
    shared = "0x" + "AB" * 32

    def handler(method: str, params: list[Any]) -> httpx.Response:
        assert method == "ledger_getNotifications"
        assert params == ["0xa", "0x14"]
        return rpc_result(
            [
                notification_payload(
                    "MilestonePaid",
                    block=12,
                    tx=shared,
                    log_index=3,
                    contractId=1,
                    milestoneIndex=0,
                    amount=str(UNIT),
                ),
                notification_payload(
                    "ContractCreated",
                    block=11,
                    tx="0x" + "01" * 32,
                    contractId="0x1",
                    company=COMPANY,
                    talent=TALENT,
                    totalAmount=str(3 * UNIT),
                ),
                notification_payload(
                    "MilestoneApproved",
                    block=12,
                    tx=shared,
                    log_index=2,
                    contractId=1,
                    milestoneIndex=0,
                ),
                {"event": "MilestonePaid"},
            ]
        )

    notifications = asyncio.run(_client(ledger_config, handler).notifications(10, 20))

    assert [item.position for item in notifications] == [11, 12, 12]
    created, approved, paid = notifications
    assert isinstance(created, AgreementCreated)
    assert created.total_amount == 3 * UNIT
    assert created.idempotency_key == "0x" + "01" * 32
    assert approved.idempotency_key == f"{shared.lower()}:2"
    assert isinstance(paid, MilestonePaid)
    assert paid.idempotency_key == f"{shared.lower()}:3"
    assert paid.amount == UNIT


def test_empty_range_makes_no_request(ledger_config: LedgerConfig) -> None:
    def handler(method: str, params: list[Any]) -> httpx.Response:
        raise AssertionError("no request expected")

    assert asyncio.run(_client(ledger_config, handler).notifications(5, 4)) == []

