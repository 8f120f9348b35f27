from __future__ import annotations

import asyncio

import pytest

from escrowsync.domain.amounts import UNIT
from escrowsync.domain.errors import InvalidReference, InvariantViolation, UnreachableSource
from escrowsync.domain.model import AgreementStatus, MilestoneStatus
from escrowsync.domain.reconciliation import build_plan
from tests.helpers import notifications as make
from tests.helpers.agreements import COMPANY, OTHER_TALENT, TALENT, make_agreement, with_status
from tests.helpers.ledger import FakeLedger

FEE_BPS = 200


def _active(ledger: FakeLedger, *milestones: MilestoneStatus) -> None:
    ledger.put(with_status(make_agreement(), AgreementStatus.ACTIVE, *milestones))


def test_creation_plan_carries_escrowed_amount(ledger: FakeLedger) -> None:
    ledger.put(make_agreement())

    plan = asyncio.run(build_plan(make.created(), ledger, fee_bps=FEE_BPS))

    assert plan.snapshot is not None
    assert plan.record.payload.amount == str(3 * UNIT)
    assert plan.record.company == COMPANY
    assert plan.record.talent == TALENT
    assert plan.record.initiator == COMPANY
    assert plan.payout is None


def test_creation_that_disagrees_with_ledger_is_an_invariant_violation(
    ledger: FakeLedger,
) -> None:
    ledger.put(make_agreement())

    with pytest.raises(InvariantViolation):
        asyncio.run(build_plan(make.created(total_amount=UNIT), ledger, fee_bps=FEE_BPS))


def test_ledger_behind_the_notification_is_transient(ledger: FakeLedger) -> None:
    _active(ledger)

    with pytest.raises(UnreachableSource):
        asyncio.run(build_plan(make.completed(), ledger, fee_bps=FEE_BPS))


def test_ledger_on_another_branch_is_an_invariant_violation(ledger: FakeLedger) -> None:
    _active(ledger)

    with pytest.raises(InvariantViolation):
        asyncio.run(build_plan(make.cancelled(), ledger, fee_bps=FEE_BPS))


def test_ledger_ahead_of_the_notification_is_accepted(ledger: FakeLedger) -> None:
    ledger.put(with_status(make_agreement(), AgreementStatus.FINALIZED))

    plan = asyncio.run(build_plan(make.activated(), ledger, fee_bps=FEE_BPS))

    assert plan.snapshot is not None
    assert plan.snapshot.status is AgreementStatus.FINALIZED


def test_acceptance_by_someone_else_is_rejected(ledger: FakeLedger) -> None:
    _active(ledger)

    with pytest.raises(InvariantViolation):
        asyncio.run(build_plan(make.accepted(talent=OTHER_TALENT), ledger, fee_bps=FEE_BPS))


def test_submission_records_deliverable_and_talent_as_initiator(ledger: FakeLedger) -> None:
    _active(ledger, MilestoneStatus.SUBMITTED)

    plan = asyncio.run(build_plan(make.submitted(index=0), ledger, fee_bps=FEE_BPS))

    assert plan.record.initiator == TALENT
    assert plan.record.payload.milestone_index == 0
    assert plan.record.payload.external_ref == "ipfs://deliverable-1-0"


def test_payment_without_amount_is_split_with_platform_fee(ledger: FakeLedger) -> None:
    _active(ledger, MilestoneStatus.PAID)

    plan = asyncio.run(build_plan(make.paid(index=0), ledger, fee_bps=FEE_BPS))

    assert plan.payout is not None
    assert plan.payout.paid_amount == 98 * 10**16
    assert plan.payout.platform_fee == 2 * 10**16
    assert plan.record.payload.amount == str(98 * 10**16)


def test_payment_amount_from_notification_defines_fee(ledger: FakeLedger) -> None:
    _active(ledger, MilestoneStatus.PAID)

    plan = asyncio.run(build_plan(make.paid(index=0, amount=UNIT - 5), ledger, fee_bps=FEE_BPS))

    assert plan.payout is not None
    assert plan.payout.platform_fee == 5


def test_payment_above_milestone_amount_is_rejected(ledger: FakeLedger) -> None:
    _active(ledger, MilestoneStatus.PAID)

    with pytest.raises(InvariantViolation):
        asyncio.run(build_plan(make.paid(index=0, amount=2 * UNIT), ledger, fee_bps=FEE_BPS))


def test_unpaid_milestone_on_ledger_is_transient(ledger: FakeLedger) -> None:
    _active(ledger, MilestoneStatus.APPROVED)

    with pytest.raises(UnreachableSource):
        asyncio.run(build_plan(make.paid(index=0), ledger, fee_bps=FEE_BPS))


def test_out_of_range_milestone_refetches_once_then_fails(ledger: FakeLedger) -> None:
    _active(ledger)

    with pytest.raises(InvalidReference):
        asyncio.run(build_plan(make.approved(index=5), ledger, fee_bps=FEE_BPS))

    assert ledger.fetches == [1, 1]


def test_out_of_range_milestone_recovers_when_refetch_sees_it(ledger: FakeLedger) -> None:
    ledger.queue(make_agreement(amounts=(3 * UNIT,)))
    _active(ledger, MilestoneStatus.APPROVED, MilestoneStatus.APPROVED)

    plan = asyncio.run(build_plan(make.approved(index=1), ledger, fee_bps=FEE_BPS))

    assert plan.record.payload.milestone_index == 1
    assert len(ledger.fetches) == 2


def test_unknown_agreement_is_an_invalid_reference(ledger: FakeLedger) -> None:
    with pytest.raises(InvalidReference):
        asyncio.run(build_plan(make.activated(42), ledger, fee_bps=FEE_BPS))


def test_credential_plan_needs_no_ledger_round_trip(ledger: FakeLedger) -> None:
    plan = asyncio.run(build_plan(make.credential(token_id=9), ledger, fee_bps=FEE_BPS))

    assert ledger.fetches == []
    assert plan.snapshot is None
    assert plan.record.talent == TALENT
    assert plan.record.company == COMPANY
    assert plan.record.payload.token_id == 9
    assert plan.record.payload.skill_name == "Solidity"


def test_dispute_keeps_initiator_and_reason(ledger: FakeLedger) -> None:
    ledger.put(with_status(make_agreement(), AgreementStatus.DISPUTED))

    plan = asyncio.run(build_plan(make.disputed(initiator=TALENT), ledger, fee_bps=FEE_BPS))

    assert plan.record.initiator == TALENT
    assert plan.record.payload.reason == "Deliverable not received"
