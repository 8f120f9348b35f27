from __future__ import annotations

from datetime import UTC, datetime

from escrowsync.domain.amounts import UNIT
from escrowsync.domain.model import (
    ActivityPayload,
    ActivityRecord,
    NotificationType,
    PartyRole,
    ReputationSnapshot,
)
from escrowsync.domain.projection import (
    COMPLETED_CONTRACTS,
    TOTAL_CONTRACTS,
    TOTAL_EARNED,
    TOTAL_SPENT,
    compare_aggregates,
    deltas_for,
    fold_profiles,
)
from tests.helpers.agreements import COMPANY, TALENT

AT = datetime(2025, 2, 1, tzinfo=UTC)


def _record(
    kind: NotificationType,
    position: int,
    *,
    payload: ActivityPayload | None = None,
    key: str | None = None,
) -> ActivityRecord:
    return ActivityRecord(
        idempotency_key=key or f"0x{position:04x}",
        agreement_id=1,
        position=position,
        log_index=0,
        type=kind,
        company=COMPANY,
        talent=TALENT,
        initiator=None,
        timestamp=AT,
        payload=payload or ActivityPayload(),
    )


def test_created_counts_a_contract_for_both_parties() -> None:
    record = _record(
        NotificationType.AGREEMENT_CREATED, 1, payload=ActivityPayload(amount=str(3 * UNIT))
    )

    company, talent = deltas_for(record)

    assert company.role is PartyRole.COMPANY
    assert company.counters == {TOTAL_CONTRACTS: 1}
    assert company.amounts == {TOTAL_SPENT: 3 * UNIT}
    assert talent.counters == {TOTAL_CONTRACTS: 1}
    assert talent.amounts == {}


def test_payment_credits_talent_earnings() -> None:
    record = _record(
        NotificationType.MILESTONE_PAID, 2, payload=ActivityPayload(amount=str(UNIT))
    )

    company, talent = deltas_for(record)

    assert company.amounts == {}
    assert talent.amounts == {TOTAL_EARNED: UNIT}


def test_submission_does_not_touch_aggregates() -> None:
    deltas = deltas_for(_record(NotificationType.MILESTONE_SUBMITTED, 3))

    assert all(not delta.counters and not delta.amounts for delta in deltas)


def test_fold_profiles_sums_the_log() -> None:
    records = [
        _record(NotificationType.AGREEMENT_COMPLETED, 9),
        _record(NotificationType.AGREEMENT_CREATED, 1, payload=ActivityPayload(amount="300")),
        _record(NotificationType.MILESTONE_PAID, 5, payload=ActivityPayload(amount="98")),
        _record(NotificationType.MILESTONE_PAID, 6, payload=ActivityPayload(amount="196")),
    ]

    snapshots = fold_profiles(records)

    assert snapshots[COMPANY] == ReputationSnapshot(
        total_contracts=1, completed_contracts=1, total_spent=300
    )
    assert snapshots[TALENT] == ReputationSnapshot(
        total_contracts=1, completed_contracts=1, total_earned=294
    )
    assert getattr(snapshots[TALENT], COMPLETED_CONTRACTS) == 1


def test_fold_profiles_binds_a_credential_once() -> None:
    issued = ActivityRecord(
        idempotency_key="0xcred",
        agreement_id=None,
        position=4,
        log_index=0,
        type=NotificationType.CREDENTIAL_ISSUED,
        company=COMPANY,
        talent=TALENT,
        initiator=COMPANY,
        timestamp=AT,
        payload=ActivityPayload(token_id=11, skill_name="Rust"),
    )
    reissued = ActivityRecord(
        idempotency_key="0xcred2",
        agreement_id=None,
        position=8,
        log_index=0,
        type=NotificationType.CREDENTIAL_ISSUED,
        company=COMPANY,
        talent=COMPANY,
        initiator=COMPANY,
        timestamp=AT,
        payload=ActivityPayload(token_id=11, skill_name="Rust"),
    )

    snapshots = fold_profiles([reissued, issued])

    assert snapshots[TALENT].credential_tokens == (11,)
    assert snapshots[COMPANY].credential_tokens == ()


def test_compare_aggregates_reports_each_differing_address() -> None:
    expected = {COMPANY: ReputationSnapshot(total_contracts=1), TALENT: ReputationSnapshot()}
    actual = {COMPANY: ReputationSnapshot(total_contracts=2), TALENT: ReputationSnapshot()}

    mismatches = compare_aggregates(expected, actual)

    assert [mismatch.address for mismatch in mismatches] == [COMPANY]
    assert mismatches[0].actual == ReputationSnapshot(total_contracts=2)
