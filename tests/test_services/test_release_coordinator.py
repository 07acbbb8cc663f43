"""Tests for ReleaseCoordinator: queueing, batches, voids and the auto-release sweep."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from fund_custody.domain.enums import AuditAction, ReleaseType, TransferStatus
from fund_custody.domain.exceptions import (
    ConflictError,
    DuplicateReleaseError,
    EntryNotFoundError,
    EntryNotHeldError,
    RequestValidationError,
)
from fund_custody.domain.rail_protocol import TransferResult
from fund_custody.infrastructure.database.orm_models import LedgerEntry, ReleaseRequest
from fund_custody.infrastructure.database.repositories import (
    AuditRepository,
    EntryRepository,
    ReleaseRepository,
)
from fund_custody.services.release_coordinator import ReleaseCoordinator
from fund_custody.services.transfer_executor import TransferExecutor

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=UTC)


@pytest.fixture
def coordinator(session, registry, settings, no_pacing) -> ReleaseCoordinator:  # noqa: ANN001
    executor = TransferExecutor(session, registry, settings=settings)
    return ReleaseCoordinator(session, executor, settings, pacer=no_pacing)


class TestRequestRelease:
    @pytest.mark.asyncio
    async def test_queues_held_entry(self, session, seed, coordinator) -> None:  # noqa: ANN001
        entry = await seed.entry(amount="42.00")

        release = await coordinator.request_release(seed.ledger.id, entry.id, requested_by="ops")

        assert release.status == "pending"
        assert release.release_type == "manual"
        assert release.amount == entry.amount
        assert release.recipient_type == "creator"
        assert release.recipient_id == "creator-1"
        assert entry.release_status == "pending_release"

        audit = await AuditRepository(session).get_by_ledger(seed.ledger.id)
        assert [(a.action, a.actor, a.risk_score) for a in audit] == [
            (AuditAction.RELEASE_QUEUED, "ops", 30)
        ]

    @pytest.mark.asyncio
    async def test_duplicate_is_rejected_without_side_effects(
        self, session, seed, coordinator  # noqa: ANN001
    ) -> None:
        entry = await seed.entry()
        await coordinator.request_release(seed.ledger.id, entry.id)

        with pytest.raises(DuplicateReleaseError):
            await coordinator.request_release(seed.ledger.id, entry.id)

        assert len(await ReleaseRepository(session).get_by_entry(entry.id)) == 1
        assert len(await AuditRepository(session).get_by_ledger(seed.ledger.id)) == 1

    @pytest.mark.parametrize(
        ("release_status", "entry_type"),
        [("released", "credit"), ("voided", "credit"), ("immediate", "credit"), ("held", "debit")],
    )
    @pytest.mark.asyncio
    async def test_not_held(self, seed, coordinator, release_status, entry_type) -> None:  # noqa: ANN001
        entry = await seed.entry(release_status=release_status, entry_type=entry_type)
        with pytest.raises(EntryNotHeldError):
            await coordinator.request_release(seed.ledger.id, entry.id)

    @pytest.mark.asyncio
    async def test_one_active_release_per_entry(self, session, seed) -> None:  # noqa: ANN001
        entry = await seed.entry()
        for _ in range(2):
            session.add(
                ReleaseRequest(
                    ledger_id=seed.ledger.id,
                    entry_id=entry.id,
                    status="pending",
                    amount=entry.amount,
                    currency="USD",
                )
            )

        with pytest.raises(IntegrityError):
            await session.flush()
        await session.rollback()

    @pytest.mark.asyncio
    async def test_lost_race_on_entry_status(self, session, seed, coordinator) -> None:  # noqa: ANN001
        entry = await seed.entry()
        ledger_id, entry_id = seed.ledger.id, entry.id
        # Another writer queues the entry; the loaded instance still says held.
        await session.execute(
            update(LedgerEntry)
            .where(LedgerEntry.id == entry_id)
            .values(release_status="pending_release")
            .execution_options(synchronize_session=False)
        )
        await session.commit()
        assert entry.release_status == "held"

        with pytest.raises(DuplicateReleaseError):
            await coordinator.request_release(ledger_id, entry_id)

        fresh = await EntryRepository(session).get_by_id(entry_id)
        assert fresh.release_status == "pending_release"
        assert await ReleaseRepository(session).get_by_entry(entry_id) == []
        assert await AuditRepository(session).get_by_ledger(ledger_id) == []

    @pytest.mark.asyncio
    async def test_lost_race_on_release_insert(self, session, seed, coordinator) -> None:  # noqa: ANN001
        entry = await seed.entry()
        ledger_id, entry_id = seed.ledger.id, entry.id
        existing = ReleaseRequest(
            ledger_id=ledger_id, entry_id=entry_id, status="pending", amount=entry.amount
        )
        session.add(existing)
        await session.commit()
        existing_id = existing.id

        # Both requests pass the read checks; the unique index decides.
        with (
            patch.object(
                coordinator._release_repo, "get_active_for_entry", AsyncMock(return_value=None)
            ),
            pytest.raises(DuplicateReleaseError),
        ):
            await coordinator.request_release(ledger_id, entry_id)

        fresh = await EntryRepository(session).get_by_id(entry_id)
        assert fresh.release_status == "held"
        assert [r.id for r in await ReleaseRepository(session).get_by_entry(entry_id)] == [
            existing_id
        ]

    @pytest.mark.asyncio
    async def test_entry_from_another_ledger(self, seed, coordinator) -> None:  # noqa: ANN001
        entry = await seed.entry()
        with pytest.raises(EntryNotFoundError):
            await coordinator.request_release(uuid.uuid4(), entry.id)


class TestRelease:
    @pytest.mark.asyncio
    async def test_release_and_execute(self, session, seed, coordinator) -> None:  # noqa: ANN001
        await seed.connected("creator-1")
        entry = await seed.entry()

        outcome = await coordinator.release(seed.ledger.id, entry.id)

        assert outcome.success
        assert outcome.status == "completed"
        assert (await EntryRepository(session).get_by_id(entry.id)).release_status == "released"

    @pytest.mark.asyncio
    async def test_queue_only(self, seed, coordinator, fake_processor) -> None:  # noqa: ANN001
        entry = await seed.entry()

        outcome = await coordinator.release(seed.ledger.id, entry.id, execute_transfer=False)

        assert outcome.status == "pending"
        assert fake_processor.payouts == []

    @pytest.mark.asyncio
    async def test_unknown_rail_leaves_entry_held(self, seed, coordinator) -> None:  # noqa: ANN001
        entry = await seed.entry()
        with pytest.raises(RequestValidationError):
            await coordinator.release(seed.ledger.id, entry.id, rail="carrier_pigeon")
        assert entry.release_status == "held"

    @pytest.mark.asyncio
    async def test_failed_transfer_can_be_retried(
        self, session, seed, coordinator, fake_processor  # noqa: ANN001
    ) -> None:
        await seed.connected("creator-1")
        entry = await seed.entry()
        fake_processor.result = TransferResult.failed("provider_rejected", "nope")

        first = await coordinator.release(seed.ledger.id, entry.id)
        assert not first.success
        assert entry.release_status == "held"

        fake_processor.result = TransferResult(
            success=True, status=TransferStatus.PROCESSING, external_id="TR-2"
        )
        second = await coordinator.release(seed.ledger.id, entry.id)

        assert second.success
        assert second.release_id != first.release_id
        attempts = await ReleaseRepository(session).get_by_entry(entry.id)
        assert sorted(a.status for a in attempts) == ["completed", "failed"]

    @pytest.mark.asyncio
    async def test_manual_rail(self, session, seed, coordinator) -> None:  # noqa: ANN001
        await seed.connected("creator-1", processor_account_id=None)
        entry = await seed.entry()

        outcome = await coordinator.release(seed.ledger.id, entry.id, rail="ach_file")

        assert outcome.success
        assert outcome.rail == "manual"
        assert outcome.transfer_status == "pending"
        assert outcome.external_transfer_id == f"manual_{outcome.release_id}"


class TestBatchRelease:
    @pytest.mark.asyncio
    async def test_partial_failure(self, session, seed, coordinator) -> None:  # noqa: ANN001
        await seed.connected("creator-1")
        ok_1 = await seed.entry()
        ok_2 = await seed.entry()
        released = await seed.entry(release_status="released")

        result = await coordinator.batch_release(
            seed.ledger.id, [ok_1.id, released.id, ok_2.id, ok_1.id]
        )

        assert result.succeeded == 2
        assert result.failed == 1
        assert not result.success
        rejected = [r for r in result.results if not r.success]
        assert rejected[0].entry_id == str(released.id)
        assert rejected[0].error_code == "ENTRY_NOT_HELD"

        batch_audit = await AuditRepository(session).get_by_ledger(
            seed.ledger.id, AuditAction.BATCH_RELEASE
        )
        assert batch_audit[0].details["requested"] == 3

    @pytest.mark.asyncio
    async def test_all_succeed(self, seed, coordinator) -> None:  # noqa: ANN001
        entries = [await seed.entry() for _ in range(3)]
        result = await coordinator.batch_release(
            seed.ledger.id, [e.id for e in entries], execute_transfer=False
        )
        assert result.success
        assert result.to_dict()["succeeded"] == 3

    @pytest.mark.asyncio
    async def test_size_limit(self, seed, coordinator) -> None:  # noqa: ANN001
        with pytest.raises(RequestValidationError):
            await coordinator.batch_release(seed.ledger.id, [uuid.uuid4() for _ in range(101)])
        with pytest.raises(RequestValidationError):
            await coordinator.batch_release(seed.ledger.id, [])


class TestVoid:
    @pytest.mark.asyncio
    async def test_void_held(self, session, seed, coordinator) -> None:  # noqa: ANN001
        entry = await seed.entry()

        voided = await coordinator.void_release(seed.ledger.id, entry.id, "chargeback", "ops")

        assert voided.release_status == "voided"
        assert voided.hold_reason == "chargeback"
        assert voided.voided_at is not None
        audit = await AuditRepository(session).get_by_ledger(
            seed.ledger.id, AuditAction.RELEASE_VOIDED
        )
        assert audit[0].details["reason"] == "chargeback"

    @pytest.mark.asyncio
    async def test_voided_entry_cannot_be_released(self, seed, coordinator) -> None:  # noqa: ANN001
        entry = await seed.entry()
        await coordinator.void_release(seed.ledger.id, entry.id, "fraud")
        with pytest.raises(EntryNotHeldError):
            await coordinator.request_release(seed.ledger.id, entry.id)

    @pytest.mark.parametrize("release_status", ["pending_release", "released", "voided"])
    @pytest.mark.asyncio
    async def test_only_held_can_be_voided(self, seed, coordinator, release_status) -> None:  # noqa: ANN001
        entry = await seed.entry(release_status=release_status)
        with pytest.raises(ConflictError):
            await coordinator.void_release(seed.ledger.id, entry.id, "fraud")

    @pytest.mark.asyncio
    async def test_reason_required(self, seed, coordinator) -> None:  # noqa: ANN001
        entry = await seed.entry()
        with pytest.raises(RequestValidationError):
            await coordinator.void_release(seed.ledger.id, entry.id, "   ")
        assert entry.release_status == "held"


class TestAutoReleaseSweep:
    @pytest.mark.asyncio
    async def test_queues_only_lapsed_holds(self, session, seed, coordinator) -> None:  # noqa: ANN001
        lapsed = await seed.entry(hold_until=NOW - timedelta(hours=1))
        await seed.entry(hold_until=NOW + timedelta(days=1))
        await seed.entry(hold_until=None)

        result = await coordinator.auto_release_sweep(seed.ledger.id, now=NOW)

        assert [q.entry_id for q in result.queued] == [str(lapsed.id)]
        assert result.executed == []
        release = await ReleaseRepository(session).get_active_for_entry(lapsed.id)
        assert release.release_type == ReleaseType.AUTO
        assert release.requested_by == "auto_release"

    @pytest.mark.asyncio
    async def test_execute_immediately(self, seed, coordinator) -> None:  # noqa: ANN001
        await seed.connected("creator-1")
        for hours in (1, 2):
            await seed.entry(hold_until=NOW - timedelta(hours=hours))

        result = await coordinator.auto_release_sweep(
            seed.ledger.id, execute_immediately=True, now=NOW
        )

        assert len(result.queued) == 2
        assert all(r.status == "completed" for r in result.executed)
        assert result.to_dict()["executed"] == 2

    @pytest.mark.asyncio
    async def test_limit(self, seed, coordinator) -> None:  # noqa: ANN001
        for hours in (1, 2, 3):
            await seed.entry(hold_until=NOW - timedelta(hours=hours))
        result = await coordinator.auto_release_sweep(seed.ledger.id, limit=2, now=NOW)
        assert len(result.queued) == 2
