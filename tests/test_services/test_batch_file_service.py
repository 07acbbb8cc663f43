"""Tests for BatchFileService with a mocked Redis client."""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock

import pytest

from fund_custody.domain.enums import AuditAction
from fund_custody.domain.exceptions import BatchFileError, BatchFileExpiredError, RailConfigError
from fund_custody.infrastructure.database.repositories import AuditRepository
from fund_custody.rails import ManualBatchFileRail, RailRegistry
from fund_custody.services.batch_file_service import BatchFileService
from fund_custody.services.release_coordinator import ReleaseCoordinator
from fund_custody.services.transfer_executor import TransferExecutor


@pytest.fixture
def redis() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def coordinator(session, registry, settings, no_pacing) -> ReleaseCoordinator:  # noqa: ANN001
    return ReleaseCoordinator(
        session, TransferExecutor(session, registry, settings=settings), settings, no_pacing
    )


@pytest.fixture
def service(session, registry, redis, settings) -> BatchFileService:  # noqa: ANN001
    return BatchFileService(session, registry, redis, settings)


async def _manual_release(seed, coordinator, recipient: str = "creator-1") -> str:  # noqa: ANN001
    entry = await seed.entry(recipient=recipient, amount="100.00")
    outcome = await coordinator.release(seed.ledger.id, entry.id, rail="manual")
    return outcome.release_id


class TestGenerate:
    @pytest.mark.asyncio
    async def test_encodes_completed_manual_releases(
        self, session, seed, coordinator, service, redis  # noqa: ANN001
    ) -> None:
        await seed.connected("creator-1")
        first = await _manual_release(seed, coordinator)
        second = await _manual_release(seed, coordinator)

        generated = await service.generate(
            seed.ledger.id, [uuid.UUID(first), uuid.UUID(second)], actor="ops"
        )

        assert generated.entry_count == 2
        assert str(generated.total_amount) in {"200.00", "200.0000"}
        assert generated.release_ids == [first, second]
        assert generated.skipped == []
        assert generated.expires_in == 300

        key, content = redis.set.await_args.args
        assert key == f"batch_file:{generated.token}"
        assert redis.set.await_args.kwargs == {"ex": 300}
        lines = content.split("\n")
        assert len(lines) == 10
        assert all(len(line) == 94 for line in lines)
        assert lines[2][29:39] == "0000010000"

        audit = await AuditRepository(session).get_by_ledger(
            seed.ledger.id, AuditAction.BATCH_FILE_GENERATED
        )
        assert audit[0].actor == "ops"
        # Account numbers never reach the audit log.
        assert "000123456789" not in str(audit[0].details)

    @pytest.mark.asyncio
    async def test_skips_ineligible_releases(
        self, seed, coordinator, service  # noqa: ANN001
    ) -> None:
        await seed.connected("creator-1")
        payable = await _manual_release(seed, coordinator)
        via_processor = (
            await coordinator.release(seed.ledger.id, (await seed.entry()).id, rail="processor")
        ).release_id
        queued = (
            await coordinator.release(
                seed.ledger.id, (await seed.entry()).id, execute_transfer=False
            )
        ).release_id
        unknown = str(uuid.uuid4())

        generated = await service.generate(
            seed.ledger.id, [uuid.UUID(r) for r in (payable, via_processor, queued, unknown)]
        )

        assert generated.release_ids == [payable]
        assert {(s.release_id, s.reason) for s in generated.skipped} == {
            (via_processor, "not_manual_rail"),
            (queued, "not_completed"),
            (unknown, "not_found"),
        }

    @pytest.mark.asyncio
    async def test_nothing_payable(self, seed, service, redis) -> None:  # noqa: ANN001
        with pytest.raises(BatchFileError):
            await service.generate(seed.ledger.id, [uuid.uuid4()])
        redis.set.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_production_requires_originator(
        self, session, seed, redis, settings  # noqa: ANN001
    ) -> None:
        production = settings.model_copy(update={"app_env": "production"})
        registry = RailRegistry([ManualBatchFileRail(production)])
        service = BatchFileService(session, registry, redis, production)

        with pytest.raises(RailConfigError):
            await service.generate(seed.ledger.id, [uuid.uuid4()])


class TestDownload:
    @pytest.mark.asyncio
    async def test_single_use(self, service, redis) -> None:  # noqa: ANN001
        redis.getdel.side_effect = ["101 ...", None]

        assert await service.download("tok") == "101 ..."
        with pytest.raises(BatchFileExpiredError):
            await service.download("tok")
        redis.getdel.assert_awaited_with("batch_file:tok")
