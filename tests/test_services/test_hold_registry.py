"""Tests for held-fund listing and summaries."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from fund_custody.domain.exceptions import LedgerNotFoundError
from fund_custody.services.hold_registry import HoldRegistry

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=UTC)


@pytest.fixture
def holds(session, settings) -> HoldRegistry:  # noqa: ANN001
    return HoldRegistry(session, settings)


class TestListHeld:
    @pytest.mark.asyncio
    async def test_only_held_and_pending_credits_oldest_first(self, seed, holds) -> None:  # noqa: ANN001
        newer = await seed.entry(amount="20", age_days=2)
        older = await seed.entry(amount="10", age_days=30)
        pending = await seed.entry(amount="5", release_status="pending_release", age_days=5)
        await seed.entry(release_status="released")
        await seed.entry(release_status="voided")
        await seed.entry(release_status="immediate")
        await seed.entry(entry_type="debit")

        rows = await holds.list_held(seed.ledger.id, now=NOW)

        assert [r.entry_id for r in rows] == [str(older.id), str(pending.id), str(newer.id)]
        assert rows[0].days_held == 30
        assert rows[0].amount == Decimal("10")

    @pytest.mark.asyncio
    async def test_ready_only(self, seed, holds) -> None:  # noqa: ANN001
        lapsed = await seed.entry(hold_until=NOW - timedelta(days=1))
        no_hold_date = await seed.entry(hold_until=None)
        await seed.entry(hold_until=NOW + timedelta(days=3))
        await seed.entry(release_status="pending_release", hold_until=NOW - timedelta(days=1))

        rows = await holds.list_held(seed.ledger.id, ready_only=True, now=NOW)

        assert {r.entry_id for r in rows} == {str(lapsed.id), str(no_hold_date.id)}
        assert all(r.ready_for_release for r in rows)

    @pytest.mark.asyncio
    async def test_filters(self, seed, holds) -> None:  # noqa: ANN001
        mine = await seed.entry(recipient="creator-1", venture_id="venture-a")
        await seed.entry(recipient="creator-2", venture_id="venture-a")
        await seed.entry(recipient="creator-1", venture_id="venture-b")

        rows = await holds.list_held(
            seed.ledger.id, venture_id="venture-a", creator_id="creator-1", now=NOW
        )
        assert [r.entry_id for r in rows] == [str(mine.id)]

    @pytest.mark.asyncio
    async def test_connected_account_details(self, seed, holds) -> None:  # noqa: ANN001
        await seed.entry(recipient="creator-1")
        await seed.entry(recipient="creator-2")
        await seed.connected("creator-1", processor_account_id="PI-1")

        rows = {r.recipient_id: r for r in await holds.list_held(seed.ledger.id, now=NOW)}

        assert rows["creator-1"].has_connected_account
        assert rows["creator-1"].processor_account_id == "PI-1"
        assert rows["creator-1"].recipient_name == "Creator-1 Display"
        assert not rows["creator-2"].has_connected_account
        assert rows["creator-2"].recipient_name == "Creator-2"

    @pytest.mark.asyncio
    async def test_limit(self, seed, holds) -> None:  # noqa: ANN001
        for age in range(5):
            await seed.entry(age_days=age)
        rows = await holds.list_held(seed.ledger.id, limit=2, now=NOW)
        assert len(rows) == 2

    def test_clamp_limit(self, holds) -> None:  # noqa: ANN001
        assert holds.clamp_limit(None) == 100
        assert holds.clamp_limit(5000) == 1000
        assert holds.clamp_limit(0) == 1

    @pytest.mark.asyncio
    async def test_unknown_ledger(self, holds) -> None:  # noqa: ANN001
        with pytest.raises(LedgerNotFoundError):
            await holds.list_held(uuid.uuid4())

    @pytest.mark.asyncio
    async def test_row_serializes(self, seed, holds) -> None:  # noqa: ANN001
        await seed.entry(amount="12.5", hold_until=NOW)
        data = (await holds.list_held(seed.ledger.id, now=NOW))[0].to_dict()
        assert Decimal(data["amount"]) == Decimal("12.5")
        assert data["hold_until"].startswith("2026-03-15T12:00:00")


class TestSummarize:
    @pytest.mark.asyncio
    async def test_per_venture_totals(self, seed, holds) -> None:  # noqa: ANN001
        await seed.entry(amount="100", venture_id="venture-a", hold_until=NOW - timedelta(days=1))
        await seed.entry(amount="50", venture_id="venture-a", hold_until=NOW + timedelta(days=1))
        await seed.entry(amount="25", venture_id="venture-a", release_status="pending_release")
        await seed.entry(amount="10", venture_id="venture-b")
        await seed.entry(amount="999", venture_id="venture-b", release_status="released")

        summary = await holds.summarize(seed.ledger.id, now=NOW)
        ventures = {v.venture_id: v for v in summary.ventures}

        assert ventures["venture-a"].total_held == Decimal("150")
        assert ventures["venture-a"].ready_for_release == Decimal("100")
        assert ventures["venture-a"].pending_release == Decimal("25")
        assert ventures["venture-a"].entry_count == 3
        assert ventures["venture-b"].total_held == Decimal("10")
        assert summary.totals.total_held == Decimal("160")
        assert summary.totals.ready_for_release == Decimal("110")
        assert summary.totals.entry_count == 4

    @pytest.mark.asyncio
    async def test_summary_agrees_with_listing(self, seed, holds) -> None:  # noqa: ANN001
        for amount in ("1.10", "2.20", "3.30"):
            await seed.entry(amount=amount)
        rows = await holds.list_held(seed.ledger.id, now=NOW)
        summary = await holds.summarize(seed.ledger.id, now=NOW)
        assert summary.totals.total_held == sum(r.amount for r in rows)

    @pytest.mark.asyncio
    async def test_venture_filter(self, seed, holds) -> None:  # noqa: ANN001
        await seed.entry(amount="1", venture_id="venture-a")
        await seed.entry(amount="2", venture_id="venture-b")
        summary = await holds.summarize(seed.ledger.id, venture_id="venture-b", now=NOW)
        assert [v.venture_id for v in summary.ventures] == ["venture-b"]
        assert Decimal(summary.to_dict()["totals"]["total_held"]) == Decimal("2")
