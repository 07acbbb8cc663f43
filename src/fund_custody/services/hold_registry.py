"""Hold Registry - which held entries exist, which are ready, and their totals.

Every listing goes through one normalization step that turns an
(entry, account, connected account) triple into a HeldFundRow. The summary
is computed from the same rows, so list and summary always agree.
"""

from __future__ import annotations

from collections import OrderedDict
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from fund_custody.config import Settings, get_settings
from fund_custody.domain.enums import ReleaseStatus
from fund_custody.domain.exceptions import LedgerNotFoundError
from fund_custody.infrastructure.database.repositories import (
    ConnectedAccountRepository,
    EntryRepository,
    LedgerRepository,
)
from fund_custody.logging_config import get_logger

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from fund_custody.infrastructure.database.orm_models import (
        ConnectedAccount,
        LedgerAccount,
        LedgerEntry,
    )

logger = get_logger(__name__)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes (some drivers drop the offset)."""
    if value is None:
        return None
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value.astimezone(UTC)


@dataclass(frozen=True)
class HeldFundRow:
    entry_id: str
    amount: Decimal
    currency: str
    release_status: str
    held_since: datetime
    days_held: int
    hold_reason: str | None
    hold_until: datetime | None
    ready_for_release: bool
    recipient_type: str | None
    recipient_id: str | None
    recipient_name: str | None
    has_connected_account: bool
    processor_account_id: str | None
    venture_id: str | None
    transaction_ref: str | None
    product_name: str | None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["amount"] = str(self.amount)
        data["held_since"] = self.held_since.isoformat()
        data["hold_until"] = self.hold_until.isoformat() if self.hold_until else None
        return data


@dataclass
class VentureTotals:
    venture_id: str | None
    total_held: Decimal = Decimal("0")
    ready_for_release: Decimal = Decimal("0")
    pending_release: Decimal = Decimal("0")
    entry_count: int = 0

    def add(self, row: HeldFundRow) -> None:
        self.entry_count += 1
        if row.release_status == ReleaseStatus.PENDING_RELEASE:
            self.pending_release += row.amount
            return
        self.total_held += row.amount
        if row.ready_for_release:
            self.ready_for_release += row.amount

    def to_dict(self) -> dict[str, Any]:
        return {
            "venture_id": self.venture_id,
            "total_held": str(self.total_held),
            "ready_for_release": str(self.ready_for_release),
            "pending_release": str(self.pending_release),
            "entry_count": self.entry_count,
        }


@dataclass
class HoldSummary:
    ventures: list[VentureTotals] = field(default_factory=list)
    totals: VentureTotals = field(default_factory=lambda: VentureTotals(venture_id=None))

    def to_dict(self) -> dict[str, Any]:
        totals = self.totals.to_dict()
        totals.pop("venture_id")
        return {"ventures": [v.to_dict() for v in self.ventures], "totals": totals}


class HoldRegistry:
    """Read side of the escrow: held funds and their readiness."""

    def __init__(self, session: AsyncSession, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._ledger_repo = LedgerRepository(session)
        self._entry_repo = EntryRepository(session)
        self._connected_repo = ConnectedAccountRepository(session)

    def clamp_limit(self, limit: int | None) -> int:
        if limit is None:
            return self._settings.held_list_default_limit
        return max(1, min(int(limit), self._settings.held_list_max_limit))

    async def list_held(
        self,
        ledger_id: uuid.UUID,
        venture_id: str | None = None,
        creator_id: str | None = None,
        ready_only: bool = False,
        limit: int | None = None,
        now: datetime | None = None,
    ) -> list[HeldFundRow]:
        """List held credit entries, oldest first.

        With ready_only, exactly the held entries whose hold_until is unset
        or already past; otherwise held and pending_release entries.
        """
        now = ensure_utc(now) or datetime.now(UTC)
        rows = await self._load_rows(
            ledger_id,
            statuses=(ReleaseStatus.HELD,) if ready_only else (
                ReleaseStatus.HELD,
                ReleaseStatus.PENDING_RELEASE,
            ),
            venture_id=venture_id,
            creator_id=creator_id,
            ready_at=now if ready_only else None,
            limit=self.clamp_limit(limit),
            now=now,
        )
        if ready_only:
            rows = [row for row in rows if row.ready_for_release]
        logger.debug(
            "holds.listed", ledger_id=str(ledger_id), ready_only=ready_only, count=len(rows)
        )
        return rows

    async def summarize(
        self,
        ledger_id: uuid.UUID,
        venture_id: str | None = None,
        now: datetime | None = None,
    ) -> HoldSummary:
        """Per-venture and ledger-wide totals over every held/pending entry."""
        now = ensure_utc(now) or datetime.now(UTC)
        rows = await self._load_rows(
            ledger_id,
            statuses=(ReleaseStatus.HELD, ReleaseStatus.PENDING_RELEASE),
            venture_id=venture_id,
            limit=None,
            now=now,
        )

        by_venture: OrderedDict[str | None, VentureTotals] = OrderedDict()
        summary = HoldSummary()
        for row in rows:
            by_venture.setdefault(row.venture_id, VentureTotals(venture_id=row.venture_id)).add(row)
            summary.totals.add(row)
        summary.ventures = list(by_venture.values())
        return summary

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _load_rows(
        self,
        ledger_id: uuid.UUID,
        statuses: tuple[ReleaseStatus, ...],
        now: datetime,
        venture_id: str | None = None,
        creator_id: str | None = None,
        ready_at: datetime | None = None,
        limit: int | None = None,
    ) -> list[HeldFundRow]:
        if await self._ledger_repo.get_by_id(ledger_id) is None:
            raise LedgerNotFoundError(str(ledger_id))

        pairs = await self._entry_repo.list_credits(
            ledger_id,
            statuses,
            venture_id=venture_id,
            creator_id=creator_id,
            ready_at=ready_at,
            limit=limit,
        )
        connected = await self._connected_repo.find_many(
            ledger_id, {(account.entity_type, account.entity_id) for _, account in pairs}
        )
        return [
            self._normalize(entry, account, connected.get((account.entity_type, account.entity_id)), now)
            for entry, account in pairs
        ]

    @staticmethod
    def _normalize(
        entry: LedgerEntry,
        account: LedgerAccount,
        connected: ConnectedAccount | None,
        now: datetime,
    ) -> HeldFundRow:
        held_since = ensure_utc(entry.created_at)
        hold_until = ensure_utc(entry.hold_until)
        ready = entry.release_status == ReleaseStatus.HELD and (
            hold_until is None or hold_until <= now
        )
        return HeldFundRow(
            entry_id=str(entry.id),
            amount=Decimal(entry.amount),
            currency=entry.currency,
            release_status=entry.release_status,
            held_since=held_since,
            days_held=max(0, (now - held_since).days),
            hold_reason=entry.hold_reason,
            hold_until=hold_until,
            ready_for_release=ready,
            recipient_type=account.entity_type,
            recipient_id=account.entity_id,
            recipient_name=(connected.display_name if connected else None) or account.name,
            has_connected_account=connected is not None,
            processor_account_id=connected.processor_account_id if connected else None,
            venture_id=entry.venture_id,
            transaction_ref=entry.transaction_ref,
            product_name=entry.product_name,
        )
