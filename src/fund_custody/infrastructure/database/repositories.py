"""Repository classes for database access.

Repositories encapsulate all SQL queries and provide a clean interface
to the service layer. They accept an AsyncSession and never manage
their own transactions (that's the caller's responsibility).
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import or_, select, update
from sqlalchemy.orm.attributes import set_committed_value

from fund_custody.domain.enums import RISK_SCORES, EntryType, ReleaseRequestStatus
from fund_custody.domain.rail_protocol import RailConfig
from fund_custody.infrastructure.database.orm_models import (
    AuditRecord,
    ConnectedAccount,
    Ledger,
    LedgerAccount,
    LedgerEntry,
    ReleaseRequest,
    VaultedCredential,
)

if TYPE_CHECKING:
    import uuid
    from collections.abc import Iterable, Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from fund_custody.domain.enums import AuditAction, ReleaseStatus


class LedgerRepository:
    """Data access for ledgers and their rail configuration."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, ledger_id: uuid.UUID) -> Ledger | None:
        result = await self._session.execute(select(Ledger).where(Ledger.id == ledger_id))
        return result.scalar_one_or_none()

    @staticmethod
    def rail_configs(ledger: Ledger) -> list[RailConfig]:
        """Parse the ledger's stored rail configs, skipping malformed items."""
        return [
            RailConfig.from_dict(item)
            for item in ledger.payout_rails or []
            if isinstance(item, dict) and item.get("rail")
        ]

    async def save_rail_config(self, ledger: Ledger, config: RailConfig) -> Ledger:
        """Insert or replace the config for one rail on the ledger."""
        others = [
            item
            for item in ledger.payout_rails or []
            if isinstance(item, dict) and item.get("rail") != config.rail
        ]
        # Reassign so the JSON column is flagged dirty.
        ledger.payout_rails = [*others, config.to_dict()]
        await self._session.flush()
        return ledger


class EntryRepository:
    """Data access for ledger entries. Only escrow columns are ever written."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(
        self, entry_id: uuid.UUID, ledger_id: uuid.UUID | None = None
    ) -> LedgerEntry | None:
        stmt = select(LedgerEntry).where(LedgerEntry.id == entry_id)
        if ledger_id is not None:
            stmt = stmt.where(LedgerEntry.ledger_id == ledger_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def list_credits(
        self,
        ledger_id: uuid.UUID,
        statuses: Sequence[ReleaseStatus],
        venture_id: str | None = None,
        creator_id: str | None = None,
        ready_at: datetime | None = None,
        limit: int | None = 100,
    ) -> list[tuple[LedgerEntry, LedgerAccount]]:
        """Fetch credit entries in the given escrow states, oldest first.

        When ready_at is set only entries whose hold has lapsed by then
        (or that have no hold_until) are returned.
        """
        stmt = (
            select(LedgerEntry, LedgerAccount)
            .join(LedgerAccount, LedgerEntry.account_id == LedgerAccount.id)
            .where(
                LedgerEntry.ledger_id == ledger_id,
                LedgerEntry.entry_type == EntryType.CREDIT.value,
                LedgerEntry.release_status.in_([s.value for s in statuses]),
            )
        )
        if venture_id:
            stmt = stmt.where(LedgerEntry.venture_id == venture_id)
        if creator_id:
            stmt = stmt.where(
                LedgerAccount.entity_type == "creator",
                LedgerAccount.entity_id == creator_id,
            )
        if ready_at is not None:
            stmt = stmt.where(
                or_(LedgerEntry.hold_until.is_(None), LedgerEntry.hold_until <= ready_at)
            )
        stmt = stmt.order_by(LedgerEntry.created_at.asc(), LedgerEntry.id.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        result = await self._session.execute(stmt)
        return [(entry, account) for entry, account in result.all()]

    async def list_lapsed_holds(
        self, ledger_id: uuid.UUID, now: datetime, limit: int
    ) -> list[LedgerEntry]:
        """Held credit entries whose hold_until has passed, oldest first.

        Entries with no hold_until are left for an explicit release.
        """
        result = await self._session.execute(
            select(LedgerEntry)
            .where(
                LedgerEntry.ledger_id == ledger_id,
                LedgerEntry.entry_type == EntryType.CREDIT.value,
                LedgerEntry.release_status == "held",
                LedgerEntry.hold_until.is_not(None),
                LedgerEntry.hold_until <= now,
            )
            .order_by(LedgerEntry.hold_until.asc(), LedgerEntry.created_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def transition(
        self,
        entry: LedgerEntry,
        from_status: ReleaseStatus,
        to_status: ReleaseStatus,
        **values: Any,
    ) -> bool:
        """Move an entry between escrow states (call AFTER state machine validation).

        The UPDATE is conditional on the current status, so a concurrent
        writer that got there first makes this return False.
        """
        result = await self._session.execute(
            update(LedgerEntry)
            .where(
                LedgerEntry.id == entry.id,
                LedgerEntry.release_status == from_status.value,
            )
            .values(release_status=to_status.value, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        # Mirror the row into the loaded instance without a second UPDATE.
        set_committed_value(entry, "release_status", to_status.value)
        for key, value in values.items():
            set_committed_value(entry, key, value)
        return True


class ReleaseRepository:
    """Data access for release requests."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, release: ReleaseRequest) -> ReleaseRequest:
        """Insert a new release request. The partial unique index may reject it."""
        self._session.add(release)
        await self._session.flush()
        return release

    async def get_by_id(
        self, release_id: uuid.UUID, ledger_id: uuid.UUID | None = None
    ) -> ReleaseRequest | None:
        stmt = select(ReleaseRequest).where(ReleaseRequest.id == release_id)
        if ledger_id is not None:
            stmt = stmt.where(ReleaseRequest.ledger_id == ledger_id)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_active_for_entry(self, entry_id: uuid.UUID) -> ReleaseRequest | None:
        """Return the pending/processing request for an entry, if any."""
        result = await self._session.execute(
            select(ReleaseRequest).where(
                ReleaseRequest.entry_id == entry_id,
                ReleaseRequest.status.in_([s.value for s in ReleaseRequestStatus.active()]),
            )
        )
        return result.scalar_one_or_none()

    async def get_by_entry(self, entry_id: uuid.UUID) -> list[ReleaseRequest]:
        """Fetch every attempt for an entry, newest first."""
        result = await self._session.execute(
            select(ReleaseRequest)
            .where(ReleaseRequest.entry_id == entry_id)
            .order_by(ReleaseRequest.created_at.desc())
        )
        return list(result.scalars().all())

    async def get_many(
        self, ledger_id: uuid.UUID, release_ids: Iterable[uuid.UUID]
    ) -> list[ReleaseRequest]:
        result = await self._session.execute(
            select(ReleaseRequest)
            .where(
                ReleaseRequest.ledger_id == ledger_id,
                ReleaseRequest.id.in_(list(release_ids)),
            )
            .order_by(ReleaseRequest.created_at.asc())
        )
        return list(result.scalars().all())

    async def update(self, release: ReleaseRequest, **values: Any) -> ReleaseRequest:
        """Apply field changes (call AFTER state machine validation)."""
        for key, value in values.items():
            setattr(release, key, value)
        await self._session.flush()
        return release


class ConnectedAccountRepository:
    """Read-only lookup of recipient payout destinations."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def find(
        self, ledger_id: uuid.UUID, entity_type: str | None, entity_id: str | None
    ) -> ConnectedAccount | None:
        """Return the active connected account for a recipient, if any."""
        if not entity_type or not entity_id:
            return None
        result = await self._session.execute(
            select(ConnectedAccount)
            .where(
                ConnectedAccount.ledger_id == ledger_id,
                ConnectedAccount.entity_type == entity_type,
                ConnectedAccount.entity_id == entity_id,
                ConnectedAccount.is_active.is_(True),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def find_many(
        self, ledger_id: uuid.UUID, recipients: Iterable[tuple[str, str]]
    ) -> dict[tuple[str, str], ConnectedAccount]:
        """Batch lookup keyed by (entity_type, entity_id)."""
        keys = {key for key in recipients if key[0] and key[1]}
        if not keys:
            return {}
        result = await self._session.execute(
            select(ConnectedAccount).where(
                ConnectedAccount.ledger_id == ledger_id,
                ConnectedAccount.entity_id.in_([entity_id for _, entity_id in keys]),
                ConnectedAccount.is_active.is_(True),
            )
        )
        found: dict[tuple[str, str], ConnectedAccount] = {}
        for account in result.scalars().all():
            key = (account.entity_type, account.entity_id)
            if key in keys:
                found.setdefault(key, account)
        return found


class CredentialRepository:
    """Server-side access to vaulted bank-aggregator tokens."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_access_token(self, connection_id: str) -> str | None:
        result = await self._session.execute(
            select(VaultedCredential.access_token).where(VaultedCredential.id == connection_id)
        )
        return result.scalar_one_or_none()


class AuditRepository:
    """Data access for the append-only audit log."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        ledger_id: uuid.UUID,
        action: AuditAction,
        entity_type: str,
        entity_id: str | None = None,
        actor: str | None = None,
        details: dict | None = None,
    ) -> AuditRecord:
        """Append a new audit record. This is the ONLY write operation allowed."""
        record = AuditRecord(
            ledger_id=ledger_id,
            action=action.value,
            entity_type=entity_type,
            entity_id=entity_id,
            actor=actor or "SYSTEM",
            risk_score=RISK_SCORES.get(action, 0),
            details=details,
            created_at=datetime.now(UTC),
        )
        self._session.add(record)
        await self._session.flush()
        return record

    async def get_by_ledger(
        self, ledger_id: uuid.UUID, action: AuditAction | None = None
    ) -> list[AuditRecord]:
        """Fetch audit records for a ledger in chronological order."""
        stmt = select(AuditRecord).where(AuditRecord.ledger_id == ledger_id)
        if action is not None:
            stmt = stmt.where(AuditRecord.action == action.value)
        result = await self._session.execute(stmt.order_by(AuditRecord.created_at.asc()))
        return list(result.scalars().all())
