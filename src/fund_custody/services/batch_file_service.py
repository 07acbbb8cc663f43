"""Batch File Service - NACHA files for releases paid on the manual rail.

The file carries full routing and account numbers, so it is never
returned inline. It is stored in Redis under a random token with a short
TTL and can be downloaded exactly once.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from fund_custody.config import Settings, get_settings
from fund_custody.domain.enums import AuditAction, RailName, ReleaseRequestStatus
from fund_custody.domain.exceptions import (
    BatchFileError,
    BatchFileExpiredError,
    LedgerNotFoundError,
    RailConfigError,
    RequestValidationError,
)
from fund_custody.domain.rail_protocol import Payout, RailConfig
from fund_custody.infrastructure.database.repositories import (
    AuditRepository,
    ConnectedAccountRepository,
    LedgerRepository,
    ReleaseRepository,
)
from fund_custody.infrastructure.redis_client import store_batch_file, take_batch_file
from fund_custody.logging_config import get_logger
from fund_custody.rails.batch_file import BatchFileEncoder, Originator
from fund_custody.services.transfer_executor import destination_from

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime

    import redis.asyncio as aioredis
    from sqlalchemy.ext.asyncio import AsyncSession

    from fund_custody.rails import RailRegistry

logger = get_logger(__name__)


@dataclass(frozen=True)
class SkippedRelease:
    release_id: str
    reason: str


@dataclass
class GeneratedBatchFile:
    token: str
    expires_in: int
    entry_count: int
    total_amount: Decimal
    release_ids: list[str] = field(default_factory=list)
    skipped: list[SkippedRelease] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "token": self.token,
            "expires_in": self.expires_in,
            "entry_count": self.entry_count,
            "total_amount": str(self.total_amount),
            "release_ids": self.release_ids,
            "skipped": [{"release_id": s.release_id, "reason": s.reason} for s in self.skipped],
        }


class BatchFileService:
    def __init__(
        self,
        session: AsyncSession,
        registry: RailRegistry,
        redis: aioredis.Redis,
        settings: Settings | None = None,
    ) -> None:
        self._session = session
        self._registry = registry
        self._redis = redis
        self._settings = settings or get_settings()
        self._ledger_repo = LedgerRepository(session)
        self._release_repo = ReleaseRepository(session)
        self._connected_repo = ConnectedAccountRepository(session)
        self._audit_repo = AuditRepository(session)

    async def generate(
        self,
        ledger_id: uuid.UUID,
        release_ids: Sequence[uuid.UUID],
        actor: str | None = None,
        now: datetime | None = None,
    ) -> GeneratedBatchFile:
        """Encode completed manual-rail releases into a file behind a one-time link.

        Releases that are unknown, on another rail, not completed, or whose
        recipient has no bank details are skipped and reported.

        Raises:
            RailConfigError: If the manual rail config is invalid (production).
            BatchFileError: If nothing is payable or an amount cannot be encoded.
        """
        unique_ids = list(dict.fromkeys(release_ids))
        if not 1 <= len(unique_ids) <= self._settings.batch_release_max:
            raise RequestValidationError(
                f"release_ids must contain 1 to {self._settings.batch_release_max} ids"
            )

        ledger = await self._ledger_repo.get_by_id(ledger_id)
        if ledger is None:
            raise LedgerNotFoundError(str(ledger_id))

        manual = RailName.MANUAL.value
        config = self._registry.config_for(
            manual, self._ledger_repo.rail_configs(ledger)
        ) or RailConfig(rail=manual)
        validation = self._registry.get(manual).validate_config(config)
        if not validation.valid:
            raise RailConfigError(manual, validation.errors)

        releases = {r.id: r for r in await self._release_repo.get_many(ledger_id, unique_ids)}
        payouts: list[Payout] = []
        skipped: list[SkippedRelease] = []
        for release_id in unique_ids:
            release = releases.get(release_id)
            if release is None:
                skipped.append(SkippedRelease(str(release_id), "not_found"))
                continue
            if release.status != ReleaseRequestStatus.COMPLETED:
                skipped.append(SkippedRelease(str(release_id), "not_completed"))
                continue
            if release.rail != manual:
                skipped.append(SkippedRelease(str(release_id), "not_manual_rail"))
                continue

            connected = await self._connected_repo.find(
                ledger_id, release.recipient_type, release.recipient_id
            )
            destination = destination_from(connected)
            if not destination.for_rail(manual):
                skipped.append(SkippedRelease(str(release_id), "missing_bank_details"))
                continue

            payouts.append(
                Payout(
                    release_id=str(release.id),
                    recipient_id=release.recipient_id or "",
                    recipient_name=(connected.display_name if connected else None) or "",
                    amount=Decimal(release.amount),
                    currency=release.currency,
                    destination=destination,
                )
            )

        if not payouts:
            raise BatchFileError("None of the releases can be paid by batch file")

        batch = BatchFileEncoder(Originator.from_settings(config.settings)).encode(payouts, now)
        ttl = self._settings.batch_file_link_ttl_seconds
        token = await store_batch_file(self._redis, batch.content, ttl)
        total = sum((p.amount for p in payouts), Decimal("0"))

        await self._audit_repo.record(
            ledger_id=ledger_id,
            action=AuditAction.BATCH_FILE_GENERATED,
            entity_type="batch_file",
            actor=actor,
            details={
                "entry_count": batch.entry_count,
                "total_amount": str(total),
                "release_ids": batch.release_ids,
                "skipped": len(skipped),
            },
        )
        await self._session.commit()

        logger.info(
            "batch_file.generated",
            ledger_id=str(ledger_id),
            entry_count=batch.entry_count,
            skipped=len(skipped),
            expires_in=ttl,
        )
        return GeneratedBatchFile(
            token=token,
            expires_in=ttl,
            entry_count=batch.entry_count,
            total_amount=total,
            release_ids=batch.release_ids,
            skipped=skipped,
        )

    async def download(self, token: str) -> str:
        """Return the file once; the token is spent afterwards."""
        content = await take_batch_file(self._redis, token)
        if content is None:
            raise BatchFileExpiredError()
        logger.info("batch_file.downloaded")
        return content
