"""Release Coordinator - owns the held -> pending_release -> released | held machine.

This is the application layer that coordinates between:
    - Domain state machine (transition guard)
    - Repositories (data access)
    - Audit log (risk-scored trail of every money-moving action)
    - TransferExecutor (the actual payout)

Both REST routes and MCP tools call into this service, ensuring a single
source of truth for release rules. At most one pending/processing release
exists per entry: the conditional UPDATE on the entry and the partial
unique index on release_requests both enforce it.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from statemachine.exceptions import TransitionNotAllowed

from fund_custody.config import Settings, get_settings
from fund_custody.domain.enums import (
    AuditAction,
    EntryType,
    ReleaseRequestStatus,
    ReleaseStatus,
    ReleaseType,
)
from fund_custody.domain.exceptions import (
    CustodyError,
    DuplicateReleaseError,
    EntryNotFoundError,
    EntryNotHeldError,
    InvalidStateTransitionError,
    LedgerNotFoundError,
    ReleaseNotFoundError,
    RequestValidationError,
)
from fund_custody.domain.state_machine import EntryReleaseStateMachine
from fund_custody.infrastructure.database.orm_models import ReleaseRequest
from fund_custody.infrastructure.database.repositories import (
    AuditRepository,
    EntryRepository,
    LedgerRepository,
    ReleaseRepository,
)
from fund_custody.logging_config import get_logger
from fund_custody.services.pacing import Pacer
from fund_custody.services.transfer_executor import ReleaseOutcome

if TYPE_CHECKING:
    from collections.abc import Sequence

    from sqlalchemy.ext.asyncio import AsyncSession

    from fund_custody.infrastructure.database.orm_models import LedgerEntry
    from fund_custody.services.transfer_executor import TransferExecutor

logger = get_logger(__name__)


@dataclass
class BatchReleaseResult:
    """Per-item results of a batch; partial failure is a normal outcome."""

    results: list[ReleaseOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return len(self.results) - self.succeeded

    @property
    def success(self) -> bool:
        return self.failed == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "results": [r.to_dict() for r in self.results],
        }


@dataclass
class SweepResult:
    queued: list[ReleaseOutcome] = field(default_factory=list)
    executed: list[ReleaseOutcome] = field(default_factory=list)
    errors: list[ReleaseOutcome] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "queued": len(self.queued),
            "executed": sum(1 for r in self.executed if r.success),
            "failed": len(self.errors) + sum(1 for r in self.executed if not r.success),
            "releases": [r.to_dict() for r in self.executed or self.queued],
            "errors": [r.to_dict() for r in self.errors],
        }


class ReleaseCoordinator:
    """Creates, batches, sweeps and voids release requests."""

    def __init__(
        self,
        session: AsyncSession,
        executor: TransferExecutor | None = None,
        settings: Settings | None = None,
        pacer: Pacer | None = None,
    ) -> None:
        self._session = session
        self._executor = executor
        self._settings = settings or get_settings()
        self._pacer = pacer
        self._ledger_repo = LedgerRepository(session)
        self._entry_repo = EntryRepository(session)
        self._release_repo = ReleaseRepository(session)
        self._audit_repo = AuditRepository(session)

    # ------------------------------------------------------------------
    # Single release
    # ------------------------------------------------------------------

    async def request_release(
        self,
        ledger_id: uuid.UUID,
        entry_id: uuid.UUID,
        release_type: ReleaseType = ReleaseType.MANUAL,
        requested_by: str | None = None,
    ) -> ReleaseRequest:
        """Queue a release for a held credit entry and return the pending request.

        Raises:
            EntryNotFoundError: If the entry is not in this ledger.
            EntryNotHeldError: If the entry is not a held credit.
            DuplicateReleaseError: If a pending/processing release exists.
        """
        entry = await self._get_entry_or_raise(ledger_id, entry_id)
        entry_key = str(entry.id)
        if entry.entry_type != EntryType.CREDIT or entry.release_status == ReleaseStatus.IMMEDIATE:
            raise EntryNotHeldError(entry_key, entry.release_status)
        if await self._release_repo.get_active_for_entry(entry.id) is not None:
            raise DuplicateReleaseError(entry_key)
        if entry.release_status != ReleaseStatus.HELD:
            raise EntryNotHeldError(entry_key, entry.release_status)

        self._fire_transition(entry, "queue")
        moved = await self._entry_repo.transition(
            entry, ReleaseStatus.HELD, ReleaseStatus.PENDING_RELEASE
        )
        if not moved:
            await self._session.rollback()
            raise DuplicateReleaseError(entry_key)

        account = entry.account
        try:
            release = await self._release_repo.create(
                ReleaseRequest(
                    ledger_id=entry.ledger_id,
                    entry_id=entry.id,
                    status=ReleaseRequestStatus.PENDING.value,
                    release_type=ReleaseType(release_type).value,
                    requested_by=requested_by,
                    recipient_type=account.entity_type if account else None,
                    recipient_id=account.entity_id if account else None,
                    amount=entry.amount,
                    currency=entry.currency,
                )
            )
        except IntegrityError as err:
            await self._session.rollback()
            raise DuplicateReleaseError(entry_key) from err

        await self._audit_repo.record(
            ledger_id=entry.ledger_id,
            action=AuditAction.RELEASE_QUEUED,
            entity_type="ledger_entry",
            entity_id=entry_key,
            actor=requested_by,
            details={
                "release_id": str(release.id),
                "release_type": release.release_type,
                "amount": str(entry.amount),
                "currency": entry.currency,
            },
        )
        await self._session.commit()

        logger.info(
            "release.queued",
            release_id=str(release.id),
            entry_id=entry_key,
            release_type=release.release_type,
        )
        return release

    async def release(
        self,
        ledger_id: uuid.UUID,
        entry_id: uuid.UUID,
        rail: str | None = None,
        execute_transfer: bool = True,
        requested_by: str | None = None,
        release_type: ReleaseType = ReleaseType.MANUAL,
    ) -> ReleaseOutcome:
        """Queue a release and, unless told otherwise, execute it right away."""
        if rail and self._executor is not None:
            # Unknown rail names are rejected before the entry changes state.
            self._executor.registry.select(explicit=rail, preferred=None, configs=())

        release = await self.request_release(ledger_id, entry_id, release_type, requested_by)
        if not execute_transfer or self._executor is None:
            return ReleaseOutcome.from_release(release)
        return await self._executor.execute(release.id, rail=rail)

    async def get_release(self, ledger_id: uuid.UUID, release_id: uuid.UUID) -> ReleaseRequest:
        release = await self._release_repo.get_by_id(release_id, ledger_id)
        if release is None:
            raise ReleaseNotFoundError(str(release_id))
        return release

    # ------------------------------------------------------------------
    # Batch release
    # ------------------------------------------------------------------

    async def batch_release(
        self,
        ledger_id: uuid.UUID,
        entry_ids: Sequence[uuid.UUID],
        rail: str | None = None,
        execute_transfer: bool = True,
        requested_by: str | None = None,
    ) -> BatchReleaseResult:
        """Release entries one by one; an item's failure never stops the batch."""
        unique_ids = list(dict.fromkeys(entry_ids))
        if not 1 <= len(unique_ids) <= self._settings.batch_release_max:
            raise RequestValidationError(
                f"entry_ids must contain 1 to {self._settings.batch_release_max} ids"
            )
        await self._require_ledger(ledger_id)
        if rail and self._executor is not None:
            self._executor.registry.select(explicit=rail, preferred=None, configs=())

        result = BatchReleaseResult()
        pacer = self._new_pacer()
        for entry_id in unique_ids:
            await pacer.wait()
            result.results.append(
                await self._isolated(
                    str(entry_id),
                    self.release(
                        ledger_id,
                        entry_id,
                        rail=rail,
                        execute_transfer=execute_transfer,
                        requested_by=requested_by,
                    ),
                )
            )

        await self._audit_repo.record(
            ledger_id=ledger_id,
            action=AuditAction.BATCH_RELEASE,
            entity_type="ledger",
            entity_id=str(ledger_id),
            actor=requested_by,
            details={
                "requested": len(unique_ids),
                "succeeded": result.succeeded,
                "failed": result.failed,
                "execute_transfer": execute_transfer,
            },
        )
        await self._session.commit()

        logger.info(
            "release.batch_completed",
            ledger_id=str(ledger_id),
            succeeded=result.succeeded,
            failed=result.failed,
        )
        return result

    # ------------------------------------------------------------------
    # Void
    # ------------------------------------------------------------------

    async def void_release(
        self,
        ledger_id: uuid.UUID,
        entry_id: uuid.UUID,
        reason: str,
        actor: str | None = None,
    ) -> LedgerEntry:
        """Permanently void a held entry. No transfer is ever made for it."""
        reason = (reason or "").strip()
        if not reason:
            raise RequestValidationError("A void reason is required")

        entry = await self._get_entry_or_raise(ledger_id, entry_id)
        entry_key = str(entry.id)
        if entry.entry_type != EntryType.CREDIT or entry.release_status != ReleaseStatus.HELD:
            raise EntryNotHeldError(entry_key, entry.release_status)

        previous = entry.release_status
        self._fire_transition(entry, "void")
        moved = await self._entry_repo.transition(
            entry,
            ReleaseStatus.HELD,
            ReleaseStatus.VOIDED,
            hold_reason=reason,
            voided_at=datetime.now(UTC),
        )
        if not moved:
            await self._session.rollback()
            raise EntryNotHeldError(entry_key, previous)

        await self._audit_repo.record(
            ledger_id=entry.ledger_id,
            action=AuditAction.RELEASE_VOIDED,
            entity_type="ledger_entry",
            entity_id=entry_key,
            actor=actor,
            details={"reason": reason, "amount": str(entry.amount), "currency": entry.currency},
        )
        await self._session.commit()

        logger.info("release.voided", entry_id=entry_key, by=actor or "SYSTEM")
        return entry

    # ------------------------------------------------------------------
    # Auto-release sweep
    # ------------------------------------------------------------------

    async def auto_release_sweep(
        self,
        ledger_id: uuid.UUID,
        limit: int | None = None,
        execute_immediately: bool = False,
        now: datetime | None = None,
    ) -> SweepResult:
        """Queue (and optionally execute) every held credit whose hold has lapsed."""
        await self._require_ledger(ledger_id)
        limit = max(1, min(int(limit or self._settings.batch_release_max), self._settings.held_list_max_limit))
        now = now or datetime.now(UTC)

        lapsed = await self._entry_repo.list_lapsed_holds(ledger_id, now, limit)
        entry_ids = [entry.id for entry in lapsed]

        result = SweepResult()
        pacer = self._new_pacer()
        for entry_id in entry_ids:
            await pacer.wait()
            outcome = await self._isolated(
                str(entry_id), self._queue_auto(ledger_id, entry_id)
            )
            (result.queued if outcome.success else result.errors).append(outcome)

        if execute_immediately and self._executor is not None:
            for queued in result.queued:
                await pacer.wait()
                result.executed.append(
                    await self._isolated(
                        queued.entry_id, self._executor.execute(uuid.UUID(queued.release_id))
                    )
                )

        await self._audit_repo.record(
            ledger_id=ledger_id,
            action=AuditAction.AUTO_RELEASE,
            entity_type="ledger",
            entity_id=str(ledger_id),
            details={
                "eligible": len(entry_ids),
                "queued": len(result.queued),
                "executed": len(result.executed),
                "execute_immediately": execute_immediately,
            },
        )
        await self._session.commit()

        logger.info(
            "release.auto_sweep_completed",
            ledger_id=str(ledger_id),
            eligible=len(entry_ids),
            queued=len(result.queued),
            errors=len(result.errors),
        )
        return result

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _queue_auto(self, ledger_id: uuid.UUID, entry_id: uuid.UUID) -> ReleaseOutcome:
        release = await self.request_release(
            ledger_id, entry_id, ReleaseType.AUTO, requested_by="auto_release"
        )
        return ReleaseOutcome.from_release(release)

    async def _isolated(self, entry_key: str, operation) -> ReleaseOutcome:  # noqa: ANN001
        """Await one item's operation, turning its failure into a result row."""
        try:
            return await operation
        except CustodyError as exc:
            return ReleaseOutcome.rejected(entry_key, exc.code, exc.message)
        except SQLAlchemyError as exc:
            await self._session.rollback()
            logger.exception("release.item_database_error", entry_id=entry_key)
            return ReleaseOutcome.rejected(entry_key, "DATABASE_ERROR", str(exc))

    def _new_pacer(self) -> Pacer:
        return self._pacer or Pacer(self._settings.release_pacing_seconds)

    async def _require_ledger(self, ledger_id: uuid.UUID) -> None:
        if await self._ledger_repo.get_by_id(ledger_id) is None:
            raise LedgerNotFoundError(str(ledger_id))

    async def _get_entry_or_raise(self, ledger_id: uuid.UUID, entry_id: uuid.UUID) -> LedgerEntry:
        entry = await self._entry_repo.get_by_id(entry_id, ledger_id)
        if entry is None:
            raise EntryNotFoundError(str(entry_id))
        return entry

    @staticmethod
    def _fire_transition(entry: LedgerEntry, event_name: str) -> None:
        """Validate an entry transition; raises InvalidStateTransitionError if illegal."""
        sm = EntryReleaseStateMachine(current_status=entry.release_status)
        try:
            getattr(sm, event_name)()
        except TransitionNotAllowed as err:
            raise InvalidStateTransitionError(entry.release_status, event_name) from err
