"""Transfer Executor - runs one queued release through a payment rail.

Sequence for a pending release:
    1. Resolve the recipient's destination and pick a rail.
    2. Local preconditions (destination, amount, verification, rail enabled).
       A failure here marks the release failed without any rail call.
    3. Commit the release as `processing`, then call the adapter under
       an explicit timeout. The call is never retried.
    4. Commit the outcome (release + entry + audit) in one transaction and
       publish release.completed / release.failed.

Any failure, local or external, returns the entry to `held` so a new
release can be requested later.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any

from statemachine.exceptions import TransitionNotAllowed

from fund_custody.config import Settings, get_settings
from fund_custody.domain.enums import (
    AuditAction,
    EventType,
    FailureCode,
    ReleaseRequestStatus,
    ReleaseStatus,
    TransferStatus,
)
from fund_custody.domain.exceptions import (
    EntryNotFoundError,
    InvalidStateTransitionError,
    LedgerNotFoundError,
    ReleaseNotFoundError,
)
from fund_custody.domain.rail_protocol import Destination, Payout, RailConfig, TransferResult
from fund_custody.domain.state_machine import ReleaseRequestStateMachine
from fund_custody.infrastructure.database.repositories import (
    AuditRepository,
    ConnectedAccountRepository,
    EntryRepository,
    LedgerRepository,
    ReleaseRepository,
)
from fund_custody.logging_config import get_logger
from fund_custody.services.event_publisher import LoggingEventPublisher, ReleaseEvent

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from fund_custody.infrastructure.database.orm_models import (
        ConnectedAccount,
        LedgerEntry,
        ReleaseRequest,
    )
    from fund_custody.rails import RailRegistry
    from fund_custody.services.event_publisher import EventPublisher

logger = get_logger(__name__)


@dataclass(frozen=True)
class ReleaseOutcome:
    """Result of one release command, successful or not."""

    entry_id: str
    success: bool
    status: str
    release_id: str | None = None
    rail: str | None = None
    external_transfer_id: str | None = None
    transfer_status: str | None = None
    error_code: str | None = None
    error: str | None = None

    @classmethod
    def from_release(cls, release: ReleaseRequest) -> ReleaseOutcome:
        return cls(
            entry_id=str(release.entry_id),
            success=release.status != ReleaseRequestStatus.FAILED,
            status=release.status,
            release_id=str(release.id),
            rail=release.rail,
            external_transfer_id=release.external_transfer_id,
            transfer_status=release.transfer_status,
            error_code=release.error_code,
            error=release.error_message,
        )

    @classmethod
    def rejected(cls, entry_id: str, error_code: str, error: str) -> ReleaseOutcome:
        """An item that never produced a release (conflict, not found, ...)."""
        return cls(entry_id=entry_id, success=False, status="rejected", error_code=error_code, error=error)

    def to_dict(self) -> dict[str, Any]:
        return {
            "entry_id": self.entry_id,
            "success": self.success,
            "status": self.status,
            "release_id": self.release_id,
            "rail": self.rail,
            "external_transfer_id": self.external_transfer_id,
            "transfer_status": self.transfer_status,
            "error_code": self.error_code,
            "error": self.error,
        }


def destination_from(connected: ConnectedAccount | None) -> Destination:
    if connected is None:
        return Destination()
    return Destination(
        processor_account_id=connected.processor_account_id,
        banking_connection_id=connected.banking_connection_id,
        routing_number=connected.bank_routing_number,
        account_number=connected.bank_account_number,
        account_type=connected.bank_account_type or "checking",
        can_receive_transfers=bool(connected.can_receive_transfers),
        preferred_rail=connected.preferred_rail,
    )


class TransferExecutor:
    """Executes queued releases against the RailRegistry."""

    def __init__(
        self,
        session: AsyncSession,
        registry: RailRegistry,
        publisher: EventPublisher | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._session = session
        self._registry = registry
        self._publisher = publisher or LoggingEventPublisher()
        self._settings = settings or get_settings()
        self._ledger_repo = LedgerRepository(session)
        self._entry_repo = EntryRepository(session)
        self._release_repo = ReleaseRepository(session)
        self._connected_repo = ConnectedAccountRepository(session)
        self._audit_repo = AuditRepository(session)

    @property
    def registry(self) -> RailRegistry:
        return self._registry

    # ------------------------------------------------------------------
    # Execute
    # ------------------------------------------------------------------

    async def execute(
        self,
        release_id: uuid.UUID,
        rail: str | None = None,
        ledger_id: uuid.UUID | None = None,
    ) -> ReleaseOutcome:
        """Send the transfer for a pending release and finalize it.

        Raises:
            ReleaseNotFoundError: If the release does not exist.
            InvalidStateTransitionError: If the release is no longer pending.
            RequestValidationError: If an explicit rail name is unknown.
        """
        release = await self._get_release_or_raise(release_id, ledger_id)
        if release.status != ReleaseRequestStatus.PENDING:
            raise InvalidStateTransitionError(release.status, "dispatch")

        entry = await self._entry_repo.get_by_id(release.entry_id)
        if entry is None:
            raise EntryNotFoundError(str(release.entry_id))
        ledger = await self._ledger_repo.get_by_id(release.ledger_id)
        if ledger is None:
            raise LedgerNotFoundError(str(release.ledger_id))

        configs = self._ledger_repo.rail_configs(ledger)
        connected = await self._connected_repo.find(
            release.ledger_id, release.recipient_type, release.recipient_id
        )
        destination = destination_from(connected)
        rail_name = self._registry.select(
            explicit=rail, preferred=destination.preferred_rail, configs=configs
        )
        config = self._registry.config_for(rail_name, configs) or RailConfig(rail=rail_name)
        release.rail = rail_name

        log = logger.bind(release_id=str(release.id), entry_id=str(entry.id), rail=rail_name)

        # --- Local preconditions: no rail call ---
        if rail_name not in self._registry:
            problem = (FailureCode.RAIL_UNAVAILABLE, f"No adapter registered for rail {rail_name}")
        else:
            problem = self._check_preconditions(release, destination, rail_name, config)
        if problem is not None:
            code, message = problem
            log.info("transfer.precondition_failed", error_code=code)
            return await self._finalize_failure(
                release, entry, TransferResult.failed(code, message), event="reject"
            )

        # --- Dispatch ---
        self._fire_transition(release, "dispatch")
        await self._release_repo.update(release, status=ReleaseRequestStatus.PROCESSING.value)
        await self._session.commit()

        payout = Payout(
            release_id=str(release.id),
            recipient_id=release.recipient_id or "",
            recipient_name=(connected.display_name if connected else None) or release.recipient_id or "",
            amount=Decimal(release.amount),
            currency=release.currency,
            destination=destination,
        )
        adapter = self._registry.get(rail_name)
        log.info("transfer.dispatched", amount=str(payout.amount), currency=payout.currency)

        try:
            async with asyncio.timeout(self._settings.rail_timeout_seconds):
                result = await adapter.execute(payout, config)
        except TimeoutError:
            log.warning("transfer.timeout", timeout=self._settings.rail_timeout_seconds)
            result = TransferResult.failed(
                FailureCode.RAIL_TIMEOUT,
                f"Rail did not answer within {self._settings.rail_timeout_seconds}s",
            )
        except Exception as exc:
            log.exception("transfer.adapter_error")
            result = TransferResult.failed(FailureCode.RAIL_ERROR, str(exc) or type(exc).__name__)

        if result.success:
            return await self._finalize_success(release, entry, result)
        return await self._finalize_failure(release, entry, result, event="fail")

    # ------------------------------------------------------------------
    # Status refresh
    # ------------------------------------------------------------------

    async def refresh_status(
        self, release_id: uuid.UUID, ledger_id: uuid.UUID | None = None
    ) -> tuple[ReleaseRequest, TransferResult]:
        """Ask the rail for the latest state of a completed release's transfer."""
        release = await self._get_release_or_raise(release_id, ledger_id)
        if (
            release.status != ReleaseRequestStatus.COMPLETED
            or not release.external_transfer_id
            or not release.rail
        ):
            raise InvalidStateTransitionError(release.status, "refresh_status")

        ledger = await self._ledger_repo.get_by_id(release.ledger_id)
        if ledger is None:
            raise LedgerNotFoundError(str(release.ledger_id))
        configs = self._ledger_repo.rail_configs(ledger)
        config = self._registry.config_for(release.rail, configs) or RailConfig(rail=release.rail)

        result = await self._registry.get(release.rail).get_status(
            release.external_transfer_id, config
        )
        if result.success:
            await self._release_repo.update(release, transfer_status=result.status.value)
            await self._session.commit()
        logger.info(
            "transfer.status_refreshed",
            release_id=str(release.id),
            transfer_status=result.status.value,
            lookup_ok=result.success,
        )
        return release, result

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _check_preconditions(
        release: ReleaseRequest,
        destination: Destination,
        rail_name: str,
        config: RailConfig,
    ) -> tuple[str, str] | None:
        if not destination.for_rail(rail_name):
            return FailureCode.MISSING_DESTINATION, f"Recipient has no {rail_name} destination"
        if Decimal(release.amount) <= 0:
            return FailureCode.INVALID_AMOUNT, "Release amount must be positive"
        if not destination.can_receive_transfers:
            return FailureCode.ACCOUNT_NOT_VERIFIED, "Recipient account cannot receive transfers"
        if not config.enabled:
            return FailureCode.RAIL_DISABLED, f"Rail {rail_name} is disabled for this ledger"
        return None

    async def _finalize_success(
        self, release: ReleaseRequest, entry: LedgerEntry, result: TransferResult
    ) -> ReleaseOutcome:
        now = datetime.now(UTC)
        self._fire_transition(release, "complete")
        await self._release_repo.update(
            release,
            status=ReleaseRequestStatus.COMPLETED.value,
            external_transfer_id=result.external_id,
            transfer_status=result.status.value,
            completed_at=now,
        )
        moved = await self._entry_repo.transition(
            entry,
            ReleaseStatus.PENDING_RELEASE,
            ReleaseStatus.RELEASED,
            released_at=now,
            release_transfer_id=result.external_id,
        )
        if not moved:
            logger.error(
                "transfer.entry_state_mismatch",
                release_id=str(release.id),
                entry_id=str(entry.id),
                release_status=entry.release_status,
            )
        await self._audit_repo.record(
            ledger_id=release.ledger_id,
            action=AuditAction.RELEASE_EXECUTED,
            entity_type="release_request",
            entity_id=str(release.id),
            actor=release.requested_by,
            details={
                "entry_id": str(entry.id),
                "rail": release.rail,
                "amount": str(release.amount),
                "currency": release.currency,
                "external_transfer_id": result.external_id,
                "transfer_status": result.status.value,
            },
        )
        await self._session.commit()

        logger.info(
            "transfer.completed",
            release_id=str(release.id),
            rail=release.rail,
            external_id=result.external_id,
            transfer_status=result.status.value,
        )
        await self._publish(EventType.RELEASE_COMPLETED, release)
        return ReleaseOutcome.from_release(release)

    async def _finalize_failure(
        self,
        release: ReleaseRequest,
        entry: LedgerEntry,
        result: TransferResult,
        event: str,
    ) -> ReleaseOutcome:
        error_code = result.error_code or FailureCode.RAIL_ERROR.value
        self._fire_transition(release, event)
        await self._release_repo.update(
            release,
            status=ReleaseRequestStatus.FAILED.value,
            error_code=error_code,
            error_message=result.error,
            transfer_status=TransferStatus.FAILED.value,
            external_transfer_id=result.external_id,
            completed_at=datetime.now(UTC),
        )
        await self._entry_repo.transition(entry, ReleaseStatus.PENDING_RELEASE, ReleaseStatus.HELD)
        await self._audit_repo.record(
            ledger_id=release.ledger_id,
            action=AuditAction.RELEASE_FAILED,
            entity_type="release_request",
            entity_id=str(release.id),
            actor=release.requested_by,
            details={
                "entry_id": str(entry.id),
                "rail": release.rail,
                "error_code": error_code,
                "external": FailureCode.is_external(error_code),
            },
        )
        await self._session.commit()

        logger.warning(
            "transfer.failed",
            release_id=str(release.id),
            rail=release.rail,
            error_code=error_code,
            error=result.error,
        )
        await self._publish(EventType.RELEASE_FAILED, release)
        return ReleaseOutcome.from_release(release)

    async def _publish(self, event_type: EventType, release: ReleaseRequest) -> None:
        await self._publisher.publish(
            ReleaseEvent(
                type=event_type,
                ledger_id=str(release.ledger_id),
                release_id=str(release.id),
                entry_id=str(release.entry_id),
                amount=str(release.amount),
                currency=release.currency,
                rail=release.rail,
                external_transfer_id=release.external_transfer_id,
                error_code=release.error_code,
                error=release.error_message,
            )
        )

    async def _get_release_or_raise(
        self, release_id: uuid.UUID, ledger_id: uuid.UUID | None = None
    ) -> ReleaseRequest:
        release = await self._release_repo.get_by_id(release_id, ledger_id)
        if release is None:
            raise ReleaseNotFoundError(str(release_id))
        return release

    @staticmethod
    def _fire_transition(release: ReleaseRequest, event_name: str) -> None:
        """Validate a release transition; raises InvalidStateTransitionError if illegal."""
        sm = ReleaseRequestStateMachine(current_status=release.status)
        try:
            getattr(sm, event_name)()
        except TransitionNotAllowed as err:
            raise InvalidStateTransitionError(release.status, event_name) from err
