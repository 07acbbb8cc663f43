"""Domain enumerations for the fund custody service.

These enums define the canonical states and types used throughout the system.
They are framework-agnostic (no SQLAlchemy, no FastAPI imports).
"""

from __future__ import annotations

import enum


class EntryType(enum.StrEnum):
    DEBIT = "debit"
    CREDIT = "credit"


class ReleaseStatus(enum.StrEnum):
    """Escrow state of a ledger entry.

    Transitions are enforced by EntryReleaseStateMachine, see
    domain/state_machine.py. IMMEDIATE entries never enter the machine.
    """

    HELD = "held"
    PENDING_RELEASE = "pending_release"
    RELEASED = "released"
    VOIDED = "voided"
    IMMEDIATE = "immediate"


class ReleaseRequestStatus(enum.StrEnum):
    """Lifecycle of a single release attempt."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def active(cls) -> tuple[ReleaseRequestStatus, ...]:
        """Non-terminal statuses; at most one such request per entry."""
        return (cls.PENDING, cls.PROCESSING)


class ReleaseType(enum.StrEnum):
    MANUAL = "manual"
    AUTO = "auto"


class RailName(enum.StrEnum):
    """Payment rails, in default selection priority order."""

    PROCESSOR = "processor"
    BANKING_NETWORK = "banking_network"
    MANUAL = "manual"


class TransferStatus(enum.StrEnum):
    """Normalized transfer state reported by a rail adapter."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class FailureCode(enum.StrEnum):
    """Error codes stored on failed release requests.

    Local codes are raised before any rail call; the rest come from (or
    around) the external provider.
    """

    # Local preconditions
    MISSING_DESTINATION = "missing_destination"
    INVALID_AMOUNT = "invalid_amount"
    ACCOUNT_NOT_VERIFIED = "account_not_verified"
    RAIL_DISABLED = "rail_disabled"
    RAIL_UNAVAILABLE = "rail_unavailable"

    # External
    RAIL_TIMEOUT = "rail_timeout"
    RAIL_NETWORK_ERROR = "rail_network_error"
    RAIL_ERROR = "rail_error"
    PROVIDER_REJECTED = "provider_rejected"
    RAIL_NOT_CONFIGURED = "rail_not_configured"

    @classmethod
    def local_codes(cls) -> frozenset[str]:
        return frozenset(
            {
                cls.MISSING_DESTINATION,
                cls.INVALID_AMOUNT,
                cls.ACCOUNT_NOT_VERIFIED,
                cls.RAIL_DISABLED,
                cls.RAIL_UNAVAILABLE,
            }
        )

    @classmethod
    def is_external(cls, code: str | None) -> bool:
        """True if the code describes a provider-side or transport failure."""
        return bool(code) and code not in cls.local_codes()


class EventType(enum.StrEnum):
    """Terminal notifications handed to the EventPublisher."""

    RELEASE_COMPLETED = "release.completed"
    RELEASE_FAILED = "release.failed"


class AuditAction(enum.StrEnum):
    """Actions recorded in the append-only audit_records table.

    Every money-moving action MUST produce exactly one record.
    """

    RELEASE_QUEUED = "release_funds_queued"
    RELEASE_EXECUTED = "release_funds_executed"
    RELEASE_FAILED = "release_funds_failed"
    BATCH_RELEASE = "batch_release_funds"
    AUTO_RELEASE = "auto_release_funds"
    RELEASE_VOIDED = "release_voided"
    BATCH_FILE_GENERATED = "batch_file_generated"
    RAIL_CONFIGURED = "rail_configured"


# Review weighting for each audited action (0-100, higher = riskier).
RISK_SCORES: dict[AuditAction, int] = {
    AuditAction.RELEASE_QUEUED: 30,
    AuditAction.RELEASE_EXECUTED: 45,
    AuditAction.RELEASE_FAILED: 45,
    AuditAction.BATCH_RELEASE: 55,
    AuditAction.AUTO_RELEASE: 35,
    AuditAction.RELEASE_VOIDED: 50,
    AuditAction.BATCH_FILE_GENERATED: 40,
    AuditAction.RAIL_CONFIGURED: 60,
}
