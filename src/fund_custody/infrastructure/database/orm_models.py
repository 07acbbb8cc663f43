"""SQLAlchemy 2.0 ORM models for the fund custody service.

Tables owned by the ledger (read here, only escrow columns written):
    1. ledgers            - Tenant ledger, carries the per-ledger rail configs.
    2. ledger_accounts    - Creator/venture accounts that entries post to.
    3. ledger_entries     - Posted entries; this service writes release_status only.

Tables owned by this service:
    4. release_requests   - One attempt to pay out a held entry.
    5. connected_accounts - Recipient payout destinations (read-only lookup).
    6. vaulted_credentials - Bank-aggregator access tokens, read server-side.
    7. audit_records      - Append-only log of money-moving actions.

Design decisions:
    - UUIDs as primary keys, stored with the portable Uuid type.
    - Decimal for amounts (no floating point rounding errors).
    - JSON columns (JSONB on PostgreSQL) for rail configs and audit details.
    - CHECK constraints on status columns to prevent invalid values at DB level.
    - A partial unique index allows at most one pending/processing request per entry.
    - audit_records is append-only: no UPDATE or DELETE at the application level.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime
from decimal import Decimal  # noqa: TC003 - needed at runtime by SQLAlchemy Mapped[]

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# JSONB on PostgreSQL, plain JSON elsewhere (sqlite in tests).
JSONType = JSON().with_variant(JSONB(), "postgresql")

_ACTIVE_RELEASE = "status IN ('pending', 'processing')"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


# ---------------------------------------------------------------------------
# 1. ledgers
# ---------------------------------------------------------------------------
class Ledger(Base):
    __tablename__ = "ledgers"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    payout_rails: Mapped[list] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
        comment='Rail configs, e.g. [{"rail": "processor", "enabled": true, ...}]',
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    def __repr__(self) -> str:
        return f"<Ledger id={self.id} name={self.name}>"


# ---------------------------------------------------------------------------
# 2. ledger_accounts
# ---------------------------------------------------------------------------
class LedgerAccount(Base):
    """An account entries are posted to. entity_type is 'creator' or 'venture'."""

    __tablename__ = "ledger_accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ledger_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("ledgers.id", ondelete="CASCADE"), nullable=False
    )
    account_type: Mapped[str] = mapped_column(String(40), nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    __table_args__ = (Index("idx_account_entity", "ledger_id", "entity_type", "entity_id"),)


# ---------------------------------------------------------------------------
# 3. ledger_entries
# ---------------------------------------------------------------------------
class LedgerEntry(Base):
    """A posted ledger line. Financial columns belong to the ledger; this
    service only writes release_status and the release/void metadata."""

    __tablename__ = "ledger_entries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ledger_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("ledgers.id", ondelete="CASCADE"), nullable=False
    )
    account_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("ledger_accounts.id", ondelete="CASCADE"), nullable=False
    )

    # --- Financials ---
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    entry_type: Mapped[str] = mapped_column(String(10), nullable=False)

    # --- Escrow ---
    release_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="immediate",
        comment="Escrow state (guarded by EntryReleaseStateMachine)",
    )
    hold_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    hold_until: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    released_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    voided_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    release_transfer_id: Mapped[str | None] = mapped_column(String(120), nullable=True)

    # --- Sale context ---
    venture_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    transaction_ref: Mapped[str | None] = mapped_column(String(120), nullable=True)
    product_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    account: Mapped[LedgerAccount] = relationship("LedgerAccount", lazy="joined")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_entry_positive_amount"),
        CheckConstraint("entry_type IN ('debit', 'credit')", name="ck_entry_type"),
        CheckConstraint(
            "release_status IN ('held', 'pending_release', 'released', "
            "'voided', 'immediate')",
            name="ck_entry_release_status",
        ),
        Index("idx_entry_release", "ledger_id", "release_status", "hold_until"),
        Index("idx_entry_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry id={self.id} {self.entry_type} "
            f"{self.amount} {self.currency} release_status={self.release_status}>"
        )


# ---------------------------------------------------------------------------
# 4. release_requests
# ---------------------------------------------------------------------------
class ReleaseRequest(Base):
    """A single attempt to pay out a held entry.

    amount/currency/recipient are snapshotted from the entry at creation so
    the executor transfers exactly the held amount.
    """

    __tablename__ = "release_requests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ledger_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("ledgers.id", ondelete="CASCADE"), nullable=False
    )
    entry_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("ledger_entries.id", ondelete="CASCADE"), nullable=False
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="pending",
        comment="Attempt state (guarded by ReleaseRequestStateMachine)",
    )
    release_type: Mapped[str] = mapped_column(String(10), nullable=False, default="manual")
    requested_by: Mapped[str | None] = mapped_column(String(120), nullable=True)

    # --- Snapshot ---
    recipient_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    recipient_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(18, 4), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    # --- Transfer outcome ---
    rail: Mapped[str | None] = mapped_column(String(30), nullable=True)
    external_transfer_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    transfer_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    error_code: Mapped[str | None] = mapped_column(String(60), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'processing', 'completed', 'failed')",
            name="ck_release_status",
        ),
        CheckConstraint("release_type IN ('manual', 'auto')", name="ck_release_type"),
        Index(
            "uq_release_active_entry",
            "entry_id",
            unique=True,
            postgresql_where=text(_ACTIVE_RELEASE),
            sqlite_where=text(_ACTIVE_RELEASE),
        ),
        Index("idx_release_ledger_status", "ledger_id", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<ReleaseRequest id={self.id} entry={self.entry_id} "
            f"status={self.status} rail={self.rail}>"
        )


# ---------------------------------------------------------------------------
# 5. connected_accounts
# ---------------------------------------------------------------------------
class ConnectedAccount(Base):
    """A recipient's payout destination(s). Onboarding happens elsewhere."""

    __tablename__ = "connected_accounts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ledger_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("ledgers.id", ondelete="CASCADE"), nullable=False
    )
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(120), nullable=False)
    display_name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    processor_account_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    banking_connection_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    bank_routing_number: Mapped[str | None] = mapped_column(String(9), nullable=True)
    bank_account_number: Mapped[str | None] = mapped_column(String(34), nullable=True)
    bank_account_type: Mapped[str] = mapped_column(String(10), nullable=False, default="checking")
    preferred_rail: Mapped[str | None] = mapped_column(String(30), nullable=True)

    can_receive_transfers: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint(
            "bank_account_type IN ('checking', 'savings')", name="ck_connected_account_type"
        ),
        Index("idx_connected_entity", "ledger_id", "entity_type", "entity_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<ConnectedAccount {self.entity_type}:{self.entity_id} "
            f"verified={self.can_receive_transfers}>"
        )


# ---------------------------------------------------------------------------
# 6. vaulted_credentials
# ---------------------------------------------------------------------------
class VaultedCredential(Base):
    """Bank-aggregator access token keyed by connection id. Never returned by the API."""

    __tablename__ = "vaulted_credentials"

    id: Mapped[str] = mapped_column(String(120), primary_key=True)
    ledger_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("ledgers.id", ondelete="CASCADE"), nullable=False
    )
    access_token: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    def __repr__(self) -> str:
        return f"<VaultedCredential id={self.id}>"


# ---------------------------------------------------------------------------
# 7. audit_records (Append-Only)
# ---------------------------------------------------------------------------
class AuditRecord(Base):
    """Immutable record of a money-moving action, tagged with a risk score.

    This table is APPEND-ONLY. No UPDATE or DELETE operations are permitted
    at the application level.
    """

    __tablename__ = "audit_records"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ledger_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("ledgers.id", ondelete="CASCADE"), nullable=False
    )
    action: Mapped[str] = mapped_column(
        String(40), nullable=False, comment="AuditAction enum value"
    )
    entity_type: Mapped[str] = mapped_column(String(40), nullable=False)
    entity_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    actor: Mapped[str] = mapped_column(String(120), nullable=False, default="SYSTEM")
    risk_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    details: Mapped[dict | None] = mapped_column(JSONType, nullable=True, default=None)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    __table_args__ = (
        CheckConstraint("risk_score BETWEEN 0 AND 100", name="ck_audit_risk_score"),
        Index("idx_audit_ledger_action", "ledger_id", "action"),
        Index("idx_audit_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<AuditRecord id={self.id} action={self.action} risk={self.risk_score}>"
