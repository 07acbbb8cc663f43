"""Pydantic schemas for the custody API.

These schemas define the request/response shapes for the REST API and
MCP tools. They are separate from the ORM models to maintain clean
boundaries between the API and database layers.
"""

from __future__ import annotations

import uuid  # noqa: TC003 - pydantic resolves these at runtime
from datetime import datetime  # noqa: TC003
from decimal import Decimal  # noqa: TC003
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request Schemas
# ---------------------------------------------------------------------------


class ReleaseRequestBody(BaseModel):
    """Request body for releasing one held entry."""

    entry_id: uuid.UUID = Field(..., description="Held ledger entry to pay out")
    rail: str | None = Field(
        default=None,
        description="Force a rail (processor, banking_network, manual); otherwise selected",
        examples=["processor"],
    )
    execute_transfer: bool = Field(
        default=True,
        description="Queue only when false; the release can be executed later",
    )
    requested_by: str | None = Field(default=None, max_length=120)


class BatchReleaseBody(BaseModel):
    """Request body for releasing up to 100 entries in one call."""

    entry_ids: list[uuid.UUID] = Field(..., min_length=1, max_length=100)
    rail: str | None = None
    execute_transfer: bool = True
    requested_by: str | None = Field(default=None, max_length=120)


class VoidBody(BaseModel):
    entry_id: uuid.UUID
    reason: str = Field(..., min_length=1, max_length=2000)
    actor: str | None = Field(default=None, max_length=120)


class AutoReleaseBody(BaseModel):
    limit: int | None = Field(default=None, ge=1, le=1000)
    execute_immediately: bool = False


class ExecuteReleaseBody(BaseModel):
    rail: str | None = None


class ConfigureRailBody(BaseModel):
    """Request body for storing a rail config on a ledger.

    Credentials are write-only: they are never echoed back.
    """

    rail: str = Field(..., examples=["processor"])
    enabled: bool = True
    credentials: dict[str, Any] = Field(default_factory=dict)
    settings: dict[str, Any] = Field(default_factory=dict)
    actor: str | None = None


class BatchFileBody(BaseModel):
    release_ids: list[uuid.UUID] = Field(..., min_length=1, max_length=100)
    actor: str | None = None


# ---------------------------------------------------------------------------
# Response Schemas
# ---------------------------------------------------------------------------


class HeldFundResponse(BaseModel):
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


class HeldFundsResponse(BaseModel):
    count: int
    entries: list[HeldFundResponse]


class VentureSummaryResponse(BaseModel):
    venture_id: str | None = None
    total_held: Decimal
    ready_for_release: Decimal
    pending_release: Decimal
    entry_count: int


class HoldSummaryResponse(BaseModel):
    ventures: list[VentureSummaryResponse]
    totals: VentureSummaryResponse


class ReleaseOutcomeResponse(BaseModel):
    entry_id: str
    success: bool
    status: str
    release_id: str | None = None
    rail: str | None = None
    external_transfer_id: str | None = None
    transfer_status: str | None = None
    error_code: str | None = None
    error: str | None = None


class BatchReleaseResponse(BaseModel):
    success: bool
    succeeded: int
    failed: int
    results: list[ReleaseOutcomeResponse]


class ReleaseResponse(BaseModel):
    """Response schema for a release request."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    ledger_id: uuid.UUID
    entry_id: uuid.UUID
    status: str
    release_type: str
    requested_by: str | None
    recipient_type: str | None
    recipient_id: str | None
    amount: Decimal
    currency: str
    rail: str | None
    external_transfer_id: str | None
    transfer_status: str | None
    error_code: str | None
    error_message: str | None
    created_at: datetime
    completed_at: datetime | None


class EntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    release_status: str
    hold_reason: str | None
    voided_at: datetime | None


class RailResponse(BaseModel):
    rail: str
    configured: bool
    enabled: bool
    settings: dict[str, Any] = Field(default_factory=dict)


class BatchFileResponse(BaseModel):
    token: str
    expires_in: int
    download_path: str
    entry_count: int
    total_amount: Decimal
    release_ids: list[str]
    skipped: list[dict[str, str]]


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    version: str = "0.1.0"
    database: str = "unknown"
    redis: str = "unknown"
    rails: list[str] = Field(default_factory=list)
