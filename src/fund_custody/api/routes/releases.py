"""Held funds and release REST API routes.

The MCP tools in mcp_server/tools.py call the same service layer,
ensuring consistency.

Routes (all under /api/v1/ledgers/{ledger_id}):
    GET    /held                         - List held entries (filters, ready_only)
    GET    /held/summary                 - Per-venture held/ready/pending totals
    POST   /releases                     - Release one entry
    POST   /releases/batch               - Release up to 100 entries (207 on partial failure)
    POST   /releases/void                - Void a held entry
    POST   /releases/auto                - Queue (and optionally execute) lapsed holds
    GET    /releases/{release_id}        - Get a release request
    POST   /releases/{release_id}/execute - Execute a queued release
    POST   /releases/{release_id}/refresh - Refresh the transfer status from the rail
"""

from __future__ import annotations

import uuid  # noqa: TC003 - FastAPI resolves path params at runtime

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from fund_custody.api.deps import (
    get_hold_registry,
    get_release_coordinator,
    get_transfer_executor,
)
from fund_custody.logging_config import get_logger
from fund_custody.schemas.release import (
    AutoReleaseBody,
    BatchReleaseBody,
    BatchReleaseResponse,
    EntryResponse,
    ExecuteReleaseBody,
    HeldFundsResponse,
    HoldSummaryResponse,
    ReleaseOutcomeResponse,
    ReleaseRequestBody,
    ReleaseResponse,
    VoidBody,
)
from fund_custody.services.hold_registry import HoldRegistry
from fund_custody.services.release_coordinator import ReleaseCoordinator
from fund_custody.services.transfer_executor import TransferExecutor

router = APIRouter(prefix="/api/v1/ledgers/{ledger_id}", tags=["Releases"])
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Held funds
# ---------------------------------------------------------------------------


@router.get("/held", response_model=HeldFundsResponse, summary="List held funds")
async def get_held(
    ledger_id: uuid.UUID,
    venture_id: str | None = None,
    creator_id: str | None = None,
    ready_only: bool = False,
    limit: int | None = Query(default=None, ge=1),
    holds: HoldRegistry = Depends(get_hold_registry),
) -> HeldFundsResponse:
    """Oldest first; limit is clamped to 1000."""
    rows = await holds.list_held(
        ledger_id,
        venture_id=venture_id,
        creator_id=creator_id,
        ready_only=ready_only,
        limit=limit,
    )
    return HeldFundsResponse.model_validate(
        {"count": len(rows), "entries": [row.to_dict() for row in rows]}
    )


@router.get("/held/summary", response_model=HoldSummaryResponse, summary="Held funds summary")
async def get_summary(
    ledger_id: uuid.UUID,
    venture_id: str | None = None,
    holds: HoldRegistry = Depends(get_hold_registry),
) -> HoldSummaryResponse:
    summary = await holds.summarize(ledger_id, venture_id=venture_id)
    return HoldSummaryResponse.model_validate(summary.to_dict())


# ---------------------------------------------------------------------------
# Releases
# ---------------------------------------------------------------------------


@router.post("/releases", response_model=ReleaseOutcomeResponse, summary="Release one entry")
async def release(
    ledger_id: uuid.UUID,
    body: ReleaseRequestBody,
    coordinator: ReleaseCoordinator = Depends(get_release_coordinator),
) -> ReleaseOutcomeResponse:
    """Queue the entry and (by default) pay it out.

    A failed transfer is still a 200: the release exists, is marked failed,
    and the entry is back to held.
    """
    outcome = await coordinator.release(
        ledger_id,
        body.entry_id,
        rail=body.rail,
        execute_transfer=body.execute_transfer,
        requested_by=body.requested_by,
    )
    return ReleaseOutcomeResponse.model_validate(outcome.to_dict())


@router.post(
    "/releases/batch",
    response_model=BatchReleaseResponse,
    summary="Release up to 100 entries",
    responses={207: {"model": BatchReleaseResponse, "description": "Partial failure"}},
)
async def batch_release(
    ledger_id: uuid.UUID,
    body: BatchReleaseBody,
    coordinator: ReleaseCoordinator = Depends(get_release_coordinator),
) -> JSONResponse:
    result = await coordinator.batch_release(
        ledger_id,
        body.entry_ids,
        rail=body.rail,
        execute_transfer=body.execute_transfer,
        requested_by=body.requested_by,
    )
    payload = BatchReleaseResponse.model_validate(result.to_dict())
    return JSONResponse(
        status_code=200 if result.success else 207,
        content=payload.model_dump(mode="json"),
    )


@router.post("/releases/void", response_model=EntryResponse, summary="Void a held entry")
async def void(
    ledger_id: uuid.UUID,
    body: VoidBody,
    coordinator: ReleaseCoordinator = Depends(get_release_coordinator),
) -> EntryResponse:
    entry = await coordinator.void_release(ledger_id, body.entry_id, body.reason, body.actor)
    return EntryResponse.model_validate(entry)


@router.post("/releases/auto", summary="Auto-release lapsed holds")
async def auto_release(
    ledger_id: uuid.UUID,
    body: AutoReleaseBody,
    coordinator: ReleaseCoordinator = Depends(get_release_coordinator),
) -> dict:
    result = await coordinator.auto_release_sweep(
        ledger_id, limit=body.limit, execute_immediately=body.execute_immediately
    )
    return result.to_dict()


@router.get("/releases/{release_id}", response_model=ReleaseResponse, summary="Get a release")
async def get_release(
    ledger_id: uuid.UUID,
    release_id: uuid.UUID,
    coordinator: ReleaseCoordinator = Depends(get_release_coordinator),
) -> ReleaseResponse:
    return ReleaseResponse.model_validate(await coordinator.get_release(ledger_id, release_id))


@router.post(
    "/releases/{release_id}/execute",
    response_model=ReleaseOutcomeResponse,
    summary="Execute a queued release",
)
async def execute_release(
    ledger_id: uuid.UUID,
    release_id: uuid.UUID,
    body: ExecuteReleaseBody,
    executor: TransferExecutor = Depends(get_transfer_executor),
) -> ReleaseOutcomeResponse:
    outcome = await executor.execute(release_id, rail=body.rail, ledger_id=ledger_id)
    return ReleaseOutcomeResponse.model_validate(outcome.to_dict())


@router.post("/releases/{release_id}/refresh", summary="Refresh transfer status")
async def refresh_status(
    ledger_id: uuid.UUID,
    release_id: uuid.UUID,
    executor: TransferExecutor = Depends(get_transfer_executor),
) -> dict:
    release, lookup = await executor.refresh_status(release_id, ledger_id=ledger_id)
    return {
        "release": ReleaseResponse.model_validate(release).model_dump(mode="json"),
        "lookup": lookup.to_dict(),
    }
