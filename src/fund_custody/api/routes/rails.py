"""Rail configuration and batch file routes.

Routes:
    GET    /api/v1/ledgers/{ledger_id}/rails        - Known rails + configured/enabled
    PUT    /api/v1/ledgers/{ledger_id}/rails        - Validate and store a rail config
    POST   /api/v1/ledgers/{ledger_id}/batch-files  - Build a NACHA file, get a one-time link
    GET    /api/v1/batch-files/{token}              - Download the file (once)
"""

from __future__ import annotations

import uuid  # noqa: TC003 - FastAPI resolves path params at runtime

from fastapi import APIRouter, Depends
from fastapi.responses import PlainTextResponse

from fund_custody.api.deps import get_batch_file_service, get_rail_service
from fund_custody.schemas.release import (
    BatchFileBody,
    BatchFileResponse,
    ConfigureRailBody,
    RailResponse,
)
from fund_custody.services.batch_file_service import BatchFileService
from fund_custody.services.rail_service import RailService

router = APIRouter(prefix="/api/v1", tags=["Rails"])


@router.get("/ledgers/{ledger_id}/rails", response_model=list[RailResponse])
async def list_rails(
    ledger_id: uuid.UUID,
    rails: RailService = Depends(get_rail_service),
) -> list[RailResponse]:
    return [RailResponse.model_validate(r) for r in await rails.list_rails(ledger_id)]


@router.put("/ledgers/{ledger_id}/rails", response_model=RailResponse)
async def configure_rail(
    ledger_id: uuid.UUID,
    body: ConfigureRailBody,
    rails: RailService = Depends(get_rail_service),
) -> RailResponse:
    config = await rails.configure_rail(
        ledger_id,
        body.rail,
        enabled=body.enabled,
        credentials=body.credentials,
        settings=body.settings,
        actor=body.actor,
    )
    return RailResponse(
        rail=config.rail, configured=True, enabled=config.enabled, settings=config.settings
    )


@router.post("/ledgers/{ledger_id}/batch-files", response_model=BatchFileResponse, status_code=201)
async def generate_batch_file(
    ledger_id: uuid.UUID,
    body: BatchFileBody,
    batch_files: BatchFileService = Depends(get_batch_file_service),
) -> BatchFileResponse:
    generated = await batch_files.generate(ledger_id, body.release_ids, actor=body.actor)
    return BatchFileResponse.model_validate(
        {**generated.to_dict(), "download_path": f"/api/v1/batch-files/{generated.token}"}
    )


@router.get("/batch-files/{token}", response_class=PlainTextResponse)
async def download_batch_file(
    token: str,
    batch_files: BatchFileService = Depends(get_batch_file_service),
) -> PlainTextResponse:
    content = await batch_files.download(token)
    return PlainTextResponse(
        content,
        headers={
            "Content-Disposition": 'attachment; filename="payouts.ach"',
            "Cache-Control": "no-store",
        },
    )
