"""MCP Tool definitions for fund custody.

These tools expose held-fund visibility and release operations via the Model
Context Protocol, so operator agents can discover and call them.

Tools:
    - get_summary: Per-venture held / ready / pending totals
    - get_held: List held entries (filters, ready_only)
    - release: Release one held entry
    - batch_release: Release up to 100 entries
    - void: Void a held entry
    - auto_release: Queue (and optionally execute) lapsed holds
    - get_release: Check a release request
    - refresh_status: Latest transfer status from the rail
    - list_rails: Rails and whether the ledger has them configured
    - configure_rail: Store a rail configuration on the ledger
    - generate_batch_file: Build a NACHA file for manual-rail releases

The MCP server is mounted into FastAPI at /mcp via app.mount().
Each tool manages its own database session (no FastAPI Depends available);
the rail registry and event publisher are handed over by the app lifespan.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from mcp.server.fastmcp import FastMCP

from fund_custody.domain.exceptions import CustodyError, RequestValidationError
from fund_custody.infrastructure.database.engine import session_scope
from fund_custody.logging_config import get_logger
from fund_custody.services.event_publisher import EventPublisher, LoggingEventPublisher
from fund_custody.services.hold_registry import HoldRegistry
from fund_custody.services.release_coordinator import ReleaseCoordinator
from fund_custody.services.transfer_executor import TransferExecutor

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

    from fund_custody.rails import RailRegistry

logger = get_logger(__name__)

# Initialize the MCP server
# This will be mounted into the FastAPI app in main.py
mcp = FastMCP(
    "Fund Custody",
    json_response=True,
)

_registry: RailRegistry | None = None
_publisher: EventPublisher = LoggingEventPublisher()


def bind_runtime(registry: RailRegistry, publisher: EventPublisher | None = None) -> None:
    """Share the app's rail registry and event publisher with the tools."""
    global _registry, _publisher
    _registry = registry
    _publisher = publisher or LoggingEventPublisher()


def _get_registry() -> RailRegistry:
    if _registry is None:
        raise RuntimeError("Rail registry not bound. Call bind_runtime() first.")
    return _registry


def _coordinator(session: AsyncSession) -> ReleaseCoordinator:
    executor = TransferExecutor(session, _get_registry(), _publisher)
    return ReleaseCoordinator(session, executor)


def _error(tool: str, exc: Exception) -> dict:
    if not isinstance(exc, CustodyError):
        # Malformed ids and other unparseable arguments.
        exc = RequestValidationError(str(exc))
    logger.warning(f"mcp.{tool}.rejected", code=exc.code, error=exc.message)
    return {"error": exc.message, "code": exc.code}


@mcp.tool()
async def get_summary(ledger_id: str, venture_id: str = "") -> dict:
    """Summarize held funds per venture.

    Args:
        ledger_id: UUID of the ledger.
        venture_id: Restrict to one venture (optional).

    Returns:
        Per-venture total_held, ready_for_release, pending_release and entry_count,
        plus ledger-wide totals.
    """
    try:
        async with session_scope() as session:
            summary = await HoldRegistry(session).summarize(
                uuid.UUID(ledger_id), venture_id=venture_id or None
            )
            return summary.to_dict()
    except (CustodyError, ValueError) as exc:
        return _error("get_summary", exc)


@mcp.tool()
async def get_held(
    ledger_id: str,
    venture_id: str = "",
    creator_id: str = "",
    ready_only: bool = False,
    limit: int = 100,
) -> dict:
    """List held funds, oldest first.

    Args:
        ledger_id: UUID of the ledger.
        venture_id: Only entries for this venture (optional).
        creator_id: Only entries owed to this creator (optional).
        ready_only: Only entries whose hold period has lapsed.
        limit: Maximum rows (clamped to 1000).

    Returns:
        Count and the held entries with recipient and connected-account details.
    """
    try:
        async with session_scope() as session:
            rows = await HoldRegistry(session).list_held(
                uuid.UUID(ledger_id),
                venture_id=venture_id or None,
                creator_id=creator_id or None,
                ready_only=ready_only,
                limit=limit,
            )
            return {"count": len(rows), "entries": [row.to_dict() for row in rows]}
    except (CustodyError, ValueError) as exc:
        return _error("get_held", exc)


@mcp.tool()
async def release(
    ledger_id: str,
    entry_id: str,
    rail: str = "",
    execute_transfer: bool = True,
    requested_by: str = "",
) -> dict:
    """Release one held entry to its recipient.

    Args:
        ledger_id: UUID of the ledger.
        entry_id: UUID of the held entry.
        rail: Force 'processor', 'banking_network' or 'manual' (optional).
        execute_transfer: Set false to only queue the release.
        requested_by: Who asked for the release (for the audit trail).

    Returns:
        The release outcome: success, status, rail, external_transfer_id, error.
    """
    try:
        async with session_scope() as session:
            outcome = await _coordinator(session).release(
                uuid.UUID(ledger_id),
                uuid.UUID(entry_id),
                rail=rail or None,
                execute_transfer=execute_transfer,
                requested_by=requested_by or None,
            )
            return outcome.to_dict()
    except (CustodyError, ValueError) as exc:
        return _error("release", exc)


@mcp.tool()
async def batch_release(
    ledger_id: str,
    entry_ids: list[str],
    rail: str = "",
    execute_transfer: bool = True,
    requested_by: str = "",
) -> dict:
    """Release up to 100 held entries. One failure never stops the others.

    Args:
        ledger_id: UUID of the ledger.
        entry_ids: UUIDs of the held entries.
        rail: Force a rail for every entry (optional).
        execute_transfer: Set false to only queue the releases.
        requested_by: Who asked for the releases.

    Returns:
        succeeded / failed counts and per-entry results.
    """
    try:
        async with session_scope() as session:
            result = await _coordinator(session).batch_release(
                uuid.UUID(ledger_id),
                [uuid.UUID(e) for e in entry_ids],
                rail=rail or None,
                execute_transfer=execute_transfer,
                requested_by=requested_by or None,
            )
            return result.to_dict()
    except (CustodyError, ValueError) as exc:
        return _error("batch_release", exc)


@mcp.tool()
async def void(ledger_id: str, entry_id: str, reason: str, actor: str = "") -> dict:
    """Void a held entry so it is never paid out.

    Args:
        ledger_id: UUID of the ledger.
        entry_id: UUID of the held entry.
        reason: Why the funds are voided (required).
        actor: Who voided it.

    Returns:
        The entry id and its new release status.
    """
    try:
        async with session_scope() as session:
            entry = await ReleaseCoordinator(session).void_release(
                uuid.UUID(ledger_id), uuid.UUID(entry_id), reason, actor or None
            )
            return {
                "entry_id": str(entry.id),
                "release_status": entry.release_status,
                "hold_reason": entry.hold_reason,
            }
    except (CustodyError, ValueError) as exc:
        return _error("void", exc)


@mcp.tool()
async def auto_release(
    ledger_id: str,
    limit: int = 100,
    execute_immediately: bool = False,
) -> dict:
    """Queue every held entry whose hold period has lapsed.

    Args:
        ledger_id: UUID of the ledger.
        limit: Maximum entries to queue (clamped to 1000).
        execute_immediately: Also pay the queued releases out.

    Returns:
        queued / executed / failed counts with per-release details.
    """
    try:
        async with session_scope() as session:
            result = await _coordinator(session).auto_release_sweep(
                uuid.UUID(ledger_id), limit=limit, execute_immediately=execute_immediately
            )
            return result.to_dict()
    except (CustodyError, ValueError) as exc:
        return _error("auto_release", exc)


@mcp.tool()
async def get_release(ledger_id: str, release_id: str) -> dict:
    """Check the status of a release request.

    Args:
        ledger_id: UUID of the ledger.
        release_id: UUID of the release request.
    """
    from fund_custody.schemas.release import ReleaseResponse

    try:
        async with session_scope() as session:
            found = await ReleaseCoordinator(session).get_release(
                uuid.UUID(ledger_id), uuid.UUID(release_id)
            )
            return ReleaseResponse.model_validate(found).model_dump(mode="json")
    except (CustodyError, ValueError) as exc:
        return _error("get_release", exc)


@mcp.tool()
async def refresh_status(ledger_id: str, release_id: str) -> dict:
    """Ask the rail for the latest state of a completed release's transfer.

    Args:
        ledger_id: UUID of the ledger.
        release_id: UUID of a completed release request.
    """
    from fund_custody.schemas.release import ReleaseResponse

    try:
        async with session_scope() as session:
            executor = TransferExecutor(session, _get_registry(), _publisher)
            found, lookup = await executor.refresh_status(
                uuid.UUID(release_id), ledger_id=uuid.UUID(ledger_id)
            )
            return {
                "release": ReleaseResponse.model_validate(found).model_dump(mode="json"),
                "lookup": lookup.to_dict(),
            }
    except (CustodyError, ValueError) as exc:
        return _error("refresh_status", exc)


@mcp.tool()
async def list_rails(ledger_id: str) -> dict:
    """List payout rails and whether this ledger has them configured and enabled."""
    from fund_custody.services.rail_service import RailService

    try:
        async with session_scope() as session:
            rails = await RailService(session, _get_registry()).list_rails(uuid.UUID(ledger_id))
            return {"rails": rails}
    except (CustodyError, ValueError) as exc:
        return _error("list_rails", exc)


@mcp.tool()
async def configure_rail(
    ledger_id: str,
    rail: str,
    enabled: bool = True,
    credentials: dict | None = None,
    settings: dict | None = None,
    actor: str = "",
) -> dict:
    """Store a payout rail configuration on the ledger.

    Args:
        ledger_id: UUID of the ledger.
        rail: 'processor', 'banking_network' or 'manual'.
        enabled: Whether the rail may be selected.
        credentials: Rail credentials (never echoed back).
        settings: Non-secret rail settings, e.g. environment or originator ids.
        actor: Who changed the configuration.
    """
    from fund_custody.services.rail_service import RailService

    try:
        async with session_scope() as session:
            config = await RailService(session, _get_registry()).configure_rail(
                uuid.UUID(ledger_id),
                rail,
                enabled=enabled,
                credentials=credentials,
                settings=settings,
                actor=actor or None,
            )
            return {
                "rail": config.rail,
                "configured": True,
                "enabled": config.enabled,
                "settings": dict(config.settings),
            }
    except (CustodyError, ValueError) as exc:
        return _error("configure_rail", exc)


@mcp.tool()
async def generate_batch_file(ledger_id: str, release_ids: list[str], actor: str = "") -> dict:
    """Build a NACHA batch file for completed manual-rail releases.

    The file itself is not returned: download it once from the REST path
    before the link expires.

    Args:
        ledger_id: UUID of the ledger.
        release_ids: UUIDs of the release requests to include.
        actor: Who generated the file.
    """
    from fund_custody.infrastructure.redis_client import get_redis
    from fund_custody.services.batch_file_service import BatchFileService

    try:
        async with session_scope() as session:
            service = BatchFileService(session, _get_registry(), get_redis())
            generated = await service.generate(
                uuid.UUID(ledger_id),
                [uuid.UUID(r) for r in release_ids],
                actor=actor or None,
            )
            return {
                **generated.to_dict(),
                "download_path": f"/api/v1/batch-files/{generated.token}",
            }
    except (CustodyError, ValueError) as exc:
        return _error("generate_batch_file", exc)
