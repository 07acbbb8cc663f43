"""HTTP behaviour of the release routes: status codes and error bodies."""

from __future__ import annotations

import uuid

import httpx
import pytest
import pytest_asyncio
from fastapi import FastAPI

from fund_custody.api.deps import (
    get_db_session,
    get_hold_registry,
    get_release_coordinator,
    get_transfer_executor,
)
from fund_custody.api.middleware import setup_middleware
from fund_custody.api.routes import releases
from fund_custody.services.hold_registry import HoldRegistry
from fund_custody.services.release_coordinator import ReleaseCoordinator
from fund_custody.services.transfer_executor import TransferExecutor


@pytest_asyncio.fixture
async def client(session, registry, settings, no_pacing):  # noqa: ANN001, ANN201
    executor = TransferExecutor(session, registry, settings=settings)
    app = FastAPI()
    setup_middleware(app)
    app.include_router(releases.router)
    app.dependency_overrides[get_db_session] = lambda: session
    app.dependency_overrides[get_hold_registry] = lambda: HoldRegistry(session, settings)
    app.dependency_overrides[get_transfer_executor] = lambda: executor
    app.dependency_overrides[get_release_coordinator] = lambda: ReleaseCoordinator(
        session, executor, settings, pacer=no_pacing
    )
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http


def _base(seed) -> str:  # noqa: ANN001
    return f"/api/v1/ledgers/{seed.ledger.id}"


@pytest.mark.asyncio
async def test_release_returns_outcome(client, seed) -> None:  # noqa: ANN001
    await seed.connected("creator-1")
    entry = await seed.entry()

    response = await client.post(f"{_base(seed)}/releases", json={"entry_id": str(entry.id)})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["status"] == "completed"
    assert "X-Request-ID" in response.headers


@pytest.mark.asyncio
async def test_batch_partial_failure_is_207(client, seed) -> None:  # noqa: ANN001
    entry = await seed.entry()
    released = await seed.entry(release_status="released")

    response = await client.post(
        f"{_base(seed)}/releases/batch",
        json={"entry_ids": [str(entry.id), str(released.id)], "execute_transfer": False},
    )

    assert response.status_code == 207
    assert response.json()["failed"] == 1


@pytest.mark.asyncio
async def test_void_non_held_is_conflict(client, seed) -> None:  # noqa: ANN001
    entry = await seed.entry(release_status="released")

    response = await client.post(
        f"{_base(seed)}/releases/void", json={"entry_id": str(entry.id), "reason": "fraud"}
    )

    assert response.status_code == 409
    assert response.json()["error"] == "ENTRY_NOT_HELD"


@pytest.mark.asyncio
async def test_unknown_release_is_404(client, seed) -> None:  # noqa: ANN001
    response = await client.get(f"{_base(seed)}/releases/{uuid.uuid4()}")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_oversized_batch_is_rejected(client, seed) -> None:  # noqa: ANN001
    response = await client.post(
        f"{_base(seed)}/releases/batch",
        json={"entry_ids": [str(uuid.uuid4()) for _ in range(101)]},
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_held_listing(client, seed) -> None:  # noqa: ANN001
    await seed.entry()
    await seed.entry(release_status="released")

    response = await client.get(f"{_base(seed)}/held")

    assert response.status_code == 200
    assert response.json()["count"] == 1
