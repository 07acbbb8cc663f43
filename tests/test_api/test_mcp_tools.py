"""MCP tools: results and error shapes."""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager

import pytest

from fund_custody.mcp_server import tools


@pytest.fixture(autouse=True)
def bound(session, registry, monkeypatch):  # noqa: ANN001, ANN201
    @asynccontextmanager
    async def scope():  # noqa: ANN202
        yield session

    monkeypatch.setattr(tools, "session_scope", scope)
    monkeypatch.setattr(tools, "_registry", registry)


@pytest.mark.asyncio
async def test_malformed_ledger_id(seed) -> None:  # noqa: ANN001
    result = await tools.get_summary("not-a-uuid")

    assert result["code"] == "VALIDATION_ERROR"
    assert "error" in result


@pytest.mark.asyncio
async def test_malformed_entry_id(seed) -> None:  # noqa: ANN001
    result = await tools.release(str(seed.ledger.id), "12345")
    assert result["code"] == "VALIDATION_ERROR"


@pytest.mark.asyncio
async def test_domain_error_keeps_its_code(seed) -> None:  # noqa: ANN001
    result = await tools.void(str(seed.ledger.id), str(uuid.uuid4()), "fraud")
    assert result["code"] == "ENTRY_NOT_FOUND"


@pytest.mark.asyncio
async def test_void_held_entry(seed) -> None:  # noqa: ANN001
    entry = await seed.entry()

    result = await tools.void(str(seed.ledger.id), str(entry.id), "chargeback", "ops")

    assert result == {
        "entry_id": str(entry.id),
        "release_status": "voided",
        "hold_reason": "chargeback",
    }
