"""Shared test fixtures for the fund custody test suite.

Provides:
    - An in-memory SQLite database (aiosqlite) with the full schema
    - Seed helpers for ledgers, accounts, held entries and connected accounts
    - A fake rail adapter and registry so no test touches the network
    - Async test support via pytest-asyncio
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from fund_custody.config import Settings
from fund_custody.domain.enums import TransferStatus
from fund_custody.domain.rail_protocol import (
    ConfigValidation,
    Payout,
    RailConfig,
    TransferResult,
)
from fund_custody.infrastructure.database.orm_models import (
    Base,
    ConnectedAccount,
    Ledger,
    LedgerAccount,
    LedgerEntry,
)
from fund_custody.rails import ManualBatchFileRail, RailRegistry
from fund_custody.services.pacing import Pacer

NOW = datetime(2026, 3, 15, 12, 0, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Settings / Database
# ---------------------------------------------------------------------------


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        app_env="development",
        database_url="sqlite+aiosqlite:///:memory:",
        release_pacing_seconds=0,
        rail_timeout_seconds=2,
    )


@pytest_asyncio.fixture
async def session() -> AsyncIterator[AsyncSession]:
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as db:
        yield db
    await engine.dispose()


@pytest.fixture
def no_pacing() -> Pacer:
    return Pacer(0)


# ---------------------------------------------------------------------------
# Seed helpers
# ---------------------------------------------------------------------------


@dataclass
class Seeder:
    """Inserts the ledger-side rows a release needs."""

    session: AsyncSession
    ledger: Ledger | None = None
    accounts: dict[tuple[str, str], LedgerAccount] = field(default_factory=dict)

    async def ledger_with(self, payout_rails: list[dict[str, Any]] | None = None) -> Ledger:
        self.ledger = Ledger(name="Test ledger", payout_rails=payout_rails or [])
        self.session.add(self.ledger)
        await self.session.commit()
        return self.ledger

    async def account(
        self, entity_id: str = "creator-1", entity_type: str = "creator", name: str | None = None
    ) -> LedgerAccount:
        key = (entity_type, entity_id)
        if key not in self.accounts:
            account = LedgerAccount(
                ledger_id=self.ledger.id,
                account_type="payable",
                entity_type=entity_type,
                entity_id=entity_id,
                name=name or entity_id.title(),
            )
            self.session.add(account)
            await self.session.commit()
            self.accounts[key] = account
        return self.accounts[key]

    async def entry(
        self,
        amount: str = "100.00",
        recipient: str = "creator-1",
        release_status: str = "held",
        entry_type: str = "credit",
        hold_until: datetime | None = None,
        venture_id: str | None = "venture-a",
        age_days: int = 10,
        currency: str = "USD",
    ) -> LedgerEntry:
        account = await self.account(recipient)
        entry = LedgerEntry(
            ledger_id=self.ledger.id,
            account_id=account.id,
            account=account,
            amount=Decimal(amount),
            currency=currency,
            entry_type=entry_type,
            release_status=release_status,
            hold_reason="refund window" if release_status == "held" else None,
            hold_until=hold_until,
            venture_id=venture_id,
            transaction_ref=f"txn-{uuid.uuid4().hex[:8]}",
            product_name="Course",
            created_at=NOW - timedelta(days=age_days),
        )
        self.session.add(entry)
        await self.session.commit()
        return entry

    async def connected(
        self,
        recipient: str = "creator-1",
        processor_account_id: str | None = "PI-creator-1",
        routing: str | None = "021000021",
        account_number: str | None = "000123456789",
        banking_connection_id: str | None = None,
        can_receive_transfers: bool = True,
        preferred_rail: str | None = None,
    ) -> ConnectedAccount:
        connected = ConnectedAccount(
            ledger_id=self.ledger.id,
            entity_type="creator",
            entity_id=recipient,
            display_name=f"{recipient.title()} Display",
            processor_account_id=processor_account_id,
            banking_connection_id=banking_connection_id,
            bank_routing_number=routing,
            bank_account_number=account_number,
            can_receive_transfers=can_receive_transfers,
            preferred_rail=preferred_rail,
        )
        self.session.add(connected)
        await self.session.commit()
        return connected


@pytest_asyncio.fixture
async def seed(session: AsyncSession) -> Seeder:
    seeder = Seeder(session)
    await seeder.ledger_with([{"rail": "processor", "enabled": True}])
    return seeder


# ---------------------------------------------------------------------------
# Fake rails
# ---------------------------------------------------------------------------


class FakeRail:
    """Records payouts and answers with a scripted TransferResult."""

    def __init__(self, name: str = "processor", result: TransferResult | None = None) -> None:
        self.name = name
        self.result = result or TransferResult(
            success=True, status=TransferStatus.PROCESSING, external_id="TR-fake"
        )
        self.payouts: list[Payout] = []
        self.error: Exception | None = None

    async def execute(self, payout: Payout, config: RailConfig) -> TransferResult:
        self.payouts.append(payout)
        if self.error is not None:
            raise self.error
        return self.result

    async def get_status(self, external_id: str, config: RailConfig) -> TransferResult:
        return TransferResult(success=True, status=TransferStatus.COMPLETED, external_id=external_id)

    def validate_config(self, config: RailConfig) -> ConfigValidation:
        return ConfigValidation(valid=True)


@pytest.fixture
def make_rail() -> type[FakeRail]:
    return FakeRail


@pytest.fixture
def fake_processor() -> FakeRail:
    return FakeRail("processor")


@pytest.fixture
def registry(fake_processor: FakeRail, settings: Settings) -> RailRegistry:
    return RailRegistry([fake_processor, ManualBatchFileRail(settings)])
