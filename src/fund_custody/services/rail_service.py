"""Rail Service - per-ledger rail configuration."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fund_custody.domain.enums import AuditAction
from fund_custody.domain.exceptions import LedgerNotFoundError, RailConfigError, RailNotFoundError
from fund_custody.domain.rail_protocol import RailConfig
from fund_custody.infrastructure.database.repositories import AuditRepository, LedgerRepository
from fund_custody.logging_config import get_logger
from fund_custody.rails import normalize_rail

if TYPE_CHECKING:
    import uuid

    from sqlalchemy.ext.asyncio import AsyncSession

    from fund_custody.infrastructure.database.orm_models import Ledger
    from fund_custody.rails import RailRegistry

logger = get_logger(__name__)


class RailService:
    def __init__(self, session: AsyncSession, registry: RailRegistry) -> None:
        self._session = session
        self._registry = registry
        self._ledger_repo = LedgerRepository(session)
        self._audit_repo = AuditRepository(session)

    async def list_rails(self, ledger_id: uuid.UUID) -> list[dict[str, Any]]:
        """Every registered rail with the ledger's configured/enabled flags.

        Credentials are never included.
        """
        ledger = await self._get_ledger_or_raise(ledger_id)
        configs = self._ledger_repo.rail_configs(ledger)
        rails = []
        for name in self._registry.names():
            config = self._registry.config_for(name, configs)
            rails.append(
                {
                    "rail": name,
                    "configured": config is not None,
                    "enabled": bool(config and config.enabled),
                    "settings": dict(config.settings) if config else {},
                }
            )
        return rails

    async def configure_rail(
        self,
        ledger_id: uuid.UUID,
        rail: str,
        enabled: bool = True,
        credentials: dict[str, Any] | None = None,
        settings: dict[str, Any] | None = None,
        actor: str | None = None,
    ) -> RailConfig:
        """Validate a rail config with its adapter and store it on the ledger.

        Raises:
            RailNotFoundError: If the rail is unknown.
            RailConfigError: If the adapter rejects the config.
        """
        name = normalize_rail(rail)
        if name is None:
            raise RailNotFoundError(rail)
        adapter = self._registry.get(name)

        config = RailConfig(
            rail=name,
            enabled=enabled,
            credentials=dict(credentials or {}),
            settings=dict(settings or {}),
        )
        validation = adapter.validate_config(config)
        if not validation.valid:
            raise RailConfigError(name, validation.errors)

        ledger = await self._get_ledger_or_raise(ledger_id)
        await self._ledger_repo.save_rail_config(ledger, config)
        await self._audit_repo.record(
            ledger_id=ledger.id,
            action=AuditAction.RAIL_CONFIGURED,
            entity_type="rail",
            entity_id=name,
            actor=actor,
            # Only the credential names, never their values.
            details={"enabled": enabled, "credential_keys": sorted(config.credentials)},
        )
        await self._session.commit()

        logger.info("rail.configured", ledger_id=str(ledger_id), rail=name, enabled=enabled)
        return config

    async def _get_ledger_or_raise(self, ledger_id: uuid.UUID) -> Ledger:
        ledger = await self._ledger_repo.get_by_id(ledger_id)
        if ledger is None:
            raise LedgerNotFoundError(str(ledger_id))
        return ledger
