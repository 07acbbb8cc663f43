"""Manual rail - settlement happens offline through a NACHA batch file.

execute() never calls out. It reports the payout as pending with a
manual_<release id> reference; the file itself is produced later by
BatchFileService from the releases that went down this rail.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fund_custody.config import Settings, get_settings
from fund_custody.domain.enums import RailName, TransferStatus
from fund_custody.domain.rail_protocol import ConfigValidation, TransferResult
from fund_custody.rails.batch_file import Originator

if TYPE_CHECKING:
    from fund_custody.domain.rail_protocol import Payout, RailConfig


class ManualBatchFileRail:
    name = RailName.MANUAL.value

    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()

    async def execute(self, payout: Payout, config: RailConfig) -> TransferResult:
        return TransferResult(
            success=True,
            status=TransferStatus.PENDING,
            external_id=f"manual_{payout.release_id}",
            metadata={
                "requires_batch_file": True,
                "bank_account_last4": payout.destination.account_last4,
            },
        )

    async def get_status(self, external_id: str, config: RailConfig) -> TransferResult:
        # Confirmation arrives out of band; the rail itself never learns more.
        return TransferResult(success=True, status=TransferStatus.PENDING, external_id=external_id)

    def validate_config(self, config: RailConfig) -> ConfigValidation:
        """Defaults are fine for sandbox files; production needs real originator ids."""
        errors: list[str] = []
        if self._settings.is_production:
            errors.extend(
                f"{key} is required for batch file generation"
                for key in Originator.missing_fields(config.settings)
            )
        return ConfigValidation(valid=not errors, errors=errors)
