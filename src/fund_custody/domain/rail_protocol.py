"""Rail Adapter Protocol.

Defines the interface that every payment rail must implement. This is a
Protocol (structural subtyping) so concrete rails don't need to inherit
from a base class - they just need to match the shape.

The domain layer has ZERO imports from httpx, Redis, or any provider SDK.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from fund_custody.domain.enums import RailName, TransferStatus

if TYPE_CHECKING:
    from decimal import Decimal


@dataclass(frozen=True)
class RailConfig:
    """Per-ledger configuration of one rail.

    Attributes:
        rail: Rail name (see RailName).
        enabled: Disabled rails are never used for execution.
        credentials: Provider secrets; falls back to settings when empty.
        settings: Provider options (environment, routing defaults, NACHA ids).
    """

    rail: str
    enabled: bool = True
    credentials: dict[str, Any] = field(default_factory=dict)
    settings: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RailConfig:
        return cls(
            rail=str(data.get("rail", "")),
            enabled=bool(data.get("enabled", True)),
            credentials=dict(data.get("credentials") or {}),
            settings=dict(data.get("settings") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "rail": self.rail,
            "enabled": self.enabled,
            "credentials": dict(self.credentials),
            "settings": dict(self.settings),
        }


@dataclass(frozen=True)
class Destination:
    """Where a recipient can be paid, resolved from their connected account."""

    processor_account_id: str | None = None
    banking_connection_id: str | None = None
    routing_number: str | None = None
    account_number: str | None = None
    account_type: str = "checking"
    can_receive_transfers: bool = False
    preferred_rail: str | None = None

    def for_rail(self, rail: str) -> str | None:
        """Return the rail-specific destination identifier, or None if missing."""
        if rail == RailName.PROCESSOR:
            return self.processor_account_id or None
        if rail == RailName.BANKING_NETWORK:
            if self.banking_connection_id and self.account_number:
                return self.banking_connection_id
            return None
        if rail == RailName.MANUAL:
            if self.routing_number and self.account_number:
                return self.routing_number
            return None
        return None

    @property
    def account_last4(self) -> str | None:
        return self.account_number[-4:] if self.account_number else None


@dataclass(frozen=True)
class Payout:
    """Input to a rail adapter.

    Attributes:
        release_id: Release request id, used as the idempotency tag.
        recipient_id: Entity id of the recipient.
        recipient_name: Display/legal name of the recipient.
        amount: Major-unit amount; equals the held entry amount exactly.
        currency: ISO currency code.
        destination: Resolved destination for the recipient.
    """

    release_id: str
    recipient_id: str
    recipient_name: str
    amount: Decimal
    currency: str
    destination: Destination


@dataclass(frozen=True)
class TransferResult:
    """Output from a rail adapter.

    Attributes:
        success: Whether the rail accepted the transfer.
        status: Normalized transfer state.
        external_id: Provider-side transfer id.
        error: Provider error message, if any.
        error_code: Provider or transport error code, if any.
        metadata: Extra non-sensitive provider details.
    """

    success: bool
    status: TransferStatus
    external_id: str | None = None
    error: str | None = None
    error_code: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failed(cls, error_code: str, error: str, **metadata: Any) -> TransferResult:
        return cls(
            success=False,
            status=TransferStatus.FAILED,
            error=error,
            error_code=error_code,
            metadata=metadata,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "status": self.status.value,
            "external_id": self.external_id,
            "error": self.error,
            "error_code": self.error_code,
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class ConfigValidation:
    valid: bool
    errors: list[str] = field(default_factory=list)


@runtime_checkable
class RailAdapter(Protocol):
    """Protocol that all rail implementations must satisfy.

    Concrete implementations:
        - rails/processor_transfer.py  (hosted-payments transfer API)
        - rails/banking_network.py     (bank-aggregator authorization + transfer)
        - rails/manual_batch_file.py   (offline NACHA batch file)
    """

    name: str

    async def execute(self, payout: Payout, config: RailConfig) -> TransferResult:
        """Send one transfer. Must not raise for provider-side rejections."""
        ...

    async def get_status(self, external_id: str, config: RailConfig) -> TransferResult:
        """Look up the current state of a previously sent transfer."""
        ...

    def validate_config(self, config: RailConfig) -> ConfigValidation:
        """Check that a config carries everything the rail needs."""
        ...
