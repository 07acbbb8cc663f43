"""Payment rail implementations and registry.

Three rails:
    - ProcessorTransferRail:  Hosted-payments transfer API (minor units)
    - BankingNetworkRail:     Bank-aggregator authorization + ACH transfer
    - ManualBatchFileRail:    Offline settlement via a NACHA batch file

The RailRegistry maps rail names to adapter instances and decides which
rail pays a given recipient. Adapters are injected, so tests register fakes.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fund_custody.domain.enums import RailName
from fund_custody.domain.exceptions import RailNotFoundError, RequestValidationError
from fund_custody.rails.banking_network import BankingNetworkRail, DatabaseTokenVault, TokenVault
from fund_custody.rails.batch_file import BatchFile, BatchFileEncoder, Originator
from fund_custody.rails.manual_batch_file import ManualBatchFileRail
from fund_custody.rails.processor_transfer import ProcessorTransferRail

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

    import httpx

    from fund_custody.config import Settings
    from fund_custody.domain.rail_protocol import RailAdapter, RailConfig

# Default selection order when neither the request nor the recipient names a rail.
RAIL_PRIORITY: tuple[str, ...] = (
    RailName.PROCESSOR.value,
    RailName.BANKING_NETWORK.value,
    RailName.MANUAL.value,
)

_ALIASES = {
    "processor": RailName.PROCESSOR.value,
    "finix": RailName.PROCESSOR.value,
    "banking_network": RailName.BANKING_NETWORK.value,
    "banking": RailName.BANKING_NETWORK.value,
    "plaid": RailName.BANKING_NETWORK.value,
    "plaid_transfer": RailName.BANKING_NETWORK.value,
    "manual": RailName.MANUAL.value,
    "ach_file": RailName.MANUAL.value,
}


def normalize_rail(value: str | None) -> str | None:
    """Map a rail name or alias onto a RailName value; None if unknown."""
    if not value:
        return None
    return _ALIASES.get(str(value).strip().lower())


class RailRegistry:
    """Strategy map of rail name -> adapter.

    Usage:
        registry = RailRegistry([ProcessorTransferRail(client), ManualBatchFileRail()])
        rail = registry.select(explicit=None, preferred="manual", configs=configs)
        result = await registry.get(rail).execute(payout, config)
    """

    def __init__(self, adapters: Iterable[RailAdapter] = ()) -> None:
        self._adapters: dict[str, RailAdapter] = {}
        for adapter in adapters:
            self.register(adapter)

    def register(self, adapter: RailAdapter) -> None:
        self._adapters[adapter.name] = adapter

    def get(self, name: str) -> RailAdapter:
        """Return the adapter for a rail name or alias.

        Raises:
            RailNotFoundError: If no adapter is registered under that name.
        """
        adapter = self._adapters.get(normalize_rail(name) or name)
        if adapter is None:
            raise RailNotFoundError(name)
        return adapter

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and (normalize_rail(name) or name) in self._adapters

    def names(self) -> list[str]:
        return [name for name in RAIL_PRIORITY if name in self._adapters] + sorted(
            name for name in self._adapters if name not in RAIL_PRIORITY
        )

    def select(
        self,
        explicit: str | None,
        preferred: str | None,
        configs: Sequence[RailConfig],
    ) -> str:
        """Pick the rail for one payout. First match wins:

        explicit request rail -> recipient's preferred rail ->
        ledger's enabled rails in RAIL_PRIORITY order -> manual.

        Raises:
            RequestValidationError: If an explicit rail is unknown.
        """
        if explicit:
            name = normalize_rail(explicit)
            if name is None or name not in self._adapters:
                raise RequestValidationError(f"Unknown rail: {explicit}")
            return name

        name = normalize_rail(preferred)
        if name is not None and name in self._adapters:
            return name

        enabled = {normalize_rail(c.rail) for c in configs if c.enabled}
        for name in RAIL_PRIORITY:
            if name in enabled and name in self._adapters:
                return name

        return RailName.MANUAL.value

    @staticmethod
    def config_for(rail: str, configs: Sequence[RailConfig]) -> RailConfig | None:
        """Return the ledger's config for a rail, if it has one."""
        for config in configs:
            if normalize_rail(config.rail) == rail:
                return config
        return None


def build_rail_registry(
    client: httpx.AsyncClient,
    settings: Settings | None = None,
    vault: TokenVault | None = None,
) -> RailRegistry:
    """Wire the production adapters around a shared HTTP client."""
    return RailRegistry(
        [
            ProcessorTransferRail(client, settings),
            BankingNetworkRail(client, vault, settings),
            ManualBatchFileRail(settings),
        ]
    )


__all__ = [
    "BankingNetworkRail",
    "BatchFile",
    "BatchFileEncoder",
    "DatabaseTokenVault",
    "ManualBatchFileRail",
    "Originator",
    "ProcessorTransferRail",
    "RAIL_PRIORITY",
    "RailRegistry",
    "TokenVault",
    "build_rail_registry",
    "normalize_rail",
]
