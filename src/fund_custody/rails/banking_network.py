"""Banking network rail - ACH credit through a bank-aggregator transfer API.

Two calls per payout:
    1. /transfer/authorization/create  (risk decision for the amount)
    2. /transfer/create                (the actual transfer)

The aggregator access token is looked up server-side in the token vault
by the recipient's connection id. It is never accepted as request input.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from fund_custody.config import Settings, get_settings
from fund_custody.domain.enums import FailureCode, RailName, TransferStatus
from fund_custody.domain.money import to_major_string
from fund_custody.domain.rail_protocol import ConfigValidation, TransferResult
from fund_custody.infrastructure.database.engine import session_scope
from fund_custody.infrastructure.database.repositories import CredentialRepository
from fund_custody.logging_config import get_logger

if TYPE_CHECKING:
    from fund_custody.domain.rail_protocol import Payout, RailConfig

logger = get_logger(__name__)

_BASE_URLS = {
    "sandbox": "https://sandbox.plaid.com",
    "production": "https://production.plaid.com",
}

_STATUS_MAP = {
    "pending": TransferStatus.PENDING,
    "posted": TransferStatus.COMPLETED,
    "settled": TransferStatus.COMPLETED,
    "cancelled": TransferStatus.FAILED,
    "failed": TransferStatus.FAILED,
    "returned": TransferStatus.FAILED,
}


class TokenVault(Protocol):
    """Server-side store of aggregator access tokens."""

    async def get_access_token(self, connection_id: str) -> str | None: ...


class DatabaseTokenVault:
    """Reads tokens from the vaulted_credentials table in its own session."""

    def __init__(self, session_factory=session_scope) -> None:  # noqa: ANN001
        self._session_factory = session_factory

    async def get_access_token(self, connection_id: str) -> str | None:
        async with self._session_factory() as session:
            return await CredentialRepository(session).get_access_token(connection_id)


class _ProviderError(Exception):
    def __init__(self, code: str | None, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class BankingNetworkRail:
    """Bank-aggregator ACH rail."""

    name = RailName.BANKING_NETWORK.value

    def __init__(
        self,
        client: httpx.AsyncClient,
        vault: TokenVault | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._client = client
        self._vault = vault or DatabaseTokenVault()
        self._settings = settings or get_settings()

    def _credentials(self, config: RailConfig) -> tuple[str, str]:
        return (
            str(config.credentials.get("client_id") or self._settings.banking_client_id),
            str(config.credentials.get("secret") or self._settings.banking_secret),
        )

    def _base_url(self, config: RailConfig) -> str:
        environment = config.settings.get("environment") or self._settings.banking_environment
        return _BASE_URLS["production" if environment == "production" else "sandbox"]

    async def _post(self, url: str, body: dict[str, Any]) -> dict[str, Any]:
        response = await self._client.post(url, json=body)
        try:
            data = response.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        if data.get("error_code") or response.is_error:
            raise _ProviderError(
                data.get("error_code"),
                str(data.get("error_message") or f"Aggregator request failed ({response.status_code})"),
            )
        return data

    async def execute(self, payout: Payout, config: RailConfig) -> TransferResult:
        client_id, secret = self._credentials(config)
        if not client_id or not secret:
            return TransferResult.failed(
                FailureCode.RAIL_NOT_CONFIGURED, "Banking network credentials not configured"
            )

        connection_id = payout.destination.for_rail(self.name)
        if not connection_id:
            return TransferResult.failed(
                FailureCode.MISSING_DESTINATION, "No linked bank account for recipient"
            )

        access_token = await self._vault.get_access_token(connection_id)
        if not access_token:
            return TransferResult.failed(
                FailureCode.MISSING_DESTINATION, "Bank connection not found in vault"
            )

        base_url = self._base_url(config)
        auth = {
            "client_id": client_id,
            "secret": secret,
            "access_token": access_token,
            "account_id": payout.destination.account_number,
        }
        try:
            authorization = await self._post(
                f"{base_url}/transfer/authorization/create",
                {
                    **auth,
                    "type": "credit",
                    "network": "ach",
                    "amount": to_major_string(payout.amount),
                    "ach_class": "ppd",
                    "user": {"legal_name": payout.recipient_name},
                },
            )
            decision = (authorization.get("authorization") or {}).get("decision")
            if decision and decision != "approved":
                return TransferResult.failed(
                    FailureCode.PROVIDER_REJECTED,
                    f"Transfer authorization {decision}",
                    decision=decision,
                )
            transfer = await self._post(
                f"{base_url}/transfer/create",
                {
                    **auth,
                    "authorization_id": authorization["authorization"]["id"],
                    "description": "Payout",
                    "metadata": {"release_id": payout.release_id},
                },
            )
        except _ProviderError as exc:
            return TransferResult.failed(exc.code or FailureCode.PROVIDER_REJECTED, exc.message)
        except (KeyError, TypeError):
            return TransferResult.failed(
                FailureCode.PROVIDER_REJECTED, "Malformed authorization response"
            )
        except httpx.TimeoutException as exc:
            logger.warning("rail.banking.timeout", release_id=payout.release_id)
            return TransferResult.failed(FailureCode.RAIL_TIMEOUT, f"Aggregator timed out: {exc}")
        except httpx.HTTPError as exc:
            logger.warning("rail.banking.network_error", release_id=payout.release_id)
            return TransferResult.failed(
                FailureCode.RAIL_NETWORK_ERROR, f"Aggregator unreachable: {exc}"
            )

        transfer_id = (transfer.get("transfer") or {}).get("id")
        logger.info(
            "rail.banking.transfer_created",
            release_id=payout.release_id,
            transfer_id=transfer_id,
            account_last4=payout.destination.account_last4,
        )
        return TransferResult(
            success=True,
            status=TransferStatus.PROCESSING,
            external_id=transfer_id,
            metadata={"banking_transfer_id": transfer_id},
        )

    async def get_status(self, external_id: str, config: RailConfig) -> TransferResult:
        client_id, secret = self._credentials(config)
        if not client_id or not secret:
            return TransferResult.failed(
                FailureCode.RAIL_NOT_CONFIGURED, "Banking network credentials not configured"
            )
        try:
            data = await self._fetch_transfer(
                self._base_url(config),
                {"client_id": client_id, "secret": secret, "transfer_id": external_id},
            )
        except _ProviderError as exc:
            return TransferResult(
                success=False,
                status=TransferStatus.FAILED,
                external_id=external_id,
                error=exc.message,
                error_code=exc.code or FailureCode.PROVIDER_REJECTED.value,
            )
        except httpx.HTTPError as exc:
            return TransferResult.failed(
                FailureCode.RAIL_NETWORK_ERROR, f"Aggregator unreachable: {exc}"
            )

        state = (data.get("transfer") or {}).get("status")
        return TransferResult(
            success=True,
            status=_STATUS_MAP.get(state, TransferStatus.PROCESSING),
            external_id=external_id,
        )

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        reraise=True,
    )
    async def _fetch_transfer(self, base_url: str, body: dict[str, Any]) -> dict[str, Any]:
        return await self._post(f"{base_url}/transfer/get", body)

    def validate_config(self, config: RailConfig) -> ConfigValidation:
        client_id, secret = self._credentials(config)
        errors: list[str] = []
        if not client_id:
            errors.append("banking network client_id required")
        if not secret:
            errors.append("banking network secret required")
        return ConfigValidation(valid=not errors, errors=errors)
