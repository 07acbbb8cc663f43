"""Processor transfer rail - pays out through a hosted-payments transfer API.

Flow:
    1. Resolve credentials, API version and base URL (ledger config first,
       then service settings).
    2. POST {base_url}/transfers with the recipient's processor account as
       destination and the amount in minor units.
    3. Map the provider's transfer state onto TransferStatus.

The release id travels as the Idempotency-Key header and in the transfer
tags, so a replayed request cannot create a second transfer.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import httpx
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from fund_custody.config import Settings, get_settings
from fund_custody.domain.enums import FailureCode, RailName, TransferStatus
from fund_custody.domain.money import to_minor_units
from fund_custody.domain.rail_protocol import ConfigValidation, TransferResult
from fund_custody.logging_config import get_logger

if TYPE_CHECKING:
    from fund_custody.domain.rail_protocol import Payout, RailConfig

logger = get_logger(__name__)

_BASE_URLS = {
    "sandbox": "https://finix.sandbox-payments-api.com",
    "production": "https://finix.live-payments-api.com",
}

_COMPLETED_STATES = {"SUCCEEDED", "SETTLED", "COMPLETED"}
_FAILED_STATES = {"FAILED", "CANCELED", "REJECTED", "DECLINED", "RETURNED"}
_PROCESSING_STATES = {"PROCESSING", "PENDING", "CREATED", "SENT"}


def map_status(state: str | None) -> TransferStatus:
    """Normalize a provider transfer state."""
    normalized = (state or "").upper()
    if normalized in _COMPLETED_STATES:
        return TransferStatus.COMPLETED
    if normalized in _FAILED_STATES:
        return TransferStatus.FAILED
    if normalized in _PROCESSING_STATES:
        return TransferStatus.PROCESSING
    return TransferStatus.PENDING


def _normalize_environment(value: Any) -> str:
    return "production" if str(value or "").strip().lower() in {"production", "prod", "live"} else "sandbox"


def _error_message(data: dict[str, Any], fallback: str) -> str:
    embedded = (data.get("_embedded") or {}).get("errors") or [{}]
    return str(data.get("error") or data.get("message") or embedded[0].get("message") or fallback)


def _json(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


@dataclass(frozen=True)
class _ResolvedConfig:
    username: str
    password: str
    api_version: str
    base_url: str
    transfers_path: str
    config_error: str | None = None


class ProcessorTransferRail:
    """Hosted-payments processor rail."""

    name = RailName.PROCESSOR.value

    def __init__(self, client: httpx.AsyncClient, settings: Settings | None = None) -> None:
        self._client = client
        self._settings = settings or get_settings()

    def _resolve(self, config: RailConfig) -> _ResolvedConfig:
        s = self._settings
        environment = _normalize_environment(
            config.settings.get("environment") or s.processor_environment
        )
        base_url = str(
            config.settings.get("base_url") or s.processor_base_url or _BASE_URLS[environment]
        ).rstrip("/")

        config_error = None
        if environment == "production" and "sandbox" in base_url:
            config_error = "production environment cannot use a sandbox base URL"
        elif environment == "sandbox" and "live-payments" in base_url:
            config_error = "sandbox environment cannot use a live base URL"

        return _ResolvedConfig(
            username=str(config.credentials.get("username") or s.processor_username),
            password=str(config.credentials.get("password") or s.processor_password),
            api_version=str(config.settings.get("api_version") or s.processor_api_version),
            base_url=base_url,
            transfers_path=str(config.settings.get("transfers_path") or "/transfers"),
            config_error=config_error,
        )

    def _headers(self, resolved: _ResolvedConfig) -> dict[str, str]:
        return {"Finix-Version": resolved.api_version, "Content-Type": "application/json"}

    def _precheck(self, resolved: _ResolvedConfig) -> TransferResult | None:
        if resolved.config_error:
            return TransferResult.failed(FailureCode.RAIL_NOT_CONFIGURED, resolved.config_error)
        if not resolved.username or not resolved.password:
            return TransferResult.failed(
                FailureCode.RAIL_NOT_CONFIGURED, "Processor credentials not configured"
            )
        return None

    async def execute(self, payout: Payout, config: RailConfig) -> TransferResult:
        resolved = self._resolve(config)
        if (problem := self._precheck(resolved)) is not None:
            return problem

        destination = payout.destination.for_rail(self.name) or config.settings.get(
            "default_destination"
        )
        if not destination:
            return TransferResult.failed(
                FailureCode.MISSING_DESTINATION, "No processor destination account configured"
            )

        payload: dict[str, Any] = {
            "amount": to_minor_units(payout.amount, payout.currency),
            "currency": payout.currency.upper(),
            "destination": destination,
            "tags": {"release_id": payout.release_id, "recipient_id": payout.recipient_id},
        }
        for key in ("source", "merchant"):
            if config.settings.get(key):
                payload[key] = config.settings[key]

        headers = self._headers(resolved) | {"Idempotency-Key": payout.release_id}
        try:
            response = await self._client.post(
                f"{resolved.base_url}{resolved.transfers_path}",
                json=payload,
                headers=headers,
                auth=(resolved.username, resolved.password),
            )
        except httpx.TimeoutException as exc:
            logger.warning("rail.processor.timeout", release_id=payout.release_id)
            return TransferResult.failed(FailureCode.RAIL_TIMEOUT, f"Processor timed out: {exc}")
        except httpx.HTTPError as exc:
            logger.warning("rail.processor.network_error", release_id=payout.release_id)
            return TransferResult.failed(
                FailureCode.RAIL_NETWORK_ERROR, f"Processor unreachable: {exc}"
            )

        data = _json(response)
        if response.is_error:
            return TransferResult.failed(
                FailureCode.PROVIDER_REJECTED,
                _error_message(data, f"Processor transfer failed ({response.status_code})"),
                http_status=response.status_code,
            )

        status = map_status(data.get("state") or data.get("status"))
        if status == TransferStatus.FAILED:
            return TransferResult(
                success=False,
                status=status,
                external_id=data.get("id"),
                error=_error_message(data, "Processor reported the transfer as failed"),
                error_code=FailureCode.PROVIDER_REJECTED.value,
            )

        logger.info(
            "rail.processor.transfer_created",
            release_id=payout.release_id,
            transfer_id=data.get("id"),
            state=status.value,
        )
        return TransferResult(
            success=True,
            status=status,
            external_id=data.get("id"),
            metadata={"processor_transfer_id": data.get("id")},
        )

    async def get_status(self, external_id: str, config: RailConfig) -> TransferResult:
        resolved = self._resolve(config)
        if (problem := self._precheck(resolved)) is not None:
            return problem

        try:
            response = await self._fetch_transfer(resolved, external_id)
        except httpx.HTTPError as exc:
            logger.warning("rail.processor.status_unavailable", transfer_id=external_id)
            return TransferResult.failed(
                FailureCode.RAIL_NETWORK_ERROR, f"Processor unreachable: {exc}"
            )

        data = _json(response)
        if response.is_error:
            return TransferResult(
                success=False,
                status=TransferStatus.FAILED,
                external_id=external_id,
                error=_error_message(
                    data, f"Processor status request failed ({response.status_code})"
                ),
                error_code=FailureCode.PROVIDER_REJECTED.value,
            )
        return TransferResult(
            success=True,
            status=map_status(data.get("state") or data.get("status")),
            external_id=external_id,
        )

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        reraise=True,
    )
    async def _fetch_transfer(self, resolved: _ResolvedConfig, external_id: str) -> httpx.Response:
        """GET a transfer. Read-only, so transport failures are retried with backoff."""
        return await self._client.get(
            f"{resolved.base_url}{resolved.transfers_path}/{external_id}",
            headers=self._headers(resolved),
            auth=(resolved.username, resolved.password),
        )

    def validate_config(self, config: RailConfig) -> ConfigValidation:
        errors: list[str] = []
        if not config.credentials.get("username") and not self._settings.processor_username:
            errors.append("processor username required")
        if not config.credentials.get("password") and not self._settings.processor_password:
            errors.append("processor password required")
        resolved = self._resolve(config)
        if resolved.config_error:
            errors.append(resolved.config_error)
        return ConfigValidation(valid=not errors, errors=errors)
