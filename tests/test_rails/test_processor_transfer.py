"""Tests for the processor transfer rail using httpx.MockTransport."""

from __future__ import annotations

import json
from decimal import Decimal

import httpx
import pytest

from fund_custody.config import Settings
from fund_custody.domain.enums import TransferStatus
from fund_custody.domain.rail_protocol import Destination, Payout, RailConfig
from fund_custody.rails.processor_transfer import ProcessorTransferRail, map_status

CONFIG = RailConfig(rail="processor", credentials={"username": "US123", "password": "secret"})


def _payout(destination: str | None = "PIxyz") -> Payout:
    return Payout(
        release_id="rel-1",
        recipient_id="creator-1",
        recipient_name="Creator One",
        amount=Decimal("100.00"),
        currency="usd",
        destination=Destination(processor_account_id=destination),
    )


def _rail(handler) -> ProcessorTransferRail:  # noqa: ANN001
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ProcessorTransferRail(client, Settings(_env_file=None))


class TestExecute:
    @pytest.mark.asyncio
    async def test_success_sends_minor_units_and_idempotency_key(self) -> None:
        seen: dict = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["headers"] = request.headers
            seen["body"] = json.loads(request.content)
            return httpx.Response(201, json={"id": "TR123", "state": "PENDING"})

        result = await _rail(handler).execute(_payout(), CONFIG)

        assert result.success
        assert result.external_id == "TR123"
        assert result.status == TransferStatus.PROCESSING
        assert seen["url"] == "https://finix.sandbox-payments-api.com/transfers"
        assert seen["headers"]["Idempotency-Key"] == "rel-1"
        assert seen["headers"]["Finix-Version"] == "2022-02-01"
        assert seen["headers"]["Authorization"].startswith("Basic ")
        assert seen["body"]["amount"] == 10000
        assert seen["body"]["currency"] == "USD"
        assert seen["body"]["destination"] == "PIxyz"
        assert seen["body"]["tags"]["release_id"] == "rel-1"

    @pytest.mark.asyncio
    async def test_provider_error_is_a_failed_result(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                422, json={"_embedded": {"errors": [{"message": "Insufficient balance"}]}}
            )

        result = await _rail(handler).execute(_payout(), CONFIG)

        assert not result.success
        assert result.error_code == "provider_rejected"
        assert result.error == "Insufficient balance"
        assert result.metadata["http_status"] == 422

    @pytest.mark.asyncio
    async def test_failed_state(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(201, json={"id": "TR9", "state": "FAILED"})

        result = await _rail(handler).execute(_payout(), CONFIG)
        assert not result.success
        assert result.external_id == "TR9"

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        result = await _rail(handler).execute(_payout(), CONFIG)
        assert result.error_code == "rail_timeout"

    @pytest.mark.asyncio
    async def test_network_error(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        result = await _rail(handler).execute(_payout(), CONFIG)
        assert result.error_code == "rail_network_error"

    @pytest.mark.asyncio
    async def test_missing_credentials_never_calls_out(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        result = await _rail(handler).execute(_payout(), RailConfig(rail="processor"))
        assert result.error_code == "rail_not_configured"

    @pytest.mark.asyncio
    async def test_missing_destination(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        result = await _rail(handler).execute(_payout(destination=None), CONFIG)
        assert result.error_code == "missing_destination"

    @pytest.mark.asyncio
    async def test_production_with_sandbox_url_is_refused(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        config = RailConfig(
            rail="processor",
            credentials=CONFIG.credentials,
            settings={
                "environment": "production",
                "base_url": "https://finix.sandbox-payments-api.com",
            },
        )
        result = await _rail(handler).execute(_payout(), config)
        assert result.error_code == "rail_not_configured"


class TestStatus:
    @pytest.mark.asyncio
    async def test_get_status(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url.path == "/transfers/TR123"
            return httpx.Response(200, json={"id": "TR123", "state": "SUCCEEDED"})

        result = await _rail(handler).get_status("TR123", CONFIG)
        assert result.status == TransferStatus.COMPLETED

    @pytest.mark.parametrize(
        ("state", "expected"),
        [
            ("SUCCEEDED", TransferStatus.COMPLETED),
            ("failed", TransferStatus.FAILED),
            ("PENDING", TransferStatus.PROCESSING),
            (None, TransferStatus.PENDING),
        ],
    )
    def test_map_status(self, state: str | None, expected: TransferStatus) -> None:
        assert map_status(state) == expected


class TestValidateConfig:
    def test_valid(self) -> None:
        assert _rail(lambda r: httpx.Response(200)).validate_config(CONFIG).valid

    def test_missing_credentials(self) -> None:
        validation = _rail(lambda r: httpx.Response(200)).validate_config(
            RailConfig(rail="processor")
        )
        assert not validation.valid
        assert "processor username required" in validation.errors
