"""Tests for the HTTP venue client."""

import json
from decimal import Decimal

import httpx
import pytest

from hoparb.config import Settings
from hoparb.errors import SwapSubmissionError, VenueError
from hoparb.routing.base import Asset, TransactionHandle, TxStatus
from hoparb.routing.factory import create_breakers, create_venue
from hoparb.routing.http_venue import HttpSwapVenue, map_transaction_status
from hoparb.signing.local import DryRunSigner
from hoparb.utils.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerError,
    CircuitBreakerRegistry,
    CircuitState,
)

GALA = Asset("GALA")
SILK = Asset("SILK")


def _venue(handler, **kwargs) -> HttpSwapVenue:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="https://venue.test")
    return HttpSwapVenue("https://venue.test", client=client, **kwargs)


class TestQuote:
    """Tests for quote requests."""

    @pytest.mark.asyncio
    async def test_quote(self):
        """Test a quote response is parsed into a VenueQuote."""
        seen = {}

        def handler(request):
            seen.update(request.url.params)
            return httpx.Response(200, json={"status": 200, "data": {"amountOut": "9.87", "fee": 3000}})

        venue = _venue(handler)
        quote = await venue.quote(GALA, SILK, Decimal("10"), 3000)

        assert quote.output_amount == Decimal("9.87")
        assert quote.fee_tier == 3000
        assert seen["tokenIn"] == "GALA|Unit|none|none"
        assert seen["amountIn"] == "10"

    @pytest.mark.asyncio
    async def test_no_pool_is_none(self):
        """Test a no-pool answer is not an error."""
        venue = _venue(lambda r: httpx.Response(400, json={"error": True, "message": "No pools found"}))

        assert await venue.quote(GALA, SILK, Decimal("10"), 3000) is None

    @pytest.mark.asyncio
    async def test_server_error_raises(self):
        """Test other failures raise VenueError."""
        venue = _venue(lambda r: httpx.Response(500, json={"error": True, "message": "internal"}))

        with pytest.raises(VenueError):
            await venue.quote(GALA, SILK, Decimal("10"), 3000)

    @pytest.mark.asyncio
    async def test_transport_error_raises(self):
        """Test connection failures raise VenueError."""

        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(VenueError):
            await _venue(handler).quote(GALA, SILK, Decimal("10"), 3000)


class TestSubmit:
    """Tests for signed swap submission."""

    @pytest.mark.asyncio
    async def test_submit_signs_and_bundles(self):
        """Test the unsigned payload is signed and bundled."""
        bundles = []

        def handler(request):
            if request.url.path == "/v1/trade/swap":
                return httpx.Response(200, json={"data": {"swapDto": {"amount": "10"}}})
            bundles.append(json.loads(request.content))
            return httpx.Response(200, json={"data": "tx-123"})

        venue = _venue(handler)
        handle = await venue.submit_swap(
            GALA, SILK, 3000, Decimal("10"), Decimal("9.6"), DryRunSigner("client|abc"), Decimal("0.05")
        )

        assert handle.tx_id == "tx-123"
        assert handle.min_amount_out == Decimal("9.6")
        bundle = bundles[0]
        assert bundle["user"] == "client|abc"
        assert bundle["payload"]["gasBid"] == "0.05"
        assert bundle["payload"]["signature"] == bundle["signature"]

    @pytest.mark.asyncio
    async def test_rejected_bundle(self):
        """Test a refused bundle raises SwapSubmissionError."""

        def handler(request):
            if request.url.path == "/v1/trade/swap":
                return httpx.Response(200, json={"data": {"swapDto": {}}})
            return httpx.Response(400, json={"error": True, "message": "insufficient balance"})

        with pytest.raises(SwapSubmissionError):
            await _venue(handler).submit_swap(GALA, SILK, 3000, Decimal("10"), Decimal("9"), DryRunSigner())


class TestConfirmation:
    """Tests for transaction status polling."""

    def test_status_mapping(self):
        """Test venue status strings map onto TxStatus."""
        assert map_transaction_status("PROCESSED") == TxStatus.CONFIRMED
        assert map_transaction_status("failed") == TxStatus.FAILED
        assert map_transaction_status("PENDING") == TxStatus.TIMEOUT
        assert map_transaction_status("weird") == TxStatus.UNKNOWN

    @pytest.mark.asyncio
    async def test_polls_until_final(self):
        """Test pending answers are polled until the transaction settles."""
        answers = iter(["PENDING", "PENDING", "CONFIRMED"])

        def handler(request):
            return httpx.Response(200, json={"data": {"status": next(answers), "blockNumber": 42}})

        venue = _venue(handler, poll_interval=0.001)
        handle = TransactionHandle("tx-1", GALA, SILK, 3000, Decimal("10"), Decimal("9"))

        result = await venue.await_confirmation(handle, timeout=5)

        assert result.status == TxStatus.CONFIRMED
        assert result.block_number == 42

    @pytest.mark.asyncio
    async def test_times_out(self):
        """Test TIMEOUT is returned instead of raising."""
        venue = _venue(lambda r: httpx.Response(200, json={"data": {"status": "PENDING"}}), poll_interval=0.001)
        handle = TransactionHandle("tx-1", GALA, SILK, 3000, Decimal("10"), Decimal("9"))

        result = await venue.await_confirmation(handle, timeout=0.01)

        assert result.status == TxStatus.TIMEOUT


class TestApiBreaker:
    """Tests for the breaker guarding every venue request."""

    @pytest.mark.asyncio
    async def test_failures_open_the_breaker(self):
        """Test repeated API failures open the breaker and later calls fail fast."""
        calls = []

        def handler(request):
            calls.append(request.url.path)
            return httpx.Response(503, json={"error": True, "message": "unavailable"})

        breaker = CircuitBreaker("venue-api", CircuitBreakerConfig(failure_threshold=2, timeout=30.0))
        venue = _venue(handler, api_breaker=breaker)

        for _ in range(2):
            with pytest.raises(VenueError):
                await venue.quote(GALA, SILK, Decimal("10"), 3000)
        assert breaker.state == CircuitState.OPEN

        with pytest.raises(CircuitBreakerError):
            await venue.get_transaction_status("tx-1")
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_no_pool_is_not_an_api_failure(self):
        """Test a no-pool answer leaves the breaker closed."""
        breaker = CircuitBreaker("venue-api", CircuitBreakerConfig(failure_threshold=1))
        venue = _venue(
            lambda r: httpx.Response(400, json={"error": True, "message": "No pools found"}),
            api_breaker=breaker,
        )

        assert await venue.quote(GALA, SILK, Decimal("10"), 3000) is None
        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    def test_live_venue_uses_registry_breaker(self):
        """Test the factory hands the venue-api breaker to the live venue."""
        registry = CircuitBreakerRegistry()
        breakers = create_breakers(registry)

        venue = create_venue(Settings(dry_run=False), breakers["venue-api"])

        assert isinstance(venue, HttpSwapVenue)
        assert venue.api_breaker is registry.get("venue-api")
