"""HTTP client for a GalaSwap-style DEX backend.

Endpoints:
- GET  /v1/trade/quote               - quote one fee tier
- POST /v1/trade/swap                - build unsigned swap payload
- POST /v1/trade/bundle              - submit signed payload
- GET  /v1/trade/transaction-status  - poll settlement

Responses are parsed into pydantic models before anything else sees them.
"""

import asyncio
import logging
import time
from decimal import Decimal
from typing import Any, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from hoparb.errors import SwapSubmissionError, VenueError
from hoparb.routing.base import (
    Asset,
    ConfirmationResult,
    SwapVenue,
    TransactionHandle,
    TxStatus,
    VenueQuote,
)
from hoparb.signing.base import Signer
from hoparb.utils.circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)

NO_POOL_MARKERS = ("NO_POOL", "no pool", "pool not found", "No pools")


class QuoteData(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    amount_out: Decimal = Field(alias="amountOut")
    fee: Optional[int] = None
    new_sqrt_price: Optional[str] = Field(default=None, alias="newSqrtPrice")


class QuoteEnvelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: Optional[int] = None
    error: bool = False
    message: Optional[str] = None
    data: Optional[QuoteData] = None


class PayloadEnvelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: Optional[int] = None
    error: bool = False
    message: Optional[str] = None
    data: Optional[dict[str, Any]] = None


class BundleEnvelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: Optional[int] = None
    error: bool = False
    message: Optional[str] = None
    data: Optional[Any] = None

    @property
    def transaction_id(self) -> Optional[str]:
        if isinstance(self.data, str):
            return self.data
        if isinstance(self.data, dict):
            return self.data.get("data") or self.data.get("transactionId")
        return None


class TransactionStatusData(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    status: str = "UNKNOWN"
    block_number: Optional[int] = Field(default=None, alias="blockNumber")
    error: Optional[str] = None


class TransactionStatusEnvelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    error: bool = False
    message: Optional[str] = None
    data: Optional[TransactionStatusData] = None


def map_transaction_status(raw: str) -> TxStatus:
    """Map venue status strings onto TxStatus."""
    value = raw.upper()
    if value in ("CONFIRMED", "PROCESSED", "SUCCESS"):
        return TxStatus.CONFIRMED
    if value in ("FAILED", "REJECTED"):
        return TxStatus.FAILED
    if value in ("PENDING", "SUBMITTED", "PROCESSING"):
        return TxStatus.TIMEOUT
    return TxStatus.UNKNOWN


class HttpSwapVenue(SwapVenue):
    """Swap venue reached over HTTPS."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        poll_interval: float = 2.0,
        client: Optional[httpx.AsyncClient] = None,
        api_breaker: Optional[CircuitBreaker] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)
        self.api_breaker = api_breaker

    @property
    def name(self) -> str:
        return "galaswap"

    async def close(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> httpx.Response:
        """Send a request, through the API breaker when one is attached.

        Transport errors and 5xx answers count as API failures.
        """
        if self.api_breaker is None:
            return await self._send(method, path, **kwargs)
        return await self.api_breaker.execute(lambda: self._send(method, path, **kwargs))

    async def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise VenueError(f"{method} {path} failed: {e}", venue=self.name) from e
        if response.status_code >= 500:
            raise VenueError(f"{method} {path} returned {response.status_code}", venue=self.name)
        return response

    @staticmethod
    def _is_no_pool(message: Optional[str]) -> bool:
        return bool(message) and any(marker.lower() in message.lower() for marker in NO_POOL_MARKERS)

    async def quote(
        self,
        asset_in: Asset,
        asset_out: Asset,
        amount: Decimal,
        fee_tier: int,
    ) -> Optional[VenueQuote]:
        params = {
            "tokenIn": asset_in.token_key,
            "tokenOut": asset_out.token_key,
            "amountIn": str(amount),
            "fee": int(fee_tier),
        }
        response = await self._request("GET", "/v1/trade/quote", params=params)

        try:
            envelope = QuoteEnvelope.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise VenueError(f"Malformed quote response: {e}", venue=self.name) from e

        if response.status_code >= 400 or envelope.error or envelope.data is None:
            if self._is_no_pool(envelope.message) or response.status_code == 404:
                return None
            raise VenueError(
                f"Quote rejected ({response.status_code}): {envelope.message}", venue=self.name
            )

        if envelope.data.amount_out <= 0:
            return None

        return VenueQuote(
            asset_in=asset_in,
            asset_out=asset_out,
            amount_in=amount,
            output_amount=envelope.data.amount_out,
            fee_tier=envelope.data.fee or int(fee_tier),
        )

    async def submit_swap(
        self,
        asset_in: Asset,
        asset_out: Asset,
        fee_tier: int,
        amount_in: Decimal,
        min_amount_out: Decimal,
        signer: Signer,
        gas_bid: Optional[Decimal] = None,
    ) -> TransactionHandle:
        request = {
            "tokenIn": asset_in.token_key,
            "tokenOut": asset_out.token_key,
            "amountIn": str(amount_in),
            "fee": int(fee_tier),
            "amountInMaximum": str(amount_in),
            "amountOutMinimum": str(min_amount_out),
        }
        try:
            response = await self._request("POST", "/v1/trade/swap", json=request)
            payload = PayloadEnvelope.model_validate(response.json())
        except (ValueError, ValidationError, VenueError) as e:
            raise SwapSubmissionError(f"Could not build swap payload: {e}", venue=self.name) from e
        if response.status_code >= 400 or payload.error or payload.data is None:
            raise SwapSubmissionError(f"Swap payload rejected: {payload.message}", venue=self.name)

        unsigned = dict(payload.data)
        if gas_bid is not None:
            unsigned["gasBid"] = str(gas_bid)
        signature = await signer.sign_payload(unsigned)

        bundle_request = {
            "payload": {**unsigned, "signature": signature},
            "type": "swap",
            "signature": signature,
            "user": signer.address,
        }
        try:
            response = await self._request("POST", "/v1/trade/bundle", json=bundle_request)
            bundle = BundleEnvelope.model_validate(response.json())
        except (ValueError, ValidationError, VenueError) as e:
            raise SwapSubmissionError(f"Bundle submission failed: {e}", venue=self.name) from e

        tx_id = bundle.transaction_id
        if response.status_code >= 400 or bundle.error or not tx_id:
            raise SwapSubmissionError(f"Bundle rejected: {bundle.message}", venue=self.name)

        logger.info(f"Submitted swap {tx_id}: {amount_in} {asset_in} -> {asset_out} (min {min_amount_out})")
        return TransactionHandle(
            tx_id=tx_id,
            asset_in=asset_in,
            asset_out=asset_out,
            fee_tier=int(fee_tier),
            amount_in=amount_in,
            min_amount_out=min_amount_out,
        )

    async def get_transaction_status(self, tx_id: str) -> ConfirmationResult:
        response = await self._request("GET", "/v1/trade/transaction-status", params={"id": tx_id})
        try:
            envelope = TransactionStatusEnvelope.model_validate(response.json())
        except (ValueError, ValidationError) as e:
            raise VenueError(f"Malformed status response: {e}", venue=self.name) from e

        if envelope.data is None:
            return ConfirmationResult(status=TxStatus.UNKNOWN, error_message=envelope.message)

        return ConfirmationResult(
            status=map_transaction_status(envelope.data.status),
            block_number=envelope.data.block_number,
            error_message=envelope.data.error,
        )

    async def await_confirmation(self, handle: TransactionHandle, timeout: float) -> ConfirmationResult:
        """Poll until the transaction is final or the timeout passes."""
        started = time.monotonic()
        deadline = started + timeout

        while True:
            result = await self.get_transaction_status(handle.tx_id)
            if result.is_final:
                result.confirmation_time = time.monotonic() - started
                return result

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return ConfirmationResult(status=TxStatus.TIMEOUT, confirmation_time=timeout)
            await asyncio.sleep(min(self.poll_interval, remaining))
