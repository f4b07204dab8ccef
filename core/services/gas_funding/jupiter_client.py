"""
Jupiter Client - stable-token → SOL conversion on Solana
Quotes via the Jupiter swap API, then signs and broadcasts the prebuilt swap transaction locally
"""
import asyncio
import base64
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Awaitable, Callable, Dict, Optional, Type

import httpx
from solders.keypair import Keypair

from core.models.funding_models import (
    Chain,
    ConversionQuote,
    SwapResult,
    TokenInfo,
    TransactionStatus,
    to_base_units,
)
from .config import FundingConfig
from .errors import (
    ConfirmationTimeout,
    FundingError,
    NoRoute,
    ProviderUnavailable,
    QuoteExpired,
    RpcUnavailable,
    SwapRejected,
)
from .interfaces import QuoteProvider, SwapExecutor
from .solana_rpc import CONFIRMED_STATUSES, SolanaRpcClient, sign_prebuilt_transaction, transaction_signature
from infrastructure.logging.logger import get_logger

logger = get_logger(__name__)


class JupiterApi:
    """Shared HTTP plumbing for the Jupiter quote and swap endpoints"""

    def __init__(self, api_url: str, timeout: float, api_key: str = "", client: Optional[httpx.AsyncClient] = None):
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["x-api-key"] = api_key
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = headers

    async def request(
        self,
        method: str,
        path: str,
        rejection_cls: Type[FundingError],
        **kwargs,
    ) -> Dict[str, Any]:
        """
        Call a Jupiter endpoint

        Raises:
            ProviderUnavailable: transport error, timeout, 429 or 5xx
            rejection_cls: any other 4xx (the request itself was refused)
        """
        url = f"{self.api_url}{path}"
        try:
            response = await self._client.request(method, url, headers=self._headers, timeout=self.timeout, **kwargs)
        except httpx.TransportError as e:
            raise ProviderUnavailable(f"Jupiter {path}: {type(e).__name__}: {e}") from e

        if response.status_code == 429 or response.status_code >= 500:
            raise ProviderUnavailable(f"Jupiter {path}: HTTP {response.status_code}")
        if response.status_code >= 400:
            raise rejection_cls(f"Jupiter {path}: HTTP {response.status_code}: {_error_detail(response)}")

        try:
            body = response.json()
        except ValueError as e:
            raise ProviderUnavailable(f"Jupiter {path}: invalid JSON response") from e
        if not isinstance(body, dict):
            raise ProviderUnavailable(f"Jupiter {path}: unexpected response")
        return body

    async def close(self):
        await self._client.aclose()


def _error_detail(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200]
    if isinstance(body, dict):
        return str(body.get("errorCode") or body.get("error") or body)
    return str(body)


class JupiterQuoteProvider(QuoteProvider):
    """Conversion quotes from Jupiter"""

    def __init__(self, api: JupiterApi, quote_ttl_seconds: float):
        self.api = api
        self.quote_ttl_seconds = quote_ttl_seconds

    async def quote(
        self,
        input_token: TokenInfo,
        output_token: TokenInfo,
        input_amount: Decimal,
        slippage_bps: int,
    ) -> ConversionQuote:
        amount = to_base_units(input_amount, input_token.decimals)
        if amount <= 0:
            raise ValueError(f"input_amount must be positive, got {input_amount}")

        logger.info(f"🔍 Jupiter quote for {input_amount} {input_token.symbol} → {output_token.symbol}...")

        params = {
            "inputMint": input_token.address,
            "outputMint": output_token.address,
            "amount": str(amount),
            "slippageBps": str(slippage_bps),
        }
        data = await self.api.request("GET", "/quote", NoRoute, params=params)

        try:
            out_amount = int(data["outAmount"])
            min_out = int(data.get("otherAmountThreshold", out_amount))
            price_impact = Decimal(str(data.get("priceImpactPct", "0")))
        except (KeyError, TypeError, ValueError, InvalidOperation) as e:
            raise ProviderUnavailable(f"Jupiter /quote: malformed response: {e}") from e

        if out_amount <= 0:
            raise NoRoute(f"Jupiter returned no output for {input_amount} {input_token.symbol}")

        now = datetime.now(timezone.utc)
        quote = ConversionQuote(
            input_token=input_token,
            output_token=output_token,
            input_amount=amount,
            expected_output_amount=out_amount,
            min_output_amount=min_out,
            price_impact_pct=price_impact,
            slippage_bps=slippage_bps,
            route=data,
            quoted_at=now,
            expires_at=now + timedelta(seconds=self.quote_ttl_seconds),
        )

        logger.info(
            f"✅ Quote: {input_amount} {input_token.symbol} → "
            f"{quote.expected_output_amount / 10 ** output_token.decimals:.6f} {output_token.symbol} "
            f"(impact {price_impact}%)"
        )
        return quote


class JupiterSwapExecutor(SwapExecutor):
    """Executes Jupiter quotes: build → sign locally → broadcast → confirm"""

    def __init__(
        self,
        api: JupiterApi,
        rpc: SolanaRpcClient,
        confirmation_timeout: float,
        poll_interval: float,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.api = api
        self.rpc = rpc
        self.confirmation_timeout = confirmation_timeout
        self.poll_interval = poll_interval
        self._sleep = sleep or asyncio.sleep

    async def execute(self, quote: ConversionQuote, signing_key: Keypair) -> SwapResult:
        if quote.is_expired():
            raise QuoteExpired(f"Quote expired at {quote.expires_at.isoformat()}")

        owner = str(signing_key.pubkey())

        # Step 1: Get swap transaction
        logger.info("🧱 Getting swap transaction...")
        payload = {
            "quoteResponse": quote.route,
            "userPublicKey": owner,
            "wrapAndUnwrapSol": True,
            "dynamicComputeUnitLimit": True,
            "prioritizationFeeLamports": "auto",
        }
        swap_payload = await self.api.request("POST", "/swap", SwapRejected, json=payload)

        swap_tx_b64 = swap_payload.get("swapTransaction")
        if not swap_tx_b64:
            raise SwapRejected("Jupiter /swap returned no transaction")
        last_valid_block_height = swap_payload.get("lastValidBlockHeight")

        # Step 2: Deserialize and sign
        try:
            signed = sign_prebuilt_transaction(base64.b64decode(swap_tx_b64), signing_key)
        except ValueError as e:
            raise SwapRejected(f"Jupiter swap transaction could not be signed: {e}") from e

        signature = transaction_signature(signed)
        signed_bytes = bytes(signed)
        logger.info(f"✍️ Signed swap {signature[:16]}... ({len(signed_bytes)} bytes)")

        # Step 3: Broadcast
        try:
            await self.rpc.send_transaction(signed_bytes)
        except RpcUnavailable as e:
            # The node may have accepted it before the connection failed
            raise ConfirmationTimeout(
                f"Broadcast outcome unknown: {e}",
                tx_ref=signature,
                last_valid_block_height=last_valid_block_height,
            ) from e
        logger.info(f"   View on explorer: {FundingConfig.explorer_tx_url(Chain.SOLANA, signature)}")

        # Step 4: Confirm
        await self._wait_for_confirmation(signature, last_valid_block_height)

        output_amount = await self._received_amount(quote, signature, owner)
        logger.info(f"✅ Swap confirmed! {signature} → {output_amount} base units of {quote.output_token.symbol}")

        return SwapResult(
            tx_ref=signature,
            output_amount=output_amount,
            realized_price_impact_pct=quote.price_impact_pct,
        )

    async def _wait_for_confirmation(self, signature: str, last_valid_block_height: Optional[int]) -> None:
        status = await self.rpc.confirm_transaction(
            signature,
            timeout=self.confirmation_timeout,
            poll_interval=self.poll_interval,
            sleep=self._sleep,
        )
        if status is None:
            raise ConfirmationTimeout(
                f"Swap not confirmed within {self.confirmation_timeout}s",
                tx_ref=signature,
                last_valid_block_height=last_valid_block_height,
            )
        if status.get("err"):
            raise SwapRejected(f"Swap {signature} failed on-chain: {status['err']}")

    async def _received_amount(self, quote: ConversionQuote, signature: str, owner: str) -> int:
        """
        Output actually credited by the confirmed swap

        Falls back to the quote's slippage-protected minimum when the
        transaction details cannot be read.
        """
        if quote.output_token.is_native:
            try:
                delta = await self.rpc.get_lamport_delta(signature, owner)
            except RpcUnavailable as e:
                logger.warning(f"⚠️ Could not read swap transaction details: {e}")
                delta = None
            if delta is not None and delta > 0:
                return delta

        logger.warning(f"⚠️ Using quote minimum output {quote.min_output_amount} as received amount")
        return quote.min_output_amount

    async def resolve_status(self, timeout: ConfirmationTimeout) -> TransactionStatus:
        """
        Re-query the cluster for a timed-out swap

        Keeps polling (bounded by the confirmation timeout) until the
        signature shows up or its blockhash can no longer be used.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.confirmation_timeout

        while True:
            status = await self.rpc.get_signature_status(timeout.tx_ref)
            if status is not None:
                if status.get("err"):
                    return TransactionStatus.FAILED
                if status.get("confirmationStatus") in CONFIRMED_STATUSES:
                    return TransactionStatus.LANDED
            elif timeout.last_valid_block_height is not None:
                height = await self.rpc.get_block_height()
                if height > timeout.last_valid_block_height:
                    logger.info(f"🧹 {timeout.tx_ref[:16]}... expired at height {timeout.last_valid_block_height} (now {height})")
                    return TransactionStatus.DROPPED

            if loop.time() >= deadline:
                return TransactionStatus.PENDING
            await self._sleep(self.poll_interval)
