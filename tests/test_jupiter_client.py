"""
Jupiter quote provider and swap executor tests (HTTP mocked with respx)
"""
import base64
import json
from decimal import Decimal
from unittest.mock import AsyncMock

import httpx
import pytest
import respx
from solders.keypair import Keypair

from core.models.funding_models import TransactionStatus
from core.services.gas_funding.config import FundingConfig
from core.services.gas_funding.errors import (
    ConfirmationTimeout,
    NoRoute,
    ProviderUnavailable,
    QuoteExpired,
    SwapRejected,
)
from core.services.gas_funding.jupiter_client import JupiterApi, JupiterQuoteProvider, JupiterSwapExecutor
from tests.fixtures.mocks import SOLANA_RPC_URL, make_quote
from tests.fixtures.transactions import build_unsigned_transaction, expected_signature

JUPITER_URL = "https://jupiter.test/swap/v1"

QUOTE_RESPONSE = {
    "inputMint": FundingConfig.USDC_MINT,
    "outputMint": FundingConfig.SOL_MINT,
    "inAmount": "10000000",
    "outAmount": "60000000",
    "otherAmountThreshold": "59400000",
    "priceImpactPct": "0.0012",
    "routePlan": [],
}


@pytest.fixture
async def jupiter_api():
    api = JupiterApi(JUPITER_URL, timeout=5.0)
    yield api
    await api.close()


@pytest.fixture
def quote_provider(jupiter_api):
    return JupiterQuoteProvider(jupiter_api, quote_ttl_seconds=30)


@pytest.fixture
def keypair():
    return Keypair()


@pytest.fixture
def swap_executor(jupiter_api, solana_rpc, mock_sleep):
    return JupiterSwapExecutor(jupiter_api, solana_rpc, confirmation_timeout=30, poll_interval=0.5, sleep=mock_sleep)


def landed_transaction(owner: str, received: int) -> dict:
    return {
        "meta": {"fee": 5000, "err": None, "preBalances": [1_000_000_000], "postBalances": [1_000_000_000 + received - 5000]},
        "transaction": {"message": {"accountKeys": [{"pubkey": owner}]}},
    }


class TestQuote:
    @respx.mock
    async def test_quote(self, quote_provider):
        route = respx.get(f"{JUPITER_URL}/quote").mock(return_value=httpx.Response(200, json=QUOTE_RESPONSE))

        quote = await quote_provider.quote(FundingConfig.USDC, FundingConfig.SOL, Decimal("10"), 100)

        params = route.calls.last.request.url.params
        assert params["inputMint"] == FundingConfig.USDC_MINT
        assert params["outputMint"] == FundingConfig.SOL_MINT
        assert params["amount"] == "10000000"
        assert params["slippageBps"] == "100"

        assert quote.input_amount == 10_000_000
        assert quote.expected_output_amount == 60_000_000
        assert quote.min_output_amount == 59_400_000
        assert quote.price_impact_pct == Decimal("0.0012")
        assert quote.route == QUOTE_RESPONSE
        assert not quote.is_expired()
        assert (quote.expires_at - quote.quoted_at).total_seconds() == 30

    @respx.mock
    async def test_rejected_request_is_no_route(self, quote_provider):
        respx.get(f"{JUPITER_URL}/quote").mock(
            return_value=httpx.Response(400, json={"error": "Could not find any route", "errorCode": "COULD_NOT_FIND_ANY_ROUTE"})
        )

        with pytest.raises(NoRoute):
            await quote_provider.quote(FundingConfig.USDC, FundingConfig.SOL, Decimal("10"), 100)

    @respx.mock
    async def test_zero_output_is_no_route(self, quote_provider):
        respx.get(f"{JUPITER_URL}/quote").mock(
            return_value=httpx.Response(200, json={**QUOTE_RESPONSE, "outAmount": "0", "otherAmountThreshold": "0"})
        )

        with pytest.raises(NoRoute):
            await quote_provider.quote(FundingConfig.USDC, FundingConfig.SOL, Decimal("10"), 100)

    @respx.mock
    @pytest.mark.parametrize("mocked", [
        {"return_value": httpx.Response(503)},
        {"return_value": httpx.Response(429)},
        {"side_effect": httpx.ConnectError("refused")},
        {"return_value": httpx.Response(200, json={"unexpected": True})},
    ])
    async def test_transport_problems_are_unavailable(self, quote_provider, mocked):
        respx.get(f"{JUPITER_URL}/quote").mock(**mocked)

        with pytest.raises(ProviderUnavailable):
            await quote_provider.quote(FundingConfig.USDC, FundingConfig.SOL, Decimal("10"), 100)

    async def test_zero_input_refused(self, quote_provider):
        with pytest.raises(ValueError):
            await quote_provider.quote(FundingConfig.USDC, FundingConfig.SOL, Decimal("0"), 100)


class TestExecute:
    @respx.mock
    async def test_successful_swap(self, swap_executor, keypair, rpc_results, rpc_handler):
        raw = build_unsigned_transaction(keypair)
        swap_route = respx.post(f"{JUPITER_URL}/swap").mock(return_value=httpx.Response(200, json={
            "swapTransaction": base64.b64encode(raw).decode(),
            "lastValidBlockHeight": 3090,
        }))
        signature = expected_signature(keypair, raw)
        rpc_results["sendTransaction"] = signature
        rpc_results["getSignatureStatuses"] = {"value": [{"confirmationStatus": "confirmed", "err": None}]}
        rpc_results["getTransaction"] = landed_transaction(str(keypair.pubkey()), 6_000_000)
        respx.post(SOLANA_RPC_URL).mock(side_effect=rpc_handler)

        result = await swap_executor.execute(make_quote(), keypair)

        assert result.tx_ref == signature
        assert result.output_amount == 6_000_000
        assert result.confirmed_via == "confirmation"
        body = json.loads(swap_route.calls.last.request.content)
        assert body["userPublicKey"] == str(keypair.pubkey())
        assert body["quoteResponse"] == make_quote().route

    async def test_expired_quote_refused(self, swap_executor, keypair):
        with pytest.raises(QuoteExpired):
            await swap_executor.execute(make_quote(expires_in=-1), keypair)

    @respx.mock
    async def test_swap_build_rejected(self, swap_executor, keypair):
        respx.post(f"{JUPITER_URL}/swap").mock(return_value=httpx.Response(422, json={"error": "bad quote"}))

        with pytest.raises(SwapRejected):
            await swap_executor.execute(make_quote(), keypair)

    @respx.mock
    async def test_transaction_for_another_wallet_rejected(self, swap_executor, keypair):
        raw = build_unsigned_transaction(Keypair())
        respx.post(f"{JUPITER_URL}/swap").mock(
            return_value=httpx.Response(200, json={"swapTransaction": base64.b64encode(raw).decode()})
        )

        with pytest.raises(SwapRejected):
            await swap_executor.execute(make_quote(), keypair)

    @respx.mock
    async def test_on_chain_failure_rejected(self, swap_executor, keypair, rpc_results, rpc_handler):
        raw = build_unsigned_transaction(keypair)
        respx.post(f"{JUPITER_URL}/swap").mock(
            return_value=httpx.Response(200, json={"swapTransaction": base64.b64encode(raw).decode()})
        )
        rpc_results["sendTransaction"] = expected_signature(keypair, raw)
        rpc_results["getSignatureStatuses"] = {"value": [{"confirmationStatus": "confirmed", "err": {"InstructionError": [2, {"Custom": 6001}]}}]}
        respx.post(SOLANA_RPC_URL).mock(side_effect=rpc_handler)

        with pytest.raises(SwapRejected):
            await swap_executor.execute(make_quote(), keypair)

    @respx.mock
    async def test_unconfirmed_swap_times_out(self, jupiter_api, solana_rpc, keypair, rpc_results, rpc_handler):
        executor = JupiterSwapExecutor(jupiter_api, solana_rpc, confirmation_timeout=0, poll_interval=0.5, sleep=AsyncMock())
        raw = build_unsigned_transaction(keypair)
        respx.post(f"{JUPITER_URL}/swap").mock(return_value=httpx.Response(200, json={
            "swapTransaction": base64.b64encode(raw).decode(),
            "lastValidBlockHeight": 3090,
        }))
        rpc_results["sendTransaction"] = expected_signature(keypair, raw)
        respx.post(SOLANA_RPC_URL).mock(side_effect=rpc_handler)

        with pytest.raises(ConfirmationTimeout) as exc_info:
            await executor.execute(make_quote(), keypair)

        assert exc_info.value.tx_ref == expected_signature(keypair, raw)
        assert exc_info.value.last_valid_block_height == 3090

    @respx.mock
    async def test_broadcast_transport_error_is_ambiguous(self, swap_executor, keypair):
        raw = build_unsigned_transaction(keypair)
        respx.post(f"{JUPITER_URL}/swap").mock(
            return_value=httpx.Response(200, json={"swapTransaction": base64.b64encode(raw).decode()})
        )
        respx.post(SOLANA_RPC_URL).mock(side_effect=httpx.ReadTimeout("timed out"))

        with pytest.raises(ConfirmationTimeout) as exc_info:
            await swap_executor.execute(make_quote(), keypair)

        assert exc_info.value.tx_ref == expected_signature(keypair, raw)


class TestResolveStatus:
    @pytest.fixture
    def executor(self, jupiter_api, solana_rpc):
        return JupiterSwapExecutor(jupiter_api, solana_rpc, confirmation_timeout=0, poll_interval=0.5, sleep=AsyncMock())

    @respx.mock
    @pytest.mark.parametrize("status,expected", [
        ({"confirmationStatus": "finalized", "err": None}, TransactionStatus.LANDED),
        ({"confirmationStatus": "confirmed", "err": {"InstructionError": [0, "Custom"]}}, TransactionStatus.FAILED),
        ({"confirmationStatus": "processed", "err": None}, TransactionStatus.PENDING),
    ])
    async def test_known_signature(self, executor, rpc_results, rpc_handler, status, expected):
        rpc_results["getSignatureStatuses"] = {"value": [status]}
        respx.post(SOLANA_RPC_URL).mock(side_effect=rpc_handler)

        timeout = ConfirmationTimeout("timed out", tx_ref="sig-1", last_valid_block_height=100)
        assert await executor.resolve_status(timeout) is expected

    @respx.mock
    @pytest.mark.parametrize("height,last_valid,expected", [
        (101, 100, TransactionStatus.DROPPED),
        (99, 100, TransactionStatus.PENDING),
        (500, None, TransactionStatus.PENDING),
    ])
    async def test_unknown_signature(self, executor, rpc_results, rpc_handler, height, last_valid, expected):
        rpc_results["getSignatureStatuses"] = {"value": [None]}
        rpc_results["getBlockHeight"] = height
        respx.post(SOLANA_RPC_URL).mock(side_effect=rpc_handler)

        timeout = ConfirmationTimeout("timed out", tx_ref="sig-1", last_valid_block_height=last_valid)
        assert await executor.resolve_status(timeout) is expected

    @respx.mock
    async def test_keeps_polling_until_landed(self, jupiter_api, solana_rpc, rpc_results, rpc_handler):
        sleep = AsyncMock()
        executor = JupiterSwapExecutor(jupiter_api, solana_rpc, confirmation_timeout=30, poll_interval=0.5, sleep=sleep)
        statuses = iter([None, None, {"confirmationStatus": "confirmed", "err": None}])
        rpc_results["getSignatureStatuses"] = lambda params: {"value": [next(statuses)]}
        rpc_results["getBlockHeight"] = 50
        respx.post(SOLANA_RPC_URL).mock(side_effect=rpc_handler)

        timeout = ConfirmationTimeout("timed out", tx_ref="sig-1", last_valid_block_height=100)
        assert await executor.resolve_status(timeout) is TransactionStatus.LANDED
        assert sleep.await_count == 2
