"""
LI.FI executor tests (HTTP mocked with respx)
"""
import base64
from unittest.mock import AsyncMock

import httpx
import pytest
import respx
from solders.keypair import Keypair
from solders.transaction import VersionedTransaction

from core.models.funding_models import Chain
from core.services.gas_funding.errors import BridgeFulfillmentTimeout, BridgeRejected, BridgeUnavailable
from core.services.gas_funding.lifi_client import LiFiExecutor
from tests.fixtures.mocks import SOLANA_RPC_URL, TARGET_ADDRESS, eth, sol
from tests.fixtures.transactions import FRESH_BLOCKHASH, build_unsigned_transaction, expected_signature

LIFI_URL = "https://lifi.test/v1"
QUOTE_URL = f"{LIFI_URL}/quote"
STATUS_URL = f"{LIFI_URL}/status"


@pytest.fixture
def keypair():
    return Keypair()


@pytest.fixture
async def executor(solana_rpc):
    executor = LiFiExecutor(
        LIFI_URL,
        solana_rpc,
        timeout=5.0,
        fulfillment_timeout=30,
        poll_interval=0.5,
        allowed_destinations=[TARGET_ADDRESS],
        api_key="lifi-key",
        slippage_bps=100,
        confirmation_timeout=30,
        sleep=AsyncMock(),
    )
    yield executor
    await executor.close()


@pytest.fixture
def raw_quote_tx(keypair):
    return build_unsigned_transaction(keypair, versioned=False)


@pytest.fixture
def quote_body(raw_quote_tx):
    return {
        "id": "lifi-quote-1",
        "transactionRequest": {"data": base64.b64encode(raw_quote_tx).decode()},
        "estimate": {"toAmount": str(eth("0.0059")), "toAmountMin": str(eth("0.0058"))},
    }


@pytest.fixture
def chain_accepts(rpc_results):
    sent = []

    def send(params):
        sent.append(VersionedTransaction.from_bytes(base64.b64decode(params[0])))
        return str(sent[-1].signatures[0])

    rpc_results["getLatestBlockhash"] = {"value": {"blockhash": FRESH_BLOCKHASH, "lastValidBlockHeight": 3090}}
    rpc_results["sendTransaction"] = send
    rpc_results["getSignatureStatuses"] = {"value": [{"confirmationStatus": "finalized", "err": None}]}
    return sent


async def bridge(executor, keypair, amount=sol("0.006"), destination=TARGET_ADDRESS):
    return await executor.bridge(amount, Chain.SOLANA, Chain.BASE, destination, signing_key=keypair)


class TestBridge:
    @respx.mock
    async def test_completed_transfer(self, executor, keypair, raw_quote_tx, quote_body, chain_accepts, rpc_handler):
        respx.post(SOLANA_RPC_URL).mock(side_effect=rpc_handler)
        quote = respx.get(QUOTE_URL).mock(return_value=httpx.Response(200, json=quote_body))
        status = respx.get(STATUS_URL).mock(side_effect=[
            httpx.Response(404, json={"message": "Not found"}),
            httpx.Response(200, json={"status": "PENDING", "substatus": "WAIT_DESTINATION_TRANSACTION"}),
            httpx.Response(200, json={
                "status": "DONE",
                "substatus": "COMPLETED",
                "receiving": {"amount": str(eth("0.00585")), "txHash": "0xdelivered"},
            }),
        ])

        result = await bridge(executor, keypair)

        signature = expected_signature(keypair, raw_quote_tx, blockhash=FRESH_BLOCKHASH)
        assert result.provider == "lifi"
        assert result.tx_ref == signature
        assert result.order_id == "lifi-quote-1"
        assert result.amount_received == eth("0.00585")
        assert result.target_tx_ref == "0xdelivered"

        request = quote.calls.last.request
        assert request.headers["x-lifi-api-key"] == "lifi-key"
        params = request.url.params
        assert params["fromChain"] == "1151111081099710"
        assert params["toChain"] == "8453"
        assert params["fromToken"] == "11111111111111111111111111111111"
        assert params["toToken"] == "0x0000000000000000000000000000000000000000"
        assert params["fromAmount"] == str(sol("0.006"))
        assert params["fromAddress"] == str(keypair.pubkey())
        assert params["toAddress"] == TARGET_ADDRESS
        assert params["slippage"] == "0.01"

        assert status.calls.last.request.url.params["txHash"] == signature

    @respx.mock
    async def test_legacy_transaction_is_restamped(self, executor, keypair, quote_body, chain_accepts, rpc_handler):
        respx.post(SOLANA_RPC_URL).mock(side_effect=rpc_handler)
        respx.get(QUOTE_URL).mock(return_value=httpx.Response(200, json=quote_body))
        respx.get(STATUS_URL).mock(return_value=httpx.Response(200, json={"status": "DONE"}))

        result = await bridge(executor, keypair)

        (sent,) = chain_accepts
        assert str(sent.message.recent_blockhash) == FRESH_BLOCKHASH
        assert sent.message.account_keys[0] == keypair.pubkey()
        # No receiving amount reported: the minimum estimate stands in
        assert result.amount_received == eth("0.0058")


class TestBridgeFailures:
    @respx.mock
    @pytest.mark.parametrize("body", [
        {"id": "q"},
        {"id": "q", "transactionRequest": {"data": "not base64!"}},
    ])
    async def test_unusable_quote_is_unavailable(self, executor, keypair, body):
        respx.get(QUOTE_URL).mock(return_value=httpx.Response(200, json=body))

        with pytest.raises(BridgeUnavailable) as exc_info:
            await bridge(executor, keypair)

        assert exc_info.value.tx_ref is None

    @respx.mock
    async def test_no_route_is_rejected(self, executor, keypair):
        respx.get(QUOTE_URL).mock(return_value=httpx.Response(404, json={"message": "No available quotes"}))

        with pytest.raises(BridgeRejected) as exc_info:
            await bridge(executor, keypair)

        assert exc_info.value.tx_ref is None

    @respx.mock
    @pytest.mark.parametrize("status", [
        {"status": "FAILED"},
        {"status": "INVALID"},
        {"status": "DONE", "substatus": "REFUNDED"},
        {"status": "DONE", "substatus": "PARTIAL"},
    ])
    async def test_undelivered_transfer_is_rejected(self, executor, keypair, quote_body, chain_accepts, rpc_handler, status):
        respx.post(SOLANA_RPC_URL).mock(side_effect=rpc_handler)
        respx.get(QUOTE_URL).mock(return_value=httpx.Response(200, json=quote_body))
        respx.get(STATUS_URL).mock(return_value=httpx.Response(200, json=status))

        with pytest.raises(BridgeRejected) as exc_info:
            await bridge(executor, keypair)

        assert exc_info.value.tx_ref == str(chain_accepts[0].signatures[0])

    @respx.mock
    async def test_pending_transfer_times_out(self, solana_rpc, keypair, quote_body, chain_accepts, rpc_handler):
        executor = LiFiExecutor(
            LIFI_URL, solana_rpc, timeout=5.0, fulfillment_timeout=0, poll_interval=0.5,
            allowed_destinations=[TARGET_ADDRESS], confirmation_timeout=30, sleep=AsyncMock(),
        )
        respx.post(SOLANA_RPC_URL).mock(side_effect=rpc_handler)
        respx.get(QUOTE_URL).mock(return_value=httpx.Response(200, json=quote_body))
        respx.get(STATUS_URL).mock(return_value=httpx.Response(200, json={"status": "PENDING"}))

        with pytest.raises(BridgeFulfillmentTimeout) as exc_info:
            await bridge(executor, keypair)

        assert exc_info.value.tx_ref == str(chain_accepts[0].signatures[0])
        assert exc_info.value.order_id == "lifi-quote-1"
        await executor.close()
