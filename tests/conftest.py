"""
Pytest configuration and shared fixtures
"""
import json

import httpx
import pytest

from core.services.gas_funding.solana_rpc import SolanaRpcClient
from tests.fixtures.mocks import (  # noqa: F401
    SOLANA_RPC_URL,
    funding_ledger,
    funding_policy,
    mock_balance_reader,
    mock_bridge_executor,
    mock_quote_provider,
    mock_sleep,
    mock_swap_executor,
    operational_wallet,
    orchestrator,
    retry_policy,
)


@pytest.fixture
async def solana_rpc():
    """Solana RPC client pointed at a respx-mocked endpoint"""
    client = SolanaRpcClient(SOLANA_RPC_URL, timeout=5.0)
    yield client
    await client.close()


@pytest.fixture
def rpc_results():
    """
    JSON-RPC results served by rpc_handler, keyed by method

    A value may be a callable taking the request params, or an exception to raise.
    """
    return {}


@pytest.fixture
def rpc_handler(rpc_results):
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        method = body["method"]
        if method not in rpc_results:
            error = {"code": -32601, "message": f"unmocked {method}"}
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "error": error})
        result = rpc_results[method]
        if isinstance(result, Exception):
            raise result
        if callable(result):
            result = result(body["params"])
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": result})

    return handler
