"""
LI.FI Client
Fallback bridge for native SOL → native ETH on Base through the LI.FI aggregator.
LI.FI returns a base64 Solana transaction; the order is tracked by its source signature.
"""
import base64
import binascii
from typing import Iterable

from core.models.funding_models import Chain
from .config import FundingConfig
from .errors import BridgeUnavailable
from .prebuilt_bridge import (
    ORDER_CANCELLED,
    ORDER_FULFILLED,
    ORDER_PENDING,
    BridgeOrder,
    OrderStatus,
    PrebuiltTransactionBridge,
    parse_amount,
)
from .solana_rpc import SolanaRpcClient


class LiFiExecutor(PrebuiltTransactionBridge):
    """LI.FI bridge: quote → re-stamp → sign → broadcast → confirm → poll /status"""

    provider_name = "lifi"

    def __init__(
        self,
        api_url: str,
        rpc: SolanaRpcClient,
        timeout: float,
        fulfillment_timeout: float,
        poll_interval: float,
        allowed_destinations: Iterable[str],
        api_key: str = "",
        slippage_bps: int = 100,
        **kwargs,
    ):
        headers = {"x-lifi-api-key": api_key} if api_key else None
        super().__init__(
            api_url,
            rpc,
            timeout=timeout,
            fulfillment_timeout=fulfillment_timeout,
            poll_interval=poll_interval,
            allowed_destinations=allowed_destinations,
            headers=headers,
            **kwargs,
        )
        self.slippage_bps = slippage_bps

    async def _create_order(
        self,
        amount: int,
        source_chain: Chain,
        target_chain: Chain,
        destination_wallet: str,
        owner: str,
    ) -> BridgeOrder:
        params = {
            "fromChain": FundingConfig.lifi_chain_id(source_chain),
            "toChain": FundingConfig.lifi_chain_id(target_chain),
            "fromToken": FundingConfig.native_token_address(source_chain),
            "toToken": FundingConfig.native_token_address(target_chain),
            "fromAmount": str(amount),
            "fromAddress": owner,
            "toAddress": destination_wallet,
            "slippage": str(self.slippage_bps / 10_000),
        }
        quote = await self._get("/quote", params=params)

        tx_data = (quote.get("transactionRequest") or {}).get("data")
        if not tx_data:
            raise BridgeUnavailable("LI.FI /quote returned no transaction")
        try:
            raw = base64.b64decode(tx_data, validate=True)
        except (binascii.Error, ValueError) as e:
            raise BridgeUnavailable("LI.FI /quote returned a transaction that is not base64") from e

        estimate = quote.get("estimate") or {}
        return BridgeOrder(
            raw_transaction=raw,
            order_id=quote.get("id"),
            estimated_output=parse_amount(estimate.get("toAmountMin") or estimate.get("toAmount")),
        )

    async def _order_status(self, order: BridgeOrder, signature: str, target_chain: Chain) -> OrderStatus:
        params = {
            "txHash": signature,
            "fromChain": FundingConfig.lifi_chain_id(Chain.SOLANA),
            "toChain": FundingConfig.lifi_chain_id(target_chain),
        }
        body = await self._get("/status", params=params)
        status = body.get("status") or "NOT_FOUND"
        substatus = body.get("substatus")
        label = f"{status}/{substatus}" if substatus else status

        if status == "DONE" and substatus in (None, "COMPLETED"):
            receiving = body.get("receiving") or {}
            return OrderStatus(
                state=ORDER_FULFILLED,
                label=label,
                amount_received=parse_amount(receiving.get("amount")),
                target_tx_ref=receiving.get("txHash"),
            )
        if status in ("FAILED", "INVALID") or status == "DONE":
            # DONE/REFUNDED and DONE/PARTIAL did not deliver native gas
            return OrderStatus(state=ORDER_CANCELLED, label=label)
        return OrderStatus(state=ORDER_PENDING, label=label)
