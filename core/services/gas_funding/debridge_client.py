"""
deBridge Client
Bridges native SOL from Solana to native ETH on Base through deBridge DLN orders.
The order transaction is built by deBridge, then re-stamped, signed and broadcast locally.
"""
from typing import Any, Dict, Iterable, Optional

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

FULFILLED_STATUSES = ("Fulfilled", "SentUnlock", "ClaimedUnlock")
CANCELLED_STATUSES = ("OrderCancelled", "SentOrderCancel", "ClaimedOrderCancel")


class DeBridgeExecutor(PrebuiltTransactionBridge):
    """deBridge DLN bridge: create-tx → re-stamp → sign → broadcast → confirm → wait for fulfilment"""

    provider_name = "debridge"

    def __init__(
        self,
        api_url: str,
        rpc: SolanaRpcClient,
        timeout: float,
        fulfillment_timeout: float,
        poll_interval: float,
        allowed_destinations: Iterable[str],
        api_key: str = "",
        **kwargs,
    ):
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else None
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

    async def _create_order(
        self,
        amount: int,
        source_chain: Chain,
        target_chain: Chain,
        destination_wallet: str,
        owner: str,
    ) -> BridgeOrder:
        params = {
            "srcChainId": FundingConfig.debridge_chain_id(source_chain),
            "srcChainTokenIn": FundingConfig.native_token_address(source_chain),
            "srcChainTokenInAmount": str(amount),
            "dstChainId": FundingConfig.debridge_chain_id(target_chain),
            "dstChainTokenOut": FundingConfig.native_token_address(target_chain),
            "dstChainTokenOutAmount": "auto",
            "srcChainOrderAuthorityAddress": owner,
            "dstChainOrderAuthorityAddress": destination_wallet,
            "dstChainTokenOutRecipient": destination_wallet,
            # Fees come out of the bridged amount, never on top of it
            "prependOperatingExpenses": "false",
            "affiliateFeePercent": "0",
        }
        order = await self._get("/dln/order/create-tx", params=params)

        order_id = order.get("orderId")
        tx_hex = (order.get("tx") or {}).get("data")
        if not order_id or not tx_hex:
            raise BridgeUnavailable("deBridge create-tx returned no orderId or transaction")
        if tx_hex.startswith("0x"):
            tx_hex = tx_hex[2:]
        try:
            raw = bytes.fromhex(tx_hex)
        except ValueError as e:
            raise BridgeUnavailable("deBridge create-tx returned a transaction that is not hex") from e

        return BridgeOrder(raw_transaction=raw, order_id=order_id, estimated_output=_estimated_output(order))

    async def _order_status(self, order: BridgeOrder, signature: str, target_chain: Chain) -> OrderStatus:
        body = await self._get(f"/dln/order/{order.order_id}")
        status = body.get("status")
        if status in FULFILLED_STATUSES:
            return OrderStatus(
                state=ORDER_FULFILLED,
                label=status,
                amount_received=_taken_amount(body),
                target_tx_ref=_fulfillment_tx(body),
            )
        if status in CANCELLED_STATUSES:
            return OrderStatus(state=ORDER_CANCELLED, label=status)
        return OrderStatus(state=ORDER_PENDING, label=status or "unknown")


def _estimated_output(order: Dict[str, Any]) -> Optional[int]:
    return parse_amount(((order.get("estimation") or {}).get("dstChainTokenOut") or {}).get("amount"))


def _fulfillment_tx(order: Dict[str, Any]) -> Optional[str]:
    tx_hash = ((order.get("fulfilledDstEventMetadata") or {}).get("transactionHash") or {})
    if isinstance(tx_hash, dict):
        tx_hash = tx_hash.get("stringValue")
    return tx_hash or None


def _taken_amount(order: Dict[str, Any]) -> Optional[int]:
    """Amount the taker delivered on the target chain, post-fee"""
    amount = (order.get("takeOffer") or {}).get("amount")
    if isinstance(amount, dict):
        amount = amount.get("stringValue") or amount.get("bigIntegerValue")
    return parse_amount(amount)
