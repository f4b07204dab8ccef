"""
Prebuilt Transaction Bridges
Shared flow for bridge providers that hand back a ready-made Solana transaction:
create order → re-stamp → sign → broadcast → confirm → wait for fulfilment
"""
import asyncio
from abc import abstractmethod
from dataclasses import dataclass, replace
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

import httpx
from solders.keypair import Keypair

from core.models.funding_models import BridgeResult, Chain
from .config import FundingConfig
from .errors import (
    BridgeFulfillmentTimeout,
    BridgeRejected,
    BridgeUnavailable,
    BroadcastFailed,
    RpcUnavailable,
)
from .interfaces import BridgeExecutor
from .solana_rpc import SolanaRpcClient, sign_prebuilt_transaction, transaction_signature
from infrastructure.logging.logger import get_logger

logger = get_logger(__name__)

# Normalized order states reported by _order_status
ORDER_PENDING = "pending"
ORDER_FULFILLED = "fulfilled"
ORDER_CANCELLED = "cancelled"


@dataclass(frozen=True)
class BridgeOrder:
    """An order a provider created but nobody has signed yet"""
    raw_transaction: bytes
    order_id: Optional[str] = None
    estimated_output: Optional[int] = None


@dataclass(frozen=True)
class OrderStatus:
    state: str
    label: str  # Provider's own status name, for logs
    amount_received: Optional[int] = None
    target_tx_ref: Optional[str] = None


@dataclass(frozen=True)
class SignedTransaction:
    raw: bytes
    signature: str


class PrebuiltTransactionBridge(BridgeExecutor):
    """
    Base for Solana-sourced bridges whose provider builds the transaction

    Errors raised before the broadcast carry no tx_ref, so a caller may
    safely try another provider. Anything after it carries the signature.
    """

    provider_name = "prebuilt"

    def __init__(
        self,
        api_url: str,
        rpc: SolanaRpcClient,
        timeout: float,
        fulfillment_timeout: float,
        poll_interval: float,
        allowed_destinations: Iterable[str],
        confirmation_timeout: float = 60.0,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        client: Optional[httpx.AsyncClient] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.api_url = api_url.rstrip("/")
        self.rpc = rpc
        self.timeout = timeout
        self.fulfillment_timeout = fulfillment_timeout
        self.poll_interval = poll_interval
        self.confirmation_timeout = confirmation_timeout
        self.allowed_destinations = {address.lower() for address in allowed_destinations}
        self._sleep = sleep or asyncio.sleep
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = {"Content-Type": "application/json", **(headers or {})}

    async def _get(self, path: str, params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """
        GET a provider endpoint

        Raises:
            BridgeUnavailable: transport error, timeout, 429, 5xx or invalid JSON
            BridgeRejected: any other 4xx
        """
        url = f"{self.api_url}{path}"
        try:
            response = await self._client.get(url, params=params, headers=self._headers, timeout=self.timeout)
        except httpx.TransportError as e:
            raise BridgeUnavailable(f"{self.provider_name} {path}: {type(e).__name__}: {e}") from e

        if response.status_code == 429 or response.status_code >= 500:
            raise BridgeUnavailable(f"{self.provider_name} {path}: HTTP {response.status_code}")
        if response.status_code >= 400:
            raise BridgeRejected(f"{self.provider_name} {path}: HTTP {response.status_code}: {response.text[:200]}")

        try:
            body = response.json()
        except ValueError as e:
            raise BridgeUnavailable(f"{self.provider_name} {path}: invalid JSON response") from e
        if not isinstance(body, dict):
            raise BridgeUnavailable(f"{self.provider_name} {path}: unexpected response")
        return body

    @abstractmethod
    async def _create_order(
        self,
        amount: int,
        source_chain: Chain,
        target_chain: Chain,
        destination_wallet: str,
        owner: str,
    ) -> BridgeOrder:
        """Ask the provider for an unsigned order transaction"""

    @abstractmethod
    async def _order_status(self, order: BridgeOrder, signature: str, target_chain: Chain) -> OrderStatus:
        """Provider's view of the order after the source transaction confirmed"""

    async def bridge(
        self,
        amount: int,
        source_chain: Chain,
        target_chain: Chain,
        destination_wallet: str,
        *,
        signing_key: Keypair,
    ) -> BridgeResult:
        if destination_wallet.lower() not in self.allowed_destinations:
            raise BridgeRejected(f"Destination {destination_wallet} is not an operational wallet")
        if amount <= 0:
            raise BridgeRejected(f"Nothing to bridge (amount={amount})")

        owner = str(signing_key.pubkey())

        # Step 1: Create order
        logger.info(
            f"🔨 Creating {self.provider_name} order: {amount} lamports {source_chain.value} → {target_chain.value}"
        )
        order = await self._create_order(amount, source_chain, target_chain, destination_wallet, owner)
        logger.info(f"✅ Order created! Order ID: {order.order_id} (estimated output {order.estimated_output})")

        # Step 2: Re-stamp with a fresh blockhash and sign
        signed = await self._sign(order, signing_key)
        signature = signed.signature

        # Step 3: Broadcast
        try:
            await self.rpc.send_transaction(signed.raw)
        except BroadcastFailed as e:
            raise BridgeUnavailable(f"Bridge transaction was not accepted: {e}") from e
        except RpcUnavailable as e:
            raise BridgeFulfillmentTimeout(
                f"Bridge broadcast outcome unknown: {e}", tx_ref=signature, order_id=order.order_id
            ) from e
        logger.info(f"   View on explorer: {FundingConfig.explorer_tx_url(source_chain, signature)}")

        # Step 4: Confirm on the source chain
        status = await self.rpc.confirm_transaction(
            signature,
            timeout=self.confirmation_timeout,
            poll_interval=self.poll_interval,
            sleep=self._sleep,
        )
        if status is None:
            raise BridgeFulfillmentTimeout(
                f"Bridge transaction not confirmed within {self.confirmation_timeout}s",
                tx_ref=signature,
                order_id=order.order_id,
            )
        if status.get("err"):
            raise BridgeRejected(f"Bridge transaction {signature} failed on-chain: {status['err']}", tx_ref=signature)

        # Step 5: Wait for fulfilment on the target chain
        fulfilled = await self._wait_for_fulfillment(order, signature, target_chain)
        received = fulfilled.amount_received
        logger.info(
            f"🌉 Bridge fulfilled via {self.provider_name}! Order {order.order_id}: "
            f"{received} base units received on {target_chain.value}"
        )
        if fulfilled.target_tx_ref:
            logger.info(f"   Delivered: {FundingConfig.explorer_tx_url(target_chain, fulfilled.target_tx_ref)}")

        return BridgeResult(
            success=True,
            tx_ref=signature,
            provider=self.provider_name,
            amount_received=received,
            order_id=order.order_id,
            target_tx_ref=fulfilled.target_tx_ref,
        )

    async def _sign(self, order: BridgeOrder, signing_key: Keypair) -> SignedTransaction:
        """Sign the provider's transaction with a fresh blockhash"""
        # The provider's blockhash is usually stale by the time it reaches us
        blockhash, _ = await self.rpc.get_latest_blockhash()
        try:
            signed = sign_prebuilt_transaction(order.raw_transaction, signing_key, blockhash=blockhash)
        except ValueError as e:
            raise BridgeRejected(f"Could not sign {self.provider_name} transaction: {e}") from e
        signed_tx = SignedTransaction(raw=bytes(signed), signature=transaction_signature(signed))
        logger.info(f"✍️ Signed bridge transaction ({len(signed_tx.raw)} bytes)")
        return signed_tx

    async def _wait_for_fulfillment(self, order: BridgeOrder, signature: str, target_chain: Chain) -> OrderStatus:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.fulfillment_timeout
        last_label = None

        while True:
            try:
                status = await self._order_status(order, signature, target_chain)
            except (BridgeUnavailable, BridgeRejected) as e:
                # Orders are not always indexed right after the source transaction confirms
                logger.debug(f"{self.provider_name} order for {signature[:16]}... not readable yet: {e}")
                status = OrderStatus(state=ORDER_PENDING, label="unreadable")

            if status.label != last_label:
                logger.info(f"📊 {self.provider_name} order {order.order_id or signature[:16]}... status: {status.label}")
                last_label = status.label

            if status.state == ORDER_FULFILLED:
                if status.amount_received is None and order.estimated_output is not None:
                    status = replace(status, amount_received=order.estimated_output)
                if status.amount_received is None:
                    raise BridgeFulfillmentTimeout(
                        f"Order {order.order_id} fulfilled but the received amount is unknown",
                        tx_ref=signature,
                        order_id=order.order_id,
                    )
                return status
            if status.state == ORDER_CANCELLED:
                raise BridgeRejected(
                    f"{self.provider_name} order {order.order_id or signature} was cancelled ({status.label})",
                    tx_ref=signature,
                )

            if loop.time() >= deadline:
                logger.error(f"⏰ Order {order.order_id or signature} not fulfilled within {self.fulfillment_timeout}s")
                raise BridgeFulfillmentTimeout(
                    f"Bridge order not fulfilled within {self.fulfillment_timeout}s",
                    tx_ref=signature,
                    order_id=order.order_id,
                )
            await self._sleep(self.poll_interval)

    async def close(self):
        await self._client.aclose()


def parse_amount(value: Any) -> Optional[int]:
    """Integer base units from a provider's string/int amount, None when absent or unreadable"""
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None
