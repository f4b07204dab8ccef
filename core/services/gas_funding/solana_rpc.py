"""
Solana RPC Client
Async JSON-RPC over HTTP for balances, blockhashes, broadcast and confirmation,
plus local signing of the prebuilt transactions handed back by Jupiter and deBridge.
Every request carries an explicit timeout.
"""
import asyncio
import base64
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, Type

import httpx
from solana.rpc.commitment import Confirmed, Finalized
from solders.errors import BincodeError, SignerError
from solders.hash import Hash as Blockhash
from solders.hash import ParseHashError
from solders.keypair import Keypair
from solders.message import Message, MessageV0
from solders.transaction import VersionedTransaction

from .errors import BroadcastFailed, FundingError, RpcUnavailable
from infrastructure.logging.logger import get_logger

logger = get_logger(__name__)

CONFIRMED_STATUSES = (Confirmed, Finalized)

# Shapes a malformed RPC result fails with while being read
MALFORMED_RESULT_ERRORS = (KeyError, IndexError, TypeError, ValueError, AttributeError)


def sign_prebuilt_transaction(
    raw: bytes,
    keypair: Keypair,
    blockhash: Optional[str] = None,
) -> VersionedTransaction:
    """
    Deserialize a provider-built transaction and sign it as fee payer

    When blockhash is given the message is rebuilt with it before signing,
    keeping header, account keys, instructions and lookups untouched.

    Raises:
        ValueError: undecodable bytes, keypair is not the fee payer, or the
            transaction needs other signers too
    """
    try:
        transaction = VersionedTransaction.from_bytes(raw)
    except (BincodeError, ValueError) as e:
        raise ValueError(f"transaction could not be decoded: {e}") from e

    message = transaction.message
    signers = message.header.num_required_signatures
    if signers != 1:
        raise ValueError(f"transaction requires {signers} signers, only the fee payer can sign")
    if not message.account_keys or message.account_keys[0] != keypair.pubkey():
        raise ValueError(f"keypair {keypair.pubkey()} is not the fee payer")

    if blockhash is not None:
        try:
            fresh_blockhash = Blockhash.from_string(blockhash)
        except (ParseHashError, ValueError) as e:
            raise ValueError(f"invalid blockhash {blockhash}") from e
        logger.info(f"🔧 Replacing blockhash {str(message.recent_blockhash)[:16]}... with {blockhash[:16]}...")
        message = _with_blockhash(message, fresh_blockhash)

    try:
        return VersionedTransaction(message, [keypair])
    except SignerError as e:
        raise ValueError(f"transaction could not be signed: {e}") from e


def _with_blockhash(message, blockhash: Blockhash):
    if isinstance(message, MessageV0):
        return MessageV0(
            header=message.header,
            account_keys=message.account_keys,
            recent_blockhash=blockhash,
            instructions=message.instructions,
            address_table_lookups=message.address_table_lookups,
        )
    header = message.header
    return Message.new_with_compiled_instructions(
        header.num_required_signatures,
        header.num_readonly_signed_accounts,
        header.num_readonly_unsigned_accounts,
        message.account_keys,
        blockhash,
        message.instructions,
    )


def transaction_signature(transaction: VersionedTransaction) -> str:
    """Base58 fee payer signature, the transaction id"""
    return str(transaction.signatures[0])


class SolanaRpcClient:
    """Thin async wrapper around the Solana JSON-RPC methods the pipeline needs"""

    def __init__(self, rpc_url: str, timeout: float, client: Optional[httpx.AsyncClient] = None):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._request_id = 0
        logger.info(f"🔧 SolanaRpcClient initialized with RPC: {rpc_url[:60]}...")

    async def _call(
        self,
        method: str,
        params: List[Any],
        error_cls: Type[FundingError] = RpcUnavailable,
    ) -> Any:
        """
        Issue one JSON-RPC call

        Raises:
            RpcUnavailable: transport error, timeout, 429, 5xx or a body that is not a JSON-RPC response
            error_cls: JSON-RPC error object in the response
        """
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params,
        }

        try:
            response = await self._client.post(self.rpc_url, json=payload, timeout=self.timeout)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as e:
            raise RpcUnavailable(f"{method}: HTTP {e.response.status_code}") from e
        except (httpx.TransportError, ValueError) as e:
            # TransportError covers timeouts; ValueError covers a non-JSON body
            raise RpcUnavailable(f"{method}: {type(e).__name__}: {e}") from e

        if not isinstance(body, dict):
            raise RpcUnavailable(f"{method}: unexpected response {str(body)[:100]}")

        if body.get("error"):
            error = body["error"]
            message = error.get("message", error) if isinstance(error, dict) else error
            raise error_cls(f"{method}: RPC error: {message}")

        return body.get("result")

    async def get_balance(self, address: str) -> int:
        """Native SOL balance in lamports"""
        result = await self._call("getBalance", [address, {"commitment": Confirmed}])
        try:
            return int(result["value"])
        except MALFORMED_RESULT_ERRORS as e:
            raise RpcUnavailable(f"getBalance: malformed result {result!r}") from e

    async def get_token_balance(self, owner: str, mint: str) -> int:
        """
        SPL token balance in base units, summed over the owner's accounts for mint

        Returns 0 when the owner has no token account for the mint yet.
        """
        result = await self._call(
            "getTokenAccountsByOwner",
            [owner, {"mint": mint}, {"encoding": "jsonParsed", "commitment": Confirmed}],
        )
        try:
            total = 0
            for account in result["value"] or []:
                token_amount = account["account"]["data"]["parsed"]["info"]["tokenAmount"]
                total += int(token_amount["amount"])
            return total
        except MALFORMED_RESULT_ERRORS as e:
            raise RpcUnavailable("getTokenAccountsByOwner: malformed result") from e

    async def get_latest_blockhash(self) -> Tuple[str, int]:
        """Recent blockhash and the last block height at which it is valid"""
        result = await self._call("getLatestBlockhash", [{"commitment": Confirmed}])
        try:
            value = result["value"]
            blockhash, last_valid = value["blockhash"], int(value["lastValidBlockHeight"])
        except MALFORMED_RESULT_ERRORS as e:
            raise RpcUnavailable(f"getLatestBlockhash: malformed result {result!r}") from e
        logger.debug(f"🔗 Got blockhash: {blockhash[:16]}...")
        return blockhash, last_valid

    async def get_block_height(self) -> int:
        result = await self._call("getBlockHeight", [{"commitment": Confirmed}])
        try:
            return int(result)
        except MALFORMED_RESULT_ERRORS as e:
            raise RpcUnavailable(f"getBlockHeight: malformed result {result!r}") from e

    async def send_transaction(self, signed_transaction: bytes) -> str:
        """
        Broadcast a signed transaction

        Raises:
            BroadcastFailed: the node rejected the transaction (it was not submitted)
            RpcUnavailable: transport failure; the transaction MAY have been submitted
        """
        tx_base64 = base64.b64encode(signed_transaction).decode("utf-8")
        signature = await self._call(
            "sendTransaction",
            [
                tx_base64,
                {
                    "encoding": "base64",
                    "skipPreflight": False,
                    "preflightCommitment": Confirmed,
                    "maxRetries": 3,
                },
            ],
            error_cls=BroadcastFailed,
        )
        if not signature:
            raise BroadcastFailed("sendTransaction returned no signature")
        logger.info(f"📡 Transaction sent! Signature: {signature}")
        return signature

    async def get_signature_status(self, signature: str) -> Optional[Dict[str, Any]]:
        """
        Status dict for signature, or None if the cluster has never seen it

        Raises:
            RpcUnavailable: the node answered without a readable status list
        """
        result = await self._call(
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": True}],
        )
        try:
            status = result["value"][0]
        except MALFORMED_RESULT_ERRORS as e:
            raise RpcUnavailable(f"getSignatureStatuses: malformed result {result!r}") from e
        if status is not None and not isinstance(status, dict):
            raise RpcUnavailable(f"getSignatureStatuses: malformed status {status!r}")
        return status

    async def confirm_transaction(
        self,
        signature: str,
        timeout: float,
        poll_interval: float,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Wait for a signature to reach confirmed/finalized or fail on-chain

        Returns:
            The final status dict (check its 'err'), or None on timeout
        """
        sleep = sleep or asyncio.sleep
        logger.info(f"⏳ Waiting for confirmation of {signature[:16]}...")

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        last_status = None

        while loop.time() < deadline:
            try:
                status = await self.get_signature_status(signature)
            except RpcUnavailable as e:
                logger.warning(f"⚠️ Status poll failed, will retry: {e}")
                status = None

            if status is not None:
                if status.get("confirmationStatus") != last_status:
                    last_status = status.get("confirmationStatus")
                    logger.info(f"   Status update: {last_status}")
                if status.get("err") or status.get("confirmationStatus") in CONFIRMED_STATUSES:
                    return status

            await sleep(poll_interval)

        logger.error(f"⏰ Confirmation timeout after {timeout}s for {signature}")
        return None

    async def get_lamport_delta(self, signature: str, account: str) -> Optional[int]:
        """
        Lamports credited to account by a confirmed transaction, fee excluded

        Returns None when the transaction or the account cannot be found.
        """
        result = await self._call(
            "getTransaction",
            [
                signature,
                {"encoding": "jsonParsed", "commitment": Confirmed, "maxSupportedTransactionVersion": 0},
            ],
        )
        if not result:
            return None

        try:
            meta = result["meta"]
            if not meta:
                return None
            keys = result["transaction"]["message"]["accountKeys"]
            pubkeys = [k["pubkey"] if isinstance(k, dict) else k for k in keys]
            if account not in pubkeys:
                return None

            index = pubkeys.index(account)
            delta = int(meta["postBalances"][index]) - int(meta["preBalances"][index])
            if index == 0:
                # Fee payer pays the fee out of the same balance
                delta += int(meta.get("fee", 0))
            return delta
        except MALFORMED_RESULT_ERRORS as e:
            raise RpcUnavailable("getTransaction: malformed result") from e

    async def close(self):
        await self._client.aclose()
