"""
Balance Readers
Native and token balances on Solana (JSON-RPC) and EVM chains (web3)
"""
import asyncio
from typing import Dict

import aiohttp
from web3 import AsyncWeb3, Web3
from web3.exceptions import Web3Exception

from core.models.funding_models import Chain, TokenInfo, WalletBalance
from .errors import RpcUnavailable
from .interfaces import BalanceReader
from .solana_rpc import SolanaRpcClient
from infrastructure.logging.logger import get_logger

logger = get_logger(__name__)

# ERC20 balance ABI
ERC20_BALANCE_ABI = [
    {
        "constant": True,
        "inputs": [{"name": "account", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function"
    }
]


class SolanaBalanceReader(BalanceReader):
    """SOL and SPL token balances"""

    def __init__(self, rpc: SolanaRpcClient):
        self.rpc = rpc

    async def read(self, chain: Chain, wallet_address: str, token: TokenInfo) -> WalletBalance:
        if token.is_native:
            amount = await self.rpc.get_balance(wallet_address)
        else:
            amount = await self.rpc.get_token_balance(wallet_address, token.address)

        balance = WalletBalance(
            chain=chain,
            token=token.address,
            owner=wallet_address,
            amount=amount,
            decimals=token.decimals,
        )
        logger.debug(f"💰 {token.symbol} balance for {wallet_address[:8]}...: {balance.to_decimal()}")
        return balance


class EvmBalanceReader(BalanceReader):
    """Native and ERC20 balances through an AsyncWeb3 provider"""

    def __init__(self, w3: AsyncWeb3, timeout: float):
        self.w3 = w3
        self.timeout = timeout

    async def read(self, chain: Chain, wallet_address: str, token: TokenInfo) -> WalletBalance:
        owner = Web3.to_checksum_address(wallet_address)
        try:
            if token.is_native:
                call = self.w3.eth.get_balance(owner)
            else:
                contract = self.w3.eth.contract(
                    address=Web3.to_checksum_address(token.address),
                    abi=ERC20_BALANCE_ABI,
                )
                call = contract.functions.balanceOf(owner).call()
            amount = await asyncio.wait_for(call, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise RpcUnavailable(f"{chain.value} balance read timed out after {self.timeout}s") from e
        except (Web3Exception, aiohttp.ClientError, OSError) as e:
            raise RpcUnavailable(f"{chain.value} balance read failed: {type(e).__name__}: {e}") from e

        balance = WalletBalance(
            chain=chain,
            token=token.address,
            owner=wallet_address,
            amount=int(amount),
            decimals=token.decimals,
        )
        logger.debug(f"🪙 {token.symbol} balance for {wallet_address[:10]}...: {balance.to_decimal()}")
        return balance


class MultiChainBalanceReader(BalanceReader):
    """Dispatches each read to the reader registered for the chain"""

    def __init__(self, readers: Dict[Chain, BalanceReader]):
        self.readers = dict(readers)

    async def read(self, chain: Chain, wallet_address: str, token: TokenInfo) -> WalletBalance:
        reader = self.readers.get(chain)
        if reader is None:
            raise ValueError(f"No balance reader registered for chain {chain.value}")
        return await reader.read(chain, wallet_address, token)
