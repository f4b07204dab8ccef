"""
Provider interfaces for the gas funding pipeline
Concrete clients (Jupiter, deBridge, RPC readers) implement these so they can be swapped or stubbed.
"""
from abc import ABC, abstractmethod
from decimal import Decimal

from solders.keypair import Keypair

from core.models.funding_models import (
    BridgeResult,
    Chain,
    ConversionQuote,
    SwapResult,
    TokenInfo,
    TransactionStatus,
    WalletBalance,
)
from .errors import ConfirmationTimeout


class BalanceReader(ABC):
    """Pure balance reads; raises RpcUnavailable on network failure"""

    @abstractmethod
    async def read(self, chain: Chain, wallet_address: str, token: TokenInfo) -> WalletBalance:
        """Balance of token for wallet_address; zero if the token account does not exist"""


class QuoteProvider(ABC):
    """Liquidity aggregator quotes"""

    @abstractmethod
    async def quote(
        self,
        input_token: TokenInfo,
        output_token: TokenInfo,
        input_amount: Decimal,
        slippage_bps: int,
    ) -> ConversionQuote:
        """Quote for converting input_amount (human units) of input_token"""


class SwapExecutor(ABC):
    """Builds, signs, broadcasts and confirms a quoted swap"""

    @abstractmethod
    async def execute(self, quote: ConversionQuote, signing_key: Keypair) -> SwapResult:
        """Execute quote; irreversibly spends the input once broadcast succeeds"""

    @abstractmethod
    async def resolve_status(self, timeout: ConfirmationTimeout) -> TransactionStatus:
        """Authoritative status of a transaction whose confirmation timed out"""


class BridgeExecutor(ABC):
    """Moves native value from the source chain to the target chain"""

    @abstractmethod
    async def bridge(
        self,
        amount: int,
        source_chain: Chain,
        target_chain: Chain,
        destination_wallet: str,
        *,
        signing_key: Keypair,
    ) -> BridgeResult:
        """Bridge amount (source base units); BridgeResult.amount_received is post-fee"""
