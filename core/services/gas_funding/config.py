"""
Gas Funding Configuration
Static chain and token constants for the Solana → Base funding route
"""
from typing import Dict

from core.models.funding_models import Chain, TokenInfo


class FundingConfig:
    """Chain ids, token addresses and provider constants"""

    # deBridge chain ids
    SOLANA_CHAIN_ID = "7565164"
    BASE_CHAIN_ID = "8453"

    # LI.FI chain ids
    LIFI_SOLANA_CHAIN_ID = "1151111081099710"
    LIFI_BASE_CHAIN_ID = "8453"

    # Solana
    SOL_MINT = "So11111111111111111111111111111111111111112"  # Wrapped SOL (Jupiter format)
    SOL_NATIVE_ADDRESS = "11111111111111111111111111111111"  # Native SOL (bridge format)
    USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
    USDT_MINT = "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"

    # Base
    ETH_NATIVE_ADDRESS = "0x0000000000000000000000000000000000000000"

    SOLANA_EXPLORER_TX = "https://solscan.io/tx/"
    BASE_EXPLORER_TX = "https://basescan.org/tx/"

    SOL = TokenInfo(chain=Chain.SOLANA, symbol="SOL", address=SOL_MINT, decimals=9, is_native=True)
    USDC = TokenInfo(chain=Chain.SOLANA, symbol="USDC", address=USDC_MINT, decimals=6)
    USDT = TokenInfo(chain=Chain.SOLANA, symbol="USDT", address=USDT_MINT, decimals=6)
    ETH_BASE = TokenInfo(chain=Chain.BASE, symbol="ETH", address=ETH_NATIVE_ADDRESS, decimals=18, is_native=True)

    STABLE_TOKENS: Dict[str, TokenInfo] = {
        "USDC": USDC,
        "USDT": USDT,
    }

    @classmethod
    def explorer_tx_url(cls, chain: Chain, tx_ref: str) -> str:
        return {Chain.SOLANA: cls.SOLANA_EXPLORER_TX, Chain.BASE: cls.BASE_EXPLORER_TX}[chain] + tx_ref

    @classmethod
    def stable_token(cls, symbol: str) -> TokenInfo:
        """Look up a supported stable-token by symbol"""
        try:
            return cls.STABLE_TOKENS[symbol.upper()]
        except KeyError:
            raise ValueError(f"Unsupported stable token: {symbol}") from None

    @classmethod
    def debridge_chain_id(cls, chain: Chain) -> str:
        return {Chain.SOLANA: cls.SOLANA_CHAIN_ID, Chain.BASE: cls.BASE_CHAIN_ID}[chain]

    @classmethod
    def lifi_chain_id(cls, chain: Chain) -> str:
        return {Chain.SOLANA: cls.LIFI_SOLANA_CHAIN_ID, Chain.BASE: cls.LIFI_BASE_CHAIN_ID}[chain]

    @classmethod
    def native_token_address(cls, chain: Chain) -> str:
        return {Chain.SOLANA: cls.SOL_NATIVE_ADDRESS, Chain.BASE: cls.ETH_NATIVE_ADDRESS}[chain]
