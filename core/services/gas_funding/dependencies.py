"""
Funding Dependencies
Process-wide clients, signing key and orchestrator, built once with an explicit start/close lifecycle
"""
from dataclasses import dataclass, field
from typing import Optional

import aiohttp
import base58
from solders.keypair import Keypair
from web3 import AsyncHTTPProvider, AsyncWeb3, Web3

from core.models.funding_models import Chain, to_base_units
from infrastructure.config.settings import AppSettings, WalletSettings
from .balance_reader import EvmBalanceReader, MultiChainBalanceReader, SolanaBalanceReader
from .config import FundingConfig
from .bridge_router import FallbackBridgeExecutor
from .debridge_client import DeBridgeExecutor
from .interfaces import BridgeExecutor
from .jupiter_client import JupiterApi, JupiterQuoteProvider, JupiterSwapExecutor
from .ledger import FundingLedger
from .lifi_client import LiFiExecutor
from .orchestrator import FundingOrchestrator, FundingPolicy, LockProbe
from .retry_policy import RetryPolicy
from .solana_rpc import SolanaRpcClient
from infrastructure.logging.logger import get_logger

logger = get_logger(__name__)


def load_keypair(secret: str) -> Keypair:
    """
    Solana keypair from a base58 64-byte secret

    Raises:
        ValueError: not base58, wrong length, or the public half does not match
    """
    try:
        raw = base58.b58decode(secret.strip())
    except ValueError as e:
        raise ValueError("GAS_WALLET_PRIVATE_KEY is not valid base58") from e
    if len(raw) != 64:
        raise ValueError(f"GAS_WALLET_PRIVATE_KEY must decode to 64 bytes, got {len(raw)}")

    keypair = Keypair.from_bytes(raw)
    if bytes(keypair.pubkey()) != raw[32:]:
        raise ValueError("GAS_WALLET_PRIVATE_KEY public half does not match its secret")
    return keypair


@dataclass(frozen=True)
class OperationalWallet:
    """
    The pipeline's own wallet: signs on Solana, receives gas on Base

    Read-only after initialization. The keypair is kept out of repr so it
    never ends up in logs.
    """
    wallet_id: str
    keypair: Keypair = field(repr=False)
    target_address: str

    @property
    def source_address(self) -> str:
        return str(self.keypair.pubkey())

    @classmethod
    def from_settings(cls, wallet_settings: WalletSettings) -> "OperationalWallet":
        if not wallet_settings.gas_wallet_private_key:
            raise ValueError("GAS_WALLET_PRIVATE_KEY is not configured")
        if not wallet_settings.base_gas_wallet_address:
            raise ValueError("BASE_GAS_WALLET_ADDRESS is not configured")
        keypair = load_keypair(wallet_settings.gas_wallet_private_key)
        return cls(
            wallet_id=wallet_settings.gas_wallet_id,
            keypair=keypair,
            target_address=Web3.to_checksum_address(wallet_settings.base_gas_wallet_address),
        )


def build_policy(app_settings: AppSettings, wallet: OperationalWallet) -> FundingPolicy:
    """FundingPolicy from settings; the only place defaults enter the pipeline"""
    funding = app_settings.funding
    return FundingPolicy(
        source_chain=Chain.SOLANA,
        target_chain=Chain.BASE,
        stable_token=FundingConfig.stable_token(funding.stable_token),
        source_native_token=FundingConfig.SOL,
        target_native_token=FundingConfig.ETH_BASE,
        threshold=to_base_units(funding.gas_threshold_eth, FundingConfig.ETH_BASE.decimals),
        top_up_amount=funding.top_up_amount_usd,
        slippage_bps=funding.slippage_bps,
        max_price_impact_pct=funding.max_price_impact_pct,
        destination_address=wallet.target_address,
    )


class FundingDependencies:
    """Owns the HTTP clients, web3 provider, operational wallet and orchestrator"""

    def __init__(self, app_settings: AppSettings, lock_probe: Optional[LockProbe] = None):
        self.settings = app_settings
        self.lock_probe = lock_probe
        self.wallet = OperationalWallet.from_settings(app_settings.wallet)
        self.ledger = FundingLedger()

        self.rpc: Optional[SolanaRpcClient] = None
        self.w3: Optional[AsyncWeb3] = None
        self.jupiter: Optional[JupiterApi] = None
        self.bridge_executor: Optional[FallbackBridgeExecutor] = None
        self._orchestrator: Optional[FundingOrchestrator] = None

    @property
    def started(self) -> bool:
        return self._orchestrator is not None

    @property
    def orchestrator(self) -> FundingOrchestrator:
        if self._orchestrator is None:
            raise RuntimeError("FundingDependencies.start() has not been called")
        return self._orchestrator

    async def start(self) -> "FundingDependencies":
        """Create the network clients and wire the orchestrator"""
        if self.started:
            return self

        chains = self.settings.chains
        providers = self.settings.providers
        funding = self.settings.funding

        logger.info(f"🚀 Starting gas funding for {self.wallet.wallet_id}")
        logger.info(f"   Solana wallet: {self.wallet.source_address}")
        logger.info(f"   Base wallet: {self.wallet.target_address}")

        self.rpc = SolanaRpcClient(chains.solana_rpc_url, timeout=chains.rpc_timeout_seconds)
        rpc_timeout = aiohttp.ClientTimeout(total=chains.rpc_timeout_seconds)
        self.w3 = AsyncWeb3(AsyncHTTPProvider(chains.base_rpc_url, request_kwargs={"timeout": rpc_timeout}))
        balance_reader = MultiChainBalanceReader({
            Chain.SOLANA: SolanaBalanceReader(self.rpc),
            Chain.BASE: EvmBalanceReader(self.w3, timeout=chains.rpc_timeout_seconds),
        })

        self.jupiter = JupiterApi(
            providers.jupiter_api_url,
            timeout=providers.http_timeout_seconds,
            api_key=providers.jupiter_api_key,
        )
        quote_provider = JupiterQuoteProvider(self.jupiter, quote_ttl_seconds=providers.quote_ttl_seconds)
        swap_executor = JupiterSwapExecutor(
            self.jupiter,
            self.rpc,
            confirmation_timeout=providers.confirmation_timeout_seconds,
            poll_interval=providers.confirmation_poll_seconds,
        )
        self.bridge_executor = FallbackBridgeExecutor(
            [self._build_bridge(name) for name in providers.bridge_provider_order]
        )
        logger.info(f"🌉 Bridge providers: {' → '.join(self.bridge_executor.provider_names)}")

        self._orchestrator = FundingOrchestrator(
            balance_reader=balance_reader,
            quote_provider=quote_provider,
            swap_executor=swap_executor,
            bridge_executor=self.bridge_executor,
            policy=build_policy(self.settings, self.wallet),
            retry_policy=RetryPolicy(funding.max_attempts, funding.backoff_base_seconds),
            ledger=self.ledger,
            lock_probe=self.lock_probe,
        )
        logger.info("✅ Gas funding dependencies ready")
        return self

    def _build_bridge(self, name: str) -> BridgeExecutor:
        providers = self.settings.providers
        common = dict(
            timeout=providers.http_timeout_seconds,
            fulfillment_timeout=providers.bridge_fulfillment_timeout_seconds,
            poll_interval=providers.bridge_poll_seconds,
            allowed_destinations=[self.wallet.target_address],
            confirmation_timeout=providers.confirmation_timeout_seconds,
        )
        if name == "debridge":
            return DeBridgeExecutor(providers.debridge_api_url, self.rpc, api_key=providers.debridge_api_key, **common)
        if name == "lifi":
            return LiFiExecutor(
                providers.lifi_api_url,
                self.rpc,
                api_key=providers.lifi_api_key,
                slippage_bps=self.settings.funding.slippage_bps,
                **common,
            )
        raise ValueError(f"Unknown bridge provider: {name}")

    async def close(self) -> None:
        """Close every client opened by start(); safe to call twice"""
        if self._orchestrator is not None:
            self._orchestrator.request_stop()
        if self.bridge_executor is not None:
            await self.bridge_executor.close()
        if self.jupiter is not None:
            await self.jupiter.close()
        if self.rpc is not None:
            await self.rpc.close()
        if self.w3 is not None:
            await self.w3.provider.disconnect()

        self.bridge_executor = None
        self.jupiter = None
        self.rpc = None
        self.w3 = None
        self._orchestrator = None
        logger.info("✅ Gas funding dependencies closed")

    async def __aenter__(self) -> "FundingDependencies":
        return await self.start()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


# Populated only by init_funding_dependencies()
_funding_dependencies: Optional[FundingDependencies] = None


async def init_funding_dependencies(app_settings: AppSettings) -> FundingDependencies:
    """Build and start the process-wide dependencies"""
    global _funding_dependencies
    if _funding_dependencies is None:
        _funding_dependencies = FundingDependencies(app_settings)
        await _funding_dependencies.start()
    return _funding_dependencies


def get_funding_dependencies() -> FundingDependencies:
    """Get the started FundingDependencies instance"""
    if _funding_dependencies is None:
        raise RuntimeError("Gas funding dependencies are not initialized")
    return _funding_dependencies


async def shutdown_funding_dependencies() -> None:
    global _funding_dependencies
    if _funding_dependencies is not None:
        await _funding_dependencies.close()
        _funding_dependencies = None
