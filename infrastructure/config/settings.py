"""
Gas Funding Settings
Centralized configuration management using Pydantic
"""
from decimal import Decimal
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load env files BEFORE the settings classes are instantiated below
load_dotenv('.env.local')  # Development env first
load_dotenv('.env', override=False)  # Fallback env (no override)

BRIDGE_PROVIDERS = ("debridge", "lifi")


class ChainSettings(BaseSettings):
    """Chain RPC endpoints"""

    model_config = SettingsConfigDict(case_sensitive=False, extra="ignore")

    solana_rpc_url: str = "https://api.mainnet-beta.solana.com"
    base_rpc_url: str = "https://mainnet.base.org"
    rpc_timeout_seconds: float = 10.0


class ProviderSettings(BaseSettings):
    """Liquidity aggregator and bridge provider configuration"""

    model_config = SettingsConfigDict(case_sensitive=False, extra="ignore")

    jupiter_api_url: str = "https://lite-api.jup.ag/swap/v1"
    jupiter_api_key: str = ""
    debridge_api_url: str = "https://api.dln.trade/v1.0"
    debridge_api_key: str = ""
    lifi_api_url: str = "https://li.quest/v1"
    lifi_api_key: str = ""
    bridge_providers: str = "debridge,lifi"  # Tried in this order

    http_timeout_seconds: float = 15.0
    quote_ttl_seconds: float = 30.0  # Jupiter quotes go stale within a few slots
    confirmation_timeout_seconds: float = 60.0
    confirmation_poll_seconds: float = 2.0
    bridge_fulfillment_timeout_seconds: float = 300.0
    bridge_poll_seconds: float = 10.0

    @field_validator("bridge_providers")
    @classmethod
    def validate_bridge_providers(cls, v):
        names = list(dict.fromkeys(name.strip().lower() for name in v.split(",") if name.strip()))
        if not names:
            raise ValueError("at least one bridge provider is required")
        unknown = set(names) - set(BRIDGE_PROVIDERS)
        if unknown:
            raise ValueError(f"unknown bridge providers: {sorted(unknown)}")
        return ",".join(names)

    @property
    def bridge_provider_order(self) -> List[str]:
        return self.bridge_providers.split(",")


class WalletSettings(BaseSettings):
    """Operational wallet credentials"""

    model_config = SettingsConfigDict(case_sensitive=False, extra="ignore")

    gas_wallet_id: str = "base-gas-wallet"
    gas_wallet_private_key: Optional[str] = None  # base58 Solana secret key
    base_gas_wallet_address: Optional[str] = None


class FundingSettings(BaseSettings):
    """Gas funding policy"""

    model_config = SettingsConfigDict(case_sensitive=False, extra="ignore")

    gas_threshold_eth: Decimal = Decimal("0.003")
    top_up_amount_usd: Decimal = Decimal("10")  # Fixed per-cycle top-up, not sized to the shortfall
    stable_token: str = "USDC"
    slippage_bps: int = 100
    max_price_impact_pct: Decimal = Decimal("1.0")
    max_attempts: int = 3
    backoff_base_seconds: float = 1.0
    monitor_enabled: bool = True
    monitor_interval_seconds: int = 300

    @field_validator("slippage_bps")
    @classmethod
    def validate_slippage(cls, v):
        """Slippage must fit in basis points"""
        if not 0 < v <= 10_000:
            raise ValueError("slippage_bps must be between 1 and 10000")
        return v

    @field_validator("max_attempts")
    @classmethod
    def validate_max_attempts(cls, v):
        if v < 1:
            raise ValueError("max_attempts must be at least 1")
        return v


class LoggingSettings(BaseSettings):
    """Logging configuration"""

    model_config = SettingsConfigDict(case_sensitive=False, extra="ignore")

    log_level: str = "INFO"
    log_format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class AppSettings(BaseSettings):
    """Main application settings"""

    model_config = SettingsConfigDict(
        env_file=".env.local",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    environment: str = "development"

    # Application
    name: str = "Gas Funding Worker"
    version: str = "0.1.0"

    # Sub-settings
    chains: ChainSettings = Field(default_factory=ChainSettings)
    providers: ProviderSettings = Field(default_factory=ProviderSettings)
    wallet: WalletSettings = Field(default_factory=WalletSettings)
    funding: FundingSettings = Field(default_factory=FundingSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


# Global settings instance
settings = AppSettings()
