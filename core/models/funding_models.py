"""
Funding Models
Data models for the gas funding pipeline (balances, quotes, swap/bridge results, cycle results)
"""
from datetime import datetime, timezone
from decimal import ROUND_DOWN, Decimal, localcontext
from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class Chain(str, Enum):
    """Chains the pipeline knows about"""
    SOLANA = "solana"
    BASE = "base"


class TransactionStatus(str, Enum):
    """Authoritative on-chain status of a submitted transaction"""
    LANDED = "landed"
    FAILED = "failed"
    DROPPED = "dropped"  # Can no longer land (blockhash expired, never seen)
    PENDING = "pending"


class FundingOutcome(str, Enum):
    """Terminal outcome of one funding cycle"""
    SKIPPED_SUFFICIENT = "skipped-sufficient"
    FUNDED = "funded"
    FAILED = "failed"


class FundingStage(str, Enum):
    """States of the funding state machine"""
    IDLE = "idle"
    CHECKING_BALANCE = "checking_balance"
    QUOTING = "quoting"
    SWAPPING = "swapping"
    BRIDGING = "bridging"
    VERIFYING = "verifying"
    DONE = "done"
    FAILED = "failed"


def to_base_units(amount: Union[Decimal, int, str], decimals: int) -> int:
    """
    Convert a human amount into the token's smallest unit, rounding down

    Floats are refused: they cannot represent most decimal amounts exactly.
    """
    if isinstance(amount, float):
        raise TypeError("amount must be Decimal, int or str, not float")
    with localcontext() as ctx:
        ctx.prec = 78  # Enough for uint256
        value = Decimal(amount)
        if value < 0:
            raise ValueError(f"amount must not be negative: {amount}")
        scaled = (value * (Decimal(10) ** decimals)).to_integral_value(rounding=ROUND_DOWN)
    return int(scaled)


def from_base_units(amount: int, decimals: int) -> Decimal:
    """Convert smallest-unit integer back to a Decimal (display only)"""
    with localcontext() as ctx:
        ctx.prec = 78
        return Decimal(amount) / (Decimal(10) ** decimals)


class TokenInfo(BaseModel):
    """A token on a given chain"""
    model_config = ConfigDict(frozen=True)

    chain: Chain
    symbol: str
    address: str  # Mint on Solana, contract (or zero address for native) on EVM
    decimals: int
    is_native: bool = False


class WalletBalance(BaseModel):
    """Balance of one token for one wallet, in the token's smallest unit"""
    model_config = ConfigDict(frozen=True)

    chain: Chain
    token: str
    owner: str
    amount: int
    decimals: int

    def to_decimal(self) -> Decimal:
        return from_base_units(self.amount, self.decimals)


class ConversionQuote(BaseModel):
    """
    Quote from the liquidity aggregator

    Valid only until expires_at; an expired quote must be re-fetched before execution.
    """
    model_config = ConfigDict(frozen=True)

    input_token: TokenInfo
    output_token: TokenInfo
    input_amount: int
    expected_output_amount: int
    min_output_amount: int  # Output guaranteed by the slippage tolerance
    price_impact_pct: Decimal
    slippage_bps: int
    route: Dict[str, Any] = Field(default_factory=dict)  # Opaque provider payload
    quoted_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    expires_at: datetime

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or datetime.now(timezone.utc)) >= self.expires_at


class SwapResult(BaseModel):
    """Confirmed swap on the source chain"""
    model_config = ConfigDict(frozen=True)

    tx_ref: str
    output_amount: int  # Actually received, never the requested amount
    realized_price_impact_pct: Optional[Decimal] = None
    confirmed_via: str = "confirmation"  # or "balance_check" / "status_check"


class BridgeResult(BaseModel):
    """Outcome of a bridge transfer"""
    model_config = ConfigDict(frozen=True)

    success: bool
    tx_ref: str
    provider: str
    amount_received: Optional[int] = None  # Post-fee amount on the target chain
    order_id: Optional[str] = None
    target_tx_ref: Optional[str] = None  # Delivery transaction on the target chain, when reported


class StageAmounts(BaseModel):
    """Amounts observed at each stage of a cycle (smallest units)"""
    model_config = ConfigDict(frozen=True)

    balance_before: Optional[int] = None
    source_stable_balance: Optional[int] = None
    quote_input: Optional[int] = None
    quote_expected_output: Optional[int] = None
    swap_output: Optional[int] = None
    bridge_requested: Optional[int] = None
    bridge_received: Optional[int] = None
    balance_after: Optional[int] = None


class FundingCycleResult(BaseModel):
    """
    Result of one orchestrator invocation

    Written once when the cycle reaches a terminal state and never mutated afterwards.
    """
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    cycle_id: str
    wallet_id: str
    outcome: FundingOutcome
    threshold: int
    amounts: StageAmounts = Field(default_factory=StageAmounts)
    attempts: Dict[str, int] = Field(default_factory=dict)
    failed_stage: Optional[FundingStage] = None
    error: Optional[Exception] = None
    swap_tx: Optional[str] = None
    bridge_tx: Optional[str] = None
    bridge_provider: Optional[str] = None
    started_at: datetime
    finished_at: datetime

    @property
    def succeeded(self) -> bool:
        return self.outcome in (FundingOutcome.FUNDED, FundingOutcome.SKIPPED_SUFFICIENT)

    @property
    def error_type(self) -> Optional[str]:
        return type(self.error).__name__ if self.error is not None else None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-friendly dict for logs and exports"""
        return {
            'cycle_id': self.cycle_id,
            'wallet_id': self.wallet_id,
            'outcome': self.outcome.value,
            'threshold': self.threshold,
            'amounts': self.amounts.model_dump(),
            'attempts': dict(self.attempts),
            'failed_stage': self.failed_stage.value if self.failed_stage else None,
            'error_type': self.error_type,
            'error': str(self.error) if self.error is not None else None,
            'swap_tx': self.swap_tx,
            'bridge_tx': self.bridge_tx,
            'bridge_provider': self.bridge_provider,
            'started_at': self.started_at.isoformat(),
            'finished_at': self.finished_at.isoformat(),
        }
