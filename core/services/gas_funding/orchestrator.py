"""
Funding Orchestrator - Main state machine for stable-token → native gas top-ups
CheckingBalance → Quoting → Swapping → Bridging → Verifying, one terminal result per cycle
"""
import asyncio
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from core.models.funding_models import (
    BridgeResult,
    Chain,
    ConversionQuote,
    FundingCycleResult,
    FundingOutcome,
    FundingStage,
    StageAmounts,
    SwapResult,
    TokenInfo,
    TransactionStatus,
    WalletBalance,
    from_base_units,
    to_base_units,
)
from .errors import (
    AmbiguousSwapState,
    BalanceStillLow,
    BridgeFulfillmentTimeout,
    ConfirmationTimeout,
    CycleCancelled,
    FundingError,
    InsufficientSourceBalance,
    PriceImpactTooHigh,
    QuoteExpired,
    RpcUnavailable,
    SwapDropped,
    UnexpectedFundingError,
)
from .interfaces import BalanceReader, BridgeExecutor, QuoteProvider, SwapExecutor
from .ledger import FundingLedger
from .retry_policy import RetryPolicy
from infrastructure.logging.logger import get_logger

if TYPE_CHECKING:
    from .dependencies import OperationalWallet

logger = get_logger(__name__)


class FundingPolicy(BaseModel):
    """What a cycle converts, where it sends it, and what it will accept"""
    model_config = ConfigDict(frozen=True)

    source_chain: Chain
    target_chain: Chain
    stable_token: TokenInfo
    source_native_token: TokenInfo
    target_native_token: TokenInfo
    threshold: int  # Target native base units
    top_up_amount: Decimal  # Stable-token units converted per cycle
    slippage_bps: int
    max_price_impact_pct: Decimal
    destination_address: str

    @field_validator("threshold")
    @classmethod
    def validate_threshold(cls, v):
        if v < 0:
            raise ValueError("threshold must not be negative")
        return v

    @field_validator("top_up_amount")
    @classmethod
    def validate_top_up(cls, v):
        if v <= 0:
            raise ValueError("top_up_amount must be positive")
        return v

    @field_validator("slippage_bps")
    @classmethod
    def validate_slippage(cls, v):
        if not 0 < v <= 10_000:
            raise ValueError("slippage_bps must be between 1 and 10000")
        return v

    @model_validator(mode="after")
    def validate_tokens(self):
        if self.stable_token.chain != self.source_chain or self.source_native_token.chain != self.source_chain:
            raise ValueError("stable and source native tokens must live on the source chain")
        if self.target_native_token.chain != self.target_chain:
            raise ValueError("target native token must live on the target chain")
        return self

    @property
    def top_up_base_units(self) -> int:
        return to_base_units(self.top_up_amount, self.stable_token.decimals)


class LockProbe:
    """Observer for wallet lock events; the default does nothing"""

    def contended(self, wallet_id: str) -> None:
        pass

    def acquired(self, wallet_id: str) -> None:
        pass

    def released(self, wallet_id: str) -> None:
        pass


class WalletLockRegistry:
    """One asyncio.Lock per wallet id; a cycle holds it from the balance check to its terminal state"""

    def __init__(self, probe: Optional[LockProbe] = None):
        self.probe = probe or LockProbe()
        self._locks: Dict[str, asyncio.Lock] = {}

    def is_locked(self, wallet_id: str) -> bool:
        lock = self._locks.get(wallet_id)
        return lock is not None and lock.locked()

    async def acquire(self, wallet_id: str) -> None:
        lock = self._locks.setdefault(wallet_id, asyncio.Lock())
        if lock.locked():
            logger.info(f"🔒 Funding cycle already in flight for {wallet_id}, waiting...")
            self.probe.contended(wallet_id)
        await lock.acquire()
        self.probe.acquired(wallet_id)

    def release(self, wallet_id: str) -> None:
        self.probe.released(wallet_id)
        self._locks[wallet_id].release()


class _CycleContext:
    """Mutable scratch state of one cycle; frozen into a FundingCycleResult at the end"""

    def __init__(self, wallet: "OperationalWallet"):
        self.cycle_id = uuid.uuid4().hex[:12]
        self.wallet = wallet
        self.stage = FundingStage.IDLE
        self.amounts: Dict[str, Any] = {}
        self.attempts: Dict[str, int] = {}
        self.swap_tx: Optional[str] = None
        self.bridge_tx: Optional[str] = None
        self.bridge_provider: Optional[str] = None
        self.started_at = datetime.now(timezone.utc)
        self.quote: Optional[ConversionQuote] = None
        self.quote_stale = False

    def enter(self, stage: FundingStage) -> None:
        logger.info(f"➡️ [{self.cycle_id}] {self.stage.value} → {stage.value}")
        self.stage = stage


class FundingOrchestrator:
    """Drives funding cycles for operational wallets"""

    def __init__(
        self,
        balance_reader: BalanceReader,
        quote_provider: QuoteProvider,
        swap_executor: SwapExecutor,
        bridge_executor: BridgeExecutor,
        policy: FundingPolicy,
        retry_policy: RetryPolicy,
        ledger: Optional[FundingLedger] = None,
        lock_probe: Optional[LockProbe] = None,
    ):
        self.balance_reader = balance_reader
        self.quote_provider = quote_provider
        self.swap_executor = swap_executor
        self.bridge_executor = bridge_executor
        self.policy = policy
        self.retry_policy = retry_policy
        self.ledger = ledger if ledger is not None else FundingLedger()
        self.locks = WalletLockRegistry(lock_probe)
        self._stop_requested = False

    @property
    def stopping(self) -> bool:
        return self._stop_requested

    def request_stop(self) -> None:
        """
        Stop at the next step boundary; a broadcast transaction is always followed to its end

        The flag stays set, so every later cycle is cancelled before it
        broadcasts anything, until resume() is called.
        """
        if not self._stop_requested:
            logger.info("🛑 Stop requested for funding orchestrator")
        self._stop_requested = True

    def resume(self) -> None:
        """Clear a previous request_stop() so new cycles run again"""
        if self._stop_requested:
            logger.info("▶️ Funding orchestrator resumed")
        self._stop_requested = False

    async def ensure_sufficient_gas(self, wallet: "OperationalWallet") -> bool:
        """
        Make sure wallet has enough target-chain gas

        Returns True right after one balance read when the wallet is already
        above the threshold; otherwise runs one funding cycle and returns
        whether the verified balance reached the threshold. Never raises for
        funding failures.
        """
        try:
            result = await self.run_cycle(wallet)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"❌ Unexpected error while funding {wallet.wallet_id}: {e}", exc_info=True)
            return False
        return result.succeeded

    async def run_cycle(self, wallet: "OperationalWallet") -> FundingCycleResult:
        """Run one funding cycle for wallet; waits while another cycle for it is in flight"""
        if wallet.target_address.lower() != self.policy.destination_address.lower():
            raise ValueError(f"{wallet.wallet_id} is not the configured operational wallet")

        await self.locks.acquire(wallet.wallet_id)
        ctx = _CycleContext(wallet)
        released_by_commit = False
        try:
            logger.info(f"⛽ [{ctx.cycle_id}] Funding cycle for {wallet.wallet_id} on {self.policy.target_chain.value}")
            try:
                balance = await self._check_balance(ctx)
                if balance.amount >= self.policy.threshold:
                    ctx.enter(FundingStage.DONE)
                    return self._finish(ctx, FundingOutcome.SKIPPED_SUFFICIENT)

                self._check_stop(ctx)
                await self._check_source_balance(ctx)

                self._check_stop(ctx)
                ctx.enter(FundingStage.QUOTING)
                await self.retry_policy.run(lambda attempt: self._quote_attempt(ctx, attempt), step="quote")

                self._check_stop(ctx)
            except FundingError as e:
                return self._fail(ctx, e)
            except asyncio.CancelledError:
                self._fail(ctx, CycleCancelled(f"Cancelled during {ctx.stage.value}"))
                raise

            # From here on transactions get broadcast; the rest of the cycle
            # runs to its terminal state even if the caller is cancelled
            commit = asyncio.ensure_future(self._commit(ctx))
            commit.add_done_callback(lambda _task: self.locks.release(wallet.wallet_id))
            released_by_commit = True
            return await asyncio.shield(commit)
        finally:
            if not released_by_commit:
                self.locks.release(wallet.wallet_id)

    def _check_stop(self, ctx: _CycleContext) -> None:
        if self._stop_requested:
            raise CycleCancelled(f"Stop requested after {ctx.stage.value}")

    async def _read_target_balance(self, ctx: _CycleContext, key: str, step: str) -> WalletBalance:
        async def read(attempt: int) -> WalletBalance:
            ctx.attempts[step] = attempt
            return await self.balance_reader.read(
                self.policy.target_chain, ctx.wallet.target_address, self.policy.target_native_token
            )

        balance = await self.retry_policy.run(read, step=step)
        ctx.amounts[key] = balance.amount
        return balance

    async def _check_balance(self, ctx: _CycleContext) -> WalletBalance:
        ctx.enter(FundingStage.CHECKING_BALANCE)
        balance = await self._read_target_balance(ctx, "balance_before", "balance_check")
        threshold = from_base_units(self.policy.threshold, self.policy.target_native_token.decimals)
        logger.info(
            f"💰 [{ctx.cycle_id}] {self.policy.target_native_token.symbol} balance: "
            f"{balance.to_decimal()} (threshold {threshold})"
        )
        return balance

    async def _check_source_balance(self, ctx: _CycleContext) -> None:
        stable = self.policy.stable_token

        async def read(attempt: int) -> WalletBalance:
            ctx.attempts["source_balance"] = attempt
            return await self.balance_reader.read(self.policy.source_chain, ctx.wallet.source_address, stable)

        balance = await self.retry_policy.run(read, step="source_balance")
        ctx.amounts["source_stable_balance"] = balance.amount
        if balance.amount < self.policy.top_up_base_units:
            raise InsufficientSourceBalance(
                f"{balance.to_decimal()} {stable.symbol} available, {self.policy.top_up_amount} needed"
            )

    async def _quote_attempt(self, ctx: _CycleContext, attempt: int) -> ConversionQuote:
        ctx.attempts["quote"] = attempt
        return await self._fetch_quote(ctx)

    async def _fetch_quote(self, ctx: _CycleContext) -> ConversionQuote:
        quote = await self.quote_provider.quote(
            self.policy.stable_token,
            self.policy.source_native_token,
            self.policy.top_up_amount,
            self.policy.slippage_bps,
        )
        if quote.price_impact_pct > self.policy.max_price_impact_pct:
            raise PriceImpactTooHigh(
                f"Price impact {quote.price_impact_pct}% exceeds ceiling {self.policy.max_price_impact_pct}%"
            )
        ctx.quote = quote
        ctx.quote_stale = False
        ctx.amounts["quote_input"] = quote.input_amount
        ctx.amounts["quote_expected_output"] = quote.expected_output_amount
        return quote

    async def _commit(self, ctx: _CycleContext) -> FundingCycleResult:
        """Swapping → Bridging → Verifying; always ends in a recorded result"""
        try:
            ctx.enter(FundingStage.SWAPPING)
            swap = await self.retry_policy.run(lambda attempt: self._swap_attempt(ctx, attempt), step="swap")
            ctx.swap_tx = swap.tx_ref
            ctx.amounts["swap_output"] = swap.output_amount
            logger.info(f"✅ [{ctx.cycle_id}] Swap {swap.tx_ref} → {swap.output_amount} (via {swap.confirmed_via})")

            ctx.enter(FundingStage.BRIDGING)
            bridge_timeout = None
            try:
                await self._bridge(ctx, swap)
            except BridgeFulfillmentTimeout as e:
                # Funds are in flight; the verified balance decides the outcome
                logger.warning(f"⏰ [{ctx.cycle_id}] Bridge fulfilment not observed: {e}")
                ctx.bridge_tx = e.tx_ref
                bridge_timeout = e

            ctx.enter(FundingStage.VERIFYING)
            balance = await self._read_target_balance(ctx, "balance_after", "verify")
            if balance.amount >= self.policy.threshold:
                ctx.enter(FundingStage.DONE)
                return self._finish(ctx, FundingOutcome.FUNDED)

            shortfall = BalanceStillLow(
                f"Balance {balance.to_decimal()} still below threshold "
                f"{from_base_units(self.policy.threshold, self.policy.target_native_token.decimals)} after bridging"
            )
            return self._fail(ctx, bridge_timeout or shortfall)
        except FundingError as e:
            return self._fail(ctx, e)
        except Exception as e:
            logger.error(f"❌ [{ctx.cycle_id}] Unexpected error during {ctx.stage.value}", exc_info=True)
            error = UnexpectedFundingError(f"{type(e).__name__}: {e}")
            error.__cause__ = e
            return self._fail(ctx, error)

    async def _swap_attempt(self, ctx: _CycleContext, attempt: int) -> SwapResult:
        ctx.attempts["swap"] = attempt
        if ctx.quote is None or ctx.quote_stale or ctx.quote.is_expired():
            logger.info(f"🔄 [{ctx.cycle_id}] Quote expired, refreshing before swap")
            await self._fetch_quote(ctx)
        quote = ctx.quote

        baseline = await self._read_source_output(ctx)
        try:
            return await self.swap_executor.execute(quote, ctx.wallet.keypair)
        except QuoteExpired:
            ctx.quote_stale = True
            raise
        except ConfirmationTimeout as timeout:
            ctx.swap_tx = timeout.tx_ref
            return await self._reconcile_swap(ctx, quote, baseline, timeout)

    async def _read_source_output(self, ctx: _CycleContext) -> Optional[WalletBalance]:
        try:
            return await self.balance_reader.read(
                self.policy.source_chain, ctx.wallet.source_address, self.policy.source_native_token
            )
        except RpcUnavailable as e:
            logger.warning(f"⚠️ [{ctx.cycle_id}] Could not read source balance: {e}")
            return None

    async def _reconcile_swap(
        self,
        ctx: _CycleContext,
        quote: ConversionQuote,
        baseline: Optional[WalletBalance],
        timeout: ConfirmationTimeout,
    ) -> SwapResult:
        """
        Decide what a timed-out swap did without re-broadcasting it

        The source balance is checked first; if that is inconclusive the
        executor resolves the transaction status. Only a transaction proven
        unable to land is retried.
        """
        logger.warning(f"⏰ [{ctx.cycle_id}] Swap {timeout.tx_ref} timed out, re-checking chain state")

        after = await self._read_source_output(ctx)
        if baseline is not None and after is not None:
            delta = after.amount - baseline.amount
            if delta >= quote.min_output_amount:
                logger.info(f"✅ [{ctx.cycle_id}] Balance shows the swap landed (+{delta})")
                return SwapResult(
                    tx_ref=timeout.tx_ref,
                    output_amount=delta,
                    realized_price_impact_pct=quote.price_impact_pct,
                    confirmed_via="balance_check",
                )

        try:
            status = await self.swap_executor.resolve_status(timeout)
        except FundingError as e:
            raise AmbiguousSwapState(f"Could not resolve swap {timeout.tx_ref}: {e}") from e

        logger.info(f"🔎 [{ctx.cycle_id}] Swap {timeout.tx_ref} resolved as {status.value}")
        if status is TransactionStatus.LANDED:
            return SwapResult(
                tx_ref=timeout.tx_ref,
                output_amount=quote.min_output_amount,
                realized_price_impact_pct=quote.price_impact_pct,
                confirmed_via="status_check",
            )
        if status in (TransactionStatus.FAILED, TransactionStatus.DROPPED):
            ctx.quote_stale = True
            raise SwapDropped(f"Swap {timeout.tx_ref} {status.value}, input funds untouched")
        raise AmbiguousSwapState(f"Swap {timeout.tx_ref} still pending after re-check; not resubmitting")

    async def _bridge(self, ctx: _CycleContext, swap: SwapResult) -> BridgeResult:
        amount = swap.output_amount
        ctx.amounts["bridge_requested"] = amount

        async def attempt_bridge(attempt: int) -> BridgeResult:
            ctx.attempts["bridge"] = attempt
            return await self.bridge_executor.bridge(
                amount,
                self.policy.source_chain,
                self.policy.target_chain,
                self.policy.destination_address,
                signing_key=ctx.wallet.keypair,
            )

        result = await self.retry_policy.run(attempt_bridge, step="bridge")
        ctx.bridge_tx = result.tx_ref
        ctx.bridge_provider = result.provider
        ctx.amounts["bridge_received"] = result.amount_received
        logger.info(f"🌉 [{ctx.cycle_id}] Bridged via {result.provider}: {result.amount_received} received")
        return result

    def _fail(self, ctx: _CycleContext, error: FundingError) -> FundingCycleResult:
        failed_stage = ctx.stage
        ctx.enter(FundingStage.FAILED)
        return self._finish(ctx, FundingOutcome.FAILED, error=error, failed_stage=failed_stage)

    def _finish(
        self,
        ctx: _CycleContext,
        outcome: FundingOutcome,
        error: Optional[FundingError] = None,
        failed_stage: Optional[FundingStage] = None,
    ) -> FundingCycleResult:
        result = FundingCycleResult(
            cycle_id=ctx.cycle_id,
            wallet_id=ctx.wallet.wallet_id,
            outcome=outcome,
            threshold=self.policy.threshold,
            amounts=StageAmounts(**ctx.amounts),
            attempts=dict(ctx.attempts),
            failed_stage=failed_stage,
            error=error,
            swap_tx=ctx.swap_tx,
            bridge_tx=ctx.bridge_tx,
            bridge_provider=ctx.bridge_provider,
            started_at=ctx.started_at,
            finished_at=datetime.now(timezone.utc),
        )
        self.ledger.append(result)

        if outcome is FundingOutcome.FAILED:
            logger.error(f"❌ [{ctx.cycle_id}] Funding failed at {failed_stage.value}: {result.error_type}: {error}")
        else:
            logger.info(f"🏁 [{ctx.cycle_id}] Funding cycle finished: {outcome.value}")
        logger.info(f"📋 [{ctx.cycle_id}] {result.to_dict()}")
        return result
