"""
Bridge Router
Tries bridge providers in their configured order until one accepts the transfer
"""
from typing import List, Optional, Sequence

from solders.keypair import Keypair

from core.models.funding_models import BridgeResult, Chain
from .errors import BridgeRejected, BridgeUnavailable, FundingError
from .interfaces import BridgeExecutor
from infrastructure.logging.logger import get_logger

logger = get_logger(__name__)


class FallbackBridgeExecutor(BridgeExecutor):
    """
    Ordered provider fallback

    The next provider is tried only when the current one failed before
    broadcasting anything (its error carries no tx_ref). Once a bridge
    transaction is on-chain, its outcome is final for this attempt.
    When every provider fails, a transient failure wins over a refusal
    so the caller's retry policy gets another go.
    """

    def __init__(self, executors: Sequence[BridgeExecutor]):
        if not executors:
            raise ValueError("FallbackBridgeExecutor needs at least one bridge provider")
        self.executors: List[BridgeExecutor] = list(executors)

    @property
    def provider_names(self) -> List[str]:
        return [getattr(executor, "provider_name", type(executor).__name__) for executor in self.executors]

    async def bridge(
        self,
        amount: int,
        source_chain: Chain,
        target_chain: Chain,
        destination_wallet: str,
        *,
        signing_key: Keypair,
    ) -> BridgeResult:
        unavailable: Optional[BridgeUnavailable] = None
        last_error: Optional[FundingError] = None

        for name, executor in zip(self.provider_names, self.executors):
            try:
                return await executor.bridge(
                    amount,
                    source_chain,
                    target_chain,
                    destination_wallet,
                    signing_key=signing_key,
                )
            except (BridgeUnavailable, BridgeRejected) as e:
                if e.tx_ref is not None:
                    raise
                logger.warning(f"⚠️ Bridge provider {name} failed, trying next: {type(e).__name__}: {e}")
                last_error = e
                if isinstance(e, BridgeUnavailable):
                    unavailable = e

        logger.error(f"❌ All bridge providers failed: {', '.join(self.provider_names)}")
        raise unavailable or last_error

    async def close(self):
        for executor in self.executors:
            close = getattr(executor, "close", None)
            if close is not None:
                await close()
