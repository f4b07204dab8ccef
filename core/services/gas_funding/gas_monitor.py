"""
Gas Monitor
Background loop that runs one funding cycle for the operational wallet per interval
"""
import asyncio
from typing import Optional

from core.models.funding_models import FundingCycleResult
from .dependencies import OperationalWallet
from .orchestrator import FundingOrchestrator
from infrastructure.logging.logger import get_logger

logger = get_logger(__name__)


class GasMonitor:
    """
    Scheduled gas top-ups

    stop() does not cancel a running cycle: it asks the orchestrator to stop
    at its next step boundary and waits, so a broadcast swap or bridge is
    always followed to its terminal state.
    """

    def __init__(self, orchestrator: FundingOrchestrator, wallet: OperationalWallet, interval_seconds: float = 300):
        self.orchestrator = orchestrator
        self.wallet = wallet
        self.interval_seconds = interval_seconds
        self.running = False
        self.monitor_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    async def start(self) -> None:
        """Start the monitor background task"""
        if self.running:
            logger.warning("⚠️ Gas monitor already running")
            return

        self.running = True
        self._stop_event.clear()
        self.orchestrator.resume()
        self.monitor_task = asyncio.create_task(self._monitor_loop(), name="gas_monitor")
        logger.info(f"🚀 Gas monitor started for {self.wallet.wallet_id} (interval: {self.interval_seconds}s)")

    async def stop(self) -> None:
        """Stop the loop, letting an in-flight cycle finish"""
        if not self.running:
            return

        self.running = False
        self._stop_event.set()
        self.orchestrator.request_stop()
        if self.monitor_task and not self.monitor_task.done():
            await self.monitor_task

        logger.info("🛑 Gas monitor stopped")

    async def tick(self) -> Optional[FundingCycleResult]:
        """Run one funding cycle; failures are logged, never raised"""
        try:
            result = await self.orchestrator.run_cycle(self.wallet)
        except Exception as e:
            logger.error(f"❌ Gas monitor cycle crashed: {e}", exc_info=True)
            return None

        if not result.succeeded:
            logger.warning(f"⚠️ Gas top-up for {self.wallet.wallet_id} failed: {result.error_type}")
        return result

    async def _monitor_loop(self) -> None:
        """Main monitor loop"""
        while self.running:
            await self.tick()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue
