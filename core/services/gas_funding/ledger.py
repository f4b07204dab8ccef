"""
Funding Ledger
Append-only, bounded in-memory history of funding cycle results
"""
from collections import Counter, deque
from typing import Deque, Dict, Optional, Tuple

from core.models.funding_models import FundingCycleResult
from infrastructure.logging.logger import get_logger

logger = get_logger(__name__)


class FundingLedger:
    """Keeps the most recent cycle results; oldest entries fall off once max_entries is reached"""

    def __init__(self, max_entries: int = 1000):
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self._entries: Deque[FundingCycleResult] = deque(maxlen=max_entries)

    def __len__(self) -> int:
        return len(self._entries)

    def append(self, result: FundingCycleResult) -> None:
        self._entries.append(result)
        logger.debug(f"📒 Ledger: recorded cycle {result.cycle_id} ({result.outcome.value})")

    def recent(self, wallet_id: Optional[str] = None, limit: int = 20) -> Tuple[FundingCycleResult, ...]:
        """Most recent results first, optionally for one wallet"""
        matches = [r for r in reversed(self._entries) if wallet_id is None or r.wallet_id == wallet_id]
        return tuple(matches[:limit])

    def last(self, wallet_id: str) -> Optional[FundingCycleResult]:
        for result in reversed(self._entries):
            if result.wallet_id == wallet_id:
                return result
        return None

    def summary(self) -> Dict[str, int]:
        """Count of recorded cycles per outcome"""
        counts = Counter(result.outcome.value for result in self._entries)
        return dict(counts)
