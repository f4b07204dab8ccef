"""
Gas Funding Errors
Typed failures raised by balance readers, providers and executors.
Only the orchestrator decides what to do with them (retry, stop, reconcile).
"""
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    TRANSIENT = "transient"  # Retry with backoff
    FATAL = "fatal"  # End the cycle, no retry
    AMBIGUOUS = "ambiguous"  # Re-check chain state before deciding


class FundingError(Exception):
    """Base class for every funding pipeline failure"""

    kind: ErrorKind = ErrorKind.FATAL

    @property
    def retryable(self) -> bool:
        return self.kind is ErrorKind.TRANSIENT


# Transient

class TransientFundingError(FundingError):
    kind = ErrorKind.TRANSIENT


class RpcUnavailable(TransientFundingError):
    """Chain RPC unreachable, timed out or returned a server error"""


class ProviderUnavailable(TransientFundingError):
    """Aggregator API transport failure"""


class QuoteExpired(TransientFundingError):
    """Quote validity window elapsed before execution"""


class BroadcastFailed(TransientFundingError):
    """Signed transaction could not be submitted"""


class BridgeUnavailable(TransientFundingError):
    """Bridge provider transport failure"""

    def __init__(self, message: str, tx_ref: Optional[str] = None):
        super().__init__(message)
        self.tx_ref = tx_ref  # Set once a bridge transaction was broadcast


class SwapDropped(TransientFundingError):
    """A timed-out swap was proven unable to land; safe to try again"""


# Fatal

class FatalFundingError(FundingError):
    kind = ErrorKind.FATAL


class NoRoute(FatalFundingError):
    """Aggregator has no viable path for the pair/amount"""


class SwapRejected(FatalFundingError):
    """Provider refused to build the swap, or it failed on-chain"""


class BridgeRejected(FatalFundingError):
    """Bridge provider refused the transfer, or the transfer failed after broadcast"""

    def __init__(self, message: str, tx_ref: Optional[str] = None):
        super().__init__(message)
        self.tx_ref = tx_ref  # Set once a bridge transaction was broadcast


class PriceImpactTooHigh(FatalFundingError):
    """Quote price impact exceeds the configured ceiling"""


class InsufficientSourceBalance(FatalFundingError):
    """Not enough stable-token on the source chain for the top-up"""


class AmbiguousSwapState(FatalFundingError):
    """A timed-out swap could be neither confirmed nor ruled out"""


class CycleCancelled(FatalFundingError):
    """Stop requested before any transaction was broadcast"""


class BalanceStillLow(FatalFundingError):
    """Target balance is still below the threshold after bridging"""


# Ambiguous

class AmbiguousFundingError(FundingError):
    kind = ErrorKind.AMBIGUOUS


class ConfirmationTimeout(AmbiguousFundingError):
    """
    Broadcast swap was not finalized within the timeout

    The input funds may already be spent; chain state must be re-checked
    before anything is re-submitted.
    """

    def __init__(self, message: str, tx_ref: str, last_valid_block_height: Optional[int] = None):
        super().__init__(message)
        self.tx_ref = tx_ref
        self.last_valid_block_height = last_valid_block_height


class BridgeFulfillmentTimeout(AmbiguousFundingError):
    """Bridge transaction was broadcast but fulfilment was not observed in time"""

    def __init__(self, message: str, tx_ref: str, order_id: Optional[str] = None):
        super().__init__(message)
        self.tx_ref = tx_ref
        self.order_id = order_id


class UnexpectedFundingError(AmbiguousFundingError):
    """
    An untyped exception escaped a step after transactions may have been broadcast

    Never retried; the original exception is kept as __cause__.
    """
