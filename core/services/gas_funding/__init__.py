"""
Gas Funding Service Module
Keeps the operational wallet's Base gas topped up: USDC → SOL (Jupiter) → ETH on Base (deBridge, falling back to LI.FI)
"""
from .bridge_router import FallbackBridgeExecutor
from .config import FundingConfig
from .dependencies import (
    FundingDependencies,
    OperationalWallet,
    get_funding_dependencies,
    init_funding_dependencies,
    shutdown_funding_dependencies,
)
from .errors import ErrorKind, FundingError
from .gas_monitor import GasMonitor
from .ledger import FundingLedger
from .orchestrator import FundingOrchestrator, FundingPolicy, LockProbe, WalletLockRegistry
from .retry_policy import RetryPolicy

__all__ = [
    'FallbackBridgeExecutor',
    'FundingConfig',
    'FundingDependencies',
    'OperationalWallet',
    'get_funding_dependencies',
    'init_funding_dependencies',
    'shutdown_funding_dependencies',
    'ErrorKind',
    'FundingError',
    'GasMonitor',
    'FundingLedger',
    'FundingOrchestrator',
    'FundingPolicy',
    'LockProbe',
    'WalletLockRegistry',
    'RetryPolicy',
]
