"""
Package containing the shared domain types of the CL position rebalancer.

This package defines the value types and the error taxonomy used across
the monitor, decision engine, lifecycle manager, bridge coordinator and
ledger.

NOTE: Engine-specific models (decisions, CLI options, ORM rows) are in
      the rebalancer package.
"""

from domain.models import (
    TokenInfo,
    TokenAmount,
    PoolConfig,
    PositionConfig,
    MirrorConfig,
    PendingBridge,
    AppConfig,
    PoolInfo,
    PositionInfo,
    RebalanceAction,
    WorkflowState,
    RebalanceResult,
    WithdrawResult,
    BridgeStatus,
    BridgeTransfer,
    TransactionType,
    LedgerEntry,
)
from domain.errors import (
    RebalancerError,
    ConfigError,
    ReadError,
    SubmissionError,
    BroadcastError,
    BridgeFailedError,
    BridgeTimeoutError,
    PersistenceError,
    WorkflowLockedError,
    ShutdownRequestedError,
)

__all__ = [
    # Models
    "TokenInfo",
    "TokenAmount",
    "PoolConfig",
    "PositionConfig",
    "MirrorConfig",
    "PendingBridge",
    "AppConfig",
    "PoolInfo",
    "PositionInfo",
    "RebalanceAction",
    "WorkflowState",
    "RebalanceResult",
    "WithdrawResult",
    "BridgeStatus",
    "BridgeTransfer",
    "TransactionType",
    "LedgerEntry",
    # Errors
    "RebalancerError",
    "ConfigError",
    "ReadError",
    "SubmissionError",
    "BroadcastError",
    "BridgeFailedError",
    "BridgeTimeoutError",
    "PersistenceError",
    "WorkflowLockedError",
    "ShutdownRequestedError",
]
