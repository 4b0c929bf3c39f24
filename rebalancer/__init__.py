"""
Cross-chain CL position rebalancer.

Async engine using Tortoise ORM for the transaction ledger, AsyncWeb3 for
chain reads and an executor service for signed transactions.
"""
from rebalancer.config import ConfigStore, Settings
from rebalancer.decision import RebalanceDecisionEngine
from rebalancer.lifecycle import PositionLifecycleManager
from rebalancer.models.ledger import init_db, close_db
from rebalancer.repositories.ledger import TransactionLedger

__all__ = [
    "ConfigStore",
    "Settings",
    "RebalanceDecisionEngine",
    "PositionLifecycleManager",
    "TransactionLedger",
    "init_db",
    "close_db",
]
