"""
Error taxonomy for the CL position rebalancer.

Every error carries enough context (workflow step, chain id, amounts) to
diagnose a failure from the log line alone.
"""
from typing import Any, Dict, Optional


class RebalancerError(Exception):
    """Base class for all rebalancer errors."""

    def __init__(
        self,
        message: str,
        step: Optional[str] = None,
        chain_id: Optional[int] = None,
        amounts: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.step = step
        self.chain_id = chain_id
        self.amounts = amounts or {}
        super().__init__(self._render())

    def _render(self) -> str:
        context = []
        if self.step:
            context.append(f"step={self.step}")
        if self.chain_id is not None:
            context.append(f"chain_id={self.chain_id}")
        if self.amounts:
            context.append(
                "amounts=" + ",".join(f"{k}:{v}" for k, v in self.amounts.items())
            )
        if not context:
            return self.message
        return f"{self.message} [{' '.join(context)}]"


class ConfigError(RebalancerError):
    """Missing or invalid configuration. Fatal at startup."""


class ReadError(RebalancerError):
    """A read-only chain or bridge query failed. The workflow fails closed."""


class SubmissionError(RebalancerError):
    """A state-changing call was rejected before it reached the chain."""


class BroadcastError(RebalancerError):
    """A transaction was sent but failed on chain."""

    def __init__(self, message: str, tx_hash: Optional[str] = None, **kwargs):
        self.tx_hash = tx_hash
        super().__init__(message, **kwargs)


class BridgeFailedError(BroadcastError):
    """The bridging service reported the transfer as failed."""


class BridgeTimeoutError(RebalancerError):
    """A bridge transfer did not reach a terminal status in time.

    The outcome is unknown, not failed: the transfer may still complete.
    """

    def __init__(self, message: str, transfer: Any = None, **kwargs):
        self.transfer = transfer
        super().__init__(message, **kwargs)


class PersistenceError(RebalancerError):
    """The ledger or the config file could not be written."""


class WorkflowLockedError(RebalancerError):
    """Another workflow already holds the position lock."""


class ShutdownRequestedError(RebalancerError):
    """Shutdown was requested before the next workflow step could start."""
