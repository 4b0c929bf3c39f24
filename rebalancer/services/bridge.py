"""
Cross-chain bridge coordinator.

Submits one transfer and polls the bridging service until it reaches a
terminal status or the wait budget runs out. A transfer is never
resubmitted: a timeout means the outcome is unknown, and the caller
keeps enough state to resume polling later.
"""
import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from domain import (
    BridgeFailedError,
    BridgeStatus,
    BridgeTimeoutError,
    BridgeTransfer,
    ReadError,
    TokenAmount,
)
from rebalancer.services.clients import BridgingClient

logger = logging.getLogger(__name__)


class CrossChainBridgeCoordinator:
    """Drives a bridge transfer to completion, failure or timeout."""

    def __init__(
        self,
        client: BridgingClient,
        poll_interval: float,
        max_wait: float,
        shutdown=None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        logger: logging.Logger = logger,
    ):
        """
        Args:
            client: Bridging service client
            poll_interval: Seconds between status polls
            max_wait: Seconds before giving up with BridgeTimeoutError
            shutdown: Optional ShutdownCoordinator; polling stops when shutdown is requested
            clock: Monotonic clock (injectable for tests)
            sleep: Async sleep (injectable for tests)
        """
        self.client = client
        self.poll_interval = poll_interval
        self.max_wait = max_wait
        self.shutdown = shutdown
        self.clock = clock
        self.sleep = sleep
        self.logger = logger

    async def transfer(
        self, from_token: TokenAmount, to_chain_id: int, destination_address: str
    ) -> BridgeTransfer:
        """
        Submit a transfer and wait for a terminal status.

        Returns:
            The completed transfer

        Raises:
            SubmissionError / BroadcastError: If submission failed
            BridgeFailedError: If the service reported the transfer failed
            BridgeTimeoutError: If no terminal status was seen in time
        """
        self.logger.info(
            f"Bridging {from_token} from chain {from_token.token.chain_id} to chain {to_chain_id}"
        )
        tx_hash = await self.client.submit_transfer(from_token, to_chain_id, destination_address)
        transfer = BridgeTransfer(
            token_amount=from_token,
            to_chain_id=to_chain_id,
            destination_address=destination_address,
            tx_hash=tx_hash,
        )
        self.logger.info(f"Bridge transfer submitted: {tx_hash}")
        return await self.wait(transfer)

    async def wait(self, transfer: BridgeTransfer) -> BridgeTransfer:
        """Poll an already submitted transfer. Never resubmits."""
        deadline = self.clock() + self.max_wait

        while True:
            if self.shutdown is not None and self.shutdown.is_shutdown_requested:
                raise BridgeTimeoutError(
                    f"Shutdown requested while bridge transfer {transfer.tx_hash} was pending",
                    transfer=transfer,
                    step="bridge.wait",
                    chain_id=transfer.from_chain_id,
                )

            try:
                report = await self.client.poll_status(
                    transfer.tx_hash, transfer.from_chain_id, transfer.to_chain_id
                )
            except ReadError as e:
                self.logger.warning(f"Bridge status poll failed, will retry: {e}")
                report = None

            if report is not None and report.status == BridgeStatus.COMPLETED:
                transfer.status = BridgeStatus.COMPLETED
                transfer.received_amount = report.received_amount
                self.logger.info(f"Bridge transfer {transfer.tx_hash} completed")
                return transfer

            if report is not None and report.status == BridgeStatus.FAILED:
                transfer.status = BridgeStatus.FAILED
                raise BridgeFailedError(
                    f"Bridge transfer {transfer.tx_hash} failed: {report.detail or 'no detail'}",
                    tx_hash=transfer.tx_hash,
                    step="bridge.wait",
                    chain_id=transfer.from_chain_id,
                    amounts={transfer.token_amount.token.name: str(transfer.token_amount)},
                )

            remaining = deadline - self.clock()
            if remaining <= 0:
                raise BridgeTimeoutError(
                    f"Bridge transfer {transfer.tx_hash} still pending after {self.max_wait:.0f}s",
                    transfer=transfer,
                    step="bridge.wait",
                    chain_id=transfer.from_chain_id,
                )
            await self._pause(min(self.poll_interval, remaining))

    async def _pause(self, seconds: float) -> None:
        if self.shutdown is not None:
            await self.shutdown.wait(seconds)
        else:
            await self.sleep(seconds)
