"""
Executor service clients.

State-changing transactions are signed and broadcast by an executor
service that holds the keys; this module talks to it over HTTP. Bridge
transfer status is polled from a LI.FI compatible status API.

An executor request that fails before a response arrives is reported as
a SubmissionError. The executor may still have broadcast the transaction
in that case (e.g. a read timeout), which is why state-changing calls are
never retried automatically.
"""
import logging
from typing import Any, Dict, Optional

import requests

from domain import (
    BridgeStatus,
    BroadcastError,
    PositionInfo,
    ReadError,
    SubmissionError,
    TokenAmount,
    TokenInfo,
)
from rebalancer.services.chain import native_token
from rebalancer.services.clients import (
    BridgeStatusReport,
    BridgingClient,
    ChainTxClient,
    TxOutcome,
)

logger = logging.getLogger(__name__)

# LI.FI status values
BRIDGE_STATUS_MAP = {
    "DONE": BridgeStatus.COMPLETED,
    "FAILED": BridgeStatus.FAILED,
    "INVALID": BridgeStatus.FAILED,
    "PENDING": BridgeStatus.PENDING,
    "NOT_FOUND": BridgeStatus.PENDING,
}


def _as_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    return int(value)


class ExecutorClient:
    """HTTP plumbing shared by the executor-backed clients."""

    def __init__(self, executor_url: str, api_key: Optional[str], timeout: int = 120):
        self.executor_url = executor_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def _post(self, endpoint: str, payload: Dict[str, Any], chain_id: int) -> Dict[str, Any]:
        """
        POST to the executor.

        Raises:
            SubmissionError: If the request fails or is rejected
        """
        body = {"api_key": self.api_key, "chain_id": chain_id, **payload}
        try:
            response = requests.post(
                f"{self.executor_url}/{endpoint}", json=body, timeout=self.timeout
            )
        except requests.RequestException as e:
            raise SubmissionError(
                f"Executor request {endpoint} failed: {e}",
                step=endpoint,
                chain_id=chain_id,
            ) from e

        if response.status_code != 200:
            raise SubmissionError(
                f"Executor rejected {endpoint} with status {response.status_code}: {response.text}",
                step=endpoint,
                chain_id=chain_id,
            )

        try:
            return response.json()
        except ValueError as e:
            raise SubmissionError(
                f"Executor returned invalid JSON for {endpoint}: {e}",
                step=endpoint,
                chain_id=chain_id,
            ) from e

    def _outcome(self, result: Dict[str, Any], chain_id: int, data: Dict[str, Any]) -> TxOutcome:
        gas_fee_wei = _as_int(result.get("gas_fee_wei"))
        return TxOutcome(
            tx_hash=result.get("tx_hash"),
            successful=bool(result.get("successful")),
            error=result.get("error"),
            gas_fee=(
                TokenAmount(amount=gas_fee_wei, token=native_token(chain_id))
                if gas_fee_wei is not None
                else None
            ),
            data=data,
        )


class ExecutorTxClient(ExecutorClient, ChainTxClient):
    """Position and swap transactions on one chain, via the executor."""

    def __init__(
        self,
        executor_url: str,
        api_key: Optional[str],
        chain_id: int,
        position_manager: Optional[str] = None,
        timeout: int = 120,
    ):
        super().__init__(executor_url, api_key, timeout)
        self.chain_id = chain_id
        self.position_manager = position_manager

    async def withdraw_position(self, position: PositionInfo, recipient: str) -> TxOutcome:
        """
        Decrease all liquidity and collect owed tokens and rewards.

        Outcome data: amount0, amount1 (principal), rewards0, rewards1.
        """
        payload = {
            "position_manager": self.position_manager,
            "position_id": position.position_id,
            "liquidity": str(position.liquidity),
            "recipient": recipient,
        }
        logger.info(f"Submitting withdraw of position {position.position_id}")
        result = self._post("withdraw_position", payload, self.chain_id)
        data = {
            key: _as_int(result.get(key)) or 0
            for key in ("amount0", "amount1", "rewards0", "rewards1")
        }
        return self._outcome(result, self.chain_id, data)

    async def create_position(
        self,
        pool_id: str,
        lower_tick: int,
        upper_tick: int,
        amount0: TokenAmount,
        amount1: TokenAmount,
        recipient: str,
    ) -> TxOutcome:
        """
        Mint a position.

        Outcome data: position_id, liquidity, amount0, amount1 (used, None
        when the executor did not report them).
        """
        payload = {
            "position_manager": self.position_manager,
            "pool_address": pool_id,
            "tick_lower": lower_tick,
            "tick_upper": upper_tick,
            "amount0_desired": str(amount0.amount),
            "amount1_desired": str(amount1.amount),
            "recipient": recipient,
        }
        logger.info(
            f"Submitting create position on {pool_id} ticks [{lower_tick}, {upper_tick}] "
            f"with {amount0} and {amount1}"
        )
        result = self._post("create_position", payload, self.chain_id)
        data = {
            "position_id": str(result["position_id"]) if result.get("position_id") is not None else None,
            "liquidity": _as_int(result.get("liquidity")) or 0,
            "amount0": _as_int(result.get("amount0")),
            "amount1": _as_int(result.get("amount1")),
        }
        return self._outcome(result, self.chain_id, data)

    async def swap(
        self,
        amount_in: TokenAmount,
        token_out: TokenInfo,
        min_amount_out: int,
        recipient: str,
    ) -> TxOutcome:
        """
        Swap on the executor's venue for this chain.

        Outcome data: amount_out (None when the executor did not report it).
        """
        payload = {
            "token_in": amount_in.token.identifier,
            "amount_in": str(amount_in.amount),
            "token_out": token_out.identifier,
            "min_amount_out": str(min_amount_out),
            "recipient": recipient,
        }
        logger.info(f"Submitting swap of {amount_in} for {token_out.name} on chain {self.chain_id}")
        result = self._post("swap", payload, self.chain_id)
        return self._outcome(result, self.chain_id, {"amount_out": _as_int(result.get("amount_out"))})


class ExecutorBridgingClient(ExecutorClient, BridgingClient):
    """Bridge submission via the executor, status via the bridge status API."""

    def __init__(
        self,
        executor_url: str,
        api_key: Optional[str],
        status_url: str,
        timeout: int = 120,
    ):
        super().__init__(executor_url, api_key, timeout)
        self.status_url = status_url.rstrip("/")

    async def submit_transfer(
        self, token_amount: TokenAmount, to_chain_id: int, destination_address: str
    ) -> str:
        """
        Submit a transfer.

        Returns:
            Source-chain tx hash

        Raises:
            SubmissionError: If the executor rejected the request
            BroadcastError: If the source transaction failed on chain
        """
        chain_id = token_amount.token.chain_id
        payload = {
            "token": token_amount.token.identifier,
            "amount": str(token_amount.amount),
            "to_chain_id": to_chain_id,
            "destination_address": destination_address,
        }
        result = self._post("bridge_transfer", payload, chain_id)
        tx_hash = result.get("tx_hash")
        if not tx_hash:
            raise SubmissionError(
                f"Executor returned no tx hash for bridge transfer: {result.get('error')}",
                step="bridge_transfer",
                chain_id=chain_id,
                amounts={token_amount.token.name: str(token_amount)},
            )
        if result.get("successful") is False:
            raise BroadcastError(
                f"Bridge source transaction {tx_hash} failed: {result.get('error')}",
                tx_hash=tx_hash,
                step="bridge_transfer",
                chain_id=chain_id,
            )
        return tx_hash

    async def poll_status(
        self, tx_hash: str, from_chain_id: int, to_chain_id: int
    ) -> BridgeStatusReport:
        """
        Raises:
            ReadError: If the status API cannot be reached or answers garbage
        """
        params = {"txHash": tx_hash, "fromChain": from_chain_id, "toChain": to_chain_id}
        try:
            response = requests.get(f"{self.status_url}/status", params=params, timeout=30)
            response.raise_for_status()
            result = response.json()
        except (requests.RequestException, ValueError) as e:
            raise ReadError(
                f"Failed to poll bridge status of {tx_hash}: {e}",
                step="poll_status",
                chain_id=from_chain_id,
            ) from e

        raw_status = str(result.get("status", "")).upper()
        if raw_status not in BRIDGE_STATUS_MAP:
            raise ReadError(
                f"Unknown bridge status {raw_status!r} for {tx_hash}",
                step="poll_status",
                chain_id=from_chain_id,
            )
        receiving = result.get("receiving") or {}
        return BridgeStatusReport(
            status=BRIDGE_STATUS_MAP[raw_status],
            received_amount=_as_int(receiving.get("amount")),
            detail=result.get("substatusMessage") or result.get("substatus"),
        )
