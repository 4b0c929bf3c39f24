"""
Collaborator interfaces consumed by the rebalancer.

These let the monitor, lifecycle manager and bridge coordinator work with
different chain and bridge backends (web3 + executor service in
production, mocks in tests) without being coupled to one of them.

All methods are async.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from domain import BridgeStatus, PoolInfo, PositionInfo, TokenAmount, TokenInfo


class TxOutcome(BaseModel):
    """Outcome of a broadcast transaction."""
    tx_hash: Optional[str] = None
    successful: bool
    error: Optional[str] = None
    gas_fee: Optional[TokenAmount] = None
    data: Dict[str, Any] = Field(default_factory=dict, description="Parsed event data")


class BridgeStatusReport(BaseModel):
    """One poll of a transfer's status."""
    status: BridgeStatus
    received_amount: Optional[int] = None
    detail: Optional[str] = None


class ChainQueryClient(ABC):
    """Read-only pool and position queries."""

    @abstractmethod
    async def get_pool_info(self, pool_id: str) -> PoolInfo:
        """Current price, tick and tick spacing of a pool."""
        pass

    @abstractmethod
    async def get_position_info(self, position_id: str) -> Optional[PositionInfo]:
        """An open position, or None when it does not exist or is closed."""
        pass

    @abstractmethod
    async def get_owner_positions_page(
        self, owner: str, cursor: Optional[int], page_size: int
    ) -> Tuple[List[PositionInfo], Optional[int]]:
        """One page of an owner's positions and the cursor of the next page."""
        pass

    @abstractmethod
    async def get_token_info(self, identifier: str) -> TokenInfo:
        """Token metadata."""
        pass


class ChainTxClient(ABC):
    """State-changing position and swap operations on one chain."""

    @abstractmethod
    async def withdraw_position(self, position: PositionInfo, recipient: str) -> TxOutcome:
        """Remove all liquidity, collect owed tokens and rewards."""
        pass

    @abstractmethod
    async def create_position(
        self,
        pool_id: str,
        lower_tick: int,
        upper_tick: int,
        amount0: TokenAmount,
        amount1: TokenAmount,
        recipient: str,
    ) -> TxOutcome:
        """Open a position; the outcome data carries the new position id."""
        pass

    @abstractmethod
    async def swap(
        self,
        amount_in: TokenAmount,
        token_out: TokenInfo,
        min_amount_out: int,
        recipient: str,
    ) -> TxOutcome:
        """Swap on the chain's swap venue; the outcome data carries amount_out."""
        pass


class BridgingClient(ABC):
    """Asynchronous cross-chain transfer service."""

    @abstractmethod
    async def submit_transfer(
        self, token_amount: TokenAmount, to_chain_id: int, destination_address: str
    ) -> str:
        """Submit a transfer and return its source-chain tx hash."""
        pass

    @abstractmethod
    async def poll_status(self, tx_hash: str, from_chain_id: int, to_chain_id: int) -> BridgeStatusReport:
        """Current status of a submitted transfer."""
        pass


class ChainAccount(ABC):
    """Balances of one signer on one chain."""

    chain_id: int
    address: str

    @abstractmethod
    async def get_available_balances(self, tokens: List[TokenInfo]) -> Dict[str, TokenAmount]:
        """Balances of `tokens` keyed by token identifier."""
        pass

    @abstractmethod
    async def get_token_available_balance(self, token: TokenInfo) -> TokenAmount:
        """Balance of one token."""
        pass

    @abstractmethod
    async def get_native_balance(self) -> TokenAmount:
        """Balance of the gas token."""
        pass


class KeyStore(ABC):
    """Resolves the signer address per chain."""

    @abstractmethod
    def get_address(self, chain_id: int) -> str:
        pass
