"""
Shared data models for the cross-chain CL position rebalancer.

This module contains the value types passed between the monitor, the
decision engine, the lifecycle manager, the bridge coordinator and the
ledger. Engine-specific models (decisions, CLI options, ORM rows) live
in the rebalancer package.
"""
from decimal import Decimal, ROUND_FLOOR
from enum import Enum
from typing import List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


class TokenInfo(BaseModel):
    """Token metadata on a specific chain."""
    model_config = ConfigDict(frozen=True)

    chain_id: int = Field(..., description="Chain the token lives on")
    identifier: str = Field(..., description="Token contract address")
    name: str = Field(..., description="Token symbol")
    decimals: int = Field(..., ge=0, le=36, description="Token decimals")


class TokenAmount(BaseModel):
    """
    Exact token amount in the token's smallest unit.

    Arithmetic and comparisons operate on the raw integer and are only
    defined between amounts of the same token.
    """
    model_config = ConfigDict(frozen=True)

    amount: int = Field(..., ge=0, description="Amount in the smallest unit")
    token: TokenInfo = Field(..., description="Token of this amount")

    @classmethod
    def zero(cls, token: TokenInfo) -> "TokenAmount":
        return cls(amount=0, token=token)

    @classmethod
    def from_human_readable(
        cls, value: Union[str, int, Decimal], token: TokenInfo
    ) -> "TokenAmount":
        """Build an amount from a display value, flooring to the smallest unit."""
        raw = Decimal(str(value)).scaleb(token.decimals)
        return cls(amount=int(raw.to_integral_value(rounding=ROUND_FLOOR)), token=token)

    @property
    def human_readable_amount(self) -> Decimal:
        return Decimal(self.amount).scaleb(-self.token.decimals)

    def _same_token(self, other: "TokenAmount") -> None:
        if not isinstance(other, TokenAmount):
            raise TypeError(f"Cannot combine TokenAmount with {type(other).__name__}")
        if other.token != self.token:
            raise ValueError(
                f"Token mismatch: {self.token.name}@{self.token.chain_id} "
                f"vs {other.token.name}@{other.token.chain_id}"
            )

    def __add__(self, other: "TokenAmount") -> "TokenAmount":
        self._same_token(other)
        return TokenAmount(amount=self.amount + other.amount, token=self.token)

    def __sub__(self, other: "TokenAmount") -> "TokenAmount":
        self._same_token(other)
        if other.amount > self.amount:
            raise ValueError(
                f"Subtraction would make {self.token.name} amount negative"
            )
        return TokenAmount(amount=self.amount - other.amount, token=self.token)

    def __lt__(self, other: "TokenAmount") -> bool:
        self._same_token(other)
        return self.amount < other.amount

    def __le__(self, other: "TokenAmount") -> bool:
        self._same_token(other)
        return self.amount <= other.amount

    def __gt__(self, other: "TokenAmount") -> bool:
        self._same_token(other)
        return self.amount > other.amount

    def __ge__(self, other: "TokenAmount") -> bool:
        self._same_token(other)
        return self.amount >= other.amount

    def is_zero(self) -> bool:
        return self.amount == 0

    def __str__(self) -> str:
        return f"{format(self.human_readable_amount.normalize(), 'f')} {self.token.name}"


# -----------------------------
# Persisted configuration
# -----------------------------


class PoolConfig(BaseModel):
    """The CL pool the managed position lives in."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(..., min_length=1, description="Pool contract address")
    token0: str = Field(..., min_length=1, description="token0 address")
    token1: str = Field(..., min_length=1, description="token1 address")
    tick_spacing: int = Field(..., gt=0, alias="tickSpacing", description="Pool tick spacing")
    spread_factor: Decimal = Field(Decimal(0), ge=0, alias="spreadFactor", description="Pool swap fee as a fraction")
    position_manager: Optional[str] = Field(
        None, alias="positionManager", description="NFT position manager address"
    )

    @model_validator(mode='after')
    def validate_tokens(self) -> 'PoolConfig':
        """Ensure the pool pairs two distinct tokens."""
        if self.token0.lower() == self.token1.lower():
            raise ValueError("pool token0 and token1 must differ")
        return self


class PositionConfig(BaseModel):
    """The managed position. An empty id means no position is open."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field("", description="Position id, empty when no position is open")
    band_percentage: Decimal = Field(
        ..., gt=0, alias="bandPercentage", description="Half-width of the range in percent"
    )


class MirrorConfig(BaseModel):
    """Counterpart tokens of the pool tokens on the mirror chain."""
    token0: str = Field(..., min_length=1, description="token0 counterpart address")
    token1: str = Field(..., min_length=1, description="token1 counterpart address")


class PendingBridge(BaseModel):
    """A submitted bridge transfer whose outcome is still unknown."""
    model_config = ConfigDict(populate_by_name=True)

    tx_hash: str = Field(..., alias="txHash")
    from_chain_id: int = Field(..., alias="fromChainId")
    to_chain_id: int = Field(..., alias="toChainId")
    token: TokenInfo = Field(..., description="Source token")
    amount: int = Field(..., ge=0, description="Raw amount submitted")
    destination_address: str = Field(..., alias="destinationAddress")
    submitted_at: int = Field(..., alias="submittedAt", description="Unix seconds")

    def token_amount(self) -> TokenAmount:
        return TokenAmount(amount=self.amount, token=self.token)


class AppConfig(BaseModel):
    """Persisted rebalancer configuration. Single source of truth for the position id."""
    model_config = ConfigDict(populate_by_name=True)

    rebalance_threshold_percent: Decimal = Field(
        ..., gt=0, alias="rebalanceThresholdPercent",
        description="Margin beyond the band edges before a rebalance triggers, in percent",
    )
    pool: PoolConfig
    position: PositionConfig
    mirror: Optional[MirrorConfig] = Field(None, description="Mirror chain counterparts")
    pending_bridge: Optional[PendingBridge] = Field(None, alias="pendingBridge")

    def has_position(self) -> bool:
        return bool(self.position.id)


# -----------------------------
# Chain state
# -----------------------------


class PoolInfo(BaseModel):
    """Pool state as read from chain."""
    pool_id: str
    price: Decimal = Field(..., description="Raw token1 per raw token0")
    current_tick: int
    tick_spacing: int
    sqrt_price_x96: int = 0


class PositionInfo(BaseModel):
    """An open position as read from chain."""
    position_id: str
    lower_tick: int
    upper_tick: int
    liquidity: int = Field(..., ge=0)
    token0: Optional[str] = None
    token1: Optional[str] = None
    tick_spacing: Optional[int] = None

    @model_validator(mode='after')
    def validate_tick_range(self) -> 'PositionInfo':
        """Ensure upper_tick > lower_tick."""
        if self.upper_tick <= self.lower_tick:
            raise ValueError("upper_tick must be greater than lower_tick")
        return self


# -----------------------------
# Workflow
# -----------------------------


class RebalanceAction(str, Enum):
    """Outcome of a rebalance invocation."""
    NONE = "none"
    CREATED = "created"
    REBALANCED = "rebalanced"


class WorkflowState(str, Enum):
    """Lifecycle manager state."""
    IDLE = "idle"
    WITHDRAWING = "withdrawing"
    BRIDGING = "bridging"
    SWAPPING = "swapping"
    CREATING = "creating"
    FAILED = "failed"


class RebalanceResult(BaseModel):
    """Result of one `run` invocation."""
    pool_id: str
    position_id: str = Field("", description="Best-known position id")
    action: RebalanceAction = RebalanceAction.NONE
    message: str = ""
    error: Optional[str] = None
    unresolved_transfer: Optional[str] = Field(
        None, description="Tx hash of a bridge transfer with unknown outcome"
    )
    tx_hashes: List[str] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None


class WithdrawResult(BaseModel):
    """Result of a forced withdraw."""
    pool_id: str
    position_id: str
    tx_hash: Optional[str] = None
    amount0: Optional[TokenAmount] = None
    amount1: Optional[TokenAmount] = None
    rewards0: Optional[TokenAmount] = None
    rewards1: Optional[TokenAmount] = None


class BridgeStatus(str, Enum):
    """Status reported by the bridging service."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class BridgeTransfer(BaseModel):
    """A cross-chain transfer submitted through the bridging service."""
    token_amount: TokenAmount
    to_chain_id: int
    destination_address: str
    tx_hash: Optional[str] = None
    status: BridgeStatus = BridgeStatus.PENDING
    received_amount: Optional[int] = Field(None, description="Raw amount credited on arrival")

    @property
    def from_chain_id(self) -> int:
        return self.token_amount.token.chain_id


# -----------------------------
# Ledger
# -----------------------------


class TransactionType(str, Enum):
    """Closed set of ledger transaction types."""
    CREATE_POSITION = "create_position"
    WITHDRAW_POSITION = "withdraw_position"
    BRIDGE_TRANSFER = "bridge_transfer"
    SWAP = "swap"
    COLLECT_SPREAD_REWARDS = "collect_spread_rewards"
    WITHDRAW_RECONCILIATION = "withdraw_reconciliation"


class LedgerEntry(BaseModel):
    """One state-changing step to append to the ledger."""
    transaction_type: TransactionType
    chain_id: int
    successful: bool
    signer_address: str
    tx_hash: Optional[str] = None
    position_id: Optional[str] = None
    input_amount: Optional[TokenAmount] = None
    second_input_amount: Optional[TokenAmount] = None
    output_amount: Optional[TokenAmount] = None
    second_output_amount: Optional[TokenAmount] = None
    gas_fee: Optional[TokenAmount] = None
    destination_address: Optional[str] = None
    destination_chain_id: Optional[int] = None
    error: Optional[str] = None
    timestamp: Optional[int] = Field(None, description="Unix seconds, defaults to now")
