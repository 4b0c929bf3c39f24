"""
Rebalance decision engine.

Decides, from the current pool price and the open position's range,
whether to leave the position alone, create one, or recenter it.
Pure: no I/O, no hidden state.
"""
from decimal import Decimal, localcontext
from enum import Enum
from typing import Optional, Tuple, Union

from pydantic import BaseModel, Field

from rebalancer.utils.math import PRICE_PRECISION, UniswapV3Math

Number = Union[Decimal, float, int, str]


class DecisionAction(str, Enum):
    NONE = "none"
    CREATE = "create"
    REBALANCE = "rebalance"


class Decision(BaseModel):
    """Outcome of one evaluation."""
    action: DecisionAction
    price: Decimal = Field(..., description="Price the decision was made at")
    lower_tick: Optional[int] = Field(None, description="Target lower tick, None for `none`")
    upper_tick: Optional[int] = Field(None, description="Target upper tick, None for `none`")
    lower_trigger: Optional[Decimal] = Field(None, description="Rebalance below this price")
    upper_trigger: Optional[Decimal] = Field(None, description="Rebalance above this price")

    @property
    def lower_price(self) -> Optional[Decimal]:
        if self.lower_tick is None:
            return None
        return UniswapV3Math.tick_to_price(self.lower_tick)

    @property
    def upper_price(self) -> Optional[Decimal]:
        if self.upper_tick is None:
            return None
        return UniswapV3Math.tick_to_price(self.upper_tick)


def _fraction(percent: Number) -> Decimal:
    return Decimal(str(percent)) / Decimal(100)


class RebalanceDecisionEngine:
    """
    Two-bound rebalance policy.

    A position is kept while the price stays within its range widened by the
    threshold on both sides (bounds inclusive). Outside it, or when there is no
    position, the target range is price * [1 - band, 1 + band] rounded outward
    to the pool's tick spacing.
    """

    def __init__(self, tick_spacing: int):
        if tick_spacing <= 0:
            raise ValueError(f"Tick spacing must be positive, got {tick_spacing}")
        self.tick_spacing = tick_spacing

    def decide(
        self,
        price: Number,
        position_range: Optional[Tuple[Number, Number]],
        band_percent: Number,
        threshold_percent: Number,
    ) -> Decision:
        """
        Evaluate the current state.

        Args:
            price: Current raw pool price
            position_range: (lower price, upper price) of the open position, or None
            band_percent: Half-width of the target range in percent
            threshold_percent: Margin beyond the range edges in percent

        Returns:
            Decision with the action and, for create/rebalance, the target ticks
        """
        price = Decimal(str(price))

        if position_range is None:
            lower_tick, upper_tick = self.target_ticks(price, band_percent)
            return Decision(
                action=DecisionAction.CREATE,
                price=price,
                lower_tick=lower_tick,
                upper_tick=upper_tick,
            )

        lower_trigger, upper_trigger = self.trigger_bounds(position_range, threshold_percent)
        if lower_trigger <= price <= upper_trigger:
            return Decision(
                action=DecisionAction.NONE,
                price=price,
                lower_trigger=lower_trigger,
                upper_trigger=upper_trigger,
            )

        lower_tick, upper_tick = self.target_ticks(price, band_percent)
        return Decision(
            action=DecisionAction.REBALANCE,
            price=price,
            lower_tick=lower_tick,
            upper_tick=upper_tick,
            lower_trigger=lower_trigger,
            upper_trigger=upper_trigger,
        )

    @staticmethod
    def trigger_bounds(
        position_range: Tuple[Number, Number], threshold_percent: Number
    ) -> Tuple[Decimal, Decimal]:
        threshold = _fraction(threshold_percent)
        lower, upper = (Decimal(str(p)) for p in position_range)
        with localcontext() as ctx:
            ctx.prec = PRICE_PRECISION
            return lower * (1 - threshold), upper * (1 + threshold)

    def target_ticks(self, price: Decimal, band_percent: Number) -> Tuple[int, int]:
        """Ticks of price * [1 - band, 1 + band], lower floored and upper ceiled to spacing."""
        band = _fraction(band_percent)
        with localcontext() as ctx:
            ctx.prec = PRICE_PRECISION
            lower_price = price * (1 - band)
            upper_price = price * (1 + band)

        if lower_price > 0:
            lower_tick = UniswapV3Math.round_tick_down(
                UniswapV3Math.price_to_tick(lower_price), self.tick_spacing
            )
        else:
            lower_tick = UniswapV3Math.min_usable_tick(self.tick_spacing)
        upper_tick = UniswapV3Math.round_tick_up(
            UniswapV3Math.price_to_tick_ceil(upper_price), self.tick_spacing
        )

        if upper_tick <= lower_tick:
            upper_tick = lower_tick + self.tick_spacing
        return lower_tick, upper_tick
