"""
Funding planner for a new position.

Decides how the base chain holdings are brought to an even value split
between token0 and token1 before a position is opened:

- bridge leg: the mirror chain holds the short token, bring it over;
- swap leg: it does not, so part of the excess token is bridged to the
  mirror chain, swapped there and the proceeds bridged back.
"""
from decimal import Decimal, localcontext
from typing import Optional

from pydantic import BaseModel, Field

from rebalancer.utils.math import PRICE_PRECISION

DEFAULT_TOLERANCE = Decimal("0.001")


class BridgePlan(BaseModel):
    """A single mirror -> base transfer."""
    token_index: int = Field(..., ge=0, le=1, description="0 for token0, 1 for token1")
    amount: int = Field(..., gt=0, description="Raw amount to bridge")


def plan_bridge_leg(
    base0: int,
    base1: int,
    mirror0: int,
    mirror1: int,
    price: Decimal,
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> Optional[BridgePlan]:
    """
    Plan the bridge leg needed to fund a position, if any.

    Args:
        base0: Raw token0 balance on the base chain
        base1: Raw token1 balance on the base chain
        mirror0: Raw token0 counterpart balance on the mirror chain
        mirror1: Raw token1 counterpart balance on the mirror chain
        price: Raw pool price (token1 per token0)
        tolerance: Relative shortfall ignored as noise

    Returns:
        BridgePlan for the token with the larger shortfall, or None
    """
    price = Decimal(price)
    if price <= 0:
        raise ValueError(f"Price must be positive, got {price}")

    with localcontext() as ctx:
        ctx.prec = PRICE_PRECISION
        # all values in raw token1 units
        total = (base0 + mirror0) * price + (base1 + mirror1)
        if total <= 0:
            return None
        half = total / 2

        shortfall0 = half - base0 * price
        shortfall1 = half - base1

        candidates = []
        if mirror0 > 0 and shortfall0 > half * tolerance:
            amount0 = min(mirror0, int(shortfall0 / price))
            candidates.append((shortfall0, 0, amount0))
        if mirror1 > 0 and shortfall1 > half * tolerance:
            amount1 = min(mirror1, int(shortfall1))
            candidates.append((shortfall1, 1, amount1))

    candidates = [c for c in candidates if c[2] > 0]
    if not candidates:
        return None

    _, token_index, amount = max(candidates)
    return BridgePlan(token_index=token_index, amount=amount)


class SwapPlan(BaseModel):
    """Convert part of the excess base token into the other token on the mirror chain."""
    token_index: int = Field(..., ge=0, le=1, description="Index of the excess token")
    amount: int = Field(..., gt=0, description="Raw amount of the excess token to convert")
    from_mirror: int = Field(0, ge=0, description="Part of `amount` already held on the mirror chain")
    expected_output: int = Field(..., gt=0, description="Raw amount of the other token expected back")

    @property
    def outbound(self) -> int:
        """Raw amount to bridge from the base chain to the mirror chain."""
        return self.amount - self.from_mirror


def plan_swap_leg(
    base0: int,
    base1: int,
    mirror0: int,
    mirror1: int,
    price: Decimal,
    venue_price: Optional[Decimal] = None,
    tolerance: Decimal = DEFAULT_TOLERANCE,
) -> Optional[SwapPlan]:
    """
    Plan the bridge -> swap -> bridge back round trip that evens out the
    base chain holdings when the mirror chain holds none of the short token.

    The amount solves (b0 - x) * price = b1 + x * venue_price for excess
    token0, and the mirrored equation for excess token1, so the base
    chain ends at an even split valued at the pool price. Excess tokens
    already sitting on the mirror chain, e.g. from an interrupted round
    trip, are swapped first and only the rest is bridged out.

    Args:
        base0: Raw token0 balance on the base chain
        base1: Raw token1 balance on the base chain
        mirror0: Raw token0 counterpart balance on the mirror chain
        mirror1: Raw token1 counterpart balance on the mirror chain
        price: Raw pool price (token1 per token0)
        venue_price: Raw price on the mirror swap venue, defaults to `price`
        tolerance: Relative imbalance ignored as noise

    Returns:
        SwapPlan, or None when the base chain is already balanced
    """
    price = Decimal(price)
    venue_price = price if venue_price is None else Decimal(venue_price)
    if price <= 0 or venue_price <= 0:
        raise ValueError(f"Prices must be positive, got {price} and {venue_price}")

    with localcontext() as ctx:
        ctx.prec = PRICE_PRECISION
        value0 = base0 * price
        total = value0 + base1
        if total <= 0:
            return None
        half = total / 2

        excess = value0 - half
        if abs(excess) <= half * tolerance:
            return None

        if excess > 0:
            token_index = 0
            amount = (value0 - base1) / (price + venue_price)
            expected = amount * venue_price
        else:
            token_index = 1
            amount = (base1 - value0) / (price / venue_price + 1)
            expected = amount / venue_price

    amount, expected = int(amount), int(expected)
    if amount <= 0 or expected <= 0:
        return None
    held = (mirror0, mirror1)[token_index]
    return SwapPlan(
        token_index=token_index,
        amount=amount,
        from_mirror=min(held, amount),
        expected_output=expected,
    )
