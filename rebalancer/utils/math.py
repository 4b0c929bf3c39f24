from decimal import Decimal, ROUND_FLOOR, localcontext
from typing import Tuple

# Enough digits for exact round-trips across the whole tick range.
PRICE_PRECISION = 60
TICK_BASE = Decimal("1.0001")


class UniswapV3Math:
    """
    Concentrated-liquidity tick and price math.

    Ticks map to raw prices (token1 smallest units per token0 smallest unit)
    as price = 1.0001^tick. Q96 helpers are int-only, decimal helpers use
    `Decimal` at PRICE_PRECISION digits.
    """

    Q96 = 1 << 96
    Q192 = Q96 * Q96
    MIN_TICK = -887272
    MAX_TICK = 887272

    MIN_SQRT_RATIO = 4295128739
    MAX_SQRT_RATIO = 1461446703485210103287273052203988822378723970342

    @staticmethod
    def sqrt_price_x96_to_price(sqrt_price_x96: int) -> Decimal:
        """
        Convert sqrtPriceX96 from slot0 to a raw price (token1 per token0).
        """
        with localcontext() as ctx:
            ctx.prec = PRICE_PRECISION
            return (Decimal(sqrt_price_x96) * Decimal(sqrt_price_x96)) / Decimal(UniswapV3Math.Q192)

    @staticmethod
    def to_display_price(raw_price: Decimal, decimals0: int, decimals1: int) -> Decimal:
        """Adjust a raw price for token decimals: raw * 10^(decimals0 - decimals1)."""
        with localcontext() as ctx:
            ctx.prec = PRICE_PRECISION
            return raw_price.scaleb(decimals0 - decimals1)

    @staticmethod
    def tick_to_price(tick: int) -> Decimal:
        with localcontext() as ctx:
            ctx.prec = PRICE_PRECISION
            return TICK_BASE ** tick

    @staticmethod
    def price_to_tick(price: Decimal) -> int:
        """
        Largest tick whose price does not exceed `price`.

        Raises:
            ValueError: If price is not positive
        """
        price = Decimal(price)
        if price <= 0:
            raise ValueError(f"Price must be positive, got {price}")

        with localcontext() as ctx:
            ctx.prec = PRICE_PRECISION
            tick = int((price.ln() / TICK_BASE.ln()).to_integral_value(rounding=ROUND_FLOOR))

        # ln rounding can land one tick off at exact tick prices
        if UniswapV3Math.tick_to_price(tick + 1) <= price:
            tick += 1
        elif UniswapV3Math.tick_to_price(tick) > price:
            tick -= 1
        return max(UniswapV3Math.MIN_TICK, min(UniswapV3Math.MAX_TICK, tick))

    @staticmethod
    def price_to_tick_ceil(price: Decimal) -> int:
        """Smallest tick whose price is at least `price`."""
        tick = UniswapV3Math.price_to_tick(price)
        if UniswapV3Math.tick_to_price(tick) < Decimal(price) and tick < UniswapV3Math.MAX_TICK:
            tick += 1
        return tick

    @staticmethod
    def min_usable_tick(tick_spacing: int) -> int:
        return -((-UniswapV3Math.MIN_TICK) // tick_spacing) * tick_spacing

    @staticmethod
    def max_usable_tick(tick_spacing: int) -> int:
        return (UniswapV3Math.MAX_TICK // tick_spacing) * tick_spacing

    @staticmethod
    def round_tick_down(tick: int, tick_spacing: int) -> int:
        """Round toward -inf to a multiple of tick_spacing, clamped to the usable range."""
        if tick_spacing <= 0:
            raise ValueError(f"Tick spacing must be positive, got {tick_spacing}")
        rounded = (tick // tick_spacing) * tick_spacing
        return max(UniswapV3Math.min_usable_tick(tick_spacing), rounded)

    @staticmethod
    def round_tick_up(tick: int, tick_spacing: int) -> int:
        """Round toward +inf to a multiple of tick_spacing, clamped to the usable range."""
        if tick_spacing <= 0:
            raise ValueError(f"Tick spacing must be positive, got {tick_spacing}")
        rounded = -((-tick) // tick_spacing) * tick_spacing
        return min(UniswapV3Math.max_usable_tick(tick_spacing), rounded)

    @staticmethod
    def get_sqrt_ratio_at_tick(tick: int) -> int:
        if tick < UniswapV3Math.MIN_TICK or tick > UniswapV3Math.MAX_TICK:
            raise ValueError("T")

        abs_tick = -tick if tick < 0 else tick

        ratio = (
            0xFFFCB933BD6FAD37AA2D162D1A594001
            if abs_tick & 0x1 != 0
            else 0x100000000000000000000000000000000
        )

        if abs_tick & 0x2:
            ratio = (ratio * 0xFFF97272373D413259A46990580E213A) >> 128
        if abs_tick & 0x4:
            ratio = (ratio * 0xFFF2E50F5F656932EF12357CF3C7FDCC) >> 128
        if abs_tick & 0x8:
            ratio = (ratio * 0xFFE5CACA7E10E4E61C3624EAA0941CD0) >> 128
        if abs_tick & 0x10:
            ratio = (ratio * 0xFFCB9843D60F6159C9DB58835C926644) >> 128
        if abs_tick & 0x20:
            ratio = (ratio * 0xFF973B41FA98C081472E6896DFB254C0) >> 128
        if abs_tick & 0x40:
            ratio = (ratio * 0xFF2EA16466C96A3843EC78B326B52861) >> 128
        if abs_tick & 0x80:
            ratio = (ratio * 0xFE5DEE046A99A2A811C461F1969C3053) >> 128
        if abs_tick & 0x100:
            ratio = (ratio * 0xFCBE86C7900A88AEDCFFC83B479AA3A4) >> 128
        if abs_tick & 0x200:
            ratio = (ratio * 0xF987A7253AC413176F2B074CF7815E54) >> 128
        if abs_tick & 0x400:
            ratio = (ratio * 0xF3392B0822B70005940C7A398E4B70F3) >> 128
        if abs_tick & 0x800:
            ratio = (ratio * 0xE7159475A2C29B7443B29C7FA6E889D9) >> 128
        if abs_tick & 0x1000:
            ratio = (ratio * 0xD097F3BDFD2022B8845AD8F792AA5825) >> 128
        if abs_tick & 0x2000:
            ratio = (ratio * 0xA9F746462D870FDF8A65DC1F90E061E5) >> 128
        if abs_tick & 0x4000:
            ratio = (ratio * 0x70D869A156D2A1B890BB3DF62BAF32F7) >> 128
        if abs_tick & 0x8000:
            ratio = (ratio * 0x31BE135F97D08FD981231505542FCFA6) >> 128
        if abs_tick & 0x10000:
            ratio = (ratio * 0x9AA508B5B7A84E1C677DE54F3E99BC9) >> 128
        if abs_tick & 0x20000:
            ratio = (ratio * 0x5D6AF8DEDB81196699C329225EE604) >> 128
        if abs_tick & 0x40000:
            ratio = (ratio * 0x2216E584F5FA1EA926041BEDFE98) >> 128
        if abs_tick & 0x80000:
            ratio = (ratio * 0x48A170391F7DC42444E8FA2) >> 128

        if tick > 0:
            ratio = (1 << 256) // ratio

        # round up to match Solidity
        return (ratio >> 32) + (1 if ratio & ((1 << 32) - 1) != 0 else 0)

    @staticmethod
    def get_amounts_for_liquidity(
        sqrtP: int,
        sqrtPA: int,
        sqrtPB: int,
        L: int,
    ) -> Tuple[int, int]:
        """
        Amounts from liquidity (Uniswap V3 exact logic).
        Returns (amount0, amount1)
        """

        if sqrtPA > sqrtPB:
            sqrtPA, sqrtPB = sqrtPB, sqrtPA

        if L <= 0:
            return 0, 0

        if sqrtP <= sqrtPA:
            amount0 = (L * (sqrtPB - sqrtPA) * UniswapV3Math.Q96) // (sqrtPA * sqrtPB)
            return amount0, 0

        elif sqrtP < sqrtPB:
            amount0 = (L * (sqrtPB - sqrtP) * UniswapV3Math.Q96) // (sqrtP * sqrtPB)
            amount1 = (L * (sqrtP - sqrtPA)) // UniswapV3Math.Q96
            return amount0, amount1

        else:
            amount1 = (L * (sqrtPB - sqrtPA)) // UniswapV3Math.Q96
            return 0, amount1

    @staticmethod
    def position_amounts(
        tick_lower: int,
        tick_upper: int,
        sqrt_price_x96: int,
        liquidity: int,
    ) -> Tuple[int, int]:
        """Token amounts currently held by a position (amount0, amount1)."""
        return UniswapV3Math.get_amounts_for_liquidity(
            sqrt_price_x96,
            UniswapV3Math.get_sqrt_ratio_at_tick(tick_lower),
            UniswapV3Math.get_sqrt_ratio_at_tick(tick_upper),
            liquidity,
        )
