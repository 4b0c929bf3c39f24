"""
Position monitor.

Reads the pool and the managed position from chain before every
decision. Reads are not atomic across the two queries: the pool and
the position may be observed up to one block apart, which the rebalance
threshold absorbs. Any failed read fails the workflow closed.
"""
import logging
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Tuple, TypeVar

from pydantic import BaseModel

from domain import PoolConfig, PoolInfo, PositionInfo, ReadError, TokenAmount, TokenInfo
from rebalancer.services.clients import ChainAccount, ChainQueryClient
from rebalancer.utils.math import UniswapV3Math

logger = logging.getLogger(__name__)

T = TypeVar("T")
Cursor = Optional[int]


async def iter_pages(
    fetch_page: Callable[[Cursor], Awaitable[Tuple[List[T], Cursor]]],
) -> AsyncIterator[T]:
    """
    Lazily walk a paginated query.

    Pages are fetched on demand until no next cursor is returned. Each call
    starts over from the first page.
    """
    cursor: Cursor = None
    while True:
        items, cursor = await fetch_page(cursor)
        for item in items:
            yield item
        if cursor is None:
            return


class MarketSnapshot(BaseModel):
    """Pool state and the managed position (None when none is open)."""
    pool: PoolInfo
    position: Optional[PositionInfo] = None

    def position_range(self) -> Optional[Tuple]:
        if self.position is None:
            return None
        return (
            UniswapV3Math.tick_to_price(self.position.lower_tick),
            UniswapV3Math.tick_to_price(self.position.upper_tick),
        )


class PositionMonitor:
    """Reads pool price and position state for the configured pool."""

    def __init__(
        self,
        query_client: ChainQueryClient,
        pool: PoolConfig,
        page_size: int = 50,
        logger: logging.Logger = logger,
    ):
        self.query_client = query_client
        self.pool = pool
        self.page_size = page_size
        self.logger = logger

    async def get_pool_info(self) -> PoolInfo:
        pool_info = await self._read("get_pool_info", self.query_client.get_pool_info(self.pool.id))
        if pool_info.tick_spacing != self.pool.tick_spacing:
            self.logger.warning(
                f"Pool {self.pool.id} reports tick spacing {pool_info.tick_spacing}, "
                f"config says {self.pool.tick_spacing}"
            )
        return pool_info

    async def get_position_info(self, position_id: str) -> Optional[PositionInfo]:
        if not position_id:
            return None
        return await self._read(
            "get_position_info", self.query_client.get_position_info(position_id)
        )

    async def snapshot(self, position_id: str) -> MarketSnapshot:
        """
        Read the pool, then the position.

        Raises:
            ReadError: If either read fails
        """
        pool_info = await self.get_pool_info()
        position = await self.get_position_info(position_id)
        if position is not None:
            self.logger.info(
                f"Position {position.position_id}: ticks [{position.lower_tick}, {position.upper_tick}], "
                f"liquidity {position.liquidity}, pool tick {pool_info.current_tick}"
            )
        else:
            self.logger.info(f"No open position, pool tick {pool_info.current_tick}")
        return MarketSnapshot(pool=pool_info, position=position)

    def _in_pool(self, position: PositionInfo) -> bool:
        if position.token0 is None or position.token1 is None:
            return False
        if position.tick_spacing is not None and position.tick_spacing != self.pool.tick_spacing:
            return False
        return (
            position.token0.lower() == self.pool.token0.lower()
            and position.token1.lower() == self.pool.token1.lower()
        )

    async def list_open_positions(self, owner: str) -> List[PositionInfo]:
        """All open positions of `owner` in the configured pool."""

        async def fetch_page(cursor: Cursor):
            return await self.query_client.get_owner_positions_page(owner, cursor, self.page_size)

        positions = []
        try:
            async for position in iter_pages(fetch_page):
                if self._in_pool(position):
                    positions.append(position)
        except ReadError:
            raise
        except Exception as e:
            raise ReadError(f"Failed to list positions of {owner}: {e}", step="list_open_positions") from e
        return positions

    async def get_token_info(self, identifier: str) -> TokenInfo:
        return await self._read("get_token_info", self.query_client.get_token_info(identifier))

    async def get_balances(self, account: ChainAccount, tokens: List[TokenInfo]) -> List[TokenAmount]:
        """Balances of `tokens`, in the same order."""
        balances = await self._read(
            "get_available_balances", account.get_available_balances(tokens), account.chain_id
        )
        return [balances.get(t.identifier, TokenAmount.zero(t)) for t in tokens]

    async def _read(self, step: str, awaitable: Awaitable[T], chain_id: Optional[int] = None) -> T:
        try:
            return await awaitable
        except ReadError:
            raise
        except Exception as e:
            raise ReadError(f"Read failed: {e}", step=step, chain_id=chain_id) from e
