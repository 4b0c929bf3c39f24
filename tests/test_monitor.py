"""
Tests for the position monitor and page iteration.
"""
import pytest
from decimal import Decimal
from unittest.mock import AsyncMock

from domain import PoolConfig, PoolInfo, PositionInfo, ReadError, TokenAmount, TokenInfo
from rebalancer.services.clients import ChainAccount, ChainQueryClient
from rebalancer.services.monitor import PositionMonitor, iter_pages

POOL = PoolConfig(id="0xpool", token0="0xWETH", token1="0xUSDC", tick_spacing=100)
OWNER = "0x1111111111111111111111111111111111111111"


def position(position_id, token0="0xweth", token1="0xusdc", tick_spacing=100):
    return PositionInfo(
        position_id=position_id,
        lower_tick=-1000,
        upper_tick=1000,
        liquidity=10**18,
        token0=token0,
        token1=token1,
        tick_spacing=tick_spacing,
    )


@pytest.fixture
def query():
    query = AsyncMock(spec=ChainQueryClient)
    query.get_pool_info.return_value = PoolInfo(
        pool_id="0xpool", price=Decimal(1), current_tick=0, tick_spacing=100, sqrt_price_x96=1 << 96
    )
    return query


@pytest.mark.asyncio
async def test_iter_pages_walks_all_pages():
    pages = {None: ([1, 2], 2), 2: ([3, 4], 4), 4: ([5], None)}
    fetch = AsyncMock(side_effect=lambda cursor: pages[cursor])

    items = [item async for item in iter_pages(fetch)]

    assert items == [1, 2, 3, 4, 5]
    assert fetch.await_count == 3


@pytest.mark.asyncio
async def test_iter_pages_is_lazy():
    pages = {None: ([1, 2], 2), 2: ([3, 4], None)}
    fetch = AsyncMock(side_effect=lambda cursor: pages[cursor])

    async for item in iter_pages(fetch):
        if item == 2:
            break

    assert fetch.await_count == 1


@pytest.mark.asyncio
async def test_snapshot_with_position(query):
    query.get_position_info.return_value = position("42")
    monitor = PositionMonitor(query, POOL)

    snapshot = await monitor.snapshot("42")

    assert snapshot.pool.price == Decimal(1)
    assert snapshot.position.position_id == "42"
    lower, upper = snapshot.position_range()
    assert lower < Decimal(1) < upper


@pytest.mark.asyncio
async def test_snapshot_without_position_id_skips_position_read(query):
    monitor = PositionMonitor(query, POOL)

    snapshot = await monitor.snapshot("")

    assert snapshot.position is None
    assert snapshot.position_range() is None
    query.get_position_info.assert_not_awaited()


@pytest.mark.asyncio
async def test_read_failure_fails_closed(query):
    query.get_pool_info.side_effect = RuntimeError("rpc timeout")
    monitor = PositionMonitor(query, POOL)

    with pytest.raises(ReadError) as exc_info:
        await monitor.snapshot("42")

    assert exc_info.value.step == "get_pool_info"
    query.get_position_info.assert_not_awaited()


@pytest.mark.asyncio
async def test_read_error_propagates_unchanged(query):
    original = ReadError("reverted", step="positions")
    query.get_position_info.side_effect = original
    monitor = PositionMonitor(query, POOL)

    with pytest.raises(ReadError) as exc_info:
        await monitor.get_position_info("42")

    assert exc_info.value is original


@pytest.mark.asyncio
async def test_list_open_positions_filters_other_pools(query):
    query.get_owner_positions_page.side_effect = [
        ([position("1"), position("2", token0="0xdai")], 2),
        ([position("3", tick_spacing=200), position("4")], None),
    ]
    monitor = PositionMonitor(query, POOL, page_size=2)

    positions = await monitor.list_open_positions(OWNER)

    assert [p.position_id for p in positions] == ["1", "4"]
    query.get_owner_positions_page.assert_any_await(OWNER, None, 2)
    query.get_owner_positions_page.assert_any_await(OWNER, 2, 2)


@pytest.mark.asyncio
async def test_list_open_positions_wraps_errors(query):
    query.get_owner_positions_page.side_effect = ValueError("bad page")
    monitor = PositionMonitor(query, POOL)

    with pytest.raises(ReadError):
        await monitor.list_open_positions(OWNER)


@pytest.mark.asyncio
async def test_get_balances_in_token_order(query):
    weth = TokenInfo(chain_id=8453, identifier="0xweth", name="WETH", decimals=18)
    usdc = TokenInfo(chain_id=8453, identifier="0xusdc", name="USDC", decimals=6)
    account = AsyncMock(spec=ChainAccount)
    account.chain_id = 8453
    account.get_available_balances.return_value = {"0xusdc": TokenAmount(amount=5, token=usdc)}
    monitor = PositionMonitor(query, POOL)

    balances = await monitor.get_balances(account, [weth, usdc])

    assert balances == [TokenAmount.zero(weth), TokenAmount(amount=5, token=usdc)]
