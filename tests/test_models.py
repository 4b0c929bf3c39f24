"""
Tests for data models and validation.
"""
import pytest
from decimal import Decimal
from pydantic import ValidationError

from domain import (
    AppConfig,
    BridgeTransfer,
    BroadcastError,
    PoolConfig,
    PositionInfo,
    RebalanceResult,
    RebalancerError,
    TokenAmount,
    TokenInfo,
)

USDC = TokenInfo(chain_id=8453, identifier="0xusdc", name="USDC", decimals=6)
WETH = TokenInfo(chain_id=8453, identifier="0xweth", name="WETH", decimals=18)
USDC_MAINNET = TokenInfo(chain_id=1, identifier="0xusdc1", name="USDC", decimals=6)


def test_token_amount_addition():
    """Test adding amounts of the same token."""
    total = TokenAmount(amount=1_500_000, token=USDC) + TokenAmount(amount=500_000, token=USDC)

    assert total.amount == 2_000_000
    assert total.token == USDC


def test_token_amount_subtraction():
    diff = TokenAmount(amount=3, token=WETH) - TokenAmount(amount=1, token=WETH)
    assert diff.amount == 2


def test_token_amount_subtraction_cannot_go_negative():
    with pytest.raises(ValueError):
        TokenAmount(amount=1, token=WETH) - TokenAmount(amount=2, token=WETH)


def test_token_amount_mismatch():
    """Amounts of different tokens, or the same symbol on another chain, do not mix."""
    with pytest.raises(ValueError):
        TokenAmount(amount=1, token=USDC) + TokenAmount(amount=1, token=WETH)
    with pytest.raises(ValueError):
        TokenAmount(amount=1, token=USDC) < TokenAmount(amount=1, token=USDC_MAINNET)


def test_token_amount_comparison():
    small = TokenAmount(amount=1, token=USDC)
    large = TokenAmount(amount=2, token=USDC)

    assert small < large
    assert large >= small
    assert TokenAmount.zero(USDC).is_zero()


def test_token_amount_negative_rejected():
    with pytest.raises(ValidationError):
        TokenAmount(amount=-1, token=USDC)


def test_from_human_readable_floors():
    amount = TokenAmount.from_human_readable("1.2345678", USDC)

    assert amount.amount == 1_234_567
    assert amount.human_readable_amount == Decimal("1.234567")


def test_token_amount_str():
    assert str(TokenAmount(amount=1_500_000, token=USDC)) == "1.5 USDC"
    assert str(TokenAmount(amount=10**18, token=WETH)) == "1 WETH"


def test_pool_config_aliases():
    pool = PoolConfig.model_validate({
        "id": "0xpool",
        "token0": "0xweth",
        "token1": "0xusdc",
        "tickSpacing": 100,
    })

    assert pool.tick_spacing == 100
    assert pool.spread_factor == 0.0
    assert pool.position_manager is None


def test_pool_config_same_tokens_invalid():
    with pytest.raises(ValidationError):
        PoolConfig(id="0xpool", token0="0xAbC", token1="0xabc", tick_spacing=100)


def test_pool_config_tick_spacing_positive():
    with pytest.raises(ValidationError):
        PoolConfig(id="0xpool", token0="0xa", token1="0xb", tick_spacing=0)


def test_app_config_requires_positive_threshold():
    data = {
        "rebalanceThresholdPercent": 0,
        "pool": {"id": "0xpool", "token0": "0xa", "token1": "0xb", "tickSpacing": 1},
        "position": {"id": "", "bandPercentage": 10},
    }
    with pytest.raises(ValidationError):
        AppConfig.model_validate(data)


def test_app_config_has_position():
    config = AppConfig.model_validate({
        "rebalanceThresholdPercent": 5,
        "pool": {"id": "0xpool", "token0": "0xa", "token1": "0xb", "tickSpacing": 1},
        "position": {"id": "42", "bandPercentage": 10},
    })

    assert config.has_position()
    assert config.mirror is None
    assert config.pending_bridge is None


def test_position_info_tick_order():
    with pytest.raises(ValidationError):
        PositionInfo(position_id="1", lower_tick=100, upper_tick=100, liquidity=1)


def test_bridge_transfer_source_chain():
    transfer = BridgeTransfer(
        token_amount=TokenAmount(amount=5, token=USDC_MAINNET),
        to_chain_id=8453,
        destination_address="0xdest",
    )
    assert transfer.from_chain_id == 1


def test_rebalance_result_ok():
    assert RebalanceResult(pool_id="0xpool").ok
    assert not RebalanceResult(pool_id="0xpool", error="boom").ok


def test_error_context_rendering():
    error = BroadcastError(
        "create reverted", tx_hash="0xabc", step="create", chain_id=8453, amounts={"amount0": 5}
    )

    assert isinstance(error, RebalancerError)
    assert error.tx_hash == "0xabc"
    assert str(error) == "create reverted [step=create chain_id=8453 amounts=amount0:5]"
