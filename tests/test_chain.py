import pytest
from decimal import Decimal
from unittest.mock import MagicMock, AsyncMock, patch
from web3.exceptions import ContractLogicError

from domain import ConfigError, ReadError, TokenInfo
from rebalancer.services.chain import Web3ChainAccount, Web3ChainQueryClient, native_token
from rebalancer.services.keys import EnvKeyStore
from rebalancer.utils.web3 import ZERO_ADDRESS

# Constants for testing - Use valid hex addresses
CHAIN_ID = 8453
NFT_MANAGER_ADDR = "0x1234567890123456789012345678901234567890"
POOL_ADDR = "0x2234567890123456789012345678901234567890"
TOKEN0 = "0x3234567890123456789012345678901234567890"
TOKEN1 = "0x4234567890123456789012345678901234567890"
OWNER = "0x5234567890123456789012345678901234567890"


@pytest.fixture
def mock_web3_helper():
    with patch("rebalancer.services.chain.AsyncWeb3Helper") as mock:
        yield mock


@pytest.fixture
def contracts(mock_web3_helper):
    """Contract mocks by ABI name, handed out by make_contract_by_name."""
    mock_web3 = mock_web3_helper.make_web3.return_value
    contracts = {
        "INonfungiblePositionManager": MagicMock(),
        "ICLPool": MagicMock(),
        "ERC20": MagicMock(),
    }

    def make_contract_side_effect(name, addr):
        return contracts[name]

    mock_web3.make_contract_by_name.side_effect = make_contract_side_effect
    return contracts


@pytest.fixture
def client(contracts):
    return Web3ChainQueryClient(CHAIN_ID, NFT_MANAGER_ADDR)


def mock_contract_call(contract_function_mock, return_value):
    """Helper to mock a contract function call: contract.functions.func().call() -> return_value"""
    method_obj = MagicMock()
    contract_function_mock.return_value = method_obj
    method_obj.call = AsyncMock(return_value=return_value)
    return method_obj.call


def position_tuple(liquidity=10**18, lower=-1000, upper=1000):
    # nonce, operator, token0, token1, tickSpacing, tickLower, tickUpper, liquidity, ...
    return (0, ZERO_ADDRESS, TOKEN0, TOKEN1, 100, lower, upper, liquidity, 0, 0, 0, 0)


@pytest.mark.asyncio
async def test_get_pool_info(client, contracts):
    pool = contracts["ICLPool"]
    mock_contract_call(pool.functions.slot0, (2 << 96, 13863, 0, 0, False, True))
    mock_contract_call(pool.functions.tickSpacing, 100)

    info = await client.get_pool_info(POOL_ADDR)

    assert info.price == Decimal(4)
    assert info.current_tick == 13863
    assert info.tick_spacing == 100
    assert info.sqrt_price_x96 == 2 << 96


@pytest.mark.asyncio
async def test_get_pool_info_failure(client, contracts):
    pool = contracts["ICLPool"]
    pool.functions.slot0.return_value.call = AsyncMock(side_effect=Exception("RPC Error"))
    mock_contract_call(pool.functions.tickSpacing, 100)

    with pytest.raises(ReadError) as exc_info:
        await client.get_pool_info(POOL_ADDR)

    assert exc_info.value.chain_id == CHAIN_ID


@pytest.mark.asyncio
async def test_get_position_info(client, contracts):
    mock_contract_call(contracts["INonfungiblePositionManager"].functions.positions, position_tuple())

    position = await client.get_position_info("42")

    assert position.position_id == "42"
    assert position.lower_tick == -1000
    assert position.upper_tick == 1000
    assert position.token0 == TOKEN0
    assert position.tick_spacing == 100
    contracts["INonfungiblePositionManager"].functions.positions.assert_called_with(42)


@pytest.mark.asyncio
async def test_get_position_info_empty_liquidity(client, contracts):
    mock_contract_call(contracts["INonfungiblePositionManager"].functions.positions, position_tuple(liquidity=0))

    assert await client.get_position_info("42") is None


@pytest.mark.asyncio
async def test_get_position_info_burned_token(client, contracts):
    positions = contracts["INonfungiblePositionManager"].functions.positions
    positions.return_value.call = AsyncMock(side_effect=ContractLogicError("Invalid token ID"))

    assert await client.get_position_info("42") is None


@pytest.mark.asyncio
async def test_get_position_info_rpc_failure(client, contracts):
    positions = contracts["INonfungiblePositionManager"].functions.positions
    positions.return_value.call = AsyncMock(side_effect=Exception("RPC Error"))

    with pytest.raises(ReadError):
        await client.get_position_info("42")


@pytest.mark.asyncio
async def test_position_reads_need_position_manager(contracts):
    client = Web3ChainQueryClient(CHAIN_ID)

    with pytest.raises(ReadError):
        await client.get_position_info("42")


@pytest.mark.asyncio
async def test_get_owner_positions_pages(client, contracts):
    nft = contracts["INonfungiblePositionManager"]
    mock_contract_call(nft.functions.balanceOf, 3)
    token_of_owner = MagicMock()
    token_of_owner.call = AsyncMock(side_effect=[11, 12, 13])
    nft.functions.tokenOfOwnerByIndex.return_value = token_of_owner
    mock_contract_call(nft.functions.positions, position_tuple())

    first, cursor = await client.get_owner_positions_page(OWNER, None, 2)
    second, last_cursor = await client.get_owner_positions_page(OWNER, cursor, 2)

    assert [p.position_id for p in first] == ["11", "12"]
    assert cursor == 2
    assert [p.position_id for p in second] == ["13"]
    assert last_cursor is None


@pytest.mark.asyncio
async def test_get_token_info_cached(client, contracts):
    erc20 = contracts["ERC20"]
    symbol_call = mock_contract_call(erc20.functions.symbol, "WETH")
    mock_contract_call(erc20.functions.decimals, 18)

    first = await client.get_token_info(TOKEN0)
    second = await client.get_token_info(TOKEN0.upper().replace("0X", "0x"))

    assert first == TokenInfo(chain_id=CHAIN_ID, identifier=TOKEN0, name="WETH", decimals=18)
    assert second is first
    assert symbol_call.await_count == 1


@pytest.mark.asyncio
async def test_account_balances(mock_web3_helper, contracts):
    mock_contract_call(contracts["ERC20"].functions.balanceOf, 5_000)
    token = TokenInfo(chain_id=CHAIN_ID, identifier=TOKEN0, name="USDC", decimals=6)
    account = Web3ChainAccount(CHAIN_ID, OWNER)

    balances = await account.get_available_balances([token])

    assert balances[TOKEN0].amount == 5_000


@pytest.mark.asyncio
async def test_account_rejects_foreign_token(mock_web3_helper, contracts):
    token = TokenInfo(chain_id=1, identifier=TOKEN0, name="USDC", decimals=6)
    account = Web3ChainAccount(CHAIN_ID, OWNER)

    with pytest.raises(ValueError):
        await account.get_token_available_balance(token)


@pytest.mark.asyncio
async def test_account_native_balance(mock_web3_helper):
    mock_web3_helper.make_web3.return_value.get_native_balance = AsyncMock(return_value=10**15)
    account = Web3ChainAccount(CHAIN_ID, OWNER)

    balance = await account.get_native_balance()

    assert balance.amount == 10**15
    assert balance.token == native_token(CHAIN_ID)


def test_key_store_prefers_chain_specific_address():
    keys = EnvKeyStore({"SIGNER_ADDRESS": OWNER, f"SIGNER_ADDRESS_{CHAIN_ID}": TOKEN0.lower()})

    assert keys.get_address(CHAIN_ID).lower() == TOKEN0.lower()
    assert keys.get_address(1).lower() == OWNER.lower()


def test_key_store_missing_address():
    with pytest.raises(ConfigError):
        EnvKeyStore({}).get_address(CHAIN_ID)


def test_key_store_invalid_address():
    with pytest.raises(ConfigError):
        EnvKeyStore({"SIGNER_ADDRESS": "not-an-address"}).get_address(CHAIN_ID)
