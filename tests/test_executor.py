import pytest
import requests
from unittest.mock import MagicMock, patch

from domain import (
    BridgeStatus,
    BroadcastError,
    PositionInfo,
    ReadError,
    SubmissionError,
    TokenAmount,
    TokenInfo,
)
from rebalancer.services.executor import ExecutorBridgingClient, ExecutorTxClient

EXECUTOR_URL = "http://executor.local/"
STATUS_URL = "https://li.quest/v1"
CHAIN_ID = 8453
RECIPIENT = "0x5234567890123456789012345678901234567890"

WETH = TokenInfo(chain_id=CHAIN_ID, identifier="0xweth", name="WETH", decimals=18)
USDC = TokenInfo(chain_id=CHAIN_ID, identifier="0xusdc", name="USDC", decimals=6)
USDC_MAINNET = TokenInfo(chain_id=1, identifier="0xusdc1", name="USDC", decimals=6)


def response(status_code=200, payload=None):
    mock = MagicMock()
    mock.status_code = status_code
    mock.text = "error body"
    mock.json.return_value = payload or {}
    return mock


@pytest.fixture
def mock_requests():
    with patch("rebalancer.services.executor.requests") as mock:
        # keep real exception classes for the except clauses
        mock.RequestException = requests.RequestException
        yield mock


@pytest.fixture
def tx_client():
    return ExecutorTxClient(EXECUTOR_URL, "key", CHAIN_ID, position_manager="0xnft", timeout=30)


@pytest.fixture
def bridge_client():
    return ExecutorBridgingClient(EXECUTOR_URL, "key", STATUS_URL, timeout=30)


@pytest.mark.asyncio
async def test_create_position(mock_requests, tx_client):
    mock_requests.post.return_value = response(payload={
        "tx_hash": "0xc",
        "successful": True,
        "position_id": 43,
        "liquidity": "1000",
        "amount0": "10",
        "amount1": "20",
        "gas_fee_wei": "21000",
    })

    outcome = await tx_client.create_position(
        "0xpool", -100, 100, TokenAmount(amount=10, token=WETH), TokenAmount(amount=20, token=USDC), RECIPIENT
    )

    assert outcome.successful
    assert outcome.tx_hash == "0xc"
    assert outcome.data["position_id"] == "43"
    assert outcome.data["liquidity"] == 1000
    assert outcome.gas_fee.amount == 21000
    assert outcome.gas_fee.token.name == "ETH"

    url = mock_requests.post.call_args.args[0]
    body = mock_requests.post.call_args.kwargs["json"]
    assert url == "http://executor.local/create_position"
    assert body["api_key"] == "key"
    assert body["chain_id"] == CHAIN_ID
    assert body["tick_lower"] == -100
    assert body["amount0_desired"] == "10"
    assert mock_requests.post.call_args.kwargs["timeout"] == 30


@pytest.mark.asyncio
async def test_withdraw_position(mock_requests, tx_client):
    mock_requests.post.return_value = response(payload={
        "tx_hash": "0xw",
        "successful": True,
        "amount0": "100",
        "amount1": "200",
        "rewards0": "3",
    })
    position = PositionInfo(position_id="42", lower_tick=-100, upper_tick=100, liquidity=5)

    outcome = await tx_client.withdraw_position(position, RECIPIENT)

    assert outcome.data == {"amount0": 100, "amount1": 200, "rewards0": 3, "rewards1": 0}
    assert outcome.gas_fee is None
    assert mock_requests.post.call_args.kwargs["json"]["liquidity"] == "5"


@pytest.mark.asyncio
async def test_create_position_without_reported_amounts(mock_requests, tx_client):
    mock_requests.post.return_value = response(payload={
        "tx_hash": "0xc", "successful": True, "position_id": "43", "amount0": "0",
    })

    outcome = await tx_client.create_position(
        "0xpool", -100, 100, TokenAmount(amount=10, token=WETH), TokenAmount(amount=20, token=USDC), RECIPIENT
    )

    assert outcome.data["amount0"] == 0
    assert outcome.data["amount1"] is None


@pytest.mark.asyncio
async def test_swap(mock_requests, tx_client):
    mock_requests.post.return_value = response(payload={
        "tx_hash": "0xs", "successful": True, "amount_out": "1500000", "gas_fee_wei": "5",
    })

    outcome = await tx_client.swap(TokenAmount(amount=10**18, token=WETH), USDC, 1485000, RECIPIENT)

    assert outcome.successful
    assert outcome.tx_hash == "0xs"
    assert outcome.data == {"amount_out": 1500000}
    assert outcome.gas_fee.amount == 5

    url = mock_requests.post.call_args.args[0]
    body = mock_requests.post.call_args.kwargs["json"]
    assert url == "http://executor.local/swap"
    assert body["chain_id"] == CHAIN_ID
    assert body["token_in"] == "0xweth"
    assert body["amount_in"] == str(10**18)
    assert body["token_out"] == "0xusdc"
    assert body["min_amount_out"] == "1485000"
    assert body["recipient"] == RECIPIENT


@pytest.mark.asyncio
async def test_swap_rejected_is_submission_error(mock_requests, tx_client):
    mock_requests.post.return_value = response(status_code=500)

    with pytest.raises(SubmissionError) as exc_info:
        await tx_client.swap(TokenAmount(amount=1, token=WETH), USDC, 1, RECIPIENT)

    assert exc_info.value.step == "swap"

@pytest.mark.asyncio
async def test_unsuccessful_outcome_is_returned(mock_requests, tx_client):
    mock_requests.post.return_value = response(payload={
        "tx_hash": "0xw", "successful": False, "error": "execution reverted",
    })
    position = PositionInfo(position_id="42", lower_tick=-100, upper_tick=100, liquidity=5)

    outcome = await tx_client.withdraw_position(position, RECIPIENT)

    assert not outcome.successful
    assert outcome.error == "execution reverted"


@pytest.mark.asyncio
async def test_rejected_request_is_submission_error(mock_requests, tx_client):
    mock_requests.post.return_value = response(status_code=401)
    position = PositionInfo(position_id="42", lower_tick=-100, upper_tick=100, liquidity=5)

    with pytest.raises(SubmissionError) as exc_info:
        await tx_client.withdraw_position(position, RECIPIENT)

    assert exc_info.value.step == "withdraw_position"


@pytest.mark.asyncio
async def test_connection_error_is_submission_error(mock_requests, tx_client):
    mock_requests.post.side_effect = requests.ConnectionError("refused")
    position = PositionInfo(position_id="42", lower_tick=-100, upper_tick=100, liquidity=5)

    with pytest.raises(SubmissionError):
        await tx_client.withdraw_position(position, RECIPIENT)


@pytest.mark.asyncio
async def test_invalid_json_is_submission_error(mock_requests, tx_client):
    bad = response()
    bad.json.side_effect = ValueError("no json")
    mock_requests.post.return_value = bad
    position = PositionInfo(position_id="42", lower_tick=-100, upper_tick=100, liquidity=5)

    with pytest.raises(SubmissionError):
        await tx_client.withdraw_position(position, RECIPIENT)


@pytest.mark.asyncio
async def test_submit_transfer(mock_requests, bridge_client):
    mock_requests.post.return_value = response(payload={"tx_hash": "0xb", "successful": True})

    tx_hash = await bridge_client.submit_transfer(TokenAmount(amount=7, token=USDC_MAINNET), CHAIN_ID, RECIPIENT)

    assert tx_hash == "0xb"
    body = mock_requests.post.call_args.kwargs["json"]
    assert body["chain_id"] == 1
    assert body["to_chain_id"] == CHAIN_ID
    assert body["amount"] == "7"


@pytest.mark.asyncio
async def test_submit_transfer_without_hash(mock_requests, bridge_client):
    mock_requests.post.return_value = response(payload={"successful": False, "error": "no route"})

    with pytest.raises(SubmissionError):
        await bridge_client.submit_transfer(TokenAmount(amount=7, token=USDC_MAINNET), CHAIN_ID, RECIPIENT)


@pytest.mark.asyncio
async def test_submit_transfer_reverted(mock_requests, bridge_client):
    mock_requests.post.return_value = response(payload={"tx_hash": "0xb", "successful": False})

    with pytest.raises(BroadcastError) as exc_info:
        await bridge_client.submit_transfer(TokenAmount(amount=7, token=USDC_MAINNET), CHAIN_ID, RECIPIENT)

    assert exc_info.value.tx_hash == "0xb"


@pytest.mark.asyncio
@pytest.mark.parametrize("raw,expected", [
    ("DONE", BridgeStatus.COMPLETED),
    ("FAILED", BridgeStatus.FAILED),
    ("INVALID", BridgeStatus.FAILED),
    ("PENDING", BridgeStatus.PENDING),
    ("NOT_FOUND", BridgeStatus.PENDING),
])
async def test_poll_status_mapping(mock_requests, bridge_client, raw, expected):
    mock_requests.get.return_value = response(payload={"status": raw, "receiving": {"amount": "6"}})

    report = await bridge_client.poll_status("0xb", 1, CHAIN_ID)

    assert report.status == expected
    assert report.received_amount == 6
    assert mock_requests.get.call_args.args[0] == "https://li.quest/v1/status"
    assert mock_requests.get.call_args.kwargs["params"] == {"txHash": "0xb", "fromChain": 1, "toChain": CHAIN_ID}


@pytest.mark.asyncio
async def test_poll_status_unknown_value(mock_requests, bridge_client):
    mock_requests.get.return_value = response(payload={"status": "MAYBE"})

    with pytest.raises(ReadError):
        await bridge_client.poll_status("0xb", 1, CHAIN_ID)


@pytest.mark.asyncio
async def test_poll_status_http_error(mock_requests, bridge_client):
    failing = response(status_code=500)
    failing.raise_for_status.side_effect = requests.HTTPError("500")
    mock_requests.get.return_value = failing

    with pytest.raises(ReadError):
        await bridge_client.poll_status("0xb", 1, CHAIN_ID)
