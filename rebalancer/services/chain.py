"""
Web3-backed chain readers.

Pool state comes from the CL pool's slot0, positions from the NFT
position manager, balances from ERC20 balanceOf.
"""
import asyncio
import logging
from typing import Dict, List, Optional, Tuple

from web3 import Web3
from web3.contract import AsyncContract
from web3.exceptions import ContractLogicError

from domain import PoolInfo, PositionInfo, ReadError, TokenAmount, TokenInfo
from rebalancer.services.clients import ChainAccount, ChainQueryClient
from rebalancer.utils.math import UniswapV3Math
from rebalancer.utils.web3 import (
    AsyncWeb3Helper,
    NATIVE_TOKEN_DECIMALS,
    NATIVE_TOKEN_NAME,
    ZERO_ADDRESS,
)

logger = logging.getLogger(__name__)


def native_token(chain_id: int) -> TokenInfo:
    return TokenInfo(
        chain_id=chain_id,
        identifier=ZERO_ADDRESS,
        name=NATIVE_TOKEN_NAME,
        decimals=NATIVE_TOKEN_DECIMALS,
    )


class Web3ChainQueryClient(ChainQueryClient):
    """Pool and position reads over AsyncWeb3."""

    def __init__(
        self,
        chain_id: int,
        position_manager_address: Optional[str] = None,
        rpc_url: Optional[str] = None,
    ):
        self.chain_id = chain_id
        self.helper = AsyncWeb3Helper.make_web3(chain_id, rpc_url)
        self.nft_manager: Optional[AsyncContract] = None
        if position_manager_address:
            self.nft_manager = self.helper.make_contract_by_name(
                name="INonfungiblePositionManager",
                addr=position_manager_address,
            )
        self._token_cache: Dict[str, TokenInfo] = {}

    def _require_nft_manager(self, step: str) -> AsyncContract:
        if self.nft_manager is None:
            raise ReadError("No position manager configured", step=step, chain_id=self.chain_id)
        return self.nft_manager

    async def get_pool_info(self, pool_id: str) -> PoolInfo:
        """
        Read price and tick from slot0.

        Raises:
            ReadError: If the pool cannot be read
        """
        pool = self.helper.make_contract_by_name(name="ICLPool", addr=pool_id)
        try:
            slot0, tick_spacing = await asyncio.gather(
                pool.functions.slot0().call(),
                pool.functions.tickSpacing().call(),
            )
        except Exception as e:
            raise ReadError(
                f"Failed to read pool {pool_id}: {e}",
                step="get_pool_info",
                chain_id=self.chain_id,
            ) from e

        sqrt_price_x96, tick = slot0[0], slot0[1]
        return PoolInfo(
            pool_id=pool_id,
            price=UniswapV3Math.sqrt_price_x96_to_price(sqrt_price_x96),
            current_tick=tick,
            tick_spacing=tick_spacing,
            sqrt_price_x96=sqrt_price_x96,
        )

    async def get_position_info(self, position_id: str) -> Optional[PositionInfo]:
        """
        Read a position from the NFT manager.

        Returns:
            PositionInfo, or None when the token id is unknown/burned or
            holds no liquidity

        Raises:
            ReadError: If the query fails for any other reason
        """
        nft_manager = self._require_nft_manager("get_position_info")
        try:
            data = await nft_manager.functions.positions(int(position_id)).call()
        except ContractLogicError as e:
            logger.info(f"Position {position_id} not found on chain {self.chain_id}: {e}")
            return None
        except Exception as e:
            raise ReadError(
                f"Failed to read position {position_id}: {e}",
                step="get_position_info",
                chain_id=self.chain_id,
            ) from e

        liquidity = data[7]
        if liquidity == 0:
            logger.info(f"Position {position_id} has no liquidity")
            return None

        return PositionInfo(
            position_id=str(position_id),
            lower_tick=data[5],
            upper_tick=data[6],
            liquidity=liquidity,
            token0=data[2],
            token1=data[3],
            tick_spacing=data[4],
        )

    async def get_owner_positions_page(
        self, owner: str, cursor: Optional[int], page_size: int
    ) -> Tuple[List[PositionInfo], Optional[int]]:
        """Positions at owner indices [cursor, cursor + page_size)."""
        nft_manager = self._require_nft_manager("get_owner_positions_page")
        start = cursor or 0
        owner = Web3.to_checksum_address(owner)
        try:
            count = await nft_manager.functions.balanceOf(owner).call()
            end = min(start + page_size, count)
            token_ids = await asyncio.gather(
                *[
                    nft_manager.functions.tokenOfOwnerByIndex(owner, index).call()
                    for index in range(start, end)
                ]
            )
        except Exception as e:
            raise ReadError(
                f"Failed to list positions of {owner}: {e}",
                step="get_owner_positions_page",
                chain_id=self.chain_id,
            ) from e

        positions = await asyncio.gather(
            *[self.get_position_info(str(token_id)) for token_id in token_ids]
        )
        next_cursor = end if end < count else None
        return [p for p in positions if p is not None], next_cursor

    async def get_token_info(self, identifier: str) -> TokenInfo:
        key = identifier.lower()
        if key in self._token_cache:
            return self._token_cache[key]

        token = self.helper.make_contract_by_name(name="ERC20", addr=identifier)
        try:
            symbol, decimals = await asyncio.gather(
                token.functions.symbol().call(),
                token.functions.decimals().call(),
            )
        except Exception as e:
            raise ReadError(
                f"Failed to read token {identifier}: {e}",
                step="get_token_info",
                chain_id=self.chain_id,
            ) from e

        info = TokenInfo(chain_id=self.chain_id, identifier=identifier, name=symbol, decimals=decimals)
        self._token_cache[key] = info
        return info


class Web3ChainAccount(ChainAccount):
    """ERC20 and native balances of one address."""

    def __init__(self, chain_id: int, address: str, rpc_url: Optional[str] = None):
        self.chain_id = chain_id
        self.address = address
        self.helper = AsyncWeb3Helper.make_web3(chain_id, rpc_url)

    async def get_token_available_balance(self, token: TokenInfo) -> TokenAmount:
        if token.chain_id != self.chain_id:
            raise ValueError(
                f"Token {token.name} is on chain {token.chain_id}, account is on {self.chain_id}"
            )
        contract = self.helper.make_contract_by_name(name="ERC20", addr=token.identifier)
        try:
            amount = await contract.functions.balanceOf(
                Web3.to_checksum_address(self.address)
            ).call()
        except Exception as e:
            raise ReadError(
                f"Failed to read {token.name} balance of {self.address}: {e}",
                step="get_token_available_balance",
                chain_id=self.chain_id,
            ) from e
        return TokenAmount(amount=amount, token=token)

    async def get_available_balances(self, tokens: List[TokenInfo]) -> Dict[str, TokenAmount]:
        amounts = await asyncio.gather(*[self.get_token_available_balance(t) for t in tokens])
        return {amount.token.identifier: amount for amount in amounts}

    async def get_native_balance(self) -> TokenAmount:
        try:
            amount = await self.helper.get_native_balance(self.address)
        except Exception as e:
            raise ReadError(
                f"Failed to read native balance of {self.address}: {e}",
                step="get_native_balance",
                chain_id=self.chain_id,
            ) from e
        return TokenAmount(amount=amount, token=native_token(self.chain_id))
