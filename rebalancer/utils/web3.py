import json
from pathlib import Path
from typing import Dict, Any, Optional

from web3 import AsyncHTTPProvider, AsyncWeb3, Web3
from web3.contract import AsyncContract

from rebalancer.utils.env import (
    MAINNET_RPC,
    BASE_RPC,
    SEPOLIA_RPC,
    BASE_SEPOLIA_RPC,
)

ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"
DEFAULT_ABI_PATH = Path(__file__).parent / "abis"
CHAIN_ID_TO_RPC = {
    1: MAINNET_RPC,
    8453: BASE_RPC,
    11155111: SEPOLIA_RPC,
    84532: BASE_SEPOLIA_RPC,
}
CHAIN_ID_TO_NAME = {
    1: "ethereum",
    8453: "base",
    11155111: "sepolia",
    84532: "base-sepolia",
}
# (base chain, mirror chain) per environment
ENVIRONMENT_CHAINS = {
    "mainnet": (8453, 1),
    "testnet": (84532, 11155111),
}
NATIVE_TOKEN_DECIMALS = 18
NATIVE_TOKEN_NAME = "ETH"


def chains_for_environment(environment: str) -> tuple:
    """Return the (base chain id, mirror chain id) pair for an environment."""
    if environment not in ENVIRONMENT_CHAINS:
        raise ValueError(
            f"Unknown environment {environment!r}, expected one of {sorted(ENVIRONMENT_CHAINS)}"
        )
    return ENVIRONMENT_CHAINS[environment]


class AsyncWeb3Helper:
    """Class acting as web3 base class"""

    def __init__(self) -> None:
        """Initialize web3 helper"""
        self.web3: Optional[AsyncWeb3] = None

    @classmethod
    def make_web3(cls, chain_id: int, rpc_url: Optional[str] = None) -> "AsyncWeb3Helper":
        if rpc_url is None and chain_id not in CHAIN_ID_TO_RPC:
            raise ValueError(f"Invalid chain id {chain_id}")
        instance = AsyncWeb3Helper()
        instance.web3 = AsyncWeb3(AsyncHTTPProvider(rpc_url or CHAIN_ID_TO_RPC[chain_id]))
        return instance

    def load_abi(self, path: Path) -> Dict[str, Any]:
        """Load an ABI file"""
        if not path.is_file():
            raise ValueError(f"Invalid ABI file path {path}")

        with open(path, "r") as f:
            abi_data = json.load(f)
            if isinstance(abi_data, dict):
                return abi_data.get("abi", abi_data)
            return abi_data

    def make_contract(self, abi_path: Path, addr: str) -> AsyncContract:
        """Make a contract object"""
        if self.web3 is None:
            raise ValueError("Web3 not initialized")
        abi = self.load_abi(abi_path)
        return self.web3.eth.contract(address=Web3.to_checksum_address(addr), abi=abi)

    def make_contract_by_name(self, name: str, addr: str) -> AsyncContract:
        """Make a contract object from an ABI shipped in `abis/`"""
        return self.make_contract(DEFAULT_ABI_PATH / f"{name}.json", addr)

    async def get_native_balance(self, addr: str) -> int:
        """Native balance of an address in wei"""
        if self.web3 is None:
            raise ValueError("Web3 not initialized")
        return await self.web3.eth.get_balance(Web3.to_checksum_address(addr))
