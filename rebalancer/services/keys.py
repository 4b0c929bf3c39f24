"""
Signer address resolution.

Keys never leave the executor service; the rebalancer only needs the
signer's public address on each chain.
"""
import os
from typing import Dict, Optional

from web3 import Web3

from domain import ConfigError
from rebalancer.services.clients import KeyStore


class EnvKeyStore(KeyStore):
    """Addresses from SIGNER_ADDRESS_<chain id>, falling back to SIGNER_ADDRESS."""

    def __init__(self, environ: Optional[Dict[str, str]] = None):
        self.environ = os.environ if environ is None else environ

    def get_address(self, chain_id: int) -> str:
        address = self.environ.get(f"SIGNER_ADDRESS_{chain_id}") or self.environ.get("SIGNER_ADDRESS")
        if not address:
            raise ConfigError(
                "No signer address configured (set SIGNER_ADDRESS or SIGNER_ADDRESS_<chain id>)",
                step="keys",
                chain_id=chain_id,
            )
        if not Web3.is_address(address):
            raise ConfigError(f"Invalid signer address {address!r}", step="keys", chain_id=chain_id)
        return Web3.to_checksum_address(address)
