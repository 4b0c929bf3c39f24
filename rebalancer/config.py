"""
Configuration for the rebalancer.

Two layers:
- `Settings`: environment selection and service endpoints, from the
  process environment (.env supported).
- `ConfigStore`: the persisted JSON config holding the pool, the band
  and the managed position id. Writes are atomic.
"""
import json
import logging
import os
import tempfile
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, Field, ValidationError

from domain import AppConfig, ConfigError, PersistenceError, TokenAmount
from rebalancer.services.chain import native_token
from rebalancer.utils import env
from rebalancer.utils.env import get_env_variable
from rebalancer.utils.web3 import chains_for_environment

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "config.json"

# env var -> (json path, type)
CONFIG_OVERRIDES = {
    "REBALANCE_THRESHOLD_PERCENT": (("rebalanceThresholdPercent",), Decimal),
    "POSITION_BAND_PERCENTAGE": (("position", "bandPercentage"), Decimal),
    "POOL_ID": (("pool", "id"), str),
}


class Settings(BaseModel):
    """Runtime settings resolved from the environment."""
    environment: str = Field(..., description="mainnet or testnet")
    base_chain_id: int
    mirror_chain_id: int
    executor_url: Optional[str] = None
    executor_api_key: Optional[str] = None
    executor_timeout: int = 120
    bridge_status_url: str
    bridge_poll_interval: float = Field(..., gt=0)
    bridge_max_wait: float = Field(..., gt=0)
    min_gas_balance: Decimal = Field(..., ge=0, description="Gas reserve in native token units")
    position_manager: Optional[str] = None
    positions_page_size: int = Field(50, gt=0)
    database_url: Optional[str] = None

    @classmethod
    def from_env(cls, environment: Optional[str] = None) -> "Settings":
        """
        Build settings from the environment.

        Raises:
            ConfigError: On an unknown environment or invalid values
        """
        environment = environment or env.ENVIRONMENT
        try:
            base_chain_id, mirror_chain_id = chains_for_environment(environment)
            return cls(
                environment=environment,
                base_chain_id=base_chain_id,
                mirror_chain_id=mirror_chain_id,
                executor_url=env.EXECUTOR_URL,
                executor_api_key=env.EXECUTOR_API_KEY,
                executor_timeout=env.EXECUTOR_TIMEOUT,
                bridge_status_url=env.BRIDGE_STATUS_URL,
                bridge_poll_interval=env.BRIDGE_POLL_INTERVAL,
                bridge_max_wait=env.BRIDGE_MAX_WAIT,
                min_gas_balance=env.MIN_GAS_BALANCE,
                position_manager=env.POSITION_MANAGER_ADDRESS,
                positions_page_size=env.POSITIONS_PAGE_SIZE,
                database_url=env.DATABASE_URL,
            )
        except (ValueError, ValidationError) as e:
            raise ConfigError(f"Invalid settings: {e}", step="settings") from e

    def gas_reserve(self, chain_id: int) -> TokenAmount:
        """The native balance kept back for fees on `chain_id`."""
        return TokenAmount.from_human_readable(self.min_gas_balance, native_token(chain_id))

    def require_executor(self) -> str:
        if not self.executor_url:
            raise ConfigError("EXECUTOR_URL is not set", step="settings")
        return self.executor_url


def _encode_decimal(value: Any) -> Any:
    # percentages are written back as JSON numbers; short decimals survive the float repr
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _apply_overrides(raw: Dict[str, Any]) -> Dict[str, Any]:
    for name, (path, type_) in CONFIG_OVERRIDES.items():
        try:
            value = get_env_variable(name, type_, None)
        except (ValueError, TypeError) as e:
            raise ConfigError(str(e), step="config.load") from e
        if value is None:
            continue
        target = raw
        for key in path[:-1]:
            target = target.setdefault(key, {})
        target[path[-1]] = value
        logger.info(f"Config override from environment: {name}={value}")
    return raw


class ConfigStore:
    """
    Persisted configuration file.

    The position id in this file is the source of truth for which position
    the rebalancer manages; it is rewritten after every create and withdraw.
    """

    def __init__(self, path: Union[str, Path] = DEFAULT_CONFIG_FILE):
        self.path = Path(path)

    def load(self) -> AppConfig:
        """
        Load, override from the environment and validate.

        Raises:
            ConfigError: If the file is missing, malformed or invalid
        """
        try:
            with open(self.path, "r") as f:
                raw = json.load(f, parse_float=Decimal)
        except FileNotFoundError as e:
            raise ConfigError(f"Config file not found: {self.path}", step="config.load") from e
        except json.JSONDecodeError as e:
            raise ConfigError(f"Config file {self.path} is not valid JSON: {e}", step="config.load") from e

        if not isinstance(raw, dict):
            raise ConfigError(f"Config file {self.path} must hold a JSON object", step="config.load")

        try:
            return AppConfig.model_validate(_apply_overrides(raw))
        except ValidationError as e:
            raise ConfigError(f"Invalid config {self.path}: {e}", step="config.load") from e

    def save(self, config: AppConfig) -> None:
        """
        Atomically replace the config file.

        Raises:
            PersistenceError: If the file could not be written
        """
        data = config.model_dump(by_alias=True, exclude_none=True)
        directory = self.path.parent if str(self.path.parent) else Path(".")
        tmp_name = None
        try:
            with tempfile.NamedTemporaryFile(
                "w", dir=directory, prefix=f".{self.path.name}.", suffix=".tmp", delete=False
            ) as tmp:
                tmp_name = tmp.name
                json.dump(data, tmp, indent=2, default=_encode_decimal)
                tmp.write("\n")
                tmp.flush()
                os.fsync(tmp.fileno())
            os.replace(tmp_name, self.path)
        except OSError as e:
            if tmp_name and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise PersistenceError(f"Failed to write config {self.path}: {e}", step="config.save") from e
        logger.debug(f"Saved config to {self.path}")

    def set_position_id(self, config: AppConfig, position_id: str) -> AppConfig:
        """Record the managed position id and persist."""
        config.position.id = position_id
        self.save(config)
        logger.info(f"Config position id set to {position_id or '<none>'}")
        return config
