import os
from decimal import Decimal
from typing import TypeVar, Type, Optional

from dotenv import load_dotenv

load_dotenv()

T = TypeVar("T")


def get_env_variable(name: str, type_: Type[T], default: Optional[T]) -> T:
    """Type-safe wrapper for `os.getenv`.

    Args:
        name (str): Name of the environment variable.
        type_ (Type[T]): Type of the environment variable.
        default (T): Default value if the environment variable is not set.

    Returns:
        T: Value of the environment variable.

    Usage:
        ```python
        from rebalancer.utils.env import get_env_variable

        get_env_variable("ENVIRONMENT", str, "mainnet")
        get_env_variable("BRIDGE_MAX_WAIT", int, 1800)
        ```
    """

    try:
        value = os.getenv(name, default)
        if value is None:
            return None
        return type_.__call__(value)
    except (ValueError, ArithmeticError):
        raise ValueError(
            f"Environment variable '{name}' is not of type '{type_.__name__}'."
        )
    except TypeError:
        raise TypeError(
            f"Environment variable '{name}' is not set and has no default value."
        )


# Network selection
ENVIRONMENT = get_env_variable(
    name="ENVIRONMENT",
    type_=str,
    default="mainnet",
)

# RPC endpoints
MAINNET_RPC = get_env_variable(
    name="MAINNET_RPC",
    type_=str,
    default="https://eth.llamarpc.com",
)
BASE_RPC = get_env_variable(
    name="BASE_RPC",
    type_=str,
    default="https://base.llamarpc.com",
)
SEPOLIA_RPC = get_env_variable(
    name="SEPOLIA_RPC",
    type_=str,
    default="https://ethereum-sepolia-rpc.publicnode.com",
)
BASE_SEPOLIA_RPC = get_env_variable(
    name="BASE_SEPOLIA_RPC",
    type_=str,
    default="https://sepolia.base.org",
)

# Executor service signing and broadcasting state-changing transactions
EXECUTOR_URL = get_env_variable(
    name="EXECUTOR_URL",
    type_=str,
    default=None,
)
EXECUTOR_API_KEY = get_env_variable(
    name="EXECUTOR_API_KEY",
    type_=str,
    default=None,
)
EXECUTOR_TIMEOUT = get_env_variable(
    name="EXECUTOR_TIMEOUT",
    type_=int,
    default=120,
)

# Bridging service
BRIDGE_STATUS_URL = get_env_variable(
    name="BRIDGE_STATUS_URL",
    type_=str,
    default="https://li.quest/v1",
)
BRIDGE_POLL_INTERVAL = get_env_variable(
    name="BRIDGE_POLL_INTERVAL",
    type_=float,
    default=15.0,
)
BRIDGE_MAX_WAIT = get_env_variable(
    name="BRIDGE_MAX_WAIT",
    type_=float,
    default=1800.0,
)

# Position management
POSITION_MANAGER_ADDRESS = get_env_variable(
    name="POSITION_MANAGER_ADDRESS",
    type_=str,
    default=None,
)
# gas reserve in native token units, e.g. 0.0005 ETH
MIN_GAS_BALANCE = get_env_variable(
    name="MIN_GAS_BALANCE",
    type_=Decimal,
    default="0.0005",
)
POSITIONS_PAGE_SIZE = get_env_variable(
    name="POSITIONS_PAGE_SIZE",
    type_=int,
    default=50,
)

# Ledger database
DATABASE_URL = get_env_variable(
    name="DATABASE_URL",
    type_=str,
    default=None,
)
