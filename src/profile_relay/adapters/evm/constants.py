"""
EVM Network and Engine Configuration

Provides the network table (RPC, relay service and explorer endpoints per
chain), environment-aware configuration loading, and the explicitly
constructed ``RelayEngineConfig`` that the execution router is built from.
"""

import os
from typing import Dict, Optional

from pydantic import BaseModel, Field, SecretStr, field_validator
from eth_account import Account
from web3 import Web3
import dotenv

from ...engine.exceptions import ConfigurationError
from ...schemas.bases import ExecutionPolicy

dotenv.load_dotenv()


class NetworkConfig(BaseModel):
    """Endpoints for one EVM network."""
    chain_id: int
    name: str
    rpc_url: str = Field(..., description="Public JSON-RPC endpoint")
    relayer_url: Optional[str] = Field(None, description="Relay service base URL (LSP-15)")
    explorer_url: str = Field(..., description="Block explorer URL")


_NETWORKS_DATA: Dict[int, Dict] = {
    42: {
        "name": "LUKSO Mainnet",
        "rpc_url": "https://42.rpc.thirdweb.com",
        "relayer_url": "https://relayer.mainnet.lukso.network/api",
        "explorer_url": "https://explorer.lukso.network",
    },
    4201: {
        "name": "LUKSO Testnet",
        "rpc_url": "https://4201.rpc.thirdweb.com",
        "relayer_url": "https://relayer.testnet.lukso.network/api",
        "explorer_url": "https://explorer.testnet.lukso.network",
    },
}

#: Version word packed into every relay-call message.
LSP25_VERSION: int = 25

#: Upper bound (exclusive) for a nonce channel id (uint128).
MAX_CHANNEL: int = 2 ** 128

#: Upper bound (exclusive) for any packed uint256 field.
MAX_UINT256: int = 2 ** 256

#: Prefix of the ``AddressPermissions:Permissions:<address>`` data key.
PERMISSIONS_KEY_PREFIX: bytes = bytes.fromhex("4b80742de2bf82acb363") + b"\x00\x00"

# Environment variable names
ENV_PRIVATE_KEY = "up_controller_private_key"
ENV_ACCOUNT_ADDRESS = "up_account_address"
ENV_CHAIN_ID = "up_chain_id"
ENV_RPC_URL = "up_rpc_url"
ENV_RELAYER_URL = "up_relayer_url"


def get_network_config(chain_id: int) -> Optional[NetworkConfig]:
    """
    Return the network configuration for ``chain_id``, or None when the
    chain is not in the built-in table.
    """
    data = _NETWORKS_DATA.get(int(chain_id))
    if data is None:
        return None
    return NetworkConfig(chain_id=int(chain_id), **data)


def get_explorer_url(tx_hash: str, chain_id: int = 42) -> Optional[str]:
    """
    Build an explorer link for a transaction hash.

    Returns:
        The URL, or None for chains without a known explorer.
    """
    network = get_network_config(chain_id)
    if network is None:
        return None
    return f"{network.explorer_url}/tx/{tx_hash}"


def get_private_key_from_env() -> Optional[str]:
    """Read the controller private key from the environment."""
    return os.getenv(ENV_PRIVATE_KEY)


class RelayEngineConfig(BaseModel):
    """
    Explicit configuration for one relay engine instance.

    Holds the controller credential, the account acted on, and the network
    endpoints. Passed to ``ExecutionRouter.from_config``; nothing in the
    engine reads ambient process state after construction.

    Attributes:
        chain_id: Chain the envelopes are bound to.
        account_address: Account (profile) acted upon.
        controller_private_key: Controller secp256k1 key; hidden from repr.
        rpc_url: JSON-RPC endpoint; defaults from the network table.
        relayer_url: Relay service base URL; defaults from the network table.
        request_timeout: Per-request HTTP / RPC timeout in seconds.
        submission_timeout: Bound on one submission including inclusion wait.
        receipt_poll_interval: Seconds between receipt polls.
        receipt_max_attempts: Maximum receipt polls before giving up.
        default_policy: Policy used when ``execute`` is called without one.
        check_permissions: Consult the permission gate before signing.

    Example::

        config = RelayEngineConfig(
            chain_id=42,
            account_address="0x...",
            controller_private_key="0x...",
        )
    """

    chain_id: int = Field(..., ge=1)
    account_address: str
    controller_private_key: SecretStr
    rpc_url: Optional[str] = None
    relayer_url: Optional[str] = None
    request_timeout: float = Field(default=30.0, gt=0)
    submission_timeout: Optional[float] = Field(default=300.0, gt=0)
    receipt_poll_interval: float = Field(default=2.0, gt=0)
    receipt_max_attempts: int = Field(default=90, ge=1)
    default_policy: ExecutionPolicy = ExecutionPolicy.RELAY_THEN_DIRECT
    check_permissions: bool = True

    @field_validator("account_address")
    @classmethod
    def _checksum_account(cls, value: str) -> str:
        if not Web3.is_address(value):
            raise ValueError(f"Invalid account address: {value!r}")
        return Web3.to_checksum_address(value)

    def model_post_init(self, __context) -> None:
        network = get_network_config(self.chain_id)
        if self.rpc_url is None:
            if network is None:
                raise ConfigurationError(
                    f"No RPC URL configured for unsupported chain_id {self.chain_id}. "
                    f"Supported chains: {sorted(_NETWORKS_DATA)}"
                )
            self.rpc_url = network.rpc_url
        if self.relayer_url is None and network is not None:
            self.relayer_url = network.relayer_url

    @property
    def controller_address(self) -> str:
        """Checksum address derived from the controller key."""
        return Account.from_key(self.controller_private_key.get_secret_value()).address

    @classmethod
    def from_env(cls, **overrides) -> "RelayEngineConfig":
        """
        Build a configuration from environment variables.

        Reads ``up_controller_private_key``, ``up_account_address``,
        ``up_chain_id`` (default 42), ``up_rpc_url`` and ``up_relayer_url``.
        Keyword overrides take precedence.

        Raises:
            ConfigurationError: If the key or account address is missing, or
                the chain id is not an integer.
        """
        raw_chain_id = overrides.get("chain_id", os.getenv(ENV_CHAIN_ID, "42"))
        try:
            chain_id = int(raw_chain_id)
        except ValueError:
            raise ConfigurationError(f"'{ENV_CHAIN_ID}' must be an integer chain id, got {raw_chain_id!r}")

        values = {
            "controller_private_key": get_private_key_from_env(),
            "account_address": os.getenv(ENV_ACCOUNT_ADDRESS),
            "chain_id": chain_id,
            "rpc_url": os.getenv(ENV_RPC_URL) or None,
            "relayer_url": os.getenv(ENV_RELAYER_URL) or None,
        }
        values.update(overrides)

        if not values["controller_private_key"]:
            raise ConfigurationError(
                f"Controller key not provided. Set the '{ENV_PRIVATE_KEY}' environment variable."
            )
        if not values["account_address"]:
            raise ConfigurationError(
                f"Account address not provided. Set the '{ENV_ACCOUNT_ADDRESS}' environment variable."
            )
        return cls(**values)
