"""
On-Chain State Reads

``KeyManagerReader`` answers the three questions the engine asks the chain
before signing: which Key Manager currently governs the account, what the
next nonce of a (controller, channel) pair is, and which permissions a
controller holds. All reads are plain ``eth_call``s through ``AsyncWeb3``.
"""

import logging
from typing import Optional

from web3 import AsyncWeb3
from web3.exceptions import BadFunctionCallOutput, ContractLogicError

from ..bases import StateReader
from .PROFILE_ABI import get_account_abi, get_key_manager_abi
from .adapter import RPC_ERRORS
from .permissions import parse_permission_mask, permissions_data_key
from ...engine.exceptions import ConfigurationError, NetworkUnavailableError, RelayError

logger = logging.getLogger(__name__)


class KeyManagerReader(StateReader):
    """
    ``StateReader`` backed by a JSON-RPC node.

    Args:
        rpc_url: JSON-RPC endpoint. Ignored when ``web3`` is given.
        request_timeout: Per-request timeout in seconds.
        web3: Pre-built ``AsyncWeb3`` instance (shared with the direct
            executor by ``ExecutionRouter.from_config``).

    Example::

        reader = KeyManagerReader("https://42.rpc.thirdweb.com")
        key_manager = await reader.get_validator(profile)
        nonce = await reader.get_nonce(key_manager, controller, 0)
    """

    def __init__(self, rpc_url: Optional[str] = None, request_timeout: float = 30.0, web3: Optional[AsyncWeb3] = None):
        if web3 is None:
            if not rpc_url:
                raise ConfigurationError("KeyManagerReader needs an rpc_url or a web3 instance")
            web3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": request_timeout}))
        self.web3 = web3

    async def get_validator(self, account: str) -> str:
        contract = self.web3.eth.contract(address=AsyncWeb3.to_checksum_address(account), abi=get_account_abi())
        owner = await self._call(contract.functions.owner(), f"owner() of {account}")
        validator = AsyncWeb3.to_checksum_address(owner)
        logger.debug(f"Resolved validator {validator} for account {account}")
        return validator

    async def get_nonce(self, validator: str, signer: str, channel: int) -> int:
        contract = self.web3.eth.contract(address=AsyncWeb3.to_checksum_address(validator), abi=get_key_manager_abi())
        nonce = await self._call(
            contract.functions.getNonce(AsyncWeb3.to_checksum_address(signer), channel),
            f"getNonce({signer}, {channel})",
        )
        return int(nonce)

    async def get_permissions(self, account: str, controller: str) -> int:
        contract = self.web3.eth.contract(address=AsyncWeb3.to_checksum_address(account), abi=get_account_abi())
        raw = await self._call(
            contract.functions.getData(permissions_data_key(controller)),
            f"permissions of {controller}",
        )
        return parse_permission_mask(raw)

    async def _call(self, fn, description: str):
        """Run an ``eth_call`` and classify its failures."""
        try:
            return await fn.call()
        except RelayError:
            raise
        except (ContractLogicError, BadFunctionCallOutput) as e:
            raise ConfigurationError(f"Contract call {description} failed: {e}") from e
        except RPC_ERRORS as e:
            raise NetworkUnavailableError(f"RPC read {description} failed: {e}") from e
