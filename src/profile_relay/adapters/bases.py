"""
Abstract Base Classes for Chain Adapters

Defines the interfaces the execution router depends on. Concrete
implementations talk to a JSON-RPC node or a relay service; tests swap in
in-memory fakes with the same shape.

Core Classes:
    - StateReader: Read-only chain queries (validator resolution, nonces,
      permission masks)
    - SubmissionPath: One way of getting a signed envelope on-chain
      (relay service or direct transaction)

Implementations raise ``RelayError`` subclasses for every failure; raw
transport exceptions never cross these interfaces.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Optional

from ..schemas.bases import ExecutionPath, ExecutionResult

if TYPE_CHECKING:
    from .evm.schemas import SignedEnvelope


class StateReader(ABC):
    """
    Abstract read-only view of account and Key Manager state.

    Readers never cache: every call reflects the chain at the time of the
    call. The router relies on this to resolve the intended validator and
    the nonce freshly for every envelope it builds.

    Key Responsibilities:
    1. get_validator: Resolve the permission manager registered to an account
    2. get_nonce: Read the next relay-call nonce of (signer, channel)
    3. get_permissions: Read a controller's permission mask

    Example Implementation:
        class KeyManagerReader(StateReader):
            # AsyncWeb3-backed implementation
            pass
    """

    @abstractmethod
    async def get_validator(self, account: str) -> str:
        """
        Resolve the account's current permission manager (``owner()``).

        Args:
            account: Account (profile) address

        Returns:
            Checksum address of the Key Manager

        Raises:
            NetworkUnavailableError: If the node cannot be reached
            ConfigurationError: If the address does not behave like an account
        """
        pass

    @abstractmethod
    async def get_nonce(self, validator: str, signer: str, channel: int) -> int:
        """
        Read ``getNonce(signer, channel)`` from the Key Manager.

        The returned value already carries the channel id in its upper 128
        bits, so it can be packed into an envelope as-is.

        Raises:
            NetworkUnavailableError: If the node cannot be reached
        """
        pass

    @abstractmethod
    async def get_permissions(self, account: str, controller: str) -> int:
        """
        Read the controller's permission mask from the account's data store.

        Returns:
            The mask as an int; 0 when no permissions are set.

        Raises:
            NetworkUnavailableError: If the node cannot be reached
        """
        pass


class SubmissionPath(ABC):
    """
    Abstract submission path for signed envelopes.

    A path takes an envelope that has already passed the local recovery
    check and tries to get it executed. It returns a successful
    ``ExecutionResult`` or raises the ``RelayError`` subclass that describes
    the failure; the router turns raised errors into failed results.

    Attributes:
        path: ``ExecutionPath`` recorded on results produced by this path
    """

    path: ExecutionPath

    @abstractmethod
    async def submit(self, signed: "SignedEnvelope", timeout: Optional[float] = None) -> ExecutionResult:
        """
        Submit ``signed`` and wait for its outcome.

        Args:
            signed: Envelope with a locally verified signature
            timeout: Bound in seconds on the whole submission, including
                inclusion wait. ``None`` uses the path's own default.

        Returns:
            ``ExecutionResult`` with ``outcome=SUCCESS``

        Raises:
            RelayError: Classified failure (see ``engine.exceptions``)
        """
        pass
