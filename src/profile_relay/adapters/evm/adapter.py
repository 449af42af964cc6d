"""
EVM Direct Execution Adapter

Submits a signed relay-call envelope to the Key Manager as an ordinary
transaction paid by the controller itself. This is the path the router
uses when no relay service is involved (``direct-only``) and the fallback
when the relay rejects an envelope (``relay-then-direct``).

Key Features:
    - ``executeRelayCall`` transaction construction with the envelope's value
    - Revert classification by Key Manager error selector
    - Receipt polling with ``gasUsed`` reporting
    - Timeout split: before broadcast vs. after broadcast

Dependencies:
    - web3.py: For blockchain RPC interaction
    - eth_account: For transaction signing
    - eth_abi: For decoding revert arguments
"""

from typing import Optional, Dict, Any, Union
import asyncio
import logging

from aiohttp import ClientError
from web3 import AsyncWeb3
from eth_account import Account
from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError
from eth_utils import function_signature_to_4byte_selector, to_hex
from web3.exceptions import ContractLogicError, TransactionNotFound, Web3Exception, Web3RPCError

from ...schemas.bases import ExecutionOutcome, ExecutionPath, ExecutionResult
from ...engine.exceptions import (
    ConfigurationError,
    ExecutionRevertedError,
    NetworkUnavailableError,
    NonceStaleError,
    PermissionDeniedError,
    RelayError,
    UnknownOutcomeError,
    ValidityExpiredError,
)
from ..bases import SubmissionPath
from .schemas import SignedEnvelope
from .PROFILE_ABI import KEY_MANAGER_ERRORS, get_execute_relay_call_abi

logger = logging.getLogger(__name__)

#: Failures of web3's HTTP transport (aiohttp) once its own retries are spent.
TRANSPORT_ERRORS = (asyncio.TimeoutError, OSError, ClientError)
RPC_ERRORS = TRANSPORT_ERRORS + (Web3Exception,)

#: 4-byte selector -> error name, for Key Manager custom errors.
_ERROR_SELECTORS: Dict[bytes, str] = {
    function_signature_to_4byte_selector(signature): name
    for name, signature in KEY_MANAGER_ERRORS.items()
}


def _revert_bytes(data: Union[str, bytes, None]) -> bytes:
    if data is None:
        return b""
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    if isinstance(data, str):
        hex_str = data[2:] if data[:2] in ("0x", "0X") else data
        try:
            return bytes.fromhex(hex_str)
        except ValueError:
            return b""
    return b""


def classify_revert(data: Union[str, bytes, None], message: str = "", transaction_reference: Optional[str] = None) -> RelayError:
    """
    Map Key Manager revert data to the matching ``RelayError``.

    Selectors recognised:
        - ``NotAuthorised(address,string)`` -> ``PermissionDeniedError``
          naming the missing permission
        - ``NoPermissionsSet(address)`` -> ``PermissionDeniedError``
        - ``InvalidRelayNonce(address,uint256,bytes)`` -> ``NonceStaleError``
        - ``RelayCallExpired()`` / ``RelayCallBeforeStartTime()`` ->
          ``ValidityExpiredError``

    Anything else becomes ``ExecutionRevertedError`` carrying the raw data.

    Args:
        data: Revert data (hex string or bytes) as reported by the node.
        message: Node error message, used when no selector matches.
        transaction_reference: Transaction hash when the revert was mined.
    """
    raw = _revert_bytes(data)
    name = _ERROR_SELECTORS.get(raw[:4]) if len(raw) >= 4 else None
    args = raw[4:]

    if name == "NotAuthorised":
        try:
            controller, permission = abi_decode(["address", "string"], args)
        except DecodingError:
            controller, permission = None, "UNKNOWN"
        return PermissionDeniedError(
            missing=(permission,),
            controller=controller,
            message=f"Key Manager reverted: controller {controller} is not authorised for {permission}",
        )
    if name == "NoPermissionsSet":
        try:
            (controller,) = abi_decode(["address"], args)
        except DecodingError:
            controller = None
        return PermissionDeniedError(
            missing=("ANY",),
            controller=controller,
            message=f"Key Manager reverted: controller {controller} has no permissions set",
        )
    if name == "InvalidRelayNonce":
        nonce = None
        try:
            _signer, nonce, _signature = abi_decode(["address", "uint256", "bytes"], args)
        except DecodingError:
            pass
        return NonceStaleError(
            f"Key Manager reverted: relay nonce {nonce} is invalid or already used; rebuild with a fresh nonce",
            nonce=nonce,
        )
    if name == "RelayCallExpired":
        return ValidityExpiredError("Key Manager reverted: relay call validity window has ended")
    if name == "RelayCallBeforeStartTime":
        return ValidityExpiredError("Key Manager reverted: relay call validity window has not started")

    reason = to_hex(raw) if raw else None
    detail = message or "execution reverted"
    return ExecutionRevertedError(
        f"Relay call reverted: {detail}",
        transaction_reference=transaction_reference,
        revert_reason=reason,
    )


class DirectExecutor(SubmissionPath):
    """
    Direct submission path: the controller sends ``executeRelayCall`` itself.

    The controller pays gas and forwards ``envelope.value`` as ``msg.value``.
    The Key Manager checks the embedded signature exactly as it would for a
    relayed call, so the same envelope is valid on both paths.

    Attributes:
        account: Controller account used to sign transactions
        wallet_address: Checksum address of the controller
        web3: ``AsyncWeb3`` instance for the target chain

    Example:
        executor = DirectExecutor(private_key="0x...", rpc_url="https://42.rpc.thirdweb.com")
        result = await executor.submit(signed, timeout=120)
        print(result.transaction_reference, result.gas_consumed)
    """

    path = ExecutionPath.DIRECT

    def __init__(
        self,
        private_key: str,
        rpc_url: Optional[str] = None,
        request_timeout: float = 60,
        web3: Optional[AsyncWeb3] = None,
        receipt_poll_interval: float = 2.0,
        receipt_max_attempts: int = 90,
        gas_multiplier: float = 1.1,
    ):
        """
        Initialize the executor.

        Args:
            private_key: Controller private key (0x-prefixed hex). Only the
                derived ``Account`` is kept.
            rpc_url: JSON-RPC endpoint. Ignored when ``web3`` is given.
            request_timeout: Per-request RPC timeout in seconds.
            web3: Pre-built ``AsyncWeb3`` instance.
            receipt_poll_interval: Seconds between receipt polls.
            receipt_max_attempts: Maximum receipt polls.
            gas_multiplier: Safety margin applied to the gas estimate.

        Raises:
            ConfigurationError: If no key or no RPC endpoint is available.
        """
        if not private_key:
            raise ConfigurationError("DirectExecutor needs the controller private key")
        if web3 is None:
            if not rpc_url:
                raise ConfigurationError("DirectExecutor needs an rpc_url or a web3 instance")
            web3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(rpc_url, request_kwargs={"timeout": request_timeout}))

        self.account = Account.from_key(private_key)
        self.wallet_address = AsyncWeb3.to_checksum_address(self.account.address)
        self.web3 = web3
        self._poll_interval = receipt_poll_interval
        self._max_attempts = receipt_max_attempts
        self._gas_multiplier = gas_multiplier

    async def submit(self, signed: SignedEnvelope, timeout: Optional[float] = None) -> ExecutionResult:
        """
        Send ``signed`` as a transaction and wait for its receipt.

        A timeout before the transaction is broadcast is reported as
        ``NetworkUnavailableError`` (nothing left the process). A timeout
        after broadcast is ``UnknownOutcomeError`` carrying the transaction
        hash: the transaction may still be mined.

        Returns:
            ``ExecutionResult`` with ``path=DIRECT``, the transaction hash
            and ``gas_consumed`` from the receipt.

        Raises:
            RelayError: Classified failure.
        """
        progress: Dict[str, Any] = {"tx_hash": None}
        try:
            return await asyncio.wait_for(self._execute(signed, progress), timeout)
        except asyncio.TimeoutError:
            tx_hash = progress["tx_hash"]
            if tx_hash is None:
                raise NetworkUnavailableError(f"Direct submission timed out after {timeout}s before broadcast")
            raise UnknownOutcomeError(
                f"Direct submission timed out after {timeout}s; transaction {tx_hash} may still be mined. "
                f"Do not resubmit nonce {signed.nonce} until its on-chain state has been checked",
                transaction_reference=tx_hash,
            )

    async def _execute(self, signed: SignedEnvelope, progress: Dict[str, Any]) -> ExecutionResult:
        raw_transaction, tx_hash = await self._construct_relay_call_transaction(signed)
        progress["tx_hash"] = tx_hash
        return await self._send_and_confirm(raw_transaction, tx_hash, signed)

    async def _construct_relay_call_transaction(self, signed: SignedEnvelope):
        """
        Build and sign the ``executeRelayCall`` transaction.

        Gas estimation runs the call against current state, so most
        Key Manager rejections surface here as classified errors before
        anything is broadcast.

        Returns:
            ``(raw_transaction, tx_hash)``.
        """
        envelope = signed.envelope
        contract = self.web3.eth.contract(
            address=signed.identity.validator_address,
            abi=get_execute_relay_call_abi(),
        )
        tx_fn = contract.functions.executeRelayCall(
            signed.signature.to_bytes(),
            envelope.nonce,
            envelope.validity_window.encode(),
            envelope.payload,
        )

        try:
            gas_estimate = await tx_fn.estimate_gas({"from": self.wallet_address, "value": envelope.value})
        except ContractLogicError as e:
            raise classify_revert(getattr(e, "data", None), str(e)) from e
        except RPC_ERRORS as e:
            raise NetworkUnavailableError(f"Gas estimation failed: {e}") from e

        try:
            gas_price = await self.web3.eth.gas_price
            tx_nonce = await self.web3.eth.get_transaction_count(self.wallet_address, "pending")
            tx_dict = await tx_fn.build_transaction({
                "from": self.wallet_address,
                "value": envelope.value,
                "gas": int(gas_estimate * self._gas_multiplier),
                "gasPrice": gas_price,
                "nonce": tx_nonce,
            })
        except RPC_ERRORS as e:
            raise NetworkUnavailableError(f"Transaction preparation failed: {e}") from e

        signed_tx = self.account.sign_transaction(tx_dict)
        return signed_tx.raw_transaction, to_hex(signed_tx.hash)

    async def _send_and_confirm(self, raw_transaction: bytes, tx_hash: str, signed: SignedEnvelope) -> ExecutionResult:
        """
        Broadcast a signed transaction and poll for its on-chain receipt.

        Polls ``eth_getTransactionReceipt`` every ``receipt_poll_interval``
        seconds for at most ``receipt_max_attempts`` rounds.

        Once ``send_raw_transaction`` has been called the node may hold the
        transaction, so only an explicit node rejection is reported as a
        failure; any transport failure is an unknown outcome.
        """
        try:
            await self.web3.eth.send_raw_transaction(raw_transaction)
        except TRANSPORT_ERRORS as e:
            raise self._unknown_after_broadcast(tx_hash, signed, e) from e
        except (Web3RPCError, ValueError) as e:
            raise ExecutionRevertedError(
                f"Node rejected transaction {tx_hash}: {e}",
                transaction_reference=tx_hash,
            ) from e
        except Web3Exception as e:
            raise self._unknown_after_broadcast(tx_hash, signed, e) from e
        logger.info(f"Direct relay call broadcast: tx={tx_hash}, nonce={signed.nonce}, channel={signed.channel}")

        receipt = None
        for _ in range(self._max_attempts):
            try:
                receipt = await self.web3.eth.get_transaction_receipt(tx_hash)
                if receipt:
                    break
            except TransactionNotFound:
                pass  # still pending
            except RPC_ERRORS as e:
                logger.warning(f"Receipt poll for {tx_hash} failed, retrying: {e}")
            await self._sleep_async(self._poll_interval)

        if not receipt:
            raise UnknownOutcomeError(
                f"Transaction {tx_hash} not confirmed after {self._max_attempts} polls. "
                f"Do not resubmit nonce {signed.nonce} until its on-chain state has been checked",
                transaction_reference=tx_hash,
            )

        gas_used = receipt.get("gasUsed")
        if receipt.get("status") != 1:
            raise ExecutionRevertedError(
                f"Transaction {tx_hash} reverted on-chain in block {receipt.get('blockNumber')}",
                transaction_reference=tx_hash,
            )

        return ExecutionResult(
            outcome=ExecutionOutcome.SUCCESS,
            path=ExecutionPath.DIRECT,
            transaction_reference=tx_hash,
            gas_consumed=gas_used,
            nonce=signed.nonce,
            channel=signed.channel,
            message=f"Relay call executed directly in block {receipt.get('blockNumber')}",
        )

    @staticmethod
    def _unknown_after_broadcast(tx_hash: str, signed: SignedEnvelope, error: BaseException) -> UnknownOutcomeError:
        return UnknownOutcomeError(
            f"Broadcast of transaction {tx_hash} failed in transit ({type(error).__name__}: {error}); "
            f"the node may have received it. Do not resubmit nonce {signed.nonce} "
            f"until its on-chain state has been checked",
            transaction_reference=tx_hash,
        )

    @staticmethod
    async def _sleep_async(seconds: float):
        """Simple async sleep utility."""
        await asyncio.sleep(seconds)
