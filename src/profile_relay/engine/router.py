"""
Execution Router

Entry point of the relay engine. The router resolves the account's Key
Manager, reserves the nonce channel, and runs the relay-call event chain
(see ``engine.flows``) under one of three policies:

    - ``relay-then-direct``: gasless relay first; on a relay-side rejection
      the same signed envelope is sent directly, at most once per nonce
    - ``direct-only``: controller-paid transaction only
    - ``relay-only``: relay only; rejections are surfaced, never retried
      with gas

Every pipeline failure comes back as a failed ``ExecutionResult`` with a
``FailureClass``; call ``result.raise_for_failure()`` to get an exception
instead.
"""

import logging
from dataclasses import replace
from typing import Any, Optional, Union

from pydantic import SecretStr
from web3 import AsyncWeb3
from eth_account import Account

from .events import (
    BaseEvent,
    BuildEnvelopeEvent,
    Dependencies,
    EnvelopeSignedEvent,
    EventBus,
    ExecutionFailedEvent,
    ExecutionSucceededEvent,
)
from .executors import EventChain
from .exceptions import ConfigurationError, RelayError
from .flows import encode_call, failure_result, setup_event_bus, sign_envelope
from .states import ExecutionFlow, ExecutionLedger, ExecutionState
from ..adapters.bases import StateReader, SubmissionPath
from ..adapters.evm.adapter import DirectExecutor
from ..adapters.evm.constants import RelayEngineConfig
from ..adapters.evm.nonces import NonceManager, validate_channel
from ..adapters.evm.permissions import PermissionGate
from ..adapters.evm.reads import KeyManagerReader
from ..adapters.evm.schemas import SignedEnvelope, ValidityWindow
from ..clients.relay_client import RelayClient
from ..schemas.bases import ExecutionPath, ExecutionPolicy, ExecutionResult
from ..schemas.https import RelayQuotaResponse

logger = logging.getLogger(__name__)


class ExecutionRouter:
    """
    Builds, signs and submits relay calls for one (controller, account) pair.

    Attributes:
        chain_id: Chain envelopes are bound to
        account_address: Account acted on
        controller_address: Address of the signing key
        reader: Chain state reader
        nonces: Nonce manager holding the per-channel reservations
        ledger: Submission record used to refuse nonce reuse

    Example:
        config = RelayEngineConfig.from_env()
        async with ExecutionRouter.from_config(config) as router:
            result = await router.execute(SetDataCall(data_key=key, data_value=b"hello"))
            if not result.is_success():
                print(result.get_error_message())
    """

    def __init__(
        self,
        *,
        chain_id: int,
        account_address: str,
        controller_private_key: Union[str, SecretStr],
        reader: StateReader,
        direct: Optional[SubmissionPath] = None,
        relay: Optional[SubmissionPath] = None,
        gate: Optional[PermissionGate] = None,
        default_policy: ExecutionPolicy = ExecutionPolicy.RELAY_THEN_DIRECT,
        check_permissions: bool = True,
        submission_timeout: Optional[float] = None,
        event_bus: Optional[EventBus] = None,
    ):
        if direct is None and relay is None:
            raise ConfigurationError("ExecutionRouter needs at least one submission path")
        if not isinstance(controller_private_key, SecretStr):
            controller_private_key = SecretStr(controller_private_key)

        self.chain_id = chain_id
        self.account_address = AsyncWeb3.to_checksum_address(account_address)
        self.controller_address = Account.from_key(controller_private_key.get_secret_value()).address
        self.reader = reader
        self.nonces = NonceManager(reader)
        self.ledger = ExecutionLedger()
        self.default_policy = ExecutionPolicy(default_policy)
        self._event_bus = event_bus or setup_event_bus()
        self._deps = Dependencies(
            chain_id=chain_id,
            account_address=self.account_address,
            controller_address=self.controller_address,
            controller_key=controller_private_key,
            reader=reader,
            nonces=self.nonces,
            ledger=self.ledger,
            gate=gate or PermissionGate(),
            relay=relay,
            direct=direct,
            check_permissions=check_permissions,
            submission_timeout=submission_timeout,
        )

    @classmethod
    def from_config(cls, config: RelayEngineConfig) -> "ExecutionRouter":
        """
        Build a router with the JSON-RPC reader, the direct executor and,
        when a relayer URL is configured, the relay client.
        """
        web3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(
            config.rpc_url,
            request_kwargs={"timeout": config.request_timeout},
        ))
        key = config.controller_private_key
        relay = RelayClient(config.relayer_url, timeout=config.request_timeout) if config.relayer_url else None
        direct = DirectExecutor(
            private_key=key.get_secret_value(),
            web3=web3,
            receipt_poll_interval=config.receipt_poll_interval,
            receipt_max_attempts=config.receipt_max_attempts,
        )
        logger.debug(
            f"Router configured: chain_id={config.chain_id}, account={config.account_address}, "
            f"relay={'on' if relay else 'off'}"
        )
        return cls(
            chain_id=config.chain_id,
            account_address=config.account_address,
            controller_private_key=key,
            reader=KeyManagerReader(web3=web3),
            direct=direct,
            relay=relay,
            default_policy=config.default_policy,
            check_permissions=config.check_permissions,
            submission_timeout=config.submission_timeout,
        )

    # =========================================================================
    # Public API
    # =========================================================================

    async def execute(
        self,
        call: Any,
        *,
        value: int = 0,
        channel: int = 0,
        validity: Optional[ValidityWindow] = None,
        policy: Optional[Union[ExecutionPolicy, str]] = None,
        timeout: Optional[float] = None,
    ) -> ExecutionResult:
        """
        Build, sign and submit ``call`` on the account.

        The (controller, channel) reservation is held from the nonce read
        until the submission finished, so flows sharing a channel run one
        after another while other channels proceed concurrently.

        Args:
            call: A call variant (``SetDataCall``, ``ExecuteCall``, ...),
                raw payload bytes, or a dict with ``call_kind``.
            value: Native value sent with ``executeRelayCall``.
            channel: Nonce channel, ``0 <= channel < 2**128``.
            validity: Validity window; unrestricted when omitted.
            policy: Submission policy; the router default when omitted.
            timeout: Bound in seconds on each submission attempt.

        Returns:
            The surfaced ``ExecutionResult``. Earlier attempts for the same
            nonce are in ``result.attempts``.

        Raises:
            ValueError: If ``channel`` is out of range.
            ConfigurationError: If ``policy`` needs a path the router lacks.
        """
        resolved = self._resolve_policy(policy)
        validate_channel(channel)
        flow = ExecutionFlow()
        flow.transition(ExecutionState.BUILDING)

        try:
            validator = await self.reader.get_validator(self.account_address)
            async with self.nonces.reserve(validator, self.controller_address, channel) as nonce:
                event = BuildEnvelopeEvent(
                    call=call,
                    validator_address=validator,
                    nonce=nonce,
                    channel=channel,
                    value=value,
                    validity=validity or ValidityWindow.unrestricted(),
                    policy=resolved,
                    timeout=timeout,
                )
                return await self._run(event, flow)
        except RelayError as e:
            if flow.is_terminal:
                raise
            flow.transition(ExecutionState.FAILED_FATAL)
            logger.info(f"Execution failed before signing: class={e.failure_class.value if e.failure_class else None}")
            return failure_result(e, ExecutionPath.LOCAL, channel=channel)

    async def build(
        self,
        call: Any,
        *,
        value: int = 0,
        channel: int = 0,
        validity: Optional[ValidityWindow] = None,
    ) -> SignedEnvelope:
        """
        Build and sign an envelope without submitting it.

        The nonce is read from the chain but not reserved; submit the
        envelope with ``submit`` before building another on the same channel.

        Raises:
            RelayError: Encoding, signature or network failure.
        """
        validate_channel(channel)
        _call, payload = encode_call(call)
        validator = await self.reader.get_validator(self.account_address)
        nonce = await self.nonces.current(validator, self.controller_address, channel)
        return sign_envelope(
            self._deps,
            payload,
            validator_address=validator,
            nonce=nonce,
            channel=channel,
            value=value,
            validity=validity or ValidityWindow.unrestricted(),
        )

    async def submit(
        self,
        signed: SignedEnvelope,
        *,
        policy: Optional[Union[ExecutionPolicy, str]] = None,
        timeout: Optional[float] = None,
    ) -> ExecutionResult:
        """
        Submit an envelope built earlier (by ``build`` or a previous flow).

        A nonce this router already used, or one the chain has moved past,
        is refused with ``NONCE_STALE``.
        """
        resolved = self._resolve_policy(policy)
        flow = ExecutionFlow()
        try:
            async with self.nonces.reserve(
                signed.identity.validator_address,
                signed.identity.controller_address,
                signed.channel,
            ):
                event = EnvelopeSignedEvent(signed=signed, policy=resolved, timeout=timeout)
                return await self._run(event, flow)
        except RelayError as e:
            if flow.is_terminal:
                raise
            return failure_result(e, ExecutionPath.LOCAL, signed)

    async def get_quota(self) -> RelayQuotaResponse:
        """Ask the relay for the account's remaining gasless allowance."""
        relay = self._deps.relay
        if not isinstance(relay, RelayClient):
            raise ConfigurationError("No relay client configured")
        return await relay.get_quota(
            self.account_address,
            private_key=self._deps.controller_key.get_secret_value(),
        )

    async def aclose(self) -> None:
        """Close the relay client's HTTP connections."""
        relay = self._deps.relay
        if isinstance(relay, RelayClient):
            await relay.aclose()

    async def __aenter__(self) -> "ExecutionRouter":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # =========================================================================
    # Internals
    # =========================================================================

    def _resolve_policy(self, policy: Optional[Union[ExecutionPolicy, str]]) -> ExecutionPolicy:
        resolved = self.default_policy if policy is None else ExecutionPolicy(policy)
        if resolved == ExecutionPolicy.RELAY_ONLY and self._deps.relay is None:
            raise ConfigurationError("Policy relay-only requires a relay client")
        if resolved == ExecutionPolicy.DIRECT_ONLY and self._deps.direct is None:
            raise ConfigurationError("Policy direct-only requires a direct executor")
        return resolved

    async def _run(self, event: BaseEvent, flow: ExecutionFlow) -> ExecutionResult:
        chain = EventChain(self._event_bus, replace(self._deps, flow=flow))
        last = await chain.run(event)
        if not isinstance(last, (ExecutionSucceededEvent, ExecutionFailedEvent)):
            raise RuntimeError(f"Relay-call chain ended without a result (last event: {last!r})")
        return last.result

    def __repr__(self) -> str:
        return (
            f"ExecutionRouter(chain_id={self.chain_id}, account={self.account_address}, "
            f"controller={self.controller_address}, policy={self.default_policy.value})"
        )
