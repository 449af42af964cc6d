"""
Built-in event handlers for the relay-call workflow.

Implements the core flow: permission pre-check → envelope signing → local
validity check → relay or direct submission → fallback → result.

Handlers convert every ``RelayError`` raised by a pipeline stage into an
``ExecutionFailedEvent``; anything else is a bug and propagates out of the
event chain.
"""

import logging
import time
from typing import List, Optional

from eth_abi.exceptions import EncodingError

from .events import (
    EventBus,
    Dependencies,
    BuildEnvelopeEvent,
    EnvelopeSignedEvent,
    RelaySubmitEvent,
    DirectSubmitEvent,
    RelayRejectedEvent,
    ExecutionSucceededEvent,
    ExecutionFailedEvent,
)
from .exceptions import (
    EnvelopeEncodingError,
    NonceStaleError,
    PermissionDeniedError,
    RelayError,
    UnknownOutcomeError,
    ValidityExpiredError,
)
from .states import ExecutionState
from ..adapters.evm.calls import parse_call
from ..adapters.evm.permissions import SIGN, ActionClass, describe_mask
from ..adapters.evm.schemas import Identity, RelayEnvelope, SignedEnvelope, ValidityWindow
from ..adapters.evm.signatures import sign_relay_call
from ..schemas.bases import (
    ExecutionOutcome,
    ExecutionPath,
    ExecutionPolicy,
    ExecutionResult,
    FailureClass,
)

logger = logging.getLogger(__name__)

#: Relay failure classes after which the direct path may still succeed
#: with the same envelope: the relay refused the call or was never reached.
FALLBACK_FAILURES = frozenset({
    FailureClass.RELAY_UNAUTHORIZED,
    FailureClass.QUOTA_EXCEEDED,
    FailureClass.NETWORK_UNAVAILABLE,
})


def failure_result(
    error: RelayError,
    path: ExecutionPath,
    signed: Optional[SignedEnvelope] = None,
    attempts: Optional[List[ExecutionResult]] = None,
    *,
    nonce: Optional[int] = None,
    channel: Optional[int] = None,
) -> ExecutionResult:
    """Convert a classified error into a failed ``ExecutionResult``."""
    details = {"error_type": type(error).__name__}
    for attr in ("missing", "controller", "expected", "recovered", "revert_reason"):
        value = getattr(error, attr, None)
        if value:
            details[attr] = value
    return ExecutionResult(
        outcome=ExecutionOutcome.FAILED,
        path=path,
        transaction_reference=getattr(error, "transaction_reference", None),
        failure_class=error.failure_class,
        message=str(error),
        nonce=signed.nonce if signed is not None else nonce,
        channel=signed.channel if signed is not None else channel,
        attempts=list(attempts or []),
        error_details=details,
    )


def select_actions(call, policy: ExecutionPolicy) -> List[ActionClass]:
    """Action classes checked by the gate for ``call`` under ``policy``."""
    actions = list(call.required_actions())
    if policy == ExecutionPolicy.RELAY_ONLY:
        actions.append(ActionClass.RELAY_SUBMISSION)
    else:
        actions.append(ActionClass.DIRECT_EXECUTION)
    return actions


async def check_nonce(signed: SignedEnvelope, deps: Dependencies) -> None:
    """
    Refuse an envelope whose nonce was used, or may have been used.

    Raises:
        NonceStaleError: The nonce was consumed by this engine or on-chain.
        UnknownOutcomeError: An earlier submission of this nonce has no
            confirmed outcome yet.
    """
    key = signed.nonce_key
    if deps.ledger.is_consumed(key):
        raise NonceStaleError(
            f"Nonce {signed.nonce} on channel {signed.channel} was already used by an earlier submission; "
            f"build a new envelope with a fresh nonce",
            nonce=signed.nonce,
            channel=signed.channel,
        )
    onchain = await deps.nonces.current(
        signed.identity.validator_address,
        signed.identity.controller_address,
        signed.channel,
    )
    deps.ledger.prune(signed.identity.controller_address, signed.channel, onchain)
    if onchain > signed.nonce:
        raise NonceStaleError(
            f"Nonce {signed.nonce} on channel {signed.channel} has already been consumed on-chain; "
            f"build a new envelope with a fresh nonce",
            nonce=signed.nonce,
            channel=signed.channel,
        )
    if deps.ledger.is_in_doubt(key):
        raise UnknownOutcomeError(
            f"An earlier submission of nonce {signed.nonce} may still be pending; "
            f"do not resubmit until its on-chain state has been checked"
        )


def encode_call(raw_call):
    """
    Parse ``raw_call`` into a call variant and encode it.

    Returns:
        ``(call, payload)``

    Raises:
        EnvelopeEncodingError: If the call is malformed or cannot be encoded.
    """
    try:
        call = parse_call(raw_call)
        return call, call.encode()
    except RelayError:
        raise
    except (EncodingError, ValueError, TypeError, OverflowError) as e:
        raise EnvelopeEncodingError(f"Call cannot be encoded: {e}") from e


def sign_envelope(
    deps: Dependencies,
    payload: bytes,
    *,
    validator_address: str,
    nonce: int,
    channel: int,
    value: int,
    validity: ValidityWindow,
) -> SignedEnvelope:
    """Assemble the envelope for ``deps``' account and sign it locally."""
    try:
        envelope = RelayEnvelope(
            chain_id=deps.chain_id,
            nonce=nonce,
            validity_window=validity,
            value=value,
            payload=payload,
        )
    except ValueError as e:
        raise EnvelopeEncodingError(f"Invalid envelope field: {e}") from e

    identity = Identity(
        controller_address=deps.controller_address,
        account_address=deps.account_address,
        validator_address=validator_address,
    )
    return sign_relay_call(
        private_key=deps.controller_key.get_secret_value(),
        identity=identity,
        envelope=envelope,
        channel=channel,
    )


# ==================== Event Handlers ====================

async def handle_build_envelope(
    event: BuildEnvelopeEvent,
    deps: Dependencies
) -> EnvelopeSignedEvent | ExecutionFailedEvent:
    """Check permissions, encode the call and sign the envelope."""
    policy = event.policy
    try:
        call, payload = encode_call(event.call)
        forwarded = call.forwarded_value()
        if forwarded > event.value:
            logger.warning(
                f"Call forwards {forwarded} wei but the envelope sends {event.value}; "
                f"the account's own balance must cover the difference"
            )

        if deps.check_permissions:
            mask = await deps.reader.get_permissions(deps.account_address, deps.controller_address)
            check = deps.gate.evaluate(mask, *select_actions(call, policy), controller=deps.controller_address)
            if not check:
                logger.debug(f"Permission mask {hex(mask)} grants {', '.join(describe_mask(mask)) or 'nothing'}")
            check.raise_for_missing()
            if policy == ExecutionPolicy.RELAY_THEN_DIRECT and not SIGN.is_satisfied_by(mask):
                if deps.direct is None:
                    raise PermissionDeniedError(missing=(SIGN.name,), controller=deps.controller_address)
                logger.warning(
                    f"Controller {deps.controller_address} lacks SIGN; the relay would reject it, submitting directly"
                )
                policy = ExecutionPolicy.DIRECT_ONLY

        signed = sign_envelope(
            deps,
            payload,
            validator_address=event.validator_address,
            nonce=event.nonce,
            channel=event.channel,
            value=event.value,
            validity=event.validity,
        )
    except RelayError as e:
        return ExecutionFailedEvent(result=failure_result(e, ExecutionPath.LOCAL, nonce=event.nonce, channel=event.channel))

    return EnvelopeSignedEvent(signed=signed, policy=policy, timeout=event.timeout)


async def handle_envelope_signed(
    event: EnvelopeSignedEvent,
    deps: Dependencies
) -> RelaySubmitEvent | DirectSubmitEvent | ExecutionFailedEvent:
    """Check the validity window locally and pick the first path."""
    signed = event.signed
    window = signed.envelope.validity_window
    now = int(time.time())
    if not window.has_started(now):
        error = ValidityExpiredError(f"Validity window starts at {window.start}; it is now {now}")
        return ExecutionFailedEvent(result=failure_result(error, ExecutionPath.LOCAL, signed))
    if window.is_expired(now):
        error = ValidityExpiredError(f"Validity window ended at {window.end}; it is now {now}. Sign a new envelope")
        return ExecutionFailedEvent(result=failure_result(error, ExecutionPath.LOCAL, signed))

    if event.policy != ExecutionPolicy.DIRECT_ONLY and deps.relay is not None:
        logger.debug(f"Routing nonce {signed.nonce} to relay (policy={event.policy.value})")
        return RelaySubmitEvent(signed=signed, policy=event.policy, timeout=event.timeout)
    logger.debug(f"Routing nonce {signed.nonce} to direct execution (policy={event.policy.value})")
    return DirectSubmitEvent(signed=signed, policy=event.policy, timeout=event.timeout)


async def handle_relay_submit(
    event: RelaySubmitEvent,
    deps: Dependencies
) -> ExecutionSucceededEvent | RelayRejectedEvent | ExecutionFailedEvent:
    """Submit through the relay service."""
    signed = event.signed
    key = signed.nonce_key
    try:
        await check_nonce(signed, deps)
    except RelayError as e:
        return ExecutionFailedEvent(result=failure_result(e, ExecutionPath.RELAY, signed))

    deps.ledger.record_attempt(key, ExecutionPath.RELAY)
    try:
        result = await deps.relay.submit(signed, event.timeout or deps.submission_timeout)
    except RelayError as e:
        failed = failure_result(e, ExecutionPath.RELAY, signed)
        if e.failure_class in FALLBACK_FAILURES:
            return RelayRejectedEvent(signed=signed, policy=event.policy, result=failed, timeout=event.timeout)
        if e.failure_class == FailureClass.UNKNOWN_OUTCOME:
            deps.ledger.mark_in_doubt(key)
        return ExecutionFailedEvent(result=failed)

    deps.ledger.mark_consumed(key)
    return ExecutionSucceededEvent(result=result)


async def handle_relay_rejected(
    event: RelayRejectedEvent,
    deps: Dependencies
) -> DirectSubmitEvent | ExecutionFailedEvent:
    """Fall back to the direct path once, or surface the rejection."""
    signed = event.signed
    rejected = event.result
    if event.policy == ExecutionPolicy.RELAY_THEN_DIRECT and deps.direct is not None:
        if not deps.ledger.was_attempted(signed.nonce_key, ExecutionPath.DIRECT):
            logger.warning(
                f"Relay rejected nonce {signed.nonce} ({rejected.failure_class.value}); falling back to direct execution"
            )
            return DirectSubmitEvent(signed=signed, policy=event.policy, timeout=event.timeout, attempts=[rejected])

    if rejected.failure_class == FailureClass.RELAY_UNAUTHORIZED:
        rejected = rejected.model_copy(update={"message": f"relay unauthorized: {rejected.message}"})
    return ExecutionFailedEvent(result=rejected)


async def handle_direct_submit(
    event: DirectSubmitEvent,
    deps: Dependencies
) -> ExecutionSucceededEvent | ExecutionFailedEvent:
    """Submit as a controller-paid transaction."""
    signed = event.signed
    key = signed.nonce_key
    try:
        await check_nonce(signed, deps)
    except RelayError as e:
        return ExecutionFailedEvent(result=failure_result(e, ExecutionPath.DIRECT, signed, event.attempts))

    deps.ledger.record_attempt(key, ExecutionPath.DIRECT)
    try:
        result = await deps.direct.submit(signed, event.timeout or deps.submission_timeout)
    except RelayError as e:
        error = e
        if e.failure_class == FailureClass.UNKNOWN_OUTCOME:
            deps.ledger.mark_in_doubt(key)
        elif e.failure_class == FailureClass.EXECUTION_REVERTED:
            error = await _reclassify_revert(e, signed, deps)
        return ExecutionFailedEvent(result=failure_result(error, ExecutionPath.DIRECT, signed, event.attempts))

    # Mined: the on-chain nonce now refuses this envelope by itself.
    deps.ledger.forget(key)
    return ExecutionSucceededEvent(result=result.model_copy(update={"attempts": list(event.attempts)}))


async def _reclassify_revert(error: RelayError, signed: SignedEnvelope, deps: Dependencies) -> RelayError:
    """A revert caused by another envelope taking the nonce first is a stale nonce."""
    try:
        consumed = await deps.nonces.is_consumed(
            signed.identity.validator_address,
            signed.identity.controller_address,
            signed.channel,
            signed.nonce,
        )
    except RelayError:
        return error
    if not consumed:
        return error
    deps.ledger.forget(signed.nonce_key)
    return NonceStaleError(
        f"Nonce {signed.nonce} on channel {signed.channel} was consumed by another envelope before inclusion; "
        f"build a new envelope with a fresh nonce",
        nonce=signed.nonce,
        channel=signed.channel,
    )


# ==================== State Hooks ====================

def _state_hook(target: ExecutionState):
    async def hook(event, deps: Dependencies) -> None:
        if deps.flow is not None:
            deps.flow.transition(target)
    hook.__name__ = f"enter_{target.value}"
    return hook


async def _enter_failed(event: ExecutionFailedEvent, deps: Dependencies) -> None:
    if deps.flow is not None:
        deps.flow.transition(ExecutionState.FAILED_FATAL)
    logger.info(
        f"Execution failed: path={event.result.path.value}, "
        f"class={event.result.failure_class.value if event.result.failure_class else None}, nonce={event.result.nonce}"
    )


async def _enter_succeeded(event: ExecutionSucceededEvent, deps: Dependencies) -> None:
    if deps.flow is not None:
        deps.flow.transition(ExecutionState.SUCCEEDED)
    logger.info(
        f"Execution succeeded: path={event.result.path.value}, "
        f"tx={event.result.transaction_reference}, nonce={event.result.nonce}"
    )


# ==================== Event Bus Setup ====================

def setup_event_bus() -> EventBus:
    """Initialize event bus with built-in handlers and state hooks."""
    event_bus = EventBus()

    event_bus.subscribe(BuildEnvelopeEvent, handle_build_envelope)
    event_bus.subscribe(EnvelopeSignedEvent, handle_envelope_signed)
    event_bus.subscribe(RelaySubmitEvent, handle_relay_submit)
    event_bus.subscribe(RelayRejectedEvent, handle_relay_rejected)
    event_bus.subscribe(DirectSubmitEvent, handle_direct_submit)

    event_bus.hook(EnvelopeSignedEvent, _state_hook(ExecutionState.SIGNED))
    event_bus.hook(RelaySubmitEvent, _state_hook(ExecutionState.SUBMITTING))
    event_bus.hook(DirectSubmitEvent, _state_hook(ExecutionState.SUBMITTING))
    event_bus.hook(RelayRejectedEvent, _state_hook(ExecutionState.FAILED_RETRYABLE))
    event_bus.hook(ExecutionSucceededEvent, _enter_succeeded)
    event_bus.hook(ExecutionFailedEvent, _enter_failed)

    return event_bus
