"""
Exception and Error Definitions Module

Defines the exception taxonomy for relay-call construction, signing, and
submission. Every exception carries the ``FailureClass`` the execution
router records when it converts the exception into an ``ExecutionResult``.

Exception Hierarchy:
    RelayError (root)
    ├── EnvelopeEncodingError
    ├── SignatureMismatchError
    ├── PermissionDeniedError
    ├── RelayUnauthorizedError
    ├── QuotaExceededError
    ├── NonceStaleError
    ├── ValidityExpiredError
    ├── NetworkUnavailableError
    ├── UnknownOutcomeError
    ├── MalformedRelayRequestError
    ├── ExecutionRevertedError
    └── ConfigurationError
    InvalidTransition
"""

from typing import Any, Mapping, Optional, Sequence

from ..schemas.bases import FailureClass


class RelayError(Exception):
    """
    Root exception class for all relay engine exceptions.

    Attributes:
        failure_class: Classified cause recorded on the execution result.
        retryable: Whether the same envelope may be submitted again.
    """
    failure_class: Optional[FailureClass] = None
    retryable: bool = False


class EnvelopeEncodingError(RelayError, ValueError):
    """
    Raised when envelope fields cannot be packed.

    This includes scenarios such as:
    - Negative numeric fields
    - Numeric fields wider than 256 bits
    - Payloads that are not valid hex
    """
    failure_class = FailureClass.ENCODING_ERROR


class SignatureMismatchError(RelayError):
    """
    Raised when the signer recovered from (digest, signature) is not the
    expected controller.

    This is always a caller-side bug, never transient; it is raised before
    any network call and is never retried.

    Attributes:
        expected: Expected controller address
        recovered: Address actually recovered from the signature
    """
    failure_class = FailureClass.SIGNATURE_MISMATCH

    def __init__(self, expected: str, recovered: Optional[str]):
        self.expected = expected
        self.recovered = recovered
        super().__init__(
            f"Recovered signer {recovered} does not match controller {expected}"
        )


class PermissionDeniedError(RelayError):
    """
    Raised when the controller lacks a permission the action requires.

    The message names every missing capability, since the action required
    is "grant this bit", not "retry".

    Attributes:
        missing: Names of the missing permissions
        controller: Controller address the check was made for
    """
    failure_class = FailureClass.PERMISSION_DENIED

    def __init__(self, missing: Sequence[str], controller: Optional[str] = None, message: Optional[str] = None):
        self.missing = tuple(missing)
        self.controller = controller
        if message is None:
            who = f"Controller {controller}" if controller else "Controller"
            message = f"{who} is missing permission(s): {', '.join(self.missing)}"
        super().__init__(message)


class RelayUnauthorizedError(RelayError):
    """
    Raised when the relay's signature-verification delegate rejects the
    controller as unauthorised.

    Retryable once through the direct path under fallback policy.
    """
    failure_class = FailureClass.RELAY_UNAUTHORIZED
    retryable = True


class QuotaExceededError(RelayError):
    """
    Raised when the relay refuses the call because the account's gasless
    quota is exhausted. The direct path is unaffected.
    """
    failure_class = FailureClass.QUOTA_EXCEEDED


class NonceStaleError(RelayError):
    """
    Raised when another envelope already consumed this nonce.

    The caller must rebuild the envelope with a fresh nonce.

    Attributes:
        nonce: The stale nonce
        channel: Channel the nonce belongs to
    """
    failure_class = FailureClass.NONCE_STALE

    def __init__(self, message: str, nonce: Optional[int] = None, channel: Optional[int] = None):
        self.nonce = nonce
        self.channel = channel
        super().__init__(message)


class ValidityExpiredError(RelayError):
    """
    Raised when the envelope's validity window is not active: it has ended,
    or it has not started yet.
    """
    failure_class = FailureClass.VALIDITY_EXPIRED


class NetworkUnavailableError(RelayError):
    """
    Raised on transient I/O failures that happened before anything was
    submitted. Safe to retry the same unsubmitted envelope.
    """
    failure_class = FailureClass.NETWORK_UNAVAILABLE
    retryable = True


class UnknownOutcomeError(RelayError):
    """
    Raised when a submission may already have reached the chain (timeout
    after send, receipt never observed). Do not resubmit the same nonce
    until its on-chain state has been checked.

    Attributes:
        transaction_reference: Transaction hash if one was obtained
    """
    failure_class = FailureClass.UNKNOWN_OUTCOME

    def __init__(self, message: str, transaction_reference: Optional[str] = None):
        self.transaction_reference = transaction_reference
        super().__init__(message)


class MalformedRelayRequestError(RelayError):
    """
    Raised when the relay refuses the request body itself (4xx other than
    authorisation or quota failures).
    """
    failure_class = FailureClass.MALFORMED_REQUEST


class ExecutionRevertedError(RelayError):
    """
    Raised when the relay call reverts on-chain or during gas estimation
    for a reason outside the more specific classes.

    Attributes:
        transaction_reference: Transaction hash if the call was mined
        revert_reason: Decoded revert reason or raw revert data
    """
    failure_class = FailureClass.EXECUTION_REVERTED

    def __init__(self, message: str, transaction_reference: Optional[str] = None, revert_reason: Optional[str] = None):
        self.transaction_reference = transaction_reference
        self.revert_reason = revert_reason
        super().__init__(message)


class ConfigurationError(RelayError):
    """
    Raised when configuration is missing or invalid.

    This includes scenarios such as:
    - Missing controller key or account address
    - Unsupported chain without an explicit RPC URL
    - Malformed addresses
    """


class InvalidTransition(Exception):
    """
    Raised when the execution state machine is asked to make a transition
    that is not valid from its current state.

    Attributes:
        current_state: State the flow was in
        target_state: State that was requested
    """

    def __init__(self, current_state, target_state):
        self.current_state = current_state
        self.target_state = target_state
        super().__init__(f"Invalid transition {current_state} -> {target_state}")


_EXCEPTIONS_BY_CLASS = {
    FailureClass.ENCODING_ERROR: EnvelopeEncodingError,
    FailureClass.RELAY_UNAUTHORIZED: RelayUnauthorizedError,
    FailureClass.QUOTA_EXCEEDED: QuotaExceededError,
    FailureClass.VALIDITY_EXPIRED: ValidityExpiredError,
    FailureClass.NETWORK_UNAVAILABLE: NetworkUnavailableError,
    FailureClass.MALFORMED_REQUEST: MalformedRelayRequestError,
}


def exception_for(
    failure_class: Optional[FailureClass],
    message: str,
    details: Optional[Mapping[str, Any]] = None,
    transaction_reference: Optional[str] = None,
    nonce: Optional[int] = None,
    channel: Optional[int] = None,
) -> RelayError:
    """
    Build the taxonomy exception for a failure class and message.

    Used by ``ExecutionResult.raise_for_failure`` to turn a failed result
    back into an exception for callers that prefer raising. Structured
    fields (missing permissions, transaction hash, revert reason, ...) are
    restored from the result's ``error_details``.
    """
    details = details or {}
    if failure_class == FailureClass.SIGNATURE_MISMATCH:
        error = SignatureMismatchError(expected=details.get("expected", ""), recovered=details.get("recovered"))
        error.args = (message,)
        return error
    if failure_class == FailureClass.PERMISSION_DENIED:
        return PermissionDeniedError(
            missing=tuple(details.get("missing") or ()),
            controller=details.get("controller"),
            message=message,
        )
    if failure_class == FailureClass.NONCE_STALE:
        return NonceStaleError(message, nonce=nonce, channel=channel)
    if failure_class == FailureClass.UNKNOWN_OUTCOME:
        return UnknownOutcomeError(message, transaction_reference=transaction_reference)
    if failure_class == FailureClass.EXECUTION_REVERTED:
        return ExecutionRevertedError(
            message,
            transaction_reference=transaction_reference,
            revert_reason=details.get("revert_reason"),
        )

    exc_type = _EXCEPTIONS_BY_CLASS.get(failure_class, RelayError)
    return exc_type(message)
