"""
Base Schema Models for the Relay Execution Engine

This module defines the fundamental base classes that all other schema
models inherit from. It provides the foundation for type safety, validation,
and consistent behaviour across the relay engine.

Core Classes:
    - CanonicalModel: RFC8785-compliant Pydantic base model for hashing and transport
    - ExecutionOutcome: Terminal outcome of one execution (success / failed)
    - ExecutionPath: Which submission path produced a result (relay / direct)
    - ExecutionPolicy: Caller policy selecting relay / direct submission
    - FailureClass: Classified cause attached to every failed result
    - ExecutionResult: Normalised result returned by the execution router

Dependencies:
    - pydantic: For data validation and serialization
"""

import json
from typing import Optional, Dict, Any, List
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class CanonicalModel(BaseModel):
    """
    RFC8785-compliant Pydantic base model with canonical JSON serialization.

    This model ensures consistent, deterministic JSON representation suitable
    for hashing, logging and HTTP transport.

    Features:
        - Automatic conversion of Pydantic objects, enums, and bytes to standard types
        - Deterministic key sorting in JSON output
        - No extra whitespace for consistent hashing

    Example:
        class MyModel(CanonicalModel):
            name: str
            value: int

        model = MyModel(name="test", value=123)
        canonical_json = model.to_canonical_json()  # '{"name":"test","value":123}'
    """

    model_config = ConfigDict(populate_by_name=True)

    def to_canonical_json(self) -> str:
        """
        Convert model to RFC8785-compliant canonical JSON string.

        Returns:
            str: JSON string with sorted keys and no extra whitespace.
        """
        data = self.model_dump(mode="json")
        return json.dumps(
            data,
            separators=(",", ":"),
            sort_keys=True,
            ensure_ascii=False
        )

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert model to dictionary representation.

        Returns:
            Dict[str, Any]: Dictionary with all model fields.
        """
        return self.model_dump()


class ExecutionOutcome(str, Enum):
    """
    Terminal outcome of an execution.

    Attributes:
        SUCCESS: The relay call was included on-chain and did not revert
        FAILED: The call was rejected, reverted, or could not be submitted
    """
    SUCCESS = "success"
    FAILED = "failed"


class ExecutionPath(str, Enum):
    """
    Submission path that produced a result.

    Attributes:
        RELAY: Gasless submission through the relay service
        DIRECT: On-chain ``executeRelayCall`` paid by the controller
        LOCAL: Failure detected before any submission (encoding, signing, gate)
    """
    RELAY = "relay"
    DIRECT = "direct"
    LOCAL = "local"


class ExecutionPolicy(str, Enum):
    """
    Caller policy selecting the submission path(s).

    Attributes:
        RELAY_THEN_DIRECT: Try the relay; on an unauthorised rejection fall
            back to the direct path with the same envelope
        DIRECT_ONLY: Submit on-chain, paid by the controller
        RELAY_ONLY: Relay only; a rejection is surfaced, never a gas-paying fallback
    """
    RELAY_THEN_DIRECT = "relay-then-direct"
    DIRECT_ONLY = "direct-only"
    RELAY_ONLY = "relay-only"


class FailureClass(str, Enum):
    """
    Enumeration of classified failure causes.

    Every failed ``ExecutionResult`` carries exactly one of these so callers
    can branch on the cause instead of parsing transport errors.

    Attributes:
        ENCODING_ERROR: Envelope fields could not be packed
        SIGNATURE_MISMATCH: Local recovery did not yield the controller address
        PERMISSION_DENIED: Controller lacks a required permission bit
        RELAY_UNAUTHORIZED: Relay rejected the signature as unauthorised
        QUOTA_EXCEEDED: Relay quota for the account is exhausted
        NONCE_STALE: The envelope's nonce was already consumed
        VALIDITY_EXPIRED: The envelope's validity window is not active
        NETWORK_UNAVAILABLE: Transient I/O failure before anything was submitted
        UNKNOWN_OUTCOME: Submission may have happened; check before resubmitting
        MALFORMED_REQUEST: Relay refused the request body
        EXECUTION_REVERTED: The call was mined but reverted
    """
    ENCODING_ERROR = "encoding_error"
    SIGNATURE_MISMATCH = "signature_mismatch"
    PERMISSION_DENIED = "permission_denied"
    RELAY_UNAUTHORIZED = "relay_unauthorized"
    QUOTA_EXCEEDED = "quota_exceeded"
    NONCE_STALE = "nonce_stale"
    VALIDITY_EXPIRED = "validity_expired"
    NETWORK_UNAVAILABLE = "network_unavailable"
    UNKNOWN_OUTCOME = "unknown_outcome"
    MALFORMED_REQUEST = "malformed_request"
    EXECUTION_REVERTED = "execution_reverted"


class ExecutionResult(CanonicalModel):
    """
    Normalised result of executing one relay-call envelope.

    One result is produced per submission attempt. When the router falls
    back from the relay path to the direct path, the relay attempt is kept
    in ``attempts`` and the direct attempt is the surfaced result.

    Attributes:
        outcome: ``success`` or ``failed``
        path: Path that produced this result
        transaction_reference: Transaction hash when known
        gas_consumed: ``gasUsed`` from the receipt (direct path)
        failure_class: Classified cause when ``outcome`` is ``failed``
        message: Human-readable detail; names the missing bit or condition
        nonce: Envelope nonce
        channel: Envelope nonce channel
        attempts: Independent results of earlier attempts for the same nonce
        error_details: Structured diagnostic data
        created_at: Timestamp when the result was recorded
    """

    outcome: ExecutionOutcome = Field(..., description="Terminal outcome")
    path: ExecutionPath = Field(..., description="Path that produced the result")
    transaction_reference: Optional[str] = Field(None, description="Transaction hash, if any")
    gas_consumed: Optional[int] = Field(None, ge=0, description="Gas used by the transaction")
    failure_class: Optional[FailureClass] = Field(None, description="Classified failure cause")
    message: str = Field(default="", description="Human-readable status message")
    nonce: Optional[int] = Field(None, ge=0, description="Envelope nonce")
    channel: Optional[int] = Field(None, ge=0, description="Envelope nonce channel")
    attempts: List["ExecutionResult"] = Field(default_factory=list, description="Earlier attempts")
    error_details: Optional[Dict[str, Any]] = Field(None, description="Detailed error information")
    created_at: datetime = Field(default_factory=datetime.now, description="Result timestamp")

    def is_success(self) -> bool:
        """
        Check if the execution succeeded.

        Example:
            result = await router.execute(call)
            if result.is_success():
                print(result.transaction_reference)
        """
        return self.outcome == ExecutionOutcome.SUCCESS

    def get_error_message(self) -> Optional[str]:
        """
        Get formatted error message, or None for successful results.
        """
        if self.is_success():
            return None

        error_msg = f"Execution failed ({self.failure_class.value if self.failure_class else 'unknown'}): {self.message}"
        if self.error_details:
            details_str = json.dumps(self.error_details, indent=2, default=str)
            error_msg += f"\nDetails: {details_str}"
        return error_msg

    def raise_for_failure(self) -> "ExecutionResult":
        """
        Raise the taxonomy exception matching ``failure_class``.

        Returns the result unchanged when it is successful, so it can be
        chained: ``result = (await router.execute(call)).raise_for_failure()``.
        """
        if self.is_success():
            return self

        from ..engine.exceptions import exception_for

        raise exception_for(
            self.failure_class,
            self.message,
            details=self.error_details,
            transaction_reference=self.transaction_reference,
            nonce=self.nonce,
            channel=self.channel,
        )
