"""
HTTP Request/Response Schema Models for the Relay Service

This module defines the Pydantic models exchanged with a transaction relay
service (LSP-15 relayer API). They ensure type-safe, validated
serialization/deserialization of every request and response.

The relay flow consists of:
1. Client optionally queries the account's remaining gasless quota
2. Client submits a signed relay-call envelope for execution
3. Relay answers with a transaction hash, or an error status and message

Field names follow the relay's JSON wire format (camelCase) through aliases.
"""

from typing import Optional

from pydantic import BaseModel, Field, ConfigDict


# ============================================================================
# Request Headers
# ============================================================================

class ClientRequestHeader(BaseModel):
    """HTTP request headers sent by the relay client.

    Attributes:
        content_type: MIME type of request body (default: application/json).
        accept: Accepted response type.
    """
    model_config = ConfigDict(populate_by_name=True)
    content_type: str = Field(default="application/json", alias="Content-Type")
    accept: str = Field(default="application/json", alias="Accept")


# ============================================================================
# Execute
# ============================================================================

class RelayTransaction(BaseModel):
    """Signed relay call as carried inside an execute request.

    Attributes:
        abi: Hex-encoded call payload executed on the account.
        signature: Hex-encoded 65-byte relay-call signature.
        nonce: Key Manager nonce the signature is bound to.
        validity_timestamps: Hex-encoded packed validity window.
    """
    model_config = ConfigDict(populate_by_name=True)

    abi: str = Field(..., description="Hex-encoded payload")
    signature: str = Field(..., description="Hex-encoded r||s||v signature")
    nonce: int = Field(..., ge=0, description="Relay-call nonce")
    validity_timestamps: str = Field(default="0x0", alias="validityTimestamps")


class RelayExecuteRequest(BaseModel):
    """Body of ``POST /execute``.

    Attributes:
        address: Account (profile) the call is executed on.
        transaction: The signed relay call.
    """
    model_config = ConfigDict(populate_by_name=True)

    address: str = Field(..., description="Account address")
    transaction: RelayTransaction


class RelayExecuteResponse(BaseModel):
    """Successful ``POST /execute`` response."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    transaction_hash: str = Field(..., alias="transactionHash")


class RelayErrorResponse(BaseModel):
    """Error body returned by the relay with a non-2xx status."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    message: str = Field(default="", description="Relay error message")
    error: Optional[str] = Field(default=None, description="Relay error code or name")

    def describe(self) -> str:
        return " ".join(part for part in (self.error, self.message) if part)


# ============================================================================
# Quota
# ============================================================================

class RelayQuotaRequest(BaseModel):
    """Body of ``POST /quota``.

    Attributes:
        address: Account whose quota is requested.
        timestamp: Unix time the signature is bound to.
        signature: Controller signature proving control of the account.
    """
    address: str
    timestamp: int = Field(..., ge=0)
    signature: str


class RelayQuotaResponse(BaseModel):
    """Remaining gasless execution allowance for an account."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    quota: int = Field(..., description="Remaining allowance")
    unit: str = Field(default="gas", description="Allowance unit")
    total_quota: Optional[int] = Field(default=None, alias="totalQuota")
    reset_date: Optional[int] = Field(default=None, alias="resetDate")

    def is_exhausted(self) -> bool:
        return self.quota <= 0
