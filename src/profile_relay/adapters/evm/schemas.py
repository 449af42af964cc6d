"""
EVM Relay-Call Schema Models

Pydantic models for relay-call construction and signing. All classes
inherit from ``CanonicalModel`` in ``schemas.bases``.

Envelope classes:
    - ValidityWindow: Start/end timestamps packed into one uint256.
    - RelayEnvelope: The tuple that is packed and signed
      (version, chain id, nonce, validity window, value, payload).
    - Identity: Controller, account and intended-validator addresses.

Signature classes:
    - RelayCallSignature: 65-byte recoverable ECDSA signature (r || s || v).
    - SignedEnvelope: Envelope plus identity, channel, digest and signature;
      the unit handed to the relay and direct submission paths.
"""

import time
from typing import Optional

from pydantic import Field, field_serializer, field_validator
from eth_utils import is_address, to_checksum_address

from ...schemas.bases import CanonicalModel
from ...schemas.versions import RelayCallVersion
from .constants import LSP25_VERSION, MAX_CHANNEL, MAX_UINT256

_UINT128_MASK = (1 << 128) - 1


def _checksum(value: str, field_name: str) -> str:
    if not isinstance(value, str) or not is_address(value):
        raise ValueError(f"'{field_name}' must be a 0x-prefixed 20-byte address, got: {value!r}")
    return to_checksum_address(value)


def _strip_hex(value: str) -> str:
    return value[2:] if value[:2] in ("0x", "0X") else value


class ValidityWindow(CanonicalModel):
    """
    Time range in which a signed envelope is acceptable on-chain.

    Packed as ``(start << 128) | end``. ``0`` on both sides means
    unrestricted; ``end == 0`` means the window never closes.

    Attributes:
        start: Unix timestamp from which the call is valid (0 = immediately).
        end: Unix timestamp after which the call is invalid (0 = never).

    Example::

        window = ValidityWindow.expiring_in(600)   # valid for ten minutes
        packed = window.encode()
    """

    start: int = Field(default=0, ge=0, lt=2 ** 128, description="Start timestamp (unix)")
    end: int = Field(default=0, ge=0, lt=2 ** 128, description="End timestamp (unix, 0 = none)")

    @classmethod
    def unrestricted(cls) -> "ValidityWindow":
        return cls(start=0, end=0)

    @classmethod
    def expiring_in(cls, seconds: int, now: Optional[int] = None) -> "ValidityWindow":
        now = int(time.time()) if now is None else now
        return cls(start=0, end=now + seconds)

    @classmethod
    def decode(cls, packed: int) -> "ValidityWindow":
        """Split a packed uint256 into its start and end halves."""
        return cls(start=packed >> 128, end=packed & _UINT128_MASK)

    def encode(self) -> int:
        return (self.start << 128) | self.end

    def is_unrestricted(self) -> bool:
        return self.start == 0 and self.end == 0

    def has_started(self, now: Optional[int] = None) -> bool:
        now = int(time.time()) if now is None else now
        return now >= self.start

    def is_expired(self, now: Optional[int] = None) -> bool:
        now = int(time.time()) if now is None else now
        return self.end != 0 and now > self.end

    def is_active(self, now: Optional[int] = None) -> bool:
        return self.has_started(now) and not self.is_expired(now)

    def to_hex(self) -> str:
        return hex(self.encode())


class RelayEnvelope(CanonicalModel):
    """
    Relay-call message fields, in their packing order.

    Every numeric field occupies one big-endian 32-byte slot; ``payload``
    follows unprefixed. See ``standards.encode_relay_message``.

    Attributes:
        version: Relay-call version word (25).
        chain_id: Chain the call is bound to.
        nonce: Key Manager nonce for (controller, channel).
        validity_window: Packed start/end timestamps.
        value: Native currency amount sent along with the call.
        payload: Pre-encoded call executed on the account.
    """

    version: int = Field(default=LSP25_VERSION, ge=0, lt=MAX_UINT256)
    chain_id: int = Field(..., ge=1, lt=MAX_UINT256)
    nonce: int = Field(..., ge=0, lt=MAX_UINT256)
    validity_window: ValidityWindow = Field(default_factory=ValidityWindow.unrestricted)
    value: int = Field(default=0, ge=0, lt=MAX_UINT256)
    payload: bytes = Field(default=b"", description="Opaque encoded call")

    @field_validator("version")
    @classmethod
    def _check_version(cls, value: int) -> int:
        return int(RelayCallVersion.from_int(value))

    @field_validator("payload", mode="before")
    @classmethod
    def _payload_from_hex(cls, value):
        if isinstance(value, str):
            return bytes.fromhex(_strip_hex(value))
        return value

    @field_serializer("payload")
    def _payload_to_hex(self, value: bytes) -> str:
        return "0x" + value.hex()

    def encode(self) -> bytes:
        """Pack the envelope into the canonical relay-call message."""
        from .standards import encode_relay_message

        return encode_relay_message(
            version=self.version,
            chain_id=self.chain_id,
            nonce=self.nonce,
            validity=self.validity_window.encode(),
            value=self.value,
            payload=self.payload,
        )

    def payload_hex(self) -> str:
        return "0x" + self.payload.hex()


class Identity(CanonicalModel):
    """
    Addresses involved in signing one envelope.

    Attributes:
        controller_address: Address of the signing key.
        account_address: Account (profile) being acted on.
        validator_address: Permission manager currently registered to the
            account; the intended validator in the digest. Resolved from
            the account for every build.
    """

    controller_address: str
    account_address: str
    validator_address: str

    @field_validator("controller_address", "account_address", "validator_address")
    @classmethod
    def _validate_address(cls, value, info):
        return _checksum(value, info.field_name)


class RelayCallSignature(CanonicalModel):
    """
    Recoverable secp256k1 ECDSA signature over a relay-call digest.

    Attributes:
        v: Recovery id (27 or 28).
        r: r component as a 0x-prefixed 64-char hex string.
        s: s component as a 0x-prefixed 64-char hex string.
    """

    v: int = Field(..., ge=27, le=28, description="ECDSA recovery ID (27 or 28)")
    r: str = Field(..., description="Signature r component (32 bytes)")
    s: str = Field(..., description="Signature s component (32 bytes)")

    @field_validator("r", "s")
    @classmethod
    def _validate_component(cls, value, info):
        hex_str = _strip_hex(value)
        if len(hex_str) > 64:
            raise ValueError(f"Invalid {info.field_name}: expected at most 64 hex chars, got {len(hex_str)}")
        try:
            int(hex_str, 16)
        except ValueError:
            raise ValueError(f"Invalid {info.field_name}: not valid hexadecimal")
        return "0x" + hex_str.zfill(64).lower()

    @classmethod
    def from_bytes(cls, signature: bytes) -> "RelayCallSignature":
        """
        Parse a packed 65-byte ``r || s || v`` signature.

        Accepts ``v`` as 0/1 or 27/28.
        """
        if len(signature) != 65:
            raise ValueError(f"Signature must be 65 bytes, got {len(signature)}")
        v = signature[64]
        if v < 27:
            v += 27
        return cls(v=v, r="0x" + signature[:32].hex(), s="0x" + signature[32:64].hex())

    @classmethod
    def from_hex(cls, signature: str) -> "RelayCallSignature":
        return cls.from_bytes(bytes.fromhex(_strip_hex(signature)))

    def to_bytes(self) -> bytes:
        """Encode as packed 65 bytes (``r || s || v``)."""
        return bytes.fromhex(self.r[2:]) + bytes.fromhex(self.s[2:]) + bytes([self.v])

    def to_hex(self) -> str:
        return "0x" + self.to_bytes().hex()


class SignedEnvelope(CanonicalModel):
    """
    A relay envelope bound to an identity, a channel and a signature.

    Instances are only produced after the local recovery check passed
    (see ``signatures.sign_relay_call``).

    Attributes:
        envelope: The signed relay-call fields.
        identity: Controller / account / validator addresses.
        channel: Nonce channel the envelope's nonce was read from.
        digest: 32-byte signing digest.
        signature: Controller signature over ``digest``.
    """

    envelope: RelayEnvelope
    identity: Identity
    channel: int = Field(default=0, ge=0, lt=MAX_CHANNEL)
    digest: bytes
    signature: RelayCallSignature

    @field_serializer("digest")
    def _digest_to_hex(self, value: bytes) -> str:
        return "0x" + value.hex()

    @property
    def nonce(self) -> int:
        return self.envelope.nonce

    @property
    def nonce_key(self):
        """Key identifying this nonce slot: (controller, channel, nonce)."""
        return (self.identity.controller_address, self.channel, self.envelope.nonce)

    def __repr__(self) -> str:
        return (
            f"SignedEnvelope(account={self.identity.account_address}, "
            f"controller={self.identity.controller_address}, "
            f"channel={self.channel}, nonce={self.envelope.nonce})"
        )
