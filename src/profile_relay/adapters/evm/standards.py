"""
Relay-Call Message Standards

Byte-level construction of relay-call messages and their signing digest.

Message (LSP-25)
----------------
``encodePacked(uint256 version, uint256 chainId, uint256 nonce,
uint256 validityTimestamps, uint256 value, bytes payload)``: five
big-endian 32-byte slots followed by the raw payload. The payload carries no
length prefix; its end is the end of the buffer.

Digest (EIP-191 version 0)
--------------------------
``keccak256(0x19 || 0x00 || intendedValidator || message)``, where the
intended validator is the Key Manager that verifies the call. This is not
the ``"\\x19Ethereum Signed Message:\\n"`` personal-message digest: a
signature over that digest recovers correctly off-chain but is rejected by
the Key Manager.
"""

from typing import Union

from eth_utils import keccak, to_canonical_address

from .constants import MAX_UINT256
from ...engine.exceptions import EnvelopeEncodingError

#: Width of every numeric slot in the packed message.
SLOT_SIZE: int = 32

#: Number of numeric slots preceding the payload.
HEADER_SLOTS: int = 5

#: Byte length of the fixed part of every message.
HEADER_SIZE: int = SLOT_SIZE * HEADER_SLOTS

EIP191_PREFIX: bytes = b"\x19"
EIP191_VERSION_INTENDED_VALIDATOR: bytes = b"\x00"


def _uint256(name: str, value: int) -> bytes:
    if isinstance(value, bool) or not isinstance(value, int):
        raise EnvelopeEncodingError(f"'{name}' must be an int, got {type(value).__name__}")
    if value < 0 or value >= MAX_UINT256:
        raise EnvelopeEncodingError(f"'{name}' does not fit in uint256: {value}")
    return value.to_bytes(SLOT_SIZE, "big")


def encode_relay_message(
    *,
    version: int,
    chain_id: int,
    nonce: int,
    validity: int,
    value: int,
    payload: Union[bytes, bytearray],
) -> bytes:
    """
    Pack relay-call fields into the message the Key Manager hashes.

    Args:
        version:  Relay-call version word (25).
        chain_id: Chain id the call is bound to.
        nonce:    Key Manager nonce for (controller, channel).
        validity: Packed validity window (``(start << 128) | end``).
        value:    Native currency amount forwarded with the call.
        payload:  Encoded call executed on the account.

    Returns:
        ``bytes`` of length ``160 + len(payload)``.

    Raises:
        EnvelopeEncodingError: If a numeric field is not an ``int``, is
            negative or wider than 256 bits, or if payload is not bytes.

    Example::

        message = encode_relay_message(
            version=25, chain_id=42, nonce=5, validity=0, value=0,
            payload=bytes.fromhex("7f23690c..."),
        )
    """
    if not isinstance(payload, (bytes, bytearray)):
        raise EnvelopeEncodingError(f"'payload' must be bytes, got {type(payload).__name__}")

    return b"".join((
        _uint256("version", version),
        _uint256("chain_id", chain_id),
        _uint256("nonce", nonce),
        _uint256("validity", validity),
        _uint256("value", value),
        bytes(payload),
    ))


def decode_relay_message(message: bytes) -> dict:
    """
    Split a packed message back into its fields.

    Inverse of :func:`encode_relay_message`; used for diagnostics.
    """
    if len(message) < HEADER_SIZE:
        raise ValueError(f"Message shorter than {HEADER_SIZE} bytes: {len(message)}")
    slots = [
        int.from_bytes(message[i * SLOT_SIZE:(i + 1) * SLOT_SIZE], "big")
        for i in range(HEADER_SLOTS)
    ]
    return {
        "version": slots[0],
        "chain_id": slots[1],
        "nonce": slots[2],
        "validity": slots[3],
        "value": slots[4],
        "payload": message[HEADER_SIZE:],
    }


def intended_validator_preimage(validator: str, message: bytes) -> bytes:
    """Bytes hashed into the digest: ``0x19 || 0x00 || validator || message``."""
    return EIP191_PREFIX + EIP191_VERSION_INTENDED_VALIDATOR + to_canonical_address(validator) + bytes(message)


def relay_call_digest(validator: str, message: bytes) -> bytes:
    """
    Compute the 32-byte signing digest for a relay-call message.

    Args:
        validator: Intended validator (the account's Key Manager) address.
        message:   Output of :func:`encode_relay_message`.

    Returns:
        ``keccak256(0x19 || 0x00 || validator || message)``.
    """
    return keccak(intended_validator_preimage(validator, message))


def quota_message_hash(account: str, timestamp: int) -> bytes:
    """
    Hash a quota request is signed over:
    ``keccak256(encodePacked(address account, uint256 timestamp))``.
    """
    return keccak(to_canonical_address(account) + _uint256("timestamp", timestamp))
