"""
EVM Off-Chain Signing Utilities

Local signing helpers for relay calls and relay-service quota requests.
All cryptographic operations are performed in-process using
``eth_account``; no RPC calls or on-chain state queries are made.

Exported helpers
----------------
sign_digest
    Sign a raw 32-byte digest and return a ``RelayCallSignature``.

sign_relay_call
    Encode an envelope, hash it for its intended validator, sign the
    digest, and verify the signature locally before returning a
    ``SignedEnvelope``.

sign_quota_request
    Produce the timestamp-bound signature a relay service expects before it
    reports an account's remaining quota.
"""

import logging
import time
from typing import Optional, Tuple

from eth_account import Account
from eth_account.messages import encode_defunct

from .schemas import Identity, RelayCallSignature, RelayEnvelope, SignedEnvelope
from .standards import quota_message_hash, relay_call_digest
from .verifies import assert_signed_by

logger = logging.getLogger(__name__)


def sign_digest(private_key: str, digest: bytes) -> RelayCallSignature:
    """
    Sign a 32-byte digest with a secp256k1 key.

    The digest is signed as-is: no further prefixing or hashing happens
    here. Callers are responsible for producing the right digest
    (see ``standards.relay_call_digest``).

    Args:
        private_key: Hex-encoded private key (with or without ``0x``).
        digest:      32-byte hash to sign.

    Returns:
        ``RelayCallSignature`` with v in {27, 28}.
    """
    if len(digest) != 32:
        raise ValueError(f"Digest must be 32 bytes, got {len(digest)}")
    signed = Account.unsafe_sign_hash(digest, private_key)
    return RelayCallSignature(
        v=signed.v,
        r="0x" + signed.r.to_bytes(32, "big").hex(),
        s="0x" + signed.s.to_bytes(32, "big").hex(),
    )


def sign_relay_call(
    *,
    private_key: str,
    identity: Identity,
    envelope: RelayEnvelope,
    channel: int = 0,
) -> SignedEnvelope:
    """
    Sign a relay-call envelope and verify the signature locally.

    Steps:
        1. Pack the envelope (``RelayEnvelope.encode``).
        2. Hash it for ``identity.validator_address``
           (``0x19 || 0x00 || validator || message``).
        3. Sign the digest with ``private_key``.
        4. Recover the signer from (digest, signature) and compare it,
           case-insensitively, to ``identity.controller_address``.

    Step 4 runs before the envelope leaves this function, so a key that does
    not belong to the controller fails here, not at the relay or on-chain.

    Args:
        private_key: Controller private key.
        identity:    Controller / account / validator addresses.
        envelope:    Fields to sign.
        channel:     Nonce channel the envelope's nonce was read from.

    Returns:
        ``SignedEnvelope`` ready for submission.

    Raises:
        SignatureMismatchError: If the recovered signer is not the controller.
        EnvelopeEncodingError:  If an envelope field cannot be packed.

    Example::

        signed = sign_relay_call(
            private_key="0xCONTROLLER_KEY",
            identity=Identity(
                controller_address="0xController",
                account_address="0xProfile",
                validator_address="0xKeyManager",
            ),
            envelope=RelayEnvelope(chain_id=42, nonce=5, payload=payload),
        )
    """
    message = envelope.encode()
    digest = relay_call_digest(identity.validator_address, message)
    logger.debug(
        f"Signing relay call: controller={identity.controller_address}, "
        f"validator={identity.validator_address}, channel={channel}, "
        f"nonce={envelope.nonce}, digest=0x{digest.hex()}"
    )

    signature = sign_digest(private_key, digest)
    assert_signed_by(digest, signature, identity.controller_address)

    return SignedEnvelope(
        envelope=envelope,
        identity=identity,
        channel=channel,
        digest=digest,
        signature=signature,
    )


def sign_quota_request(
    *,
    private_key: str,
    account: str,
    timestamp: Optional[int] = None,
) -> Tuple[int, str]:
    """
    Sign a relay quota request for ``account``.

    The relay expects an EIP-191 personal-message signature over
    ``keccak256(encodePacked(address account, uint256 timestamp))``.
    The timestamp bounds the request's lifetime on the relay side.

    Args:
        private_key: Controller private key.
        account:     Account whose quota is requested.
        timestamp:   Unix time to bind; defaults to now.

    Returns:
        ``(timestamp, signature_hex)``.
    """
    resolved_timestamp = int(time.time()) if timestamp is None else int(timestamp)
    message_hash = quota_message_hash(account, resolved_timestamp)
    signed = Account.sign_message(encode_defunct(primitive=message_hash), private_key)
    return resolved_timestamp, "0x" + bytes(signed.signature).hex()
