"""
EVM Relay-Call Signature Verification Helpers

Off-chain verification of relay-call signatures. Recovery works on the raw
32-byte digest produced by ``standards.relay_call_digest`` so the check is
made against the exact bytes the Key Manager hashes, not against a
re-derivation through a different message-formation convention.

All cryptographic operations are performed in-process; no RPC calls are
made.

Exported helpers
----------------
recover_signer
    Recover the checksum address that produced ``signature`` over ``digest``.

verify_relay_signature
    Recompute the digest of a ``SignedEnvelope`` and confirm its signature
    recovers to the identity's controller address.

assert_signed_by
    Same check, raising ``SignatureMismatchError`` on failure.
"""

from typing import Optional

from eth_keys import keys
from eth_keys.exceptions import BadSignature, ValidationError

from .schemas import RelayCallSignature, SignedEnvelope
from .standards import relay_call_digest
from ...engine.exceptions import SignatureMismatchError


def recover_signer(digest: bytes, signature: RelayCallSignature) -> Optional[str]:
    """
    Recover the signer address from a digest and signature.

    Args:
        digest:    32-byte message hash that was signed.
        signature: ``RelayCallSignature`` with v in {27, 28}.

    Returns:
        The checksum address of the signer, or ``None`` if the signature is
        not recoverable (e.g. r/s outside the curve order).
    """
    if len(digest) != 32:
        raise ValueError(f"Digest must be 32 bytes, got {len(digest)}")
    try:
        sig = keys.Signature(vrs=(signature.v - 27, int(signature.r, 16), int(signature.s, 16)))
        public_key = sig.recover_public_key_from_msg_hash(digest)
    except (BadSignature, ValidationError, ValueError):
        return None
    return public_key.to_checksum_address()


def verify_relay_signature(signed: SignedEnvelope) -> bool:
    """
    Check that a signed envelope is self-consistent.

    The digest is recomputed from the envelope and the identity's validator
    rather than trusted from ``signed.digest``, so a tampered field (nonce,
    value, validity window, payload, chain id) invalidates the signature.

    Returns:
        ``True`` when the recovered signer equals the controller address
        (case-insensitive), ``False`` otherwise.
    """
    digest = relay_call_digest(signed.identity.validator_address, signed.envelope.encode())
    if digest != signed.digest:
        return False
    recovered = recover_signer(digest, signed.signature)
    return recovered is not None and recovered.lower() == signed.identity.controller_address.lower()


def assert_signed_by(digest: bytes, signature: RelayCallSignature, expected: str) -> str:
    """
    Recover the signer and compare it to ``expected``.

    Returns:
        The recovered checksum address.

    Raises:
        SignatureMismatchError: If the recovered address differs from
            ``expected`` or cannot be recovered.
    """
    recovered = recover_signer(digest, signature)
    if recovered is None or recovered.lower() != expected.lower():
        raise SignatureMismatchError(expected=expected, recovered=recovered)
    return recovered
