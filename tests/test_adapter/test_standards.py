"""
Relay-call message and digest tests.

Covers the packed message layout, its validation, the validity-window
packing, and the intended-validator digest.
"""

import pytest
from eth_account import Account
from eth_account.messages import encode_defunct, encode_intended_validator
from eth_utils import keccak, to_canonical_address

from test_mocks import (
    MOCK_CHAIN_ID,
    MOCK_CONTROLLER_PRIVATE_KEY,
    MOCK_KEY_MANAGER_ADDRESS,
    MOCK_OTHER_KEY_MANAGER_ADDRESS,
    create_envelope,
)

from profile_relay.adapters.evm.schemas import RelayEnvelope, ValidityWindow
from profile_relay.adapters.evm.standards import (
    HEADER_SIZE,
    decode_relay_message,
    encode_relay_message,
    relay_call_digest,
)
from profile_relay.engine.exceptions import EnvelopeEncodingError


class TestEncodeRelayMessage:

    def test_layout_is_five_slots_then_payload(self):
        payload = bytes.fromhex("deadbeef")
        message = encode_relay_message(
            version=25, chain_id=MOCK_CHAIN_ID, nonce=5, validity=0, value=7, payload=payload,
        )

        assert len(message) == 160 + len(payload)
        assert message[0:32] == (25).to_bytes(32, "big")
        assert message[32:64] == (42).to_bytes(32, "big")
        assert message[64:96] == (5).to_bytes(32, "big")
        assert message[96:128] == b"\x00" * 32
        assert message[128:160] == (7).to_bytes(32, "big")
        assert message[160:] == payload

    def test_empty_payload_is_header_only(self):
        message = encode_relay_message(version=25, chain_id=1, nonce=0, validity=0, value=0, payload=b"")
        assert len(message) == HEADER_SIZE == 160

    def test_envelope_encode_matches_function(self):
        envelope = create_envelope(nonce=9, value=3, payload=b"\x01\x02")
        expected = encode_relay_message(
            version=25, chain_id=MOCK_CHAIN_ID, nonce=9, validity=0, value=3, payload=b"\x01\x02",
        )
        assert envelope.encode() == expected

    @pytest.mark.parametrize("field", ["chain_id", "nonce", "validity", "value"])
    def test_negative_field_rejected(self, field):
        fields = dict(version=25, chain_id=1, nonce=0, validity=0, value=0, payload=b"")
        fields[field] = -1
        with pytest.raises(EnvelopeEncodingError):
            encode_relay_message(**fields)

    def test_overflowing_field_rejected(self):
        with pytest.raises(EnvelopeEncodingError):
            encode_relay_message(version=25, chain_id=1, nonce=2 ** 256, validity=0, value=0, payload=b"")

    def test_decode_recovers_fields(self):
        message = encode_relay_message(version=25, chain_id=4201, nonce=11, validity=99, value=1, payload=b"\xaa")
        decoded = decode_relay_message(message)
        assert decoded["chain_id"] == 4201
        assert decoded["nonce"] == 11
        assert decoded["validity"] == 99
        assert decoded["payload"] == b"\xaa"

    def test_envelope_rejects_unknown_version(self):
        with pytest.raises(ValueError, match="Unsupported relay call version"):
            RelayEnvelope(version=24, chain_id=42, nonce=1)

    def test_envelope_accepts_hex_payload(self):
        envelope = RelayEnvelope(chain_id=42, nonce=1, payload="0xcafe")
        assert envelope.payload == b"\xca\xfe"
        assert envelope.model_dump(mode="json")["payload"] == "0xcafe"


class TestValidityWindow:

    def test_packing(self):
        window = ValidityWindow(start=1_700_000_000, end=1_800_000_000)
        assert window.encode() == (1_700_000_000 << 128) | 1_800_000_000
        assert ValidityWindow.decode(window.encode()) == window

    def test_unrestricted_packs_to_zero(self):
        assert ValidityWindow.unrestricted().encode() == 0
        assert ValidityWindow.unrestricted().is_active(now=2 ** 40)

    def test_open_ended_window_never_expires(self):
        window = ValidityWindow(start=100, end=0)
        assert not window.is_expired(now=10 ** 12)
        assert not window.has_started(now=99)
        assert window.is_active(now=100)

    def test_expired_window(self):
        window = ValidityWindow(start=0, end=1000)
        assert window.is_active(now=1000)
        assert window.is_expired(now=1001)

    def test_expiring_in(self):
        window = ValidityWindow.expiring_in(600, now=1000)
        assert window.start == 0
        assert window.end == 1600


class TestRelayCallDigest:

    def test_matches_eip191_intended_validator(self):
        message = create_envelope().encode()
        reference = Account.sign_message(
            encode_intended_validator(validator_address=MOCK_KEY_MANAGER_ADDRESS, primitive=message),
            MOCK_CONTROLLER_PRIVATE_KEY,
        )
        assert relay_call_digest(MOCK_KEY_MANAGER_ADDRESS, message) == bytes(reference.message_hash)

    def test_preimage_layout(self):
        message = b"\x01" * 161
        expected = keccak(b"\x19\x00" + to_canonical_address(MOCK_KEY_MANAGER_ADDRESS) + message)
        assert relay_call_digest(MOCK_KEY_MANAGER_ADDRESS, message) == expected

    def test_differs_from_personal_message_digest(self):
        message = create_envelope().encode()
        personal = Account.sign_message(encode_defunct(primitive=message), MOCK_CONTROLLER_PRIVATE_KEY)
        assert relay_call_digest(MOCK_KEY_MANAGER_ADDRESS, message) != bytes(personal.message_hash)

    def test_bound_to_validator(self):
        message = create_envelope().encode()
        assert relay_call_digest(MOCK_KEY_MANAGER_ADDRESS, message) != relay_call_digest(
            MOCK_OTHER_KEY_MANAGER_ADDRESS, message
        )
