"""
Relay client tests.

The relay is simulated with ``httpx.MockTransport``; no network access.
"""

import asyncio
import json

import httpx
import pytest
from eth_account import Account
from eth_account.messages import encode_defunct

from test_mocks import (
    MOCK_ACCOUNT_ADDRESS,
    MOCK_CONTROLLER_ADDRESS,
    MOCK_CONTROLLER_PRIVATE_KEY,
    MOCK_TX_HASH,
    create_signed_envelope,
)

from profile_relay.adapters.evm.schemas import ValidityWindow
from profile_relay.adapters.evm.standards import quota_message_hash
from profile_relay.clients.relay_client import RelayClient
from profile_relay.engine.exceptions import (
    MalformedRelayRequestError,
    NetworkUnavailableError,
    QuotaExceededError,
    RelayUnauthorizedError,
    UnknownOutcomeError,
)
from profile_relay.schemas.bases import ExecutionOutcome, ExecutionPath, FailureClass

RELAYER_URL = "https://relayer.test/api"


def make_client(handler) -> RelayClient:
    return RelayClient(RELAYER_URL, transport=httpx.MockTransport(handler))


class TestRelaySubmit:

    @pytest.mark.asyncio
    async def test_submit_posts_signed_envelope(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"transactionHash": MOCK_TX_HASH})

        signed = create_signed_envelope(nonce=5, validity=ValidityWindow(start=0, end=1_900_000_000))
        async with make_client(handler) as relay:
            result = await relay.submit(signed)

        assert captured["url"] == f"{RELAYER_URL}/execute"
        body = captured["body"]
        assert body["address"] == MOCK_ACCOUNT_ADDRESS
        assert body["transaction"]["abi"] == "0x12345678"
        assert body["transaction"]["signature"] == signed.signature.to_hex()
        assert body["transaction"]["nonce"] == 5
        assert body["transaction"]["validityTimestamps"] == hex(1_900_000_000)

        assert result.outcome == ExecutionOutcome.SUCCESS
        assert result.path == ExecutionPath.RELAY
        assert result.transaction_reference == MOCK_TX_HASH
        assert result.gas_consumed is None
        assert result.nonce == 5

    @pytest.mark.asyncio
    async def test_success_without_hash_is_unknown_outcome(self):
        async with make_client(lambda request: httpx.Response(200, json={"ok": True})) as relay:
            with pytest.raises(UnknownOutcomeError):
                await relay.submit(create_signed_envelope())

    @pytest.mark.asyncio
    async def test_submission_timeout_is_unknown_outcome(self):
        async def handler(request):
            await asyncio.sleep(1)
            return httpx.Response(200, json={"transactionHash": MOCK_TX_HASH})

        async with make_client(handler) as relay:
            with pytest.raises(UnknownOutcomeError, match="Do not resubmit"):
                await relay.submit(create_signed_envelope(), timeout=0.01)


class TestRelayFailureClassification:

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "status, body, expected",
        [
            (401, {"message": "Unauthorized"}, RelayUnauthorizedError),
            (403, {"message": "forbidden"}, RelayUnauthorizedError),
            (400, {"message": "Invalid signature provided"}, RelayUnauthorizedError),
            (429, {"message": "slow down"}, QuotaExceededError),
            (400, {"error": "QuotaExceeded", "message": "Quota exceeded for this month"}, QuotaExceededError),
            (400, {"message": "transaction.nonce must be a number"}, MalformedRelayRequestError),
            (422, "not json", MalformedRelayRequestError),
            (500, {"message": "internal error"}, UnknownOutcomeError),
            (502, {"message": "bad gateway"}, UnknownOutcomeError),
            (503, {"message": "service unavailable"}, UnknownOutcomeError),
            (504, {"message": "gateway timeout"}, UnknownOutcomeError),
        ],
    )
    async def test_status_classification(self, status, body, expected):
        def handler(request):
            if isinstance(body, dict):
                return httpx.Response(status, json=body)
            return httpx.Response(status, text=body)

        async with make_client(handler) as relay:
            with pytest.raises(expected):
                await relay.submit(create_signed_envelope())

    @pytest.mark.asyncio
    async def test_unauthorized_message_names_sign(self):
        async with make_client(lambda request: httpx.Response(401, json={"message": "nope"})) as relay:
            with pytest.raises(RelayUnauthorizedError) as exc_info:
                await relay.submit(create_signed_envelope())

        assert exc_info.value.failure_class == FailureClass.RELAY_UNAUTHORIZED
        assert "SIGN" in str(exc_info.value)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error_type", [httpx.ConnectError, httpx.ConnectTimeout, httpx.PoolTimeout])
    async def test_connection_failure_is_network_unavailable(self, error_type):
        def handler(request):
            raise error_type("connection refused", request=request)

        async with make_client(handler) as relay:
            with pytest.raises(NetworkUnavailableError):
                await relay.submit(create_signed_envelope())

    @pytest.mark.asyncio
    async def test_read_timeout_is_unknown_outcome(self):
        def handler(request):
            raise httpx.ReadTimeout("read timed out", request=request)

        async with make_client(handler) as relay:
            with pytest.raises(UnknownOutcomeError):
                await relay.submit(create_signed_envelope())


class TestRelayQuota:

    @pytest.mark.asyncio
    async def test_get_quota_signs_request(self):
        captured = {}

        def handler(request):
            captured["url"] = str(request.url)
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"quota": 1500, "unit": "gas", "totalQuota": 2000, "resetDate": 1_700_100_000})

        async with make_client(handler) as relay:
            quota = await relay.get_quota(
                MOCK_ACCOUNT_ADDRESS, private_key=MOCK_CONTROLLER_PRIVATE_KEY, timestamp=1_700_000_000,
            )

        assert captured["url"] == f"{RELAYER_URL}/quota"
        body = captured["body"]
        assert body["address"] == MOCK_ACCOUNT_ADDRESS
        assert body["timestamp"] == 1_700_000_000

        message = encode_defunct(primitive=quota_message_hash(MOCK_ACCOUNT_ADDRESS, 1_700_000_000))
        assert Account.recover_message(message, signature=body["signature"]) == MOCK_CONTROLLER_ADDRESS

        assert quota.quota == 1500
        assert quota.total_quota == 2000
        assert not quota.is_exhausted()

    @pytest.mark.asyncio
    async def test_private_key_never_sent(self):
        sent = []

        def handler(request):
            sent.append(request.content.decode())
            sent.append(str(request.headers))
            return httpx.Response(200, json={"quota": 0})

        async with make_client(handler) as relay:
            quota = await relay.get_quota(MOCK_ACCOUNT_ADDRESS, private_key=MOCK_CONTROLLER_PRIVATE_KEY)

        assert quota.is_exhausted()
        assert all(MOCK_CONTROLLER_PRIVATE_KEY[2:] not in item for item in sent)
