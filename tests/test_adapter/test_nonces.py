"""
Nonce manager tests.
"""

import asyncio

import pytest

from test_mocks import (
    MOCK_CONTROLLER_ADDRESS,
    MOCK_KEY_MANAGER_ADDRESS,
    MOCK_OTHER_ADDRESS,
    FakeStateReader,
)

from profile_relay.adapters.evm.nonces import NonceManager, split_nonce, validate_channel


class TestValidateChannel:

    @pytest.mark.parametrize("channel", [0, 1, 2 ** 128 - 1])
    def test_valid(self, channel):
        assert validate_channel(channel) == channel

    @pytest.mark.parametrize("channel", [-1, 2 ** 128, "1", 1.0, True])
    def test_invalid(self, channel):
        with pytest.raises(ValueError):
            validate_channel(channel)


def test_split_nonce():
    assert split_nonce((7 << 128) | 3) == (7, 3)
    assert split_nonce(5) == (0, 5)


class TestNonceManager:

    @pytest.mark.asyncio
    async def test_current_is_never_cached(self):
        reader = FakeStateReader(start_nonce=5)
        nonces = NonceManager(reader)

        assert await nonces.current(MOCK_KEY_MANAGER_ADDRESS, MOCK_CONTROLLER_ADDRESS) == 5
        reader.consume(MOCK_CONTROLLER_ADDRESS)
        assert await nonces.current(MOCK_KEY_MANAGER_ADDRESS, MOCK_CONTROLLER_ADDRESS) == 6
        assert reader.nonce_reads == 2

    @pytest.mark.asyncio
    async def test_channel_is_encoded_in_nonce(self):
        nonces = NonceManager(FakeStateReader(start_nonce=2))
        nonce = await nonces.current(MOCK_KEY_MANAGER_ADDRESS, MOCK_CONTROLLER_ADDRESS, channel=9)
        assert split_nonce(nonce) == (9, 2)

    @pytest.mark.asyncio
    async def test_invalid_channel_rejected_before_read(self):
        reader = FakeStateReader()
        nonces = NonceManager(reader)

        with pytest.raises(ValueError):
            await nonces.current(MOCK_KEY_MANAGER_ADDRESS, MOCK_CONTROLLER_ADDRESS, channel=-1)
        with pytest.raises(ValueError):
            async with nonces.reserve(MOCK_KEY_MANAGER_ADDRESS, MOCK_CONTROLLER_ADDRESS, channel=2 ** 128):
                pass
        assert reader.nonce_reads == 0

    @pytest.mark.asyncio
    async def test_same_channel_flows_are_serialized(self):
        reader = FakeStateReader(start_nonce=5)
        nonces = NonceManager(reader)
        seen = []

        async def flow():
            async with nonces.reserve(MOCK_KEY_MANAGER_ADDRESS, MOCK_CONTROLLER_ADDRESS, 0) as nonce:
                seen.append(nonce)
                await asyncio.sleep(0.01)
                reader.consume(MOCK_CONTROLLER_ADDRESS, 0)

        await asyncio.gather(flow(), flow(), flow())
        assert seen == [5, 6, 7]

    @pytest.mark.asyncio
    async def test_different_channels_do_not_wait(self):
        nonces = NonceManager(FakeStateReader())
        entered = asyncio.Event()

        async def holder():
            async with nonces.reserve(MOCK_KEY_MANAGER_ADDRESS, MOCK_CONTROLLER_ADDRESS, 1):
                await asyncio.wait_for(entered.wait(), timeout=1)

        async def other():
            async with nonces.reserve(MOCK_KEY_MANAGER_ADDRESS, MOCK_CONTROLLER_ADDRESS, 2):
                entered.set()

        await asyncio.gather(holder(), other())
        assert entered.is_set()

    @pytest.mark.asyncio
    async def test_different_signers_do_not_share_a_lock(self):
        nonces = NonceManager(FakeStateReader())

        async with nonces.reserve(MOCK_KEY_MANAGER_ADDRESS, MOCK_CONTROLLER_ADDRESS, 0):
            assert nonces.is_reserved(MOCK_CONTROLLER_ADDRESS.lower(), 0)
            assert not nonces.is_reserved(MOCK_OTHER_ADDRESS, 0)
        assert not nonces.is_reserved(MOCK_CONTROLLER_ADDRESS, 0)

    @pytest.mark.asyncio
    async def test_is_consumed(self):
        reader = FakeStateReader(start_nonce=5)
        nonces = NonceManager(reader)

        assert not await nonces.is_consumed(MOCK_KEY_MANAGER_ADDRESS, MOCK_CONTROLLER_ADDRESS, 0, 5)
        reader.consume(MOCK_CONTROLLER_ADDRESS, 0)
        assert await nonces.is_consumed(MOCK_KEY_MANAGER_ADDRESS, MOCK_CONTROLLER_ADDRESS, 0, 5)

    @pytest.mark.asyncio
    async def test_locks_released_after_use(self):
        reader = FakeStateReader(start_nonce=5)
        nonces = NonceManager(reader)

        for channel in range(20):
            async with nonces.reserve(MOCK_KEY_MANAGER_ADDRESS, MOCK_CONTROLLER_ADDRESS, channel):
                assert nonces.active_channels == 1
        assert nonces.active_channels == 0

    @pytest.mark.asyncio
    async def test_lock_survives_while_flows_wait(self):
        reader = FakeStateReader(start_nonce=5)
        nonces = NonceManager(reader)
        seen = []

        async def flow():
            async with nonces.reserve(MOCK_KEY_MANAGER_ADDRESS, MOCK_CONTROLLER_ADDRESS, 0) as nonce:
                seen.append(nonce)
                assert nonces.active_channels == 1
                await asyncio.sleep(0.01)
                reader.consume(MOCK_CONTROLLER_ADDRESS, 0)

        await asyncio.gather(flow(), flow(), flow())

        assert seen == [5, 6, 7]
        assert nonces.active_channels == 0

    @pytest.mark.asyncio
    async def test_lock_released_when_flow_fails(self):
        nonces = NonceManager(FakeStateReader())

        with pytest.raises(RuntimeError):
            async with nonces.reserve(MOCK_KEY_MANAGER_ADDRESS, MOCK_CONTROLLER_ADDRESS, 0):
                raise RuntimeError("boom")
        assert nonces.active_channels == 0
