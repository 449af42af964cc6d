"""
Relay-Call Nonce Manager

Nonces are never cached: the Key Manager is the only source of truth, and
another process holding the same controller key can consume a nonce at any
time. What the manager does keep is one ``asyncio.Lock`` per
(signer, channel) so that flows inside this process sharing a channel take
turns between reading a nonce and submitting the envelope signed with it.
Flows on different channels never wait on each other.

A Key Manager nonce carries its channel id in the upper 128 bits and the
per-channel sequence number in the lower 128 bits.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Tuple

from ..bases import StateReader
from .constants import MAX_CHANNEL

logger = logging.getLogger(__name__)

_SEQUENCE_MASK = (1 << 128) - 1


def validate_channel(channel: int) -> int:
    """Return ``channel`` if it is a valid uint128, else raise ``ValueError``."""
    if isinstance(channel, bool) or not isinstance(channel, int):
        raise ValueError(f"Channel must be an int, got {type(channel).__name__}")
    if not 0 <= channel < MAX_CHANNEL:
        raise ValueError(f"Channel out of range [0, 2**128): {channel}")
    return channel


def split_nonce(nonce: int) -> Tuple[int, int]:
    """Split a Key Manager nonce into ``(channel, sequence)``."""
    return nonce >> 128, nonce & _SEQUENCE_MASK


class NonceManager:
    """
    Reads nonces and serializes same-channel flows.

    Example::

        nonces = NonceManager(reader)
        async with nonces.reserve(key_manager, controller, channel=3) as nonce:
            signed = sign_relay_call(..., envelope=RelayEnvelope(chain_id=42, nonce=nonce))
            await submit(signed)
    """

    def __init__(self, reader: StateReader):
        self._reader = reader
        self._locks: Dict[Tuple[str, int], asyncio.Lock] = {}
        self._holders: Dict[Tuple[str, int], int] = {}

    def is_reserved(self, signer: str, channel: int) -> bool:
        """Whether a flow currently holds the (signer, channel) reservation."""
        lock = self._locks.get((signer.lower(), channel))
        return lock is not None and lock.locked()

    @property
    def active_channels(self) -> int:
        """Number of (signer, channel) pairs held or waited on."""
        return len(self._locks)

    async def current(self, validator: str, signer: str, channel: int = 0) -> int:
        """Read the next usable nonce of ``(signer, channel)`` from the chain."""
        validate_channel(channel)
        nonce = await self._reader.get_nonce(validator, signer, channel)
        logger.debug(f"Nonce read: signer={signer}, channel={channel}, nonce={nonce}")
        return nonce

    @asynccontextmanager
    async def reserve(self, validator: str, signer: str, channel: int = 0) -> AsyncIterator[int]:
        """
        Hold the (signer, channel) reservation and yield a fresh nonce.

        The nonce is read after the lock is acquired, so a flow that waited
        for a previous one sees the nonce that flow left behind. The lock is
        discarded once no flow holds or waits for it.
        """
        validate_channel(channel)
        key = (signer.lower(), channel)
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] = self._holders.get(key, 0) + 1
        try:
            async with lock:
                yield await self.current(validator, signer, channel)
        finally:
            self._holders[key] -= 1
            if not self._holders[key]:
                del self._holders[key]
                del self._locks[key]

    async def is_consumed(self, validator: str, signer: str, channel: int, nonce: int) -> bool:
        """Whether the on-chain nonce of ``(signer, channel)`` has moved past ``nonce``."""
        return await self.current(validator, signer, channel) > nonce
