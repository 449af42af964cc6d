"""
Relay Engine Test Mocks Module

Provides mock data and utilities for testing the relay engine without
blockchain or relay connectivity.

Key Components:
    - Mock controller keys, account and Key Manager addresses
    - Factories for envelopes, identities and signed envelopes
    - FakeStateReader: in-memory nonces, permission masks and validator
    - FakeSubmissionPath: scripted relay / direct submission outcomes
    - MockWeb3: minimal AsyncWeb3 stand-in for the direct executor
    - Helper to build an ExecutionRouter wired to the fakes

Usage:
    from test_mocks import (
        FakeStateReader,
        FakeSubmissionPath,
        create_router,
    )

    reader = FakeStateReader(start_nonce=5)
    direct = FakeSubmissionPath(ExecutionPath.DIRECT, reader=reader)
    router = create_router(reader, direct=direct)
"""

import asyncio
from typing import Any, Dict, List, Optional, Tuple
from unittest.mock import AsyncMock, MagicMock

from eth_account import Account
from web3 import AsyncWeb3

# Import schemas from the main codebase
import sys
from pathlib import Path
src_path = Path(__file__).parent.parent.parent / "src"
sys.path.insert(0, str(src_path))

from profile_relay.adapters.bases import StateReader, SubmissionPath
from profile_relay.adapters.evm.permissions import Permission
from profile_relay.adapters.evm.schemas import Identity, RelayEnvelope, SignedEnvelope, ValidityWindow
from profile_relay.adapters.evm.signatures import sign_relay_call
from profile_relay.engine.router import ExecutionRouter
from profile_relay.schemas.bases import ExecutionOutcome, ExecutionPath, ExecutionPolicy, ExecutionResult


# ========================================================================
# Mock Blockchain Constants
# ========================================================================

# Test private keys (do not use in production!)
MOCK_CONTROLLER_PRIVATE_KEY = "0x1234567890123456789012345678901234567890123456789012345678901234"
MOCK_OTHER_PRIVATE_KEY = "0xabcdefabcdefabcdefabcdefabcdefabcdefabcdefabcdefabcdefabcdefabcd"

MOCK_CONTROLLER_ADDRESS = Account.from_key(MOCK_CONTROLLER_PRIVATE_KEY).address
MOCK_OTHER_ADDRESS = Account.from_key(MOCK_OTHER_PRIVATE_KEY).address

MOCK_ACCOUNT_ADDRESS = AsyncWeb3.to_checksum_address("0x" + "a1" * 20)
MOCK_KEY_MANAGER_ADDRESS = AsyncWeb3.to_checksum_address("0x" + "b2" * 20)
MOCK_OTHER_KEY_MANAGER_ADDRESS = AsyncWeb3.to_checksum_address("0x" + "c3" * 20)

MOCK_CHAIN_ID = 42
MOCK_TESTNET_CHAIN_ID = 4201

MOCK_TX_HASH = "0x" + "ab" * 32
MOCK_DATA_KEY = bytes.fromhex("5ef83ad9559033e6e941db7d7c495acdce616347d28e90c7ce47cbfcfcad3bc5")

# Permission masks
MOCK_FULL_MASK = int(
    Permission.EXECUTE_RELAY_CALL
    | Permission.SIGN
    | Permission.SUPER_SETDATA
    | Permission.SUPER_CALL
    | Permission.SUPER_TRANSFERVALUE
)
MOCK_NO_SIGN_MASK = MOCK_FULL_MASK & ~int(Permission.SIGN)
MOCK_NO_SETDATA_MASK = MOCK_FULL_MASK & ~int(Permission.SUPER_SETDATA)


# ========================================================================
# Factory Functions
# ========================================================================

def create_identity(
    controller: str = MOCK_CONTROLLER_ADDRESS,
    account: str = MOCK_ACCOUNT_ADDRESS,
    validator: str = MOCK_KEY_MANAGER_ADDRESS,
) -> Identity:
    return Identity(controller_address=controller, account_address=account, validator_address=validator)


def create_envelope(
    chain_id: int = MOCK_CHAIN_ID,
    nonce: int = 5,
    payload: bytes = b"\x12\x34\x56\x78",
    value: int = 0,
    validity: Optional[ValidityWindow] = None,
) -> RelayEnvelope:
    return RelayEnvelope(
        chain_id=chain_id,
        nonce=nonce,
        validity_window=validity or ValidityWindow.unrestricted(),
        value=value,
        payload=payload,
    )


def create_signed_envelope(
    private_key: str = MOCK_CONTROLLER_PRIVATE_KEY,
    channel: int = 0,
    **envelope_kwargs,
) -> SignedEnvelope:
    return sign_relay_call(
        private_key=private_key,
        identity=create_identity(controller=Account.from_key(private_key).address),
        envelope=create_envelope(**envelope_kwargs),
        channel=channel,
    )


# ========================================================================
# Fake Collaborators
# ========================================================================

class FakeStateReader(StateReader):
    """
    In-memory ``StateReader``.

    Nonces are tracked per (signer, channel) as sequence numbers; the
    returned nonce carries the channel in its upper 128 bits, as the Key
    Manager does.
    """

    def __init__(
        self,
        start_nonce: int = 0,
        mask: int = MOCK_FULL_MASK,
        validator: str = MOCK_KEY_MANAGER_ADDRESS,
    ):
        self.start_nonce = start_nonce
        self.mask = mask
        self.validator = validator
        self.sequences: Dict[Tuple[str, int], int] = {}
        self.nonce_reads = 0
        self.validator_reads = 0
        self.permission_reads = 0
        self.fail_with: Optional[BaseException] = None

    async def get_validator(self, account: str) -> str:
        self.validator_reads += 1
        if self.fail_with is not None:
            raise self.fail_with
        return self.validator

    async def get_nonce(self, validator: str, signer: str, channel: int) -> int:
        self.nonce_reads += 1
        await asyncio.sleep(0)
        sequence = self.sequences.get((signer.lower(), channel), self.start_nonce)
        return (channel << 128) | sequence

    async def get_permissions(self, account: str, controller: str) -> int:
        self.permission_reads += 1
        return self.mask

    def consume(self, signer: str, channel: int = 0) -> None:
        """Advance the on-chain nonce, as a successful execution does."""
        key = (signer.lower(), channel)
        self.sequences[key] = self.sequences.get(key, self.start_nonce) + 1


class FakeSubmissionPath(SubmissionPath):
    """
    Scripted ``SubmissionPath``.

    ``outcomes`` is consumed one entry per submission: an exception is
    raised, anything else means success. Successful submissions advance the
    reader's nonce when a reader is given.
    """

    def __init__(
        self,
        path: ExecutionPath,
        reader: Optional[FakeStateReader] = None,
        outcomes: Optional[List[Any]] = None,
        delay: float = 0.0,
    ):
        self.path = path
        self.reader = reader
        self.outcomes = list(outcomes or [])
        self.delay = delay
        self.calls: List[Tuple[SignedEnvelope, Optional[float]]] = []

    async def submit(self, signed: SignedEnvelope, timeout: Optional[float] = None) -> ExecutionResult:
        self.calls.append((signed, timeout))
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if isinstance(outcome, BaseException):
            raise outcome
        if self.reader is not None:
            self.reader.consume(signed.identity.controller_address, signed.channel)
        return ExecutionResult(
            outcome=ExecutionOutcome.SUCCESS,
            path=self.path,
            transaction_reference=MOCK_TX_HASH,
            gas_consumed=48_211 if self.path == ExecutionPath.DIRECT else None,
            nonce=signed.nonce,
            channel=signed.channel,
            message="ok",
        )


def create_router(
    reader: FakeStateReader,
    direct: Optional[SubmissionPath] = None,
    relay: Optional[SubmissionPath] = None,
    policy: ExecutionPolicy = ExecutionPolicy.RELAY_THEN_DIRECT,
    **kwargs,
) -> ExecutionRouter:
    return ExecutionRouter(
        chain_id=kwargs.pop("chain_id", MOCK_CHAIN_ID),
        account_address=MOCK_ACCOUNT_ADDRESS,
        controller_private_key=MOCK_CONTROLLER_PRIVATE_KEY,
        reader=reader,
        direct=direct,
        relay=relay,
        default_policy=policy,
        **kwargs,
    )


# ========================================================================
# Mock Web3
# ========================================================================

class MockEth:
    """Subset of ``AsyncWeb3.eth`` used by the direct executor."""

    def __init__(self, tx_fn: MagicMock, gas_price: int = 1_000_000_000, tx_count: int = 0):
        self._gas_price = gas_price
        self._tx_count = tx_count
        self.contract = MagicMock()
        self.contract.return_value.functions.executeRelayCall.return_value = tx_fn
        self.send_raw_transaction = AsyncMock(return_value=bytes.fromhex(MOCK_TX_HASH[2:]))
        self.get_transaction_receipt = AsyncMock(return_value={"status": 1, "gasUsed": 48_211, "blockNumber": 100})
        self.get_transaction_count = AsyncMock(return_value=tx_count)

    @property
    def gas_price(self):
        async def _value():
            return self._gas_price
        return _value()


class MockWeb3:
    """``AsyncWeb3`` stand-in exposing a scripted ``eth`` namespace."""

    def __init__(self, tx_fn: MagicMock, **eth_kwargs):
        self.eth = MockEth(tx_fn, **eth_kwargs)


def create_mock_tx_fn(gas_estimate: int = 100_000, chain_id: int = MOCK_CHAIN_ID) -> MagicMock:
    """Contract function mock whose ``build_transaction`` yields a signable dict."""
    tx_fn = MagicMock()
    tx_fn.estimate_gas = AsyncMock(return_value=gas_estimate)

    async def build_transaction(params):
        return {
            "to": MOCK_KEY_MANAGER_ADDRESS,
            "from": params["from"],
            "value": params["value"],
            "gas": params["gas"],
            "gasPrice": params["gasPrice"],
            "nonce": params["nonce"],
            "chainId": chain_id,
            "data": "0x",
        }

    tx_fn.build_transaction = AsyncMock(side_effect=build_transaction)
    return tx_fn
