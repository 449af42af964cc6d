"""
Permission Gate

Advisory evaluation of a controller's LSP-6 permission mask against the
capabilities an action needs. The authoritative check always happens
on-chain when the Key Manager executes the call; this gate only lets
callers skip signing and network round-trips that are bound to fail.

A capability may have a restricted bit and a "super" bit. The super bit
subsumes the restricted one, so a capability is satisfied when
``mask & (restricted | super) != 0``.
"""

from dataclasses import dataclass
from enum import Enum, IntFlag
from typing import Dict, Iterable, Optional, Tuple, Union

from eth_utils import to_canonical_address

from .constants import PERMISSIONS_KEY_PREFIX
from ...engine.exceptions import PermissionDeniedError


class Permission(IntFlag):
    """LSP-6 permission bits (low bytes of the 32-byte mask)."""
    CHANGEOWNER = 0x1
    ADDCONTROLLER = 0x2
    EDITPERMISSIONS = 0x4
    ADDEXTENSIONS = 0x8
    CHANGEEXTENSIONS = 0x10
    ADDUNIVERSALRECEIVERDELEGATE = 0x20
    CHANGEUNIVERSALRECEIVERDELEGATE = 0x40
    REENTRANCY = 0x80
    SUPER_TRANSFERVALUE = 0x100
    TRANSFERVALUE = 0x200
    SUPER_CALL = 0x400
    CALL = 0x800
    SUPER_STATICCALL = 0x1000
    STATICCALL = 0x2000
    SUPER_DELEGATECALL = 0x4000
    DELEGATECALL = 0x8000
    DEPLOY = 0x10000
    SUPER_SETDATA = 0x20000
    SETDATA = 0x40000
    ENCRYPT = 0x80000
    DECRYPT = 0x100000
    SIGN = 0x200000
    EXECUTE_RELAY_CALL = 0x400000


@dataclass(frozen=True)
class Capability:
    """
    One permission requirement.

    Attributes:
        name: Name reported when the capability is missing.
        restricted: Narrow bit that grants the capability.
        super_bit: Broad bit that also grants it (0 when none exists).
    """
    name: str
    restricted: int
    super_bit: int = 0

    @property
    def bits(self) -> int:
        return self.restricted | self.super_bit

    def is_satisfied_by(self, mask: int) -> bool:
        return mask & self.bits != 0


EXECUTE_RELAY_CALL = Capability("EXECUTE_RELAY_CALL", Permission.EXECUTE_RELAY_CALL)
SIGN = Capability("SIGN", Permission.SIGN)
TRANSFERVALUE = Capability("TRANSFERVALUE", Permission.TRANSFERVALUE, Permission.SUPER_TRANSFERVALUE)
SETDATA = Capability("SETDATA", Permission.SETDATA, Permission.SUPER_SETDATA)
CALL = Capability("CALL", Permission.CALL, Permission.SUPER_CALL)


class ActionClass(str, Enum):
    """
    Intended action classes and the capabilities they require.

    Attributes:
        DIRECT_EXECUTION: ``executeRelayCall`` sent by the controller itself
        RELAY_SUBMISSION: Relay service verifies the signature through the
            account (ERC-1271), which needs SIGN on top of EXECUTE_RELAY_CALL
        VALUE_TRANSFER: Call forwards native value
        DATA_WRITE: ``setData`` / ``setDataBatch`` on the account
        CONTRACT_CALL: ``execute`` of an external contract call
    """
    DIRECT_EXECUTION = "direct_execution"
    RELAY_SUBMISSION = "relay_submission"
    VALUE_TRANSFER = "value_transfer"
    DATA_WRITE = "data_write"
    CONTRACT_CALL = "contract_call"


REQUIRED_CAPABILITIES: Dict[ActionClass, Tuple[Capability, ...]] = {
    ActionClass.DIRECT_EXECUTION: (EXECUTE_RELAY_CALL,),
    ActionClass.RELAY_SUBMISSION: (EXECUTE_RELAY_CALL, SIGN),
    ActionClass.VALUE_TRANSFER: (TRANSFERVALUE,),
    ActionClass.DATA_WRITE: (SETDATA,),
    ActionClass.CONTRACT_CALL: (CALL,),
}


def parse_permission_mask(raw: Union[bytes, str, int, None]) -> int:
    """
    Normalise a permission value read from the account into an int mask.

    Empty values (``b""`` / ``"0x"``), meaning no permissions set, map to 0.
    """
    if raw is None:
        return 0
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str):
        hex_str = raw[2:] if raw[:2] in ("0x", "0X") else raw
        return int(hex_str, 16) if hex_str else 0
    raw = bytes(raw)
    if len(raw) > 32:
        raise ValueError(f"Permission value longer than 32 bytes: {len(raw)}")
    return int.from_bytes(raw, "big") if raw else 0


def permissions_data_key(controller: str) -> bytes:
    """
    Data key under which the account stores ``controller``'s permissions:
    ``AddressPermissions:Permissions`` prefix (12 bytes) followed by the
    20-byte controller address.
    """
    return PERMISSIONS_KEY_PREFIX + to_canonical_address(controller)


def describe_mask(mask: int) -> Tuple[str, ...]:
    """Names of the known permission bits set in ``mask``."""
    return tuple(p.name for p in Permission if mask & p.value)


@dataclass(frozen=True)
class PermissionCheck:
    """
    Advisory result of a permission evaluation.

    Attributes:
        mask: Mask that was evaluated.
        actions: Action classes that were checked.
        missing: Names of unsatisfied capabilities (empty when allowed).
        controller: Controller the mask belongs to, when known.
    """
    mask: int
    actions: Tuple[ActionClass, ...]
    missing: Tuple[str, ...]
    controller: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return not self.missing

    def __bool__(self) -> bool:
        return self.allowed

    def raise_for_missing(self) -> None:
        """Raise ``PermissionDeniedError`` naming every missing capability."""
        if self.missing:
            raise PermissionDeniedError(missing=self.missing, controller=self.controller)


class PermissionGate:
    """
    Evaluates permission masks against action classes.

    The gate never reads or writes chain state; callers pass the mask,
    either held locally or read with ``KeyManagerReader.get_permissions``.

    Example::

        gate = PermissionGate()
        check = gate.evaluate(mask, ActionClass.RELAY_SUBMISSION, ActionClass.DATA_WRITE)
        if not check:
            print("missing:", check.missing)
    """

    def __init__(self, requirements: Optional[Dict[ActionClass, Tuple[Capability, ...]]] = None):
        self._requirements = dict(REQUIRED_CAPABILITIES if requirements is None else requirements)

    def required_capabilities(self, actions: Iterable[ActionClass]) -> Tuple[Capability, ...]:
        seen = []
        for action in actions:
            for capability in self._requirements[ActionClass(action)]:
                if capability not in seen:
                    seen.append(capability)
        return tuple(seen)

    def evaluate(self, mask: int, *actions: ActionClass, controller: Optional[str] = None) -> PermissionCheck:
        missing = tuple(
            capability.name
            for capability in self.required_capabilities(actions)
            if not capability.is_satisfied_by(mask)
        )
        return PermissionCheck(mask=mask, actions=tuple(actions), missing=missing, controller=controller)

    def allows(self, mask: int, *actions: ActionClass) -> bool:
        return self.evaluate(mask, *actions).allowed
