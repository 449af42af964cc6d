"""
Account Call Payloads

Typed call variants for the payload carried inside a relay envelope. Each
variant validates its arguments at construction, encodes itself to ABI
call data, and declares the action classes the permission gate checks.

Variants (discriminated on ``call_kind``):
    - SetDataCall: ``setData(bytes32,bytes)``
    - SetDataBatchCall: ``setDataBatch(bytes32[],bytes[])``
    - ExecuteCall: ``execute(uint256,address,uint256,bytes)``
    - RawPayload: pre-encoded call data, passed through untouched
"""

from enum import IntEnum
from typing import Any, List, Literal, Sequence, Tuple, Union

from pydantic import Field, TypeAdapter, field_validator, model_validator
from typing_extensions import Annotated
from eth_abi import encode as abi_encode
from eth_utils import function_signature_to_4byte_selector, is_address, to_checksum_address

from ...schemas.bases import CanonicalModel
from .permissions import ActionClass


def _to_bytes(value: Union[str, bytes]) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    hex_str = value[2:] if value[:2] in ("0x", "0X") else value
    return bytes.fromhex(hex_str)


def encode_function_call(signature: str, types: Sequence[str], args: Sequence[Any]) -> bytes:
    """
    ABI-encode a function call: 4-byte selector followed by encoded args.

    Example::

        data = encode_function_call("follow(address)", ["address"], [target])
    """
    return function_signature_to_4byte_selector(signature) + abi_encode(list(types), list(args))


class Operation(IntEnum):
    """ERC725X operation types."""
    CALL = 0
    CREATE = 1
    CREATE2 = 2
    STATICCALL = 3
    DELEGATECALL = 4


class SetDataCall(CanonicalModel):
    """Write one value to the account's key-value store."""

    call_kind: Literal["set_data"] = "set_data"
    data_key: bytes = Field(..., description="32-byte data key")
    data_value: bytes = Field(default=b"", description="Raw value")

    @field_validator("data_key", "data_value", mode="before")
    @classmethod
    def _hex_to_bytes(cls, value):
        return _to_bytes(value)

    @field_validator("data_key")
    @classmethod
    def _check_key(cls, value: bytes) -> bytes:
        if len(value) != 32:
            raise ValueError(f"data_key must be 32 bytes, got {len(value)}")
        return value

    def encode(self) -> bytes:
        return encode_function_call("setData(bytes32,bytes)", ["bytes32", "bytes"], [self.data_key, self.data_value])

    def required_actions(self) -> Tuple[ActionClass, ...]:
        return (ActionClass.DATA_WRITE,)

    def forwarded_value(self) -> int:
        return 0


class SetDataBatchCall(CanonicalModel):
    """Write several values to the account's key-value store in one call."""

    call_kind: Literal["set_data_batch"] = "set_data_batch"
    data_keys: List[bytes]
    data_values: List[bytes]

    @field_validator("data_keys", "data_values", mode="before")
    @classmethod
    def _hex_list_to_bytes(cls, values):
        return [_to_bytes(v) for v in values]

    @model_validator(mode="after")
    def _check_lengths(self):
        if not self.data_keys:
            raise ValueError("data_keys must not be empty")
        if len(self.data_keys) != len(self.data_values):
            raise ValueError(
                f"data_keys and data_values length mismatch: {len(self.data_keys)} != {len(self.data_values)}"
            )
        for key in self.data_keys:
            if len(key) != 32:
                raise ValueError(f"every data key must be 32 bytes, got {len(key)}")
        return self

    def encode(self) -> bytes:
        return encode_function_call(
            "setDataBatch(bytes32[],bytes[])",
            ["bytes32[]", "bytes[]"],
            [self.data_keys, self.data_values],
        )

    def required_actions(self) -> Tuple[ActionClass, ...]:
        return (ActionClass.DATA_WRITE,)

    def forwarded_value(self) -> int:
        return 0


class ExecuteCall(CanonicalModel):
    """
    Have the account execute a call (or deployment) against another address.

    Attributes:
        operation: ERC725X operation type.
        target: Called address (zero address for CREATE / CREATE2).
        value: Native value forwarded from the account.
        data: Call data sent to ``target``.
    """

    call_kind: Literal["execute"] = "execute"
    operation: Operation = Operation.CALL
    target: str
    value: int = Field(default=0, ge=0, lt=2 ** 256)
    data: bytes = b""

    @field_validator("target")
    @classmethod
    def _check_target(cls, value: str) -> str:
        if not is_address(value):
            raise ValueError(f"target must be an address, got {value!r}")
        return to_checksum_address(value)

    @field_validator("data", mode="before")
    @classmethod
    def _hex_to_bytes(cls, value):
        return _to_bytes(value)

    @classmethod
    def for_function(cls, target: str, signature: str, types: Sequence[str], args: Sequence[Any], value: int = 0) -> "ExecuteCall":
        """Build a CALL of ``signature(args)`` on ``target``."""
        return cls(target=target, value=value, data=encode_function_call(signature, types, args))

    def encode(self) -> bytes:
        return encode_function_call(
            "execute(uint256,address,uint256,bytes)",
            ["uint256", "address", "uint256", "bytes"],
            [int(self.operation), self.target, self.value, self.data],
        )

    def required_actions(self) -> Tuple[ActionClass, ...]:
        actions = []
        if self.value > 0:
            actions.append(ActionClass.VALUE_TRANSFER)
        if self.data or self.value == 0:
            actions.append(ActionClass.CONTRACT_CALL)
        return tuple(actions)

    def forwarded_value(self) -> int:
        return self.value


class RawPayload(CanonicalModel):
    """Pre-encoded call data; no permission requirement is inferred."""

    call_kind: Literal["raw"] = "raw"
    payload: bytes

    @field_validator("payload", mode="before")
    @classmethod
    def _hex_to_bytes(cls, value):
        return _to_bytes(value)

    def encode(self) -> bytes:
        return self.payload

    def required_actions(self) -> Tuple[ActionClass, ...]:
        return ()

    def forwarded_value(self) -> int:
        return 0


ProfileCall = Annotated[
    Union[SetDataCall, SetDataBatchCall, ExecuteCall, RawPayload],
    Field(discriminator="call_kind"),
]

_PROFILE_CALL_ADAPTER = TypeAdapter(ProfileCall)


def parse_call(data: Any) -> Union[SetDataCall, SetDataBatchCall, ExecuteCall, RawPayload]:
    """
    Coerce ``data`` into a call variant.

    Accepts a variant instance, raw ``bytes`` (wrapped as ``RawPayload``),
    or a dict carrying ``call_kind``.
    """
    if isinstance(data, (SetDataCall, SetDataBatchCall, ExecuteCall, RawPayload)):
        return data
    if isinstance(data, (bytes, bytearray)):
        return RawPayload(payload=bytes(data))
    return _PROFILE_CALL_ADAPTER.validate_python(data)
