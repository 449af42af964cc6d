from .adapter import DirectExecutor, classify_revert
from .calls import (
    SetDataCall,
    SetDataBatchCall,
    ExecuteCall,
    RawPayload,
    Operation,
    encode_function_call,
    parse_call,
)
from .constants import RelayEngineConfig, NetworkConfig, get_network_config, get_explorer_url
from .nonces import NonceManager, validate_channel, split_nonce
from .permissions import (
    Permission,
    Capability,
    ActionClass,
    PermissionCheck,
    PermissionGate,
    permissions_data_key,
    parse_permission_mask,
)
from .reads import KeyManagerReader
from .schemas import (
    ValidityWindow,
    RelayEnvelope,
    Identity,
    RelayCallSignature,
    SignedEnvelope,
)
from .signatures import sign_digest, sign_relay_call, sign_quota_request
from .standards import encode_relay_message, decode_relay_message, relay_call_digest
from .verifies import recover_signer, verify_relay_signature, assert_signed_by

__all__ = [
    "DirectExecutor",
    "classify_revert",
    "SetDataCall",
    "SetDataBatchCall",
    "ExecuteCall",
    "RawPayload",
    "Operation",
    "encode_function_call",
    "parse_call",
    "RelayEngineConfig",
    "NetworkConfig",
    "get_network_config",
    "get_explorer_url",
    "NonceManager",
    "validate_channel",
    "split_nonce",
    "Permission",
    "Capability",
    "ActionClass",
    "PermissionCheck",
    "PermissionGate",
    "permissions_data_key",
    "parse_permission_mask",
    "KeyManagerReader",
    "ValidityWindow",
    "RelayEnvelope",
    "Identity",
    "RelayCallSignature",
    "SignedEnvelope",
    "sign_digest",
    "sign_relay_call",
    "sign_quota_request",
    "encode_relay_message",
    "decode_relay_message",
    "relay_call_digest",
    "recover_signer",
    "verify_relay_signature",
    "assert_signed_by",
]
