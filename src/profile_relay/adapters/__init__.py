from .bases import StateReader, SubmissionPath
from .evm import (
    DirectExecutor,
    KeyManagerReader,
    NonceManager,
    PermissionGate,
    RelayEngineConfig,
    SignedEnvelope,
)

__all__ = [
    "StateReader",
    "SubmissionPath",
    "DirectExecutor",
    "KeyManagerReader",
    "NonceManager",
    "PermissionGate",
    "RelayEngineConfig",
    "SignedEnvelope",
]
