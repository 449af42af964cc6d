from .bases import CanonicalModel, ExecutionOutcome, ExecutionPath, ExecutionPolicy, FailureClass, ExecutionResult
from .https import (
    ClientRequestHeader,
    RelayTransaction,
    RelayExecuteRequest,
    RelayExecuteResponse,
    RelayErrorResponse,
    RelayQuotaRequest,
    RelayQuotaResponse,
)
from .versions import RelayCallVersion

__all__ = [
    "CanonicalModel",
    "ExecutionOutcome",
    "ExecutionPath",
    "ExecutionPolicy",
    "FailureClass",
    "ExecutionResult",
    "ClientRequestHeader",
    "RelayTransaction",
    "RelayExecuteRequest",
    "RelayExecuteResponse",
    "RelayErrorResponse",
    "RelayQuotaRequest",
    "RelayQuotaResponse",
    "RelayCallVersion",
]
