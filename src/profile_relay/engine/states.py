"""
Execution state machine and submission ledger.

``ExecutionFlow`` tracks one envelope through
``Idle -> Building -> Signed -> Submitting -> {Succeeded, FailedRetryable, FailedFatal}``
and rejects any other move with ``InvalidTransition``. ``ExecutionLedger``
remembers, per (controller, channel, nonce), which paths were tried and
whether the nonce may already have been used, so the router never puts the
same nonce on-chain twice.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Optional, Set, Tuple

from ..schemas.bases import ExecutionPath
from .exceptions import InvalidTransition

NonceKey = Tuple[str, int, int]


class ExecutionState(str, Enum):
    """States of one envelope's execution."""
    IDLE = "idle"
    BUILDING = "building"
    SIGNED = "signed"
    SUBMITTING = "submitting"
    SUCCEEDED = "succeeded"
    FAILED_RETRYABLE = "failed_retryable"
    FAILED_FATAL = "failed_fatal"


_TRANSITIONS: Dict[ExecutionState, FrozenSet[ExecutionState]] = {
    ExecutionState.IDLE: frozenset({ExecutionState.BUILDING, ExecutionState.SIGNED}),
    ExecutionState.BUILDING: frozenset({ExecutionState.SIGNED, ExecutionState.FAILED_FATAL}),
    ExecutionState.SIGNED: frozenset({ExecutionState.SUBMITTING, ExecutionState.FAILED_FATAL}),
    ExecutionState.SUBMITTING: frozenset({
        ExecutionState.SUCCEEDED,
        ExecutionState.FAILED_RETRYABLE,
        ExecutionState.FAILED_FATAL,
    }),
    ExecutionState.FAILED_RETRYABLE: frozenset({ExecutionState.SUBMITTING, ExecutionState.FAILED_FATAL}),
    ExecutionState.SUCCEEDED: frozenset(),
    ExecutionState.FAILED_FATAL: frozenset(),
}

TERMINAL_STATES = frozenset({ExecutionState.SUCCEEDED, ExecutionState.FAILED_FATAL})


class ExecutionFlow:
    """
    State of a single execution.

    ``Idle -> Signed`` is the entry for resubmitting an envelope that was
    signed earlier. ``FailedRetryable -> Submitting`` is allowed once: it is
    the fallback from the relay path to the direct path.

    Example::

        flow = ExecutionFlow()
        flow.transition(ExecutionState.BUILDING)
        flow.transition(ExecutionState.SUCCEEDED)   # raises InvalidTransition
    """

    def __init__(self) -> None:
        self.state = ExecutionState.IDLE
        self.history = [ExecutionState.IDLE]
        self._fallback_used = False

    def can_transition(self, target: ExecutionState) -> bool:
        if target not in _TRANSITIONS[self.state]:
            return False
        if self.state == ExecutionState.FAILED_RETRYABLE and target == ExecutionState.SUBMITTING:
            return not self._fallback_used
        return True

    def transition(self, target: ExecutionState) -> ExecutionState:
        """Move to ``target`` or raise ``InvalidTransition``."""
        if not self.can_transition(target):
            raise InvalidTransition(self.state, target)
        if self.state == ExecutionState.FAILED_RETRYABLE and target == ExecutionState.SUBMITTING:
            self._fallback_used = True
        self.state = target
        self.history.append(target)
        return target

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def __repr__(self) -> str:
        return f"ExecutionFlow(state={self.state.value})"


@dataclass
class _NonceRecord:
    attempted: Set[ExecutionPath] = field(default_factory=set)
    consumed: bool = False
    in_doubt: bool = False


class ExecutionLedger:
    """
    Per-engine record of submissions, keyed by (controller, channel, nonce).

    A nonce is *consumed* once a submission succeeded, and *in doubt* once a
    submission may have left the process without a confirmed outcome.

    Records only matter until the chain catches up with them. ``prune``
    drops every record below a channel's on-chain nonce and ``forget`` drops
    a single record whose transaction was mined, so the ledger holds only
    nonces whose on-chain fate is still open.
    """

    def __init__(self) -> None:
        self._slots: Dict[Tuple[str, int], Dict[int, _NonceRecord]] = {}

    def _get(self, key: NonceKey) -> Optional[_NonceRecord]:
        controller, channel, nonce = key
        return self._slots.get((controller.lower(), channel), {}).get(nonce)

    def _record(self, key: NonceKey) -> _NonceRecord:
        controller, channel, nonce = key
        records = self._slots.setdefault((controller.lower(), channel), {})
        record = records.get(nonce)
        if record is None:
            record = records[nonce] = _NonceRecord()
        return record

    def record_attempt(self, key: NonceKey, path: ExecutionPath) -> None:
        self._record(key).attempted.add(path)

    def attempted(self, key: NonceKey) -> FrozenSet[ExecutionPath]:
        record = self._get(key)
        return frozenset(record.attempted) if record is not None else frozenset()

    def was_attempted(self, key: NonceKey, path: ExecutionPath) -> bool:
        return path in self.attempted(key)

    def mark_consumed(self, key: NonceKey) -> None:
        record = self._record(key)
        record.consumed = True
        record.in_doubt = False

    def is_consumed(self, key: NonceKey) -> bool:
        record = self._get(key)
        return record is not None and record.consumed

    def mark_in_doubt(self, key: NonceKey) -> None:
        self._record(key).in_doubt = True

    def is_in_doubt(self, key: NonceKey) -> bool:
        record = self._get(key)
        return record is not None and record.in_doubt

    def release(self, key: NonceKey) -> None:
        """Forget an in-doubt mark after the caller checked the chain."""
        record = self._get(key)
        if record is not None:
            record.in_doubt = False

    def forget(self, key: NonceKey) -> None:
        """Drop everything recorded for ``key``."""
        controller, channel, nonce = key
        slot = (controller.lower(), channel)
        records = self._slots.get(slot)
        if records is None:
            return
        records.pop(nonce, None)
        if not records:
            del self._slots[slot]

    def prune(self, controller: str, channel: int, next_nonce: int) -> int:
        """
        Drop the records of ``(controller, channel)`` below ``next_nonce``.

        ``next_nonce`` is the channel's on-chain nonce: every lower nonce is
        spent and refused by the chain itself.

        Returns:
            Number of records dropped.
        """
        slot = (controller.lower(), channel)
        records = self._slots.get(slot)
        if not records:
            return 0
        spent = [nonce for nonce in records if nonce < next_nonce]
        for nonce in spent:
            del records[nonce]
        if not records:
            del self._slots[slot]
        return len(spent)

    def __len__(self) -> int:
        return sum(len(records) for records in self._slots.values())
