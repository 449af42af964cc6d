"""
Event-driven system with typed events and clear data flow.

Events carry their own data, handlers return next events, and dependencies
are injected separately from business data.

Relay-call lifecycle:
    BuildEnvelopeEvent -> EnvelopeSignedEvent -> RelaySubmitEvent | DirectSubmitEvent
    RelaySubmitEvent -> RelayRejectedEvent -> DirectSubmitEvent
    ... -> ExecutionSucceededEvent | ExecutionFailedEvent
"""

import asyncio
import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Any, Callable, Optional, List, Awaitable, AsyncGenerator

from pydantic import BaseModel, ConfigDict, Field, SecretStr

from ..adapters.bases import StateReader, SubmissionPath
from ..adapters.evm.nonces import NonceManager
from ..adapters.evm.permissions import PermissionGate
from ..adapters.evm.schemas import SignedEnvelope, ValidityWindow
from ..schemas.bases import ExecutionPolicy, ExecutionResult
from .states import ExecutionFlow, ExecutionLedger

# ==================== Base Event ====================

class BaseEvent(ABC):
    """Base class for all events in the system."""

    @abstractmethod
    def __repr__(self) -> str:
        """String representation of the event."""
        pass


class TerminalEvent(BaseEvent):
    """Marker for events that end a chain; they are dispatched to hooks only."""


# ==================== Trigger Events (External) ====================

class BuildEnvelopeEvent(BaseModel, BaseEvent):
    """External trigger: build and sign an envelope for ``call``.

    The router has already resolved the validator and reserved the nonce.
    """
    call: Any
    validator_address: str
    nonce: int
    channel: int = 0
    value: int = 0
    validity: ValidityWindow = Field(default_factory=ValidityWindow.unrestricted)
    policy: ExecutionPolicy = ExecutionPolicy.RELAY_THEN_DIRECT
    timeout: Optional[float] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"BuildEnvelopeEvent(channel={self.channel}, nonce={self.nonce}, policy={self.policy.value})"


class EnvelopeSignedEvent(BaseModel, BaseEvent):
    """Envelope signed and verified locally; ready for path selection."""
    signed: SignedEnvelope
    policy: ExecutionPolicy
    timeout: Optional[float] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"EnvelopeSignedEvent(signed={self.signed!r}, policy={self.policy.value})"


# ==================== Submission Events ====================

class RelaySubmitEvent(BaseModel, BaseEvent):
    """Submit the envelope through the relay service."""
    signed: SignedEnvelope
    policy: ExecutionPolicy
    timeout: Optional[float] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"RelaySubmitEvent(nonce={self.signed.nonce})"


class DirectSubmitEvent(BaseModel, BaseEvent):
    """Submit the envelope as a controller-paid transaction."""
    signed: SignedEnvelope
    policy: ExecutionPolicy
    timeout: Optional[float] = None
    attempts: List[ExecutionResult] = Field(default_factory=list)

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"DirectSubmitEvent(nonce={self.signed.nonce}, prior_attempts={len(self.attempts)})"


class RelayRejectedEvent(BaseModel, BaseEvent):
    """Relay refused the envelope for a reason the direct path may not share."""
    signed: SignedEnvelope
    policy: ExecutionPolicy
    result: ExecutionResult
    timeout: Optional[float] = None

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"RelayRejectedEvent(nonce={self.signed.nonce}, class={self.result.failure_class})"


# ==================== Result Events ====================

class ExecutionSucceededEvent(BaseModel, TerminalEvent):
    """Result: envelope executed."""
    result: ExecutionResult

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        return f"ExecutionSucceededEvent(path={self.result.path.value}, tx={self.result.transaction_reference})"


class ExecutionFailedEvent(BaseModel, TerminalEvent):
    """Result: execution failed with a classified cause."""
    result: ExecutionResult

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def __repr__(self) -> str:
        failure = self.result.failure_class.value if self.result.failure_class else None
        return f"ExecutionFailedEvent(path={self.result.path.value}, class={failure})"


# ==================== Dependencies Container ====================

@dataclass(frozen=True)
class Dependencies:
    """Container for infrastructure dependencies (read-only).

    ``flow`` is per execution; the router derives a copy with
    ``dataclasses.replace`` for every envelope it runs.
    """
    chain_id: int
    account_address: str
    controller_address: str
    controller_key: SecretStr
    reader: StateReader
    nonces: NonceManager
    ledger: ExecutionLedger
    gate: PermissionGate
    relay: Optional[SubmissionPath] = None
    direct: Optional[SubmissionPath] = None
    check_permissions: bool = True
    submission_timeout: Optional[float] = None
    flow: Optional[ExecutionFlow] = None


# ==================== Event Bus ====================

EventHandlerFunc = Callable[[BaseEvent, Dependencies], Awaitable[Optional[BaseEvent]]]
EventHookFunc = Callable[[BaseEvent, Dependencies], Awaitable[None]]


class EventBus:
    """Event dispatcher for publishing and subscribing to events."""

    def __init__(self) -> None:
        """Initialize with empty subscribers and hooks."""
        self._subscribers: Dict[type, list[EventHandlerFunc]] = {}
        self._hooks: Dict[type, list[EventHookFunc]] = {}

    def subscribe(self, event_class: type[BaseEvent], handler: EventHandlerFunc) -> None:
        """
        Register an async handler for the given event class.
        Multiple handlers can be subscribed to the same event type and run in parallel.

        Args:
            event_class: The event class to subscribe to.
            handler: The async handler function to call when the event is published.

        Raises:
            TypeError: If handler is not a coroutine function.
        """
        if not inspect.iscoroutinefunction(handler):
            raise TypeError(f"Handler must be a coroutine function, got {type(handler).__name__}")

        self._subscribers.setdefault(event_class, []).append(handler)

    def hook(self, event_class: type[BaseEvent], hook_func: EventHookFunc) -> None:
        """
        Register a hook for the given event class.
        Hooks are executed before subscribers when the event is dispatched.

        Args:
            event_class: The event class to hook into.
            hook_func: The hook function to call when the event is published.
        """
        if not inspect.iscoroutinefunction(hook_func):
            raise TypeError(f"Hook must be a coroutine function, got {type(hook_func).__name__}")

        self._hooks.setdefault(event_class, []).append(hook_func)

    async def dispatch(self, event: BaseEvent, deps: Dependencies) -> AsyncGenerator[Optional[BaseEvent], None]:
        """
        Dispatch an event to all registered hooks and subscribers.
        Hooks run first (in registration order), then all subscribers run in parallel.
        Terminal events only reach hooks.

        Args:
            event: The event to dispatch.
            deps: Dependencies container with injected services.

        Yields:
            Results from all subscribers as they complete. Yields nothing if no subscribers are registered.
        """
        # Hooks run sequentially; state-machine hooks depend on the order
        for hook in self._hooks.get(type(event), []):
            await hook(event, deps)

        if isinstance(event, TerminalEvent):
            return

        handlers = self._subscribers.get(type(event), [])
        if not handlers:
            return

        tasks = [handler(event, deps) for handler in handlers]
        for coro in asyncio.as_completed(tasks):
            result = await coro
            yield result
