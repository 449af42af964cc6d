"""
Event chain execution engine.

Provides workflow orchestration on top of EventBus, processing events
recursively until a terminal event is reached or no handler responds.
"""

import asyncio
from typing import AsyncGenerator, Optional

from .events import BaseEvent, EventBus, Dependencies, TerminalEvent


_DONE = object()


class EventChain:
    """Executes event-driven workflows by chaining event handler results.

    Exceptions raised by hooks or handlers are re-raised from ``execute``
    once the events produced before the failure have been yielded.
    """

    def __init__(
        self,
        event_bus: EventBus,
        deps: Dependencies,
    ) -> None:
        """
        Initialize event chain executor.

        Args:
            event_bus: The event bus to dispatch events through.
            deps: Dependencies container to pass to handlers.
        """
        self.event_bus = event_bus
        self.deps = deps

    async def execute(self, initial_event: BaseEvent) -> AsyncGenerator[BaseEvent, None]:
        """
        Execute event chain starting from initial event.

        Returns:
            Yields events encountered during chain execution.
        """
        events_queue: asyncio.Queue = asyncio.Queue()

        async def producer():
            failure: Optional[BaseException] = None
            try:
                async for event in self._process_event(initial_event):
                    await events_queue.put(event)
            except Exception as e:
                failure = e
            finally:
                await events_queue.put(failure if failure is not None else _DONE)

        task = asyncio.create_task(producer())
        try:
            while True:
                item = await events_queue.get()
                if item is _DONE:
                    break
                if isinstance(item, BaseException):
                    raise item
                yield item
        finally:
            if not task.done():
                task.cancel()

    async def run(self, initial_event: BaseEvent) -> Optional[BaseEvent]:
        """Execute the chain and return the last event it produced."""
        last: Optional[BaseEvent] = None
        async for event in self.execute(initial_event):
            last = event
        return last

    async def _process_event(self, event: BaseEvent) -> AsyncGenerator[BaseEvent, None]:
        """
        Process single event and recursively handle results.

        Args:
            event: The event to process.

        Yields:
            Events from the chain.
        """
        async for result in self.event_bus.dispatch(event, self.deps):
            if result is None:
                continue
            if isinstance(result, BaseEvent):
                yield result
                if isinstance(result, TerminalEvent):
                    # Terminal events still reach their hooks
                    async for _ in self.event_bus.dispatch(result, self.deps):
                        pass
                    continue
                async for e in self._process_event(result):
                    yield e
            else:
                raise TypeError(f"Handler returned unsupported type: {type(result).__name__}")
