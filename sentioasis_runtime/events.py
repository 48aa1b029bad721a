"""
Event subscription system for the SentiOasis runtime.

Polls contract logs for the active binding and dispatches decoded
events to callback subscriptions. Every subscription returns a
:class:`Subscription` handle whose ``cancel()`` removes exactly that
subscription and is safe to call more than once.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from typing import Any, Awaitable, Callable, Coroutine, Protocol

from sentioasis_runtime.types import ChainEvent

logger = logging.getLogger(__name__)

# Type aliases for handlers
EventHandler = Callable[[ChainEvent], Coroutine[Any, Any, None] | None]
StateListener = Callable[[Any, Any], Awaitable[None] | None]


class EventSource(Protocol):
    """Anything that can report the chain head and decoded logs."""

    async def block_number(self) -> int: ...

    async def get_events(
        self, names: list[str], from_block: int, to_block: int
    ) -> list[ChainEvent]: ...


class Subscription:
    """Cancellation handle for a listener or event subscription."""

    def __init__(self, on_cancel: Callable[[], None]) -> None:
        self._on_cancel = on_cancel
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        if not self._active:
            return
        self._active = False
        self._on_cancel()

    __call__ = cancel


class ListenerRegistry:
    """Ordered set of ``(old, new)`` state listeners."""

    def __init__(self, name: str) -> None:
        self._name = name
        self._listeners: list[StateListener] = []

    def __len__(self) -> int:
        return len(self._listeners)

    def add(self, listener: StateListener) -> Subscription:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return Subscription(_remove)

    async def notify(self, old: Any, new: Any) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(old, new)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("Error in %s listener", self._name)


class _EventSubscription(Subscription):
    def __init__(
        self,
        manager: EventManager,
        event_name: str,
        handler: EventHandler,
        from_block: int,
    ) -> None:
        super().__init__(lambda: manager._remove(self))
        self.event_name = event_name
        self.handler = handler
        self.from_block = from_block


class EventManager:
    """Polls an :class:`EventSource` and dispatches events to subscribers."""

    def __init__(self, source: EventSource, poll_interval: float = 5.0) -> None:
        self._source = source
        self._poll_interval = poll_interval
        self._subscriptions: dict[str, list[_EventSubscription]] = defaultdict(list)
        self._cursor: int | None = None
        self._listen_task: asyncio.Task[None] | None = None

    @property
    def cursor(self) -> int | None:
        """Next block that has not been scanned yet."""
        return self._cursor

    @property
    def is_running(self) -> bool:
        return self._listen_task is not None and not self._listen_task.done()

    def subscribe(self, event_name: str, handler: EventHandler) -> Subscription:
        """Register a handler for events emitted from now on."""
        sub = _EventSubscription(self, event_name, handler, self._cursor or 0)
        self._subscriptions[event_name].append(sub)
        return sub

    def subscriber_count(self, event_name: str) -> int:
        return len(self._subscriptions.get(event_name, []))

    def _remove(self, sub: _EventSubscription) -> None:
        subs = self._subscriptions.get(sub.event_name, [])
        self._subscriptions[sub.event_name] = [s for s in subs if s is not sub]

    async def _dispatch(self, event: ChainEvent) -> None:
        """Dispatch an event to all matching handlers."""
        for sub in list(self._subscriptions.get(event.name, [])):
            if not sub.active or event.block_number < sub.from_block:
                continue
            try:
                result = sub.handler(event)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("Error in event handler for %s", event.name)

    async def poll_once(self) -> int:
        """Scan new blocks once and dispatch what was found.

        Returns the number of events dispatched. Read errors propagate.
        """
        latest = await self._source.block_number()
        if self._cursor is None:
            self._cursor = latest + 1
            return 0
        if latest < self._cursor:
            return 0

        names = [name for name, subs in self._subscriptions.items() if subs]
        events: list[ChainEvent] = []
        if names:
            events = await self._source.get_events(names, self._cursor, latest)
            events.sort(key=lambda e: (e.block_number, e.log_index))
        self._cursor = latest + 1

        for event in events:
            await self._dispatch(event)
        return len(events)

    async def _listen_loop(self) -> None:
        """Poll for logs until cancelled."""
        try:
            while True:
                await asyncio.sleep(self._poll_interval)
                try:
                    await self.poll_once()
                except Exception:
                    logger.debug("Event poll failed, will retry next interval")
        except asyncio.CancelledError:
            pass

    async def start(self) -> None:
        """Anchor the cursor at the chain head and start polling."""
        if self.is_running:
            return
        self._cursor = await self._source.block_number() + 1
        self._listen_task = asyncio.create_task(self._listen_loop())

    async def stop(self) -> None:
        """Stop polling and cancel every subscription."""
        if self._listen_task and not self._listen_task.done():
            self._listen_task.cancel()
            try:
                await self._listen_task
            except asyncio.CancelledError:
                pass
        self._listen_task = None
        for subs in list(self._subscriptions.values()):
            for sub in list(subs):
                sub.cancel()
        self._subscriptions.clear()
