from collections import defaultdict
from typing import Type, Callable, Dict, List, Any, Set
import asyncio
import logging

logger = logging.getLogger(__name__)


class Event:
    """Base class for all events."""
    pass


class EventBus:
    def __init__(self):
        self._subs: Dict[Type[Event], List[Callable[[Event], Any]]] = defaultdict(list)
        self._tasks: Set[asyncio.Task] = set()

    def subscribe(self, event_type: Type[Event], handler: Callable[[Event], Any]):
        """Register a handler for a specific event type."""
        self._subs[event_type].append(handler)

    def emit(self, event: Event):
        """
        Publish an event to all subscribers, in subscription order.
        Sync handlers run immediately; coroutine handlers are scheduled.
        """
        for handler in list(self._subs[type(event)]):
            result = handler(event)
            if asyncio.iscoroutine(result):
                task = asyncio.create_task(result)
                self._tasks.add(task)
                task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Event handler failed: %s", task.exception(),
                         exc_info=task.exception())

    async def drain(self):
        """Wait for every scheduled async handler to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
