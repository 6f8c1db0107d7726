import asyncio
import logging
from typing import Callable, Dict, Any, List

logger = logging.getLogger(__name__)

# Event names broadcast by the sale controller
PURCHASE_EVENT = "sale.purchase"
FINALIZED_EVENT = "sale.finalized"
OWNERSHIP_EVENT = "sale.ownership"

Listener = Callable[[Dict[str, Any]], Any]


class EventBus:
    """Async event bus for in-process sale notifications."""

    def __init__(self):
        self._subscribers: Dict[str, List[Listener]] = {}
        self._lock = asyncio.Lock()

    async def subscribe(self, event_name: str, callback: Listener) -> None:
        async with self._lock:
            self._subscribers.setdefault(event_name, []).append(callback)

    async def unsubscribe(self, event_name: str, callback: Listener) -> None:
        async with self._lock:
            if event_name in self._subscribers:
                self._subscribers[event_name] = [cb for cb in self._subscribers[event_name] if cb != callback]

    def listener_count(self, event_name: str) -> int:
        return len(self._subscribers.get(event_name, []))

    async def broadcast(self, event_name: str, payload: Dict[str, Any]) -> int:
        """
        Deliver payload to every listener of event_name.

        A failing listener is logged and skipped; the rest still run.

        Returns:
            Number of listeners that handled the event without error
        """
        async with self._lock:
            callbacks = list(self._subscribers.get(event_name, []))
        delivered = 0
        for cb in callbacks:
            try:
                result = cb(payload)
                if asyncio.iscoroutine(result):
                    await result
                delivered += 1
            except Exception as e:
                logger.warning(f"[EVENTS] Listener {cb!r} failed on {event_name}: {e}")
        return delivered


# Global singleton
event_bus = EventBus()
