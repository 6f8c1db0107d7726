"""
Core Module
===========
Host-facing building blocks shared by the sale:
- ExternalClock: injected monotonic counter (block number)
- EventBus: in-process async notifications
- Persistence: schema migrations for the sale journal
"""

from .clock import ExternalClock, ManualClock, BlockNumberClock
from .events import EventBus, event_bus

__all__ = [
    "ExternalClock",
    "ManualClock",
    "BlockNumberClock",
    "EventBus",
    "event_bus",
]
