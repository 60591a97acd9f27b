"""
Quicklime
---------

A tiny single-channel event dispatcher for asyncio programs.

Features:

- `Dispatcher.dispatch(value)` notifies every callback with the new value and the last one.
- Sync and `async def` callbacks; async callbacks are started, never awaited.
- `event.stop_propagation()` keeps later callbacks of the same dispatch from running.
- Failing callbacks are logged and never break the dispatch.
- Chainable `on()`, `once()`, `off()`, `clear()`; `await dispatcher.next()` for the next event.
- No dependencies.
"""

import logging

from .dispatcher import Callback, Dispatcher, Event
from .registry import Registry

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "Dispatcher",
    "Event",
    "Callback",
    "Registry",
]
