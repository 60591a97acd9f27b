"""
Single-channel event dispatcher.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
from contextlib import closing
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, Set, Tuple, TypeVar

from .registry import Registry

T = TypeVar("T")


@dataclass(frozen=True)
class Event(Generic[T]):
    """
    What a callback receives for one dispatch.

    Attributes:
        data: The value passed to `dispatch`.
        last: The value dispatched before this one (or the initial value).
        stop_propagation: Call to keep the remaining callbacks of this
                          dispatch from being scheduled.
    """

    data: T
    last: Optional[T]
    stop_propagation: Callable[[], None]


Callback = Callable[[Event[T]], Any]


async def _await(awaitable: Awaitable[Any]) -> Any:
    return await awaitable


class Dispatcher(Generic[T]):
    """
    One event channel. Callbacks are notified in registration order with the
    new value and the previously dispatched one.
    """

    def __init__(self, last: Optional[T] = None, *, name: str = "quicklime") -> None:
        """
        Initialize a new Dispatcher.

        Args:
            last (Optional[T], optional): The value reported as `last` by the
                                          first dispatch. Defaults to None.
            name (str, optional): Name of the logger callback failures are
                                  reported to. Defaults to "quicklime".
        """
        self._last = last
        self._registry: Registry[Callback[T]] = Registry()
        self._tasks: Set[asyncio.Task] = set()  # strong refs to running callbacks
        self._log = logging.getLogger(name)

    @property
    def last(self) -> Optional[T]:
        """The most recently dispatched value."""
        return self._last

    @property
    def callbacks(self) -> Tuple[Callback[T], ...]:
        """The registered callbacks, in the order they will be notified."""
        return self._registry.snapshot()

    def __repr__(self) -> str:
        return f"{type(self).__name__}(last={self._last!r}, callbacks={len(self._registry)})"

    # -------------------- registration API --------------------
    def on(self, callback: Callback[T]) -> Dispatcher[T]:
        """
        Register a callback. Registering the same callback twice is a no-op.

        Args:
            callback (Callback[T]): Called with an `Event` on every dispatch.
                                    May be a coroutine function.

        Returns:
            Dispatcher[T]: This dispatcher, for chaining.
        """
        if not callable(callback):
            raise TypeError("callback must be callable")

        if self._registry.add(callback):
            self._log.debug("registered %r", callback)
        return self

    def once(self, callback: Callback[T]) -> Dispatcher[T]:
        """
        Register a callback that runs for a single dispatch, then unregisters.

        The callback is wrapped; the wrapper takes its own registry slot, so
        `off(callback)` does not remove it. The wrapper unregisters itself
        after the callback finishes, awaiting it first if it is async.

        Args:
            callback (Callback[T]): Called with the `Event` of the next dispatch.

        Returns:
            Dispatcher[T]: This dispatcher, for chaining.
        """
        if not callable(callback):
            raise TypeError("callback must be callable")

        fired = False

        def wrapper(event: Event[T]) -> Any:
            nonlocal fired
            if fired:
                return None
            fired = True
            try:
                result = callback(event)
            except Exception:
                self.off(wrapper)
                raise
            if inspect.isawaitable(result):
                return self._finish_once(result, wrapper)
            self.off(wrapper)
            return result

        functools.update_wrapper(wrapper, callback)
        return self.on(wrapper)

    async def _finish_once(self, awaitable: Awaitable[Any], wrapper: Callback[T]) -> Any:
        try:
            return await awaitable
        finally:
            self.off(wrapper)

    def off(self, callback: Callback[T]) -> Dispatcher[T]:
        """
        Unregister a callback. Unknown callbacks are ignored.

        Args:
            callback (Callback[T]): The callback to remove.

        Returns:
            Dispatcher[T]: This dispatcher, for chaining.
        """
        if callback in self._registry:
            self._registry.discard(callback)
            self._log.debug("unregistered %r", callback)
        return self

    def clear(self) -> Dispatcher[T]:
        """Unregister every callback. Callbacks already running are not cancelled."""
        self._registry.clear()
        return self

    # -------------------- future bridge --------------------
    def next(self) -> asyncio.Future[Event[T]]:
        """
        Return a future resolved with the `Event` of the next dispatch.

        Must be called with a running event loop. The listener behind the
        future stays registered after it fires (later dispatches find the
        future already done and leave it alone); use `off`/`clear` if that
        matters.

        Returns:
            asyncio.Future[Event[T]]: The pending event.

        Example:
        event = await dispatcher.next()
        """
        future: asyncio.Future[Event[T]] = asyncio.get_running_loop().create_future()

        def resolve(event: Event[T]) -> None:
            if not future.done():
                future.set_result(event)

        self.on(resolve)
        return future

    # -------------------- dispatch --------------------
    def dispatch(self, data: T) -> None:
        """
        Notify every registered callback of `data`.

        Callbacks are started in registration order and never awaited: a
        coroutine callback runs up to its first suspension point before the
        next callback starts, then finishes on the event loop. Exceptions
        from callbacks are logged, never raised here.

        Without a running loop, the dispatch runs on a private loop and
        blocks until the callbacks it started are done, since the loop is
        closed on return. An async callback that never completes (waiting
        on something no other code will set) hangs the caller forever;
        dispatch from inside a running loop when callbacks may wait on
        outside events.

        Args:
            data (T): The value to dispatch.

        Example:
        dispatcher.dispatch(42)
        """
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            asyncio.run(self._dispatch_detached(data))
        else:
            self._dispatch(data)

    async def _dispatch_detached(self, data: T) -> None:
        self._dispatch(data)
        # the private loop is closed on return
        loop = asyncio.get_running_loop()
        while True:
            pending = [t for t in self._tasks if t.get_loop() is loop and not t.done()]
            if not pending:
                break
            await asyncio.wait(pending)

    def _dispatch(self, data: T) -> None:
        # swap first so `last` is current even if a callback fails
        last, self._last = self._last, data

        stopped = False

        def stop_propagation() -> None:
            nonlocal stopped
            stopped = True

        with closing(iter(self._registry)) as live:
            for callback in live:
                self._invoke(callback, Event(data, last, stop_propagation))
                if stopped:
                    break

    def _invoke(self, callback: Callback[T], event: Event[T]) -> None:
        try:
            result = callback(event)
        except Exception:
            self._log.error("callback %r failed", callback, exc_info=True)
            return

        if not inspect.isawaitable(result):
            return

        # runs synchronously up to the first suspension point
        coro = result if inspect.iscoroutine(result) else _await(result)
        task = asyncio.Task(coro, loop=asyncio.get_running_loop(), eager_start=True)
        if task.done():
            self._report(callback, task)
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        task.add_done_callback(functools.partial(self._report, callback))

    def _report(self, callback: Callback[T], task: asyncio.Task) -> None:
        if task.cancelled():
            self._log.debug("callback %r cancelled", callback)
            return
        exc = task.exception()
        if exc is not None:
            self._log.error("callback %r failed", callback, exc_info=exc)
