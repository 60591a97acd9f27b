"""
Ordered callback registry.
"""

from __future__ import annotations

import types
from typing import Callable, Dict, Generic, Hashable, Iterator, List, Optional, Tuple, TypeVar

H = TypeVar("H", bound=Callable[..., object])


def _key(handle: object) -> Hashable:
    """
    Identity key of a handle.

    Bound methods are created afresh on every attribute access, so they are
    keyed by the instance and function they bind.
    """
    if isinstance(handle, types.MethodType):
        return (id(handle.__self__), id(handle.__func__))
    return id(handle)


class Registry(Generic[H]):
    """
    An ordered, duplicate-free set of handles whose iterators see live mutation.

    Membership is by identity: equal but distinct handles are registered
    separately, and handles need not be hashable.

    Handles live in an arena of slots. Removing a handle leaves a tombstone
    so that open iterators keep their positions; tombstones are compacted
    once they outnumber the live handles and no iterator is open.
    """

    def __init__(self) -> None:
        self._slots: List[Optional[H]] = []
        self._index: Dict[Hashable, int] = {}  # identity key -> slot
        self._cursors = 0  # open iterators

    # -------------------- mutation --------------------
    def add(self, handle: H) -> bool:
        """
        Append `handle` unless it is already registered.

        Args:
            handle (H): The handle to register.

        Returns:
            bool: True if the handle was inserted, False if it was present.
        """
        key = _key(handle)
        if key in self._index:
            return False
        self._index[key] = len(self._slots)
        self._slots.append(handle)
        return True

    def discard(self, handle: H) -> bool:
        """
        Remove `handle` if present.

        Args:
            handle (H): The handle to remove.

        Returns:
            bool: True if a handle was removed.
        """
        pos = self._index.pop(_key(handle), None)
        if pos is None:
            return False
        self._slots[pos] = None
        self._compact()
        return True

    def clear(self) -> None:
        """Remove every handle."""
        self._index.clear()
        if self._cursors:
            # open iterators must run off the end, not into stale slots
            self._slots[:] = [None] * len(self._slots)
        else:
            self._slots.clear()

    # -------------------- read access --------------------
    def snapshot(self) -> Tuple[H, ...]:
        """Return the registered handles in insertion order."""
        return tuple(h for h in self._slots if h is not None)

    def __len__(self) -> int:
        return len(self._index)

    def __contains__(self, handle: object) -> bool:
        return _key(handle) in self._index

    def __iter__(self) -> Iterator[H]:
        """
        Iterate over the live registry in insertion order.

        Handles removed before the iterator reaches them are skipped, handles
        added while iterating are visited.
        """
        self._cursors += 1
        try:
            pos = 0
            while pos < len(self._slots):
                handle = self._slots[pos]
                pos += 1
                if handle is not None:
                    yield handle
        finally:
            self._cursors -= 1
            self._compact()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({list(self.snapshot())!r})"

    # -------------------- internals --------------------
    def _compact(self) -> None:
        if self._cursors or len(self._slots) - len(self._index) <= len(self._index):
            return
        self._slots = [h for h in self._slots if h is not None]
        self._index = {_key(h): pos for pos, h in enumerate(self._slots)}
