"""
Size-keyed buffer pool.

Every operation that needs output or scratch storage asks the pool for a
flat ``float32`` buffer of an exact element count. Buffers are reused
once released; at most ``cap`` buffers are retained per distinct size,
beyond which ``acquire`` hands out plain untracked arrays.

The module-level functions (:func:`acquire_buffer`, :func:`release_buffer`,
...) act on the *current* pool: a per-thread default instance, or the one
installed with :func:`use_pool`. Pools are not synchronized; share one
across threads only under external locking.
"""

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Set, TypeVar

import numpy as np

from neurotensor.config import SETTINGS

T = TypeVar("T")


@dataclass
class PoolEntry:
    """Allocator record for one retained buffer."""
    buffer: np.ndarray
    size: int
    in_use: bool = False


@dataclass(frozen=True)
class PoolStats:
    """
    Snapshot of pool occupancy.

    Attributes
    ----------
    sizes : list of int
        Distinct buffer sizes with at least one registered entry, ascending.
    total_buffers : int
        Number of retained entries across all sizes.
    in_use : int
        Entries currently handed out.
    available : int
        Entries free for reuse. Always ``total_buffers - in_use``.
    """
    sizes: List[int] = field(default_factory=list)
    total_buffers: int = 0
    in_use: int = 0
    available: int = 0


class BufferPool:
    """
    Reusable-buffer allocator keyed by element count.

    Parameters
    ----------
    cap : int, optional
        Maximum retained buffers per distinct size. Defaults to
        ``SETTINGS.pool_cap`` (100).
    enabled : bool, optional
        Whether pooling is active. Defaults to ``SETTINGS.pooling_enabled``.
        A disabled pool allocates fresh zeroed arrays and tracks nothing.

    Notes
    -----
    - ``acquire`` never fails: past the cap it degrades to plain allocation.
    - A buffer is never handed out while its entry is marked in use.
    - Scopes opened with :meth:`open_scope` record the tracked buffers
      acquired while they are innermost; :meth:`close_scope` releases
      exactly those, minus any the caller asks to keep.
    """
    def __init__(self, cap: Optional[int] = None, enabled: Optional[bool] = None) -> None:
        self.cap = SETTINGS.pool_cap if cap is None else int(cap)
        if self.cap < 0:
            raise ValueError(f"pool cap must be non-negative, got {cap}")
        self.enabled = SETTINGS.pooling_enabled if enabled is None else bool(enabled)
        self._pools: Dict[int, List[PoolEntry]] = {}
        self._scopes: List[List[np.ndarray]] = []

    def acquire(self, size: int) -> np.ndarray:
        """
        Return a zero-filled flat ``float32`` buffer of exactly ``size`` elements.

        Prefers a free entry of the same size; otherwise allocates a new
        buffer and registers it if the size's entry list is below the cap.
        """
        size = int(size)
        if size < 0:
            raise ValueError(f"buffer size must be non-negative, got {size}")
        if not self.enabled:
            return np.zeros(size, dtype=np.float32)

        entries = self._pools.setdefault(size, [])
        for entry in entries:
            if not entry.in_use:
                entry.in_use = True
                entry.buffer.fill(0)
                self._record(entry.buffer)
                return entry.buffer

        buffer = np.zeros(size, dtype=np.float32)
        if len(entries) < self.cap:
            entries.append(PoolEntry(buffer=buffer, size=size, in_use=True))
            self._record(buffer)
        return buffer

    def release(self, buffer: np.ndarray) -> None:
        """
        Mark ``buffer`` free for reuse.

        Accepts the buffer itself or any view of it. A buffer the pool has
        never seen is adopted as a free entry if its size still has room and
        it is a writable, contiguous, flat float32 array; anything else is
        ignored.
        """
        if not self.enabled:
            return

        buffer = _owner(buffer)
        size = buffer.size
        entries = self._pools.setdefault(size, [])
        for entry in entries:
            if entry.buffer is buffer:
                entry.in_use = False
                return

        if len(entries) >= self.cap or not _adoptable(buffer):
            return
        entries.append(PoolEntry(buffer=buffer, size=size, in_use=False))

    def release_all(self) -> None:
        """Mark every entry of every size free."""
        for entries in self._pools.values():
            for entry in entries:
                entry.in_use = False

    def clear(self) -> None:
        """Drop all entries. Buffers already handed out stay valid but untracked."""
        self._pools.clear()
        for scope in self._scopes:
            scope.clear()

    def stats(self) -> PoolStats:
        """Return a :class:`PoolStats` snapshot."""
        total = 0
        in_use = 0
        for entries in self._pools.values():
            total += len(entries)
            in_use += sum(1 for e in entries if e.in_use)
        return PoolStats(
            sizes=sorted(size for size, entries in self._pools.items() if entries),
            total_buffers=total,
            in_use=in_use,
            available=total - in_use,
        )

    def set_enabled(self, enabled: bool) -> None:
        """Enable or disable pooling. Disabling also clears every entry."""
        self.enabled = bool(enabled)
        if not self.enabled:
            self.clear()

    def open_scope(self) -> None:
        self._scopes.append([])

    def close_scope(self, keep: Optional[Set[int]] = None) -> None:
        """
        Release the buffers recorded by the innermost scope.

        Parameters
        ----------
        keep : set of int, optional
            ``id()`` of buffers that must stay in use. Kept buffers are
            handed to the enclosing scope, if any, so that an outer scope
            still releases them.
        """
        if not self._scopes:
            raise RuntimeError("close_scope() called without a matching open_scope()")
        keep = keep or set()
        recorded = self._scopes.pop()
        survivors = []
        for buffer in recorded:
            if id(buffer) in keep:
                survivors.append(buffer)
            else:
                self.release(buffer)
        if self._scopes:
            self._scopes[-1].extend(survivors)

    def _record(self, buffer: np.ndarray) -> None:
        if self._scopes:
            self._scopes[-1].append(buffer)


def _owner(array: np.ndarray) -> np.ndarray:
    """Follow ``.base`` links to the array that owns the memory."""
    while isinstance(array.base, np.ndarray):
        array = array.base
    return array


def _adoptable(array: np.ndarray) -> bool:
    return (
        array.dtype == np.float32
        and array.ndim == 1
        and array.flags.writeable
        and array.flags.c_contiguous
    )


_local = threading.local()


def current_pool() -> BufferPool:
    """Return the pool used by the module-level functions on this thread."""
    stack = getattr(_local, "stack", None)
    if stack:
        return stack[-1]
    pool = getattr(_local, "default", None)
    if pool is None:
        pool = BufferPool()
        _local.default = pool
    return pool


@contextmanager
def use_pool(pool: BufferPool) -> Iterator[BufferPool]:
    """
    Make ``pool`` the current pool on this thread for the duration of the block.

    Examples
    --------
    >>> with use_pool(BufferPool(cap=4)) as pool:
    ...     y = x @ w
    >>> pool.stats().total_buffers
    1
    """
    stack = getattr(_local, "stack", None)
    if stack is None:
        stack = _local.stack = []
    stack.append(pool)
    try:
        yield pool
    finally:
        stack.pop()


def acquire_buffer(size: int) -> np.ndarray:
    """Acquire a zero-filled buffer from the current pool."""
    return current_pool().acquire(size)


def release_buffer(buffer: np.ndarray) -> None:
    """Release a buffer back to the current pool."""
    current_pool().release(buffer)


def clear_pool() -> None:
    """Drop every entry of the current pool."""
    current_pool().clear()


def pool_stats() -> PoolStats:
    """Return occupancy statistics of the current pool."""
    return current_pool().stats()


def set_pooling_enabled(enabled: bool) -> None:
    """Enable or disable pooling on the current pool."""
    current_pool().set_enabled(enabled)


def with_scope(fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    """
    Run ``fn`` and release the buffers it acquired, on every exit path.

    Only buffers acquired during the call are released; buffers acquired
    before it, or by an enclosing scope, are untouched. Buffers backing
    the returned value are kept: every tensor found in the result (also
    inside lists, tuples and dict values) and every tensor reachable from
    it through recorded operations, so a returned loss can still be
    differentiated.

    Examples
    --------
    >>> out = with_scope(lambda: (a @ b + c).relu())
    >>> # intermediates of the expression are free again; ``out`` is intact
    """
    pool = current_pool()
    pool.open_scope()
    result = None
    try:
        result = fn(*args, **kwargs)
        return result
    finally:
        pool.close_scope(keep=_reachable_buffers(result))


def _reachable_buffers(result: Any) -> Set[int]:
    keep: Set[int] = set()
    seen: Set[int] = set()
    stack = [result]
    while stack:
        obj = stack.pop()
        if obj is None or id(obj) in seen:
            continue
        seen.add(id(obj))
        if isinstance(obj, (list, tuple)):
            stack.extend(obj)
        elif isinstance(obj, dict):
            stack.extend(obj.keys())
            stack.extend(obj.values())
        elif isinstance(obj, np.ndarray):
            keep.add(id(_owner(obj)))
        elif hasattr(obj, "data") and hasattr(obj, "grad_fn"):
            keep.add(id(_owner(obj.data)))
            if obj.grad_fn is not None:
                stack.extend(obj.grad_fn.inputs)
    return keep
