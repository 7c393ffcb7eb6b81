"""Per-entity-key locks for the shared hot records.

Voucher usage counts, per-SKU stock and individual orders are mutated only
while the caller holds the lock for the corresponding key, and the lock is
held until the unit of work has committed. Unrelated keys never contend.

Keys are tuples such as ``("voucher", "SUMMER10")``, ``("sku", "TS-RED-M")``
or ``("order", order_id)``. Acquisition is always in sorted key order so two
operations touching overlapping key sets cannot deadlock.

These locks only serialize work inside one process. Across processes the
store is the guard: every aggregate write carries the ``_version`` it was
read at, a stale write raises ``ExpectedVersionError``, and the command
handler is re-run from a fresh read (``[server.version_retry]`` in
domain.toml). The locks keep those conflicts rare within a worker.
"""

import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager

from protean.utils.globals import current_domain

LockKey = tuple[str, str]


class KeyedLocks:
    """A registry of re-entrant locks, one per key, created on demand."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[LockKey, threading.RLock] = {}

    def _lock_for(self, key: LockKey) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    @contextmanager
    def hold(self, keys: Iterable[LockKey]) -> Iterator[None]:
        ordered = sorted(set(keys))
        acquired = []
        try:
            for key in ordered:
                lock = self._lock_for(key)
                lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()

    def clear(self) -> None:
        with self._guard:
            self._locks.clear()

    def __len__(self) -> int:
        return len(self._locks)


row_locks = KeyedLocks()


def order_key(order_id) -> LockKey:
    return ("order", str(order_id))


def sku_key(sku: str) -> LockKey:
    return ("sku", sku)


def voucher_key(code: str) -> LockKey:
    return ("voucher", code.strip().upper())


def process_serialized(command, keys: Iterable[LockKey]):
    """Process a command synchronously while holding the locks for ``keys``."""
    with row_locks.hold(keys):
        return current_domain.process(command, asynchronous=False)
