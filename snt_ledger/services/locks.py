"""Process-wide keyed locks serializing writers of the same ledger rows."""

import threading
from collections.abc import Iterable, Iterator
from contextlib import contextmanager


class KeyedLocks:
    """Registry of one re-entrant lock per key.

    Locks for several keys are always acquired in sorted order so two writers
    touching overlapping key sets cannot deadlock. An entry lives only while
    some thread holds or waits for it.
    """

    def __init__(self):
        self._guard = threading.Lock()
        # key -> [lock, number of holders and waiters]
        self._locks: dict[object, list] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)

    def _checkout(self, key) -> threading.RLock:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.RLock(), 0]
                self._locks[key] = entry
            entry[1] += 1
            return entry[0]

    def _checkin(self, key) -> None:
        with self._guard:
            entry = self._locks[key]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]

    @contextmanager
    def hold(self, keys: Iterable) -> Iterator[None]:
        ordered = sorted(set(keys))
        acquired: list[tuple[object, threading.RLock]] = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                try:
                    lock.acquire()
                except BaseException:
                    self._checkin(key)
                    raise
                acquired.append((key, lock))
            yield
        finally:
            for key, lock in reversed(acquired):
                lock.release()
                self._checkin(key)


payment_locks = KeyedLocks()
# Keyed by (plot_id, accrual_period_id)
penalty_locks = KeyedLocks()

__all__ = ["KeyedLocks", "payment_locks", "penalty_locks"]
