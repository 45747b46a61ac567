"""
Per-subject write locks.

Serializes assignment writes for one agent across overlapping engine runs
in the same process. Locks are re-entrant. An entry lives only while some
thread holds or waits on it, so the registry stays as small as the number
of agents being written at once. Cross-process duplicates are stopped by
the unique constraints on the assignment tables.
"""
import threading
from contextlib import contextmanager


class _Entry:
    __slots__ = ('lock', 'users')

    def __init__(self):
        self.lock = threading.RLock()
        self.users = 0


class SubjectLockRegistry:
    """Hands out one lock per subject id."""

    def __init__(self):
        self._locks = {}
        self._registry_lock = threading.Lock()

    def _acquire_entry(self, subject_id) -> _Entry:
        with self._registry_lock:
            entry = self._locks.get(subject_id)
            if entry is None:
                entry = _Entry()
                self._locks[subject_id] = entry
            entry.users += 1
            return entry

    def _release_entry(self, subject_id, entry: _Entry) -> None:
        with self._registry_lock:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[subject_id]

    @contextmanager
    def hold(self, subject_id):
        entry = self._acquire_entry(subject_id)
        try:
            with entry.lock:
                yield
        finally:
            self._release_entry(subject_id, entry)

    def __len__(self):
        return len(self._locks)


# Shared by every service instance in this process
subject_locks = SubjectLockRegistry()
