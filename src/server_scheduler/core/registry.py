# server_scheduler/core/registry.py
"""
Thread-safe list of the handles of currently scheduled events.

The control loop blocks on `wait_for_completion()` while another thread (a
signal handler or the console) may call `cancel_all()` to unblock it. Both
only read the list, so they share the lock and can run at the same time.
Replacing the list between cycles takes the lock exclusively, and
`replace_all()` clears and refills under a single acquisition so no reader
ever observes an empty list between the two steps.
"""

import logging
import threading
from contextlib import contextmanager
from typing import Iterable, List, NamedTuple

from server_scheduler.error import EventCancelledError, EventExecutionError

logger = logging.getLogger(__name__)


class ReadWriteLock:
    """A lock shared by readers and held exclusively by one writer.

    Readers are admitted whenever no writer holds the lock, even if a
    writer is waiting. A reader may block for a whole cycle in
    `wait_for_completion()`, and cancelling from another thread must still
    get through while it does.
    """

    def __init__(self):
        self._condition = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    def acquire_read(self):
        with self._condition:
            self._condition.wait_for(lambda: not self._writer)
            self._readers += 1

    def release_read(self):
        with self._condition:
            self._readers -= 1
            if self._readers == 0:
                self._condition.notify_all()

    def acquire_write(self):
        with self._condition:
            self._condition.wait_for(lambda: not self._writer and self._readers == 0)
            self._writer = True

    def release_write(self):
        with self._condition:
            self._writer = False
            self._condition.notify_all()

    @contextmanager
    def read_locked(self):
        self.acquire_read()
        try:
            yield
        finally:
            self.release_read()

    @contextmanager
    def write_locked(self):
        self.acquire_write()
        try:
            yield
        finally:
            self.release_write()


class CompletionSummary(NamedTuple):
    succeeded: int
    failed: int
    cancelled: int

    @property
    def total(self) -> int:
        return self.succeeded + self.failed + self.cancelled


class SynchronizedHandleList:
    """Ordered collection of event handles guarded by a `ReadWriteLock`.

    The handle list must never be touched without the lock, which is why it
    lives in its own class.
    """

    def __init__(self):
        self._handles: List = []
        self._lock = ReadWriteLock()

    def __len__(self) -> int:
        with self._lock.read_locked():
            return len(self._handles)

    def snapshot(self) -> List:
        """Returns a copy of the current handles in registration order."""
        with self._lock.read_locked():
            return list(self._handles)

    def wait_for_completion(self) -> CompletionSummary:
        """Blocks until every registered handle finished or was cancelled.

        Handles are waited on in registration order. Failed events are logged
        with their traceback; cancellations are only counted and reported
        once at the end. Nothing is re-raised.

        Returns:
            How many events succeeded, failed and were cancelled.
        """
        succeeded = failed = cancelled = 0

        with self._lock.read_locked():
            for handle in self._handles:
                try:
                    handle.result()
                except EventCancelledError:
                    cancelled += 1
                except EventExecutionError as e:
                    failed += 1
                    logger.error(str(e), exc_info=e.__cause__ or e)
                else:
                    succeeded += 1

        if cancelled > 0:
            logger.warning(f"{cancelled} events were cancelled.")

        summary = CompletionSummary(succeeded, failed, cancelled)
        logger.debug(f"All events completed: {summary}")
        return summary

    def cancel_all(self, force: bool = False) -> int:
        """Cancels every registered handle.

        Args:
            force: Also cancel events that are already running. Otherwise
                only events that have not started are cancelled.

        Returns:
            The number of handles this call cancelled.
        """
        count = 0
        with self._lock.read_locked():
            for handle in self._handles:
                if handle.cancel(interrupt=force):
                    count += 1
        logger.debug(f"Cancelled {count} events (force={force}).")
        return count

    def clear(self) -> None:
        """Removes every handle. Consider `replace_all()` when refilling."""
        with self._lock.write_locked():
            self._handles.clear()

    def add_all(self, handles: Iterable) -> None:
        """Appends `handles`. Consider `replace_all()` after a `clear()`."""
        with self._lock.write_locked():
            self._handles.extend(handles)

    def replace_all(self, handles: Iterable) -> None:
        """Atomically replaces the current handles with `handles`."""
        new_handles = list(handles)
        with self._lock.write_locked():
            self._handles.clear()
            self._handles.extend(new_handles)
