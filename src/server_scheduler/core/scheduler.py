# server_scheduler/core/scheduler.py
"""
Runs events at their time of day on a single worker thread.

Event times carry no date: an event always fires at the next occurrence of
its time of day, measured from when it is scheduled. `calculate_delay`
performs that conversion, wrapping times that already passed today to the
same time tomorrow, so every event of a cycle fires exactly once within 24
hours of the cycle starting.

`EventScheduler` owns exactly one worker thread. Events are few and short,
and running them one at a time keeps two events from racing on the same
session. Each scheduled event gets an `EventHandle` that can be waited on
or cancelled.
"""

import heapq
import itertools
import logging
import threading
import time
from datetime import datetime, timedelta
from datetime import time as time_of_day
from enum import Enum
from typing import Callable, Iterable, List, Optional, Tuple

from server_scheduler.core.events import Event
from server_scheduler.error import (
    EventCancelledError,
    EventExecutionError,
    SchedulerShutdownError,
    SessionControllerError,
)

logger = logging.getLogger(__name__)

DURATION_24H = timedelta(hours=24)


def _since_midnight(value: time_of_day) -> timedelta:
    return timedelta(
        hours=value.hour,
        minutes=value.minute,
        seconds=value.second,
        microseconds=value.microsecond,
    )


def calculate_delay(
    scheduled_time: time_of_day, current_time: time_of_day
) -> timedelta:
    """Returns how long to wait from `current_time` until `scheduled_time`.

    If `scheduled_time` is earlier than `current_time` the event belongs to
    the next day, so the delay is 24h minus the distance between the two.
    The result is always in ``[0, 24h)`` and keeps microsecond precision.

    Example: scheduled 01:00:00 at current 02:00:00 gives 23 hours.
    """
    delta = abs(_since_midnight(scheduled_time) - _since_midnight(current_time))
    if scheduled_time < current_time:
        delta = DURATION_24H - delta
    return delta


class HandleState(Enum):
    PENDING = "pending"
    RUNNING = "running"
    FINISHED = "finished"
    CANCELLED = "cancelled"


class EventHandle:
    """Reference to one scheduled event, supporting wait and cancel.

    A handle moves from PENDING to RUNNING to FINISHED, or to CANCELLED.
    Cancelling a running handle marks it cancelled right away and sets
    `cancel_event`, which the running work checks between steps. The
    scheduler's interrupt hook kills whatever it is blocked on, and
    anything it returns afterwards is discarded.
    """

    def __init__(
        self,
        event: Event,
        deadline: float,
        on_cancel: Optional[Callable[["EventHandle", bool], None]] = None,
    ):
        self.event = event
        self.deadline = deadline
        self._on_cancel = on_cancel
        self._condition = threading.Condition()
        self._state = HandleState.PENDING
        # Set on cancel; the running event checks it between backend calls.
        self.cancel_event = threading.Event()
        self._exception: Optional[BaseException] = None

    def __repr__(self):
        return (
            f"<EventHandle {self.event.describe()} "
            f"session={self.event.server.session_name!r} state={self._state.value}>"
        )

    @property
    def state(self) -> HandleState:
        with self._condition:
            return self._state

    def cancelled(self) -> bool:
        return self.state is HandleState.CANCELLED

    def running(self) -> bool:
        return self.state is HandleState.RUNNING

    def done(self) -> bool:
        return self.state in (HandleState.FINISHED, HandleState.CANCELLED)

    def cancel(self, interrupt: bool = False) -> bool:
        """Attempts to cancel the event.

        Args:
            interrupt: Also cancel the event if it already started.

        Returns:
            True if this call cancelled the event.
        """
        with self._condition:
            if self._state in (HandleState.FINISHED, HandleState.CANCELLED):
                return False
            if self._state is HandleState.RUNNING and not interrupt:
                return False
            was_running = self._state is HandleState.RUNNING
            self._state = HandleState.CANCELLED
            self.cancel_event.set()
            self._condition.notify_all()

        if self._on_cancel is not None:
            self._on_cancel(self, was_running)
        return True

    def result(self, timeout: Optional[float] = None) -> None:
        """Blocks until the event finished or was cancelled.

        Raises:
            EventCancelledError: If the event was cancelled.
            EventExecutionError: If the event raised; the original exception
                is chained as the cause.
            TimeoutError: If `timeout` elapsed first.
        """
        with self._condition:
            if not self._condition.wait_for(self._is_done_locked, timeout):
                raise TimeoutError(f"{self!r} did not complete in {timeout}s.")
            if self._state is HandleState.CANCELLED:
                raise EventCancelledError(f"{self!r} was cancelled.")
            if self._exception is not None:
                raise EventExecutionError(
                    f"Event [{self.event.describe()}] for session "
                    f"'{self.event.server.session_name}' failed: {self._exception}"
                ) from self._exception

    def exception(self) -> Optional[BaseException]:
        """The exception the event raised, if it finished with one."""
        with self._condition:
            return self._exception

    # --- Worker side ---

    def _is_done_locked(self) -> bool:
        return self._state in (HandleState.FINISHED, HandleState.CANCELLED)

    def _set_running(self) -> bool:
        with self._condition:
            if self._state is not HandleState.PENDING:
                return False
            self._state = HandleState.RUNNING
            return True

    def _set_finished(self, exception: Optional[BaseException] = None) -> None:
        with self._condition:
            if self._state is HandleState.CANCELLED:
                return
            self._state = HandleState.FINISHED
            self._exception = exception
            self._condition.notify_all()


class EventScheduler:
    """Delayed-task runtime backed by exactly one worker thread.

    Work is ordered by due time; work due at the same moment runs in the
    order it was submitted. Remember to call `shutdown()` or
    `shutdown_now()` when done.
    """

    def __init__(
        self,
        on_interrupt: Optional[Callable[[], object]] = None,
        on_fatal: Optional[Callable[[EventHandle, BaseException], None]] = None,
        name: str = "event-scheduler",
    ):
        """
        Args:
            on_interrupt: Called when a running event is cancelled with
                interruption, to stop work that cannot be interrupted from
                Python (e.g. a blocking subprocess call).
            on_fatal: Called from the worker, after the handle completed,
                when an event fails with a `SessionControllerError`. The
                multiplexer cannot be launched, so nothing else can run.
            name: Name of the worker thread.
        """
        self._on_interrupt = on_interrupt
        self._on_fatal = on_fatal
        self._condition = threading.Condition()
        self._queue: List[Tuple[float, int, EventHandle]] = []
        self._sequence = itertools.count()
        self._shutdown = False
        self._running_handle: Optional[EventHandle] = None

        self._worker = threading.Thread(target=self._work, name=name, daemon=True)
        self._worker.start()
        logger.debug(f"EventScheduler worker '{name}' started.")

    # --- Submission ---

    def schedule_events(
        self, events: Iterable[Event], now: Optional[datetime] = None
    ) -> List[EventHandle]:
        """Schedules every event at the next occurrence of its time of day.

        Args:
            events: Events to schedule.
            now: Wall-clock reference. Defaults to `datetime.now()`.

        Returns:
            One handle per event, in the same order.
        """
        now = now or datetime.now()
        base = time.monotonic()
        handles = []
        for event in events:
            delay = calculate_delay(event.time, now.time())
            handles.append(self._enqueue(event, base + delay.total_seconds()))
            logger.info(
                f"Scheduled [{event.describe()}] for session "
                f"'{event.server.session_name}' at {event.time} (in {delay})."
            )
        return handles

    def submit_now(self, event: Event) -> EventHandle:
        """Queues `event` to run as soon as the worker is free.

        It runs after any work that is already due, including earlier
        `submit_now` calls.
        """
        handle = self._enqueue(event, time.monotonic())
        logger.info(
            f"Submitted [{event.describe()}] for session "
            f"'{event.server.session_name}' to run now."
        )
        return handle

    def _enqueue(self, event: Event, deadline: float) -> EventHandle:
        handle = EventHandle(event, deadline, on_cancel=self._handle_cancelled)
        with self._condition:
            if self._shutdown:
                raise SchedulerShutdownError(
                    "The scheduler has been shut down and accepts no new events."
                )
            heapq.heappush(self._queue, (deadline, next(self._sequence), handle))
            self._condition.notify_all()
        return handle

    # --- Shutdown ---

    @property
    def is_shutdown(self) -> bool:
        with self._condition:
            return self._shutdown

    def pending_count(self) -> int:
        with self._condition:
            return sum(1 for _, _, h in self._queue if not h.cancelled())

    def shutdown(self) -> None:
        """Stops accepting work and waits for queued work to finish.

        Queued events still run at their due time unless cancelled;
        cancelled events are dropped without waiting for their deadline.
        """
        with self._condition:
            self._shutdown = True
            self._condition.notify_all()
        if threading.current_thread() is not self._worker:
            self._worker.join()
        logger.debug("EventScheduler shut down.")

    def shutdown_now(self) -> List[EventHandle]:
        """Stops accepting work, cancels everything and returns immediately.

        The running event, if any, is cancelled with interruption.

        Returns:
            Handles of queued events that never started.
        """
        with self._condition:
            self._shutdown = True
            queued = [handle for _, _, handle in self._queue]
            self._queue.clear()
            running = self._running_handle
            self._condition.notify_all()

        cancelled = [handle for handle in queued if handle.cancel()]
        if running is not None:
            running.cancel(interrupt=True)
        logger.debug(
            f"EventScheduler shut down immediately; {len(cancelled)} queued events cancelled."
        )
        return cancelled

    # --- Worker ---

    def _handle_cancelled(self, handle: EventHandle, was_running: bool) -> None:
        with self._condition:
            self._condition.notify_all()
        if was_running and self._on_interrupt is not None:
            logger.debug(f"Interrupting running {handle!r}.")
            self._on_interrupt()

    def _purge_cancelled(self) -> None:
        if any(handle.cancelled() for _, _, handle in self._queue):
            self._queue = [entry for entry in self._queue if not entry[2].cancelled()]
            heapq.heapify(self._queue)

    def _next_due(self) -> Optional[EventHandle]:
        """Blocks until a handle is due. Must hold the condition."""
        while True:
            self._purge_cancelled()
            if not self._queue:
                if self._shutdown:
                    return None
                self._condition.wait()
                continue

            deadline, _, handle = self._queue[0]
            remaining = deadline - time.monotonic()
            if remaining > 0:
                self._condition.wait(remaining)
                continue

            heapq.heappop(self._queue)
            if handle._set_running():
                return handle

    def _work(self) -> None:
        while True:
            with self._condition:
                handle = self._next_due()
                if handle is None:
                    break
                self._running_handle = handle

            try:
                self._execute(handle)
            finally:
                with self._condition:
                    self._running_handle = None

    def _execute(self, handle: EventHandle) -> None:
        event = handle.event
        try:
            event.run(cancel_event=handle.cancel_event)
        except Exception as e:
            logger.debug(
                f"Event [{event.describe()}] for session "
                f"'{event.server.session_name}' raised {type(e).__name__}: {e}"
            )
            handle._set_finished(e)
            if isinstance(e, SessionControllerError) and self._on_fatal is not None:
                self._on_fatal(handle, e)
        else:
            handle._set_finished()
