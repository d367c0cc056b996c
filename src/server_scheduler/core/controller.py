# server_scheduler/core/controller.py
"""
The control loop that schedules every autostart server's events, day after day.

One cycle loads the servers and their events, schedules the events, stores
the handles in the registry and blocks until every handle completed or was
cancelled. While the controller should keep going, the next cycle starts
right after; the events then wrap to the next day.

Two ways out:

- `shutdown()` (user request) stops the loop and cancels events that have
  not started. Running events finish, then the loop unwinds.
- `shutdown_now()` (OS signal) also cancels running events, interrupts the
  in-flight multiplexer call and tears the scheduler down without waiting
  for the loop.

An event that cannot launch the multiplexer at all triggers `shutdown_now()`
from the worker, and `start()` re-raises its `SessionControllerError`.
"""

import logging
import signal
import threading
from datetime import timedelta
from enum import Enum
from typing import Callable, List, Optional

from server_scheduler.core.events import Event
from server_scheduler.core.registry import CompletionSummary, SynchronizedHandleList
from server_scheduler.core.scheduler import EventHandle, EventScheduler
from server_scheduler.error import (
    DataError,
    SchedulerError,
    SchedulerShutdownError,
)

logger = logging.getLogger(__name__)

# Upper bound on how long an empty cycle waits before reloading.
IDLE_CYCLE_WAIT = timedelta(hours=24)


class ControllerState(Enum):
    IDLE = "idle"
    LOADING = "loading"
    SCHEDULED = "scheduled"
    WAITING = "waiting"
    SHUTTING_DOWN = "shutting_down"
    TERMINATED = "terminated"


class ConsoleCallback:
    """The actions the console may perform on the controller.

    The console gets this small object instead of the controller itself.
    """

    def __init__(
        self,
        schedule_now: Callable[[Event], EventHandle],
        shutdown: Callable[[], None],
        shutdown_now: Callable[[], None],
    ):
        self._schedule_now = schedule_now
        self._shutdown = shutdown
        self._shutdown_now = shutdown_now

    def schedule_now(self, event: Event) -> EventHandle:
        """Runs `event` as soon as the scheduler is free."""
        return self._schedule_now(event)

    def shutdown(self) -> None:
        """Shuts down gracefully, letting running events finish."""
        self._shutdown()

    def shutdown_now(self) -> None:
        """Shuts down as fast as possible, interrupting running events."""
        self._shutdown_now()


class ScheduleController:
    """Owns the scheduler and the handle registry and runs the daily loop."""

    def __init__(
        self,
        app_context,
        run_console: bool = True,
        console_only: bool = False,
        console_factory: Optional[Callable] = None,
    ):
        """
        Args:
            app_context: Provides the settings, repository, event factory
                and session controller.
            run_console: Start the interactive console on its own thread.
            console_only: Only run the console; schedule nothing.
            console_factory: Builds the console from
                ``(callback, repository, event_factory)``. Defaults to
                `server_scheduler.cli.console.ServerConsole`.
        """
        self.app_context = app_context
        self.run_console = run_console or console_only
        self.console_only = console_only
        self.console_factory = console_factory

        self.registry = SynchronizedHandleList()
        self.scheduler: Optional[EventScheduler] = None
        self.callback = ConsoleCallback(
            self.schedule_now, self.shutdown, self.shutdown_now
        )
        self.last_summary: Optional[CompletionSummary] = None

        self._stop_requested = threading.Event()
        self._forced = threading.Event()
        self._state = ControllerState.IDLE
        self._state_lock = threading.Lock()
        self._console = None
        self._console_thread: Optional[threading.Thread] = None
        self._fatal_error: Optional[BaseException] = None

    # --- State ---

    @property
    def state(self) -> ControllerState:
        with self._state_lock:
            return self._state

    def _set_state(self, state: ControllerState) -> None:
        with self._state_lock:
            previous, self._state = self._state, state
        logger.debug(f"Controller state: {previous.value} -> {state.value}")

    @property
    def continue_scheduling(self) -> bool:
        return not self._stop_requested.is_set()

    # --- Main loop ---

    def start(self) -> None:
        """Runs the control loop until a shutdown is requested.

        Raises:
            SchedulerError: If the controller was already started.
            SessionControllerError: If an event could not launch the
                multiplexer. Everything is torn down first.
            DataError: If a cycle could not be loaded. Everything is torn
                down first.
        """
        if self.state is not ControllerState.IDLE:
            raise SchedulerError("The controller can only be started once.")

        previous_handlers = self._install_signal_handlers()
        try:
            session_controller = self.app_context.session_controller
            self.scheduler = EventScheduler(
                on_interrupt=session_controller.terminate_active,
                on_fatal=self._handle_fatal,
            )

            if self.run_console:
                self._start_console()

            if self.console_only:
                logger.info("Console only mode. No events will be scheduled.")
                self._stop_requested.wait()
            else:
                while self.continue_scheduling:
                    self._run_cycle()

            self._set_state(ControllerState.SHUTTING_DOWN)
            self._stop_console()
            self.scheduler.shutdown()

            if self._fatal_error is not None:
                raise self._fatal_error
        except DataError as e:
            logger.critical(
                f"Could not load the events for this cycle: {e}", exc_info=True
            )
            self.shutdown_now()
            raise
        finally:
            self._restore_signal_handlers(previous_handlers)
            self._set_state(ControllerState.TERMINATED)
            logger.info("Controller terminated.")

    def _run_cycle(self) -> None:
        self._set_state(ControllerState.LOADING)
        events = self._load_events()

        self._set_state(ControllerState.SCHEDULED)
        logger.info("Scheduling all events...")
        try:
            handles = self.scheduler.schedule_events(events)
        except SchedulerShutdownError:
            if self.continue_scheduling:
                raise
            return
        self.registry.replace_all(handles)

        # A shutdown may have cancelled the previous cycle's handles while
        # these were being registered.
        if not self.continue_scheduling:
            self.registry.cancel_all(force=self._forced.is_set())

        self._set_state(ControllerState.WAITING)
        if not handles:
            logger.warning(
                f"No events to schedule. Checking again in {IDLE_CYCLE_WAIT}."
            )
            self._stop_requested.wait(IDLE_CYCLE_WAIT.total_seconds())
            return

        logger.info(
            f"Done. {self.scheduler.pending_count()} events pending. Currently running..."
        )
        self.last_summary = self.registry.wait_for_completion()
        logger.info(
            f"Cycle finished: {self.last_summary.succeeded} succeeded, "
            f"{self.last_summary.failed} failed, "
            f"{self.last_summary.cancelled} cancelled."
        )

    def _load_events(self) -> List[Event]:
        repository = self.app_context.repository
        factory = self.app_context.event_factory

        logger.info("Querying autostart game servers...")
        servers = repository.get_autostart_servers()
        logger.info(f"Got {len(servers)} game servers.")

        logger.info("Querying all events...")
        events: List[Event] = []
        for server in servers:
            events.extend(repository.get_events(server, factory))
        logger.info(f"Got {len(events)} events.")
        return events

    def _handle_fatal(self, handle: EventHandle, error: BaseException) -> None:
        logger.critical(
            f"Event [{handle.event.describe()}] could not launch the multiplexer: "
            f"{error}. Shutting down.",
            exc_info=error,
        )
        if self._fatal_error is None:
            self._fatal_error = error
        self.shutdown_now()

    # --- Console callback targets ---

    def schedule_now(self, event: Event) -> EventHandle:
        """Runs `event` as soon as the scheduler's worker is free.

        Raises:
            SchedulerError: If the controller has not been started.
            SchedulerShutdownError: If the scheduler was shut down.
        """
        if self.scheduler is None:
            raise SchedulerError("The controller has not been started.")
        return self.scheduler.submit_now(event)

    def shutdown(self) -> None:
        """Gracefully stops the loop, cancelling events that have not started."""
        logger.info("Shutting down (user request)...")
        self._stop_requested.set()
        self.registry.cancel_all(force=False)

    def shutdown_now(self) -> None:
        """Stops as fast as possible. Safe to call from any thread, repeatedly."""
        if self._forced.is_set():
            return
        self._forced.set()
        logger.info("Shutting down (OS request)...")

        self._stop_requested.set()
        self.registry.cancel_all(force=True)

        if self.scheduler is not None:
            self.scheduler.shutdown_now()
            self.app_context.session_controller.terminate_active()

        self._stop_console()

    # --- Console ---

    def _start_console(self) -> None:
        factory = self.console_factory
        if factory is None:
            from server_scheduler.cli.console import ServerConsole

            factory = ServerConsole

        self._console = factory(
            self.callback, self.app_context.repository, self.app_context.event_factory
        )
        # Daemon: a thread blocked on input() cannot be joined on exit.
        self._console_thread = threading.Thread(
            target=self._console.run, name="console", daemon=True
        )
        self._console_thread.start()

    def _stop_console(self) -> None:
        if self._console is not None:
            self._console.stop()

    # --- Signals ---

    def _handle_signal(self, signum, frame):
        logger.debug(f"Received signal {signum}.")
        # The interrupted main thread may hold locks shutdown_now needs.
        threading.Thread(
            target=self.shutdown_now, name="shutdown-now", daemon=True
        ).start()

    def _install_signal_handlers(self) -> dict:
        if threading.current_thread() is not threading.main_thread():
            return {}
        previous = {}
        for signum in (signal.SIGINT, signal.SIGTERM):
            previous[signum] = signal.getsignal(signum)
            signal.signal(signum, self._handle_signal)
        return previous

    def _restore_signal_handlers(self, previous: dict) -> None:
        for signum, handler in previous.items():
            signal.signal(signum, handler)
