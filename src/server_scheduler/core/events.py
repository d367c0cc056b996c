# server_scheduler/core/events.py
"""
Scheduled lifecycle events and the factory that builds them from stored rows.

An :class:`Event` is a one-shot action against one server at a time of day.
The set of actions is closed and identified by :class:`EventType`; the codes
are stored in the database and must not change.

Each event type maps to an assembler that turns the event into a payload:

- a :class:`LaunchPayload` (executable plus arguments), which starts the
  server's session, or
- a :class:`CommandPayload` (a line of text), which is typed into the
  server's running session.

``Event.run()`` assembles the payload and hands it to the session
controller. Events are immutable and run once; recurrence comes from the
control loop building a fresh set every cycle.
"""

import os
import logging
import datetime
import threading
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Callable, Dict, NamedTuple, Optional, Sequence, Tuple, Union

from server_scheduler.config.const import WARN_TIME_PLACEHOLDER
from server_scheduler.core.server import GameServer
from server_scheduler.core.sessions import SessionController
from server_scheduler.error import (
    EventAssemblyError,
    InsufficientArgumentsError,
    MissingArgumentError,
    SessionExistsError,
    UnsupportedEventTypeError,
)

logger = logging.getLogger(__name__)


class EventType(IntEnum):
    EXECUTE_FILE = 0
    START_SERVER = 1
    RUN_COMMAND = 2
    STOP_COMMAND = 3
    WARN_COMMAND = 4


class LaunchPayload(NamedTuple):
    executable: str
    args: Tuple[str, ...]


class CommandPayload(NamedTuple):
    text: str


Payload = Union[LaunchPayload, CommandPayload]


def _assemble_execute_file(event: "Event") -> LaunchPayload:
    return LaunchPayload(event.args[0], tuple(event.args[1:]))


def _assemble_start_server(event: "Event") -> LaunchPayload:
    return LaunchPayload(event.server.start_file, ())


def _assemble_run_command(event: "Event") -> CommandPayload:
    return CommandPayload(event.args[0])


def _assemble_stop_command(event: "Event") -> CommandPayload:
    return CommandPayload(event.server.stop_command)


def _assemble_warn_command(event: "Event") -> CommandPayload:
    minutes = event.args[0]
    if not minutes:
        raise EventAssemblyError("The minutes left for a warning cannot be empty.")
    return CommandPayload(
        event.server.warn_command.replace(WARN_TIME_PLACEHOLDER, minutes)
    )


_ASSEMBLERS: Dict[EventType, Callable[["Event"], Payload]] = {
    EventType.EXECUTE_FILE: _assemble_execute_file,
    EventType.START_SERVER: _assemble_start_server,
    EventType.RUN_COMMAND: _assemble_run_command,
    EventType.STOP_COMMAND: _assemble_stop_command,
    EventType.WARN_COMMAND: _assemble_warn_command,
}

_LABELS: Dict[EventType, str] = {
    EventType.EXECUTE_FILE: "Execute File",
    EventType.START_SERVER: "Start Server",
    EventType.RUN_COMMAND: "Run Command",
    EventType.STOP_COMMAND: "Stop Command",
    EventType.WARN_COMMAND: "Warn Command",
}


@dataclass(frozen=True)
class Event:
    """A one-shot, time-triggered action against a server's session.

    Attributes:
        event_type: Which action this is.
        server: The server the action targets. Shared, never modified.
        time: Time of day the event fires; always its next occurrence.
        args: Arguments stored with the event row.
        controller: Session controller used when the event runs.
    """

    event_type: EventType
    server: GameServer
    time: datetime.time
    args: Tuple[str, ...] = ()
    controller: Optional[SessionController] = field(
        default=None, compare=False, repr=False
    )

    def describe(self) -> str:
        """Human readable label, e.g. ``Start Server``."""
        return _LABELS[self.event_type]

    def assemble(self) -> Payload:
        """Builds the payload for this event.

        Raises:
            EventAssemblyError: If the command or executable is empty.
            IndexError: If `args` is too short for the event type.
        """
        payload = _ASSEMBLERS[self.event_type](self)
        if isinstance(payload, LaunchPayload):
            if not payload.executable:
                raise EventAssemblyError(
                    f"Event [{self.describe()}] for server {self.server.sid}: "
                    "the executable cannot be empty."
                )
        elif not payload.text:
            raise EventAssemblyError(
                f"Event [{self.describe()}] for server {self.server.sid}: "
                "the command cannot be empty."
            )
        return payload

    def run(self, cancel_event: Optional[threading.Event] = None) -> None:
        """Performs the event against the server's session.

        Starting a session that already exists is logged and skipped.
        Any other session error propagates to the caller.

        Args:
            cancel_event: Set when the event is cancelled while running; the
                session controller then stops between backend calls.
        """
        if self.controller is None:
            raise MissingArgumentError(
                f"Event [{self.describe()}] has no session controller to run with."
            )

        payload = self.assemble()
        session_name = self.server.session_name

        if isinstance(payload, LaunchPayload):
            try:
                self.controller.start_session(
                    session_name,
                    payload.executable,
                    payload.args,
                    cancel_event=cancel_event,
                )
            except SessionExistsError:
                logger.warning(
                    f"Event [{self.describe()}] - The session '{session_name}' was not "
                    "started because it is already active."
                )
                return
            logger.info(
                f"Event [{self.describe()}] - Session '{session_name}' started."
            )
        else:
            self.controller.send_command(
                session_name, payload.text, cancel_event=cancel_event
            )
            logger.info(
                f"Event [{self.describe()}] - Sent '{payload.text}' to session "
                f"'{session_name}'."
            )


class EventFactory:
    """Builds events from their stored type code, time and arguments."""

    def __init__(self, session_controller: Optional[SessionController]):
        self.session_controller = session_controller

    def build(
        self,
        event_type: int,
        server: GameServer,
        time: datetime.time,
        args: Sequence[str],
    ) -> Event:
        """Returns the event matching `event_type`.

        Args:
            event_type: Stored type code (see `EventType`).
            server: Server the event belongs to.
            time: Time of day the event fires.
            args: Stored arguments. May be empty, never None.

        Raises:
            MissingArgumentError: If `server`, `time` or `args` is None.
            UnsupportedEventTypeError: If `event_type` is unknown.
            InsufficientArgumentsError: If `args` is too short for the type.
            EventAssemblyError: If the payload is empty or the executable
                does not exist.
        """
        if server is None:
            raise MissingArgumentError(
                "The server argument cannot be None. Check the database for the "
                "event being built."
            )
        if time is None:
            raise MissingArgumentError(
                f"The time argument cannot be None (server {server.sid}). Check the "
                "database for the event being built."
            )
        if args is None:
            raise MissingArgumentError(
                f"The args argument cannot be None (server {server.sid}). Check the "
                "database for the event being built."
            )

        try:
            resolved_type = EventType(event_type)
        except ValueError:
            raise UnsupportedEventTypeError(event_type) from None

        event = Event(
            event_type=resolved_type,
            server=server,
            time=time,
            args=tuple(str(arg) for arg in args),
            controller=self.session_controller,
        )

        try:
            payload = event.assemble()
        except IndexError as e:
            raise InsufficientArgumentsError(
                f"Event [{event.describe()}] for server {server.sid} has insufficient "
                f"arguments (got {len(event.args)}). Check the args stored for this event."
            ) from e

        if isinstance(payload, LaunchPayload) and not os.path.exists(
            payload.executable
        ):
            raise EventAssemblyError(
                f"Event [{event.describe()}] for server {server.sid}: file "
                f"'{payload.executable}' does not exist."
            )

        return event
