# server_scheduler/error.py
"""Exception hierarchy for Server Scheduler.

Every exception raised on purpose by this package derives from
:class:`SchedulerError`, so callers at the outer edges (the CLI, the
console) can catch one type. The families below decide how an error is
treated at runtime:

- :class:`DataError` subclasses describe malformed servers or event rows.
  They are fatal at construction time and abort the scheduling cycle.
- :class:`SessionError` subclasses come from the session controller.
  ``SessionExistsError`` and ``SessionNotFoundError`` are narrow and the
  event layer decides whether they are recoverable; a
  ``SessionControllerError`` means the backend tool could not be launched
  and stops the whole scheduler.
- ``EventCancelledError`` and ``EventExecutionError`` report the outcome of
  a scheduled event through its handle.
"""


class SchedulerError(Exception):
    """Base class for all errors raised by Server Scheduler."""


class ConfigurationError(SchedulerError):
    """Settings could not be loaded, saved or interpreted."""


# --- Data errors ---


class DataError(SchedulerError):
    """Malformed server or event data. Fatal for the current cycle."""


class InvalidServerError(DataError):
    """A server record has a missing or malformed field."""


class MissingArgumentError(DataError):
    """A required argument was ``None``."""


class UnsupportedEventTypeError(DataError):
    """An event type code has no matching event variant."""

    def __init__(self, event_type, message="Unsupported event type"):
        self.event_type = event_type
        self.message = message
        super().__init__(f"{message}: {event_type}")


class InsufficientArgumentsError(DataError):
    """An event row does not carry enough arguments for its variant."""


class EventAssemblyError(DataError):
    """An event assembled an empty command or an unusable executable."""


class DatabaseError(DataError):
    """Rows could not be read from the database or are malformed."""


# --- Session controller errors ---


class SessionError(SchedulerError):
    """Base class for terminal multiplexer session errors."""

    def __init__(self, session_name, message=None):
        self.session_name = session_name
        self.message = message or "Session error"
        super().__init__(f"{self.message}: {session_name}")


class SessionExistsError(SessionError):
    """A session with the requested name is already running."""

    def __init__(self, session_name, message="Session already exists"):
        super().__init__(session_name, message)


class SessionNotFoundError(SessionError):
    """No session with the requested name is running."""

    def __init__(self, session_name, message="Session does not exist"):
        super().__init__(session_name, message)


class SessionAbortedError(SessionError):
    """A session operation was abandoned because its event was cancelled."""

    def __init__(self, session_name, message="Session operation aborted"):
        super().__init__(session_name, message)


class SessionControllerError(SchedulerError):
    """The multiplexer backend process could not be launched.

    Fatal: the scheduler stops when an event hits it.
    """


class CommandNotFoundError(SessionControllerError):
    """The multiplexer executable could not be found."""

    def __init__(self, command_name, message="Command not found"):
        self.command_name = command_name
        self.message = message
        super().__init__(f"{message}: {command_name}")


# --- Task outcome errors ---


class SchedulerShutdownError(SchedulerError):
    """Work was submitted to a scheduler that no longer accepts it."""


class EventCancelledError(SchedulerError):
    """The scheduled event was cancelled before it produced a result."""


class EventExecutionError(SchedulerError):
    """The scheduled event raised while running.

    The original exception is available as ``__cause__``.
    """
