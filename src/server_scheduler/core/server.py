# server_scheduler/core/server.py
"""The immutable record describing one managed game server."""

import re
from dataclasses import dataclass, field

from server_scheduler.config.const import SESSION_COMPONENT_PATTERN
from server_scheduler.error import InvalidServerError

_SESSION_COMPONENT_RE = re.compile(SESSION_COMPONENT_PATTERN)


@dataclass(frozen=True)
class GameServer:
    """A game server as stored in the database.

    Instances are frozen once built, so the same object can be shared by
    every event of a cycle and read from any thread.

    Attributes:
        sid: Unique server id.
        description: Free-form description.
        game: First session name component, e.g. ``minecraft``.
        moniker: Second session name component, e.g. ``survival-1``.
        start_file: Executable that starts the server inside a session.
        stop_command: Console command that stops the server.
        warn_command: Console command template; every ``$TIME`` is replaced
            by the number of minutes left.
        port: Port the server listens on, in ``[0, 65535]``.
        autostart: Whether the server's events are scheduled.
    """

    sid: int
    description: str
    game: str
    moniker: str
    start_file: str
    stop_command: str
    warn_command: str
    port: int
    autostart: bool = False
    session_name: str = field(init=False)

    def __post_init__(self):
        if self.sid is None:
            raise InvalidServerError("Server id cannot be None.")

        for name in (
            "description",
            "game",
            "moniker",
            "start_file",
            "stop_command",
            "warn_command",
        ):
            if getattr(self, name) is None:
                raise InvalidServerError(
                    f"Server {self.sid}: field '{name}' cannot be None."
                )

        for name in ("game", "moniker"):
            value = getattr(self, name)
            if not _SESSION_COMPONENT_RE.match(value):
                raise InvalidServerError(
                    f"Server {self.sid}: field '{name}' must be at least one lowercase "
                    f"alphanumeric character with optional dashes. Got '{value}'"
                )

        if self.port is None or not 0 <= self.port <= 65535:
            raise InvalidServerError(
                f"Server {self.sid}: port must be in the range [0, 65535]. Got {self.port}"
            )

        object.__setattr__(self, "session_name", f"{self.game}_{self.moniker}")
        object.__setattr__(self, "autostart", bool(self.autostart))
