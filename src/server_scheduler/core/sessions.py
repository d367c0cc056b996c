# server_scheduler/core/sessions.py
"""
Controls named, detached terminal multiplexer sessions hosting server processes.

A session controller can start a session running an executable, inject a line
of input into a running session, and check whether a session exists. Every
operation shells out to the multiplexer (`screen` or `tmux`), blocks until
that process exits and judges success only by its exit code. Failures inside
the hosted session are not observable from here.

Known quirk: both `screen -S <name> -Q` and `tmux has-session -t <name>`
match session names by prefix, so checking `game_srv` reports True while only
`game_srv2` is running. This is left as the backend reports it.

A running operation is cancelled cooperatively: it checks its cancel event
before and after every backend call, and `terminate_active()` kills the
backend call in flight. Either way the operation raises
`SessionAbortedError` instead of acting on a half-finished check.
"""

import os
import shutil
import logging
import threading
import subprocess
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence, Set

import psutil

from server_scheduler.error import (
    CommandNotFoundError,
    ConfigurationError,
    MissingArgumentError,
    SessionAbortedError,
    SessionControllerError,
    SessionExistsError,
    SessionNotFoundError,
)

logger = logging.getLogger(__name__)

DEFAULT_KILL_TIMEOUT_SEC = 5.0


class SessionController(ABC):
    """Capability contract for managing multiplexer sessions.

    Subclasses only describe the command lines of their backend; running
    them, tracking the in-flight process and interpreting exit codes is
    shared here.
    """

    #: Name of the backend executable, used when resolving it on PATH.
    command_name = ""

    def __init__(
        self,
        executable_path: str,
        kill_timeout: float = DEFAULT_KILL_TIMEOUT_SEC,
    ):
        if not executable_path:
            raise MissingArgumentError("Multiplexer executable path cannot be empty.")
        self.executable_path = executable_path
        self.kill_timeout = kill_timeout
        self._active: Set[subprocess.Popen] = set()
        self._active_lock = threading.Lock()

    # --- Backend command lines ---

    @abstractmethod
    def _exists_command(self, session_name: str) -> List[str]:
        """Command whose exit code is 0 when the session exists."""

    @abstractmethod
    def _start_command(
        self, session_name: str, executable: str, args: List[str]
    ) -> List[str]:
        """Command that starts a detached session running `executable`."""

    @abstractmethod
    def _send_commands(self, session_name: str, text: str) -> List[List[str]]:
        """Commands that type `text` followed by Enter into the session."""

    # --- Public operations ---

    def start_session(
        self,
        session_name: str,
        executable: str,
        args: Sequence[str] = (),
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        """Starts a detached session running `executable` with `args`.

        Args:
            session_name: Name the session is registered under.
            executable: Program or script run inside the session.
            args: Extra arguments for `executable`.
            cancel_event: Checked before every backend call; once set, the
                operation stops with `SessionAbortedError`.

        Raises:
            MissingArgumentError: If `session_name` or `executable` is empty.
            SessionExistsError: If a session with that name already exists.
            SessionAbortedError: If cancelled, or the backend was killed.
            SessionControllerError: If the backend could not be launched.
        """
        if not session_name or not executable:
            raise MissingArgumentError(
                "Session name and executable cannot be empty."
            )
        if args is None:
            raise MissingArgumentError("Session arguments cannot be None.")

        if self.session_exists(session_name, cancel_event):
            raise SessionExistsError(session_name)

        command = self._start_command(session_name, executable, list(args))
        return_code = self._run_backend(command, session_name, cancel_event)
        logger.debug(
            f"Start of session '{session_name}' returned exit code {return_code}."
        )

    def send_command(
        self,
        session_name: str,
        text: str,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        """Types `text` into the session and presses Enter.

        Raises:
            MissingArgumentError: If `session_name` is empty or `text` is None.
            SessionNotFoundError: If the session does not exist.
            SessionAbortedError: If cancelled, or the backend was killed.
            SessionControllerError: If the backend could not be launched.
        """
        if not session_name or text is None:
            raise MissingArgumentError("Session name and command cannot be empty.")

        if not self.session_exists(session_name, cancel_event):
            raise SessionNotFoundError(session_name)

        for command in self._send_commands(session_name, text):
            return_code = self._run_backend(command, session_name, cancel_event)
            logger.debug(
                f"Send to session '{session_name}' returned exit code {return_code}."
            )

    def session_exists(
        self, session_name: str, cancel_event: Optional[threading.Event] = None
    ) -> bool:
        """Checks whether a session exists. Subject to prefix matching.

        Raises:
            SessionAbortedError: If cancelled, or the check was killed. A
                killed check says nothing about the session.
        """
        command = self._exists_command(session_name)
        return self._run_backend(command, session_name, cancel_event) == 0

    def terminate_active(self) -> int:
        """Forcefully stops any backend process currently in flight.

        The backend call itself cannot be interrupted, so this terminates the
        OS process and kills it if it outlives `kill_timeout`. Processes the
        backend started (the session itself) are left alone.

        Returns:
            The number of processes that were signalled.
        """
        with self._active_lock:
            processes = list(self._active)

        signalled = 0
        for process in processes:
            if process.poll() is not None:
                continue
            logger.warning(
                f"Terminating in-flight multiplexer process (PID {process.pid})."
            )
            try:
                proc = psutil.Process(process.pid)
                proc.terminate()
                _, alive = psutil.wait_procs([proc], timeout=self.kill_timeout)
                for p in alive:
                    logger.warning(f"Process {p.pid} did not terminate. Killing it.")
                    p.kill()
                signalled += 1
            except psutil.NoSuchProcess:
                logger.debug(f"Process {process.pid} exited before it was signalled.")
        return signalled

    # --- Internals ---

    def _run_backend(
        self,
        command: List[str],
        session_name: str,
        cancel_event: Optional[threading.Event],
    ) -> int:
        if cancel_event is not None and cancel_event.is_set():
            raise SessionAbortedError(session_name)
        return_code = self._run_process(command)
        # Negative: the backend was killed by a signal, e.g. terminate_active().
        if return_code < 0 or (cancel_event is not None and cancel_event.is_set()):
            raise SessionAbortedError(session_name)
        return return_code

    def _run_process(self, command: List[str]) -> int:
        """Runs `command`, blocking until it exits, and returns its exit code.

        Raises:
            SessionControllerError: If the process could not be launched.
        """
        logger.debug(f"Executing: {' '.join(command)}")
        try:
            process = subprocess.Popen(
                command,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
            )
        except OSError as e:
            raise SessionControllerError(
                f"Failed to launch '{command[0]}': {e}"
            ) from e

        with self._active_lock:
            self._active.add(process)
        try:
            return process.wait()
        finally:
            with self._active_lock:
                self._active.discard(process)


def _escape_stuff(text: str) -> str:
    """Escapes the characters `screen -X stuff` would interpret.

    `^X` is read as a control character, a backslash starts an escape
    sequence and `$VAR` is expanded, so each gets a literal backslash.
    """
    text = text.replace("\\", "\\\\")
    for char in ("^", "$"):
        text = text.replace(char, "\\" + char)
    return text


class ScreenSessionController(SessionController):
    """Session controller backed by GNU screen."""

    command_name = "screen"

    def _exists_command(self, session_name: str) -> List[str]:
        return [self.executable_path, "-S", session_name, "-Q", "select", "."]

    def _start_command(
        self, session_name: str, executable: str, args: List[str]
    ) -> List[str]:
        # -A adapts the window size, -dm starts detached.
        return [self.executable_path, "-AdmS", session_name, executable, *args]

    def _send_commands(self, session_name: str, text: str) -> List[List[str]]:
        return [
            [
                self.executable_path,
                "-p",
                "0",
                "-S",
                session_name,
                "-X",
                "stuff",
                f"{_escape_stuff(text)}\r",
            ]
        ]


class TmuxSessionController(SessionController):
    """Session controller backed by tmux."""

    command_name = "tmux"

    def _exists_command(self, session_name: str) -> List[str]:
        return [self.executable_path, "has-session", "-t", session_name]

    def _start_command(
        self, session_name: str, executable: str, args: List[str]
    ) -> List[str]:
        return [
            self.executable_path,
            "new-session",
            "-d",
            "-s",
            session_name,
            executable,
            *args,
        ]

    def _send_commands(self, session_name: str, text: str) -> List[List[str]]:
        # -l sends the text literally so words like "Enter" are not key names.
        return [
            [self.executable_path, "send-keys", "-t", session_name, "-l", text],
            [self.executable_path, "send-keys", "-t", session_name, "Enter"],
        ]


SESSION_CONTROLLERS = {
    "screen": ScreenSessionController,
    "tmux": TmuxSessionController,
}


def create_session_controller(settings) -> SessionController:
    """Builds the session controller selected by the `multiplexer.*` settings.

    Args:
        settings: A `Settings` instance.

    Raises:
        ConfigurationError: If `multiplexer.type` is not supported.
        CommandNotFoundError: If the multiplexer executable cannot be found.
    """
    multiplexer_type = str(settings.get("multiplexer.type", "screen")).lower()
    controller_class = SESSION_CONTROLLERS.get(multiplexer_type)
    if controller_class is None:
        raise ConfigurationError(
            f"Unsupported multiplexer type '{multiplexer_type}'. "
            f"Supported types: {', '.join(sorted(SESSION_CONTROLLERS))}"
        )

    executable_path: Optional[str] = settings.get("multiplexer.path")
    if executable_path:
        executable_path = os.path.expanduser(executable_path)
        if not os.path.isfile(executable_path):
            raise CommandNotFoundError(
                executable_path, "Configured multiplexer executable does not exist"
            )
    else:
        executable_path = shutil.which(controller_class.command_name)
        if not executable_path:
            raise CommandNotFoundError(controller_class.command_name)

    kill_timeout = settings.get("scheduler.kill_timeout_sec", DEFAULT_KILL_TIMEOUT_SEC)
    logger.info(
        f"Using {multiplexer_type} session controller at '{executable_path}'."
    )
    return controller_class(executable_path, kill_timeout=float(kill_timeout))
