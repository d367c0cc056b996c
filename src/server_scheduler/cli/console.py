# server_scheduler/cli/console.py
"""
Line-oriented interactive console that runs beside the control loop.

Lets an operator start, stop or message a server right now, and end the
program gracefully (``exit``) or immediately (``kill``). Commands become
regular events and are handed to the scheduler's worker, so they never run
at the same time as a scheduled event.
"""

import datetime
import logging
import shlex
import threading
from typing import Callable, Dict, List

from server_scheduler.cli.utils import (
    _ERROR_PREFIX,
    _INFO_PREFIX,
    _OK_PREFIX,
    _WARN_PREFIX,
    format_server_line,
)
from server_scheduler.core.events import EventType
from server_scheduler.error import SchedulerError

logger = logging.getLogger(__name__)

HELP_TEXT = """Available commands:
  help                         Show this help.
  servers                      List all servers.
  start <sid>                  Start a server's session.
  stop <sid>                   Send the stop command to a server.
  warn <sid> <minutes>         Send the warn command to a server.
  cmd <sid> <text...>          Send a line of text to a server.
  exec <sid> <path> [args...]  Launch a file in a server's session.
  exit | quit                  Shut down after running events finish.
  kill                         Shut down immediately."""


# Commands whose trailing text is not tokenized.
RAW_TEXT_COMMANDS = {"cmd"}


class ServerConsole:
    """Reads commands from stdin until stopped or told to exit."""

    def __init__(
        self,
        callback,
        repository,
        event_factory,
        input_func: Callable[[str], str] = input,
        output: Callable[[str], None] = print,
        prompt: str = "> ",
    ):
        self.callback = callback
        self.repository = repository
        self.event_factory = event_factory
        self._input = input_func
        self._output = output
        self.prompt = prompt
        self._stopped = threading.Event()

        self._commands: Dict[str, Callable[[List[str]], None]] = {
            "help": self._cmd_help,
            "servers": self._cmd_servers,
            "start": self._cmd_start,
            "stop": self._cmd_stop,
            "warn": self._cmd_warn,
            "cmd": self._cmd_send,
            "exec": self._cmd_exec,
            "exit": self._cmd_exit,
            "quit": self._cmd_exit,
            "kill": self._cmd_kill,
        }

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def stop(self) -> None:
        """Makes `run()` return after the current line."""
        self._stopped.set()

    def run(self) -> None:
        logger.debug("Console started.")
        while not self.stopped:
            try:
                line = self._input(self.prompt)
            except EOFError:
                logger.info("Console input closed.")
                self._cmd_exit([])
                break
            if self.stopped:
                break
            self.handle_line(line)
        logger.debug("Console stopped.")

    def handle_line(self, line: str) -> None:
        """Parses and runs one command line. Errors are printed, never raised."""
        stripped = line.strip()
        if not stripped:
            return

        name = stripped.split(None, 1)[0].lower()
        if name in RAW_TEXT_COMMANDS:
            # The text after the server id is sent exactly as typed.
            args = stripped.split(None, 2)[1:]
        else:
            try:
                args = shlex.split(stripped)[1:]
            except ValueError as e:
                self._output(f"{_ERROR_PREFIX}Could not parse input: {e}")
                return

        command = self._commands.get(name)
        if command is None:
            self._output(
                f"{_WARN_PREFIX}Unknown command '{name}'. Type 'help' for a list."
            )
            return

        try:
            command(args)
        except SchedulerError as e:
            logger.warning(f"Console command '{name}' failed: {e}")
            self._output(f"{_ERROR_PREFIX}{e}")
        except (ValueError, IndexError):
            self._output(
                f"{_ERROR_PREFIX}Invalid arguments for '{name}'. Type 'help' for usage."
            )

    # --- Commands ---

    def _cmd_help(self, args: List[str]) -> None:
        self._output(HELP_TEXT)

    def _cmd_servers(self, args: List[str]) -> None:
        servers = self.repository.get_all_servers()
        if not servers:
            self._output(f"{_INFO_PREFIX}No servers configured.")
            return
        for server in servers:
            self._output(format_server_line(server))

    def _cmd_start(self, args: List[str]) -> None:
        self._submit(EventType.START_SERVER, args[0], [])

    def _cmd_stop(self, args: List[str]) -> None:
        self._submit(EventType.STOP_COMMAND, args[0], [])

    def _cmd_warn(self, args: List[str]) -> None:
        self._submit(EventType.WARN_COMMAND, args[0], [args[1]])

    def _cmd_send(self, args: List[str]) -> None:
        if len(args) < 2:
            raise IndexError("text missing")
        self._submit(EventType.RUN_COMMAND, args[0], [args[1]])

    def _cmd_exec(self, args: List[str]) -> None:
        if len(args) < 2:
            raise IndexError("path missing")
        self._submit(EventType.EXECUTE_FILE, args[0], args[1:])

    def _cmd_exit(self, args: List[str]) -> None:
        self._output(f"{_INFO_PREFIX}Shutting down after running events finish...")
        self.stop()
        self.callback.shutdown()

    def _cmd_kill(self, args: List[str]) -> None:
        self._output(f"{_WARN_PREFIX}Shutting down immediately...")
        self.stop()
        self.callback.shutdown_now()

    def _submit(self, event_type: EventType, sid: str, event_args: List[str]) -> None:
        server = self.repository.get_server(int(sid))
        if server is None:
            self._output(f"{_ERROR_PREFIX}No server with id {sid}.")
            return

        event = self.event_factory.build(
            event_type, server, datetime.datetime.now().time(), event_args
        )
        self.callback.schedule_now(event)
        self._output(
            f"{_OK_PREFIX}Queued [{event.describe()}] for session "
            f"'{server.session_name}'."
        )
