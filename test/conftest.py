import threading

import pytest

from server_scheduler.core.server import GameServer
from server_scheduler.core.sessions import SessionController
from server_scheduler.error import SessionExistsError, SessionNotFoundError
from server_scheduler.db import database


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    """
    Points the data directory at a temporary location so no test reads or
    writes the real user data directory.
    """
    test_data_dir = tmp_path / "test_data"
    test_data_dir.mkdir()
    monkeypatch.setenv("SERVER_SCHEDULER_DATA_DIR", str(test_data_dir))
    yield test_data_dir


@pytest.fixture
def db():
    """A fresh in-memory database for each test."""
    database.initialize_database("sqlite://")
    yield database
    database.Base.metadata.drop_all(bind=database.engine)
    database.engine.dispose()
    database.engine = None
    database.SessionLocal = None
    database._TABLES_CREATED = False


class FakeSessionController(SessionController):
    """Keeps sessions in memory instead of shelling out."""

    command_name = "fake"

    def __init__(self):
        super().__init__("/usr/bin/fake")
        self.sessions = set()
        self.started = []
        self.sent = []
        self.terminate_calls = 0
        self.launch_error = None
        self.cancel_events = []
        self._lock = threading.Lock()

    def _exists_command(self, session_name):
        raise AssertionError("not used")

    def _start_command(self, session_name, executable, args):
        raise AssertionError("not used")

    def _send_commands(self, session_name, text):
        raise AssertionError("not used")

    def session_exists(self, session_name):
        with self._lock:
            return session_name in self.sessions

    def start_session(self, session_name, executable, args=(), cancel_event=None):
        with self._lock:
            self.cancel_events.append(cancel_event)
            if self.launch_error is not None:
                raise self.launch_error
            if session_name in self.sessions:
                raise SessionExistsError(session_name)
            self.sessions.add(session_name)
            self.started.append((session_name, executable, tuple(args)))

    def send_command(self, session_name, text, cancel_event=None):
        with self._lock:
            self.cancel_events.append(cancel_event)
            if self.launch_error is not None:
                raise self.launch_error
            if session_name not in self.sessions:
                raise SessionNotFoundError(session_name)
            self.sent.append((session_name, text))

    def terminate_active(self):
        with self._lock:
            self.terminate_calls += 1
        return 0


@pytest.fixture
def fake_controller():
    return FakeSessionController()


@pytest.fixture
def start_file(tmp_path):
    path = tmp_path / "start.sh"
    path.write_text("#!/bin/sh\n")
    return str(path)


@pytest.fixture
def make_server(start_file):
    """Factory for valid `GameServer` records."""

    def _make_server(**overrides):
        fields = dict(
            sid=1,
            description="Test server",
            game="minecraft",
            moniker="survival-1",
            start_file=start_file,
            stop_command="stop",
            warn_command="say There are $TIME minute(s) left, $TIME!",
            port=25565,
            autostart=True,
        )
        fields.update(overrides)
        return GameServer(**fields)

    return _make_server
