from datetime import time
from unittest.mock import MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from server_scheduler.core.events import EventFactory, EventType
from server_scheduler.db.database import db_session_manager
from server_scheduler.db.models import EventModel, EventTypeModel, ServerModel
from server_scheduler.db.repository import ServerRepository
from server_scheduler.error import (
    DatabaseError,
    InsufficientArgumentsError,
    InvalidServerError,
    UnsupportedEventTypeError,
)


@pytest.fixture
def repository(db):
    repository = ServerRepository()
    repository.seed_event_types()
    return repository


def add_server(sid=1, autostart=True, **overrides):
    fields = dict(
        sid=sid,
        description=f"Server {sid}",
        game="minecraft",
        moniker=f"world-{sid}",
        startfile="/srv/start.sh",
        stopcommand="stop",
        warncommand="say $TIME minutes left",
        port=25565 + sid,
        autostart=autostart,
    )
    fields.update(overrides)
    with db_session_manager() as db:
        db.add(ServerModel(**fields))
        db.commit()


def add_event(sid, etype, at, args="[]"):
    with db_session_manager() as db:
        db.add(EventModel(sid=sid, etype=etype, time=at, args=args))
        db.commit()


def test_seed_event_types_is_idempotent(repository):
    repository.seed_event_types()

    with db_session_manager() as db:
        rows = db.query(EventTypeModel).order_by(EventTypeModel.etid).all()
        assert [(row.etid, row.label) for row in rows] == [
            (0, "EXECUTE"),
            (1, "START"),
            (2, "COMMAND"),
            (3, "STOP"),
            (4, "WARN"),
        ]


def test_get_all_servers(repository):
    add_server(2, autostart=False)
    add_server(1)

    servers = repository.get_all_servers()

    assert [s.sid for s in servers] == [1, 2]
    assert servers[0].session_name == "minecraft_world-1"
    assert servers[0].start_file == "/srv/start.sh"
    assert servers[0].autostart is True
    assert [s.sid for s in repository.get_autostart_servers()] == [1]


def test_get_server(repository):
    add_server(3)

    assert repository.get_server(3).port == 25568
    assert repository.get_server(4) is None


def test_invalid_server_row_is_rejected(repository):
    add_server(1, game="Not Valid")

    with pytest.raises(InvalidServerError):
        repository.get_all_servers()


def test_event_rows_are_parsed_and_ordered(repository):
    add_server(1)
    server = repository.get_server(1)
    add_event(1, 3, "18:00:00")
    add_event(1, 4, "17:55:00", '["5"]')
    add_event(1, 1, "06:00:00.250000")

    rows = repository.get_event_rows(server)

    assert [(r.event_type, r.time, r.args) for r in rows] == [
        (1, time(6, 0, 0, 250000), []),
        (4, time(17, 55), ["5"]),
        (3, time(18, 0), []),
    ]


@pytest.mark.parametrize(
    "at, args", [("25:00:00", "[]"), ("noon", "[]"), ("12:00:00", "not json"), ("12:00:00", '{"a": 1}')]
)
def test_malformed_event_rows_are_rejected(repository, at, args):
    add_server(1)
    add_event(1, 2, at, args)

    with pytest.raises(DatabaseError):
        repository.get_event_rows(repository.get_server(1))


def test_get_events_builds_events(repository, fake_controller):
    add_server(1)
    add_event(1, 4, "17:55:00", '["5"]')
    add_event(1, 3, "18:00:00")
    server = repository.get_server(1)

    events = repository.get_events(server, EventFactory(fake_controller))

    assert [e.event_type for e in events] == [
        EventType.WARN_COMMAND,
        EventType.STOP_COMMAND,
    ]
    assert events[0].assemble().text == "say 5 minutes left"


def test_get_events_propagates_factory_errors(repository, fake_controller):
    add_server(1)
    add_event(1, 2, "12:00:00")

    with pytest.raises(InsufficientArgumentsError):
        repository.get_events(repository.get_server(1), EventFactory(fake_controller))


def test_unknown_event_type_in_row(repository, fake_controller):
    add_server(1)
    with db_session_manager() as db:
        db.add(EventTypeModel(etid=9, label="REBOOT"))
        db.commit()
    add_event(1, 9, "12:00:00")

    with pytest.raises(UnsupportedEventTypeError):
        repository.get_events(repository.get_server(1), EventFactory(fake_controller))


def test_database_failures_become_database_errors():
    session = MagicMock()
    session.query.side_effect = OperationalError("SELECT", {}, Exception("locked"))
    manager = MagicMock()
    manager.return_value.__enter__.return_value = session

    repository = ServerRepository(session_manager=manager)

    with pytest.raises(DatabaseError):
        repository.get_all_servers()
