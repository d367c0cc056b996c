"""Reads servers and their event rows from the database."""

import datetime
import json
import logging
from typing import Callable, ContextManager, List, NamedTuple, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.events import Event, EventFactory, EventType
from ..core.server import GameServer
from ..error import DatabaseError
from .database import db_session_manager
from .models import EventModel, EventTypeModel, ServerModel

logger = logging.getLogger(__name__)

EVENT_TYPE_LABELS = {
    EventType.EXECUTE_FILE: "EXECUTE",
    EventType.START_SERVER: "START",
    EventType.RUN_COMMAND: "COMMAND",
    EventType.STOP_COMMAND: "STOP",
    EventType.WARN_COMMAND: "WARN",
}


class EventRow(NamedTuple):
    """An event as stored, before it is turned into an `Event`."""

    eid: int
    event_type: int
    time: datetime.time
    args: List[str]


def _to_game_server(row: ServerModel) -> GameServer:
    return GameServer(
        sid=row.sid,
        description=row.description,
        game=row.game,
        moniker=row.moniker,
        start_file=row.startfile,
        stop_command=row.stopcommand,
        warn_command=row.warncommand,
        port=row.port,
        autostart=row.autostart,
    )


def _parse_time(eid: int, value: str) -> datetime.time:
    try:
        return datetime.time.fromisoformat(value)
    except (TypeError, ValueError) as e:
        raise DatabaseError(
            f"Event {eid}: could not parse time of day from {value!r}."
        ) from e


def _parse_args(eid: int, value: Optional[str]) -> List[str]:
    try:
        args = json.loads(value if value is not None else "[]")
    except ValueError as e:
        raise DatabaseError(
            f"Event {eid}: could not parse JSON from the args field. Got {value!r}."
        ) from e
    if not isinstance(args, list):
        raise DatabaseError(
            f"Event {eid}: the args field must be a JSON array. Got {value!r}."
        )
    return args


class ServerRepository:
    """Queries servers and events, returning domain objects.

    Any database failure or malformed row raises a `DataError`; the caller
    is expected to abort the cycle rather than schedule a partial set.
    """

    def __init__(
        self,
        session_manager: Callable[[], ContextManager[Session]] = db_session_manager,
    ):
        self._session_manager = session_manager

    def get_all_servers(self) -> List[GameServer]:
        """Returns every server, ordered by id."""
        try:
            with self._session_manager() as db:
                rows = db.query(ServerModel).order_by(ServerModel.sid).all()
                return [_to_game_server(row) for row in rows]
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to query servers: {e}") from e

    def get_autostart_servers(self) -> List[GameServer]:
        """Returns the servers whose events should be scheduled."""
        return [server for server in self.get_all_servers() if server.autostart]

    def get_server(self, sid: int) -> Optional[GameServer]:
        try:
            with self._session_manager() as db:
                row = db.get(ServerModel, sid)
                return _to_game_server(row) if row is not None else None
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to query server {sid}: {e}") from e

    def get_event_rows(self, server: GameServer) -> List[EventRow]:
        """Returns the stored events of `server`, ordered by time of day."""
        try:
            with self._session_manager() as db:
                rows = (
                    db.query(EventModel)
                    .filter(EventModel.sid == server.sid)
                    .order_by(EventModel.time, EventModel.eid)
                    .all()
                )
                raw = [(row.eid, row.etype, row.time, row.args) for row in rows]
        except SQLAlchemyError as e:
            raise DatabaseError(
                f"Failed to query events for server {server.sid}: {e}"
            ) from e

        return [
            EventRow(eid, etype, _parse_time(eid, time), _parse_args(eid, args))
            for eid, etype, time, args in raw
        ]

    def get_events(self, server: GameServer, factory: EventFactory) -> List[Event]:
        """Builds the events of `server` with `factory`."""
        return [
            factory.build(row.event_type, server, row.time, row.args)
            for row in self.get_event_rows(server)
        ]

    def seed_event_types(self) -> None:
        """Inserts the event type labels that are missing."""
        try:
            with self._session_manager() as db:
                existing = {row.etid for row in db.query(EventTypeModel).all()}
                for event_type, label in EVENT_TYPE_LABELS.items():
                    if int(event_type) not in existing:
                        db.add(EventTypeModel(etid=int(event_type), label=label))
                db.commit()
        except SQLAlchemyError as e:
            raise DatabaseError(f"Failed to seed event types: {e}") from e
        logger.debug("Event types seeded.")
