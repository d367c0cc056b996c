from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .config.settings import Settings
    from .core.events import EventFactory
    from .core.sessions import SessionController
    from .db.repository import ServerRepository


class AppContext:
    """
    A context object that holds application-wide instances.

    Components receive the context (or the pieces of it they need) at
    construction instead of reaching for module-level singletons.
    """

    def __init__(
        self,
        settings: "Settings" | None = None,
        session_controller: "SessionController" | None = None,
        repository: "ServerRepository" | None = None,
    ):
        self.settings: "Settings" | None = settings
        self._session_controller: "SessionController" | None = session_controller
        self._repository: "ServerRepository" | None = repository
        self._event_factory: "EventFactory" | None = None

    def load(self):
        """
        Loads the settings and connects the database.
        """
        from .config.settings import Settings
        from .db import database

        if self.settings is None:
            self.settings = Settings()

        database.initialize_database(self.settings.get("db.url"))
        self.repository.seed_event_types()

    @property
    def session_controller(self) -> "SessionController":
        """
        Lazily builds the session controller selected in the settings.
        """
        if self._session_controller is None:
            from .core.sessions import create_session_controller

            self._session_controller = create_session_controller(self.settings)
        return self._session_controller

    @session_controller.setter
    def session_controller(self, value: "SessionController"):
        self._session_controller = value
        self._event_factory = None

    @property
    def repository(self) -> "ServerRepository":
        """
        Lazily builds the server repository.
        """
        if self._repository is None:
            from .db.repository import ServerRepository

            self._repository = ServerRepository()
        return self._repository

    @repository.setter
    def repository(self, value: "ServerRepository"):
        self._repository = value

    @property
    def event_factory(self) -> "EventFactory":
        """
        Lazily builds an event factory bound to the session controller.
        """
        if self._event_factory is None:
            from .core.events import EventFactory

            self._event_factory = EventFactory(self.session_controller)
        return self._event_factory
