"""Database Configuration for TrackBridge."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from types import TracebackType

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from trackbridge import __file__ as package_file
from trackbridge.exceptions import DataPathError

__all__ = ["TrackBridgeDB", "get_database"]

ALEMBIC_DIR = Path(package_file).resolve().parent.parent / "alembic"


class TrackBridgeDB:
    """Database manager for TrackBridge.

    Creates the SQLite database inside the data directory, registers the ORM
    models and runs pending Alembic migrations on construction.

    Can be used as a context manager to automatically close the database session.
    """

    def __init__(self, data_path: Path) -> None:
        """Initializes the database manager.

        Args:
            data_path (Path): Directory where the database should be stored

        Raises:
            DataPathError: If data_path exists but is a file instead of a directory
        """
        self.data_path = data_path
        self.db_path = data_path / "trackbridge.db"

        self.engine = self._setup_db()
        self._SessionLocal = sessionmaker(
            bind=self.engine,
            autoflush=False,
            autocommit=False,
            expire_on_commit=False,
            future=True,
        )
        self._session: Session | None = None
        self._do_migrations()

    @property
    def url(self) -> str:
        """SQLAlchemy URL of the database file."""
        return f"sqlite:///{self.db_path}"

    def _setup_db(self) -> Engine:
        """Creates the data directory and a configured SQLAlchemy engine.

        Returns:
            Engine: Configured SQLAlchemy engine instance

        Raises:
            DataPathError: If data_path exists but is a file instead of a directory
        """
        import trackbridge.models.db  # noqa: F401

        if not self.data_path.exists():
            self.data_path.mkdir(parents=True, exist_ok=True)
        elif self.data_path.is_file():
            raise DataPathError(
                f"The path '{self.data_path}' is a file, please delete it first "
                "or choose a different data folder path"
            )

        engine = create_engine(
            self.url,
            connect_args={"check_same_thread": False},
            pool_pre_ping=True,
            future=True,
        )

        @event.listens_for(engine, "connect")
        def _set_sqlite_pragma(dbapi_connection, _connection_record):
            cur = dbapi_connection.cursor()
            try:
                cur.execute("PRAGMA journal_mode=WAL;")
                cur.execute("PRAGMA synchronous=NORMAL;")
                cur.execute("PRAGMA temp_store=MEMORY;")
            finally:
                cur.close()

        return engine

    def _do_migrations(self) -> None:
        """Upgrade the schema to the latest Alembic revision."""
        from alembic import command
        from alembic.config import Config

        cfg = Config()
        cfg.set_main_option("script_location", str(ALEMBIC_DIR))
        cfg.set_main_option("sqlalchemy.url", self.url)

        command.upgrade(cfg, "head")

    def close(self) -> None:
        """Close the open session and dispose of the engine's connections."""
        if self._session is not None:
            self._session.close()
            self._session = None
        self.engine.dispose()

    def __enter__(self) -> TrackBridgeDB:
        """Enters the context manager, returning the database instance."""
        self._session = self._SessionLocal()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Close the session opened for this context, if any."""
        if self._session is not None:
            self._session.close()
            self._session = None

    @property
    def session(self) -> Session:
        """Return the current SQLAlchemy session, creating it if needed."""
        if self._session is None:
            self._session = self._SessionLocal()
        return self._session


@lru_cache(maxsize=1)
def get_database() -> TrackBridgeDB:
    """Get the application database stored in the configured data path.

    Returns:
        TrackBridgeDB: The shared database manager
    """
    from trackbridge.config.settings import get_config

    return TrackBridgeDB(get_config().data_path)
