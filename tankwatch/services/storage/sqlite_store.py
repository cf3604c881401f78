"""
SQLite State Store
Embedded-database backend for monitor snapshots using SQLAlchemy
"""
import json
import logging
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from tankwatch.core.error_handling import PersistenceError, ErrorCode
from tankwatch.models.snapshot import Base, Snapshot
from tankwatch.services.storage.state_store import StateStore

logger = logging.getLogger(__name__)


class SqliteStateStore(StateStore):
    """
    SQLite snapshot store with WAL mode enforcement.

    Ensures:
    - Write-Ahead Logging (WAL) mode so the front end can read while we write
    - One row per snapshot, replaced inside a single transaction
    - Session safety with context managers
    """

    def __init__(self, db_path: str = "data/tankwatch.db"):
        """
        Initialize SQLite store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._engine = create_engine(
            f"sqlite:///{self.db_path}",
            connect_args={"check_same_thread": False, "timeout": 30.0},
            echo=False,
        )
        event.listen(self._engine, "connect", self._configure_connection)

        self._SessionLocal = sessionmaker(
            bind=self._engine,
            autocommit=False,
            autoflush=False
        )
        Base.metadata.create_all(self._engine)
        logger.info(f"SQLite state store ready: {self.db_path} (WAL mode enabled)")

    @staticmethod
    def _configure_connection(dbapi_connection, connection_record) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    @contextmanager
    def get_session(self):
        """
        Provide SQLAlchemy ORM session.

        The session automatically commits on success and rolls back on exception.
        """
        session = self._SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def load_snapshot(self, name: str, default: Any = None) -> Any:
        try:
            with self.get_session() as session:
                row: Optional[Snapshot] = session.get(Snapshot, name)
                if row is None:
                    return default
                payload = row.payload
            return json.loads(payload)
        except (SQLAlchemyError, ValueError) as e:
            logger.error(f"Error reading snapshot '{name}' from {self.db_path}: {e}")
            return default

    def save_snapshot(self, name: str, data: Any) -> None:
        try:
            payload = json.dumps(data)
            with self.get_session() as session:
                session.merge(Snapshot(name=name, payload=payload, updated_at=time.time()))
        except (SQLAlchemyError, TypeError, ValueError) as e:
            raise PersistenceError(
                f"Error writing snapshot '{name}' to {self.db_path}: {e}",
                details={'snapshot': name, 'db_path': self.db_path},
                error_code=ErrorCode.SNAPSHOT_WRITE_ERROR
            ) from e

    def close(self) -> None:
        """Dispose the SQLAlchemy engine"""
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            logger.info("SQLite state store closed")
