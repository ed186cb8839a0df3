"""Embedded SQLite store for chat sessions and messages.

The store owns a single SQLAlchemy unit of work. It is opened once per
process and used from the thread that owns it; there is no locking.
A durable store that cannot be opened or reset degrades to an in-memory
database so the application stays usable.
"""

from pathlib import Path
from typing import Any, List, Optional, Sequence, Type, TypeVar

import structlog
from sqlalchemy import create_engine, event, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..domain.models import Base, ChatSession, Message

logger = structlog.get_logger()

T = TypeVar("T")


class StoreError(Exception):
    """Raised when the store cannot open or persist changes."""


def _enable_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _create_engine(path: Optional[Path]) -> Engine:
    if path is None:
        engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        path.parent.mkdir(parents=True, exist_ok=True)
        engine = create_engine(
            f"sqlite:///{path}", connect_args={"check_same_thread": False}
        )
    event.listen(engine, "connect", _enable_foreign_keys)
    Base.metadata.create_all(engine)
    return engine


class Store:
    """Schema-defined store with cascading delete from sessions to messages."""

    def __init__(self, engine: Engine, path: Optional[Path], fell_back: bool = False) -> None:
        self._engine = engine
        self._factory = sessionmaker(bind=engine, expire_on_commit=False)
        self._session: Session = self._factory()
        self.path = path
        self.fell_back = fell_back

    @property
    def engine(self) -> Engine:
        return self._engine

    @property
    def in_memory(self) -> bool:
        return self.path is None

    @classmethod
    def open(cls, path: Optional[Path] = None, in_memory: bool = False) -> "Store":
        """Open (or create) the store, falling back to memory on failure."""
        if in_memory or path is None:
            return cls(cls._open_memory(), None)

        path = Path(path).expanduser()
        try:
            engine = _create_engine(path)
        except (SQLAlchemyError, OSError) as e:
            logger.error("store_open_failed", path=str(path), error=str(e))
            return cls(cls._open_memory(), None, fell_back=True)

        logger.info("store_opened", path=str(path))
        return cls(engine, path)

    @staticmethod
    def _open_memory() -> Engine:
        try:
            engine = _create_engine(None)
        except SQLAlchemyError as e:
            logger.critical("store_memory_open_failed", error=str(e))
            raise StoreError(f"Unable to create in-memory store: {e}") from e
        logger.info("store_opened", path=":memory:")
        return engine

    def insert(self, entity: Any) -> None:
        """Stage an entity for insertion."""
        self._session.add(entity)

    def delete(self, entity: Any) -> None:
        """Stage an entity for deletion."""
        self._session.delete(entity)

    def commit(self) -> None:
        """Flush staged mutations.

        On failure the unit of work is rolled back and StoreError is raised.
        In-memory entities may no longer match the database afterwards, so
        callers should re-query.
        """
        try:
            self._session.commit()
        except SQLAlchemyError as e:
            self._session.rollback()
            logger.error("store_commit_failed", error=str(e))
            raise StoreError(str(e)) from e

    def query(
        self,
        model: Type[T],
        *criteria: Any,
        order_by: Any = None,
        limit: Optional[int] = None,
        options: Sequence[Any] = (),
    ) -> List[T]:
        """Run a select and return a fully materialized list.

        ``options`` are loader options such as ``selectinload`` applied to
        the statement.
        """
        stmt = select(model)
        if options:
            stmt = stmt.options(*options)
        if criteria:
            stmt = stmt.where(*criteria)
        if order_by is not None:
            if isinstance(order_by, (list, tuple)):
                stmt = stmt.order_by(*order_by)
            else:
                stmt = stmt.order_by(order_by)
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self._session.scalars(stmt).all())

    def reset(self) -> None:
        """Delete every record and recreate the underlying storage."""
        try:
            for message in self.query(Message):
                self.delete(message)
            for session in self.query(ChatSession):
                self.delete(session)
            self.commit()
        except (SQLAlchemyError, StoreError) as e:
            logger.warning("store_reset_delete_failed", error=str(e))

        self._session.close()
        self._engine.dispose()
        try:
            if self.path is not None:
                self.path.unlink(missing_ok=True)
            self._engine = _create_engine(self.path)
        except (SQLAlchemyError, OSError) as e:
            logger.error("store_reset_fallback", path=str(self.path), error=str(e))
            self._engine = self._open_memory()
            self.path = None
            self.fell_back = True
        self._factory = sessionmaker(bind=self._engine, expire_on_commit=False)
        self._session = self._factory()
        logger.info("store_reset", in_memory=self.in_memory)

    def health_check(self) -> bool:
        """Return False when either entity type cannot be queried."""
        try:
            self.query(ChatSession, limit=1)
            self.query(Message, limit=1)
        except SQLAlchemyError as e:
            logger.error("store_health_check_failed", error=str(e))
            self._session.rollback()
            return False
        return True

    def close(self) -> None:
        self._session.close()
        self._engine.dispose()
