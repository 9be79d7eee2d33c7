import logging
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Protocol, Tuple

from sqlalchemy import create_engine, delete, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from provisioner.exceptions import PersistenceError
from provisioner.models import Base, Script

logger = logging.getLogger(__name__)


class ScriptBackend(Protocol):
    """What the catalog needs from a persistence layer."""

    def query_all(self) -> List[Tuple[str, str]]:
        ...

    def replace_all(self, records: Iterable[Tuple[str, str]]) -> None:
        ...


class SQLScriptStore:
    """
    SQLAlchemy-backed script table. Every save is a full replace: all rows are
    deleted and the current set reinserted inside one transaction.
    """

    def __init__(self, database_url: Optional[str] = None, engine: Optional[Engine] = None):
        if engine is None:
            if not database_url:
                raise ValueError("database_url or engine is required")
            engine = create_engine(database_url)
        self.engine = engine
        self._session_factory = sessionmaker(bind=self.engine)
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"failed to create scripts table: {exc}") from exc

    def query_all(self) -> List[Tuple[str, str]]:
        try:
            with self._session_factory() as session:
                rows = session.execute(select(Script.name, Script.content)).all()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"failed to load scripts: {exc}") from exc
        return [(name, content) for name, content in rows]

    def replace_all(self, records: Iterable[Tuple[str, str]]) -> None:
        now = datetime.now(timezone.utc)
        session = self._session_factory()
        try:
            session.execute(delete(Script))
            session.add_all(
                [Script(name=name, content=content, created_at=now, updated_at=now) for name, content in records]
            )
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise PersistenceError(f"failed to save scripts: {exc}") from exc
        finally:
            session.close()
        logger.debug("Replaced stored scripts")
