# stack_engine/observers/sql.py
"""SQL observers. Connection strings are SQLAlchemy URLs."""

import logging
from typing import Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from stack_engine.core.errors import ObserverIOError
from stack_engine.observers.base import BaseObserver
from stack_engine.observers.models import ObserverConfig, ObserverType

logger = logging.getLogger(__name__)

EXTENDED_PROPERTY_QUERY = """
    SELECT CAST(value AS NVARCHAR(4000))
    FROM sys.extended_properties
    WHERE class = 0 AND name = :name
"""


class SqlObserver(BaseObserver):
    """Runs one scalar query per check."""

    def __init__(self, config: ObserverConfig, engine: Optional[Engine] = None):
        super().__init__(config)
        self._engine = engine

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            self._engine = create_engine(self.config.connection_string, pool_pre_ping=True)
        return self._engine

    def _scalar(self, statement: str, params=None):
        try:
            with self.engine.connect() as conn:
                return conn.execute(text(statement), params or {}).scalar()
        except SQLAlchemyError as e:
            raise ObserverIOError(f"SQL check failed: {e}") from e

    def dispose(self) -> None:
        if self._engine is not None:
            self._engine.dispose()


class SqlQueryObserver(SqlObserver):
    type = ObserverType.SQL_QUERY

    def read_value(self) -> str:
        value = self._scalar(self.config.query)
        if value is None:
            raise ObserverIOError("Query returned no value")
        return str(value).strip()


class SqlExtendedPropertyObserver(SqlObserver):
    """Reads a database-level extended property (SQL Server)."""

    type = ObserverType.SQL_EXTENDED_PROPERTY

    def read_value(self) -> str:
        value = self._scalar(EXTENDED_PROPERTY_QUERY, {"name": self.config.property_name})
        if value is None:
            raise ObserverIOError(f"Extended property '{self.config.property_name}' not found")
        return str(value).strip()
