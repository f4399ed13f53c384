# stack_engine/infrastructure/postgres/database.py

"""SQLAlchemy engine and session factories for the deployment store."""

from functools import lru_cache
from typing import Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from stack_engine.infrastructure.postgres.config import get_database_settings


# ============================================
# Base for ORM models
# ============================================
Base = declarative_base()


# ============================================
# Engine configuration
# ============================================
def create_db_engine(database_url: Optional[str] = None) -> Engine:
    """
    Create a SQLAlchemy engine.

    Without ``database_url`` the PostgreSQL settings are used (pooled,
    ``search_path`` pinned to public). Any other URL gets SQLAlchemy's
    defaults, which is what tests use with SQLite.
    """
    if database_url is not None and not database_url.startswith("postgresql"):
        return create_engine(database_url, pool_pre_ping=True)

    settings = get_database_settings()
    engine = create_engine(
        database_url or settings.database_url,
        echo=settings.echo_sql,
        pool_pre_ping=True,
        pool_size=settings.pool_size,
        max_overflow=settings.max_overflow,
        pool_timeout=settings.pool_timeout,
        pool_recycle=settings.pool_recycle,
    )

    @event.listens_for(engine, "connect")
    def set_search_path(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("SET search_path TO public")
        cursor.close()

    return engine


@lru_cache
def get_engine() -> Engine:
    """Process-wide production engine, created on first use."""
    return create_db_engine()


# ============================================
# Session factory
# ============================================
def get_session_factory(engine_instance: Optional[Engine] = None) -> sessionmaker:
    """Session factory bound to ``engine_instance`` (default: production engine)."""
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=engine_instance or get_engine(),
        expire_on_commit=False
    )


# ============================================
# Schema helpers (tests; production uses Alembic)
# ============================================
def init_db(engine_instance: Engine) -> None:
    Base.metadata.create_all(bind=engine_instance)


def drop_db(engine_instance: Engine) -> None:
    Base.metadata.drop_all(bind=engine_instance)
