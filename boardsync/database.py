"""Database engine and schema management."""

from sqlalchemy import JSON, create_engine, event
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def build_engine(database_url: str):
    """Create an engine; SQLite gets foreign key enforcement so ON DELETE rules apply."""
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(database_url, connect_args=connect_args, pool_pre_ping=True)

    if database_url.startswith("sqlite"):
        @event.listens_for(engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def init_db(bind) -> None:
    """Create all tables. Production deployments use the alembic migrations instead."""
    from boardsync import models  # noqa: F401 - registers the models on Base

    Base.metadata.create_all(bind=bind)


# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests and single-node setups)
JSONVariant = JSON().with_variant(JSONB(), "postgresql")
