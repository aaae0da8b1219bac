"""Storage backends. The core only ever sees the `Storage` interface."""

import logging

from boardsync.config import Settings
from boardsync.storage.base import Storage
from boardsync.storage.memory import MemoryStorage
from boardsync.storage.sql import SQLStorage

log = logging.getLogger(__name__)


def create_storage(settings: Settings) -> Storage:
    """Pick the backend named by `settings.storage_backend`."""
    backend = settings.storage_backend.lower()
    if backend == "memory":
        log.info(f"Using in-memory storage (file: {settings.storage_file or 'none'})")
        return MemoryStorage(settings.storage_file)
    if backend == "sql":
        from sqlalchemy.orm import sessionmaker

        from boardsync.database import build_engine, init_db

        engine = build_engine(settings.database_url)
        init_db(engine)
        log.info(f"Using SQL storage ({engine.url.render_as_string(hide_password=True)})")
        return SQLStorage(sessionmaker(autocommit=False, autoflush=False, bind=engine))
    raise ValueError(f"Unknown storage backend: {settings.storage_backend}")


__all__ = ["Storage", "MemoryStorage", "SQLStorage", "create_storage"]
