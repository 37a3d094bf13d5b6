"""
docflow Database Session Management.

init_db() is the single entry point for database initialisation (CLI,
embedding applications, tests). It registers the "docflow" engine in the
global EngineRegistry and keeps a module-level session factory for
session_scope().
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Generator, Optional

from sqlalchemy.orm import Session, sessionmaker

from docflow.db.base import Base, engine_registry

# Imported for its side effect: registers the tables on Base.metadata
from docflow.db import models as _models  # noqa: F401

logger = logging.getLogger("docflow.db.session")

ENGINE_NAME = "docflow"

_session_factory: Optional[sessionmaker] = None


def init_db(
    db_url: str,
    create_tables: bool = False,
    pool_size: int = 10,
    max_overflow: int = 20,
    pool_timeout: int = 30,
    pool_recycle: int = 1800,
    pool_pre_ping: bool = True,
    echo: bool = False,
) -> sessionmaker:
    """
    Register the docflow engine and return its session factory.

    Args:
        db_url:        SQLAlchemy URL (postgresql://... in production,
                       sqlite:// for tests).
        create_tables: Run Base.metadata.create_all(). For ``docflow init-db``
                       and tests; production databases are migrated separately.

    Returns:
        A ``sessionmaker`` bound to the engine (expire_on_commit=False).
    """
    global _session_factory

    engine = engine_registry.register(
        ENGINE_NAME, db_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_timeout=pool_timeout,
        pool_recycle=pool_recycle,
        pool_pre_ping=pool_pre_ping,
        echo=echo,
    )

    if create_tables:
        Base.metadata.create_all(engine)
        logger.info("Created docflow tables on %s", engine.url.render_as_string(hide_password=True))

    _session_factory = engine_registry.get_session_factory(ENGINE_NAME)
    return _session_factory


def init_db_from_config(config, create_tables: bool = False) -> sessionmaker:
    db = config.database
    return init_db(
        db.url,
        create_tables=create_tables,
        pool_size=db.pool_size,
        max_overflow=db.max_overflow,
        pool_timeout=db.pool_timeout,
        pool_recycle=db.pool_recycle,
        pool_pre_ping=db.pool_pre_ping,
        echo=db.echo,
    )


def get_session_factory() -> sessionmaker:
    if _session_factory is None:
        raise RuntimeError("Database not initialized. Call init_db() first.")
    return _session_factory


@contextmanager
def session_scope(factory: Optional[sessionmaker] = None) -> Generator[Session, None, None]:
    """
    Context manager for sessions with auto-commit/rollback.

    Usage:
        with session_scope() as session:
            session.add(row)
    """
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def close_db() -> None:
    """Dispose the docflow engine. Used during shutdown and between tests."""
    global _session_factory
    _session_factory = None
    if ENGINE_NAME in engine_registry.registered_names:
        engine_registry.dispose(ENGINE_NAME)
