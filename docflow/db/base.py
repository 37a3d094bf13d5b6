"""
docflow Database Base — SQLAlchemy declarative base, mixins, and engine registry.

Provides:
- Base: SQLAlchemy declarative base for all docflow tables
- AuditMixin: created_at, updated_at
- SoftDeleteMixin: is_deleted, deleted_at
- EngineRegistry: named engines (one per configured database)
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import Boolean, Column, DateTime, Engine, create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all docflow models."""
    pass


class AuditMixin:
    """Adds created_at and updated_at columns."""
    created_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
    )
    updated_at = Column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )


class SoftDeleteMixin:
    """Adds is_deleted and deleted_at columns for soft delete support."""
    is_deleted = Column(Boolean, default=False, nullable=False, index=True)
    deleted_at = Column(DateTime(timezone=True), nullable=True)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite returns naive datetimes; everything docflow stores is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class EngineRegistry:
    """
    Named SQLAlchemy engines, each with its session factory.

    Usage:
        registry = EngineRegistry()
        registry.register("docflow", "postgresql://...")
        factory = registry.get_session_factory("docflow")
    """

    def __init__(self):
        self._entries: Dict[str, Tuple[Engine, sessionmaker]] = {}

    def register(
        self,
        name: str,
        url: str,
        pool_size: int = 10,
        max_overflow: int = 20,
        pool_timeout: int = 30,
        pool_recycle: int = 1800,
        pool_pre_ping: bool = True,
        **kwargs: Any,
    ) -> Engine:
        """Create the engine for *url* under *name*, disposing any engine it replaces."""
        if url.startswith("sqlite"):
            # SQLite pools take no sizing options; in-memory DBs must share one connection
            kwargs.setdefault("connect_args", {"check_same_thread": False})
            if url in ("sqlite://", "sqlite:///:memory:"):
                kwargs.setdefault("poolclass", StaticPool)
        else:
            kwargs.update(
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_timeout=pool_timeout,
                pool_recycle=pool_recycle,
                pool_pre_ping=pool_pre_ping,
            )
        engine = create_engine(url, **kwargs)
        self.dispose(name)
        self._entries[name] = (engine, sessionmaker(bind=engine, expire_on_commit=False))
        return engine

    def _entry(self, name: str) -> Tuple[Engine, sessionmaker]:
        try:
            return self._entries[name]
        except KeyError:
            raise KeyError(f"Engine '{name}' not registered. Available: {self.registered_names}") from None

    def get(self, name: str) -> Engine:
        return self._entry(name)[0]

    def get_session_factory(self, name: str) -> sessionmaker:
        return self._entry(name)[1]

    def dispose(self, name: Optional[str] = None) -> None:
        """Close the pool of one engine, or of all of them."""
        names = [name] if name else self.registered_names
        for key in names:
            entry = self._entries.pop(key, None)
            if entry is not None:
                entry[0].dispose()

    @property
    def registered_names(self) -> List[str]:
        return list(self._entries)


engine_registry = EngineRegistry()
