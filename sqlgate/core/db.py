"""Database helpers for building pooled SQLAlchemy engines per data repo."""

from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

from sqlgate.core.config import DatabaseSettings
from sqlgate.core.logging import get_logger, redact_text

logger = get_logger(__name__)


_engines: dict[str, Engine] = {}


def get_engine(settings: DatabaseSettings) -> Engine:
    """Return a cached SQLAlchemy engine for the given repo settings."""
    engine = _engines.get(settings.url)
    if engine is None:
        logger.info(
            "Initialising SQLAlchemy engine for %s (pool_size=%s)",
            redact_text(settings.url),
            settings.pool_size,
        )
        options: dict[str, object] = {"future": True}
        if settings.backend_name != "sqlite":
            options.update(pool_size=settings.pool_size, max_overflow=settings.max_overflow)
        engine = create_engine(settings.url, **options)
        _engines[settings.url] = engine
    return engine


def dispose_engines() -> None:
    """Dispose every cached engine, closing pooled connections."""
    for engine in _engines.values():
        engine.dispose()
    _engines.clear()
