"""Static driver registry and the central error formatter."""

from __future__ import annotations

from typing import Any, Dict, List

from sqlalchemy.engine import make_url
from sqlalchemy.exc import DBAPIError

from sqlgate.core.errors import ErrorKind
from sqlgate.engines.base import EngineDriver
from sqlgate.engines.default import DefaultDriver
from sqlgate.engines.mysql import MySQLDriver
from sqlgate.engines.postgres import PostgresDriver
from sqlgate.engines.sqlite import SQLiteDriver

_DRIVERS: Dict[str, EngineDriver] = {
    driver.engine_id: driver for driver in (PostgresDriver(), MySQLDriver(), SQLiteDriver(), DefaultDriver())
}

_BACKENDS = {
    "postgresql": "postgres",
    "mysql": "mysql",
    "mariadb": "mysql",
    "sqlite": "sqlite",
}


def get_driver(engine_id: str | None) -> EngineDriver:
    return _DRIVERS.get(engine_id or "default", _DRIVERS["default"])


def driver_for_backend(backend_name: str | None) -> EngineDriver:
    """Map a SQLAlchemy backend name (``postgresql``, ``mysql``...) to its driver."""
    return get_driver(_BACKENDS.get((backend_name or "").lower(), "default"))


def driver_for_url(url: str) -> EngineDriver:
    return driver_for_backend(make_url(url).get_backend_name())


def all_drivers() -> List[EngineDriver]:
    return list(_DRIVERS.values())


def unwrap_error(error: Any) -> Any:
    if isinstance(error, DBAPIError) and error.orig is not None:
        return error.orig
    return error


def _claiming_driver(native: Any, driver: EngineDriver | None) -> EngineDriver:
    if driver is not None and driver.handled_errors() and isinstance(native, driver.handled_errors()):
        return driver
    for candidate in _DRIVERS.values():
        handled = candidate.handled_errors()
        if handled and isinstance(native, handled):
            return candidate
    return _DRIVERS["default"]


def format_error(error: Any, driver: EngineDriver | None = None) -> str:
    """Format a native (or SQLAlchemy-wrapped) error with the driver that claims it."""
    native = unwrap_error(error)
    return _claiming_driver(native, driver).format_error(native)


def classify_error(error: Any, driver: EngineDriver | None = None) -> ErrorKind:
    native = unwrap_error(error)
    return _claiming_driver(native, driver).classify_error(native)
