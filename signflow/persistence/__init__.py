"""Instance stores and the per-URL store registry."""

from __future__ import annotations

import logging
from typing import Callable, Dict, Optional

from ..config import SignflowConfig, load_config
from ..errors import StoreUnavailable
from .inmemory import InMemoryInstanceStore
from .repository import InstanceStore
from .sqlite import SQLiteInstanceStore

try:  # pragma: no cover - optional dependency
    from .postgres import PostgresInstanceStore
except ImportError:  # pragma: no cover - optional dependency
    PostgresInstanceStore = None  # type: ignore

logger = logging.getLogger(__name__)

MEMORY_URL = "memory://"

# Store used by argument-less ``get_store()`` calls (the CLI swaps it in tests).
_store_instance: InstanceStore | None = None
# One store per database URL, so engines on the same database share it.
_stores: Dict[str, InstanceStore] = {}


def _open_memory(url: str) -> InstanceStore:
    return InMemoryInstanceStore()


def _open_sqlite(url: str) -> InstanceStore:
    path = url.split("://", 1)[1]
    if not path:
        raise StoreUnavailable("sqlite:// URL needs a database path")
    return SQLiteInstanceStore(path)


def _open_postgres(url: str) -> InstanceStore:
    if PostgresInstanceStore is None:
        raise StoreUnavailable(
            "PostgreSQL store needs asyncpg; install signflow[postgres]"
        )
    return PostgresInstanceStore(url)


_OPENERS: Dict[str, Callable[[str], InstanceStore]] = {
    "memory": _open_memory,
    "sqlite": _open_sqlite,
    "postgres": _open_postgres,
    "postgresql": _open_postgres,
}


def _scheme(url: str) -> str:
    scheme, sep, _ = url.partition("://")
    return scheme.lower() if sep else ""


def get_store(
    database_url: Optional[str] = None, config: Optional[SignflowConfig] = None
) -> InstanceStore:
    """Return the instance store for ``database_url``.

    Without an explicit URL the configured ``database_url`` is used (the
    ``SIGNFLOW_DATABASE_URL``/``DATABASE_URL`` overrides are applied by
    :func:`load_config`), and no database at all means an in-memory store.
    Stores are opened once per URL and reused on later calls.

    Raises:
        StoreUnavailable: the URL scheme is unknown or its driver is missing.
    """

    global _store_instance
    if _store_instance is not None and database_url is None and config is None:
        return _store_instance

    if database_url is None:
        database_url = (config or load_config()).database_url
    url = database_url or MEMORY_URL

    store = _stores.get(url)
    if store is None:
        scheme = _scheme(url)
        opener = _OPENERS.get(scheme)
        if opener is None:
            raise StoreUnavailable(f"Unsupported database backend: {scheme or url!r}")
        store = opener(url)
        _stores[url] = store
        logger.info(f"Opened {scheme} instance store")

    _store_instance = store
    return store


__all__ = [
    "InstanceStore",
    "InMemoryInstanceStore",
    "MEMORY_URL",
    "SQLiteInstanceStore",
    "PostgresInstanceStore",
    "get_store",
]
