"""Datastore backends for loading CSV extracts into a warehouse."""

from typing import Optional, Type

from .base import Column, DataType, Datastore
from .exceptions import DatastoreConnectionError
from .postgres import PostgresDatastore

_DATASTORES = {
    "postgres": PostgresDatastore,
    "postgresql": PostgresDatastore,
}


def get_datastore_class(backend: str) -> Optional[Type[Datastore]]:
    """Get the datastore class for the given backend type.

    Args:
        backend: Backend type string as stored on a service (e.g. postgres).

    Returns:
        Datastore subclass or None if the backend is not supported.
    """
    return _DATASTORES.get((backend or "").strip().lower())


def open_datastore(
    backend: str,
    host: str,
    port: str,
    database: str,
    username: str,
    password: str,
    staging_directory: str,
    staging_mode: Optional[str] = None,
    connect_timeout: int = 10,
) -> Datastore:
    """Resolve a backend type string to a live datastore handle."""
    datastore_cls = get_datastore_class(backend)
    if datastore_cls is None:
        raise DatastoreConnectionError(
            f"unsupported datastore backend {backend!r}; supported: {', '.join(supported_backends())}"
        )
    return datastore_cls.connect(
        host,
        port,
        database,
        username,
        password,
        staging_directory,
        staging_mode=staging_mode,
        connect_timeout=connect_timeout,
    )


def supported_backends() -> tuple:
    """Return tuple of supported backend type strings."""
    return tuple(_DATASTORES.keys())


__all__ = [
    "Column",
    "DataType",
    "Datastore",
    "PostgresDatastore",
    "get_datastore_class",
    "open_datastore",
    "supported_backends",
]
