"""Error taxonomy shared by datastore backends, the metadata store and the optimizer."""

from typing import Optional


class DatastoreError(Exception):
    """Base class for every failure raised by the toolkit."""

    def __init__(self, message: str, table: Optional[str] = None, column: Optional[str] = None):
        super().__init__(message)
        self.table = table
        self.column = column

    def __str__(self) -> str:
        base = super().__str__()
        context = []
        if self.table:
            context.append(f"table={self.table}")
        if self.column:
            context.append(f"column={self.column}")
        if context:
            return f"{base} ({', '.join(context)})"
        return base


class DatastoreConnectionError(DatastoreError):
    """No live backend handle, or the backend refused the connection."""


class TransferError(DatastoreError):
    """Staging the source file (or removing the staged copy) failed."""


class SchemaError(DatastoreError):
    """CREATE / TRUNCATE / DROP or catalog introspection failed."""


class LoadError(DatastoreError):
    """The bulk copy statement failed."""


class QueryError(DatastoreError):
    """A generic read query failed."""


class ConversionError(DatastoreError):
    """A column could not be altered to a date type."""


class MetadataError(DatastoreError):
    """Reading or writing dataset, column, table or service records failed."""
