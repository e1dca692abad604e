"""
Datastore base class for the bulk-load / metadata toolkit.

Each backend (currently PostgreSQL only) implements this interface to provide
CSV bulk loading, generic querying, catalog introspection and in-place column
type conversion.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence


class DataType(str, Enum):
    """Semantic data type of a column, shared by every backend."""

    STRING = "string"
    INT = "int"
    FLOAT = "float"
    DATE = "date"

    @classmethod
    def parse(cls, value: Optional[str]) -> "DataType":
        """Parse a stored data type string. Empty or unknown values are strings."""
        if isinstance(value, DataType):
            return value
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.STRING


@dataclass(frozen=True)
class Column:
    """A column as seen by the backend."""

    name: str
    data_type: DataType = DataType.STRING
    date_format: str = ""


Row = Dict[str, Optional[str]]


class Datastore(ABC):
    """Abstract base for datastore backends."""

    @classmethod
    def connect(
        cls,
        host: str,
        port: str,
        database: str,
        username: str,
        password: str,
        staging_directory: str,
        staging_mode: Optional[str] = None,
        connect_timeout: int = 10,
    ) -> "Datastore":
        """Build a datastore connected to the given server."""
        raise NotImplementedError("connect not implemented for this backend")

    @abstractmethod
    def quote_identifier(self, name: str) -> str:
        """Quote a single identifier (table, column, schema)."""
        pass

    def quote_table(self, schema: str, table: str) -> str:
        """Quote schema.table for use in FROM clauses."""
        if schema:
            return f"{self.quote_identifier(schema)}.{self.quote_identifier(table)}"
        return self.quote_identifier(table)

    def quote_column(self, col: str) -> str:
        """Quote a column name."""
        return self.quote_identifier(col)

    def build_distinct_count_query(self, table: str, column: str) -> str:
        """Build SELECT COUNT(DISTINCT col) FROM table."""
        return f"SELECT COUNT(DISTINCT {self.quote_column(column)}) FROM {self.quote_identifier(table)}"

    @abstractmethod
    def bulk_load(
        self,
        file_path: str,
        table_name: str,
        columns: Sequence[Column],
        append: bool = False,
        create_table: bool = False,
    ) -> int:
        """Load a local CSV file into table_name.

        Default behaviour replaces the rows already in the table. With append
        set the new rows are added alongside the existing ones. With
        create_table set the table is created from columns first.

        Returns:
            Number of rows the backend reports as loaded.
        """
        pass

    @abstractmethod
    def delete_table(self, table_name: str, missing_ok: bool = False) -> None:
        """Drop the given table."""
        pass

    @abstractmethod
    def query(self, sql_text: str, *args: Any) -> List[Row]:
        """Run a query and return each row as an ordered {column: text} mapping."""
        pass

    @abstractmethod
    def get_column_types(self, table_name: str) -> List[Column]:
        """Return the live columns of table_name and their normalized data types."""
        pass

    @abstractmethod
    def convert_column_to_date(self, table_name: str, column_name: str, date_format: str) -> None:
        """Alter a text column to a date column, parsing values with date_format."""
        pass

    def close(self) -> None:
        """Release the backend connection. Override if the backend holds one."""
        return None

    def __enter__(self) -> "Datastore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
