"""PostgreSQL datastore."""

import logging
import re
from contextlib import contextmanager
from typing import Any, Iterator, List, Optional, Sequence, Type

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from .base import Column, DataType, Datastore, Row
from .exceptions import (
    ConversionError,
    DatastoreConnectionError,
    DatastoreError,
    LoadError,
    QueryError,
    SchemaError,
    TransferError,
)
from .staging import StagedFile, make_stager

logger = logging.getLogger(__name__)

DEFAULT_DATE_FORMAT = "%Y-%m-%d"

# Date columns are created as text so the load never fails on a bad date;
# convert_column_to_date turns them into DATE afterwards.
_STORAGE_TYPES = {
    DataType.STRING: "text",
    DataType.INT: "bigint",
    DataType.FLOAT: "double precision",
    DataType.DATE: "text",
}

_NATIVE_TYPES = {
    "smallint": DataType.INT,
    "integer": DataType.INT,
    "bigint": DataType.INT,
    "real": DataType.FLOAT,
    "double precision": DataType.FLOAT,
    "numeric": DataType.FLOAT,
    "decimal": DataType.FLOAT,
    "date": DataType.DATE,
}

# Order matters: longer directives before the ones they contain.
_DATE_TOKENS = (
    ("%-d", "FMDD"),
    ("%-m", "FMMM"),
    ("%Y", "YYYY"),
    ("%y", "YY"),
    ("%m", "MM"),
    ("%d", "DD"),
    ("%B", "FMMonth"),
    ("%b", "Mon"),
    ("%j", "DDD"),
    ("%H", "HH24"),
    ("%I", "HH12"),
    ("%M", "MI"),
    ("%S", "SS"),
    ("%p", "AM"),
    ("%%", "%"),
)
_DATE_TOKEN_MAP = dict(_DATE_TOKENS)
_DATE_TOKEN_RE = re.compile("|".join(re.escape(token) for token, _ in _DATE_TOKENS) + r"|%-?.?")

_COLUMN_TYPES_QUERY = text("""
    SELECT column_name, data_type
    FROM information_schema.columns
    WHERE table_name = :table AND table_schema = current_schema()
    ORDER BY ordinal_position
""")


def storage_type(data_type: DataType) -> str:
    """Native column type used when creating a table for a semantic type."""
    return _STORAGE_TYPES.get(DataType.parse(data_type), "text")


def normalize_data_type(native_type: Optional[str]) -> DataType:
    """Map an information_schema data_type to the semantic type. Unknown types are strings."""
    lowered = (native_type or "").strip().lower()
    if lowered.startswith("timestamp"):
        return DataType.DATE
    return _NATIVE_TYPES.get(lowered, DataType.STRING)


def _quote_literal_text(chunk: str) -> str:
    # Letters outside directives would be read as template patterns by to_date;
    # a bare double quote would open a quoted section, so it is backslash-escaped
    return re.sub(
        r'[A-Za-z]+|"',
        lambda m: '\\"' if m.group(0) == '"' else f'"{m.group(0)}"',
        chunk,
    )


def translate_date_format(date_format: Optional[str]) -> str:
    """Translate a strftime-style date format into a PostgreSQL to_date template.

    Args:
        date_format: Format such as "%d/%m/%Y" or "%B %-d, %Y". Empty means ISO dates.

    Returns:
        The PostgreSQL template, e.g. "DD/MM/YYYY".
    """
    fmt = date_format or DEFAULT_DATE_FORMAT
    parts = []
    pos = 0
    for match in _DATE_TOKEN_RE.finditer(fmt):
        token = match.group(0)
        if token not in _DATE_TOKEN_MAP:
            raise ConversionError(f"unsupported date format directive {token!r} in {fmt!r}")
        parts.append(_quote_literal_text(fmt[pos:match.start()]))
        parts.append(_DATE_TOKEN_MAP[token])
        pos = match.end()
    parts.append(_quote_literal_text(fmt[pos:]))
    return "".join(parts)


def _sql_string(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).decode("utf-8", errors="replace")
    return str(value)


def _run(conn: Connection, statement: str, args: Sequence[Any] = ()):
    if args:
        return conn.exec_driver_sql(statement, tuple(args))
    # Without parameters psycopg2 must not %-format the text ("discount %", LIKE 'a%')
    return conn.execution_options(no_parameters=True).exec_driver_sql(statement)


class PostgresDatastore(Datastore):
    """PostgreSQL datastore. CSV files are staged where the server can read them and loaded with COPY."""

    def __init__(self, engine: Engine, stager):
        self.engine: Optional[Engine] = engine
        self.stager = stager

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
    ) -> "PostgresDatastore":
        """Create a datastore with a pooled engine for the given server."""
        url = URL.create(
            "postgresql+psycopg2",
            username=username,
            password=password,
            host=host,
            port=int(port),
            database=database,
        )
        engine = create_engine(
            url,
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,
            connect_args={"connect_timeout": connect_timeout},
        )
        return cls(engine, make_stager(staging_directory, staging_mode))

    def quote_identifier(self, name: str) -> str:
        return '"' + str(name).replace('"', '""') + '"'

    def close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None

    def _require_engine(self) -> Engine:
        if self.engine is None:
            raise DatastoreConnectionError("no live connection to the datastore")
        return self.engine

    @contextmanager
    def _connect(self) -> Iterator[Connection]:
        engine = self._require_engine()
        try:
            conn = engine.connect()
        except SQLAlchemyError as e:
            logger.error(f"error while connecting to the datastore: {e}")
            raise DatastoreConnectionError("could not connect to the datastore") from e
        with conn:
            yield conn

    @contextmanager
    def _transaction(self, error_cls: Type[DatastoreError], table_name: str) -> Iterator[Connection]:
        """Connection with an open transaction, committed on exit and rolled back on error."""
        with self._connect() as conn:
            try:
                with conn.begin():
                    yield conn
            except SQLAlchemyError as e:
                logger.error(f"error while committing the changes to {table_name}: {e}")
                raise error_cls("could not commit the changes", table=table_name) from e

    def _execute(
        self,
        conn: Connection,
        statement: str,
        error_cls: Type[DatastoreError],
        message: str,
        table_name: str,
        column_name: Optional[str] = None,
    ):
        try:
            return _run(conn, statement)
        except SQLAlchemyError as e:
            logger.error(f"{message}: {e}")
            raise error_cls(message, table=table_name, column=column_name) from e

    def build_create_table(self, table_name: str, columns: Sequence[Column]) -> str:
        defs = ", ".join(f"{self.quote_column(c.name)} {storage_type(c.data_type)}" for c in columns)
        return f"CREATE TABLE {self.quote_identifier(table_name)} ({defs})"

    def build_copy(self, table_name: str, columns: Sequence[Column], server_path: str) -> str:
        col_list = ", ".join(self.quote_column(c.name) for c in columns)
        return (
            f"COPY {self.quote_identifier(table_name)} ({col_list}) "
            f"FROM {_sql_string(server_path)} DELIMITER ',' CSV HEADER"
        )

    def bulk_load(
        self,
        file_path: str,
        table_name: str,
        columns: Sequence[Column],
        append: bool = False,
        create_table: bool = False,
    ) -> int:
        if not columns:
            raise SchemaError("at least one column is required to load a csv", table=table_name)
        self._require_engine()

        staged = self.stager.stage(file_path, table_name)
        try:
            rows = self._copy_staged(staged, table_name, columns, append, create_table)
        except Exception:
            self._discard_staged(staged)
            raise
        self.stager.remove(staged)

        logger.info(f"successfully loaded {file_path} into {table_name}, copied no. of rows: {rows}")
        return rows

    def _copy_staged(
        self,
        staged: StagedFile,
        table_name: str,
        columns: Sequence[Column],
        append: bool,
        create_table: bool,
    ) -> int:
        with self._transaction(LoadError, table_name) as conn:
            if create_table:
                logger.info(f"creating the table {table_name} to load the csv")
                self._execute(
                    conn,
                    self.build_create_table(table_name, columns),
                    SchemaError,
                    "error while creating the table for loading the csv",
                    table_name,
                )
            elif not append:
                logger.info(f"removing existing rows from {table_name} before loading")
                self._execute(
                    conn,
                    f"TRUNCATE TABLE {self.quote_identifier(table_name)}",
                    SchemaError,
                    "error while truncating the table for loading the csv",
                    table_name,
                )

            logger.info(f"copying the data from {staged.server_path} to the table {table_name}")
            result = self._execute(
                conn,
                self.build_copy(table_name, columns, staged.server_path),
                LoadError,
                f"error while copying {staged.server_path} into the table",
                table_name,
            )
            return int(result.rowcount)

    def _discard_staged(self, staged: StagedFile) -> None:
        # The load already failed; its error is the one the caller sees
        try:
            self.stager.remove(staged)
        except TransferError as e:
            logger.error(f"staged file {staged.location} was left behind after a failed load: {e}")

    def delete_table(self, table_name: str, missing_ok: bool = False) -> None:
        if_exists = "IF EXISTS " if missing_ok else ""
        with self._transaction(SchemaError, table_name) as conn:
            self._execute(
                conn,
                f"DROP TABLE {if_exists}{self.quote_identifier(table_name)}",
                SchemaError,
                "error while dropping the table",
                table_name,
            )
        logger.info(f"dropped the table {table_name}")

    def query(self, sql_text: str, *args: Any) -> List[Row]:
        with self._connect() as conn:
            try:
                with conn.begin():
                    result = _run(conn, sql_text, args)
                    keys = list(result.keys())
                    return [dict(zip(keys, (_as_text(v) for v in row))) for row in result]
            except SQLAlchemyError as e:
                logger.error(f"error while running the query {sql_text!r}: {e}")
                raise QueryError(f"query failed: {sql_text}") from e

    def get_column_types(self, table_name: str) -> List[Column]:
        with self._connect() as conn:
            try:
                rows = conn.execute(_COLUMN_TYPES_QUERY, {"table": table_name}).fetchall()
            except SQLAlchemyError as e:
                logger.error(f"error while fetching the column types of {table_name}: {e}")
                raise SchemaError("could not fetch the column types", table=table_name) from e
        return [Column(name=str(row[0]), data_type=normalize_data_type(row[1])) for row in rows]

    def convert_column_to_date(self, table_name: str, column_name: str, date_format: str) -> None:
        native_format = translate_date_format(date_format)

        live = {c.name: c for c in self.get_column_types(table_name)}
        current = live.get(column_name)
        if current is None:
            logger.error(f"column {column_name} not found in the table {table_name}")
            raise SchemaError("column not found", table=table_name, column=column_name)
        if current.data_type == DataType.DATE:
            logger.error(f"column {column_name} of {table_name} is already a date column")
            raise ConversionError("column is already a date column", table=table_name, column=column_name)

        qc = self.quote_column(column_name)
        statement = (
            f"ALTER TABLE {self.quote_identifier(table_name)} ALTER COLUMN {qc} "
            f"TYPE DATE USING to_date({qc}, {_sql_string(native_format)})"
        )
        logger.info(f"converting {table_name}.{column_name} to date with format {native_format}")
        with self._transaction(ConversionError, table_name) as conn:
            self._execute(
                conn,
                statement,
                ConversionError,
                f"error while converting the column to date with format {date_format!r}",
                table_name,
                column_name,
            )
