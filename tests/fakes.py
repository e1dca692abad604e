"""Test doubles for the SQLAlchemy engine, the staging transport and a datastore backend."""

import re
from contextlib import contextmanager
from pathlib import Path

from datastores.base import Column, DataType, Datastore
from datastores.exceptions import ConversionError, QueryError
from datastores.staging import StagedFile


class FakeResult:
    def __init__(self, rows=(), keys=(), rowcount=-1):
        self._rows = list(rows)
        self._keys = list(keys)
        self.rowcount = rowcount

    def keys(self):
        return list(self._keys)

    def __iter__(self):
        return iter(self._rows)

    def fetchall(self):
        return list(self._rows)


class FakeConnection:
    def __init__(self, engine):
        self.engine = engine
        self._options = {}

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    @contextmanager
    def begin(self):
        try:
            yield self
        except BaseException:
            self.engine.rollbacks += 1
            raise
        self.engine.commits += 1

    def execution_options(self, **options):
        self._options = options
        return self

    def exec_driver_sql(self, statement, parameters=None):
        self.engine.statements.append(statement)
        self.engine.params.append(parameters)
        self.engine.options.append(self._options)
        self._options = {}
        return self.engine.result_for(statement)

    def execute(self, clause, parameters=None):
        statement = str(clause)
        self.engine.statements.append(statement)
        self.engine.params.append(parameters)
        return self.engine.result_for(statement)


class FakeEngine:
    """Records every statement; responses are picked by the first matching SQL fragment."""

    def __init__(self):
        self.statements = []
        self.params = []
        self.options = []
        self.responses = []
        self.commits = 0
        self.rollbacks = 0
        self.disposed = False
        self.connect_error = None

    def respond(self, fragment, response):
        self.responses.append((fragment, response))

    def result_for(self, statement):
        for fragment, response in self.responses:
            if fragment in statement:
                if isinstance(response, BaseException):
                    raise response
                return response
        return FakeResult()

    def connect(self):
        if self.connect_error is not None:
            raise self.connect_error
        return FakeConnection(self)

    def dispose(self):
        self.disposed = True


class RecordingStager:
    def __init__(self, directory="/srv/staging", stage_error=None, remove_error=None):
        self.directory = directory
        self.stage_error = stage_error
        self.remove_error = remove_error
        self.staged = []
        self.removed = []

    def stage(self, file_path, table_name):
        if self.stage_error is not None:
            raise self.stage_error
        path = f"{self.directory}/{table_name}.csv"
        staged = StagedFile(server_path=path, location=path)
        self.staged.append((file_path, staged))
        return staged

    def remove(self, staged):
        self.removed.append(staged)
        if self.remove_error is not None:
            raise self.remove_error


class FakeDatastore(Datastore):
    """In-memory backend: distinct counts and live column types are set up by the test."""

    def __init__(self, distinct_counts=None, column_types=None, failing_counts=(), failing_conversions=()):
        self.distinct_counts = dict(distinct_counts or {})
        self.column_types = dict(column_types or {})
        self.failing_counts = set(failing_counts)
        self.failing_conversions = set(failing_conversions)
        self.queries = []
        self.conversions = []
        self.loads = []
        self.closed = False

    def quote_identifier(self, name):
        return '"' + name.replace('"', '""') + '"'

    def bulk_load(self, file_path, table_name, columns, append=False, create_table=False):
        self.loads.append((file_path, table_name, list(columns), append, create_table))
        if create_table:
            self.column_types = {c.name: DataType.STRING if c.data_type == DataType.DATE else c.data_type for c in columns}
        lines = Path(file_path).read_text(encoding="utf-8").splitlines()
        return max(len(lines) - 1, 0)

    def delete_table(self, table_name, missing_ok=False):
        self.column_types.clear()

    def query(self, sql_text, *args):
        self.queries.append(sql_text)
        match = re.search(r'COUNT\(DISTINCT "((?:[^"]|"")+)"\)', sql_text)
        name = match.group(1).replace('""', '"')
        if name in self.failing_counts:
            raise QueryError(f"query failed: {sql_text}")
        return [{"count": str(self.distinct_counts.get(name, 0))}]

    def get_column_types(self, table_name):
        return [Column(name=name, data_type=data_type) for name, data_type in self.column_types.items()]

    def convert_column_to_date(self, table_name, column_name, date_format):
        if column_name in self.failing_conversions:
            raise ConversionError("values do not parse", table=table_name, column=column_name)
        self.conversions.append((table_name, column_name, date_format))
        self.column_types[column_name] = DataType.DATE

    def close(self):
        self.closed = True
