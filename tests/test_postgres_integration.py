"""Runs against a real PostgreSQL server.

Set DATASTORE_TEST_URL (SQLAlchemy URL of a scratch database) and
DATASTORE_TEST_STAGING_DIR (a directory both this process and the database
server can read, e.g. on the same machine).
"""

import os
import uuid

import pytest
from sqlalchemy import create_engine

from datastores.base import Column, DataType
from datastores.postgres import PostgresDatastore
from datastores.staging import LocalStager

pytestmark = pytest.mark.skipif(
    not (os.environ.get("DATASTORE_TEST_URL") and os.environ.get("DATASTORE_TEST_STAGING_DIR")),
    reason="DATASTORE_TEST_URL and DATASTORE_TEST_STAGING_DIR are not set",
)

COLUMNS = [
    Column("item"),
    Column("brand"),
    Column("quantity", DataType.INT),
    Column("bought_on", DataType.DATE, "%d/%m/%Y"),
]


def _write_csv(path, rows):
    lines = ["item,brand,quantity,bought_on"] + [",".join(r) for r in rows]
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return str(path)


def _count(store, table):
    return int(store.query(f"SELECT COUNT(*) AS n FROM {store.quote_identifier(table)}")[0]["n"])


@pytest.fixture()
def store():
    engine = create_engine(os.environ["DATASTORE_TEST_URL"])
    datastore = PostgresDatastore(engine, LocalStager(os.environ["DATASTORE_TEST_STAGING_DIR"]))
    yield datastore
    datastore.close()


@pytest.fixture()
def table(store):
    name = f"groceries_{uuid.uuid4().hex[:8]}"
    yield name
    store.delete_table(name, missing_ok=True)


def test_load_replace_append_convert_delete(store, table, tmp_path):
    first = _write_csv(tmp_path / "first.csv", [("milk", "acme", "2", "01/02/2020"), ("eggs", "acme", "12", "03/02/2020")])
    second = _write_csv(tmp_path / "second.csv", [("bread", "zenith", "1", "04/02/2020")])

    assert store.bulk_load(first, table, COLUMNS, create_table=True) == 2
    live = store.get_column_types(table)
    assert [(c.name, c.data_type) for c in live] == [
        ("item", DataType.STRING),
        ("brand", DataType.STRING),
        ("quantity", DataType.INT),
        ("bought_on", DataType.STRING),
    ]
    assert not os.path.exists(os.path.join(os.environ["DATASTORE_TEST_STAGING_DIR"], f"{table}.csv"))

    assert store.bulk_load(second, table, COLUMNS) == 1
    assert _count(store, table) == 1

    assert store.bulk_load(first, table, COLUMNS, append=True) == 2
    assert _count(store, table) == 3

    store.convert_column_to_date(table, "bought_on", "%d/%m/%Y")
    assert {c.name: c.data_type for c in store.get_column_types(table)}["bought_on"] == DataType.DATE
    assert _count(store, table) == 3
    assert store.query(f'SELECT MIN("bought_on") AS d FROM "{table}"')[0]["d"] == "2020-02-01"

    store.delete_table(table)
    assert store.get_column_types(table) == []


def test_percent_in_column_name(store, table, tmp_path):
    path = tmp_path / "discounts.csv"
    path.write_text('item,discount %\nmilk,5\neggs,5\nbread,10\n', encoding="utf-8")
    columns = [Column("item"), Column("discount %", DataType.INT)]

    assert store.bulk_load(str(path), table, columns, create_table=True) == 3
    count_sql = store.build_distinct_count_query(table, "discount %")
    assert list(store.query(count_sql)[0].values()) == ["2"]
    assert store.query(f"SELECT item FROM \"{table}\" WHERE item LIKE 'm%'") == [{"item": "milk"}]
