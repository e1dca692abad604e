import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from metastore import db
from metastore.models import ColumnNode, Dataset, TableNode


@pytest.fixture(autouse=True)
def _no_keyvault(monkeypatch):
    # Keep tests on local settings only
    monkeypatch.delenv("KEYVAULT_NAME", raising=False)
    monkeypatch.delenv("DATASTORE_STAGING_MODE", raising=False)


@pytest.fixture()
def metadata_engine():
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    db.set_engine(engine)
    db.init_schema()
    yield engine
    engine.dispose()


@pytest.fixture()
def session(metadata_engine):
    with db.session_scope() as s:
        yield s


@pytest.fixture()
def make_dataset(session):
    """Create a dataset with its table and columns. Columns are dicts of ColumnNode fields."""

    def _make(columns, table_name="groceries", user_id=1):
        dataset = Dataset(user_id=user_id, name=table_name, description="")
        session.add(dataset)
        session.flush()
        nodes = [ColumnNode(dataset_id=dataset.id, **spec) for spec in columns]
        session.add_all(nodes)
        session.add(TableNode(dataset_id=dataset.id, name=table_name))
        session.commit()
        return dataset

    return _make
