"""Dataset, column and table records of the metadata store."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, Sequence

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Mapped, Session, mapped_column

from datastores.base import Column, DataType
from datastores.exceptions import MetadataError
from metastore.db import Base

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_uid() -> str:
    return str(uuid.uuid4())


def _commit(session: Session, message: str) -> None:
    try:
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        logger.error(f"{message}: {e}")
        raise MetadataError(message) from e


class Dataset(Base):
    """A dataset owns one warehouse table and its columns."""

    __tablename__ = "datasets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(Integer, index=True)
    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    @classmethod
    def get(cls, session: Session, dataset_id: int, user_id: int) -> "Dataset":
        """Fetch a dataset owned by user_id. Raises MetadataError if it does not exist."""
        try:
            dataset = session.scalar(select(cls).where(cls.id == dataset_id, cls.user_id == user_id))
        except SQLAlchemyError as e:
            logger.error(f"error while finding the dataset {dataset_id} in the metadata store: {e}")
            raise MetadataError(f"could not fetch dataset {dataset_id}") from e
        if dataset is None:
            logger.error(f"dataset {dataset_id} not found for user {user_id}")
            raise MetadataError(f"dataset {dataset_id} not found for user {user_id}")
        return dataset

    def get_columns(self, session: Session) -> list["ColumnNode"]:
        """Columns of the dataset in creation order."""
        try:
            return list(
                session.scalars(
                    select(ColumnNode).where(ColumnNode.dataset_id == self.id).order_by(ColumnNode.id)
                )
            )
        except SQLAlchemyError as e:
            logger.error(f"error while finding the columns of dataset {self.id}: {e}")
            raise MetadataError(f"could not fetch the columns of dataset {self.id}") from e

    def get_table(self, session: Session) -> "TableNode":
        try:
            table = session.scalar(select(TableNode).where(TableNode.dataset_id == self.id))
        except SQLAlchemyError as e:
            logger.error(f"error while finding the table of dataset {self.id}: {e}")
            raise MetadataError(f"could not fetch the table of dataset {self.id}") from e
        if table is None:
            logger.error(f"dataset {self.id} has no table")
            raise MetadataError(f"dataset {self.id} has no table")
        return table

    def update_columns(self, session: Session, columns: Sequence["ColumnNode"]) -> list["ColumnNode"]:
        """Persist a batch of columns of this dataset in a single commit."""
        columns = list(columns)
        if not columns:
            return columns
        foreign = [c.name for c in columns if c.dataset_id != self.id]
        if foreign:
            message = f"columns {', '.join(foreign)} do not belong to dataset {self.id}"
            logger.error(message)
            raise MetadataError(message)
        session.add_all(columns)
        _commit(session, f"could not update {len(columns)} columns of dataset {self.id}")
        return columns

    def update_table(self, session: Session, table: "TableNode") -> "TableNode":
        if table.dataset_id != self.id:
            message = f"table {table.name} does not belong to dataset {self.id}"
            logger.error(message)
            raise MetadataError(message, table=table.name)
        session.add(table)
        _commit(session, f"could not update the table {table.name} of dataset {self.id}")
        return table


class ColumnNode(Base):
    """Column metadata: semantic type, date format and dimension flag."""

    __tablename__ = "dataset_columns"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    uid: Mapped[str] = mapped_column(String(36), unique=True, default=_new_uid)
    dataset_id: Mapped[int] = mapped_column(ForeignKey("datasets.id", ondelete="CASCADE"), index=True)
    name: Mapped[str] = mapped_column(String(255))
    data_type: Mapped[str] = mapped_column(String(16), default=DataType.STRING.value)
    date_format: Mapped[str] = mapped_column(String(64), default="")
    dimension: Mapped[bool] = mapped_column(Boolean, default=False)

    @property
    def semantic_type(self) -> DataType:
        return DataType.parse(self.data_type)

    def to_column(self) -> Column:
        """Column descriptor handed to the datastore for loading."""
        return Column(name=self.name, data_type=self.semantic_type, date_format=self.date_format or "")


class TableNode(Base):
    """The warehouse table of a dataset."""

    __tablename__ = "dataset_tables"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    uid: Mapped[str] = mapped_column(String(36), unique=True, default=_new_uid)
    dataset_id: Mapped[int] = mapped_column(ForeignKey("datasets.id", ondelete="CASCADE"), unique=True)
    name: Mapped[str] = mapped_column(String(255))
    default_date_field_uid: Mapped[Optional[str]] = mapped_column(
        ForeignKey("dataset_columns.uid", ondelete="SET NULL"), nullable=True
    )

    def set_default_date_field(self, column: ColumnNode) -> bool:
        """Anchor time series on column unless a default date field is already set."""
        if self.default_date_field_uid:
            return False
        self.default_date_field_uid = column.uid
        return True
