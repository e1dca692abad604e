"""
Dataset metadata optimization.

Runs heuristics against a freshly loaded table to reclassify its columns:
- dimension detection from the number of distinct values in each column
- date detection, converting text columns declared as dates to native dates

Runs keep no state of their own. Everything is re-derived from the current
metadata, so a failed run can be repeated from the start and only acts on
columns that are still unflagged or unconverted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from sqlalchemy.orm import Session

from datastores.base import DataType, Datastore, Row
from datastores.exceptions import DatastoreError
from metastore.models import ColumnNode, Dataset, TableNode

logger = logging.getLogger(__name__)

# Columns with fewer distinct values than this (and at least one) are dimensions
DIMENSION_CARDINALITY_LIMIT = 50


@dataclass
class OptimizationResult:
    """What one optimization run changed."""

    dataset_id: int
    dimension_columns: list[str] = field(default_factory=list)
    converted_date_columns: list[str] = field(default_factory=list)
    default_date_field: Optional[str] = None


def _distinct_count(rows: list[Row]) -> int:
    for row in rows:
        for value in row.values():
            return int(value) if value is not None else 0
    return 0


def identify_dimensions(
    session: Session,
    dataset: Dataset,
    columns: Sequence[ColumnNode],
    table: TableNode,
    datastore: Datastore,
) -> list[ColumnNode]:
    """Flag low-cardinality columns as dimensions and persist them in one batch.

    Columns whose distinct count cannot be read are logged and skipped.

    Returns:
        The columns newly flagged as dimensions.
    """
    candidates = [c for c in columns if not c.dimension]
    if not candidates:
        return []

    dimension_columns: list[ColumnNode] = []
    for column in candidates:
        query = datastore.build_distinct_count_query(table.name, column.name)
        try:
            count = _distinct_count(datastore.query(query))
        except (DatastoreError, ValueError) as e:
            logger.error(
                f"error while counting the unique values of column {column.name} "
                f"from the table {table.name} of dataset {dataset.id}: {e}"
            )
            continue
        if 0 < count < DIMENSION_CARDINALITY_LIMIT:
            column.dimension = True
            dimension_columns.append(column)

    logger.info(f"have got {len(dimension_columns)} columns that are of type dimension in {table.name}")
    if dimension_columns:
        try:
            dataset.update_columns(session, dimension_columns)
        except DatastoreError:
            logger.error(f"error while updating the dimension status of the columns of the table {table.name}")
            raise
    return dimension_columns


def identify_dates(
    session: Session,
    dataset: Dataset,
    columns: Sequence[ColumnNode],
    table: TableNode,
    datastore: Datastore,
) -> tuple[list[ColumnNode], Optional[ColumnNode]]:
    """Convert declared date columns still stored as text, then anchor the default date field.

    Any conversion failure aborts the run. Columns converted before the
    failure stay converted.

    Returns:
        The converted columns and the column newly set as default date field, if any.
    """
    date_columns = [c for c in columns if c.semantic_type == DataType.DATE]
    if not date_columns:
        return [], None

    try:
        live = {c.name: c for c in datastore.get_column_types(table.name)}
    except DatastoreError:
        logger.error(f"error while fetching the column types of the table {table.name} of dataset {dataset.id}")
        raise

    converted: list[ColumnNode] = []
    for column in date_columns:
        current = live.get(column.name)
        if current is None:
            logger.warning(f"date column {column.name} is missing from the table {table.name}, skipping it")
            continue
        if current.data_type != DataType.STRING:
            continue
        try:
            datastore.convert_column_to_date(table.name, column.name, column.date_format)
        except DatastoreError:
            logger.error(
                f"error while converting the column {column.name} of the table {table.name} "
                f"of dataset {dataset.id} to date with format {column.date_format!r}"
            )
            raise
        converted.append(column)
    logger.info(f"converted {len(converted)} columns of the table {table.name} to dates")

    if not converted or not table.set_default_date_field(converted[0]):
        return converted, None
    try:
        dataset.update_table(session, table)
    except DatastoreError:
        logger.error(f"error while setting the default date field of the table {table.name}")
        raise
    logger.info(f"default date field of the table {table.name} set to {converted[0].name}")
    return converted, converted[0]


def optimize_dataset_metadata(session: Session, dataset_id: int, user_id: int, datastore: Datastore) -> OptimizationResult:
    """Find the dimension columns of a dataset and convert its date columns."""
    logger.info(f"going to optimize the dataset metadata for {dataset_id}")

    dataset = Dataset.get(session, dataset_id, user_id)
    columns = dataset.get_columns(session)
    table = dataset.get_table(session)

    dimensions = identify_dimensions(session, dataset, columns, table, datastore)
    converted, default_field = identify_dates(session, dataset, columns, table, datastore)

    logger.info(f"successfully optimized the dataset metadata for {dataset_id}")
    return OptimizationResult(
        dataset_id=dataset.id,
        dimension_columns=[c.name for c in dimensions],
        converted_date_columns=[c.name for c in converted],
        default_date_field=default_field.name if default_field else None,
    )
