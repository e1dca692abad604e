#!/usr/bin/env python3
"""
Bulk-load a CSV extract into a dataset's warehouse table, then optionally
optimize the dataset metadata (dimension and date detection).

Usage:
  python scripts/load_csv.py --service-id 1 --dataset-id 7 --user-id 3 \
      --file ./groceries.csv --create-table --optimize

The dataset's columns (from the metadata store) define the table layout.
METADATA_DATABASE_URL must be set (in .env or Key Vault).
"""
import argparse
import logging
import os
import sys

from sqlalchemy import create_engine

from dataset import optimize_dataset_metadata
from datastores.exceptions import DatastoreError
from datastores.services import Service
from metastore import db
from metastore.models import Dataset
from scripts.keyvault_loader import configure_logging, load_env, require_env

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Load a CSV into a dataset table and optimize its metadata")
    parser.add_argument("--service-id", type=int, required=True, help="Registered datastore service to load into")
    parser.add_argument("--dataset-id", type=int, required=True)
    parser.add_argument("--user-id", type=int, required=True, help="Owner of the dataset")
    parser.add_argument("--file", required=True, help="Local CSV file with a header row")
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument("--append", action="store_true", help="Keep existing rows and add the new ones")
    mode.add_argument("--create-table", action="store_true", help="Create the table before loading")
    parser.add_argument("--optimize", action="store_true", help="Identify dimensions and dates after loading")
    parser.add_argument("--staging-mode", choices=("local", "scp"), help="Override DATASTORE_STAGING_MODE")
    return parser


def run(args: argparse.Namespace) -> int:
    with db.session_scope() as session:
        service = Service.get(session, args.service_id)
        dataset = Dataset.get(session, args.dataset_id, args.user_id)
        columns = [c.to_column() for c in dataset.get_columns(session)]
        table = dataset.get_table(session)

        with service.datastore() as store:
            rows = store.bulk_load(
                args.file,
                table.name,
                columns,
                append=args.append,
                create_table=args.create_table,
            )
            print(f"Loaded {rows} rows into {table.name}")

            if args.optimize:
                result = optimize_dataset_metadata(session, dataset.id, args.user_id, store)
                print(f"Dimensions: {', '.join(result.dimension_columns) or '-'}")
                print(f"Converted date columns: {', '.join(result.converted_date_columns) or '-'}")
                if result.default_date_field:
                    print(f"Default date field: {result.default_date_field}")
    return 0


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    load_env()
    configure_logging()
    if args.staging_mode:
        os.environ["DATASTORE_STAGING_MODE"] = args.staging_mode

    engine = create_engine(require_env("METADATA_DATABASE_URL"), pool_pre_ping=True)
    db.set_engine(engine)
    try:
        return run(args)
    except (DatastoreError, ValueError) as e:
        logger.error(f"loading {args.file} failed: {e}")
        print(f"ERROR: {e}", file=sys.stderr)
        return 1
    finally:
        engine.dispose()


if __name__ == "__main__":
    raise SystemExit(main())
