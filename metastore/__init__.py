"""Metadata store: datasets, their columns and tables, and the registered services."""
