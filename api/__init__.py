"""HTTP API for the datastore toolkit."""
