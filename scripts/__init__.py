"""Command line entry points and environment loading."""
