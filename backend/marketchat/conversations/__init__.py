"""Conversation and message persistence (DuckDB) plus the /messages HTTP API."""
