"""
SQLite persistence for the calling layer: user plans, encrypted provider
keys and usage events.

Modules:
  connection   — get_connection() context manager (WAL, busy timeout, Row factory).
  schema       — Idempotent DDL and apply_schema().
  repositories — One repository per table, speaking pydantic models.
"""
