"""Pydantic models shared across the engine, validator and calling layer."""
