"""PostgreSQL schema and engine."""
