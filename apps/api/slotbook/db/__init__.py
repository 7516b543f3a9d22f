"""Database layer: engine, sessions, ORM models."""
