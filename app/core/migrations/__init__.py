"""SQLite schema migrations for runtime state tables."""

from app.core.migrations.runner import apply_migrations

__all__ = ["apply_migrations"]
