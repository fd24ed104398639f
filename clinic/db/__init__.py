"""Database access for the progress service (SQLAlchemy engine and migrations)."""
