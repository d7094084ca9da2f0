"""Offline cache database (SQLAlchemy engine, sessions and tables)."""
