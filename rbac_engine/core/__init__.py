"""Core infrastructure: configuration, database and logging."""
