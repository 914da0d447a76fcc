"""Infrastructure helpers: environment, SQLite, throttling and circuit breaking."""
