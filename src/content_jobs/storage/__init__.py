"""SQLite storage: engine, tables and migrations."""
