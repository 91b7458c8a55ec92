"""SQLite persistence for the backlog."""
