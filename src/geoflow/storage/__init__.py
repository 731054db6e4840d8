"""SQLite persistence for workflows, tasks and results."""
