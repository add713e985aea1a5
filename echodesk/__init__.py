"""SQLite storage for coding agents, tasks, sessions, alerts and runtime issues."""

__version__ = "0.1.0"