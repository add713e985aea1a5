"""SQLite-backed storage for tasks, agents, sessions, alerts and runtime issues."""