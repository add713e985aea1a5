"""SQLite storage: schema, connection handling, tasks, agents and linear issues."""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from typing import Any, TypeVar

from echodesk.db.models import Agent, AgentRow, Task

T = TypeVar("T")

OPEN_SESSION_STATUSES = ("waking", "active", "stalled", "needs_input")

TASK_SELECT_COLUMNS = "id, title, state, updated_at"
AGENT_SELECT_COLUMNS = (
    "id, name, state, provider, display_order, attention_state, task_id, "
    "active_session_id, last_snippet, last_input_required_at, updated_at"
)
MANAGED_SESSION_SELECT_COLUMNS = (
    "id, provider, status, launch_command, launch_args_json, cwd, pid, agent_id, "
    "task_id, last_heartbeat_at, started_at, ended_at, needs_input, input_reason, "
    "last_activity_at, transport, attach_count, failure_reason, metadata_json, "
    "created_at, updated_at"
)
SESSION_ALERT_SELECT_COLUMNS = (
    "id, session_id, agent_id, severity, reason, message, message_enriched, "
    "message_enrichment_status, message_enriched_at, message_enrichment_error, "
    "requires_ack, acknowledged_at, snoozed_until, escalated_at, escalation_count, "
    "resolved_at, created_at, updated_at"
)
RUNTIME_ISSUE_SELECT_COLUMNS = (
    "kind, source, raw_message, enriched_message, enrichment_status, "
    "enrichment_error, first_seen_at, last_seen_at, seen_count, dismissed_until, "
    "resolved_at"
)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS tasks (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    state TEXT NOT NULL DEFAULT 'todo',
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS agents (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    state TEXT NOT NULL DEFAULT 'idle',
    provider TEXT NOT NULL DEFAULT 'opencode',
    display_order INTEGER NOT NULL DEFAULT 0,
    attention_state TEXT NOT NULL DEFAULT 'ok',
    task_id INTEGER REFERENCES tasks(id) ON DELETE SET NULL,
    active_session_id INTEGER,
    last_snippet TEXT,
    last_input_required_at TEXT,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS managed_sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    provider TEXT NOT NULL,
    status TEXT NOT NULL,
    launch_command TEXT NOT NULL,
    launch_args_json TEXT NOT NULL DEFAULT '[]',
    cwd TEXT,
    pid INTEGER,
    agent_id INTEGER REFERENCES agents(id) ON DELETE SET NULL,
    task_id INTEGER REFERENCES tasks(id) ON DELETE SET NULL,
    last_heartbeat_at TEXT,
    started_at TEXT,
    ended_at TEXT,
    needs_input INTEGER NOT NULL DEFAULT 0,
    input_reason TEXT,
    last_activity_at TEXT,
    transport TEXT NOT NULL DEFAULT 'pty',
    attach_count INTEGER NOT NULL DEFAULT 0,
    failure_reason TEXT,
    metadata_json TEXT,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS session_events (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id INTEGER NOT NULL REFERENCES managed_sessions(id) ON DELETE CASCADE,
    event_type TEXT NOT NULL,
    message TEXT,
    payload_json TEXT,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS session_alerts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id INTEGER NOT NULL REFERENCES managed_sessions(id) ON DELETE CASCADE,
    agent_id INTEGER REFERENCES agents(id) ON DELETE SET NULL,
    severity TEXT NOT NULL,
    reason TEXT NOT NULL,
    message TEXT NOT NULL,
    message_enriched TEXT,
    message_enrichment_status TEXT NOT NULL DEFAULT 'pending',
    message_enriched_at TEXT,
    message_enrichment_error TEXT,
    requires_ack INTEGER NOT NULL DEFAULT 1,
    acknowledged_at TEXT,
    snoozed_until TEXT,
    escalated_at TEXT,
    escalation_count INTEGER NOT NULL DEFAULT 0,
    resolved_at TEXT,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS runtime_issues (
    kind TEXT PRIMARY KEY,
    source TEXT NOT NULL,
    raw_message TEXT NOT NULL,
    enriched_message TEXT,
    enrichment_status TEXT NOT NULL DEFAULT 'pending',
    enrichment_error TEXT,
    first_seen_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    last_seen_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    seen_count INTEGER NOT NULL DEFAULT 1,
    dismissed_until TEXT,
    resolved_at TEXT
);

CREATE TABLE IF NOT EXISTS linear_issues (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL,
    state TEXT,
    url TEXT,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_managed_sessions_agent ON managed_sessions(agent_id);
CREATE INDEX IF NOT EXISTS idx_session_events_session ON session_events(session_id);
CREATE INDEX IF NOT EXISTS idx_session_alerts_agent ON session_alerts(agent_id);
CREATE INDEX IF NOT EXISTS idx_session_alerts_session ON session_alerts(session_id);
"""

_REFRESH_ATTENTION_SQL = """
WITH flags AS (
    SELECT
        EXISTS(
            SELECT 1 FROM session_alerts sa
            WHERE sa.agent_id = ?
              AND sa.resolved_at IS NULL
              AND (sa.snoozed_until IS NULL OR sa.snoozed_until <= CURRENT_TIMESTAMP)
              AND LOWER(sa.severity) = 'critical'
        ) AS has_critical_alert,
        EXISTS(
            SELECT 1 FROM session_alerts sa
            WHERE sa.agent_id = ?
              AND sa.resolved_at IS NULL
              AND (sa.snoozed_until IS NULL OR sa.snoozed_until <= CURRENT_TIMESTAMP)
        ) AS has_open_alert,
        EXISTS(
            SELECT 1 FROM managed_sessions ms
            WHERE ms.agent_id = ?
              AND ms.needs_input = 1
              AND ms.status IN ('waking', 'active', 'stalled', 'needs_input')
        ) AS has_input_needed_session
)
UPDATE agents
SET attention_state = CASE
        WHEN (SELECT has_critical_alert FROM flags) = 1 THEN 'blocked'
        WHEN (SELECT has_open_alert FROM flags) = 1
          OR (SELECT has_input_needed_session FROM flags) = 1 THEN 'needs_input'
        ELSE 'ok'
    END,
    last_input_required_at = CASE
        WHEN (SELECT has_open_alert FROM flags) = 1
          OR (SELECT has_input_needed_session FROM flags) = 1
        THEN COALESCE(last_input_required_at, CURRENT_TIMESTAMP)
        ELSE last_input_required_at
    END,
    updated_at = CURRENT_TIMESTAMP
WHERE id = ?
"""

_LIST_AGENT_ROWS_SQL = """
WITH latest_session AS (
    SELECT
        ms.id, ms.agent_id, ms.status, ms.needs_input, ms.input_reason,
        ms.last_activity_at, ms.last_heartbeat_at, ms.updated_at,
        ROW_NUMBER() OVER (
            PARTITION BY ms.agent_id
            ORDER BY ms.updated_at DESC, ms.id DESC
        ) AS rn
    FROM managed_sessions ms
    WHERE ms.agent_id IS NOT NULL
      AND ms.status IN ('waking', 'active', 'stalled', 'needs_input')
),
open_alert_counts AS (
    SELECT sa.agent_id, COUNT(*) AS unresolved_alert_count
    FROM session_alerts sa
    WHERE sa.resolved_at IS NULL
      AND (sa.snoozed_until IS NULL OR sa.snoozed_until <= CURRENT_TIMESTAMP)
    GROUP BY sa.agent_id
)
SELECT
    a.id AS agent_id,
    a.name AS agent_name,
    a.state AS agent_state,
    a.provider,
    a.display_order,
    a.attention_state,
    a.task_id,
    t.title AS task_title,
    COALESCE(a.active_session_id, ls.id) AS active_session_id,
    ls.status AS active_session_status,
    ls.needs_input AS active_session_needs_input,
    ls.input_reason AS active_session_input_reason,
    COALESCE(ls.last_activity_at, ls.last_heartbeat_at, ls.updated_at) AS last_activity_at,
    a.last_snippet,
    COALESCE(oac.unresolved_alert_count, 0) AS unresolved_alert_count,
    a.updated_at
FROM agents a
LEFT JOIN tasks t ON t.id = a.task_id
LEFT JOIN latest_session ls ON ls.agent_id = a.id AND ls.rn = 1
LEFT JOIN open_alert_counts oac ON oac.agent_id = a.id
ORDER BY a.display_order ASC, a.updated_at DESC
LIMIT ?
"""


def _database_path(database_url: str) -> str:
    if not database_url.startswith("sqlite:"):
        return database_url
    rest = database_url[len("sqlite:"):]
    if rest.startswith("//"):
        rest = rest[2:]
    rest = rest.split("?", 1)[0]
    if rest in ("", ":memory:"):
        return ":memory:"
    return rest


class DatabaseBase:
    """Owns the SQLite connection; stores tasks, agents and linear issues."""

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._conn = connection
        self._lock = threading.RLock()

    @classmethod
    def connect(cls, database_url: str):
        """Open (creating if missing) the database at ``database_url``."""
        conn = sqlite3.connect(
            _database_path(database_url), isolation_level=None, check_same_thread=False
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        conn.executescript(_SCHEMA)
        return cls(conn)

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # Helpers shared by the storage mixins.

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                yield
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")

    def _execute(self, sql: str, params: Sequence[Any] = ()) -> sqlite3.Cursor:
        with self._lock:
            return self._conn.execute(sql, tuple(params))

    def _fetch_optional(
        self, model: type[T], sql: str, params: Sequence[Any] = ()
    ) -> T | None:
        row = self._execute(sql, params).fetchone()
        return None if row is None else model(**dict(row))

    def _fetch_one(self, model: type[T], sql: str, params: Sequence[Any] = ()) -> T:
        found = self._fetch_optional(model, sql, params)
        if found is None:
            raise LookupError(f"no {model.__name__} row returned")
        return found

    def _fetch_all(self, model: type[T], sql: str, params: Sequence[Any] = ()) -> list[T]:
        return [model(**dict(row)) for row in self._execute(sql, params).fetchall()]

    def _fetch_scalar(self, sql: str, params: Sequence[Any] = ()) -> tuple[Any] | None:
        row = self._execute(sql, params).fetchone()
        return None if row is None else (row[0],)

    def _refresh_agent_attention_state(self, agent_id: int) -> None:
        self._execute(_REFRESH_ATTENTION_SQL, (agent_id, agent_id, agent_id, agent_id))

    # Tasks.

    def create_task(self, title: str, state: str | None = None) -> Task:
        with self._lock:
            cursor = self._execute(
                "INSERT INTO tasks (title, state) VALUES (?, ?)", (title, state or "todo")
            )
            return self.get_task(cursor.lastrowid)

    def update_task(self, id: int, title: str | None = None, state: str | None = None) -> Task:
        self._execute(
            "UPDATE tasks SET title = COALESCE(?, title), state = COALESCE(?, state), "
            "updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            (title, state, id),
        )
        return self.get_task(id)

    def delete_task(self, id: int) -> None:
        self._execute("DELETE FROM tasks WHERE id = ?", (id,))

    def move_task_state(self, id: int, state: str) -> Task:
        return self.update_task(id, None, state)

    def get_task(self, id: int) -> Task:
        return self._fetch_one(
            Task, f"SELECT {TASK_SELECT_COLUMNS} FROM tasks WHERE id = ?", (id,)
        )

    def list_tasks(self) -> list[Task]:
        return self._fetch_all(
            Task, f"SELECT {TASK_SELECT_COLUMNS} FROM tasks ORDER BY updated_at DESC"
        )

    # Agents.

    def create_agent(
        self,
        name: str,
        provider: str | None = None,
        state: str | None = None,
        task_id: int | None = None,
    ) -> Agent:
        with self._transaction():
            cursor = self._execute(
                "INSERT INTO agents (name, provider, state, task_id) VALUES (?, ?, ?, ?)",
                (name, provider or "opencode", state or "idle", task_id),
            )
            agent_id = cursor.lastrowid
            self._execute("UPDATE agents SET display_order = id WHERE id = ?", (agent_id,))
        return self.get_agent(agent_id)

    def assign_agent_to_task(self, agent_id: int, task_id: int | None = None) -> Agent:
        self._execute(
            "UPDATE agents SET task_id = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            (task_id, agent_id),
        )
        return self.get_agent(agent_id)

    def list_agents(self) -> list[Agent]:
        return self._fetch_all(
            Agent,
            f"SELECT {AGENT_SELECT_COLUMNS} FROM agents "
            "ORDER BY display_order ASC, updated_at DESC",
        )

    def get_agent(self, agent_id: int) -> Agent:
        return self._fetch_one(
            Agent, f"SELECT {AGENT_SELECT_COLUMNS} FROM agents WHERE id = ?", (agent_id,)
        )

    def list_agent_rows(self, limit: int | None = None) -> list[AgentRow]:
        """Agents joined with their task, latest open session and open alert count."""
        max_rows = 100 if limit is None else limit
        return self._fetch_all(AgentRow, _LIST_AGENT_ROWS_SQL, (max_rows,))

    def update_agent_snippet(self, agent_id: int, snippet: str) -> None:
        self._execute(
            "UPDATE agents SET last_snippet = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            (snippet, agent_id),
        )

    # Linear issues.

    def upsert_linear_issue(
        self, id: str, title: str, state: str | None = None, url: str | None = None
    ) -> None:
        self._execute(
            "INSERT INTO linear_issues (id, title, state, url) VALUES (?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET title = excluded.title, state = excluded.state, "
            "url = excluded.url, updated_at = CURRENT_TIMESTAMP",
            (id, title, state, url),
        )

    def get_linear_issue(self, id: str) -> tuple[str, str]:
        row = self._execute("SELECT id, title FROM linear_issues WHERE id = ?", (id,)).fetchone()
        if row is None:
            raise LookupError(f"linear issue {id!r} not found")
        return row["id"], row["title"]