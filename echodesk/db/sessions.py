"""Storage for managed terminal sessions and their event log."""

from __future__ import annotations

import json
from typing import Any

from echodesk.db.models import ManagedSession, SessionEvent
from echodesk.db.store import MANAGED_SESSION_SELECT_COLUMNS, DatabaseBase

_SESSION_EVENT_COLUMNS = "id, session_id, event_type, message, payload_json, created_at"

_REPOINT_ACTIVE_SESSION_SQL = """
UPDATE agents
SET active_session_id = (
    SELECT ms.id
    FROM managed_sessions ms
    WHERE ms.agent_id = agents.id
      AND ms.id <> ?
      AND ms.status IN ('waking', 'active', 'stalled', 'needs_input')
    ORDER BY COALESCE(ms.last_activity_at, ms.last_heartbeat_at, ms.updated_at) DESC,
             ms.id DESC
    LIMIT 1
),
updated_at = CURRENT_TIMESTAMP
WHERE active_session_id = ?
"""

_UPDATE_STATUS_SQL = """
UPDATE managed_sessions
SET status = ?,
    failure_reason = ?,
    started_at = CASE WHEN ? = 'active' AND started_at IS NULL
                      THEN CURRENT_TIMESTAMP ELSE started_at END,
    ended_at = CASE WHEN ? IN ('ended', 'failed') THEN CURRENT_TIMESTAMP ELSE ended_at END,
    attach_count = CASE WHEN ? IN ('ended', 'failed') THEN 0 ELSE attach_count END,
    last_activity_at = CURRENT_TIMESTAMP,
    updated_at = CURRENT_TIMESTAMP
WHERE id = ?
"""

_END_SESSION_SQL = """
UPDATE managed_sessions
SET status = 'ended',
    failure_reason = ?,
    ended_at = CURRENT_TIMESTAMP,
    needs_input = 0,
    input_reason = NULL,
    attach_count = 0,
    last_activity_at = CURRENT_TIMESTAMP,
    updated_at = CURRENT_TIMESTAMP
WHERE id = ?
"""

_TERMINAL_STATUSES = ("ended", "failed")


def _json_text(payload: dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"), sort_keys=True, ensure_ascii=False)


class SessionDatabase(DatabaseBase):
    """Managed session storage on top of the shared connection."""

    def _repoint_active_session(self, session_id: int) -> None:
        self._execute(_REPOINT_ACTIVE_SESSION_SQL, (session_id, session_id))

    def _log_event(
        self, session_id: int, event_type: str, message: str | None, payload: dict[str, Any]
    ) -> None:
        self._execute(
            "INSERT INTO session_events (session_id, event_type, message, payload_json) "
            "VALUES (?, ?, ?, ?)",
            (session_id, event_type, message, _json_text(payload)),
        )

    def create_managed_session(
        self,
        provider: str,
        launch_command: str,
        launch_args_json: str,
        cwd: str | None = None,
        agent_id: int | None = None,
        task_id: int | None = None,
        metadata_json: str | None = None,
    ) -> ManagedSession:
        """Create a session in the ``waking`` state and make it the agent's active one."""
        with self._transaction():
            cursor = self._execute(
                "INSERT INTO managed_sessions (provider, status, launch_command, "
                "launch_args_json, cwd, agent_id, task_id, metadata_json) "
                "VALUES (?, 'waking', ?, ?, ?, ?, ?, ?)",
                (provider, launch_command, launch_args_json, cwd, agent_id, task_id, metadata_json),
            )
            session = self.get_managed_session(cursor.lastrowid)
            if agent_id is not None:
                self._execute(
                    "UPDATE agents SET active_session_id = ?, "
                    "updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                    (session.id, agent_id),
                )
        return session

    def update_session_status(
        self, session_id: int, status: str, failure_reason: str | None = None
    ) -> None:
        with self._transaction():
            self._execute(
                _UPDATE_STATUS_SQL,
                (status, failure_reason, status, status, status, session_id),
            )
            if status in _TERMINAL_STATUSES:
                self._repoint_active_session(session_id)

    def end_session_if_open(self, session_id: int, reason: str | None = None) -> bool:
        """End the session if it is still open; returns whether it was ended."""
        with self._transaction():
            cursor = self._execute(
                _END_SESSION_SQL + " AND status IN ('waking', 'active', 'stalled', 'needs_input')",
                (reason, session_id),
            )
            ended = cursor.rowcount > 0
            if ended:
                self._repoint_active_session(session_id)
        return ended

    def mark_session_stalled_if_not_needs_input(self, session_id: int) -> bool:
        cursor = self._execute(
            "UPDATE managed_sessions SET status = 'stalled', failure_reason = NULL, "
            "last_activity_at = CURRENT_TIMESTAMP, updated_at = CURRENT_TIMESTAMP "
            "WHERE id = ? AND needs_input = 0 AND status IN ('waking', 'active', 'stalled')",
            (session_id,),
        )
        return cursor.rowcount > 0

    def update_session_heartbeat(self, session_id: int) -> None:
        self._execute(
            "UPDATE managed_sessions SET last_heartbeat_at = CURRENT_TIMESTAMP, "
            "last_activity_at = CURRENT_TIMESTAMP, updated_at = CURRENT_TIMESTAMP "
            "WHERE id = ?",
            (session_id,),
        )

    def mark_session_needs_input(self, session_id: int, reason: str, message: str) -> None:
        with self._lock:
            self._execute(
                "UPDATE managed_sessions SET status = 'needs_input', needs_input = 1, "
                "input_reason = ?, last_activity_at = CURRENT_TIMESTAMP, "
                "updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (reason, session_id),
            )
            session = self.get_managed_session(session_id)
            if session.agent_id is not None:
                self._refresh_agent_attention_state(session.agent_id)
            self._log_event(
                session_id,
                "input_required",
                "session requires input",
                {"reason": reason, "message": message},
            )

    def clear_session_needs_input(self, session_id: int) -> None:
        with self._lock:
            self._execute(
                "UPDATE managed_sessions "
                "SET status = CASE WHEN status = 'needs_input' THEN 'active' ELSE status END, "
                "needs_input = 0, input_reason = NULL, last_activity_at = CURRENT_TIMESTAMP, "
                "updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (session_id,),
            )
            session = self.get_managed_session(session_id)
            if session.agent_id is not None:
                self._refresh_agent_attention_state(session.agent_id)

    def attach_session_context(
        self, session_id: int, agent_id: int | None, task_id: int | None
    ) -> None:
        self._execute(
            "UPDATE managed_sessions SET agent_id = ?, task_id = ?, "
            "updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            (agent_id, task_id, session_id),
        )

    def attach_terminal_session(self, session_id: int) -> ManagedSession:
        """Count a terminal attach; raises ValueError for ended or failed sessions."""
        with self._lock:
            current = self.get_managed_session(session_id)
            if current.status in _TERMINAL_STATUSES:
                raise ValueError(f"cannot attach to session in {current.status}")
            self._execute(
                "UPDATE managed_sessions SET attach_count = attach_count + 1, "
                "last_activity_at = CURRENT_TIMESTAMP, updated_at = CURRENT_TIMESTAMP "
                "WHERE id = ?",
                (session_id,),
            )
            self._log_event(session_id, "attach", "terminal attached", {"transport": "pty"})
            return self.get_managed_session(session_id)

    def detach_terminal_session(self, session_id: int) -> ManagedSession:
        """Count a terminal detach, never going below zero."""
        with self._lock:
            self._execute(
                "UPDATE managed_sessions "
                "SET attach_count = CASE WHEN attach_count > 0 THEN attach_count - 1 ELSE 0 END, "
                "updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (session_id,),
            )
            self._log_event(session_id, "detach", "terminal detached", {"transport": "pty"})
            return self.get_managed_session(session_id)

    def set_session_pid(self, session_id: int, pid: int | None) -> None:
        self._execute(
            "UPDATE managed_sessions SET pid = ?, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            (pid, session_id),
        )

    def end_session(self, session_id: int, reason: str | None = None) -> None:
        with self._transaction():
            self._execute(_END_SESSION_SQL, (reason, session_id))
            self._repoint_active_session(session_id)

    def delete_managed_session(self, session_id: int) -> None:
        """Delete a session and its events and alerts; raises LookupError if missing."""
        with self._transaction():
            found = self._fetch_scalar(
                "SELECT id FROM managed_sessions WHERE id = ?", (session_id,)
            )
            if found is None:
                raise LookupError("session not found")
            self._repoint_active_session(session_id)
            self._execute("DELETE FROM managed_sessions WHERE id = ?", (session_id,))

    def list_managed_sessions(
        self, status: str | None = None, limit: int | None = None
    ) -> list[ManagedSession]:
        max_rows = 50 if limit is None else limit
        if status is not None:
            return self._fetch_all(
                ManagedSession,
                f"SELECT {MANAGED_SESSION_SELECT_COLUMNS} FROM managed_sessions "
                "WHERE status = ? ORDER BY updated_at DESC LIMIT ?",
                (status, max_rows),
            )
        return self._fetch_all(
            ManagedSession,
            f"SELECT {MANAGED_SESSION_SELECT_COLUMNS} FROM managed_sessions "
            "ORDER BY updated_at DESC LIMIT ?",
            (max_rows,),
        )

    def get_managed_session(self, session_id: int) -> ManagedSession:
        """Fetch a session; raises LookupError if there is none."""
        return self._fetch_one(
            ManagedSession,
            f"SELECT {MANAGED_SESSION_SELECT_COLUMNS} FROM managed_sessions WHERE id = ?",
            (session_id,),
        )

    def insert_session_event(
        self,
        session_id: int,
        event_type: str,
        message: str | None = None,
        payload_json: str | None = None,
    ) -> SessionEvent:
        with self._lock:
            cursor = self._execute(
                "INSERT INTO session_events (session_id, event_type, message, payload_json) "
                "VALUES (?, ?, ?, ?)",
                (session_id, event_type, message, payload_json),
            )
            return self._fetch_one(
                SessionEvent,
                f"SELECT {_SESSION_EVENT_COLUMNS} FROM session_events WHERE id = ?",
                (cursor.lastrowid,),
            )

    def list_session_events(
        self, session_id: int, limit: int | None = None
    ) -> list[SessionEvent]:
        max_rows = 100 if limit is None else limit
        return self._fetch_all(
            SessionEvent,
            f"SELECT {_SESSION_EVENT_COLUMNS} FROM session_events WHERE session_id = ? "
            "ORDER BY created_at DESC LIMIT ?",
            (session_id, max_rows),
        )