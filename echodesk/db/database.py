"""The complete database: tasks, agents, sessions, alerts and runtime issues."""

from __future__ import annotations

from echodesk.db.alerts import AlertDatabase
from echodesk.db.issues import RuntimeIssueDatabase
from echodesk.db.models import SessionAlert
from echodesk.db.store import SESSION_ALERT_SELECT_COLUMNS

_OPEN_ALERT_FILTER = (
    "resolved_at IS NULL "
    "AND (snoozed_until IS NULL OR snoozed_until <= CURRENT_TIMESTAMP)"
)


class Database(AlertDatabase, RuntimeIssueDatabase):
    """Every storage operation the application uses, over one SQLite connection."""

    def _update_alert_and_refresh(self, alert_id: int, sql: str, params: tuple) -> SessionAlert:
        with self._lock:
            self._execute(sql, params)
            alert = self._select_alert(alert_id)
            if alert.agent_id is not None:
                self._refresh_agent_attention_state(alert.agent_id)
            return alert

    def snooze_session_alert(self, alert_id: int, duration_minutes: int) -> SessionAlert:
        """Hide an alert for 1 to 1440 minutes."""
        minutes = min(max(duration_minutes, 1), 24 * 60)
        return self._update_alert_and_refresh(
            alert_id,
            "UPDATE session_alerts "
            "SET snoozed_until = datetime(CURRENT_TIMESTAMP, '+' || ? || ' minutes'), "
            "updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            (minutes, alert_id),
        )

    def escalate_session_alert(self, alert_id: int) -> SessionAlert:
        """Raise an alert to critical and cancel any snooze."""
        return self._update_alert_and_refresh(
            alert_id,
            "UPDATE session_alerts SET severity = 'critical', "
            "escalated_at = CURRENT_TIMESTAMP, escalation_count = escalation_count + 1, "
            "snoozed_until = NULL, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            (alert_id,),
        )

    def resolve_session_alert(self, alert_id: int) -> SessionAlert:
        return self._update_alert_and_refresh(
            alert_id,
            "UPDATE session_alerts SET resolved_at = CURRENT_TIMESTAMP, "
            "updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            (alert_id,),
        )

    def alert_resolution_latency_ms(self, alert_id: int) -> int | None:
        """Milliseconds from creation to resolution, or None if unresolved or missing."""
        found = self._fetch_scalar(
            "SELECT CASE WHEN resolved_at IS NULL THEN NULL "
            "ELSE CAST((julianday(resolved_at) - julianday(created_at)) * 86400000 AS INTEGER) "
            "END FROM session_alerts WHERE id = ?",
            (alert_id,),
        )
        return None if found is None else found[0]

    def list_unresolved_session_alerts(
        self, agent_id: int | None = None, limit: int | None = None
    ) -> list[SessionAlert]:
        return self.list_session_alerts(agent_id, True, limit)

    def list_session_alerts(
        self,
        agent_id: int | None = None,
        unresolved_only: bool = True,
        limit: int | None = None,
    ) -> list[SessionAlert]:
        """Alerts newest first, optionally for one agent and only open, unsnoozed ones."""
        max_rows = 100 if limit is None else limit
        conditions: list[str] = []
        params: list[object] = []
        if unresolved_only:
            conditions.append(_OPEN_ALERT_FILTER)
        if agent_id is not None:
            conditions.append("agent_id = ?")
            params.append(agent_id)
        where = f" WHERE {' AND '.join(conditions)}" if conditions else ""
        params.append(max_rows)
        return self._fetch_all(
            SessionAlert,
            f"SELECT {SESSION_ALERT_SELECT_COLUMNS} FROM session_alerts{where} "
            "ORDER BY created_at DESC LIMIT ?",
            params,
        )