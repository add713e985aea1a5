"""Storage for session alerts: creation with deduplication, enrichment and acknowledgement."""

from __future__ import annotations

from dataclasses import dataclass

from echodesk.db.models import SessionAlert
from echodesk.db.sessions import SessionDatabase
from echodesk.db.store import SESSION_ALERT_SELECT_COLUMNS

_UPDATE_EXISTING_ALERT_SQL = """
UPDATE session_alerts
SET severity = ?,
    requires_ack = ?,
    agent_id = COALESCE(agent_id, ?),
    message_enriched = ?,
    message_enrichment_status = ?,
    message_enrichment_error = ?,
    message_enriched_at = CASE WHEN ? IS NOT NULL THEN CURRENT_TIMESTAMP ELSE NULL END,
    snoozed_until = NULL,
    updated_at = CURRENT_TIMESTAMP
WHERE id = ?
"""

_INSERT_ALERT_SQL = """
INSERT INTO session_alerts (
    session_id,
    agent_id,
    severity,
    reason,
    message,
    message_enriched,
    message_enrichment_status,
    message_enrichment_error,
    message_enriched_at,
    requires_ack
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, CASE WHEN ? IS NOT NULL THEN CURRENT_TIMESTAMP ELSE NULL END, ?)
"""

_UPDATE_ENRICHMENT_SQL = """
UPDATE session_alerts
SET message_enriched = ?,
    message_enrichment_status = ?,
    message_enrichment_error = ?,
    message_enriched_at = CASE WHEN ? IS NOT NULL THEN CURRENT_TIMESTAMP ELSE NULL END,
    updated_at = CURRENT_TIMESTAMP
WHERE id = ?
"""


@dataclass
class AlertEnrichmentInput:
    """Optional cleaned-up text to store alongside a new alert."""

    message_enriched: str | None = None
    message_enrichment_status: str | None = None
    message_enrichment_error: str | None = None


class AlertDatabase(SessionDatabase):
    """Session alert storage on top of the shared connection."""

    def _select_alert(self, alert_id: int) -> SessionAlert:
        return self._fetch_one(
            SessionAlert,
            f"SELECT {SESSION_ALERT_SELECT_COLUMNS} FROM session_alerts WHERE id = ?",
            (alert_id,),
        )

    def create_session_alert(
        self,
        session_id: int,
        agent_id: int | None,
        severity: str,
        reason: str,
        message: str,
        requires_ack: bool,
    ) -> SessionAlert:
        """Create an alert, or refresh the open one with the same reason and message."""
        return self.create_session_alert_with_enrichment(
            session_id,
            agent_id,
            severity,
            reason,
            message,
            requires_ack,
            AlertEnrichmentInput(),
        )

    def create_session_alert_with_enrichment(
        self,
        session_id: int,
        agent_id: int | None,
        severity: str,
        reason: str,
        message: str,
        requires_ack: bool,
        enrichment: AlertEnrichmentInput,
    ) -> SessionAlert:
        """Like ``create_session_alert`` but also stores enrichment results.

        When ``agent_id`` is None the session's agent is used.
        """
        with self._lock:
            linked_agent_id = agent_id
            if linked_agent_id is None:
                found = self._fetch_scalar(
                    "SELECT agent_id FROM managed_sessions WHERE id = ?", (session_id,)
                )
                linked_agent_id = None if found is None else found[0]

            existing = self._fetch_scalar(
                "SELECT id FROM session_alerts "
                "WHERE session_id = ? AND reason = ? AND message = ? AND resolved_at IS NULL "
                "ORDER BY id DESC LIMIT 1",
                (session_id, reason, message),
            )

            status = enrichment.message_enrichment_status
            if status is None:
                status = "pending"
            output = enrichment.message_enriched
            if output is not None and not output.strip():
                output = None
            error = enrichment.message_enrichment_error
            enriched_marker = "CURRENT_TIMESTAMP" if output is not None else None

            if existing is not None:
                alert_id = existing[0]
                self._execute(
                    _UPDATE_EXISTING_ALERT_SQL,
                    (
                        severity,
                        int(bool(requires_ack)),
                        linked_agent_id,
                        output,
                        status,
                        error,
                        enriched_marker,
                        alert_id,
                    ),
                )
            else:
                cursor = self._execute(
                    _INSERT_ALERT_SQL,
                    (
                        session_id,
                        linked_agent_id,
                        severity,
                        reason,
                        message,
                        output,
                        status,
                        error,
                        enriched_marker,
                        int(bool(requires_ack)),
                    ),
                )
                alert_id = cursor.lastrowid
            alert = self._select_alert(alert_id)

            if alert.agent_id is not None:
                self._refresh_agent_attention_state(alert.agent_id)

            self._log_event(
                session_id,
                "session_alert_upserted",
                "structured alert persisted",
                {
                    "alertId": alert.id,
                    "agentId": alert.agent_id,
                    "severity": alert.severity,
                    "reason": alert.reason,
                    "message": alert.message,
                    "messageEnriched": alert.message_enriched,
                    "messageEnrichmentStatus": alert.message_enrichment_status,
                    "requiresAck": alert.requires_ack,
                },
            )
            return alert

    def get_session_alert(self, alert_id: int) -> SessionAlert:
        """Fetch an alert; raises LookupError if there is none."""
        return self._select_alert(alert_id)

    def update_session_alert_enrichment(
        self,
        alert_id: int,
        message_enriched: str | None,
        message_enrichment_status: str,
        message_enrichment_error: str | None,
    ) -> SessionAlert:
        with self._lock:
            self._execute(
                _UPDATE_ENRICHMENT_SQL,
                (
                    message_enriched,
                    message_enrichment_status,
                    message_enrichment_error,
                    message_enriched,
                    alert_id,
                ),
            )
            return self._select_alert(alert_id)

    def acknowledge_session_alert(self, alert_id: int) -> SessionAlert:
        with self._lock:
            self._execute(
                "UPDATE session_alerts SET acknowledged_at = CURRENT_TIMESTAMP, "
                "updated_at = CURRENT_TIMESTAMP WHERE id = ?",
                (alert_id,),
            )
            return self._select_alert(alert_id)