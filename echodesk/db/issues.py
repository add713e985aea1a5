"""Storage for runtime issues: deduplicated by kind, dismissable and clearable."""

from __future__ import annotations

from echodesk.db.models import RuntimeIssue
from echodesk.db.store import RUNTIME_ISSUE_SELECT_COLUMNS, DatabaseBase

_UPSERT_RUNTIME_ISSUE_SQL = """
INSERT INTO runtime_issues (
    kind, source, raw_message, enriched_message, enrichment_status, enrichment_error,
    first_seen_at, last_seen_at, seen_count, dismissed_until, resolved_at
) VALUES (?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP, 1, NULL, NULL)
ON CONFLICT(kind) DO UPDATE SET
    source = excluded.source,
    raw_message = excluded.raw_message,
    enriched_message = excluded.enriched_message,
    enrichment_status = excluded.enrichment_status,
    enrichment_error = excluded.enrichment_error,
    last_seen_at = CURRENT_TIMESTAMP,
    seen_count = runtime_issues.seen_count + 1,
    resolved_at = NULL
"""


class RuntimeIssueDatabase(DatabaseBase):
    """Runtime issue storage on top of the shared connection."""

    def get_runtime_issue(self, kind: str) -> RuntimeIssue:
        """Fetch the issue of ``kind``; raises LookupError if there is none."""
        return self._fetch_one(
            RuntimeIssue,
            f"SELECT {RUNTIME_ISSUE_SELECT_COLUMNS} FROM runtime_issues WHERE kind = ?",
            (kind,),
        )

    def report_runtime_issue(
        self,
        kind: str,
        source: str,
        raw_message: str,
        enriched_message: str | None,
        enrichment_status: str,
        enrichment_error: str | None,
    ) -> RuntimeIssue:
        """Record an occurrence of ``kind``, reopening it if it was cleared."""
        with self._lock:
            self._execute(
                _UPSERT_RUNTIME_ISSUE_SQL,
                (
                    kind,
                    source,
                    raw_message,
                    enriched_message,
                    enrichment_status,
                    enrichment_error,
                ),
            )
            return self.get_runtime_issue(kind)

    def list_visible_runtime_issues(self, limit: int | None = None) -> list[RuntimeIssue]:
        """Unresolved issues that are not currently dismissed, newest first."""
        max_rows = 100 if limit is None else limit
        return self._fetch_all(
            RuntimeIssue,
            f"SELECT {RUNTIME_ISSUE_SELECT_COLUMNS} FROM runtime_issues "
            "WHERE resolved_at IS NULL "
            "AND (dismissed_until IS NULL OR dismissed_until <= CURRENT_TIMESTAMP) "
            "ORDER BY last_seen_at DESC LIMIT ?",
            (max_rows,),
        )

    def dismiss_runtime_issue(self, kind: str, duration_ms: int) -> RuntimeIssue:
        """Hide ``kind`` for ``duration_ms`` milliseconds, rounded up to seconds."""
        seconds = (max(duration_ms, 0) + 999) // 1000
        with self._lock:
            self._execute(
                "UPDATE runtime_issues "
                "SET dismissed_until = datetime(CURRENT_TIMESTAMP, '+' || ? || ' seconds') "
                "WHERE kind = ?",
                (seconds, kind),
            )
            return self.get_runtime_issue(kind)

    def clear_runtime_issue(self, kind: str) -> None:
        """Mark ``kind`` resolved and drop any dismissal."""
        self._execute(
            "UPDATE runtime_issues SET resolved_at = CURRENT_TIMESTAMP, "
            "dismissed_until = NULL WHERE kind = ?",
            (kind,),
        )