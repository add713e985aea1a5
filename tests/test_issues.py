import pytest

from echodesk.db.issues import RuntimeIssueDatabase


@pytest.fixture
def db():
    database = RuntimeIssueDatabase.connect("sqlite::memory:")
    yield database
    database.close()


def test_runtime_issue_report_dismiss_and_clear_flow(db):
    first = db.report_runtime_issue(
        "model_down",
        "system",
        "raw model endpoint error",
        "Model endpoint unavailable",
        "success",
        None,
    )
    assert first.seen_count == 1
    assert first.enriched_message == "Model endpoint unavailable"

    second = db.report_runtime_issue(
        "model_down", "system", "raw model endpoint error 2", None, "failed", "timeout"
    )
    assert second.seen_count == 2
    assert second.enrichment_status == "failed"
    assert second.raw_message == "raw model endpoint error 2"
    assert second.enrichment_error == "timeout"

    visible = db.list_visible_runtime_issues(10)
    assert len(visible) == 1
    assert visible[0].kind == "model_down"

    dismissed = db.dismiss_runtime_issue("model_down", 120_000)
    assert dismissed.dismissed_until is not None
    assert db.list_visible_runtime_issues(10) == []

    db.clear_runtime_issue("model_down")
    cleared = db.get_runtime_issue("model_down")
    assert cleared.resolved_at is not None
    assert cleared.dismissed_until is None


def test_get_missing_runtime_issue_raises(db):
    with pytest.raises(LookupError):
        db.get_runtime_issue("nope")


def test_dismiss_missing_runtime_issue_raises(db):
    with pytest.raises(LookupError):
        db.dismiss_runtime_issue("nope", 1000)


def test_zero_or_negative_dismissal_keeps_issue_visible(db):
    db.report_runtime_issue("adapter_down", "system", "boom", None, "failed", None)
    db.dismiss_runtime_issue("adapter_down", 0)
    assert [i.kind for i in db.list_visible_runtime_issues(None)] == ["adapter_down"]
    db.dismiss_runtime_issue("adapter_down", -5000)
    assert [i.kind for i in db.list_visible_runtime_issues(None)] == ["adapter_down"]


def test_report_after_clear_reopens_issue(db):
    db.report_runtime_issue("x", "system", "one", None, "failed", None)
    db.clear_runtime_issue("x")
    assert db.list_visible_runtime_issues(None) == []
    reopened = db.report_runtime_issue("x", "ui", "two", None, "pending", None)
    assert reopened.resolved_at is None
    assert reopened.seen_count == 2
    assert reopened.source == "ui"
    assert len(db.list_visible_runtime_issues(None)) == 1


def test_report_does_not_lift_active_dismissal(db):
    db.report_runtime_issue("x", "system", "one", None, "failed", None)
    db.dismiss_runtime_issue("x", 120_000)
    again = db.report_runtime_issue("x", "system", "two", None, "failed", None)
    assert again.dismissed_until is not None
    assert db.list_visible_runtime_issues(None) == []


def test_visible_issues_respect_limit(db):
    for kind in ("a", "b", "c"):
        db.report_runtime_issue(kind, "system", "msg", None, "pending", None)
    assert len(db.list_visible_runtime_issues(2)) == 2
    assert len(db.list_visible_runtime_issues(None)) == 3