from datetime import datetime, timedelta

import pytest

from echodesk.db.database import Database


@pytest.fixture
def db():
    database = Database.connect("sqlite::memory:")
    yield database
    database.close()


def _agent_and_session(db, name):
    agent = db.create_agent(name, "opencode", None, None)
    session = db.create_managed_session("opencode", "opencode", "[]", None, agent.id, None, None)
    return agent, session


def _parse(ts):
    return datetime.strptime(ts, "%Y-%m-%d %H:%M:%S")


def test_session_alert_ack_and_resolve_flow(db):
    agent, session = _agent_and_session(db, "Agent Alerts")
    alert = db.create_session_alert(
        session.id, agent.id, "warning", "input_prompt",
        "Agent requested confirmation to continue", True,
    )
    unresolved = db.list_unresolved_session_alerts(agent.id, 10)
    assert [a.id for a in unresolved] == [alert.id]

    acknowledged = db.acknowledge_session_alert(alert.id)
    assert acknowledged.acknowledged_at is not None
    assert acknowledged.resolved_at is None

    resolved = db.resolve_session_alert(alert.id)
    assert resolved.resolved_at is not None
    latency = db.alert_resolution_latency_ms(alert.id)
    assert latency is not None
    assert latency >= 0

    assert db.list_unresolved_session_alerts(agent.id, 10) == []
    assert db.get_agent(agent.id).attention_state == "ok"


def test_latency_is_none_while_unresolved_or_missing(db):
    agent, session = _agent_and_session(db, "Agent Latency")
    alert = db.create_session_alert(session.id, agent.id, "warning", "input_prompt", "x", True)
    assert db.alert_resolution_latency_ms(alert.id) is None
    assert db.alert_resolution_latency_ms(12345) is None


def test_session_alert_snooze_and_escalate_flow(db):
    agent, session = _agent_and_session(db, "Agent Alert Actions")
    alert = db.create_session_alert(
        session.id, agent.id, "warning", "approval_needed", "Approve deployment", True
    )
    assert db.get_agent(agent.id).attention_state == "needs_input"

    snoozed = db.snooze_session_alert(alert.id, 30)
    assert snoozed.snoozed_until is not None
    assert db.list_unresolved_session_alerts(agent.id, 20) == []
    assert db.get_agent(agent.id).attention_state == "ok"

    escalated = db.escalate_session_alert(alert.id)
    assert escalated.severity == "critical"
    assert escalated.escalated_at is not None
    assert escalated.escalation_count == 1
    assert escalated.snoozed_until is None
    assert len(db.list_unresolved_session_alerts(agent.id, 20)) == 1
    assert db.get_agent(agent.id).attention_state == "blocked"


@pytest.mark.parametrize("requested, expected", [(0, 1), (-5, 1), (15, 15), (100_000, 1440)])
def test_snooze_duration_is_clamped(db, requested, expected):
    agent, session = _agent_and_session(db, "Agent Clamp")
    alert = db.create_session_alert(session.id, agent.id, "warning", "input_prompt", "x", True)
    snoozed = db.snooze_session_alert(alert.id, requested)
    delta = _parse(snoozed.snoozed_until) - _parse(snoozed.updated_at)
    assert delta == timedelta(minutes=expected)


def test_agent_attention_state_promotes_from_alert_severity(db):
    agent, session = _agent_and_session(db, "Agent Attention")
    warning = db.create_session_alert(
        session.id, agent.id, "warning", "input_prompt", "Please provide additional context", True
    )
    assert db.get_agent(agent.id).attention_state == "needs_input"

    critical = db.create_session_alert(
        session.id, agent.id, "critical", "auth_needed", "Authentication token expired", True
    )
    assert db.get_agent(agent.id).attention_state == "blocked"

    db.resolve_session_alert(critical.id)
    assert db.get_agent(agent.id).attention_state == "needs_input"

    db.resolve_session_alert(warning.id)
    assert db.get_agent(agent.id).attention_state == "ok"


def test_list_session_alerts_filters(db):
    agent, session = _agent_and_session(db, "Agent Filter")
    other, other_session = _agent_and_session(db, "Agent Other")
    kept = db.create_session_alert(session.id, agent.id, "warning", "input_prompt", "a", True)
    done = db.create_session_alert(session.id, agent.id, "warning", "input_prompt", "b", True)
    db.resolve_session_alert(done.id)
    foreign = db.create_session_alert(
        other_session.id, other.id, "warning", "input_prompt", "c", True
    )

    assert [a.id for a in db.list_session_alerts(agent.id, True, 10)] == [kept.id]
    assert {a.id for a in db.list_session_alerts(agent.id, False, 10)} == {kept.id, done.id}
    assert {a.id for a in db.list_session_alerts(None, True, 10)} == {kept.id, foreign.id}
    assert {a.id for a in db.list_session_alerts(None, False, 10)} == {
        kept.id, done.id, foreign.id,
    }
    assert len(db.list_session_alerts(None, False, 2)) == 2


def test_delete_managed_session_clears_agent_link_and_cascades_rows(db):
    agent, session = _agent_and_session(db, "Agent Delete")
    db.insert_session_event(session.id, "spawned", "ok", None)
    db.create_session_alert(session.id, agent.id, "warning", "input_prompt", "requires input", True)

    db.delete_managed_session(session.id)

    with pytest.raises(LookupError):
        db.get_managed_session(session.id)
    assert db.list_session_events(session.id, 10) == []
    assert db.list_session_alerts(agent.id, False, 10) == []
    assert db.get_agent(agent.id).active_session_id is None


def test_database_also_stores_runtime_issues(db):
    issue = db.report_runtime_issue(
        "adapter_down", "system", "legacy runtime error", None, "failed", "unavailable"
    )
    assert issue.kind == "adapter_down"
    assert issue.seen_count == 1
    assert [i.kind for i in db.list_visible_runtime_issues(10)] == ["adapter_down"]