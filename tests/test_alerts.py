import json

import pytest

from echodesk.db.alerts import AlertDatabase, AlertEnrichmentInput


@pytest.fixture
def db():
    database = AlertDatabase.connect("sqlite::memory:")
    yield database
    database.close()


def _agent_and_session(db, name):
    agent = db.create_agent(name, "opencode", None, None)
    session = db.create_managed_session("opencode", "opencode", "[]", None, agent.id, None, None)
    return agent, session


def test_create_session_alert_defaults(db):
    agent, session = _agent_and_session(db, "Agent Alerts")
    alert = db.create_session_alert(
        session.id,
        agent.id,
        "warning",
        "input_prompt",
        "Agent requested confirmation to continue",
        True,
    )
    assert alert.requires_ack is True
    assert alert.acknowledged_at is None
    assert alert.snoozed_until is None
    assert alert.escalation_count == 0
    assert alert.resolved_at is None
    assert alert.message_enrichment_status == "pending"
    assert alert.message_enriched is None
    assert db.get_agent(agent.id).attention_state == "needs_input"


def test_create_session_alert_infers_agent_and_deduplicates_open_alerts(db):
    agent, session = _agent_and_session(db, "Agent Alert Link")
    first = db.create_session_alert(
        session.id, None, "warning", "tool_confirmation", "Please confirm tool execution", True
    )
    assert first.agent_id == agent.id

    second = db.create_session_alert(
        session.id, None, "warning", "tool_confirmation", "Please confirm tool execution", True
    )
    assert second.id == first.id
    assert second.agent_id == agent.id

    events = db.list_session_events(session.id, 20)
    upserted = [e for e in events if e.event_type == "session_alert_upserted"]
    assert len(upserted) == 2


def test_upsert_event_payload_uses_camel_case(db):
    agent, session = _agent_and_session(db, "Agent Payload")
    alert = db.create_session_alert(session.id, agent.id, "warning", "input_prompt", "hi", True)
    events = [
        e for e in db.list_session_events(session.id, 10)
        if e.event_type == "session_alert_upserted"
    ]
    assert len(events) == 1
    payload = json.loads(events[0].payload_json)
    assert payload["alertId"] == alert.id
    assert payload["agentId"] == agent.id
    assert payload["requiresAck"] is True
    assert payload["messageEnrichmentStatus"] == "pending"
    assert events[0].message == "structured alert persisted"


def test_create_session_alert_with_enrichment_persists_cleaned_message(db):
    agent, session = _agent_and_session(db, "Agent Enrichment")
    alert = db.create_session_alert_with_enrichment(
        session.id,
        agent.id,
        "warning",
        "input_prompt",
        "raw prompt text",
        True,
        AlertEnrichmentInput(
            message_enriched="cleaned prompt text",
            message_enrichment_status="success",
            message_enrichment_error=None,
        ),
    )
    assert alert.message_enriched == "cleaned prompt text"
    assert alert.message_enrichment_status == "success"
    assert alert.message_enriched_at is not None
    assert alert.message_enrichment_error is None


def test_blank_enrichment_is_not_stored(db):
    agent, session = _agent_and_session(db, "Agent Blank")
    alert = db.create_session_alert_with_enrichment(
        session.id,
        agent.id,
        "warning",
        "input_prompt",
        "raw",
        False,
        AlertEnrichmentInput(message_enriched="   ", message_enrichment_error="empty_output"),
    )
    assert alert.message_enriched is None
    assert alert.message_enriched_at is None
    assert alert.message_enrichment_status == "pending"
    assert alert.message_enrichment_error == "empty_output"
    assert alert.requires_ack is False


def test_update_session_alert_enrichment(db):
    agent, session = _agent_and_session(db, "Agent Update")
    alert = db.create_session_alert(session.id, agent.id, "warning", "input_prompt", "raw", True)

    enriched = db.update_session_alert_enrichment(alert.id, "clean", "success", None)
    assert enriched.message_enriched == "clean"
    assert enriched.message_enrichment_status == "success"
    assert enriched.message_enriched_at is not None

    failed = db.update_session_alert_enrichment(alert.id, None, "failed", "timeout")
    assert failed.message_enriched is None
    assert failed.message_enriched_at is None
    assert failed.message_enrichment_error == "timeout"


def test_acknowledge_session_alert(db):
    agent, session = _agent_and_session(db, "Agent Ack")
    alert = db.create_session_alert(session.id, agent.id, "warning", "input_prompt", "x", True)
    acknowledged = db.acknowledge_session_alert(alert.id)
    assert acknowledged.acknowledged_at is not None
    assert acknowledged.resolved_at is None
    assert db.get_session_alert(alert.id).acknowledged_at == acknowledged.acknowledged_at


def test_get_missing_alert_raises(db):
    with pytest.raises(LookupError):
        db.get_session_alert(999)