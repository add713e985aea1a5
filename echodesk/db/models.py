"""Records stored in and returned by the database, plus their wire shapes."""

from __future__ import annotations

from dataclasses import dataclass, field, fields, is_dataclass
from typing import Any, ClassVar


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.capitalize() for part in rest)


def _to_wire(value: Any) -> Any:
    if is_dataclass(value) and not isinstance(value, type):
        return to_camel_dict(value)
    if isinstance(value, list):
        return [_to_wire(item) for item in value]
    if isinstance(value, dict):
        return {key: _to_wire(item) for key, item in value.items()}
    return value


def to_camel_dict(obj: Any) -> dict[str, Any]:
    """Serialise a record dataclass to a dict with camelCase keys."""
    if not is_dataclass(obj) or isinstance(obj, type):
        raise TypeError(f"expected a dataclass instance, got {type(obj).__name__}")
    return {_camel(f.name): _to_wire(getattr(obj, f.name)) for f in fields(obj)}


@dataclass
class Task:
    id: int
    title: str
    state: str
    updated_at: str


@dataclass
class Agent:
    id: int
    name: str
    state: str
    provider: str
    display_order: int
    attention_state: str
    task_id: int | None = None
    active_session_id: int | None = None
    last_snippet: str | None = None
    last_input_required_at: str | None = None
    updated_at: str = ""


@dataclass
class ManagedSession:
    id: int
    provider: str
    status: str
    launch_command: str
    launch_args_json: str
    cwd: str | None
    pid: int | None
    agent_id: int | None
    task_id: int | None
    last_heartbeat_at: str | None
    started_at: str | None
    ended_at: str | None
    needs_input: bool
    input_reason: str | None
    last_activity_at: str | None
    transport: str
    attach_count: int
    failure_reason: str | None
    metadata_json: str | None
    created_at: str
    updated_at: str

    def __post_init__(self) -> None:
        self.needs_input = bool(self.needs_input)


@dataclass
class SessionEvent:
    id: int
    session_id: int
    event_type: str
    message: str | None
    payload_json: str | None
    created_at: str


@dataclass
class SessionAlert:
    id: int
    session_id: int
    agent_id: int | None
    severity: str
    reason: str
    message: str
    message_enriched: str | None
    message_enrichment_status: str
    message_enriched_at: str | None
    message_enrichment_error: str | None
    requires_ack: bool
    acknowledged_at: str | None
    snoozed_until: str | None
    escalated_at: str | None
    escalation_count: int
    resolved_at: str | None
    created_at: str
    updated_at: str

    def __post_init__(self) -> None:
        self.requires_ack = bool(self.requires_ack)


@dataclass
class RuntimeIssue:
    kind: str
    source: str
    raw_message: str
    enriched_message: str | None
    enrichment_status: str
    enrichment_error: str | None
    first_seen_at: str
    last_seen_at: str
    seen_count: int
    dismissed_until: str | None
    resolved_at: str | None


@dataclass
class AgentRow:
    agent_id: int
    agent_name: str
    agent_state: str
    provider: str
    display_order: int
    attention_state: str
    task_id: int | None
    task_title: str | None
    active_session_id: int | None
    active_session_status: str | None
    active_session_needs_input: bool | None
    active_session_input_reason: str | None
    last_activity_at: str | None
    last_snippet: str | None
    unresolved_alert_count: int
    updated_at: str

    def __post_init__(self) -> None:
        if self.active_session_needs_input is not None:
            self.active_session_needs_input = bool(self.active_session_needs_input)


@dataclass
class StartSessionRequest:
    command: str
    args: list[str] = field(default_factory=list)
    cwd: str | None = None
    agent_id: int | None = None
    task_id: int | None = None
    provider: str | None = None


@dataclass
class SessionStatusSummary:
    session_id: int
    status: str
    agent_id: int | None = None
    task_id: int | None = None
    last_heartbeat_at: str | None = None


@dataclass
class SessionStarted:
    """Wake action outcome: a new session was started."""

    tag: ClassVar[str] = "session_started"
    session: ManagedSession


@dataclass
class StatusReply:
    """Wake action outcome: a spoken status answer."""

    tag: ClassVar[str] = "status_reply"
    answer: str
    session: SessionStatusSummary | None = None


@dataclass
class PromptRequired:
    """Wake action outcome: the user must supply more information."""

    tag: ClassVar[str] = "prompt_required"
    code: str
    message: str


WakeActionResult = SessionStarted | StatusReply | PromptRequired


def wake_action_to_dict(result: WakeActionResult) -> dict[str, Any]:
    """Serialise a wake action outcome as a dict tagged by ``type``."""
    if not isinstance(result, (SessionStarted, StatusReply, PromptRequired)):
        raise TypeError(f"not a wake action result: {type(result).__name__}")
    payload: dict[str, Any] = {"type": result.tag}
    for f in fields(result):
        payload[f.name] = _to_wire(getattr(result, f.name))
    return payload