"""Event payloads sent to the UI and the shared in-process state."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass(frozen=True)
class TaskUpdatedEvent:
    task_id: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class AgentUpdatedEvent:
    agent_id: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class EchoState:
    agents: list[str] = field(default_factory=list)