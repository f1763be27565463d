"""
Core domain models for the agent simulation.

- Agent: a persisted simulated actor owned by one user
- SimulationLog: append-only entries in the dashboard log stream
- AgentInteraction: a recorded exchange between two agents
- WorldContext / SimulationMetrics / AgentRuntimeState: scheduler-owned,
  in-memory only

Wire payloads use camelCase keys; Python attributes stay snake_case.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from ulid import ULID


def generate_id() -> str:
    """Generate a sortable unique ID."""
    return str(ULID())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def utcnow_iso() -> str:
    return utcnow().isoformat()


class WireModel(BaseModel):
    """Base for models that travel over the session channel."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class AgentStatus(str, Enum):
    """Lifecycle status of an agent (and of a scheduler)."""

    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"


class LogType(str, Enum):
    """Categories in the simulation log stream."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    INTERACTION = "interaction"
    BEHAVIOR = "behavior"


class BehaviorPattern(str, Enum):
    """Behavior mode derived from an agent's goal text."""

    ANALYZE = "ANALYZE"
    COLLABORATE = "COLLABORATE"
    OPTIMIZE = "OPTIMIZE"
    LEARN = "LEARN"


class User(BaseModel):
    """Resolved identity of a connected client."""

    id: str
    username: str | None = None
    email: str | None = None
    created_at: datetime = Field(default_factory=utcnow)


class Agent(WireModel):
    """A simulated actor with goals, status, and memory."""

    id: str = Field(default_factory=generate_id)
    name: str
    description: str
    goals: str
    status: AgentStatus = AgentStatus.IDLE
    metadata: dict[str, Any] = Field(default_factory=dict)
    memory: dict[str, Any] = Field(default_factory=dict)  # Rewritten every tick
    created_at: datetime = Field(default_factory=utcnow)
    user_id: str


class SimulationLog(WireModel):
    """A single line of the dashboard log stream."""

    id: str = Field(default_factory=generate_id)
    agent_id: str | None = None
    user_id: str | None = None
    type: LogType
    message: str
    timestamp: datetime = Field(default_factory=utcnow)


class AgentInteraction(WireModel):
    """One agent acting toward another during a tick."""

    id: str = Field(default_factory=generate_id)
    source_agent_id: str
    target_agent_id: str
    user_id: str
    prompt: str
    response: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=utcnow)


class ExportBundle(WireModel):
    """Everything recorded about one agent."""

    agent: Agent
    interactions: list[AgentInteraction] = Field(default_factory=list)
    logs: list[SimulationLog] = Field(default_factory=list)


class WorldContext(WireModel):
    """Shared descriptive and mutable state all agents act within."""

    name: str = "Default World"
    description: str = "A simulation environment for AI agents to interact and evolve"
    rules: list[str] = Field(
        default_factory=lambda: [
            "Agents must collaborate to achieve goals",
            "Agents should respect resource constraints",
        ]
    )
    state: dict[str, Any] = Field(default_factory=lambda: {"timestamp": utcnow_iso()})


class SimulationMetrics(WireModel):
    """Aggregates broadcast to the metrics panel."""

    total_interactions: int = 0
    active_agents: int = 0
    goal_completion_rate: float = 0.0  # Never computed; reported as last set
    average_processing_time: float = 0.0  # Milliseconds


class AgentRuntimeState(BaseModel):
    """Per-agent scratch state held by a scheduler for one session."""

    id: str
    current_task: str = ""
    interaction_count: int = 0
    last_interaction_time: datetime = Field(default_factory=utcnow)
    processing_time: float = 0.0  # Milliseconds, last tick
    connections: set[str] = Field(default_factory=set)


class GenerationResult(BaseModel):
    """Text produced for an agent plus the memory to persist."""

    response: str
    memory: dict[str, Any]
