"""Core domain models and services."""

from .behavior import classify_behavior, interacts
from .config import Settings, get_settings
from .llm import AnthropicLLM, LLMError, OllamaLLM, TextGenerator, create_llm
from .models import (
    Agent,
    AgentInteraction,
    AgentRuntimeState,
    AgentStatus,
    BehaviorPattern,
    ExportBundle,
    GenerationResult,
    LogType,
    SimulationLog,
    SimulationMetrics,
    User,
    WorldContext,
)
from .simulation import AgentNotFoundError, SimulationScheduler, collect_agent_export

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Rules
    "classify_behavior",
    "interacts",
    # LLM
    "TextGenerator",
    "AnthropicLLM",
    "OllamaLLM",
    "LLMError",
    "create_llm",
    # Simulation
    "SimulationScheduler",
    "AgentNotFoundError",
    "collect_agent_export",
    # Models
    "Agent",
    "AgentInteraction",
    "AgentRuntimeState",
    "AgentStatus",
    "BehaviorPattern",
    "ExportBundle",
    "GenerationResult",
    "LogType",
    "SimulationLog",
    "SimulationMetrics",
    "User",
    "WorldContext",
]
