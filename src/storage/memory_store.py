"""
In-process store with the same interface as PostgresStore.

Used for local development (AGENTSIM_STORAGE_BACKEND=memory) and tests.
Rows are copied in and out so callers never share mutable state with the
store. Every operation yields to the event loop once, like a real driver.
"""

import asyncio
from typing import Any

import structlog

from src.core.models import (
    Agent,
    AgentInteraction,
    AgentStatus,
    LogType,
    SimulationLog,
    User,
)

logger = structlog.get_logger()


class MemoryStore:
    """Dict-backed agent store. Not durable."""

    def __init__(self):
        self.users: dict[str, User] = {}
        self.agents: dict[str, Agent] = {}
        self.logs: list[SimulationLog] = []
        self.interactions: list[AgentInteraction] = []

    async def connect(self):
        logger.info("using_memory_store")

    async def close(self):
        pass

    async def ping(self) -> bool:
        return True

    # =============================================================
    # USERS
    # =============================================================

    async def get_user(self, user_id: str) -> User | None:
        await asyncio.sleep(0)
        user = self.users.get(user_id)
        return user.model_copy() if user else None

    async def create_user(self, user_id: str, username: str | None = None, email: str | None = None) -> User:
        await asyncio.sleep(0)
        self.users.setdefault(user_id, User(id=user_id, username=username, email=email))
        return self.users[user_id].model_copy()

    # =============================================================
    # AGENTS
    # =============================================================

    def _owned(self, user_id: str, agent_id: str) -> Agent | None:
        agent = self.agents.get(agent_id)
        if agent is None or agent.user_id != user_id:
            return None
        return agent

    async def insert_agent(
        self,
        user_id: str,
        name: str,
        description: str,
        goals: str,
        metadata: dict[str, Any] | None = None,
    ) -> Agent:
        await asyncio.sleep(0)
        agent = Agent(
            name=name,
            description=description,
            goals=goals,
            metadata=metadata or {},
            user_id=user_id,
        )
        self.agents[agent.id] = agent
        return agent.model_copy(deep=True)

    async def list_agents(self, user_id: str, statuses: list[AgentStatus] | None = None) -> list[Agent]:
        await asyncio.sleep(0)
        return [
            a.model_copy(deep=True)
            for a in self.agents.values()
            if a.user_id == user_id and (not statuses or a.status in statuses)
        ]

    async def get_agent(self, user_id: str, agent_id: str) -> Agent | None:
        await asyncio.sleep(0)
        agent = self._owned(user_id, agent_id)
        return agent.model_copy(deep=True) if agent else None

    async def update_agent_status(self, user_id: str, agent_id: str, status: AgentStatus) -> bool:
        await asyncio.sleep(0)
        agent = self._owned(user_id, agent_id)
        if agent is None:
            return False
        agent.status = status
        return True

    async def update_agent_memory(self, user_id: str, agent_id: str, memory: dict[str, Any]) -> bool:
        await asyncio.sleep(0)
        agent = self._owned(user_id, agent_id)
        if agent is None:
            return False
        agent.memory = dict(memory)
        return True

    async def transition_agents(
        self,
        user_id: str,
        from_statuses: list[AgentStatus],
        to_status: AgentStatus,
        *,
        clear_memory: bool = False,
    ) -> int:
        await asyncio.sleep(0)
        count = 0
        for agent in self.agents.values():
            if agent.user_id == user_id and agent.status in from_statuses:
                agent.status = to_status
                if clear_memory:
                    agent.memory = {}
                count += 1
        return count

    async def reset_agent(self, user_id: str, agent_id: str) -> bool:
        await asyncio.sleep(0)
        agent = self._owned(user_id, agent_id)
        if agent is None:
            return False
        agent.status = AgentStatus.IDLE
        agent.memory = {}
        return True

    # =============================================================
    # SIMULATION LOGS
    # =============================================================

    async def insert_log(
        self,
        log_type: LogType,
        message: str,
        *,
        agent_id: str | None = None,
        user_id: str | None = None,
    ) -> SimulationLog:
        await asyncio.sleep(0)
        log = SimulationLog(agent_id=agent_id, user_id=user_id, type=log_type, message=message)
        self.logs.append(log)
        return log.model_copy()

    async def list_logs(
        self, user_id: str, agent_id: str | None = None, limit: int | None = None
    ) -> list[SimulationLog]:
        await asyncio.sleep(0)
        rows = [
            log.model_copy()
            for log in self.logs
            if log.user_id == user_id and (agent_id is None or log.agent_id == agent_id)
        ]
        return rows if limit is None else rows[:limit]

    # =============================================================
    # INTERACTIONS
    # =============================================================

    async def insert_interaction(self, interaction: AgentInteraction) -> AgentInteraction:
        await asyncio.sleep(0)
        self.interactions.append(interaction.model_copy(deep=True))
        return interaction

    async def list_interactions(self, user_id: str, agent_id: str) -> list[AgentInteraction]:
        await asyncio.sleep(0)
        return [
            i.model_copy(deep=True)
            for i in self.interactions
            if i.user_id == user_id and agent_id in (i.source_agent_id, i.target_agent_id)
        ]
