"""
Per-session simulation scheduler.

One SimulationScheduler exists per connected client and is bound to that
client's user id. While running, it ticks on a fixed period: every running
agent of the user gets a behavior pattern, a generated action, and a pass
over its peers for interactions. Results are persisted and pushed to the
client through the injected ``send`` callable as ``{type, payload}`` events.

Every store call is scoped to ``user_id``. Status is re-checked after each
suspension point so that stop()/reset() issued mid-tick take effect before
any further side effect.
"""

import asyncio
import json
import time
from typing import Any, Awaitable, Callable

import structlog

from .behavior import classify_behavior, interacts
from .config import get_settings
from .llm import TextGenerator
from .metrics import get_metrics
from .models import (
    Agent,
    AgentInteraction,
    AgentRuntimeState,
    AgentStatus,
    BehaviorPattern,
    ExportBundle,
    LogType,
    SimulationLog,
    SimulationMetrics,
    WorldContext,
    utcnow,
    utcnow_iso,
)

logger = structlog.get_logger()

Send = Callable[[dict[str, Any]], Awaitable[None]]

CONTEXT_TEMPLATE = """World Context: {name}
{description}
Rules: {rules}

Current State:
{state}

You are currently in {pattern} mode. Consider your goals, the world context, and previous interactions to determine your next action."""


class AgentNotFoundError(Exception):
    """Raised when an agent id does not exist for the scheduler's user."""

    def __init__(self, agent_id: str):
        super().__init__(f"Agent with ID {agent_id} not found")
        self.agent_id = agent_id


async def collect_agent_export(store, user_id: str, agent_id: str) -> ExportBundle:
    """Collect an agent with its interactions and logs. Read-only."""
    agent = await store.get_agent(user_id, agent_id)
    if agent is None:
        raise AgentNotFoundError(agent_id)

    interactions = await store.list_interactions(user_id, agent_id)
    logs = await store.list_logs(user_id, agent_id)
    return ExportBundle(agent=agent, interactions=interactions, logs=logs)


class SimulationScheduler:
    """Fixed-period agent loop for one user session."""

    def __init__(
        self,
        user_id: str,
        store,
        llm: TextGenerator,
        send: Send,
        *,
        tick_interval: float | None = None,
        world_context: WorldContext | None = None,
    ):
        self.user_id = user_id
        self.store = store
        self.llm = llm
        self._send = send
        self.tick_interval = (
            tick_interval if tick_interval is not None else get_settings().tick_interval_seconds
        )
        self.world_context = world_context or WorldContext()
        self.status = AgentStatus.IDLE
        self.metrics = SimulationMetrics()
        self.agent_states: dict[str, AgentRuntimeState] = {}
        self.tick_count = 0
        self._task: asyncio.Task | None = None
        self._closed = False

    @property
    def is_running(self) -> bool:
        return self.status is AgentStatus.RUNNING and not self._closed

    @property
    def timer_armed(self) -> bool:
        return self._task is not None and not self._task.done()

    # =============================================================
    # EVENTS
    # =============================================================

    async def emit(self, event_type: str, payload: Any):
        await self._send({"type": event_type, "payload": payload})

    async def log(self, log_type: LogType, message: str, *, agent_id: str | None = None) -> SimulationLog:
        """Persist a log line for this user and push it to the client."""
        try:
            entry = await self.store.insert_log(log_type, message, agent_id=agent_id, user_id=self.user_id)
        except Exception as e:
            if log_type is not LogType.ERROR:
                raise
            # Still surface the error to the dashboard
            logger.error("log_write_failed", user_id=self.user_id, error=str(e))
            entry = SimulationLog(agent_id=agent_id, user_id=self.user_id, type=log_type, message=message)
        await self.emit("log", entry.to_wire())
        return entry

    async def broadcast_agents(self):
        agents = await self.store.list_agents(self.user_id)
        await self.emit("agents", [a.to_wire() for a in agents])

    async def _broadcast_metrics(self):
        await self.emit("metrics", self.metrics.to_wire())

    def _update_metrics(self, active_agents: int, durations: list[float]):
        self.metrics.active_agents = active_agents
        self.metrics.average_processing_time = sum(durations) / len(durations) if durations else 0.0

    # =============================================================
    # LIFECYCLE
    # =============================================================

    async def start(self) -> bool:
        """Move idle agents to running and arm the tick loop.

        Returns False (no-op) unless the scheduler is idle.
        """
        if self._closed:
            await self.log(LogType.WARNING, "Simulation session is closed")
            return False
        if self.status is not AgentStatus.IDLE:
            logger.info("simulation_already_active", user_id=self.user_id, status=self.status.value)
            await self.log(LogType.WARNING, f"Simulation is already {self.status.value}")
            return False

        await self._cancel_timer()
        self.status = AgentStatus.RUNNING
        try:
            idle_agents = await self.store.list_agents(self.user_id, [AgentStatus.IDLE])
            for agent in idle_agents:
                if not self.is_running:
                    break
                await self._set_agent_status(agent.id, AgentStatus.RUNNING)
        except Exception:
            self.status = AgentStatus.IDLE
            raise

        if not self.is_running:
            # Stopped while activating agents
            return False

        self._task = asyncio.create_task(self._run(), name=f"simulation:{self.user_id}")
        logger.info("simulation_started", user_id=self.user_id, agents=len(idle_agents))
        await self.emit("status", AgentStatus.RUNNING.value)
        await self.log(LogType.INFO, "Simulation started")
        return True

    async def stop(self):
        """Pause the simulation. Safe to call while a tick is in flight."""
        if self.status is AgentStatus.IDLE:
            await self.log(LogType.WARNING, "Simulation is not running")
            return

        # Before any await: the in-flight tick sees this on its next check
        self.status = AgentStatus.PAUSED
        await self._cancel_timer()
        self.agent_states.clear()

        paused = await self.store.transition_agents(self.user_id, [AgentStatus.RUNNING], AgentStatus.PAUSED)
        logger.info("simulation_paused", user_id=self.user_id, agents=paused)

        self._update_metrics(0, [])
        await self._broadcast_metrics()
        await self.emit("status", AgentStatus.PAUSED.value)
        await self.log(LogType.INFO, "Simulation paused - all agents stopped")

    async def reset(self):
        """Return every agent of the user to idle with empty memory."""
        if self.status is AgentStatus.RUNNING:
            await self.stop()

        self.status = AgentStatus.IDLE
        await self._cancel_timer()
        self.agent_states.clear()

        reset = await self.store.transition_agents(
            self.user_id,
            [AgentStatus.RUNNING, AgentStatus.PAUSED],
            AgentStatus.IDLE,
            clear_memory=True,
        )
        logger.info("simulation_reset", user_id=self.user_id, agents=reset)

        self.metrics = SimulationMetrics()
        await self.emit("status", AgentStatus.IDLE.value)
        await self._broadcast_metrics()
        await self.log(LogType.INFO, "Simulation fully reset - all agents and states cleared")

    async def close(self):
        """Tear down for a closed connection. Leaves persisted rows untouched."""
        self._closed = True
        await self._cancel_timer()
        self.agent_states.clear()
        logger.info("simulation_closed", user_id=self.user_id, ticks=self.tick_count)

    async def _cancel_timer(self):
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        if task is not asyncio.current_task():
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _run(self):
        while True:
            await asyncio.sleep(self.tick_interval)
            await self.tick()

    # =============================================================
    # TICK
    # =============================================================

    async def tick(self):
        """Process every running agent of the user once."""
        if not self.is_running:
            logger.debug("tick_skipped", user_id=self.user_id, status=self.status.value)
            return

        metrics = get_metrics()
        started = time.time()
        try:
            agents = await self.store.list_agents(self.user_id, [AgentStatus.RUNNING])
            logger.debug("processing_agents", user_id=self.user_id, count=len(agents))

            durations: list[float] = []
            for agent in agents:
                if not self.is_running:
                    break
                duration = await self._process_agent(agent, agents)
                if duration is not None:
                    durations.append(duration)

            if self.is_running:
                self._update_metrics(len(agents), durations)
                await self._broadcast_metrics()

        except Exception as e:
            logger.error("simulation_tick_error", user_id=self.user_id, error=str(e), error_type=type(e).__name__)
            await self.log(LogType.ERROR, f"Simulation error: {e}")
        finally:
            self.tick_count += 1
            metrics.increment("agentsim_ticks_total")
            metrics.observe("agentsim_tick_duration_seconds", value=time.time() - started)

    async def _process_agent(self, agent: Agent, peers: list[Agent]) -> float | None:
        """One agent's turn. Returns its processing time in ms, or None if cut short."""
        start = time.monotonic()
        try:
            state = self.agent_states.get(agent.id)
            if state is None:
                state = self.agent_states[agent.id] = AgentRuntimeState(id=agent.id)

            pattern = classify_behavior(agent.goals)
            context = self.compose_context(pattern)
            action = await self._process_agent_behavior(agent, pattern, context)
            if action is None:
                return None

            for other in peers:
                if other.id == agent.id or not interacts(agent.goals, other.goals):
                    continue
                if not self.is_running:
                    return None
                await self._record_interaction(agent, other, state, context, action)

            state.current_task = action
            state.processing_time = (time.monotonic() - start) * 1000

            current = await self.store.get_agent(self.user_id, agent.id)
            if current is None or current.status is not AgentStatus.RUNNING or not self.is_running:
                logger.info("agent_no_longer_running", user_id=self.user_id, agent_id=agent.id)
                return state.processing_time

            await self.emit(
                "agentState",
                {
                    "id": agent.id,
                    "name": agent.name,
                    "status": current.status.value,
                    "currentTask": state.current_task,
                    "connections": sorted(state.connections),
                    "interactionCount": state.interaction_count,
                },
            )
            await self.log(
                LogType.BEHAVIOR,
                f"Agent {agent.name} - {action} while pursuing: {agent.goals}",
                agent_id=agent.id,
            )
            return state.processing_time

        except Exception as e:
            logger.error("agent_processing_error", user_id=self.user_id, agent_id=agent.id, error=str(e))
            await self.log(LogType.ERROR, f"Error processing agent: {e}", agent_id=agent.id)
            return None

    def compose_context(self, pattern: BehaviorPattern) -> str:
        world = self.world_context
        return CONTEXT_TEMPLATE.format(
            name=world.name,
            description=world.description,
            rules="\n".join(world.rules),
            state=json.dumps(world.state, indent=2, default=str),
            pattern=pattern.value,
        )

    async def _process_agent_behavior(
        self,
        agent: Agent,
        pattern: BehaviorPattern,
        context: str,
    ) -> str | None:
        """Generate, persist memory, and publish the agent's action."""
        if not self.is_running:
            return None

        result = await self.llm.generate_response(agent, context, agent.memory)
        if not self.is_running:
            return None

        await self.store.update_agent_memory(self.user_id, agent.id, result.memory)
        if not self.is_running:
            return None

        await self.update_world_state(
            {
                "lastAgentAction": {
                    "agentId": agent.id,
                    "agentName": agent.name,
                    "action": result.response,
                    "timestamp": utcnow_iso(),
                }
            }
        )
        return f"[{pattern.value}] {result.response}"

    async def _record_interaction(
        self,
        agent: Agent,
        other: Agent,
        state: AgentRuntimeState,
        context: str,
        action: str,
    ):
        # Counters move together with no await in between
        state.connections.add(other.id)
        state.interaction_count += 1
        state.last_interaction_time = utcnow()
        self.metrics.total_interactions += 1
        get_metrics().increment("agentsim_interactions_total")

        await self.store.insert_interaction(
            AgentInteraction(
                source_agent_id=agent.id,
                target_agent_id=other.id,
                user_id=self.user_id,
                prompt=context,
                response=action,
            )
        )
        await self.log(
            LogType.INTERACTION,
            f"Agent {agent.name} is interacting with {other.name} - {action}",
            agent_id=agent.id,
        )

    async def _set_agent_status(self, agent_id: str, status: AgentStatus) -> bool:
        try:
            await self.store.update_agent_status(self.user_id, agent_id, status)
            await self.log(LogType.INFO, f"Agent status changed to {status.value}", agent_id=agent_id)
            return True
        except Exception as e:
            logger.error("agent_status_update_failed", user_id=self.user_id, agent_id=agent_id, error=str(e))
            await self.log(LogType.ERROR, f"Failed to update agent status: {e}", agent_id=agent_id)
            return False

    # =============================================================
    # COMMANDS
    # =============================================================

    async def deploy_agent(self, name: str, description: str, goals: str) -> Agent:
        agent = await self.store.insert_agent(self.user_id, name, description, goals)
        logger.info("agent_deployed", user_id=self.user_id, agent_id=agent.id)
        await self.log(LogType.INFO, f'Agent "{name}" deployed successfully')
        await self.broadcast_agents()
        return agent

    async def update_world_state(self, updates: dict[str, Any]):
        """Merge keys into the world state and broadcast the full context."""
        self.world_context.state = {
            **self.world_context.state,
            **updates,
            "lastUpdated": utcnow_iso(),
        }
        await self.emit("worldState", self.world_context.to_wire())

    async def update_world_context(
        self,
        *,
        name: str | None = None,
        description: str | None = None,
        rules: list[str] | None = None,
        state: dict[str, Any] | None = None,
    ):
        """Replace the descriptive fields that are given and merge state."""
        if name is not None:
            self.world_context.name = name
        if description is not None:
            self.world_context.description = description
        if rules is not None:
            self.world_context.rules = list(rules)
        await self.update_world_state(state or {})

    async def export_agent_data(self, agent_id: str) -> ExportBundle:
        return await collect_agent_export(self.store, self.user_id, agent_id)

    async def terminate_agent(self, agent_id: str):
        """Reset one agent to idle with empty memory and drop its runtime state."""
        if not await self.store.reset_agent(self.user_id, agent_id):
            raise AgentNotFoundError(agent_id)

        self.agent_states.pop(agent_id, None)
        await self.log(LogType.INFO, "Agent terminated and reset to idle state", agent_id=agent_id)

        self._update_metrics(
            len(self.agent_states),
            [s.processing_time for s in self.agent_states.values()],
        )
        await self._broadcast_metrics()
        await self.broadcast_agents()
