"""
Session channel: one WebSocket per client, one scheduler per socket.

Inbound frames are JSON ``{command, payload?}``; outbound frames are
``{type, payload}``. Command failures are reported as ``error`` log lines
on the stream and never close the connection. Liveness is checked with
WebSocket protocol pings by the server (see ``uvicorn_options`` in main.py);
application-level ``{type: "ping"}`` frames from the client are ignored.
"""

import asyncio
import json
from typing import Any

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from src.api.auth import UserNotFoundError, resolve_user
from src.core import LogType, Settings, SimulationScheduler, TextGenerator, User
from src.core.metrics import get_metrics
from src.core.models import generate_id

logger = structlog.get_logger()
router = APIRouter()

KEEPALIVE_TYPES = ("ping", "pong")


# =============================================================
# COMMAND PAYLOADS
# =============================================================


class DeployPayload(BaseModel):
    """Payload of the ``deploy`` command."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(min_length=1)
    description: str
    goals: str
    user_id: str | None = Field(default=None, alias="userId")


class AgentIdPayload(BaseModel):
    """Payload of ``exportData`` and ``terminate``."""

    model_config = ConfigDict(populate_by_name=True)

    agent_id: str = Field(min_length=1, alias="agentId")


class WorldContextPayload(BaseModel):
    """Payload of ``updateWorldContext``."""

    name: str | None = None
    description: str | None = None
    rules: list[str] | None = None
    state: dict[str, Any] | None = None


class OwnershipError(Exception):
    """Raised when a command names a user other than the connected one."""

    pass


# =============================================================
# CHANNEL
# =============================================================


class SessionChannel:
    """One authenticated connection and its bound scheduler."""

    def __init__(
        self,
        websocket: WebSocket,
        user: User,
        store,
        llm: TextGenerator,
        settings: Settings,
    ):
        self.websocket = websocket
        self.user = user
        self.settings = settings
        self.client_id = generate_id()
        self.closed = False
        self._torn_down = False
        self._send_lock = asyncio.Lock()
        self.scheduler = SimulationScheduler(
            user.id,
            store,
            llm,
            self.send,
            tick_interval=settings.tick_interval_seconds,
        )
        self._handlers = {
            "deploy": ("deploy agent", self._deploy),
            "start": ("start simulation", self._start),
            "pause": ("pause simulation", self._pause),
            "reset": ("reset simulation", self._reset),
            "exportData": ("export agent data", self._export_data),
            "terminate": ("terminate agent", self._terminate),
            "updateWorldContext": ("update world context", self._update_world_context),
        }

    async def send(self, event: dict[str, Any]):
        """Write one event; a dead socket marks the channel closed."""
        if self.closed:
            return
        async with self._send_lock:
            try:
                await self.websocket.send_json(event)
            except (WebSocketDisconnect, RuntimeError, OSError) as e:
                logger.warning("ws_send_failed", client_id=self.client_id, error=str(e))
                self.closed = True

    async def run(self):
        """Serve the connection until the client goes away."""
        get_metrics().add_gauge("agentsim_sessions_active", value=1)
        try:
            await self.scheduler.broadcast_agents()
            while not self.closed:
                message = await self.websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000))

                raw = message.get("text")
                if raw is None:
                    raw = (message.get("bytes") or b"").decode("utf-8", errors="replace")
                await self.handle_message(raw)

        except WebSocketDisconnect as e:
            logger.info("ws_client_disconnected", client_id=self.client_id, user_id=self.user.id, code=e.code)
        except Exception as e:
            logger.error("ws_connection_error", client_id=self.client_id, error=str(e), error_type=type(e).__name__)
            await self.send({"type": "error", "payload": "An error occurred in the connection"})
            await self._close_socket(status.WS_1011_INTERNAL_ERROR)
        finally:
            await self.close()

    async def close(self):
        """Tear down the scheduler. Idempotent."""
        if self._torn_down:
            return
        self._torn_down = True
        self.closed = True
        await self.scheduler.close()
        get_metrics().add_gauge("agentsim_sessions_active", value=-1)

    async def _close_socket(self, code: int):
        try:
            await self.websocket.close(code=code)
        except RuntimeError:
            pass  # Already closed

    # =============================================================
    # DISPATCH
    # =============================================================

    async def handle_message(self, raw: str):
        """Parse and dispatch one inbound frame."""
        if len(raw) > self.settings.max_message_bytes:
            await self._reject("Message too large")
            return

        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            await self._reject("Malformed message: invalid JSON")
            return

        if not isinstance(data, dict):
            await self._reject("Malformed message: expected a JSON object")
            return

        command = data.get("command")
        if command is None:
            if data.get("type") in KEEPALIVE_TYPES:
                return
            await self._reject("Malformed message: missing command")
            return

        entry = self._handlers.get(command) if isinstance(command, str) else None
        if entry is None:
            await self._reject(f"Unknown command: {command}")
            return

        payload = data.get("payload")
        if payload is None:
            payload = {}
        if not isinstance(payload, dict):
            await self._reject(f"Invalid payload for {command}: expected an object")
            return

        action, handler = entry
        metrics = get_metrics()
        try:
            await handler(payload)
            metrics.increment("agentsim_commands_total", {"command": command, "status": "success"})
        except ValidationError as e:
            metrics.increment("agentsim_commands_total", {"command": command, "status": "invalid"})
            fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
            await self._reject(f"Invalid payload for {command}: {fields}")
        except Exception as e:
            metrics.increment("agentsim_commands_total", {"command": command, "status": "error"})
            logger.error("ws_command_failed", client_id=self.client_id, command=command, error=str(e))
            await self.scheduler.log(LogType.ERROR, f"Failed to {action}: {e}")

    async def _reject(self, reason: str):
        logger.warning("ws_message_rejected", client_id=self.client_id, reason=reason)
        await self.scheduler.log(LogType.ERROR, reason)

    # =============================================================
    # COMMANDS
    # =============================================================

    async def _deploy(self, payload: dict[str, Any]):
        request = DeployPayload.model_validate(payload)
        if request.user_id and request.user_id != self.user.id:
            raise OwnershipError("Agent owner does not match the connected user")
        await self.scheduler.deploy_agent(request.name, request.description, request.goals)

    async def _start(self, payload: dict[str, Any]):
        await self.scheduler.start()

    async def _pause(self, payload: dict[str, Any]):
        await self.scheduler.stop()

    async def _reset(self, payload: dict[str, Any]):
        await self.scheduler.reset()

    async def _export_data(self, payload: dict[str, Any]):
        request = AgentIdPayload.model_validate(payload)
        bundle = await self.scheduler.export_agent_data(request.agent_id)
        logger.info(
            "agent_data_exported",
            agent_id=request.agent_id,
            interactions=len(bundle.interactions),
            logs=len(bundle.logs),
        )
        await self.scheduler.log(LogType.INFO, f"Agent data exported for agent ID: {request.agent_id}")

    async def _terminate(self, payload: dict[str, Any]):
        request = AgentIdPayload.model_validate(payload)
        await self.scheduler.terminate_agent(request.agent_id)
        await self.scheduler.log(LogType.INFO, f"Agent terminated: {request.agent_id}")

    async def _update_world_context(self, payload: dict[str, Any]):
        request = WorldContextPayload.model_validate(payload)
        await self.scheduler.update_world_context(
            name=request.name,
            description=request.description,
            rules=request.rules,
            state=request.state,
        )
        await self.scheduler.log(LogType.INFO, f"World context updated: {self.scheduler.world_context.name}")
        await self.send({"type": "worldContext", "payload": payload})


# =============================================================
# ROUTES
# =============================================================


@router.websocket("/ws")
async def simulation_socket(websocket: WebSocket):
    """
    Dashboard session channel.

    Requires ``?id=<url-encoded user id>``. Unknown users are refused
    before the handshake completes.
    """
    state = websocket.app.state
    try:
        user = await resolve_user(
            websocket.query_params.get("id"),
            state.store,
            auto_provision=state.settings.auto_provision_users,
        )
    except UserNotFoundError as e:
        logger.warning("ws_connection_refused", reason=str(e))
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return
    except Exception as e:
        logger.error("ws_user_resolution_failed", error=str(e))
        await websocket.close(code=status.WS_1011_INTERNAL_ERROR)
        return

    await websocket.accept()
    channel = SessionChannel(websocket, user, state.store, state.llm, state.settings)
    logger.info(
        "ws_client_connected",
        client_id=channel.client_id,
        user_id=user.id,
        client=websocket.client.host if websocket.client else None,
    )
    await channel.run()
