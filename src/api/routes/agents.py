"""
Read-only agent routes for the dashboard.

The WebSocket channel drives the simulation; these endpoints let the
dashboard (or a script) fetch a user's agents and download an export
bundle without holding a socket open.
"""

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request

from src.api.auth import require_user
from src.api.rate_limit import limiter
from src.core import AgentNotFoundError, User, collect_agent_export

logger = structlog.get_logger()
router = APIRouter()


@router.get("")
@limiter.limit("60/minute")
async def list_agents(request: Request, user: User = Depends(require_user)):
    """List the user's agents in wire form."""
    agents = await request.app.state.store.list_agents(user.id)
    return {"agents": [a.to_wire() for a in agents]}


@router.get("/{agent_id}/export")
@limiter.limit("20/minute")
async def export_agent(request: Request, agent_id: str, user: User = Depends(require_user)):
    """
    Export one agent with its interactions and logs.

    Scoped to the requesting user: another user's agent is reported as
    not found.
    """
    try:
        bundle = await collect_agent_export(request.app.state.store, user.id, agent_id)
    except AgentNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    logger.info("agent_export_served", user_id=user.id, agent_id=agent_id)
    return bundle.to_wire()
