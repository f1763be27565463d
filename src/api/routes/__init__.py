"""API routes."""

from . import agents, ws

__all__ = ["agents", "ws"]
