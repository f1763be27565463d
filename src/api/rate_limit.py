"""
Rate limiter shared by the REST routes.

Kept out of main.py so route modules can import it without a cycle.
Requests are bucketed per ``user_id`` when one is given, else per client
address.
"""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

from src.core import get_settings


def rate_limit_key(request: Request) -> str:
    user_id = request.query_params.get("user_id")
    if user_id:
        return f"user:{user_id}"
    return get_remote_address(request)


limiter = Limiter(
    key_func=rate_limit_key,
    default_limits=[get_settings().rate_limit_default],
)
