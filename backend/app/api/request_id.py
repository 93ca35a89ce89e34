"""Request id helpers shared by the observability middleware and error handlers."""

from __future__ import annotations

from fastapi import Request

from app.obs import logging as obs_logging
from app.obs.middleware import REQUEST_ID_ATTR, REQUEST_ID_HEADER, resolve_request_id

__all__ = ["REQUEST_ID_ATTR", "REQUEST_ID_HEADER", "get_request_id", "resolve_request_id"]


def get_request_id(request: Request, default: str = "unknown") -> str:
    """Return the current request id if bound, else a default."""
    rid = getattr(request.state, REQUEST_ID_ATTR, None) or obs_logging.current_request_id()
    return rid or default
