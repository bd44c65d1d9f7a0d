"""Observability helpers (correlation IDs, client address extraction)."""
from __future__ import annotations
import uuid
from typing import Mapping

from starlette.requests import Request

REQUEST_ID_HEADER = "X-Request-ID"


def ensure_request_id(headers: Mapping[str, str]) -> str:
    return headers.get(REQUEST_ID_HEADER, None) or str(uuid.uuid4())


def request_id_of(request: Request) -> str:
    """Request id assigned by the middleware, falling back to the inbound header."""
    return getattr(request.state, "request_id", None) or request.headers.get(REQUEST_ID_HEADER, "unknown")


def client_ip_of(request: Request) -> str:
    # First hop of X-Forwarded-For when behind a proxy
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else ""


__all__ = ["ensure_request_id", "request_id_of", "client_ip_of", "REQUEST_ID_HEADER"]
