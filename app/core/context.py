from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from fastapi import Request


@dataclass
class ClientRequestContext:
    client_address: str
    nonce: str
    requested_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    cookies: dict[str, str] = field(default_factory=dict)
    body: Any = None
    query_polluted: dict[str, list[str]] = field(default_factory=dict)


def client_address_of(request: Request) -> str:
    client = request.client
    return client.host if client and client.host else "unknown"


def get_request_context(request: Request) -> ClientRequestContext:
    context = getattr(request.state, "context", None)
    if context is None:
        # Request reached a handler without passing the pipeline (e.g. a bare router in tests).
        context = ClientRequestContext(client_address=client_address_of(request), nonce="")
        request.state.context = context
    return context


def is_api_path(path: str, api_prefix: str) -> bool:
    prefix = "/" + str(api_prefix or "").strip("/")
    return path == prefix or path.startswith(prefix + "/")
