from __future__ import annotations

from typing import Iterable
from urllib.parse import parse_qsl, urlencode

from starlette.requests import Request
from starlette.types import ASGIApp, Receive, Scope, Send

from app.core.context import get_request_context, is_api_path


def _base_name(key: str) -> str:
    return key.split("[", 1)[0]


def collapse_repeated_params(
    items: Iterable[tuple[str, str]], whitelist: Iterable[str]
) -> tuple[list[tuple[str, str]], dict[str, list[str]]]:
    """Keep the last value of every repeated parameter unless its base name is whitelisted."""
    allowed = set(whitelist)
    grouped: dict[str, list[str]] = {}
    for key, value in items:
        grouped.setdefault(key, []).append(value)

    cleaned: list[tuple[str, str]] = []
    polluted: dict[str, list[str]] = {}
    for key, values in grouped.items():
        if len(values) > 1 and _base_name(key) not in allowed:
            polluted[key] = values
            values = values[-1:]
        cleaned.extend((key, value) for value in values)
    return cleaned, polluted


class ParameterPollutionMiddleware:
    def __init__(self, app: ASGIApp, *, api_prefix: str, whitelist: Iterable[str]):
        self.app = app
        self.api_prefix = api_prefix
        self.whitelist = tuple(whitelist)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not is_api_path(scope["path"], self.api_prefix):
            await self.app(scope, receive, send)
            return

        raw = scope.get("query_string", b"").decode("latin-1")
        if raw:
            cleaned, polluted = collapse_repeated_params(parse_qsl(raw, keep_blank_values=True), self.whitelist)
            if polluted:
                scope = dict(scope)
                scope["query_string"] = urlencode(cleaned).encode("latin-1")
                get_request_context(Request(scope)).query_polluted = polluted

        await self.app(scope, receive, send)
