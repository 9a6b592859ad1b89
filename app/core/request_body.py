from __future__ import annotations

import json
from typing import Any

from starlette.requests import Request
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from app.core.context import get_request_context, is_api_path
from app.core.errors import AppError, error_response


def _is_json(content_type: str) -> bool:
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type == "application/json" or media_type.endswith("+json")


def parse_json_body(content_type: str, body: bytes) -> Any:
    if not body or not _is_json(content_type):
        return None
    try:
        return json.loads(body)
    except ValueError:
        raise AppError("Invalid JSON payload", 400)


class BodyIngestionMiddleware:
    """Reads the request body up to max_bytes, parses JSON and cookies into the request context."""

    def __init__(self, app: ASGIApp, *, api_prefix: str, max_bytes: int):
        self.app = app
        self.api_prefix = api_prefix
        self.max_bytes = int(max_bytes)

    def _too_large(self) -> AppError:
        return AppError(f"Request entity too large (limit {self.max_bytes} bytes)", 413)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http" or not is_api_path(scope["path"], self.api_prefix):
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        context = get_request_context(request)
        context.cookies = dict(request.cookies)

        declared = request.headers.get("content-length", "").strip()
        if declared.isdigit() and int(declared) > self.max_bytes:
            await error_response(request, self._too_large())(scope, receive, send)
            return

        chunks: list[bytes] = []
        size = 0
        while True:
            message = await receive()
            if message["type"] == "http.disconnect":
                return
            chunk = message.get("body", b"")
            size += len(chunk)
            if size > self.max_bytes:
                await error_response(request, self._too_large())(scope, receive, send)
                return
            chunks.append(chunk)
            if not message.get("more_body", False):
                break

        body = b"".join(chunks)
        try:
            context.body = parse_json_body(request.headers.get("content-type", ""), body)
        except AppError as exc:
            await error_response(request, exc)(scope, receive, send)
            return

        replayed = False

        async def _replay() -> Message:
            nonlocal replayed
            if not replayed:
                replayed = True
                return {"type": "http.request", "body": body, "more_body": False}
            return await receive()

        await self.app(scope, _replay, send)
