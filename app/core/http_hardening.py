from __future__ import annotations

import base64
import logging
import re
import secrets
from time import perf_counter
from uuid import uuid4

from fastapi import FastAPI, Request

from app.core.config import Settings
from app.core.context import ClientRequestContext, client_address_of
from app.core.csp import ContentSecurityPolicy

REQUEST_ID_HEADER = "X-Request-ID"
_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,128}$")
_LOG = logging.getLogger("app.http")

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "X-DNS-Prefetch-Control": "off",
    "X-Permitted-Cross-Domain-Policies": "none",
    "Strict-Transport-Security": "max-age=15552000; includeSubDomains",
    "Cross-Origin-Opener-Policy": "same-origin",
    "Cross-Origin-Resource-Policy": "same-origin",
    "Origin-Agent-Cluster": "?1",
}


def _request_id_from_header(raw: str | None) -> str:
    value = str(raw or "").strip()
    if not value:
        return uuid4().hex
    if not _REQUEST_ID_RE.fullmatch(value):
        return uuid4().hex
    return value


def generate_nonce() -> str:
    return base64.b64encode(secrets.token_bytes(16)).decode("ascii")


def install_request_context(app: FastAPI) -> None:
    @app.middleware("http")
    async def _request_context_middleware(request: Request, call_next):
        request.state.context = ClientRequestContext(
            client_address=client_address_of(request),
            nonce=generate_nonce(),
        )
        return await call_next(request)


def install_http_hardening(app: FastAPI, policy: ContentSecurityPolicy) -> None:
    @app.middleware("http")
    async def _http_hardening_middleware(request: Request, call_next):
        request_id = _request_id_from_header(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id

        response = await call_next(request)

        context = getattr(request.state, "context", None)
        for key, value in SECURITY_HEADERS.items():
            response.headers[key] = value
        response.headers["Content-Security-Policy"] = policy.render(nonce=context.nonce if context else None)
        response.headers["Cache-Control"] = "no-store"
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


def install_dev_logging(app: FastAPI, settings: Settings) -> None:
    if not settings.is_development:
        return

    @app.middleware("http")
    async def _dev_logging_middleware(request: Request, call_next):
        started_at = perf_counter()
        response = await call_next(request)
        duration_ms = (perf_counter() - started_at) * 1000.0
        _LOG.info(
            "%s %s %s %.2f ms",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
        )
        return response
