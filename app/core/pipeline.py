from __future__ import annotations

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.core.config import Settings
from app.core.csp import build_content_security_policy
from app.core.errors import ErrorBoundaryMiddleware
from app.core.http_hardening import install_dev_logging, install_http_hardening, install_request_context
from app.core.param_pollution import ParameterPollutionMiddleware
from app.core.rate_limiting import install_rate_limiting
from app.core.request_body import BodyIngestionMiddleware
from app.core.static_assets import StaticAssetMiddleware


def install_security_pipeline(app: FastAPI, settings: Settings) -> None:
    """Registers the request stages.

    Starlette runs the most recently registered middleware first, so stages are
    registered innermost first. Request order, outermost to innermost:

    static assets -> CORS -> request context/nonce -> security headers ->
    error boundary -> dev logging -> rate limit -> body ingestion -> parameter pollution ->
    error boundary -> routes.
    """
    policy = build_content_security_policy(settings)
    app.state.content_security_policy = policy

    app.add_middleware(ErrorBoundaryMiddleware)
    app.add_middleware(
        ParameterPollutionMiddleware,
        api_prefix=settings.API_PREFIX,
        whitelist=settings.hpp_whitelist,
    )
    app.add_middleware(
        BodyIngestionMiddleware,
        api_prefix=settings.API_PREFIX,
        max_bytes=settings.BODY_LIMIT_BYTES,
    )
    install_rate_limiting(app, settings)
    install_dev_logging(app, settings)
    # Failures in the rate limit, body and pollution stages still get security headers.
    app.add_middleware(ErrorBoundaryMiddleware)
    install_http_hardening(app, policy)
    install_request_context(app)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(StaticAssetMiddleware, directory=settings.STATIC_DIR)
