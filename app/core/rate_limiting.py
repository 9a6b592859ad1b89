from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from starlette.concurrency import run_in_threadpool

from app.core.config import Settings
from app.core.context import get_request_context, is_api_path
from app.core.errors import AppError, error_response
from app.services.rate_limit import get_rate_limiter

_LOG = logging.getLogger("app.rate_limit")


def install_rate_limiting(app: FastAPI, settings: Settings) -> None:
    limit = int(settings.RATE_LIMIT_MAX)
    window_seconds = int(settings.RATE_LIMIT_WINDOW_SECONDS)

    @app.middleware("http")
    async def _rate_limit_middleware(request: Request, call_next):
        if not is_api_path(request.url.path, settings.API_PREFIX):
            return await call_next(request)

        context = get_request_context(request)
        limiter = get_rate_limiter()
        result = await run_in_threadpool(
            limiter.hit,
            f"api:{context.client_address}",
            limit=limit,
            window_seconds=window_seconds,
        )
        if not result.allowed:
            _LOG.warning(
                "Rate limit exceeded client=%s count=%s retry_after=%s",
                context.client_address,
                result.current_value,
                result.retry_after_seconds,
            )
            error = AppError(
                settings.RATE_LIMIT_MESSAGE,
                429,
                headers={"Retry-After": str(result.retry_after_seconds)},
            )
            return error_response(request, error)

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(result.remaining(limit))
        return response
