from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.types import ASGIApp, Receive, Scope, Send

_LOG = logging.getLogger("app.errors")

GENERIC_ERROR_MESSAGE = "Something went very wrong!"


class AppError(Exception):
    """Expected, user-facing failure with a status code and a message safe to expose."""

    is_operational = True

    def __init__(self, message: str, status_code: int, headers: dict[str, str] | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = int(status_code)
        self.status = "fail" if 400 <= self.status_code < 500 else "error"
        self.headers = dict(headers or {})


def _request_path(request: Request) -> str:
    query = request.url.query
    return f"{request.url.path}?{query}" if query else request.url.path


def not_found_error(request: Request) -> AppError:
    return AppError(f"Can't find {_request_path(request)} on this server!", 404)


def error_response(request: Request, exc: BaseException) -> JSONResponse:
    if isinstance(exc, AppError):
        return JSONResponse(
            status_code=exc.status_code,
            content={"status": exc.status, "message": exc.message},
            headers=exc.headers or None,
        )
    _LOG.error(
        "Unexpected error on %s %s",
        request.method,
        request.url.path,
        exc_info=(type(exc), exc, exc.__traceback__),
    )
    return JSONResponse(status_code=500, content={"status": "error", "message": GENERIC_ERROR_MESSAGE})


def _validation_message(exc: RequestValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(item) for item in err.get("loc", ()) if item not in {"body", "query", "path"})
        msg = str(err.get("msg") or "invalid value")
        parts.append(f"{loc}: {msg}" if loc else msg)
    return "Invalid input data. " + ". ".join(parts)


class ErrorBoundaryMiddleware:
    """Turns failures escaping the wrapped stages into the generic 500 response."""

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        response_started = False

        async def _send(message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, receive, _send)
        except Exception as exc:
            if response_started:
                raise
            response = error_response(Request(scope), exc)
            await response(scope, receive, send)


def install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def _handle_app_error(request: Request, exc: AppError):
        return error_response(request, exc)

    @app.exception_handler(RequestValidationError)
    async def _handle_validation_error(request: Request, exc: RequestValidationError):
        return error_response(request, AppError(_validation_message(exc), 400))

    @app.exception_handler(StarletteHTTPException)
    async def _handle_http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404 and exc.detail == "Not Found":
            return error_response(request, not_found_error(request))
        return error_response(request, AppError(str(exc.detail), exc.status_code, headers=exc.headers))
