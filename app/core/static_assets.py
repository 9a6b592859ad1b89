from __future__ import annotations

from pathlib import Path

from starlette.staticfiles import StaticFiles
from starlette.types import ASGIApp, Receive, Scope, Send


class StaticAssetMiddleware:
    """Serves existing files from the static directory before any other stage runs."""

    def __init__(self, app: ASGIApp, directory: str):
        self.app = app
        self.directory = Path(directory).resolve()
        self.static = StaticFiles(directory=str(self.directory), check_dir=False)

    def _is_asset(self, path: str) -> bool:
        relative = path.lstrip("/")
        if not relative:
            return False
        candidate = (self.directory / relative).resolve()
        try:
            candidate.relative_to(self.directory)
        except ValueError:
            return False
        return candidate.is_file()

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and scope["method"] in {"GET", "HEAD"} and self._is_asset(scope["path"]):
            await self.static(scope, receive, send)
            return
        await self.app(scope, receive, send)
