from fastapi import FastAPI, Request
from app.core.config import Settings, settings
from app.core.errors import install_error_handlers, not_found_error
from app.core.pipeline import install_security_pipeline
from app.api.v1.router import router as v1_router

ALL_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def create_app(app_settings: Settings | None = None) -> FastAPI:
    cfg = app_settings or settings
    app = FastAPI(title=cfg.APP_NAME, version="0.1.0")
    install_error_handlers(app)
    install_security_pipeline(app, cfg)

    app.include_router(v1_router, prefix=f"{cfg.API_PREFIX.rstrip('/')}/v1")

    @app.get("/health")
    def health():
        return {"status": "ok"}

    # Registered last: anything no resource route matched.
    @app.api_route("/{full_path:path}", methods=ALL_METHODS, include_in_schema=False)
    def unmatched_route(request: Request, full_path: str):
        raise not_found_error(request)

    return app


app = create_app()
