from __future__ import annotations

from fastapi import FastAPI

from .db import init_db_pool, shutdown_db_pool
from .routes.core import router as core_router
from .routes.violations import router as violations_router


def create_app() -> FastAPI:
    app = FastAPI(title="Traffic Violation Analysis API", version="0.1.0")

    @app.on_event("startup")
    def _startup_db_pool() -> None:
        init_db_pool()

    @app.on_event("shutdown")
    def _shutdown_db_pool() -> None:
        shutdown_db_pool()

    app.include_router(core_router)
    app.include_router(violations_router)

    return app


# `tva_api.main:app` is the stable server entrypoint.
app = create_app()
