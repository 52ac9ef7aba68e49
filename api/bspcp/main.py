"""BSPCP API application.

Serve through the app factory:

    uvicorn --factory bspcp.main:create_app
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles

from bspcp.core.config import Settings
from bspcp.core.database import Database
from bspcp.core.errors import install_error_handlers
from bspcp.core.logging import configure_logging
from bspcp.routes import admin, applications, backups, bookings, content, member, member_auth, payments

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or Settings()
    configure_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Startup and shutdown events."""
        await app.state.db.create_all()
        logger.info("%s API started", settings.app_name)
        yield
        await app.state.db.dispose()

    app = FastAPI(
        title=settings.app_name,
        version="1.0.0",
        docs_url=f"{settings.api_prefix}/docs",
        openapi_url=f"{settings.api_prefix}/openapi.json",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.db = Database(settings.database_url, echo=settings.database_echo)
    install_error_handlers(app)

    # CORS - permissive in dev, lock down in production
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [settings.frontend_url],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Mount routes
    for module in (applications, member_auth, member, payments, bookings, content, admin):
        app.include_router(module.router, prefix=settings.api_prefix)
    app.include_router(backups.router, prefix=settings.api_prefix)
    app.include_router(backups.listing, prefix=settings.api_prefix)

    settings.upload_dir.mkdir(parents=True, exist_ok=True)
    settings.backup_dir.mkdir(parents=True, exist_ok=True)
    app.mount("/uploads", StaticFiles(directory=settings.upload_dir), name="uploads")
    app.mount("/backup", StaticFiles(directory=settings.backup_dir), name="backup")

    @app.get("/health")
    async def health():
        return {"status": "ok", "app": settings.app_name}

    return app
