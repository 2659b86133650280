"""FastAPI application factory."""
from __future__ import annotations
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from ..config import Settings
from ..pipeline import DocumentProcessor
from ..storage.database import init_db, close_db
from ..utils.logging import setup_logging
from .middleware import RequestLoggingMiddleware
from .routes import documents, health


def create_app(settings: Settings | None = None, processor: DocumentProcessor | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Tests inject ``processor`` directly; otherwise one is built from
    ``settings`` against the configured database at startup.
    """
    if settings is None:
        settings = Settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        setup_logging(settings.log_level)
        if app.state.processor is None:
            session_factory = init_db(settings.database_url.get_secret_value())
            app.state.processor = DocumentProcessor.from_settings(settings, session_factory=session_factory)
        yield
        # Shutdown
        await close_db()

    app = FastAPI(
        title="PayVAT API",
        description="Irish VAT document extraction API",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestLoggingMiddleware)

    # Store settings and processor in app state
    app.state.settings = settings
    app.state.processor = processor

    # Register routes
    app.include_router(health.router, tags=["health"])
    app.include_router(documents.router, prefix="/api/documents", tags=["documents"])

    return app
