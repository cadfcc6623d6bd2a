"""Main FastAPI application module.

This module builds the FastAPI application, wires the AI settings manager
into it and registers all route handlers.
"""

import logging
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import backup, profiles, providers, settings
from config import API_HOST, API_PORT, CORS_ALLOWED_ORIGINS
from core.dependencies import build_settings_manager
from core.logging_config import setup_logging
from utils.settings_manager import AISettingsManager

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"


def create_app(settings_manager: Optional[AISettingsManager] = None) -> FastAPI:
    """Create the FastAPI application.

    Args:
        settings_manager: Manager to serve. Built from config when omitted.

    Returns:
        The configured FastAPI application.
    """
    app = FastAPI(
        title="AI Settings API",
        description="Profile-scoped AI provider settings with encrypted API keys.",
        version=API_VERSION,
    )
    app.state.settings_manager = settings_manager or build_settings_manager()

    # Configure CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Register route handlers
    app.include_router(settings.router)
    app.include_router(profiles.router)
    app.include_router(providers.router)
    app.include_router(backup.router)

    @app.on_event("startup")
    def initialize_settings() -> None:
        """Load settings, running migration first if needed."""
        state = app.state.settings_manager.initialize()
        logger.info("AI settings initialized in state %s", state.value)

    @app.on_event("shutdown")
    def close_storage() -> None:
        app.state.settings_manager.storage.close()

    @app.get("/", summary="API root", tags=["Info"])
    def root() -> dict:
        """Return API information and documentation links."""
        return {
            "name": "AI Settings API",
            "version": API_VERSION,
            "docs": {
                "swagger": "/docs",
                "redoc": "/redoc",
            },
            "health": "/api/health",
        }

    @app.get("/api/health", summary="Health check", tags=["Health"])
    def health() -> dict:
        """Health check endpoint.

        Returns:
            Dictionary with status "ok", or "degraded" in fallback mode.
        """
        manager = app.state.settings_manager
        return {
            "status": "degraded" if manager.is_fallback_mode else "ok",
            "state": manager.state.value,
        }

    return app


# --- Startup code for direct execution ---
if __name__ == "__main__":
    import uvicorn

    setup_logging()
    server_url = f"http://{API_HOST}:{API_PORT}"
    logger.info("Starting AI Settings API at %s (docs: %s/docs)", server_url, server_url)
    uvicorn.run(create_app(), host=API_HOST, port=API_PORT)
