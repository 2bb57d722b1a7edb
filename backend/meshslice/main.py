"""
Main application module for the mesh slicing service.

This file sets up the FastAPI application, configures CORS so browser
clients can make cross-origin requests, and exposes a simple health check
endpoint.  The slicing and spatial query routes are included under the
`/api` namespace.  The kernel in ``meshslice.services`` does not depend
on anything here and can be used directly as a library.
"""

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .api.routes_slice import router as slice_router
from .services.config import load_settings

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """Factory to create and configure the FastAPI application.

    Returns:
        FastAPI: The configured FastAPI application instance.
    """
    app = FastAPI(title="meshslice")

    # Validate environment configuration before serving requests so a bad
    # MESHSLICE_* value fails at startup rather than on the first slice.
    @app.on_event("startup")  # type: ignore[misc]
    async def startup_event() -> None:
        settings = load_settings()
        logger.info(
            "meshslice settings: minimum_perimeter=%s snap_grid=%s max_gap=%s plane_eps=%s cache_entries=%s",
            settings.minimum_perimeter,
            settings.snap_grid,
            settings.max_gap,
            settings.plane_eps,
            settings.cache_entries,
        )

    # Allow all origins by default.  In production you should restrict
    # this to the domains that are allowed to access your API.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Health check endpoint for monitoring and deployment probes.
    @app.get("/api/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    app.include_router(slice_router, prefix="/api", tags=["slicing"])

    return app


# Create the application instance.  Uvicorn will import this when
# running `uvicorn meshslice.main:app` from within the backend directory.
app = create_app()
