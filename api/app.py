"""
FastAPI Application Entry Point

This module creates and configures the FastAPI application for the
gate-pass face identity service.

The application provides:
- REST endpoints for enrollment, verification and identification
- Kiosk scan sessions with bounded retries and manual fallback
- REST endpoints for student management
- Health check endpoint

Usage:
    # From project root:
    uvicorn api.app:app --host 0.0.0.0 --port 8000 --reload

    # Or run directly:
    python -m api.app
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routes import enrollment_router, kiosk_router, management_router, recognition_router
from api.schemas import HealthResponse
from api.service import FaceIdService, build_service, get_service
from faceid import __version__
from faceid.config import get_config, get_server_config
from faceid.errors import (
    DimensionMismatch,
    ImageDecodeError,
    InvalidTransition,
    NoFaceDetected,
    NotReady,
)


# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# Error type -> HTTP status
ERROR_STATUS = {
    ImageDecodeError: 400,
    NoFaceDetected: 422,
    DimensionMismatch: 409,
    InvalidTransition: 409,
    NotReady: 503,
}


def _make_error_handler(status_code: int):
    async def handler(request: Request, exc: Exception):
        logger.warning(f"{request.method} {request.url.path} -> {status_code}: {exc}")
        return JSONResponse(
            status_code=status_code,
            content={"detail": str(exc), "error": type(exc).__name__},
        )
    return handler


def create_app(config: Optional[Dict[str, Any]] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        config: Full configuration dictionary. If None, config.yaml is used.
                Read when the app starts, not when it is created.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        Runs on startup:
        - Open the descriptor store and load the gallery
        - Initialize the detection backend when enabled

        Runs on shutdown:
        - Close the store and the detection backend
        """
        logger.info("=" * 60)
        logger.info("Starting Gate-Pass Face Identity API")
        logger.info("=" * 60)

        service = build_service(config if config is not None else get_config())
        app.state.service = service

        stats = service.store.get_stats()
        logger.info(f"Descriptor store ready: {stats['total_students']} students enrolled")
        logger.info("API startup complete!")

        yield

        logger.info("Shutting down API...")
        service.close()
        logger.info("Shutdown complete")

    app = FastAPI(
        title="Gate-Pass Face Identity API",
        description="""
Offline face identity matching for the gate-pass kiosk.

## Features
- **Enrollment**: Store a student's face descriptor from one photo
- **Recognition**: 1:1 verification and 1:N identification
- **Kiosk**: Bounded scan attempts with manual fallback
- **Students**: List, view, and delete enrolled students

Images are sent as base64 PNG/JPEG strings.
        """,
        version=__version__,
        lifespan=lifespan,
    )

    # Configure CORS for kiosk frontend access
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    for error_type, status_code in ERROR_STATUS.items():
        app.add_exception_handler(error_type, _make_error_handler(status_code))

    app.include_router(enrollment_router)
    app.include_router(recognition_router)
    app.include_router(kiosk_router)
    app.include_router(management_router)

    @app.get("/health", response_model=HealthResponse, tags=["system"])
    async def health_check(request: Request):
        """
        Check the health of the API and its dependencies.

        Reports "degraded" when detection is enabled but its backend is not ready.
        """
        service: FaceIdService = get_service(request)
        service.expire_sessions()
        backend = service.pipeline.detection_backend
        detection_ready = backend is not None and backend.ready

        return HealthResponse(
            status="degraded" if backend is not None and not detection_ready else "healthy",
            algorithm=service.pipeline.tag,
            enrolled_students=len(service.pipeline.gallery),
            detection_enabled=backend is not None,
            detection_ready=detection_ready,
            active_sessions=len(service.sessions),
        )

    @app.get("/", tags=["system"])
    async def root():
        """Root endpoint with API information."""
        return {
            "name": "Gate-Pass Face Identity API",
            "version": __version__,
            "docs": "/docs",
            "health": "/health",
        }

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    server = get_server_config()
    logger.info(f"Starting server on {server['host']}:{server['port']}")
    uvicorn.run(
        "api.app:app",
        host=server["host"],
        port=server["port"],
        reload=True,
        log_level="info",
    )
