"""
FastAPI application entry point for the receipt search backend.

This module creates the FastAPI app instance and registers all routers.
"""

import logging
from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from receipt_search.config import settings
from receipt_search.routes.embeddings import router as embeddings_router
from receipt_search.routes.health import router as health_router
from receipt_search.routes.maintenance import router as maintenance_router
from receipt_search.routes.queue import router as queue_router
from receipt_search.routes.search import router as search_router
from receipt_search.utils.errors import SearchCoreError

# Configure logging
logging.basicConfig(
    level=logging.getLevelName(settings.LOG_LEVEL.upper()),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


def _get_cors_origins() -> list[str]:
    """
    Get allowed CORS origins based on environment.

    - ENVIRONMENT=production: Uses CORS_ORIGINS (explicit list)
    - ENVIRONMENT=staging/development: Allows all origins

    The worker and the database webhook are server-to-server and are not
    affected by CORS.

    Returns:
        List of allowed origin URLs, or ["*"] for development.
    """
    if settings.is_production():
        origins = [origin.strip() for origin in settings.CORS_ORIGINS if origin.strip()]
        if origins:
            logger.info(f"CORS configured for production with {len(origins)} allowed origins")
        else:
            logger.warning(
                "CORS_ORIGINS not set in production. "
                "No web origins allowed. Set CORS_ORIGINS for web clients."
            )
        return origins

    logger.info(f"CORS configured for {settings.ENVIRONMENT}: allowing all origins")
    return ["*"]


# Create FastAPI app
app = FastAPI(
    title="Receipt Search API",
    description="Hybrid semantic / trigram / keyword search, embedding queue and maintenance jobs",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc"
)


@app.exception_handler(SearchCoreError)
async def search_core_exception_handler(request: Request, exc: SearchCoreError):
    """
    Map domain errors to their HTTP status.

    ValidationError -> 400, AuthorizationError -> 403, NotFoundError -> 404,
    TransientWorkerError -> 503, anything else -> 500.
    """
    log = logger.warning if exc.http_status < 500 else logger.error
    log(f"{exc.error_code} on {request.method} {request.url.path}: {exc.message}")

    return JSONResponse(
        status_code=exc.http_status,
        content={
            "error": exc.error_code,
            "details": exc.message
        }
    )


# Custom validation error handler to log detailed errors
@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Log detailed validation errors for debugging.

    The body is not logged: it may carry receipt text or vectors.
    """
    logger.error(
        f"Validation error on {request.method} {request.url.path}: {exc.errors()}"
    )

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "validation_error",
            "details": jsonable_encoder(exc.errors()),
        }
    )

# Configure CORS with environment-based origins
cors_origins = _get_cors_origins()
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(health_router, tags=["system"])
app.include_router(search_router)
app.include_router(embeddings_router)
app.include_router(queue_router)
app.include_router(maintenance_router)

logger.info("FastAPI app initialized successfully")
