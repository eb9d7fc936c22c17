"""
Health check route for the receipt search backend.

This endpoint is PUBLIC (no authentication required) and provides a simple
status check for load balancers, monitoring, and deployment verification.
"""

from fastapi import APIRouter

from receipt_search.schemas.health import HealthResponse
from receipt_search.utils.logging import get_logger

logger = get_logger(__name__)

# Create router with no prefix (mounted at root level in main.py)
router = APIRouter()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check endpoint",
    description=(
        "Public health check endpoint (no authentication required). "
        "Returns the service status and the embedding model in use."
    ),
    status_code=200,
)
async def health_check() -> HealthResponse:
    """
    Public health check endpoint.

    Example response:
        {
            "status": "ok",
            "service": "receipt-search",
            "embedding_model": "gemini-embedding-001"
        }
    """
    logger.debug("Health check endpoint called")

    return HealthResponse(status="ok")
