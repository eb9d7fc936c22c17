"""
Health check endpoint schemas.

The health endpoint is PUBLIC (no authentication required).
"""

from pydantic import BaseModel, Field

from receipt_search.config import settings


class HealthResponse(BaseModel):
    """Response model for GET /health."""

    status: str = Field(
        default="ok",
        description="Health status of the API (always 'ok' if responding)",
        examples=["ok"]
    )
    service: str = Field(default="receipt-search", description="Service name")
    embedding_model: str = Field(
        default_factory=lambda: settings.EMBEDDING_MODEL,
        description="Model used for document and query embeddings"
    )

    class Config:
        """Pydantic model configuration."""
        json_schema_extra = {
            "example": {
                "status": "ok",
                "service": "receipt-search",
                "embedding_model": "gemini-embedding-001"
            }
        }
