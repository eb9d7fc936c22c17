"""
Pydantic schemas for the hybrid search endpoints.
"""

from datetime import date
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, model_validator

from receipt_search.schemas.embeddings import EmbeddingMetadata
from receipt_search.utils.constants import SOURCE_TYPES


class SearchFilters(BaseModel):
    """
    Structural filters applied before scoring.

    Date and amount ranges only constrain receipt and claim records; every
    other source type passes them unchanged.
    """

    source_types: Optional[List[str]] = Field(
        default_factory=lambda: list(SOURCE_TYPES),
        description="Source types to search (None = all)"
    )
    content_types: Optional[List[str]] = Field(None, description="Content types to search (None = all)")
    user_filter: Optional[str] = Field(None, description="Only records owned by this user")
    team_filter: Optional[str] = Field(None, description="Only records belonging to this team")
    language: Optional[str] = Field(None, description="ISO language code")
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    amount_min: Optional[float] = Field(None, ge=0)
    amount_max: Optional[float] = Field(None, ge=0)

    @model_validator(mode="after")
    def validate_ranges(self):
        """Reject inverted date or amount ranges."""
        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValueError("start_date must be on or before end_date")
        if (
            self.amount_min is not None
            and self.amount_max is not None
            and self.amount_min > self.amount_max
        ):
            raise ValueError("amount_min must be less than or equal to amount_max")
        return self

    @property
    def has_date_or_amount_filter(self) -> bool:
        return any(
            value is not None
            for value in (self.start_date, self.end_date, self.amount_min, self.amount_max)
        )


class HybridSearchParams(BaseModel):
    """Thresholds and weights for the vector + text search."""

    similarity_threshold: float = Field(0.2, ge=0, le=1)
    trigram_threshold: float = Field(0.3, ge=0, le=1)
    semantic_weight: float = Field(0.6, ge=0)
    trigram_weight: float = Field(0.15, ge=0)
    keyword_weight: float = Field(0.25, ge=0)
    match_count: int = Field(20, ge=1, le=200)


class TextSearchParams(BaseModel):
    """
    Thresholds and weights for the text-only search.

    The trigram branch is admitted against `similarity_threshold`; without a
    query vector the semantic component is always 0.
    """

    similarity_threshold: float = Field(0.3, ge=0, le=1)
    semantic_weight: float = Field(0.4, ge=0)
    trigram_weight: float = Field(0.3, ge=0)
    keyword_weight: float = Field(0.3, ge=0)
    match_count: int = Field(20, ge=1, le=200)


class HybridSearchRequest(BaseModel):
    """Request body for POST /search."""

    query_text: Optional[str] = Field(None, max_length=1000)
    query_embedding: Optional[List[float]] = Field(
        None, description="Precomputed 1536-dimension query vector"
    )
    embed_query: bool = Field(
        False,
        description="Compute the query vector server-side when query_embedding is absent"
    )
    filters: SearchFilters = Field(default_factory=SearchFilters)
    params: HybridSearchParams = Field(default_factory=HybridSearchParams)


class TextSearchRequest(BaseModel):
    """Request body for POST /search/text."""

    query_text: str = Field(..., max_length=1000)
    filters: SearchFilters = Field(default_factory=SearchFilters)
    params: TextSearchParams = Field(default_factory=TextSearchParams)


class SearchResult(BaseModel):
    """One ranked embedding record with its component scores."""

    id: str
    source_type: str
    source_id: str
    content_type: str
    content_text: str
    similarity: float = Field(..., description="Semantic (cosine) component")
    trigram_similarity: float = Field(..., description="Trigram component")
    keyword_score: float = Field(..., description="Keyword component")
    combined_score: float
    metadata: EmbeddingMetadata


class SearchResponse(BaseModel):
    """Response for the search endpoints."""

    results: List[SearchResult]
    count: int
    semantic_enabled: bool = Field(..., description="False when no query vector was available")
    text_enabled: bool = Field(..., description="False when query text was empty")


class MerchantSuggestion(BaseModel):
    """One row of fuzzy merchant search ("did you mean ...")."""

    merchant_name: str
    similarity_score: float
    occurrence_count: int
    latest_date: Optional[date] = None
    total_amount: Optional[float] = None


class MerchantSuggestionResponse(BaseModel):
    suggestions: List[MerchantSuggestion]
    count: int


class SnippetRequest(BaseModel):
    """Request body for POST /search/snippets."""

    content_text: Optional[str] = None
    query_text: Optional[str] = None
    snippet_length: int = Field(200, ge=1, le=2000)
    max_snippets: int = Field(3, ge=1, le=20)


class SnippetResponse(BaseModel):
    snippets: List[str]


class ContentTypeShare(BaseModel):
    content_type: str
    count: int
    percentage: float


class SearchStats(BaseModel):
    """Index coverage statistics (get_enhanced_search_stats)."""

    total_embeddings: int
    semantic_ready: int
    trigram_indexed: int
    avg_content_length: Optional[float] = None
    top_content_types: List[ContentTypeShare] = Field(default_factory=list)
    search_performance_metrics: Dict[str, Optional[float]] = Field(default_factory=dict)
