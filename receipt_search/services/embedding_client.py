"""
Embedding generation through the Google Gen AI SDK (google-genai).

Documents and queries are embedded with different task types so that
short queries land close to the longer texts they describe.
"""

import logging
from typing import List, Optional

from google import genai
from google.genai import types

from receipt_search.config import settings
from receipt_search.utils.errors import SearchCoreError, ValidationError

logger = logging.getLogger(__name__)

TASK_TYPE_DOCUMENT = "RETRIEVAL_DOCUMENT"
TASK_TYPE_QUERY = "RETRIEVAL_QUERY"

_gemini_client: Optional[genai.Client] = None


def _get_gemini_client() -> genai.Client:
    """
    Lazy initialization of the Gemini client.

    Raises:
        SearchCoreError: If GOOGLE_API_KEY is not configured.
    """
    global _gemini_client

    if _gemini_client is not None:
        return _gemini_client

    if not settings.GOOGLE_API_KEY:
        raise SearchCoreError("GOOGLE_API_KEY is not configured; cannot generate embeddings")

    _gemini_client = genai.Client(api_key=settings.GOOGLE_API_KEY)
    logger.info(f"Gemini client initialized for embeddings (model={settings.EMBEDDING_MODEL})")
    return _gemini_client


def estimate_tokens(text: str) -> int:
    """Rough token count used for metrics (about 4 characters per token)."""
    return len(text) // 4


class GeminiEmbedder:
    """Produces fixed-width embedding vectors for documents and queries."""

    def __init__(
        self,
        client: Optional[genai.Client] = None,
        model: Optional[str] = None,
        dimensions: Optional[int] = None,
    ):
        self._client = client
        self.model = model or settings.EMBEDDING_MODEL
        self.dimensions = dimensions or settings.EMBEDDING_DIMENSIONS

    @property
    def client(self) -> genai.Client:
        if self._client is None:
            self._client = _get_gemini_client()
        return self._client

    async def embed(self, text: str, task_type: str = TASK_TYPE_DOCUMENT) -> List[float]:
        """
        Embed one text.

        Raises:
            ValidationError: Empty input text.
            SearchCoreError: The model returned no vector or one of the wrong width.
            google.genai.errors.APIError: Propagated for the caller to classify.
        """
        if not text or not text.strip():
            raise ValidationError("Cannot embed empty text")

        response = await self.client.aio.models.embed_content(
            model=self.model,
            contents=[text],
            config=types.EmbedContentConfig(
                task_type=task_type,
                output_dimensionality=self.dimensions,
            ),
        )

        if not response.embeddings or not response.embeddings[0].values:
            raise SearchCoreError("Embedding model returned no vector")

        values = [float(value) for value in response.embeddings[0].values]
        if len(values) != self.dimensions:
            raise SearchCoreError(
                f"Embedding model returned {len(values)} dimensions, expected {self.dimensions}"
            )

        return values

    async def embed_query(self, text: str) -> List[float]:
        return await self.embed(text, task_type=TASK_TYPE_QUERY)
