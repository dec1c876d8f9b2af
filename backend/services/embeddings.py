"""Embedding service using OpenAI."""
from openai import AsyncOpenAI
from typing import Optional
import logging

from config import get_settings
from services.fetcher import default_retry_config, with_retry, with_timeout

logger = logging.getLogger(__name__)

MAX_EMBEDDING_CHARS = 8000  # conservative limit under the model's 8192 tokens

_client: Optional[AsyncOpenAI] = None


def get_client() -> AsyncOpenAI:
    """Get or create OpenAI client."""
    global _client
    if _client is None:
        settings = get_settings()
        _client = AsyncOpenAI(
            api_key=settings.openai_api_key,
            base_url=settings.openai_base_url,
            max_retries=0,  # retries are handled by with_retry
        )
    return _client


def truncate_for_embedding(text: str) -> str:
    return text[:MAX_EMBEDDING_CHARS]


async def get_embedding(text: str) -> list[float]:
    """
    Get embedding for a single text.

    Text longer than MAX_EMBEDDING_CHARS is truncated. Each attempt is bounded
    by the API timeout and retried with backoff.
    """
    settings = get_settings()
    client = get_client()

    async def create():
        return await client.embeddings.create(
            model=settings.embedding_model,
            input=truncate_for_embedding(text),
        )

    try:
        response = await with_retry(
            lambda: with_timeout(create, timeout=settings.api_timeout_seconds, source="OpenAI"),
            default_retry_config(),
        )
        return response.data[0].embedding
    except Exception as e:
        logger.error(f"Embedding failed: {e}")
        raise


async def get_embeddings(texts: list[str]) -> list[list[float]]:
    """
    Get embeddings for multiple texts.

    Batches requests for efficiency.
    """
    settings = get_settings()
    client = get_client()

    async def create():
        return await client.embeddings.create(
            model=settings.embedding_model,
            input=[truncate_for_embedding(t) for t in texts],
        )

    try:
        response = await with_retry(
            lambda: with_timeout(create, timeout=settings.api_timeout_seconds, source="OpenAI"),
            default_retry_config(),
        )
        return [item.embedding for item in response.data]
    except Exception as e:
        logger.error(f"Batch embedding failed: {e}")
        raise
