"""Hybrid (semantic + keyword) retrieval over regulatory documents."""
import asyncio
import logging
import time
from typing import Optional

from config import get_settings
from services.database import keyword_search_documents
from services.embeddings import get_embedding
from services.errors import SearchUnavailableError
from services.fetcher import with_timeout
from services.models import RetrievedDocument, SearchResult
from services.pinecone_client import search_regulatory_documents

logger = logging.getLogger(__name__)


class EmbeddingFailed(Exception):
    """Marks a semantic-branch failure caused by the embedding call itself."""


def merge_results(
    semantic: list[RetrievedDocument],
    keyword: list[RetrievedDocument],
    limit: int,
) -> list[RetrievedDocument]:
    """
    Combine both branches into one ranked, duplicate-free list.

    Semantic hits come first, so a document found by both keeps its
    similarity. Ordering is by descending similarity with missing scores
    counted as 0; the sort is stable, so keyword-only hits keep their order.
    """
    seen: set[str] = set()
    unique: list[RetrievedDocument] = []
    for doc in [*semantic, *keyword]:
        if doc.id in seen:
            continue
        seen.add(doc.id)
        unique.append(doc)

    unique.sort(key=lambda d: d.similarity or 0.0, reverse=True)
    return unique[:limit]


async def _semantic_branch(
    query: str,
    similarity_threshold: float,
    limit: int,
    timeout: float,
) -> list[RetrievedDocument]:
    try:
        embedding = await get_embedding(query)
    except Exception as e:
        raise EmbeddingFailed(str(e)) from e

    try:
        return await with_timeout(
            lambda: search_regulatory_documents(embedding, similarity_threshold, limit),
            timeout=timeout,
            source="Pinecone",
        )
    except Exception as e:
        logger.warning(f"Semantic search error: {e}")
        return []


async def _keyword_branch(query: str, limit: int, timeout: float) -> list[RetrievedDocument]:
    return await with_timeout(
        lambda: keyword_search_documents(query, limit),
        timeout=timeout,
        source="Postgres",
    )


async def hybrid_search(
    query: str,
    similarity_threshold: Optional[float] = None,
    limit: Optional[int] = None,
) -> SearchResult:
    """
    Run semantic and keyword retrieval concurrently and merge the results.

    A failing branch contributes nothing. The search as a whole fails only
    when the embedding call and the keyword search both fail.
    """
    settings = get_settings()
    threshold = similarity_threshold if similarity_threshold is not None else settings.similarity_threshold
    limit = limit or settings.max_retrieved_docs
    timeout = settings.api_timeout_seconds

    started = time.perf_counter()
    semantic, keyword = await asyncio.gather(
        _semantic_branch(query, threshold, limit, timeout),
        _keyword_branch(query, limit, timeout),
        return_exceptions=True,
    )

    if isinstance(semantic, EmbeddingFailed) and isinstance(keyword, Exception):
        logger.error(f"Search unavailable: embedding failed ({semantic}), keyword failed ({keyword})")
        raise SearchUnavailableError("Regulatory search is temporarily unavailable")

    if isinstance(semantic, Exception):
        logger.warning(f"Semantic search skipped: {semantic}")
        semantic = []
    if isinstance(keyword, Exception):
        logger.warning(f"Keyword search error: {keyword}")
        keyword = []

    documents = merge_results(semantic, keyword, limit)

    if semantic and keyword:
        search_type = "hybrid"
    elif semantic:
        search_type = "semantic"
    elif keyword:
        search_type = "keyword"
    else:
        search_type = "none"

    return SearchResult(
        documents=documents,
        search_type=search_type,
        total_results=len(documents),
        processing_time_ms=(time.perf_counter() - started) * 1000,
    )
