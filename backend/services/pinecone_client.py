"""Pinecone vector index holding embedded CFR sections."""
from pinecone import Pinecone, ServerlessSpec
from typing import Optional
import asyncio
import logging
import time

from config import Settings, get_settings
from services.models import RetrievedDocument

logger = logging.getLogger(__name__)

INDEX_READY_POLL_SECONDS = 2

_pc: Optional[Pinecone] = None
_index = None


def _create_index(pc: Pinecone, settings: Settings) -> None:
    """Create the serverless index and block until it reports ready."""
    logger.info(f"Creating Pinecone index: {settings.pinecone_index_name}")
    pc.create_index(
        name=settings.pinecone_index_name,
        dimension=settings.embedding_dimensions,
        metric="cosine",
        spec=ServerlessSpec(cloud="aws", region=settings.pinecone_environment),
    )
    while not pc.describe_index(settings.pinecone_index_name).status.ready:
        logger.info("Waiting for index to be ready...")
        time.sleep(INDEX_READY_POLL_SECONDS)


async def init_pinecone(create_missing: bool = False):
    """
    Connect to the regulatory document index.

    The API server only connects: a missing index leaves semantic search
    disabled and retrieval falls back to keyword search. The indexing script
    passes ``create_missing=True`` to build the index first.
    """
    global _pc, _index

    settings = get_settings()

    if not settings.pinecone_api_key:
        logger.warning("Pinecone API key not set - semantic search disabled")
        return

    try:
        _pc = Pinecone(api_key=settings.pinecone_api_key)
        existing = {idx.name for idx in await asyncio.to_thread(_pc.list_indexes)}

        if settings.pinecone_index_name not in existing:
            if not create_missing:
                logger.warning(
                    f"Pinecone index {settings.pinecone_index_name} not found - "
                    "semantic search disabled until it is built"
                )
                return
            await asyncio.to_thread(_create_index, _pc, settings)

        _index = _pc.Index(settings.pinecone_index_name)
        logger.info(f"Connected to Pinecone index: {settings.pinecone_index_name}")

    except Exception as e:
        logger.error(f"Failed to initialize Pinecone: {e}")
        raise


def get_index():
    """The connected index; raises when semantic search is unavailable."""
    if _index is None:
        raise RuntimeError("Pinecone index not connected")
    return _index


async def upsert_vectors(
    vectors: list[dict],
    namespace: Optional[str] = None,
):
    """
    Upsert vectors to Pinecone.

    vectors: List of dicts with id, values, metadata
    """
    index = get_index()
    namespace = namespace or get_settings().pinecone_namespace
    await asyncio.to_thread(index.upsert, vectors=vectors, namespace=namespace)


async def query_vectors(
    query_vector: list[float],
    top_k: int = 5,
    namespace: Optional[str] = None,
    filter: Optional[dict] = None,
) -> list[dict]:
    """
    Query Pinecone for similar vectors.

    Returns list of matches with id, score, metadata.
    """
    index = get_index()
    namespace = namespace or get_settings().pinecone_namespace

    results = await asyncio.to_thread(
        index.query,
        vector=query_vector,
        top_k=top_k,
        namespace=namespace,
        filter=filter,
        include_metadata=True,
    )

    return [
        {
            "id": match.id,
            "score": match.score,
            "metadata": match.metadata or {},
        }
        for match in results.matches
    ]


def document_from_match(match: dict) -> RetrievedDocument:
    """Build a RetrievedDocument from a match's stored metadata."""
    metadata = match["metadata"]
    return RetrievedDocument(
        id=str(metadata.get("document_id", match["id"])),
        title=metadata.get("title", "Untitled"),
        content=metadata.get("content", metadata.get("text", "")),
        cfr_title=int(metadata.get("cfr_title", 0)),
        cfr_part=int(metadata.get("cfr_part", 0)),
        cfr_section=str(metadata.get("cfr_section", "")),
        source_url=metadata.get("source_url", ""),
        similarity=match["score"],
    )


async def search_regulatory_documents(
    query_embedding: list[float],
    similarity_threshold: float,
    match_count: int,
) -> list[RetrievedDocument]:
    """
    Nearest regulatory documents at or above a similarity threshold.

    Pinecone has no score cutoff, so matches below the threshold are dropped
    here. Results keep Pinecone's descending-score order.
    """
    matches = await query_vectors(query_embedding, top_k=match_count)
    return [
        document_from_match(match)
        for match in matches
        if match["score"] is not None and match["score"] >= similarity_threshold
    ]
