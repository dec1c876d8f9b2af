"""PostgreSQL store for threads, messages, regulatory documents and API logs."""
import json
import logging
import re
from typing import Optional
from contextlib import asynccontextmanager

import asyncpg

from config import get_settings
from services.models import Citation, ConversationMessage, RetrievedDocument, Thread

logger = logging.getLogger(__name__)

# Global connection pool
_pool: Optional[asyncpg.Pool] = None

_NON_WORD = re.compile(r"[^\w\s]")


async def init_database() -> None:
    """Initialize database connection pool. Schema is managed by migrations."""
    global _pool
    settings = get_settings()

    if not settings.database_url:
        logger.warning("DATABASE_URL not set, skipping database initialization")
        return

    try:
        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=2,
            max_size=10,
            command_timeout=60,
        )
        logger.info("Database connection pool initialized")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise


async def close_database() -> None:
    """Close database connection pool."""
    global _pool
    if _pool:
        await _pool.close()
        _pool = None
        logger.info("Database connection pool closed")


@asynccontextmanager
async def get_connection():
    """Get a database connection from the pool."""
    if not _pool:
        raise RuntimeError("Database not initialized")
    async with _pool.acquire() as conn:
        yield conn


async def is_database_ready() -> bool:
    """Check if database is initialized and ready."""
    return _pool is not None


def _load_json(value, default):
    if value is None:
        return default
    if isinstance(value, (list, dict)):
        return value
    return json.loads(value)


def _thread_from_row(row) -> Thread:
    return Thread(
        id=str(row["id"]),
        user_id=str(row["user_id"]),
        title=row["title"],
        is_saved=row["is_saved"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


def _message_from_row(row) -> ConversationMessage:
    return ConversationMessage(
        id=str(row["id"]),
        thread_id=str(row["thread_id"]),
        role=row["role"],
        content=row["content"],
        citations=[Citation(**c) for c in _load_json(row["citations"], [])],
        created_at=row["created_at"],
    )


def _document_from_row(row) -> RetrievedDocument:
    return RetrievedDocument(
        id=str(row["id"]),
        title=row["title"],
        content=row["content"],
        cfr_title=row["cfr_title"],
        cfr_part=row["cfr_part"],
        cfr_section=row["cfr_section"],
        source_url=row["source_url"],
    )


# --- Threads ---

async def get_thread_for_user(thread_id: str, user_id: str) -> Optional[Thread]:
    """Return the thread only if ``user_id`` owns it."""
    async with get_connection() as conn:
        row = await conn.fetchrow("""
            SELECT id, user_id, title, is_saved, created_at, updated_at
            FROM threads
            WHERE id::text = $1 AND user_id::text = $2
        """, thread_id, user_id)
        return _thread_from_row(row) if row else None


async def create_thread(user_id: str, title: str) -> Thread:
    async with get_connection() as conn:
        row = await conn.fetchrow("""
            INSERT INTO threads (user_id, title)
            VALUES ($1::uuid, $2)
            RETURNING id, user_id, title, is_saved, created_at, updated_at
        """, user_id, title)
        return _thread_from_row(row)


async def list_threads(user_id: str, limit: int = 50) -> list[Thread]:
    async with get_connection() as conn:
        rows = await conn.fetch("""
            SELECT id, user_id, title, is_saved, created_at, updated_at
            FROM threads
            WHERE user_id::text = $1
            ORDER BY updated_at DESC
            LIMIT $2
        """, user_id, limit)
        return [_thread_from_row(row) for row in rows]


async def update_thread(
    thread_id: str,
    user_id: str,
    title: Optional[str] = None,
    is_saved: Optional[bool] = None,
) -> Optional[Thread]:
    """Update title and/or saved flag. Returns None if the thread is not owned."""
    async with get_connection() as conn:
        row = await conn.fetchrow("""
            UPDATE threads
            SET title = COALESCE($3, title),
                is_saved = COALESCE($4, is_saved),
                updated_at = NOW()
            WHERE id::text = $1 AND user_id::text = $2
            RETURNING id, user_id, title, is_saved, created_at, updated_at
        """, thread_id, user_id, title, is_saved)
        return _thread_from_row(row) if row else None


async def delete_thread(thread_id: str, user_id: str) -> bool:
    async with get_connection() as conn:
        result = await conn.execute(
            "DELETE FROM threads WHERE id::text = $1 AND user_id::text = $2",
            thread_id, user_id,
        )
        return result == "DELETE 1"


# --- Messages ---

async def insert_message(
    thread_id: str,
    role: str,
    content: str,
    citations: Optional[list[Citation]] = None,
) -> ConversationMessage:
    """Append a message to a thread and touch the thread's updated_at."""
    citations_json = json.dumps([c.model_dump() for c in citations or []])

    async with get_connection() as conn:
        async with conn.transaction():
            row = await conn.fetchrow("""
                INSERT INTO messages (thread_id, role, content, citations)
                VALUES ($1::uuid, $2, $3, $4::jsonb)
                RETURNING id, thread_id, role, content, citations, created_at
            """, thread_id, role, content, citations_json)
            await conn.execute(
                "UPDATE threads SET updated_at = NOW() WHERE id::text = $1", thread_id
            )
        return _message_from_row(row)


async def get_recent_messages(thread_id: str, limit: int = 8) -> list[ConversationMessage]:
    """The ``limit`` most recent messages of a thread, oldest first."""
    async with get_connection() as conn:
        rows = await conn.fetch("""
            SELECT id, thread_id, role, content, citations, created_at
            FROM messages
            WHERE thread_id::text = $1
            ORDER BY created_at DESC
            LIMIT $2
        """, thread_id, limit)
        return [_message_from_row(row) for row in reversed(rows)]


async def get_conversation_history(thread_id: str, limit: int = 50) -> list[ConversationMessage]:
    """The first ``limit`` messages of a thread in chronological order."""
    async with get_connection() as conn:
        rows = await conn.fetch("""
            SELECT id, thread_id, role, content, citations, created_at
            FROM messages
            WHERE thread_id::text = $1
            ORDER BY created_at ASC
            LIMIT $2
        """, thread_id, limit)
        return [_message_from_row(row) for row in rows]


# --- Regulatory documents ---

def keyword_query(text: str) -> str:
    """Strip non-alphanumeric characters before full-text matching."""
    return _NON_WORD.sub("", text)


async def keyword_search_documents(query: str, limit: int = 5) -> list[RetrievedDocument]:
    """Full-text match on document content. Results are unranked."""
    cleaned = keyword_query(query)
    if not cleaned.strip():
        return []

    async with get_connection() as conn:
        rows = await conn.fetch("""
            SELECT id, title, content, cfr_title, cfr_part, cfr_section, source_url
            FROM regulatory_documents
            WHERE to_tsvector('english', content) @@ plainto_tsquery('english', $1)
            LIMIT $2
        """, cleaned, limit)
        return [_document_from_row(row) for row in rows]


async def get_cfr_section(
    cfr_title: int,
    cfr_part: int,
    cfr_section: Optional[str] = None,
) -> list[RetrievedDocument]:
    """Stored documents for a CFR part, optionally narrowed to one section."""
    async with get_connection() as conn:
        rows = await conn.fetch("""
            SELECT id, title, content, cfr_title, cfr_part, cfr_section, source_url
            FROM regulatory_documents
            WHERE cfr_title = $1 AND cfr_part = $2
              AND ($3::text IS NULL OR cfr_section = $3)
            ORDER BY cfr_section
        """, cfr_title, cfr_part, cfr_section)
        return [_document_from_row(row) for row in rows]


async def list_regulatory_documents(limit: int = 1000, offset: int = 0) -> list[RetrievedDocument]:
    """Page through stored documents (used by the index bootstrap script)."""
    async with get_connection() as conn:
        rows = await conn.fetch("""
            SELECT id, title, content, cfr_title, cfr_part, cfr_section, source_url
            FROM regulatory_documents
            ORDER BY id
            LIMIT $1 OFFSET $2
        """, limit, offset)
        return [_document_from_row(row) for row in rows]


# --- Audit sink ---

async def record_api_log(
    action: str,
    status: str,
    request_data: Optional[dict] = None,
    response_data=None,
    errors: Optional[list] = None,
) -> None:
    """
    Write one row to api_logs.

    Logging failures are reported and swallowed so they never fail a request.
    """
    if not _pool:
        return

    try:
        async with _pool.acquire() as conn:
            await conn.execute("""
                INSERT INTO api_logs (action, status, request_data, response_data, errors, timestamp)
                VALUES ($1, $2, $3::jsonb, $4::jsonb, $5::jsonb, NOW())
            """,
                action,
                status,
                json.dumps(request_data or {}, default=str),
                json.dumps(response_data, default=str) if response_data is not None else None,
                json.dumps(errors, default=str) if errors else None,
            )
    except Exception as e:
        logger.warning(f"Failed to log API call: {e}")
