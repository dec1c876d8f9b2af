"""
Shared pytest fixtures for the regulatory assistant tests.
"""

import json
import time

import httpx
import jwt
import pytest

from config import get_settings
from services.models import Citation, CompleteEvent, ConversationMessage, RetrievedDocument, RetryConfig

JWT_SECRET = "test-jwt-secret-with-enough-length-for-hs256"


@pytest.fixture(autouse=True)
def test_settings(monkeypatch):
    """Deterministic settings; the cached instance is rebuilt per test."""
    monkeypatch.setenv("SUPABASE_JWT_SECRET", JWT_SECRET)
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("DATABASE_URL", "")
    monkeypatch.setenv("PINECONE_API_KEY", "")
    get_settings.cache_clear()
    yield get_settings()
    get_settings.cache_clear()


@pytest.fixture
def fast_retry():
    """Retry policy with millisecond delays."""
    return RetryConfig(max_attempts=3, base_delay=0.001, max_delay=0.002)


def make_token(sub: str = "user-1", expires_in: int = 3600, secret: str = JWT_SECRET) -> str:
    return jwt.encode(
        {"sub": sub, "aud": "authenticated", "exp": int(time.time()) + expires_in},
        secret,
        algorithm="HS256",
    )


@pytest.fixture
def auth_headers():
    return {"Authorization": f"Bearer {make_token()}"}


def make_document(doc_id: str, similarity=None, section: str = "30", content: str = "Design controls text") -> RetrievedDocument:
    return RetrievedDocument(
        id=doc_id,
        title=f"Design Controls {doc_id}",
        content=content,
        cfr_title=21,
        cfr_part=820,
        cfr_section=section,
        source_url=f"https://www.ecfr.gov/current/title-21/part-820/section-820.{section}",
        similarity=similarity,
    )


def make_message(msg_id: str, role: str = "user", content: str = "hello", thread_id: str = "thread-1") -> ConversationMessage:
    return ConversationMessage(id=msg_id, thread_id=thread_id, role=role, content=content)


@pytest.fixture
def sample_documents():
    """Three retrieved documents, two above the default similarity threshold."""
    return [
        make_document("1", similarity=0.92),
        make_document("2", similarity=0.81, section="40"),
        make_document("3", similarity=None, section="50"),
    ]


def complete_event(text: str = "done", message_id: str = "assistant-1") -> CompleteEvent:
    return CompleteEvent(
        content=text,
        citations=[
            Citation(id="c1", code="21 CFR 820.30", title="Design controls",
                     url="https://www.ecfr.gov/current/title-21/part-820/section-820.30",
                     type="fda", confidence=0.9),
        ],
        confidence="High",
        message_id=message_id,
        retrieved_docs=1,
    )


# ---------------------------------------------------------------------------
# Streaming helpers
# ---------------------------------------------------------------------------

class ChunkStream(httpx.AsyncByteStream):
    """Response body delivered as the given byte chunks, in order."""

    def __init__(self, chunks: list[bytes]):
        self.chunks = chunks

    async def __aiter__(self):
        for chunk in self.chunks:
            yield chunk


def sse_frame(content: str) -> bytes:
    payload = {"choices": [{"delta": {"content": content}}]}
    return f"data: {json.dumps(payload)}\n\n".encode()


def streaming_client(chunks: list[bytes], status_code: int = 200, requests: list = None) -> httpx.AsyncClient:
    """AsyncClient whose every request answers with a chunked SSE body."""

    def handler(request: httpx.Request) -> httpx.Response:
        if requests is not None:
            requests.append(request)
        return httpx.Response(status_code, stream=ChunkStream(chunks))

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))
