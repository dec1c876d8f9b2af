"""
Tests for the chat session pipeline with the store, search and model mocked.
"""

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from conftest import make_document, make_message, sse_frame, streaming_client
from services.errors import AuthError, SearchUnavailableError
from services.models import CompleteEvent, ContentEvent, ErrorEvent, SearchResult, Thread
from services.rag import ChatSessionService

ANSWER_CHUNKS = [
    sse_frame("Design controls are covered by "),
    sse_frame("[21CFR§820.30]."),
    b"data: [DONE]\n\n",
]


@pytest.fixture
def store():
    """Patch every store and retrieval call the pipeline makes."""
    thread = Thread(id="thread-1", user_id="user-1", title="Design controls")
    saved = {
        "user": make_message("user-msg-1", role="user", content="What are design controls?"),
        "assistant": make_message("assistant-msg-1", role="assistant", content=""),
    }

    async def insert(thread_id, role, content, citations=None):
        return saved[role].model_copy(update={"content": content, "citations": citations or []})

    with patch("services.rag.get_thread_for_user", new_callable=AsyncMock) as get_thread, \
         patch("services.rag.insert_message", new_callable=AsyncMock) as insert_message, \
         patch("services.rag.get_recent_messages", new_callable=AsyncMock) as recent, \
         patch("services.rag.record_api_log", new_callable=AsyncMock) as api_log, \
         patch("services.rag.hybrid_search", new_callable=AsyncMock) as search:
        get_thread.return_value = thread
        insert_message.side_effect = insert
        recent.return_value = [saved["user"]]
        search.return_value = SearchResult(
            documents=[make_document("doc-1", 0.91)],
            search_type="semantic",
            total_results=1,
            processing_time_ms=12.0,
        )
        yield {
            "get_thread": get_thread,
            "insert_message": insert_message,
            "recent": recent,
            "api_log": api_log,
            "search": search,
        }


def service_with(chunks, test_settings, status_code=200) -> ChatSessionService:
    return ChatSessionService(
        settings=test_settings,
        http_client=streaming_client(chunks, status_code=status_code),
    )


async def run_turn(service, cancel_event=None):
    turn = await service.start_turn("user-1", "thread-1", "What are design controls?")
    return [event async for event in turn.events(cancel_event)]


class TestStartTurn:
    """Test thread ownership and user message persistence."""

    async def test_foreign_thread_rejected_before_any_work(self, store, test_settings):
        store["get_thread"].return_value = None
        service = service_with(ANSWER_CHUNKS, test_settings)

        with pytest.raises(AuthError):
            await service.start_turn("user-2", "thread-1", "hello")

        store["insert_message"].assert_not_awaited()
        store["search"].assert_not_awaited()

    async def test_user_message_saved(self, store, test_settings):
        turn = await service_with(ANSWER_CHUNKS, test_settings).start_turn(
            "user-1", "thread-1", "What are design controls?"
        )

        assert turn.user_message.id == "user-msg-1"
        store["insert_message"].assert_awaited_once_with("thread-1", "user", "What are design controls?")


class TestChatTurnEvents:
    """Test the full retrieval, generation and finalization flow."""

    async def test_successful_turn(self, store, test_settings):
        events = await run_turn(service_with(ANSWER_CHUNKS, test_settings))

        content = [e for e in events if isinstance(e, ContentEvent)]
        complete = events[-1]
        assert len(content) == 2
        assert isinstance(complete, CompleteEvent)
        assert complete.content == "Design controls are covered by [21CFR§820.30]."
        assert complete.message_id == "assistant-msg-1"
        assert complete.retrieved_docs == 1
        assert [c.type for c in complete.citations] == ["fda", "regulatory"]
        assert complete.confidence == "Medium"

        assistant_call = store["insert_message"].await_args_list[-1]
        assert assistant_call.args[:3] == ("thread-1", "assistant", complete.content)
        store["api_log"].assert_not_awaited()

    async def test_retrieval_unavailable(self, store, test_settings):
        store["search"].side_effect = SearchUnavailableError("Regulatory search is temporarily unavailable")

        events = await run_turn(service_with(ANSWER_CHUNKS, test_settings))

        assert len(events) == 1
        assert isinstance(events[0], ErrorEvent)
        assert events[0].error == "Regulatory search is temporarily unavailable"
        assert store["api_log"].await_args.kwargs["request_data"]["stage"] == "retrieval"

    async def test_history_failure_is_not_fatal(self, store, test_settings):
        store["recent"].side_effect = RuntimeError("connection reset")

        events = await run_turn(service_with(ANSWER_CHUNKS, test_settings))

        assert isinstance(events[-1], CompleteEvent)

    async def test_generation_error_is_audited(self, store, test_settings):
        events = await run_turn(service_with([b""], test_settings, status_code=503))

        assert [type(e) for e in events] == [ErrorEvent]
        log_call = store["api_log"].await_args
        assert log_call.kwargs["status"] == "error"
        assert log_call.kwargs["request_data"]["message_id"] == "user-msg-1"
        assert log_call.kwargs["request_data"]["stage"] == "generation"
        assert store["insert_message"].await_count == 1

    async def test_assistant_save_failure(self, store, test_settings):
        user_message = make_message("user-msg-1")

        async def insert(thread_id, role, content, citations=None):
            if role == "assistant":
                raise RuntimeError("disk full")
            return user_message

        store["insert_message"].side_effect = insert

        events = await run_turn(service_with(ANSWER_CHUNKS, test_settings))

        assert isinstance(events[-1], ErrorEvent)
        assert events[-1].error == "Failed to save assistant response"
        assert not any(isinstance(e, CompleteEvent) for e in events)

    async def test_cancellation_persists_nothing(self, store, test_settings):
        service = service_with(ANSWER_CHUNKS, test_settings)
        turn = await service.start_turn("user-1", "thread-1", "What are design controls?")
        cancel = asyncio.Event()

        events = []
        async for event in turn.events(cancel):
            events.append(event)
            cancel.set()

        assert [type(e) for e in events] == [ContentEvent]
        # Only the user message from start_turn was written.
        assert store["insert_message"].await_count == 1
        store["api_log"].assert_not_awaited()
