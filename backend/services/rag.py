"""RAG chat pipeline for regulatory questions."""
import asyncio
import logging
from typing import AsyncIterator, Optional

import httpx

from config import Settings, get_settings
from services.citations import extract_citations, score_confidence
from services.context import build_context_prompt, build_messages
from services.database import (
    get_recent_messages,
    get_thread_for_user,
    insert_message,
    record_api_log,
)
from services.errors import AuthError, PersistenceError, SearchUnavailableError
from services.models import (
    CompleteEvent,
    ConversationMessage,
    ErrorEvent,
    RegulatoryProfile,
    RetrievedDocument,
    StreamEvent,
)
from services.search import hybrid_search
from services.streaming import StreamOrchestrator

logger = logging.getLogger(__name__)

CHAT_ACTION = "regulatory_chat"


class ChatTurn:
    """
    One accepted chat request: the user message is already saved.

    ``events()`` runs retrieval, prompt assembly and generation, yielding
    content events followed by one terminal event.
    """

    def __init__(
        self,
        user_id: str,
        thread_id: str,
        message: str,
        user_message: ConversationMessage,
        profile: Optional[RegulatoryProfile],
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.user_id = user_id
        self.thread_id = thread_id
        self.message = message
        self.user_message = user_message
        self.profile = profile
        self.settings = settings
        self.http_client = http_client
        self.documents: list[RetrievedDocument] = []

    async def _record_failure(self, stage: str, error: str) -> None:
        logger.error(f"Chat turn failed during {stage} (thread={self.thread_id}): {error}")
        await record_api_log(
            action=CHAT_ACTION,
            status="error",
            request_data={
                "thread_id": self.thread_id,
                "user_id": self.user_id,
                "message_id": self.user_message.id,
                "stage": stage,
            },
            errors=[{"message": error, "stage": stage}],
        )

    async def _load_history(self) -> list[ConversationMessage]:
        try:
            return await get_recent_messages(self.thread_id, limit=self.settings.max_context_messages)
        except Exception as e:
            logger.warning(f"Could not load conversation history, continuing without it: {e}")
            return []

    async def _finalize(self, text: str) -> CompleteEvent:
        """Citations, confidence and persistence for a finished answer."""
        citations = extract_citations(text, self.documents, self.settings.similarity_threshold)
        confidence = score_confidence(text, self.documents)

        try:
            saved = await insert_message(self.thread_id, "assistant", text, citations)
        except Exception as e:
            logger.error(f"Error saving assistant message: {e}")
            raise PersistenceError("Failed to save assistant response", source="store") from e

        logger.info(
            f"Chat turn complete (thread={self.thread_id}): {len(text)} chars, "
            f"{len(citations)} citations, confidence {confidence.label}"
        )
        return CompleteEvent(
            content=text,
            citations=citations,
            confidence=confidence.label,
            message_id=saved.id,
            retrieved_docs=len(self.documents),
        )

    async def events(self, cancel_event: Optional[asyncio.Event] = None) -> AsyncIterator[StreamEvent]:
        try:
            search = await hybrid_search(
                self.message,
                similarity_threshold=self.settings.similarity_threshold,
                limit=self.settings.max_retrieved_docs,
            )
        except SearchUnavailableError as e:
            await self._record_failure("retrieval", e.message)
            yield ErrorEvent(error=e.message)
            return

        self.documents = search.documents
        logger.info(
            f"Retrieved {search.total_results} documents ({search.search_type}) "
            f"in {search.processing_time_ms:.0f}ms"
        )

        history = await self._load_history()
        prompt = build_context_prompt(
            self.message,
            self.documents,
            history,
            self.profile,
            max_documents=self.settings.max_retrieved_docs,
        )

        orchestrator = StreamOrchestrator(client=self.http_client, settings=self.settings)
        async for event in orchestrator.stream(build_messages(prompt), self._finalize, cancel_event):
            if isinstance(event, ErrorEvent):
                await self._record_failure("generation", event.error)
            yield event


class ChatSessionService:
    """Entry point for chat requests."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings or get_settings()
        self.http_client = http_client

    async def start_turn(
        self,
        user_id: str,
        thread_id: str,
        message: str,
        profile: Optional[RegulatoryProfile] = None,
    ) -> ChatTurn:
        """
        Accept a message for a thread the user owns.

        Raises AuthError before any retrieval or generation work when the
        thread does not exist or belongs to someone else.
        """
        thread = await get_thread_for_user(thread_id, user_id)
        if thread is None:
            raise AuthError("Thread not found or access denied")

        user_message = await insert_message(thread_id, "user", message)
        return ChatTurn(
            user_id=user_id,
            thread_id=thread_id,
            message=message,
            user_message=user_message,
            profile=profile,
            settings=self.settings,
            http_client=self.http_client,
        )


_service: Optional[ChatSessionService] = None


def get_chat_service() -> ChatSessionService:
    """Get or create the chat service singleton."""
    global _service
    if _service is None:
        _service = ChatSessionService()
    return _service
