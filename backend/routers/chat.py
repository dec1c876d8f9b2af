"""Streaming chat endpoint for the regulatory assistant."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from services.auth import get_current_user_id
from services.errors import AuthError
from services.models import RegulatoryProfile, to_sse
from services.rag import ChatSessionService, get_chat_service

logger = logging.getLogger(__name__)

router = APIRouter()


class ChatRequest(BaseModel):
    """Chat request model."""

    model_config = ConfigDict(populate_by_name=True)

    thread_id: str = Field(alias="threadId")
    message: str
    roadmap_data: Optional[RegulatoryProfile] = Field(default=None, alias="roadmapData")


@router.post("/chat")
async def chat(
    request: ChatRequest,
    user_id: str = Depends(get_current_user_id),
    service: ChatSessionService = Depends(get_chat_service),
):
    """
    Ask the regulatory assistant a question.

    Streams `text/event-stream` frames, each `data: <json>`:
    - `{"type": "content", "content", "fullContent"}` per generated delta
    - `{"type": "complete", "content", "citations", "confidence", "messageId", "retrievedDocs"}`
    - `{"type": "error", "error"}`
    """
    if not request.message.strip():
        raise HTTPException(status_code=400, detail="Message cannot be empty")

    try:
        turn = await service.start_turn(
            user_id=user_id,
            thread_id=request.thread_id,
            message=request.message,
            profile=request.roadmap_data,
        )
    except AuthError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except Exception as e:
        logger.error(f"Error saving user message: {e}")
        raise HTTPException(status_code=500, detail="Failed to save message")

    async def event_stream():
        async for event in turn.events():
            yield to_sse(event)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )
