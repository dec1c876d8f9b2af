"""Conversation thread endpoints."""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from services import database
from services.auth import get_current_user_id
from services.models import ConversationMessage, Thread

logger = logging.getLogger(__name__)

router = APIRouter()


class CreateThreadRequest(BaseModel):
    title: str = "New conversation"


class UpdateThreadRequest(BaseModel):
    """Partial update; omitted fields are left unchanged."""

    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = None
    is_saved: Optional[bool] = Field(default=None, alias="isSaved")


@router.post("", response_model=Thread, status_code=201)
async def create_thread(
    request: CreateThreadRequest,
    user_id: str = Depends(get_current_user_id),
):
    """Start a new conversation thread."""
    try:
        return await database.create_thread(user_id, request.title)
    except Exception as e:
        logger.error(f"Create thread error: {e}")
        raise HTTPException(status_code=500, detail="Failed to create thread")


@router.get("", response_model=list[Thread])
async def list_threads(
    limit: int = 50,
    user_id: str = Depends(get_current_user_id),
):
    """List the caller's threads, most recently active first."""
    return await database.list_threads(user_id, limit=limit)


@router.get("/{thread_id}/messages", response_model=list[ConversationMessage])
async def get_messages(
    thread_id: str,
    limit: int = 50,
    user_id: str = Depends(get_current_user_id),
):
    """Conversation history of a thread in chronological order."""
    thread = await database.get_thread_for_user(thread_id, user_id)
    if thread is None:
        raise HTTPException(status_code=404, detail="Thread not found or access denied")
    return await database.get_conversation_history(thread_id, limit=limit)


@router.patch("/{thread_id}", response_model=Thread)
async def update_thread(
    thread_id: str,
    request: UpdateThreadRequest,
    user_id: str = Depends(get_current_user_id),
):
    """Rename a thread or toggle its saved flag."""
    thread = await database.update_thread(
        thread_id, user_id, title=request.title, is_saved=request.is_saved
    )
    if thread is None:
        raise HTTPException(status_code=404, detail="Thread not found or access denied")
    return thread


@router.delete("/{thread_id}", status_code=204)
async def delete_thread(
    thread_id: str,
    user_id: str = Depends(get_current_user_id),
):
    """Delete a thread and its messages."""
    if not await database.delete_thread(thread_id, user_id):
        raise HTTPException(status_code=404, detail="Thread not found or access denied")
