"""Conversation HTTP endpoints (bearer authenticated).

Endpoints:
    GET   /messages/conversations: The caller's conversations with unread counts
    POST  /messages/conversations: Start a two-party conversation (or return the existing one)
    GET   /messages/conversations/{conversation_id}: Messages, oldest first
    PATCH /messages/conversations/{conversation_id}/read: Mark messages as read
    GET   /messages/users/search: Find users to start a conversation with
    GET   /messages/unread-count: Total unread messages across conversations

Errors are returned as ``{"message": "..."}`` with the status code of the
underlying ChatError (400, 404, 500).
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from marketchat.auth.dependencies import get_current_user_id
from marketchat.chat.pipeline import get_pipeline
from marketchat.config import get_config
from marketchat.errors import ChatError, NotFoundError, PersistenceError, ValidationError

from .schemas import Conversation, CreateConversationRequest
from .service import ConversationStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/messages", tags=["messages"])


def _store() -> ConversationStore:
    return ConversationStore.get_instance(get_config().database.path)


def _error(error: ChatError) -> JSONResponse:
    if isinstance(error, PersistenceError):
        logger.error(f"[messages] Store failure: {error.detail or error.message}")
        return JSONResponse({"message": "Server error"}, status_code=error.status_code)
    return JSONResponse({"message": error.message}, status_code=error.status_code)


def _with_profiles(store: ConversationStore, conversation: Conversation) -> dict:
    """Serialize a conversation with participant ids replaced by display profiles."""
    profiles = store.get_user_profiles(conversation.participants)
    data = conversation.model_dump(mode="json")
    data["participants"] = [
        profiles[p].model_dump() if p in profiles else {"id": p}
        for p in conversation.participants
    ]
    return data


@router.get("/conversations")
async def list_conversations(user_id: str = Depends(get_current_user_id)) -> JSONResponse:
    """List the caller's conversations, most recently active first.

    Returns:
        JSON with a ``conversations`` array; each entry carries ``unreadCount``.
    """
    store = _store()
    try:
        conversations: List[dict] = []
        for conversation in store.list_conversations_for_user(user_id):
            data = _with_profiles(store, conversation)
            data["unreadCount"] = store.count_unread(conversation.id, user_id)
            conversations.append(data)
    except ChatError as e:
        return _error(e)
    return JSONResponse({"conversations": conversations})


@router.post("/conversations")
async def create_conversation(
    body: CreateConversationRequest,
    user_id: str = Depends(get_current_user_id),
) -> JSONResponse:
    """Start a conversation with another user, or return the existing one.

    Returns:
        201 with ``existing: false`` when created, 200 with ``existing: true``
        when the two users already share a conversation.
    """
    store = _store()
    participant_id = body.participantId
    try:
        if not participant_id:
            raise ValidationError("participantId is required")
        if participant_id == user_id:
            raise ValidationError("Cannot start a conversation with yourself")
        if store.get_user_profile(participant_id) is None:
            raise NotFoundError("User not found")

        conversation = store.find_direct_conversation(user_id, participant_id)
        if conversation is not None:
            return JSONResponse(
                {"conversation": _with_profiles(store, conversation), "existing": True}
            )

        conversation = store.create_conversation([user_id, participant_id])
        logger.info(
            f"[messages] New conversation {conversation.id} between {user_id} and {participant_id}"
        )
        return JSONResponse(
            {"conversation": _with_profiles(store, conversation), "existing": False},
            status_code=201,
        )
    except ChatError as e:
        return _error(e)


@router.get("/conversations/{conversation_id}")
async def get_messages(
    conversation_id: str,
    user_id: str = Depends(get_current_user_id),
) -> JSONResponse:
    """Get all messages of a conversation the caller takes part in, oldest first."""
    pipeline = get_pipeline()
    try:
        conversation = pipeline.directory.require_participant(conversation_id, user_id)
        messages = _store().list_messages(conversation.id)
    except ChatError as e:
        return _error(e)
    return JSONResponse({"messages": [m.model_dump(mode="json") for m in messages]})


@router.patch("/conversations/{conversation_id}/read")
async def mark_as_read(
    conversation_id: str,
    user_id: str = Depends(get_current_user_id),
) -> JSONResponse:
    """Mark the other participants' messages as read and notify them."""
    try:
        updated = await get_pipeline().mark_read(conversation_id, user_id)
    except ChatError as e:
        return _error(e)
    return JSONResponse({"message": "Messages marked as read", "updated": updated})


@router.get("/users/search")
async def search_users(
    q: str = Query("", description="Name, user name or email fragment"),
    user_id: str = Depends(get_current_user_id),
) -> JSONResponse:
    """Search users to start a conversation with (queries under 2 chars match nothing)."""
    if len(q.strip()) < 2:
        return JSONResponse({"users": []})
    try:
        users = _store().search_user_profiles(
            q, exclude_user_id=user_id, limit=get_config().messaging.search_result_limit
        )
    except ChatError as e:
        return _error(e)
    return JSONResponse({"users": [u.model_dump() for u in users]})


@router.get("/unread-count")
async def unread_count(user_id: str = Depends(get_current_user_id)) -> JSONResponse:
    """Total unread messages across all of the caller's conversations."""
    try:
        count = _store().count_unread_total(user_id)
    except ChatError as e:
        return _error(e)
    return JSONResponse({"unreadCount": count})
