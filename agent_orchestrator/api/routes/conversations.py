"""Conversation history endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request

from ..schemas import ConversationResponse, ErrorResponse
from ...errors import PersistenceError
from ...repositories import ConversationAccessDenied, ConversationNotFound

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "/v1/conversations/{conversation_id}",
    response_model=ConversationResponse,
    summary="Get conversation",
    description="Return a conversation and its messages in order.",
    responses={
        403: {"model": ErrorResponse, "description": "Conversation belongs to another user"},
        404: {"model": ErrorResponse, "description": "Conversation not found"},
    },
)
def get_conversation(
    conversation_id: str,
    request: Request,
    user_id: Optional[str] = Query(default=None, description="Restrict to this owner"),
) -> ConversationResponse:
    repository = request.app.state.deps.repository
    try:
        result = repository.get_with_messages(conversation_id, user_id)
    except ConversationNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConversationAccessDenied as e:
        raise HTTPException(status_code=403, detail=str(e))
    except PersistenceError as e:
        logger.error(f"Failed to load conversation {conversation_id}: {e}")
        raise HTTPException(status_code=503, detail="Record store unavailable")
    return ConversationResponse(**result)
