"""
Team Chat API Router

Multi-specialist chat: the coordinator, trainer, doctor, psychologist and
nutritionist answer in one thread and hand the conversation to each other.
"""

from functools import lru_cache
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from core.database import get_db
from services.chat_orchestrator import ChatOrchestrator, ChatTurnResult
from services.chat_store import ChatStore
from services.completion_client import CompletionClient, GeminiCompletionClient

router = APIRouter(prefix="/v1/chat", tags=["Team Chat"])


class SendMessageRequest(BaseModel):
    """A user message in one of the chat channels."""
    user_id: UUID
    mode: str = "team"
    text: Optional[str] = None
    thread_id: Optional[UUID] = None


class HandoffActionRequest(BaseModel):
    user_id: UUID
    thread_id: UUID


class ChatMessageResponse(BaseModel):
    id: str
    thread_id: str
    role: str
    content: str
    metadata: Dict[str, Any] = {}
    created_at: Optional[str] = None


class ChatTurnResponse(BaseModel):
    thread_id: str
    assistant_message: Optional[ChatMessageResponse] = None
    assistant_messages: List[ChatMessageResponse] = []
    routing: Dict[str, Any]
    ui_hints: Dict[str, Any] = {}


class ThreadResponse(BaseModel):
    thread: Dict[str, Any]
    messages: List[ChatMessageResponse]


@lru_cache(maxsize=1)
def _default_completion_client() -> CompletionClient:
    return GeminiCompletionClient()


def get_completion_client() -> CompletionClient:
    return _default_completion_client()


def get_chat_orchestrator(
    db: Session = Depends(get_db),
    completion_client: CompletionClient = Depends(get_completion_client),
) -> ChatOrchestrator:
    return ChatOrchestrator(ChatStore(db), completion_client)


def _turn_response(result: ChatTurnResult) -> ChatTurnResponse:
    return ChatTurnResponse(**result.to_dict())


@router.post("/send", response_model=ChatTurnResponse)
async def send_message(
    request: SendMessageRequest,
    orchestrator: ChatOrchestrator = Depends(get_chat_orchestrator),
):
    """
    Send a message to the team (or to one specialist) and get the reply.

    When the active specialist suggests bringing in a colleague, the reply is
    a handoff question and `routing.require_user_confirmation` is true; the
    user answers in the next message or via /handoff/accept | /handoff/cancel.
    """
    result = await orchestrator.send_message(
        user_id=request.user_id,
        channel=request.mode,
        text=request.text,
        thread_id=request.thread_id,
    )
    return _turn_response(result)


@router.get("/thread/{thread_id}", response_model=ThreadResponse)
async def get_thread(
    thread_id: UUID,
    user_id: Optional[UUID] = None,
    limit: int = Query(50, ge=1, le=500),
    orchestrator: ChatOrchestrator = Depends(get_chat_orchestrator),
):
    """Thread state plus its last `limit` messages, oldest first."""
    history = orchestrator.get_thread(thread_id, limit=limit, user_id=user_id)
    return ThreadResponse(**history.to_dict())


@router.post("/handoff/accept", response_model=ChatTurnResponse)
async def accept_handoff(
    request: HandoffActionRequest,
    orchestrator: ChatOrchestrator = Depends(get_chat_orchestrator),
):
    """Accept the pending handoff on the thread."""
    result = await orchestrator.accept_handoff(request.user_id, request.thread_id)
    return _turn_response(result)


@router.post("/handoff/cancel", response_model=ChatTurnResponse)
async def cancel_handoff(
    request: HandoffActionRequest,
    orchestrator: ChatOrchestrator = Depends(get_chat_orchestrator),
):
    """Decline the pending handoff; the current specialist stays."""
    result = await orchestrator.cancel_handoff(request.user_id, request.thread_id)
    return _turn_response(result)
