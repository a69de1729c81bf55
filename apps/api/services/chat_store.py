"""
Chat persistence (threads and messages).

Plain CRUD over SQLAlchemy. Each call commits on its own; there is no
transaction spanning calls. Database failures are rolled back and surfaced
as PersistenceError.
"""

from datetime import datetime, timezone
from functools import wraps
from typing import Any, Dict, List, Optional
from uuid import UUID
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from core.exceptions import PersistenceError
from models import ChatMessage, ChatThread
from services.chat_modules.roles import Author, Role

logger = logging.getLogger(__name__)


def _db_call(operation: str):
    """Roll back and wrap SQLAlchemy errors raised by a store method."""
    def decorator(fn):
        @wraps(fn)
        def wrapper(self, *args, **kwargs):
            try:
                return fn(self, *args, **kwargs)
            except SQLAlchemyError as e:
                self.db.rollback()
                logger.error(f"Chat store failed to {operation}: {e}")
                raise PersistenceError(f"Failed to {operation}") from e
        return wrapper
    return decorator


class ChatStore:
    """Thread/message repository bound to one session."""

    def __init__(self, db: Session):
        self.db = db

    @_db_call("create thread")
    def create_thread(self, user_id: UUID, channel: Role, title: Optional[str] = None) -> ChatThread:
        thread = ChatThread(user_id=user_id, channel=Role(channel).value, title=title)
        self.db.add(thread)
        self.db.commit()
        self.db.refresh(thread)
        logger.info(f"Created chat thread {thread.id} for user {user_id} in channel {thread.channel}")
        return thread

    @_db_call("load thread")
    def get_thread(self, thread_id: UUID) -> Optional[ChatThread]:
        return self.db.get(ChatThread, thread_id)

    @_db_call("find thread")
    def find_active_thread(self, user_id: UUID, channel: Role) -> Optional[ChatThread]:
        """Most recent thread the user has in `channel`."""
        return (
            self.db.query(ChatThread)
            .filter(
                ChatThread.user_id == user_id,
                ChatThread.channel == Role(channel).value,
            )
            .order_by(ChatThread.created_at.desc())
            .first()
        )

    @_db_call("reload thread")
    def reload_thread(self, thread: ChatThread) -> ChatThread:
        """Re-read channel / pending state written by another session."""
        self.db.refresh(thread)
        return thread

    @_db_call("update thread")
    def save_thread(self, thread: ChatThread) -> ChatThread:
        """Persist channel / pending-handoff changes made on the aggregate."""
        thread.updated_at = datetime.now(timezone.utc)
        self.db.add(thread)
        self.db.commit()
        return thread

    @_db_call("save message")
    def append_message(
        self,
        thread_id: UUID,
        user_id: UUID,
        author: Author,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ChatMessage:
        now = datetime.now(timezone.utc)
        message = ChatMessage(
            thread_id=thread_id,
            user_id=user_id,
            role=Author(author).value,
            content=content,
            metadata_=metadata or {},
            created_at=now,
        )
        self.db.add(message)
        self.db.query(ChatThread).filter(ChatThread.id == thread_id).update(
            {ChatThread.updated_at: now}, synchronize_session=False
        )
        self.db.commit()
        self.db.refresh(message)
        return message

    @_db_call("load messages")
    def list_messages(self, thread_id: UUID, limit: int = 50) -> List[ChatMessage]:
        """Last `limit` messages, oldest first."""
        limit = max(1, min(int(limit), 500))
        recent = (
            self.db.query(ChatMessage)
            .filter(ChatMessage.thread_id == thread_id)
            .order_by(ChatMessage.created_at.desc())
            .limit(limit)
            .all()
        )
        return list(reversed(recent))
