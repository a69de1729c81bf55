from sqlalchemy import Column, DateTime, ForeignKey, Index, JSON, Text, Uuid
from sqlalchemy.orm import relationship
from sqlalchemy.dialects.postgresql import JSONB
from core.database import Base
import uuid
from typing import Optional
from datetime import datetime, timezone

from services.chat_modules.handoff import HandoffProposal
from services.chat_modules.roles import Role


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# JSONB on Postgres, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class ChatThread(Base):
    """
    One conversation between a user and the specialist team.

    `channel` is the specialist currently owning the thread. It only changes
    at creation or when a handoff is executed. At most one handoff proposal
    is outstanding; it is stored in the pending_handoff_* columns and exposed
    as `pending_handoff`.
    """
    __tablename__ = "chat_thread"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, nullable=False, index=True)
    # 'team' | 'trainer' | 'doctor' | 'psychologist' | 'nutritionist'
    channel = Column(Text, nullable=False, default=Role.COORDINATOR.value)
    title = Column(Text, nullable=True)

    pending_handoff_to = Column(Text, nullable=True)
    pending_handoff_from = Column(Text, nullable=True)
    pending_handoff_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    messages = relationship(
        "ChatMessage",
        back_populates="thread",
        cascade="all, delete-orphan",
        order_by="ChatMessage.created_at",
    )

    __table_args__ = (
        Index("ix_chat_thread_user_channel", "user_id", "channel", "created_at"),
    )

    @property
    def active_channel(self) -> Role:
        return Role(self.channel)

    @property
    def pending_handoff(self) -> Optional[HandoffProposal]:
        if not self.pending_handoff_to:
            return None
        return HandoffProposal(
            to=Role(self.pending_handoff_to),
            from_role=Role(self.pending_handoff_from or self.channel),
            reason=self.pending_handoff_reason or "",
        )

    def propose_handoff(self, proposal: HandoffProposal) -> None:
        """Record a proposal, replacing any outstanding one."""
        self.pending_handoff_to = proposal.to.value
        self.pending_handoff_from = proposal.from_role.value
        self.pending_handoff_reason = proposal.reason

    def clear_pending_handoff(self) -> None:
        self.pending_handoff_to = None
        self.pending_handoff_from = None
        self.pending_handoff_reason = None

    def execute_handoff(self, to: Role) -> None:
        """Move the thread to `to` and drop the proposal."""
        self.channel = Role(to).value
        self.clear_pending_handoff()

    def to_dict(self) -> dict:
        pending = self.pending_handoff
        return {
            "id": str(self.id),
            "user_id": str(self.user_id),
            "mode": self.channel,
            "title": self.title,
            "pending_handoff": (
                {"to": pending.to.value, "from": pending.from_role.value, "reason": pending.reason}
                if pending else None
            ),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class ChatMessage(Base):
    """
    Append-only message in a chat thread.

    role: 'user' | 'assistant'. Assistant metadata carries the routing tags
    (speaker, safety_flags, message_type, handoff_* ...).
    """
    __tablename__ = "chat_message"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    thread_id = Column(Uuid, ForeignKey("chat_thread.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Uuid, nullable=False)
    role = Column(Text, nullable=False)
    content = Column(Text, nullable=False)
    # 'metadata' is reserved on declarative classes
    metadata_ = Column("metadata", JSONType, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    thread = relationship("ChatThread", back_populates="messages")

    __table_args__ = (
        Index("ix_chat_message_thread_created", "thread_id", "created_at"),
    )

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "thread_id": str(self.thread_id),
            "role": self.role,
            "content": self.content,
            "metadata": dict(self.metadata_ or {}),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
