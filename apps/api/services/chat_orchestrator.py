"""
Team Chat Orchestrator

Runs one inbound chat message end to end:

1. Resolve (or create) the thread and check ownership
2. Persist the user message before anything else can fail
3. Route it (handoff answer, safety, domain rules, coordinator fallback)
4. Execute or cancel a pending handoff on the thread
5. For ask-confirm handoffs: persist the question and stop (no completion call)
6. Otherwise call the completion service once per selected specialist,
   concurrently in multi mode, dropping individual failures
7. Persist the replies with their routing metadata and return them

Turns on the same thread are serialised by a per-thread lock; thread state is
read once after the lock is taken and written at most once per turn.
"""

import asyncio
import logging
import time
import weakref
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple, Union
from uuid import UUID

from core.config import settings
from core.exceptions import (
    CompletionServiceError,
    CompletionUnavailableError,
    ConflictError,
    NotFoundError,
    PersistenceError,
    UnauthorizedError,
    ValidationError,
)
from models import ChatMessage, ChatThread
from services.chat_modules import (
    Author,
    ChatContext,
    HandoffMode,
    HandoffProposal,
    HandoffStateMachine,
    KeywordClassifier,
    Lexicons,
    MessageType,
    Role,
    RoutingDecision,
    RoutingEngine,
    get_lexicons,
)
from services.chat_modules import prompts
from services.chat_store import ChatStore
from services.completion_client import CompletionClient

logger = logging.getLogger(__name__)


# =============================================================================
# COLLABORATORS
# =============================================================================

class ChatContextProvider(ABC):
    """Supplies profile / recent-workout text for the prompt."""

    @abstractmethod
    def build(self, user_id: UUID) -> ChatContext:
        ...


class EmptyContextProvider(ChatContextProvider):
    def build(self, user_id: UUID) -> ChatContext:
        return ChatContext()


class ThreadTurnLocks:
    """
    In-process per-thread locks.

    A second message on a thread waits for the running turn; if it cannot get
    the lock within the timeout it is rejected with TURN_IN_PROGRESS and
    nothing is written.
    """

    def __init__(self):
        # Entries vanish once no turn holds or waits on the lock
        self._locks: "weakref.WeakValueDictionary[UUID, asyncio.Lock]" = weakref.WeakValueDictionary()

    @asynccontextmanager
    async def hold(self, thread_id: UUID, timeout_s: float) -> AsyncIterator[None]:
        lock = self._locks.get(thread_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[thread_id] = lock
        try:
            await asyncio.wait_for(lock.acquire(), timeout=timeout_s)
        except asyncio.TimeoutError as e:
            logger.warning(f"Turn lock timeout on thread {thread_id}")
            raise ConflictError(
                "Another message on this thread is still being processed",
                error_code="TURN_IN_PROGRESS",
            ) from e
        try:
            yield
        finally:
            lock.release()


# Shared by every orchestrator in the process
thread_turn_locks = ThreadTurnLocks()


# =============================================================================
# RESULTS
# =============================================================================

@dataclass
class ChatTurnResult:
    thread_id: UUID
    assistant_messages: List[ChatMessage]
    routing: RoutingDecision
    ui_hints: Dict[str, Any] = field(default_factory=dict)

    @property
    def assistant_message(self) -> Optional[ChatMessage]:
        """Last persisted reply (the answer rather than a notice)."""
        return self.assistant_messages[-1] if self.assistant_messages else None

    def to_dict(self) -> Dict[str, Any]:
        messages = [m.to_dict() for m in self.assistant_messages]
        return {
            "thread_id": str(self.thread_id),
            "assistant_message": messages[-1] if messages else None,
            "assistant_messages": messages,
            "routing": self.routing.to_dict(),
            "ui_hints": dict(self.ui_hints),
        }


@dataclass
class ThreadHistory:
    thread: ChatThread
    messages: List[ChatMessage]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "thread": self.thread.to_dict(),
            "messages": [m.to_dict() for m in self.messages],
        }


# =============================================================================
# ORCHESTRATOR
# =============================================================================

class ChatOrchestrator:
    """Single linear pass per inbound message."""

    def __init__(
        self,
        store: ChatStore,
        completion_client: CompletionClient,
        engine: Optional[RoutingEngine] = None,
        lexicons: Optional[Lexicons] = None,
        context_provider: Optional[ChatContextProvider] = None,
        locks: Optional[ThreadTurnLocks] = None,
        history_limit: Optional[int] = None,
        lock_timeout_s: Optional[float] = None,
    ):
        self.store = store
        self.completion_client = completion_client
        self.lexicons = lexicons or get_lexicons()
        self.engine = engine or RoutingEngine(KeywordClassifier(self.lexicons))
        self.context_provider = context_provider or EmptyContextProvider()
        self.locks = locks or thread_turn_locks
        self.history_limit = history_limit or settings.CHAT_HISTORY_LIMIT
        self.lock_timeout_s = lock_timeout_s or settings.CHAT_TURN_LOCK_TIMEOUT_S

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    async def send_message(
        self,
        user_id: UUID,
        channel: Union[Role, str],
        text: str,
        thread_id: Optional[UUID] = None,
    ) -> ChatTurnResult:
        """Process one user message and return the persisted reply/replies."""
        started = time.monotonic()
        channel = self._validate_channel(channel)
        text = self._validate_text(text)

        thread = self._resolve_thread(user_id, channel, thread_id)

        async with self.locks.hold(thread.id, self.lock_timeout_s):
            # Another turn may have changed the thread while we waited
            self.store.reload_thread(thread)
            user_message = self.store.append_message(thread.id, user_id, Author.USER, text)

            context = self._build_context(user_id)
            decision = self.engine.route(
                text,
                thread.active_channel,
                current_role=None,
                pending_handoff=thread.pending_handoff,
            )
            self._log_decision(thread, decision)

            notices: List[ChatMessage] = []
            if decision.execute_handoff:
                notices.append(self._execute_handoff(thread, user_id, decision))
            elif decision.cancel_handoff:
                thread.clear_pending_handoff()
                self.store.save_thread(thread)
                logger.info(f"Handoff cancelled on thread {thread.id}")

            if decision.needs_confirmation_turn:
                question = self._propose_handoff(thread, user_id, decision)
                return ChatTurnResult(
                    thread_id=thread.id,
                    assistant_messages=[question],
                    routing=decision,
                    ui_hints=self._ui_hints([thread.active_channel]),
                )

            history = self._load_history(thread.id, exclude_id=user_message.id)
            user_prompt = prompts.build_user_prompt(context, history, text)
            replies = await self._complete_for_roles(decision.selected_roles, user_prompt)

            if (
                decision.handoff_mode is HandoffMode.SEAMLESS
                and not decision.execute_handoff
                and decision.primary_role is not thread.active_channel
            ):
                notices.append(self._persist_notice(
                    thread, user_id, decision.primary_role, thread.active_channel, decision.reason
                ))

            intent = self.engine.classifier.detect_message_intent(text)
            saved = [
                self.store.append_message(
                    thread.id,
                    user_id,
                    Author.ASSISTANT,
                    reply,
                    self._response_metadata(thread, role, decision, intent.value),
                )
                for role, reply in replies
            ]

        logger.info(
            f"Chat turn completed in {round((time.monotonic() - started) * 1000)}ms",
            extra={"extra_fields": {
                "thread_id": str(thread.id),
                "replies": len(saved),
                "roles": [role.value for role, _ in replies],
            }},
        )
        return ChatTurnResult(
            thread_id=thread.id,
            assistant_messages=notices + saved,
            routing=decision,
            ui_hints=self._ui_hints([role for role, _ in replies]),
        )

    def get_thread(self, thread_id: UUID, limit: int = 50, user_id: Optional[UUID] = None) -> ThreadHistory:
        """Thread plus its last `limit` messages, oldest first."""
        thread = self._load_owned_thread(thread_id, user_id)
        return ThreadHistory(thread=thread, messages=self.store.list_messages(thread.id, limit))

    async def accept_handoff(self, user_id: UUID, thread_id: UUID) -> ChatTurnResult:
        """Execute the pending proposal without a chat message (UI button)."""
        thread = self._load_owned_thread(thread_id, user_id)
        async with self.locks.hold(thread.id, self.lock_timeout_s):
            self.store.reload_thread(thread)
            proposal = self._require_pending(thread)
            decision = HandoffStateMachine.confirm(proposal)
            notice = self._execute_handoff(thread, user_id, decision)
        return ChatTurnResult(
            thread_id=thread.id,
            assistant_messages=[notice],
            routing=decision,
            ui_hints=self._ui_hints([proposal.to]),
        )

    async def cancel_handoff(self, user_id: UUID, thread_id: UUID) -> ChatTurnResult:
        """Drop the pending proposal without a chat message (UI button)."""
        thread = self._load_owned_thread(thread_id, user_id)
        async with self.locks.hold(thread.id, self.lock_timeout_s):
            self.store.reload_thread(thread)
            self._require_pending(thread)
            decision = HandoffStateMachine.reject(thread.active_channel)
            thread.clear_pending_handoff()
            self.store.save_thread(thread)
            logger.info(f"Handoff cancelled on thread {thread.id}")
        return ChatTurnResult(
            thread_id=thread.id,
            assistant_messages=[],
            routing=decision,
            ui_hints=self._ui_hints([thread.active_channel]),
        )

    # ------------------------------------------------------------------
    # Thread resolution
    # ------------------------------------------------------------------

    @staticmethod
    def _validate_channel(channel: Union[Role, str, None]) -> Role:
        if not channel:
            raise ValidationError("mode is required", field="mode")
        try:
            return Role(channel)
        except ValueError:
            allowed = ", ".join(r.value for r in Role)
            raise ValidationError(f"mode must be one of: {allowed}", field="mode") from None

    @staticmethod
    def _validate_text(text: Optional[str]) -> str:
        if not isinstance(text, str) or not text.strip():
            raise ValidationError("text is required and must be a non-empty string", field="text")
        return text.strip()

    def _resolve_thread(self, user_id: UUID, channel: Role, thread_id: Optional[UUID]) -> ChatThread:
        if thread_id:
            return self._load_owned_thread(thread_id, user_id)
        thread = self.store.find_active_thread(user_id, channel)
        if thread is None:
            thread = self.store.create_thread(user_id, channel)
        return thread

    def _load_owned_thread(self, thread_id: UUID, user_id: Optional[UUID]) -> ChatThread:
        thread = self.store.get_thread(thread_id)
        if thread is None:
            raise NotFoundError("Thread", str(thread_id))
        if user_id is not None and thread.user_id != user_id:
            raise UnauthorizedError("Thread does not belong to user")
        return thread

    @staticmethod
    def _require_pending(thread: ChatThread) -> HandoffProposal:
        proposal = thread.pending_handoff
        if proposal is None:
            raise ConflictError("No pending handoff on this thread", error_code="NO_PENDING_HANDOFF")
        return proposal

    # ------------------------------------------------------------------
    # Handoff transitions
    # ------------------------------------------------------------------

    def _execute_handoff(self, thread: ChatThread, user_id: UUID, decision: RoutingDecision) -> ChatMessage:
        from_role = thread.active_channel
        to_role = decision.handoff_to
        thread.execute_handoff(to_role)
        self.store.save_thread(thread)
        logger.info(f"Handoff executed on thread {thread.id}: {from_role.value} -> {to_role.value}")
        return self._persist_notice(thread, user_id, to_role, from_role, decision.reason)

    def _propose_handoff(self, thread: ChatThread, user_id: UUID, decision: RoutingDecision) -> ChatMessage:
        speaker = thread.active_channel
        target = decision.handoff_suggested_to
        thread.propose_handoff(HandoffProposal(to=target, from_role=speaker, reason=decision.reason))
        self.store.save_thread(thread)
        logger.info(f"Handoff proposed on thread {thread.id}: {speaker.value} -> {target.value}")

        return self.store.append_message(
            thread.id,
            user_id,
            Author.ASSISTANT,
            prompts.handoff_question(speaker, target, self.lexicons),
            {
                "message_type": MessageType.HANDOFF_QUESTION.value,
                "speaker": speaker.value,
                "agent_role": speaker.value,
                "agent_display_name": self.lexicons.display_name(speaker),
                "handoff_suggested_to": target.value,
                "handoff_mode": HandoffMode.ASK_CONFIRM.value,
                "routing_reason": decision.reason,
                "ts": _now_iso(),
            },
        )

    def _persist_notice(
        self,
        thread: ChatThread,
        user_id: UUID,
        to_role: Role,
        from_role: Role,
        reason: str,
    ) -> ChatMessage:
        return self.store.append_message(
            thread.id,
            user_id,
            Author.ASSISTANT,
            prompts.handoff_notice(to_role, self.lexicons),
            {
                "message_type": MessageType.HANDOFF_NOTICE.value,
                "speaker": to_role.value,
                "agent_role": to_role.value,
                "agent_display_name": self.lexicons.display_name(to_role),
                "handoff_from": from_role.value,
                "handoff_to": to_role.value,
                "routing_reason": reason,
                "ts": _now_iso(),
            },
        )

    # ------------------------------------------------------------------
    # Completion fan-out
    # ------------------------------------------------------------------

    async def _complete_as(self, role: Role, user_prompt: str) -> str:
        try:
            return await self.completion_client.complete(prompts.system_prompt_for(role), user_prompt)
        except CompletionServiceError as e:
            e.role = role.value
            raise

    async def _complete_for_roles(self, roles: List[Role], user_prompt: str) -> List[Tuple[Role, str]]:
        """
        Join-all with partial failure.

        Every role is called concurrently; failed roles are logged and left
        out. Only when no role succeeds is the first failure raised.
        """
        results = await asyncio.gather(
            *(self._complete_as(role, user_prompt) for role in roles),
            return_exceptions=True,
        )

        replies: List[Tuple[Role, str]] = []
        failures: List[Exception] = []
        for role, result in zip(roles, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning(
                    f"Completion failed for {role.value}: {result}",
                    extra={"extra_fields": {"role": role.value, "error": type(result).__name__}},
                )
                failures.append(result)
            else:
                replies.append((role, result))

        if not replies:
            first = failures[0]
            if isinstance(first, CompletionServiceError):
                raise first
            raise CompletionUnavailableError("Failed to get responses from any specialist") from first
        return replies

    # ------------------------------------------------------------------
    # Context and metadata
    # ------------------------------------------------------------------

    def _build_context(self, user_id: UUID) -> ChatContext:
        try:
            return self.context_provider.build(user_id)
        except Exception as e:
            logger.warning(f"Failed to build chat context for {user_id}: {e}")
            return ChatContext()

    def _load_history(self, thread_id: UUID, exclude_id: Optional[UUID] = None) -> str:
        try:
            messages = self.store.list_messages(thread_id, self.history_limit + 1)
        except PersistenceError as e:
            logger.warning(f"Failed to load chat history for {thread_id}: {e.detail}")
            return ""
        messages = [m for m in messages if m.id != exclude_id]
        return prompts.format_history(messages, self.history_limit)

    def _response_metadata(
        self,
        thread: ChatThread,
        role: Role,
        decision: RoutingDecision,
        intent: str,
    ) -> Dict[str, Any]:
        return {
            "message_type": MessageType.RESPONSE.value,
            "mode": thread.channel,
            "speaker": role.value,
            "agent_role": role.value,
            "agent_display_name": self.lexicons.display_name(role),
            "intent": intent,
            "model": getattr(self.completion_client, "model", None),
            "routing_reason": decision.reason,
            "confidence": decision.confidence,
            "safety_flags": [f.value for f in decision.safety_flags],
            "handoff_suggested_to": decision.handoff_suggested_to.value if decision.handoff_suggested_to else None,
            "handoff_mode": decision.handoff_mode.value if decision.handoff_mode else None,
            "ts": _now_iso(),
        }

    def _ui_hints(self, roles: List[Role]) -> Dict[str, Any]:
        primary = roles[0]
        return {
            "show_typing_as": ", ".join(prompts.typing_hint(r, self.lexicons) for r in roles),
            "active_agent_badge": primary.value,
            "active_agent_name": self.lexicons.display_name(primary),
        }

    @staticmethod
    def _log_decision(thread: ChatThread, decision: RoutingDecision) -> None:
        logger.info(
            f"Routed message on thread {thread.id}: {decision.mode.value} -> "
            f"{', '.join(r.value for r in decision.selected_roles)}",
            extra={"extra_fields": {
                "thread_id": str(thread.id),
                "channel": thread.channel,
                "routing": decision.to_dict(),
            }},
        )


def _now_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat()
