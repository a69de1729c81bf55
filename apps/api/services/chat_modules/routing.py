"""
Chat Routing Engine

Decides which specialist(s) answer a message and whether a handoff should be
proposed. Rules are evaluated as an ordered cascade; the first rule that
returns a decision wins:

- Handoff resolution: answer to an outstanding proposal (confirm / reject)
- Safety: medical flags or raw symptom markers go to the doctor
- Combined (team chat only): two domains at once get two specialists
- Training / Nutrition / Psychology: the domain specialist answers, or an
  ask-confirm handoff is proposed when the user is in another specialist's chat
- Coordinator fallback (team chat only)
- Default: the current specialist keeps answering
"""

from __future__ import annotations

from typing import Callable, List, Optional

from .classifier import IntentClassifier, IntentScores, KeywordClassifier
from .decision import RoutingDecision
from .handoff import HandoffProposal, HandoffStateMachine
from .roles import HandoffMode, ResponseMode, Role, SafetyFlag

# Domain rule threshold (training / nutrition / psychology)
DOMAIN_THRESHOLD = 0.4
# Secondary-axis threshold used for combined answers and the coordinator fallback
SECONDARY_THRESHOLD = 0.3
# Training context inside a psychology question
PSYCHOLOGY_TRAINING_THRESHOLD = 0.2

SAFETY_CONFIDENCE = 0.95
COORDINATOR_CONFIDENCE = 0.5
DEFAULT_CONFIDENCE = 0.6

_MEDICAL_FLAGS = frozenset({
    SafetyFlag.MEDICAL_EMERGENCY,
    SafetyFlag.INJURY_RISK,
    SafetyFlag.MEDICAL_ADVICE,
})


class _Turn:
    """Everything the rules look at for one message, computed once."""

    __slots__ = ("text", "channel", "current_role", "pending", "flags", "scores")

    def __init__(self, text, channel, current_role, pending, flags, scores):
        self.text: str = text
        self.channel: Role = channel
        self.current_role: Optional[Role] = current_role
        self.pending: Optional[HandoffProposal] = pending
        self.flags: List[SafetyFlag] = flags
        self.scores: IntentScores = scores

    @property
    def in_team_chat(self) -> bool:
        return self.channel is Role.COORDINATOR

    def in_other_specialist_chat(self, specialist: Role) -> bool:
        """True when the user is 1:1 with a specialist other than `specialist`."""
        return self.channel is not Role.COORDINATOR and self.channel is not specialist


class RoutingEngine:
    """
    Produces one RoutingDecision per inbound message.

    Pure and synchronous: no I/O, no mutation of the proposal passed in.
    """

    def __init__(
        self,
        classifier: Optional[IntentClassifier] = None,
        state_machine: Optional[HandoffStateMachine] = None,
    ):
        self.classifier = classifier or KeywordClassifier()
        self.state_machine = state_machine or HandoffStateMachine(self.classifier)
        self._rules: List[Callable[[_Turn], Optional[RoutingDecision]]] = [
            self._rule_handoff_resolution,
            self._rule_safety,
            self._rule_combined,
            self._rule_training,
            self._rule_nutrition,
            self._rule_psychology,
            self._rule_coordinator,
        ]

    def route(
        self,
        text: str,
        channel: Role,
        current_role: Optional[Role] = None,
        pending_handoff: Optional[HandoffProposal] = None,
    ) -> RoutingDecision:
        """
        Route a message.

        Args:
            text: The user's message
            channel: The specialist the thread is currently with
            current_role: Role that resolved the previous turn, if known
            pending_handoff: Outstanding proposal on the thread, if any
        """
        turn = _Turn(
            text=text or "",
            channel=Role(channel),
            current_role=Role(current_role) if current_role else None,
            pending=pending_handoff,
            flags=self.classifier.detect_safety_flags(text or ""),
            scores=self.classifier.score_intents(text or ""),
        )
        for rule in self._rules:
            decision = rule(turn)
            if decision is not None:
                return decision
        return self._default(turn)

    # ------------------------------------------------------------------
    # Rules
    # ------------------------------------------------------------------

    def _rule_handoff_resolution(self, turn: _Turn) -> Optional[RoutingDecision]:
        return self.state_machine.resolve(turn.text, turn.pending, turn.channel, turn.current_role)

    def _rule_safety(self, turn: _Turn) -> Optional[RoutingDecision]:
        # Compound trigger kept as-is: the raw marker check only matters when
        # no flag fired and every domain scored zero.
        if not (turn.flags or turn.scores.all_zero):
            return None
        has_medical_flags = any(flag in _MEDICAL_FLAGS for flag in turn.flags)
        if not (has_medical_flags or self.classifier.has_symptom_marker(turn.text)):
            return None

        if turn.in_team_chat and turn.scores.training > SECONDARY_THRESHOLD:
            return RoutingDecision(
                selected_roles=[Role.DOCTOR, Role.TRAINER],
                mode=ResponseMode.MULTI,
                reason="Медицинский вопрос с тренировочным контекстом",
                confidence=SAFETY_CONFIDENCE,
                safety_flags=turn.flags,
            )

        return RoutingDecision(
            selected_roles=[Role.DOCTOR],
            mode=ResponseMode.SINGLE,
            reason="Медицинский вопрос или симптомы",
            confidence=SAFETY_CONFIDENCE,
            require_user_confirmation=turn.channel not in (Role.COORDINATOR, Role.DOCTOR),
            safety_flags=turn.flags,
        )

    def _rule_combined(self, turn: _Turn) -> Optional[RoutingDecision]:
        if not turn.in_team_chat:
            return None
        s = turn.scores
        if s.training > SECONDARY_THRESHOLD and s.nutrition > SECONDARY_THRESHOLD:
            return RoutingDecision(
                selected_roles=[Role.TRAINER, Role.NUTRITIONIST],
                mode=ResponseMode.MULTI,
                reason="Вопрос про тренировки и питание одновременно",
                confidence=max(s.training, s.nutrition),
                safety_flags=turn.flags,
            )
        if s.training > SECONDARY_THRESHOLD and s.psychology > SECONDARY_THRESHOLD:
            return RoutingDecision(
                selected_roles=[Role.TRAINER, Role.PSYCHOLOGIST],
                mode=ResponseMode.MULTI,
                reason="Вопрос про тренировки и мотивацию",
                confidence=max(s.training, s.psychology),
                safety_flags=turn.flags,
            )
        return None

    def _rule_training(self, turn: _Turn) -> Optional[RoutingDecision]:
        score = turn.scores.training
        if score <= DOMAIN_THRESHOLD:
            return None
        if turn.in_other_specialist_chat(Role.TRAINER):
            return self._ask_confirm(
                turn, Role.TRAINER, score, "Вопрос про тренировки в чате другого специалиста"
            )
        return self._answer(
            turn, Role.TRAINER, score, "Вопрос про тренировки, технику или упражнения",
            flags=turn.flags,
        )

    def _rule_nutrition(self, turn: _Turn) -> Optional[RoutingDecision]:
        score = turn.scores.nutrition
        if score <= DOMAIN_THRESHOLD:
            return None

        if self.classifier.detect_eating_disorder_signs(turn.text):
            if turn.in_team_chat:
                return RoutingDecision(
                    selected_roles=[Role.NUTRITIONIST, Role.PSYCHOLOGIST],
                    mode=ResponseMode.MULTI,
                    reason="Вопрос про питание с признаками эмоциональных проблем",
                    confidence=score,
                )
            if turn.channel is Role.NUTRITIONIST:
                return self._ask_confirm(
                    turn, Role.PSYCHOLOGIST, score, "Признаки эмоциональных проблем с едой"
                )

        if turn.in_other_specialist_chat(Role.NUTRITIONIST):
            return self._ask_confirm(
                turn, Role.NUTRITIONIST, score, "Вопрос про питание в чате другого специалиста"
            )
        return self._answer(turn, Role.NUTRITIONIST, score, "Вопрос про питание, калории, БЖУ")

    def _rule_psychology(self, turn: _Turn) -> Optional[RoutingDecision]:
        score = turn.scores.psychology
        if score <= DOMAIN_THRESHOLD:
            return None

        if turn.channel is Role.PSYCHOLOGIST and turn.scores.training > PSYCHOLOGY_TRAINING_THRESHOLD:
            return self._ask_confirm(
                turn, Role.TRAINER, score, "Вопрос про мотивацию с тренировочным контекстом"
            )
        if turn.in_other_specialist_chat(Role.PSYCHOLOGIST):
            return self._ask_confirm(
                turn, Role.PSYCHOLOGIST, score, "Вопрос про мотивацию/стресс в чате другого специалиста"
            )
        return self._answer(turn, Role.PSYCHOLOGIST, score, "Вопрос про мотивацию, стресс, дисциплину")

    def _rule_coordinator(self, turn: _Turn) -> Optional[RoutingDecision]:
        if not turn.in_team_chat:
            return None
        s = turn.scores
        if s.max_score < SECONDARY_THRESHOLD:
            return RoutingDecision(
                selected_roles=[Role.COORDINATOR],
                mode=ResponseMode.SINGLE,
                reason="Общий вопрос, координатор отвечает",
                confidence=COORDINATOR_CONFIDENCE,
                safety_flags=turn.flags,
            )

        # Training wins ties against both; nutrition must beat psychology outright
        if s.training > s.nutrition and s.training > s.psychology:
            role, score, reason = Role.TRAINER, s.training, "Координатор подключает тренера"
        elif s.nutrition > s.psychology:
            role, score, reason = Role.NUTRITIONIST, s.nutrition, "Координатор подключает диетолога"
        else:
            role, score, reason = Role.PSYCHOLOGIST, s.psychology, "Координатор подключает психолога"
        return self._answer(turn, role, score, reason, flags=turn.flags)

    def _default(self, turn: _Turn) -> RoutingDecision:
        return RoutingDecision(
            selected_roles=[turn.current_role or turn.channel],
            mode=ResponseMode.SINGLE,
            reason="Вопрос в рамках компетенции текущего специалиста",
            confidence=DEFAULT_CONFIDENCE,
            safety_flags=turn.flags,
        )

    # ------------------------------------------------------------------
    # Decision builders
    # ------------------------------------------------------------------

    @staticmethod
    def _answer(
        turn: _Turn,
        role: Role,
        score: float,
        reason: str,
        flags: Optional[List[SafetyFlag]] = None,
    ) -> RoutingDecision:
        """`role` answers directly; in team chat that is a seamless handoff."""
        return RoutingDecision(
            selected_roles=[role],
            mode=ResponseMode.SINGLE,
            reason=reason,
            confidence=score,
            safety_flags=flags or [],
            handoff_mode=HandoffMode.SEAMLESS if turn.in_team_chat else None,
        )

    @staticmethod
    def _ask_confirm(turn: _Turn, target: Role, score: float, reason: str) -> RoutingDecision:
        """The current specialist keeps the turn and asks to bring in `target`."""
        return RoutingDecision(
            selected_roles=[turn.channel],
            mode=ResponseMode.HANDOFF,
            reason=reason,
            confidence=score,
            require_user_confirmation=True,
            handoff_suggested_to=target,
            handoff_mode=HandoffMode.ASK_CONFIRM,
        )
