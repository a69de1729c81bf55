"""
Pending-handoff negotiation.

A thread is either in NoPendingHandoff (proposal is None) or
HandoffProposed(to, from_role, reason). The state machine only interprets the
user's reply to an outstanding proposal; proposals themselves are created by
the orchestrator from an ask-confirm routing decision.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .classifier import IntentClassifier
from .decision import RoutingDecision
from .roles import HandoffMode, ResponseMode, Role


@dataclass(frozen=True)
class HandoffProposal:
    to: Role
    from_role: Role
    reason: str = ""


class HandoffStateMachine:
    """Resolves an outstanding proposal against the next user message."""

    def __init__(self, classifier: IntentClassifier):
        self.classifier = classifier

    def resolve(
        self,
        text: str,
        proposal: Optional[HandoffProposal],
        channel: Role,
        current_role: Optional[Role] = None,
    ) -> Optional[RoutingDecision]:
        """
        Interpret `text` as an answer to `proposal`.

        Confirmation is checked before rejection. Returns None when nothing is
        pending or the message is neither; the proposal then stays as it is
        and normal routing handles the message.
        """
        if proposal is None:
            return None

        if self.classifier.detect_handoff_confirmation(text):
            return self.confirm(proposal)

        if self.classifier.detect_handoff_rejection(text):
            return self.reject(current_role or channel)

        return None

    @staticmethod
    def confirm(proposal: HandoffProposal) -> RoutingDecision:
        return RoutingDecision(
            selected_roles=[proposal.to],
            mode=ResponseMode.HANDOFF,
            reason="Подтверждение handoff от пользователя",
            confidence=1.0,
            handoff_mode=HandoffMode.SEAMLESS,
            execute_handoff=True,
            handoff_to=proposal.to,
        )

    @staticmethod
    def reject(role: Role) -> RoutingDecision:
        return RoutingDecision(
            selected_roles=[role],
            mode=ResponseMode.SINGLE,
            reason="Отказ от handoff, продолжение текущим специалистом",
            confidence=1.0,
            cancel_handoff=True,
        )
