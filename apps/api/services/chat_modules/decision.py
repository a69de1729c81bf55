"""
Routing decision value produced once per inbound message.

Only its side effects (thread state, persisted messages) outlive the turn.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .roles import HandoffMode, ResponseMode, Role, SafetyFlag


@dataclass
class RoutingDecision:
    selected_roles: List[Role]
    mode: ResponseMode
    reason: str
    confidence: float
    require_user_confirmation: bool = False
    safety_flags: List[SafetyFlag] = field(default_factory=list)
    handoff_suggested_to: Optional[Role] = None
    handoff_mode: Optional[HandoffMode] = None
    # Set only when a pending proposal is being resolved
    execute_handoff: bool = False
    cancel_handoff: bool = False
    handoff_to: Optional[Role] = None

    def __post_init__(self):
        if not self.selected_roles:
            raise ValueError("RoutingDecision needs at least one selected role")
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence out of range: {self.confidence}")
        # Ordered set: keep first occurrence only
        self.selected_roles = list(dict.fromkeys(self.selected_roles))
        self.safety_flags = list(dict.fromkeys(self.safety_flags))

    @property
    def primary_role(self) -> Role:
        return self.selected_roles[0]

    @property
    def needs_confirmation_turn(self) -> bool:
        """An ask-confirm proposal: answered with a question, no completion call."""
        return (
            self.mode is ResponseMode.HANDOFF
            and self.handoff_suggested_to is not None
            and self.handoff_mode is HandoffMode.ASK_CONFIRM
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "selected_roles": [r.value for r in self.selected_roles],
            "mode": self.mode.value,
            "require_user_confirmation": self.require_user_confirmation,
            "reason": self.reason,
            "safety_flags": [f.value for f in self.safety_flags],
            "handoff_suggested_to": self.handoff_suggested_to.value if self.handoff_suggested_to else None,
            "handoff_mode": self.handoff_mode.value if self.handoff_mode else None,
            "confidence": round(self.confidence, 4),
            "execute_handoff": self.execute_handoff,
            "cancel_handoff": self.cancel_handoff,
            "handoff_to": self.handoff_to.value if self.handoff_to else None,
        }
