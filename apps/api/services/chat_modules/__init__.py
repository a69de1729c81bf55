"""
Team Chat Modules

Routing core for the multi-specialist chat.

Modules:
- roles: closed vocabularies (Role, ResponseMode, HandoffMode, ...)
- lexicons: keyword lexicons and display names, injected as configuration
- classifier: safety flags, intent scores and handoff answers
- handoff: pending-handoff proposal and its state machine
- routing: ordered rule cascade producing a RoutingDecision
- prompts: system/user prompt text and handoff phrases

Usage:
    from services.chat_modules import RoutingEngine, Role
    decision = RoutingEngine().route("болит колено после приседа", Role.TRAINER)
"""

from .roles import (
    Author,
    HandoffMode,
    IntentDomain,
    MessageIntent,
    MessageType,
    ResponseMode,
    Role,
    SafetyFlag,
)
from .lexicons import (
    DEFAULT_LEXICONS,
    Lexicons,
    get_lexicons,
    load_lexicons,
)
from .classifier import (
    IntentClassifier,
    IntentScores,
    KeywordClassifier,
)
from .decision import RoutingDecision
from .handoff import (
    HandoffProposal,
    HandoffStateMachine,
)
from .routing import RoutingEngine
from .prompts import ChatContext

__all__ = [
    # Vocabularies
    "Author",
    "HandoffMode",
    "IntentDomain",
    "MessageIntent",
    "MessageType",
    "ResponseMode",
    "Role",
    "SafetyFlag",
    # Configuration
    "DEFAULT_LEXICONS",
    "Lexicons",
    "get_lexicons",
    "load_lexicons",
    # Classification
    "IntentClassifier",
    "IntentScores",
    "KeywordClassifier",
    # Routing
    "RoutingDecision",
    "HandoffProposal",
    "HandoffStateMachine",
    "RoutingEngine",
    "ChatContext",
]
