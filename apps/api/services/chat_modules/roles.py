"""
Closed vocabularies shared by the chat routing modules.

Enum values are the wire/storage values used by the mobile client and the
chat tables, so they must not change.
"""

from enum import Enum


class Role(str, Enum):
    """Specialists that can own a thread or author a reply."""
    COORDINATOR = "team"
    TRAINER = "trainer"
    DOCTOR = "doctor"
    PSYCHOLOGIST = "psychologist"
    NUTRITIONIST = "nutritionist"

    @property
    def is_specialist(self) -> bool:
        return self is not Role.COORDINATOR


class ResponseMode(str, Enum):
    SINGLE = "single"
    MULTI = "multi"
    HANDOFF = "handoff"


class HandoffMode(str, Enum):
    SEAMLESS = "seamless"        # coordinator picks a specialist on the user's behalf
    ASK_CONFIRM = "ask_confirm"  # user must confirm before the channel changes


class SafetyFlag(str, Enum):
    MEDICAL_EMERGENCY = "medical_emergency"
    INJURY_RISK = "injury_risk"
    MEDICAL_ADVICE = "medical_advice"


class IntentDomain(str, Enum):
    TRAINING = "training"
    NUTRITION = "nutrition"
    PSYCHOLOGY = "psychology"


class MessageIntent(str, Enum):
    """Coarse action intent stored on assistant messages."""
    CHAT = "chat"
    GENERATE_WORKOUT = "generate_workout"
    EDIT_WORKOUT = "edit_workout"


class MessageType(str, Enum):
    RESPONSE = "response"
    HANDOFF_QUESTION = "handoff_question"
    HANDOFF_NOTICE = "handoff_notice"


class Author(str, Enum):
    """Who wrote a persisted message."""
    USER = "user"
    ASSISTANT = "assistant"
