"""
Tests for pending-handoff resolution.
"""
import pytest

from services.chat_modules import (
    HandoffMode,
    HandoffProposal,
    HandoffStateMachine,
    KeywordClassifier,
    ResponseMode,
    Role,
)


@pytest.fixture
def machine():
    return HandoffStateMachine(KeywordClassifier())


@pytest.fixture
def proposal():
    return HandoffProposal(to=Role.NUTRITIONIST, from_role=Role.TRAINER, reason="Вопрос про питание")


def test_nothing_pending_resolves_to_none(machine):
    assert machine.resolve("да", None, Role.TRAINER) is None


def test_connect_stem_executes_handoff(machine, proposal):
    decision = machine.resolve("ну подключай уже", proposal, Role.TRAINER)

    assert decision.execute_handoff is True
    assert decision.handoff_to is Role.NUTRITIONIST
    assert decision.selected_roles == [Role.NUTRITIONIST]
    assert decision.mode is ResponseMode.HANDOFF
    assert decision.handoff_mode is HandoffMode.SEAMLESS
    assert decision.confidence == 1.0
    assert decision.cancel_handoff is False


def test_no_cancels_and_keeps_channel_specialist(machine, proposal):
    decision = machine.resolve("нет", proposal, Role.TRAINER)

    assert decision.cancel_handoff is True
    assert decision.execute_handoff is False
    assert decision.selected_roles == [Role.TRAINER]
    assert decision.mode is ResponseMode.SINGLE
    assert decision.confidence == 1.0


def test_rejection_prefers_current_role_over_channel(machine, proposal):
    decision = machine.resolve("не сейчас", proposal, Role.COORDINATOR, current_role=Role.TRAINER)
    assert decision.selected_roles == [Role.TRAINER]


def test_unrelated_message_leaves_proposal_alone(machine, proposal):
    assert machine.resolve("а сколько воды пить?", proposal, Role.TRAINER) is None


def test_connect_stem_wins_over_rejection(machine, proposal):
    # "не надо" is a rejection prefix, but confirmation is checked first
    decision = machine.resolve("не надо подключать", proposal, Role.TRAINER)
    assert decision.execute_handoff is True


def test_confirm_and_reject_builders():
    confirm = HandoffStateMachine.confirm(HandoffProposal(to=Role.DOCTOR, from_role=Role.COORDINATOR))
    assert confirm.handoff_to is Role.DOCTOR
    assert confirm.needs_confirmation_turn is False

    reject = HandoffStateMachine.reject(Role.PSYCHOLOGIST)
    assert reject.selected_roles == [Role.PSYCHOLOGIST]
    assert reject.handoff_to is None
