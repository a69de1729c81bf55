"""
Tests for the team chat routing cascade.

Covers:
- safety routing to the doctor (with and without training context)
- combined multi-specialist answers in the team channel
- domain rules: direct answers vs ask-confirm handoffs from another specialist
- eating-disorder escalation to the psychologist
- coordinator fallback and the default rule
- resolution of an outstanding handoff proposal
"""
import pytest

from services.chat_modules import (
    HandoffMode,
    HandoffProposal,
    ResponseMode,
    Role,
    RoutingDecision,
    RoutingEngine,
    SafetyFlag,
)


@pytest.fixture
def engine():
    return RoutingEngine()


OVEREATING = "У меня переедание по вечерам, срывы на еду, ненавижу себя"


class TestSafetyRouting:
    def test_emergency_in_team_goes_to_doctor_alone(self, engine):
        decision = engine.route("у меня болит грудь и кружится голова", Role.COORDINATOR)

        assert decision.selected_roles == [Role.DOCTOR]
        assert decision.mode is ResponseMode.SINGLE
        assert SafetyFlag.MEDICAL_EMERGENCY in decision.safety_flags
        assert decision.confidence == pytest.approx(0.95)
        assert decision.require_user_confirmation is False

    def test_injury_with_training_context_in_team_adds_trainer(self, engine):
        decision = engine.route("Болит колено после приседа", Role.COORDINATOR)

        assert decision.selected_roles == [Role.DOCTOR, Role.TRAINER]
        assert decision.mode is ResponseMode.MULTI
        assert decision.safety_flags == [SafetyFlag.INJURY_RISK]

    def test_injury_in_trainer_chat_goes_to_doctor_with_confirmation_flag(self, engine):
        decision = engine.route("Болит колено после приседа", Role.TRAINER)

        assert decision.selected_roles == [Role.DOCTOR]
        assert decision.mode is ResponseMode.SINGLE
        assert decision.require_user_confirmation is True

    def test_doctor_chat_needs_no_confirmation(self, engine):
        decision = engine.route("Болит колено после приседа", Role.DOCTOR)
        assert decision.selected_roles == [Role.DOCTOR]
        assert decision.require_user_confirmation is False

    def test_raw_symptom_marker_without_flags(self, engine):
        decision = engine.route("Какая-то боль непонятная", Role.COORDINATOR)

        assert decision.selected_roles == [Role.DOCTOR]
        assert decision.safety_flags == []

    def test_safety_beats_domain_rules(self, engine):
        decision = engine.route("Жим, присед и становая, но болит грудь", Role.TRAINER)
        assert decision.primary_role is Role.DOCTOR


class TestCombinedRouting:
    def test_training_and_nutrition_in_team(self, engine):
        decision = engine.route(
            "Составь план тренировок и план питания: подходы, повторы, калории и белок",
            Role.COORDINATOR,
        )

        assert decision.selected_roles == [Role.TRAINER, Role.NUTRITIONIST]
        assert decision.mode is ResponseMode.MULTI
        assert decision.confidence == 1.0
        assert decision.require_user_confirmation is False

    def test_combined_rule_only_in_team(self, engine):
        decision = engine.route(
            "Составь план тренировок и план питания: подходы, повторы, калории и белок",
            Role.TRAINER,
        )
        assert decision.selected_roles == [Role.TRAINER]
        assert decision.mode is ResponseMode.SINGLE


class TestDomainRouting:
    def test_motivation_in_team_is_seamless_psychologist(self, engine):
        decision = engine.route("мотивации нет, лень тренироваться", Role.COORDINATOR)

        assert decision.selected_roles == [Role.PSYCHOLOGIST]
        assert decision.mode is ResponseMode.SINGLE
        assert decision.handoff_mode is HandoffMode.SEAMLESS
        assert decision.require_user_confirmation is False
        assert decision.needs_confirmation_turn is False

    def test_nutrition_question_in_trainer_chat_asks_to_confirm(self, engine):
        decision = engine.route("Сколько калорий нужно, чтобы похудеть?", Role.TRAINER)

        assert decision.selected_roles == [Role.TRAINER]
        assert decision.mode is ResponseMode.HANDOFF
        assert decision.require_user_confirmation is True
        assert decision.handoff_suggested_to is Role.NUTRITIONIST
        assert decision.handoff_mode is HandoffMode.ASK_CONFIRM
        assert decision.needs_confirmation_turn is True

    def test_nutrition_question_in_nutritionist_chat_is_answered(self, engine):
        decision = engine.route("Сколько калорий нужно, чтобы похудеть?", Role.NUTRITIONIST)

        assert decision.selected_roles == [Role.NUTRITIONIST]
        assert decision.handoff_mode is None
        assert decision.handoff_suggested_to is None

    def test_training_question_in_nutritionist_chat_asks_for_trainer(self, engine):
        decision = engine.route("Как делать присед и сколько подходов?", Role.NUTRITIONIST)

        assert decision.handoff_suggested_to is Role.TRAINER
        assert decision.selected_roles == [Role.NUTRITIONIST]

    def test_overeating_in_nutritionist_chat_asks_for_psychologist(self, engine):
        decision = engine.route(OVEREATING, Role.NUTRITIONIST)

        assert decision.mode is ResponseMode.HANDOFF
        assert decision.handoff_suggested_to is Role.PSYCHOLOGIST
        assert decision.require_user_confirmation is True
        assert decision.selected_roles == [Role.NUTRITIONIST]

    def test_overeating_in_team_brings_both(self, engine):
        decision = engine.route(OVEREATING, Role.COORDINATOR)

        assert decision.selected_roles == [Role.NUTRITIONIST, Role.PSYCHOLOGIST]
        assert decision.mode is ResponseMode.MULTI

    def test_motivation_with_training_in_psychologist_chat_suggests_trainer(self, engine):
        decision = engine.route("Нет мотивации на тренировки, лень", Role.PSYCHOLOGIST)

        assert decision.handoff_suggested_to is Role.TRAINER
        assert decision.selected_roles == [Role.PSYCHOLOGIST]

    def test_motivation_in_doctor_chat_suggests_psychologist(self, engine):
        decision = engine.route("мотивации нет, лень и стресс", Role.DOCTOR)

        assert decision.handoff_suggested_to is Role.PSYCHOLOGIST
        assert decision.selected_roles == [Role.DOCTOR]


class TestFallbacks:
    def test_general_question_in_team_goes_to_coordinator(self, engine):
        decision = engine.route("Привет! С чего начать?", Role.COORDINATOR)

        assert decision.selected_roles == [Role.COORDINATOR]
        assert decision.mode is ResponseMode.SINGLE
        assert decision.confidence == pytest.approx(0.5)

    def test_weak_training_signal_in_team_picks_trainer(self, engine):
        decision = engine.route("Нужна разминка", Role.COORDINATOR)

        assert decision.selected_roles == [Role.TRAINER]
        assert decision.handoff_mode is HandoffMode.SEAMLESS
        assert decision.confidence == pytest.approx(1 / 3)

    def test_specialist_chat_default_keeps_specialist(self, engine):
        decision = engine.route("Привет!", Role.TRAINER)

        assert decision.selected_roles == [Role.TRAINER]
        assert decision.mode is ResponseMode.SINGLE
        assert decision.confidence == pytest.approx(0.6)

    def test_default_uses_current_role_when_known(self, engine):
        decision = engine.route("Привет!", Role.TRAINER, current_role=Role.DOCTOR)
        assert decision.selected_roles == [Role.DOCTOR]


class TestPendingHandoff:
    def test_confirmation_executes_pending_handoff(self, engine):
        pending = HandoffProposal(to=Role.NUTRITIONIST, from_role=Role.TRAINER)
        decision = engine.route("подключай", Role.TRAINER, pending_handoff=pending)

        assert decision.execute_handoff is True
        assert decision.handoff_to is Role.NUTRITIONIST

    def test_rejection_cancels_pending_handoff(self, engine):
        pending = HandoffProposal(to=Role.NUTRITIONIST, from_role=Role.TRAINER)
        decision = engine.route("нет", Role.TRAINER, pending_handoff=pending)

        assert decision.cancel_handoff is True
        assert decision.selected_roles == [Role.TRAINER]

    def test_unrelated_message_routes_normally_and_leaves_proposal(self, engine):
        pending = HandoffProposal(to=Role.NUTRITIONIST, from_role=Role.TRAINER)
        decision = engine.route("Болит колено после приседа", Role.TRAINER, pending_handoff=pending)

        assert decision.primary_role is Role.DOCTOR
        assert decision.execute_handoff is False
        assert decision.cancel_handoff is False
        assert pending == HandoffProposal(to=Role.NUTRITIONIST, from_role=Role.TRAINER)

    def test_confirmation_without_proposal_is_ordinary_text(self, engine):
        decision = engine.route("да", Role.TRAINER)
        assert decision.execute_handoff is False
        assert decision.selected_roles == [Role.TRAINER]


class TestDecisionInvariants:
    def test_empty_roles_rejected(self):
        with pytest.raises(ValueError):
            RoutingDecision(selected_roles=[], mode=ResponseMode.SINGLE, reason="", confidence=0.5)

    def test_confidence_out_of_range_rejected(self):
        with pytest.raises(ValueError):
            RoutingDecision(selected_roles=[Role.TRAINER], mode=ResponseMode.SINGLE, reason="", confidence=1.5)

    def test_roles_and_flags_are_deduplicated(self):
        decision = RoutingDecision(
            selected_roles=[Role.DOCTOR, Role.TRAINER, Role.DOCTOR],
            mode=ResponseMode.MULTI,
            reason="",
            confidence=0.9,
            safety_flags=[SafetyFlag.INJURY_RISK, SafetyFlag.INJURY_RISK],
        )
        assert decision.selected_roles == [Role.DOCTOR, Role.TRAINER]
        assert decision.safety_flags == [SafetyFlag.INJURY_RISK]

    @pytest.mark.parametrize("text", [
        "у меня болит грудь и кружится голова",
        "Составь план тренировок и план питания: подходы, повторы, калории и белок",
        OVEREATING,
        "Привет!",
        "",
    ])
    @pytest.mark.parametrize("channel", list(Role))
    def test_every_decision_is_well_formed(self, engine, text, channel):
        decision = engine.route(text, channel)

        assert decision.selected_roles
        assert 0.0 <= decision.confidence <= 1.0
        if decision.require_user_confirmation and decision.mode is ResponseMode.HANDOFF:
            assert decision.handoff_suggested_to is not None
        if decision.execute_handoff:
            assert decision.handoff_to is not None

    def test_to_dict_uses_wire_values(self, engine):
        data = engine.route("у меня болит грудь и кружится голова", Role.COORDINATOR).to_dict()

        assert data["selected_roles"] == ["doctor"]
        assert data["mode"] == "single"
        assert "medical_emergency" in data["safety_flags"]
