"""
Prompt text for the team chat.

Each specialist gets its own system instruction; all specialists answering
the same turn share one user prompt built from the user's profile, recent
workouts, the tail of the conversation and the new message.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping, Optional

from .lexicons import DEFAULT_LEXICONS, Lexicons
from .roles import Author, Role

_COMMON_RULES = """
Общие правила:
- Отвечай на русском языке, кратко и по делу, без воды.
- Опирайся на профиль и историю диалога, не выдумывай данные о пользователе.
- Если данных не хватает, задай один уточняющий вопрос.
- Не ставь диагнозов и не назначай лекарства. При тревожных симптомах советуй обратиться к врачу очно.
- Не упоминай, что ты модель или программа. Ты участник команды специалистов."""

SYSTEM_PROMPTS: Mapping[Role, str] = {
    Role.COORDINATOR: (
        "Ты координатор команды специалистов по здоровью и фитнесу: тренер, врач, "
        "психолог и диетолог. Отвечай на общие вопросы сам, помогай пользователю "
        "сформулировать цель и подсказывай, какой специалист поможет лучше."
    ),
    Role.TRAINER: (
        "Ты персональный тренер. Помогаешь с техникой упражнений, планом тренировок, "
        "подходами, повторами, прогрессией нагрузки, разминкой и заминкой. "
        "Учитывай уровень, цель, оборудование и противопоказания пользователя."
    ),
    Role.DOCTOR: (
        "Ты спортивный врач. Оцениваешь симптомы, боли и травмы с точки зрения "
        "безопасности тренировок. При признаках неотложного состояния (боль в груди, "
        "обморок, сильная одышка, кровотечение) первым делом советуй срочно обратиться "
        "за медицинской помощью."
    ),
    Role.PSYCHOLOGIST: (
        "Ты спортивный психолог. Работаешь с мотивацией, стрессом, выгоранием, "
        "привычками и отношением к себе. Поддерживай без осуждения и предлагай "
        "маленькие конкретные шаги."
    ),
    Role.NUTRITIONIST: (
        "Ты диетолог. Помогаешь с питанием, калориями, БЖУ, рационом и режимом еды "
        "под цель пользователя. При признаках расстройства пищевого поведения "
        "мягко предлагай поддержку психолога."
    ),
}


@dataclass(frozen=True)
class ChatContext:
    """Optional user context injected into the prompt."""
    profile: str = ""
    recent_workouts: str = ""


def system_prompt_for(role: Role) -> str:
    return SYSTEM_PROMPTS[role].strip() + "\n" + _COMMON_RULES


def format_history(messages: Iterable, limit: int) -> str:
    """Render persisted messages (oldest first) as 'Пользователь: ...' lines."""
    lines = []
    for msg in list(messages)[-limit:]:
        who = "Пользователь" if msg.role == Author.USER.value else "Ассистент"
        lines.append(f"{who}: {msg.content}")
    return "\n".join(lines)


def build_user_prompt(context: Optional[ChatContext], history: str, text: str) -> str:
    context = context or ChatContext()
    sections = []
    if context.profile:
        sections.append(f"Профиль пользователя:\n{context.profile}")
    if context.recent_workouts:
        sections.append(f"Последние тренировки:\n{context.recent_workouts}")
    if history:
        sections.append(f"История диалога:\n{history}")
    sections.append(f"Новое сообщение пользователя:\n{text}")
    return "\n\n".join(sections)


def handoff_question(
    current: Role,
    target: Role,
    lexicons: Lexicons = DEFAULT_LEXICONS,
) -> str:
    """Question the current specialist asks before bringing in `target`."""
    target_name = lexicons.display_name(target).lower()
    if current is Role.COORDINATOR:
        opener = "Этот вопрос лучше разобрать со специалистом."
    else:
        opener = "Этот вопрос выходит за рамки моей специализации."
    return f"{opener} Подключить {_accusative(target_name)}, чтобы продолжить? Ответьте «да» или «нет»."


def handoff_notice(target: Role, lexicons: Lexicons = DEFAULT_LEXICONS) -> str:
    return f"Подключился {lexicons.display_name(target)}"


def typing_hint(role: Role, lexicons: Lexicons = DEFAULT_LEXICONS) -> str:
    return f"{lexicons.display_name(role)} печатает..."


def _accusative(name: str) -> str:
    # тренер -> тренера, психолог -> психолога, врач -> врача
    if name and name[-1] not in "аяоеиуыэюь":
        return name + "а"
    return name
