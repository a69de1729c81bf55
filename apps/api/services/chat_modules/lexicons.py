"""
Chat Routing Lexicons

Keyword lexicons and role display names used by the keyword classifier and
the orchestrator. They are process-wide and read-only: the defaults below are
bundled into an immutable `Lexicons` value at start-up, optionally overridden
field-by-field from a JSON file (CHAT_LEXICONS_PATH), and injected into the
components that need them.

All entries are lowercase; matching is done on lowercased text.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, fields, replace
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from .roles import Role

logger = logging.getLogger(__name__)


DISPLAY_NAMES: Mapping[Role, str] = MappingProxyType({
    Role.COORDINATOR: "Команда",
    Role.TRAINER: "Тренер",
    Role.PSYCHOLOGIST: "Психолог",
    Role.NUTRITIONIST: "Диетолог",
    Role.DOCTOR: "Врач",
})


# Red flags that need a doctor now
MEDICAL_EMERGENCY_KEYWORDS = (
    "боль в груди",
    "боли в груди",
    "болит грудь",
    "давит в груди",
    "обморок",
    "обмороки",
    "сильная одышка",
    "онемение",
    "немеет",
    "слабость",
    "резкая боль",
    "кровь",
    "кровотечение",
    "температура",
    "высокая температура",
    "лихорадка",
    "головокружение",
    "кружится голова",
    "голова кружится",
    "потеря сознания",
    "теряю сознание",
    "сердце болит",
    "сердцебиение",
    "аритмия",
)

INJURY_RISK_KEYWORDS = (
    "травма",
    "ушиб",
    "растяжение",
    "вывих",
    "перелом",
    "боль в",
    "болит",
    "болеет",
    "восстановление после",
    "реабилитация",
    "после операции",
    "после травмы",
)

MEDICAL_ADVICE_KEYWORDS = (
    "симптом",
    "диагноз",
    "лекарство",
    "лекарства",
    "препарат",
    "таблетки",
    "лечение",
    "болезнь",
    "заболевание",
)

# Raw markers that send an otherwise unclassified message to the doctor
SYMPTOM_MARKERS = (
    "боль",
    "травма",
    "симптом",
)

TRAINING_KEYWORDS = (
    "тренировка",
    "тренировки",
    "упражнение",
    "упражнения",
    "план тренировок",
    "программа тренировок",
    "техника",
    "как делать",
    "как выполнять",
    "подходы",
    "повторы",
    "сеты",
    "объем",
    "интенсивность",
    "прогрессия",
    "как качать",
    "как накачать",
    "восстановление после тренировки",
    "разминка",
    "заминка",
    "растяжка",
    "заменить упражнение",
    "альтернатива",
    "жим",
    "присед",
    "становая",
    "подтягивания",
    "отжимания",
)

NUTRITION_KEYWORDS = (
    "питание",
    "еда",
    "калории",
    "калорий",
    "макросы",
    "бжу",
    "белок",
    "белки",
    "углеводы",
    "жиры",
    "диета",
    "рацион",
    "план питания",
    "дефицит",
    "профицит",
    "набрать вес",
    "похудеть",
    "сбросить вес",
    "набрать массу",
    "срывы",
    "сорвался",
    "сорвалась",
    "переедание",
    "голод",
)

PSYCHOLOGY_KEYWORDS = (
    "мотивация",
    "мотивации",
    "нет мотивации",
    "лень",
    "устал",
    "устала",
    "выгорел",
    "выгорела",
    "выгорание",
    "не могу",
    "не могу заставить",
    "не могу начать",
    "стресс",
    "тревога",
    "тревожность",
    "пропустил",
    "пропустила",
    "пропуск",
    "не хочу",
    "сложно",
    "трудно",
    "дисциплина",
    "привычка",
    "привычки",
    "самооценка",
    "стыд",
    "ненавижу себя",
    "самосаботаж",
    "прокрастинация",
)

# Disordered-eating signals; only used to pull a psychologist into nutrition answers
EATING_DISORDER_KEYWORDS = (
    "срывы",
    "сорвался",
    "сорвалась",
    "ненавижу себя",
    "стыд",
    "вина",
    "виноват",
    "виновата",
    "компульсии",
    "компульсивное",
    "запретная еда",
    "запрещенная еда",
    "срываюсь на сладкое",
    "не могу контролировать",
    "обжорство",
    "переедание",
    "рвота",
    "вызываю рвоту",
)

HANDOFF_CONFIRM_PHRASES = (
    "да",
    "давай",
    "ок",
    "окей",
    "хорошо",
    "подключай",
    "подключи",
    "подключить",
    "согласен",
    "согласна",
    "угу",
    "ага",
    "да, подключи",
    "да, подключай",
    "да, подключить",
    "давай подключи",
    "давай подключай",
    "давай подключить",
)

# Any message containing this stem counts as a confirmation
HANDOFF_CONNECT_STEM = "подключ"

HANDOFF_REJECT_PHRASES = (
    "нет",
    "не надо",
    "не нужно",
    "не хочу",
    "потом",
    "не сейчас",
    "отмена",
    "отменить",
)

GENERATE_WORKOUT_KEYWORDS = (
    "сгенерируй тренировку",
    "создай тренировку",
    "составь тренировку",
    "сделай тренировку",
    "сгенерируй план",
    "создай план",
    "составь план",
    "новая тренировка",
    "новый план",
)

EDIT_WORKOUT_KEYWORDS = (
    "замени упражнение",
    "замени упражнения",
    "сделай легче",
    "сделай тяжелее",
    "убери нагрузку",
    "изменить тренировку",
    "изменить текущую",
    "изменить план",
    "обнови тренировку",
    "обнови план",
)


@dataclass(frozen=True)
class Lexicons:
    """Immutable bundle of every lexicon the router consults."""
    medical_emergency: Tuple[str, ...] = MEDICAL_EMERGENCY_KEYWORDS
    injury_risk: Tuple[str, ...] = INJURY_RISK_KEYWORDS
    medical_advice: Tuple[str, ...] = MEDICAL_ADVICE_KEYWORDS
    symptom_markers: Tuple[str, ...] = SYMPTOM_MARKERS
    training: Tuple[str, ...] = TRAINING_KEYWORDS
    nutrition: Tuple[str, ...] = NUTRITION_KEYWORDS
    psychology: Tuple[str, ...] = PSYCHOLOGY_KEYWORDS
    eating_disorder: Tuple[str, ...] = EATING_DISORDER_KEYWORDS
    handoff_confirm: Tuple[str, ...] = HANDOFF_CONFIRM_PHRASES
    handoff_connect_stem: str = HANDOFF_CONNECT_STEM
    handoff_reject: Tuple[str, ...] = HANDOFF_REJECT_PHRASES
    generate_workout: Tuple[str, ...] = GENERATE_WORKOUT_KEYWORDS
    edit_workout: Tuple[str, ...] = EDIT_WORKOUT_KEYWORDS
    display_names: Mapping[Role, str] = field(default_factory=lambda: DISPLAY_NAMES)

    def display_name(self, role: Role) -> str:
        return self.display_names.get(role, role.value)


DEFAULT_LEXICONS = Lexicons()


def lexicons_from_dict(overrides: Dict[str, Any], base: Lexicons = DEFAULT_LEXICONS) -> Lexicons:
    """
    Build a Lexicons value from a dict of overrides.

    Keys are Lexicons field names. Lists become lowercase tuples;
    `display_names` is keyed by role wire value ("team", "trainer", ...) and
    merged over the base names. Unknown keys raise ValueError.
    """
    known = {f.name for f in fields(Lexicons)}
    unknown = set(overrides) - known
    if unknown:
        raise ValueError(f"Unknown lexicon keys: {', '.join(sorted(unknown))}")

    changes: Dict[str, Any] = {}
    for key, value in overrides.items():
        if key == "display_names":
            names = dict(base.display_names)
            for role_value, name in (value or {}).items():
                names[Role(role_value)] = str(name)
            changes[key] = MappingProxyType(names)
        elif key == "handoff_connect_stem":
            changes[key] = str(value).lower()
        else:
            if isinstance(value, str) or not isinstance(value, (list, tuple)):
                raise ValueError(f"Lexicon '{key}' must be a list of strings")
            changes[key] = tuple(str(v).lower() for v in value)
    return replace(base, **changes)


def load_lexicons(path: Optional[Union[str, Path]] = None) -> Lexicons:
    """Load lexicons from a JSON override file, or return the defaults."""
    if not path:
        return DEFAULT_LEXICONS
    raw = json.loads(Path(path).read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError(f"Lexicon file {path} must contain a JSON object")
    lexicons = lexicons_from_dict(raw)
    logger.info(f"Loaded chat lexicon overrides from {path}: {', '.join(sorted(raw))}")
    return lexicons


@lru_cache(maxsize=1)
def get_lexicons() -> Lexicons:
    """Process-wide lexicons, resolved once from settings."""
    from core.config import settings
    return load_lexicons(settings.CHAT_LEXICONS_PATH)
