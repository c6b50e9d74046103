"""Normalization of raw AI exercise items.

The model is asked for a fixed JSON shape but answers with whatever it
likes: Spanish or English keys, missing fields, numbers where strings are
expected. RawExercise accepts every field as optional; normalize_exercise
turns it into a complete Exercise and reports which fields were defaulted.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import structlog
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from mateai.core.models import Difficulty, Exercise

logger = structlog.get_logger(__name__)

DEFAULT_STATEMENT = "Ejercicio sin enunciado"
DEFAULT_CORRECT_ANSWER = "Respuesta no disponible"
DEFAULT_EXPLANATION = "Explicación no disponible"


def _to_text(value: Any) -> Any:
    if value is None or isinstance(value, str):
        return value
    if isinstance(value, (int, float, bool)):
        return str(value)
    return None


class RawExercise(BaseModel):
    """Exercise item as returned by the model; every field optional."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    id: str | None = None
    statement: str | None = Field(
        default=None, validation_alias=AliasChoices("enunciado", "statement", "question")
    )
    options: list[str] | None = Field(
        default=None, validation_alias=AliasChoices("opciones", "options")
    )
    correct_answer: str | None = Field(
        default=None,
        validation_alias=AliasChoices("respuestaCorrecta", "correctAnswer", "answer"),
    )
    explanation: str | None = Field(
        default=None, validation_alias=AliasChoices("explicacion", "explanation")
    )

    @field_validator("id", "statement", "correct_answer", "explanation", mode="before")
    @classmethod
    def _coerce_text(cls, value: Any) -> Any:
        return _to_text(value)

    @field_validator("options", mode="before")
    @classmethod
    def _coerce_options(cls, value: Any) -> Any:
        if value is None:
            return None
        if not isinstance(value, list):
            return None
        return [str(v) for v in value if v is not None]


@dataclass
class NormalizedExercise:
    """Exercise plus the names of fields filled with placeholders."""

    exercise: Exercise
    defaulted_fields: list[str] = field(default_factory=list)


def normalize_exercise(
    raw: dict[str, Any] | RawExercise,
    exercise_id: str,
    *,
    difficulty: Difficulty,
    topic: str,
    grade: str,
) -> NormalizedExercise:
    """Build a complete Exercise from a partial AI item.

    Difficulty, topic and grade always come from the request, not the model.
    """
    if not isinstance(raw, RawExercise):
        try:
            raw = RawExercise.model_validate(raw if isinstance(raw, dict) else {})
        except ValidationError as e:
            logger.warning("exercise_item_unreadable", exercise_id=exercise_id, error=str(e))
            raw = RawExercise()

    defaulted: list[str] = []

    def pick(name: str, value: str | None, default: str) -> str:
        if value is None or not value.strip():
            defaulted.append(name)
            return default
        return value

    statement = pick("statement", raw.statement, DEFAULT_STATEMENT)
    correct_answer = pick("correct_answer", raw.correct_answer, DEFAULT_CORRECT_ANSWER)
    explanation = pick("explanation", raw.explanation, DEFAULT_EXPLANATION)

    options = raw.options
    if options is None:
        defaulted.append("options")
        options = []

    exercise = Exercise(
        id=exercise_id,
        statement=statement,
        options=tuple(options),
        correct_answer=correct_answer,
        explanation=explanation,
        difficulty=difficulty,
        topic=topic,
        grade=grade,
    )

    if defaulted:
        logger.info("exercise_fields_defaulted", exercise_id=exercise_id, fields=defaulted)

    return NormalizedExercise(exercise=exercise, defaulted_fields=defaulted)


def extract_items(data: dict[str, Any]) -> list[Any]:
    """Return the list of exercise items from a parsed response."""
    for key in ("ejercicios", "exercises"):
        items = data.get(key)
        if isinstance(items, list):
            return items
    return []
