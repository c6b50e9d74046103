"""Domain values for practice sessions.

Exercises, attempts and reports are session-local: exercises are created
from an AI response (or an assigned test) and discarded with the session;
only the report and its aggregate statistics are persisted by the backend.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

Difficulty = Literal["basica", "media", "avanzada"]
PracticeType = Literal["ia_libre", "tarea_docente"]

DIFFICULTIES: tuple[str, ...] = ("basica", "media", "avanzada")


@dataclass
class ExerciseRequest:
    """Configuration submitted to start a practice session."""

    grade: str
    topic: str
    difficulty: Difficulty = "basica"
    count: int = 5
    student_id: str | None = None


@dataclass(frozen=True)
class Exercise:
    """A single math exercise."""

    id: str
    statement: str
    options: tuple[str, ...]
    correct_answer: str
    explanation: str
    difficulty: Difficulty
    topic: str
    grade: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "enunciado": self.statement,
            "opciones": list(self.options),
            "respuestaCorrecta": self.correct_answer,
            "explicacion": self.explanation,
            "dificultad": self.difficulty,
            "tema": self.topic,
            "grado": self.grade,
        }


@dataclass(frozen=True)
class Attempt:
    """One answer submission to one exercise."""

    id: str
    exercise_id: str
    answer_text: str
    is_correct: bool
    hints_used: int
    attempted_at: datetime
    resolution_time_ms: int
    validated: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "ejercicioId": self.exercise_id,
            "respuesta": self.answer_text,
            "esCorrecta": self.is_correct,
            "pistasUsadas": self.hints_used,
            "fechaIntento": self.attempted_at.isoformat(),
            "tiempoResolucion": self.resolution_time_ms,
        }


@dataclass
class ValidationResult:
    """Outcome of an AI answer check."""

    is_correct: bool
    explanation: str
    suggestions: list[str] = field(default_factory=list)


@dataclass
class Report:
    """Free-text performance analysis produced once per session."""

    detailed_report: str
    advice: str


@dataclass
class PriorPerformanceSummary:
    """Excerpt of a previously persisted report, used to personalize prompts."""

    date: datetime | None
    topic: str
    score: float
    advice: str
    report_excerpt: str

    @classmethod
    def from_backend(cls, data: dict[str, Any]) -> PriorPerformanceSummary:
        raw_date = data.get("fechaRealizacion")
        date = None
        if raw_date:
            try:
                date = datetime.fromisoformat(str(raw_date).replace("Z", "+00:00"))
            except ValueError:
                date = None
        return cls(
            date=date,
            topic=str(data.get("tema", "")),
            score=float(data.get("puntuacion", 0) or 0),
            advice=str(data.get("consejos", "")),
            report_excerpt=str(data.get("reporte", "")),
        )


def round_half_up(value: float) -> int:
    """Round .5 away from zero for non-negative values, like a report card."""
    return int(math.floor(value + 0.5))


@dataclass
class SessionStats:
    """Aggregate statistics derived locally from the session."""

    total: int
    correct: int
    incorrect: int
    score: int

    @classmethod
    def compute(cls, exercises: list[Exercise], attempts: list[Attempt]) -> SessionStats:
        """Count exercises whose terminal outcome is correct.

        An exercise is correct when any of its attempts is correct; retries
        never inflate the incorrect count beyond the number of exercises.
        """
        total = len(exercises)
        solved = {a.exercise_id for a in attempts if a.is_correct}
        correct = sum(1 for ex in exercises if ex.id in solved)
        score = round_half_up(correct / total * 100) if total else 0
        return cls(total=total, correct=correct, incorrect=total - correct, score=score)


@dataclass
class SessionData:
    """Everything the report prompt needs."""

    grade: str
    topic: str
    exercises: list[Exercise]
    attempts: list[Attempt]
    total_time_seconds: int
    session_duration_minutes: int
    is_assigned_test: bool = False


@dataclass
class AssignedTest:
    """A teacher-assigned test loaded from the backend."""

    test_id: str
    assignment_id: str
    title: str
    description: str
    questions: list[Exercise]
    time_limit_minutes: int | None = None
    instructions: str | None = None
    teacher_id: str | None = None


@dataclass
class PerformanceReportPayload:
    """Body persisted to the backend's performance-report endpoint."""

    student_id: str
    grade: str
    topic: str
    stats: SessionStats
    total_time_seconds: int
    session_duration_minutes: int
    report: Report
    practice_type: PracticeType = "ia_libre"
    test_id: str | None = None
    assignment_id: str | None = None
    teacher_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "alumnoId": self.student_id,
            "grado": self.grade,
            "tema": self.topic,
            "totalPreguntas": self.stats.total,
            "respuestasCorrectas": self.stats.correct,
            "respuestasIncorrectas": self.stats.incorrect,
            "puntuacion": self.stats.score,
            "tiempoTotal": self.total_time_seconds,
            "duracionSesion": self.session_duration_minutes,
            "reporte": self.report.detailed_report,
            "consejos": self.report.advice,
            "tipoPractica": self.practice_type,
        }
        if self.test_id is not None:
            result["testId"] = self.test_id
        if self.assignment_id is not None:
            result["conjuntoId"] = self.assignment_id
        if self.teacher_id is not None:
            result["docenteId"] = self.teacher_id
        return result
