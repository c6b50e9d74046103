"""Pydantic schemas for the Web API.

Serialization models for AI operations and practice sessions.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

from mateai.core.models import Attempt, Exercise

DifficultySchema = Literal["basica", "media", "avanzada"]


# =============================================================================
# HEALTH
# =============================================================================


class HealthResponse(BaseModel):
    """Response for health check."""

    status: str
    version: str
    timestamp: str


# =============================================================================
# EXERCISE SCHEMAS
# =============================================================================


class ExerciseSchema(BaseModel):
    """An exercise as exchanged over the API."""

    id: str
    statement: str
    options: list[str] = Field(default_factory=list)
    correct_answer: str = ""
    explanation: str = ""
    difficulty: DifficultySchema = "basica"
    topic: str = ""
    grade: str = ""

    @classmethod
    def from_exercise(cls, exercise: Exercise) -> ExerciseSchema:
        return cls(
            id=exercise.id,
            statement=exercise.statement,
            options=list(exercise.options),
            correct_answer=exercise.correct_answer,
            explanation=exercise.explanation,
            difficulty=exercise.difficulty,
            topic=exercise.topic,
            grade=exercise.grade,
        )

    def to_exercise(self) -> Exercise:
        return Exercise(
            id=self.id,
            statement=self.statement,
            options=tuple(self.options),
            correct_answer=self.correct_answer,
            explanation=self.explanation,
            difficulty=self.difficulty,
            topic=self.topic,
            grade=self.grade,
        )


class AttemptSchema(BaseModel):
    """One recorded answer."""

    exercise_id: str
    answer_text: str = ""
    is_correct: bool
    hints_used: int = Field(default=0, ge=0)
    resolution_time_ms: int = Field(default=0, ge=0)
    attempted_at: datetime | None = None

    def to_attempt(self, index: int) -> Attempt:
        return Attempt(
            id=f"att-{index}",
            exercise_id=self.exercise_id,
            answer_text=self.answer_text,
            is_correct=self.is_correct,
            hints_used=self.hints_used,
            attempted_at=self.attempted_at or datetime.now(timezone.utc),
            resolution_time_ms=self.resolution_time_ms,
        )


# =============================================================================
# AI OPERATION SCHEMAS
# =============================================================================


class GenerateExercisesRequest(BaseModel):
    """Request body for exercise generation."""

    grade: str = Field(..., min_length=1)
    topic: str = Field(..., min_length=1, max_length=200)
    difficulty: DifficultySchema = "basica"
    count: int = Field(default=5, ge=1, le=20)
    student_id: str | None = None


class GenerateExercisesResponse(BaseModel):
    exercises: list[ExerciseSchema]
    count: int


class HintRequest(BaseModel):
    exercise: ExerciseSchema


class HintResponse(BaseModel):
    hint: str


class ValidateAnswerRequest(BaseModel):
    """Request body for answer validation."""

    exercise_id: str
    answer: str
    exercise: ExerciseSchema


class ValidationResponse(BaseModel):
    is_correct: bool
    explanation: str
    suggestions: list[str] = Field(default_factory=list)


class ExplanationRequest(BaseModel):
    exercise: ExerciseSchema
    answer: str = ""


class ExplanationResponse(BaseModel):
    explanation: str


class ReportRequest(BaseModel):
    """Request body for report generation."""

    grade: str
    topic: str
    exercises: list[ExerciseSchema] = Field(..., min_length=1)
    attempts: list[AttemptSchema] = Field(default_factory=list)
    total_time_seconds: int = Field(default=0, ge=0)
    session_duration_minutes: int = Field(default=0, ge=0)
    is_assigned_test: bool = False


class StatsSchema(BaseModel):
    total: int
    correct: int
    incorrect: int
    score: int


class ReportResponse(BaseModel):
    detailed_report: str
    advice: str
    stats: StatsSchema


# =============================================================================
# PRACTICE SESSION SCHEMAS
# =============================================================================


class PracticeCreateRequest(BaseModel):
    """Request body for creating a practice session.

    With assignment_id the session runs a teacher-assigned test instead of
    free AI practice.
    """

    topic: str | None = None
    difficulty: DifficultySchema | None = None
    count: int | None = Field(default=None, ge=1, le=20)
    grade: str | None = None
    assignment_id: str | None = None


class PracticeConfigRequest(BaseModel):
    topic: str | None = None
    difficulty: DifficultySchema | None = None
    count: int | None = Field(default=None, ge=1, le=20)
    grade: str | None = None


class AnswerRequest(BaseModel):
    answer: str


class ExerciseView(BaseModel):
    """Current exercise; answer and explanation only once revealed."""

    id: str
    statement: str
    options: list[str]
    difficulty: str
    topic: str
    correct_answer: str | None = None
    explanation: str | None = None


class MessageView(BaseModel):
    kind: Literal["error", "info", "success"]
    text: str


class ReportView(BaseModel):
    detailed_report: str
    advice: str


class PracticeSessionResponse(BaseModel):
    """Snapshot of a practice session."""

    session_id: str
    state: str
    outcome: str | None = None
    grade: str
    topic: str
    difficulty: str
    count: int
    index: int
    total: int
    exercise: ExerciseView | None = None
    attempts: int = 0
    max_attempts: int | None = None
    hints_used: int = 0
    hint: str | None = None
    validation: ValidationResponse | None = None
    message: MessageView | None = None
    remaining_seconds: int | None = None
    is_assigned_test: bool = False
    stats: StatsSchema | None = None
    report: ReportView | None = None


class HintSessionResponse(BaseModel):
    hint: str
    session: PracticeSessionResponse
