"""Practice session controller.

A session is a single tagged state machine:

    CONFIGURING -> GENERATING -> ANSWERING(i) -> VALIDATING(i) -> REVEALED(i)
        -> ANSWERING(i+1) | SUMMARIZING -> REPORT_PENDING -> COMPLETED

REVEALED carries a RevealOutcome (SUCCEEDED or FAILED); both are terminal
for the current exercise. Failures never leave the session stuck: they set
a banner (SessionMessage) and put the session back in a state the user can
act on.

Free practice generates exercises with the AI and allows max_attempts
tries per exercise. Assigned tests (from_assignment) load questions from
the backend, have no attempt ceiling, and may run against a countdown.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum, auto
from typing import Any, Callable, Literal

import structlog

from mateai.core.ai_orchestrator import HINT_FALLBACK, AIOrchestrator
from mateai.core.backend_gateway import BackendGateway
from mateai.core.errors import (
    AnswerValidationFailure,
    GenerationFailure,
    InvalidTransition,
    ReportGenerationFailure,
    TransportError,
    UserInputError,
)
from mateai.core.models import (
    DIFFICULTIES,
    AssignedTest,
    Attempt,
    Exercise,
    ExerciseRequest,
    PerformanceReportPayload,
    Report,
    SessionData,
    SessionStats,
    ValidationResult,
    round_half_up,
)

logger = structlog.get_logger(__name__)

DEFAULT_GRADE = "3"


class SessionState(Enum):
    """Single tagged state of a practice session."""

    CONFIGURING = auto()
    GENERATING = auto()
    ANSWERING = auto()
    VALIDATING = auto()
    REVEALED = auto()
    SUMMARIZING = auto()
    REPORT_PENDING = auto()
    COMPLETED = auto()


class RevealOutcome(Enum):
    SUCCEEDED = auto()
    FAILED = auto()


@dataclass
class SessionMessage:
    """Dismissible banner shown to the student."""

    kind: Literal["error", "info", "success"]
    text: str

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "text": self.text}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PracticeSession:
    """Drives one practice session or assigned test."""

    def __init__(
        self,
        orchestrator: AIOrchestrator,
        gateway: BackendGateway | None = None,
        *,
        max_attempts: int | None = 3,
        hints_per_exercise: int | None = 1,
        default_grade: str = DEFAULT_GRADE,
        default_count: int = 5,
        default_difficulty: str = "basica",
        clock: Callable[[], float] = time.monotonic,
        now: Callable[[], datetime] = _utcnow,
    ):
        """Initialize a session in CONFIGURING.

        Args:
            orchestrator: AI operations
            gateway: Backend client; its session context supplies the
                student id and default grade
            max_attempts: Attempt ceiling per exercise (None = unlimited)
            hints_per_exercise: Hint ceiling per exercise (None = unlimited)
            clock: Monotonic seconds, injectable for tests
            now: Wall-clock timestamps for attempts
        """
        self.orchestrator = orchestrator
        self.gateway = gateway
        self.max_attempts = max_attempts
        self.hints_per_exercise = hints_per_exercise
        self._clock = clock
        self._now = now

        context = gateway.context if gateway is not None else None
        self.student_id: str | None = context.user_id if context else None
        self._default_grade = (context.grade if context else None) or default_grade
        self._default_count = default_count
        self._default_difficulty = default_difficulty

        self._reset()

    def _reset(self) -> None:
        self.state = SessionState.CONFIGURING
        self.outcome: RevealOutcome | None = None
        self.grade = self._default_grade
        self.topic = ""
        self.difficulty = self._default_difficulty
        self.count = self._default_count

        self.assigned: AssignedTest | None = None
        self.exercises: list[Exercise] = []
        self.attempts: list[Attempt] = []
        self.index = 0
        self.draft = ""
        self.hints_used = 0
        self.last_hint: str | None = None
        self.last_validation: ValidationResult | None = None
        self.message: SessionMessage | None = None

        self.stats: SessionStats | None = None
        self.report: Report | None = None
        self.payload: PerformanceReportPayload | None = None

        self._started_at: float | None = None
        self._exercise_started_at: float | None = None
        self._deadline: float | None = None

    # =========================================================================
    # PROPERTIES
    # =========================================================================

    @property
    def is_assigned_test(self) -> bool:
        return self.assigned is not None

    @property
    def current_exercise(self) -> Exercise | None:
        if not self.exercises or self.index >= len(self.exercises):
            return None
        return self.exercises[self.index]

    def attempts_for(self, exercise: Exercise) -> list[Attempt]:
        return [a for a in self.attempts if a.exercise_id == exercise.id]

    @property
    def remaining_seconds(self) -> int | None:
        if self._deadline is None:
            return None
        return max(0, int(self._deadline - self._clock()))

    def _require(self, *states: SessionState) -> None:
        if self.state not in states:
            allowed = ", ".join(s.name for s in states)
            raise InvalidTransition(
                f"Acción no permitida en estado {self.state.name} (se requiere {allowed})"
            )

    # =========================================================================
    # CONFIGURING / GENERATING
    # =========================================================================

    def configure(
        self,
        topic: str | None = None,
        difficulty: str | None = None,
        count: int | None = None,
        grade: str | None = None,
    ) -> None:
        """Update practice configuration; grade defaults from the profile."""
        self._require(SessionState.CONFIGURING)
        if topic is not None:
            self.topic = topic.strip()
        if difficulty is not None:
            if difficulty not in DIFFICULTIES:
                raise UserInputError(f"Dificultad inválida: {difficulty}")
            self.difficulty = difficulty
        if count is not None:
            if count < 1:
                raise UserInputError("La cantidad de ejercicios debe ser positiva")
            self.count = count
        if grade:
            self.grade = grade

    def start(self) -> SessionState:
        """Generate exercises and move to the first one.

        On failure the session returns to CONFIGURING with an error banner.
        """
        self._require(SessionState.CONFIGURING)
        self.message = None

        if not self.topic:
            self.message = SessionMessage("info", "Ingresa un tema antes de comenzar")
            return self.state

        self.state = SessionState.GENERATING
        request = ExerciseRequest(
            grade=self.grade,
            topic=self.topic,
            difficulty=self.difficulty,  # type: ignore[arg-type]
            count=self.count,
            student_id=self.student_id,
        )

        try:
            exercises = self.orchestrator.generate_exercises(request)
            if not exercises:
                raise UserInputError("No se pudieron generar los ejercicios")
        except (GenerationFailure, UserInputError) as e:
            logger.error("session_generation_failed", topic=self.topic, error=str(e))
            self.state = SessionState.CONFIGURING
            self.message = SessionMessage("error", f"Error al generar ejercicios: {e}")
            return self.state
        except Exception:
            self.state = SessionState.CONFIGURING
            raise

        self.exercises = exercises
        self._begin()
        logger.info("session_started", topic=self.topic, exercises=len(exercises))
        return self.state

    def _begin(self) -> None:
        self.index = 0
        self._started_at = self._clock()
        self._enter_exercise()

    def _enter_exercise(self) -> None:
        self.state = SessionState.ANSWERING
        self.outcome = None
        self.draft = ""
        self.hints_used = 0
        self.last_hint = None
        self.last_validation = None
        self._exercise_started_at = self._clock()

    # =========================================================================
    # ANSWERING / VALIDATING / REVEALED
    # =========================================================================

    def set_draft(self, text: str) -> None:
        """Remember what is currently typed; used when the timer expires."""
        self._require(SessionState.ANSWERING)
        self.draft = text

    def request_hint(self) -> str:
        """Ask for a hint for the current exercise."""
        self._require(SessionState.ANSWERING)
        exercise = self.current_exercise
        assert exercise is not None

        if self.hints_per_exercise is not None and self.hints_used >= self.hints_per_exercise:
            self.message = SessionMessage("info", "Ya usaste las pistas de este ejercicio")
            return self.last_hint or HINT_FALLBACK

        hint = self.orchestrator.generate_hint(exercise)
        if hint != HINT_FALLBACK:
            self.hints_used += 1
        self.last_hint = hint
        return hint

    def submit_answer(self, text: str) -> SessionState:
        """Validate an answer and record the attempt."""
        self._require(SessionState.ANSWERING)
        if self._time_is_up():
            self.draft = text
            self._expire()
            return self.state

        exercise = self.current_exercise
        assert exercise is not None

        answer = (text or "").strip()
        if not answer:
            self.message = SessionMessage("info", "Ingresa tu respuesta antes de validar")
            return self.state

        self.state = SessionState.VALIDATING
        try:
            result = self._grade(exercise, answer)
        except (AnswerValidationFailure, UserInputError) as e:
            logger.error("session_validation_failed", exercise_id=exercise.id, error=str(e))
            self.state = SessionState.ANSWERING
            self.message = SessionMessage("error", "Error al validar la respuesta")
            return self.state

        self.last_validation = result
        self._record_attempt(exercise, answer, result.is_correct)
        tries = len(self.attempts_for(exercise))

        if result.is_correct:
            self._reveal(RevealOutcome.SUCCEEDED)
            self.message = SessionMessage("success", "¡Correcto! ¡Bien hecho!")
        elif self.max_attempts is not None and tries >= self.max_attempts:
            self._reveal(RevealOutcome.FAILED)
            self.message = SessionMessage(
                "error",
                f"Incorrecto. Has alcanzado el máximo de {self.max_attempts} intentos. "
                "Continúa al siguiente ejercicio.",
            )
        else:
            self.state = SessionState.ANSWERING
            self.draft = ""
            if self.max_attempts is None:
                banner = "Incorrecto. Intenta de nuevo."
            else:
                banner = f"Incorrecto. Intento {tries} de {self.max_attempts}. Intenta de nuevo."
            self.message = SessionMessage("error", banner)
        return self.state

    def _grade(self, exercise: Exercise, answer: str) -> ValidationResult:
        # Fixed options of an assigned test are compared locally
        if self.is_assigned_test and exercise.options and answer in exercise.options:
            return ValidationResult(
                is_correct=answer == exercise.correct_answer,
                explanation=exercise.explanation,
            )
        return self.orchestrator.validate_answer(exercise.id, answer, exercise)

    def _record_attempt(
        self, exercise: Exercise, answer: str, is_correct: bool, validated: bool = True
    ) -> Attempt:
        elapsed = self._clock() - (self._exercise_started_at or self._clock())
        attempt = Attempt(
            id=uuid.uuid4().hex,
            exercise_id=exercise.id,
            answer_text=answer,
            is_correct=is_correct,
            hints_used=self.hints_used,
            attempted_at=self._now(),
            resolution_time_ms=int(elapsed * 1000),
            validated=validated,
        )
        self.attempts.append(attempt)
        logger.debug(
            "attempt_recorded",
            exercise_id=exercise.id,
            is_correct=is_correct,
            hints_used=self.hints_used,
        )
        return attempt

    def _reveal(self, outcome: RevealOutcome) -> None:
        self.state = SessionState.REVEALED
        self.outcome = outcome

    def give_up(self) -> SessionState:
        """Stop trying the current exercise (only without attempt ceiling)."""
        self._require(SessionState.ANSWERING)
        if self.max_attempts is not None:
            raise InvalidTransition("Solo se puede pasar de pregunta sin límite de intentos")

        exercise = self.current_exercise
        assert exercise is not None
        if not self.attempts_for(exercise):
            self._record_attempt(exercise, "", False)
        self._reveal(RevealOutcome.FAILED)
        self.message = None
        return self.state

    def advance(self) -> SessionState:
        """Continue to the next exercise, or summarize after the last one."""
        self._require(SessionState.REVEALED)
        self.message = None
        if self.index + 1 < len(self.exercises):
            self.index += 1
            self._enter_exercise()
            return self.state

        self._summarize()
        return self.state

    # =========================================================================
    # TIMER
    # =========================================================================

    def _time_is_up(self) -> bool:
        return self._deadline is not None and self._clock() >= self._deadline

    def tick(self) -> int | None:
        """Check the countdown; force the end of the session at zero.

        Returns:
            Remaining seconds, or None when the session is untimed
        """
        if self._deadline is None:
            return None
        if self.state in (SessionState.ANSWERING, SessionState.REVEALED) and self._time_is_up():
            self._expire()
        return self.remaining_seconds

    def _expire(self) -> None:
        logger.info("session_time_expired", index=self.index, total=len(self.exercises))

        if self.state == SessionState.ANSWERING:
            exercise = self.current_exercise
            assert exercise is not None
            answer = self.draft.strip()
            if answer:
                try:
                    is_correct = self._grade(exercise, answer).is_correct
                except (AnswerValidationFailure, UserInputError) as e:
                    logger.warning("timeout_validation_failed", exercise_id=exercise.id, error=str(e))
                    if not self.attempts_for(exercise):
                        self._record_attempt(exercise, "", False, validated=False)
                else:
                    self._record_attempt(exercise, answer, is_correct)
            elif not self.attempts_for(exercise):
                self._record_attempt(exercise, "", False)

        for exercise in self.exercises[self.index + 1 :]:
            if not self.attempts_for(exercise):
                self._exercise_started_at = self._clock()
                self._record_attempt(exercise, "", False)

        self.message = SessionMessage("info", "Se acabó el tiempo")
        self._summarize()

    # =========================================================================
    # SUMMARIZING / REPORT
    # =========================================================================

    def _summarize(self) -> None:
        self.state = SessionState.SUMMARIZING
        self.stats = SessionStats.compute(self.exercises, self.attempts)

        if self.is_assigned_test:
            self._submit_test_answers()

        self.state = SessionState.REPORT_PENDING
        total_seconds = int(round(self._clock() - (self._started_at or self._clock())))
        data = SessionData(
            grade=self.grade,
            topic=self.topic,
            exercises=self.exercises,
            attempts=self.attempts,
            total_time_seconds=total_seconds,
            session_duration_minutes=round_half_up(total_seconds / 60),
            is_assigned_test=self.is_assigned_test,
        )

        try:
            self.report = self.orchestrator.generate_report(data)
        except ReportGenerationFailure as e:
            logger.error("session_report_failed", topic=self.topic, error=str(e))
            self.message = SessionMessage("error", "No se pudo generar el reporte de rendimiento")

        if self.report is not None:
            self.payload = self._build_payload(data)
            self._persist_report()

        self.state = SessionState.COMPLETED
        logger.info(
            "session_completed",
            topic=self.topic,
            correct=self.stats.correct,
            total=self.stats.total,
            score=self.stats.score,
        )

    def _build_payload(self, data: SessionData) -> PerformanceReportPayload:
        assert self.report is not None and self.stats is not None
        payload = PerformanceReportPayload(
            student_id=self.student_id or "",
            grade=data.grade,
            topic=data.topic,
            stats=self.stats,
            total_time_seconds=data.total_time_seconds,
            session_duration_minutes=data.session_duration_minutes,
            report=self.report,
        )
        if self.assigned is not None:
            payload.practice_type = "tarea_docente"
            payload.test_id = self.assigned.test_id
            payload.assignment_id = self.assigned.assignment_id
            payload.teacher_id = self.assigned.teacher_id
        return payload

    def _persist_report(self) -> None:
        if self.gateway is None or self.payload is None or not self.student_id:
            logger.info("report_not_persisted", reason="sin sesión de backend")
            return
        try:
            self.gateway.save_performance_report(self.payload)
        except TransportError as e:
            logger.error("report_persist_failed", error=str(e), status=e.status_code)

    def _submit_test_answers(self) -> None:
        if self.gateway is None or self.assigned is None:
            return

        answers = []
        for exercise in self.exercises:
            tries = self.attempts_for(exercise)
            if not tries:
                continue
            last = tries[-1]
            answers.append(
                {
                    "preguntaId": exercise.id,
                    "respuesta": last.answer_text,
                    "esCorrecta": last.is_correct,
                    "tiempoRespuesta": last.resolution_time_ms,
                }
            )

        try:
            self.gateway.submit_test_answers(
                {
                    "testId": self.assigned.test_id,
                    "asignacionId": self.assigned.assignment_id,
                    "alumnoId": self.student_id,
                    "respuestas": answers,
                }
            )
        except TransportError as e:
            logger.error("test_answers_submit_failed", error=str(e), status=e.status_code)

    def restart(self) -> SessionState:
        """Discard everything and go back to CONFIGURING."""
        logger.info("session_restarted", previous_state=self.state.name)
        self._reset()
        return self.state

    # =========================================================================
    # ASSIGNED TESTS
    # =========================================================================

    @classmethod
    def from_assignment(
        cls,
        orchestrator: AIOrchestrator,
        gateway: BackendGateway,
        assignment_id: str,
        **kwargs: Any,
    ) -> PracticeSession:
        """Start a session on a teacher-assigned test.

        Questions, time limit and instructions come from the backend; there
        is no attempt ceiling.

        Raises:
            TransportError: the test could not be loaded
            UserInputError: the test has no questions
        """
        kwargs.setdefault("max_attempts", None)
        kwargs.setdefault("hints_per_exercise", None)
        session = cls(orchestrator, gateway, **kwargs)
        test = gateway.get_assigned_test(assignment_id, session.grade)
        if not test.questions:
            raise UserInputError("El test no tiene preguntas")

        session.assigned = test
        session.topic = test.title
        session.exercises = list(test.questions)
        session.count = len(test.questions)
        session._begin()
        if test.time_limit_minutes:
            session._deadline = session._started_at + test.time_limit_minutes * 60  # type: ignore[operator]
        if test.instructions:
            session.message = SessionMessage("info", test.instructions)

        logger.info(
            "assigned_test_started",
            assignment_id=assignment_id,
            questions=len(test.questions),
            time_limit=test.time_limit_minutes,
        )
        return session

    # =========================================================================
    # VIEW
    # =========================================================================

    def to_dict(self) -> dict[str, Any]:
        """Snapshot for views; the canonical answer is hidden until revealed."""
        exercise = self.current_exercise
        exercise_view = None
        if exercise is not None and self.state in (
            SessionState.ANSWERING,
            SessionState.VALIDATING,
            SessionState.REVEALED,
        ):
            revealed = self.state == SessionState.REVEALED
            exercise_view = {
                "id": exercise.id,
                "statement": exercise.statement,
                "options": list(exercise.options),
                "difficulty": exercise.difficulty,
                "topic": exercise.topic,
                "correct_answer": exercise.correct_answer if revealed else None,
                "explanation": exercise.explanation if revealed else None,
            }

        validation = None
        if self.last_validation is not None:
            validation = {
                "is_correct": self.last_validation.is_correct,
                "explanation": self.last_validation.explanation,
                "suggestions": list(self.last_validation.suggestions),
            }

        stats = None
        if self.stats is not None:
            stats = {
                "total": self.stats.total,
                "correct": self.stats.correct,
                "incorrect": self.stats.incorrect,
                "score": self.stats.score,
            }

        report = None
        if self.report is not None:
            report = {"detailed_report": self.report.detailed_report, "advice": self.report.advice}

        return {
            "state": self.state.name,
            "outcome": self.outcome.name if self.outcome else None,
            "grade": self.grade,
            "topic": self.topic,
            "difficulty": self.difficulty,
            "count": self.count,
            "index": self.index,
            "total": len(self.exercises),
            "exercise": exercise_view,
            "attempts": len(self.attempts_for(exercise)) if exercise else 0,
            "max_attempts": self.max_attempts,
            "hints_used": self.hints_used,
            "hint": self.last_hint,
            "validation": validation,
            "message": self.message.to_dict() if self.message else None,
            "remaining_seconds": self.remaining_seconds,
            "is_assigned_test": self.is_assigned_test,
            "stats": stats,
            "report": report,
        }
