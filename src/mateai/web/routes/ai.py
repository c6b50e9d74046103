"""AI operation endpoints.

The provider key stays on the server; clients call these endpoints
instead of the chat-completion API.
"""

from fastapi import APIRouter, Depends

from mateai.core.errors import MateAIError
from mateai.core.models import ExerciseRequest, SessionData, SessionStats
from mateai.web.dependencies import bearer_token, to_http_exception
from mateai.web.schemas import (
    ExerciseSchema,
    ExplanationRequest,
    ExplanationResponse,
    GenerateExercisesRequest,
    GenerateExercisesResponse,
    HintRequest,
    HintResponse,
    ReportRequest,
    ReportResponse,
    StatsSchema,
    ValidateAnswerRequest,
    ValidationResponse,
)
from mateai.web.sessions import get_session_manager

router = APIRouter(prefix="/api/ia", tags=["ai"])


@router.post("/ejercicios", response_model=GenerateExercisesResponse)
async def generate_exercises(
    request: GenerateExercisesRequest,
    token: str | None = Depends(bearer_token),
) -> GenerateExercisesResponse:
    """Generate exercises, personalized when the caller is logged in."""
    manager = get_session_manager()
    try:
        orchestrator = manager.orchestrator_for(manager.gateway_for(token))
        exercises = orchestrator.generate_exercises(
            ExerciseRequest(
                grade=request.grade,
                topic=request.topic,
                difficulty=request.difficulty,
                count=request.count,
                student_id=request.student_id,
            )
        )
    except MateAIError as e:
        raise to_http_exception(e) from e

    return GenerateExercisesResponse(
        exercises=[ExerciseSchema.from_exercise(ex) for ex in exercises],
        count=len(exercises),
    )


@router.post("/pista", response_model=HintResponse)
async def generate_hint(request: HintRequest) -> HintResponse:
    """Generate a hint; never fails."""
    orchestrator = get_session_manager().orchestrator_for(None)
    return HintResponse(hint=orchestrator.generate_hint(request.exercise.to_exercise()))


@router.post("/validar", response_model=ValidationResponse)
async def validate_answer(request: ValidateAnswerRequest) -> ValidationResponse:
    """Validate a student answer."""
    orchestrator = get_session_manager().orchestrator_for(None)
    try:
        result = orchestrator.validate_answer(
            request.exercise_id, request.answer, request.exercise.to_exercise()
        )
    except MateAIError as e:
        raise to_http_exception(e) from e

    return ValidationResponse(
        is_correct=result.is_correct,
        explanation=result.explanation,
        suggestions=result.suggestions,
    )


@router.post("/explicacion", response_model=ExplanationResponse)
async def generate_explanation(request: ExplanationRequest) -> ExplanationResponse:
    """Generate a step-by-step explanation."""
    orchestrator = get_session_manager().orchestrator_for(None)
    try:
        explanation = orchestrator.generate_explanation(
            request.exercise.to_exercise(), request.answer
        )
    except MateAIError as e:
        raise to_http_exception(e) from e
    return ExplanationResponse(explanation=explanation)


@router.post("/reporte", response_model=ReportResponse)
async def generate_report(request: ReportRequest) -> ReportResponse:
    """Generate a session report; statistics are computed locally."""
    exercises = [ex.to_exercise() for ex in request.exercises]
    attempts = [a.to_attempt(i) for i, a in enumerate(request.attempts, 1)]
    data = SessionData(
        grade=request.grade,
        topic=request.topic,
        exercises=exercises,
        attempts=attempts,
        total_time_seconds=request.total_time_seconds,
        session_duration_minutes=request.session_duration_minutes,
        is_assigned_test=request.is_assigned_test,
    )

    orchestrator = get_session_manager().orchestrator_for(None)
    try:
        report = orchestrator.generate_report(data)
    except MateAIError as e:
        raise to_http_exception(e) from e

    stats = SessionStats.compute(exercises, attempts)
    return ReportResponse(
        detailed_report=report.detailed_report,
        advice=report.advice,
        stats=StatsSchema(
            total=stats.total,
            correct=stats.correct,
            incorrect=stats.incorrect,
            score=stats.score,
        ),
    )
