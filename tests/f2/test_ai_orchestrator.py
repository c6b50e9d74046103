"""Tests for AI orchestration (F2).

The LLM client is a scripted mock; no real provider is called.
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from mateai.core.ai_orchestrator import (
    ADVICE_FALLBACK,
    HINT_FALLBACK,
    REPORT_FALLBACK,
    AIOrchestrator,
    build_exercises_prompt,
    build_report_prompt,
    topics_match,
)
from mateai.core.errors import (
    AnswerValidationFailure,
    GenerationFailure,
    ParseError,
    ReportGenerationFailure,
    TransportError,
    UserInputError,
    ValidationRefusal,
)
from mateai.core.models import (
    Attempt,
    ExerciseRequest,
    PriorPerformanceSummary,
    SessionData,
    SessionStats,
)
from mateai.llm.client import LLMConnectionError, LLMStatusError
from mateai.prompts.registry import get_prompt

NOW = datetime(2024, 5, 10, tzinfo=timezone.utc)


def make_attempt(exercise_id, is_correct, hints_used=0, answer="3/4"):
    return Attempt(
        id=f"a-{exercise_id}",
        exercise_id=exercise_id,
        answer_text=answer,
        is_correct=is_correct,
        hints_used=hints_used,
        attempted_at=NOW,
        resolution_time_ms=4200,
    )


def session_data(exercise, assigned=False) -> SessionData:
    """One exercise solved on the second try, with hints."""
    return SessionData(
        grade="3",
        topic="Fracciones",
        exercises=[exercise],
        attempts=[
            make_attempt(exercise.id, False, hints_used=1, answer="1/8"),
            make_attempt(exercise.id, True, hints_used=2),
        ],
        total_time_seconds=95,
        session_duration_minutes=2,
        is_assigned_test=assigned,
    )


@pytest.fixture
def fracciones_request() -> ExerciseRequest:
    return ExerciseRequest(grade="3", topic="Fracciones", difficulty="basica", count=3)


class TestGenerateExercises:
    """Exercise generation end to end with a mocked provider."""

    def test_generates_requested_exercises(self, scripted_llm, exercises_reply, fracciones_request):
        client = scripted_llm(exercises=exercises_reply(3))
        orchestrator = AIOrchestrator(client)

        exercises = orchestrator.generate_exercises(fracciones_request)

        assert len(exercises) == 3
        for ex in exercises:
            assert ex.topic == "Fracciones"
            assert ex.difficulty == "basica"
            assert ex.grade == "3"
        assert exercises[0].correct_answer == "1"
        assert len({ex.id for ex in exercises}) == 3
        assert all(ex.id.startswith("ej-") for ex in exercises)

    def test_returns_what_the_model_returned(self, scripted_llm, exercises_reply):
        """No padding or truncation to the requested count."""
        client = scripted_llm(exercises=exercises_reply(2))
        request = ExerciseRequest(grade="3", topic="Fracciones", count=5)

        assert len(AIOrchestrator(client).generate_exercises(request)) == 2

    def test_ids_unique_across_calls(self, scripted_llm, exercises_reply, fracciones_request):
        client = scripted_llm(exercises=exercises_reply(3))
        orchestrator = AIOrchestrator(client)

        first = orchestrator.generate_exercises(fracciones_request)
        second = orchestrator.generate_exercises(fracciones_request)

        assert not {ex.id for ex in first} & {ex.id for ex in second}

    def test_uses_system_prompt_and_sampling(self, scripted_llm, exercises_reply, fracciones_request):
        client = scripted_llm(exercises=exercises_reply(3))

        AIOrchestrator(client).generate_exercises(fracciones_request)

        kwargs = client.simple_chat.call_args.kwargs
        assert kwargs["system_prompt"] == get_prompt("system/exercises")
        assert kwargs["temperature"] == 0.7
        assert kwargs["max_tokens"] == 2000
        assert 'Genera 3 ejercicios de matemáticas para 3 grado sobre el tema "Fracciones"' in (
            kwargs["user_message"]
        )

    def test_fenced_response(self, scripted_llm, fracciones_request):
        content = (
            "Claro, aquí están:\n```json\n"
            '{"ejercicios": [{"enunciado": "1 + 1", "respuestaCorrecta": "2"}]}\n```'
        )
        client = scripted_llm(exercises=content)

        exercises = AIOrchestrator(client).generate_exercises(fracciones_request)

        assert len(exercises) == 1
        assert exercises[0].statement == "1 + 1"
        assert exercises[0].options == ()

    def test_provider_500_raises_generation_failure(self, scripted_llm, fracciones_request):
        client = scripted_llm(exercises=LLMStatusError("API Error: 500", status_code=500))

        with pytest.raises(GenerationFailure) as exc_info:
            AIOrchestrator(client).generate_exercises(fracciones_request)

        assert exc_info.value.status_code == 500
        assert isinstance(exc_info.value.cause, TransportError)

    def test_connection_error(self, scripted_llm, fracciones_request):
        client = scripted_llm(exercises=LLMConnectionError("No se pudo conectar"))

        with pytest.raises(GenerationFailure) as exc_info:
            AIOrchestrator(client).generate_exercises(fracciones_request)

        assert exc_info.value.status_code is None

    def test_unparseable_response(self, scripted_llm, fracciones_request):
        client = scripted_llm(exercises="No puedo generar ejercicios ahora.")

        with pytest.raises(GenerationFailure) as exc_info:
            AIOrchestrator(client).generate_exercises(fracciones_request)

        assert isinstance(exc_info.value.cause, ParseError)

    def test_blank_topic_rejected(self, scripted_llm):
        client = scripted_llm()

        with pytest.raises(UserInputError):
            AIOrchestrator(client).generate_exercises(ExerciseRequest(grade="3", topic="  "))

        client.simple_chat.assert_not_called()

    def test_non_positive_count_rejected(self, scripted_llm):
        with pytest.raises(UserInputError):
            AIOrchestrator(scripted_llm()).generate_exercises(
                ExerciseRequest(grade="3", topic="Fracciones", count=0)
            )


class TestPersonalization:
    """Prior reports from the backend shape the exercise prompt."""

    @pytest.fixture
    def gateway(self):
        gateway = MagicMock()
        gateway.student_reports.return_value = [
            {
                "fechaRealizacion": "2024-03-01T10:00:00Z",
                "tema": "fracciones equivalentes",
                "puntuacion": 60,
                "consejos": "Practica simplificación",
                "reporte": "x" * 500,
            },
            {
                "fechaRealizacion": "2024-02-01T10:00:00Z",
                "tema": "Geometría",
                "puntuacion": 90,
                "consejos": "Sigue así",
                "reporte": "Muy bien",
            },
        ]
        return gateway

    def test_prompt_includes_matching_reports(
        self, scripted_llm, exercises_reply, gateway
    ):
        client = scripted_llm(exercises=exercises_reply(3))
        orchestrator = AIOrchestrator(client, gateway=gateway, prior_reports_limit=5)
        request = ExerciseRequest(grade="3", topic="Fracciones", count=3, student_id="stu-1")

        orchestrator.generate_exercises(request)

        gateway.student_reports.assert_called_once_with("stu-1", limit=5)
        prompt = client.simple_chat.call_args.kwargs["user_message"]
        assert "PERSONALIZACIÓN BASADA EN RENDIMIENTO PREVIO DEL ESTUDIANTE:" in prompt
        assert "REPORTE 1 (01/03/2024)" in prompt
        assert "Practica simplificación" in prompt
        assert "Geometría" not in prompt
        assert "x" * 200 + "..." in prompt
        assert "x" * 201 not in prompt

    def test_no_student_id_skips_lookup(self, scripted_llm, exercises_reply, gateway):
        client = scripted_llm(exercises=exercises_reply(1))
        orchestrator = AIOrchestrator(client, gateway=gateway)

        orchestrator.generate_exercises(ExerciseRequest(grade="3", topic="Fracciones"))

        gateway.student_reports.assert_not_called()
        assert "PERSONALIZACIÓN" not in client.simple_chat.call_args.kwargs["user_message"]

    def test_backend_failure_degrades_to_generic_prompt(
        self, scripted_llm, exercises_reply, gateway
    ):
        gateway.student_reports.side_effect = TransportError("Error del servidor", 500)
        client = scripted_llm(exercises=exercises_reply(2))
        orchestrator = AIOrchestrator(client, gateway=gateway)
        request = ExerciseRequest(grade="3", topic="Fracciones", count=2, student_id="stu-1")

        exercises = orchestrator.generate_exercises(request)

        assert len(exercises) == 2
        assert "PERSONALIZACIÓN" not in client.simple_chat.call_args.kwargs["user_message"]

    def test_fetch_without_gateway(self, scripted_llm):
        assert AIOrchestrator(scripted_llm()).fetch_prior_performance("stu-1", "Fracciones") == []


class TestGenerateHint:
    """Hints never raise."""

    def test_returns_hint(self, scripted_llm, sample_exercise):
        client = scripted_llm(hint={"pista": "Busca un denominador común"})

        assert AIOrchestrator(client).generate_hint(sample_exercise) == "Busca un denominador común"
        kwargs = client.simple_chat.call_args.kwargs
        assert kwargs["temperature"] == 0.5
        assert kwargs["max_tokens"] == 500

    @pytest.mark.parametrize(
        "reply",
        [
            LLMStatusError("API Error: 429", status_code=429),
            LLMConnectionError("sin red"),
            "no es json",
            {"otra": "cosa"},
            {"pista": "   "},
        ],
        ids=["status", "connection", "parse", "missing_key", "blank"],
    )
    def test_falls_back(self, scripted_llm, sample_exercise, reply):
        client = scripted_llm(hint=reply)
        assert AIOrchestrator(client).generate_hint(sample_exercise) == HINT_FALLBACK


class TestValidateAnswer:
    """AI answer checking."""

    def test_correct_answer(self, scripted_llm, sample_exercise):
        client = scripted_llm(
            validation={
                "esCorrecta": True,
                "explicacion": "Correcto: 2/4 + 1/4 = 3/4",
                "sugerencias": ["Sigue practicando"],
            }
        )

        result = AIOrchestrator(client).validate_answer("ej-1", "0.75", sample_exercise)

        assert result.is_correct is True
        assert result.explanation == "Correcto: 2/4 + 1/4 = 3/4"
        assert result.suggestions == ["Sigue practicando"]
        kwargs = client.simple_chat.call_args.kwargs
        assert kwargs["temperature"] == 0.3
        assert "RESPUESTA DEL ESTUDIANTE: 0.75" in kwargs["user_message"]
        assert "RESPUESTA CORRECTA: 3/4" in kwargs["user_message"]

    def test_string_boolean_is_coerced(self, scripted_llm, sample_exercise):
        client = scripted_llm(validation='{"esCorrecta": "false", "explicacion": "No"}')

        result = AIOrchestrator(client).validate_answer("ej-1", "1/8", sample_exercise)

        assert result.is_correct is False

    def test_defaults_for_optional_fields(self, scripted_llm, sample_exercise):
        client = scripted_llm(validation={"esCorrecta": False, "sugerencias": "repasa"})

        result = AIOrchestrator(client).validate_answer("ej-1", "1", sample_exercise)

        assert result.explanation == "Sin explicación disponible"
        assert result.suggestions == []

    def test_missing_verdict_is_refused(self, scripted_llm, sample_exercise):
        """Correctness is never defaulted."""
        client = scripted_llm(validation={"explicacion": "Parece bien"})

        with pytest.raises(AnswerValidationFailure) as exc_info:
            AIOrchestrator(client).validate_answer("ej-1", "3/4", sample_exercise)

        cause = exc_info.value.cause
        assert isinstance(cause, ValidationRefusal)
        assert cause.missing == ["esCorrecta"]

    def test_parse_failure(self, scripted_llm, sample_exercise):
        client = scripted_llm(validation="La respuesta es correcta.")

        with pytest.raises(AnswerValidationFailure) as exc_info:
            AIOrchestrator(client).validate_answer("ej-1", "3/4", sample_exercise)

        assert isinstance(exc_info.value.cause, ParseError)

    def test_transport_failure(self, scripted_llm, sample_exercise):
        client = scripted_llm(validation=LLMStatusError("API Error: 500", status_code=500))

        with pytest.raises(AnswerValidationFailure) as exc_info:
            AIOrchestrator(client).validate_answer("ej-1", "3/4", sample_exercise)

        assert exc_info.value.status_code == 500

    def test_unknown_exercise_id(self, scripted_llm, sample_exercise):
        client = scripted_llm()
        with pytest.raises(UserInputError):
            AIOrchestrator(client).validate_answer("otro", "3/4", sample_exercise)
        client.simple_chat.assert_not_called()

    def test_blank_answer(self, scripted_llm, sample_exercise):
        client = scripted_llm()
        with pytest.raises(UserInputError):
            AIOrchestrator(client).validate_answer("ej-1", "  ", sample_exercise)
        client.simple_chat.assert_not_called()


class TestGenerateExplanation:
    def test_returns_explanation(self, scripted_llm, sample_exercise):
        client = scripted_llm(explanation={"explicacion": "Paso 1: denominador común"})

        text = AIOrchestrator(client).generate_explanation(sample_exercise, "1/8")

        assert text == "Paso 1: denominador común"
        assert "RESPUESTA DEL ESTUDIANTE: 1/8" in client.simple_chat.call_args.kwargs["user_message"]

    def test_failure_raises(self, scripted_llm, sample_exercise):
        client = scripted_llm(explanation="sin json")
        with pytest.raises(GenerationFailure):
            AIOrchestrator(client).generate_explanation(sample_exercise, "1/8")


class TestGenerateReport:
    """Report generation; statistics come from the session, not the model."""

    def test_returns_report(self, scripted_llm, sample_exercise, report_reply):
        client = scripted_llm(report=report_reply)

        report = AIOrchestrator(client).generate_report(session_data(sample_exercise))

        assert report.detailed_report == report_reply["reporteDetallado"]
        assert report.advice == report_reply["consejos"]
        kwargs = client.simple_chat.call_args.kwargs
        assert kwargs["temperature"] == 0.3
        assert kwargs["max_tokens"] == 3000
        assert "- Puntuación: 100%" in kwargs["user_message"]

    def test_missing_sections_use_fallbacks(self, scripted_llm, sample_exercise):
        client = scripted_llm(report={"reporteDetallado": ""})

        report = AIOrchestrator(client).generate_report(session_data(sample_exercise))

        assert report.detailed_report == REPORT_FALLBACK
        assert report.advice == ADVICE_FALLBACK

    def test_failure_raises(self, scripted_llm, sample_exercise):
        client = scripted_llm(report=LLMConnectionError("sin red"))

        with pytest.raises(ReportGenerationFailure):
            AIOrchestrator(client).generate_report(session_data(sample_exercise))


class TestPromptBuilders:
    """Prompt text details."""

    def test_free_practice_report_prompt(self, sample_exercise):
        data = session_data(sample_exercise)
        stats = SessionStats.compute(data.exercises, data.attempts)

        prompt = build_report_prompt(data, stats)

        assert "DATOS DE LA PRÁCTICA:" in prompt
        assert "EJERCICIOS REALIZADOS:" in prompt
        assert "- Tipo: Práctica libre con IA" in prompt
        assert '1. Respuesta: "1/8" - Incorrecta - Tiempo: 4200ms - Pistas: 1' in prompt
        assert "2. Respuesta: \"3/4\" - Correcta - Tiempo: 4200ms - Pistas: 2" in prompt
        assert "EVALUACIÓN DOCENTE" not in prompt

    def test_assigned_test_report_prompt(self, sample_exercise):
        data = session_data(sample_exercise, assigned=True)
        stats = SessionStats.compute(data.exercises, data.attempts)

        prompt = build_report_prompt(data, stats)

        assert "DATOS DE LA EVALUACIÓN:" in prompt
        assert "PREGUNTAS DEL TEST:" in prompt
        assert "Test asignado por profesor" in prompt
        assert "EVALUACIÓN DOCENTE" in prompt
        assert "COMUNICACIÓN CON DOCENTE" in prompt
        assert "Pistas:" not in prompt

    def test_exercises_prompt_without_history(self):
        request = ExerciseRequest(grade="5", topic="Decimales", difficulty="media", count=4)

        prompt = build_exercises_prompt(request)

        assert prompt.startswith("Genera 4 ejercicios de matemáticas para 5 grado")
        assert '"dificultad": "media"' in prompt
        assert "PERSONALIZACIÓN" not in prompt

    def test_exercises_prompt_unknown_date(self):
        request = ExerciseRequest(grade="5", topic="Decimales")
        prior = [
            PriorPerformanceSummary(
                date=None, topic="Decimales", score=72.5, advice="a", report_excerpt="b"
            )
        ]

        prompt = build_exercises_prompt(request, prior)

        assert "REPORTE 1 (fecha desconocida)" in prompt
        assert "- Puntuación: 72.5%" in prompt
        assert "INSTRUCCIONES DE PERSONALIZACIÓN:" in prompt

    @pytest.mark.parametrize(
        "a,b,expected",
        [
            ("Fracciones", "fracciones equivalentes", True),
            ("SUMA DE FRACCIONES", "fracciones", True),
            ("Geometría", "Fracciones", False),
        ],
    )
    def test_topics_match(self, a, b, expected):
        assert topics_match(a, b) is expected
