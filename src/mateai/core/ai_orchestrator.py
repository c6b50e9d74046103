"""AI orchestration for practice sessions.

Responsibilities:
- Build Spanish prompts for exercises, hints, explanations, validation and reports
- Call the chat-completion provider through LLMClient
- Extract JSON from the freeform answer (see mateai.llm.response_parser)
- Map provider errors onto the practice error taxonomy

Failure policy:
- generate_hint never raises; it returns HINT_FALLBACK
- every other operation raises a GenerationFailure subclass
- nothing is retried
"""

from __future__ import annotations

import uuid
from typing import Any

import structlog

from mateai.core.backend_gateway import BackendGateway
from mateai.core.errors import (
    AnswerValidationFailure,
    GenerationFailure,
    MateAIError,
    ParseError,
    ReportGenerationFailure,
    TransportError,
    UserInputError,
    ValidationRefusal,
)
from mateai.core.exercise_normalizer import extract_items, normalize_exercise
from mateai.core.models import (
    Exercise,
    ExerciseRequest,
    PriorPerformanceSummary,
    Report,
    SessionData,
    SessionStats,
    ValidationResult,
)
from mateai.llm.client import LLMClient, LLMError, LLMStatusError
from mateai.llm.response_parser import extract_json
from mateai.prompts.registry import get_prompt

logger = structlog.get_logger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================

HINT_FALLBACK = "Pista no disponible"
REPORT_FALLBACK = "Reporte no disponible"
ADVICE_FALLBACK = "Consejos no disponibles"
EXPLANATION_FALLBACK = "Explicación no disponible"

# (temperature, max_tokens) per operation
SAMPLING: dict[str, tuple[float, int]] = {
    "exercises": (0.7, 2000),
    "hint": (0.5, 500),
    "explanation": (0.4, 1500),
    "validation": (0.3, 1000),
    "report": (0.3, 3000),
}

REPORT_EXCERPT_CHARS = 200

# =============================================================================
# PROMPTS
# =============================================================================

USER_PROMPT_EXERCISES = """Genera {count} ejercicios de matemáticas para {grade} grado sobre el tema "{topic}" con dificultad {difficulty}."""

PERSONALIZATION_INSTRUCTIONS = """INSTRUCCIONES DE PERSONALIZACIÓN:
- Adapta la dificultad considerando el rendimiento previo
- Incluye ejercicios que refuercen áreas identificadas como débiles
- Prioriza ejercicios que ayuden con los consejos específicos dados
- Considera el progreso del estudiante en sesiones anteriores"""

EXERCISES_FORMAT = """IMPORTANTE:
- NO uses caracteres LaTeX como \\(, \\), \\times, \\div en las explicaciones
- Usa texto simple: "6 dividido entre 2 = 3" en lugar de "6 \\div 2 = 3"
- Evita caracteres especiales que puedan romper el JSON

Responde SOLO con un JSON válido en este formato exacto:
{{
  "ejercicios": [
    {{
      "id": "ej_1",
      "enunciado": "Enunciado del ejercicio",
      "opciones": ["opción A", "opción B", "opción C", "opción D"],
      "respuestaCorrecta": "opción correcta",
      "explicacion": "Explicación detallada de la solución usando solo texto simple",
      "dificultad": "{difficulty}",
      "tema": "{topic}",
      "grado": "{grade}"
    }}
  ]
}}"""

USER_PROMPT_HINT = """Genera una pista útil para el siguiente ejercicio de matemáticas:

EJERCICIO: {statement}
DIFICULTAD: {difficulty}
TEMA: {topic}

La pista debe ser:
- Clara y comprensible para el nivel del estudiante
- Que guíe hacia la solución sin dar la respuesta directamente
- Que ayude a entender el concepto matemático

Responde SOLO con un JSON válido en este formato exacto:
{{
  "pista": "Pista útil para el estudiante"
}}"""

USER_PROMPT_EXPLANATION = """Genera una explicación detallada para el siguiente ejercicio de matemáticas:

EJERCICIO: {statement}
RESPUESTA CORRECTA: {correct_answer}
RESPUESTA DEL ESTUDIANTE: {answer}
DIFICULTAD: {difficulty}
TEMA: {topic}

La explicación debe:
- Mostrar paso a paso cómo resolver el ejercicio
- Explicar los conceptos matemáticos involucrados
- Ser clara y comprensible para el nivel del estudiante
- Incluir por qué la respuesta es correcta o incorrecta

Responde SOLO con un JSON válido en este formato exacto:
{{
  "explicacion": "Explicación detallada paso a paso"
}}"""

USER_PROMPT_VALIDATION = """Evalúa la siguiente respuesta de un estudiante:

EJERCICIO: {statement}
RESPUESTA CORRECTA: {correct_answer}
RESPUESTA DEL ESTUDIANTE: {answer}

INSTRUCCIONES IMPORTANTES:
- Compara EXACTAMENTE la respuesta del estudiante con la respuesta correcta
- Si la respuesta del estudiante es EXACTAMENTE igual a la respuesta correcta, marca "esCorrecta": true
- Si la respuesta del estudiante es numéricamente equivalente a la respuesta correcta (ej: "7" = 7, "12" = 12), marca "esCorrecta": true
- Si la respuesta del estudiante es conceptualmente correcta pero expresada de forma diferente, marca "esCorrecta": true
- Solo marca "esCorrecta": false si la respuesta es claramente incorrecta
- NO interpretes el ejercicio, solo compara las respuestas

Responde SOLO con un JSON válido en este formato exacto:
{{
  "esCorrecta": true/false,
  "explicacion": "Explicación detallada de por qué la respuesta es correcta o incorrecta",
  "sugerencias": ["Sugerencia 1", "Sugerencia 2"]
}}"""

USER_PROMPT_REPORT = """Analiza el rendimiento de un estudiante de {grade}° grado en matemáticas y genera un reporte detallado.

DATOS DE LA {kind_upper}:
- Tema: {topic}
- Total de {items}: {total}
- Respuestas correctas: {correct}
- Respuestas incorrectas: {incorrect}
- Puntuación: {score}%
- Tiempo total: {total_time} segundos
- Duración de sesión: {duration} minutos
- Tipo: {type_label}

{items_header}
{exercise_lines}

RESPUESTAS DEL ESTUDIANTE:
{attempt_lines}

Genera un reporte estructurado y comparativo que sirva como base para futuros análisis:

1. REPORTE DETALLADO (MÁXIMO 1800 caracteres):
   - RENDIMIENTO GENERAL: Puntuación, tiempo promedio por {item}, efectividad general
   - ANÁLISIS POR {item_upper}: Dificultad vs rendimiento, patrones de error específicos
   - COMPORTAMIENTO: {behavior}
   - FORTALEZAS IDENTIFICADAS: Áreas donde el estudiante demuestra dominio
   - ÁREAS DE MEJORA: Conceptos específicos que requieren refuerzo
   - NIVEL ACTUAL: Evaluación del grado de comprensión y preparación
   - PROGRESO OBSERVADO: Comparación con expectativas del grado{teacher_eval}

2. CONSEJOS PERSONALIZADOS (MÁXIMO 1200 caracteres):
   - PRÓXIMOS OBJETIVOS: Metas específicas para la siguiente {next_unit}
   - ESTRATEGIAS DE ESTUDIO: Métodos recomendados basados en el rendimiento
   - {practice_label}: Tipo y dificultad recomendada para práctica
   - PRÓXIMOS EJERCICIOS DE PRÁCTICA: Recomendaciones específicas para la IA sobre qué tipos de ejercicios generar, temas a reforzar y niveles de dificultad adaptados al progreso del estudiante
   - APOYO FAMILIAR: Cómo pueden ayudar los padres/educadores
   - SEGUIMIENTO: Qué observar en futuras {next_units} para medir progreso{teacher_talk}

IMPORTANTE: Estructura el reporte para facilitar comparaciones futuras. Incluye métricas específicas y observaciones objetivas que permitan evaluar progreso en sesiones posteriores.{teacher_focus}

Responde SOLO con un JSON válido en este formato exacto:
{{
  "reporteDetallado": "Análisis completo del rendimiento del estudiante...",
  "consejos": "Recomendaciones específicas y personalizadas para mejorar el aprendizaje..."
}}"""


def topics_match(a: str, b: str) -> bool:
    """Case-insensitive substring match in either direction."""
    a, b = a.lower(), b.lower()
    return a in b or b in a


def build_exercises_prompt(
    request: ExerciseRequest, prior: list[PriorPerformanceSummary] | None = None
) -> str:
    """Build the user prompt for exercise generation."""
    parts = [
        USER_PROMPT_EXERCISES.format(
            count=request.count,
            grade=request.grade,
            topic=request.topic,
            difficulty=request.difficulty,
        )
    ]

    if prior:
        block = ["PERSONALIZACIÓN BASADA EN RENDIMIENTO PREVIO DEL ESTUDIANTE:"]
        for i, summary in enumerate(prior, 1):
            date = summary.date.strftime("%d/%m/%Y") if summary.date else "fecha desconocida"
            block.append(
                f"\nREPORTE {i} ({date}):\n"
                f"- Tema: {summary.topic}\n"
                f"- Puntuación: {summary.score:g}%\n"
                f"- Consejos previos: {summary.advice}\n"
                f"- Análisis: {summary.report_excerpt[:REPORT_EXCERPT_CHARS]}..."
            )
        parts.append("\n".join(block))
        parts.append(PERSONALIZATION_INSTRUCTIONS)

    parts.append(
        EXERCISES_FORMAT.format(
            difficulty=request.difficulty, topic=request.topic, grade=request.grade
        )
    )
    return "\n\n".join(parts)


def build_report_prompt(data: SessionData, stats: SessionStats) -> str:
    """Build the user prompt for the session report.

    Assigned tests use evaluation vocabulary and add teacher-facing
    sections; free practice reports hint usage instead.
    """
    assigned = data.is_assigned_test
    item = "pregunta" if assigned else "ejercicio"

    exercise_lines = "\n".join(
        f"{i}. {ex.statement} (Dificultad: {ex.difficulty})"
        for i, ex in enumerate(data.exercises, 1)
    )

    attempt_lines = []
    for i, attempt in enumerate(data.attempts, 1):
        outcome = "Correcta" if attempt.is_correct else "Incorrecta"
        line = (
            f'{i}. Respuesta: "{attempt.answer_text}" - {outcome} - '
            f"Tiempo: {attempt.resolution_time_ms}ms"
        )
        if not assigned:
            line += f" - Pistas: {attempt.hints_used}"
        attempt_lines.append(line)

    return USER_PROMPT_REPORT.format(
        grade=data.grade,
        kind_upper="EVALUACIÓN" if assigned else "PRÁCTICA",
        topic=data.topic,
        items=f"{item}s",
        total=stats.total,
        correct=stats.correct,
        incorrect=stats.incorrect,
        score=stats.score,
        total_time=data.total_time_seconds,
        duration=data.session_duration_minutes,
        type_label="Test asignado por profesor" if assigned else "Práctica libre con IA",
        items_header="PREGUNTAS DEL TEST:" if assigned else "EJERCICIOS REALIZADOS:",
        exercise_lines=exercise_lines,
        attempt_lines="\n".join(attempt_lines),
        item=item,
        item_upper=item.upper(),
        behavior=(
            "Tiempo de resolución, consistencia en respuestas"
            if assigned
            else "Uso de pistas, tiempo de resolución, consistencia en respuestas"
        ),
        teacher_eval=(
            "\n   - EVALUACIÓN DOCENTE: Recomendaciones específicas para el profesor "
            "sobre el progreso del estudiante"
            if assigned
            else ""
        ),
        next_unit="evaluación" if assigned else "sesión",
        next_units="evaluaciones" if assigned else "sesiones",
        practice_label="ACTIVIDADES DE REFUERZO" if assigned else "EJERCICIOS SUGERIDOS",
        teacher_talk=(
            "\n   - COMUNICACIÓN CON DOCENTE: Aspectos importantes para discutir con el profesor"
            if assigned
            else ""
        ),
        teacher_focus=(
            " Enfócate en el rendimiento académico formal y las recomendaciones pedagógicas."
            if assigned
            else ""
        ),
    )


# =============================================================================
# ORCHESTRATOR
# =============================================================================


class AIOrchestrator:
    """Runs the AI operations of a practice session."""

    def __init__(
        self,
        client: LLMClient,
        gateway: BackendGateway | None = None,
        prior_reports_limit: int = 5,
    ):
        self.client = client
        self.gateway = gateway
        self.prior_reports_limit = prior_reports_limit

    def _ask(self, operation: str, user_prompt: str) -> dict[str, Any]:
        """Send one system+user exchange and extract its JSON object.

        Raises:
            TransportError: provider unreachable or non-2xx
            ParseError: no JSON object in the answer
        """
        temperature, max_tokens = SAMPLING[operation]
        try:
            content = self.client.simple_chat(
                system_prompt=get_prompt(f"system/{operation}"),
                user_message=user_prompt,
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except LLMStatusError as e:
            raise TransportError(str(e), status_code=e.status_code) from e
        except LLMError as e:
            raise TransportError(str(e)) from e

        logger.debug("ai_raw_content", operation=operation, content=content[:500])
        return extract_json(content)

    def fetch_prior_performance(
        self, student_id: str, topic: str | None = None
    ) -> list[PriorPerformanceSummary]:
        """Fetch recent reports for a student, keeping those related to topic.

        Lookup failures are logged and yield an empty history.
        """
        if self.gateway is None:
            return []

        try:
            reports = self.gateway.student_reports(student_id, limit=self.prior_reports_limit)
        except TransportError as e:
            logger.warning("prior_reports_unavailable", student_id=student_id, error=str(e))
            return []

        if topic:
            reports = [r for r in reports if topics_match(str(r.get("tema", "")), topic)]

        summaries = [PriorPerformanceSummary.from_backend(r) for r in reports]
        logger.info("prior_reports_loaded", student_id=student_id, count=len(summaries))
        return summaries

    def generate_exercises(self, request: ExerciseRequest) -> list[Exercise]:
        """Generate exercises for a practice request.

        Raises:
            UserInputError: blank topic or non-positive count
            GenerationFailure: transport or parse failure
        """
        if not request.topic or not request.topic.strip():
            raise UserInputError("El tema es obligatorio")
        if request.count < 1:
            raise UserInputError("La cantidad de ejercicios debe ser positiva")

        prior: list[PriorPerformanceSummary] = []
        if request.student_id:
            prior = self.fetch_prior_performance(request.student_id, request.topic)

        prompt = build_exercises_prompt(request, prior)
        try:
            data = self._ask("exercises", prompt)
        except (TransportError, ParseError) as e:
            logger.error("exercise_generation_failed", topic=request.topic, error=str(e))
            raise GenerationFailure(str(e), cause=e) from e

        prefix = uuid.uuid4().hex[:8]
        exercises = []
        for i, item in enumerate(extract_items(data), 1):
            normalized = normalize_exercise(
                item if isinstance(item, dict) else {},
                f"ej-{prefix}-{i}",
                difficulty=request.difficulty,
                topic=request.topic,
                grade=request.grade,
            )
            exercises.append(normalized.exercise)

        logger.info(
            "exercises_generated",
            topic=request.topic,
            requested=request.count,
            received=len(exercises),
            personalized=bool(prior),
        )
        return exercises

    def generate_hint(self, exercise: Exercise) -> str:
        """Generate a hint; returns HINT_FALLBACK on any failure."""
        prompt = USER_PROMPT_HINT.format(
            statement=exercise.statement,
            difficulty=exercise.difficulty,
            topic=exercise.topic,
        )
        try:
            data = self._ask("hint", prompt)
        except MateAIError as e:
            logger.warning("hint_fallback_used", exercise_id=exercise.id, error=str(e))
            return HINT_FALLBACK

        hint = data.get("pista")
        if not isinstance(hint, str) or not hint.strip():
            logger.warning("hint_fallback_used", exercise_id=exercise.id, error="sin pista")
            return HINT_FALLBACK
        return hint

    def generate_explanation(self, exercise: Exercise, answer_text: str) -> str:
        """Generate a step-by-step explanation for an exercise.

        Raises:
            GenerationFailure: transport or parse failure
        """
        prompt = USER_PROMPT_EXPLANATION.format(
            statement=exercise.statement,
            correct_answer=exercise.correct_answer,
            answer=answer_text,
            difficulty=exercise.difficulty,
            topic=exercise.topic,
        )
        try:
            data = self._ask("explanation", prompt)
        except (TransportError, ParseError) as e:
            logger.error("explanation_failed", exercise_id=exercise.id, error=str(e))
            raise GenerationFailure(str(e), cause=e) from e

        explanation = data.get("explicacion")
        if not isinstance(explanation, str) or not explanation.strip():
            return EXPLANATION_FALLBACK
        return explanation

    def validate_answer(
        self, exercise_id: str, answer_text: str, exercise: Exercise
    ) -> ValidationResult:
        """Ask the model whether answer_text solves the exercise.

        Correctness is never defaulted: a missing or non-boolean
        "esCorrecta" is a failure like any transport or parse error.

        Raises:
            UserInputError: blank answer or mismatched exercise id
            AnswerValidationFailure: correctness could not be determined
        """
        if exercise_id != exercise.id:
            raise UserInputError(f"Ejercicio desconocido: {exercise_id}")
        if not answer_text or not answer_text.strip():
            raise UserInputError("La respuesta no puede estar vacía")

        prompt = USER_PROMPT_VALIDATION.format(
            statement=exercise.statement,
            correct_answer=exercise.correct_answer,
            answer=answer_text,
        )
        try:
            data = self._ask("validation", prompt)
            is_correct = data.get("esCorrecta")
            if isinstance(is_correct, str) and is_correct.strip().lower() in ("true", "false"):
                is_correct = is_correct.strip().lower() == "true"
            if not isinstance(is_correct, bool):
                raise ValidationRefusal(
                    "La IA no indicó si la respuesta es correcta", missing=["esCorrecta"]
                )
        except (TransportError, ParseError, ValidationRefusal) as e:
            logger.error("answer_validation_failed", exercise_id=exercise_id, error=str(e))
            raise AnswerValidationFailure(str(e), cause=e) from e

        suggestions = data.get("sugerencias")
        if not isinstance(suggestions, list):
            suggestions = []

        result = ValidationResult(
            is_correct=is_correct,
            explanation=str(data.get("explicacion") or "Sin explicación disponible"),
            suggestions=[str(s) for s in suggestions],
        )
        logger.info("answer_validated", exercise_id=exercise_id, is_correct=result.is_correct)
        return result

    def generate_report(self, data: SessionData) -> Report:
        """Generate the end-of-session report.

        Statistics are computed locally and passed to the model; the model
        only writes the free-text sections.

        Raises:
            ReportGenerationFailure: transport or parse failure
        """
        stats = SessionStats.compute(data.exercises, data.attempts)
        prompt = build_report_prompt(data, stats)
        try:
            result = self._ask("report", prompt)
        except (TransportError, ParseError) as e:
            logger.error("report_generation_failed", topic=data.topic, error=str(e))
            raise ReportGenerationFailure(str(e), cause=e) from e

        report = Report(
            detailed_report=str(result.get("reporteDetallado") or REPORT_FALLBACK),
            advice=str(result.get("consejos") or ADVICE_FALLBACK),
        )
        logger.info(
            "report_generated",
            topic=data.topic,
            score=stats.score,
            assigned_test=data.is_assigned_test,
        )
        return report
