"""Pytest configuration for phased testing.

Tests are organized by phase:
- f1: parsing, models, configuration and LLM client
- f2: AI orchestration
- f3: practice session controller
- f4: backend gateway, Web API and CLI

Future phase tests are automatically skipped.
"""

import json
from unittest.mock import MagicMock

import pytest

from mateai.core.models import Exercise

# Current implementation phase
CURRENT_PHASE = 4


def pytest_collection_modifyitems(config, items):
    """Skip tests from phases that haven't been implemented yet."""
    for item in items:
        # Extract phase from path (tests/f2/... -> 2)
        parts = item.fspath.strpath.split("/")
        for part in parts:
            if part.startswith("f") and part[1:].isdigit():
                test_phase = int(part[1:])
                if test_phase > CURRENT_PHASE:
                    item.add_marker(
                        pytest.mark.skip(
                            reason=f"Phase F{test_phase} not yet implemented (current: F{CURRENT_PHASE})"
                        )
                    )
                break


# =============================================================================
# SCRIPTED LLM
# =============================================================================

# First words of each user prompt, used to route scripted replies
OPERATION_PREFIXES = {
    "Genera una pista": "hint",
    "Genera una explicación": "explanation",
    "Evalúa la siguiente": "validation",
    "Analiza el rendimiento": "report",
    "Genera ": "exercises",
}


def _operation_of(user_message: str) -> str:
    for prefix, operation in OPERATION_PREFIXES.items():
        if user_message.startswith(prefix):
            return operation
    raise AssertionError(f"Unexpected prompt: {user_message[:60]}")


def _scripted_llm(**replies) -> MagicMock:
    """Mock LLM client answering simple_chat by operation.

    Each reply is a string, a dict (sent as JSON), an exception to raise,
    or a list of those consumed in order; the last one repeats.
    `client.calls_for(operation)` lists the calls made for one operation.
    """
    queues = {op: list(r) if isinstance(r, list) else [r] for op, r in replies.items()}

    def reply(system_prompt, user_message, temperature=None, max_tokens=None):
        operation = _operation_of(user_message)
        queue = queues.get(operation)
        if not queue:
            raise AssertionError(f"No scripted reply for {operation}")
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        if isinstance(item, dict):
            return json.dumps(item, ensure_ascii=False)
        return item

    client = MagicMock()
    client.simple_chat.side_effect = reply
    client.calls_for = lambda operation: [
        c
        for c in client.simple_chat.call_args_list
        if _operation_of(c.kwargs["user_message"]) == operation
    ]
    return client


def _exercises_reply(count: int, topic: str = "Fracciones") -> dict:
    return {
        "ejercicios": [
            {
                "id": f"ej_{i}",
                "enunciado": f"¿Cuánto es {i}/2 + {i}/2?",
                "opciones": [str(i), str(i + 1), str(i + 2), str(i + 3)],
                "respuestaCorrecta": str(i),
                "explicacion": f"{i}/2 + {i}/2 = {i}",
                "dificultad": "basica",
                "tema": topic,
                "grado": "3",
            }
            for i in range(1, count + 1)
        ]
    }


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def scripted_llm():
    """Factory for mock LLM clients with per-operation replies."""
    return _scripted_llm


@pytest.fixture
def exercises_reply():
    """Factory for a well-formed exercises response."""
    return _exercises_reply


@pytest.fixture
def report_reply() -> dict:
    return {
        "reporteDetallado": "RENDIMIENTO GENERAL: buen dominio de fracciones.",
        "consejos": "PRÓXIMOS OBJETIVOS: fracciones mixtas.",
    }


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sample_exercise() -> Exercise:
    return Exercise(
        id="ej-1",
        statement="¿Cuánto es 1/2 + 1/4?",
        options=("3/4", "2/6", "1/8", "1"),
        correct_answer="3/4",
        explanation="Con denominador común 4: 2/4 + 1/4 = 3/4",
        difficulty="basica",
        topic="Fracciones",
        grade="3",
    )
