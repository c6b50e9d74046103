"""Core practice logic.

Modules:
- models: exercises, attempts, reports and session statistics
- errors: error taxonomy
- session_context: injected login state
- backend_gateway: REST backend client
- exercise_normalizer: partial AI items to complete exercises
- ai_orchestrator: prompts, provider calls and JSON extraction
- session: practice session state machine
"""

__all__ = [
    "models",
    "errors",
    "session_context",
    "backend_gateway",
    "exercise_normalizer",
    "ai_orchestrator",
    "session",
]
