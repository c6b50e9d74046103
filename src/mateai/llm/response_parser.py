"""JSON extraction from freeform model output.

Models wrap their JSON in prose or markdown fences often enough that a
plain json.loads is not sufficient. Extraction runs an ordered list of
strategies and stops at the first one that yields a JSON object:

1. DirectJson: the whole (sanitized) content is JSON
2. FencedJsonBlock: first ```json ... ``` block
3. FencedCodeBlock: first ``` ... ``` block
4. FirstBraceSpan: from the first "{" to the last "}"

If every strategy fails, ParseError carries one reason per strategy.
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

import structlog

from mateai.core.errors import ParseError

logger = structlog.get_logger(__name__)

# Some models emit <think>...</think> blocks that can interfere with JSON parsing
SANITIZE_PATTERNS = [
    re.compile(r"<think>.*?</think>", re.DOTALL | re.IGNORECASE),
    re.compile(r"<analysis>.*?</analysis>", re.DOTALL | re.IGNORECASE),
    re.compile(r"<reasoning>.*?</reasoning>", re.DOTALL | re.IGNORECASE),
]

FENCED_JSON_RE = re.compile(r"```json\s*([\s\S]*?)\s*```", re.IGNORECASE)
FENCED_CODE_RE = re.compile(r"```\s*([\s\S]*?)\s*```")


def sanitize_for_json(text: str) -> str:
    """Remove thinking/reasoning tags before JSON parsing."""
    result = text
    for pattern in SANITIZE_PATTERNS:
        result = pattern.sub("", result)
    return result.strip()


@dataclass
class ParseAttempt:
    """Outcome of a single strategy."""

    value: dict[str, Any] | None
    reason: str = ""


def _loads_object(candidate: str) -> ParseAttempt:
    try:
        value = json.loads(candidate)
    except json.JSONDecodeError as e:
        return ParseAttempt(None, f"json inválido: {e.msg} (pos {e.pos})")
    if not isinstance(value, dict):
        return ParseAttempt(None, f"se esperaba un objeto, se obtuvo {type(value).__name__}")
    return ParseAttempt(value)


class ResponseParser:
    """One extraction strategy."""

    name = "base"

    def parse(self, content: str) -> ParseAttempt:
        raise NotImplementedError


class DirectJson(ResponseParser):
    name = "direct_json"

    def parse(self, content: str) -> ParseAttempt:
        return _loads_object(content)


class FencedJsonBlock(ResponseParser):
    name = "fenced_json_block"

    def parse(self, content: str) -> ParseAttempt:
        match = FENCED_JSON_RE.search(content)
        if not match:
            return ParseAttempt(None, "sin bloque ```json")
        return _loads_object(match.group(1))


class FencedCodeBlock(ResponseParser):
    name = "fenced_code_block"

    def parse(self, content: str) -> ParseAttempt:
        match = FENCED_CODE_RE.search(content)
        if not match:
            return ParseAttempt(None, "sin bloque ```")
        return _loads_object(match.group(1))


class FirstBraceSpan(ResponseParser):
    name = "first_brace_span"

    def parse(self, content: str) -> ParseAttempt:
        start = content.find("{")
        end = content.rfind("}") + 1
        if start < 0 or end <= start:
            return ParseAttempt(None, "sin llaves")
        return _loads_object(content[start:end])


DEFAULT_STRATEGIES: tuple[ResponseParser, ...] = (
    DirectJson(),
    FencedJsonBlock(),
    FencedCodeBlock(),
    FirstBraceSpan(),
)


def extract_json(
    content: str,
    strategies: tuple[ResponseParser, ...] = DEFAULT_STRATEGIES,
) -> dict[str, Any]:
    """Extract the JSON object embedded in model output.

    Args:
        content: Raw model output
        strategies: Strategies to try, in order

    Returns:
        Parsed JSON object

    Raises:
        ParseError: If no strategy yields a JSON object
    """
    sanitized = sanitize_for_json(content or "")
    reasons: list[str] = []

    for strategy in strategies:
        attempt = strategy.parse(sanitized)
        if attempt.value is not None:
            if reasons:
                logger.debug("json_extracted_with_fallback", strategy=strategy.name)
            return attempt.value
        reasons.append(f"{strategy.name}: {attempt.reason}")

    logger.warning("json_extraction_failed", reasons=reasons, content=sanitized[:200])
    raise ParseError("No se pudo extraer JSON de la respuesta de la IA", reasons=reasons)
