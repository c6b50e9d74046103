"""Prompt Registry - Load prompts from packaged Markdown files.

Usage:
    from mateai.prompts.registry import get_prompt

    prompt = get_prompt("system/exercises")
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

PROMPTS_DIR = Path(__file__).parent / "templates"


@lru_cache(maxsize=32)
def get_prompt(key: str) -> str:
    """Load a prompt by key, e.g. "system/hint".

    Raises:
        FileNotFoundError: If prompt file doesn't exist
    """
    file_path = PROMPTS_DIR / f"{key}.md"
    if not file_path.exists():
        raise FileNotFoundError(f"Prompt not found: {key} (looked at {file_path})")

    return file_path.read_text(encoding="utf-8").strip()
