"""Authenticated session context.

Holds the bearer token and the logged-in user's profile. The context is
injected into BackendGateway; persistence to disk happens only through
explicit load/save/clear calls.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

SESSION_SCHEMA = "session_v1"
SESSION_FILENAME = "session_v1.json"


@dataclass
class SessionContext:
    """Token and user profile for the current login."""

    state_dir: Path = field(default_factory=lambda: Path("data/state"))
    token: str | None = None
    user: dict[str, Any] | None = None

    @property
    def path(self) -> Path:
        return self.state_dir / SESSION_FILENAME

    @property
    def is_authenticated(self) -> bool:
        return bool(self.token)

    @property
    def user_id(self) -> str | None:
        if not self.user:
            return None
        return self.user.get("id") or self.user.get("_id")

    @property
    def grade(self) -> str | None:
        if not self.user:
            return None
        return self.user.get("grado")

    def set_login(self, token: str, user: dict[str, Any]) -> None:
        self.token = token
        self.user = user

    def load(self) -> SessionContext:
        """Load token and user from disk; missing or invalid file leaves it empty."""
        if not self.path.exists():
            return self

        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("session_context_unreadable", path=str(self.path), error=str(e))
            return self

        if data.get("$schema") != SESSION_SCHEMA:
            logger.warning("session_context_schema_mismatch", found=data.get("$schema"))
            return self

        self.token = data.get("token")
        self.user = data.get("usuario")
        return self

    def save(self) -> Path:
        """Persist token and user to disk."""
        self.state_dir.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(
                {"$schema": SESSION_SCHEMA, "token": self.token, "usuario": self.user},
                f,
                indent=2,
                ensure_ascii=False,
            )
        logger.info("session_context_saved", path=str(self.path))
        return self.path

    def clear(self) -> None:
        """Forget the login in memory and on disk."""
        self.token = None
        self.user = None
        if self.path.exists():
            self.path.unlink()
        logger.info("session_context_cleared")
