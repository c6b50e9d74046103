"""Practice session management for the Web API.

Sessions live in memory, keyed by a short id. Each session gets its own
backend gateway carrying the caller's bearer token, so prior reports and
report persistence run on behalf of that student; the LLM client is
shared and the provider key never leaves the server.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable

import structlog

from mateai.config import AppConfig, load_app_config
from mateai.core.ai_orchestrator import AIOrchestrator
from mateai.core.backend_gateway import BackendGateway
from mateai.core.errors import UserInputError
from mateai.core.session import PracticeSession
from mateai.core.session_context import SessionContext
from mateai.llm.client import LLMClient, LLMConfig

logger = structlog.get_logger(__name__)

GatewayFactory = Callable[[str], BackendGateway]


@dataclass
class ManagedSession:
    """A practice session registered with the manager."""

    session_id: str
    session: PracticeSession
    created_at: str = ""

    def __post_init__(self):
        if not self.created_at:
            self.created_at = datetime.now(timezone.utc).isoformat()


class PracticeSessionManager:
    """Manages active practice sessions."""

    def __init__(
        self,
        llm_client: LLMClient | None = None,
        gateway_factory: GatewayFactory | None = None,
        config: AppConfig | None = None,
    ):
        self._sessions: dict[str, ManagedSession] = {}
        self._lock = asyncio.Lock()
        self._llm_client = llm_client
        self._gateway_factory = gateway_factory
        self._config = config

    @property
    def config(self) -> AppConfig:
        if self._config is None:
            self._config = load_app_config()
        return self._config

    def _get_llm_client(self) -> LLMClient:
        """Get or create LLM client."""
        if self._llm_client is None:
            self._llm_client = LLMClient(LLMConfig.from_yaml())
        return self._llm_client

    def gateway_for(self, token: str | None) -> BackendGateway | None:
        """Build a gateway acting for the bearer token, with its profile loaded.

        Raises:
            TransportError: the profile could not be loaded
        """
        if not token:
            return None

        if self._gateway_factory is not None:
            gateway = self._gateway_factory(token)
        else:
            gateway = BackendGateway(
                base_url=self.config.backend.base_url,
                context=SessionContext(state_dir=self.config.state_dir, token=token),
                timeout=self.config.backend.timeout,
            )

        if gateway.context.user is None:
            gateway.context.user = gateway.get_me()
        return gateway

    def orchestrator_for(self, gateway: BackendGateway | None) -> AIOrchestrator:
        return AIOrchestrator(
            self._get_llm_client(),
            gateway=gateway,
            prior_reports_limit=self.config.practice.prior_reports_limit,
        )

    async def create_session(
        self,
        token: str | None = None,
        assignment_id: str | None = None,
        **settings: Any,
    ) -> ManagedSession:
        """Create a practice session, or an assigned-test session.

        Free-practice settings (topic, difficulty, count, grade) are applied
        before the session is registered.

        Raises:
            TransportError: backend unavailable or test not found
            UserInputError: assigned test without a login, without questions,
                or invalid settings
        """
        gateway = self.gateway_for(token)
        orchestrator = self.orchestrator_for(gateway)
        practice = self.config.practice

        if assignment_id:
            if gateway is None:
                raise UserInputError("Se requiere iniciar sesión para resolver un test")
            session = PracticeSession.from_assignment(
                orchestrator,
                gateway,
                assignment_id,
                default_grade=practice.default_grade,
            )
        else:
            session = PracticeSession(
                orchestrator,
                gateway,
                max_attempts=practice.max_attempts,
                hints_per_exercise=practice.hints_per_exercise,
                default_grade=practice.default_grade,
                default_count=practice.default_count,
                default_difficulty=practice.default_difficulty,
            )
            try:
                session.configure(**settings)
            except UserInputError:
                if gateway is not None:
                    gateway.close()
                raise

        managed = ManagedSession(session_id=str(uuid.uuid4())[:8], session=session)
        async with self._lock:
            self._sessions[managed.session_id] = managed

        logger.info(
            "practice_session_created",
            session_id=managed.session_id,
            assignment_id=assignment_id,
            authenticated=gateway is not None,
        )
        return managed

    async def get_session(self, session_id: str) -> ManagedSession | None:
        """Get a session by ID."""
        async with self._lock:
            return self._sessions.get(session_id)

    async def end_session(self, session_id: str) -> bool:
        """Discard a session.

        Returns:
            True if session was ended, False if not found
        """
        async with self._lock:
            managed = self._sessions.pop(session_id, None)

        if managed is None:
            return False

        if managed.session.gateway is not None:
            managed.session.gateway.close()
        logger.info("practice_session_ended", session_id=session_id)
        return True

    async def get_session_count(self) -> int:
        async with self._lock:
            return len(self._sessions)


# Global session manager instance
_session_manager: PracticeSessionManager | None = None


def get_session_manager() -> PracticeSessionManager:
    """Get the global session manager instance."""
    global _session_manager
    if _session_manager is None:
        _session_manager = PracticeSessionManager()
    return _session_manager


def set_session_manager(manager: PracticeSessionManager) -> None:
    """Install a preconfigured session manager."""
    global _session_manager
    _session_manager = manager


def reset_session_manager() -> None:
    """Reset the session manager (for testing)."""
    global _session_manager
    _session_manager = None
