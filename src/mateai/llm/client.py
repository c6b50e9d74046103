"""LLM client for hosted chat-completion providers.

Provides a unified interface for the chat-completion endpoints used by
the practice engine. All supported providers speak the OpenAI wire
format, so a single OpenAI SDK client is pointed at the provider's
base URL.

Supported providers:
- perplexity: Perplexity API (sonar models, default)
- openai: OpenAI API
- lmstudio: Local LM Studio server (OpenAI-compatible API)
"""

from __future__ import annotations

import os
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

import structlog
import yaml
from openai import APIConnectionError, APIStatusError, APITimeoutError, OpenAI

from mateai.config.app_config import get_provider_config

logger = structlog.get_logger(__name__)

# =============================================================================
# CONSTANTS
# =============================================================================

Provider = Literal["perplexity", "openai", "lmstudio"]

DEFAULT_CONFIG_PATH = Path("data/config/mateai_v1.yaml")

PROVIDER_DEFAULTS: dict[Provider, dict[str, Any]] = {
    "perplexity": {
        "base_url": "https://api.perplexity.ai",
        "api_key_env": "PERPLEXITY_API_KEY",
        "model": "sonar",
    },
    "openai": {
        "base_url": "https://api.openai.com/v1",
        "api_key_env": "OPENAI_API_KEY",
        "model": "gpt-4o-mini",
    },
    "lmstudio": {
        "base_url": "http://localhost:1234/v1",
        "api_key": "lm-studio",  # LM Studio doesn't need real API key
        "model": "default",
    },
}


# =============================================================================
# DATA CLASSES
# =============================================================================


@dataclass
class LLMConfig:
    """Configuration for LLM client."""

    provider: Provider = "perplexity"
    base_url: str = "https://api.perplexity.ai"
    model: str = "sonar"
    temperature: float = 0.7
    max_tokens: int = 2000
    timeout: int = 60
    api_key: str | None = None

    @classmethod
    def from_yaml(cls, config_path: Path | None = None) -> LLMConfig:
        """Load configuration from the `llm:` section of a YAML file."""
        if config_path is None:
            config_path = DEFAULT_CONFIG_PATH

        if not config_path.exists():
            logger.warning("config_not_found", path=str(config_path))
            return cls.for_provider("perplexity")

        with open(config_path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}

        llm_config = data.get("llm", {})
        provider = llm_config.get("provider", "perplexity")
        config = cls.for_provider(provider)

        config.base_url = llm_config.get("base_url", config.base_url)
        config.model = llm_config.get("model", config.model)
        config.temperature = llm_config.get("temperature", config.temperature)
        config.max_tokens = llm_config.get("max_tokens", config.max_tokens)
        config.timeout = llm_config.get("timeout", config.timeout)
        return config

    @classmethod
    def for_provider(cls, provider: Provider) -> LLMConfig:
        """Build a config for a provider, reading the API key from env.

        The `providers` section of the app config wins over built-in defaults.
        """
        defaults = PROVIDER_DEFAULTS.get(provider, PROVIDER_DEFAULTS["perplexity"])
        base_url = defaults["base_url"]
        model = defaults["model"]

        api_key = None
        if "api_key_env" in defaults:
            api_key = os.environ.get(defaults["api_key_env"])
        elif "api_key" in defaults:
            api_key = defaults["api_key"]

        provider_config = get_provider_config(provider)
        if provider_config is not None:
            base_url = provider_config.base_url or base_url
            model = provider_config.default_model or model
            api_key = provider_config.get_api_key() or api_key

        return cls(
            provider=provider,
            base_url=base_url,
            model=model,
            api_key=api_key,
        )


@dataclass
class Message:
    """A chat message."""

    role: Literal["system", "user", "assistant"]
    content: str

    def to_dict(self) -> dict[str, str]:
        """Convert to dictionary for API call."""
        return {"role": self.role, "content": self.content}


@dataclass
class LLMResponse:
    """Response from LLM."""

    content: str
    model: str
    provider: Provider
    usage: dict[str, int] = field(default_factory=dict)
    latency_ms: int = 0

    @property
    def total_tokens(self) -> int:
        """Get total token count."""
        return self.usage.get("total_tokens", 0)


class LLMError(Exception):
    """Error during LLM interaction."""

    pass


class LLMConnectionError(LLMError):
    """Error connecting to LLM server."""

    pass


class LLMStatusError(LLMError):
    """Provider answered with a non-2xx HTTP status."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code


class LLMResponseError(LLMError):
    """Error in LLM response."""

    pass


# =============================================================================
# LLM CLIENT
# =============================================================================


class LLMClient:
    """Unified client for chat-completion providers."""

    def __init__(
        self,
        config: LLMConfig | None = None,
        provider: Provider | None = None,
        model: str | None = None,
    ):
        """Initialize LLM client.

        Args:
            config: LLM configuration (loads from YAML if not provided)
            provider: Override provider from config
            model: Override model from config
        """
        if config is None:
            config = LLMConfig.from_yaml()

        if provider is not None and provider != config.provider:
            overridden = LLMConfig.for_provider(provider)
            overridden.temperature = config.temperature
            overridden.max_tokens = config.max_tokens
            overridden.timeout = config.timeout
            config = overridden

        if model is not None:
            config.model = model

        self.config = config

        self._client = OpenAI(
            base_url=self.config.base_url,
            api_key=self.config.api_key or "not-needed",
            timeout=self.config.timeout,
            max_retries=0,
        )

        logger.info(
            "llm_client_initialized",
            provider=self.config.provider,
            model=self.config.model,
            base_url=self.config.base_url,
        )

    def chat(
        self,
        messages: list[Message],
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Send chat completion request.

        Args:
            messages: List of messages in conversation
            temperature: Override default temperature
            max_tokens: Override default max tokens

        Returns:
            LLMResponse with content and metadata

        Raises:
            LLMConnectionError: If cannot connect to server
            LLMStatusError: If the provider returns a non-2xx status
            LLMResponseError: If response is invalid
        """
        if temperature is None:
            temperature = self.config.temperature
        if max_tokens is None:
            max_tokens = self.config.max_tokens

        request_kwargs: dict[str, Any] = {
            "model": self.config.model,
            "messages": [m.to_dict() for m in messages],
            "temperature": temperature,
            "max_tokens": max_tokens,
        }

        start_time = time.time()

        try:
            response = self._client.chat.completions.create(**request_kwargs)
        except APIStatusError as e:
            raise LLMStatusError(
                f"API Error: {e.status_code}", status_code=e.status_code
            ) from e
        except (APIConnectionError, APITimeoutError) as e:
            raise LLMConnectionError(
                f"No se pudo conectar a {self.config.provider} en {self.config.base_url}: {e}"
            ) from e

        latency_ms = int((time.time() - start_time) * 1000)

        if not response.choices:
            raise LLMResponseError("Respuesta vacía del LLM")

        content = response.choices[0].message.content or ""

        usage = {}
        if response.usage:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }

        logger.debug(
            "llm_response",
            provider=self.config.provider,
            model=response.model,
            tokens=usage.get("total_tokens", 0),
            latency_ms=latency_ms,
        )

        return LLMResponse(
            content=content,
            model=response.model,
            provider=self.config.provider,
            usage=usage,
            latency_ms=latency_ms,
        )

    def simple_chat(
        self,
        system_prompt: str,
        user_message: str,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> str:
        """Single-turn chat with system prompt and user message.

        Returns:
            Response content as string
        """
        messages = [
            Message(role="system", content=system_prompt),
            Message(role="user", content=user_message),
        ]

        response = self.chat(
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
        )

        return response.content

    def is_available(self) -> bool:
        """Check if LLM server is available."""
        try:
            self._client.models.list()
            return True
        except (APIConnectionError, APIStatusError):
            return False
