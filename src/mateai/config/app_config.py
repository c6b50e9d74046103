"""Application configuration loader.

Loads centralized configuration from data/config/mateai_v1.yaml with
built-in defaults for anything the file omits.

Usage:
    from mateai.config.app_config import load_app_config

    config = load_app_config()
    config.backend.base_url
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
import yaml

logger = structlog.get_logger(__name__)

CONFIG_FILE = Path("data/config/mateai_v1.yaml")

# Build-time override for the backend base URL
BACKEND_URL_ENV = "MATEAI_API_URL"
DEFAULT_BACKEND_URL = "https://m4t3-41-api.onrender.com/api"


@dataclass
class ProviderConfig:
    """Configuration for a single LLM provider."""

    base_url: str | None
    default_model: str
    api_key_env: str | None = None

    def get_api_key(self) -> str | None:
        """Get API key from environment variable."""
        if self.api_key_env:
            return os.environ.get(self.api_key_env)
        return None


@dataclass
class BackendConfig:
    """REST backend connection settings."""

    base_url: str = DEFAULT_BACKEND_URL
    timeout: float = 30.0


@dataclass
class PracticeConfig:
    """Defaults for practice sessions."""

    max_attempts: int = 3
    hints_per_exercise: int | None = 1
    default_count: int = 5
    default_difficulty: str = "basica"
    default_grade: str = "3"
    prior_reports_limit: int = 5


@dataclass
class AppConfig:
    """Application-wide configuration."""

    providers: dict[str, ProviderConfig] = field(default_factory=dict)
    default_provider: str = "perplexity"
    backend: BackendConfig = field(default_factory=BackendConfig)
    practice: PracticeConfig = field(default_factory=PracticeConfig)
    paths: dict[str, str] = field(default_factory=dict)

    @property
    def state_dir(self) -> Path:
        return Path(self.paths.get("state_dir", "data/state"))


_cached_config: AppConfig | None = None


def _get_defaults() -> dict[str, Any]:
    """Get default configuration values."""
    return {
        "providers": {
            "perplexity": {
                "base_url": "https://api.perplexity.ai",
                "default_model": "sonar",
                "api_key_env": "PERPLEXITY_API_KEY",
            },
            "openai": {
                "base_url": None,
                "default_model": "gpt-4o-mini",
                "api_key_env": "OPENAI_API_KEY",
            },
            "lmstudio": {
                "base_url": "http://localhost:1234/v1",
                "default_model": "llama-3.2-3b-instruct",
                "api_key_env": None,
            },
        },
        "default_provider": "perplexity",
        "backend": {
            "base_url": DEFAULT_BACKEND_URL,
            "timeout": 30.0,
        },
        "practice": {
            "max_attempts": 3,
            "hints_per_exercise": 1,
            "default_count": 5,
            "default_difficulty": "basica",
            "default_grade": "3",
            "prior_reports_limit": 5,
        },
        "paths": {
            "state_dir": "data/state",
            "config_dir": "data/config",
        },
    }


def _merge(defaults: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Shallow-merge each top-level section of overrides into defaults."""
    result = dict(defaults)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = {**result[key], **value}
        else:
            result[key] = value
    return result


def _optional_int(value: Any) -> int | None:
    return None if value is None else int(value)


def _parse_config(data: dict[str, Any]) -> AppConfig:
    """Parse configuration dictionary into AppConfig object."""
    providers = {}
    for name, pconfig in data.get("providers", {}).items():
        providers[name] = ProviderConfig(
            base_url=pconfig.get("base_url"),
            default_model=pconfig.get("default_model", "default"),
            api_key_env=pconfig.get("api_key_env"),
        )

    backend_data = data.get("backend", {})
    backend = BackendConfig(
        base_url=os.environ.get(BACKEND_URL_ENV)
        or backend_data.get("base_url", DEFAULT_BACKEND_URL),
        timeout=float(backend_data.get("timeout", 30.0)),
    )

    practice_data = data.get("practice", {})
    practice = PracticeConfig(
        max_attempts=int(practice_data.get("max_attempts", 3)),
        hints_per_exercise=_optional_int(practice_data.get("hints_per_exercise", 1)),
        default_count=int(practice_data.get("default_count", 5)),
        default_difficulty=practice_data.get("default_difficulty", "basica"),
        default_grade=str(practice_data.get("default_grade", "3")),
        prior_reports_limit=int(practice_data.get("prior_reports_limit", 5)),
    )

    return AppConfig(
        providers=providers,
        default_provider=data.get("default_provider", "perplexity"),
        backend=backend,
        practice=practice,
        paths=data.get("paths", {}),
    )


def load_app_config(force_reload: bool = False, config_file: Path | None = None) -> AppConfig:
    """Load application config, falling back to defaults.

    Args:
        force_reload: If True, ignore cached config and reload from file.
        config_file: Alternate config path (skips the cache).
    """
    global _cached_config

    if config_file is None and _cached_config is not None and not force_reload:
        return _cached_config

    path = config_file or CONFIG_FILE
    data = _get_defaults()

    if path.exists():
        logger.debug("loading_app_config", source=str(path))
        data = _merge(data, yaml.safe_load(path.read_text(encoding="utf-8")) or {})
    else:
        logger.info("using_default_config")

    config = _parse_config(data)
    if config_file is None:
        _cached_config = config
    return config


def get_provider_config(provider: str) -> ProviderConfig | None:
    """Get configuration for a specific provider, or None if unknown."""
    config = load_app_config()
    return config.providers.get(provider)


def clear_config_cache() -> None:
    """Clear the configuration cache."""
    global _cached_config
    _cached_config = None
