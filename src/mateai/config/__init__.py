"""Configuration package for the practice engine."""

from mateai.config.app_config import (
    AppConfig,
    BackendConfig,
    PracticeConfig,
    ProviderConfig,
    clear_config_cache,
    get_provider_config,
    load_app_config,
)

__all__ = [
    "AppConfig",
    "BackendConfig",
    "PracticeConfig",
    "ProviderConfig",
    "clear_config_cache",
    "get_provider_config",
    "load_app_config",
]
